"""
Tests for hms/services/stay_service.py
Covers: check-in room allocation, date guards, room validation,
check-out release and invoice finalization, stay charges, disputes.
"""
import pytest
from datetime import date, datetime, timedelta
from decimal import Decimal

from hms.config import settings
from hms.errors import InvalidAmount, InvalidTransition, NoRoomAvailable, NotFound
from hms.models.events import EventType
from hms.models.ontology import BookingStatus, Room, RoomStatus, StayStatus
from hms.services.invoice_service import InvoiceService
from hms.services.reservation_service import ReservationService
from hms.services.stay_service import StayService

TODAY = date.today()
IN_TWO_DAYS = TODAY + timedelta(days=2)


@pytest.fixture
def stay_service(db_session, publisher):
    return StayService(db_session, event_publisher=publisher)


@pytest.fixture
def make_booking(db_session, sample_guest):
    service = ReservationService(db_session, event_publisher=lambda e: None)

    def _make(room_type, start=TODAY, end=IN_TWO_DAYS):
        return service.reserve(room_type.id, start, end, sample_guest.id)
    return _make


class TestCheckIn:
    def test_auto_allocates_first_available_room(self, db_session, stay_service, make_booking,
                                                 sample_room_type, sample_rooms, events):
        booking = make_booking(sample_room_type)
        stay = stay_service.check_in(booking.id, staff_id=3)

        assert stay.status == StayStatus.ACTIVE
        assert stay.room_id == sample_rooms[0].id
        db_session.refresh(sample_rooms[0])
        assert sample_rooms[0].status == RoomStatus.OCCUPIED
        db_session.refresh(booking)
        assert booking.status == BookingStatus.CHECKED_IN
        assert booking.allocated_room_id == sample_rooms[0].id

        invoice = InvoiceService(db_session).get_invoice_for_booking(booking.id)
        assert invoice.is_final is False
        assert invoice.stay_id == stay.id

        assert events[-1].event_type == EventType.CHECKED_IN
        assert events[-1].data["room_number"] == "101"
        assert events[-1].data["invoice_id"] == invoice.id

    def test_second_check_in_gets_other_room(self, stay_service, make_booking, sample_room_type, sample_rooms):
        first = stay_service.check_in(make_booking(sample_room_type).id)
        second = stay_service.check_in(make_booking(sample_room_type).id)
        assert {first.room_id, second.room_id} == {r.id for r in sample_rooms}

    def test_specific_room(self, stay_service, make_booking, sample_room_type, sample_rooms):
        stay = stay_service.check_in(make_booking(sample_room_type).id, room_id=sample_rooms[1].id)
        assert stay.room_id == sample_rooms[1].id

    def test_room_of_other_type_rejected(self, stay_service, make_booking, sample_room_type,
                                         sample_rooms, suite_room_type, db_session):
        suite_room = db_session.query(Room).filter(Room.room_type_id == suite_room_type.id).first()
        with pytest.raises(NoRoomAvailable):
            stay_service.check_in(make_booking(sample_room_type).id, room_id=suite_room.id)

    def test_occupied_room_rejected(self, db_session, stay_service, make_booking,
                                    sample_room_type, sample_rooms):
        sample_rooms[0].status = RoomStatus.MAINTENANCE
        db_session.commit()
        with pytest.raises(NoRoomAvailable):
            stay_service.check_in(make_booking(sample_room_type).id, room_id=sample_rooms[0].id)

    def test_unknown_room(self, stay_service, make_booking, sample_room_type, sample_rooms):
        with pytest.raises(NotFound):
            stay_service.check_in(make_booking(sample_room_type).id, room_id=9999)

    def test_no_room_left_keeps_booking_confirmed(self, db_session, stay_service, make_booking,
                                                  sample_room_type, sample_rooms):
        for room in sample_rooms:
            room.status = RoomStatus.BLOCKED
        db_session.commit()
        booking = make_booking(sample_room_type)

        with pytest.raises(NoRoomAvailable):
            stay_service.check_in(booking.id)
        db_session.refresh(booking)
        assert booking.status == BookingStatus.CONFIRMED
        assert stay_service.find_stay_by_booking(booking.id) is None

    def test_too_early(self, stay_service, make_booking, sample_room_type, sample_rooms):
        booking = make_booking(sample_room_type, TODAY + timedelta(days=3), TODAY + timedelta(days=5))
        with pytest.raises(InvalidTransition):
            stay_service.check_in(booking.id)

    def test_walk_in_relaxes_date_guard(self, stay_service, make_booking, sample_room_type, sample_rooms):
        booking = make_booking(sample_room_type, TODAY + timedelta(days=3), TODAY + timedelta(days=5))
        stay = stay_service.check_in(booking.id, walk_in=True)
        assert stay.status == StayStatus.ACTIVE

    def test_early_check_in_days(self, monkeypatch, stay_service, make_booking,
                                 sample_room_type, sample_rooms):
        monkeypatch.setattr(settings, "EARLY_CHECKIN_DAYS", 1)
        booking = make_booking(sample_room_type, TODAY + timedelta(days=1), TODAY + timedelta(days=3))
        assert stay_service.check_in(booking.id).status == StayStatus.ACTIVE

    def test_after_check_out_date(self, stay_service, make_booking, sample_room_type, sample_rooms):
        booking = make_booking(sample_room_type)
        late = datetime.combine(IN_TWO_DAYS, datetime.min.time()) + timedelta(hours=9)
        with pytest.raises(InvalidTransition):
            stay_service.check_in(booking.id, now=late)


class TestCheckOut:
    def test_check_out_releases_room_and_finalizes(self, db_session, stay_service, make_booking,
                                                   sample_room_type, sample_rooms, events):
        booking = make_booking(sample_room_type)
        stay = stay_service.check_in(booking.id)
        stay = stay_service.check_out(booking.id)

        assert stay.status == StayStatus.COMPLETED
        assert stay.actual_check_out is not None
        room = db_session.query(Room).filter(Room.id == stay.room_id).first()
        assert room.status == RoomStatus.AVAILABLE
        db_session.refresh(booking)
        assert booking.status == BookingStatus.CHECKED_OUT

        invoice = InvoiceService(db_session).get_invoice_for_booking(booking.id)
        assert invoice.is_final is True
        assert invoice.total == Decimal("220.00")
        assert [e.event_type for e in events][-2:] == [EventType.CHECKED_OUT, EventType.INVOICE_FINALIZED]

    def test_check_out_twice(self, stay_service, make_booking, sample_room_type, sample_rooms):
        booking = make_booking(sample_room_type)
        stay_service.check_in(booking.id)
        stay_service.check_out(booking.id)
        with pytest.raises(InvalidTransition):
            stay_service.check_out(booking.id)

    def test_check_out_without_check_in(self, stay_service, make_booking, sample_room_type):
        booking = make_booking(sample_room_type)
        with pytest.raises(InvalidTransition):
            stay_service.check_out(booking.id)


class TestCharges:
    def test_charge_refreshes_draft_and_lands_on_final_invoice(
        self, db_session, stay_service, make_booking, sample_room_type, sample_rooms
    ):
        booking = make_booking(sample_room_type)
        stay = stay_service.check_in(booking.id)

        charge = stay_service.add_charge(stay.id, "迷你吧", "12.00", quantity=2)
        assert charge.tax_rate == settings.DEFAULT_TAX_RATE

        invoice = InvoiceService(db_session).get_invoice_for_booking(booking.id)
        # 200 + 24 = 224，税 22.4
        assert invoice.total == Decimal("246.40")

        stay_service.check_out(booking.id)
        db_session.refresh(invoice)
        assert invoice.is_final
        assert invoice.total == Decimal("246.40")
        assert invoice.lines[-1].description == "迷你吧"

    def test_charge_after_check_out_rejected(self, stay_service, make_booking, sample_room_type, sample_rooms):
        booking = make_booking(sample_room_type)
        stay = stay_service.check_in(booking.id)
        stay_service.check_out(booking.id)
        with pytest.raises(InvalidTransition):
            stay_service.add_charge(stay.id, "补充", "5.00")

    def test_sub_cent_price_rounded_before_billing(self, db_session, stay_service, make_booking,
                                                   sample_room_type, sample_rooms):
        """单价按分取整后入账，重算发票结果不变"""
        booking = make_booking(sample_room_type)
        stay = stay_service.check_in(booking.id)

        charge = stay_service.add_charge(stay.id, "迷你吧", "0.125", quantity=8, tax_rate="0.123456")
        assert charge.unit_price == Decimal("0.13")
        assert charge.tax_rate == Decimal("0.1235")

        invoices = InvoiceService(db_session)
        first = invoices.get_invoice_for_booking(booking.id)
        first_totals = (first.subtotal, first.tax, first.total)

        db_session.expire_all()
        rebuilt = invoices.build_invoice(booking.id)
        assert (rebuilt.subtotal, rebuilt.tax, rebuilt.total) == first_totals
        # 200 × 1.1 + 1.04 × 1.1235
        assert rebuilt.total == Decimal("221.17")

    @pytest.mark.parametrize("kwargs", [
        {"description": "", "unit_price": "1.00"},
        {"description": "x", "unit_price": "-1.00"},
        {"description": "x", "unit_price": "1.00", "quantity": 0},
        {"description": "x", "unit_price": "1.00", "tax_rate": "-0.1"},
    ])
    def test_invalid_charge(self, stay_service, make_booking, sample_room_type, sample_rooms, kwargs):
        stay = stay_service.check_in(make_booking(sample_room_type).id)
        with pytest.raises(InvalidAmount):
            stay_service.add_charge(stay.id, **kwargs)


class TestQueriesAndDisputes:
    def test_active_stays_and_lookup(self, stay_service, make_booking, sample_room_type, sample_rooms):
        booking = make_booking(sample_room_type)
        stay = stay_service.check_in(booking.id)
        assert [s.id for s in stay_service.get_active_stays()] == [stay.id]
        assert stay_service.get_stay_by_booking(booking.id).id == stay.id

        stay_service.check_out(booking.id)
        assert stay_service.get_active_stays() == []

    def test_lookup_not_found(self, stay_service):
        with pytest.raises(NotFound):
            stay_service.get_stay(1)
        with pytest.raises(NotFound):
            stay_service.get_stay_by_booking(1)

    def test_dispute_only_after_check_out(self, stay_service, make_booking, sample_room_type, sample_rooms):
        booking = make_booking(sample_room_type)
        stay = stay_service.check_in(booking.id)
        with pytest.raises(InvalidTransition):
            stay_service.mark_disputed(stay.id)

        stay_service.check_out(booking.id)
        assert stay_service.mark_disputed(stay.id).status == StayStatus.DISPUTED
