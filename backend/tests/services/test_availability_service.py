"""
Tests for hms/services/availability_service.py
Covers: half-open overlap counting, status filtering, invalid ranges,
requested-hold policy, search by guest count.
"""
import pytest
from datetime import date
from decimal import Decimal

from hms.errors import InvalidRange, NotFound
from hms.models.ontology import Booking, BookingStatus
from hms.services.availability_service import AvailabilityService


@pytest.fixture
def add_booking(db_session, sample_guest):
    """直接写入一条预订（绕过预订服务，用于构造库存状态）"""
    counter = {"n": 0}

    def _add(room_type, start, end, status=BookingStatus.CONFIRMED):
        counter["n"] += 1
        booking = Booking(
            booking_no=f"BKTEST{counter['n']:04d}",
            guest_id=sample_guest.id,
            room_type_id=room_type.id,
            check_in_date=start,
            check_out_date=end,
            nights=(end - start).days,
            total_amount=Decimal("0"),
            currency="BDT",
            status=status,
        )
        db_session.add(booking)
        db_session.commit()
        return booking
    return _add


class TestAvailability:
    def test_empty_inventory_fully_available(self, db_session, sample_room_type):
        result = AvailabilityService(db_session).availability(
            sample_room_type.id, date(2024, 6, 1), date(2024, 6, 3)
        )
        assert result.total_rooms == 2
        assert result.reserved_count == 0
        assert result.available_count == 2

    def test_overlapping_booking_is_counted(self, db_session, sample_room_type, add_booking):
        add_booking(sample_room_type, date(2024, 6, 2), date(2024, 6, 5))
        result = AvailabilityService(db_session).availability(
            sample_room_type.id, date(2024, 6, 1), date(2024, 6, 3)
        )
        assert result.reserved_count == 1
        assert result.available_count == 1

    def test_back_to_back_ranges_do_not_overlap(self, db_session, sample_room_type, add_booking):
        add_booking(sample_room_type, date(2024, 6, 1), date(2024, 6, 3))
        add_booking(sample_room_type, date(2024, 6, 5), date(2024, 6, 7))
        result = AvailabilityService(db_session).availability(
            sample_room_type.id, date(2024, 6, 3), date(2024, 6, 5)
        )
        assert result.reserved_count == 0

    @pytest.mark.parametrize("status", [
        BookingStatus.CANCELLED, BookingStatus.CHECKED_OUT, BookingStatus.REQUESTED,
    ])
    def test_non_committed_statuses_ignored(self, db_session, sample_room_type, add_booking, status):
        add_booking(sample_room_type, date(2024, 6, 1), date(2024, 6, 3), status=status)
        result = AvailabilityService(db_session).availability(
            sample_room_type.id, date(2024, 6, 1), date(2024, 6, 3)
        )
        assert result.reserved_count == 0

    @pytest.mark.parametrize("status", [
        BookingStatus.APPROVED, BookingStatus.CONFIRMED, BookingStatus.CHECKED_IN,
    ])
    def test_committed_statuses_counted(self, db_session, sample_room_type, add_booking, status):
        add_booking(sample_room_type, date(2024, 6, 1), date(2024, 6, 3), status=status)
        result = AvailabilityService(db_session).availability(
            sample_room_type.id, date(2024, 6, 2), date(2024, 6, 4)
        )
        assert result.reserved_count == 1

    def test_requested_holds_when_enabled(self, db_session, sample_room_type, add_booking):
        add_booking(sample_room_type, date(2024, 6, 1), date(2024, 6, 3), status=BookingStatus.REQUESTED)
        service = AvailabilityService(db_session, requested_holds=True)
        result = service.availability(sample_room_type.id, date(2024, 6, 1), date(2024, 6, 3))
        assert result.reserved_count == 1

    def test_available_never_negative(self, db_session, single_room_type, add_booking):
        # 数据被外部写超时也不出现负数
        add_booking(single_room_type, date(2024, 6, 1), date(2024, 6, 3))
        add_booking(single_room_type, date(2024, 6, 1), date(2024, 6, 3))
        result = AvailabilityService(db_session).availability(
            single_room_type.id, date(2024, 6, 1), date(2024, 6, 3)
        )
        assert result.reserved_count == 2
        assert result.available_count == 0

    def test_exclude_booking(self, db_session, single_room_type, add_booking):
        booking = add_booking(single_room_type, date(2024, 6, 1), date(2024, 6, 3))
        service = AvailabilityService(db_session)
        assert not service.is_room_type_available(single_room_type.id, date(2024, 6, 1), date(2024, 6, 3))
        assert service.is_room_type_available(
            single_room_type.id, date(2024, 6, 1), date(2024, 6, 3), exclude_booking_id=booking.id
        )

    @pytest.mark.parametrize("start,end", [
        (date(2024, 6, 3), date(2024, 6, 3)),
        (date(2024, 6, 5), date(2024, 6, 3)),
    ])
    def test_invalid_range(self, db_session, sample_room_type, start, end):
        with pytest.raises(InvalidRange):
            AvailabilityService(db_session).availability(sample_room_type.id, start, end)

    def test_unknown_room_type(self, db_session):
        with pytest.raises(NotFound):
            AvailabilityService(db_session).availability(999, date(2024, 6, 1), date(2024, 6, 2))


class TestSearch:
    def test_search_filters_by_capacity_and_availability(
        self, db_session, single_room_type, suite_room_type, add_booking
    ):
        add_booking(single_room_type, date(2024, 6, 1), date(2024, 6, 3))
        service = AvailabilityService(db_session)

        results = service.search(date(2024, 6, 1), date(2024, 6, 2))
        assert [r.room_type_id for r in results] == [suite_room_type.id]

        results = service.search(date(2024, 6, 3), date(2024, 6, 4), guest_count=3)
        assert [r.room_type_id for r in results] == [suite_room_type.id]

        results = service.search(date(2024, 6, 3), date(2024, 6, 4))
        assert {r.room_type_id for r in results} == {single_room_type.id, suite_room_type.id}

    def test_search_invalid_range(self, db_session):
        with pytest.raises(InvalidRange):
            AvailabilityService(db_session).search(date(2024, 6, 2), date(2024, 6, 1))
