"""
事务边界与资源锁测试
"""
import threading
import pytest
from datetime import date, timedelta
from decimal import Decimal

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from hms.database import transactional
from hms.errors import NotFound, Unavailable
from hms.models.ontology import Booking, Guest, Room, RoomType
from hms.services.locks import (
    ResourceLockManager, booking_key, inventory_key, invoice_key, lock_manager
)
from hms.services.booking_lifecycle import BookingLifecycleService
from hms.services.reservation_service import ReservationService


class TestTransactional:
    def test_commit_on_success(self, db_session):
        with transactional(db_session):
            db_session.add(Guest(name="王五"))
        db_session.rollback()
        assert db_session.query(Guest).count() == 1

    def test_domain_error_rolls_back_and_propagates(self, db_session):
        with pytest.raises(NotFound):
            with transactional(db_session):
                db_session.add(Guest(name="王五"))
                db_session.flush()
                raise NotFound("不存在")
        assert db_session.query(Guest).count() == 0

    def test_stale_data_becomes_unavailable(self, db_session):
        with pytest.raises(Unavailable) as exc_info:
            with transactional(db_session):
                db_session.add(Guest(name="王五"))
                raise StaleDataError("version mismatch")
        assert exc_info.value.retryable
        assert exc_info.value.context == {"reason": "stale_data"}
        assert db_session.query(Guest).count() == 0

    def test_database_error_becomes_unavailable(self, db_session):
        with pytest.raises(Unavailable) as exc_info:
            with transactional(db_session):
                raise OperationalError("INSERT ...", {}, Exception("database is locked"))
        assert exc_info.value.context == {"reason": "database"}

    def test_other_errors_propagate(self, db_session):
        with pytest.raises(KeyError):
            with transactional(db_session):
                raise KeyError("x")


class TestVersionConflict:
    def test_concurrent_update_detected(self, file_session_factory):
        """两个会话修改同一预订：后提交的一方得到 Unavailable"""
        setup = file_session_factory()
        room_type = RoomType(name="标准间", base_price=Decimal("100.00"), capacity=2)
        guest = Guest(name="张三")
        setup.add_all([room_type, guest])
        setup.flush()
        setup.add(Room(room_number="101", floor=1, room_type_id=room_type.id))
        setup.commit()
        booking = ReservationService(setup, event_publisher=lambda e: None).reserve(
            room_type.id, date(2024, 6, 1), date(2024, 6, 3), guest.id
        )
        booking_id = booking.id
        setup.close()

        s1 = file_session_factory()
        s2 = file_session_factory()
        try:
            stale = s1.query(Booking).filter(Booking.id == booking_id).one()

            fresh = s2.query(Booking).filter(Booking.id == booking_id).one()
            fresh.cancel_reason = "s2"
            s2.commit()

            with pytest.raises(Unavailable):
                with transactional(s1):
                    stale.cancel_reason = "s1"

            s1.expire_all()
            assert s1.query(Booking).filter(Booking.id == booking_id).one().cancel_reason == "s2"
        finally:
            s1.close()
            s2.close()


class TestLocks:
    def test_singleton(self):
        assert ResourceLockManager() is lock_manager

    def test_keys(self):
        assert inventory_key(1) == "inventory:1"
        assert booking_key(2) == "booking:2"
        assert invoice_key(3) == "invoice:3"

    def test_hold_and_release(self):
        with lock_manager.hold("inventory:1"):
            assert lock_manager.is_locked("inventory:1")
        assert not lock_manager.is_locked("inventory:1")

    def test_timeout_raises_unavailable(self):
        acquired = threading.Event()
        release = threading.Event()

        def holder():
            with lock_manager.hold("booking:1"):
                acquired.set()
                release.wait(5)

        thread = threading.Thread(target=holder)
        thread.start()
        acquired.wait(5)
        try:
            with pytest.raises(Unavailable) as exc_info:
                with lock_manager.hold("booking:1", timeout=0.01):
                    pass
            assert exc_info.value.context == {"lock": "booking:1"}
        finally:
            release.set()
            thread.join()

    def test_released_after_exception(self):
        with pytest.raises(RuntimeError):
            with lock_manager.hold("invoice:1"):
                raise RuntimeError("x")
        with lock_manager.hold("invoice:1", timeout=0.01):
            pass

    def test_idle_keys_dropped(self, db_session, sample_room_type, sample_guest):
        """预订/取消循环后注册表不残留空闲的锁"""
        reservations = ReservationService(db_session, event_publisher=lambda e: None)
        lifecycle = BookingLifecycleService(db_session, event_publisher=lambda e: None)
        for offset in range(30):
            start = date(2024, 7, 1) + timedelta(days=offset)
            booking = reservations.reserve(sample_room_type.id, start, start + timedelta(days=1),
                                           sample_guest.id)
            lifecycle.cancel(booking.id)
        assert lock_manager.active_keys() == []

    def test_waiting_thread_keeps_entry_until_done(self):
        acquired = threading.Event()
        release = threading.Event()

        def holder():
            with lock_manager.hold("booking:7"):
                acquired.set()
                release.wait(5)

        thread = threading.Thread(target=holder)
        thread.start()
        acquired.wait(5)
        try:
            with pytest.raises(Unavailable):
                with lock_manager.hold("booking:7", timeout=0.01):
                    pass
            assert lock_manager.active_keys() == ["booking:7"]
            assert lock_manager.is_locked("booking:7")
        finally:
            release.set()
            thread.join()
        assert lock_manager.active_keys() == []
