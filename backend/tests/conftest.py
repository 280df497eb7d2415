"""
Pytest 配置和共享 fixtures
"""
import os

# 应用 lifespan 中的 init_db 不写本地文件
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
from fastapi.testclient import TestClient
from decimal import Decimal

from hms.database import Base, get_db, init_db
from hms.models import ontology  # noqa
from hms.models.ontology import RoomType, Room, RoomStatus, Guest, Service
from hms.main import app
from hms.notification import notification_handlers
from hms.services.event_bus import event_bus
from hms.services.locks import lock_manager


@pytest.fixture(autouse=True)
def reset_global_state():
    """每个用例结束后清理全局单例（事件总线、锁注册表、通知订阅）"""
    yield
    notification_handlers.unregister_handlers()
    event_bus.clear_subscribers()
    event_bus.clear_history()
    lock_manager.clear()


@pytest.fixture(scope="function")
def db_engine():
    """创建内存数据库引擎"""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="function")
def db_session(db_engine):
    """创建数据库会话"""
    SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=db_engine)
    session = SessionLocal()
    yield session
    session.close()


@pytest.fixture(scope="function")
def file_session_factory(tmp_path):
    """基于文件的数据库（WAL），每个线程各用一个会话，用于并发测试"""
    engine = create_engine(
        f"sqlite:///{tmp_path / 'hms_test.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    init_db(bind=engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    engine.dispose()


@pytest.fixture(scope="function")
def client(db_session):
    """创建测试客户端"""
    def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def events():
    """记录发布的事件"""
    return []


@pytest.fixture
def publisher(events):
    """记录型事件发布器"""
    return events.append


# ============== 实体相关 Fixtures ==============

def create_room_type(db_session, name="标准间", base_price="100.00", capacity=2, rooms=()):
    """创建房型及其房间"""
    room_type = RoomType(
        name=name,
        description=name,
        base_price=Decimal(base_price),
        capacity=capacity,
    )
    db_session.add(room_type)
    db_session.flush()
    for number in rooms:
        db_session.add(Room(
            room_number=number,
            floor=int(number[0]),
            room_type_id=room_type.id,
            status=RoomStatus.AVAILABLE,
        ))
    db_session.commit()
    db_session.refresh(room_type)
    return room_type


@pytest.fixture
def make_room_type(db_session):
    """房型工厂"""
    def _make(**kwargs):
        return create_room_type(db_session, **kwargs)
    return _make


@pytest.fixture
def sample_room_type(db_session):
    """标准间：100/晚，2 间房（101、102）"""
    return create_room_type(db_session, rooms=("101", "102"))


@pytest.fixture
def single_room_type(db_session):
    """单人间：100/晚，只有 1 间房（201）"""
    return create_room_type(db_session, name="单人间", rooms=("201",))


@pytest.fixture
def suite_room_type(db_session):
    """套房：250/晚，最多 4 人，1 间房（301）"""
    return create_room_type(db_session, name="套房", base_price="250.00", capacity=4, rooms=("301",))


@pytest.fixture
def sample_rooms(db_session, sample_room_type):
    return db_session.query(Room).filter(
        Room.room_type_id == sample_room_type.id
    ).order_by(Room.room_number).all()


@pytest.fixture
def sample_guest(db_session):
    """创建测试客人"""
    guest = Guest(name="张三", phone="13800138000", email="zhangsan@example.com")
    db_session.add(guest)
    db_session.commit()
    db_session.refresh(guest)
    return guest


@pytest.fixture
def sample_guest_2(db_session):
    """创建第二个测试客人"""
    guest = Guest(name="李四", phone="13900139000")
    db_session.add(guest)
    db_session.commit()
    db_session.refresh(guest)
    return guest


@pytest.fixture
def sample_service(db_session):
    """早餐：25/份，税率 5%"""
    service = Service(name="早餐", price=Decimal("25.00"), tax_rate=Decimal("0.05"))
    db_session.add(service)
    db_session.commit()
    db_session.refresh(service)
    return service


@pytest.fixture
def sample_service_2(db_session):
    """接机：40/次，免税"""
    service = Service(name="接机", price=Decimal("40.00"), tax_rate=Decimal("0"))
    db_session.add(service)
    db_session.commit()
    db_session.refresh(service)
    return service


@pytest.fixture
def inactive_service(db_session):
    """已停用的服务"""
    service = Service(name="洗衣", price=Decimal("30.00"), tax_rate=Decimal("0.05"), is_active=False)
    db_session.add(service)
    db_session.commit()
    db_session.refresh(service)
    return service
