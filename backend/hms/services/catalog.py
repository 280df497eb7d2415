"""
目录服务 - 外部参考数据的只读边界
InventoryCatalog：房型定义、房间数量、可分配房间
ServiceCatalog：附加服务单价与税率
"""
from typing import List, Optional
from sqlalchemy.orm import Session
from hms.models.ontology import RoomType, Room, RoomStatus, Service
from hms.errors import NotFound


class InventoryCatalog:
    """房型/房间目录（只读）"""

    def __init__(self, db: Session):
        self.db = db

    def find_room_type(self, room_type_id: int) -> Optional[RoomType]:
        return self.db.query(RoomType).filter(RoomType.id == room_type_id).first()

    def get_room_type(self, room_type_id: int, for_update: bool = False) -> RoomType:
        """
        获取房型

        for_update=True 时对房型行加锁，序列化同房型的并发预订
        （SQLite 忽略 FOR UPDATE，由进程内锁保证）
        """
        query = self.db.query(RoomType).filter(RoomType.id == room_type_id)
        if for_update:
            query = query.with_for_update()
        room_type = query.first()
        if not room_type:
            raise NotFound("房型不存在", {"room_type_id": room_type_id})
        return room_type

    def list_room_types(self) -> List[RoomType]:
        return self.db.query(RoomType).order_by(RoomType.id).all()

    def total_rooms(self, room_type_id: int) -> int:
        """房型下的房间总数（由房间记录推导，不维护计数字段）"""
        return self.db.query(Room).filter(Room.room_type_id == room_type_id).count()

    def get_room(self, room_id: int) -> Room:
        room = self.db.query(Room).filter(Room.id == room_id).first()
        if not room:
            raise NotFound("房间不存在", {"room_id": room_id})
        return room

    def list_available_room(self, room_type_id: int) -> Optional[Room]:
        """按房间号顺序返回一个空闲房间，没有则返回 None"""
        return self.db.query(Room).filter(
            Room.room_type_id == room_type_id,
            Room.status == RoomStatus.AVAILABLE
        ).order_by(Room.room_number).first()


class ServiceCatalog:
    """附加服务目录（只读）"""

    def __init__(self, db: Session):
        self.db = db

    def get_service(self, service_id: int, active_only: bool = False) -> Service:
        """
        获取服务

        Raises:
            NotFound: 服务不存在，或 active_only 时服务已停用
        """
        service = self.db.query(Service).filter(Service.id == service_id).first()
        if not service or (active_only and not service.is_active):
            raise NotFound("服务不存在或已停用", {"service_id": service_id})
        return service
