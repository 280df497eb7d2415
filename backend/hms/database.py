"""
数据库配置 - 持久化层
所有写操作通过 transactional() 保证：要么整体提交，要么整体回滚
"""
import logging
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine, text
from sqlalchemy.exc import DBAPIError
from sqlalchemy.orm import Session, sessionmaker, declarative_base
from sqlalchemy.orm.exc import StaleDataError

from hms.config import settings
from hms.errors import HotelError, Unavailable

logger = logging.getLogger(__name__)

SQLALCHEMY_DATABASE_URL = settings.DATABASE_URL
_is_sqlite = SQLALCHEMY_DATABASE_URL.startswith("sqlite")

engine = create_engine(
    SQLALCHEMY_DATABASE_URL,
    connect_args={"check_same_thread": False} if _is_sqlite else {},
    pool_pre_ping=not _is_sqlite,
)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def get_db():
    """依赖注入：获取数据库会话"""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db(bind=None):
    """初始化数据库表"""
    from hms.models import ontology  # noqa
    bind = bind or engine
    Base.metadata.create_all(bind=bind)

    # SQLite 启用 WAL 模式以提高并发读性能
    if bind.dialect.name == "sqlite" and bind.url.database not in (None, "", ":memory:"):
        with bind.connect() as conn:
            conn.execute(text("PRAGMA journal_mode=WAL"))
            conn.execute(text("PRAGMA synchronous=NORMAL"))
            conn.commit()


@contextmanager
def transactional(db: Session) -> Iterator[Session]:
    """
    写操作事务边界

    - 正常结束时提交
    - 领域错误：回滚后原样抛出
    - 存储错误/版本冲突：回滚后转换为 Unavailable（可重试）
    """
    try:
        yield db
        db.commit()
    except HotelError:
        db.rollback()
        raise
    except StaleDataError as e:
        db.rollback()
        logger.warning(f"Concurrent modification detected: {e}")
        raise Unavailable("数据已被并发修改，请重试", {"reason": "stale_data"}) from e
    except DBAPIError as e:
        db.rollback()
        logger.error(f"Database error, transaction rolled back: {e}", exc_info=True)
        raise Unavailable("存储暂时不可用，请重试", {"reason": "database"}) from e
    except Exception:
        db.rollback()
        raise
