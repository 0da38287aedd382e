import logging

from sqlmodel import SQLModel, Session, create_engine

from obrastock.config import settings
from obrastock.error import InventoryError

logger = logging.getLogger(__name__)


def _connect_args(url: str) -> dict:
    if url.startswith("sqlite"):
        return {"check_same_thread": False}
    return {}


engine = create_engine(settings.database_url, connect_args=_connect_args(settings.database_url))


def create_db_and_tables() -> None:
    # 建表前要保证所有 table=True 的模型都已经注册到 metadata
    import obrastock.models  # noqa: F401

    SQLModel.metadata.create_all(engine)


def get_session():
    session = Session(engine)
    try:
        yield session
    except InventoryError:
        # 业务错误：服务层在写之前就校验了，回滚只是把未提交的读状态清掉
        session.rollback()
        raise
    except Exception as e:
        # 其他异常：更像程序错误/DB错误
        session.rollback()
        logger.warning("rollback: %s: %s", type(e).__name__, e)
        raise
    finally:
        session.close()
