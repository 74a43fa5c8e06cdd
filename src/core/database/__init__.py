from src.core.database.base import Base, BaseModel
from src.core.database.session import async_session, get_db

__all__ = ["Base", "BaseModel", "async_session", "get_db"]
