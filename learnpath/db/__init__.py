from learnpath.db.base import Base
from learnpath.db.config import DBSettings, get_db_settings
from learnpath.db.engine import make_engine

__all__ = [
    "Base",
    "DBSettings",
    "get_db_settings",
    "make_engine",
]
