"""
数据库模块 - 负责下载会话和图片记录的存储

包含以下子模块：
- records: 存储层对外交换的记录和状态
- models: SQLAlchemy数据模型
- manager: 数据库管理器
- store: 会话存储接口及实现
"""

from .manager import DatabaseManager
from .records import SessionRecord, ImageRecord, SessionStatus, ImageStatus, OutputFormat
from .store import SessionStore, MemorySessionStore, SqlSessionStore, build_store

__all__ = [
    "DatabaseManager",
    "SessionRecord",
    "ImageRecord",
    "SessionStatus",
    "ImageStatus",
    "OutputFormat",
    "SessionStore",
    "MemorySessionStore",
    "SqlSessionStore",
    "build_store",
]
