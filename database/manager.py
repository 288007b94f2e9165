"""
数据库管理器

提供数据库连接、表结构创建和会话管理功能，支持SQLite和PostgreSQL
"""

import logging
from contextlib import contextmanager
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool

from database.models.base import Base
# 导入模型，使建表时两张表都已注册
from database.models.download_session import DownloadSessionModel  # noqa: F401
from database.models.image import DownloadedImageModel  # noqa: F401

logger = logging.getLogger(__name__)


class DatabaseManager:
    """
    数据库管理器

    功能：
    - 数据库连接管理
    - 表结构创建
    - 事务管理
    - 连接池管理
    """

    def __init__(self, database_url: str, echo: bool = False):
        """
        初始化数据库管理器

        Args:
            database_url: 数据库连接URL
            echo: 是否输出SQL语句
        """
        self.database_url = database_url
        self.echo = echo
        self.engine = None
        self.SessionLocal = None
        self._setup_engine()

    def _setup_engine(self):
        """设置数据库引擎"""
        try:
            if self.database_url.startswith('sqlite'):
                engine_kwargs = {
                    'echo': self.echo,
                    'connect_args': {"check_same_thread": False, "timeout": 30},
                }
                # 内存数据库必须共享同一个连接
                if ':memory:' in self.database_url or self.database_url == 'sqlite://':
                    engine_kwargs['poolclass'] = StaticPool
                self.engine = create_engine(self.database_url, **engine_kwargs)
            else:
                self.engine = create_engine(
                    self.database_url,
                    echo=self.echo,
                    pool_size=10,
                    max_overflow=20,
                    pool_pre_ping=True,
                    pool_recycle=3600
                )

            self.SessionLocal = sessionmaker(
                autocommit=False,
                autoflush=False,
                expire_on_commit=False,
                bind=self.engine
            )

            logger.info(f"数据库引擎初始化成功: {self.engine.url.render_as_string(hide_password=True)}")

        except Exception as e:
            logger.error(f"数据库引擎初始化失败: {e}")
            raise

    def create_tables(self):
        """创建所有表"""
        Base.metadata.create_all(bind=self.engine)
        logger.info("数据库表创建成功")

    @contextmanager
    def get_session(self) -> Session:
        """获取数据库会话（上下文管理器）"""
        session = self.SessionLocal()
        try:
            yield session
        except Exception as e:
            session.rollback()
            logger.error(f"数据库操作失败: {e}")
            raise
        finally:
            session.close()

    def dispose(self):
        """释放连接池"""
        if self.engine is not None:
            self.engine.dispose()
