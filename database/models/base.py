"""
数据库基础模型定义

会话表和图片表共用的声明基类与字段
"""

from sqlalchemy import Column, Integer, DateTime
from sqlalchemy.orm import declarative_base
from sqlalchemy.sql import func

Base = declarative_base()


class BaseModel(Base):
    """
    下载记录表的公共字段

    - id: 自增主键，会话ID和图片ID都由数据库分配
    - created_at: 创建时间，会话列表按它和ID倒序
    - updated_at: 最后一次状态或计数变化的时间
    """
    __abstract__ = True

    id = Column(Integer, primary_key=True, autoincrement=True, comment="主键ID")
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False,
                        comment="创建时间")
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(),
                        nullable=False, comment="更新时间")

    def __repr__(self):
        return f"<{self.__class__.__name__}(id={self.id})>"
