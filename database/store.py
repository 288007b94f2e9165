"""
会话存储

下载引擎使用的存储接口，以及内存和SQLAlchemy两种实现
"""

import itertools
import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import replace
from datetime import datetime, timezone
from typing import Optional, List, Dict, Any

from database.manager import DatabaseManager
from database.models.download_session import DownloadSessionModel
from database.models.image import DownloadedImageModel
from database.records import (
    SessionRecord,
    ImageRecord,
    SessionStatus,
    ImageStatus,
    OutputFormat,
    IMAGE_TRANSITIONS,
    SESSION_CREATE_FIELDS,
    IMAGE_CREATE_FIELDS,
)

logger = logging.getLogger(__name__)


def _check_fields(values: Dict[str, Any], allowed, kind: str):
    unknown = set(values) - set(allowed)
    if unknown:
        raise ValueError(f"{kind} 不支持的字段: {', '.join(sorted(unknown))}")


def _plain(value):
    """枚举转为存储用的字符串"""
    return value.value if isinstance(value, (SessionStatus, ImageStatus, OutputFormat)) else value


def _check_image_transition(current: ImageStatus, status: ImageStatus):
    if status not in IMAGE_TRANSITIONS[current]:
        raise ValueError(f"图片状态不能从 {current.value} 变为 {status.value}")


def _reject_status(changes: Dict[str, Any]):
    if 'status' in changes:
        raise ValueError("图片状态只能通过 transition_image 修改")


class SessionStore(ABC):
    """
    会话存储接口

    删除会话时必须级联删除其图片记录
    """

    # ── 会话 ─────────────────────────────────────────────────────

    @abstractmethod
    def create_session(self, **values) -> SessionRecord:
        """创建会话，状态为 pending"""

    @abstractmethod
    def get_session(self, session_id: int) -> Optional[SessionRecord]:
        """获取会话"""

    @abstractmethod
    def update_session(self, session_id: int, **changes) -> Optional[SessionRecord]:
        """更新会话字段，会话不存在返回None"""

    @abstractmethod
    def list_sessions(self) -> List[SessionRecord]:
        """全部会话，最新的在前"""

    @abstractmethod
    def delete_session(self, session_id: int) -> bool:
        """删除会话及其图片记录"""

    # ── 图片 ─────────────────────────────────────────────────────

    @abstractmethod
    def create_image(self, session_id: int, **values) -> ImageRecord:
        """创建图片记录，状态为 pending"""

    @abstractmethod
    def get_image(self, image_id: int) -> Optional[ImageRecord]:
        """获取图片记录"""

    @abstractmethod
    def update_image(self, image_id: int, **changes) -> Optional[ImageRecord]:
        """更新图片记录的非状态字段（如下载进度）"""

    @abstractmethod
    def transition_image(self, image_id: int, status: ImageStatus, completed: int = 0,
                         failed: int = 0, **changes) -> Optional[ImageRecord]:
        """
        修改图片状态并同步调整所属会话的计数

        状态和计数在同一次操作中生效，外部观察不到中间状态

        Args:
            image_id: 图片ID
            status: 新状态，必须是 IMAGE_TRANSITIONS 允许的迁移
            completed: 会话完成数的增量
            failed: 会话失败数的增量
            **changes: 同时更新的其他字段

        Returns:
            更新后的图片记录，图片不存在返回None

        Raises:
            ValueError: 不允许的状态迁移
        """

    @abstractmethod
    def list_images(self, session_id: int, status: Optional[ImageStatus] = None) -> List[ImageRecord]:
        """会话的图片记录，按创建顺序"""

    def list_active_images(self, session_id: int) -> List[ImageRecord]:
        """会话中正在下载的图片"""
        return self.list_images(session_id, status=ImageStatus.DOWNLOADING)

    def close(self):
        """释放资源"""


class MemorySessionStore(SessionStore):
    """内存存储，进程退出后数据丢失"""

    def __init__(self):
        self._sessions: Dict[int, SessionRecord] = {}
        self._images: Dict[int, ImageRecord] = {}
        self._session_ids = itertools.count(1)
        self._image_ids = itertools.count(1)
        self._lock = threading.RLock()

    def create_session(self, **values) -> SessionRecord:
        _check_fields(values, SESSION_CREATE_FIELDS, "会话")
        with self._lock:
            record = SessionRecord(
                id=next(self._session_ids),
                created_at=datetime.now(timezone.utc),
                **values,
            )
            record.output_format = OutputFormat(record.output_format)
            self._sessions[record.id] = record
            return replace(record)

    def get_session(self, session_id: int) -> Optional[SessionRecord]:
        with self._lock:
            record = self._sessions.get(session_id)
            return replace(record) if record else None

    def update_session(self, session_id: int, **changes) -> Optional[SessionRecord]:
        with self._lock:
            record = self._sessions.get(session_id)
            if record is None:
                return None
            if 'status' in changes:
                changes['status'] = SessionStatus(changes['status'])
            record = replace(record, **changes)
            self._sessions[session_id] = record
            return replace(record)

    def list_sessions(self) -> List[SessionRecord]:
        with self._lock:
            records = sorted(self._sessions.values(), key=lambda r: r.id, reverse=True)
            return [replace(r) for r in records]

    def delete_session(self, session_id: int) -> bool:
        with self._lock:
            if session_id not in self._sessions:
                return False
            for image_id in [i.id for i in self._images.values() if i.session_id == session_id]:
                del self._images[image_id]
            del self._sessions[session_id]
            return True

    def create_image(self, session_id: int, **values) -> ImageRecord:
        _check_fields(values, IMAGE_CREATE_FIELDS, "图片")
        with self._lock:
            if session_id not in self._sessions:
                raise KeyError(f"会话不存在: {session_id}")
            record = ImageRecord(id=next(self._image_ids), session_id=session_id, **values)
            self._images[record.id] = record
            return replace(record)

    def get_image(self, image_id: int) -> Optional[ImageRecord]:
        with self._lock:
            record = self._images.get(image_id)
            return replace(record) if record else None

    def update_image(self, image_id: int, **changes) -> Optional[ImageRecord]:
        _reject_status(changes)
        with self._lock:
            record = self._images.get(image_id)
            if record is None:
                return None
            record = replace(record, **changes)
            self._images[image_id] = record
            return replace(record)

    def transition_image(self, image_id: int, status: ImageStatus, completed: int = 0,
                         failed: int = 0, **changes) -> Optional[ImageRecord]:
        status = ImageStatus(status)
        _reject_status(changes)
        with self._lock:
            record = self._images.get(image_id)
            if record is None:
                return None
            _check_image_transition(record.status, status)
            record = replace(record, status=status, **changes)
            self._images[image_id] = record

            session = self._sessions.get(record.session_id)
            if session is not None:
                session.completed_images += completed
                session.failed_images += failed
            return replace(record)

    def list_images(self, session_id: int, status: Optional[ImageStatus] = None) -> List[ImageRecord]:
        with self._lock:
            return [
                replace(r) for r in sorted(self._images.values(), key=lambda r: r.id)
                if r.session_id == session_id and (status is None or r.status == status)
            ]


class SqlSessionStore(SessionStore):
    """基于SQLAlchemy的持久化存储"""

    def __init__(self, db_manager: DatabaseManager, create_tables: bool = True):
        """
        初始化存储

        Args:
            db_manager: 数据库管理器
            create_tables: 是否自动建表
        """
        self.db_manager = db_manager
        if create_tables:
            self.db_manager.create_tables()

    def create_session(self, **values) -> SessionRecord:
        _check_fields(values, SESSION_CREATE_FIELDS, "会话")
        with self.db_manager.get_session() as db_session:
            model = DownloadSessionModel(
                status=SessionStatus.PENDING.value,
                total_images=0,
                completed_images=0,
                failed_images=0,
                **{k: _plain(v) for k, v in values.items()},
            )
            db_session.add(model)
            db_session.commit()
            logger.debug(f"创建下载会话: {model.id}")
            return model.to_record()

    def get_session(self, session_id: int) -> Optional[SessionRecord]:
        with self.db_manager.get_session() as db_session:
            model = db_session.get(DownloadSessionModel, session_id)
            return model.to_record() if model else None

    def update_session(self, session_id: int, **changes) -> Optional[SessionRecord]:
        with self.db_manager.get_session() as db_session:
            model = db_session.get(DownloadSessionModel, session_id)
            if model is None:
                return None
            for key, value in changes.items():
                if not hasattr(DownloadSessionModel, key):
                    raise ValueError(f"会话不支持的字段: {key}")
                setattr(model, key, _plain(value))
            db_session.commit()
            return model.to_record()

    def list_sessions(self) -> List[SessionRecord]:
        with self.db_manager.get_session() as db_session:
            models = db_session.query(DownloadSessionModel).order_by(
                DownloadSessionModel.id.desc()
            ).all()
            return [m.to_record() for m in models]

    def delete_session(self, session_id: int) -> bool:
        with self.db_manager.get_session() as db_session:
            model = db_session.get(DownloadSessionModel, session_id)
            if model is None:
                return False
            db_session.delete(model)
            db_session.commit()
            logger.info(f"删除下载会话: {session_id}")
            return True

    def create_image(self, session_id: int, **values) -> ImageRecord:
        _check_fields(values, IMAGE_CREATE_FIELDS, "图片")
        with self.db_manager.get_session() as db_session:
            if db_session.get(DownloadSessionModel, session_id) is None:
                raise KeyError(f"会话不存在: {session_id}")
            model = DownloadedImageModel(
                session_id=session_id,
                status=ImageStatus.PENDING.value,
                progress=0,
                **values,
            )
            db_session.add(model)
            db_session.commit()
            return model.to_record()

    def get_image(self, image_id: int) -> Optional[ImageRecord]:
        with self.db_manager.get_session() as db_session:
            model = db_session.get(DownloadedImageModel, image_id)
            return model.to_record() if model else None

    def update_image(self, image_id: int, **changes) -> Optional[ImageRecord]:
        _reject_status(changes)
        with self.db_manager.get_session() as db_session:
            model = db_session.get(DownloadedImageModel, image_id)
            if model is None:
                return None
            for key, value in changes.items():
                if not hasattr(DownloadedImageModel, key):
                    raise ValueError(f"图片不支持的字段: {key}")
                setattr(model, key, _plain(value))
            db_session.commit()
            return model.to_record()

    def transition_image(self, image_id: int, status: ImageStatus, completed: int = 0,
                         failed: int = 0, **changes) -> Optional[ImageRecord]:
        status = ImageStatus(status)
        _reject_status(changes)
        with self.db_manager.get_session() as db_session:
            model = db_session.get(DownloadedImageModel, image_id)
            if model is None:
                return None
            _check_image_transition(ImageStatus(model.status), status)

            model.status = status.value
            for key, value in changes.items():
                if not hasattr(DownloadedImageModel, key):
                    raise ValueError(f"图片不支持的字段: {key}")
                setattr(model, key, _plain(value))

            if completed or failed:
                db_session.query(DownloadSessionModel).filter(
                    DownloadSessionModel.id == model.session_id
                ).update({
                    DownloadSessionModel.completed_images: DownloadSessionModel.completed_images + completed,
                    DownloadSessionModel.failed_images: DownloadSessionModel.failed_images + failed,
                }, synchronize_session=False)
            db_session.commit()
            return model.to_record()

    def list_images(self, session_id: int, status: Optional[ImageStatus] = None) -> List[ImageRecord]:
        with self.db_manager.get_session() as db_session:
            query = db_session.query(DownloadedImageModel).filter(
                DownloadedImageModel.session_id == session_id
            )
            if status is not None:
                query = query.filter(DownloadedImageModel.status == ImageStatus(status).value)
            return [m.to_record() for m in query.order_by(DownloadedImageModel.id).all()]

    def close(self):
        self.db_manager.dispose()


def build_store(config_manager) -> SessionStore:
    """
    根据配置创建存储

    Args:
        config_manager: 配置管理器

    Returns:
        database.type 为 memory 时返回内存存储，否则返回SQL存储
    """
    settings = config_manager.get_settings()
    if settings.database.type == 'memory':
        logger.info("使用内存会话存储")
        return MemorySessionStore()

    db_manager = DatabaseManager(config_manager.get_database_url())
    return SqlSessionStore(db_manager)
