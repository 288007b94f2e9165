"""
会话与图片记录

存储层对外交换的数据结构和状态定义
"""

from dataclasses import dataclass, asdict
from datetime import datetime
from enum import Enum
from typing import Optional, List, Dict, Any


class SessionStatus(str, Enum):
    PENDING = "pending"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class ImageStatus(str, Enum):
    PENDING = "pending"
    DOWNLOADING = "downloading"
    COMPLETED = "completed"
    FAILED = "failed"


class OutputFormat(str, Enum):
    INDIVIDUAL = "individual"
    ARCHIVE = "archive"


# 允许的状态迁移
SESSION_TRANSITIONS = {
    SessionStatus.PENDING: {SessionStatus.ACTIVE},
    SessionStatus.ACTIVE: {SessionStatus.COMPLETED, SessionStatus.FAILED, SessionStatus.CANCELLED},
    SessionStatus.COMPLETED: set(),
    SessionStatus.FAILED: set(),
    SessionStatus.CANCELLED: set(),
}

# FAILED -> DOWNLOADING 只用于重试
IMAGE_TRANSITIONS = {
    ImageStatus.PENDING: {ImageStatus.DOWNLOADING},
    ImageStatus.DOWNLOADING: {ImageStatus.COMPLETED, ImageStatus.FAILED},
    ImageStatus.COMPLETED: set(),
    ImageStatus.FAILED: {ImageStatus.DOWNLOADING},
}


@dataclass
class SessionRecord:
    """下载会话"""
    id: int
    thread_url: str
    from_page: int
    to_page: int
    output_format: OutputFormat = OutputFormat.INDIVIDUAL
    concurrency_limit: int = 3
    retry_enabled: bool = True
    skip_existing: bool = False
    preserve_filenames: bool = True
    custom_directory: Optional[str] = None
    thread_title: Optional[str] = None
    selected_images: Optional[List[Dict[str, Any]]] = None
    status: SessionStatus = SessionStatus.PENDING
    total_images: int = 0
    completed_images: int = 0
    failed_images: int = 0
    archive_path: Optional[str] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    error_message: Optional[str] = None
    created_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['status'] = self.status.value
        data['output_format'] = self.output_format.value
        for key in ('started_at', 'completed_at', 'created_at'):
            if data[key] is not None:
                data[key] = data[key].isoformat()
        return data


@dataclass
class ImageRecord:
    """会话中的单张图片"""
    id: int
    session_id: int
    page_number: int
    original_url: str
    filename: str
    hosting_site: Optional[str] = None
    preview_url: Optional[str] = None
    file_size: Optional[int] = None
    status: ImageStatus = ImageStatus.PENDING
    progress: int = 0
    error_message: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['status'] = self.status.value
        return data


# 创建会话时允许传入的字段
SESSION_CREATE_FIELDS = (
    'thread_url', 'from_page', 'to_page', 'output_format', 'concurrency_limit',
    'retry_enabled', 'skip_existing', 'preserve_filenames', 'custom_directory',
    'thread_title', 'selected_images',
)

# 创建图片记录时允许传入的字段
IMAGE_CREATE_FIELDS = (
    'page_number', 'original_url', 'filename', 'hosting_site', 'preview_url',
)

