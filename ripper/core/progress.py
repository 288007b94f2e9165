"""
进度汇总

根据会话记录和正在下载的图片计算进度视图，不保存任何状态
"""

from dataclasses import dataclass, field
from typing import List, Dict, Any, Iterable

from database.records import SessionRecord, ImageRecord, SessionStatus


PARSING_PROGRESS = 10
DOWNLOAD_BASE = 15
DOWNLOAD_SPAN = 80
ARCHIVING_PROGRESS = 95


@dataclass
class ProgressView:
    """可轮询的进度视图"""
    session_id: int
    stage: str
    overall_progress: int
    current_stage: str
    completed_images: int = 0
    total_images: int = 0
    failed_images: int = 0
    active_downloads: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'sessionId': self.session_id,
            'stage': self.stage,
            'overallProgress': self.overall_progress,
            'currentStage': self.current_stage,
            'completedImages': self.completed_images,
            'totalImages': self.total_images,
            'failedImages': self.failed_images,
            'activeDownloads': list(self.active_downloads),
        }


def _download_percent(completed: int, total: int) -> int:
    if total <= 0:
        return 0
    return DOWNLOAD_BASE + int(completed * DOWNLOAD_SPAN / total + 0.5)


def build_progress(session: SessionRecord, active_images: Iterable[ImageRecord] = (),
                   archiving: bool = False) -> ProgressView:
    """
    计算会话进度

    Args:
        session: 会话记录
        active_images: 会话中状态为 downloading 的图片
        archiving: 是否正在生成压缩包

    Returns:
        进度视图
    """
    total = session.total_images or 0
    completed = session.completed_images or 0
    failed = session.failed_images or 0
    status = session.status

    if status == SessionStatus.COMPLETED:
        stage, overall, text = 'completed', 100, "下载完成"
    elif status == SessionStatus.PENDING:
        stage, overall, text = 'pending', 0, "等待开始"
    elif status == SessionStatus.ACTIVE:
        if total == 0:
            stage, overall, text = 'parsing', PARSING_PROGRESS, "正在解析帖子页面..."
        elif archiving:
            stage, overall, text = 'archiving', ARCHIVING_PROGRESS, "正在生成压缩包..."
        else:
            stage = 'downloading'
            overall = _download_percent(completed, total)
            text = f"正在下载图片 ({completed}/{total})"
    elif status == SessionStatus.CANCELLED:
        stage, overall, text = 'cancelled', _download_percent(completed, total), "下载已取消"
    else:
        stage = 'failed'
        overall = _download_percent(completed, total)
        text = f"下载失败: {session.error_message}" if session.error_message else "下载失败"

    return ProgressView(
        session_id=session.id,
        stage=stage,
        overall_progress=overall,
        current_stage=text,
        completed_images=completed,
        total_images=total,
        failed_images=failed,
        active_downloads=[
            {
                'filename': image.filename,
                'hostingSite': image.hosting_site or 'unknown',
                'progress': image.progress or 0,
            }
            for image in active_images
        ],
    )
