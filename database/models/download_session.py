"""
下载会话模型定义

记录每次帖子下载任务的配置、状态和计数
"""

from sqlalchemy import Column, String, Text, Integer, DateTime, Boolean, JSON
from sqlalchemy.orm import relationship

from database.models.base import BaseModel
from database.records import SessionRecord, SessionStatus, OutputFormat


class DownloadSessionModel(BaseModel):
    """
    下载会话表

    记录每次下载任务的信息，包括：
    - 帖子地址和页码范围
    - 下载选项
    - 执行状态和计数
    - 错误信息
    """
    __tablename__ = "download_sessions"

    # 帖子信息
    thread_url = Column(Text, nullable=False, comment="帖子URL")
    thread_title = Column(Text, comment="帖子标题")
    from_page = Column(Integer, nullable=False, comment="起始页")
    to_page = Column(Integer, nullable=False, comment="结束页（包含）")

    # 下载选项
    output_format = Column(String(20), nullable=False, default=OutputFormat.INDIVIDUAL.value,
                           comment="输出方式：individual-单独文件，archive-压缩包")
    concurrency_limit = Column(Integer, nullable=False, default=3, comment="并发下载数")
    retry_enabled = Column(Boolean, nullable=False, default=True, comment="是否重试")
    skip_existing = Column(Boolean, nullable=False, default=False, comment="是否跳过已存在文件")
    preserve_filenames = Column(Boolean, nullable=False, default=True, comment="是否保留原文件名")
    custom_directory = Column(Text, comment="自定义下载目录")
    selected_images = Column(JSON, comment="预先选中的图片（JSON格式）")

    # 执行状态
    status = Column(String(20), nullable=False, default=SessionStatus.PENDING.value,
                    comment="状态：pending-等待，active-运行中，completed-完成，failed-失败，cancelled-取消")
    total_images = Column(Integer, nullable=False, default=0, comment="图片总数")
    completed_images = Column(Integer, nullable=False, default=0, comment="下载成功数")
    failed_images = Column(Integer, nullable=False, default=0, comment="下载失败数")
    archive_path = Column(Text, comment="压缩包路径")
    started_at = Column(DateTime(timezone=True), comment="开始时间")
    completed_at = Column(DateTime(timezone=True), comment="结束时间")
    error_message = Column(Text, comment="错误信息")

    images = relationship(
        "DownloadedImageModel",
        back_populates="session",
        cascade="all, delete-orphan",
    )

    def __repr__(self):
        return f"<DownloadSessionModel(id={self.id}, thread_url='{self.thread_url[:50]}', status='{self.status}')>"

    def to_record(self) -> SessionRecord:
        """转换为与存储无关的记录"""
        return SessionRecord(
            id=self.id,
            thread_url=self.thread_url,
            thread_title=self.thread_title,
            from_page=self.from_page,
            to_page=self.to_page,
            output_format=OutputFormat(self.output_format),
            concurrency_limit=self.concurrency_limit,
            retry_enabled=self.retry_enabled,
            skip_existing=self.skip_existing,
            preserve_filenames=self.preserve_filenames,
            custom_directory=self.custom_directory,
            selected_images=self.selected_images,
            status=SessionStatus(self.status),
            total_images=self.total_images or 0,
            completed_images=self.completed_images or 0,
            failed_images=self.failed_images or 0,
            archive_path=self.archive_path,
            started_at=self.started_at,
            completed_at=self.completed_at,
            error_message=self.error_message,
            created_at=self.created_at,
        )
