"""
图片数据模型定义

存储会话中每个图床链接的下载状态
"""

from sqlalchemy import Column, String, Integer, Text, ForeignKey
from sqlalchemy.orm import relationship

from database.models.base import BaseModel
from database.records import ImageRecord, ImageStatus


class DownloadedImageModel(BaseModel):
    """
    图片下载记录表

    每个抓取到的图床链接对应一条记录
    """
    __tablename__ = "downloaded_images"

    session_id = Column(Integer, ForeignKey("download_sessions.id", ondelete="CASCADE"),
                        nullable=False, index=True, comment="所属会话ID")
    page_number = Column(Integer, nullable=False, comment="所在页码")
    original_url = Column(Text, nullable=False, comment="图床页面URL")
    hosting_site = Column(String(100), comment="图床站点")
    preview_url = Column(Text, comment="预览图URL")
    filename = Column(String(255), nullable=False, comment="目标文件名")
    file_size = Column(Integer, comment="文件大小（字节）")
    status = Column(String(20), nullable=False, default=ImageStatus.PENDING.value,
                    comment="状态：pending-等待，downloading-下载中，completed-完成，failed-失败")
    progress = Column(Integer, nullable=False, default=0, comment="下载进度（0-100）")
    error_message = Column(Text, comment="错误信息")

    session = relationship("DownloadSessionModel", back_populates="images")

    def __repr__(self):
        return f"<DownloadedImageModel(id={self.id}, filename='{self.filename}', status='{self.status}')>"

    def to_record(self) -> ImageRecord:
        return ImageRecord(
            id=self.id,
            session_id=self.session_id,
            page_number=self.page_number,
            original_url=self.original_url,
            filename=self.filename,
            hosting_site=self.hosting_site,
            preview_url=self.preview_url,
            file_size=self.file_size,
            status=ImageStatus(self.status),
            progress=self.progress or 0,
            error_message=self.error_message,
        )
