"""
下载请求模型

HTTP接口和命令行共用的请求参数校验
"""

from typing import Optional, List, Dict, Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from database.records import OutputFormat


class SelectedImage(BaseModel):
    """预先选中的图片，提供时跳过帖子抓取"""
    model_config = ConfigDict(populate_by_name=True)

    preview_url: str = Field("", alias="previewUrl")
    hosting_page: str = Field(..., alias="hostingPage")
    hosting_site: Optional[str] = Field(None, alias="hostingSite")
    page_number: int = Field(1, ge=1, alias="pageNumber")


class DownloadRequest(BaseModel):
    """开始下载的请求"""
    model_config = ConfigDict(populate_by_name=True)

    thread_url: str = Field(..., alias="threadUrl")
    from_page: int = Field(1, ge=1, alias="fromPage")
    to_page: int = Field(1, ge=1, alias="toPage")
    output_format: OutputFormat = Field(OutputFormat.INDIVIDUAL, alias="outputFormat")
    concurrency_limit: Optional[int] = Field(None, ge=1, le=8, alias="concurrencyLimit")
    retry_enabled: bool = Field(True, alias="retryEnabled")
    preserve_filenames: bool = Field(True, alias="preserveFilenames")
    skip_existing: bool = Field(False, alias="skipExisting")
    custom_directory: Optional[str] = Field(None, alias="customDirectory")
    selected_images: Optional[List[SelectedImage]] = Field(None, alias="selectedImages")

    @field_validator('output_format', mode='before')
    @classmethod
    def _accept_zip(cls, value):
        # 旧客户端使用 zip 表示压缩包
        if isinstance(value, str) and value.lower() == 'zip':
            return OutputFormat.ARCHIVE
        return value

    @field_validator('custom_directory')
    @classmethod
    def _blank_directory(cls, value):
        if value is not None and not value.strip():
            return None
        return value

    @model_validator(mode='after')
    def _check_page_range(self):
        if self.to_page < self.from_page:
            raise ValueError("toPage 不能小于 fromPage")
        return self

    def to_session_values(self) -> Dict[str, Any]:
        """转换为创建会话的字段"""
        return {
            'thread_url': self.thread_url.strip(),
            'from_page': self.from_page,
            'to_page': self.to_page,
            'output_format': self.output_format,
            'concurrency_limit': self.concurrency_limit,
            'retry_enabled': self.retry_enabled,
            'preserve_filenames': self.preserve_filenames,
            'skip_existing': self.skip_existing,
            'custom_directory': self.custom_directory,
            'selected_images': (
                [image.model_dump(by_alias=True) for image in self.selected_images]
                if self.selected_images else None
            ),
        }
