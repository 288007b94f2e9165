"""
异常定义

下载引擎各阶段抛出的异常类型
"""


class RipperError(Exception):
    """所有引擎异常的基类"""


class InvalidUrlError(RipperError):
    """帖子URL无法解析（在创建会话之前抛出）"""


class ScrapeError(RipperError):
    """帖子页面抓取失败，会导致整个会话失败"""

    def __init__(self, message: str, page_number: int = None):
        super().__init__(message)
        self.page_number = page_number


class ResolutionError(RipperError):
    """图床页面无法解析出图片直链，仅影响单张图片"""


class DownloadError(RipperError):
    """图片下载失败，仅影响单张图片"""


class ArchiveError(RipperError):
    """压缩包打包失败或压缩包不存在"""


class AlreadyRunningError(RipperError):
    """会话已在运行中"""


class SessionNotFoundError(RipperError):
    """会话不存在"""
