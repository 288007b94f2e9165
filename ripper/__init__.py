"""
下载引擎模块 - 负责论坛帖子图片的抓取和下载

包含以下子模块：
- core: 帖子抓取、图床解析、下载调度、打包和进度
- utils: URL解析、重试、日志
- handlers: HTTP会话和请求伪装
"""

from .core.orchestrator import DownloadOrchestrator
from .core.models import DownloadRequest
from .core.thread_scraper import ThreadScraper
from .core.resolver import Resolver
from .core.downloader import ImageDownloader
from .core.archiver import Archiver
from .handlers.session_manager import HttpSessionManager
from .utils.url_parser import URLParser

__version__ = "1.0.0"

__all__ = [
    "DownloadOrchestrator",
    "DownloadRequest",
    "ThreadScraper",
    "Resolver",
    "ImageDownloader",
    "Archiver",
    "HttpSessionManager",
    "URLParser",
]
