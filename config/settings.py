"""
配置项定义

所有配置分组的默认值
"""

from dataclasses import dataclass, field, asdict
from typing import Dict, Any, List, Optional


@dataclass
class DatabaseSettings:
    """数据库配置"""
    type: str = "sqlite"           # sqlite / postgresql / memory
    path: str = "data/ripper.db"
    host: str = "localhost"
    port: int = 5432
    name: str = "ripper"
    user: str = "ripper"
    password: str = ""
    url: Optional[str] = None      # 显式指定时优先使用


@dataclass
class DownloaderSettings:
    """下载引擎配置"""
    download_root: str = "downloads"
    page_timeout: float = 30.0
    download_timeout: float = 60.0
    default_concurrency: int = 3
    retry_delay: float = 5.0
    max_attempts: int = 2
    chunk_size: int = 64 * 1024


@dataclass
class ForumSettings:
    """论坛配置"""
    base_url: str = "https://vipergirls.to"
    page_url_template: str = "{base_url}/threads/thread.{thread_id}/page-{page}"
    post_selectors: List[str] = field(default_factory=lambda: [
        '.message-body',
        '.postcontent',
        'div[id^="post_message_"]',
    ])
    placeholder_url: str = "/api/placeholder/150/150"


@dataclass
class AntiCrawlerSettings:
    """请求伪装配置"""
    use_random_user_agent: bool = True
    add_referer: bool = False
    random_delay: bool = False
    min_delay: float = 0.5
    max_delay: float = 1.5
    default_headers: Dict[str, str] = field(default_factory=lambda: {
        'Accept': 'text/html,application/xhtml+xml,application/xml;q=0.9,image/avif,image/webp,*/*;q=0.8',
        'Accept-Language': 'en-US,en;q=0.9',
        'Connection': 'keep-alive',
        'Upgrade-Insecure-Requests': '1',
    })


@dataclass
class LoggingSettings:
    """日志配置"""
    level: str = "INFO"
    log_file: str = "logs/ripper.log"
    max_file_size: str = "10 MB"
    backup_count: int = 5
    console_output: bool = True
    verbose: bool = False
    format: str = "{time:YYYY-MM-DD HH:mm:ss} | {level} | {name}:{function}:{line} | {message}"


@dataclass
class ApiSettings:
    """HTTP服务配置"""
    host: str = "127.0.0.1"
    port: int = 8000


@dataclass
class Settings:
    """全部配置"""
    database: DatabaseSettings = field(default_factory=DatabaseSettings)
    downloader: DownloaderSettings = field(default_factory=DownloaderSettings)
    forum: ForumSettings = field(default_factory=ForumSettings)
    anti_crawler: AntiCrawlerSettings = field(default_factory=AntiCrawlerSettings)
    logging: LoggingSettings = field(default_factory=LoggingSettings)
    api: ApiSettings = field(default_factory=ApiSettings)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
