"""
URL解析和处理工具

提供帖子URL解析、图床域名识别、URL标准化等功能
"""

import re
import logging
from dataclasses import dataclass
from urllib.parse import urljoin, urlparse, urlunparse, parse_qs
from typing import Optional, Tuple
from pathlib import Path

from ripper.errors import InvalidUrlError

logger = logging.getLogger(__name__)


# 支持的图床站点（按域名后缀匹配）
HOSTING_SITES: Tuple[str, ...] = (
    'imgur.com',
    'imagetwist.com',
    'postimg.cc',
    'imgbox.com',
    'turboimagehost.com',
    'imagebam.com',
    'imagevenue.com',
)

IMAGE_EXTENSIONS = {'.jpg', '.jpeg', '.png', '.gif', '.webp', '.bmp'}


@dataclass(frozen=True)
class ThreadLocation:
    """帖子URL解析结果"""
    thread_id: str
    current_page: Optional[int] = None


class URLParser:
    """
    URL解析器

    功能：
    - 帖子URL解析（帖子ID、当前页码）
    - 图床域名识别
    - URL标准化和相对URL转绝对URL
    - 文件名提取
    """

    # 帖子路径模式，按从具体到宽泛的顺序尝试，第一个命中即返回
    THREAD_PATTERNS = [
        re.compile(r'/threads/.*?\.(\d+)'),          # /threads/thread-name.12345/
        re.compile(r'/threads/(\d+)-'),              # /threads/12345-thread-name/
        re.compile(r'/threads/[^/]*?(\d{6,})'),      # /threads/name123456
    ]

    PAGE_PATH_PATTERN = re.compile(r'/page-(\d+)')

    def __init__(self, base_url: str):
        """
        初始化URL解析器

        Args:
            base_url: 基础URL，用于解析相对URL
        """
        self.base_url = self.normalize_url(base_url)

    @classmethod
    def parse_thread_url(cls, url: str) -> ThreadLocation:
        """
        解析帖子URL

        Args:
            url: 帖子URL

        Returns:
            帖子ID和可选的当前页码

        Raises:
            InvalidUrlError: 无法提取帖子ID
        """
        if not url or not isinstance(url, str):
            raise InvalidUrlError("帖子URL不能为空")

        parsed = urlparse(url.strip())
        if parsed.scheme not in ('http', 'https') or not parsed.netloc:
            raise InvalidUrlError(f"无效的帖子URL: {url}")

        thread_id = None
        for pattern in cls.THREAD_PATTERNS:
            match = pattern.search(parsed.path)
            if match:
                thread_id = match.group(1)
                break

        if thread_id is None:
            raise InvalidUrlError(f"无法从URL中提取帖子ID: {url}")

        return ThreadLocation(thread_id=thread_id, current_page=cls._extract_page(parsed))

    @classmethod
    def _extract_page(cls, parsed) -> Optional[int]:
        """从查询参数或 /page-N 路径段中读取页码"""
        values = parse_qs(parsed.query).get('page')
        if values and values[0].isdigit():
            return int(values[0])

        match = cls.PAGE_PATH_PATTERN.search(parsed.path)
        if match:
            return int(match.group(1))

        return None

    @staticmethod
    def normalize_url(url: str) -> str:
        """
        标准化URL

        Args:
            url: 原始URL

        Returns:
            标准化后的URL
        """
        if not url:
            return ""

        url = url.strip()

        # 协议相对URL
        if url.startswith('//'):
            url = 'https:' + url
        elif not url.startswith(('http://', 'https://')):
            url = 'https://' + url

        parsed = urlparse(url)
        netloc = parsed.netloc.lower()

        # 移除默认端口
        if netloc.endswith(':80') and parsed.scheme == 'http':
            netloc = netloc[:-3]
        elif netloc.endswith(':443') and parsed.scheme == 'https':
            netloc = netloc[:-4]

        path = parsed.path or '/'

        return urlunparse((parsed.scheme, netloc, path, parsed.params, parsed.query, ''))

    @staticmethod
    def extract_hostname(url: str) -> str:
        """提取主机名（不含端口和 www. 前缀）"""
        try:
            hostname = urlparse(url).hostname or ""
        except ValueError:
            return ""
        return hostname[4:] if hostname.startswith('www.') else hostname

    @classmethod
    def match_hosting_site(cls, url: str) -> Optional[str]:
        """
        判断URL是否属于支持的图床

        Args:
            url: URL

        Returns:
            匹配到的图床域名，例如 i.imgur.com -> imgur.com；不匹配返回None
        """
        hostname = cls.extract_hostname(url)
        if not hostname:
            return None

        for site in HOSTING_SITES:
            if hostname == site or hostname.endswith('.' + site):
                return site
        return None

    def to_absolute_url(self, url: str) -> str:
        """
        将相对URL转换为绝对URL

        Args:
            url: 相对或绝对URL

        Returns:
            绝对URL
        """
        if not url:
            return ""

        url = url.strip()
        if url.startswith(('http://', 'https://')):
            return url
        if url.startswith('//'):
            return f"{urlparse(self.base_url).scheme}:{url}"
        return urljoin(self.base_url, url)

    @staticmethod
    def is_valid_url(url: str) -> bool:
        """验证URL是否为有效的 http(s) URL"""
        if not url:
            return False
        try:
            parsed = urlparse(url)
        except ValueError:
            return False
        return parsed.scheme in ('http', 'https') and bool(parsed.netloc) and len(url) < 2048

    @staticmethod
    def is_image_url(url: str) -> bool:
        """根据扩展名判断是否为图片直链"""
        if not url:
            return False
        path = urlparse(url).path.lower()
        return Path(path).suffix in IMAGE_EXTENSIONS

    @staticmethod
    def extract_filename(url: str) -> str:
        """
        从URL中提取文件名

        Args:
            url: URL

        Returns:
            文件名；路径最后一段不含扩展名时返回空字符串
        """
        if not url:
            return ""
        try:
            path = urlparse(url).path
        except ValueError:
            return ""

        if path and path != '/':
            filename = Path(path).name
            if filename and '.' in filename:
                return filename
        return ""
