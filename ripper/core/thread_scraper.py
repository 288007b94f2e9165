"""
帖子页面抓取

获取帖子的单个页面，提取其中指向图床的链接
"""

import re
import html
import asyncio
import logging
from dataclasses import dataclass, field
from typing import List, Optional, Set, Dict, Any

import aiohttp
from bs4 import BeautifulSoup

from config.settings import ForumSettings
from ripper.errors import ScrapeError
from ripper.utils.url_parser import URLParser, HOSTING_SITES

logger = logging.getLogger(__name__)


# 未被 <a><img></a> 包裹的图床链接
HOSTING_URL_PATTERN = re.compile(
    r'https?://(?:[a-z0-9-]+\.)*(?:' + '|'.join(re.escape(site) for site in HOSTING_SITES) + r')'
    r'/[^\s"\'<>()\[\]{}]+',
    re.IGNORECASE,
)

IMGUR_ID_PATTERN = re.compile(r'imgur\.com/([a-zA-Z0-9]+)(?:\.[a-zA-Z]+)?/?$')

SUMMARY_LENGTH = 200


@dataclass
class ScrapedImage:
    """页面中的一个图床引用"""
    preview_url: str
    hosting_page: str
    hosting_site: str
    page_number: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            'previewUrl': self.preview_url,
            'hostingPage': self.hosting_page,
            'hostingSite': self.hosting_site,
            'pageNumber': self.page_number,
        }


@dataclass
class ThreadPage:
    """一个帖子页面的抓取结果"""
    page_number: int
    title: Optional[str] = None
    text: str = ""
    images: List[ScrapedImage] = field(default_factory=list)

    @property
    def summary(self) -> str:
        if len(self.text) <= SUMMARY_LENGTH:
            return self.text
        return self.text[:SUMMARY_LENGTH] + '...'


class ThreadScraper:
    """
    帖子抓取器

    功能：
    - 按帖子ID和页码拼接页面地址
    - 从帖子正文中提取图床链接和预览图
    - 正则兜底扫描未包裹在链接中的图床地址
    - 页面内按图床页面URL去重
    """

    def __init__(self, http, forum: ForumSettings = None, page_timeout: float = 30.0):
        """
        初始化抓取器

        Args:
            http: 提供 fetch_text(url, timeout) 的HTTP会话管理器
            forum: 论坛配置
            page_timeout: 页面请求超时（秒）
        """
        self.http = http
        self.forum = forum or ForumSettings()
        self.page_timeout = page_timeout
        self.url_parser = URLParser(self.forum.base_url)

    def page_url(self, thread_id: str, page_number: int) -> str:
        """帖子指定页的地址"""
        return self.forum.page_url_template.format(
            base_url=self.forum.base_url.rstrip('/'),
            thread_id=thread_id,
            page=page_number,
        )

    async def fetch_page(self, thread_id: str, page_number: int) -> ThreadPage:
        """
        抓取帖子的一页

        Args:
            thread_id: 帖子ID
            page_number: 页码

        Returns:
            页面抓取结果

        Raises:
            ScrapeError: 网络错误、超时或非成功响应，不在内部重试
        """
        url = self.page_url(thread_id, page_number)
        try:
            content = await self.http.fetch_text(url, timeout=self.page_timeout)
        except aiohttp.ClientResponseError as e:
            raise ScrapeError(f"第{page_number}页抓取失败: HTTP {e.status}", page_number) from e
        except asyncio.TimeoutError as e:
            raise ScrapeError(f"第{page_number}页抓取超时", page_number) from e
        except aiohttp.ClientError as e:
            raise ScrapeError(f"第{page_number}页抓取失败: {e}", page_number) from e

        page = self.parse_page(content, page_number)
        logger.info(f"第{page_number}页发现 {len(page.images)} 个图床链接")
        return page

    async def scrape_page(self, thread_id: str, page_number: int) -> List[ScrapedImage]:
        """抓取一页并只返回图床引用"""
        page = await self.fetch_page(thread_id, page_number)
        return page.images

    async def scan_pages(self, thread_url: str, page_count: int = 3) -> List[ThreadPage]:
        """
        从URL所在页开始连续扫描若干页，用于下载前预览

        Args:
            thread_url: 帖子URL
            page_count: 最多扫描的页数

        Returns:
            成功抓取的页面，遇到第一个失败的页面即停止
        """
        location = URLParser.parse_thread_url(thread_url)
        start_page = location.current_page or 1

        pages: List[ThreadPage] = []
        for page_number in range(start_page, start_page + page_count):
            try:
                pages.append(await self.fetch_page(location.thread_id, page_number))
            except ScrapeError as e:
                logger.info(f"第{page_number}页不可用，停止扫描: {e}")
                break
        return pages

    def parse_page(self, content: str, page_number: int) -> ThreadPage:
        """
        解析页面HTML

        Args:
            content: 页面HTML
            page_number: 页码

        Returns:
            页面抓取结果
        """
        soup = BeautifulSoup(content, 'html.parser')
        posts = soup.select(', '.join(self.forum.post_selectors))

        images: List[ScrapedImage] = []
        seen: Set[str] = set()
        wrapped: Set[str] = set()

        for post in posts:
            for link in post.find_all('a', href=True):
                href = self.url_parser.to_absolute_url(link['href'])
                if not URLParser.is_valid_url(href) or URLParser.match_hosting_site(href) is None:
                    continue

                wrapped.add(href)
                preview = None
                img = link.find('img')
                if img is not None:
                    # 懒加载图片的 src 是占位图，data-src 才是预览图，两者都不能再被兜底扫描收录
                    sources = [self.url_parser.to_absolute_url(s) for s in (img.get('src'), img.get('data-src')) if s]
                    wrapped.update(sources)
                    if sources:
                        preview = sources[0]

                if href in seen:
                    continue
                seen.add(href)
                images.append(self._build_image(href, preview, page_number))

        # 实体解码后再做正则兜底扫描
        decoded = html.unescape(content)
        for match in HOSTING_URL_PATTERN.finditer(decoded):
            url = match.group(0).rstrip('.,;:!?')
            if url in seen or url in wrapped:
                continue
            seen.add(url)
            images.append(self._build_image(url, None, page_number))

        text = '\n'.join(
            post.get_text(' ', strip=True) for post in posts
        ).strip()

        return ThreadPage(
            page_number=page_number,
            title=self._extract_title(soup),
            text=text,
            images=images,
        )

    def _build_image(self, hosting_page: str, preview: Optional[str], page_number: int) -> ScrapedImage:
        return ScrapedImage(
            preview_url=preview or self.derive_preview_url(hosting_page),
            hosting_page=hosting_page,
            hosting_site=URLParser.extract_hostname(hosting_page) or 'unknown',
            page_number=page_number,
        )

    def derive_preview_url(self, hosting_page: str) -> str:
        """
        没有预览图时按图床的缩略图命名规则推导预览地址

        Args:
            hosting_page: 图床页面URL

        Returns:
            预览图地址，无法推导时返回占位图地址
        """
        if URLParser.match_hosting_site(hosting_page) == 'imgur.com':
            match = IMGUR_ID_PATTERN.search(hosting_page.split('?')[0])
            if match:
                return f"https://i.imgur.com/{match.group(1)}s.jpg"
        return self.forum.placeholder_url

    @staticmethod
    def _extract_title(soup: BeautifulSoup) -> Optional[str]:
        heading = soup.select_one('h1.p-title-value') or soup.select_one('h1')
        if heading is not None:
            title = heading.get_text(' ', strip=True)
            if title:
                return title
        if soup.title is not None and soup.title.string:
            return soup.title.string.strip()
        return None
