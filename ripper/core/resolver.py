"""
图床页面解析

把图床页面URL解析为原图直链，每个图床一个适配器
"""

import re
import asyncio
import logging
from typing import Dict, Optional, Type

import aiohttp
from bs4 import BeautifulSoup

from ripper.errors import ResolutionError
from ripper.utils.url_parser import URLParser

logger = logging.getLogger(__name__)


def _absolute(src: str, page_url: str) -> str:
    """协议相对和相对地址转为绝对地址"""
    src = src.strip()
    if src.startswith('//'):
        return 'https:' + src
    return URLParser(page_url).to_absolute_url(src)


class HostAdapter:
    """
    图床适配器基类

    子类实现 extract()，从页面中找出原图地址
    """

    name = 'generic'

    def __init__(self, http, timeout: float = 30.0):
        self.http = http
        self.timeout = timeout

    async def resolve(self, url: str) -> str:
        """
        解析图床页面

        Args:
            url: 图床页面URL

        Returns:
            原图直链
        """
        soup = await self._fetch(url)
        src = self.extract(soup, url)
        if not src:
            raise ResolutionError(f"{self.name} 页面中找不到图片: {url}")
        return _absolute(src, url)

    async def _fetch(self, url: str) -> BeautifulSoup:
        try:
            content = await self.http.fetch_text(url, timeout=self.timeout)
        except aiohttp.ClientResponseError as e:
            raise ResolutionError(f"图床页面请求失败: HTTP {e.status} {url}") from e
        except asyncio.TimeoutError as e:
            raise ResolutionError(f"图床页面请求超时: {url}") from e
        except aiohttp.ClientError as e:
            raise ResolutionError(f"图床页面请求失败: {e}") from e
        return BeautifulSoup(content, 'html.parser')

    def extract(self, soup: BeautifulSoup, url: str) -> Optional[str]:
        raise NotImplementedError

    @staticmethod
    def _first_src(soup: BeautifulSoup, *selectors: str) -> Optional[str]:
        for selector in selectors:
            element = soup.select_one(selector)
            if element is not None and element.get('src'):
                return element['src']
        return None


class ImgurAdapter(HostAdapter):
    name = 'imgur'

    ID_PATTERN = re.compile(r'imgur\.com/([a-zA-Z0-9]+)')

    async def resolve(self, url: str) -> str:
        # i.imgur.com 上的直链不需要再请求页面
        if URLParser.extract_hostname(url) == 'i.imgur.com' and URLParser.is_image_url(url):
            return url
        return await super().resolve(url)

    def extract(self, soup, url):
        link = soup.select_one('link[rel="image_src"]')
        if link is not None and link.get('href'):
            return link['href']

        match = self.ID_PATTERN.search(url)
        if match:
            return f"https://i.imgur.com/{match.group(1)}.jpg"
        return None


class ImageTwistAdapter(HostAdapter):
    name = 'imagetwist'

    def extract(self, soup, url):
        return self._first_src(soup, '.pic img', '#image')


class PostImgAdapter(HostAdapter):
    name = 'postimg'

    def extract(self, soup, url):
        return self._first_src(soup, '#main-image', '.image img')


class ImgBoxAdapter(HostAdapter):
    name = 'imgbox'

    def extract(self, soup, url):
        return self._first_src(soup, '#img', '.image img')


class ImageBamAdapter(HostAdapter):
    name = 'imagebam'

    def extract(self, soup, url):
        src = self._first_src(soup, 'img.main-image')
        if src:
            return src
        meta = soup.select_one('meta[property="og:image"]')
        if meta is not None and meta.get('content'):
            return meta['content']
        return None


class GenericAdapter(HostAdapter):
    """未知图床：取第一个看起来像原图的 <img>"""

    name = 'generic'

    EXTENSIONS = ('.jpg', '.jpeg', '.png', '.gif', '.webp')
    EXCLUDED = ('thumbnail', 'preview')

    def extract(self, soup, url):
        images = [img['src'] for img in soup.find_all('img', src=True)]
        for ext in self.EXTENSIONS:
            for src in images:
                if ext in src.lower() and not any(word in src.lower() for word in self.EXCLUDED):
                    return src
        return None


# 图床域名 -> 适配器
ADAPTERS: Dict[str, Type[HostAdapter]] = {
    'imgur.com': ImgurAdapter,
    'imagetwist.com': ImageTwistAdapter,
    'postimg.cc': PostImgAdapter,
    'imgbox.com': ImgBoxAdapter,
    'imagebam.com': ImageBamAdapter,
}


class Resolver:
    """按主机名分派到对应适配器"""

    def __init__(self, http, timeout: float = 30.0):
        self.http = http
        self.timeout = timeout
        self._adapters: Dict[Type[HostAdapter], HostAdapter] = {}

    def adapter_for(self, url: str) -> HostAdapter:
        adapter_cls = ADAPTERS.get(URLParser.match_hosting_site(url), GenericAdapter)
        if adapter_cls not in self._adapters:
            self._adapters[adapter_cls] = adapter_cls(self.http, self.timeout)
        return self._adapters[adapter_cls]

    async def resolve(self, url: str) -> str:
        """
        解析图床页面为原图直链

        Args:
            url: 图床页面URL

        Returns:
            原图直链

        Raises:
            ResolutionError: URL无效、请求失败或页面中找不到图片
        """
        if not URLParser.is_valid_url(url):
            raise ResolutionError(f"无法解析的图床地址: {url}")

        adapter = self.adapter_for(url)
        direct_url = await adapter.resolve(url)
        logger.debug(f"{adapter.name} 解析结果: {url} -> {direct_url}")
        return direct_url
