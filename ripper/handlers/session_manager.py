"""
HTTP会话管理器

管理aiohttp会话的生命周期，提供页面文本获取和流式下载
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional, Dict, Any, AsyncIterator

import aiohttp
import chardet

from ripper.handlers.anti_crawler import AntiCrawlerHandler

logger = logging.getLogger(__name__)


class HttpSessionManager:
    """
    HTTP会话管理器

    功能：
    - HTTP会话生命周期管理
    - 请求伪装集成
    - 响应编码检测
    - 流式响应

    非2xx响应会抛出 aiohttp.ClientResponseError，由调用方转换为业务异常
    """

    def __init__(self, anti_crawler_config: Dict[str, Any],
                 page_timeout: float = 30.0, download_timeout: float = 60.0):
        """
        初始化会话管理器

        Args:
            anti_crawler_config: 请求伪装配置
            page_timeout: 页面请求超时（秒）
            download_timeout: 图片下载超时（秒）
        """
        self.anti_crawler = AntiCrawlerHandler(anti_crawler_config)
        self.page_timeout = page_timeout
        self.download_timeout = download_timeout
        self.session: Optional[aiohttp.ClientSession] = None

    async def __aenter__(self):
        await self.create_session()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close_session()

    async def create_session(self):
        """创建HTTP会话"""
        if self.session and not self.session.closed:
            return

        connector = aiohttp.TCPConnector(limit=100, limit_per_host=10, ttl_dns_cache=300)
        self.session = aiohttp.ClientSession(connector=connector)
        logger.info("HTTP会话创建成功")

    async def close_session(self):
        """关闭HTTP会话"""
        if self.session and not self.session.closed:
            await self.session.close()
            logger.info("HTTP会话已关闭")
        self.session = None

    async def _ensure_session(self) -> aiohttp.ClientSession:
        if not self.session or self.session.closed:
            await self.create_session()
        return self.session

    async def fetch_text(self, url: str, timeout: float = None, referer: str = None) -> str:
        """
        获取页面文本

        Args:
            url: 页面URL
            timeout: 超时时间（秒），默认使用页面超时
            referer: 请求的Referer

        Returns:
            解码后的页面文本
        """
        session = await self._ensure_session()
        await self.anti_crawler.apply_delay()

        client_timeout = aiohttp.ClientTimeout(total=timeout or self.page_timeout)
        headers = self.anti_crawler.get_headers(url, referer=referer)

        logger.debug(f"获取页面: {url}")
        async with session.get(url, headers=headers, timeout=client_timeout) as response:
            response.raise_for_status()
            raw_content = await response.read()
            return self._decode(raw_content, response.charset)

    @asynccontextmanager
    async def stream(self, url: str, timeout: float = None,
                     referer: str = None) -> AsyncIterator[aiohttp.ClientResponse]:
        """
        以流的方式打开响应

        Args:
            url: 资源URL
            timeout: 超时时间（秒），默认使用下载超时
            referer: 请求的Referer

        Yields:
            已检查状态码的响应对象
        """
        session = await self._ensure_session()
        client_timeout = aiohttp.ClientTimeout(total=timeout or self.download_timeout)
        headers = self.anti_crawler.get_headers(url, referer=referer)

        logger.debug(f"开始下载: {url}")
        async with session.get(url, headers=headers, timeout=client_timeout) as response:
            response.raise_for_status()
            yield response

    @staticmethod
    def _decode(raw_content: bytes, charset: Optional[str]) -> str:
        """按响应头编码解码，失败时用chardet检测"""
        if charset:
            try:
                return raw_content.decode(charset)
            except (UnicodeDecodeError, LookupError) as e:
                logger.warning(f"使用响应头编码 {charset} 解码失败: {e}")

        result = chardet.detect(raw_content[:10000])
        encoding = result.get('encoding')
        if encoding and result.get('confidence', 0) > 0.7:
            try:
                return raw_content.decode(encoding)
            except (UnicodeDecodeError, LookupError):
                logger.debug(f"chardet检测编码 {encoding} 解码失败")

        return raw_content.decode('utf-8', errors='replace')

    def get_statistics(self) -> Dict[str, Any]:
        """获取统计信息"""
        stats = self.anti_crawler.get_statistics()
        stats['session_active'] = self.session is not None and not self.session.closed
        return stats
