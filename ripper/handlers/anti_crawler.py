"""
请求伪装处理器

为论坛和图床请求生成浏览器风格的请求头，并控制请求间隔
"""

import random
import asyncio
import logging
from typing import List, Dict, Any, Optional
from urllib.parse import urlparse

from fake_useragent import UserAgent

logger = logging.getLogger(__name__)


class AntiCrawlerHandler:
    """
    请求伪装处理器

    功能：
    - User-Agent轮换
    - 请求头伪装
    - Referer设置
    - 请求延迟控制
    """

    DEFAULT_USER_AGENTS = [
        'Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36',
        'Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36',
        'Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:120.0) Gecko/20100101 Firefox/120.0',
        'Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/605.1.15 (KHTML, like Gecko) Version/17.1 Safari/605.1.15',
        'Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36',
    ]

    def __init__(self, config: Dict[str, Any]):
        """
        初始化请求伪装处理器

        Args:
            config: 请求伪装配置（AntiCrawlerSettings 转换成的字典）
        """
        self.config = config
        self.user_agents: List[str] = self.DEFAULT_USER_AGENTS.copy()
        self.request_count = 0
        self.last_request_time = 0.0

        self.ua: Optional[UserAgent] = None
        if self.config.get('use_random_user_agent', True):
            try:
                self.ua = UserAgent()
            except Exception as e:
                logger.warning(f"初始化fake_useragent失败，使用内置User-Agent列表: {e}")

    def get_user_agent(self) -> str:
        """获取User-Agent"""
        if not self.config.get('use_random_user_agent', True):
            return self.user_agents[0]

        if self.ua is not None:
            try:
                return self.ua.random
            except Exception as e:
                logger.debug(f"fake_useragent获取失败: {e}")

        return random.choice(self.user_agents)

    def get_headers(self, url: str = None, referer: str = None) -> Dict[str, str]:
        """
        获取请求头

        Args:
            url: 目标URL
            referer: 显式指定的Referer，优先于按目标URL生成的Referer

        Returns:
            请求头字典
        """
        headers = dict(self.config.get('default_headers') or {})
        headers['User-Agent'] = self.get_user_agent()

        if referer:
            headers['Referer'] = referer
        elif url and self.config.get('add_referer', False):
            parsed = urlparse(url)
            headers['Referer'] = f"{parsed.scheme}://{parsed.netloc}/"

        return headers

    async def apply_delay(self):
        """应用请求延迟"""
        loop = asyncio.get_running_loop()
        current_time = loop.time()

        if self.config.get('random_delay', False) and self.last_request_time > 0:
            elapsed = current_time - self.last_request_time
            delay = random.uniform(self.config.get('min_delay', 0.5), self.config.get('max_delay', 1.5))
            if elapsed < delay:
                sleep_time = delay - elapsed
                logger.debug(f"应用请求延迟: {sleep_time:.2f}秒")
                await asyncio.sleep(sleep_time)

        self.last_request_time = loop.time()
        self.request_count += 1

    def get_statistics(self) -> Dict[str, Any]:
        """获取统计信息"""
        return {
            'request_count': self.request_count,
            'use_random_user_agent': self.config.get('use_random_user_agent', True),
            'random_delay': self.config.get('random_delay', False),
        }
