"""
图片下载器

流式下载图片到本地文件，并回报下载进度
"""

import os
import asyncio
import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional, Callable, AsyncIterator

import aiohttp

from ripper.errors import DownloadError

logger = logging.getLogger(__name__)


class ImageDownloader:
    """
    图片下载器

    功能：
    - 流式下载，边下载边写文件
    - 按声明的长度计算下载百分比
    - 先写入 .part 临时文件，成功后再改名
    """

    PART_SUFFIX = '.part'

    def __init__(self, http, chunk_size: int = 64 * 1024, timeout: float = 60.0):
        """
        初始化下载器

        Args:
            http: 提供 stream(url, timeout, referer) 的HTTP会话管理器
            chunk_size: 每次读取的字节数
            timeout: 下载超时（秒）
        """
        self.http = http
        self.chunk_size = chunk_size
        self.timeout = timeout

    @asynccontextmanager
    async def open_stream(self, url: str, referer: str = None) -> AsyncIterator[aiohttp.ClientResponse]:
        """
        打开图片响应流

        Raises:
            DownloadError: 网络错误、超时或非成功响应
        """
        try:
            async with self.http.stream(url, timeout=self.timeout, referer=referer) as response:
                yield response
        except aiohttp.ClientResponseError as e:
            raise DownloadError(f"HTTP {e.status}: {e.message}") from e
        except asyncio.TimeoutError as e:
            raise DownloadError(f"下载超时: {url}") from e
        except aiohttp.ClientError as e:
            raise DownloadError(f"下载失败: {e}") from e

    async def download(self, url: str, destination: Path, referer: str = None,
                       on_progress: Optional[Callable[[int], None]] = None) -> int:
        """
        下载单个图片

        Args:
            url: 图片直链
            destination: 目标文件路径
            referer: 请求的Referer（通常是图床页面）
            on_progress: 进度回调，参数为0-100的百分比，只在百分比变化时调用

        Returns:
            写入的字节数

        Raises:
            DownloadError: 网络错误、超时、非成功响应或写文件失败
        """
        destination = Path(destination)
        part_path = destination.with_name(destination.name + self.PART_SUFFIX)

        try:
            destination.parent.mkdir(parents=True, exist_ok=True)
            async with self.open_stream(url, referer=referer) as response:
                total = response.content_length or 0
                received = 0
                last_percent = -1

                with open(part_path, 'wb') as f:
                    async for chunk in response.content.iter_chunked(self.chunk_size):
                        f.write(chunk)
                        received += len(chunk)

                        percent = min(int(received * 100 / total), 100) if total > 0 else 0
                        if on_progress is not None and percent != last_percent:
                            last_percent = percent
                            on_progress(percent)

            os.replace(part_path, destination)

        except DownloadError:
            self._discard(part_path)
            raise
        except OSError as e:
            self._discard(part_path)
            raise DownloadError(f"写入文件失败: {e}") from e

        logger.info(f"下载成功: {url} -> {destination} ({received} 字节)")
        return received

    @staticmethod
    def _discard(path: Path):
        try:
            path.unlink(missing_ok=True)
        except OSError as e:
            logger.warning(f"删除临时文件失败: {path} -> {e}")
