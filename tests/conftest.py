"""
测试公共夹具

用内存中的假HTTP会话代替网络，调度器不真正等待
"""

import asyncio
from contextlib import asynccontextmanager
from typing import Dict, List, Optional

import aiohttp
import pytest

from config.settings import Settings
from database.records import ImageStatus
from database.store import MemorySessionStore
from ripper.core.orchestrator import DownloadOrchestrator


FORUM = "https://vipergirls.to"
THREAD_URL = f"{FORUM}/threads/12345-summer-set"


def page_url(page: int, thread_id: str = "12345") -> str:
    return f"{FORUM}/threads/thread.{thread_id}/page-{page}"


def thread_html(links, title: str = "Summer Set", extra: str = "") -> str:
    """
    生成论坛帖子页面

    Args:
        links: (图床页面URL, 预览图URL或None) 列表
        title: 帖子标题
        extra: 追加到正文中的HTML
    """
    anchors = []
    for href, preview in links:
        if preview:
            anchors.append(f'<a href="{href}"><img src="{preview}" alt=""></a>')
        else:
            anchors.append(f'<a href="{href}">{href}</a>')
    return (
        f"<html><head><title>{title} | Forum</title></head><body>"
        f'<h1 class="p-title-value">{title}</h1>'
        f'<article><div class="message-body">Post text {" ".join(anchors)} {extra}</div></article>'
        f'<div class="footer"><a href="{FORUM}/help">Help</a></div>'
        f"</body></html>"
    )


def imagetwist_page(direct_url: str) -> str:
    return f'<html><body><div class="pic"><img src="{direct_url}"></div></body></html>'


class FakeContent:
    def __init__(self, body: bytes, chunk_size: int, delay: float):
        self.body = body
        self.chunk_size = chunk_size
        self.delay = delay

    async def iter_chunked(self, n: int):
        size = min(n, self.chunk_size)
        for start in range(0, len(self.body), size):
            if self.delay:
                await asyncio.sleep(self.delay)
            yield self.body[start:start + size]


class FakeResponse:
    def __init__(self, body: bytes, content_length: Optional[int], chunk_size: int = 4, delay: float = 0,
                 content_type: str = "image/jpeg"):
        self.status = 200
        self.content_length = content_length
        self.headers = {"Content-Type": content_type}
        self.content = FakeContent(body, chunk_size, delay)


class FakeHttp:
    """
    假HTTP会话管理器

    pages: URL -> 页面文本或异常
    files: URL -> 字节、异常，或按调用顺序依次使用的列表
    """

    def __init__(self):
        self.pages: Dict[str, object] = {}
        self.files: Dict[str, object] = {}
        self.fetched: List[str] = []
        self.streamed: List[str] = []
        self.referers: List[Optional[str]] = []
        self.stream_delay = 0.0
        self.declare_length = True
        self.gate: Optional[asyncio.Event] = None
        self.active_streams = 0
        self.max_active_streams = 0

    async def fetch_text(self, url: str, timeout: float = None, referer: str = None) -> str:
        self.fetched.append(url)
        value = self.pages.get(url)
        if value is None:
            raise aiohttp.ClientConnectionError(f"Cannot connect to {url}")
        if isinstance(value, BaseException):
            raise value
        return value

    @asynccontextmanager
    async def stream(self, url: str, timeout: float = None, referer: str = None):
        self.streamed.append(url)
        self.referers.append(referer)
        value = self.files.get(url)
        if isinstance(value, list):
            value = value.pop(0) if value else None
        if value is None:
            raise aiohttp.ClientConnectionError(f"Cannot connect to {url}")
        if isinstance(value, BaseException):
            raise value

        self.active_streams += 1
        self.max_active_streams = max(self.max_active_streams, self.active_streams)
        try:
            if self.gate is not None:
                await self.gate.wait()
            length = len(value) if self.declare_length else None
            yield FakeResponse(value, length, delay=self.stream_delay)
        finally:
            self.active_streams -= 1

    def add_image(self, hosting_page: str, direct_url: str, body=b"\xff\xd8\xff\xe0fake-jpeg-data"):
        """登记一张 imagetwist 风格的图片"""
        self.pages[hosting_page] = imagetwist_page(direct_url)
        self.files[direct_url] = body


class FakeScheduler:
    """记录重试延迟，不真正等待；设置 gate 后等到它被放行"""

    def __init__(self):
        self.delays: List[float] = []
        self.gate: Optional[asyncio.Event] = None

    async def sleep(self, delay: float, token=None) -> bool:
        self.delays.append(delay)
        if self.gate is not None:
            await self.gate.wait()
        await asyncio.sleep(0)
        return not (token is not None and token.cancelled)


class RecordingStore(MemorySessionStore):
    """
    记录每个会话同时处于 downloading 状态的图片数峰值

    每次状态或计数变化后检查 total == completed + failed + pending + downloading，
    不成立时记入 violations
    """

    def __init__(self):
        super().__init__()
        self.max_downloading: Dict[int, int] = {}
        self.checks = 0
        self.violations: List[str] = []

    def _check_counters(self, session_id):
        session = self.get_session(session_id)
        if session is None:
            return
        images = self.list_images(session_id)
        pending = sum(1 for i in images if i.status == ImageStatus.PENDING)
        downloading = sum(1 for i in images if i.status == ImageStatus.DOWNLOADING)
        self.checks += 1
        if session.total_images != session.completed_images + session.failed_images + pending + downloading:
            self.violations.append(
                f"total={session.total_images} completed={session.completed_images} "
                f"failed={session.failed_images} pending={pending} downloading={downloading}"
            )
        self.max_downloading[session_id] = max(self.max_downloading.get(session_id, 0), downloading)

    def transition_image(self, image_id, status, completed=0, failed=0, **changes):
        record = super().transition_image(image_id, status, completed=completed, failed=failed, **changes)
        if record is not None:
            self._check_counters(record.session_id)
        return record

    def update_session(self, session_id, **changes):
        record = super().update_session(session_id, **changes)
        if record is not None:
            self._check_counters(session_id)
        return record


@pytest.fixture
def http():
    return FakeHttp()


@pytest.fixture
def store():
    return RecordingStore()


@pytest.fixture
def scheduler():
    return FakeScheduler()


@pytest.fixture
def settings(tmp_path):
    settings = Settings()
    settings.downloader.download_root = str(tmp_path / "downloads")
    settings.logging.log_file = ""
    settings.logging.console_output = False
    return settings


@pytest.fixture
def orchestrator(settings, store, http, scheduler):
    engine = DownloadOrchestrator.from_settings(settings, store, http)
    engine.scheduler = scheduler
    return engine
