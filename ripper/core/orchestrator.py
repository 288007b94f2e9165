"""
下载调度器

驱动整个下载流程：抓取帖子页面、创建图片记录、并发下载、打包
"""

import re
import asyncio
import logging
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional, Set

from config.settings import Settings
from database.records import (
    SessionRecord,
    ImageRecord,
    SessionStatus,
    ImageStatus,
    OutputFormat,
    SESSION_TRANSITIONS,
)
from database.store import SessionStore
from ripper.core.archiver import Archiver
from ripper.core.downloader import ImageDownloader
from ripper.core.models import DownloadRequest
from ripper.core.progress import ProgressView, build_progress
from ripper.core.resolver import Resolver
from ripper.core.thread_scraper import ThreadScraper, ScrapedImage
from ripper.errors import (
    RipperError,
    ResolutionError,
    DownloadError,
    ArchiveError,
    AlreadyRunningError,
    SessionNotFoundError,
)
from ripper.utils.retry import RetryPolicy, AsyncioScheduler, CancellationToken
from ripper.utils.url_parser import URLParser

logger = logging.getLogger(__name__)


UNSAFE_FILENAME_CHARS = re.compile(r'[\\/:*?"<>|\x00-\x1f]')


def generated_filename(hosting_site: Optional[str], page_number: int, seq: int) -> str:
    """按 图床_页码_序号.jpg 生成文件名"""
    site = URLParser.match_hosting_site(f"https://{hosting_site}/") if hosting_site else None
    stem = (site or hosting_site or 'image').split('.')[0]
    return f"{stem}_{page_number}_{seq:03d}.jpg"


def _now() -> datetime:
    return datetime.now(timezone.utc)


class DownloadOrchestrator:
    """
    下载调度器

    功能：
    - 会话启动与运行中会话登记（同一会话同时只允许一次执行）
    - 按页顺序抓取帖子
    - 每个会话独立的并发下载池
    - 单张图片失败重试
    - 压缩包打包
    - 协作式取消
    """

    def __init__(self,
                 store: SessionStore,
                 scraper: ThreadScraper,
                 resolver: Resolver,
                 downloader: ImageDownloader,
                 archiver: Archiver = None,
                 download_root: str = "downloads",
                 retry_policy: RetryPolicy = None,
                 scheduler: AsyncioScheduler = None,
                 default_concurrency: int = 3):
        """
        初始化调度器

        Args:
            store: 会话存储
            scraper: 帖子抓取器
            resolver: 图床解析器
            downloader: 图片下载器
            archiver: 压缩包打包器
            download_root: 默认下载根目录
            retry_policy: 单张图片的重试策略
            scheduler: 重试等待用的调度器
            default_concurrency: 请求未指定并发数时使用的值
        """
        self.store = store
        self.scraper = scraper
        self.resolver = resolver
        self.downloader = downloader
        self.archiver = archiver or Archiver()
        self.download_root = Path(download_root)
        self.retry_policy = retry_policy or RetryPolicy()
        self.scheduler = scheduler or AsyncioScheduler()
        self.default_concurrency = default_concurrency

        # 运行中的会话 -> 取消令牌
        self._active: Dict[int, CancellationToken] = {}
        self._tasks: Dict[int, asyncio.Task] = {}
        # 正在打包的会话
        self._archiving: Set[int] = set()
        self._lock = threading.Lock()

    @classmethod
    def from_settings(cls, settings: Settings, store: SessionStore, http) -> "DownloadOrchestrator":
        """
        按配置组装调度器

        Args:
            settings: 全部配置
            store: 会话存储
            http: HTTP会话管理器
        """
        downloader_settings = settings.downloader
        return cls(
            store=store,
            scraper=ThreadScraper(http, settings.forum, page_timeout=downloader_settings.page_timeout),
            resolver=Resolver(http, timeout=downloader_settings.page_timeout),
            downloader=ImageDownloader(
                http,
                chunk_size=downloader_settings.chunk_size,
                timeout=downloader_settings.download_timeout,
            ),
            download_root=downloader_settings.download_root,
            retry_policy=RetryPolicy(
                max_attempts=downloader_settings.max_attempts,
                base_delay=downloader_settings.retry_delay,
            ),
            default_concurrency=downloader_settings.default_concurrency,
        )

    # ── 对外接口 ─────────────────────────────────────────────────

    async def start_download(self, request: DownloadRequest) -> SessionRecord:
        """
        创建会话并在后台开始下载

        Args:
            request: 下载请求

        Returns:
            已进入 active 状态的会话

        Raises:
            InvalidUrlError: 帖子URL无法解析，此时不会创建会话
        """
        if not request.selected_images:
            URLParser.parse_thread_url(request.thread_url)

        values = request.to_session_values()
        if values['concurrency_limit'] is None:
            values['concurrency_limit'] = self.default_concurrency
        session = self.store.create_session(**values)
        logger.info(f"创建下载会话 {session.id}: {session.thread_url} 第{session.from_page}-{session.to_page}页")
        self.start(session.id)
        return self.store.get_session(session.id)

    def start(self, session_id: int) -> asyncio.Task:
        """
        在后台启动会话，立即返回

        Args:
            session_id: 会话ID

        Returns:
            执行会话的任务

        Raises:
            SessionNotFoundError: 会话不存在
            AlreadyRunningError: 会话正在运行
        """
        loop = asyncio.get_running_loop()
        session = self._require_session(session_id)

        with self._lock:
            if session_id in self._active or session.status == SessionStatus.ACTIVE:
                raise AlreadyRunningError(f"会话 {session_id} 正在下载中")
            if session.status != SessionStatus.PENDING:
                raise RipperError(f"会话 {session_id} 已结束（{session.status.value}），不能重新开始")

            token = CancellationToken()
            self._active[session_id] = token
            self.store.update_session(session_id, status=SessionStatus.ACTIVE, started_at=_now())

        task = loop.create_task(self._run(session_id, token))
        self._tasks[session_id] = task
        task.add_done_callback(lambda _: self._tasks.pop(session_id, None))
        return task

    async def wait(self, session_id: int) -> Optional[SessionRecord]:
        """等待会话执行结束，返回最终的会话记录"""
        task = self._tasks.get(session_id)
        if task is not None:
            await task
        return self.store.get_session(session_id)

    def cancel(self, session_id: int) -> bool:
        """
        取消正在运行的会话

        会话立即变为 cancelled；已经开始的下载会继续完成，但不会再开始新的下载或重试

        Returns:
            会话正在运行并已取消返回True，否则返回False
        """
        self._require_session(session_id)

        with self._lock:
            token = self._active.pop(session_id, None)
        if token is None:
            return False

        token.cancel()
        self._transition(session_id, SessionStatus.CANCELLED, completed_at=_now())
        logger.info(f"会话 {session_id} 已取消")
        return True

    def get_progress(self, session_id: int) -> ProgressView:
        """获取会话进度"""
        session = self._require_session(session_id)
        return build_progress(session, self.store.list_active_images(session_id),
                              archiving=session_id in self._archiving)

    def get_archive_path(self, session_id: int) -> Path:
        """
        获取会话压缩包路径

        Raises:
            ArchiveError: 会话不是压缩包模式或压缩包尚未生成
        """
        session = self._require_session(session_id)
        if session.output_format != OutputFormat.ARCHIVE:
            raise ArchiveError(f"会话 {session_id} 不是压缩包模式")
        if not session.archive_path or not Path(session.archive_path).is_file():
            raise ArchiveError(f"会话 {session_id} 的压缩包尚未生成")
        return Path(session.archive_path)

    def list_sessions(self) -> List[SessionRecord]:
        """全部会话，最新的在前"""
        return self.store.list_sessions()

    def delete_session(self, session_id: int) -> bool:
        """删除会话及其图片记录，运行中的会话会先被取消"""
        with self._lock:
            running = session_id in self._active
        if running:
            self.cancel(session_id)
        return self.store.delete_session(session_id)

    def active_session_ids(self) -> List[int]:
        """运行中的会话ID"""
        with self._lock:
            return sorted(self._active)

    async def close(self):
        """取消全部会话并等待后台任务结束"""
        with self._lock:
            session_ids = list(self._active)
        for session_id in session_ids:
            self.cancel(session_id)

        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    def session_directory(self, session: SessionRecord) -> Path:
        root = Path(session.custom_directory) if session.custom_directory else self.download_root
        return root / f"session_{session.id}"

    # ── 执行流程 ─────────────────────────────────────────────────

    async def _run(self, session_id: int, token: CancellationToken):
        try:
            session = self._require_session(session_id)

            references = await self._collect_references(session, token)
            if token.cancelled:
                return

            images = self._create_image_records(session, references)
            self.store.update_session(session_id, total_images=len(images))
            logger.info(f"会话 {session_id} 共 {len(images)} 张图片，并发数 {session.concurrency_limit}")

            session_dir = self.session_directory(session)
            semaphore = asyncio.Semaphore(session.concurrency_limit)
            await asyncio.gather(*(
                self._download_image(session, image, session_dir, semaphore, token)
                for image in images
            ))
            if token.cancelled:
                return

            if session.output_format == OutputFormat.ARCHIVE:
                archive_path = session_dir.parent / f"session_{session_id}.zip"
                loop = asyncio.get_running_loop()
                self._archiving.add(session_id)
                try:
                    await loop.run_in_executor(None, self.archiver.write, session_dir, archive_path)
                finally:
                    self._archiving.discard(session_id)
                self.store.update_session(session_id, archive_path=str(archive_path))

            self._transition(session_id, SessionStatus.COMPLETED, completed_at=_now())
            done = self.store.get_session(session_id)
            if done is not None:
                logger.info(f"会话 {session_id} 完成: 成功 {done.completed_images}，失败 {done.failed_images}")

        except asyncio.CancelledError:
            self._transition(session_id, SessionStatus.CANCELLED, completed_at=_now())
            raise
        except Exception as e:
            message = str(e) or type(e).__name__
            logger.error(f"会话 {session_id} 失败: {message}")
            self._transition(session_id, SessionStatus.FAILED, error_message=message, completed_at=_now())
        finally:
            with self._lock:
                if self._active.get(session_id) is token:
                    del self._active[session_id]

    async def _collect_references(self, session: SessionRecord,
                                  token: CancellationToken) -> List[ScrapedImage]:
        """按页顺序抓取帖子，或直接使用预先选中的图片"""
        if session.selected_images:
            return [
                ScrapedImage(
                    preview_url=item.get('previewUrl') or '',
                    hosting_page=item['hostingPage'],
                    hosting_site=item.get('hostingSite') or URLParser.extract_hostname(item['hostingPage']),
                    page_number=item.get('pageNumber') or 1,
                )
                for item in session.selected_images
            ]

        location = URLParser.parse_thread_url(session.thread_url)
        references: List[ScrapedImage] = []
        for page_number in range(session.from_page, session.to_page + 1):
            if token.cancelled:
                break
            page = await self.scraper.fetch_page(location.thread_id, page_number)
            if page.title and not session.thread_title:
                session.thread_title = page.title
                self.store.update_session(session.id, thread_title=page.title)
            references.extend(page.images)
        return references

    def _create_image_records(self, session: SessionRecord,
                              references: List[ScrapedImage]) -> List[ImageRecord]:
        used: Dict[int, Set[str]] = {}
        seq: Dict[int, int] = {}
        records = []

        for ref in references:
            seq[ref.page_number] = seq.get(ref.page_number, 0) + 1
            filename = self._make_filename(session, ref, seq[ref.page_number], used.setdefault(ref.page_number, set()))
            records.append(self.store.create_image(
                session.id,
                page_number=ref.page_number,
                original_url=ref.hosting_page,
                hosting_site=ref.hosting_site,
                preview_url=ref.preview_url,
                filename=filename,
            ))
        return records

    @staticmethod
    def _make_filename(session: SessionRecord, ref: ScrapedImage, seq: int, used: Set[str]) -> str:
        """生成目标文件名，同一页内不重复"""
        filename = URLParser.extract_filename(ref.hosting_page) if session.preserve_filenames else ""
        if not filename:
            filename = generated_filename(ref.hosting_site, ref.page_number, seq)
        filename = UNSAFE_FILENAME_CHARS.sub('_', filename)

        if filename in used:
            stem, dot, ext = filename.rpartition('.')
            if not dot:
                stem, ext = filename, ''
            counter = 2
            while True:
                candidate = f"{stem}_{counter}.{ext}" if ext else f"{stem}_{counter}"
                if candidate not in used:
                    filename = candidate
                    break
                counter += 1

        used.add(filename)
        return filename

    async def _download_image(self, session: SessionRecord, image: ImageRecord, session_dir: Path,
                              semaphore: asyncio.Semaphore, token: CancellationToken):
        """下载一张图片，失败时按重试策略再次尝试；不会向外抛出单张图片的错误"""
        attempt = 0
        while True:
            attempt += 1
            async with semaphore:
                if token.cancelled:
                    return
                error = await self._attempt_download(session, image, session_dir, retry=attempt > 1)

            if error is None:
                return
            if token.cancelled or not self.retry_policy.should_retry(attempt, session.retry_enabled):
                return

            delay = self.retry_policy.calculate_delay(attempt)
            logger.info(f"{image.filename} 下载失败，{delay:.0f}秒后重试: {error}")
            # 等待期间不占用并发名额
            if not await self.scheduler.sleep(delay, token):
                return

    async def _attempt_download(self, session: SessionRecord, image: ImageRecord,
                                session_dir: Path, retry: bool = False) -> Optional[str]:
        """
        执行一次下载尝试

        Returns:
            成功返回None，失败返回错误信息
        """
        # 重试时失败数减一，和状态变化一起生效
        if self.store.transition_image(image.id, ImageStatus.DOWNLOADING, failed=-1 if retry else 0,
                                       progress=0, error_message=None) is None:
            return None

        target = session_dir / f"page_{image.page_number}" / image.filename
        try:
            if session.skip_existing and target.exists():
                size = target.stat().st_size
                logger.info(f"文件已存在，跳过: {target}")
            else:
                direct_url = await self.resolver.resolve(image.original_url)
                size = await self.downloader.download(
                    direct_url,
                    target,
                    referer=image.original_url,
                    on_progress=lambda percent: self.store.update_image(image.id, progress=percent),
                )
        except (ResolutionError, DownloadError) as e:
            message = str(e) or type(e).__name__
        except Exception as e:
            logger.exception(f"下载图片时发生未预期的错误: {image.original_url}")
            message = str(e) or type(e).__name__
        else:
            self.store.transition_image(image.id, ImageStatus.COMPLETED, completed=1, progress=100, file_size=size)
            return None

        self.store.transition_image(image.id, ImageStatus.FAILED, failed=1, error_message=message)
        logger.warning(f"图片下载失败: {image.original_url} -> {message}")
        return message

    # ── 辅助方法 ─────────────────────────────────────────────────

    def _require_session(self, session_id: int) -> SessionRecord:
        session = self.store.get_session(session_id)
        if session is None:
            raise SessionNotFoundError(f"会话不存在: {session_id}")
        return session

    def _transition(self, session_id: int, status: SessionStatus, **changes) -> Optional[SessionRecord]:
        """只在允许的状态迁移下更新会话状态"""
        session = self.store.get_session(session_id)
        if session is None:
            return None
        if status not in SESSION_TRANSITIONS[session.status]:
            logger.debug(f"忽略会话 {session_id} 的状态迁移: {session.status.value} -> {status.value}")
            return None
        return self.store.update_session(session_id, status=status, **changes)
