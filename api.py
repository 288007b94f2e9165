from contextlib import asynccontextmanager, AsyncExitStack
from typing import Optional, Dict, Any
from urllib.parse import quote

from fastapi import FastAPI, Request, Path as PathParam
from fastapi.responses import FileResponse, JSONResponse, Response, StreamingResponse
from starlette.background import BackgroundTask
from pydantic import BaseModel, ConfigDict, Field
import uvicorn
from loguru import logger

from config.manager import ConfigManager
from database.store import SessionStore, build_store
from ripper.core.models import DownloadRequest
from ripper.core.orchestrator import DownloadOrchestrator, generated_filename
from ripper.errors import (
    RipperError,
    InvalidUrlError,
    SessionNotFoundError,
    AlreadyRunningError,
    ArchiveError,
    ResolutionError,
    DownloadError,
)
from ripper.handlers.session_manager import HttpSessionManager
from ripper.utils.logger import LoggerManager
from ripper.utils.url_parser import URLParser

# --------------------------------------------------------------------------
# Pydantic 模型
# --------------------------------------------------------------------------


class ParseUrlRequest(BaseModel):
    """解析帖子URL的请求"""
    url: str


class ExtractImagesRequest(BaseModel):
    """预览扫描的请求"""
    thread_url: str = Field(..., alias="threadUrl")
    page_count: int = Field(3, ge=1, le=20, alias="pageCount")


class DownloadImageRequest(BaseModel):
    """下载单张图片的请求"""
    model_config = ConfigDict(populate_by_name=True)

    url: str = ""
    file_name: Optional[str] = Field(None, alias="fileName")
    hosting_site: Optional[str] = Field(None, alias="hostingSite")


# --------------------------------------------------------------------------
# 辅助函数
# --------------------------------------------------------------------------


def _camel(key: str) -> str:
    head, *rest = key.split('_')
    return head + ''.join(part.title() for part in rest)


def camelize(data: Dict[str, Any]) -> Dict[str, Any]:
    """snake_case 字段转为前端使用的 camelCase"""
    return {_camel(key): value for key, value in data.items()}


def content_disposition(filename: str) -> str:
    """附件下载头，非ASCII文件名使用 RFC 5987 编码"""
    quoted = quote(filename)
    if quoted != filename:
        return f"attachment; filename*=utf-8''{quoted}"
    return f'attachment; filename="{filename}"'


def placeholder_svg(width: int, height: int) -> str:
    return (
        f'<svg width="{width}" height="{height}" xmlns="http://www.w3.org/2000/svg">'
        f'<rect width="100%" height="100%" fill="#f0f0f0"/>'
        f'<text x="50%" y="50%" font-family="Arial" font-size="14" fill="#666" '
        f'text-anchor="middle" dy=".3em">{width}x{height}</text>'
        f'</svg>'
    )


# 引擎异常 -> HTTP状态码
ERROR_STATUS = [
    (InvalidUrlError, 400),
    (SessionNotFoundError, 404),
    (AlreadyRunningError, 409),
    (ArchiveError, 404),
    # 图床或图片服务器出错
    (ResolutionError, 502),
    (DownloadError, 502),
    (RipperError, 400),
]


def create_app(config_manager: Optional[ConfigManager] = None,
               store: Optional[SessionStore] = None,
               http=None,
               configure_logging: bool = True) -> FastAPI:
    """
    创建 FastAPI 应用

    Args:
        config_manager: 配置管理器，默认读取 config/config.yaml
        store: 会话存储，默认按配置创建
        http: HTTP会话管理器，默认按配置创建
        configure_logging: 是否初始化日志系统

    Returns:
        FastAPI 应用
    """
    config_manager = config_manager or ConfigManager('config/config.yaml')
    settings = config_manager.get_settings()

    if configure_logging:
        LoggerManager(settings.logging.__dict__)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        session_store = store or build_store(config_manager)
        http_manager = http or HttpSessionManager(
            settings.anti_crawler.__dict__,
            page_timeout=settings.downloader.page_timeout,
            download_timeout=settings.downloader.download_timeout,
        )
        app.state.orchestrator = DownloadOrchestrator.from_settings(settings, session_store, http_manager)
        logger.info("✅ 下载服务已启动")
        try:
            yield
        finally:
            await app.state.orchestrator.close()
            if isinstance(http_manager, HttpSessionManager):
                await http_manager.close_session()
            session_store.close()
            logger.info("下载服务已停止")

    app = FastAPI(
        title="帖子图片下载 API",
        description="抓取论坛帖子中的图床图片并下载，提供进度查询和压缩包下载。",
        version="1.0.0",
        lifespan=lifespan,
    )

    @app.exception_handler(RipperError)
    async def ripper_error_handler(request: Request, exc: RipperError):
        status_code = next(code for error_type, code in ERROR_STATUS if isinstance(exc, error_type))
        return JSONResponse(status_code=status_code, content={"error": str(exc)})

    def orchestrator(request: Request) -> DownloadOrchestrator:
        return request.app.state.orchestrator

    # ----------------------------------------------------------------------
    # 帖子解析
    # ----------------------------------------------------------------------

    @app.post("/api/parse-url")
    async def parse_url(body: ParseUrlRequest):
        """解析帖子URL，返回帖子ID和当前页"""
        location = URLParser.parse_thread_url(body.url)
        return {"threadId": location.thread_id, "currentPage": location.current_page}

    @app.post("/api/extract-images")
    async def extract_images(body: ExtractImagesRequest, request: Request):
        """从URL所在页开始扫描若干页，列出图床图片"""
        scraper = orchestrator(request).scraper
        logger.info(f"预览扫描: {body.thread_url} ({body.page_count} 页)")
        pages = await scraper.scan_pages(body.thread_url, body.page_count)

        images = []
        for page in pages:
            for index, image in enumerate(page.images, start=1):
                images.append({
                    "url": image.hosting_page,
                    "previewUrl": image.preview_url,
                    "hostingSite": image.hosting_site,
                    "fileName": generated_filename(image.hosting_site, image.page_number, index),
                    "isValid": True,
                    "pageNumber": image.page_number,
                })

        return {
            "title": next((page.title for page in pages if page.title), None),
            "images": images,
            "totalImages": len(images),
            "pageTexts": [
                {"page": page.page_number, "summary": page.summary, "fullText": page.text}
                for page in pages
            ],
            "scannedPages": len(pages),
        }

    @app.post("/api/download-image")
    async def download_image(body: DownloadImageRequest, request: Request):
        """解析图床页面并把原图直接转发给客户端，不创建会话"""
        page_url = body.url.strip()
        if not URLParser.is_valid_url(page_url):
            raise InvalidUrlError("图片URL不能为空" if not page_url else f"无效的图片URL: {page_url}")

        engine = orchestrator(request)
        direct_url = await engine.resolver.resolve(page_url)
        filename = (body.file_name or URLParser.extract_filename(direct_url)
                    or generated_filename(body.hosting_site, 1, 1))
        logger.info(f"单张图片下载: {page_url} -> {direct_url}")

        # 响应头发出之前打开上游连接，失败时仍能返回错误状态码
        stack = AsyncExitStack()
        upstream = await stack.enter_async_context(engine.downloader.open_stream(direct_url, referer=page_url))

        async def relay():
            try:
                async for chunk in upstream.content.iter_chunked(engine.downloader.chunk_size):
                    yield chunk
            finally:
                await stack.aclose()

        return StreamingResponse(
            relay(),
            media_type=upstream.headers.get('Content-Type', 'image/jpeg'),
            headers={"Content-Disposition": content_disposition(filename)},
            background=BackgroundTask(stack.aclose),
        )

    # ----------------------------------------------------------------------
    # 下载会话
    # ----------------------------------------------------------------------

    @app.post("/api/downloads")
    async def start_download(body: DownloadRequest, request: Request):
        """创建下载会话并在后台开始下载"""
        session = await orchestrator(request).start_download(body)
        return camelize(session.to_dict())

    @app.get("/api/downloads")
    async def list_downloads(request: Request):
        """下载历史，最新的在前"""
        return [camelize(session.to_dict()) for session in orchestrator(request).list_sessions()]

    @app.get("/api/downloads/{session_id}")
    async def get_download(session_id: int, request: Request):
        """会话详情及其图片记录"""
        engine = orchestrator(request)
        session = engine.store.get_session(session_id)
        if session is None:
            raise SessionNotFoundError(f"会话不存在: {session_id}")
        data = camelize(session.to_dict())
        data["images"] = [camelize(image.to_dict()) for image in engine.store.list_images(session_id)]
        return data

    @app.get("/api/downloads/{session_id}/progress")
    async def get_progress(session_id: int, request: Request):
        """查询下载进度"""
        return orchestrator(request).get_progress(session_id).to_dict()

    @app.post("/api/downloads/{session_id}/cancel")
    async def cancel_download(session_id: int, request: Request):
        """取消下载"""
        cancelled = orchestrator(request).cancel(session_id)
        return {"success": True, "cancelled": cancelled}

    @app.delete("/api/downloads/{session_id}")
    async def delete_download(session_id: int, request: Request):
        """删除会话及其图片记录"""
        if not orchestrator(request).delete_session(session_id):
            raise SessionNotFoundError(f"会话不存在: {session_id}")
        return {"success": True}

    @app.get("/api/downloads/{session_id}/archive")
    async def download_archive(session_id: int, request: Request):
        """下载会话压缩包"""
        archive_path = orchestrator(request).get_archive_path(session_id)
        return FileResponse(
            archive_path,
            media_type="application/zip",
            filename=f"ripper_session_{session_id}.zip",
        )

    @app.get("/api/placeholder/{width}/{height}", include_in_schema=False)
    async def placeholder(width: int = PathParam(..., ge=1, le=4000),
                          height: int = PathParam(..., ge=1, le=4000)):
        """预览图占位SVG"""
        return Response(content=placeholder_svg(width, height), media_type="image/svg+xml")

    return app


if __name__ == "__main__":
    api_settings = ConfigManager('config/config.yaml').get_settings().api
    uvicorn.run("api:create_app", factory=True, host=api_settings.host, port=api_settings.port)
