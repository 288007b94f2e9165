"""
帖子图片下载主程序

提供命令行接口和程序入口
"""

import asyncio
import time
from typing import Optional

import click

from config.manager import ConfigManager
from database.store import build_store
from ripper.core.models import DownloadRequest
from ripper.core.orchestrator import DownloadOrchestrator
from ripper.errors import RipperError
from ripper.handlers.session_manager import HttpSessionManager
from ripper.utils.logger import LoggerManager
from ripper.utils.url_parser import URLParser


DEFAULT_CONFIG = 'config/config.yaml'


class RipperCLI:
    """下载器命令行接口"""

    def __init__(self):
        self.config_manager: Optional[ConfigManager] = None
        self.logger_manager: Optional[LoggerManager] = None
        self.logger = None

    def initialize(self, config_file: Optional[str] = None, verbose: bool = False):
        """初始化配置和日志"""
        self.config_manager = ConfigManager(config_file or DEFAULT_CONFIG)
        settings = self.config_manager.get_settings()

        if verbose:
            settings.logging.level = "DEBUG"
            settings.logging.verbose = True

        self.logger_manager = LoggerManager(settings.logging.__dict__)
        self.logger = self.logger_manager.get_logger("RipperCLI")

    @property
    def settings(self):
        return self.config_manager.get_settings()

    def create_http(self) -> HttpSessionManager:
        return HttpSessionManager(
            self.settings.anti_crawler.__dict__,
            page_timeout=self.settings.downloader.page_timeout,
            download_timeout=self.settings.downloader.download_timeout,
        )

    async def run_download(self, request: DownloadRequest, interval: float = 2.0):
        """
        执行一个下载会话直到结束

        Args:
            request: 下载请求
            interval: 进度输出间隔（秒）

        Returns:
            最终的会话记录
        """
        store = build_store(self.config_manager)
        try:
            async with self.create_http() as http:
                orchestrator = DownloadOrchestrator.from_settings(self.settings, store, http)
                try:
                    session = await orchestrator.start_download(request)
                    self.logger.info(f"开始下载会话 {session.id}")

                    waiter = asyncio.ensure_future(orchestrator.wait(session.id))
                    while not waiter.done():
                        view = orchestrator.get_progress(session.id)
                        click.echo(f"\r🔄 {view.current_stage} | 进度: {view.overall_progress}% | "
                                   f"成功: {view.completed_images} | 失败: {view.failed_images}",
                                   nl=False)
                        await asyncio.wait({waiter}, timeout=interval)
                    click.echo()
                    return waiter.result()
                finally:
                    await orchestrator.close()
        finally:
            store.close()


# CLI命令定义
@click.group()
@click.option('--config', '-c', help='配置文件路径')
@click.option('--verbose', '-v', is_flag=True, help='详细输出模式')
@click.pass_context
def cli(ctx, config, verbose):
    """论坛帖子图片下载工具"""
    ctx.ensure_object(dict)

    ripper_cli = RipperCLI()
    try:
        ripper_cli.initialize(config, verbose)
    except (OSError, ValueError) as e:
        click.echo(f"初始化失败: {e}")
        ctx.exit(1)

    ctx.obj['cli'] = ripper_cli


@cli.command('parse-url')
@click.argument('url')
def parse_url(url):
    """解析帖子URL"""
    try:
        location = URLParser.parse_thread_url(url)
    except RipperError as e:
        raise click.ClickException(str(e))

    click.echo(f"帖子ID: {location.thread_id}")
    click.echo(f"当前页: {location.current_page or '-'}")


@cli.command()
@click.argument('url')
@click.option('--from-page', '-f', type=click.IntRange(min=1), default=1, show_default=True, help='起始页')
@click.option('--to-page', '-t', type=click.IntRange(min=1), default=None, help='结束页（包含），默认等于起始页')
@click.option('--archive', is_flag=True, help='下载完成后打包为zip')
@click.option('--concurrency', '-j', type=click.IntRange(1, 8), default=None, help='并发下载数，默认读取配置文件')
@click.option('--no-retry', is_flag=True, help='失败后不重试')
@click.option('--skip-existing', is_flag=True, help='跳过已存在的文件')
@click.option('--generate-names', is_flag=True, help='不保留原文件名')
@click.option('--directory', '-d', help='自定义下载目录')
@click.pass_context
def download(ctx, url, from_page, to_page, archive, concurrency, no_retry, skip_existing,
             generate_names, directory):
    """下载帖子指定页范围内的图片"""
    ripper_cli = ctx.obj['cli']

    try:
        request = DownloadRequest(
            thread_url=url,
            from_page=from_page,
            to_page=to_page or from_page,
            output_format='archive' if archive else 'individual',
            concurrency_limit=concurrency,
            retry_enabled=not no_retry,
            skip_existing=skip_existing,
            preserve_filenames=not generate_names,
            custom_directory=directory,
        )
    except ValueError as e:
        raise click.BadParameter(str(e))

    started = time.time()
    try:
        session = asyncio.run(ripper_cli.run_download(request))
    except KeyboardInterrupt:
        click.echo("\n⚠️  用户中断操作，会话已取消")
        ctx.exit(130)
    except RipperError as e:
        click.echo(f"❌ {e}")
        ctx.exit(1)

    click.echo(f"📊 会话 {session.id}: {session.status.value}")
    click.echo(f"   - 图片总数: {session.total_images}")
    click.echo(f"   - 下载成功: {session.completed_images}")
    click.echo(f"   - 下载失败: {session.failed_images}")
    click.echo(f"   - 耗时: {time.time() - started:.2f}秒")
    if session.archive_path:
        click.echo(f"   - 压缩包: {session.archive_path}")
    if session.error_message:
        click.echo(f"   - 错误: {session.error_message}")

    if session.status.value != 'completed':
        ctx.exit(1)


@cli.command()
@click.option('--limit', '-n', type=int, default=20, show_default=True, help='最多显示的会话数')
@click.pass_context
def sessions(ctx, limit):
    """显示下载历史"""
    ripper_cli = ctx.obj['cli']
    store = build_store(ripper_cli.config_manager)
    try:
        records = store.list_sessions()[:limit]
    finally:
        store.close()

    if not records:
        click.echo("暂无下载记录")
        return

    for record in records:
        title = record.thread_title or record.thread_url
        click.echo(f"#{record.id:<5} {record.status.value:<10} "
                   f"{record.completed_images}/{record.total_images} (失败 {record.failed_images})  "
                   f"第{record.from_page}-{record.to_page}页  {title}")


@cli.command()
@click.argument('session_id', type=int)
@click.option('--force', is_flag=True, help='不询问确认')
@click.pass_context
def delete(ctx, session_id, force):
    """删除下载会话及其图片记录"""
    ripper_cli = ctx.obj['cli']

    if not force and not click.confirm(f"确定删除会话 {session_id} 吗？"):
        click.echo("❌ 操作已取消")
        return

    store = build_store(ripper_cli.config_manager)
    try:
        deleted = store.delete_session(session_id)
    finally:
        store.close()

    if not deleted:
        click.echo(f"❌ 会话不存在: {session_id}")
        ctx.exit(1)
    click.echo(f"✅ 已删除会话 {session_id}")


@cli.command()
@click.option('--host', help='监听地址')
@click.option('--port', type=int, help='监听端口')
@click.pass_context
def serve(ctx, host, port):
    """启动HTTP服务"""
    import uvicorn
    from api import create_app

    ripper_cli = ctx.obj['cli']
    api_settings = ripper_cli.settings.api
    app = create_app(ripper_cli.config_manager, configure_logging=False)
    uvicorn.run(app, host=host or api_settings.host, port=port or api_settings.port)


@cli.command('init-config')
@click.option('--output', '-o', default=DEFAULT_CONFIG, show_default=True, help='输出配置文件路径')
@click.pass_context
def init_config(ctx, output):
    """生成默认配置文件"""
    try:
        ctx.obj['cli'].config_manager.save(output)
    except OSError as e:
        click.echo(f"❌ 生成配置文件失败: {e}")
        ctx.exit(1)
    click.echo(f"✅ 配置文件已生成: {output}")


if __name__ == '__main__':
    cli()
