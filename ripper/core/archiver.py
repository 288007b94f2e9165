"""
压缩包打包

把会话目录下按页存放的图片打成zip
"""

import shutil
import logging
import tempfile
import zipfile
from pathlib import Path
from typing import IO

from ripper.errors import ArchiveError

logger = logging.getLogger(__name__)


class Archiver:
    """
    会话压缩包打包器

    只打包 page_<n>/ 子目录中的文件，条目名为 page_<n>/<文件名>，
    未下载完成的 .part 文件不会进入压缩包
    """

    PAGE_DIR_PREFIX = 'page_'
    SPOOL_SIZE = 16 * 1024 * 1024

    def build(self, session_dir) -> IO[bytes]:
        """
        生成压缩包字节流

        Args:
            session_dir: 会话下载目录

        Returns:
            已回到开头的可读字节流

        Raises:
            ArchiveError: 目录不存在
        """
        session_dir = Path(session_dir)
        if not session_dir.is_dir():
            raise ArchiveError(f"会话下载目录不存在: {session_dir}")

        stream = tempfile.SpooledTemporaryFile(max_size=self.SPOOL_SIZE)
        count = 0
        try:
            with zipfile.ZipFile(stream, 'w', compression=zipfile.ZIP_DEFLATED) as zf:
                for page_dir in sorted(session_dir.iterdir(), key=lambda p: p.name):
                    if not page_dir.is_dir() or not page_dir.name.startswith(self.PAGE_DIR_PREFIX):
                        continue
                    for file_path in sorted(page_dir.iterdir(), key=lambda p: p.name):
                        if not file_path.is_file() or file_path.name.endswith('.part'):
                            continue
                        zf.write(file_path, arcname=f"{page_dir.name}/{file_path.name}")
                        count += 1
        except OSError as e:
            stream.close()
            raise ArchiveError(f"打包失败: {e}") from e

        stream.seek(0)
        logger.info(f"压缩包生成完成: {session_dir} ({count} 个文件)")
        return stream

    def write(self, session_dir, archive_path) -> Path:
        """
        生成压缩包并写入文件

        Args:
            session_dir: 会话下载目录
            archive_path: 压缩包路径

        Returns:
            压缩包路径
        """
        archive_path = Path(archive_path)
        stream = self.build(session_dir)
        try:
            archive_path.parent.mkdir(parents=True, exist_ok=True)
            with open(archive_path, 'wb') as f:
                shutil.copyfileobj(stream, f)
        except OSError as e:
            raise ArchiveError(f"写入压缩包失败: {e}") from e
        finally:
            stream.close()

        logger.info(f"压缩包已保存: {archive_path}")
        return archive_path
