"""
日志系统

基于loguru的统一日志配置，标准库logging的日志也会转发到loguru
"""

import logging
import sys
from pathlib import Path
from typing import Dict, Any

from loguru import logger


class InterceptHandler(logging.Handler):
    """把标准库 logging 的记录转交给 loguru"""

    def emit(self, record: logging.LogRecord):
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        # 跳过logging模块自身的栈帧，保证定位到真正的调用方
        frame, depth = logging.currentframe(), 2
        while frame and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())


class LoggerManager:
    """
    日志管理器

    功能：
    - 统一日志配置
    - 控制台与文件输出
    - 日志轮转
    - 标准库日志转发
    """

    def __init__(self, config: Dict[str, Any]):
        """
        初始化日志管理器

        Args:
            config: 日志配置（LoggingSettings 转换成的字典）
        """
        self.config = config
        self.log_level = config.get('level', 'INFO').upper()
        self.log_file = config.get('log_file', 'logs/ripper.log')
        self.max_file_size = config.get('max_file_size', '10 MB')
        self.backup_count = config.get('backup_count', 5)
        self.console_output = config.get('console_output', True)
        self.verbose = config.get('verbose', False)
        self.format_string = config.get(
            'format', "{time:YYYY-MM-DD HH:mm:ss} | {level} | {name}:{function}:{line} | {message}")

        self._setup_logger()

    def _setup_logger(self):
        """设置日志器"""
        logger.remove()

        if self.log_file:
            log_path = Path(self.log_file)
            log_path.parent.mkdir(parents=True, exist_ok=True)

            logger.add(
                self.log_file,
                level=self.log_level,
                format=self.format_string,
                rotation=self.max_file_size,
                retention=self.backup_count,
                compression="zip",
                encoding="utf-8",
                enqueue=True,
                backtrace=True,
            )

            error_log_file = str(log_path.parent / f"{log_path.stem}_error{log_path.suffix}")
            logger.add(
                error_log_file,
                level="ERROR",
                format=self.format_string,
                rotation=self.max_file_size,
                retention=self.backup_count,
                compression="zip",
                encoding="utf-8",
                enqueue=True,
            )

        if self.console_output:
            console_format = (
                "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
                "<level>{level: <8}</level> | "
                "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> | "
                "<level>{message}</level>"
            )
            logger.add(
                sys.stderr,
                level=self.log_level,
                format=console_format,
                colorize=True,
            )

        logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)
        self._configure_third_party_loggers()

        logger.info("日志系统初始化完成")

    def _configure_third_party_loggers(self):
        """配置第三方库的日志级别"""
        third_party_loggers = [
            'aiohttp',
            'urllib3',
            'sqlalchemy',
            'asyncio',
            'chardet',
            'uvicorn.access',
        ]

        level = logging.INFO if self.verbose else logging.WARNING
        for logger_name in third_party_loggers:
            logging.getLogger(logger_name).setLevel(level)

    def get_logger(self, name: str = None):
        """获取日志器实例"""
        if name:
            return logger.bind(name=name)
        return logger

