"""
配置管理器

按 默认值 -> YAML配置文件 -> 环境变量 的顺序加载配置
"""

import os
import logging
from dataclasses import fields, is_dataclass
from pathlib import Path
from typing import Optional, Dict, Any

import yaml

from config.settings import Settings

logger = logging.getLogger(__name__)


# 环境变量 -> (配置分组, 字段名, 类型)
ENV_OVERRIDES = {
    'DB_TYPE': ('database', 'type', str),
    'DB_PATH': ('database', 'path', str),
    'DB_HOST': ('database', 'host', str),
    'DB_PORT': ('database', 'port', int),
    'DB_NAME': ('database', 'name', str),
    'DB_USER': ('database', 'user', str),
    'DB_PASSWORD': ('database', 'password', str),
    'DB_URL': ('database', 'url', str),
    'DOWNLOAD_ROOT': ('downloader', 'download_root', str),
    'DEFAULT_CONCURRENCY': ('downloader', 'default_concurrency', int),
    'RETRY_DELAY': ('downloader', 'retry_delay', float),
    'MAX_ATTEMPTS': ('downloader', 'max_attempts', int),
    'FORUM_BASE_URL': ('forum', 'base_url', str),
    'LOG_LEVEL': ('logging', 'level', str),
    'LOG_FILE': ('logging', 'log_file', str),
    'API_HOST': ('api', 'host', str),
    'API_PORT': ('api', 'port', int),
}


class ConfigManager:
    """
    配置管理器

    功能：
    - 默认配置
    - YAML配置文件加载（文件不存在时使用默认值）
    - 环境变量覆盖
    - 数据库连接URL生成
    """

    def __init__(self, config_file: Optional[str] = None):
        """
        初始化配置管理器

        Args:
            config_file: 配置文件路径
        """
        self.config_file = config_file
        self.settings = Settings()

        if config_file:
            self._load_from_file(Path(config_file))
        self._load_from_environment()

    def _load_from_file(self, path: Path):
        """从YAML文件加载配置"""
        if not path.exists():
            logger.info(f"配置文件不存在，使用默认配置: {path}")
            return

        with open(path, 'r', encoding='utf-8') as f:
            data = yaml.safe_load(f) or {}

        if not isinstance(data, dict):
            raise ValueError(f"配置文件格式错误: {path}")

        for section_name, values in data.items():
            section = getattr(self.settings, section_name, None)
            if section is None or not is_dataclass(section):
                logger.warning(f"忽略未知配置分组: {section_name}")
                continue
            if not isinstance(values, dict):
                continue
            self._apply_section(section, values)

        logger.info(f"已加载配置文件: {path}")

    @staticmethod
    def _apply_section(section, values: Dict[str, Any]):
        known = {f.name for f in fields(section)}
        for key, value in values.items():
            if key in known:
                setattr(section, key, value)
            else:
                logger.warning(f"忽略未知配置项: {key}")

    def _load_from_environment(self):
        """从环境变量加载配置"""
        for env_name, (section_name, attr, cast) in ENV_OVERRIDES.items():
            raw = os.environ.get(env_name)
            if raw is None or raw == '':
                continue
            try:
                value = cast(raw)
            except ValueError:
                logger.warning(f"环境变量 {env_name} 的值无效: {raw}")
                continue
            setattr(getattr(self.settings, section_name), attr, value)

    def get_settings(self) -> Settings:
        """获取配置"""
        return self.settings

    def get_database_url(self) -> str:
        """
        生成数据库连接URL

        Returns:
            SQLAlchemy 连接URL
        """
        db = self.settings.database
        if db.url:
            return db.url

        if db.type == 'postgresql':
            return f"postgresql://{db.user}:{db.password}@{db.host}:{db.port}/{db.name}"

        if db.type == 'memory':
            return "sqlite:///:memory:"

        Path(db.path).parent.mkdir(parents=True, exist_ok=True)
        return f"sqlite:///{db.path}"

    def save(self, path: str):
        """将当前配置写入YAML文件"""
        output = Path(path)
        output.parent.mkdir(parents=True, exist_ok=True)
        with open(output, 'w', encoding='utf-8') as f:
            yaml.safe_dump(self.settings.to_dict(), f, allow_unicode=True, sort_keys=False)
        logger.info(f"配置已保存: {output}")
