"""
配置模块

- settings: 配置项定义
- manager: 配置加载
"""

from .manager import ConfigManager
from .settings import Settings

__all__ = [
    "ConfigManager",
    "Settings",
]
