"""核心模块包。

包含采集系统的核心组件：
- Config: 应用配置
- Container: 依赖注入容器，管理所有外部资源
- initialize: 应用初始化逻辑（通过 src.core.initialize 导入）
"""

from .config import Config
from .container import Container

__all__ = ["Config", "Container"]
