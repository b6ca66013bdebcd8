"""应用程序配置管理模块。

该模块负责从TOML配置文件中加载应用程序的各项配置，
包括数据库连接、Redis连接、任务队列、调度计划、采集接口、执行日志、通知推送等。
支持通过环境变量覆盖配置（例如 DATABASE__HOST、QUEUE__MAX_CONCURRENT）。
"""

import tomllib
from pathlib import Path
from typing import Any, Literal
from urllib.parse import quote_plus

from pydantic import (
    BaseModel,
    Field,
    HttpUrl,
    RedisDsn,
    ValidationError,
    computed_field,
    field_validator,
)
from pydantic.fields import FieldInfo
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource, SettingsConfigDict

from ..crawler.tasks import DEFAULT_SCHEDULES, ScheduleConfig

CONFIG_FILE = Path(__file__).resolve().parent.parent.parent / "config.toml"


class DatabaseConfig(BaseModel):
    """数据库配置模型

    仅在执行日志或关注者查询使用数据库时才会建立连接。
    """

    host: str = "localhost"
    port: int = 5432
    username: str = "admin"
    password: str = "123456"
    db_name: str = "crawler"
    url: str | None = Field(None, description="完整连接串，设置后覆盖 host/port 等字段")


class RedisConfig(BaseModel):
    """Redis配置模型"""

    host: str = "localhost"
    port: int = 6379
    username: str = ""
    password: str = ""
    db: int = 0


class QueueConfig(BaseModel):
    """任务队列配置模型"""

    max_concurrent: int = Field(3, gt=0)
    retry_delay_seconds: float = Field(0.0, ge=0)


class SchedulerConfig(BaseModel):
    """调度器配置模型"""

    autostart: bool = True
    poll_interval_seconds: float = Field(50.0, gt=0)
    event_driven: bool = True
    run_on_start: bool = True
    max_retries: int = Field(3, ge=0)


class CrawlerConfig(BaseModel):
    """采集接口配置模型

    timeout_seconds 默认 300 秒，由初始化流程传给 Worker；
    直接构造 Worker 时默认不限制超时，传入 None 同样表示不限制。
    """

    base_url: HttpUrl = HttpUrl("http://localhost:3000")
    timeout_seconds: float | None = Field(300.0, gt=0)
    requests_per_minute: int = Field(10, gt=0)
    cooldown_seconds_429: float = Field(60.0, gt=0)


class ExecutionLogConfig(BaseModel):
    """执行日志配置模型"""

    backend: Literal["memory", "database"] = "memory"
    max_entries: int = Field(1000, gt=0)


class NotificationConfig(BaseModel):
    """通知推送配置"""

    transport: Literal["redis", "none"] = "none"
    stream_key: str = "crawler:notifications"
    max_len: int = Field(10000, gt=0)
    max_retries: int = Field(5, gt=0)
    retry_backoff_ms: int = Field(200, gt=0)
    watchers_backend: Literal["static", "redis", "database"] = "static"
    watchers: dict[str, list[str]] = {}
    key_prefix: str = "crawler:watchers"


class ControlConfig(BaseModel):
    """控制接口 HTTP 服务配置"""

    enabled: bool = True
    host: str = "localhost"
    port: int = 8000
    path: str = "/scheduler"
    token: str | None = None


class MonitorConfig(BaseModel):
    """系统监控配置"""

    enabled: bool = True
    interval_seconds: float = Field(1.0, gt=0)


class PydanticConfig(BaseSettings):
    """Pydantic总配置模型"""

    model_config = SettingsConfigDict(
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    redis: RedisConfig = Field(default_factory=RedisConfig)
    queue: QueueConfig = Field(default_factory=lambda: QueueConfig(max_concurrent=3, retry_delay_seconds=0.0))
    scheduler: SchedulerConfig = Field(default_factory=SchedulerConfig)
    schedules: list[ScheduleConfig] = Field(default_factory=lambda: [s.model_copy() for s in DEFAULT_SCHEDULES])
    crawler: CrawlerConfig = Field(default_factory=CrawlerConfig)
    execution_log: ExecutionLogConfig = Field(default_factory=ExecutionLogConfig)
    notification: NotificationConfig = Field(default_factory=NotificationConfig)
    control: ControlConfig = Field(default_factory=ControlConfig)
    monitor: MonitorConfig = Field(default_factory=MonitorConfig)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        return (
            init_settings,
            env_settings,
            TomlConfigSettingsSource(settings_cls),
        )

    @field_validator("schedules")
    @classmethod
    def _unique_sources(cls, v: list[ScheduleConfig]) -> list[ScheduleConfig]:
        seen: set[str] = set()
        for schedule in v:
            if schedule.source in seen:
                raise ValueError(f"duplicate schedule for source: {schedule.source}")
            seen.add(schedule.source)
        return v

    @computed_field
    @property
    def database_url(self) -> str:
        """生成数据库连接URL，默认使用 PostgreSQL + asyncpg"""
        if self.database.url:
            return self.database.url
        return (
            f"postgresql+asyncpg://{quote_plus(self.database.username)}:{quote_plus(self.database.password)}"
            f"@{self.database.host}:{self.database.port}/{self.database.db_name}"
        )

    @computed_field
    @property
    def redis_url(self) -> RedisDsn:
        """生成Redis连接URL"""
        if self.redis.username and self.redis.password:
            return RedisDsn(
                f"redis://{quote_plus(self.redis.username)}:{quote_plus(self.redis.password)}"
                f"@{self.redis.host}:{self.redis.port}/{self.redis.db}"
            )
        if self.redis.password:
            return RedisDsn(
                f"redis://:{quote_plus(self.redis.password)}@{self.redis.host}:{self.redis.port}/{self.redis.db}"
            )
        return RedisDsn(f"redis://{self.redis.host}:{self.redis.port}/{self.redis.db}")


class TomlConfigSettingsSource(PydanticBaseSettingsSource):
    """TOML 配置文件加载源"""

    def get_field_value(self, field: FieldInfo, field_name: str) -> tuple[Any, str, bool]:
        raise NotImplementedError

    def __call__(self) -> dict[str, Any]:
        if not CONFIG_FILE.exists():
            return {}
        with CONFIG_FILE.open("rb") as f:
            return tomllib.load(f)


class Config:
    """应用程序配置类。

    负责加载和管理应用程序的所有配置项，包括：
    - 数据库与Redis连接配置
    - 任务队列与调度器配置
    - 采集接口配置
    - 执行日志与通知推送配置

    Attributes:
        pydantic_config (PydanticConfig): Pydantic应用配置模型
    """

    pydantic_config: PydanticConfig

    def __init__(self, **overrides: Any):
        """初始化配置对象。

        配置加载优先级：
        1. 关键字参数（主要用于测试）
        2. 环境变量 (例如 DATABASE__HOST)
        3. config.toml 配置文件

        Raises:
            ValueError: 配置校验失败。
        """
        try:
            self.pydantic_config = PydanticConfig(**overrides)
        except ValidationError as e:
            raise ValueError(f"配置验证失败: {e}") from e
        except tomllib.TOMLDecodeError as e:
            raise ValueError(f"配置验证失败: config.toml 解析错误: {e}") from e

    @property
    def database_url(self) -> str:
        """获取数据库连接URL。"""
        return self.pydantic_config.database_url

    @property
    def redis_url(self) -> str:
        """获取Redis连接URL。"""
        return str(self.pydantic_config.redis_url)

    @property
    def max_concurrent(self) -> int:
        """获取最大并发运行任务数。"""
        return self.pydantic_config.queue.max_concurrent

    @property
    def retry_delay_seconds(self) -> float:
        """获取失败任务重新入队前的等待时间（秒）。"""
        return self.pydantic_config.queue.retry_delay_seconds

    @property
    def scheduler_config(self) -> SchedulerConfig:
        return self.pydantic_config.scheduler

    @property
    def schedules(self) -> list[ScheduleConfig]:
        """获取各数据源的调度计划。"""
        return self.pydantic_config.schedules

    @property
    def crawler_base_url(self) -> str:
        """获取采集接口基础地址（不含末尾斜杠）。"""
        return str(self.pydantic_config.crawler.base_url).rstrip("/")

    @property
    def crawl_timeout_seconds(self) -> float | None:
        """获取单次采集超时（秒）。"""
        return self.pydantic_config.crawler.timeout_seconds

    @property
    def requests_per_minute(self) -> int:
        """获取每个数据源每分钟请求上限。"""
        return self.pydantic_config.crawler.requests_per_minute

    @property
    def cooldown_seconds_429(self) -> float:
        """获取429响应后的冷却时间（秒）。"""
        return self.pydantic_config.crawler.cooldown_seconds_429

    @property
    def execution_log_backend(self) -> Literal["memory", "database"]:
        return self.pydantic_config.execution_log.backend

    @property
    def execution_log_max_entries(self) -> int:
        return self.pydantic_config.execution_log.max_entries

    @property
    def notification_transport(self) -> Literal["redis", "none"]:
        """获取通知推送方式。"""
        return self.pydantic_config.notification.transport

    @property
    def watchers_backend(self) -> Literal["static", "redis", "database"]:
        """获取关注者查询后端。"""
        return self.pydantic_config.notification.watchers_backend

    @property
    def notification_config(self) -> NotificationConfig:
        """获取通知推送配置对象。"""
        return self.pydantic_config.notification

    @property
    def control_config(self) -> ControlConfig:
        return self.pydantic_config.control

    @property
    def monitor_config(self) -> MonitorConfig:
        return self.pydantic_config.monitor

    @property
    def needs_database(self) -> bool:
        """执行日志或关注者查询是否需要数据库。"""
        return self.execution_log_backend == "database" or self.watchers_backend == "database"

    @property
    def needs_redis(self) -> bool:
        """通知推送或关注者查询是否需要 Redis。"""
        return self.notification_transport == "redis" or self.watchers_backend == "redis"
