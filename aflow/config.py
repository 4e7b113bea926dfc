from __future__ import annotations

import os
from typing import Literal, Optional

import yaml
from pydantic import BaseModel, Field


class RedisConfig(BaseModel):
    """Configuration for the Redis job queue."""

    url: Optional[str] = None
    host: str = "localhost"
    port: int = 6379
    db: int = 0
    password: Optional[str] = None
    prefix: str = "aflow"


class QueueConfig(BaseModel):
    """Job queue settings."""

    backend: Literal["inmemory", "redis"] = "inmemory"
    name: str = "workflow-execution"
    redis: RedisConfig = RedisConfig()


class SmtpConfig(BaseModel):
    """Outgoing mail settings for email notifications."""

    host: str = "localhost"
    port: int = 587
    user: Optional[str] = None
    password: Optional[str] = None
    sender: str = "noreply@localhost"
    timeout: float = 30.0
    tls: Optional[Literal["implicit", "starttls", "none"]] = None

    @property
    def tls_mode(self) -> str:
        """Explicit ``tls`` setting, else implied by the port (465 implicit, 25 none)."""
        if self.tls is not None:
            return self.tls
        if self.port == 465:
            return "implicit"
        if self.port == 25:
            return "none"
        return "starttls"


class RetryDefaults(BaseModel):
    """Per-step retry policy applied when a step does not declare one."""

    max_retries: int = Field(default=3, ge=0)
    initial_delay: float = Field(default=1000.0, ge=0)


class WorkerConfig(BaseModel):
    poll_interval: float = 1.0
    webhook_timeout: float = 10.0
    transform_timeout: float = Field(default=10.0, gt=0)


class AflowConfig(BaseModel):
    """Top-level configuration model."""

    queue: QueueConfig = QueueConfig()
    database_url: Optional[str] = None
    smtp: SmtpConfig = SmtpConfig()
    retry: RetryDefaults = RetryDefaults()
    worker: WorkerConfig = WorkerConfig()
    log_level: str = "INFO"


def _apply_env(config: AflowConfig) -> AflowConfig:
    env_db_url = os.getenv("AFLOW_DATABASE_URL") or os.getenv("DATABASE_URL")
    if env_db_url:
        config.database_url = env_db_url
    if os.getenv("AFLOW_QUEUE"):
        config.queue.backend = os.environ["AFLOW_QUEUE"].lower()
    if os.getenv("REDIS_URL"):
        config.queue.redis.url = os.environ["REDIS_URL"]
    if os.getenv("SMTP_HOST"):
        config.smtp.host = os.environ["SMTP_HOST"]
    if os.getenv("SMTP_PORT"):
        config.smtp.port = int(os.environ["SMTP_PORT"])
    if os.getenv("SMTP_USER"):
        config.smtp.user = os.environ["SMTP_USER"]
    if os.getenv("SMTP_PASS"):
        config.smtp.password = os.environ["SMTP_PASS"]
    if os.getenv("SMTP_FROM"):
        config.smtp.sender = os.environ["SMTP_FROM"]
    if os.getenv("SMTP_TLS"):
        config.smtp.tls = os.environ["SMTP_TLS"].lower()
    if os.getenv("AFLOW_TRANSFORM_TIMEOUT"):
        config.worker.transform_timeout = float(os.environ["AFLOW_TRANSFORM_TIMEOUT"])
    if os.getenv("AFLOW_LOG_LEVEL"):
        config.log_level = os.environ["AFLOW_LOG_LEVEL"]
    return config


def load_config(path: Optional[str] = None) -> AflowConfig:
    """Load configuration from YAML file.

    Args:
        path: Optional path to config file. Falls back to the AFLOW_CONFIG env
            variable or 'config.yaml' in the current directory.
    """

    config_path = path or os.getenv("AFLOW_CONFIG", "config.yaml")
    if os.path.exists(config_path):
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
        config = AflowConfig(**data)
    else:
        config = AflowConfig()

    return _apply_env(config)
