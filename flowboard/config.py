from __future__ import annotations

import os
from typing import List, Literal, Optional

import yaml
from pydantic import BaseModel, Field


class RedisConfig(BaseModel):
    """Configuration for the Redis event relay."""

    host: str = "localhost"
    port: int = 6379
    db: int = 0
    password: Optional[str] = None
    channel_prefix: str = "flowboard"


class TransportConfig(BaseModel):
    """Cross-process fan-out settings.

    ``local`` delivers events only to viewers connected to this process.
    """

    backend: Literal["local", "inmemory", "redis"] = "local"
    redis: RedisConfig = RedisConfig()


class StreamConfig(BaseModel):
    """Live viewer stream settings."""

    keepalive_seconds: float = 15.0
    max_pending_events: int = 256


class RetryConfig(BaseModel):
    limit: int = Field(5, ge=0)
    delay_seconds: float = Field(1.0, ge=0)
    backoff: Literal["constant", "linear", "exponential"] = "exponential"


class WorkflowConfig(BaseModel):
    """Parameters of the demo workflow template."""

    documents: List[str] = Field(
        default_factory=lambda: [
            "doc_7392_rev3.pdf",
            "report_x29_final.pdf",
            "memo_2024_05_12.pdf",
            "file_089_update.pdf",
            "proj_alpha_v2.pdf",
            "data_analysis_q2.pdf",
            "notes_meeting_52.pdf",
            "summary_fy24_draft.pdf",
        ]
    )
    fetch_delay_seconds: float = 1.0
    approval_timeout_seconds: float = 3600.0
    api_url: str = "https://api.cloudflare.com/client/v4/ips"
    api_timeout_seconds: float = 10.0
    sleep_seconds: float = 10.0
    write_url: Optional[str] = None
    write_retries: RetryConfig = RetryConfig()
    write_timeout_seconds: float = 900.0


class FlowboardConfig(BaseModel):
    """Top-level configuration model."""

    database_url: Optional[str] = None
    log_level: str = "INFO"
    log_format: Literal["json", "text"] = "json"
    transport: TransportConfig = TransportConfig()
    stream: StreamConfig = StreamConfig()
    workflow: WorkflowConfig = WorkflowConfig()


def load_config(path: Optional[str] = None) -> FlowboardConfig:
    """Load configuration from YAML file.

    Args:
        path: Optional path to config file. Falls back to FLOWBOARD_CONFIG env
            variable or 'flowboard.yaml' in the current directory.
    """

    config_path = path or os.getenv("FLOWBOARD_CONFIG", "flowboard.yaml")
    if os.path.exists(config_path):
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
        config = FlowboardConfig(**data)
    else:
        config = FlowboardConfig()

    env_db_url = os.getenv("FLOWBOARD_DATABASE_URL") or os.getenv("DATABASE_URL")
    if env_db_url:
        config.database_url = env_db_url
    env_transport = os.getenv("FLOWBOARD_TRANSPORT")
    if env_transport:
        config.transport.backend = env_transport.lower()
    env_log_level = os.getenv("FLOWBOARD_LOG_LEVEL") or os.getenv("LOG_LEVEL")
    if env_log_level:
        config.log_level = env_log_level.upper()
    return config
