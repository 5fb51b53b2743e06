from __future__ import annotations

import os
from typing import Literal, Optional

import yaml
from pydantic import BaseModel, Field


class RedisConfig(BaseModel):
    """Configuration for Redis transport."""

    host: str = "localhost"
    port: int = 6379
    db: int = 0
    password: Optional[str] = None


class TransportConfig(BaseModel):
    """Transport configuration settings."""

    backend: Literal["inmemory", "redis"] = "inmemory"
    redis: RedisConfig = Field(default_factory=RedisConfig)


class TokenConfig(BaseModel):
    """Settings for live-channel subscription tokens."""

    secret: str = "gitfix-dev-secret"
    ttl_seconds: int = 300
    issuer: str = "gitfix"


class WorkflowConfig(BaseModel):
    """Engine tuning knobs."""

    # Multiplier applied to every workflow sleep; 0 disables pacing
    time_scale: float = 1.0
    # Sleeps longer than this release the worker instead of blocking it
    max_inline_sleep: Optional[float] = 60.0
    default_max_retries: int = 2
    debug: bool = False


class GitfixConfig(BaseModel):
    """Top-level configuration model."""

    transport: TransportConfig = Field(default_factory=TransportConfig)
    database_url: Optional[str] = None
    tokens: TokenConfig = Field(default_factory=TokenConfig)
    workflow: WorkflowConfig = Field(default_factory=WorkflowConfig)


def load_config(path: Optional[str] = None) -> GitfixConfig:
    """Load configuration from YAML file.

    Args:
        path: Optional path to config file. Falls back to GITFIX_CONFIG env
            variable or 'config.yaml' in the current directory.
    """

    config_path = path or os.getenv("GITFIX_CONFIG", "config.yaml")
    if os.path.exists(config_path):
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
        config = GitfixConfig(**data)
    else:
        config = GitfixConfig()

    env_db_url = os.getenv("GITFIX_DATABASE_URL") or os.getenv("DATABASE_URL")
    if env_db_url:
        config.database_url = env_db_url
    env_secret = os.getenv("GITFIX_TOKEN_SECRET")
    if env_secret:
        config.tokens.secret = env_secret
    return config
