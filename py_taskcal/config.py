"""Server configuration."""

from __future__ import annotations

import os
from dataclasses import dataclass, field


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class ServerConfig:
    """Configuration for the CalDAV server.

    Every field defaults to an environment variable so that deployments can
    configure the server without command-line flags.
    """

    host: str = field(default_factory=lambda: os.getenv("TASKCAL_HOST", "127.0.0.1"))
    port: int = field(default_factory=lambda: int(os.getenv("TASKCAL_PORT", "8080")))
    prefix: str = field(default_factory=lambda: os.getenv("TASKCAL_PREFIX", ""))
    username: str = field(default_factory=lambda: os.getenv("TASKCAL_USER", "user"))
    email: str = field(default_factory=lambda: os.getenv("TASKCAL_EMAIL", ""))
    calendar_slug: str = field(default_factory=lambda: os.getenv("TASKCAL_CALENDAR", "personal"))
    calendar_name: str = field(default_factory=lambda: os.getenv("TASKCAL_CALENDAR_NAME", "Personal"))
    timezone: str = field(default_factory=lambda: os.getenv("TASKCAL_TIMEZONE", "UTC"))
    debug: bool = field(default_factory=lambda: _env_bool("TASKCAL_DEBUG"))

    def __post_init__(self) -> None:
        if self.prefix and not self.prefix.startswith("/"):
            self.prefix = "/" + self.prefix
        self.prefix = self.prefix.rstrip("/")
        if not 0 < self.port < 65536:
            raise ValueError(f"invalid port: {self.port}")
