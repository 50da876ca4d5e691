"""Pydantic configuration models with code-baked defaults.

Sparse TOML contract: defaults baked here, kbsync.toml only contains overrides.
An empty (or missing) config file is a valid configuration.
"""

from __future__ import annotations

from pydantic import BaseModel, Field

# --- kbsync.toml sections ---


class ConnectionConfig(BaseModel):
    """[connection] section."""

    model_config = {"frozen": True}

    first_call_timeout: float = Field(default=1.0, gt=0)
    discard_settle_delay: float = Field(default=0.6, ge=0)


class HistoryConfig(BaseModel):
    """[history] section.

    ``max_depth`` bounds the undo history; None keeps every entry.
    """

    model_config = {"frozen": True}

    max_depth: int | None = Field(default=None, ge=1)


class NotificationsConfig(BaseModel):
    """[notifications] section."""

    model_config = {"frozen": True}

    log_payloads: bool = True
