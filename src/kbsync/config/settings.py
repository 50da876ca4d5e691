"""KbSettings: one frozen object for flags, environment and ``kbsync.toml``.

Sources, strongest first: keyword arguments (the CLI flags), ``KBSYNC_*``
environment variables (``__`` separates nested keys, so
``KBSYNC_HISTORY__MAX_DEPTH=20``), the discovered TOML file, then the
defaults baked into :mod:`kbsync.config.models`.
"""

from __future__ import annotations

from contextvars import ContextVar
from pathlib import Path
from typing import Any

from pydantic import Field
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource

from kbsync.config.discovery import find_config, read_config_file
from kbsync.config.models import ConnectionConfig, HistoryConfig, NotificationsConfig

# The file chosen by from_cli(), visible to the TOML source while the
# settings object is being built.
_active_toml: ContextVar[Path | None] = ContextVar("kbsync_active_toml", default=None)


class TomlSettingsSource(PydanticBaseSettingsSource):
    """Settings source backed by a single TOML file (or nothing)."""

    def __init__(self, settings_cls: type[BaseSettings], toml_path: Path | None) -> None:
        super().__init__(settings_cls)
        self._sections: dict[str, Any] = (
            read_config_file(toml_path) if toml_path is not None and toml_path.is_file() else {}
        )

    def get_field_value(self, field: Any, field_name: str) -> tuple[Any, str, bool]:
        return self._sections.get(field_name), field_name, field_name in self._sections

    def __call__(self) -> dict[str, Any]:
        return dict(self._sections)


class KbSettings(BaseSettings):
    """Resolved configuration for the CLI and the sync controller.

    Attributes:
        config_path: The TOML file that was read, or None.
        no_color: Render human output without ANSI styling.
    """

    model_config = {
        "frozen": True,
        "env_prefix": "KBSYNC_",
        "env_nested_delimiter": "__",
    }

    config_path: Path | None = None

    json_output: bool = False
    quiet: bool = False
    verbose: bool = False
    log_json: bool = False
    no_color: bool = False

    connection: ConnectionConfig = Field(default_factory=ConnectionConfig)
    history: HistoryConfig = Field(default_factory=HistoryConfig)
    notifications: NotificationsConfig = Field(default_factory=NotificationsConfig)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        return init_settings, env_settings, TomlSettingsSource(settings_cls, _active_toml.get())

    @classmethod
    def from_cli(
        cls,
        *,
        config_path: str | None = None,
        start_dir: Path | None = None,
        **cli_flags: Any,
    ) -> KbSettings:
        """Build settings for one CLI invocation.

        An explicit *config_path* that does not exist is ignored rather than
        falling back to discovery.
        """
        if config_path:
            explicit = Path(config_path)
            toml_path = explicit if explicit.is_file() else None
        else:
            toml_path = find_config(start_dir)

        token = _active_toml.set(toml_path)
        try:
            return cls(config_path=toml_path, **cli_flags)
        finally:
            _active_toml.reset(token)
