"""BaseService: foundation for the CLI-facing services.

Every service receives the resolved :class:`KbSettings` at construction
time and returns :class:`ServiceResult` from its public methods.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from kbsync.config.settings import KbSettings


class BaseService:
    """Base for service-layer classes.

    Usage::

        class InspectService(BaseService):
            def check_binding(self, ...) -> ServiceResult:
                ...
    """

    def __init__(self, settings: KbSettings) -> None:
        self._settings = settings
