"""Device-reported enums shared by requests, responses, and notifications.

Values match the integers the device puts on the wire.
"""

from __future__ import annotations

from enum import IntEnum


class LockState(IntEnum):
    """Whether the device currently permits keymap edits."""

    LOCKED = 0
    UNLOCKED = 1


class SetLayerBindingResponse(IntEnum):
    """Result codes for ``keymap.setLayerBinding``."""

    OK = 0
    INVALID_LOCATION = 1
    INVALID_BEHAVIOR = 2
    INVALID_PARAMETERS = 3


class HidUsagePage(IntEnum):
    """HID usage pages a ``hidUsage`` parameter can address."""

    KEYBOARD = 0x07
    CONSUMER = 0x0C
