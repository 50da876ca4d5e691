"""Lighting state reported by devices with RGB underglow or a backlight.

Both payloads come from ``lighting.get*State`` responses and from the
``lighting.*StateChanged`` notifications.  Setters send partial states;
only the fields being changed are put on the wire.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any, TypeVar

from pydantic import BaseModel

from kbsync.domain.keymap import WIRE_MODEL_CONFIG

StateT = TypeVar("StateT", bound=BaseModel)


class HsbColor(BaseModel):
    """Hue (0-360), saturation and brightness (0-100)."""

    model_config = WIRE_MODEL_CONFIG

    h: int = 0
    s: int = 0
    b: int = 0


class RgbUnderglowState(BaseModel):
    model_config = WIRE_MODEL_CONFIG

    on: bool = False
    effect: int = 0
    speed: int = 1
    color: HsbColor | None = None
    effect_count: int = 0
    effect_names: tuple[str, ...] = ()

    @property
    def effects(self) -> tuple[str, ...]:
        """Effect names, numbered placeholders when the device sends none."""
        if self.effect_names:
            return self.effect_names
        return tuple(f"Effect {i}" for i in range(self.effect_count))


class BacklightState(BaseModel):
    model_config = WIRE_MODEL_CONFIG

    on: bool = False
    brightness: int = 0


def merge_state(state: StateT, changes: Mapping[str, Any]) -> tuple[StateT, dict[str, Any]]:
    """Apply snake_case *changes* to *state*.

    Returns the validated merged state and the wire form of just the
    changed fields.  Unknown field names raise ValueError.
    """
    unknown = set(changes) - set(type(state).model_fields)
    if unknown:
        msg = f"Unknown {type(state).__name__} field(s): {', '.join(sorted(unknown))}"
        raise ValueError(msg)
    merged = type(state).model_validate({**state.model_dump(), **changes})
    return merged, merged.model_dump(by_alias=True, include=set(changes))
