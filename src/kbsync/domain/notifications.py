"""Notification envelopes and the topics they are published under.

An envelope is a two-level tagged union: one subsystem arm, and within it
one event arm carrying the payload.  The models enforce "at most one arm"
at both levels; an envelope with no populated arm is a keepalive and has
no topic.

Topics are ``rpc_notification.<subsystem>.<event>`` using the wire keys,
so ``{"keymap": {"unsavedChangesStatusChanged": true}}`` is published on
``rpc_notification.keymap.unsavedChangesStatusChanged`` with payload
``True``.

Subsystems and events without a model here are kept as raw extras and
still routed, with the raw value as payload.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel, model_validator

from kbsync.domain.keymap import WIRE_MODEL_CONFIG
from kbsync.domain.lighting import BacklightState, RgbUnderglowState
from kbsync.domain.types import LockState

NOTIFICATION_TOPIC = "rpc_notification"


def topic_for(subsystem: str, event: str) -> str:
    """Build the fine-grained topic for a subsystem/event pair."""
    return ".".join((NOTIFICATION_TOPIC, subsystem, event))


class _TaggedUnion(BaseModel):
    model_config = {**WIRE_MODEL_CONFIG, "extra": "allow"}

    def _populated(self) -> list[tuple[str, Any]]:
        arms = [
            (field.alias or name, getattr(self, name))
            for name, field in type(self).model_fields.items()
        ]
        arms.extend((self.model_extra or {}).items())
        return [(key, value) for key, value in arms if value is not None]

    @model_validator(mode="after")
    def _at_most_one_arm(self) -> _TaggedUnion:
        populated = [key for key, _ in self._populated()]
        if len(populated) > 1:
            msg = f"Expected at most one populated arm, got {', '.join(populated)}"
            raise ValueError(msg)
        return self

    def active_arm(self) -> tuple[str, Any] | None:
        """Return ``(wire_key, value)`` of the populated arm, or None."""
        populated = self._populated()
        return populated[0] if populated else None


class CoreNotification(_TaggedUnion):
    lock_state_changed: LockState | None = None


class KeymapNotification(_TaggedUnion):
    unsaved_changes_status_changed: bool | None = None


class LightingNotification(_TaggedUnion):
    rgb_underglow_state_changed: RgbUnderglowState | None = None
    backlight_state_changed: BacklightState | None = None


class Notification(_TaggedUnion):
    """Top-level envelope read off the notification stream."""

    core: CoreNotification | None = None
    keymap: KeymapNotification | None = None
    lighting: LightingNotification | None = None


LOCK_STATE_CHANGED = topic_for("core", "lockStateChanged")
UNSAVED_CHANGES_STATUS_CHANGED = topic_for("keymap", "unsavedChangesStatusChanged")
RGB_UNDERGLOW_STATE_CHANGED = topic_for("lighting", "rgbUnderglowStateChanged")
BACKLIGHT_STATE_CHANGED = topic_for("lighting", "backlightStateChanged")


@dataclass(frozen=True)
class RoutedEvent:
    topic: str
    payload: Any


def decode_notification(value: Any) -> Notification:
    """Coerce a raw envelope (mapping or model) into a :class:`Notification`.

    Raises pydantic.ValidationError for envelopes that break the union shape.
    """
    if isinstance(value, Notification):
        return value
    return Notification.model_validate(value)


def _event_arm(arm: Any) -> tuple[str, Any] | None:
    if isinstance(arm, _TaggedUnion):
        return arm.active_arm()
    # Unmodelled subsystem: first populated key of the raw mapping.
    if isinstance(arm, Mapping):
        for key, value in arm.items():
            if value is not None:
                return str(key), value
    return None


def route_notification(envelope: Notification) -> RoutedEvent | None:
    """Derive the fine-grained topic and payload, or None if no arm is active."""
    subsystem = envelope.active_arm()
    if subsystem is None:
        return None
    subsystem_key, arm = subsystem
    event = _event_arm(arm)
    if event is None:
        return None
    event_key, payload = event
    return RoutedEvent(topic_for(subsystem_key, event_key), payload)
