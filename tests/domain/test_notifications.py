"""Tests for notification envelope decoding and topic derivation."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from kbsync.domain.lighting import BacklightState, HsbColor, RgbUnderglowState
from kbsync.domain.notifications import (
    BACKLIGHT_STATE_CHANGED,
    LOCK_STATE_CHANGED,
    RGB_UNDERGLOW_STATE_CHANGED,
    UNSAVED_CHANGES_STATUS_CHANGED,
    Notification,
    decode_notification,
    route_notification,
    topic_for,
)
from kbsync.domain.types import LockState


class TestTopics:
    def test_topic_for(self) -> None:
        assert topic_for("core", "lockStateChanged") == "rpc_notification.core.lockStateChanged"

    def test_known_topics(self) -> None:
        assert UNSAVED_CHANGES_STATUS_CHANGED == "rpc_notification.keymap.unsavedChangesStatusChanged"
        assert LOCK_STATE_CHANGED == "rpc_notification.core.lockStateChanged"
        assert RGB_UNDERGLOW_STATE_CHANGED == "rpc_notification.lighting.rgbUnderglowStateChanged"
        assert BACKLIGHT_STATE_CHANGED == "rpc_notification.lighting.backlightStateChanged"


class TestRouteNotification:
    def test_unsaved_changes(self) -> None:
        routed = route_notification(decode_notification({"keymap": {"unsavedChangesStatusChanged": True}}))
        assert routed is not None
        assert routed.topic == UNSAVED_CHANGES_STATUS_CHANGED
        assert routed.payload is True

    def test_false_payload_is_still_active(self) -> None:
        routed = route_notification(decode_notification({"keymap": {"unsavedChangesStatusChanged": False}}))
        assert routed is not None
        assert routed.payload is False

    def test_lock_state_payload(self) -> None:
        routed = route_notification(decode_notification({"core": {"lockStateChanged": 1}}))
        assert routed is not None
        assert routed.topic == LOCK_STATE_CHANGED
        assert routed.payload == LockState.UNLOCKED

    def test_rgb_underglow_payload(self) -> None:
        routed = route_notification(
            decode_notification(
                {"lighting": {"rgbUnderglowStateChanged": {"on": True, "color": {"h": 120, "s": 50, "b": 80}}}}
            )
        )
        assert routed is not None
        assert routed.topic == RGB_UNDERGLOW_STATE_CHANGED
        assert routed.payload == RgbUnderglowState(on=True, color=HsbColor(h=120, s=50, b=80))

    def test_backlight_payload(self) -> None:
        routed = route_notification(decode_notification({"lighting": {"backlightStateChanged": {"brightness": 40}}}))
        assert routed is not None
        assert routed.topic == BACKLIGHT_STATE_CHANGED
        assert routed.payload == BacklightState(brightness=40)

    def test_unmodelled_subsystem_routed_raw(self) -> None:
        routed = route_notification(decode_notification({"behaviors": {"somethingNew": {"id": 3}}}))
        assert routed is not None
        assert routed.topic == "rpc_notification.behaviors.somethingNew"
        assert routed.payload == {"id": 3}

    def test_unmodelled_event_in_known_subsystem(self) -> None:
        routed = route_notification(decode_notification({"core": {"batteryLevelChanged": 80}}))
        assert routed is not None
        assert routed.topic == "rpc_notification.core.batteryLevelChanged"
        assert routed.payload == 80

    def test_same_envelope_same_topic(self) -> None:
        raw = {"core": {"lockStateChanged": 0}}
        assert route_notification(decode_notification(raw)) == route_notification(decode_notification(raw))

    @pytest.mark.parametrize(
        "raw",
        [{}, {"keymap": {}}, {"keymap": None}, {"behaviors": {}}, {"behaviors": 3}],
    )
    def test_no_active_arm(self, raw: dict) -> None:
        assert route_notification(decode_notification(raw)) is None

    def test_already_decoded(self) -> None:
        envelope = Notification.model_validate({"core": {"lockStateChanged": 0}})
        assert decode_notification(envelope) is envelope


class TestMalformed:
    def test_two_subsystem_arms(self) -> None:
        with pytest.raises(ValidationError):
            decode_notification(
                {"core": {"lockStateChanged": 0}, "keymap": {"unsavedChangesStatusChanged": True}}
            )

    def test_known_and_unmodelled_subsystem_arms(self) -> None:
        with pytest.raises(ValidationError):
            decode_notification({"core": {"lockStateChanged": 0}, "behaviors": {"somethingNew": 1}})

    def test_two_lighting_event_arms(self) -> None:
        with pytest.raises(ValidationError):
            decode_notification(
                {"lighting": {"rgbUnderglowStateChanged": {"on": True}, "backlightStateChanged": {"on": True}}}
            )

    def test_wrong_payload_type(self) -> None:
        with pytest.raises(ValidationError):
            decode_notification({"core": {"lockStateChanged": 7}})
