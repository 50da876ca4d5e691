"""Shared pytest fixtures and test helpers for kbsync tests."""

from __future__ import annotations

import asyncio
import copy
from collections.abc import AsyncIterator
from typing import Any

import pytest
import pytest_asyncio
from click.testing import CliRunner

from kbsync.config.settings import KbSettings
from kbsync.domain.parameters import hid_usage
from kbsync.domain.types import HidUsagePage, LockState
from kbsync.infrastructure.rpc import Envelope, QueueNotificationStream, request_name
from kbsync.sync.controller import DeviceSyncController

KP = 1
MO = 2
TRANS = 3
LT = 4

KEY_A = hid_usage(HidUsagePage.KEYBOARD, 0x04)
KEY_B = hid_usage(HidUsagePage.KEYBOARD, 0x05)

_HID = {"hidUsage": {"keyboardMax": 0xFF, "consumerMax": 0xFFF}}

BEHAVIORS: dict[int, dict[str, Any]] = {
    KP: {"id": KP, "displayName": "Key Press", "metadata": [{"param1": [_HID]}]},
    MO: {"id": MO, "displayName": "Momentary Layer", "metadata": [{"param1": [{"layerId": {}}]}]},
    TRANS: {"id": TRANS, "displayName": "Transparent", "metadata": []},
    LT: {
        "id": LT,
        "displayName": "Layer-Tap",
        "metadata": [{"param1": [{"layerId": {}}], "param2": [_HID]}],
    },
}


def binding(behavior_id: int, param1: int = 0, param2: int = 0) -> dict[str, int]:
    return {"behaviorId": behavior_id, "param1": param1, "param2": param2}


def initial_keymap() -> dict[str, Any]:
    return {
        "layers": [
            {
                "id": 0,
                "name": "Base",
                "bindings": [binding(KP, KEY_A), binding(KP, KEY_B), binding(TRANS)],
            },
            {"id": 1, "name": "Lower", "bindings": [binding(TRANS)] * 3},
        ],
        "availableLayers": 2,
        "maxLayerNameLength": 8,
    }


# ---------------------------------------------------------------------------
# Fake device
# ---------------------------------------------------------------------------


class FakeDevice:
    """Scripted in-memory device speaking the request/response envelopes.

    Attributes:
        calls: ``subsystem.call`` names in the order they were received.
        fail: Names that raise the mapped exception instead of answering.
        overrides: Names that answer with the mapped response envelope.
        hang: Names that never answer.
    """

    def __init__(self, *, lock_state: LockState = LockState.UNLOCKED) -> None:
        self.notifications = QueueNotificationStream()
        self.lock_state = lock_state
        self.keymap = initial_keymap()
        self.saved_keymap = copy.deepcopy(self.keymap)
        self.unsaved = False
        self.removed_layers: dict[int, dict[str, Any]] = {}
        self.next_layer_id = 2
        self.closed = False
        self.rgb_underglow: dict[str, Any] | None = {
            "on": False,
            "effect": 0,
            "speed": 2,
            "color": {"h": 240, "s": 100, "b": 50},
            "effectCount": 0,
            "effectNames": ["Solid", "Breathe", "Spectrum"],
        }
        self.backlight: dict[str, Any] | None = None

        self.calls: list[str] = []
        self.fail: dict[str, Exception] = {}
        self.overrides: dict[str, dict[str, Any]] = {}
        self.hang: set[str] = set()

    # --- RpcConnection ---

    async def call(self, request: Envelope) -> dict[str, Any]:
        name = request_name(request)
        self.calls.append(name)
        await asyncio.sleep(0)
        if name in self.hang:
            await asyncio.Event().wait()
        if name in self.fail:
            raise self.fail[name]
        if name in self.overrides:
            return self.overrides[name]

        subsystem, call = name.split(".")
        args = request[subsystem][call]
        handler = getattr(self, "_" + call)
        return {subsystem: {call: handler(args)}}

    async def close(self) -> None:
        self.closed = True

    # --- helpers for tests ---

    def notify(self, envelope: dict[str, Any]) -> None:
        self.notifications.put(envelope)

    def binding_at(self, layer_index: int, key_position: int) -> dict[str, int]:
        return self.keymap["layers"][layer_index]["bindings"][key_position]

    def count(self, name: str) -> int:
        return self.calls.count(name)

    # --- handlers ---

    def _getDeviceInfo(self, _args: Any) -> dict[str, Any]:
        return {"name": "Test Board", "serialNumber": "0001"}

    def _getLockState(self, _args: Any) -> int:
        return int(self.lock_state)

    def _resetSettings(self, _args: Any) -> bool:
        self.keymap = initial_keymap()
        self.saved_keymap = copy.deepcopy(self.keymap)
        self.unsaved = False
        return True

    def _getKeymap(self, _args: Any) -> dict[str, Any]:
        return copy.deepcopy(self.keymap)

    def _getPhysicalLayouts(self, _args: Any) -> dict[str, Any]:
        return {"activeLayoutIndex": 0, "layouts": [{"name": "Default", "keys": []}]}

    def _checkUnsavedChanges(self, _args: Any) -> bool:
        return self.unsaved

    def _setLayerBinding(self, args: dict[str, Any]) -> int:
        layer = self._layer(args["layerId"])
        layer["bindings"][args["keyPosition"]] = dict(args["binding"])
        self.unsaved = True
        return 0

    def _saveChanges(self, _args: Any) -> dict[str, Any]:
        self.saved_keymap = copy.deepcopy(self.keymap)
        self.unsaved = False
        return {"ok": True}

    def _discardChanges(self, _args: Any) -> bool:
        self.keymap = copy.deepcopy(self.saved_keymap)
        self.unsaved = False
        return True

    def _addLayer(self, _args: Any) -> dict[str, Any]:
        layer = {"id": self.next_layer_id, "name": "", "bindings": [binding(TRANS)] * 3}
        self.next_layer_id += 1
        self.keymap["layers"].append(layer)
        self.keymap["availableLayers"] -= 1
        self.unsaved = True
        return {"ok": {"index": len(self.keymap["layers"]) - 1, "layer": copy.deepcopy(layer)}}

    def _removeLayer(self, args: dict[str, Any]) -> dict[str, Any]:
        layer = self.keymap["layers"].pop(args["layerIndex"])
        self.removed_layers[layer["id"]] = layer
        self.keymap["availableLayers"] += 1
        self.unsaved = True
        return {"ok": {}}

    def _restoreLayer(self, args: dict[str, Any]) -> dict[str, Any]:
        layer = self.removed_layers.pop(args["layerId"])
        self.keymap["layers"].insert(args["atIndex"], layer)
        self.keymap["availableLayers"] -= 1
        self.unsaved = True
        return {"ok": copy.deepcopy(layer)}

    def _setLayerProps(self, args: dict[str, Any]) -> int:
        self._layer(args["layerId"])["name"] = args["name"]
        self.unsaved = True
        return 0

    def _moveLayer(self, args: dict[str, Any]) -> dict[str, Any]:
        layers = self.keymap["layers"]
        layers.insert(args["destIndex"], layers.pop(args["startIndex"]))
        self.unsaved = True
        return {"ok": copy.deepcopy(self.keymap)}

    def _listAllBehaviors(self, _args: Any) -> dict[str, Any]:
        return {"behaviors": sorted(BEHAVIORS)}

    def _getBehaviorDetails(self, args: dict[str, Any]) -> dict[str, Any]:
        return copy.deepcopy(BEHAVIORS[args["behaviorId"]])

    def _getRgbUnderglowState(self, _args: Any) -> dict[str, Any]:
        return copy.deepcopy(self._lighting("rgb_underglow"))

    def _setRgbUnderglowState(self, args: dict[str, Any]) -> bool:
        self._lighting("rgb_underglow").update(args)
        return True

    def _getBacklightState(self, _args: Any) -> dict[str, Any]:
        return copy.deepcopy(self._lighting("backlight"))

    def _setBacklightState(self, args: dict[str, Any]) -> bool:
        self._lighting("backlight").update(args)
        return True

    def _lighting(self, feature: str) -> dict[str, Any]:
        state = getattr(self, feature)
        if state is None:
            msg = f"{feature} is not enabled on this device"
            raise RuntimeError(msg)
        return state

    def _layer(self, layer_id: int) -> dict[str, Any]:
        for layer in self.keymap["layers"]:
            if layer["id"] == layer_id:
                return layer
        raise KeyError(layer_id)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def cli_runner() -> CliRunner:
    """Provide a Click CLI test runner."""
    return CliRunner()


@pytest.fixture
def settings() -> KbSettings:
    """Settings with no discard settle delay so tests do not sleep."""
    return KbSettings(connection={"discard_settle_delay": 0})


@pytest.fixture
def device() -> FakeDevice:
    return FakeDevice()


@pytest_asyncio.fixture
async def controller(device: FakeDevice, settings: KbSettings) -> AsyncIterator[DeviceSyncController]:
    """A controller connected to an unlocked fake device, disconnected afterwards."""
    ctrl = DeviceSyncController(device, settings)
    result = await ctrl.connect()
    assert result.ok, result.error
    try:
        yield ctrl
    finally:
        if ctrl.connected:
            await ctrl.disconnect()


async def settle(controller: DeviceSyncController) -> None:
    """Wait for queued history actions and notification handlers."""
    await controller.history.settle()
    for _ in range(10):
        await asyncio.sleep(0)
    await controller.router.drain()
    await controller.history.settle()
