"""DeviceSyncController: keeps the local keymap mirror in step with the device.

One controller exists per connection.  It owns the connection-scoped
:class:`NotificationRouter`, the :class:`CommandStack`, the abort event that
ends the notification loop, and every mirror of device state.  Nothing else
mutates the mirrors: edits change them inside history actions, and pushed
notifications change them inside router subscribers.

Edits return a :class:`ServiceResult` immediately.  A rejected result means
nothing was sent; an accepted one means the edit was handed to the history
and will run in the background.  A binding edit is applied to the mirror
before the device confirms it.  If the device call then fails the mirror is
left as it is and the key is recorded as unconfirmed.  A later successful
write to the same key, or ``refresh_keymap()``, clears it again.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any, TypeVar

from kbsync.config.logging import bind_device, unbind_device
from kbsync.config.settings import KbSettings
from kbsync.domain.keymap import (
    BehaviorBinding,
    DeviceInfo,
    Keymap,
    Layer,
    binding_at,
    with_binding,
    with_layer_inserted,
    with_layer_name,
    without_layer,
)
from kbsync.domain.lighting import BacklightState, RgbUnderglowState, merge_state
from kbsync.domain.notifications import (
    BACKLIGHT_STATE_CHANGED,
    LOCK_STATE_CHANGED,
    RGB_UNDERGLOW_STATE_CHANGED,
    UNSAVED_CHANGES_STATUS_CHANGED,
)
from kbsync.domain.parameters import BehaviorDetails, validate_behavior_binding
from kbsync.domain.types import LockState, SetLayerBindingResponse
from kbsync.events.listener import ListenSummary, listen_for_notifications
from kbsync.events.router import NotificationRouter
from kbsync.infrastructure.rpc import (
    DeviceRejectedError,
    call_rpc,
    expect_arm,
    expect_ok,
    response_arm,
)
from kbsync.services.result import ServiceResult, failure
from kbsync.sync.history import CommandStack

if TYPE_CHECKING:
    from kbsync.infrastructure.rpc import Envelope, RpcConnection
    from kbsync.sync.history import Inverse

logger = logging.getLogger(__name__)

LightingT = TypeVar("LightingT", RgbUnderglowState, BacklightState)


def _toggle(
    forward: Callable[[], Awaitable[None]], backward: Callable[[], Awaitable[None]]
) -> Inverse:
    """History action running *forward* whose inverse runs *backward*, and so on."""

    async def run() -> Inverse:
        await forward()
        return _toggle(backward, forward)

    return run


class DeviceSyncController:
    """Glue between the RPC connection, the history, and the local mirrors.

    Attributes:
        router: Connection-scoped notification router.
        history: Undo/redo stack for every state-changing call.
        device_info: Name/serial reported on connect.
        lock_state: Last known lock state (LOCKED until the device says otherwise).
        keymap: Local keymap mirror, or None while not loaded.
        physical_layouts: Opaque ``getPhysicalLayouts`` payload.
        behaviors: Behavior catalog keyed by behavior id.
        unsaved: Whether the device reports unsaved keymap changes.
        rgb_underglow: Underglow state, or None when the device has none.
        backlight: Backlight state, or None when the device has none.
    """

    def __init__(self, connection: RpcConnection, settings: KbSettings | None = None) -> None:
        self._conn = connection
        self._settings = settings or KbSettings()
        self.router = NotificationRouter()
        self.history = CommandStack(max_depth=self._settings.history.max_depth)
        self._abort = asyncio.Event()
        self._listener: asyncio.Task[ListenSummary] | None = None

        self.device_info: DeviceInfo | None = None
        self.lock_state = LockState.LOCKED
        self.keymap: Keymap | None = None
        self.physical_layouts: dict[str, Any] | None = None
        self.behaviors: dict[int, BehaviorDetails] = {}
        self.unsaved = False
        self.rgb_underglow: RgbUnderglowState | None = None
        self.backlight: BacklightState | None = None
        self._unconfirmed: set[tuple[int, int]] = set()

    @property
    def connected(self) -> bool:
        return self._listener is not None and not self._listener.done()

    @property
    def unconfirmed(self) -> bool:
        """Whether the mirror holds a binding the device did not accept."""
        return bool(self._unconfirmed)

    @property
    def unconfirmed_keys(self) -> frozenset[tuple[int, int]]:
        """``(layer_id, key_position)`` of every unconfirmed binding."""
        return frozenset(self._unconfirmed)

    # ------------------------------------------------------------------
    # Connection lifecycle
    # ------------------------------------------------------------------

    async def connect(self) -> ServiceResult:
        """Verify the device answers, start the notification loop, and load state."""
        op = "connect"
        if self._listener is not None or self._abort.is_set():
            return failure(op, "ALREADY_USED", "This controller has already been connected")

        timeout = self._settings.connection.first_call_timeout
        try:
            response = await asyncio.wait_for(
                call_rpc(self._conn, {"core": {"getDeviceInfo": True}}), timeout
            )
            self.device_info = DeviceInfo.model_validate(expect_arm(response, "core", "getDeviceInfo"))
        except Exception as exc:
            logger.warning("Failed first RPC call: %r", exc)
            self._abort.set()
            return failure(op, "CONNECT_FAILED", "Device did not answer the first call", reason=repr(exc))

        bind_device(self.device_info.name)

        self.router.subscribe(LOCK_STATE_CHANGED, self._on_lock_state_changed)
        self.router.subscribe(UNSAVED_CHANGES_STATUS_CHANGED, self._on_unsaved_changes_status_changed)
        self.router.subscribe(RGB_UNDERGLOW_STATE_CHANGED, self._on_rgb_underglow_state_changed)
        self.router.subscribe(BACKLIGHT_STATE_CHANGED, self._on_backlight_state_changed)
        self._listener = asyncio.ensure_future(
            listen_for_notifications(
                self._conn.notifications,
                self.router,
                self._abort,
                log_payloads=self._settings.notifications.log_payloads,
            )
        )
        self._listener.add_done_callback(self._on_listener_done)

        lock = await self.refresh_lock_state()
        warnings = [lock.error.message] if lock.error else []
        warnings.extend(lock.warnings)
        return ServiceResult(
            ok=True,
            op=op,
            data={"device": self.device_info.name, "lock_state": self.lock_state.name.lower()},
            warnings=warnings,
        )

    async def disconnect(self) -> ServiceResult:
        """Close the request side, fire the abort event, and wait for the loop to end."""
        op = "disconnect"
        if self._listener is None:
            return failure(op, "NOT_CONNECTED", "No device connection")

        warnings: list[str] = []
        try:
            await self._conn.close()
        except Exception as exc:
            logger.debug("Closing the request channel failed", exc_info=True)
            warnings.append(f"Closing the request channel failed: {exc}")
        self._abort.set()
        summary = await self.wait_closed()
        data = {"notifications": summary.received} if summary else {}
        return ServiceResult(ok=True, op=op, data=data, warnings=warnings)

    async def wait_closed(self) -> ListenSummary | None:
        """Wait for the notification loop; None if it never ran or failed.

        Also drops the ``device`` log field from the calling context.
        """
        if self._listener is None:
            return None
        try:
            return await self._listener
        except Exception:
            return None
        finally:
            unbind_device()

    def _on_listener_done(self, task: asyncio.Task[ListenSummary]) -> None:
        if not task.cancelled() and task.exception() is not None:
            logger.warning("Notification loop failed; treating as disconnect", exc_info=task.exception())
        else:
            logger.debug("Notification loop finished; connection closed")
        # Runs in the loop task's context; wait_closed() unbinds the caller's.
        self._abort.set()
        self.history.reset()
        self.router.clear()
        self.device_info = None
        self.lock_state = LockState.LOCKED
        self.keymap = None
        self.physical_layouts = None
        self.behaviors = {}
        self.unsaved = False
        self.rgb_underglow = None
        self.backlight = None
        self._unconfirmed.clear()

    # ------------------------------------------------------------------
    # Notification subscribers
    # ------------------------------------------------------------------

    async def _on_lock_state_changed(self, state: LockState) -> None:
        await self._apply_lock_state(LockState(state))

    def _on_unsaved_changes_status_changed(self, status: bool) -> None:
        self.unsaved = bool(status)

    def _on_rgb_underglow_state_changed(self, state: RgbUnderglowState) -> None:
        self.rgb_underglow = state

    def _on_backlight_state_changed(self, state: BacklightState) -> None:
        self.backlight = state

    async def _apply_lock_state(self, state: LockState) -> list[str]:
        previous = self.lock_state
        self.lock_state = state
        if state != LockState.UNLOCKED:
            self.behaviors = {}
            self.rgb_underglow = None
            self.backlight = None
            return []
        if previous == LockState.UNLOCKED and self.keymap is not None and self.behaviors:
            return []
        return await self._load_device_data()

    async def _load_device_data(self) -> list[str]:
        results = await asyncio.gather(
            self.refresh_keymap(),
            self.load_physical_layouts(),
            self.check_unsaved_changes(),
            self.load_behaviors(),
            self.refresh_lighting(),
        )
        return [f"{r.op}: {r.error.message}" for r in results if r.error is not None]

    # ------------------------------------------------------------------
    # One-shot reads
    # ------------------------------------------------------------------

    async def refresh_lock_state(self) -> ServiceResult:
        """Poll the lock state; unlocking loads the keymap and behavior catalog."""
        op = "refresh_lock_state"
        try:
            response = await call_rpc(self._conn, {"core": {"getLockState": True}})
            raw = response_arm(response, "core", "getLockState")
            state = LockState(raw) if raw is not None else LockState.LOCKED
        except Exception as exc:
            return self._rpc_failure(op, exc)
        warnings = await self._apply_lock_state(state)
        return ServiceResult(
            ok=True, op=op, data={"lock_state": state.name.lower()}, warnings=warnings
        )

    async def refresh_keymap(self) -> ServiceResult:
        """Replace the mirror with the device's keymap, clearing unconfirmed keys."""
        op = "refresh_keymap"
        try:
            response = await call_rpc(self._conn, {"keymap": {"getKeymap": True}})
            keymap = Keymap.model_validate(expect_arm(response, "keymap", "getKeymap"))
        except Exception as exc:
            return self._rpc_failure(op, exc)
        self.keymap = keymap
        self._unconfirmed.clear()
        return ServiceResult(ok=True, op=op, data={"layers": len(keymap.layers)})

    async def load_physical_layouts(self) -> ServiceResult:
        op = "load_physical_layouts"
        try:
            response = await call_rpc(self._conn, {"keymap": {"getPhysicalLayouts": True}})
            layouts = expect_arm(response, "keymap", "getPhysicalLayouts")
        except Exception as exc:
            return self._rpc_failure(op, exc)
        self.physical_layouts = dict(layouts)
        return ServiceResult(ok=True, op=op, data={"layouts": len(layouts.get("layouts", ()))})

    async def check_unsaved_changes(self) -> ServiceResult:
        op = "check_unsaved_changes"
        try:
            response = await call_rpc(self._conn, {"keymap": {"checkUnsavedChanges": True}})
        except Exception as exc:
            return self._rpc_failure(op, exc)
        self.unsaved = bool(response_arm(response, "keymap", "checkUnsavedChanges"))
        return ServiceResult(ok=True, op=op, data={"unsaved": self.unsaved})

    async def load_behaviors(self) -> ServiceResult:
        """Fetch the behavior catalog: list ids, then fetch details concurrently."""
        op = "load_behaviors"
        try:
            response = await call_rpc(self._conn, {"behaviors": {"listAllBehaviors": True}})
            ids = expect_arm(response, "behaviors", "listAllBehaviors").get("behaviors", [])
            responses = await asyncio.gather(
                *(
                    call_rpc(self._conn, {"behaviors": {"getBehaviorDetails": {"behaviorId": i}}})
                    for i in ids
                )
            )
        except Exception as exc:
            return self._rpc_failure(op, exc)

        behaviors: dict[int, BehaviorDetails] = {}
        warnings: list[str] = []
        for behavior_id, detail_response in zip(ids, responses, strict=True):
            raw = response_arm(detail_response, "behaviors", "getBehaviorDetails")
            if raw is None:
                warnings.append(f"No details for behavior {behavior_id}")
                continue
            details = BehaviorDetails.model_validate(raw)
            behaviors[details.id] = details

        logger.debug("Loaded %d behaviors", len(behaviors))
        self.behaviors = behaviors
        return ServiceResult(ok=True, op=op, data={"behaviors": len(behaviors)}, warnings=warnings)

    async def refresh_lighting(self) -> ServiceResult:
        """Fetch underglow and backlight state.

        Firmware built without a lighting feature fails the matching call, so
        a failure leaves that mirror at None rather than failing the result.
        """
        op = "refresh_lighting"
        self.rgb_underglow, self.backlight = await asyncio.gather(
            self._get_lighting("getRgbUnderglowState", RgbUnderglowState),
            self._get_lighting("getBacklightState", BacklightState),
        )
        return ServiceResult(
            ok=True,
            op=op,
            data={"rgb_underglow": self.rgb_underglow is not None, "backlight": self.backlight is not None},
        )

    async def _get_lighting(self, call: str, model: type[LightingT]) -> LightingT | None:
        try:
            response = await call_rpc(self._conn, {"lighting": {call: True}})
            return model.model_validate(expect_arm(response, "lighting", call))
        except Exception as exc:
            logger.debug("lighting.%s unavailable: %r", call, exc)
            return None

    # ------------------------------------------------------------------
    # Lighting
    # ------------------------------------------------------------------

    async def set_rgb_underglow_state(self, **changes: Any) -> ServiceResult:
        """Change underglow fields (``on``, ``effect``, ``speed``, ``color``).

        Only the given fields are sent.  The mirror takes them once the device
        acknowledges; lighting changes are not recorded in history.
        """
        return await self._set_lighting(
            "set_rgb_underglow_state", "setRgbUnderglowState", "rgb_underglow", changes
        )

    async def set_backlight_state(self, **changes: Any) -> ServiceResult:
        """Change backlight fields (``on``, ``brightness``); see :meth:`set_rgb_underglow_state`."""
        return await self._set_lighting("set_backlight_state", "setBacklightState", "backlight", changes)

    async def _set_lighting(
        self, op: str, call: str, attr: str, changes: dict[str, Any]
    ) -> ServiceResult:
        if not self.connected:
            return failure(op, "NOT_CONNECTED", "No device connection")
        if self.lock_state != LockState.UNLOCKED:
            return failure(op, "LOCKED", "The device is locked; unlock it from the keyboard")
        current = getattr(self, attr)
        if current is None:
            return failure(op, "UNSUPPORTED", "The device does not report this lighting feature")
        if not changes:
            return failure(op, "INVALID_STATE", "No lighting fields given")
        try:
            merged, props = merge_state(current, changes)
        except ValueError as exc:
            return failure(op, "INVALID_STATE", str(exc))

        try:
            response = await call_rpc(self._conn, {"lighting": {call: props}})
        except Exception as exc:
            return self._rpc_failure(op, exc)
        if not response_arm(response, "lighting", call):
            logger.warning("lighting.%s refused: %r", call, response)
            return failure(op, "REJECTED", "Device refused the lighting change")

        setattr(self, attr, merged)
        return ServiceResult(ok=True, op=op, data=props)

    # ------------------------------------------------------------------
    # History-wrapped edits
    # ------------------------------------------------------------------

    def set_layer_binding(
        self, layer_index: int, key_position: int, binding: BehaviorBinding
    ) -> ServiceResult:
        """Bind a key, validated against the behavior catalog, as one undoable edit."""
        op = "set_layer_binding"
        rejected = self._edit_guard(op)
        if rejected is not None:
            return rejected
        assert self.keymap is not None

        try:
            previous = binding_at(self.keymap, layer_index, key_position)
        except IndexError as exc:
            return failure(op, "INVALID_LOCATION", str(exc), layer_index=layer_index, key_position=key_position)

        if not validate_behavior_binding(self.behaviors, self.keymap.layer_ids, binding):
            return failure(
                op,
                "INVALID_BINDING",
                "Binding does not match the behavior's parameter schema",
                binding=binding.to_wire(),
            )

        layer_id = self.keymap.layers[layer_index].id
        self.history.do_it(
            _toggle(
                lambda: self._write_binding(layer_id, key_position, binding),
                lambda: self._write_binding(layer_id, key_position, previous),
            )
        )
        return ServiceResult(
            ok=True,
            op=op,
            data={"layer_id": layer_id, "key_position": key_position, "binding": binding.to_wire()},
        )

    def add_layer(self) -> ServiceResult:
        op = "add_layer"
        rejected = self._edit_guard(op)
        if rejected is not None:
            return rejected
        assert self.keymap is not None
        if self.keymap.available_layers <= 0:
            return failure(op, "NO_LAYERS_AVAILABLE", "The device has no free layer slots")

        async def add() -> Inverse:
            index = await self._rpc_add_layer()
            return self._layer_removal(index)

        self.history.do_it(add)
        return ServiceResult(ok=True, op=op)

    def remove_layer(self, layer_index: int) -> ServiceResult:
        op = "remove_layer"
        rejected = self._edit_guard(op)
        if rejected is not None:
            return rejected
        assert self.keymap is not None
        if not 0 <= layer_index < len(self.keymap.layers):
            return failure(op, "INVALID_LOCATION", f"No layer at index {layer_index}")

        self.history.do_it(self._layer_removal(layer_index))
        return ServiceResult(ok=True, op=op, data={"layer_id": self.keymap.layers[layer_index].id})

    def rename_layer(self, layer_index: int, name: str) -> ServiceResult:
        op = "rename_layer"
        rejected = self._edit_guard(op)
        if rejected is not None:
            return rejected
        assert self.keymap is not None
        if not 0 <= layer_index < len(self.keymap.layers):
            return failure(op, "INVALID_LOCATION", f"No layer at index {layer_index}")
        limit = self.keymap.max_layer_name_length
        if limit and len(name) > limit:
            return failure(op, "INVALID_NAME", f"Layer names are limited to {limit} characters")

        layer = self.keymap.layers[layer_index]
        old_name = layer.name
        self.history.do_it(
            _toggle(
                lambda: self._write_layer_name(layer.id, name),
                lambda: self._write_layer_name(layer.id, old_name),
            )
        )
        return ServiceResult(ok=True, op=op, data={"layer_id": layer.id, "name": name})

    def move_layer(self, start_index: int, dest_index: int) -> ServiceResult:
        op = "move_layer"
        rejected = self._edit_guard(op)
        if rejected is not None:
            return rejected
        assert self.keymap is not None
        count = len(self.keymap.layers)
        if not (0 <= start_index < count and 0 <= dest_index < count):
            return failure(op, "INVALID_LOCATION", f"Layer indexes must be below {count}")

        self.history.do_it(
            _toggle(
                lambda: self._write_layer_move(start_index, dest_index),
                lambda: self._write_layer_move(dest_index, start_index),
            )
        )
        return ServiceResult(ok=True, op=op, data={"start_index": start_index, "dest_index": dest_index})

    # ------------------------------------------------------------------
    # Persistence on the device
    # ------------------------------------------------------------------

    async def save_changes(self) -> ServiceResult:
        op = "save_changes"
        try:
            response = await call_rpc(self._conn, {"keymap": {"saveChanges": True}})
            expect_ok(response, "keymap", "saveChanges")
        except Exception as exc:
            return self._rpc_failure(op, exc)
        self.unsaved = False
        return ServiceResult(ok=True, op=op)

    async def discard_changes(self) -> ServiceResult:
        """Revert the device to its saved keymap and reload the mirror.

        History is cleared: its entries describe edits that no longer exist.
        """
        op = "discard_changes"
        self.keymap = None
        try:
            response = await call_rpc(self._conn, {"keymap": {"discardChanges": True}})
            if not expect_arm(response, "keymap", "discardChanges"):
                raise DeviceRejectedError("keymap.discardChanges", response)
        except Exception as exc:
            await self.refresh_keymap()
            return self._rpc_failure(op, exc)

        self.history.reset()
        await asyncio.sleep(self._settings.connection.discard_settle_delay)
        refreshed = await self.refresh_keymap()
        self.unsaved = False
        warnings = [refreshed.error.message] if refreshed.error else []
        return ServiceResult(ok=True, op=op, warnings=warnings)

    async def reset_settings(self) -> ServiceResult:
        """Restore the device's stock settings and reload every mirror."""
        op = "reset_settings"
        try:
            response = await call_rpc(self._conn, {"core": {"resetSettings": True}})
            ok = bool(response_arm(response, "core", "resetSettings"))
        except Exception as exc:
            self.history.reset()
            return self._rpc_failure(op, exc)

        self.history.reset()
        if not ok:
            logger.error("Failed to reset settings: %r", response)
            return failure(op, "RESET_FAILED", "Device refused to reset settings")
        warnings = await self._load_device_data() if self.lock_state == LockState.UNLOCKED else []
        return ServiceResult(ok=True, op=op, warnings=warnings)

    # ------------------------------------------------------------------
    # Internal: RPC writes used by history actions
    # ------------------------------------------------------------------

    async def _write_binding(self, layer_id: int, key_position: int, binding: BehaviorBinding) -> None:
        if self.keymap is not None:
            self.keymap = with_binding(self.keymap, self._layer_index(layer_id), key_position, binding)
        self.unsaved = True
        request: Envelope = {
            "keymap": {
                "setLayerBinding": {
                    "layerId": layer_id,
                    "keyPosition": key_position,
                    "binding": binding.to_wire(),
                }
            }
        }
        try:
            response = await call_rpc(self._conn, request)
            code = expect_arm(response, "keymap", "setLayerBinding")
            if code != SetLayerBindingResponse.OK:
                raise DeviceRejectedError("keymap.setLayerBinding", response)
        except Exception:
            self._unconfirmed.add((layer_id, key_position))
            raise
        self._unconfirmed.discard((layer_id, key_position))

    async def _write_layer_name(self, layer_id: int, name: str) -> None:
        response = await call_rpc(
            self._conn, {"keymap": {"setLayerProps": {"layerId": layer_id, "name": name}}}
        )
        if expect_arm(response, "keymap", "setLayerProps") != 0:
            raise DeviceRejectedError("keymap.setLayerProps", response)
        if self.keymap is not None:
            self.keymap = with_layer_name(self.keymap, self._layer_index(layer_id), name)
        self.unsaved = True

    async def _write_layer_move(self, start_index: int, dest_index: int) -> None:
        response = await call_rpc(
            self._conn, {"keymap": {"moveLayer": {"startIndex": start_index, "destIndex": dest_index}}}
        )
        self.keymap = Keymap.model_validate(expect_ok(response, "keymap", "moveLayer"))
        self.unsaved = True

    async def _rpc_add_layer(self) -> int:
        response = await call_rpc(self._conn, {"keymap": {"addLayer": {}}})
        ok = expect_ok(response, "keymap", "addLayer")
        layer = Layer.model_validate(ok["layer"])
        index = int(ok["index"])
        self.keymap = with_layer_inserted(self._require_keymap(), index, layer)
        self.unsaved = True
        return index

    async def _rpc_remove_layer(self, layer_index: int) -> Layer:
        keymap = self._require_keymap()
        layer = keymap.layers[layer_index]
        response = await call_rpc(self._conn, {"keymap": {"removeLayer": {"layerIndex": layer_index}}})
        expect_ok(response, "keymap", "removeLayer")
        self.keymap = without_layer(self._require_keymap(), layer_index)
        self.unsaved = True
        return layer

    async def _rpc_restore_layer(self, layer_id: int, at_index: int) -> None:
        response = await call_rpc(
            self._conn, {"keymap": {"restoreLayer": {"layerId": layer_id, "atIndex": at_index}}}
        )
        layer = Layer.model_validate(expect_ok(response, "keymap", "restoreLayer"))
        self.keymap = with_layer_inserted(self._require_keymap(), at_index, layer)
        self.unsaved = True

    def _layer_removal(self, layer_index: int) -> Inverse:
        async def run() -> Inverse:
            layer = await self._rpc_remove_layer(layer_index)
            return self._layer_restoration(layer.id, layer_index)

        return run

    def _layer_restoration(self, layer_id: int, at_index: int) -> Inverse:
        async def run() -> Inverse:
            await self._rpc_restore_layer(layer_id, at_index)
            return self._layer_removal(at_index)

        return run

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _edit_guard(self, op: str) -> ServiceResult | None:
        if not self.connected:
            return failure(op, "NOT_CONNECTED", "No device connection")
        if self.lock_state != LockState.UNLOCKED:
            return failure(op, "LOCKED", "The device is locked; unlock it from the keyboard")
        if self.keymap is None:
            return failure(op, "NO_KEYMAP", "The keymap has not been loaded")
        return None

    def _require_keymap(self) -> Keymap:
        if self.keymap is None:
            msg = "The keymap has not been loaded"
            raise RuntimeError(msg)
        return self.keymap

    def _layer_index(self, layer_id: int) -> int:
        for index, layer in enumerate(self._require_keymap().layers):
            if layer.id == layer_id:
                return index
        msg = f"Layer {layer_id} is not in the keymap"
        raise LookupError(msg)

    def _rpc_failure(self, op: str, exc: Exception) -> ServiceResult:
        logger.warning("%s failed: %r", op, exc)
        return failure(op, "RPC_FAILED", str(exc), exception=type(exc).__name__)
