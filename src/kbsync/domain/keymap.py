"""Keymap mirror models and the pure edits applied to them.

The mirror is immutable: every edit returns a new :class:`Keymap`, so the
controller can swap its reference between suspension points without any
reader ever observing a half-applied change.
"""

from __future__ import annotations

from pydantic import BaseModel
from pydantic.alias_generators import to_camel

WIRE_MODEL_CONFIG = {"frozen": True, "populate_by_name": True, "alias_generator": to_camel}


class DeviceInfo(BaseModel):
    """Response payload of ``core.getDeviceInfo``."""

    model_config = WIRE_MODEL_CONFIG

    name: str
    serial_number: str | bytes | None = None


class BehaviorBinding(BaseModel):
    """A behavior identifier plus up to two integer parameters."""

    model_config = WIRE_MODEL_CONFIG

    behavior_id: int
    param1: int = 0
    param2: int = 0

    def to_wire(self) -> dict[str, int]:
        return self.model_dump(by_alias=True)


class Layer(BaseModel):
    model_config = WIRE_MODEL_CONFIG

    id: int
    name: str = ""
    bindings: tuple[BehaviorBinding, ...] = ()


class Keymap(BaseModel):
    """Response payload of ``keymap.getKeymap``."""

    model_config = WIRE_MODEL_CONFIG

    layers: tuple[Layer, ...] = ()
    available_layers: int = 0
    max_layer_name_length: int = 0

    @property
    def layer_ids(self) -> frozenset[int]:
        return frozenset(layer.id for layer in self.layers)


def binding_at(keymap: Keymap, layer_index: int, key_position: int) -> BehaviorBinding:
    """Return the binding at a location, raising IndexError if it does not exist."""
    _check_layer_index(keymap, layer_index)
    bindings = keymap.layers[layer_index].bindings
    if not 0 <= key_position < len(bindings):
        msg = f"Key position {key_position} out of range for layer {layer_index}"
        raise IndexError(msg)
    return bindings[key_position]


def with_binding(
    keymap: Keymap, layer_index: int, key_position: int, binding: BehaviorBinding
) -> Keymap:
    binding_at(keymap, layer_index, key_position)
    layer = keymap.layers[layer_index]
    bindings = list(layer.bindings)
    bindings[key_position] = binding
    return _replace_layer(keymap, layer_index, layer.model_copy(update={"bindings": tuple(bindings)}))


def with_layer_name(keymap: Keymap, layer_index: int, name: str) -> Keymap:
    _check_layer_index(keymap, layer_index)
    layer = keymap.layers[layer_index]
    return _replace_layer(keymap, layer_index, layer.model_copy(update={"name": name}))


def with_layer_inserted(keymap: Keymap, index: int, layer: Layer) -> Keymap:
    layers = list(keymap.layers)
    layers.insert(index, layer)
    return keymap.model_copy(
        update={
            "layers": tuple(layers),
            "available_layers": max(keymap.available_layers - 1, 0),
        }
    )


def without_layer(keymap: Keymap, layer_index: int) -> Keymap:
    """Remove a layer, returning its slot to the available pool."""
    _check_layer_index(keymap, layer_index)
    layers = list(keymap.layers)
    del layers[layer_index]
    return keymap.model_copy(
        update={
            "layers": tuple(layers),
            "available_layers": keymap.available_layers + 1,
        }
    )


def _replace_layer(keymap: Keymap, layer_index: int, layer: Layer) -> Keymap:
    layers = list(keymap.layers)
    layers[layer_index] = layer
    return keymap.model_copy(update={"layers": tuple(layers)})


def _check_layer_index(keymap: Keymap, layer_index: int) -> None:
    if not 0 <= layer_index < len(keymap.layers):
        msg = f"Layer index {layer_index} out of range ({len(keymap.layers)} layers)"
        raise IndexError(msg)
