"""Behavior parameter schemas and binding validation.

A behavior declares the parameter shapes it accepts as a list of
parameter-set variants.  Validation is a two-level decision: ``param1``
selects the first variant that accepts it, and only that variant's
``param2`` rules apply.  For example a layer-tap accepts a layer id in
slot 1 and then a HID usage in slot 2, while a mod-tap accepts a modifier
usage in slot 1 and a HID usage in slot 2.

HID usage values pack ``modifiers << 24 | page << 16 | id``.
"""

from __future__ import annotations

from collections.abc import Collection, Mapping, Sequence
from typing import Any

from pydantic import BaseModel, Field, field_validator, model_validator

from kbsync.domain.keymap import WIRE_MODEL_CONFIG, BehaviorBinding
from kbsync.domain.types import HidUsagePage

MODIFIER_MASK = 0xFF000000
USAGE_MASK = 0x00FFFFFF
KEYBOARD_MIN_ID = 0x04
KEYBOARD_MODIFIER_IDS = range(0xE0, 0xE8)
CONSUMER_MIN_ID = 0x01

# --- Schema models ---


class ValueRange(BaseModel):
    model_config = WIRE_MODEL_CONFIG

    min: int
    max: int


class HidUsageLimits(BaseModel):
    """Upper bounds on usage ids per page; zero means the page is unsupported."""

    model_config = WIRE_MODEL_CONFIG

    keyboard_max: int = 0
    consumer_max: int = 0


class ParameterValueDescription(BaseModel):
    """One accepted shape for a parameter: constant, range, layer id, or HID usage."""

    model_config = WIRE_MODEL_CONFIG

    name: str = ""
    constant: int | None = None
    range: ValueRange | None = None
    layer_id: bool = False
    hid_usage: HidUsageLimits | None = None

    @field_validator("layer_id", mode="before")
    @classmethod
    def _marker(cls, value: Any) -> bool:
        # The wire encodes the marker as an empty message: ``{"layerId": {}}``.
        if isinstance(value, Mapping):
            return True
        return bool(value)

    @model_validator(mode="after")
    def _exactly_one_kind(self) -> ParameterValueDescription:
        kinds = [
            self.constant is not None,
            self.range is not None,
            self.layer_id,
            self.hid_usage is not None,
        ]
        if sum(kinds) != 1:
            msg = "A parameter value description must declare exactly one kind"
            raise ValueError(msg)
        return self


class BehaviorBindingParametersSet(BaseModel):
    """One parameter-set variant of a behavior's schema."""

    model_config = WIRE_MODEL_CONFIG

    param1: tuple[ParameterValueDescription, ...] = ()
    param2: tuple[ParameterValueDescription, ...] = ()


class BehaviorDetails(BaseModel):
    """Response payload of ``behaviors.getBehaviorDetails``."""

    model_config = WIRE_MODEL_CONFIG

    id: int
    display_name: str = ""
    metadata: tuple[BehaviorBindingParametersSet, ...] = Field(default_factory=tuple)


# --- HID usage helpers ---


def hid_usage(page: int, usage_id: int, modifiers: int = 0) -> int:
    """Pack a page/id pair and modifier flags into a parameter value."""
    return (modifiers & 0xFF) << 24 | (page & 0xFF) << 16 | (usage_id & 0xFFFF)


def hid_usage_page_and_id(value: int) -> tuple[int, int]:
    """Split a parameter value into ``(page, id)``, ignoring modifier flags."""
    usage = value & USAGE_MASK
    return (usage >> 16) & 0xFF, usage & 0xFFFF


def hid_modifiers(value: int) -> int:
    return (value & MODIFIER_MASK) >> 24


def _hid_usage_in_bounds(value: int, limits: HidUsageLimits) -> bool:
    page, usage_id = hid_usage_page_and_id(value)
    if page == HidUsagePage.KEYBOARD:
        if usage_id in KEYBOARD_MODIFIER_IDS:
            return True
        return KEYBOARD_MIN_ID <= usage_id <= limits.keyboard_max
    if page == HidUsagePage.CONSUMER:
        return CONSUMER_MIN_ID <= usage_id <= limits.consumer_max
    return False


# --- Validation ---


def _matches(
    layer_ids: Collection[int], candidate: int, description: ParameterValueDescription
) -> bool:
    if description.constant is not None:
        return candidate == description.constant
    if description.range is not None:
        return description.range.min <= candidate <= description.range.max
    if description.layer_id:
        return candidate in layer_ids
    if description.hid_usage is not None:
        return _hid_usage_in_bounds(candidate, description.hid_usage)
    return False


def validate_value(
    layer_ids: Collection[int],
    candidate: int | None,
    accepted: Sequence[ParameterValueDescription],
) -> bool:
    """Return True if *candidate* matches any of the *accepted* descriptions."""
    if candidate is None:
        return False
    return any(_matches(layer_ids, candidate, description) for description in accepted)


def _takes_no_parameters(schema: Sequence[BehaviorBindingParametersSet]) -> bool:
    return all(not variant.param1 for variant in schema)


def matching_parameter_set(
    schema: Sequence[BehaviorBindingParametersSet],
    layer_ids: Collection[int],
    param1: int | None,
) -> int | None:
    """Return the index of the first variant whose ``param1`` rules accept *param1*."""
    for index, variant in enumerate(schema):
        if validate_value(layer_ids, param1, variant.param1):
            return index
    return None


def validate_binding(
    schema: Sequence[BehaviorBindingParametersSet],
    layer_ids: Collection[int],
    param1: int | None = None,
    param2: int | None = None,
) -> bool:
    """Return True if ``(param1, param2)`` is legal under *schema*.

    A behavior without parameters accepts an absent or zero ``param1``.
    Otherwise the first variant accepting ``param1`` governs ``param2``;
    an empty ``param2`` rule set accepts any value, including absent.
    """
    if not param1 and _takes_no_parameters(schema):
        return True

    index = matching_parameter_set(schema, layer_ids, param1)
    if index is None:
        return False

    variant = schema[index]
    if not variant.param2:
        return True
    return validate_value(layer_ids, param2, variant.param2)


def validate_behavior_binding(
    behaviors: Mapping[int, BehaviorDetails],
    layer_ids: Collection[int],
    binding: BehaviorBinding,
) -> bool:
    """Validate a full binding against the catalog entry for its behavior."""
    details = behaviors.get(binding.behavior_id)
    if details is None:
        return False
    return validate_binding(details.metadata, layer_ids, binding.param1, binding.param2)
