"""InspectService: offline checks that need no device connection.

* ``check_binding`` runs the parameter validator against a behavior schema
  exported to JSON.
* ``replay_capture`` feeds a JSON Lines notification capture through the
  real read loop and router and reports what was published.
"""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Any

from pydantic import TypeAdapter

from kbsync.domain.parameters import (
    BehaviorBindingParametersSet,
    BehaviorDetails,
    matching_parameter_set,
    validate_binding,
)
from kbsync.events.listener import ListenSummary, listen_for_notifications
from kbsync.events.router import NotificationRouter
from kbsync.infrastructure.rpc import QueueNotificationStream, read_capture
from kbsync.services.base import BaseService
from kbsync.services.result import ServiceResult, failure

_SCHEMA_ADAPTER = TypeAdapter(tuple[BehaviorBindingParametersSet, ...])


def load_schema(path: Path) -> tuple[BehaviorBindingParametersSet, ...]:
    """Load parameter-set variants from JSON.

    Accepts either a bare list of variants or a behavior-details object
    carrying them under ``metadata``.
    """
    raw: Any = json.loads(path.read_text(encoding="utf-8"))
    if isinstance(raw, dict):
        return BehaviorDetails.model_validate(raw).metadata
    return _SCHEMA_ADAPTER.validate_python(raw)


class InspectService(BaseService):
    """Schema and notification tooling for the CLI."""

    def check_binding(
        self,
        schema_path: Path,
        param1: int | None,
        param2: int | None = None,
        *,
        layer_ids: list[int] | None = None,
    ) -> ServiceResult:
        op = "check_binding"
        try:
            schema = load_schema(schema_path)
        except (OSError, ValueError) as exc:
            # pydantic.ValidationError and json.JSONDecodeError are ValueErrors.
            code = "INVALID_SCHEMA" if isinstance(exc, ValueError) else "READ_FAILED"
            return failure(op, code, f"Cannot load schema {schema_path}: {exc}")

        layers = set(layer_ids or ())
        variant = matching_parameter_set(schema, layers, param1)
        data = {
            "param1": param1,
            "param2": param2,
            "variants": len(schema),
            "matched_variant": variant,
        }
        if not validate_binding(schema, layers, param1, param2):
            return failure(op, "INVALID_BINDING", "Parameters do not match the schema", **data)
        return ServiceResult(ok=True, op=op, data={"valid": True, **data})

    def replay_capture(self, capture_path: Path) -> ServiceResult:
        op = "replay_capture"
        try:
            envelopes = list(read_capture(capture_path))
        except (OSError, ValueError) as exc:
            return failure(op, "READ_FAILED", str(exc))

        summary = asyncio.run(self._replay(envelopes))
        warnings = [f"{summary.dropped} envelope(s) had no active event"] if summary.dropped else []
        return ServiceResult(
            ok=True,
            op=op,
            data={
                "received": summary.received,
                "published": summary.published,
                "dropped": summary.dropped,
                "topics": dict(sorted(summary.topics.items())),
            },
            warnings=warnings,
        )

    async def _replay(self, envelopes: list[Any]) -> ListenSummary:
        stream = QueueNotificationStream()
        for envelope in envelopes:
            stream.put(envelope)
        stream.end()

        return await listen_for_notifications(
            stream,
            NotificationRouter(),
            asyncio.Event(),
            log_payloads=self._settings.notifications.log_payloads,
        )
