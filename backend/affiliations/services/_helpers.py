"""Shared utilities for the service layer."""

import json
from collections.abc import Mapping
from datetime import UTC, datetime
from uuid import uuid4

# Provider payloads are stored as opaque JSON TEXT.
JsonDict = dict[str, object]
Serializable = Mapping[str, object] | list[Mapping[str, object]]


def new_customer_id() -> str:
    return f"cus_{uuid4().hex[:8]}"


def now_iso() -> str:
    return datetime.now(UTC).isoformat()


def load_json(raw: str | None) -> JsonDict | None:
    """Deserialize a JSON TEXT column. Non-object or malformed payloads yield None."""
    if not raw:
        return None
    try:
        result: object = json.loads(raw)
    except ValueError:
        return None
    if isinstance(result, dict):
        return dict(result)
    return None


def dump_json(obj: Serializable) -> str:
    return json.dumps(obj, default=str)
