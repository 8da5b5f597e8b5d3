"""Envelope and base models shared by every router."""

from dataclasses import asdict, is_dataclass
from typing import Any

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Base model that serializes snake_case fields as camelCase."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
    )


class ErrorResponse(BaseModel):
    success: bool = False
    error: str
    type: str | None = None


def success(result: Any = None, **extra: Any) -> dict[str, Any]:
    """Mutation envelope: ``{"success": true, ...}`` with camelCase keys."""
    body: dict[str, Any] = {"success": True}
    if is_dataclass(result) and not isinstance(result, type):
        body.update({to_camel(k): v for k, v in asdict(result).items()})
    elif isinstance(result, dict):
        body.update(result)
    body.update({to_camel(k): v for k, v in extra.items()})
    return body
