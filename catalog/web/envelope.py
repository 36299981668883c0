"""
Response envelope helpers.

Every catalog endpoint answers HTTP 200 with:

    {
        "success": bool,
        "message": str,
        "data": <entity | entity[] | {"releases": [...]} | null>,
        "meta": {"status": ..., "strategy": ..., "approximate": ..., "attempts": [...]}
    }

`success` is True only when the resolution found something. `meta.status`
tells "nothing found" (empty) apart from "backends failed" (failed) and
"bad request" (invalid); `meta.attempts` lists what each strategy did when
nothing was found.
"""

from __future__ import annotations

from dataclasses import asdict, is_dataclass
from typing import Any

from catalog.core.strategies import Resolution, ResolutionStatus


def to_dict(item: Any) -> dict[str, Any]:
    """
    Convert an entity (dict or dataclass) to a dictionary.

    Args:
        item: Either a dict or a dataclass instance

    Returns:
        Dictionary representation
    """
    if isinstance(item, dict):
        return item
    if is_dataclass(item) and not isinstance(item, type):
        return asdict(item)
    raise TypeError(f"Cannot serialize {type(item).__name__}")


def envelope(
    success: bool,
    message: str,
    data: Any = None,
    meta: dict[str, Any] | None = None,
) -> dict[str, Any]:
    body: dict[str, Any] = {"success": success, "message": message, "data": data}
    if meta is not None:
        body["meta"] = meta
    return body


def _meta(resolution: Resolution[Any]) -> dict[str, Any]:
    meta: dict[str, Any] = {
        "status": resolution.status.value,
        "strategy": resolution.strategy,
        "approximate": resolution.approximate,
    }
    if not resolution.found:
        meta["attempts"] = [a.to_dict() for a in resolution.attempts]
    return meta


def _found_message(noun: str, resolution: Resolution[Any]) -> str:
    count = len(resolution.items)
    message = f"{noun.capitalize()} fetched successfully ({count})"
    if resolution.approximate:
        message += f"; approximate match via {resolution.strategy}"
    return message


def _failure_message(noun: str, resolution: Resolution[Any]) -> str:
    if resolution.status is ResolutionStatus.INVALID:
        return resolution.message or "Invalid request"
    if resolution.status is ResolutionStatus.FAILED:
        return f"Could not resolve {noun}: data store unavailable"
    return resolution.message or f"No {noun} found"


def single(noun: str, resolution: Resolution[Any]) -> dict[str, Any]:
    """Envelope for a one-entity lookup (`data` is the entity or null)."""
    if resolution.found and resolution.first is not None:
        return envelope(True, _found_message(noun, resolution), to_dict(resolution.first), _meta(resolution))
    return envelope(False, _failure_message(noun, resolution), None, _meta(resolution))


def many(noun: str, resolution: Resolution[Any], *, key: str | None = None) -> dict[str, Any]:
    """
    Envelope for a collection.

    With `key`, data is wrapped as `{key: [...]}`; otherwise it is the list.
    """
    items = [to_dict(i) for i in resolution.items] if resolution.found else []
    data: Any = {key: items} if key is not None else items
    if resolution.found:
        return envelope(True, _found_message(noun, resolution), data, _meta(resolution))
    return envelope(False, _failure_message(noun, resolution), data, _meta(resolution))
