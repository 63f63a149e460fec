"""
Typed, versioned persistence codec.

Maps (artifacts, files) are written as explicit [key, value] entry lists so
the on-disk format does not depend on JSON object key handling. Every
document carries a format_version; decoding rejects versions it does not
know.
"""

from __future__ import annotations

import json
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from .errors import StorageError
from .models import ActivePointer, Checkpoint, ContextData, Session

FORMAT_VERSION = 1

_MAP_FIELDS = ("artifacts", "files")


def _check_version(data: dict[str, Any], kind: str) -> None:
    version = data.get("format_version", FORMAT_VERSION)
    if version != FORMAT_VERSION:
        raise StorageError(f"Unsupported {kind} format_version: {version}")


def encode_context(context: ContextData) -> dict[str, Any]:
    """Serialize a ContextData to a JSON-compatible dict."""
    data = context.model_dump(mode="json")
    for name in _MAP_FIELDS:
        data[name] = [[key, value] for key, value in data[name].items()]
    return data


def decode_context(data: dict[str, Any]) -> ContextData:
    """Inverse of encode_context."""
    raw = dict(data)
    for name in _MAP_FIELDS:
        entries = raw.get(name) or []
        if isinstance(entries, dict):
            raw[name] = entries
        else:
            raw[name] = {key: value for key, value in entries}
    try:
        return ContextData.model_validate(raw)
    except PydanticValidationError as e:
        raise StorageError(f"Invalid context data: {e}") from e


def encode_session(session: Session) -> dict[str, Any]:
    data = session.model_dump(mode="json", exclude={"context"})
    data["context"] = encode_context(session.context)
    return {"format_version": FORMAT_VERSION, **data}


def decode_session(data: dict[str, Any]) -> Session:
    _check_version(data, "session")
    raw = {k: v for k, v in data.items() if k != "format_version"}
    try:
        raw["context"] = decode_context(raw.get("context") or {})
        return Session.model_validate(raw)
    except PydanticValidationError as e:
        raise StorageError(f"Invalid session data: {e}") from e


def encode_checkpoint(checkpoint: Checkpoint) -> dict[str, Any]:
    data = checkpoint.model_dump(mode="json", exclude={"context"})
    data["context"] = encode_context(checkpoint.context)
    return {"format_version": FORMAT_VERSION, **data}


def decode_checkpoint(data: dict[str, Any]) -> Checkpoint:
    _check_version(data, "checkpoint")
    raw = {k: v for k, v in data.items() if k != "format_version"}
    try:
        raw["context"] = decode_context(raw.get("context") or {})
        return Checkpoint.model_validate(raw)
    except PydanticValidationError as e:
        raise StorageError(f"Invalid checkpoint data: {e}") from e


def encode_pointer(pointer: ActivePointer) -> dict[str, Any]:
    return pointer.model_dump(mode="json")


def decode_pointer(data: dict[str, Any]) -> ActivePointer:
    try:
        return ActivePointer.model_validate(data)
    except PydanticValidationError as e:
        raise StorageError(f"Invalid active pointer: {e}") from e


def dumps(data: dict[str, Any], indent: int | None = 2) -> str:
    """Deterministic JSON text for a persisted document."""
    return json.dumps(data, indent=indent, ensure_ascii=False)


def loads(text: str) -> dict[str, Any]:
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise StorageError(f"Corrupt JSON document: {e}") from e
    if not isinstance(data, dict):
        raise StorageError("Persisted document must be a JSON object")
    return data


__all__ = [
    "FORMAT_VERSION",
    "encode_context",
    "decode_context",
    "encode_session",
    "decode_session",
    "encode_checkpoint",
    "decode_checkpoint",
    "encode_pointer",
    "decode_pointer",
    "dumps",
    "loads",
]
