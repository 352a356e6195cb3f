"""Decode raw channel payloads into message variants, timestamping sequence payloads."""

import json
import math
from datetime import datetime
from types import MappingProxyType
from typing import Any

from channel_tail.core.errors import DecodeError
from channel_tail.core.time_utils import format_clock, local_now
from channel_tail.core.types import MappingMessage, Message, ScalarMessage, SequenceMessage

# leaves headroom under the interpreter recursion limit for rendering
MAX_NESTING_DEPTH = 128


def _reject_constant(name: str) -> Any:
    raise ValueError(f"non-standard JSON constant {name}")


def _parse_finite_float(text: str) -> float:
    value = float(text)
    if not math.isfinite(value):
        raise ValueError(f"number out of range: {text}")
    return value


def _nesting_depth(value: Any) -> int:
    deepest = 0
    pending = [(value, 1)]
    while pending:
        node, depth = pending.pop()
        if isinstance(node, dict):
            children = node.values()
        elif isinstance(node, list):
            children = node
        else:
            continue
        deepest = max(deepest, depth)
        pending.extend((child, depth + 1) for child in children)
    return deepest


def decode_payload(raw: bytes | bytearray | str) -> Any:
    """Parse one UTF-8 JSON value, raising DecodeError on anything else.

    Values that could not be rendered back as standard JSON are rejected too:
    non-finite numbers and containers nested deeper than ``MAX_NESTING_DEPTH``.
    """

    try:
        text = raw.decode("utf-8") if isinstance(raw, (bytes, bytearray)) else raw
        value = json.loads(
            text,
            parse_constant=_reject_constant,
            parse_float=_parse_finite_float,
        )
    except (UnicodeDecodeError, ValueError, RecursionError) as exc:
        raise DecodeError(str(exc)) from exc

    depth = _nesting_depth(value)
    if depth > MAX_NESTING_DEPTH:
        raise DecodeError(f"nesting depth {depth} exceeds {MAX_NESTING_DEPTH}")
    return value


def normalize(raw: bytes | bytearray | str, now: datetime | None = None) -> Message:
    """Decode ``raw`` and wrap it; only sequence payloads gain a leading ``HH:MM:SS`` token."""

    value = decode_payload(raw)

    if isinstance(value, list):
        stamp = format_clock(now or local_now())
        return SequenceMessage(items=(stamp, *value))
    if isinstance(value, dict):
        return MappingMessage(fields=MappingProxyType(value))
    return ScalarMessage(value=value)
