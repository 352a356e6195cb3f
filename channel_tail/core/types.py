"""Tagged message variants stored in the channel history."""

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, ClassVar

Scalar = str | int | float | bool | None


@dataclass(frozen=True, slots=True)
class SequenceMessage:
    """Array-shaped payload, stored with its timestamp token as the first item."""

    items: tuple[Any, ...]
    kind: ClassVar[str] = "sequence"

    def to_jsonable(self) -> list[Any]:
        return list(self.items)


@dataclass(frozen=True, slots=True)
class MappingMessage:
    """Object-shaped payload, stored verbatim."""

    fields: Mapping[str, Any]
    kind: ClassVar[str] = "mapping"

    def to_jsonable(self) -> dict[str, Any]:
        return dict(self.fields)


@dataclass(frozen=True, slots=True)
class ScalarMessage:
    """String, number, boolean or null payload, stored verbatim."""

    value: Scalar
    kind: ClassVar[str] = "scalar"

    def to_jsonable(self) -> Scalar:
        return self.value


Message = SequenceMessage | MappingMessage | ScalarMessage

MESSAGE_TYPES: tuple[type, ...] = (SequenceMessage, MappingMessage, ScalarMessage)
