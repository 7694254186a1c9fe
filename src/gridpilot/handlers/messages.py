"""Conversion between OCPP JSON payloads and the ``ocpp.v16`` dataclasses."""

from dataclasses import asdict
from datetime import datetime
from typing import Any, TypeVar

from ocpp.charge_point import camel_to_snake_case, remove_nones, snake_to_camel_case

from ..exceptions import ProtocolDecodeError

T = TypeVar("T")


def to_payload(message: Any) -> dict:
    """Serialize a request/response dataclass to a camelCase payload without nulls."""
    return snake_to_camel_case(remove_nones(asdict(message)))


def from_payload(cls: type[T], payload: dict) -> T:
    """Decode a camelCase payload into ``cls``."""
    try:
        return cls(**camel_to_snake_case(payload))
    except TypeError as e:
        raise ProtocolDecodeError(f"Invalid {cls.__name__} payload: {e}") from e


def parse_timestamp(value: str) -> datetime:
    return datetime.fromisoformat(value.replace("Z", "+00:00"))
