"""Tunable parameter definitions, snapshot decoding and canonical formatting."""
from __future__ import annotations

import math
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, Iterable, Iterator, Mapping, Tuple, Union

from .errors import DecodeError

Value = Union[int, float]

FLOAT_PRECISION = 6


class ParameterKind(str, Enum):
    FLOAT = "float"
    INT = "int"


@dataclass(frozen=True)
class ParameterSpec:
    """One tunable parameter: its JSON field name, env key and value type."""

    name: str
    env_key: str
    kind: ParameterKind


DEFAULT_PARAMETERS: Tuple[ParameterSpec, ...] = (
    ParameterSpec("small_bid", "BID_SMALL_AMOUNT", ParameterKind.FLOAT),
    ParameterSpec("large_bid", "BID_LARGE_AMOUNT", ParameterKind.FLOAT),
    ParameterSpec("max_concurrency", "BIDDER_MAX_CONCURRENT_PROOFS", ParameterKind.INT),
)


@dataclass(frozen=True)
class ParameterSnapshot:
    """Values fetched in one poll. Parameters the endpoint omitted are absent."""

    values: Mapping[str, Value] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "values", MappingProxyType(dict(self.values)))

    def __contains__(self, name: object) -> bool:
        return name in self.values

    def __iter__(self) -> Iterator[str]:
        return iter(self.values)

    def __len__(self) -> int:
        return len(self.values)

    def get(self, name: str, default: Any = None) -> Any:
        return self.values.get(name, default)


def format_float(value: float) -> str:
    """Fixed precision, then drop trailing fractional zeros and a bare point.

    ``0.5`` -> ``"0.5"``, ``10.0`` -> ``"10"``, ``0.500000000001`` -> ``"0.5"``.
    """
    text = f"{value:.{FLOAT_PRECISION}f}".rstrip("0").rstrip(".")
    if text == "-0":
        return "0"
    return text


def format_value(spec: ParameterSpec, value: Value) -> str:
    if spec.kind is ParameterKind.INT:
        return str(int(value))
    return format_float(float(value))


def _decode_field(spec: ParameterSpec, raw: Any) -> Value:
    # bool is an int subclass; reject it for both kinds.
    if isinstance(raw, bool):
        raise DecodeError(f"{spec.name}: expected {spec.kind.value}, got bool")
    if spec.kind is ParameterKind.INT:
        if not isinstance(raw, int):
            raise DecodeError(f"{spec.name}: expected int, got {type(raw).__name__}")
        return raw
    if not isinstance(raw, (int, float)):
        raise DecodeError(f"{spec.name}: expected float, got {type(raw).__name__}")
    value = float(raw)
    if not math.isfinite(value):
        raise DecodeError(f"{spec.name}: non-finite value {raw!r}")
    return value


def decode_snapshot(payload: Any, specs: Iterable[ParameterSpec] = DEFAULT_PARAMETERS) -> ParameterSnapshot:
    """Build a snapshot from a decoded JSON payload.

    Missing fields and explicit ``null`` are both treated as absent; unknown
    fields are ignored.
    """
    if not isinstance(payload, dict):
        raise DecodeError(f"expected a JSON object, got {type(payload).__name__}")
    values: Dict[str, Value] = {}
    for spec in specs:
        raw = payload.get(spec.name)
        if raw is None:
            continue
        values[spec.name] = _decode_field(spec, raw)
    return ParameterSnapshot(values)
