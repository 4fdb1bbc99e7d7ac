"""Diff an incoming snapshot against the last-applied baseline."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Iterable, Optional

from .parameters import DEFAULT_PARAMETERS, ParameterSnapshot, ParameterSpec, Value, format_value

UpdateSet = Dict[str, str]


@dataclass
class Baseline:
    """Last values written and confirmed on disk.

    Lives in memory only, so a restarted watcher re-applies every present
    parameter on its first cycle.
    """

    values: Dict[str, Value] = field(default_factory=dict)
    initialized: bool = False

    def has(self, name: str) -> bool:
        return name in self.values

    def get(self, name: str) -> Optional[Value]:
        return self.values.get(name)

    def record(self, snapshot: ParameterSnapshot) -> None:
        """Advance to ``snapshot``. Parameters it omits keep their old value."""
        self.values.update(snapshot.values)
        self.initialized = True

    def copy(self) -> "Baseline":
        return Baseline(values=dict(self.values), initialized=self.initialized)


def diff(
    snapshot: ParameterSnapshot,
    baseline: Baseline,
    specs: Iterable[ParameterSpec] = DEFAULT_PARAMETERS,
) -> UpdateSet:
    """Return ``env_key -> canonical value`` for every parameter that must be written.

    Comparison is exact equality, floats included.
    """
    updates: UpdateSet = {}
    for spec in specs:
        if spec.name not in snapshot:
            continue
        value = snapshot.get(spec.name)
        if baseline.initialized and baseline.has(spec.name) and baseline.get(spec.name) == value:
            continue
        updates[spec.env_key] = format_value(spec, value)
    return updates
