from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterable, Iterator, List, Mapping


class Direction(str, Enum):
    BUY = "buy"
    AVOID = "avoid"

    @property
    def sign(self) -> int:
        return 1 if self is Direction.BUY else -1

    @classmethod
    def parse(cls, value: object) -> "Direction":
        if isinstance(value, cls):
            return value
        s = str(value or "").strip().lower()
        try:
            return cls(s)
        except ValueError as exc:
            raise ValueError(f"Invalid direction '{value}'. Expected buy|avoid.") from exc


class Status(str, Enum):
    ACTIVE = "active"
    WATCHING = "watching"
    INACTIVE = "inactive"

    @classmethod
    def parse(cls, value: object) -> "Status":
        if isinstance(value, cls):
            return value
        s = str(value or "").strip().lower()
        try:
            return cls(s)
        except ValueError as exc:
            raise ValueError(f"Invalid status '{value}'. Expected active|watching|inactive.") from exc


class UnknownSetupError(KeyError):
    """Raised when a setup id is not present in the registry."""


# Setups tracked by the daily snapshot job and their hypothesised bias.
DEFAULT_SETUPS: Dict[str, str] = {
    "smi-oversold-gauge": "buy",
    "oversold-extreme": "buy",
    "regime-shift": "buy",
    "deep-value": "buy",
    "green-shoots": "buy",
    "momentum-flip": "buy",
    "trend-confirm": "buy",
    "trend-ride": "buy",
    "trend-continuation": "buy",
    "goldilocks": "buy",
    "capitulation": "buy",
    "smi-overbought": "avoid",
    "dual-ll": "avoid",
    "overextended": "avoid",
    "momentum-crack": "avoid",
    "ema-shield-caution": "avoid",
    "ema-shield-break": "avoid",
}


@dataclass(frozen=True)
class SetupDefinition:
    id: str
    direction: Direction

    def __post_init__(self) -> None:
        sid = str(self.id or "").strip()
        if not sid:
            raise ValueError("Setup id must be a non-empty string.")
        object.__setattr__(self, "id", sid)
        object.__setattr__(self, "direction", Direction.parse(self.direction))


class SetupRegistry:
    def __init__(self, setups: Iterable[SetupDefinition]) -> None:
        self._setups: Dict[str, SetupDefinition] = {}
        for setup in setups:
            if setup.id in self._setups:
                raise ValueError(f"Duplicate setup id: {setup.id}")
            self._setups[setup.id] = setup
        if not self._setups:
            raise ValueError("Setup registry is empty.")

    @classmethod
    def from_mapping(cls, mapping: Mapping[str, object]) -> "SetupRegistry":
        if not isinstance(mapping, Mapping):
            raise ValueError("setups must be a mapping of setup id -> buy|avoid.")
        return cls(SetupDefinition(id=str(k), direction=v) for k, v in mapping.items())

    def get(self, setup_id: str) -> SetupDefinition:
        try:
            return self._setups[setup_id]
        except KeyError:
            raise UnknownSetupError(setup_id) from None

    def __contains__(self, setup_id: object) -> bool:
        return setup_id in self._setups

    def __iter__(self) -> Iterator[SetupDefinition]:
        return iter(self._setups.values())

    def __len__(self) -> int:
        return len(self._setups)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, SetupRegistry):
            return NotImplemented
        return self.to_mapping() == other.to_mapping()

    @property
    def ids(self) -> List[str]:
        return list(self._setups)

    def to_mapping(self) -> Dict[str, str]:
        return {s.id: s.direction.value for s in self._setups.values()}
