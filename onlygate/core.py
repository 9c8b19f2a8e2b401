"""Core types for OnlyGate."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum, auto
from typing import Callable, Generic, TypeVar


Action = Callable[[], object]


class OnlyGateError(Exception):
    """Base class for every error raised by OnlyGate."""


class InvalidConfigurationError(OnlyGateError, ValueError):
    """Bad session name or budget. Raised before any lock or store access."""


class NotInitializedError(OnlyGateError, RuntimeError):
    """A gating or administrative call was made before initialize()."""

    def __init__(self, message: str = "Registry has no active version; call initialize() first") -> None:
        super().__init__(message)


class StorageError(OnlyGateError, RuntimeError):
    """The backing store failed a load, save or delete."""


class Status(Enum):
    """Which branch of the gate a call took."""
    OPEN = auto()   # on_do fired, budget not yet exhausted
    LAST = auto()   # on_do fired and this call exhausted the budget
    DONE = auto()   # budget already exhausted, on_done fired
    DEBUG = auto()  # debug mode, on_do fired, nothing persisted


@dataclass(slots=True)
class CounterRecord:
    """Persisted state for one gate name.

    An absent record is equivalent to ``CounterRecord.default(name)``.
    """
    name: str
    count: int = 0
    version: str = ""
    marking: str = ""

    @classmethod
    def default(cls, name: str) -> CounterRecord:
        return cls(name=name)

    @property
    def is_default(self) -> bool:
        return self.count == 0 and not self.version and not self.marking

    def is_stale(self, version: str) -> bool:
        """True when the record was stamped in a different version epoch."""
        return self.version != "" and self.version != version


@dataclass(frozen=True, slots=True)
class Session:
    """One gated invocation.

    Args:
        name: Gate identifier (non-empty)
        times: Budget; on_do fires at most this many times per version epoch
        version: Overrides the registry's active version for this call
        on_do: Runs while count < times
        on_last_do: Runs after on_do on the call that exhausts the budget
        on_before_done: Runs after on_last_do on that same call
        on_done: Runs instead of the others once the budget is exhausted
        marking: Recorded as the name's marking when a call opens a new epoch

    Examples:
        Session("welcome-dialog", on_do=show_welcome)
        Session("rate-app", times=3, on_do=ask, on_done=skip)
        Session("whats-new", version="2.0.0", on_do=show_changelog)
    """
    name: str
    times: int = 1
    version: str | None = None
    on_do: Action | None = None
    on_last_do: Action | None = None
    on_before_done: Action | None = None
    on_done: Action | None = None
    marking: str | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.name, str) or not self.name:
            raise InvalidConfigurationError("name must be a non-empty string")
        if isinstance(self.times, bool) or not isinstance(self.times, int):
            raise InvalidConfigurationError("times must be an integer")
        if self.times < 1:
            raise InvalidConfigurationError(f"times must be >= 1, got {self.times}")
        if self.version is not None and not isinstance(self.version, str):
            raise InvalidConfigurationError("version must be a string or None")
        if self.marking is not None and not isinstance(self.marking, str):
            raise InvalidConfigurationError("marking must be a string or None")
        for slot in ("on_do", "on_last_do", "on_before_done", "on_done"):
            action = getattr(self, slot)
            if action is not None and not callable(action):
                raise InvalidConfigurationError(f"{slot} must be callable")


@dataclass(frozen=True, slots=True)
class Outcome:
    """Result of executing one session."""
    status: Status
    name: str
    times: int
    count: int = 0
    version: str = ""
    reset: bool = False  # a stale epoch was discarded before gating

    @property
    def opened(self) -> bool:
        """True when on_do fired."""
        return self.status != Status.DONE

    @property
    def exhausted(self) -> bool:
        return self.status in (Status.LAST, Status.DONE)

    @property
    def remaining(self) -> int:
        if self.status == Status.DEBUG:
            return self.times
        return max(0, self.times - self.count)

    def __bool__(self) -> bool:
        """Truthy = gate was open."""
        return self.opened

    def to_dict(self) -> dict:
        """Serialize for logs and audit."""
        return {
            "status": self.status.name,
            "name": self.name,
            "count": self.count,
            "times": self.times,
            "version": self.version,
            "reset": self.reset,
        }


class _Missing:
    """Sentinel for distinguishing None from missing value."""
    __slots__ = ()
    def __repr__(self) -> str:
        return "<MISSING>"

MISSING = _Missing()

T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class Result(Generic[T]):
    """Wrapper for gated function results.

    Uses a sentinel to distinguish between:
    - Function returned None (legitimate value)
    - Function was not run because the gate was exhausted
    """
    outcome: Outcome
    _value: T | _Missing = MISSING

    @property
    def ok(self) -> bool:
        return self.outcome.opened

    @property
    def has_value(self) -> bool:
        return not isinstance(self._value, _Missing)

    @property
    def value(self) -> T | None:
        """Get value or None if the gate was exhausted."""
        if isinstance(self._value, _Missing):
            return None
        return self._value

    def unwrap(self) -> T:
        """Get value or raise if the gate was exhausted."""
        if isinstance(self._value, _Missing):
            raise ValueError(f"No value: gate {self.outcome.name!r} is exhausted")
        return self._value

    def unwrap_or(self, default: T) -> T:
        """Get value or return default if the gate was exhausted."""
        if isinstance(self._value, _Missing):
            return default
        return self._value
