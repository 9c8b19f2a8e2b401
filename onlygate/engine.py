"""Core engine for OnlyGate."""

from __future__ import annotations

import threading
from contextlib import ExitStack
from functools import wraps
from typing import Callable, ParamSpec, TypeVar

from .core import (
    Action,
    CounterRecord,
    InvalidConfigurationError,
    NotInitializedError,
    Outcome,
    Result,
    Session,
    Status,
    StorageError,
)
from .log import get_logger
from .store import MemoryStore, Store

P = ParamSpec("P")
T = TypeVar("T")


class Registry:
    """OnlyGate registry: invocation budgets persisted per name.

    A gate runs its action while the persisted count for its name is below
    the budget, then runs on_done forever after (until the name is cleared
    or the version changes).

    The registry owns the active version, the debug flag, the store and one
    lock per name. Each call loads, advances and saves the record under the
    name's lock, then fires callbacks after the lock is released, so a
    callback may call mark() or get_count() for its own name.

    Callbacks are not part of the locked cycle: the record is saved before
    on_do runs, so an on_do that raises has still consumed its call, and
    the exception reaches the caller.

    Example:
        registry = Registry(FileStore("prefs.json"))
        registry.initialize("1.4.0")

        registry.once("welcome", on_do=show_welcome)

        registry.gate(
            "rate-app",
            times=3,
            on_do=ask_for_rating,
            on_last_do=log_last_prompt,
            on_done=lambda: None,
        )

        @registry.only("migrate-cache")
        def migrate() -> int:
            return rewrite_cache()
    """

    __slots__ = (
        "_store",
        "_version",
        "_app_id",
        "_debug",
        "_locks",
        "_locks_guard",
        "_listeners",
        "_errors",
        "_log",
    )

    def __init__(
        self,
        store: Store | None = None,
        *,
        version: str | None = None,
        debug: bool = False,
    ) -> None:
        self._store: Store = store if store is not None else MemoryStore()
        self._version: str | None = None
        self._app_id: str | None = None
        self._debug = bool(debug)
        self._locks: dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()
        self._listeners: list[Callable[[Outcome], None]] = []
        self._errors = 0
        self._log = get_logger(__name__)
        if version is not None:
            self.initialize(version)

    # ─────────────────────────────────────────────────────────────
    # Configuration
    # ─────────────────────────────────────────────────────────────

    def initialize(self, version: str, app_id: str | None = None) -> Registry:
        """Set the active version. Calling again replaces it."""
        if not isinstance(version, str) or not version:
            raise InvalidConfigurationError("version must be a non-empty string")
        self._version = version
        if app_id is not None:
            self._app_id = app_id
        self._log = get_logger(__name__, app_id=self._app_id)
        self._log.info("registry_initialized", version=version)
        return self

    @property
    def initialized(self) -> bool:
        return self._version is not None

    @property
    def active_version(self) -> str:
        return self._require_version()

    @property
    def app_id(self) -> str | None:
        return self._app_id

    @property
    def store(self) -> Store:
        return self._store

    def set_debug_mode(self, enabled: bool) -> Registry:
        """In debug mode every gate is open and nothing is persisted."""
        self._debug = bool(enabled)
        self._log.info("debug_mode_changed", enabled=self._debug)
        return self

    @property
    def debug_mode(self) -> bool:
        return self._debug

    def on_outcome(self, listener: Callable[[Outcome], None]) -> None:
        """Add a listener for outcomes (for logging/metrics)."""
        self._listeners.append(listener)

    @property
    def listener_errors(self) -> int:
        """Count of listener exceptions (never block execution)."""
        return self._errors

    # ─────────────────────────────────────────────────────────────
    # Locking
    # ─────────────────────────────────────────────────────────────

    def _lock_for(self, name: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(name)
            if lock is None:
                lock = self._locks[name] = threading.Lock()
            return lock

    def with_name_lock(self, name: str, fn: Callable[[], T]) -> T:
        """Run fn while holding the lock for name.

        Not reentrant: calling back into a locked operation for the same
        name from inside fn deadlocks.
        """
        with self._lock_for(name):
            return fn()

    # ─────────────────────────────────────────────────────────────
    # Core API
    # ─────────────────────────────────────────────────────────────

    def gate(
        self,
        name: str,
        times: int = 1,
        *,
        version: str | None = None,
        on_do: Action | None = None,
        on_last_do: Action | None = None,
        on_before_done: Action | None = None,
        on_done: Action | None = None,
        marking: object | None = None,
    ) -> Outcome:
        """Build a session and run it once."""
        session = Session(
            name=name,
            times=times,
            version=version,
            on_do=on_do,
            on_last_do=on_last_do,
            on_before_done=on_before_done,
            on_done=on_done,
            marking=None if marking is None else str(marking),
        )
        return self.run(session)

    def once(self, name: str, **kwargs) -> Outcome:
        return self.gate(name, 1, **kwargs)

    def twice(self, name: str, **kwargs) -> Outcome:
        return self.gate(name, 2, **kwargs)

    def thrice(self, name: str, **kwargs) -> Outcome:
        return self.gate(name, 3, **kwargs)

    def run(self, session: Session) -> Outcome:
        """Execute a session: advance the record, then fire its callbacks.

        Raises NotInitializedError before initialize(), StorageError if the
        store fails (no callback fires and nothing is advanced).
        """
        active = self._require_version()
        target = session.version or active
        outcome = self.with_name_lock(
            session.name, lambda: self._advance(session, target)
        )
        self._emit(outcome)
        self._fire(session, outcome.status)
        return outcome

    # ─────────────────────────────────────────────────────────────
    # Administrative API
    # ─────────────────────────────────────────────────────────────

    def get_count(self, name: str) -> int:
        """Persisted count for name (0 if absent)."""
        self._check_admin(name)
        return self._load(name).count

    def get_marking(self, name: str) -> str:
        """Persisted marking for name ("" if absent)."""
        self._check_admin(name)
        return self._load(name).marking

    def get_record(self, name: str) -> CounterRecord:
        """Copy of the persisted record for name."""
        self._check_admin(name)
        return self._load(name)

    def mark(self, name: str, value: object) -> None:
        """Record an opaque marking for name. Non-strings are stored as str()."""
        self._check_admin(name)
        marking = str(value)

        def update() -> None:
            record = self._load(name)
            record.marking = marking
            self._save(name, record)

        self.with_name_lock(name, update)

    def clear(self, name: str) -> None:
        """Reset name so the next gate behaves as its first call."""
        self._check_admin(name)
        self.with_name_lock(name, lambda: self._delete(name))
        self._log.info("record_cleared", name=name)

    def clear_all(self) -> None:
        """Remove every record created through this registry's store."""
        self._require_version()
        with self._locks_guard, ExitStack() as stack:
            for _, lock in sorted(self._locks.items()):
                stack.enter_context(lock)
            try:
                self._store.delete_all()
            except StorageError:
                self._log.error("store_error", op="delete_all", exc_info=True)
                raise
        self._log.info("records_cleared")

    # ─────────────────────────────────────────────────────────────
    # Decorator API
    # ─────────────────────────────────────────────────────────────

    def only(
        self,
        name: str,
        times: int = 1,
        *,
        version: str | None = None,
    ) -> Callable[[Callable[P, T]], Callable[P, Result[T]]]:
        """Decorator that runs the function as the gated action.

        Returns Result[T]: the value when the gate was open, empty once the
        budget is exhausted.

        Example:
            @registry.only("seed-database", times=1)
            def seed() -> int:
                return insert_fixtures()

            seeded = seed().unwrap_or(0)
        """
        Session(name=name, times=times, version=version)

        def decorator(fn: Callable[P, T]) -> Callable[P, Result[T]]:
            @wraps(fn)
            def wrapper(*args: P.args, **kwargs: P.kwargs) -> Result[T]:
                values: list[T] = []
                outcome = self.gate(
                    name,
                    times,
                    version=version,
                    on_do=lambda: values.append(fn(*args, **kwargs)),
                )
                if values:
                    return Result(outcome=outcome, _value=values[0])
                return Result(outcome=outcome)

            return wrapper

        return decorator

    # ─────────────────────────────────────────────────────────────
    # Internal
    # ─────────────────────────────────────────────────────────────

    def _advance(self, session: Session, target: str) -> Outcome:
        """Gate state machine. Must hold the lock for session.name."""
        name, times = session.name, session.times
        record = self._load(name)

        reset = record.is_stale(target)
        if reset:
            self._log.info(
                "epoch_reset", name=name, previous=record.version, version=target
            )
            record = CounterRecord.default(name)

        if self._debug:
            return Outcome(
                Status.DEBUG, name, times, record.count, record.version, reset
            )

        if record.count < times:
            if record.count == 0 and session.marking is not None:
                record.marking = session.marking
            record.count += 1
            if not record.version:
                record.version = target
            status = Status.LAST if record.count == times else Status.OPEN
        else:
            status = Status.DONE

        self._save(name, record)
        self._log.debug(
            "gate_evaluated",
            name=name,
            status=status.name,
            count=record.count,
            times=times,
        )
        return Outcome(status, name, times, record.count, record.version, reset)

    @staticmethod
    def _fire(session: Session, status: Status) -> None:
        if status == Status.DONE:
            if session.on_done is not None:
                session.on_done()
            return
        if session.on_do is not None:
            session.on_do()
        if status == Status.LAST:
            if session.on_last_do is not None:
                session.on_last_do()
            if session.on_before_done is not None:
                session.on_before_done()

    def _require_version(self) -> str:
        if self._version is None:
            raise NotInitializedError()
        return self._version

    def _check_admin(self, name: str) -> None:
        if not isinstance(name, str) or not name:
            raise InvalidConfigurationError("name must be a non-empty string")
        self._require_version()

    def _load(self, name: str) -> CounterRecord:
        try:
            return self._store.load(name)
        except StorageError:
            self._log.error("store_error", op="load", name=name, exc_info=True)
            raise

    def _save(self, name: str, record: CounterRecord) -> None:
        try:
            self._store.save(name, record)
        except StorageError:
            self._log.error("store_error", op="save", name=name, exc_info=True)
            raise

    def _delete(self, name: str) -> None:
        try:
            self._store.delete(name)
        except StorageError:
            self._log.error("store_error", op="delete", name=name, exc_info=True)
            raise

    def _emit(self, outcome: Outcome) -> None:
        for listener in self._listeners:
            try:
                listener(outcome)
            except Exception:
                self._errors += 1
