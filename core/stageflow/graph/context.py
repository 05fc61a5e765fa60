"""
Context - run-scoped key/value state shared between stages.

The main pipeline runs one stage at a time, but handlers may spawn helper
threads and parallel branches run concurrently, so every read and write goes
through a read/write lock: many readers, or one writer.

Only plain data is stored (str, int, float, bool, None, lists/tuples and
str-keyed dicts of those). That keeps ``clone()`` an explicit recursive copy
and keeps every snapshot JSON-serializable for checkpoints. Anything else is
rejected with ContextValueError when it is stored.
"""

import threading
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from types import MappingProxyType
from typing import Any

from stageflow.errors import ContextValueError

_SCALARS = (str, int, float, bool, type(None))


def copy_value(value: Any, path: str = "value") -> Any:
    """
    Recursively copy a context value, rejecting unsupported kinds.

    Tuples are copied as lists so the copy has the same shape it would have
    after a JSON round trip through a checkpoint.
    """
    if isinstance(value, _SCALARS):
        return value
    if isinstance(value, list | tuple):
        return [copy_value(item, f"{path}[{i}]") for i, item in enumerate(value)]
    if isinstance(value, Mapping):
        copied = {}
        for key, item in value.items():
            if not isinstance(key, str):
                raise ContextValueError(f"{path} has non-string key {key!r}")
            copied[key] = copy_value(item, f"{path}.{key}")
        return copied
    raise ContextValueError(f"{path} has unsupported type {type(value).__name__}")


class ReadWriteLock:
    """Many concurrent readers or a single exclusive writer."""

    def __init__(self) -> None:
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False

    @contextmanager
    def read(self) -> Iterator[None]:
        with self._cond:
            while self._writer:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if self._readers == 0:
                    self._cond.notify_all()

    @contextmanager
    def write(self) -> Iterator[None]:
        with self._cond:
            while self._writer or self._readers:
                self._cond.wait()
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()


class Context:
    """
    Thread-safe run state.

    Example:
        context = Context({"graph.goal": "Ship v2"})
        context.set("outcome", "success")
        context.get_string("outcome")  # "success"
        branch = context.clone()       # independent deep copy
    """

    def __init__(self, values: Mapping[str, Any] | None = None, logs: list[str] | None = None):
        self._lock = ReadWriteLock()
        self._values: dict[str, Any] = copy_value(dict(values or {}), "context")
        self._logs: list[str] = [str(line) for line in logs or []]

    def set(self, key: str, value: Any) -> None:
        copied = copy_value(value, key)
        with self._lock.write():
            self._values[key] = copied

    def get(self, key: str, default: Any = None) -> Any:
        with self._lock.read():
            return self._values.get(key, default)

    def get_string(self, key: str, default: str = "") -> str:
        value = self.get(key)
        if value is None:
            return default
        return str(value)

    def has(self, key: str) -> bool:
        with self._lock.read():
            return key in self._values

    def keys(self) -> list[str]:
        with self._lock.read():
            return list(self._values)

    def append_log(self, entry: str) -> None:
        with self._lock.write():
            self._logs.append(str(entry))

    @property
    def logs(self) -> list[str]:
        with self._lock.read():
            return list(self._logs)

    def snapshot(self) -> Mapping[str, Any]:
        """Read-only view over a deep copy of the current values."""
        with self._lock.read():
            return MappingProxyType(copy_value(self._values, "context"))

    def clone(self) -> "Context":
        """Deep, independent copy of values and logs."""
        with self._lock.read():
            return Context(self._values, self._logs)

    def apply_updates(self, updates: Mapping[str, Any] | None) -> None:
        """Merge a mapping of updates under one write lock."""
        if not updates:
            return
        copied = {key: copy_value(value, key) for key, value in updates.items()}
        with self._lock.write():
            self._values.update(copied)

    def __contains__(self, key: str) -> bool:
        return self.has(key)

    def __repr__(self) -> str:
        return f"Context(keys={self.keys()!r}, logs={len(self._logs)})"
