"""
Shared undo journal for atomic pool operations.

Pools and assets record how to undo each mutation they make while a
savepoint is open. A failing savepoint replays, newest first, every undo
entry recorded since it opened, including those of nested operations on
other pools that had already committed. Deferred actions such as event
publication run only when the outermost savepoint commits.
"""

from __future__ import annotations

from contextlib import contextmanager
from functools import partial
from typing import Any, Callable, Iterator, List

_MISSING = object()


class Journal:
    """Undo log spanning every pool and asset that records into it."""

    def __init__(self) -> None:
        self._undo: List[Callable[[], None]] = []
        self._on_commit: List[Callable[[], None]] = []
        self._depth = 0
        self._replaying = False

    @property
    def depth(self) -> int:
        return self._depth

    @property
    def active(self) -> bool:
        """True while mutations must be recorded."""
        return self._depth > 0 and not self._replaying

    def record(self, undo: Callable[[], None]) -> None:
        if self.active:
            self._undo.append(undo)

    def on_commit(self, action: Callable[[], None]) -> None:
        """Run ``action`` once the outermost savepoint commits, or now if none is open."""
        if self._depth:
            self._on_commit.append(action)
        else:
            action()

    @contextmanager
    def savepoint(self) -> Iterator[None]:
        """Undo everything recorded inside the block if it raises."""
        undo_mark = len(self._undo)
        commit_mark = len(self._on_commit)
        self._depth += 1
        try:
            yield
        except BaseException:
            self._depth -= 1
            self._rollback(undo_mark, commit_mark)
            raise

        self._depth -= 1
        if self._depth == 0:
            self._undo.clear()
            actions, self._on_commit = self._on_commit, []
            for action in actions:
                action()

    def _rollback(self, undo_mark: int, commit_mark: int) -> None:
        entries = self._undo[undo_mark:]
        del self._undo[undo_mark:]
        del self._on_commit[commit_mark:]
        self._replaying = True
        try:
            for undo in reversed(entries):
                undo()
        finally:
            self._replaying = False


_shared = Journal()


def shared_journal() -> Journal:
    """Journal used by pools, registries and assets that are not given one."""
    return _shared


class JournaledDict(dict):
    """Dict whose item assignments and removals are undone with the journal."""

    def __init__(self, journal: Journal, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self._journal = journal

    def _remember(self, key: Any) -> None:
        if self._journal.active:
            self._journal.record(partial(self._restore, key, dict.get(self, key, _MISSING)))

    def _restore(self, key: Any, previous: Any) -> None:
        if previous is _MISSING:
            dict.pop(self, key, None)
        else:
            dict.__setitem__(self, key, previous)

    def __setitem__(self, key: Any, value: Any) -> None:
        self._remember(key)
        super().__setitem__(key, value)

    def __delitem__(self, key: Any) -> None:
        self._remember(key)
        super().__delitem__(key)

    def pop(self, key: Any, *default: Any) -> Any:
        self._remember(key)
        return super().pop(key, *default)

    def setdefault(self, key: Any, default: Any = None) -> Any:
        if key not in self:
            self[key] = default
        return self[key]

    def update(self, *args: Any, **kwargs: Any) -> None:
        for key, value in dict(*args, **kwargs).items():
            self[key] = value


class JournaledList(list):
    """List whose index assignments and appends are undone with the journal."""

    def __init__(self, journal: Journal, *args: Any) -> None:
        super().__init__(*args)
        self._journal = journal

    def _truncate(self, length: int) -> None:
        list.__delitem__(self, slice(length, None))

    def __setitem__(self, index: Any, value: Any) -> None:
        if isinstance(index, slice):
            raise TypeError("Slice assignment is not journaled")
        position = range(len(self))[index]
        if self._journal.active:
            self._journal.record(partial(list.__setitem__, self, position, self[position]))
        super().__setitem__(position, value)

    def append(self, value: Any) -> None:
        self._journal.record(partial(self._truncate, len(self)))
        super().append(value)

    def extend(self, values: Any) -> None:
        self._journal.record(partial(self._truncate, len(self)))
        super().extend(values)
