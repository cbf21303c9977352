"""
Sign-in state for the onboarding auth step.

The current state lives in a single SignInStateCell guarded by a
read/write lock. Variants are immutable; a variant that owns a background
resource (listener shutdown handle, device-code cancellation event) releases
it when the cell replaces it or is closed.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Union

from authflow.login.base import DeviceCode
from authflow.login.server import ShutdownHandle

logger = logging.getLogger(__name__)


class ReadWriteLock:
    """Many concurrent readers or one writer; waiting writers block new readers."""

    def __init__(self) -> None:
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False
        self._writers_waiting = 0

    @contextmanager
    def read(self) -> Iterator[None]:
        with self._cond:
            while self._writer or self._writers_waiting:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if not self._readers:
                    self._cond.notify_all()

    @contextmanager
    def write(self) -> Iterator[None]:
        with self._cond:
            self._writers_waiting += 1
            try:
                while self._writer or self._readers:
                    self._cond.wait()
            finally:
                self._writers_waiting -= 1
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()


class _Variant:
    __slots__ = ()

    def release(self, successor: SignInState | None) -> None:
        """Free resources owned by this variant; successor is None on teardown."""
        return None


@dataclass(frozen=True, slots=True)
class PickMode(_Variant):
    pass


@dataclass(frozen=True, slots=True)
class BrowserFlowPending(_Variant):
    auth_url: str
    cancel_handle: ShutdownHandle | None = None

    def release(self, successor: SignInState | None) -> None:
        if self.cancel_handle is None:
            return
        if isinstance(successor, BrowserFlowPending) and successor.cancel_handle is self.cancel_handle:
            return
        self.cancel_handle.shutdown()


@dataclass(frozen=True, slots=True)
class DeviceCodePending(_Variant):
    device_code: DeviceCode | None = None
    cancel: asyncio.Event | None = field(default=None, compare=False)

    def release(self, successor: SignInState | None) -> None:
        if self.cancel is None:
            return
        # The code arriving re-wraps the same poller; ownership moves on.
        if isinstance(successor, DeviceCodePending) and successor.cancel is self.cancel:
            return
        self.cancel.set()


@dataclass(frozen=True, slots=True)
class BrowserFlowSucceeded(_Variant):
    pass


@dataclass(frozen=True, slots=True)
class Authenticated(_Variant):
    pass


@dataclass(frozen=True, slots=True)
class ApiKeyEntry(_Variant):
    buffer: str = field(default="", repr=False)
    prefilled_from_env: bool = False


@dataclass(frozen=True, slots=True)
class ApiKeyConfigured(_Variant):
    pass


SignInState = Union[
    PickMode,
    BrowserFlowPending,
    DeviceCodePending,
    BrowserFlowSucceeded,
    Authenticated,
    ApiKeyEntry,
    ApiKeyConfigured,
]

TERMINAL_STATES = (Authenticated, ApiKeyConfigured)


class SignInStateCell:
    """Owned holder of the current SignInState."""

    def __init__(self, initial: SignInState | None = None) -> None:
        self._lock = ReadWriteLock()
        self._state: SignInState = initial if initial is not None else PickMode()
        self._closed = False

    def read(self) -> SignInState:
        """Return the current variant; never waits on background work."""
        with self._lock.read():
            return self._state

    @property
    def closed(self) -> bool:
        with self._lock.read():
            return self._closed

    def modify(self, fn: Callable[[SignInState], SignInState | None]) -> bool:
        """Atomically replace the state with fn(current); None keeps it.

        fn runs under the write lock and must not touch the cell. The
        replaced variant is released after the lock is dropped.
        """
        with self._lock.write():
            if self._closed:
                return False
            current = self._state
            new_state = fn(current)
            if new_state is None or new_state is current:
                return False
            self._state = new_state
        logger.debug(
            "Sign-in state %s -> %s", type(current).__name__, type(new_state).__name__
        )
        current.release(new_state)
        return True

    def transition(self, new_state: SignInState) -> bool:
        return self.modify(lambda _current: new_state)

    def transition_if(
        self,
        predicate: Callable[[SignInState], bool],
        new_state: SignInState,
    ) -> bool:
        """Replace the state only if it still matches what the caller expects."""
        return self.modify(lambda current: new_state if predicate(current) else None)

    def close(self) -> None:
        """Release whatever the live variant owns and refuse later transitions."""
        with self._lock.write():
            if self._closed:
                return
            self._closed = True
            current = self._state
        current.release(None)
