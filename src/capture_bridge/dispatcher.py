"""Single-slot result dispatcher keyed by capability channel.

Each capability channel owns at most one :class:`PendingRequest`.  External
callbacks resolve the request by kind; the token carried by the request lets
callers ignore callbacks that belong to an older request.
"""

from __future__ import annotations

import concurrent.futures
import dataclasses
import enum
import itertools
import logging
import threading
import time
from typing import Dict, Hashable, List, Optional, Tuple

from .outcomes import AlreadyPending, Cancelled, CaptureOutcome

LOG = logging.getLogger(__name__)


class PendingPolicy(str, enum.Enum):
    """What :meth:`ResultDispatcher.begin` does when a slot is occupied."""

    REJECT = "reject"
    REPLACE = "replace"


@dataclasses.dataclass(frozen=True)
class PendingRequest:
    """One outstanding asynchronous operation."""

    kind: Hashable
    token: int
    created_at: float
    future: "concurrent.futures.Future[CaptureOutcome]" = dataclasses.field(compare=False, repr=False)

    @property
    def done(self) -> bool:
        return self.future.done()

    def age(self) -> float:
        return time.monotonic() - self.created_at

    def result(self, timeout: Optional[float] = None) -> CaptureOutcome:
        return self.future.result(timeout)


class ResultDispatcher:
    """Hold at most one in-flight request per kind and complete it once."""

    def __init__(self, policy: PendingPolicy = PendingPolicy.REJECT) -> None:
        self._policy = PendingPolicy(policy)
        self._lock = threading.Lock()
        self._slots: Dict[Hashable, PendingRequest] = {}
        self._timers: Dict[int, threading.Timer] = {}
        self._tokens = itertools.count(1)

    @property
    def policy(self) -> PendingPolicy:
        return self._policy

    def begin(self, kind: Hashable, *, timeout: Optional[float] = None) -> PendingRequest:
        """Register a new request for *kind*.

        Raises :class:`AlreadyPending` under the ``REJECT`` policy if *kind*
        is occupied.  Under ``REPLACE`` the previous request is cancelled with
        reason ``"superseded"``.  A positive *timeout* cancels the request with
        reason ``"timeout"`` if nothing resolves it first.
        """

        if timeout is not None and timeout <= 0:
            raise ValueError("timeout must be positive")

        request = PendingRequest(
            kind=kind,
            token=next(self._tokens),
            created_at=time.monotonic(),
            future=concurrent.futures.Future(),
        )
        with self._lock:
            previous = self._slots.get(kind)
            if previous is not None and self._policy is PendingPolicy.REJECT:
                raise AlreadyPending(kind)
            self._slots[kind] = request
            previous_timer = self._timers.pop(previous.token, None) if previous else None
            if timeout is not None:
                timer = threading.Timer(timeout, self._expire, args=(kind, request.token))
                timer.daemon = True
                self._timers[request.token] = timer
                timer.start()

        LOG.debug("Began request kind=%r token=%d", kind, request.token)
        if previous is not None:
            if previous_timer is not None:
                previous_timer.cancel()
            LOG.info("Request kind=%r token=%d superseded by token=%d", kind, previous.token, request.token)
            self._complete(previous, Cancelled("superseded"))
        return request

    def resolve(self, kind: Hashable, outcome: CaptureOutcome, *, token: Optional[int] = None) -> bool:
        """Complete the pending request for *kind* with *outcome*.

        Returns ``False`` without side effects when nothing is pending or when
        *token* does not identify the current request.
        """

        with self._lock:
            request = self._slots.get(kind)
            if request is None:
                LOG.debug("No pending request for kind=%r; dropping %r", kind, outcome)
                return False
            if token is not None and request.token != token:
                LOG.debug(
                    "Stale resolution for kind=%r (token %d, current %d); dropping",
                    kind,
                    token,
                    request.token,
                )
                return False
            del self._slots[kind]
            timer = self._timers.pop(request.token, None)

        if timer is not None:
            timer.cancel()
        return self._complete(request, outcome)

    def cancel(self, kind: Hashable, reason: str = "disposed") -> bool:
        return self.resolve(kind, Cancelled(reason))

    def cancel_all(self, reason: str = "disposed") -> int:
        """Resolve every outstanding request with :class:`Cancelled`."""

        with self._lock:
            requests = list(self._slots.values())
            self._slots.clear()
            timers = list(self._timers.values())
            self._timers.clear()

        for timer in timers:
            timer.cancel()
        cancelled = 0
        for request in requests:
            if self._complete(request, Cancelled(reason)):
                cancelled += 1
        if cancelled:
            LOG.info("Cancelled %d pending request(s) (%s)", cancelled, reason)
        return cancelled

    def pending(self, kind: Hashable) -> Optional[PendingRequest]:
        with self._lock:
            return self._slots.get(kind)

    def is_pending(self, kind: Hashable) -> bool:
        return self.pending(kind) is not None

    def snapshot(self) -> List[Tuple[Hashable, int]]:
        with self._lock:
            return [(kind, request.token) for kind, request in self._slots.items()]

    def _expire(self, kind: Hashable, token: int) -> None:
        if self.resolve(kind, Cancelled("timeout"), token=token):
            LOG.warning("Request kind=%r token=%d timed out", kind, token)

    @staticmethod
    def _complete(request: PendingRequest, outcome: CaptureOutcome) -> bool:
        try:
            request.future.set_result(outcome)
        except concurrent.futures.InvalidStateError:
            LOG.debug("Request token=%d already completed", request.token)
            return False
        LOG.debug("Resolved kind=%r token=%d with %r", request.kind, request.token, outcome)
        return True


__all__ = ["PendingPolicy", "PendingRequest", "ResultDispatcher"]
