"""Tracking of in-flight calls by correlation id.

Each outstanding call is a :class:`PendingCall`: a
:class:`concurrent.futures.Future` for the caller to wait on, plus a
:class:`threading.Timer` enforcing the call's timeout. Exactly one of three
things removes a pending call from the registry: a reply
(:meth:`CorrelationRegistry.complete` or :meth:`CorrelationRegistry.fail`),
the timer firing, or :meth:`CorrelationRegistry.drain`. Whichever pops the
entry under the registry lock is the only one that touches the future;
the others find nothing and return quietly.
"""

from __future__ import annotations

import concurrent.futures
import logging
import threading
from typing import Any, Dict, Optional

from . import config
from .errors import CallTimeout, ConnectionClosed, DuplicateIdError


log = logging.getLogger(__name__)


class PendingCall:

    __slots__ = ('id', 'future', 'queue', 'event', 'timeout', 'timer')

    def __init__(self, id, future, queue, event, timeout, timer):
        self.id = id
        self.future = future
        self.queue = queue
        self.event = event
        self.timeout = timeout
        self.timer = timer

    def __repr__(self):
        return f"<PendingCall {self.id} {self.queue}/{self.event} timeout={self.timeout}>"


class CorrelationRegistry:
    """ Owns every pending call of one endpoint. *timeout* is the default,
        in seconds, for calls registered without one of their own.
    """

    def __init__(self, timeout: Optional[float] = None):
        self.timeout = config.call_timeout if timeout is None else float(timeout)
        self._pending: Dict[str, PendingCall] = {}
        self._lock = threading.Lock()

    def __contains__(self, id) -> bool:
        with self._lock:
            return id in self._pending

    def __len__(self) -> int:
        with self._lock:
            return len(self._pending)

    def register(
        self,
        id: str,
        queue: str,
        event: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> concurrent.futures.Future:
        """ Start tracking call *id* and return the future it will settle.
            The future is already in the running state, so
            :meth:`concurrent.futures.Future.cancel` on it has no effect;
            a call ends by reply, timeout, or :meth:`drain`.
        """

        if timeout is None:
            timeout = self.timeout

        future: concurrent.futures.Future = concurrent.futures.Future()
        future.set_running_or_notify_cancel()

        timer = threading.Timer(timeout, self._expire, args=(id,))
        timer.daemon = True

        pending = PendingCall(id, future, queue, event, timeout, timer)

        with self._lock:
            if id in self._pending:
                raise DuplicateIdError(f"correlation id already pending: {id!r}")

            self._pending[id] = pending

            # Started under the lock so _expire() can never look for an
            # entry that has not been inserted yet.
            timer.start()

        return future

    def complete(self, id: str, result: Any) -> bool:
        """ Resolve call *id* with *result*. Returns False if *id* is not
            pending, as is the case for a late or duplicate reply.
        """

        pending = self._pop(id)
        if pending is None:
            return False

        pending.future.set_result(result)
        return True

    def fail(self, id: str, error: BaseException) -> bool:
        """ Reject call *id* with *error*. Returns False if *id* is not
            pending.
        """

        pending = self._pop(id)
        if pending is None:
            return False

        pending.future.set_exception(error)
        return True

    def drain(self, reason: str = "connection closed") -> int:
        """ Reject every pending call with :class:`ConnectionClosed` and
            cancel every timer. The registry is empty and usable afterwards.
            Returns the number of calls rejected.
        """

        with self._lock:
            drained = list(self._pending.values())
            self._pending.clear()

        for pending in drained:
            pending.timer.cancel()
            pending.future.set_exception(ConnectionClosed(reason))

        return len(drained)

    # --- internal ---

    def _pop(self, id) -> Optional[PendingCall]:
        with self._lock:
            pending = self._pending.pop(id, None)

        if pending is not None:
            pending.timer.cancel()

        return pending

    def _expire(self, id) -> None:
        with self._lock:
            pending = self._pending.pop(id, None)

        if pending is None:
            # Lost the race against a reply or a drain.
            return

        log.debug("call %s on %r timed out after %s sec", id, pending.queue, pending.timeout)
        pending.future.set_exception(
            CallTimeout(pending.queue, pending.event, pending.timeout)
        )
