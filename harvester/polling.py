"""Fixed-interval polling with an optional deadline and cancel signal."""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Optional, TypeVar

from .errors import PollCancelledError, PollTimeoutError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class PollPolicy:
    """How long and how often to re-check a remote condition.

    ``timeout=None`` waits forever. ``cancel_event`` lets another thread (or a
    signal handler) end the wait early.
    """

    interval: float = 5.0
    timeout: Optional[float] = None
    cancel_event: Optional[threading.Event] = None
    sleep: Callable[[float], None] = field(default=time.sleep, repr=False)
    clock: Callable[[], float] = field(default=time.monotonic, repr=False)

    def wait(self) -> None:
        if self.cancel_event is not None:
            if self.cancel_event.wait(self.interval):
                raise PollCancelledError("Polling cancelled")
            return
        self.sleep(self.interval)


def poll_until(check: Callable[[], Optional[T]], policy: PollPolicy, description: str) -> T:
    """Call ``check`` until it returns something other than None."""
    deadline = None if policy.timeout is None else policy.clock() + policy.timeout
    attempt = 0
    while True:
        if policy.cancel_event is not None and policy.cancel_event.is_set():
            raise PollCancelledError(f"Cancelled while waiting for {description}")
        attempt += 1
        value = check()
        if value is not None:
            logger.debug("%s ready after %s attempt(s)", description, attempt)
            return value
        if deadline is not None and policy.clock() + policy.interval > deadline:
            raise PollTimeoutError(
                f"Gave up waiting for {description} after {policy.timeout} seconds"
            )
        logger.debug("%s not ready (attempt %s); sleeping %ss", description, attempt, policy.interval)
        policy.wait()
