"""
transfer/cancel.py
------------------
Cancellable blocking calls.

Connection initialisation and container lookup can take a long time.  They
run on a helper thread while the caller waits on that single step; the caller
can abort through a :class:`CancelToken` and always gets an :class:`Outcome`
back, never a silently ignored interrupt.
"""
from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Callable, Generic, TypeVar

from logger import get_logger
from transfer.errors import CancellationError

log = get_logger(__name__)

T = TypeVar("T")

_POLL_INTERVAL = 0.05


class CancelToken:
    """Thread-safe cancellation flag shared by a caller and its workers."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise CancellationError("Operation cancelled by user.")

    def wait(self, timeout: float) -> bool:
        return self._event.wait(timeout)


@dataclass
class Outcome(Generic[T]):
    """Result of :func:`run_cancellable`: exactly one of the three is set."""
    value: T | None = None
    cancelled: bool = False
    error: BaseException | None = None

    @property
    def ok(self) -> bool:
        return not self.cancelled and self.error is None


def run_cancellable(
    fn: Callable[[CancelToken], T],
    token: CancelToken | None = None,
    name: str = "resolve",
) -> Outcome[T]:
    """
    Run *fn* on a helper thread and block until it finishes or is cancelled.

    *fn* receives the token and is expected to poll it; if the token fires
    first, the caller is released immediately with ``cancelled=True`` and the
    helper thread's eventual result is discarded.

    Args:
        fn:    Work to run; receives the cancel token.
        token: Token the user cancels through (a fresh one if omitted).
        name:  Thread name, visible in file logs.
    """
    token = token or CancelToken()
    if token.cancelled:
        return Outcome(cancelled=True)

    done = threading.Event()
    box: dict[str, object] = {}

    def _target() -> None:
        try:
            box["value"] = fn(token)
        except CancellationError:
            box["cancelled"] = True
        except Exception as exc:  # handed back to the caller as data
            box["error"] = exc
        finally:
            done.set()

    worker = threading.Thread(target=_target, name=f"{name}-worker", daemon=True)
    worker.start()

    while not done.wait(_POLL_INTERVAL):
        if token.cancelled:
            log.info("'%s' cancelled while waiting.", name)
            return Outcome(cancelled=True)

    if box.get("cancelled"):
        return Outcome(cancelled=True)
    if "error" in box:
        return Outcome(error=box["error"])  # type: ignore[arg-type]
    return Outcome(value=box.get("value"))  # type: ignore[arg-type]
