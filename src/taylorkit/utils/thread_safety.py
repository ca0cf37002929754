"""Thread safety utilities."""

from __future__ import annotations

import threading
from collections.abc import Callable
from functools import wraps
from typing import Any, TypeVar

T = TypeVar("T")

def wrap_with_lock(
    fn: Callable[..., T] | None,
    lock: Any = None,
) -> Callable[..., T] | None:
    """Wraps a function call with a lock.

    Several callables can be serialized against each other by wrapping them
    with the same ``lock``. The lock actually used is exposed as the
    ``lock`` attribute of the returned callable.

    Args:
        fn: The callable to serialize. ``None`` is passed through.
        lock: Lock object held during the call. A fresh ``threading.RLock``
            is used when omitted, so the wrapped callable may re-enter itself.

    Returns:
        A callable with the signature of ``fn`` that holds ``lock`` while
        running, or ``None`` if ``fn`` is ``None``.
    """
    if fn is None:
        return None
    lk = lock if lock is not None else threading.RLock()

    @wraps(fn)
    def wrapped(*args: Any, **kwargs: Any) -> T:
        with lk:
            return fn(*args, **kwargs)

    wrapped.lock = lk
    return wrapped
