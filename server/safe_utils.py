"""
Safe execution utilities for best-effort background work.

The simulation clock, the debounced saver and the periodic flush all run on
background threads. An exception escaping one of them would silently kill the
thread and stop the world, so they call through these helpers instead: the
first failure of each kind is logged with its type, repeats stay quiet.

Environment Opt-In (Debug Raising):
    Set DEBUG_RAISE_EXCEPTIONS to '1', 'true', 'yes' or 'on' to re-raise after
    the first (still logged) occurrence. The variable is read at call time so
    tests can toggle it with monkeypatch.

Usage Examples:
    # Keep the clock alive even when a broadcast fails
    safe_call(socketio.emit, WORLD_UPDATE, payload)

    # With a fallback value
    count = safe_call_with_default(len, 0, maybe_list)
"""

import logging
import os
from typing import Callable, Optional, Set, TypeVar

# Track seen failures so each (function, exception type) pair logs once
_seen_exceptions: Set[str] = set()

logger = logging.getLogger(__name__)

T = TypeVar('T')


def _debug_raise_enabled() -> bool:
    val = os.getenv('DEBUG_RAISE_EXCEPTIONS', '').strip().lower()
    return val in ('1', 'true', 'yes', 'on')


def _fn_name(fn: Callable) -> str:
    return getattr(fn, '__name__', None) or str(fn)


def _log_once(caller: str, fn: Callable, e: Exception, suffix: str) -> None:
    exc_type = type(e).__name__
    exc_key = f"{_fn_name(fn)}:{exc_type}"
    if exc_key in _seen_exceptions:
        return
    _seen_exceptions.add(exc_key)
    logger.warning(f"{caller}: {_fn_name(fn)} failed with {exc_type}: {e} ({suffix})")


def safe_call(fn: Callable[..., T], *args, **kwargs) -> Optional[T]:
    """Call ``fn`` and return its result, or None if it raised.

    The first exception of each type raised by ``fn`` is logged at WARNING;
    subsequent ones of the same type are silent.
    """
    try:
        return fn(*args, **kwargs)
    except Exception as e:
        _log_once('safe_call', fn, e, 'subsequent failures of this type will be silent')
        if _debug_raise_enabled():
            raise
        return None


def safe_call_with_default(fn: Callable[..., T], default: T, *args, **kwargs) -> T:
    """Like safe_call but returns ``default`` instead of None on failure."""
    try:
        return fn(*args, **kwargs)
    except Exception as e:
        _log_once('safe_call_with_default', fn, e, f'returning default: {default!r}')
        if _debug_raise_enabled():
            raise
        return default


def reset_seen_exceptions() -> None:
    """Forget logged failures. Tests use this to assert on first-time logging."""
    _seen_exceptions.clear()
