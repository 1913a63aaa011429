import logging

import pytest

from safe_utils import reset_seen_exceptions, safe_call, safe_call_with_default


def _explode():
    raise KeyError("missing")


def test_safe_call_returns_value_or_none():
    assert safe_call(lambda: 5) == 5
    assert safe_call(_explode) is None


def test_safe_call_with_default():
    assert safe_call_with_default(int, 30, "12") == 12
    assert safe_call_with_default(int, 30, "nope") == 30


def test_each_failure_type_logged_once(caplog):
    with caplog.at_level(logging.WARNING, logger="safe_utils"):
        safe_call(_explode)
        safe_call(_explode)
    assert caplog.text.count("_explode failed with KeyError") == 1
    reset_seen_exceptions()
    caplog.clear()
    with caplog.at_level(logging.WARNING, logger="safe_utils"):
        safe_call(_explode)
    assert "_explode failed with KeyError" in caplog.text


def test_debug_raise(monkeypatch):
    monkeypatch.setenv("DEBUG_RAISE_EXCEPTIONS", "yes")
    with pytest.raises(KeyError):
        safe_call(_explode)
    with pytest.raises(ValueError):
        safe_call_with_default(int, 0, "x")
