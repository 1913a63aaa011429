from __future__ import annotations
"""Pytest shared fixtures.

Every test gets TEST_MODE=1 so nothing starts the simulation clock behind its
back, and every debounced saver created during a test is flushed and dropped
afterwards so no background thread outlives the test that armed it.

The `server_module` fixture re-imports server.py with PAINT_DATA_DIR pointed
at the test's tmp_path, the same way the running process would pick it up.
"""
import importlib
import random
import sys

import pytest

from persistence_utils import StatePaths, close_all_savers
from safe_utils import reset_seen_exceptions
from world import World


@pytest.fixture(autouse=True)
def _test_env(monkeypatch):
    monkeypatch.setenv('TEST_MODE', '1')
    monkeypatch.delenv('DEBUG_RAISE_EXCEPTIONS', raising=False)
    reset_seen_exceptions()
    yield
    close_all_savers()


@pytest.fixture
def rng():
    return random.Random(1234)


@pytest.fixture
def world(rng):
    return World(rng=rng)


@pytest.fixture
def state_paths(tmp_path):
    return StatePaths.in_dir(str(tmp_path))


@pytest.fixture
def app_and_socketio(world, state_paths):
    from server import create_app
    return create_app(world, state_paths)


@pytest.fixture
def client(app_and_socketio):
    app, _ = app_and_socketio
    app.config['TESTING'] = True
    return app.test_client()


@pytest.fixture
def server_module(tmp_path, monkeypatch):
    monkeypatch.setenv('PAINT_DATA_DIR', str(tmp_path))
    sys.modules.pop('server', None)
    importlib.invalidate_caches()
    import server  # type: ignore
    yield server
    sys.modules.pop('server', None)
