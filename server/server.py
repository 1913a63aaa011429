from __future__ import annotations

"""
Flask-SocketIO server for the shared paint grid.

What this file does (in plain English):
- Loads the saved cells and NPCs (see persistence_utils.py) into one World.
- Serves a tiny HTTP API so browsers can read the grid and paint cells:
    GET  /celdas     -> every cell, painted or blank
    GET  /npcs       -> every NPC
    POST /save-cell  -> {"x": int, "y": int, "color": str}; replies with all cells
- Runs the simulation clock (see game_loop.py) so NPCs spawn and wander even
  when nobody is sending requests, and pushes 'world_update' over Socket.IO.
- Saves cells right after every paint, NPCs shortly after ticks, everything
  every PAINT_FLUSH_SECONDS, and once more on shutdown.

The HTTP layer is deliberately thin: all state lives in World, and every
handler is one World call plus JSON framing.

Run from the repo root:

    python server/server.py

HOST/PORT and the PAINT_* variables below can be set in the environment or a
.env file.
"""

import atexit
import json
import logging
import os
import threading
from typing import Any, Dict, Optional, Tuple

from dotenv import find_dotenv, load_dotenv

# Before any project import: game_loop reads PAINT_* settings at import time
load_dotenv(find_dotenv(usecwd=True))

from flask import Flask, Response, jsonify, request, send_from_directory
from flask_socketio import SocketIO

import game_loop
from constants import (
    DEFAULT_FLUSH_SECONDS,
    INDEX_FILE,
    ROUTE_CELLS,
    ROUTE_NPCS,
    ROUTE_SAVE_CELL,
    WORLD_UPDATE,
)
from game_loop import GameLoop
from persistence_utils import StatePaths, close_all_savers, load_world, save_world
from safe_utils import safe_call, safe_call_with_default
from world import ValidationError, World

logger = logging.getLogger(__name__)


def _env_str(name: str, default: str) -> str:
    """Get environment variable as string with fallback to default."""
    v = os.getenv(name)
    return default if v is None else str(v)


def _env_flag(name: str, default: str = '0') -> bool:
    return _env_str(name, default).strip().lower() in ('1', 'true', 'yes', 'on')


# Structured logging (env-driven):
# - PAINT_LOG_LEVEL: DEBUG|INFO|WARNING|ERROR|CRITICAL (default INFO)
# - PAINT_LOG_FORMAT: 'json' or 'text' (default text)
def _setup_logging() -> None:
    level_name = _env_str('PAINT_LOG_LEVEL', 'INFO').strip().upper()
    level = getattr(logging, level_name, logging.INFO)
    fmt_mode = _env_str('PAINT_LOG_FORMAT', 'text').strip().lower()
    if fmt_mode == 'json':
        class _JsonFormatter(logging.Formatter):
            def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
                payload = {
                    'ts': self.formatTime(record, datefmt='%Y-%m-%dT%H:%M:%S'),
                    'level': record.levelname,
                    'name': record.name,
                    'message': record.getMessage(),
                }
                return json.dumps(payload, ensure_ascii=False)
        handler = logging.StreamHandler()
        handler.setFormatter(_JsonFormatter())
        root = logging.getLogger()
        root.handlers = [handler]
        root.setLevel(level)
    else:
        logging.basicConfig(level=level, format='[%(levelname)s] %(name)s: %(message)s')


def _parse_cors_origins(s: str | None) -> str | list[str]:
    """Return '*' (allow all) or a list of allowed origins from CSV env."""
    if s is None:
        return '*'
    val = s.strip()
    if not val or val == '*':
        return '*'
    parts = [p.strip() for p in val.split(',') if p.strip()]
    return parts or '*'


def _error(message: str, status: int = 400) -> Tuple[Response, int]:
    return jsonify({'status': 'error', 'message': message}), status


def create_app(
    world: World,
    paths: StatePaths,
    *,
    static_dir: Optional[str] = None,
    cors_origins: str | list[str] = '*',
) -> Tuple[Flask, SocketIO]:
    """Build the Flask app and its SocketIO wrapper around an existing World.

    Nothing here starts threads; see start_background_services().
    """
    app = Flask(__name__)
    _secret = os.getenv('SECRET_KEY') or 'dev-only-change-me'
    app.config['SECRET_KEY'] = _secret
    app.config['PAINT_WORLD'] = world
    app.config['PAINT_STATE_PATHS'] = paths
    socketio = SocketIO(app, cors_allowed_origins=cors_origins, async_mode='threading')
    static_root = static_dir or os.path.dirname(paths.cells) or '.'
    # None means any origin; otherwise the exact origins to echo back
    allowed: Optional[list[str]] = None
    if cors_origins != '*':
        allowed = [cors_origins] if isinstance(cors_origins, str) else list(cors_origins)

    @app.before_request
    def _preflight():
        if request.method == 'OPTIONS':
            return Response(status=204)
        return None

    @app.after_request
    def _cors(resp: Response) -> Response:
        if allowed is None:
            resp.headers['Access-Control-Allow-Origin'] = '*'
        else:
            origin = request.headers.get('Origin')
            if origin in allowed:
                resp.headers['Access-Control-Allow-Origin'] = origin
            resp.vary.add('Origin')
        resp.headers['Access-Control-Allow-Methods'] = 'GET, POST, OPTIONS'
        resp.headers['Access-Control-Allow-Headers'] = 'Content-Type'
        return resp

    @app.get(ROUTE_CELLS)
    def get_cells():
        return jsonify([c.to_dict() for c in world.snapshot_cells()])

    @app.get(ROUTE_NPCS)
    def get_npcs():
        return jsonify([n.to_dict() for n in world.snapshot_npcs()])

    @app.post(ROUTE_SAVE_CELL)
    def save_cell():
        # Parse by hand: browsers often post JSON without a JSON content type
        try:
            data: Any = json.loads(request.get_data(as_text=True) or 'null')
        except ValueError:
            return _error('Invalid JSON')
        if not isinstance(data, dict):
            return _error('Invalid data format')
        try:
            cell = world.apply_cell_paint(data.get('x'), data.get('y'), data.get('color'))
        except ValidationError as e:
            return _error(f'Invalid data format: {e}')
        logger.info(f"Received cell data: {cell.to_dict()}")
        save_world(world, paths, debounced=False)
        cells = [c.to_dict() for c in world.snapshot_cells()]
        safe_call(socketio.emit, WORLD_UPDATE, {'cells': cells})
        return jsonify(cells)

    @app.get('/')
    def index():
        if not os.path.isfile(os.path.join(static_root, INDEX_FILE)):
            return Response('Not Found', status=404, mimetype='text/plain')
        return send_from_directory(static_root, INDEX_FILE)

    return app, socketio


def make_tick_callback(world: World, paths: StatePaths, socketio: SocketIO):
    """What happens after a tick changed the world: debounce a save, push NPCs."""
    def _on_tick(kind: str) -> None:
        save_world(world, paths, debounced=True)
        npcs = [n.to_dict() for n in world.snapshot_npcs()]
        safe_call(socketio.emit, WORLD_UPDATE, {'npcs': npcs, 'tick': kind})
    return _on_tick


class _PeriodicFlush:
    """Save every ``interval`` seconds until stopped."""

    def __init__(self, world: World, paths: StatePaths, interval: float) -> None:
        self.world = world
        self.paths = paths
        if interval <= 0:
            logger.warning(f"Flush interval must be positive, got {interval}; using {DEFAULT_FLUSH_SECONDS}s")
            interval = DEFAULT_FLUSH_SECONDS
        self.interval = interval
        self._stop = threading.Event()

    def run(self) -> None:
        while not self._stop.wait(self.interval):
            safe_call(save_world, self.world, self.paths, False)

    def stop(self) -> None:
        self._stop.set()


def start_background_services(
    world: World,
    paths: StatePaths,
    socketio: SocketIO,
    *,
    flush_seconds: float = DEFAULT_FLUSH_SECONDS,
) -> Dict[str, Any]:
    """Start the simulation clock and the periodic flush; return their handles."""
    loop = GameLoop(
        world,
        spawn_seconds=game_loop.SPAWN_SECONDS,
        move_seconds=game_loop.MOVE_SECONDS,
        on_tick=make_tick_callback(world, paths, socketio),
        start_task=socketio.start_background_task,
    )
    loop.start()
    flusher = _PeriodicFlush(world, paths, flush_seconds)
    socketio.start_background_task(flusher.run)
    return {'loop': loop, 'flusher': flusher}


def shutdown(world: World, paths: StatePaths, services: Dict[str, Any]) -> None:
    """Stop ticking, then write everything that is still dirty.

    Safe to call more than once.
    """
    logger.info("Shutting down server. Saving world...")
    loop = services.get('loop')
    if loop is not None:
        loop.stop()
    flusher = services.get('flusher')
    if flusher is not None:
        flusher.stop()
    world.close()
    save_world(world, paths, debounced=False)
    close_all_savers()


# --- World state with JSON persistence ---
DATA_DIR = _env_str('PAINT_DATA_DIR', os.path.dirname(os.path.abspath(__file__)))
STATE_PATHS = StatePaths.in_dir(DATA_DIR)
FLUSH_SECONDS = safe_call_with_default(lambda: float(_env_str('PAINT_FLUSH_SECONDS', str(DEFAULT_FLUSH_SECONDS))), DEFAULT_FLUSH_SECONDS)


def main() -> None:
    _setup_logging()
    world = load_world(STATE_PATHS, max_npcs=game_loop.MAX_NPCS)
    app, socketio = create_app(
        world,
        STATE_PATHS,
        cors_origins=_parse_cors_origins(os.getenv('PAINT_CORS_ALLOWED_ORIGINS')),
    )
    services: Dict[str, Any] = {}
    if os.getenv('TEST_MODE') != '1' and _env_flag('PAINT_TICK_ENABLE', '1'):
        services = start_background_services(world, STATE_PATHS, socketio, flush_seconds=FLUSH_SECONDS)
    atexit.register(shutdown, world, STATE_PATHS, services)

    port = int(_env_str('PORT', '3000'))
    host = _env_str('HOST', '127.0.0.1')
    counts = world.counts()
    logger.info("=== Paint World Server Starting ===")
    logger.info(f"Data dir: {DATA_DIR} ({counts['cells']} cells, {counts['npcs']} npcs)")
    logger.info(f"Server is listening on http://{host}:{port}/")
    socketio.run(app, host=host, port=port, debug=False, allow_unsafe_werkzeug=True)


if __name__ == '__main__':
    main()
