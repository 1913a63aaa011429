"""
Paint World Server Constants

Central location for the event names, file names, defaults and reserved
values shared by the server modules. Keeping them here avoids magic strings
scattered between world.py, game_loop.py and server.py.
"""

# =============================================================================
# Socket.IO Event Names
# =============================================================================

# Broadcast after a paint or a tick that changed world state.
# Payload: {'cells': [...]} and/or {'npcs': [...]}
WORLD_UPDATE = 'world_update'

# =============================================================================
# Painting
# =============================================================================

# Colors that count as "not painted" once trimmed and lower-cased.
# A cell repainted to one of these keeps its record but NPCs ignore it.
BLANK_COLORS = frozenset({'#fff', '#ffffff', 'white'})

# The four orthogonal offsets in fixed order: east, west, north, south.
NEIGHBOR_OFFSETS = ((1, 0), (-1, 0), (0, 1), (0, -1))

# =============================================================================
# Simulation Defaults (seconds; overridable via env, see game_loop.py)
# =============================================================================

DEFAULT_SPAWN_SECONDS = 10.0
DEFAULT_MOVE_SECONDS = 1.0

# 0 means no cap on the NPC population
DEFAULT_MAX_NPCS = 0

# =============================================================================
# Persistence
# =============================================================================

# Record file names inside the data directory
CELLS_FILE = 'celdas.json'
NPCS_FILE = 'npcs.json'

# Debounce window for tick-driven saves and the periodic flush interval
DEFAULT_SAVE_DEBOUNCE_MS = 300
DEFAULT_FLUSH_SECONDS = 10.0

# =============================================================================
# HTTP Routes
# =============================================================================

ROUTE_CELLS = '/celdas'
ROUTE_NPCS = '/npcs'
ROUTE_SAVE_CELL = '/save-cell'
INDEX_FILE = 'index.html'
