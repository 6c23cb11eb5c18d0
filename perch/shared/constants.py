"""
#WHERE
    Imported by every perch module and by tests — single source of truth
    for sensor constants and default search / cost parameters.

#WHAT
    Centralised constants used across 3+ modules.  Edit here, not in
    individual module files.

#INPUT / #OUTPUT
    Pure constants — no I/O.
"""

import math

# ── Sensor ───────────────────────────────────────────────────────────────

NO_RETURN: int = 20000          # mm, depth sentinel for "no return" pixels
DEPTH_SCALE: float = 1000.0     # depth image units per metre (mm)
DEFAULT_IMG_WIDTH: int = 640
DEFAULT_IMG_HEIGHT: int = 480
DEFAULT_FOV: float = 45.0       # vertical field of view, degrees
DEFAULT_NEAR: float = 0.1
DEFAULT_FAR: float = 20.0

# ── Search grid ──────────────────────────────────────────────────────────

DEFAULT_RES: float = 0.1                  # m
DEFAULT_THETA_RES: float = math.pi / 2    # rad
FULL_TURN: float = 2.0 * math.pi

# ── Cost computation ─────────────────────────────────────────────────────

SENSOR_RESOLUTION: float = 0.01   # m, point correspondence tolerance
ICP_MAX_ITERATIONS: int = 20
ICP_MAX_CORRESPONDENCE: float = 0.1
ICP_TOLERANCE: float = 1e-6

# ── Heuristics ───────────────────────────────────────────────────────────

SIGNATURE_BINS: int = 16
CLUSTER_TOLERANCE: float = 0.02   # m, Euclidean clustering radius
MIN_CLUSTER_SIZE: int = 10
