"""
Project-wide constants.

Centralizes magic numbers used by the routing, accumulation and
stream extraction modules.
"""

import math

# Grid defaults
DEFAULT_NODATA = -9999.0
MERGE_RESOLUTION_TOLERANCE = 0.01

# Geometry
SQRT_2 = math.sqrt(2.0)

# Conditioning defaults
DEFAULT_EPSILON = 1e-5
DEFAULT_MAX_BREACH_LENGTH = 10

# Multiple flow direction (Quinn et al. 1991)
MFD_EXPONENT = 1.1
MFD_ITERATIONS = 20

# Stream extraction
DEFAULT_STREAM_THRESHOLD = 0.01
HIERARCHICAL_THRESHOLDS = (0.05, 0.01)
MAX_POLYLINES_PER_LEVEL = 150
IMPORTANCE_SAMPLES = 3

# Visualization heuristics
SPAWN_THRESHOLD_FRACTION = 0.01
MAX_SPAWN_POINTS = 1000
SPAWN_LATTICE_SPACING = 20
MAIN_CHANNEL_INFLOW_RATIO = 0.8
VELOCITY_SCALE = 10.0
VELOCITY_FLOW_EXPONENT = 0.4
MAX_OUTLETS = 10

# Hierarchical extraction is skipped above this many cells
HIERARCHICAL_MAX_CELLS = 25_000_000
