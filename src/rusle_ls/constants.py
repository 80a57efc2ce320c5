import math
import numpy as np

# constants used in the rusle_ls module
DEFAULT_NODATA = -9999.0
SLOPE_LENGTH_NODATA = -9999.0
LS_NODATA = -9999
LS_SCALE = 100  # LS is stored as an integer grid of LS * 100

DEFAULT_FLAT_ANGLE_FLOOR = 0.1  # degrees
DEFAULT_CUTOFF_LT5 = 0.7  # slope-end factor where grade < 5%
DEFAULT_CUTOFF_GE5 = 0.5  # slope-end factor where grade >= 5%
MAX_CUTOFF = 1.1  # cutoffs must lie in (0, MAX_CUTOFF)
FIVE_PERCENT_ANGLE = 2.8624  # degrees, arctan(0.05)
NINE_PERCENT_ANGLE = 5.1428  # degrees, arctan(0.09)
METERS_PER_FOOT = 0.3048
UNIT_PLOT_LENGTH_FT = 72.6
UNITS = ("meters", "feet")

#   3  |   2    |  1
# ------------------
#   4  |   8   |  0
# ------------------
#   5  |   6   |  7
FLOW_DIRECTION_EAST = 0
FLOW_DIRECTION_NORTH_EAST = 1
FLOW_DIRECTION_NORTH = 2
FLOW_DIRECTION_NORTH_WEST = 3
FLOW_DIRECTION_WEST = 4
FLOW_DIRECTION_SOUTH_WEST = 5
FLOW_DIRECTION_SOUTH = 6
FLOW_DIRECTION_SOUTH_EAST = 7
FLOW_DIRECTION_UNDEFINED = 8
FLOW_DIRECTION_NODATA = 9
# numba does not support global constant dictionaries
# so the direction table is a set of arrays indexed by
# flow direction code
# see https://github.com/numba/numba/issues/6488
NEIGHBOR_OFFSETS = np.array(
    [
        (0, 1),  # FLOW_EAST
        (-1, 1),  # FLOW_NORTH_EAST
        (-1, 0),  # FLOW_NORTH
        (-1, -1),  # FLOW_NORTH_WEST
        (0, -1),  # FLOW_WEST
        (1, -1),  # FLOW_SOUTH_WEST
        (1, 0),  # FLOW_SOUTH
        (1, 1),  # FLOW_SOUTH_EAST
    ]
)
FLOW_DIRECTIONS = np.array(
    [
        FLOW_DIRECTION_EAST,
        FLOW_DIRECTION_NORTH_EAST,
        FLOW_DIRECTION_NORTH,
        FLOW_DIRECTION_NORTH_WEST,
        FLOW_DIRECTION_WEST,
        FLOW_DIRECTION_SOUTH_WEST,
        FLOW_DIRECTION_SOUTH,
        FLOW_DIRECTION_SOUTH_EAST,
        FLOW_DIRECTION_UNDEFINED,
        FLOW_DIRECTION_NODATA,
    ],
    dtype=np.uint8,
)
# bit set in an inflow mask when the neighbor in that direction drains into the cell
DIRECTION_FLAGS = np.array([1 << d for d in range(8)], dtype=np.uint8)
OPPOSITE_DIRECTIONS = np.array([(d + 4) % 8 for d in range(8)], dtype=np.uint8)
# cell-center distance in units of cell size, orthogonal or diagonal
DISTANCE_FACTORS = np.array(
    [1.0 if d % 2 == 0 else math.sqrt(2) for d in range(8)], dtype=np.float64
)

# RUSLE slope-length exponent m by downslope angle (degrees).
# bins are closed on the right: M_ANGLE_EDGES[i-1] < angle <= M_ANGLE_EDGES[i]
M_ANGLE_EDGES = np.array(
    [
        0.1, 0.2, 0.4, 0.85, 1.4, 2.0, 2.6, 3.1, 3.7, 5.2,
        6.3, 7.4, 8.6, 10.3, 12.9, 15.7, 20.0, 25.8, 31.5, 37.2,
    ],
    dtype=np.float64,
)
M_EXPONENTS = np.array(
    [
        0.01, 0.02, 0.04, 0.08, 0.14, 0.18, 0.22, 0.25, 0.28, 0.32, 0.35,
        0.37, 0.40, 0.41, 0.44, 0.47, 0.49, 0.52, 0.54, 0.55, 0.56,
    ],
    dtype=np.float64,
)
