import math
import numpy as np
from numba import njit, prange
from rusle_ls.constants import (
    DISTANCE_FACTORS,
    FIVE_PERCENT_ANGLE,
    FLOW_DIRECTION_NODATA,
    FLOW_DIRECTION_UNDEFINED,
    SLOPE_LENGTH_NODATA,
)
from rusle_ls.flow_direction import calculate_slope
from rusle_ls.util.raster import Grid


@njit(parallel=True)
def downslope_angle_for_tile(
    dem: np.ndarray,
    fdr: np.ndarray,
    nodata_value: float,
    cell_size: float,
    flat_angle_floor: float,
    angle_nodata: float = SLOPE_LENGTH_NODATA,
) -> np.ndarray:
    """
    Calculate the slope angle in degrees along each cell's flow direction.

    Cells without an outflow, or with an angle below flat_angle_floor, are given
    flat_angle_floor so no cell has a zero slope.

    Parameters
    ----------
    dem (np.ndarray) : Filled Digital Elevation Model.
    fdr (np.ndarray) : Flow direction codes computed from dem.
    nodata_value (float) : Value from dem representing no data
    cell_size (float) : Width of a cell.
    flat_angle_floor (float) : Minimum angle in degrees.
    angle_nodata (float) : Value written where fdr is nodata.

    Returns
    -------
    np.ndarray
        Downslope angle in degrees.
    """
    rows, cols = dem.shape
    angle = np.empty(dem.shape, dtype=np.float64)
    # pylint: disable=not-an-iterable
    for row in prange(rows):
        for col in range(cols):
            direction = fdr[row, col]
            if direction == FLOW_DIRECTION_NODATA:
                angle[row, col] = angle_nodata
                continue
            value = flat_angle_floor
            if direction != FLOW_DIRECTION_UNDEFINED:
                slope = calculate_slope(
                    dem, row, col, direction, nodata_value, cell_size
                )
                value = max(math.degrees(math.atan(slope)), flat_angle_floor)
            angle[row, col] = value
    return angle


@njit(parallel=True)
def traversal_length_for_tile(
    fdr: np.ndarray, cell_size: float, length_nodata: float = SLOPE_LENGTH_NODATA
) -> np.ndarray:
    """Distance between cell centers along each cell's flow direction. Cells without an outflow use cell_size."""
    rows, cols = fdr.shape
    length = np.empty(fdr.shape, dtype=np.float64)
    # pylint: disable=not-an-iterable
    for row in prange(rows):
        for col in range(cols):
            direction = fdr[row, col]
            if direction == FLOW_DIRECTION_NODATA:
                length[row, col] = length_nodata
            elif direction == FLOW_DIRECTION_UNDEFINED:
                length[row, col] = cell_size
            else:
                length[row, col] = cell_size * DISTANCE_FACTORS[direction]
    return length


def slope_end_factor(
    angle: np.ndarray, cutoff_lt5: float, cutoff_ge5: float
) -> np.ndarray:
    """Select the slope-end factor of each cell: cutoff_ge5 where the grade is at least 5%, else cutoff_lt5."""
    return np.where(angle >= FIVE_PERCENT_ANGLE, cutoff_ge5, cutoff_lt5)


def downslope_angle(dem: Grid, fdr: Grid, flat_angle_floor: float) -> Grid:
    angle = downslope_angle_for_tile(
        dem.data, fdr.data, dem.nodata, dem.cell_size, flat_angle_floor
    )
    return dem.like(angle, nodata=SLOPE_LENGTH_NODATA)


def traversal_length(fdr: Grid) -> Grid:
    return fdr.like(
        traversal_length_for_tile(fdr.data, fdr.cell_size), nodata=SLOPE_LENGTH_NODATA
    )
