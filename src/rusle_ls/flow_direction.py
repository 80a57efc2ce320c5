from typing import Optional
import numpy as np
from numba import njit, prange
from osgeo import gdal
from rusle_ls.constants import (
    DIRECTION_FLAGS,
    DISTANCE_FACTORS,
    FLOW_DIRECTION_NODATA,
    FLOW_DIRECTION_UNDEFINED,
    FLOW_DIRECTIONS,
    NEIGHBOR_OFFSETS,
    OPPOSITE_DIRECTIONS,
)
from rusle_ls.depression_fill import assign_perimeter_minimum
from rusle_ls.util.raster import Grid, read_grid, write_grid


@njit(parallel=True)
def flow_direction_for_tile(
    dem: np.ndarray, nodata_value: float, cell_size: float = 1.0
) -> np.ndarray:
    """
    Direction codes around the cell:
       3  |   2    |  1
     ------------------
       4  |   8   |  0
     ------------------
       5  |   6   |  7

    Calculate the D8 flow direction of every cell: the neighbor with the steepest
    strictly positive drop. Ties go to the lowest direction code. Cells with no lower
    valid neighbor are FLOW_DIRECTION_UNDEFINED, nodata cells are FLOW_DIRECTION_NODATA.

    Parameters
    ----------
    dem (np.ndarray) : Filled Digital Elevation Model.
    nodata_value (float) : Value from dem representing no data
    cell_size (float) : Width of a cell in the dem's linear unit.

    Returns
    -------
    np.ndarray
        Flow direction codes (uint8).
    """
    # np.empty is faster than np.full
    # all elements will be set by the algorithm
    fdr = np.empty(dem.shape, dtype=np.uint8)
    rows, cols = dem.shape

    # pylint: disable=not-an-iterable
    for row in prange(rows):
        for col in range(cols):
            if dem[row, col] == nodata_value:
                fdr[row, col] = FLOW_DIRECTION_NODATA
                continue
            max_slope = 0.0
            max_index = -1
            for i in range(8):
                slope = calculate_slope(dem, row, col, i, nodata_value, cell_size)
                if slope > max_slope:
                    max_slope = slope
                    max_index = i
            if max_index == -1:
                fdr[row, col] = FLOW_DIRECTION_UNDEFINED
            else:
                fdr[row, col] = FLOW_DIRECTIONS[max_index]

    return fdr


@njit()
def calculate_slope(
    dem: np.ndarray,
    row: int,
    col: int,
    direction: int,
    nodata_value: float,
    cell_size: float,
) -> float:
    """
    Calculate the slope between the cell and its neighbor in a direction.

    Parameters
    ----------
    dem (np.ndarray) : Digital Elevation Model (DEM).
    row, col (int) : Coordinates of the cell.
    direction (int) : Flow direction code of the neighbor.
    nodata_value (float) : Value representing no data.
    cell_size (float) : Width of a cell.

    Returns
    -------
    float
        The drop per unit distance to the neighbor. Positive slopes indicate downhill flow.
        Nodata and out of bounds neighbors return -inf.
    """
    rows, cols = dem.shape
    n_row = row + NEIGHBOR_OFFSETS[direction, 0]
    n_col = col + NEIGHBOR_OFFSETS[direction, 1]
    if n_row < 0 or n_row >= rows or n_col < 0 or n_col >= cols:
        return -np.inf
    if dem[n_row, n_col] == nodata_value:
        return -np.inf
    return (dem[row, col] - dem[n_row, n_col]) / (
        cell_size * DISTANCE_FACTORS[direction]
    )


@njit(parallel=True)
def inflow_mask_for_tile(fdr: np.ndarray) -> np.ndarray:
    """
    Build the inflow mask of every cell. Bit DIRECTION_FLAGS[d] is set when the neighbor
    in direction d drains back into the cell.

    Parameters
    ----------
    fdr (np.ndarray) : Flow direction codes.

    Returns
    -------
    np.ndarray
        Inflow bitmask (uint8).
    """
    rows, cols = fdr.shape
    mask = np.zeros(fdr.shape, dtype=np.uint8)
    # pylint: disable=not-an-iterable
    for row in prange(rows):
        for col in range(cols):
            bits = 0
            for d in range(8):
                n_row = row + NEIGHBOR_OFFSETS[d, 0]
                n_col = col + NEIGHBOR_OFFSETS[d, 1]
                if n_row < 0 or n_row >= rows or n_col < 0 or n_col >= cols:
                    continue
                if fdr[n_row, n_col] == OPPOSITE_DIRECTIONS[d]:
                    bits |= DIRECTION_FLAGS[d]
            mask[row, col] = bits
    return mask


def flow_direction_from_grid(dem: Grid, valid_mask: Optional[np.ndarray] = None) -> Grid:
    """Flow direction of a dem Grid. Cells outside valid_mask are set to FLOW_DIRECTION_NODATA."""
    fdr = flow_direction_for_tile(dem.data, dem.nodata, dem.cell_size)
    if valid_mask is not None:
        fdr[~valid_mask] = FLOW_DIRECTION_NODATA
    return dem.like(fdr, nodata=FLOW_DIRECTION_NODATA)


def flow_direction(input_path, output_path):
    """
    Generates a flow direction raster from a (filled) DEM.
    The nodata perimeter of the DEM is treated as an outlet at the level of its lowest valid neighbor.
    """
    dem = read_grid(input_path, buffer_size=1)
    valid = dem.valid_mask()
    dem = dem.like(assign_perimeter_minimum(dem.data, dem.nodata))
    fdr = flow_direction_from_grid(dem, valid).contract(1)
    write_grid(fdr, output_path, eType=gdal.GDT_Byte)
