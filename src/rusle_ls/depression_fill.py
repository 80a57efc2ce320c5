import logging
from typing import Optional
import numpy as np
from numba import njit, prange
from osgeo import gdal
from tqdm import tqdm
from rusle_ls.constants import NEIGHBOR_OFFSETS
from rusle_ls.util.raster import Grid, read_grid, write_grid

logger = logging.getLogger(__name__)

# number of rings added around the dem while filling
FILL_BUFFER_SIZE = 1


@njit(parallel=True)
def assign_perimeter_minimum(dem: np.ndarray, nodata_value: float) -> np.ndarray:
    """
    Replace every nodata cell that borders valid data with the minimum of its valid neighbors.
    Cells on the edge of the data then see an outlet at their own level instead of a nodata hole,
    so they are not mistaken for sinks.

    Parameters
    ----------
    dem (np.ndarray) : Digital Elevation Model, usually expanded by one nodata ring.
    nodata_value (float) : Value from dem representing no data

    Returns
    -------
    np.ndarray
        A copy of the dem with the nodata perimeter assigned.
    """
    rows, cols = dem.shape
    result = dem.copy()
    # pylint: disable=not-an-iterable
    for row in prange(rows):
        for col in range(cols):
            if dem[row, col] != nodata_value:
                continue
            lowest = np.inf
            for i in range(8):
                n_row = row + NEIGHBOR_OFFSETS[i, 0]
                n_col = col + NEIGHBOR_OFFSETS[i, 1]
                if n_row < 0 or n_row >= rows or n_col < 0 or n_col >= cols:
                    continue
                neighbor = dem[n_row, n_col]
                if neighbor != nodata_value and neighbor < lowest:
                    lowest = neighbor
            if lowest != np.inf:
                result[row, col] = lowest
    return result


@njit(parallel=True)
def fill_sinks_pass(
    dem: np.ndarray, fillable: np.ndarray, nodata_value: float
) -> tuple[np.ndarray, int]:
    """
    Raise every sink by one step. A sink is a fillable cell whose valid neighbors are all
    strictly higher; it is replaced by the lowest of them.

    Reads only from dem and writes a new array, so rows are processed independently.

    Parameters
    ----------
    dem (np.ndarray) : Elevations from the previous pass.
    fillable (np.ndarray) : Boolean mask of cells that may be raised.
    nodata_value (float) : Value from dem representing no data

    Returns
    -------
    tuple[np.ndarray, int]
        The new elevations and the number of cells raised in this pass.
    """
    rows, cols = dem.shape
    filled = np.empty_like(dem)
    replaced = np.zeros(rows, dtype=np.int64)
    # pylint: disable=not-an-iterable
    for row in prange(rows):
        for col in range(cols):
            z = dem[row, col]
            filled[row, col] = z
            if not fillable[row, col]:
                continue
            lowest = np.inf
            for i in range(8):
                n_row = row + NEIGHBOR_OFFSETS[i, 0]
                n_col = col + NEIGHBOR_OFFSETS[i, 1]
                if n_row < 0 or n_row >= rows or n_col < 0 or n_col >= cols:
                    continue
                neighbor = dem[n_row, n_col]
                if neighbor != nodata_value and neighbor < lowest:
                    lowest = neighbor
            if lowest != np.inf and lowest > z:
                filled[row, col] = lowest
                replaced[row] += 1
    return filled, replaced.sum()


def fill_depressions(
    elevation: Grid, max_passes: Optional[int] = None, progress: bool = False
) -> Grid:
    """Fill depressions until no sink remains.

    The dem is expanded by FILL_BUFFER_SIZE rings and its nodata perimeter is assigned
    the local minimum of valid neighbors before filling. Only cells valid in the input
    are raised. The result is returned still buffered so flow direction and downslope
    angle can see across the edge; contract it by FILL_BUFFER_SIZE to get back to the
    input extent.

    Args:
        elevation (Grid): The input dem.
        max_passes (int, optional): Stop after this many passes even if sinks remain.
        progress (bool): Show a progress bar.

    Returns:
        Grid: The filled, buffered dem.
    """
    buffered = elevation.expand(FILL_BUFFER_SIZE)
    nodata_value = buffered.nodata
    fillable = buffered.valid_mask()
    dem = assign_perimeter_minimum(buffered.data.astype(np.float64), nodata_value)

    n_passes = 0
    with tqdm(desc="Filling depressions", unit=" passes", disable=not progress) as bar:
        while True:
            dem, replaced = fill_sinks_pass(dem, fillable, nodata_value)
            n_passes += 1
            bar.update(1)
            logger.debug("fill pass %d raised %d sinks", n_passes, replaced)
            if replaced == 0:
                break
            if max_passes is not None and n_passes >= max_passes:
                logger.warning(
                    "depression filling stopped after %d passes with %d sinks still raised in the last pass",
                    n_passes,
                    replaced,
                )
                break
    logger.info("depression filling finished after %d passes", n_passes)
    return buffered.like(dem)


def fill_depressions_raster(input_path: str, output_path: str, max_passes=None):
    """Fill depressions in a dem file and write the result at the input extent."""
    elevation = read_grid(input_path)
    elevation.validate()
    filled = fill_depressions(elevation, max_passes=max_passes, progress=True)
    filled = filled.contract(FILL_BUFFER_SIZE)
    # the nodata perimeter only exists to guide filling
    filled = filled.where(elevation.valid_mask(), filled.data, filled.nodata)
    write_grid(filled, output_path, eType=gdal.GDT_Float32)
