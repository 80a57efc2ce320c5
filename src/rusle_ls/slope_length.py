import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional
import numpy as np
from numba import njit, prange
from tqdm import tqdm
from rusle_ls.constants import (
    DEFAULT_CUTOFF_GE5,
    DEFAULT_CUTOFF_LT5,
    DIRECTION_FLAGS,
    FLOW_DIRECTION_NODATA,
    NEIGHBOR_OFFSETS,
    OPPOSITE_DIRECTIONS,
    SLOPE_LENGTH_NODATA,
)
from rusle_ls.downslope_angle import slope_end_factor, traversal_length_for_tile
from rusle_ls.flow_direction import inflow_mask_for_tile
from rusle_ls.util.raster import Grid

logger = logging.getLogger(__name__)

# rounds without progress before accumulation is declared stalled
STALL_ROUNDS = 2


class AccumulationState(Enum):
    PROPAGATING = 1
    CONVERGED = 2
    STALLED = 3


@dataclass
class SlopeLengthResult:
    """Outcome of slope length accumulation.

    Attributes:
        slope_length (np.ndarray): Cumulative slope length, SLOPE_LENGTH_NODATA where undefined.
        begin_points (np.ndarray): Boolean mask of cells where a flow path starts.
        state (AccumulationState): CONVERGED or STALLED.
        iterations (int): Number of rounds evaluated.
        undefined_count (int): Valid cells left without a slope length.
    """

    slope_length: np.ndarray
    begin_points: np.ndarray
    state: AccumulationState
    iterations: int
    undefined_count: int


@njit()
def contributes(
    fdr: np.ndarray,
    inflow: np.ndarray,
    angle: np.ndarray,
    end_factor: np.ndarray,
    row: int,
    col: int,
    direction: int,
) -> bool:
    """
    Check whether the neighbor in a direction carries its slope length into the cell.

    The neighbor must be flagged in the cell's inflow mask, lie inside the grid, actually
    drain into the cell, and not be cut off by a slope break. A slope break occurs when
    the cell's angle drops below the neighbor's angle times the cell's slope-end factor;
    the flow path then ends at the neighbor and restarts at the cell.
    """
    if (inflow[row, col] & DIRECTION_FLAGS[direction]) == 0:
        return False
    rows, cols = fdr.shape
    n_row = row + NEIGHBOR_OFFSETS[direction, 0]
    n_col = col + NEIGHBOR_OFFSETS[direction, 1]
    if n_row < 0 or n_row >= rows or n_col < 0 or n_col >= cols:
        return False
    if fdr[n_row, n_col] != OPPOSITE_DIRECTIONS[direction]:
        return False
    if angle[row, col] < angle[n_row, n_col] * end_factor[row, col]:
        return False
    return True


@njit(parallel=True)
def find_begin_points(
    fdr: np.ndarray, inflow: np.ndarray, angle: np.ndarray, end_factor: np.ndarray
) -> np.ndarray:
    """
    Find the cells where slope length accumulation starts: ridge tops, filled sinks
    and cells below a slope break. None of them receive a contribution from a neighbor.

    Returns
    -------
    np.ndarray
        Boolean mask, False for nodata cells.
    """
    rows, cols = fdr.shape
    begin = np.zeros(fdr.shape, dtype=np.bool_)
    # pylint: disable=not-an-iterable
    for row in prange(rows):
        for col in range(cols):
            if fdr[row, col] == FLOW_DIRECTION_NODATA:
                continue
            has_inflow = False
            for d in range(8):
                if contributes(fdr, inflow, angle, end_factor, row, col, d):
                    has_inflow = True
                    break
            begin[row, col] = not has_inflow
    return begin


@njit(parallel=True)
def accumulate_round(
    previous: np.ndarray,
    begin: np.ndarray,
    fdr: np.ndarray,
    inflow: np.ndarray,
    angle: np.ndarray,
    end_factor: np.ndarray,
    length: np.ndarray,
    nodata_value: float,
) -> tuple[np.ndarray, int, int]:
    """
    Evaluate one round of slope length accumulation.

    Every cell reads only the previous generation, so rows are independent. A non-begin
    cell takes the longest defined contribution (upstream slope length plus the
    upstream cell's traversal length). Undefined contributions are skipped; a cell
    with no defined contribution stays nodata. Begin points keep their pinned value.

    Parameters
    ----------
    previous (np.ndarray) : Slope lengths from the previous round.
    begin (np.ndarray) : Begin point mask.
    fdr (np.ndarray) : Flow direction codes.
    inflow (np.ndarray) : Inflow bitmask.
    angle (np.ndarray) : Downslope angle in degrees.
    end_factor (np.ndarray) : Slope-end factor of each cell.
    length (np.ndarray) : Traversal length of each cell.
    nodata_value (float) : Value marking an undefined slope length.

    Returns
    -------
    tuple[np.ndarray, int, int]
        The new generation, the number of valid cells still undefined and the number
        of cells whose value changed.
    """
    rows, cols = previous.shape
    current = np.empty_like(previous)
    undefined = np.zeros(rows, dtype=np.int64)
    changed = np.zeros(rows, dtype=np.int64)
    # pylint: disable=not-an-iterable
    for row in prange(rows):
        for col in range(cols):
            if fdr[row, col] == FLOW_DIRECTION_NODATA or begin[row, col]:
                current[row, col] = previous[row, col]
                continue
            best = nodata_value
            found = False
            for d in range(8):
                if not contributes(fdr, inflow, angle, end_factor, row, col, d):
                    continue
                n_row = row + NEIGHBOR_OFFSETS[d, 0]
                n_col = col + NEIGHBOR_OFFSETS[d, 1]
                upstream = previous[n_row, n_col]
                if upstream == nodata_value:
                    continue
                candidate = upstream + length[n_row, n_col]
                if not found or candidate > best:
                    best = candidate
                    found = True
            current[row, col] = best
            if not found:
                undefined[row] += 1
            if best != previous[row, col]:
                changed[row] += 1
    return current, undefined.sum(), changed.sum()


def next_state(
    undefined: int, previous_undefined: int, changed: int, stalled_rounds: int
) -> tuple[AccumulationState, int]:
    """Advance the accumulation state machine after a round.

    Returns:
        tuple[AccumulationState, int]: The new state and the updated count of
        consecutive rounds without progress.
    """
    if undefined == 0 and changed == 0:
        return AccumulationState.CONVERGED, 0
    if undefined == previous_undefined and changed == 0:
        stalled_rounds += 1
    else:
        stalled_rounds = 0
    if stalled_rounds >= STALL_ROUNDS:
        return AccumulationState.STALLED, stalled_rounds
    return AccumulationState.PROPAGATING, stalled_rounds


def accumulate_slope_length(
    fdr: np.ndarray,
    angle: np.ndarray,
    cell_size: float,
    cutoff_lt5: float = DEFAULT_CUTOFF_LT5,
    cutoff_ge5: float = DEFAULT_CUTOFF_GE5,
    max_iterations: Optional[int] = None,
    inflow: Optional[np.ndarray] = None,
    nodata_value: float = SLOPE_LENGTH_NODATA,
    progress: bool = False,
) -> SlopeLengthResult:
    """Accumulate slope length down the flow direction graph.

    Begin points are pinned at half their traversal length. Rounds are repeated,
    each producing a new generation from the previous one, until every valid cell
    has a stable value (CONVERGED) or two consecutive rounds make no progress
    (STALLED). Reaching max_iterations, or one round per cell when no cap is given,
    is reported as a stall. A stall is logged as a warning and the unresolved cells
    are left as nodata.

    Args:
        fdr (np.ndarray): Flow direction codes.
        angle (np.ndarray): Downslope angle in degrees.
        cell_size (float): Width of a cell.
        cutoff_lt5 (float): Slope-end factor where the grade is below 5%.
        cutoff_ge5 (float): Slope-end factor where the grade is 5% or more.
        max_iterations (int, optional): Maximum number of rounds, defaults to the
            number of cells.
        inflow (np.ndarray, optional): Inflow bitmask, derived from fdr when omitted.
        nodata_value (float): Value marking an undefined slope length.
        progress (bool): Show a progress bar.

    Returns:
        SlopeLengthResult: The accumulated slope length and how the run ended.
    """
    if inflow is None:
        inflow = inflow_mask_for_tile(fdr)
    length = traversal_length_for_tile(fdr, cell_size, nodata_value)
    end_factor = slope_end_factor(angle, cutoff_lt5, cutoff_ge5)
    begin = find_begin_points(fdr, inflow, angle, end_factor)

    valid = fdr != FLOW_DIRECTION_NODATA
    current = np.where(begin, 0.5 * length, nodata_value)
    undefined = int(np.count_nonzero(valid & ~begin))
    logger.debug(
        "slope length accumulation starting from %d begin points, %d cells undefined",
        np.count_nonzero(begin),
        undefined,
    )

    # an acyclic graph settles within one round per cell
    round_limit = fdr.size if max_iterations is None else max_iterations
    state = (
        AccumulationState.CONVERGED if undefined == 0 else AccumulationState.PROPAGATING
    )
    iterations = 0
    stalled_rounds = 0
    with tqdm(
        desc="Accumulating slope length", unit=" rounds", disable=not progress
    ) as bar:
        while state is AccumulationState.PROPAGATING:
            if iterations >= round_limit:
                logger.debug("round limit of %d rounds reached", round_limit)
                state = AccumulationState.STALLED
                break
            previous_undefined = undefined
            current, undefined, changed = accumulate_round(
                current, begin, fdr, inflow, angle, end_factor, length, nodata_value
            )
            iterations += 1
            bar.update(1)
            logger.debug(
                "round %d: %d cells undefined, %d cells changed",
                iterations,
                undefined,
                changed,
            )
            state, stalled_rounds = next_state(
                undefined, previous_undefined, changed, stalled_rounds
            )

    if state is AccumulationState.STALLED:
        logger.warning(
            "slope length accumulation stalled after %d rounds, %d cells left without a slope length",
            iterations,
            undefined,
        )
    else:
        logger.info("slope length accumulation converged after %d rounds", iterations)

    return SlopeLengthResult(
        slope_length=current,
        begin_points=begin,
        state=state,
        iterations=iterations,
        undefined_count=int(undefined),
    )


def slope_length(
    fdr: Grid,
    angle: Grid,
    cutoff_lt5: float = DEFAULT_CUTOFF_LT5,
    cutoff_ge5: float = DEFAULT_CUTOFF_GE5,
    max_iterations: Optional[int] = None,
    progress: bool = False,
) -> tuple[Grid, SlopeLengthResult]:
    """Accumulate slope length for flow direction and angle Grids of the same extent."""
    result = accumulate_slope_length(
        fdr.data,
        angle.data,
        fdr.cell_size,
        cutoff_lt5=cutoff_lt5,
        cutoff_ge5=cutoff_ge5,
        max_iterations=max_iterations,
        progress=progress,
    )
    return fdr.like(result.slope_length, nodata=SLOPE_LENGTH_NODATA), result
