import logging
import os
from dataclasses import dataclass
from typing import Optional
import numpy as np
from osgeo import gdal
from rusle_ls.config import LSConfig
from rusle_ls.constants import LS_NODATA
from rusle_ls.depression_fill import FILL_BUFFER_SIZE, fill_depressions
from rusle_ls.downslope_angle import downslope_angle
from rusle_ls.errors import InvalidRasterError
from rusle_ls.flow_direction import flow_direction_from_grid
from rusle_ls.ls_factor import compose_ls, ls_attribute_table, write_ls_raster
from rusle_ls.slope_length import SlopeLengthResult, slope_length
from rusle_ls.util.raster import Grid, read_grid, write_grid

logger = logging.getLogger(__name__)


@dataclass
class FlowRouting:
    """Filled dem, flow direction and downslope angle at the input extent."""

    filled: Grid
    flow_direction: Grid
    angle: Grid


@dataclass
class LSResult:
    ls: Grid
    attribute_table: np.ndarray
    routing: FlowRouting
    slope_length: Grid
    accumulation: SlopeLengthResult


def route_flow(
    elevation: Grid, config: Optional[LSConfig] = None, progress: bool = False
) -> FlowRouting:
    """Fill depressions, then derive flow direction and downslope angle.

    Direction and angle are computed on the buffered fill so edge cells can drain
    across the edge; everything is clipped back to the input extent afterwards.
    """
    config = config or LSConfig()
    elevation.validate()
    valid = elevation.valid_mask()

    filled = fill_depressions(
        elevation, max_passes=config.max_fill_passes, progress=progress
    )
    buffered_valid = np.pad(valid, FILL_BUFFER_SIZE, constant_values=False)
    fdr = flow_direction_from_grid(filled, buffered_valid)
    angle = downslope_angle(filled, fdr, config.flat_angle_floor)

    filled = filled.contract(FILL_BUFFER_SIZE)
    filled = filled.where(valid, filled.data, filled.nodata)
    return FlowRouting(
        filled=filled,
        flow_direction=fdr.contract(FILL_BUFFER_SIZE),
        angle=angle.contract(FILL_BUFFER_SIZE),
    )


def compute_ls_factor(
    elevation: Grid,
    config: Optional[LSConfig] = None,
    boundary: Optional[np.ndarray] = None,
    progress: bool = False,
) -> LSResult:
    """Run the whole LS pipeline on an in-memory dem.

    Args:
        elevation (Grid): The dem.
        config (LSConfig, optional): Run parameters, defaults to LSConfig().
        boundary (np.ndarray, optional): Boolean watershed mask of the dem's shape.
        progress (bool): Show progress bars.

    Returns:
        LSResult: The stored LS grid, its attribute table and the intermediate grids.
    """
    config = config or LSConfig()
    if boundary is not None and boundary.shape != elevation.shape:
        raise InvalidRasterError(
            f"boundary shape {boundary.shape} does not match elevation shape {elevation.shape}"
        )
    routing = route_flow(elevation, config, progress=progress)
    length, accumulation = slope_length(
        routing.flow_direction,
        routing.angle,
        cutoff_lt5=config.cutoff_lt5,
        cutoff_ge5=config.cutoff_ge5,
        max_iterations=config.max_iterations,
        progress=progress,
    )
    stored = compose_ls(
        length.data,
        routing.angle.data,
        config.units,
        boundary=boundary,
        length_nodata=length.nodata,
        angle_nodata=routing.angle.nodata,
    )
    table = ls_attribute_table(stored)
    logger.info(
        "LS factor computed for %d cells, %d distinct values",
        np.count_nonzero(stored != LS_NODATA),
        len(table),
    )
    return LSResult(
        ls=elevation.like(stored, nodata=LS_NODATA),
        attribute_table=table,
        routing=routing,
        slope_length=length,
        accumulation=accumulation,
    )


def read_boundary(boundary_path: str, shape: tuple[int, int]) -> np.ndarray:
    """Read a watershed boundary raster as a boolean mask: valid, non-zero cells are inside."""
    boundary = read_grid(boundary_path)
    if boundary.shape != shape:
        raise InvalidRasterError(
            f"boundary shape {boundary.shape} does not match elevation shape {shape}"
        )
    return boundary.valid_mask() & (boundary.data != 0)


def write_intermediates(result: LSResult, intermediate_dir: str):
    routing = result.routing
    write_grid(routing.filled, os.path.join(intermediate_dir, "filled.tif"))
    write_grid(
        routing.flow_direction,
        os.path.join(intermediate_dir, "flow_direction.tif"),
        eType=gdal.GDT_Byte,
    )
    write_grid(routing.angle, os.path.join(intermediate_dir, "downslope_angle.tif"))
    write_grid(result.slope_length, os.path.join(intermediate_dir, "slope_length.tif"))


def slope_length_raster(input_path: str, output_path: str, config: Optional[LSConfig] = None):
    """Compute cumulative slope length for a dem file."""
    config = config or LSConfig()
    elevation = read_grid(input_path)
    routing = route_flow(elevation, config, progress=True)
    length, _ = slope_length(
        routing.flow_direction,
        routing.angle,
        cutoff_lt5=config.cutoff_lt5,
        cutoff_ge5=config.cutoff_ge5,
        max_iterations=config.max_iterations,
        progress=True,
    )
    write_grid(length, output_path)


def ls_factor_raster(
    input_path: str,
    output_path: str,
    config: Optional[LSConfig] = None,
    boundary_path: Optional[str] = None,
    intermediate_dir: Optional[str] = None,
) -> LSResult:
    """Compute the LS factor for a dem file and write it as an Int32 GeoTIFF with an attribute table."""
    elevation = read_grid(input_path)
    boundary = None
    if boundary_path is not None:
        boundary = read_boundary(boundary_path, elevation.shape)
    result = compute_ls_factor(elevation, config, boundary=boundary, progress=True)
    write_ls_raster(result.ls, output_path, result.attribute_table)
    if intermediate_dir is not None:
        write_intermediates(result, intermediate_dir)
    return result
