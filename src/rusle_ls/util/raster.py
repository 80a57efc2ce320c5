from typing import Optional
from osgeo import gdal
import numpy as np
from rusle_ls.constants import DEFAULT_NODATA
from rusle_ls.errors import InvalidRasterError
from rusle_ls.setup_bands import setup_output_band

gdal.UseExceptions()


def gdal_data_type_to_numpy_data_type(gdal_dtype: int) -> np.dtype:
    """Map a GDAL data type to a numpy data type.

    Args:
        gdal_dtype (int): The GDAL data type to map.

    Returns:
        np.dtype: The numpy data type that corresponds to the input GDAL data type.
    """
    # map GDAL data type to numpy data type
    gdal_numpy_dtype_mapping = {
        "Byte": np.uint8,
        "UInt16": np.uint16,
        "Int16": np.int16,
        "UInt32": np.uint32,
        "Int32": np.int32,
        "Float32": np.float32,
        "Float64": np.float64,
    }
    return gdal_numpy_dtype_mapping[gdal.GetDataTypeName(gdal_dtype)]


def read_raster_with_bounds_handling(
    x_offset: int,
    y_offset: int,
    x_size: int,
    y_size: int,
    raster_band: gdal.Band,
    no_data_value: Optional[float] = None,
) -> np.ndarray:
    """Read a window of a raster band and return it as a numpy array. This function allows for reading
       out of bounds regions. If the window, or part of the window, extends beyond the edge of the raster,
       the out of bounds region will be filled with the nodata value.

    Args:
        x_offset (int): The x offset of the window to read.
        y_offset (int): The y offset of the window to read.
        x_size (int): The number of columns in the window.
        y_size (int): The number of rows in the window.
        raster_band (gdal.Band): The raster band to read from.
        no_data_value (float, optional): Fill value for out of bounds cells. Defaults to the band's
            nodata value.

    Returns:
        np.ndarray: The window of the raster band as a numpy array. The shape of the array will be: (y_size, x_size).
    """
    assert x_size >= 0, "x_size must be positive"
    assert y_size >= 0, "y_size must be positive"
    if no_data_value is None:
        no_data_value = raster_band.GetNoDataValue()
    assert no_data_value is not None, "The raster band has no no data value"

    np_dtype = gdal_data_type_to_numpy_data_type(raster_band.DataType)
    window_data = np.full((y_size, x_size), no_data_value, dtype=np_dtype)

    # the read never starts before the beginning of the band
    x_offset_adjusted = max(x_offset, 0)
    y_offset_adjusted = max(y_offset, 0)

    # shrink the window by however much the offsets moved
    x_size_adjusted = x_size - (x_offset_adjusted - x_offset)
    y_size_adjusted = y_size - (y_offset_adjusted - y_offset)

    # how much of the band remains after the offset, 0 if the offset is past the end
    x_remaining = max(raster_band.XSize - x_offset_adjusted, 0)
    y_remaining = max(raster_band.YSize - y_offset_adjusted, 0)

    win_xsize = min(x_size_adjusted, x_remaining)
    win_ysize = min(y_size_adjusted, y_remaining)
    if win_xsize <= 0 or win_ysize <= 0:
        return window_data

    window_data[
        y_offset_adjusted - y_offset : y_offset_adjusted - y_offset + win_ysize,
        x_offset_adjusted - x_offset : x_offset_adjusted - x_offset + win_xsize,
    ] = raster_band.ReadAsArray(
        xoff=x_offset_adjusted,
        yoff=y_offset_adjusted,
        win_xsize=win_xsize,
        win_ysize=win_ysize,
    )

    return window_data


def shift_geotransform(geotransform: tuple, rings: int) -> tuple:
    """Move a geotransform origin inward by a number of cells (outward when rings is negative)."""
    x_origin, x_res, x_rot, y_origin, y_rot, y_res = geotransform
    return (
        x_origin + rings * x_res,
        x_res,
        x_rot,
        y_origin + rings * y_res,
        y_rot,
        y_res,
    )


class Grid:
    """A georeferenced 2D raster held in memory.

    Every stage of the LS pipeline consumes and produces Grids. The nodata
    sentinel marks undefined cells and is never 0 unless the source says so.
    A Grid is treated as immutable once handed to the next stage; operations
    return new Grids.
    """

    def __init__(
        self,
        data: np.ndarray,
        nodata: float = DEFAULT_NODATA,
        cell_size: float = 1.0,
        geotransform: Optional[tuple] = None,
        projection: str = "",
    ):
        self.data = data
        self.nodata = nodata
        if geotransform is None:
            geotransform = (0.0, cell_size, 0.0, 0.0, 0.0, -cell_size)
        self.geotransform = tuple(geotransform)
        self.cell_size = abs(self.geotransform[1])
        self.projection = projection

    @property
    def shape(self) -> tuple[int, int]:
        return self.data.shape

    def like(self, data: np.ndarray, nodata: Optional[float] = None) -> "Grid":
        """Create a Grid with the same georeferencing and new data."""
        return Grid(
            data,
            nodata=self.nodata if nodata is None else nodata,
            geotransform=self.geotransform,
            projection=self.projection,
        )

    def valid_mask(self) -> np.ndarray:
        return self.data != self.nodata

    def count_valid(self) -> int:
        return int(np.count_nonzero(self.valid_mask()))

    def neighbor(self, d_row: int, d_col: int) -> np.ndarray:
        """Return an array where each cell holds the value of its neighbor at (row + d_row, col + d_col).
        Neighbors outside the extent read as nodata.
        """
        rows, cols = self.shape
        shifted = np.full(self.shape, self.nodata, dtype=self.data.dtype)
        src_rows = slice(max(d_row, 0), rows + min(d_row, 0))
        dst_rows = slice(max(-d_row, 0), rows + min(-d_row, 0))
        src_cols = slice(max(d_col, 0), cols + min(d_col, 0))
        dst_cols = slice(max(-d_col, 0), cols + min(-d_col, 0))
        shifted[dst_rows, dst_cols] = self.data[src_rows, src_cols]
        return shifted

    def where(self, condition: np.ndarray, a, b) -> "Grid":
        """Elementwise select between a and b, keeping this Grid's georeferencing."""
        return self.like(np.where(condition, a, b).astype(self.data.dtype))

    def expand(self, rings: int, fill: Optional[float] = None) -> "Grid":
        """Grow the extent by a number of cell rings. New cells are nodata unless fill is given."""
        fill_value = self.nodata if fill is None else fill
        data = np.pad(self.data, rings, mode="constant", constant_values=fill_value)
        return Grid(
            data,
            self.nodata,
            geotransform=shift_geotransform(self.geotransform, -rings),
            projection=self.projection,
        )

    def contract(self, rings: int) -> "Grid":
        """Shrink the extent by a number of cell rings. Inverse of expand."""
        if rings == 0:
            return self.like(self.data.copy())
        rows, cols = self.shape
        if 2 * rings >= rows or 2 * rings >= cols:
            raise InvalidRasterError(
                f"cannot remove {rings} rings from a {rows}x{cols} grid"
            )
        data = self.data[rings:-rings, rings:-rings].copy()
        return Grid(
            data,
            self.nodata,
            geotransform=shift_geotransform(self.geotransform, rings),
            projection=self.projection,
        )

    def validate(self):
        """Reject grids that cannot be processed.

        Raises:
            InvalidRasterError: If the grid has no cells, a non-positive cell size
                or contains only nodata.
        """
        if self.data.ndim != 2 or self.data.size == 0:
            raise InvalidRasterError(f"raster has an empty extent: shape {self.data.shape}")
        if not self.cell_size > 0:
            raise InvalidRasterError(f"cell size must be positive, got {self.cell_size}")
        if self.count_valid() == 0:
            raise InvalidRasterError("raster contains only nodata cells")


def read_grid(path: str, buffer_size: int = 0, dtype=np.float64) -> Grid:
    """Read band 1 of a raster into a Grid.

    Args:
        path (str): Path to the raster, any GDAL readable format.
        buffer_size (int): Number of nodata rings to add around the raster while reading.
        dtype: numpy dtype of the returned data.

    Returns:
        Grid: The raster, with NaN nodata replaced by DEFAULT_NODATA.
    """
    dataset = gdal.Open(path)
    band = dataset.GetRasterBand(1)
    nodata = band.GetNoDataValue()
    if nodata is None or np.isnan(nodata):
        nodata = DEFAULT_NODATA
    data = read_raster_with_bounds_handling(
        -buffer_size,
        -buffer_size,
        band.XSize + 2 * buffer_size,
        band.YSize + 2 * buffer_size,
        band,
        no_data_value=nodata,
    ).astype(dtype)
    if np.issubdtype(data.dtype, np.floating):
        data[np.isnan(data)] = nodata
    grid = Grid(
        data,
        nodata=nodata,
        geotransform=shift_geotransform(dataset.GetGeoTransform(), -buffer_size),
        projection=dataset.GetProjection(),
    )
    dataset = None
    return grid


def write_grid(grid: Grid, path: str, eType=gdal.GDT_Float32):
    """Write a Grid to a GeoTIFF with the Grid's georeferencing and nodata."""
    with setup_output_band(path, grid, eType=eType) as band:
        band.WriteArray(grid.data)
