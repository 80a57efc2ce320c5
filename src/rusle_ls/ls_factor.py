from typing import Optional
import numpy as np
from osgeo import gdal
from rusle_ls.constants import (
    LS_NODATA,
    LS_SCALE,
    M_ANGLE_EDGES,
    M_EXPONENTS,
    METERS_PER_FOOT,
    NINE_PERCENT_ANGLE,
    SLOPE_LENGTH_NODATA,
    UNIT_PLOT_LENGTH_FT,
)
from rusle_ls.setup_bands import setup_output_band
from rusle_ls.util.raster import Grid

gdal.UseExceptions()

LS_ATTRIBUTE_DTYPE = np.dtype(
    [("value", np.int32), ("count", np.int64), ("ls_factor", np.float64)]
)


def m_exponent(angle: np.ndarray) -> np.ndarray:
    """Look up the RUSLE slope-length exponent for downslope angles in degrees.

    Bins are closed on the right, angles at or below 0.1 get the smallest exponent
    and angles of 37.2 or more get the largest.
    """
    angle = np.asarray(angle, dtype=np.float64)
    m = M_EXPONENTS[np.digitize(angle, M_ANGLE_EDGES, right=True)]
    return np.where(angle >= M_ANGLE_EDGES[-1], M_EXPONENTS[-1], m)


def slope_length_in_feet(slope_length: np.ndarray, units: str) -> np.ndarray:
    if units == "meters":
        return slope_length / METERS_PER_FOOT
    return slope_length


def l_constituent(slope_length: np.ndarray, angle: np.ndarray, units: str) -> np.ndarray:
    """L = (length / 72.6) ** m with the length in feet."""
    length_ft = slope_length_in_feet(np.asarray(slope_length, dtype=np.float64), units)
    return (length_ft / UNIT_PLOT_LENGTH_FT) ** m_exponent(angle)


def s_constituent(angle: np.ndarray) -> np.ndarray:
    """
    S from the downslope angle in degrees:
      * ``S = 10.8 * sin(b) + 0.03`` where the grade is below 9%
      * ``S = 16.8 * sin(b) - 0.50`` where the grade is 9% or more
    """
    angle = np.asarray(angle, dtype=np.float64)
    sin_angle = np.sin(np.radians(angle))
    return np.where(
        angle >= NINE_PERCENT_ANGLE,
        16.8 * sin_angle - 0.50,
        10.8 * sin_angle + 0.03,
    )


def ls_value(slope_length: np.ndarray, angle: np.ndarray, units: str) -> np.ndarray:
    return l_constituent(slope_length, angle, units) * s_constituent(angle)


def scale_ls(ls: np.ndarray) -> np.ndarray:
    """Scale LS to its stored integer form, round(LS * 100) rounding halves up."""
    return np.trunc(ls * LS_SCALE + 0.5).astype(np.int32)


def compose_ls(
    slope_length: np.ndarray,
    angle: np.ndarray,
    units: str,
    boundary: Optional[np.ndarray] = None,
    length_nodata: float = SLOPE_LENGTH_NODATA,
    angle_nodata: float = SLOPE_LENGTH_NODATA,
) -> np.ndarray:
    """Combine slope length and downslope angle into the stored LS grid.

    Args:
        slope_length (np.ndarray): Cumulative slope length in the dem's linear unit.
        angle (np.ndarray): Downslope angle in degrees.
        units (str): "meters" or "feet".
        boundary (np.ndarray, optional): Mask, LS is nodata where it is zero or False.
        length_nodata (float): Nodata value of slope_length.
        angle_nodata (float): Nodata value of angle.

    Returns:
        np.ndarray: int32 LS * 100, LS_NODATA where undefined or outside the boundary.
    """
    valid = (slope_length != length_nodata) & (angle != angle_nodata)
    if boundary is not None:
        valid &= np.asarray(boundary, dtype=bool)
    stored = np.full(slope_length.shape, LS_NODATA, dtype=np.int32)
    stored[valid] = scale_ls(ls_value(slope_length[valid], angle[valid], units))
    return stored


def ls_attribute_table(stored: np.ndarray) -> np.ndarray:
    """Attribute table of a stored LS grid: one row per distinct value with ls_factor = value / 100."""
    values, counts = np.unique(stored[stored != LS_NODATA], return_counts=True)
    table = np.zeros(values.shape[0], dtype=LS_ATTRIBUTE_DTYPE)
    table["value"] = values
    table["count"] = counts
    table["ls_factor"] = np.round(values / LS_SCALE, 2)
    return table


def build_raster_attribute_table(table: np.ndarray) -> gdal.RasterAttributeTable:
    rat = gdal.RasterAttributeTable()
    rat.CreateColumn("Value", gdal.GFT_Integer, gdal.GFU_MinMax)
    rat.CreateColumn("Count", gdal.GFT_Integer, gdal.GFU_PixelCount)
    rat.CreateColumn("ls_factor", gdal.GFT_Real, gdal.GFU_Generic)
    rat.SetRowCount(len(table))
    for i, row in enumerate(table):
        rat.SetValueAsInt(i, 0, int(row["value"]))
        rat.SetValueAsInt(i, 1, int(row["count"]))
        rat.SetValueAsDouble(i, 2, float(row["ls_factor"]))
    return rat


def write_ls_raster(ls: Grid, output_path: str, table: Optional[np.ndarray] = None):
    """Write the stored LS grid as an Int32 GeoTIFF with its attribute table."""
    if table is None:
        table = ls_attribute_table(ls.data)
    with setup_output_band(
        output_path, ls, eType=gdal.GDT_Int32, nodata_value=LS_NODATA
    ) as band:
        band.WriteArray(ls.data)
        band.SetDefaultRAT(build_raster_attribute_table(table))
