import math
import numpy as np
import pytest
from rusle_ls.constants import (
    FLOW_DIRECTION_EAST,
    FLOW_DIRECTION_NORTH_EAST,
    FLOW_DIRECTION_SOUTH_EAST,
    FLOW_DIRECTION_UNDEFINED,
    FLOW_DIRECTION_NODATA,
    SLOPE_LENGTH_NODATA,
)
from rusle_ls.downslope_angle import (
    downslope_angle,
    downslope_angle_for_tile,
    slope_end_factor,
    traversal_length,
    traversal_length_for_tile,
)
from rusle_ls.util.raster import Grid

NODATA = -9999.0
E = FLOW_DIRECTION_EAST
U = FLOW_DIRECTION_UNDEFINED
X = FLOW_DIRECTION_NODATA


@pytest.fixture(name="dem")
def fixture_dem():
    return np.array(
        [
            [1.0, 0.0, 0.0],
            [5.0, 5.0, 5.0],
            [5.0, 4.0, NODATA],
        ]
    )


def test_downslope_angle_orthogonal(dem):
    fdr = np.array([[E, U, U], [U, U, U], [U, U, X]], dtype=np.uint8)
    angle = downslope_angle_for_tile(dem, fdr, NODATA, 1.0, 0.1)
    assert angle[0, 0] == pytest.approx(45.0)
    assert angle[0, 1] == 0.1
    assert angle[2, 2] == SLOPE_LENGTH_NODATA


def test_downslope_angle_diagonal(dem):
    fdr = np.full(dem.shape, U, dtype=np.uint8)
    fdr[1, 0] = FLOW_DIRECTION_SOUTH_EAST
    angle = downslope_angle_for_tile(dem, fdr, NODATA, 1.0, 0.1)
    assert angle[1, 0] == pytest.approx(math.degrees(math.atan(1 / math.sqrt(2))))


def test_downslope_angle_scales_with_cell_size(dem):
    fdr = np.full(dem.shape, U, dtype=np.uint8)
    fdr[0, 0] = E
    angle = downslope_angle_for_tile(dem, fdr, NODATA, 10.0, 0.1)
    assert angle[0, 0] == pytest.approx(math.degrees(math.atan(0.1)))


def test_downslope_angle_floor():
    """A gentle drop is raised to the floor so no cell has a zero angle."""
    dem = np.array([[1.001, 1.0]])
    fdr = np.array([[E, U]], dtype=np.uint8)
    angle = downslope_angle_for_tile(dem, fdr, NODATA, 1.0, 0.1)
    np.testing.assert_array_equal(angle, [[0.1, 0.1]])
    angle = downslope_angle_for_tile(dem, fdr, NODATA, 1.0, 0.01)
    assert angle[0, 0] == pytest.approx(math.degrees(math.atan(0.001)))
    assert angle[0, 1] == 0.01


def test_traversal_length():
    fdr = np.array([[E, FLOW_DIRECTION_NORTH_EAST, U, X]], dtype=np.uint8)
    length = traversal_length_for_tile(fdr, 10.0, SLOPE_LENGTH_NODATA)
    np.testing.assert_allclose(length, [[10.0, 10.0 * math.sqrt(2), 10.0, SLOPE_LENGTH_NODATA]])


def test_slope_end_factor():
    angle = np.array([0.1, 2.86, 2.8624, 30.0])
    np.testing.assert_array_equal(
        slope_end_factor(angle, 0.7, 0.5), [0.7, 0.7, 0.5, 0.5]
    )


def test_grid_wrappers_keep_georeferencing(dem):
    geotransform = (500.0, 2.0, 0.0, 100.0, 0.0, -2.0)
    dem_grid = Grid(dem, nodata=NODATA, geotransform=geotransform)
    fdr = np.full(dem.shape, U, dtype=np.uint8)
    fdr[2, 2] = X
    fdr_grid = dem_grid.like(fdr, nodata=X)
    angle = downslope_angle(dem_grid, fdr_grid, 0.1)
    assert angle.geotransform == geotransform
    assert angle.nodata == SLOPE_LENGTH_NODATA
    assert angle.count_valid() == 8
    length = traversal_length(fdr_grid)
    assert length.data[0, 0] == 2.0
    assert length.data[2, 2] == SLOPE_LENGTH_NODATA
