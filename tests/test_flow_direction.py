import pytest
import numpy as np
from osgeo import gdal
import click.testing
from rusle_ls.flow_direction import (
    flow_direction,
    flow_direction_for_tile,
    flow_direction_from_grid,
    inflow_mask_for_tile,
)
from rusle_ls.constants import (
    DIRECTION_FLAGS,
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
    NEIGHBOR_OFFSETS,
    OPPOSITE_DIRECTIONS,
)
from rusle_ls.util.raster import Grid
from rusle_ls_cli import flow_direction_cli

E = FLOW_DIRECTION_EAST
NE = FLOW_DIRECTION_NORTH_EAST
N = FLOW_DIRECTION_NORTH
NW = FLOW_DIRECTION_NORTH_WEST
W = FLOW_DIRECTION_WEST
SW = FLOW_DIRECTION_SOUTH_WEST
S = FLOW_DIRECTION_SOUTH
SE = FLOW_DIRECTION_SOUTH_EAST
U = FLOW_DIRECTION_UNDEFINED


@pytest.fixture(name="dem")
def fixture_dem():
    """Create a dem for testing.
    row 0 - cells flow east, the final cell has no lower neighbor
    row 1 - cells flow toward the lowest cells of row 0
    all cells bordering the 4 drain into the 4

    Returns:
        np.ndarray: A dem of size 5x5.
    """
    return np.array(
        [
            [5, 4, 3, 2, 1],
            [5, 5, 5, 5, 5],
            [5, 5, 5, 5, 5],
            [5, 5, 4, 5, 5],
            [5, 5, 5, 5, 5],
        ],
        dtype=np.float64,
    )


@pytest.fixture(name="expected_fdr")
def fixture_expected_fdr():
    """The expected flow direction of the test dem."""
    return np.array(
        [
            [E, E, E, E, U],
            [NE, NE, NE, N, N],
            [U, SE, S, SW, U],
            [U, E, U, W, U],
            [U, NE, N, NW, U],
        ],
        dtype=np.uint8,
    )


@pytest.fixture(name="raster_file_path")
def fixture_raster_file_path():
    """Create a dem file sloping east for testing.

    Yields:
        str: Path to a 4x3 raster.
    """
    output_path = "/vsimem/test_raster_FDIR.tif"
    driver = gdal.GetDriverByName("GTiff")
    dataset = driver.Create(output_path, 4, 3, 1, gdal.GDT_Float32)
    dataset.SetGeoTransform((0.0, 1.0, 0.0, 3.0, 0.0, -1.0))
    band = dataset.GetRasterBand(1)
    array = np.array(
        [
            [4, 3, 2, 1],
            [4, 3, 2, 1],
            [4, 3, 2, 1],
        ]
    )
    band.WriteArray(array)
    band.SetNoDataValue(-9999)
    dataset.FlushCache()
    dataset = None
    yield output_path
    gdal.Unlink(output_path)


@pytest.fixture(name="expected_file_fdr")
def fixture_expected_file_fdr():
    """Edge rows see the nodata perimeter at the level of its lowest neighbor
    and drain diagonally across the edge where that is steeper."""
    return np.array(
        [
            [NE, NE, E, U],
            [E, E, E, U],
            [SE, SE, E, U],
        ],
        dtype=np.uint8,
    )


def test_flow_direction_from_dem(dem, expected_fdr):
    """Test flow direction on an array."""
    fdr = flow_direction_for_tile(dem, -9999.0, 1.0)
    np.testing.assert_array_equal(fdr, expected_fdr)


def test_flow_direction_ignores_cell_size(dem, expected_fdr):
    fdr = flow_direction_for_tile(dem, -9999.0, 30.0)
    np.testing.assert_array_equal(fdr, expected_fdr)


def test_flow_direction_nodata():
    """Nodata cells are marked and never chosen as an outflow."""
    dem = np.array(
        [
            [5.0, -9999.0, 5.0],
            [5.0, 4.0, 5.0],
            [5.0, 5.0, 5.0],
        ]
    )
    fdr = flow_direction_for_tile(dem, -9999.0, 1.0)
    assert fdr[0, 1] == FLOW_DIRECTION_NODATA
    assert fdr[1, 1] == FLOW_DIRECTION_UNDEFINED
    assert fdr[0, 0] == FLOW_DIRECTION_SOUTH_EAST


def test_flow_direction_tie_break():
    """Equal steepest drops go to the lowest direction code."""
    dem = np.array(
        [
            [5.0, 4.0, 5.0],
            [5.0, 5.0, 4.0],
            [5.0, 5.0, 5.0],
        ]
    )
    # east and north drop equally, east has the lower code
    assert flow_direction_for_tile(dem, -9999.0, 1.0)[1, 1] == FLOW_DIRECTION_EAST
    dem = np.array(
        [
            [5.0, 5.0, 5.0],
            [4.0, 5.0, 5.0],
            [5.0, 4.0, 5.0],
        ]
    )
    # west and south drop equally, west has the lower code
    assert flow_direction_for_tile(dem, -9999.0, 1.0)[1, 1] == FLOW_DIRECTION_WEST


def test_flow_direction_prefers_steeper_orthogonal_over_diagonal():
    """A diagonal drop is divided by sqrt(2) before comparison."""
    dem = np.array(
        [
            [5.0, 5.0, 3.6],
            [5.0, 5.0, 4.0],
            [5.0, 5.0, 5.0],
        ]
    )
    # north east drops 1.4 / sqrt(2) < 1.0
    assert flow_direction_for_tile(dem, -9999.0, 1.0)[1, 1] == FLOW_DIRECTION_EAST


def test_inflow_mask(expected_fdr):
    mask = inflow_mask_for_tile(expected_fdr)
    # every neighbor of the 4 drains into it
    assert mask[3, 2] == 0xFF
    # the low corner receives flow from the west and from below
    assert mask[0, 4] == DIRECTION_FLAGS[W] | DIRECTION_FLAGS[S]
    assert mask[2, 0] == 0


def test_direction_consistency(dem):
    """Every outflow is flagged as an inflow on the receiving neighbor."""
    fdr = flow_direction_for_tile(dem, -9999.0, 1.0)
    mask = inflow_mask_for_tile(fdr)
    rows, cols = fdr.shape
    for row in range(rows):
        for col in range(cols):
            direction = fdr[row, col]
            if direction >= FLOW_DIRECTION_UNDEFINED:
                continue
            n_row = row + NEIGHBOR_OFFSETS[direction, 0]
            n_col = col + NEIGHBOR_OFFSETS[direction, 1]
            if not (0 <= n_row < rows and 0 <= n_col < cols):
                continue
            flag = DIRECTION_FLAGS[OPPOSITE_DIRECTIONS[direction]]
            assert mask[n_row, n_col] & flag


def test_flow_direction_from_grid_masks_invalid(dem):
    valid = np.ones(dem.shape, dtype=bool)
    valid[0, 0] = False
    fdr = flow_direction_from_grid(Grid(dem, nodata=-9999.0), valid)
    assert fdr.data[0, 0] == FLOW_DIRECTION_NODATA
    assert fdr.nodata == FLOW_DIRECTION_NODATA


def test_flow_direction_from_file(raster_file_path, expected_file_fdr):
    """Test the flow direction function from a raster file."""
    results_path = "/vsimem/test_flow_direction_results.tif"
    flow_direction(raster_file_path, results_path)
    result = gdal.Open(results_path)
    band = result.GetRasterBand(1)
    fdr = band.ReadAsArray()
    assert band.GetNoDataValue() == FLOW_DIRECTION_NODATA
    assert np.array_equal(fdr, expected_file_fdr)
    result = None
    gdal.Unlink(results_path)


def test_flow_direction_cli(raster_file_path, expected_file_fdr):
    """Test the CLI."""
    output_path = "/vsimem/test_flow_direction_cli.tif"
    runner = click.testing.CliRunner()
    result = runner.invoke(
        flow_direction_cli,
        [
            "--input_file",
            raster_file_path,
            "--output_file",
            output_path,
        ],
    )
    assert result.exit_code == 0
    dataset = gdal.Open(output_path)
    band = dataset.GetRasterBand(1)
    fdr = band.ReadAsArray()
    assert np.array_equal(fdr, expected_file_fdr)
    dataset = None
    gdal.Unlink(output_path)


def test_flow_direction_cli_missing_file():
    runner = click.testing.CliRunner()
    result = runner.invoke(
        flow_direction_cli,
        [
            "--input_file",
            "/vsimem/does_not_exist.tif",
            "--output_file",
            "/vsimem/unused.tif",
        ],
    )
    assert result.exit_code != 0
    assert "flow_direction failed" in result.output
