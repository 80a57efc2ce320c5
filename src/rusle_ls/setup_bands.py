from osgeo import gdal
from contextlib import contextmanager


gdal.UseExceptions()


@contextmanager
def setup_output_band(output_path, grid, eType=gdal.GDT_Float32, nodata_value=None):
    """Create a single band GeoTIFF matching the extent and georeferencing of a grid.

    The dataset is flushed and closed when the context exits.
    """
    n_bands = 1
    rows, cols = grid.shape
    driver = gdal.GetDriverByName("GTiff")
    output_dataset = driver.Create(output_path, cols, rows, n_bands, eType)
    output_dataset.SetProjection(grid.projection)
    output_dataset.SetGeoTransform(grid.geotransform)

    band_id = 1
    output_band = output_dataset.GetRasterBand(band_id)
    if nodata_value is None:
        nodata_value = grid.nodata
    output_band.SetNoDataValue(nodata_value)

    try:
        yield output_band
    finally:
        output_band.FlushCache()
        output_dataset.FlushCache()
        output_band = None
        output_dataset = None
