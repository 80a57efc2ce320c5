import logging
import click

from rusle_ls.config import LSConfig, validate_cutoff
from rusle_ls.constants import (
    DEFAULT_CUTOFF_GE5,
    DEFAULT_CUTOFF_LT5,
    DEFAULT_FLAT_ANGLE_FLOOR,
    UNITS,
)
from rusle_ls.depression_fill import fill_depressions_raster
from rusle_ls.errors import ConfigurationError
from rusle_ls.flow_direction import flow_direction
from rusle_ls.pipeline import ls_factor_raster, slope_length_raster


def cutoff_callback(ctx, param, value):
    """Reject slope-end factors outside (0, 1.1) before any processing starts."""
    try:
        return validate_cutoff(value, param.name)
    except ConfigurationError as exc:
        raise click.BadParameter(str(exc)) from exc


def slope_options(func):
    """Options shared by the commands that accumulate slope length."""
    func = click.option(
        "--max_iterations",
        type=click.IntRange(min=1),
        default=None,
        help="stop slope length accumulation after this many rounds",
    )(func)
    func = click.option(
        "--flat_angle_floor",
        type=float,
        default=DEFAULT_FLAT_ANGLE_FLOOR,
        show_default=True,
        help="angle in degrees given to flat cells",
    )(func)
    func = click.option(
        "--cutoff_ge5",
        type=float,
        default=DEFAULT_CUTOFF_GE5,
        show_default=True,
        callback=cutoff_callback,
        help="slope-end factor where the grade is 5% or more",
    )(func)
    func = click.option(
        "--cutoff_lt5",
        type=float,
        default=DEFAULT_CUTOFF_LT5,
        show_default=True,
        callback=cutoff_callback,
        help="slope-end factor where the grade is below 5%",
    )(func)
    return func


def units_option(func):
    """The DEM unit, only needed where slope length is converted to feet."""
    return click.option(
        "--units",
        type=click.Choice(UNITS),
        default="meters",
        show_default=True,
        help="linear unit of the DEM",
    )(func)


@click.group()
@click.option("--verbose", is_flag=True, help="log every fill pass and accumulation round")
def main(verbose: bool):
    """The main entry point for the command line interface."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
    )


@main.command(name="fill-depressions")
@click.option(
    "--input_file",
    required=True,
    help="path to the DEM file",
)
@click.option("--output_file", required=True, help="path to the output file")
@click.option(
    "--max_passes",
    type=click.IntRange(min=1),
    default=None,
    help="stop filling after this many passes",
)
def fill_depressions_cli(input_file: str, output_file: str, max_passes: int):
    """
    Raise every sink in a DEM to the level of its lowest neighbor until no sink remains.

    Parameters
    ----------
    input_file : str
        Path to the input dem file
    output_file : str
        Path to the output file
    max_passes : int
        Optional cap on the number of filling passes

    Returns
    -------
    None
    """
    try:
        fill_depressions_raster(input_file, output_file, max_passes=max_passes)
    except Exception as exc:
        print(f"fill_depressions failed with the following exception: {str(exc)}")
        raise click.Abort()  # exit with non-zero exit code


@main.command(name="flow-direction")
@click.option(
    "--input_file",
    required=True,
    help="path to the filled DEM file",
)
@click.option("--output_file", required=True, help="path to the output file")
def flow_direction_cli(input_file: str, output_file: str):
    """
    Write the D8 flow direction of a filled DEM.

    Parameters
    ----------
    input_file : str
        Path to the input dem file
    output_file : str
        Path to the output file

    Returns
    -------
    None
    """
    try:
        flow_direction(input_file, output_file)
    except Exception as exc:
        print(f"flow_direction failed with the following exception: {str(exc)}")
        raise click.Abort()  # exit with non-zero exit code


@main.command(name="slope-length")
@click.option(
    "--input_file",
    required=True,
    help="path to the DEM file",
)
@click.option("--output_file", required=True, help="path to the output file")
@slope_options
def slope_length_cli(
    input_file: str,
    output_file: str,
    cutoff_lt5: float,
    cutoff_ge5: float,
    flat_angle_floor: float,
    max_iterations: int,
):
    """Write the cumulative slope length of a DEM."""
    try:
        config = LSConfig(
            cutoff_lt5=cutoff_lt5,
            cutoff_ge5=cutoff_ge5,
            flat_angle_floor=flat_angle_floor,
            max_iterations=max_iterations,
        )
        slope_length_raster(input_file, output_file, config)
    except Exception as exc:
        print(f"slope_length failed with the following exception: {str(exc)}")
        raise click.Abort()  # exit with non-zero exit code


@main.command(name="ls-factor")
@click.option(
    "--input_file",
    required=True,
    help="path to the DEM file",
)
@click.option("--output_file", required=True, help="path to the output LS raster")
@click.option(
    "--boundary_file",
    default=None,
    help="path to a watershed boundary raster, LS is nodata outside it",
)
@click.option(
    "--intermediate_dir",
    default=None,
    help="directory to write the filled DEM, flow direction, angle and slope length rasters",
)
@slope_options
@units_option
def ls_factor_cli(
    input_file: str,
    output_file: str,
    boundary_file: str,
    intermediate_dir: str,
    units: str,
    cutoff_lt5: float,
    cutoff_ge5: float,
    flat_angle_floor: float,
    max_iterations: int,
):
    """
    Compute the RUSLE LS factor of a DEM. The output is an integer raster of LS * 100
    with an attribute table holding ls_factor for every value.
    """
    try:
        config = LSConfig(
            units=units,
            cutoff_lt5=cutoff_lt5,
            cutoff_ge5=cutoff_ge5,
            flat_angle_floor=flat_angle_floor,
            max_iterations=max_iterations,
        )
        ls_factor_raster(
            input_file,
            output_file,
            config,
            boundary_path=boundary_file,
            intermediate_dir=intermediate_dir,
        )
    except Exception as exc:
        print(f"ls_factor failed with the following exception: {str(exc)}")
        raise click.Abort()  # exit with non-zero exit code
