from dataclasses import dataclass
from typing import Optional

from rusle_ls.constants import (
    DEFAULT_CUTOFF_GE5,
    DEFAULT_CUTOFF_LT5,
    DEFAULT_FLAT_ANGLE_FLOOR,
    MAX_CUTOFF,
    UNITS,
)
from rusle_ls.errors import ConfigurationError


@dataclass(frozen=True)
class LSConfig:
    """Parameters for an LS factor run.

    Validated on construction so the processing stages can trust them.

    Attributes:
        units (str): Linear unit of the elevation raster, "meters" or "feet".
        cutoff_lt5 (float): Slope-end factor applied where the grade is below 5%.
        cutoff_ge5 (float): Slope-end factor applied where the grade is 5% or more.
        flat_angle_floor (float): Angle in degrees given to flat cells.
        max_iterations (int, optional): Cap on slope length accumulation rounds.
        max_fill_passes (int, optional): Cap on depression filling passes.
    """

    units: str = "meters"
    cutoff_lt5: float = DEFAULT_CUTOFF_LT5
    cutoff_ge5: float = DEFAULT_CUTOFF_GE5
    flat_angle_floor: float = DEFAULT_FLAT_ANGLE_FLOOR
    max_iterations: Optional[int] = None
    max_fill_passes: Optional[int] = None

    def __post_init__(self):
        if self.units not in UNITS:
            raise ConfigurationError(
                f"units must be one of {', '.join(UNITS)}, got {self.units!r}"
            )
        for name in ("cutoff_lt5", "cutoff_ge5"):
            validate_cutoff(getattr(self, name), name)
        if not self.flat_angle_floor > 0:
            raise ConfigurationError(
                f"flat_angle_floor must be positive, got {self.flat_angle_floor}"
            )
        for name in ("max_iterations", "max_fill_passes"):
            value = getattr(self, name)
            if value is not None and value < 1:
                raise ConfigurationError(f"{name} must be at least 1, got {value}")


def validate_cutoff(value: float, name: str = "cutoff") -> float:
    """Check a slope-end factor lies in the open interval (0, MAX_CUTOFF)."""
    if not 0 < value < MAX_CUTOFF:
        raise ConfigurationError(
            f"{name} must be greater than 0 and less than {MAX_CUTOFF}, got {value}"
        )
    return value
