"""
Thresholding and crosshair settings for contrast rendering.

This module handles:
- Threshold specification (significance level, correction, colour cap)
- Crosshair position resolution
"""

import logging
import math
from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional, Sequence, Tuple, Union

from physioreport.config import VALID_CORRECTIONS, Config, ConfigurationError, validate_position

if TYPE_CHECKING:
    from physioreport.core.report import RenderResult

logger = logging.getLogger(__name__)


# Correction mode -> nilearn height_control
HEIGHT_CONTROL = {
    "none": "fpr",
    "family-wise": "bonferroni",
}


@dataclass(frozen=True)
class ThresholdSpec:
    """
    Statistical threshold for one contrast render.

    Parameters
    ----------
    threshold : float
        Significance level (p-value).
    correction : str
        "none" (uncorrected) or "family-wise" (Bonferroni FWER).
    color_max : float, optional
        Maximum of the colour scale. None scales to the map maximum.
    """

    threshold: float = 0.001
    correction: str = "none"
    color_max: Optional[float] = None

    def __post_init__(self):
        if self.correction not in VALID_CORRECTIONS:
            raise ConfigurationError(f"Invalid correction: {self.correction!r}. Must be one of {VALID_CORRECTIONS}")
        if not 0 < self.threshold < 1:
            raise ConfigurationError(f"threshold must be between 0 and 1, got {self.threshold}")

    @classmethod
    def from_config(cls, config: Config) -> "ThresholdSpec":
        color_max = config["color_max"]
        if color_max is not None and math.isinf(color_max):
            color_max = None

        return cls(
            threshold=float(config["threshold"]),
            correction=config["correction"],
            color_max=None if color_max is None else float(color_max),
        )

    @property
    def height_control(self) -> str:
        return HEIGHT_CONTROL[self.correction]

    def describe(self) -> str:
        label = "FWE" if self.correction == "family-wise" else "unc."
        return f"p < {self.threshold} ({label})"


class CrosshairPolicy:
    """Choose the display coordinate of a rendered overlay."""

    @staticmethod
    def resolve(
        position_spec: Union[str, Sequence[float]],
        render_result: "RenderResult",
    ) -> Tuple[float, float, float]:
        """
        Resolve the crosshair coordinate.

        Parameters
        ----------
        position_spec : "max" or sequence of 3 floats
            "max" jumps to the global maximum reported by the renderer;
            an explicit [x, y, z] position (mm) is used unchanged.
        render_result : RenderResult
            Render result holding the peak coordinate.

        Returns
        -------
        tuple of float
            (x, y, z) in mm.

        Raises
        ------
        ConfigurationError
            If position_spec is neither "max" nor a 3-D coordinate.
        """
        error = validate_position(position_spec)
        if error:
            raise ConfigurationError(error)

        if isinstance(position_spec, str):
            coords = tuple(float(v) for v in render_result.peak_coords)
            logger.debug(f"Crosshair at global maximum: {coords}")
            return coords

        return tuple(float(v) for v in position_spec)
