"""
Physiological noise model description.

A PhysioModel records which physiological regressor groups were included
when the first-level design matrix was built. It is only used to decide
which physiological contrasts can be created.
"""

import json
import logging
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml

logger = logging.getLogger(__name__)


# Regressor group -> design matrix column prefix
REGRESSOR_PREFIXES = {
    "cardiac": "cardiac",
    "respiratory": "respiratory",
    "interaction": "card_x_resp",
    "hrv": "hrv",
    "rvt": "rvt",
    "noise_rois": "noise_roi",
    "movement": "movement",
}


@dataclass
class PhysioModel:
    """
    Regressor groups of a physiological noise model.

    Parameters
    ----------
    cardiac_order : int
        RETROICOR Fourier order of the cardiac phase expansion.
    respiratory_order : int
        RETROICOR Fourier order of the respiratory phase expansion.
    interaction_order : int
        Order of the cardiac x respiratory interaction terms.
    hrv : bool
        Whether heart-rate variability regressors were included.
    rvt : bool
        Whether respiratory volume per time regressors were included.
    noise_rois : int
        Number of noise-ROI components.
    movement : bool
        Whether realignment parameters were included.
    """

    cardiac_order: int = 0
    respiratory_order: int = 0
    interaction_order: int = 0
    hrv: bool = False
    rvt: bool = False
    noise_rois: int = 0
    movement: bool = False

    @property
    def groups(self) -> Dict[str, bool]:
        """Inclusion flag for every regressor group."""
        return {
            "cardiac": self.cardiac_order > 0,
            "respiratory": self.respiratory_order > 0,
            "interaction": self.interaction_order > 0,
            "hrv": bool(self.hrv),
            "rvt": bool(self.rvt),
            "noise_rois": self.noise_rois > 0,
            "movement": bool(self.movement),
        }

    def includes(self, group: str) -> bool:
        """Whether the regressor group was part of the design."""
        if group not in REGRESSOR_PREFIXES:
            raise KeyError(f"Unknown regressor group '{group}'. Available: {list(REGRESSOR_PREFIXES)}")
        return self.groups[group]

    def n_expected_regressors(self, group: str) -> Optional[int]:
        """
        Number of design matrix columns the group should occupy.

        Returns None for groups whose column count is not fixed by the model
        (e.g. HRV/RVT delays, movement parameters).
        """
        if group == "cardiac":
            return 2 * self.cardiac_order
        if group == "respiratory":
            return 2 * self.respiratory_order
        if group == "interaction":
            return 4 * self.interaction_order
        if group == "noise_rois":
            return self.noise_rois
        return None

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "PhysioModel":
        """Build a model from a mapping, rejecting unknown keys."""
        data = dict(data or {})
        valid = {f.name for f in fields(cls)}
        unknown = set(data) - valid
        if unknown:
            raise ValueError(f"Unknown physio model fields: {sorted(unknown)}. Valid fields: {sorted(valid)}")

        for key in ["cardiac_order", "respiratory_order", "interaction_order", "noise_rois"]:
            if key in data and (not isinstance(data[key], int) or isinstance(data[key], bool) or data[key] < 0):
                raise ValueError(f"{key} must be a non-negative integer, got {data[key]!r}")

        return cls(**data)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def load(cls, filepath: Union[str, Path]) -> "PhysioModel":
        """
        Load a physiological model saved as YAML or JSON.

        Parameters
        ----------
        filepath : str or Path
            Path to the model file.

        Returns
        -------
        PhysioModel
            Loaded model.
        """
        filepath = Path(filepath)

        with open(filepath, "r") as f:
            if filepath.suffix == ".json":
                data = json.load(f)
            else:
                data = yaml.safe_load(f)

        model = cls.from_dict(data)
        logger.info(f"Loaded physiological model from {filepath}: {model}")
        return model

    def save(self, filepath: Union[str, Path]) -> Path:
        """Save the model as YAML (or JSON for a .json suffix)."""
        filepath = Path(filepath)
        filepath.parent.mkdir(parents=True, exist_ok=True)

        with open(filepath, "w") as f:
            if filepath.suffix == ".json":
                json.dump(self.to_dict(), f, indent=2)
            else:
                yaml.safe_dump(self.to_dict(), f, default_flow_style=False, sort_keys=False)

        logger.debug(f"Saved physiological model to {filepath}")
        return filepath
