"""
Configuration handling for PhysioReport.

This module handles:
- Configuration file parsing (YAML/JSON)
- Configuration validation
- Default values
"""

import copy
import json
import logging
import math
from numbers import Real
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Union

import yaml

logger = logging.getLogger(__name__)


DEFAULT_CONTRAST_NAMES = [
    "All Phys",
    "Cardiac",
    "Respiratory",
    "Card X Resp Interaction",
    "HeartRateVariability",
    "RespiratoryVolumePerTime",
    "Noise ROIs",
    "Movement",
    "All Phys + Move",
]

VALID_CORRECTIONS = ["none", "family-wise"]

# Default configuration values
DEFAULT_CONFIG = {
    # Input / output files
    "report_file": "physio_report_contrasts.pdf",  # Multi-page PDF, one page per contrast
    "anatomy_file": "mean.nii",  # Underlay; MNI152 template is used if missing
    "model_file": "glm.joblib",  # Persisted FittedModel
    "physio_file": "physio.yaml",  # Persisted PhysioModel (optional)
    "toolbox_path": None,  # Folder holding templates/report_job.yaml (default: package)

    # Contrast selection
    "contrast_names": list(DEFAULT_CONTRAST_NAMES),
    "report_indices": list(range(1, len(DEFAULT_CONTRAST_NAMES) + 1)),  # 1-based

    # Thresholding
    "threshold": 0.001,
    "correction": "none",  # "none" or "family-wise"
    "color_max": None,  # None (or inf) scales to the map maximum

    # Display
    "crosshair_position": "max",  # "max" or [x, y, z] in mm
    "fov_mm": 0,  # 0 shows the full field of view
    "slice_parallel": True,  # voxel-aligned sections instead of world space
    "draw_crosshair": True,
    "title_prefix": "",

    # Physiological model used when physio_file does not exist
    "physio_model": {},

    # Write synthesized contrasts back to model_file
    "save_model": True,

    "verbose": 1,
}


class ConfigurationError(ValueError):
    """Raised when an option is unknown or structurally invalid."""


def validate_position(position: Any) -> Optional[str]:
    """
    Check a crosshair position specification.

    Returns
    -------
    str or None
        Error description, or None if the position is valid.
    """
    if isinstance(position, str):
        if position == "max":
            return None
        return f"crosshair_position must be 'max' or [x, y, z], got '{position}'"

    if not isinstance(position, Sequence) and not hasattr(position, "__len__"):
        return f"crosshair_position must be 'max' or [x, y, z], got {position!r}"

    values = list(position)
    if len(values) != 3:
        return f"crosshair_position needs exactly 3 coordinates, got {len(values)}"
    for value in values:
        if isinstance(value, bool) or not isinstance(value, Real) or not math.isfinite(value):
            return f"crosshair_position coordinates must be finite numbers, got {position!r}"
    return None


class Config:
    """
    Configuration manager for PhysioReport.

    Options are merged in order: defaults, configuration file, keyword
    overrides. The merged configuration is validated once and is read-only
    afterwards.

    Parameters
    ----------
    config_file : str or Path, optional
        Path to configuration file (YAML or JSON).
    **kwargs
        Additional configuration options to override defaults.

    Attributes
    ----------
    data : dict
        Configuration dictionary.
    """

    def __init__(
        self,
        config_file: Optional[Union[str, Path]] = None,
        **kwargs,
    ):
        # Start with defaults
        self.data = copy.deepcopy(DEFAULT_CONFIG)

        # Load from file if provided
        if config_file is not None:
            self.load_from_file(config_file)

        # Override with kwargs
        self._update_nested(self.data, copy.deepcopy(kwargs))

        self.validate()

    def _update_nested(self, base: Dict, updates: Dict) -> None:
        """Update nested dictionary with another dictionary."""
        for key, value in updates.items():
            if key in base and isinstance(base[key], dict) and isinstance(value, dict):
                self._update_nested(base[key], value)
            else:
                base[key] = value

    def load_from_file(self, filepath: Union[str, Path]) -> None:
        """
        Load configuration from a YAML or JSON file.

        Parameters
        ----------
        filepath : str or Path
            Path to configuration file.
        """
        filepath = Path(filepath)

        if not filepath.exists():
            raise FileNotFoundError(f"Configuration file not found: {filepath}")

        logger.info(f"Loading configuration from: {filepath}")

        with open(filepath, "r") as f:
            if filepath.suffix == ".json":
                file_config = json.load(f)
            else:
                file_config = yaml.safe_load(f)

        if file_config is None:
            return
        if not isinstance(file_config, dict):
            raise ConfigurationError(f"Configuration file must hold a mapping: {filepath}")

        self._update_nested(self.data, file_config)

    def save_to_file(self, filepath: Union[str, Path]) -> None:
        """
        Save configuration to a YAML or JSON file.

        Parameters
        ----------
        filepath : str or Path
            Path to output file.
        """
        filepath = Path(filepath)
        filepath.parent.mkdir(parents=True, exist_ok=True)

        data = self.to_dict()
        if isinstance(data["crosshair_position"], (list, tuple)):
            data["crosshair_position"] = [float(v) for v in data["crosshair_position"]]

        with open(filepath, "w") as f:
            if filepath.suffix in [".yaml", ".yml"]:
                yaml.safe_dump(data, f, default_flow_style=False, sort_keys=False)
            else:
                json.dump(data, f, indent=2)

        logger.info(f"Configuration saved to: {filepath}")

    def validate(self) -> None:
        """
        Validate the configuration.

        Raises
        ------
        ConfigurationError
            If configuration is invalid.
        """
        errors = []
        data = self.data

        unknown = sorted(set(data) - set(DEFAULT_CONFIG))
        if unknown:
            errors.append(f"Unknown options: {unknown}. Valid options are {sorted(DEFAULT_CONFIG)}")

        for key in ["report_file", "anatomy_file", "model_file", "physio_file"]:
            if not isinstance(data[key], (str, Path)) or not str(data[key]):
                errors.append(f"{key} must be a non-empty path, got {data[key]!r}")

        if isinstance(data["report_file"], (str, Path)) and Path(data["report_file"]).suffix.lower() != ".pdf":
            errors.append(f"report_file must be a .pdf document, got '{data['report_file']}'")

        if data["toolbox_path"] is not None and not isinstance(data["toolbox_path"], (str, Path)):
            errors.append(f"toolbox_path must be a path or null, got {data['toolbox_path']!r}")

        # Contrast selection
        names = data["contrast_names"]
        if not isinstance(names, list) or not names or not all(isinstance(n, str) and n for n in names):
            errors.append("contrast_names must be a non-empty list of contrast names")
            names = []

        indices = data["report_indices"]
        if not isinstance(indices, list) or not all(
            isinstance(i, int) and not isinstance(i, bool) for i in indices
        ):
            errors.append(f"report_indices must be a list of integers, got {indices!r}")
        elif names:
            bad = [i for i in indices if not 1 <= i <= len(names)]
            if bad:
                errors.append(
                    f"report_indices {bad} out of range; contrast_names has {len(names)} entries (1-based)"
                )

        # Thresholding
        threshold = data["threshold"]
        if isinstance(threshold, bool) or not isinstance(threshold, Real) or not 0 < threshold < 1:
            errors.append(f"threshold must be between 0 and 1, got {threshold!r}")

        if data["correction"] not in VALID_CORRECTIONS:
            errors.append(f"Invalid correction: {data['correction']!r}. Must be one of {VALID_CORRECTIONS}")

        color_max = data["color_max"]
        if color_max is not None and (
            isinstance(color_max, bool) or not isinstance(color_max, Real) or not color_max > 0
        ):
            errors.append(f"color_max must be a positive number or null, got {color_max!r}")

        # Display
        position_error = validate_position(data["crosshair_position"])
        if position_error:
            errors.append(position_error)

        fov = data["fov_mm"]
        if isinstance(fov, bool) or not isinstance(fov, Real) or fov < 0 or not math.isfinite(fov):
            errors.append(f"fov_mm must be a non-negative number, got {fov!r}")

        for key in ["slice_parallel", "draw_crosshair", "save_model"]:
            if not isinstance(data[key], bool):
                errors.append(f"{key} must be true or false, got {data[key]!r}")

        if not isinstance(data["title_prefix"], str):
            errors.append(f"title_prefix must be a string, got {data['title_prefix']!r}")

        if not isinstance(data["physio_model"], dict):
            errors.append(f"physio_model must be a mapping, got {type(data['physio_model']).__name__}")

        if errors:
            raise ConfigurationError(
                "Configuration validation failed:\n" + "\n".join(f"  - {e}" for e in errors)
            )

    def get(self, key: str, default: Any = None) -> Any:
        """
        Get a configuration value by key (supports dot notation).

        Parameters
        ----------
        key : str
            Configuration key (e.g., "physio_model.cardiac_order").
        default : any
            Default value if key not found.

        Returns
        -------
        any
            Configuration value.
        """
        value = self.data

        for k in key.split("."):
            if isinstance(value, dict) and k in value:
                value = value[k]
            else:
                return default

        return value

    def __getitem__(self, key: str) -> Any:
        """Allow dictionary-style access."""
        return self.data[key]

    def __contains__(self, key: str) -> bool:
        return key in self.data

    def to_dict(self) -> Dict:
        """Return configuration as dictionary."""
        return copy.deepcopy(self.data)

    def selected_contrasts(self) -> List[str]:
        """Contrast names selected by report_indices, in report order."""
        names = self.data["contrast_names"]
        return [names[i - 1] for i in self.data["report_indices"]]

    def summary(self) -> str:
        """
        Get a text summary of the configuration.

        Returns
        -------
        str
            Configuration summary.
        """
        lines = ["Configuration Summary", "=" * 40]

        lines.append(f"\nReport: {self.data['report_file']}")
        lines.append(f"Model: {self.data['model_file']}")
        lines.append(f"Anatomy: {self.data['anatomy_file']}")
        lines.append(f"PhysIO model: {self.data['physio_file']}")

        selected = self.selected_contrasts()
        lines.append(f"\nContrasts: {len(selected)}")
        for name in selected:
            lines.append(f"  - {name}")

        lines.append("\nThresholding:")
        lines.append(f"  p < {self.data['threshold']} ({self.data['correction']})")
        color_max = self.data["color_max"]
        lines.append(f"  Colour scale max: {'auto' if color_max is None else color_max}")

        lines.append("\nDisplay:")
        lines.append(f"  Crosshair: {self.data['crosshair_position']}")
        lines.append(f"  FOV: {self.data['fov_mm'] or 'full'}")

        return "\n".join(lines)


def load_config(
    config_file: Optional[Union[str, Path]] = None,
    **kwargs,
) -> Config:
    """
    Load configuration from file and/or keyword arguments.

    Parameters
    ----------
    config_file : str or Path, optional
        Path to configuration file.
    **kwargs
        Additional configuration options.

    Returns
    -------
    Config
        Configuration object.
    """
    return Config(config_file=config_file, **kwargs)


def create_default_config(output_path: Union[str, Path]) -> Path:
    """
    Create a documented default configuration file.

    Parameters
    ----------
    output_path : str or Path
        Path for the output configuration file.

    Returns
    -------
    Path
        Path to created configuration file.
    """
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)

    names = "\n".join(f"  - {name}" for name in DEFAULT_CONTRAST_NAMES)

    template = f"""# ===============================================================================
# PhysioReport Configuration File
# ===============================================================================
# Options not listed here are rejected. CLI arguments take precedence over
# values in this file.
#
# USAGE:
#   physioreport --config this_file.yaml
# ===============================================================================

# -------------------------------------------------------------------------------
# FILES
# -------------------------------------------------------------------------------
# Multi-page PDF report, one page per reported contrast
# CLI equivalent: --report-file
report_file: physio_report_contrasts.pdf

# Anatomical underlay. If it does not exist, the MNI152 template is used.
# CLI equivalent: --anatomy-file
anatomy_file: mean.nii

# Fitted first-level model (joblib). Synthesized contrasts are written back.
# CLI equivalent: --model-file
model_file: glm.joblib

# Physiological model describing the included regressor groups (YAML/JSON).
# If it does not exist, physio_model below is used instead.
# CLI equivalent: --physio-file
physio_file: physio.yaml

# Folder holding templates/report_job.yaml (null: installed package)
toolbox_path: null

# -------------------------------------------------------------------------------
# CONTRASTS
# -------------------------------------------------------------------------------
# Contrast names in canonical order
contrast_names:
{names}

# 1-based positions into contrast_names to report, in report order
# CLI equivalent: --contrast (repeatable)
report_indices: [1, 2, 3, 4, 5, 6, 7, 8, 9]

# -------------------------------------------------------------------------------
# THRESHOLDING
# -------------------------------------------------------------------------------
# Significance threshold (0 < p < 1)
# CLI equivalent: --threshold
threshold: 0.001

# Multiple-comparisons correction: none or family-wise
# CLI equivalent: --correction
correction: none

# Colour-scale maximum, to compare contrasts on equal scales (null: map maximum)
# CLI equivalent: --color-max
color_max: null

# -------------------------------------------------------------------------------
# DISPLAY
# -------------------------------------------------------------------------------
# Crosshair position: max (global maximum) or [x, y, z] in mm
# CLI equivalent: --position
crosshair_position: max

# Field of view around the crosshair in mm (0: full field of view)
# CLI equivalent: --fov
fov_mm: 0

# Sections parallel to the acquired slices (true) or in world space (false)
# CLI equivalent: --world-space (sets false)
slice_parallel: true

# Draw the crosshair
# CLI equivalent: --no-crosshair (sets false)
draw_crosshair: true

# Prepended to each contrast name in the page titles
# CLI equivalent: --title
title_prefix: ""

# -------------------------------------------------------------------------------
# PHYSIOLOGICAL MODEL (used when physio_file does not exist)
# -------------------------------------------------------------------------------
# Example:
#   physio_model:
#     cardiac_order: 3
#     respiratory_order: 4
#     interaction_order: 1
#     hrv: false
#     rvt: false
#     noise_rois: 0
#     movement: true
physio_model: {{}}

# Write synthesized contrasts back to model_file
save_model: true

# Verbosity: 0 warnings, 1 progress, 2 debug
verbose: 1
"""

    with open(output_path, "w") as f:
        f.write(template)

    logger.info(f"Configuration file created: {output_path}")
    return output_path
