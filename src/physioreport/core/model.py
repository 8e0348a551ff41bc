"""
Fitted first-level GLM handle.

This module handles:
- Access to the design matrix of a fitted GLM
- The list of named contrasts defined on it
- Contrast map computation
- Persistence of model and contrasts
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, List, Optional, Union

import joblib
import nibabel as nib
import numpy as np
import pandas as pd

logger = logging.getLogger(__name__)


@dataclass
class Contrast:
    """
    Named linear combination of design matrix columns.

    Parameters
    ----------
    name : str
        Contrast name, unique within a model.
    weights : np.ndarray
        Contrast matrix with one row per tested combination and one
        column per design matrix column.
    stat_type : str
        "F" or "t".
    """

    name: str
    weights: np.ndarray
    stat_type: str = "F"

    def __post_init__(self):
        self.weights = np.atleast_2d(np.asarray(self.weights, dtype=float))


class FittedModel:
    """
    Estimated GLM together with its contrast list.

    Parameters
    ----------
    glm : object, optional
        Fitted nilearn FirstLevelModel, or any object exposing
        ``compute_contrast(contrast_def, stat_type=..., output_type=...)``.
    design_matrix : pd.DataFrame, optional
        Design matrix. Taken from ``glm.design_matrices_[0]`` if None.
    contrasts : list of Contrast, optional
        Existing contrasts.

    Attributes
    ----------
    contrasts : list of Contrast
        Contrast list; grows when contrasts are added, never reordered.
    """

    def __init__(
        self,
        glm: Optional[Any] = None,
        design_matrix: Optional[pd.DataFrame] = None,
        contrasts: Optional[List[Contrast]] = None,
    ):
        if design_matrix is None:
            if glm is None or not getattr(glm, "design_matrices_", None):
                raise ValueError("A design matrix is required when the GLM does not provide one")
            design_matrix = glm.design_matrices_[0]

        self.glm = glm
        self.design_matrix = design_matrix
        self.contrasts: List[Contrast] = []

        for contrast in contrasts or []:
            self.add_contrast(contrast)

    @property
    def column_names(self) -> List[str]:
        return [str(c) for c in self.design_matrix.columns]

    @property
    def contrast_names(self) -> List[str]:
        return [c.name for c in self.contrasts]

    def add_contrast(self, contrast: Contrast) -> int:
        """
        Append a contrast to the contrast list.

        Parameters
        ----------
        contrast : Contrast
            Contrast to add.

        Returns
        -------
        int
            Index of the new contrast.
        """
        if contrast.name in self.contrast_names:
            raise ValueError(f"Contrast '{contrast.name}' already exists")

        n_columns = self.design_matrix.shape[1]
        if contrast.weights.shape[1] != n_columns:
            raise ValueError(
                f"Contrast '{contrast.name}' has {contrast.weights.shape[1]} columns, "
                f"design matrix has {n_columns}"
            )

        self.contrasts.append(contrast)
        logger.debug(f"Added contrast '{contrast.name}' at index {len(self.contrasts) - 1}")
        return len(self.contrasts) - 1

    def get_contrast(self, index: int) -> Contrast:
        """Get a contrast by index."""
        if not 0 <= index < len(self.contrasts):
            raise IndexError(f"Contrast index {index} out of range ({len(self.contrasts)} contrasts)")
        return self.contrasts[index]

    def compute_contrast(
        self,
        index: int,
        output_type: str = "z_score",
    ) -> nib.Nifti1Image:
        """
        Compute a statistical map for a contrast.

        Parameters
        ----------
        index : int
            Contrast index.
        output_type : str
            nilearn output type: "z_score", "stat", "p_value",
            "effect_size" or "effect_variance".

        Returns
        -------
        nibabel.Nifti1Image
            Statistical map.
        """
        if self.glm is None:
            raise ValueError("Model has no fitted GLM; contrasts cannot be computed")

        contrast = self.get_contrast(index)
        logger.info(f"Computing {contrast.stat_type}-contrast: {contrast.name}")

        return self.glm.compute_contrast(
            contrast.weights,
            stat_type=contrast.stat_type,
            output_type=output_type,
        )

    def save(self, filepath: Union[str, Path]) -> Path:
        """
        Save model and contrasts with joblib.

        Parameters
        ----------
        filepath : str or Path
            Output file.

        Returns
        -------
        Path
            Path of the saved file.
        """
        filepath = Path(filepath)
        filepath.parent.mkdir(parents=True, exist_ok=True)

        joblib.dump(self, filepath)
        logger.info(f"Saved model with {len(self.contrasts)} contrasts to {filepath}")
        return filepath

    @classmethod
    def load(cls, filepath: Union[str, Path]) -> "FittedModel":
        """Load a model saved with ``save``."""
        filepath = Path(filepath)
        if not filepath.exists():
            raise FileNotFoundError(f"Model file not found: {filepath}")

        model = joblib.load(filepath)
        if not isinstance(model, cls):
            raise TypeError(f"{filepath} does not hold a {cls.__name__}, got {type(model).__name__}")

        logger.info(f"Loaded model from {filepath} ({len(model.contrasts)} contrasts)")
        return model

    def summary(self) -> str:
        lines = [
            "Design Matrix:",
            f"  Shape: {self.design_matrix.shape}",
            f"  Columns: {self.column_names}",
            "",
            "Contrasts:",
        ]
        for i, contrast in enumerate(self.contrasts):
            lines.append(f"  [{i}] {contrast.name} ({contrast.stat_type}, {contrast.weights.shape[0]} rows)")
        return "\n".join(lines)
