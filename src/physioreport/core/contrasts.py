"""
Physiological contrast registry.

This module handles:
- Lookup of named contrasts in a fitted model
- Creation of missing physiological F-contrasts from the regressor
  groups recorded in a PhysioModel
"""

import logging
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np

from physioreport.config import DEFAULT_CONTRAST_NAMES
from physioreport.core.model import Contrast, FittedModel
from physioreport.core.physio import REGRESSOR_PREFIXES, PhysioModel

logger = logging.getLogger(__name__)


_PHYSIO_GROUPS = ("cardiac", "respiratory", "interaction", "hrv", "rvt", "noise_rois")

# Contrast name -> regressor groups it tests
CONTRAST_GROUPS: Dict[str, Tuple[str, ...]] = dict(zip(
    DEFAULT_CONTRAST_NAMES,
    [
        _PHYSIO_GROUPS,
        ("cardiac",),
        ("respiratory",),
        ("interaction",),
        ("hrv",),
        ("rvt",),
        ("noise_rois",),
        ("movement",),
        _PHYSIO_GROUPS + ("movement",),
    ],
))


class ContrastRegistry:
    """
    Resolve physiological contrast names to contrast indices.

    Parameters
    ----------
    contrast_groups : dict, optional
        Contrast name -> regressor groups. Defaults to CONTRAST_GROUPS.
    """

    def __init__(self, contrast_groups: Optional[Dict[str, Sequence[str]]] = None):
        self.contrast_groups = dict(CONTRAST_GROUPS if contrast_groups is None else contrast_groups)

    def find_index(self, model: FittedModel, name: str) -> Optional[int]:
        """
        Index of a contrast in the model's contrast list.

        Parameters
        ----------
        model : FittedModel
            Fitted model.
        name : str
            Contrast name.

        Returns
        -------
        int or None
            Contrast index, or None if no contrast has this name.
        """
        for index, contrast in enumerate(model.contrasts):
            if contrast.name == name:
                return index
        return None

    def group_columns(self, model: FittedModel, physio_model: PhysioModel, group: str) -> List[int]:
        """Design matrix column indices of an included regressor group."""
        if not physio_model.includes(group):
            return []

        prefix = REGRESSOR_PREFIXES[group]
        columns = [i for i, col in enumerate(model.column_names) if col.startswith(prefix)]

        expected = physio_model.n_expected_regressors(group)
        if expected is not None and len(columns) != expected:
            logger.warning(
                f"Physio model expects {expected} '{group}' regressors, "
                f"design matrix has {len(columns)} columns starting with '{prefix}'"
            )
        return columns

    def build_contrast(
        self,
        model: FittedModel,
        physio_model: PhysioModel,
        name: str,
    ) -> Optional[Contrast]:
        """
        Build the F-contrast testing all regressors of the contrast's groups.

        Returns
        -------
        Contrast or None
            None if the contrast has no group definition or none of its
            regressors are in the design.
        """
        groups = self.contrast_groups.get(name)
        if groups is None:
            logger.warning(f"No regressor groups defined for contrast '{name}'; cannot create it")
            return None

        columns = []
        for group in groups:
            columns.extend(self.group_columns(model, physio_model, group))

        if not columns:
            logger.info(f"Contrast '{name}' cannot be created: no regressors of {list(groups)} in the design")
            return None

        weights = np.eye(len(model.column_names))[sorted(set(columns))]
        return Contrast(name=name, weights=weights, stat_type="F")

    def ensure_contrasts(
        self,
        model: FittedModel,
        physio_model: PhysioModel,
        names: Sequence[str],
    ) -> List[str]:
        """
        Create the named contrasts that do not exist yet and can be built.

        Parameters
        ----------
        model : FittedModel
            Fitted model; its contrast list may grow.
        physio_model : PhysioModel
            Regressor groups included in the design.
        names : sequence of str
            Contrast names.

        Returns
        -------
        list of str
            Names of the contrasts that were created.
        """
        created = []

        for name in names:
            if self.find_index(model, name) is not None:
                logger.debug(f"Contrast '{name}' already exists")
                continue

            contrast = self.build_contrast(model, physio_model, name)
            if contrast is None:
                continue

            index = model.add_contrast(contrast)
            created.append(name)
            logger.info(f"Created contrast '{name}' (index {index}, {contrast.weights.shape[0]} regressors)")

        return created
