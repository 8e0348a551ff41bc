"""
Main pipeline for physiological contrast reports.

This module provides the high-level pipeline that maps a list of named
physiological contrasts to one rendered report page each.
"""

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import nibabel as nib
from nilearn import datasets

from physioreport.config import Config, load_config
from physioreport.core.contrasts import ContrastRegistry
from physioreport.core.inference import CrosshairPolicy, ThresholdSpec
from physioreport.core.model import FittedModel
from physioreport.core.physio import PhysioModel
from physioreport.core.report import (
    NilearnOverlayRenderer,
    OverlayRenderer,
    PdfReportSink,
    ReportSink,
    load_job_template,
)
from physioreport.core.state import display_mode, working_directory

logger = logging.getLogger(__name__)


class ReportPipeline:
    """
    Report physiological contrasts of a fitted GLM.

    The pipeline:
    1. Resolves all input and output paths to absolute paths
    2. Loads the fitted model, the anatomy and the physiological model
    3. Creates missing physiological contrasts
    4. Renders each requested contrast and appends it to the report

    Contrasts that do not exist and cannot be created are skipped. Errors
    raised while rendering or writing abort the run; the working directory
    and matplotlib's display state are restored either way.

    Parameters
    ----------
    config : Config, str, Path, or dict, optional
        Configuration (Config object, path to config file, or dict of
        overrides).
    renderer : OverlayRenderer, optional
        Overlay renderer. Defaults to NilearnOverlayRenderer configured from
        the report job template.
    sink : ReportSink, optional
        Report writer. Defaults to PdfReportSink.
    registry : ContrastRegistry, optional
        Contrast registry.

    Attributes
    ----------
    config : Config
        Configuration object.
    model : FittedModel
        Loaded model (after ``run``).
    physio_model : PhysioModel
        Physiological model used for contrast creation (after ``run``).
    reported : list of str
        Contrasts appended to the report, in order.
    skipped : list of str
        Requested contrasts that could not be resolved.
    """

    def __init__(
        self,
        config: Optional[Union[Config, str, Path, Dict]] = None,
        renderer: Optional[OverlayRenderer] = None,
        sink: Optional[ReportSink] = None,
        registry: Optional[ContrastRegistry] = None,
    ):
        # Load configuration
        if config is None:
            self.config = Config()
        elif isinstance(config, Config):
            self.config = config
        elif isinstance(config, dict):
            self.config = Config(**config)
        else:
            self.config = load_config(config)

        self._setup_logging()

        self.renderer = renderer
        self.sink = sink
        self.registry = registry or ContrastRegistry()

        self.model: Optional[FittedModel] = None
        self.physio_model: Optional[PhysioModel] = None
        self.reported: List[str] = []
        self.skipped: List[str] = []

    def _setup_logging(self) -> None:
        """Configure logging based on verbosity setting."""
        verbose = self.config.get("verbose", 1)

        if verbose == 0:
            level = logging.WARNING
        elif verbose == 1:
            level = logging.INFO
        else:
            level = logging.DEBUG

        logging.basicConfig(
            level=level,
            format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        )

        # Always suppress matplotlib debug/info spam regardless of verbosity
        logging.getLogger('matplotlib').setLevel(logging.WARNING)
        logging.getLogger('matplotlib.font_manager').setLevel(logging.WARNING)
        logging.getLogger('PIL').setLevel(logging.WARNING)

    def resolve_paths(self) -> Dict[str, Optional[Path]]:
        """
        Absolute paths of all files, relative to the current directory.

        Resolved once before any directory change, so that collaborators
        changing the working directory cannot redirect inputs or outputs.
        """
        paths = {
            key: Path(self.config[key]).expanduser().absolute()
            for key in ["report_file", "anatomy_file", "model_file", "physio_file"]
        }
        toolbox_path = self.config["toolbox_path"]
        paths["toolbox_path"] = Path(toolbox_path).expanduser().absolute() if toolbox_path else None

        for key, path in paths.items():
            logger.debug(f"{key}: {path}")
        return paths

    def resolve_anatomy(self, anatomy_file: Path) -> Union[Path, nib.Nifti1Image]:
        """Anatomical underlay, or the MNI152 template if the file is missing."""
        if anatomy_file.exists():
            return anatomy_file

        logger.warning(f"Anatomy not found: {anatomy_file}; using the MNI152 template instead")
        return datasets.load_mni152_template()

    def load_physio_model(self, physio_file: Path) -> PhysioModel:
        """Saved physiological model, or the configured default if none was saved."""
        if physio_file.exists():
            return PhysioModel.load(physio_file)

        logger.info(f"No physiological model at {physio_file}; using the configured default")
        return PhysioModel.from_dict(self.config["physio_model"])

    def page_title(self, contrast_name: str) -> str:
        prefix = self.config["title_prefix"]
        return f"{prefix} - {contrast_name}" if prefix else contrast_name

    def run(self) -> Config:
        """
        Run the complete report pipeline.

        Returns
        -------
        Config
            The configuration the run used, merged with defaults.
        """
        logger.info("Starting PhysioReport pipeline...")

        paths = self.resolve_paths()
        job = load_job_template(paths["toolbox_path"])

        renderer = self.renderer or NilearnOverlayRenderer(**job["render"])
        sink = self.sink or PdfReportSink(dpi=job["render"].get("dpi"))

        self.model = FittedModel.load(paths["model_file"])
        anatomy = self.resolve_anatomy(paths["anatomy_file"])
        self.physio_model = self.load_physio_model(paths["physio_file"])
        self.reported = []
        self.skipped = []

        report_dir = paths["report_file"].parent
        report_name = paths["report_file"].name
        report_dir.mkdir(parents=True, exist_ok=True)

        contrast_names = self.config["contrast_names"]

        with display_mode(job["display"]):
            created = self.registry.ensure_contrasts(self.model, self.physio_model, contrast_names)
            if created and self.config["save_model"]:
                self.model.save(paths["model_file"])

            try:
                with working_directory() as path_before_report:
                    logger.debug(f"Reporting from: {path_before_report}")

                    for position in self.config["report_indices"]:
                        self._report_contrast(
                            contrast_names[position - 1],
                            anatomy,
                            renderer,
                            sink,
                            report_dir,
                            report_name,
                        )
            except BaseException:
                # The report keeps the pages written before the failure
                try:
                    sink.close()
                except Exception:
                    logger.exception("Could not close the report after a failed run")
                raise
            sink.close()

        logger.info(
            f"Reported {len(self.reported)} contrasts to {paths['report_file']}"
            + (f"; skipped {self.skipped}" if self.skipped else "")
        )
        return self.config

    def _report_contrast(
        self,
        name: str,
        anatomy: Any,
        renderer: OverlayRenderer,
        sink: ReportSink,
        report_dir: Path,
        report_name: str,
    ) -> bool:
        """Render one contrast and append it to the report."""
        index = self.registry.find_index(self.model, name)
        if index is None:
            logger.warning(f"Contrast '{name}' does not exist and could not be created; skipping")
            self.skipped.append(name)
            return False

        logger.info(f"Reporting contrast '{name}' (index {index})")

        spec = ThresholdSpec.from_config(self.config)
        result = renderer.render(
            self.model,
            index,
            spec,
            anatomy,
            fov_mm=self.config["fov_mm"],
            slice_parallel=self.config["slice_parallel"],
            title=self.page_title(name),
        )

        cut_coords = CrosshairPolicy.resolve(self.config["crosshair_position"], result)
        page = renderer.draw(
            result,
            cut_coords,
            draw_crosshair=self.config["draw_crosshair"],
            vmax=spec.color_max,
        )

        # The sink writes relative to the current directory
        with working_directory(report_dir):
            sink.append_page(report_name, page)

        self.reported.append(name)
        return True


def report_contrasts(
    config_file: Optional[Union[str, Path]] = None,
    renderer: Optional[OverlayRenderer] = None,
    sink: Optional[ReportSink] = None,
    **overrides,
) -> Config:
    """
    Report physiological contrasts of a fitted GLM.

    Parameters
    ----------
    config_file : str or Path, optional
        Configuration file (YAML or JSON).
    renderer : OverlayRenderer, optional
        Overlay renderer.
    sink : ReportSink, optional
        Report writer.
    **overrides
        Configuration options, see ``physioreport.config.DEFAULT_CONFIG``.

    Returns
    -------
    Config
        Configuration merged with defaults.

    Examples
    --------
    >>> report_contrasts(
    ...     report_file="physio.pdf",
    ...     model_file="analysis/glm.joblib",
    ...     physio_file="analysis/physio.yaml",
    ...     anatomy_file="anat/wmean.nii",
    ... )
    """
    config = load_config(config_file, **overrides)
    return ReportPipeline(config, renderer=renderer, sink=sink).run()
