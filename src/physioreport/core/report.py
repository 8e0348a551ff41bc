"""
Contrast overlay rendering and multi-page PDF reports.

This module handles:
- Thresholding of contrast maps and peak localization
- Section plots of statistical maps on an anatomical underlay
- Appending rendered pages to a PDF document
- Loading the bundled render job template
"""

import logging
import warnings
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional, Protocol, Tuple, Union

import matplotlib
matplotlib.use('Agg')  # Non-interactive backend
import matplotlib.pyplot as plt
import nibabel as nib
import numpy as np
import yaml
from matplotlib.backends.backend_pdf import PdfPages
from nilearn import plotting
from nilearn.glm import threshold_stats_img
from nilearn.image import coord_transform, get_data, new_img_like, resample_to_img
from pypdf import PdfWriter

from physioreport.config import ConfigurationError
from physioreport.core.inference import ThresholdSpec
from physioreport.core.model import FittedModel

logger = logging.getLogger(__name__)

JOB_TEMPLATE = Path("templates") / "report_job.yaml"

RENDER_OPTIONS = {"display_mode", "cmap", "dpi", "annotate", "black_bg", "colorbar", "dim"}

Anatomy = Union[str, Path, nib.Nifti1Image]


@dataclass
class RenderResult:
    """
    Thresholded contrast map ready to be drawn.

    Attributes
    ----------
    stat_map : nibabel.Nifti1Image
        Unthresholded z-map of the contrast.
    peak_coords : tuple of float
        World coordinates (mm) of the global maximum.
    threshold : float
        z-threshold corresponding to the requested significance level.
    thresholded_map : nibabel.Nifti1Image, optional
        Map with sub-threshold voxels set to zero.
    title : str
        Page title.
    anatomy : str, Path or nibabel image
        Underlay.
    slice_parallel : bool
        Draw in the voxel space of the statistical map.
    fov_mm : float
        Half-width of the displayed field of view; 0 for no cropping.
    """

    stat_map: Any
    peak_coords: Tuple[float, float, float]
    threshold: float = 0.0
    thresholded_map: Any = None
    title: str = ""
    anatomy: Optional[Anatomy] = None
    slice_parallel: bool = True
    fov_mm: float = 0.0


class OverlayRenderer(Protocol):
    """Compute and draw a contrast overlay."""

    def render(
        self,
        model: FittedModel,
        index: int,
        spec: ThresholdSpec,
        anatomy: Anatomy,
        fov_mm: float = 0.0,
        slice_parallel: bool = True,
        title: str = "",
    ) -> RenderResult:
        ...

    def draw(
        self,
        result: RenderResult,
        cut_coords: Tuple[float, float, float],
        draw_crosshair: bool = True,
        vmax: Optional[float] = None,
    ) -> Any:
        ...


class ReportSink(Protocol):
    """Append rendered pages to a document."""

    def append_page(self, filename: Union[str, Path], page: Any) -> None:
        ...

    def close(self) -> None:
        ...


class NilearnOverlayRenderer:
    """
    Render contrast maps as orthogonal sections with nilearn.

    Parameters
    ----------
    display_mode : str
        nilearn display mode, e.g. "ortho".
    cmap : str
        Colormap of the statistical overlay.
    dpi : int
        Figure resolution.
    annotate : bool
        Draw position annotations and L/R labels.
    black_bg : bool
        Black figure background.
    colorbar : bool
        Draw a colorbar.
    dim : float
        Underlay dimming.
    """

    def __init__(
        self,
        display_mode: str = "ortho",
        cmap: str = "hot",
        dpi: int = 150,
        annotate: bool = True,
        black_bg: bool = False,
        colorbar: bool = True,
        dim: float = 0,
    ):
        self.display_mode = display_mode
        self.cmap = cmap
        self.dpi = dpi
        self.annotate = annotate
        self.black_bg = black_bg
        self.colorbar = colorbar
        self.dim = dim

    def render(
        self,
        model: FittedModel,
        index: int,
        spec: ThresholdSpec,
        anatomy: Anatomy,
        fov_mm: float = 0.0,
        slice_parallel: bool = True,
        title: str = "",
    ) -> RenderResult:
        """
        Threshold a contrast and locate its peak.

        Parameters
        ----------
        model : FittedModel
            Fitted model.
        index : int
            Contrast index.
        spec : ThresholdSpec
            Threshold settings.
        anatomy : str, Path or nibabel image
            Underlay.
        fov_mm : float
            Half-width of the field of view around the crosshair.
        slice_parallel : bool
            Draw in the voxel space of the statistical map.
        title : str
            Page title.

        Returns
        -------
        RenderResult
            Maps, threshold and peak coordinate.
        """
        z_map = model.compute_contrast(index, output_type="z_score")

        logger.info(f"Thresholding '{title}' at {spec.describe()}")
        with warnings.catch_warnings():
            warnings.filterwarnings('ignore', category=FutureWarning, module='nilearn')
            warnings.filterwarnings('ignore', category=UserWarning, module='nilearn')
            thresholded_map, threshold = threshold_stats_img(
                z_map,
                alpha=spec.threshold,
                height_control=spec.height_control,
                two_sided=False,
            )

        if np.any(np.asarray(get_data(thresholded_map)) != 0):
            peak = self.find_peak(thresholded_map)
        else:
            logger.warning(f"No voxels survive {spec.describe()} for '{title}'; using unthresholded maximum")
            peak = self.find_peak(z_map)

        logger.info(f"Peak of '{title}' at {peak} mm (z-threshold: {threshold:.4f})")

        return RenderResult(
            stat_map=z_map,
            peak_coords=peak,
            threshold=float(threshold),
            thresholded_map=thresholded_map,
            title=title,
            anatomy=anatomy,
            slice_parallel=slice_parallel,
            fov_mm=fov_mm,
        )

    @staticmethod
    def find_peak(stat_map: nib.Nifti1Image) -> Tuple[float, float, float]:
        """World coordinates (mm) of the maximum of a 3-D map."""
        data = np.asarray(get_data(stat_map), dtype=float)
        if data.ndim > 3:
            data = data[..., 0]

        data = np.where(np.isfinite(data), data, -np.inf)
        if not np.any(np.isfinite(data)):
            raise ValueError("Statistical map has no finite values")

        i, j, k = np.unravel_index(np.argmax(data), data.shape)
        x, y, z = coord_transform(i, j, k, stat_map.affine)
        return float(x), float(y), float(z)

    def draw(
        self,
        result: RenderResult,
        cut_coords: Tuple[float, float, float],
        draw_crosshair: bool = True,
        vmax: Optional[float] = None,
    ) -> plt.Figure:
        """
        Draw the overlay as one report page.

        Parameters
        ----------
        result : RenderResult
            Output of ``render``.
        cut_coords : tuple of float
            Crosshair position (mm).
        draw_crosshair : bool
            Show the crosshair.
        vmax : float, optional
            Colour-scale maximum. None scales to the map maximum.

        Returns
        -------
        matplotlib.figure.Figure
            Rendered page.
        """
        figure = plt.figure(dpi=self.dpi)
        try:
            self._plot(figure, result, cut_coords, draw_crosshair, vmax)
        except BaseException:
            # Pages that never reach the sink are closed here
            plt.close(figure)
            raise
        return figure

    def _plot(
        self,
        figure: plt.Figure,
        result: RenderResult,
        cut_coords: Tuple[float, float, float],
        draw_crosshair: bool,
        vmax: Optional[float],
    ) -> None:
        bg_img = result.anatomy
        if result.slice_parallel:
            # Sections follow the voxel grid of the statistical map
            with warnings.catch_warnings():
                warnings.filterwarnings('ignore', category=FutureWarning, module='nilearn')
                warnings.filterwarnings('ignore', category=UserWarning, module='nilearn')
                bg_img = resample_to_img(bg_img, result.stat_map, interpolation="nearest")
            interpolation = "nearest"
        else:
            interpolation = "continuous"

        # F-contrasts are one-sided; negative z values are never displayed
        data = np.nan_to_num(np.asarray(get_data(result.stat_map), dtype=float))
        overlay = new_img_like(result.stat_map, np.clip(data, 0, None))

        if self.display_mode in ("x", "y", "z"):
            cuts = [cut_coords["xyz".index(self.display_mode)]]
        else:
            cuts = list(cut_coords)

        with warnings.catch_warnings():
            warnings.filterwarnings('ignore', message='Non-finite values detected')
            warnings.filterwarnings('ignore', category=UserWarning, module='nilearn')
            display = plotting.plot_stat_map(
                overlay,
                bg_img=bg_img,
                cut_coords=cuts,
                display_mode=self.display_mode,
                threshold=result.threshold,
                vmax=vmax,
                symmetric_cbar=False,
                cmap=self.cmap,
                colorbar=self.colorbar,
                annotate=self.annotate,
                black_bg=self.black_bg,
                dim=self.dim,
                draw_cross=draw_crosshair,
                resampling_interpolation=interpolation,
                title=result.title or None,
                figure=figure,
            )

        if result.fov_mm > 0:
            self._apply_fov(display, cut_coords, result.fov_mm)

    @staticmethod
    def _apply_fov(display: Any, cut_coords: Tuple[float, float, float], fov_mm: float) -> None:
        """Crop each section to fov_mm around the crosshair."""
        x, y, z = cut_coords
        # Cut direction -> (horizontal, vertical) centre of the section
        centres = {"x": (y, z), "y": (x, z), "z": (x, y)}

        for direction, cut_axes in display.axes.items():
            if direction not in centres:
                continue
            h, v = centres[direction]
            cut_axes.ax.set_xlim(h - fov_mm, h + fov_mm)
            cut_axes.ax.set_ylim(v - fov_mm, v + fov_mm)


class PdfReportSink:
    """
    Append figures as pages of PDF documents.

    Pages are collected in a part file next to each document and, on
    ``close``, added after the pages the document already holds. Pages land
    in call order. Relative filenames are resolved against the working
    directory at call time.

    Parameters
    ----------
    dpi : int, optional
        Resolution of rasterized content.

    Attributes
    ----------
    page_counts : dict
        Document path -> number of pages appended by this sink.
    """

    def __init__(self, dpi: Optional[int] = None):
        self.dpi = dpi
        self._documents: Dict[Path, PdfPages] = {}
        self.page_counts: Dict[Path, int] = {}

    @staticmethod
    def part_path(path: Path) -> Path:
        return path.with_name(f".{path.name}.part")

    def append_page(self, filename: Union[str, Path], page: plt.Figure) -> None:
        path = Path(filename).resolve()

        pdf = self._documents.get(path)
        if pdf is None:
            path.parent.mkdir(parents=True, exist_ok=True)
            pdf = PdfPages(str(self.part_path(path)))
            self._documents[path] = pdf
            self.page_counts.setdefault(path, 0)
            logger.info(f"Writing report to: {path}")

        try:
            pdf.savefig(page, dpi=self.dpi)
        finally:
            plt.close(page)

        self.page_counts[path] += 1
        logger.debug(f"Appended page {self.page_counts[path]} to {path}")

    def close(self) -> None:
        """Add the collected pages to their documents."""
        documents = list(self._documents.items())
        self._documents.clear()

        for path, pdf in documents:
            pdf.close()
            part = self.part_path(path)
            if path.exists():
                self._merge(path, part)
                part.unlink()
            else:
                part.replace(path)
            logger.info(f"Report saved to: {path} ({self.page_counts[path]} pages added)")

    @staticmethod
    def _merge(path: Path, part: Path) -> None:
        merged = path.with_name(f".{path.name}.merged")
        writer = PdfWriter()
        try:
            writer.append(str(path))
            writer.append(str(part))
            with open(merged, "wb") as f:
                writer.write(f)
        finally:
            writer.close()
        merged.replace(path)

    def __enter__(self) -> "PdfReportSink":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


def load_job_template(toolbox_path: Optional[Union[str, Path]] = None) -> Dict[str, Dict[str, Any]]:
    """
    Load the render job template.

    Parameters
    ----------
    toolbox_path : str or Path, optional
        Folder containing ``templates/report_job.yaml``. Defaults to the
        installed package.

    Returns
    -------
    dict
        ``{"render": {...}, "display": {...}}``.
    """
    if toolbox_path is None:
        toolbox_path = Path(__file__).resolve().parent.parent

    filepath = Path(toolbox_path) / JOB_TEMPLATE
    if not filepath.exists():
        raise ConfigurationError(f"Report job template not found: {filepath}")

    with open(filepath, "r") as f:
        job = yaml.safe_load(f) or {}

    render = job.get("render") or {}
    display = job.get("display") or {}
    if not isinstance(render, dict) or not isinstance(display, dict):
        raise ConfigurationError(f"'render' and 'display' must be mappings in {filepath}")

    unknown = set(render) - RENDER_OPTIONS
    if unknown:
        raise ConfigurationError(f"Unknown render options in {filepath}: {sorted(unknown)}")

    logger.debug(f"Loaded report job template: {filepath}")
    return {"render": render, "display": display}
