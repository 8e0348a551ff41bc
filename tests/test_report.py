"""Tests for overlay rendering and PDF reports."""

from types import SimpleNamespace

import matplotlib.pyplot as plt
import numpy as np
import pytest
from pypdf import PdfReader

from physioreport.config import ConfigurationError
from physioreport.core.contrasts import ContrastRegistry
from physioreport.core.inference import ThresholdSpec
from physioreport.core.physio import PhysioModel
from physioreport.core.report import (
    NilearnOverlayRenderer,
    PdfReportSink,
    RenderResult,
    load_job_template,
)
from physioreport.core.state import working_directory


def count_pdf_pages(path):
    return len(PdfReader(str(path)).pages)


class TestPdfReportSink:
    """Tests for PdfReportSink."""

    def test_pages_accumulate_in_order(self, temp_dir, restore_cwd):
        sink = PdfReportSink()

        with working_directory(temp_dir):
            for title in ["Cardiac", "Respiratory"]:
                figure = plt.figure()
                figure.suptitle(title)
                sink.append_page("report.pdf", figure)
        sink.close()

        path = temp_dir / "report.pdf"
        assert path.exists()
        assert sink.page_counts[path] == 2
        assert count_pdf_pages(path) == 2

    def test_relative_name_resolved_at_call_time(self, temp_dir, restore_cwd):
        first = temp_dir / "a"
        second = temp_dir / "b"
        first.mkdir()
        second.mkdir()

        with PdfReportSink() as sink:
            with working_directory(first):
                sink.append_page("report.pdf", plt.figure())
            with working_directory(second):
                sink.append_page("report.pdf", plt.figure())

        assert (first / "report.pdf").exists()
        assert (second / "report.pdf").exists()

    def test_figures_are_closed(self, temp_dir):
        figure = plt.figure()

        with PdfReportSink() as sink:
            sink.append_page(temp_dir / "report.pdf", figure)

        assert not plt.fignum_exists(figure.number)

    def test_existing_document_keeps_its_pages(self, temp_dir):
        path = temp_dir / "report.pdf"

        with PdfReportSink() as sink:
            for _ in range(3):
                sink.append_page(path, plt.figure())
        with PdfReportSink() as sink:
            sink.append_page(path, plt.figure())
            sink.append_page(path, plt.figure())

        assert count_pdf_pages(path) == 5
        assert sink.page_counts[path] == 2

    def test_no_part_files_left(self, temp_dir):
        path = temp_dir / "report.pdf"

        for _ in range(2):
            with PdfReportSink() as sink:
                sink.append_page(path, plt.figure())

        assert sorted(p.name for p in temp_dir.iterdir()) == ["report.pdf"]

    def test_document_untouched_until_close(self, temp_dir):
        path = temp_dir / "report.pdf"
        with PdfReportSink() as sink:
            sink.append_page(path, plt.figure())

        sink = PdfReportSink()
        sink.append_page(path, plt.figure())
        assert count_pdf_pages(path) == 1

        sink.close()
        assert count_pdf_pages(path) == 2


class TestJobTemplate:
    """Tests for the render job template."""

    def test_bundled_template(self):
        job = load_job_template()

        assert job["render"]["display_mode"] == "ortho"
        assert "figure.figsize" in job["display"]
        NilearnOverlayRenderer(**job["render"])

    def test_toolbox_path(self, temp_dir):
        (temp_dir / "templates").mkdir()
        (temp_dir / "templates" / "report_job.yaml").write_text(
            "render:\n  cmap: cold_hot\n  dpi: 72\n"
        )

        job = load_job_template(temp_dir)

        assert job["render"] == {"cmap": "cold_hot", "dpi": 72}
        assert job["display"] == {}

    def test_missing_template(self, temp_dir):
        with pytest.raises(ConfigurationError, match="not found"):
            load_job_template(temp_dir)

    def test_unknown_render_option(self, temp_dir):
        (temp_dir / "templates").mkdir()
        (temp_dir / "templates" / "report_job.yaml").write_text("render:\n  colour: red\n")

        with pytest.raises(ConfigurationError, match="Unknown render options"):
            load_job_template(temp_dir)


class TestNilearnOverlayRenderer:
    """Tests for NilearnOverlayRenderer."""

    @pytest.fixture
    def cardiac_model(self, first_level_model):
        model, cube = first_level_model
        ContrastRegistry().ensure_contrasts(model, PhysioModel(cardiac_order=3), ["Cardiac"])
        return model, cube

    def test_find_peak(self):
        import nibabel as nib

        affine = np.diag([2.0, 2.0, 2.0, 1.0])
        affine[:3, 3] = [-10, -20, -30]
        data = np.zeros((5, 5, 5))
        data[1, 2, 3] = 7.0
        data[0, 0, 0] = np.nan

        peak = NilearnOverlayRenderer.find_peak(nib.Nifti1Image(data, affine))

        assert peak == (-8.0, -16.0, -24.0)

    def test_find_peak_without_finite_values(self):
        import nibabel as nib

        data = np.full((2, 2, 2), np.nan)

        with pytest.raises(ValueError, match="finite"):
            NilearnOverlayRenderer.find_peak(nib.Nifti1Image(data, np.eye(4)))

    def test_render_locates_effect(self, cardiac_model, anatomy_file):
        model, cube = cardiac_model
        renderer = NilearnOverlayRenderer()

        result = renderer.render(model, 0, ThresholdSpec(), anatomy_file, title="Cardiac")

        # Voxels 2..4 of the effect cube map to -4, -2, 0 mm
        for coord in result.peak_coords:
            assert coord in (-4.0, -2.0, 0.0)
        assert result.threshold > 0
        assert result.title == "Cardiac"
        assert result.anatomy == anatomy_file

    def test_family_wise_threshold_is_stricter(self, cardiac_model, anatomy_file):
        model, _ = cardiac_model
        renderer = NilearnOverlayRenderer()

        uncorrected = renderer.render(model, 0, ThresholdSpec(0.001, "none"), anatomy_file)
        corrected = renderer.render(model, 0, ThresholdSpec(0.001, "family-wise"), anatomy_file)

        assert corrected.threshold > uncorrected.threshold

    @pytest.mark.parametrize("slice_parallel", [True, False])
    def test_draw_returns_page(self, cardiac_model, anatomy_file, slice_parallel):
        model, _ = cardiac_model
        renderer = NilearnOverlayRenderer(dpi=50)
        result = renderer.render(model, 0, ThresholdSpec(), anatomy_file, slice_parallel=slice_parallel)

        page = renderer.draw(result, result.peak_coords, draw_crosshair=True, vmax=10.0)

        try:
            assert isinstance(page, plt.Figure)
            assert page.axes
        finally:
            plt.close(page)

    def test_draw_with_fov(self, cardiac_model, anatomy_file):
        model, _ = cardiac_model
        renderer = NilearnOverlayRenderer(dpi=50)
        result = renderer.render(model, 0, ThresholdSpec(), anatomy_file, fov_mm=4.0)

        page = renderer.draw(result, (0.0, -2.0, -4.0), draw_crosshair=False)
        plt.close(page)

    def test_failed_draw_closes_its_figure(self, temp_dir):
        import nibabel as nib

        stat_map = nib.Nifti1Image(np.ones((4, 4, 4), dtype=np.float32), np.eye(4))
        result = RenderResult(
            stat_map=stat_map,
            peak_coords=(1.0, 1.0, 1.0),
            anatomy=temp_dir / "missing_anatomy.nii",
        )
        figures_before = plt.get_fignums()

        with pytest.raises((ValueError, OSError)):
            NilearnOverlayRenderer(dpi=50).draw(result, result.peak_coords)

        assert plt.get_fignums() == figures_before

    def test_apply_fov(self):
        figure, axes = plt.subplots(1, 3)
        display = SimpleNamespace(axes={
            "x": SimpleNamespace(ax=axes[0]),
            "y": SimpleNamespace(ax=axes[1]),
            "z": SimpleNamespace(ax=axes[2]),
        })

        NilearnOverlayRenderer._apply_fov(display, (10.0, -20.0, 30.0), 5.0)

        assert axes[0].get_xlim() == (-25.0, -15.0)
        assert axes[0].get_ylim() == (25.0, 35.0)
        assert axes[1].get_xlim() == (5.0, 15.0)
        assert axes[2].get_ylim() == (-25.0, -15.0)
        plt.close(figure)

    def test_render_result_defaults(self):
        result = RenderResult(stat_map=None, peak_coords=(0.0, 0.0, 0.0))

        assert result.fov_mm == 0.0
        assert result.slice_parallel is True
