"""Pytest configuration and shared fixtures."""

import os
import tempfile
from pathlib import Path

import numpy as np
import pandas as pd
import pytest

from physioreport.core.model import Contrast, FittedModel
from physioreport.core.physio import PhysioModel
from physioreport.core.report import RenderResult


N_SCANS = 40


@pytest.fixture
def temp_dir():
    """Create a temporary directory for tests."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir).resolve()


@pytest.fixture
def restore_cwd():
    """Return to the starting directory even if a test changes it."""
    cwd = os.getcwd()
    yield cwd
    os.chdir(cwd)


@pytest.fixture
def design_matrix():
    """Design matrix with a task regressor, RETROICOR and movement columns."""
    rng = np.random.default_rng(0)
    columns = (
        ["task"]
        + [f"cardiac_{i:02d}" for i in range(1, 7)]  # order 3
        + [f"respiratory_{i:02d}" for i in range(1, 9)]  # order 4
        + [f"movement_{i:02d}" for i in range(1, 7)]
    )
    dm = pd.DataFrame(rng.normal(size=(N_SCANS, len(columns))), columns=columns)
    dm["constant"] = 1.0
    return dm


@pytest.fixture
def physio_model():
    """RETROICOR model matching the design_matrix fixture."""
    return PhysioModel(cardiac_order=3, respiratory_order=4, movement=True)


@pytest.fixture
def fitted_model(design_matrix):
    """Model without GLM estimates, for contrast bookkeeping tests."""
    return FittedModel(design_matrix=design_matrix)


@pytest.fixture
def model_file(temp_dir, design_matrix):
    """Fitted model saved to disk, with one existing task contrast."""
    weights = np.zeros((1, design_matrix.shape[1]))
    weights[0, 0] = 1.0
    model = FittedModel(
        design_matrix=design_matrix,
        contrasts=[Contrast("task", weights, stat_type="t")],
    )
    return model.save(temp_dir / "glm.joblib")


@pytest.fixture
def anatomy_file(temp_dir):
    """Small anatomical image on disk."""
    import nibabel as nib

    affine = np.diag([2.0, 2.0, 2.0, 1.0])
    affine[:3, 3] = [-8, -8, -8]
    data = np.random.default_rng(1).uniform(50, 150, (9, 9, 9)).astype(np.float32)
    path = temp_dir / "anat.nii.gz"
    nib.save(nib.Nifti1Image(data, affine), path)
    return path


@pytest.fixture
def first_level_model(design_matrix):
    """
    Real nilearn first-level model with a cardiac effect in one cube.

    Returns the FittedModel and the voxel slice holding the effect.
    """
    import nibabel as nib
    from nilearn.glm.first_level import FirstLevelModel

    rng = np.random.default_rng(42)
    shape = (8, 8, 8)
    affine = np.diag([2.0, 2.0, 2.0, 1.0])
    affine[:3, 3] = [-8, -8, -8]

    data = rng.normal(100, 1, shape + (N_SCANS,))
    cube = (slice(2, 5), slice(2, 5), slice(2, 5))
    data[cube] += 5 * design_matrix["cardiac_01"].values

    img = nib.Nifti1Image(data.astype(np.float32), affine)
    mask = nib.Nifti1Image(np.ones(shape, dtype=np.uint8), affine)

    glm = FirstLevelModel(t_r=2.0, mask_img=mask, minimize_memory=False)
    glm.fit(img, design_matrices=design_matrix)

    return FittedModel(glm=glm), cube


class FakeRenderer:
    """Renderer recording its calls; optionally fails on a contrast."""

    def __init__(self, peak=(12.0, -4.0, 30.0), fail_on=None, chdir_to=None):
        self.peak = peak
        self.fail_on = fail_on
        self.chdir_to = chdir_to
        self.rendered = []
        self.drawn = []

    def render(self, model, index, spec, anatomy, fov_mm=0.0, slice_parallel=True, title=""):
        name = model.contrasts[index].name
        if name == self.fail_on:
            raise RuntimeError(f"cannot render {name}")
        if self.chdir_to is not None:
            os.chdir(self.chdir_to)
        self.rendered.append({
            "name": name,
            "index": index,
            "spec": spec,
            "anatomy": anatomy,
            "fov_mm": fov_mm,
            "slice_parallel": slice_parallel,
            "title": title,
        })
        return RenderResult(
            stat_map=None,
            peak_coords=self.peak,
            title=title,
            anatomy=anatomy,
            slice_parallel=slice_parallel,
            fov_mm=fov_mm,
        )

    def draw(self, result, cut_coords, draw_crosshair=True, vmax=None):
        page = {
            "title": result.title,
            "cut_coords": cut_coords,
            "draw_crosshair": draw_crosshair,
            "vmax": vmax,
        }
        self.drawn.append(page)
        return page


class FakeSink:
    """Sink recording pages and the directory each page was written from."""

    def __init__(self, chdir_to=None, fail_on_page=None, fail_on_close=False):
        self.chdir_to = chdir_to
        self.fail_on_page = fail_on_page
        self.fail_on_close = fail_on_close
        self.pages = []
        self.closed = False

    def append_page(self, filename, page):
        if self.fail_on_page is not None and len(self.pages) == self.fail_on_page:
            raise IOError("disk full")
        self.pages.append({"cwd": os.getcwd(), "filename": filename, "page": page})
        if self.chdir_to is not None:
            os.chdir(self.chdir_to)

    def close(self):
        self.closed = True
        if self.fail_on_close:
            raise IOError("cannot finalize report")


@pytest.fixture
def fake_renderer():
    return FakeRenderer()


@pytest.fixture
def fake_sink():
    return FakeSink()
