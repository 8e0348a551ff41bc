"""Tests for the command-line interface."""

import pytest
import yaml

from physioreport.cli import build_overrides, create_parser, main, parse_position
from physioreport.config import DEFAULT_CONFIG, ConfigurationError


def parse(*argv):
    return create_parser().parse_args(list(argv))


class TestParsePosition:
    """Tests for --position parsing."""

    def test_max(self):
        assert parse_position(["max"]) == "max"

    def test_coordinates(self):
        assert parse_position(["0", "-15", "-32"]) == [0.0, -15.0, -32.0]

    def test_wrong_count(self):
        with pytest.raises(ConfigurationError, match="three coordinates"):
            parse_position(["1", "2"])

    def test_not_a_number(self):
        with pytest.raises(ConfigurationError):
            parse_position(["peak", "0", "0"])


class TestBuildOverrides:
    """Tests for mapping arguments to configuration options."""

    def test_no_arguments(self):
        assert build_overrides(parse()) == {}

    def test_files_and_thresholds(self):
        overrides = build_overrides(parse(
            "--report-file", "out.pdf",
            "--model-file", "glm.joblib",
            "--threshold", "0.05",
            "--correction", "family-wise",
            "--color-max", "20",
        ))

        assert overrides == {
            "report_file": "out.pdf",
            "model_file": "glm.joblib",
            "threshold": 0.05,
            "correction": "family-wise",
            "color_max": 20.0,
        }

    def test_contrasts_and_display(self):
        overrides = build_overrides(parse(
            "--contrast", "2", "--contrast", "3",
            "--position", "0", "-15", "-32",
            "--fov", "50",
            "--world-space",
            "--no-crosshair",
            "--title", "sub-01",
            "--no-save-model",
            "-vv",
        ))

        assert overrides["report_indices"] == [2, 3]
        assert overrides["crosshair_position"] == [0.0, -15.0, -32.0]
        assert overrides["fov_mm"] == 50.0
        assert overrides["slice_parallel"] is False
        assert overrides["draw_crosshair"] is False
        assert overrides["title_prefix"] == "sub-01"
        assert overrides["save_model"] is False
        assert overrides["verbose"] == 3

    def test_verbosity_levels(self):
        assert "verbose" not in build_overrides(parse())
        assert build_overrides(parse("-q"))["verbose"] == 0
        assert build_overrides(parse("-v"))["verbose"] == 2

    def test_quiet_and_verbose_are_exclusive(self):
        with pytest.raises(SystemExit):
            parse("-q", "-v")

    def test_invalid_correction_rejected_by_parser(self):
        with pytest.raises(SystemExit):
            parse("--correction", "fdr")


class TestMain:
    """Tests for the CLI entry point."""

    def test_init_config(self, temp_dir):
        main(["--init-config", str(temp_dir / "physioreport")])

        with open(temp_dir / "physioreport.yaml") as f:
            assert set(yaml.safe_load(f)) == set(DEFAULT_CONFIG)

    def test_invalid_configuration_exits(self):
        with pytest.raises(SystemExit) as excinfo:
            main(["--threshold", "2"])

        assert excinfo.value.code == 1

    def test_missing_model_exits(self, temp_dir, restore_cwd):
        with pytest.raises(SystemExit) as excinfo:
            main(["--model-file", str(temp_dir / "missing.joblib"), "--report-file", str(temp_dir / "r.pdf")])

        assert excinfo.value.code == 1
