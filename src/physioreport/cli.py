"""
Command-line interface for PhysioReport.

This module provides the CLI entry point for reporting physiological
noise contrasts of a fitted first-level GLM.
"""

import argparse
import logging
import sys
import textwrap
from pathlib import Path
from typing import Any, Dict, List, Optional

from physioreport import __version__
from physioreport.config import VALID_CORRECTIONS, Config, ConfigurationError, create_default_config
from physioreport.pipeline import ReportPipeline

logger = logging.getLogger(__name__)


class Colors:
    """ANSI color codes for terminal output."""
    BLUE = '\033[94m'
    CYAN = '\033[96m'
    GREEN = '\033[92m'
    YELLOW = '\033[93m'
    RED = '\033[91m'
    BOLD = '\033[1m'
    END = '\033[0m'


class ColoredHelpFormatter(argparse.RawDescriptionHelpFormatter):
    """Custom formatter with colored section headers."""

    def __init__(self, prog, indent_increment=2, max_help_position=40, width=100):
        super().__init__(prog, indent_increment, max_help_position, width)

    def _format_usage(self, usage, actions, groups, prefix):
        if prefix is None:
            prefix = f'{Colors.BOLD}Usage:{Colors.END} '
        return super()._format_usage(usage, actions, groups, prefix)

    def start_section(self, heading):
        if heading:
            heading = f'{Colors.BOLD}{Colors.CYAN}{heading}{Colors.END}'
        super().start_section(heading)


def create_parser() -> argparse.ArgumentParser:
    """Create command-line argument parser."""

    description = textwrap.dedent(f"""
    {Colors.BOLD}{Colors.GREEN}PhysioReport v{__version__}{Colors.END}

    {Colors.BOLD}Description:{Colors.END}
      Reports F-contrast maps of physiological noise regressors (cardiac,
      respiratory, interaction, HRV, RVT, noise ROIs, movement) of a fitted
      first-level GLM. Each contrast is thresholded, drawn as orthogonal
      sections on an anatomical underlay and appended as one page to a PDF.

    {Colors.BOLD}Workflow:{Colors.END}
      1. Load the fitted model and the physiological model
      2. Create missing physiological contrasts
      3. Threshold and render each requested contrast
      4. Append one page per contrast to the report
    """)

    epilog = textwrap.dedent(f"""
    {Colors.BOLD}EXAMPLES{Colors.END}

      # Report all default contrasts
      physioreport --model-file glm.joblib --physio-file physio.yaml \\
          --anatomy-file wmean.nii --report-file physio.pdf

      # Cardiac and respiratory only, family-wise corrected, fixed colour scale
      physioreport --config report.yaml --contrast 2 --contrast 3 \\
          --correction family-wise --threshold 0.05 --color-max 20

      # Fixed crosshair in the brainstem, 50 mm field of view
      physioreport --config report.yaml --position 0 -15 -32 --fov 50

      # Write a documented configuration file
      physioreport --init-config report.yaml
    """)

    parser = argparse.ArgumentParser(
        prog="physioreport",
        description=description,
        epilog=epilog,
        formatter_class=ColoredHelpFormatter,
    )

    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    verbosity = parser.add_mutually_exclusive_group()
    verbosity.add_argument(
        "-v", "--verbose",
        action="count",
        default=0,
        help="Debug output and configuration summary (progress is shown by default).",
    )
    verbosity.add_argument(
        "-q", "--quiet",
        action="store_true",
        help="Only show warnings and errors.",
    )

    config_group = parser.add_argument_group("Configuration")
    config_group.add_argument(
        "-c", "--config",
        metavar="FILE",
        help="Configuration file (YAML or JSON). Command-line options take precedence.",
    )
    config_group.add_argument(
        "--init-config",
        metavar="FILE",
        help="Write a documented default configuration file and exit.",
    )

    files_group = parser.add_argument_group("Files")
    files_group.add_argument("--report-file", metavar="PDF", help="Output report (default: physio_report_contrasts.pdf).")
    files_group.add_argument("--model-file", metavar="FILE", help="Fitted model saved with joblib (default: glm.joblib).")
    files_group.add_argument("--anatomy-file", metavar="NIFTI", help="Anatomical underlay (default: mean.nii; MNI152 if missing).")
    files_group.add_argument("--physio-file", metavar="FILE", help="Physiological model, YAML or JSON (default: physio.yaml).")
    files_group.add_argument("--toolbox-path", metavar="DIR", help="Folder holding templates/report_job.yaml.")

    contrast_group = parser.add_argument_group("Contrasts and thresholds")
    contrast_group.add_argument(
        "--contrast",
        type=int,
        action="append",
        metavar="N",
        help="1-based position in the contrast name list to report (repeatable).",
    )
    contrast_group.add_argument("--threshold", type=float, help="Significance threshold (default: 0.001).")
    contrast_group.add_argument("--correction", choices=VALID_CORRECTIONS, help="Multiple-comparisons correction.")
    contrast_group.add_argument("--color-max", type=float, help="Colour-scale maximum (default: map maximum).")

    display_group = parser.add_argument_group("Display")
    display_group.add_argument(
        "--position",
        nargs="+",
        metavar="POS",
        help="Crosshair position: 'max' or three coordinates X Y Z in mm.",
    )
    display_group.add_argument("--fov", type=float, metavar="MM", help="Field of view around the crosshair (0: full).")
    display_group.add_argument("--world-space", action="store_true", help="Draw sections in world space instead of voxel space.")
    display_group.add_argument("--no-crosshair", action="store_true", help="Hide the crosshair.")
    display_group.add_argument("--title", help="Prefix of each page title.")
    parser.add_argument("--no-save-model", action="store_true", help="Do not write created contrasts back to the model file.")

    return parser


def parse_position(values: List[str]) -> Any:
    """Parse --position arguments into 'max' or [x, y, z]."""
    if len(values) == 1 and values[0] == "max":
        return "max"
    try:
        coords = [float(v) for v in values]
    except ValueError:
        raise ConfigurationError(f"--position must be 'max' or X Y Z, got {' '.join(values)}")
    if len(coords) != 3:
        raise ConfigurationError(f"--position needs three coordinates, got {len(coords)}")
    return coords


def build_overrides(args: argparse.Namespace) -> Dict[str, Any]:
    """Configuration overrides from command-line arguments."""
    overrides: Dict[str, Any] = {}

    for option in ["report_file", "model_file", "anatomy_file", "physio_file", "toolbox_path",
                   "threshold", "correction", "color_max"]:
        value = getattr(args, option)
        if value is not None:
            overrides[option] = value

    if args.contrast:
        overrides["report_indices"] = list(args.contrast)
    if args.position:
        overrides["crosshair_position"] = parse_position(args.position)
    if args.fov is not None:
        overrides["fov_mm"] = args.fov
    if args.world_space:
        overrides["slice_parallel"] = False
    if args.no_crosshair:
        overrides["draw_crosshair"] = False
    if args.title is not None:
        overrides["title_prefix"] = args.title
    if args.no_save_model:
        overrides["save_model"] = False
    # verbose: 0 warnings, 1 progress, 2+ debug
    if args.quiet:
        overrides["verbose"] = 0
    elif args.verbose:
        overrides["verbose"] = 1 + args.verbose

    return overrides


def main(argv: Optional[List[str]] = None):
    """Main entry point for CLI."""
    parser = create_parser()
    args = parser.parse_args(argv)

    # Handle --init-config flag
    if args.init_config:
        output_path = Path(args.init_config)
        if not output_path.suffix:
            output_path = output_path.with_suffix(".yaml")
        create_default_config(output_path)
        print(f"{Colors.GREEN}✓ Configuration file created: {output_path}{Colors.END}")
        return

    print(f"{Colors.BOLD}{Colors.GREEN}PhysioReport v{__version__}{Colors.END}")
    print("=" * 40)

    try:
        cfg = Config(config_file=args.config, **build_overrides(args))
    except (ConfigurationError, FileNotFoundError) as e:
        print(f"{Colors.RED}✗ Invalid configuration: {e}{Colors.END}", file=sys.stderr)
        sys.exit(1)

    if args.verbose > 0:
        print(cfg.summary())

    try:
        pipeline = ReportPipeline(cfg)
        pipeline.run()

        print(f"\n{Colors.GREEN}✓ Report completed: {len(pipeline.reported)} contrasts{Colors.END}")
        print(f"  Report: {Path(cfg['report_file']).absolute()}")
        if pipeline.skipped:
            print(f"{Colors.YELLOW}⚠ Skipped (not in model): {', '.join(pipeline.skipped)}{Colors.END}")

    except KeyboardInterrupt:
        print(f"\n{Colors.YELLOW}Interrupted by user{Colors.END}", file=sys.stderr)
        sys.exit(130)
    except Exception as e:
        logger.exception("Report failed")
        print(f"\n{Colors.RED}✗ Report failed: {str(e)}{Colors.END}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
