"""
PhysioReport: physiological noise contrast reports.

Batch-generates thresholded F-contrast section plots for physiological
noise regressors of a fitted first-level GLM, one PDF page per contrast.
"""

__version__ = "0.1.0"
__author__ = "PhysioReport Contributors"

from physioreport.config import Config, ConfigurationError
from physioreport.core.contrasts import ContrastRegistry
from physioreport.core.inference import CrosshairPolicy, ThresholdSpec
from physioreport.core.model import Contrast, FittedModel
from physioreport.core.physio import PhysioModel
from physioreport.core.report import NilearnOverlayRenderer, PdfReportSink, RenderResult
from physioreport.pipeline import ReportPipeline, report_contrasts

__all__ = [
    "Config",
    "ConfigurationError",
    "ContrastRegistry",
    "CrosshairPolicy",
    "ThresholdSpec",
    "Contrast",
    "FittedModel",
    "PhysioModel",
    "NilearnOverlayRenderer",
    "PdfReportSink",
    "RenderResult",
    "ReportPipeline",
    "report_contrasts",
    "__version__",
]
