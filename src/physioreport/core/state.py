"""
Scoped changes of process-wide state.

The renderer and the report sink share the process working directory and
matplotlib's global display settings with the caller. Both are changed only
through the context managers below, which restore the captured value on
every exit path.
"""

import contextlib
import logging
import os
from pathlib import Path
from typing import Any, Dict, Iterator, Optional, Union

import matplotlib
import matplotlib.pyplot as plt

logger = logging.getLogger(__name__)


@contextlib.contextmanager
def working_directory(path: Optional[Union[str, Path]] = None) -> Iterator[str]:
    """
    Capture the working directory and restore it on exit.

    Args:
        path: Directory to change to for the duration of the block. If None,
            the directory is only captured and restored.

    Yields:
        The working directory captured before any change.

    Example:
        with working_directory(report_dir):
            sink.append_page("report.pdf", page)
    """
    previous = os.getcwd()
    if path is not None:
        os.chdir(path)
        logger.debug(f"Changed directory: {previous} -> {path}")
    try:
        yield previous
    finally:
        os.chdir(previous)


@contextlib.contextmanager
def display_mode(rc: Optional[Dict[str, Any]] = None, interactive: bool = False) -> Iterator[None]:
    """
    Force matplotlib's global display mode for the duration of the block.

    Args:
        rc: rcParams to apply (e.g. page size, face colour).
        interactive: Interactive mode to force.
    """
    was_interactive = plt.isinteractive()
    plt.interactive(interactive)
    try:
        with matplotlib.rc_context(rc or {}):
            yield
    finally:
        plt.interactive(was_interactive)
