"""
viz.py
======
Static chart and animation of the Valid part of a prediction series.

``timeseries_chart``  -- matplotlib line + scatter of mean LST per valid day
``write_animation``   -- animated GIF, one frame per valid day, rendered
                         blue -> yellow -> red between fixed limits
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import numpy as np
import matplotlib
matplotlib.use("Agg")  # non-interactive backend safe for headless execution
import matplotlib.cm as cm
import matplotlib.colors as mcolors
import matplotlib.pyplot as plt
from matplotlib.figure import Figure
from PIL import Image

from shared.python.exceptions import InputValidationError, OutputWriteError

from .series import PredictionSeries

LST_CMAP = mcolors.LinearSegmentedColormap.from_list("lst", ["blue", "yellow", "red"])


def _require_valid(series: PredictionSeries) -> PredictionSeries:
    valid = series.valid()
    if len(valid) == 0:
        raise InputValidationError("The series has no valid time steps to render.")
    return valid


def timeseries_chart(series: PredictionSeries, path: Optional[Path] = None) -> Figure:
    """Plot the regional mean LST of every valid day.

    Saved as PNG when *path* is given; the figure is returned either way.
    """
    valid = _require_valid(series)
    frame = valid.summary_frame()
    dates = np.array(valid.timestamps, dtype="datetime64[D]")

    fig, ax = plt.subplots(figsize=(10, 4))
    ax.plot(dates, frame["mean"], color="tab:red", linewidth=1.5)
    ax.scatter(dates, frame["mean"], color="tab:red", s=18, zorder=3)
    ax.set_title("Daily downscaled LST (regional mean)")
    ax.set_xlabel("Date")
    ax.set_ylabel("LST (°C)")
    ax.grid(True, alpha=0.3)
    fig.autofmt_xdate()
    fig.tight_layout()

    if path is not None:
        path = Path(path)
        try:
            fig.savefig(path, dpi=150)
        except OSError as exc:
            raise OutputWriteError(str(path), str(exc)) from exc
    return fig


def _frame(arr: np.ndarray, vmin: float, vmax: float) -> Image.Image:
    """Colour one LST array; NaN pixels render white."""
    norm = mcolors.Normalize(vmin=vmin, vmax=vmax, clip=True)
    mapper = cm.ScalarMappable(norm=norm, cmap=LST_CMAP)
    rgba = np.array(mapper.to_rgba(arr, bytes=True), dtype=np.uint8)
    rgba[np.isnan(arr)] = (255, 255, 255, 255)
    return Image.fromarray(np.ascontiguousarray(rgba[:, :, :3]))


def write_animation(
    series: PredictionSeries,
    path: Path,
    vmin: float = 20.0,
    vmax: float = 40.0,
    fps: float = 2.0,
) -> Path:
    """Render the valid days as an animated GIF.

    Raises:
        InputValidationError: If there is no valid step or ``vmin >= vmax``.
        OutputWriteError: If the GIF cannot be written.
    """
    if vmin >= vmax:
        raise InputValidationError(f"vmin ({vmin}) must be below vmax ({vmax}).")
    valid = _require_valid(series)

    frames = []
    for step in valid.iter_valid():
        field = step.field
        frames.append(_frame(field.band(field.band_names[0]).astype(np.float64), vmin, vmax))

    path = Path(path)
    try:
        frames[0].save(
            path,
            format="GIF",
            save_all=True,
            append_images=frames[1:],
            duration=int(round(1000.0 / fps)),
            loop=0,
        )
    except OSError as exc:
        raise OutputWriteError(str(path), str(exc)) from exc
    return path
