"""Aggregate statistics over a rectangular pixel selection."""

from __future__ import annotations

import logging
import threading
import warnings
from collections.abc import Sequence

import numpy as np

from phenofit._types import FloatArray, Frame
from phenofit.config import FitSettings, resolve_settings
from phenofit.engine import stack_frames
from phenofit.exceptions import FitCancelledError
from phenofit.model import PARAMETER_NAMES
from phenofit.optimizer import EnsembleResult, ensemble_fit_arrays
from phenofit.results import PixelPhenologyResult, SelectionResult

logger = logging.getLogger(__name__)


def _clip_range(bounds: tuple[int, int], size: int, axis: str) -> tuple[int, int]:
    start, stop = max(0, int(bounds[0])), min(size, int(bounds[1]))
    if start >= stop:
        msg = f"Empty {axis} selection {bounds} for a grid of size {size}"
        raise ValueError(msg)
    return start, stop


def _mean_per_date(block: FloatArray) -> FloatArray:
    """NaN-aware mean over the trailing two axes of ``(T, h, w)``."""
    with warnings.catch_warnings():
        warnings.simplefilter("ignore", category=RuntimeWarning)
        return np.nanmean(block.reshape(block.shape[0], -1), axis=1)


def analyze_selection(
    frames: Sequence[Frame],
    row_range: tuple[int, int],
    col_range: tuple[int, int],
    pixel_result: PixelPhenologyResult | None = None,
    settings: FitSettings | None = None,
    rng: np.random.Generator | None = None,
    cancel_event: threading.Event | None = None,
) -> SelectionResult:
    """Summarize a user-drawn rectangle.

    Args:
        frames: Time-ordered per-date frames.
        row_range: Half-open ``(start, stop)`` rows; clipped to the grid.
        col_range: Half-open ``(start, stop)`` columns; clipped to the grid.
        pixel_result: Classified pixel grid supplying per-parameter
            statistics; omitted statistics stay empty.
        settings: Fit settings (``selection_ensemble_runs`` and
            ``pixel_min_observations`` are used).
        rng: Random generator for the ensemble.
        cancel_event: Checked before the ensemble fit and between its
            runs; a cancelled selection returns no result.

    Returns:
        ``SelectionResult`` with the mean series, its ensemble fit (or
        ``None`` with fewer than ``pixel_min_observations`` valid
        dates), per-parameter mean/std over good pixels and per-band
        mean reflectance.

    Raises:
        ValueError: If the rectangle does not overlap the grid.
        FitCancelledError: If ``cancel_event`` is set.
    """
    settings = resolve_settings(settings)
    doys, cube = stack_frames(frames)
    _, height, width = cube.shape
    r0, r1 = _clip_range(row_range, height, "row")
    c0, c1 = _clip_range(col_range, width, "column")

    mean_values = _mean_per_date(cube[:, r0:r1, c0:c1])

    band_names = sorted({name for frame in frames for name in frame.bands})
    band_means: dict[str, FloatArray] = {}
    for name in band_names:
        means = np.full(len(frames), np.nan, dtype=np.float64)
        for i, frame in enumerate(frames):
            band = frame.bands.get(name)
            if band is not None:
                means[i] = _mean_per_date(np.asarray(band, dtype=np.float64)[None, r0:r1, c0:c1])[0]
        band_means[name] = means

    if cancel_event is not None and cancel_event.is_set():
        raise FitCancelledError(
            what="Selection fit was cancelled",
            fix="Start a new selection to fit again",
        )

    fit: EnsembleResult | None = None
    valid = int(np.isfinite(mean_values).sum())
    if valid >= settings.pixel_min_observations:
        if rng is None:
            rng = np.random.default_rng(settings.seed)
        fit = ensemble_fit_arrays(
            doys,
            mean_values,
            n_runs=settings.selection_ensemble_runs,
            perturbation=settings.pixel_perturbation,
            slope_perturbation=settings.pixel_slope_perturbation,
            bounds=settings.bounds,
            max_evaluations=settings.max_evaluations,
            rng=rng,
            cancel_event=cancel_event,
        )
    else:
        logger.info("Selection has %d valid dates; skipping ensemble fit", valid)

    parameter_stats: dict[str, tuple[float, float]] = {}
    good_count = 0
    if pixel_result is not None:
        good = [
            p
            for p in pixel_result.good_pixels()
            if r0 <= p.row < r1 and c0 <= p.col < c1
        ]
        good_count = len(good)
        if good:
            for name in PARAMETER_NAMES:
                values = np.array([p.params.parameter(name) for p in good])
                parameter_stats[name] = (float(values.mean()), float(values.std()))

    return SelectionResult(
        row_range=(r0, r1),
        col_range=(c0, c1),
        doys=doys,
        mean_values=mean_values,
        fit=fit,
        parameter_stats=parameter_stats,
        good_pixel_count=good_count,
        band_means=band_means,
    )
