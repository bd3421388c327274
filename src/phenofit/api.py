"""Top-level pipeline functions for phenofit.

Runs the full computation: field reference fit, per-pixel fitting,
quality classification and spatial regularization. Every function takes
an explicit ``FitSettings``; when omitted, the module default is
snapshotted once at call time.

Example:
    >>> import phenofit as pf
    >>> frames = [pf.Frame(doy=d, ndvi=ndvi) for d, ndvi in stack]  # doctest: +SKIP
    >>> result = pf.run_pixel_phenology(frames)  # doctest: +SKIP
    >>> result.parameter_map("sos")  # doctest: +SKIP
"""

from __future__ import annotations

import logging
import threading
import warnings
from collections.abc import Sequence

import numpy as np

from phenofit._types import BoolArray, FloatArray, Frame, ProgressCallback
from phenofit.config import FitSettings, resolve_settings
from phenofit.engine import fit_pixels, stack_frames
from phenofit.exceptions import FitCancelledError, InsufficientDataError
from phenofit.model import DLParams
from phenofit.optimizer import EnsembleResult, ensemble_fit_arrays
from phenofit.providers.base import CropCalendarProvider
from phenofit.quality import classify_grid
from phenofit.results import PixelPhenologyResult
from phenofit.spatial import regularize

logger = logging.getLogger(__name__)


def field_series(
    frames: Sequence[Frame],
    mask: BoolArray | None = None,
) -> tuple[FloatArray, FloatArray]:
    """Per-date median NDVI over the field.

    Args:
        frames: Time-ordered per-date frames.
        mask: Optional ``(H, W)`` mask restricting the median to field pixels.

    Returns:
        ``(doys, medians)``; dates without a finite pixel are NaN.
    """
    doys, cube = stack_frames(frames)
    if mask is not None:
        cube = np.where(np.asarray(mask, dtype=bool)[None, :, :], cube, np.nan)
    with warnings.catch_warnings():
        warnings.simplefilter("ignore", category=RuntimeWarning)
        medians = np.nanmedian(cube.reshape(cube.shape[0], -1), axis=1)
    return doys, medians


def fit_field(
    frames: Sequence[Frame],
    settings: FitSettings | None = None,
    mask: BoolArray | None = None,
    rng: np.random.Generator | None = None,
    cancel_event: threading.Event | None = None,
) -> EnsembleResult:
    """Fit the field-median series with ``field_ensemble_runs`` runs.

    Raises:
        InsufficientDataError: If fewer than four dates have data.
        FitCancelledError: If ``cancel_event`` is set before the runs finish.
    """
    settings = resolve_settings(settings)
    doys, medians = field_series(frames, mask)
    if rng is None:
        rng = np.random.default_rng(settings.seed)
    result = ensemble_fit_arrays(
        doys,
        medians,
        n_runs=settings.field_ensemble_runs,
        perturbation=settings.pixel_perturbation,
        slope_perturbation=settings.pixel_slope_perturbation,
        bounds=settings.bounds,
        max_evaluations=settings.max_evaluations,
        rng=rng,
        cancel_event=cancel_event,
    )
    best = result.best
    logger.info(
        "Field fit: sos %.0f, eos %.0f, rmse %.4f (%d runs)",
        best.sos,
        best.eos,
        best.rmse,
        len(result.runs),
    )
    return result


def run_pixel_phenology(
    frames: Sequence[Frame],
    settings: FitSettings | None = None,
    reference: DLParams | None = None,
    mask: BoolArray | None = None,
    cancel_event: threading.Event | None = None,
    progress: ProgressCallback | None = None,
    regularize_outliers: bool = True,
) -> PixelPhenologyResult:
    """Fit, classify and regularize every pixel.

    Args:
        frames: Time-ordered per-date frames (NaN marks masked pixels).
        settings: Fit settings; the module default is used when ``None``.
        reference: Field-level warm start. Fitted from the field median
            when omitted; if that fails for lack of data, pixels are
            fitted without a warm start.
        mask: Optional ``(H, W)`` field mask.
        cancel_event: Cooperative cancellation; see ``fit_pixels``.
        progress: Completion-fraction callback.
        regularize_outliers: Run the spatial regularizer after
            classification.

    Returns:
        The final, immutable classified grid.

    Raises:
        InconsistentBoundsError: Before any fitting, for inverted bounds.
        FitCancelledError: If ``cancel_event`` was set.
    """
    settings = resolve_settings(settings)
    settings.bounds.check_consistency()

    if reference is None:
        try:
            reference = fit_field(frames, settings, mask, cancel_event=cancel_event).best
        except InsufficientDataError:
            logger.warning("Field median has too few dates; fitting pixels without warm start")

    raw = fit_pixels(
        frames,
        reference=reference,
        settings=settings,
        mask=mask,
        cancel_event=cancel_event,
        progress=progress,
    )
    classified = classify_grid(raw, settings)
    if not regularize_outliers:
        return classified

    if cancel_event is not None and cancel_event.is_set():
        raise FitCancelledError(
            what="Pixel phenology was cancelled",
            cause="The cancel event was set before regularization",
        )
    return regularize(classified, settings)


def settings_for_crop(
    provider: CropCalendarProvider,
    country: str,
    crop_id: str,
    settings: FitSettings | None = None,
) -> FitSettings:
    """Narrow the bounds of ``settings`` with a crop calendar.

    Returns ``settings`` unchanged when the calendar has no usable
    sowing/harvest dates.

    Raises:
        ProviderError: If the calendar request fails.
    """
    settings = resolve_settings(settings)
    season = provider.season_bounds(country, crop_id)
    if season is None:
        logger.info("No usable crop calendar for crop %s in %s", crop_id, country)
        return settings
    bounds = settings.bounds.with_crop_calendar(season)
    logger.info(
        "Crop calendar %s: sos [%.0f, %.0f], season length [%.0f, %.0f]",
        season.crop_name or crop_id,
        bounds.sos_min,
        bounds.sos_max,
        bounds.min_season_length,
        bounds.max_season_length,
    )
    return settings.updated(bounds=bounds)
