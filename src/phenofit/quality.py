"""Per-pixel fit-quality classification.

Pure per-pixel rules; neighbours are never consulted here (that is the
spatial regularizer's job). Rules apply in order:

1. fewer valid observations than ``pixel_min_observations`` -> poor
2. ``rmse`` above ``pixel_fit_rmse_threshold`` or not finite -> poor
3. season length outside ``[min_season_length, max_season_length]`` -> poor
4. otherwise -> good

``skipped`` is never produced by the classifier.
"""

from __future__ import annotations

import logging
import math

from phenofit._types import FitQuality
from phenofit.config import FitSettings
from phenofit.results import PixelFitResult, PixelPhenologyResult, RejectionDetail

logger = logging.getLogger(__name__)


def classify(
    result: PixelFitResult,
    observation_count: int,
    settings: FitSettings,
) -> FitQuality:
    """Label one pixel fit ``good`` or ``poor``.

    Example:
        >>> from phenofit import DLParams
        >>> p = DLParams(mn=0.1, mx=0.7, sos=120, rsp=0.08, eos=220, rau=0.06, rmse=0.2)
        >>> classify(PixelFitResult(0, 0, p, 10), 10, FitSettings())
        <FitQuality.POOR: 'poor'>
    """
    params = result.params
    if observation_count < settings.pixel_min_observations:
        return FitQuality.POOR
    if not math.isfinite(params.rmse) or params.rmse > settings.pixel_fit_rmse_threshold:
        return FitQuality.POOR
    if not settings.min_season_length <= params.season_length <= settings.max_season_length:
        return FitQuality.POOR
    return FitQuality.GOOD


def _labelled(pixel: PixelFitResult, settings: FitSettings) -> PixelFitResult:
    quality = classify(pixel, pixel.observation_count, settings)
    if quality is FitQuality.GOOD:
        return pixel.with_quality(quality)
    params = pixel.params
    detail = RejectionDetail(
        reason=quality,
        observation_count=pixel.observation_count,
        rmse=params.rmse,
        rmse_threshold=settings.pixel_fit_rmse_threshold,
        season_length=params.season_length,
        season_range=(settings.min_season_length, settings.max_season_length),
    )
    return pixel.with_quality(quality, detail)


def classify_grid(result: PixelPhenologyResult, settings: FitSettings) -> PixelPhenologyResult:
    """Label every present pixel; absent cells stay ``None``.

    Returns:
        A new result; ``result`` itself is left untouched.
    """
    grid = [
        [None if pixel is None else _labelled(pixel, settings) for pixel in row]
        for row in result.pixels
    ]
    classified = result.with_pixels(grid)
    counts = classified.counts()
    logger.info(
        "Classified %d pixels: %d good, %d poor",
        counts[FitQuality.GOOD] + counts[FitQuality.POOR],
        counts[FitQuality.GOOD],
        counts[FitQuality.POOR],
    )
    return classified


def reclassify(result: PixelPhenologyResult, settings: FitSettings) -> PixelPhenologyResult:
    """Re-apply the classifier under new thresholds without refitting.

    Only ``good`` and ``poor`` pixels are re-labelled; ``outlier`` and
    ``skipped`` labels are kept, since the classifier alone cannot
    produce or undo them.
    """
    relabel = (FitQuality.GOOD, FitQuality.POOR)
    grid = [
        [
            _labelled(pixel, settings)
            if pixel is not None and pixel.fit_quality in relabel
            else pixel
            for pixel in row
        ]
        for row in result.pixels
    ]
    return result.with_pixels(grid)
