"""Spatial regularization of classified pixel fits.

Two passes over a square neighbourhood window (Chebyshev radius
``neighborhood_radius``, the pixel itself excluded):

1. **Outlier detection.** A good pixel whose parameters deviate from
   the median of its good neighbours by more than
   ``cluster_filter_threshold`` MADs on any tracked parameter becomes
   an outlier.
2. **Rescue.** An outlier or poor pixel whose good neighbours are
   numerous, mutually consistent and agree with it is promoted back to
   good. Poor pixels qualify only while their RMSE stays within
   ``rescue_max_rmse_factor`` times the RMSE threshold, so a rescued
   pixel may exceed the threshold by at most that factor.

Each pass reads a snapshot of the labels (before pass 1, after pass 1),
so the result never depends on pixel visiting order. Statistics are
computed for all pixels at once with ``sliding_window_view``.
"""

from __future__ import annotations

import logging
import warnings

import numpy as np
from numpy.lib.stride_tricks import sliding_window_view

from phenofit._types import BoolArray, FitQuality, FloatArray
from phenofit.config import FitSettings
from phenofit.model import PARAMETER_NAMES
from phenofit.results import PixelFitResult, PixelPhenologyResult, RejectionDetail

logger = logging.getLogger(__name__)

# MAD floors in PARAMETER_NAMES order. Below these, differences are
# physically negligible and must not count as many MADs.
MAD_FLOORS: dict[str, float] = {
    "mn": 0.01,
    "delta": 0.01,
    "sos": 1.0,
    "rsp": 0.002,
    "season_length": 1.0,
    "rau": 0.002,
}

# Good pixels needed before whole-grid statistics stand in for a
# pixel with too few good neighbours.
_GLOBAL_FALLBACK_MIN_PIXELS: int = 5

_FLOORS = np.array([MAD_FLOORS[name] for name in PARAMETER_NAMES], dtype=np.float64)[
    :, None, None
]


def neighborhood_statistics(
    values: FloatArray,
    include: BoolArray,
    radius: int = 1,
) -> tuple[FloatArray, FloatArray, np.ndarray]:
    """Median and MAD of each parameter over each pixel's neighbours.

    Args:
        values: Parameter cube with shape ``(P, H, W)``.
        include: ``(H, W)`` mask of pixels allowed to contribute.
        radius: Chebyshev radius of the square window.

    Returns:
        ``(median, mad, count)``: the first two shaped ``(P, H, W)``
        (NaN where no neighbour contributes), ``count`` the number of
        contributing neighbours per pixel, shaped ``(H, W)``.

    Example:
        >>> cube = np.arange(9, dtype=float).reshape(1, 3, 3)
        >>> med, mad, count = neighborhood_statistics(cube, np.ones((3, 3), bool))
        >>> float(med[0, 1, 1]), int(count[1, 1])
        (4.0, 8)
    """
    size = 2 * radius + 1
    masked = np.where(include[None, :, :], values, np.nan)
    padded = np.pad(
        masked,
        ((0, 0), (radius, radius), (radius, radius)),
        mode="constant",
        constant_values=np.nan,
    )
    windows = sliding_window_view(padded, (size, size), axis=(1, 2))
    windows = windows.reshape(*windows.shape[:3], size * size).copy()
    windows[..., (size * size) // 2] = np.nan

    count = np.sum(np.isfinite(windows[0]), axis=-1)
    with warnings.catch_warnings():
        # all-NaN windows are expected at isolated pixels
        warnings.simplefilter("ignore", category=RuntimeWarning)
        median = np.nanmedian(windows, axis=-1)
        mad = np.nanmedian(np.abs(windows - median[..., None]), axis=-1)
    return median, mad, count


def _neighbor_count(mask: BoolArray, radius: int) -> np.ndarray:
    size = 2 * radius + 1
    padded = np.pad(mask.astype(np.int64), radius, mode="constant", constant_values=0)
    windows = sliding_window_view(padded, (size, size))
    return windows.sum(axis=(-2, -1)) - mask.astype(np.int64)


def _z_scores(values: FloatArray, median: FloatArray, mad: FloatArray) -> FloatArray:
    return np.abs(values - median) / np.maximum(mad, _FLOORS)


def _parameter_cube(result: PixelPhenologyResult) -> FloatArray:
    cube = np.full((len(PARAMETER_NAMES), result.height, result.width), np.nan)
    for pixel in result.iter_present():
        cube[:, pixel.row, pixel.col] = pixel.params.as_opt_array()
    return cube


def _rmse_grid(result: PixelPhenologyResult) -> FloatArray:
    rmse = np.full((result.height, result.width), np.nan)
    for pixel in result.iter_present():
        rmse[pixel.row, pixel.col] = pixel.params.rmse
    return rmse


def _label_mask(result: PixelPhenologyResult, *labels: FitQuality) -> BoolArray:
    mask = np.zeros((result.height, result.width), dtype=bool)
    for pixel in result.iter_present():
        if pixel.fit_quality in labels:
            mask[pixel.row, pixel.col] = True
    return mask


def _present_mask(result: PixelPhenologyResult) -> BoolArray:
    mask = np.zeros((result.height, result.width), dtype=bool)
    for pixel in result.iter_present():
        mask[pixel.row, pixel.col] = True
    return mask


def _outlier_detail(
    pixel: PixelFitResult, z: FloatArray, settings: FitSettings
) -> RejectionDetail:
    scores = {name: float(z[i]) for i, name in enumerate(PARAMETER_NAMES)}
    return RejectionDetail(
        reason=FitQuality.OUTLIER,
        observation_count=pixel.observation_count,
        rmse=pixel.params.rmse,
        rmse_threshold=settings.pixel_fit_rmse_threshold,
        season_length=pixel.params.season_length,
        season_range=(settings.min_season_length, settings.max_season_length),
        cluster_distance=max(scores.values()),
        cluster_threshold=settings.cluster_filter_threshold,
        param_z_scores=scores,
    )


def regularize(result: PixelPhenologyResult, settings: FitSettings) -> PixelPhenologyResult:
    """Run outlier detection followed by rescue on a classified grid.

    Args:
        result: Grid whose present pixels are already classified.
        settings: Supplies the window radius, the MAD threshold and the
            rescue policy.

    Returns:
        A new result. Outliers carry per-parameter z-scores in their
        ``RejectionDetail``; rescued pixels are good with no detail.
    """
    radius = settings.neighborhood_radius
    threshold = settings.cluster_filter_threshold
    cube = _parameter_cube(result)

    # ── Step 1: outlier detection against the pre-step snapshot ──
    good0 = _label_mask(result, FitQuality.GOOD)
    median, mad, n_good = neighborhood_statistics(cube, good0, radius)
    z1 = _z_scores(cube, median, mad)
    local = n_good >= settings.min_neighbors

    total_good = int(good0.sum())
    if total_good >= _GLOBAL_FALLBACK_MIN_PIXELS:
        good_values = cube[:, good0]
        g_median = np.median(good_values, axis=1)[:, None, None]
        g_mad = np.median(np.abs(good_values - g_median[:, :, 0]), axis=1)[:, None, None]
        z1 = np.where(local[None, :, :], z1, _z_scores(cube, g_median, g_mad))
        testable = good0
    else:
        testable = good0 & local

    with np.errstate(invalid="ignore"):
        max_z1 = np.where(testable, np.max(z1, axis=0), 0.0)
        outlier = testable & (max_z1 > threshold)

    # ── Step 2: rescue against the post-step-1 snapshot ──
    good1 = good0 & ~outlier
    rmse_cap = settings.rescue_max_rmse_factor * settings.pixel_fit_rmse_threshold
    rmse = _rmse_grid(result)
    with np.errstate(invalid="ignore"):
        fits_well_enough = np.isfinite(rmse) & (rmse <= rmse_cap)
    candidates = outlier | (_label_mask(result, FitQuality.POOR) & fits_well_enough)
    median2, mad2, n_good2 = neighborhood_statistics(cube, good1, radius)
    n_present = _neighbor_count(_present_mask(result), radius)
    z2 = _z_scores(cube, median2, mad2)

    with np.errstate(invalid="ignore", divide="ignore"):
        fraction = np.where(n_present > 0, n_good2 / np.maximum(n_present, 1), 0.0)
        consistent = np.all(
            mad2 <= np.maximum(settings.rescue_max_spread * np.abs(median2), _FLOORS),
            axis=0,
        )
        agrees = np.all(z2 <= threshold, axis=0)
    rescued = (
        candidates
        & (n_good2 >= settings.min_neighbors)
        & (fraction >= settings.rescue_fraction)
        & consistent
        & agrees
    )

    grid: list[list[PixelFitResult | None]] = []
    for r, row in enumerate(result.pixels):
        new_row: list[PixelFitResult | None] = []
        for c, pixel in enumerate(row):
            if pixel is not None:
                if rescued[r, c]:
                    pixel = pixel.with_quality(FitQuality.GOOD)
                elif outlier[r, c]:
                    detail = _outlier_detail(pixel, z1[:, r, c], settings)
                    pixel = pixel.with_quality(FitQuality.OUTLIER, detail)
            new_row.append(pixel)
        grid.append(new_row)

    logger.info(
        "Spatial regularization: %d outliers flagged, %d pixels rescued",
        int(outlier.sum()),
        int(rescued.sum()),
    )
    return result.with_pixels(grid)
