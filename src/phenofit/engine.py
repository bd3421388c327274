"""Per-pixel fit engine.

Drives the ensemble optimizer once per pixel, warm-started from the
field-level reference fit. Pixels are independent, so rows are batched
into tasks for a thread pool; each task returns its own rows and the
grid is assembled only after every task has finished.
"""

from __future__ import annotations

import logging
import os
import threading
import time
from collections.abc import Sequence
from concurrent.futures import Future, ThreadPoolExecutor, as_completed

import numpy as np

from phenofit._types import BoolArray, FloatArray, Frame, ProgressCallback
from phenofit.config import FitSettings, resolve_settings
from phenofit.exceptions import FitCancelledError
from phenofit.model import DLParams
from phenofit.optimizer import ensemble_fit_arrays
from phenofit.results import PixelFitResult, PixelPhenologyResult, freeze_grid

logger = logging.getLogger(__name__)

_PROGRESS_INTERVAL: int = 50


def stack_frames(frames: Sequence[Frame]) -> tuple[FloatArray, FloatArray]:
    """Stack per-date NDVI arrays into a ``(T, H, W)`` cube.

    The grid shape is taken from the first frame; smaller frames are
    NaN-padded and larger ones cropped.

    Returns:
        ``(doys, cube)``.

    Raises:
        ValueError: If ``frames`` is empty.
    """
    if not frames:
        msg = "At least one frame is required"
        raise ValueError(msg)

    height, width = frames[0].height, frames[0].width
    cube = np.full((len(frames), height, width), np.nan, dtype=np.float64)
    for i, frame in enumerate(frames):
        h = min(height, frame.height)
        w = min(width, frame.width)
        cube[i, :h, :w] = frame.ndvi[:h, :w]
    doys = np.array([frame.doy for frame in frames], dtype=np.float64)
    return doys, cube


def extract_series(
    doys: FloatArray, cube: FloatArray, row: int, col: int
) -> tuple[FloatArray, FloatArray]:
    """Valid ``(doys, values)`` of one pixel, NaN dates skipped."""
    values = cube[:, row, col]
    finite = np.isfinite(values)
    return doys[finite], values[finite]


def pixel_rng(seed: int | None, row: int, col: int) -> np.random.Generator:
    """Generator for one pixel; seeded from ``(seed, row, col)`` when given."""
    if seed is None:
        return np.random.default_rng()
    return np.random.default_rng((seed, row, col))


def fit_pixel(
    doys: FloatArray,
    values: FloatArray,
    reference: DLParams | None,
    settings: FitSettings,
    rng: np.random.Generator | None = None,
    row: int = 0,
    col: int = 0,
) -> PixelFitResult | None:
    """Fit one pixel series.

    Returns:
        The best ensemble fit labelled ``skipped`` (quality is assigned
        later), or ``None`` when fewer than ``pixel_min_observations``
        finite values exist.
    """
    doys = np.asarray(doys, dtype=np.float64)
    values = np.asarray(values, dtype=np.float64)
    finite = np.isfinite(doys) & np.isfinite(values)
    count = int(finite.sum())
    if count < settings.pixel_min_observations:
        return None

    ensemble = ensemble_fit_arrays(
        doys[finite],
        values[finite],
        n_runs=settings.pixel_ensemble_runs,
        perturbation=settings.pixel_perturbation,
        slope_perturbation=settings.pixel_slope_perturbation,
        bounds=settings.bounds,
        warm_start=reference,
        max_evaluations=settings.max_evaluations,
        rng=rng if rng is not None else pixel_rng(settings.seed, row, col),
    )
    return PixelFitResult(row=row, col=col, params=ensemble.best, observation_count=count)


class _Progress:
    """Thread-safe fitted-pixel counter that reports every N pixels."""

    def __init__(self, total: int, callback: ProgressCallback | None) -> None:
        self._total = total
        self._callback = callback
        self._done = 0
        self._lock = threading.Lock()

    def step(self) -> None:
        with self._lock:
            self._done += 1
            if self._callback is not None and self._done % _PROGRESS_INTERVAL == 0:
                self._callback(self._done / max(self._total, 1))

    def finish(self) -> None:
        if self._callback is not None:
            with self._lock:
                self._callback(1.0)


def _cancelled_error() -> FitCancelledError:
    return FitCancelledError(
        what="Pixel fitting was cancelled",
        cause="The cancel event was set before all pixels were fitted",
        fix="Partial results are discarded; start a new run to fit again",
    )


def fit_pixels(
    frames: Sequence[Frame],
    reference: DLParams | None = None,
    settings: FitSettings | None = None,
    mask: BoolArray | None = None,
    cancel_event: threading.Event | None = None,
    progress: ProgressCallback | None = None,
) -> PixelPhenologyResult:
    """Fit every pixel of the frame stack in parallel.

    Args:
        frames: Time-ordered per-date frames (NaN marks masked pixels).
        reference: Field-level fit used as warm-start centre.
        settings: Fit settings; the module default is snapshotted when
            ``None``.
        mask: Optional ``(H, W)`` mask; pixels outside it are absent.
        cancel_event: Checked before every pixel. Once set, pending
            tasks are cancelled and ``FitCancelledError`` is raised.
        progress: Called with the completed fraction every 50 fitted
            pixels and once at completion.

    Returns:
        Unclassified result: present pixels are labelled ``skipped``,
        pixels without enough valid dates are ``None``.

    Raises:
        InconsistentBoundsError: If the bounds have an inverted interval.
        FitCancelledError: If ``cancel_event`` was set.
        ValueError: If ``frames`` is empty or ``mask`` has the wrong shape.
    """
    settings = resolve_settings(settings)
    settings.bounds.check_consistency()

    doys, cube = stack_frames(frames)
    _, height, width = cube.shape

    eligible = np.sum(np.isfinite(cube), axis=0) >= settings.pixel_min_observations
    if mask is not None:
        mask = np.asarray(mask, dtype=bool)
        if mask.shape != (height, width):
            msg = f"mask shape {mask.shape} does not match grid ({height}, {width})"
            raise ValueError(msg)
        eligible &= mask

    total = int(eligible.sum())
    tracker = _Progress(total, progress)
    stop = threading.Event()

    def should_stop() -> bool:
        return stop.is_set() or (cancel_event is not None and cancel_event.is_set())

    def fit_rows(start: int, stop_row: int) -> tuple[int, list[list[PixelFitResult | None]]]:
        rows: list[list[PixelFitResult | None]] = []
        for r in range(start, stop_row):
            row: list[PixelFitResult | None] = []
            for c in range(width):
                if should_stop():
                    raise _cancelled_error()
                if not eligible[r, c]:
                    row.append(None)
                    continue
                row.append(
                    fit_pixel(
                        doys,
                        cube[:, r, c],
                        reference,
                        settings,
                        rng=pixel_rng(settings.seed, r, c),
                        row=r,
                        col=c,
                    )
                )
                tracker.step()
            rows.append(row)
        return start, rows

    batches = [
        (start, min(start + settings.rows_per_task, height))
        for start in range(0, height, settings.rows_per_task)
    ]
    workers = settings.max_workers or os.cpu_count() or 1
    logger.info(
        "Fitting %d of %d pixels in %d row batches with %d workers",
        total,
        height * width,
        len(batches),
        workers,
    )

    started = time.perf_counter()
    grid: list[list[PixelFitResult | None]] = [[] for _ in range(height)]
    with ThreadPoolExecutor(max_workers=workers) as executor:
        futures: dict[Future[tuple[int, list[list[PixelFitResult | None]]]], int] = {
            executor.submit(fit_rows, start, stop_row): start for start, stop_row in batches
        }
        try:
            for future in as_completed(futures):
                start, rows = future.result()
                grid[start : start + len(rows)] = rows
        except Exception:
            stop.set()
            for pending in futures:
                pending.cancel()
            raise

    if cancel_event is not None and cancel_event.is_set():
        raise _cancelled_error()

    tracker.finish()
    elapsed = time.perf_counter() - started
    logger.info("Fitted %d pixels in %.1fs", total, elapsed)
    return PixelPhenologyResult(
        height=height,
        width=width,
        pixels=freeze_grid(grid),
        reference_fit=reference,
        compute_time_seconds=elapsed,
    )
