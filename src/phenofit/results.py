"""Result object model for pixel and selection phenology fits."""

from __future__ import annotations

import math
from collections import Counter
from collections.abc import Iterator, Sequence
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, Any

import numpy as np

from phenofit._types import FitQuality, FloatArray, Frame
from phenofit.model import PARAMETER_NAMES, DLParams
from phenofit.optimizer import EnsembleResult

if TYPE_CHECKING:
    import pandas as pd

# ── Rejection-reason map codes ─────────────────────────────────────
_REASON_CODES: dict[FitQuality, float] = {
    FitQuality.GOOD: 0.0,
    FitQuality.POOR: 1.0,
    FitQuality.OUTLIER: 2.0,
    FitQuality.SKIPPED: 3.0,
}

_MIN_UNCERTAINTY_PIXELS: int = 3
_MAP_PARAMETERS: tuple[str, ...] = (*PARAMETER_NAMES, "rmse")


@dataclass(frozen=True)
class RejectionDetail:
    """Why a pixel fit was labelled poor or outlier.

    Attributes:
        reason: The label this detail explains.
        observation_count: Valid observations behind the fit.
        rmse: Fit residual.
        rmse_threshold: Threshold in force when the label was assigned.
        season_length: Fitted ``eos - sos`` in days.
        season_range: Accepted ``(min, max)`` season length.
        cluster_distance: Largest neighbourhood z-score (outliers only).
        cluster_threshold: Threshold the z-score exceeded (outliers only).
        param_z_scores: Per-parameter deviation in MADs (outliers only).
    """

    reason: FitQuality
    observation_count: int = 0
    rmse: float = math.nan
    rmse_threshold: float = math.nan
    season_length: float = math.nan
    season_range: tuple[float, float] | None = None
    cluster_distance: float | None = None
    cluster_threshold: float | None = None
    param_z_scores: dict[str, float] = field(default_factory=dict)

    def human_readable(self) -> str:
        """Return a one-line explanation.

        Example:
            >>> RejectionDetail(FitQuality.POOR, rmse=0.14, rmse_threshold=0.1).human_readable()
            'poor: RMSE 0.140 > 0.100'
        """
        parts: list[str] = []
        if self.reason is FitQuality.OUTLIER and self.cluster_distance is not None:
            worst = max(self.param_z_scores, key=self.param_z_scores.__getitem__, default="")
            detail = f"{self.cluster_distance:.1f} MADs from neighbours"
            if worst:
                detail += f" on {worst}"
            if self.cluster_threshold is not None:
                detail += f" (threshold {self.cluster_threshold:.1f})"
            parts.append(detail)
        else:
            if not math.isfinite(self.rmse) or self.rmse > self.rmse_threshold:
                parts.append(f"RMSE {self.rmse:.3f} > {self.rmse_threshold:.3f}")
            if self.season_range is not None:
                lo, hi = self.season_range
                if not lo <= self.season_length <= hi:
                    parts.append(
                        f"season length {self.season_length:.0f} d outside [{lo:.0f}, {hi:.0f}]"
                    )
        if not parts:
            parts.append(f"{self.observation_count} observations")
        return f"{self.reason.value}: {'; '.join(parts)}"


@dataclass(frozen=True)
class PixelFitResult:
    """Best ensemble fit for one pixel plus its quality label.

    Attributes:
        row: Pixel row in the source grid.
        col: Pixel column in the source grid.
        params: Lowest-RMSE parameters from the pixel ensemble.
        observation_count: Valid dates the fit used.
        fit_quality: ``skipped`` until classified.
        rejection: Explanation for ``poor``/``outlier`` labels.
    """

    row: int
    col: int
    params: DLParams
    observation_count: int
    fit_quality: FitQuality = FitQuality.SKIPPED
    rejection: RejectionDetail | None = None

    def with_quality(
        self, quality: FitQuality, rejection: RejectionDetail | None = None
    ) -> PixelFitResult:
        """Return a copy with a new label (and explanation)."""
        return replace(self, fit_quality=quality, rejection=rejection)


Grid = tuple[tuple[PixelFitResult | None, ...], ...]
"""Row-major pixel grid; ``None`` marks a pixel without enough data."""


def freeze_grid(rows: Sequence[Sequence[PixelFitResult | None]]) -> Grid:
    """Convert nested sequences into an immutable grid."""
    return tuple(tuple(row) for row in rows)


@dataclass(frozen=True)
class PixelPhenologyResult:
    """Classified per-pixel phenology for one computation run.

    Immutable: re-classification and regularization build a new
    instance via :meth:`with_pixels`.

    Attributes:
        height: Grid rows.
        width: Grid columns.
        pixels: ``height x width`` grid of results (``None`` = absent).
        reference_fit: Field-level fit used as warm start, if any.
        compute_time_seconds: Wall-clock time of the pixel pass.

    Example:
        >>> result = PixelPhenologyResult(height=1, width=2, pixels=((None, None),))
        >>> result.absent_count
        2
    """

    height: int
    width: int
    pixels: Grid
    reference_fit: DLParams | None = None
    compute_time_seconds: float = 0.0

    def __post_init__(self) -> None:
        if len(self.pixels) != self.height or any(
            len(row) != self.width for row in self.pixels
        ):
            msg = f"pixel grid does not match shape ({self.height}, {self.width})"
            raise ValueError(msg)

    def __getitem__(self, index: tuple[int, int]) -> PixelFitResult | None:
        row, col = index
        return self.pixels[row][col]

    def __repr__(self) -> str:
        """Return summary representation following progressive disclosure.

        Shows grid shape, per-label counts and timing, never the grid.
        """
        counts = self.counts()
        lines = [
            f"{type(self).__name__}(",
            f"  grid: {self.height} x {self.width}",
            f"  good: {counts[FitQuality.GOOD]}, poor: {counts[FitQuality.POOR]}, "
            f"outlier: {counts[FitQuality.OUTLIER]}, skipped: {counts[FitQuality.SKIPPED]}, "
            f"no data: {self.absent_count}",
        ]
        if self.reference_fit is not None:
            ref = self.reference_fit
            lines.append(
                f"  reference: sos {ref.sos:.0f}, eos {ref.eos:.0f}, rmse {ref.rmse:.3f}"
            )
        lines.append(f"  compute_time: {self.compute_time_seconds:.1f}s")
        lines.append(")")
        return "\n".join(lines)

    def iter_present(self) -> Iterator[PixelFitResult]:
        """Yield every non-absent pixel in row-major order."""
        for row in self.pixels:
            for pixel in row:
                if pixel is not None:
                    yield pixel

    def counts(self) -> Counter[FitQuality]:
        """Number of present pixels per label."""
        counts: Counter[FitQuality] = Counter({quality: 0 for quality in FitQuality})
        counts.update(pixel.fit_quality for pixel in self.iter_present())
        return counts

    @property
    def good_count(self) -> int:
        return self.counts()[FitQuality.GOOD]

    @property
    def poor_count(self) -> int:
        return self.counts()[FitQuality.POOR]

    @property
    def outlier_count(self) -> int:
        return self.counts()[FitQuality.OUTLIER]

    @property
    def skipped_count(self) -> int:
        return self.counts()[FitQuality.SKIPPED]

    @property
    def absent_count(self) -> int:
        return sum(1 for row in self.pixels for pixel in row if pixel is None)

    def good_pixels(self) -> list[PixelFitResult]:
        """Present pixels labelled good."""
        return [p for p in self.iter_present() if p.fit_quality is FitQuality.GOOD]

    def parameter_map(self, name: str) -> FloatArray:
        """Return a ``(height, width)`` map of one parameter.

        Only good pixels carry values; every other cell is NaN.

        Args:
            name: One of ``mn, delta, sos, rsp, season_length, rau, rmse``.

        Raises:
            KeyError: For an unknown parameter name.
        """
        if name not in _MAP_PARAMETERS:
            msg = f"Unknown phenology parameter: {name!r}"
            raise KeyError(msg)
        out = np.full((self.height, self.width), np.nan, dtype=np.float64)
        for pixel in self.good_pixels():
            out[pixel.row, pixel.col] = pixel.params.parameter(name)
        return out

    def rejection_reason_map(self) -> FloatArray:
        """Return label codes: 0 good, 1 poor, 2 outlier, 3 skipped, NaN no data."""
        out = np.full((self.height, self.width), np.nan, dtype=np.float64)
        for pixel in self.iter_present():
            out[pixel.row, pixel.col] = _REASON_CODES[pixel.fit_quality]
        return out

    def parameter_uncertainty(self) -> dict[str, tuple[float, float]]:
        """Median and inter-quartile range of each parameter over good pixels.

        Returns:
            ``{name: (median, iqr)}``, or an empty dict with fewer than
            three good pixels.
        """
        good = self.good_pixels()
        n = len(good)
        if n < _MIN_UNCERTAINTY_PIXELS:
            return {}
        stats: dict[str, tuple[float, float]] = {}
        for name in PARAMETER_NAMES:
            values = np.sort([p.params.parameter(name) for p in good])
            iqr = float(values[(3 * n) // 4] - values[n // 4])
            stats[name] = (float(np.median(values)), iqr)
        return stats

    def filtered_median_series(self, frames: Sequence[Frame]) -> tuple[FloatArray, FloatArray]:
        """Per-frame median NDVI over good pixels only.

        Frames where no good pixel has a finite value yield NaN.

        Returns:
            ``(doys, medians)`` parallel arrays.
        """
        mask = np.zeros((self.height, self.width), dtype=bool)
        for pixel in self.good_pixels():
            mask[pixel.row, pixel.col] = True

        doys = np.array([frame.doy for frame in frames], dtype=np.float64)
        medians = np.full(len(frames), np.nan, dtype=np.float64)
        for i, frame in enumerate(frames):
            ndvi = frame.ndvi[: self.height, : self.width]
            values = ndvi[mask[: ndvi.shape[0], : ndvi.shape[1]]]
            values = values[np.isfinite(values)]
            if values.size:
                medians[i] = float(np.median(values))
        return doys, medians

    def with_pixels(self, pixels: Sequence[Sequence[PixelFitResult | None]]) -> PixelPhenologyResult:
        """Return a new result with a replacement grid of the same shape."""
        return replace(self, pixels=freeze_grid(pixels))

    def to_dataframe(self) -> pd.DataFrame:
        """Export one row per present pixel.

        Returns:
            pandas DataFrame with pixel position, label, observation
            count, every curve parameter and the rejection explanation.
        """
        import pandas as pd

        rows: list[dict[str, Any]] = []
        for pixel in self.iter_present():
            p = pixel.params
            rows.append(
                {
                    "row": pixel.row,
                    "col": pixel.col,
                    "fit_quality": pixel.fit_quality.value,
                    "observation_count": pixel.observation_count,
                    "mn": p.mn,
                    "mx": p.mx,
                    "delta": p.delta,
                    "sos": p.sos,
                    "eos": p.eos,
                    "season_length": p.season_length,
                    "rsp": p.rsp,
                    "rau": p.rau,
                    "rmse": p.rmse,
                    "rejection": (
                        pixel.rejection.human_readable() if pixel.rejection else None
                    ),
                }
            )
        return pd.DataFrame(rows)


@dataclass(frozen=True)
class SelectionResult:
    """Aggregate over a rectangular pixel selection.

    Attributes:
        row_range: Half-open ``(start, stop)`` rows of the rectangle.
        col_range: Half-open ``(start, stop)`` columns of the rectangle.
        doys: Day of year of each frame.
        mean_values: Mean NDVI over finite selected pixels, per frame.
        fit: Ensemble fit over the mean series (``None`` with too few dates).
        parameter_stats: ``{name: (mean, std)}`` across good pixels.
        good_pixel_count: Good pixels inside the rectangle.
        band_means: Mean reflectance per band, per frame.
    """

    row_range: tuple[int, int]
    col_range: tuple[int, int]
    doys: FloatArray
    mean_values: FloatArray
    fit: EnsembleResult | None = None
    parameter_stats: dict[str, tuple[float, float]] = field(default_factory=dict)
    good_pixel_count: int = 0
    band_means: dict[str, FloatArray] = field(default_factory=dict)

    def __repr__(self) -> str:
        (r0, r1), (c0, c1) = self.row_range, self.col_range
        parts = [
            f"rows={r0}:{r1}",
            f"cols={c0}:{c1}",
            f"dates={len(self.doys)}",
            f"good_pixels={self.good_pixel_count}",
        ]
        if self.fit is not None:
            parts.append(f"rmse={self.fit.best.rmse:.3f}")
        return f"{type(self).__name__}({', '.join(parts)})"

    @property
    def pixel_count(self) -> int:
        """Pixels covered by the rectangle."""
        return (self.row_range[1] - self.row_range[0]) * (self.col_range[1] - self.col_range[0])

    def curve(self, doys: Sequence[float] | FloatArray) -> FloatArray:
        """Evaluate the selection fit; all-NaN when there is no fit."""
        if self.fit is None:
            return np.full(len(doys), np.nan, dtype=np.float64)
        return self.fit.best.curve(doys)

    def to_dataframe(self) -> pd.DataFrame:
        """Export one row per date with the mean, fitted value and band means."""
        import pandas as pd

        data: dict[str, Any] = {
            "doy": self.doys,
            "mean_ndvi": self.mean_values,
            "fitted_ndvi": self.curve(self.doys),
        }
        for band, means in self.band_means.items():
            data[f"{band}_mean"] = means
        return pd.DataFrame(data)
