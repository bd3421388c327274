"""Internal shared types for cross-boundary data contracts.

These types define the data shapes passed between the ingestion
collaborator, the fitting engine and the result consumers.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

import numpy as np
import numpy.typing as npt

FloatArray = npt.NDArray[np.floating[Any]]
"""Floating-point numpy array (any precision)."""

BoolArray = npt.NDArray[np.bool_]
"""Boolean numpy array, typically a ``(H, W)`` pixel mask."""

ProgressCallback = Callable[[float], None]
"""Callable receiving a completion fraction in ``[0, 1]``."""


class FitQuality(str, Enum):
    """Classification label attached to every present pixel fit."""

    GOOD = "good"
    POOR = "poor"
    OUTLIER = "outlier"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class Observation:
    """A single vegetation-index observation.

    Args:
        doy: Day of year (1--366) inside one growing-year window.
        value: NDVI or an equivalent index, roughly in ``[-1, 1]``.

    Example:
        >>> obs = Observation(doy=152, value=0.71)
        >>> obs.doy
        152
    """

    doy: float
    value: float


def observations_to_arrays(
    observations: Sequence[Observation],
) -> tuple[FloatArray, FloatArray]:
    """Split observations into parallel ``(doys, values)`` float arrays."""
    doys = np.array([o.doy for o in observations], dtype=np.float64)
    values = np.array([o.value for o in observations], dtype=np.float64)
    return doys, values


def arrays_to_observations(
    doys: FloatArray,
    values: FloatArray,
) -> list[Observation]:
    """Inverse of :func:`observations_to_arrays`."""
    return [Observation(doy=float(d), value=float(v)) for d, v in zip(doys, values)]


@dataclass
class Frame:
    """One acquisition date of the input time series.

    Produced by the ingestion collaborator after cloud masking. Masked
    pixels are NaN in ``ndvi``.

    Args:
        doy: Day of year of the acquisition.
        ndvi: Vegetation index array with shape ``(H, W)``.
        bands: Optional per-band reflectance arrays, same shape as ``ndvi``.
        date: ISO-8601 acquisition date, informational only.

    Example:
        >>> import numpy as np
        >>> frame = Frame(doy=120, ndvi=np.full((2, 3), 0.4))
        >>> (frame.height, frame.width)
        (2, 3)
    """

    doy: int
    ndvi: FloatArray
    bands: dict[str, FloatArray] = field(default_factory=dict)
    date: str = ""

    @property
    def height(self) -> int:
        """Number of pixel rows."""
        return int(self.ndvi.shape[0])

    @property
    def width(self) -> int:
        """Number of pixel columns."""
        return int(self.ndvi.shape[1])

    @classmethod
    def from_bands(
        cls,
        doy: int,
        red: FloatArray,
        nir: FloatArray,
        date: str = "",
        **extra_bands: FloatArray,
    ) -> Frame:
        """Build a frame from red and near-infrared reflectance.

        NDVI = (NIR - Red) / (NIR + Red). NaN reflectance propagates to
        NaN, and a zero denominator yields NaN instead of ``inf``.

        Args:
            doy: Day of year of the acquisition.
            red: Red reflectance, shape ``(H, W)``.
            nir: Near-infrared reflectance, same shape.
            date: ISO-8601 acquisition date.
            **extra_bands: Any further reflectance bands to keep
                (e.g. ``green=...``).

        Returns:
            A ``Frame`` whose ``bands`` contains ``red``, ``nir`` and
            every extra band.
        """
        red_f = np.asarray(red, dtype=np.float64)
        nir_f = np.asarray(nir, dtype=np.float64)
        denominator = nir_f + red_f

        with np.errstate(divide="ignore", invalid="ignore"):
            ndvi: FloatArray = np.where(
                denominator == 0.0,
                np.nan,
                (nir_f - red_f) / denominator,
            )

        bands: dict[str, FloatArray] = {"red": red_f, "nir": nir_f}
        bands.update(
            {name: np.asarray(arr, dtype=np.float64) for name, arr in extra_bands.items()}
        )
        return cls(doy=int(doy), ndvi=ndvi, bands=bands, date=date)
