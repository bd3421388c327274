"""Box constraints for the double-logistic optimizer.

``BoundsConfig`` holds one closed interval per optimized parameter plus
the season-length interval. The optimizer works in the reparameterized
space ``[mn, delta, sos, rsp, season_length, rau]`` so the box alone
guarantees ``eos > sos`` and ``mx >= mn``.

Bounds are validated at construction: an interval with ``min > max``
raises ``InconsistentBoundsError`` before any fitting work can start.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

import numpy as np
from pydantic import BaseModel, ConfigDict, field_validator, model_validator

from phenofit._types import FloatArray
from phenofit.exceptions import InconsistentBoundsError
from phenofit.model import DLParams

logger = logging.getLogger(__name__)

CROP_CALENDAR_PAD_DAYS: int = 15
"""Safety pad applied before/after crop-calendar sowing windows."""

_CALENDAR_MIN_SEASON: int = 30
_CALENDAR_MAX_SEASON: int = 350
_LAST_DOY: int = 365


@dataclass(frozen=True)
class SeasonBounds:
    """Sowing and harvest windows from a crop calendar, as days of year.

    Args:
        sos_min: Earliest sowing day.
        sos_max: Latest sowing day.
        eos_min: Earliest harvest day.
        eos_max: Latest harvest day.
        crop_name: Crop display name.
        aez_name: Agro-ecological zone, when the calendar has a single one.

    Example:
        >>> sb = SeasonBounds(sos_min=100, sos_max=130, eos_min=220, eos_max=260)
        >>> sb.crop_name
        ''
    """

    sos_min: int
    sos_max: int
    eos_min: int
    eos_max: int
    crop_name: str = ""
    aez_name: str | None = None


class BoundsConfig(BaseModel):
    """Per-parameter box constraints and season-length bounds.

    Immutable pydantic model. Defaults are the physical NDVI bounds used
    for field-scale crop phenology.

    Args:
        mn_min: Lower bound of the baseline minimum.
        mn_max: Upper bound of the baseline minimum.
        delta_min: Lower bound of the amplitude ``mx - mn``.
        delta_max: Upper bound of the amplitude.
        sos_min: Earliest start of season (day of year).
        sos_max: Latest start of season (day of year).
        rsp_min: Lower bound of the green-up rate.
        rsp_max: Upper bound of the green-up rate.
        rau_min: Lower bound of the senescence rate.
        rau_max: Upper bound of the senescence rate.
        min_season_length: Shortest allowed ``eos - sos`` (days).
        max_season_length: Longest allowed ``eos - sos`` (days).

    Example:
        >>> bounds = BoundsConfig(sos_min=90, sos_max=160)
        >>> bounds.lower()[2]
        90.0
    """

    model_config = ConfigDict(frozen=True, validate_default=True, extra="forbid")

    mn_min: float = -0.5
    mn_max: float = 0.8
    delta_min: float = 0.05
    delta_max: float = 1.5
    sos_min: float = 1.0
    sos_max: float = 365.0
    rsp_min: float = 0.02
    rsp_max: float = 0.6
    rau_min: float = 0.02
    rau_max: float = 0.6
    min_season_length: float = 50.0
    max_season_length: float = 150.0

    @field_validator("delta_min")
    @classmethod
    def _validate_delta_min(cls, v: float) -> float:
        """Amplitude may not be negative."""
        if v < 0:
            msg = "delta_min must be >= 0"
            raise ValueError(msg)
        return v

    @field_validator("rsp_min", "rau_min")
    @classmethod
    def _validate_rate_min(cls, v: float) -> float:
        """Logistic rates must stay strictly positive."""
        if v <= 0:
            msg = "rate lower bounds must be greater than 0"
            raise ValueError(msg)
        return v

    @field_validator("sos_min", "sos_max")
    @classmethod
    def _validate_doy(cls, v: float) -> float:
        """Start of season is a day of year."""
        if not 1 <= v <= 366:
            msg = "start-of-season bounds must lie in [1, 366]"
            raise ValueError(msg)
        return v

    @field_validator("min_season_length", "max_season_length")
    @classmethod
    def _validate_season_length(cls, v: float) -> float:
        """Season length is a positive number of days within one year."""
        if not 0 < v <= _LAST_DOY:
            msg = f"season length bounds must lie in (0, {_LAST_DOY}]"
            raise ValueError(msg)
        return v

    @model_validator(mode="after")
    def _check_intervals(self) -> BoundsConfig:
        """Reject any interval whose minimum exceeds its maximum."""
        self.check_consistency()
        return self

    def intervals(self) -> dict[str, tuple[float, float]]:
        """Return ``{name: (min, max)}`` in optimizer order."""
        return {
            "mn": (self.mn_min, self.mn_max),
            "delta": (self.delta_min, self.delta_max),
            "sos": (self.sos_min, self.sos_max),
            "rsp": (self.rsp_min, self.rsp_max),
            "season_length": (self.min_season_length, self.max_season_length),
            "rau": (self.rau_min, self.rau_max),
        }

    def check_consistency(self) -> None:
        """Raise ``InconsistentBoundsError`` if any interval is inverted.

        Raises:
            InconsistentBoundsError: Naming every offending interval.
        """
        inverted = [
            f"{name} [{lo}, {hi}]" for name, (lo, hi) in self.intervals().items() if lo > hi
        ]
        if inverted:
            raise InconsistentBoundsError(
                what="Inconsistent parameter bounds",
                cause=f"minimum exceeds maximum for: {', '.join(inverted)}",
                fix="Ensure every configured minimum is <= its maximum",
            )

    def lower(self) -> FloatArray:
        """Lower corner of the box in optimizer order."""
        return np.array([lo for lo, _ in self.intervals().values()], dtype=np.float64)

    def upper(self) -> FloatArray:
        """Upper corner of the box in optimizer order."""
        return np.array([hi for _, hi in self.intervals().values()], dtype=np.float64)

    def clamp(self, params: DLParams) -> DLParams:
        """Project ``params`` into the box, keeping its ``rmse``.

        Idempotent: ``clamp(clamp(p)) == clamp(p)``.
        """
        x = np.clip(params.as_opt_array(), self.lower(), self.upper())
        return DLParams.from_opt_array(x, rmse=params.rmse)

    def contains(self, params: DLParams, tol: float = 1e-9) -> bool:
        """Whether ``params`` lies inside the box (within ``tol``)."""
        x = params.as_opt_array()
        return bool(np.all(x >= self.lower() - tol) and np.all(x <= self.upper() + tol))

    def sample(self, rng: np.random.Generator) -> DLParams:
        """Draw a uniformly random feasible parameter set.

        ``eos`` is derived as ``sos + season_length`` with the season
        length itself sampled within its bounds, so ``eos > sos`` holds.
        """
        x = rng.uniform(self.lower(), self.upper())
        return DLParams.from_opt_array(x)

    def with_season_length(self, min_length: float, max_length: float) -> BoundsConfig:
        """Return a validated copy with new season-length bounds."""
        return self._updated(min_season_length=min_length, max_season_length=max_length)

    def with_crop_calendar(
        self,
        season: SeasonBounds,
        pad_days: int = CROP_CALENDAR_PAD_DAYS,
    ) -> BoundsConfig:
        """Narrow start-of-season and season-length bounds from a crop calendar.

        The sowing window is widened by ``pad_days`` on both sides and
        clamped to ``[1, 365]``. Season-length bounds become
        ``[max(30, eos_min - sos_max), min(350, eos_max - sos_min)]``,
        applied only when that interval is positive and non-empty.

        Args:
            season: Sowing/harvest windows from the calendar collaborator.
            pad_days: Safety pad around the sowing window.

        Returns:
            A new validated ``BoundsConfig``.

        Example:
            >>> season = SeasonBounds(sos_min=100, sos_max=130, eos_min=220, eos_max=260)
            >>> b = BoundsConfig().with_crop_calendar(season)
            >>> (b.sos_min, b.sos_max, b.min_season_length, b.max_season_length)
            (85.0, 145.0, 90.0, 160.0)
        """
        updates: dict[str, Any] = {
            "sos_min": float(max(1, season.sos_min - pad_days)),
            "sos_max": float(min(_LAST_DOY, season.sos_max + pad_days)),
        }
        min_len = max(_CALENDAR_MIN_SEASON, season.eos_min - season.sos_max)
        max_len = min(_CALENDAR_MAX_SEASON, season.eos_max - season.sos_min)
        if min_len > 0 and max_len > min_len:
            updates["min_season_length"] = float(min_len)
            updates["max_season_length"] = float(max_len)
        else:
            logger.info(
                "Crop calendar season length [%d, %d] unusable; keeping [%.0f, %.0f]",
                min_len,
                max_len,
                self.min_season_length,
                self.max_season_length,
            )
        return self._updated(**updates)

    def _updated(self, **updates: Any) -> BoundsConfig:
        """Build a validated copy (``model_copy`` skips validation)."""
        current = self.model_dump()
        current.update(updates)
        return BoundsConfig(**current)
