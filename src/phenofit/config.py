"""Fit settings for phenofit.

``FitSettings`` is the explicit, immutable configuration value passed
into every fitting call. Concurrent computations with different
settings (for example two RMSE thresholds side by side) never share
mutable state.

A module-level default exists for convenience: pipeline functions
snapshot it at call time when no settings are passed, so a later
``configure()`` never affects an in-flight computation.
"""

from __future__ import annotations

import logging
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from phenofit.bounds import BoundsConfig
from phenofit.optimizer import MIN_FIT_OBSERVATIONS

logger = logging.getLogger("phenofit")


class FitSettings(BaseModel):
    """Numeric settings for field, pixel and selection fits.

    Args:
        pixel_ensemble_runs: Ensemble size for each per-pixel fit.
        pixel_perturbation: Multiplicative perturbation fraction for
            level and timing parameters (``mn``, ``delta``, ``sos``,
            season length).
        pixel_slope_perturbation: Separate, tighter perturbation
            fraction for the rates ``rsp`` and ``rau``.
        pixel_fit_rmse_threshold: RMSE above which a pixel fit is poor.
        pixel_min_observations: Valid dates required to fit a pixel.
        cluster_filter_threshold: Deviation, in neighbourhood MADs,
            beyond which a good pixel becomes an outlier.
        field_ensemble_runs: Ensemble size for the field reference fit.
        selection_ensemble_runs: Ensemble size for rectangle selections.
        max_evaluations: Residual evaluations allowed per local run.
        neighborhood_radius: Radius (pixels) of the square window used
            by the spatial regularizer.
        min_neighbors: Good neighbours required for local statistics.
        rescue_fraction: Share of present neighbours that must be good
            before an outlier or poor pixel can be rescued.
        rescue_max_spread: Relative MAD spread below which neighbours
            count as mutually consistent.
        rescue_max_rmse_factor: A rescued pixel's RMSE may be at most this
            multiple of ``pixel_fit_rmse_threshold``.
        max_workers: Worker threads for per-pixel fitting
            (``None`` uses the CPU count).
        rows_per_task: Pixel rows fitted by one worker task.
        seed: Base seed for reproducible per-pixel randomness.
        bounds: Box constraints, including season-length bounds.

    Example:
        >>> settings = FitSettings(pixel_fit_rmse_threshold=0.08)
        >>> settings.min_season_length
        50.0
    """

    model_config = ConfigDict(frozen=True, validate_default=True, extra="forbid")

    pixel_ensemble_runs: int = Field(default=5, ge=1)
    pixel_perturbation: float = Field(default=0.50, ge=0.0, le=1.0)
    pixel_slope_perturbation: float = Field(default=0.10, ge=0.0, le=1.0)
    pixel_fit_rmse_threshold: float = Field(default=0.10, gt=0.0)
    pixel_min_observations: int = 4
    cluster_filter_threshold: float = Field(default=4.0, gt=0.0)
    field_ensemble_runs: int = Field(default=50, ge=1)
    selection_ensemble_runs: int = Field(default=20, ge=1)
    max_evaluations: int = Field(default=2000, ge=10)
    neighborhood_radius: int = Field(default=1, ge=1)
    min_neighbors: int = Field(default=3, ge=1)
    rescue_fraction: float = Field(default=0.5, gt=0.0, le=1.0)
    rescue_max_spread: float = Field(default=0.10, gt=0.0)
    rescue_max_rmse_factor: float = Field(default=2.0, gt=0.0)
    max_workers: int | None = None
    rows_per_task: int = Field(default=4, ge=1)
    seed: int | None = None
    bounds: BoundsConfig = Field(default_factory=BoundsConfig)

    @field_validator("pixel_min_observations")
    @classmethod
    def _validate_min_observations(cls, v: int) -> int:
        """The optimizer needs at least four observations."""
        if v < MIN_FIT_OBSERVATIONS:
            msg = f"pixel_min_observations must be >= {MIN_FIT_OBSERVATIONS}"
            raise ValueError(msg)
        return v

    @field_validator("max_workers")
    @classmethod
    def _validate_max_workers(cls, v: int | None) -> int | None:
        """Ensure an explicit worker count is positive."""
        if v is not None and v <= 0:
            msg = "max_workers must be greater than 0"
            raise ValueError(msg)
        return v

    @property
    def min_season_length(self) -> float:
        """Shortest accepted season length (days), from ``bounds``."""
        return self.bounds.min_season_length

    @property
    def max_season_length(self) -> float:
        """Longest accepted season length (days), from ``bounds``."""
        return self.bounds.max_season_length

    def updated(self, **kwargs: Any) -> FitSettings:
        """Return a validated copy with the given fields replaced.

        Example:
            >>> FitSettings().updated(cluster_filter_threshold=3.0).cluster_filter_threshold
            3.0
        """
        current = self.model_dump()
        current.update(kwargs)
        return FitSettings(**current)


_default_settings = FitSettings()


def configure(**kwargs: Any) -> None:
    """Set module-level default fit settings.

    Creates a new ``FitSettings`` from the current defaults merged with
    the provided keyword arguments.

    Args:
        **kwargs: Any ``FitSettings`` field (e.g. ``pixel_ensemble_runs``,
            ``bounds``, ``seed``).

    Raises:
        ValidationError: If a provided value fails pydantic validation.
        InconsistentBoundsError: If ``bounds`` has an inverted interval.

    Example:
        >>> configure(pixel_ensemble_runs=8, seed=42)
    """
    global _default_settings  # noqa: PLW0603
    _default_settings = _default_settings.updated(**kwargs)
    logger.debug("Default fit settings updated: %s", sorted(kwargs))


def get_default_settings() -> FitSettings:
    """Return the current module-level default settings."""
    return _default_settings


def resolve_settings(settings: FitSettings | None) -> FitSettings:
    """Return ``settings`` or a snapshot of the module default."""
    return settings if settings is not None else _default_settings
