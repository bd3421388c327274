"""phenofit: double-logistic phenology fitting for satellite time series.

Example:
    >>> import phenofit as pf
    >>>
    >>> settings = pf.FitSettings(pixel_fit_rmse_threshold=0.08, seed=7)
    >>> result = pf.run_pixel_phenology(frames, settings)  # doctest: +SKIP
    >>> result.parameter_map("sos")  # doctest: +SKIP
"""

from phenofit.__about__ import __version__
from phenofit._types import FitQuality, Frame, Observation
from phenofit.api import field_series, fit_field, run_pixel_phenology, settings_for_crop
from phenofit.bounds import BoundsConfig, SeasonBounds
from phenofit.config import FitSettings, configure, get_default_settings
from phenofit.engine import fit_pixels
from phenofit.exceptions import (
    ConfigurationError,
    FitCancelledError,
    InconsistentBoundsError,
    InsufficientDataError,
    PhenofitError,
    ProviderError,
)
from phenofit.model import PARAMETER_NAMES, DLParams, evaluate, residual
from phenofit.optimizer import EnsembleResult, ensemble_fit
from phenofit.quality import classify, classify_grid, reclassify
from phenofit.results import (
    PixelFitResult,
    PixelPhenologyResult,
    RejectionDetail,
    SelectionResult,
)
from phenofit.selection import analyze_selection
from phenofit.spatial import regularize

__all__ = [
    # Version
    "__version__",
    # Pipeline
    "analyze_selection",
    "field_series",
    "fit_field",
    "fit_pixels",
    "run_pixel_phenology",
    "settings_for_crop",
    # Model and optimizer
    "PARAMETER_NAMES",
    "DLParams",
    "EnsembleResult",
    "ensemble_fit",
    "evaluate",
    "residual",
    # Quality control
    "classify",
    "classify_grid",
    "reclassify",
    "regularize",
    # Configuration
    "BoundsConfig",
    "FitSettings",
    "SeasonBounds",
    "configure",
    "get_default_settings",
    # Data and results
    "FitQuality",
    "Frame",
    "Observation",
    "PixelFitResult",
    "PixelPhenologyResult",
    "RejectionDetail",
    "SelectionResult",
    # Exceptions
    "ConfigurationError",
    "FitCancelledError",
    "InconsistentBoundsError",
    "InsufficientDataError",
    "PhenofitError",
    "ProviderError",
]
