"""Tests for the top-level pipeline functions."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from typing import Any
from unittest.mock import patch

import numpy as np
import numpy.testing as npt
import pytest

import phenofit as pf
from phenofit._types import FitQuality, Frame
from phenofit.api import field_series, fit_field, run_pixel_phenology, settings_for_crop
from phenofit.bounds import BoundsConfig
from phenofit.config import FitSettings, configure
from phenofit.exceptions import FitCancelledError, InconsistentBoundsError, InsufficientDataError
from phenofit.model import DLParams
from phenofit.optimizer import fit_once
from phenofit.providers.base import CropCalendarProvider, ProviderStatus

FrameFactory = Callable[..., list[Frame]]


class _StaticCalendar(CropCalendarProvider):
    """In-memory calendar provider."""

    _name = "static"

    def __init__(self, entries: list[dict[str, Any]]) -> None:
        self.entries = entries
        self.calls: list[tuple[str, str]] = []

    def fetch_calendar(self, country: str, crop_id: str) -> list[dict[str, Any]]:
        self.calls.append((country, crop_id))
        return self.entries

    def check_status(self) -> ProviderStatus:
        return ProviderStatus(available=True)


def _wheat_entry() -> dict[str, Any]:
    return {
        "crop": {"id": "0373", "name": "Wheat"},
        "sessions": [
            {
                "early_sowing": {"month": "04", "day": "10"},
                "later_sowing": {"month": "05", "day": "10"},
                "early_harvest": {"month": "08", "day": "08"},
                "late_harvest": {"month": "09", "day": "17"},
            }
        ],
    }


@pytest.fixture
def quick() -> FitSettings:
    """Seeded settings with small ensembles."""
    return FitSettings(seed=11, field_ensemble_runs=5, pixel_ensemble_runs=3, max_workers=2)


# ── Field reference ─────────────────────────────────────────────────


@pytest.mark.unit
class TestFieldSeries:
    """Verify the per-date field median."""

    def test_median_per_date(self) -> None:
        ndvi = np.array([[0.2, 0.4], [0.6, np.nan]])
        doys, medians = field_series([Frame(doy=100, ndvi=ndvi)])
        npt.assert_array_equal(doys, [100.0])
        npt.assert_allclose(medians, [0.4])

    def test_mask_restricts_pixels(self) -> None:
        ndvi = np.array([[0.2, 0.4], [0.6, 0.8]])
        mask = np.array([[True, False], [False, False]])
        _, medians = field_series([Frame(doy=100, ndvi=ndvi)], mask)
        npt.assert_allclose(medians, [0.2])

    def test_all_masked_date_is_nan(self) -> None:
        _, medians = field_series([Frame(doy=100, ndvi=np.full((2, 2), np.nan))])
        assert np.isnan(medians[0])


@pytest.mark.unit
class TestFitField:
    """Verify the field-level reference fit."""

    def test_recovers_truth(
        self, make_frames: FrameFactory, truth: DLParams, quick: FitSettings
    ) -> None:
        result = fit_field(make_frames(height=2, width=2), quick)
        assert len(result.runs) == 5
        assert result.best.rmse < 0.01
        assert result.best.sos == pytest.approx(truth.sos, abs=5.0)

    def test_too_few_dates(self, quick: FitSettings) -> None:
        frames = [Frame(doy=100 + 30 * i, ndvi=np.full((1, 1), 0.4)) for i in range(3)]
        with pytest.raises(InsufficientDataError):
            fit_field(frames, quick)

    def test_cancelled_mid_fit(self, make_frames: FrameFactory, quick: FitSettings) -> None:
        event = threading.Event()

        def fit_then_cancel(*args: object) -> DLParams:
            event.set()
            return fit_once(*args)  # type: ignore[arg-type]

        with patch("phenofit.optimizer.fit_once", side_effect=fit_then_cancel) as mock_fit:
            with pytest.raises(FitCancelledError):
                fit_field(make_frames(height=2, width=2), quick, cancel_event=event)
        assert mock_fit.call_count == 1


# ── Full pipeline ───────────────────────────────────────────────────


@pytest.mark.integration
class TestRunPixelPhenology:
    """Verify the fit, classify and regularize pipeline end to end."""

    def test_clean_field_all_good(
        self, make_frames: FrameFactory, truth: DLParams, quick: FitSettings
    ) -> None:
        result = run_pixel_phenology(make_frames(height=3, width=3), quick)
        assert result.good_count == 9
        assert result.reference_fit is not None
        npt.assert_allclose(result.parameter_map("sos"), truth.sos, atol=2.0)

    def test_sparse_pixel_absent(self, make_frames: FrameFactory, quick: FitSettings) -> None:
        frames = make_frames(height=2, width=2, valid_dates={(1, 1): 2})
        result = run_pixel_phenology(frames, quick)
        assert result[1, 1] is None
        assert result.absent_count == 1
        assert result.skipped_count == 0

    def test_no_skipped_labels_after_classification(
        self, make_frames: FrameFactory, quick: FitSettings
    ) -> None:
        result = run_pixel_phenology(make_frames(height=2, width=2), quick, regularize_outliers=False)
        assert all(p.fit_quality is not FitQuality.SKIPPED for p in result.iter_present())

    def test_explicit_reference_skips_field_fit(
        self, make_frames: FrameFactory, truth: DLParams, quick: FitSettings
    ) -> None:
        result = run_pixel_phenology(make_frames(height=1, width=2), quick, reference=truth)
        assert result.reference_fit == truth

    def test_insufficient_field_falls_back(
        self, quick: FitSettings, caplog: pytest.LogCaptureFixture
    ) -> None:
        frames = [Frame(doy=100 + 30 * i, ndvi=np.full((1, 1), 0.4)) for i in range(3)]
        with caplog.at_level(logging.WARNING, logger="phenofit.api"):
            result = run_pixel_phenology(frames, quick)
        assert result.reference_fit is None
        assert result.absent_count == 1
        assert "without warm start" in caplog.text

    def test_inverted_bounds_rejected(self, make_frames: FrameFactory) -> None:
        values = {**BoundsConfig().model_dump(), "rsp_min": 0.5, "rsp_max": 0.1}
        settings = FitSettings.model_construct(bounds=BoundsConfig.model_construct(**values))
        with pytest.raises(InconsistentBoundsError):
            run_pixel_phenology(make_frames(height=1, width=1), settings)

    def test_cancelled(self, make_frames: FrameFactory, quick: FitSettings) -> None:
        event = threading.Event()
        event.set()
        with pytest.raises(FitCancelledError):
            run_pixel_phenology(make_frames(height=2, width=2), quick, cancel_event=event)

    def test_uses_configured_defaults(self, make_frames: FrameFactory) -> None:
        configure(seed=4, field_ensemble_runs=3, pixel_ensemble_runs=2, max_workers=1)
        result = pf.run_pixel_phenology(make_frames(height=1, width=2))
        assert result.good_count == 2

    def test_reclassify_after_run(self, make_frames: FrameFactory, quick: FitSettings) -> None:
        result = run_pixel_phenology(make_frames(height=2, width=2), quick)
        strict = pf.reclassify(result, quick.updated(pixel_min_observations=40))
        assert strict.good_count == 0
        assert strict.poor_count == 4


# ── Crop calendar narrowing ─────────────────────────────────────────


@pytest.mark.unit
class TestSettingsForCrop:
    """Verify bounds narrowing from a calendar provider."""

    def test_narrows_bounds(self) -> None:
        provider = _StaticCalendar([_wheat_entry()])
        settings = settings_for_crop(provider, "PL", "0373", FitSettings(seed=1))
        # 10 April is day 101 and 10 May day 131 in a leap year.
        assert settings.bounds.sos_min == 86.0
        assert settings.bounds.sos_max == 146.0
        assert settings.seed == 1
        assert provider.calls == [("PL", "0373")]

    def test_empty_calendar_unchanged(self) -> None:
        provider = _StaticCalendar([])
        original = FitSettings()
        assert settings_for_crop(provider, "PL", "9999", original) is original
