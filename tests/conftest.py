"""Shared test fixtures for the phenofit test suite."""

from __future__ import annotations

from collections.abc import Callable

import numpy as np
import pytest

from phenofit._types import Frame
from phenofit.config import FitSettings
from phenofit.model import DLParams

FrameFactory = Callable[..., list[Frame]]

TRUTH = DLParams(mn=0.15, mx=0.75, sos=120.0, rsp=0.08, eos=250.0, rau=0.06)
"""Plausible crop season used by synthetic series."""

SAMPLE_DOYS = np.arange(60, 331, 15, dtype=np.float64)


@pytest.fixture(autouse=True)
def _reset_settings(monkeypatch: pytest.MonkeyPatch) -> None:
    """Reset module-level default settings before each test."""
    import phenofit.config as _cfg

    monkeypatch.setattr(_cfg, "_default_settings", FitSettings())


@pytest.fixture
def truth() -> DLParams:
    """Return the reference double-logistic parameters."""
    return TRUTH


@pytest.fixture
def settings() -> FitSettings:
    """Return seeded settings with a small worker pool for test determinism."""
    return FitSettings(seed=42, max_workers=2, rows_per_task=1)


@pytest.fixture
def make_frames() -> FrameFactory:
    """Return a builder of noise-free synthetic frames.

    The builder takes the grid shape, the parameters to render and an
    optional ``{(row, col): n_valid}`` map limiting how many leading
    dates a pixel keeps (the rest become NaN).
    """

    def _build(
        height: int = 3,
        width: int = 3,
        params: DLParams = TRUTH,
        doys: np.ndarray = SAMPLE_DOYS,
        valid_dates: dict[tuple[int, int], int] | None = None,
    ) -> list[Frame]:
        frames: list[Frame] = []
        for i, doy in enumerate(doys):
            ndvi = np.full((height, width), params.evaluate(float(doy)))
            for (row, col), n_valid in (valid_dates or {}).items():
                if i >= n_valid:
                    ndvi[row, col] = np.nan
            frames.append(Frame(doy=int(doy), ndvi=ndvi))
        return frames

    return _build
