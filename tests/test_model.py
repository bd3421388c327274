"""Tests for the double-logistic curve model."""

from __future__ import annotations

import math

import numpy as np
import numpy.testing as npt
import pytest

from phenofit._types import Observation
from phenofit.model import PARAMETER_NAMES, DLParams, evaluate, residual, rmse_arrays


@pytest.mark.unit
class TestEvaluate:
    """Verify the curve formula and its tails."""

    def test_known_value_at_sos(self, truth: DLParams) -> None:
        expected = truth.mn + truth.delta * (0.5 - 1 / (1 + math.exp(-truth.rau * (120 - 250))))
        assert evaluate(truth, 120.0) == pytest.approx(expected)

    def test_scalar_returns_float(self, truth: DLParams) -> None:
        assert isinstance(evaluate(truth, 150), float)

    def test_array_returns_array(self, truth: DLParams) -> None:
        out = evaluate(truth, np.array([100.0, 200.0]))
        assert isinstance(out, np.ndarray)
        assert out.shape == (2,)

    @pytest.mark.parametrize("t", [-1e6, -500.0, 0.0, 366.0, 5000.0, 1e6])
    def test_tails_finite_and_bounded(self, truth: DLParams, t: float) -> None:
        value = evaluate(truth, t)
        assert math.isfinite(value)
        lo, hi = min(truth.mn, truth.mx), max(truth.mn, truth.mx)
        assert lo - 1e-9 <= value <= hi + 1e-9

    def test_far_tails_saturate_at_baseline(self, truth: DLParams) -> None:
        assert evaluate(truth, -1e6) == pytest.approx(truth.mn)
        assert evaluate(truth, 1e6) == pytest.approx(truth.mn)

    def test_plateau_near_maximum(self, truth: DLParams) -> None:
        assert evaluate(truth, 185.0) == pytest.approx(truth.mx, abs=0.02)

    def test_curve_matches_evaluate(self, truth: DLParams) -> None:
        doys = [80, 150, 260]
        npt.assert_allclose(truth.curve(doys), [evaluate(truth, d) for d in doys])


@pytest.mark.unit
class TestResidual:
    """Verify RMSE against observations."""

    def test_zero_on_exact_observations(self, truth: DLParams) -> None:
        obs = [Observation(d, truth.evaluate(d)) for d in range(60, 300, 20)]
        assert residual(truth, obs) == pytest.approx(0.0, abs=1e-12)

    def test_constant_offset(self, truth: DLParams) -> None:
        obs = [Observation(d, truth.evaluate(d) + 0.1) for d in range(60, 300, 20)]
        assert residual(truth, obs) == pytest.approx(0.1)

    def test_empty_is_infinite(self, truth: DLParams) -> None:
        assert rmse_arrays(truth, np.array([]), np.array([])) == math.inf


@pytest.mark.unit
class TestDLParams:
    """Verify derived values and the optimizer-space mapping."""

    def test_derived_values(self, truth: DLParams) -> None:
        assert truth.delta == pytest.approx(0.6)
        assert truth.season_length == pytest.approx(130.0)

    def test_opt_array_order(self, truth: DLParams) -> None:
        npt.assert_allclose(truth.as_opt_array(), [0.15, 0.6, 120.0, 0.08, 130.0, 0.06])

    def test_from_opt_array_rebuilds_eos_and_mx(self) -> None:
        p = DLParams.from_opt_array([0.1, 0.5, 100.0, 0.1, 90.0, 0.05], rmse=0.02)
        assert p.mx == pytest.approx(0.6)
        assert p.eos == pytest.approx(190.0)
        assert p.rmse == 0.02

    def test_with_rmse_returns_copy(self, truth: DLParams) -> None:
        updated = truth.with_rmse(0.3)
        assert updated.rmse == 0.3
        assert truth.rmse == 0.0

    def test_frozen(self, truth: DLParams) -> None:
        with pytest.raises(AttributeError):
            truth.sos = 10.0  # type: ignore[misc]

    @pytest.mark.parametrize("name", [*PARAMETER_NAMES, "rmse"])
    def test_parameter_lookup(self, truth: DLParams, name: str) -> None:
        assert truth.parameter(name) == pytest.approx(float(getattr(truth, name)))

    def test_unknown_parameter(self, truth: DLParams) -> None:
        with pytest.raises(KeyError, match="Unknown phenology parameter"):
            truth.parameter("eos_rate")
