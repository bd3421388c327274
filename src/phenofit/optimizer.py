"""Ensemble fitting of the double-logistic model.

The double-logistic residual surface is non-convex, so one fit is the
best of several independent local runs. Each run is a box-constrained
robust nonlinear least-squares solve (``scipy.optimize.least_squares``,
trust-region reflective) started from a randomized point:

* run 0 starts at the centre: a supplied warm start (e.g. the field
  median fit) or a data-driven initial guess;
* other runs start at the centre perturbed multiplicatively, with a
  separate, tighter fraction for the rate parameters ``rsp``/``rau``;
* without a warm start, a share of the runs start from a uniform
  sample of the whole box instead.

Runs minimize the Huber loss so single-date noise has bounded influence,
and report plain RMSE for ranking and quality control.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Sequence
from dataclasses import dataclass

import numpy as np
from scipy.optimize import least_squares

from phenofit._types import FloatArray, Observation, observations_to_arrays
from phenofit.bounds import BoundsConfig
from phenofit.exceptions import FitCancelledError, InsufficientDataError
from phenofit.model import DLParams, evaluate, rmse_arrays

logger = logging.getLogger(__name__)

MIN_FIT_OBSERVATIONS: int = 4
"""Fewest finite observations accepted by the optimizer."""

# Residual (NDVI units) beyond which the Huber loss turns linear.
_HUBER_F_SCALE: float = 0.10

# Share of non-centre runs started from a uniform sample of the box
# when no warm start is given.
_GLOBAL_START_FRACTION: float = 0.2

# least_squares needs lb < ub strictly; degenerate intervals are widened.
_MIN_BOX_WIDTH: float = 1e-9

_DEFAULT_GUESS = DLParams(mn=0.1, mx=0.6, sos=120.0, rsp=0.05, eos=280.0, rau=0.05)
_DEFAULT_RATE: float = 0.05

# Cycle-contamination filter constants.
_CYCLE_MIN_POINTS: int = 6
_CYCLE_THRESHOLD_FRACTION: float = 0.4
_CYCLE_PEAK_MARGIN_DAYS: float = 30.0


@dataclass(frozen=True)
class EnsembleResult:
    """Outcome of one ensemble fit.

    Attributes:
        best: Lowest-RMSE run.
        runs: Every run, sorted by ascending RMSE (``runs[0] is best``).
        observation_count: Observations actually fitted (after dropping
            non-finite values and cycle contamination).
    """

    best: DLParams
    runs: tuple[DLParams, ...]
    observation_count: int = 0

    def viable(self, factor: float = 1.5) -> tuple[DLParams, ...]:
        """Runs whose RMSE is within ``factor`` times the best RMSE."""
        limit = self.best.rmse * factor
        return tuple(run for run in self.runs if run.rmse <= limit)


def initial_guess(
    doys: FloatArray,
    values: FloatArray,
    bounds: BoundsConfig | None = None,
) -> DLParams:
    """Estimate starting parameters from the observations.

    ``mn``/``mx`` come from the 10th/90th percentile values. ``sos`` is
    the first date the series rises through the mid-level (default
    120) and ``eos`` the last date it falls through it (default 280).
    Both rates start at 0.05.

    Args:
        doys: Observation days of year.
        values: Observation values.
        bounds: When given, the guess is clamped into the box.

    Returns:
        A starting ``DLParams`` (rmse 0).
    """
    if len(values) == 0:
        guess = _DEFAULT_GUESS
    else:
        by_value = np.sort(values)
        n = len(by_value)
        mn = float(by_value[max(0, n // 10)])
        mx = float(by_value[min(n - 1, n - 1 - n // 10)])
        mid = (mn + mx) / 2

        order = np.argsort(doys, kind="stable")
        d = doys[order]
        v = values[order]

        sos = _DEFAULT_GUESS.sos
        for i in range(1, n):
            if v[i - 1] < mid <= v[i]:
                sos = float(d[i])
                break

        eos = _DEFAULT_GUESS.eos
        for i in range(n - 1, 0, -1):
            if v[i - 1] >= mid > v[i]:
                eos = float(d[i])
                break

        guess = DLParams(
            mn=mn, mx=mx, sos=sos, rsp=_DEFAULT_RATE, eos=eos, rau=_DEFAULT_RATE
        )

    if bounds is not None:
        guess = bounds.clamp(guess)
    return guess


def filter_cycle_contamination(
    doys: FloatArray,
    values: FloatArray,
) -> tuple[FloatArray, FloatArray]:
    """Trim observations that belong to an adjacent growing cycle.

    A growing-year window often catches the senescence tail of the
    previous crop at its start or the green-up of the next crop at its
    end. Leading points that are high, falling and more than 30 days
    before the main peak are dropped, as are trailing points that are
    high, rising and more than 30 days after it. "High" means above
    ``baseline + 0.4 * (peak - baseline)`` with the baseline taken as
    the 20th-percentile value and the peak from a 3-point moving mean.

    Series shorter than six points are returned unchanged.

    Returns:
        ``(doys, values)`` sorted by day of year.
    """
    if len(doys) < _CYCLE_MIN_POINTS:
        return doys, values

    order = np.argsort(doys, kind="stable")
    d = doys[order]
    v = values[order]
    n = len(d)

    smoothed = (v[:-2] + v[1:-1] + v[2:]) / 3.0
    peak = int(np.argmax(smoothed))
    peak_val = float(smoothed[peak])
    peak_doy = float(d[peak + 1])

    baseline = float(np.sort(v)[max(0, n // 5)])
    threshold = baseline + (peak_val - baseline) * _CYCLE_THRESHOLD_FRACTION
    early = peak_doy - _CYCLE_PEAK_MARGIN_DAYS
    late = peak_doy + _CYCLE_PEAK_MARGIN_DAYS

    start = 0
    if v[0] > threshold and d[0] < early:
        for i in range(min(n // 3, n - 1)):
            if v[i] > threshold and v[i + 1] < v[i] and d[i] < early:
                start = i + 1
            else:
                break

    end = n - 1
    if v[-1] > threshold and d[-1] > late:
        for i in range(n - 1, max(n * 2 // 3, 1) - 1, -1):
            if v[i] > threshold and v[i - 1] < v[i] and d[i] > late:
                end = i - 1
            else:
                break

    if start > 0 or end < n - 1:
        logger.debug(
            "Trimmed %d leading and %d trailing cross-cycle observations",
            start,
            n - 1 - end,
        )
    return d[start : end + 1], v[start : end + 1]


def perturb(
    center: DLParams,
    bounds: BoundsConfig,
    rng: np.random.Generator,
    perturbation: float,
    slope_perturbation: float,
) -> DLParams:
    """Draw a feasible starting point around ``center``.

    Each optimizer-space value is multiplied by ``1 + U(-f, f)`` where
    ``f`` is ``slope_perturbation`` for ``rsp``/``rau`` and
    ``perturbation`` for ``mn``, ``delta``, ``sos`` and the season
    length. The result is clamped into ``bounds``.
    """
    p, sp = perturbation, slope_perturbation
    fractions = np.array([p, p, p, sp, p, sp], dtype=np.float64)
    x = center.as_opt_array() * (1.0 + rng.uniform(-fractions, fractions))
    return bounds.clamp(DLParams.from_opt_array(x))


def fit_once(
    doys: FloatArray,
    values: FloatArray,
    initial: DLParams,
    bounds: BoundsConfig,
    max_evaluations: int = 2000,
) -> DLParams:
    """Run one box-constrained local fit from ``initial``.

    The number of residual evaluations is capped by ``max_evaluations``
    so ill-conditioned inputs (e.g. every observation on the same day)
    terminate. The best point reached is always returned, clamped into
    ``bounds`` and carrying its RMSE against ``doys``/``values``. A
    solver failure returns the starting point with its own RMSE.

    Raises:
        InsufficientDataError: If fewer than four observations are given.
    """
    if len(doys) < MIN_FIT_OBSERVATIONS:
        raise _insufficient(len(doys))

    lower = bounds.lower()
    upper = bounds.upper()
    solver_upper = np.maximum(upper, lower + _MIN_BOX_WIDTH)
    x0 = np.clip(initial.as_opt_array(), lower, upper)

    def residuals(x: FloatArray) -> FloatArray:
        return np.asarray(evaluate(DLParams.from_opt_array(x), doys)) - values

    try:
        solution = least_squares(
            residuals,
            x0,
            bounds=(lower, solver_upper),
            method="trf",
            loss="huber",
            f_scale=_HUBER_F_SCALE,
            max_nfev=max_evaluations,
        )
        x = solution.x
    except (ValueError, np.linalg.LinAlgError) as exc:
        logger.debug("Local fit failed, keeping start point: %s", exc)
        x = x0

    params = DLParams.from_opt_array(np.clip(x, lower, upper))
    return params.with_rmse(rmse_arrays(params, doys, values))


def _check_cancelled(event: threading.Event | None, done: int, total: int) -> None:
    if event is not None and event.is_set():
        raise FitCancelledError(
            what="Ensemble fit was cancelled",
            cause=f"The cancel event was set after {done} of {total} runs",
            fix="Start a new fit to obtain results",
        )


def ensemble_fit_arrays(
    doys: FloatArray,
    values: FloatArray,
    n_runs: int = 50,
    perturbation: float = 0.50,
    slope_perturbation: float = 0.10,
    *,
    bounds: BoundsConfig | None = None,
    warm_start: DLParams | None = None,
    max_evaluations: int = 2000,
    rng: np.random.Generator | None = None,
    filter_cycles: bool = True,
    cancel_event: threading.Event | None = None,
) -> EnsembleResult:
    """Array form of :func:`ensemble_fit`; see there for details.

    ``cancel_event`` is checked before every run and after the last;
    once set, remaining runs are skipped and ``FitCancelledError`` is
    raised instead of returning a result.
    """
    if n_runs < 1:
        msg = "n_runs must be >= 1"
        raise ValueError(msg)

    doys = np.asarray(doys, dtype=np.float64)
    values = np.asarray(values, dtype=np.float64)
    finite = np.isfinite(doys) & np.isfinite(values)
    doys = doys[finite]
    values = values[finite]
    if len(doys) < MIN_FIT_OBSERVATIONS:
        raise _insufficient(len(doys))

    if bounds is None:
        bounds = BoundsConfig()
    if rng is None:
        rng = np.random.default_rng()

    if filter_cycles:
        kept_doys, kept_values = filter_cycle_contamination(doys, values)
        if len(kept_doys) >= MIN_FIT_OBSERVATIONS:
            doys, values = kept_doys, kept_values

    if warm_start is not None:
        center = bounds.clamp(warm_start)
        n_global = 0
    else:
        center = initial_guess(doys, values, bounds)
        n_global = int(round((n_runs - 1) * _GLOBAL_START_FRACTION))

    runs: list[DLParams] = []
    for i in range(n_runs):
        _check_cancelled(cancel_event, i, n_runs)
        if i == 0:
            start = center
        elif i >= n_runs - n_global:
            start = bounds.sample(rng)
        else:
            start = perturb(center, bounds, rng, perturbation, slope_perturbation)
        runs.append(fit_once(doys, values, start, bounds, max_evaluations))
    _check_cancelled(cancel_event, n_runs, n_runs)

    runs.sort(key=lambda run: run.rmse)
    return EnsembleResult(best=runs[0], runs=tuple(runs), observation_count=len(doys))


def ensemble_fit(
    data: Sequence[Observation],
    n_runs: int = 50,
    perturbation: float = 0.50,
    slope_perturbation: float = 0.10,
    min_season_length: float | None = None,
    max_season_length: float | None = None,
    *,
    bounds: BoundsConfig | None = None,
    warm_start: DLParams | None = None,
    max_evaluations: int = 2000,
    rng: np.random.Generator | None = None,
    filter_cycles: bool = True,
) -> EnsembleResult:
    """Fit the double-logistic model as the best of ``n_runs`` local runs.

    Args:
        data: Observations; non-finite values are dropped.
        n_runs: Number of independent local optimizations.
        perturbation: Multiplicative start perturbation for ``mn``,
            ``delta``, ``sos`` and the season length.
        slope_perturbation: Tighter perturbation for ``rsp``/``rau``.
        min_season_length: Overrides ``bounds.min_season_length``.
        max_season_length: Overrides ``bounds.max_season_length``.
        bounds: Box constraints (defaults to ``BoundsConfig()``).
        warm_start: Centre of the start perturbations, typically the
            field-level fit when fitting a pixel.
        max_evaluations: Residual evaluations allowed per run.
        rng: Random generator; a fresh one is used when ``None``.
        filter_cycles: Trim adjacent-cycle contamination first.

    Returns:
        ``EnsembleResult`` whose ``best`` has the lowest RMSE of all runs.

    Raises:
        InsufficientDataError: If fewer than four finite observations remain.
        InconsistentBoundsError: If the season-length override inverts
            the interval.

    Example:
        >>> from phenofit import DLParams, Observation
        >>> truth = DLParams(mn=0.15, mx=0.75, sos=120, rsp=0.08, eos=250, rau=0.06)
        >>> obs = [Observation(d, truth.evaluate(d)) for d in range(60, 331, 10)]
        >>> result = ensemble_fit(obs, n_runs=5, max_season_length=200)
        >>> result.best.rmse < 1e-3
        True
    """
    if bounds is None:
        bounds = BoundsConfig()
    if min_season_length is not None or max_season_length is not None:
        bounds = bounds.with_season_length(
            min_season_length if min_season_length is not None else bounds.min_season_length,
            max_season_length if max_season_length is not None else bounds.max_season_length,
        )
    doys, values = observations_to_arrays(data)
    return ensemble_fit_arrays(
        doys,
        values,
        n_runs=n_runs,
        perturbation=perturbation,
        slope_perturbation=slope_perturbation,
        bounds=bounds,
        warm_start=warm_start,
        max_evaluations=max_evaluations,
        rng=rng,
        filter_cycles=filter_cycles,
    )


def _insufficient(count: int) -> InsufficientDataError:
    return InsufficientDataError(
        what="Too few observations to fit a double-logistic curve",
        cause=f"{count} finite observation(s); at least {MIN_FIT_OBSERVATIONS} required",
        fix="Check for insufficient data before calling the optimizer",
    )
