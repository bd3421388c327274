"""Double-logistic phenology curve model.

Pure computation module: numpy arrays and parameter records in,
floats and arrays out. No fitting, no configuration.

The curve is

    f(t) = mn + (mx - mn) * (expit(rsp * (t - sos)) - expit(rau * (t - eos)))

with a green-up logistic centred on ``sos`` and a senescence logistic
centred on ``eos``. ``expit`` keeps the tails finite for any ``t``.
"""

from __future__ import annotations

import math
from collections.abc import Sequence
from dataclasses import dataclass, replace
from typing import Any

import numpy as np
from scipy.special import expit

from phenofit._types import FloatArray, Observation, observations_to_arrays

PARAMETER_NAMES: tuple[str, ...] = (
    "mn",
    "delta",
    "sos",
    "rsp",
    "season_length",
    "rau",
)
"""Tracked parameters in optimizer order ``[mn, delta, sos, rsp, season_length, rau]``."""


@dataclass(frozen=True)
class DLParams:
    """Parameters of one double-logistic fit.

    Instances are immutable; ensembles compare them by ``rmse``.

    Attributes:
        mn: Baseline (winter) minimum.
        mx: Seasonal maximum; ``delta = mx - mn`` is the amplitude.
        sos: Start of season, day of year of the green-up inflection.
        rsp: Green-up rate (> 0).
        eos: End of season, day of year of the senescence inflection.
        rau: Senescence rate (> 0).
        rmse: Root-mean-square residual against the fitted observations.

    Example:
        >>> p = DLParams(mn=0.1, mx=0.7, sos=120, rsp=0.08, eos=250, rau=0.06)
        >>> p.season_length
        130
        >>> round(p.evaluate(1000.0), 3)
        0.1
    """

    mn: float
    mx: float
    sos: float
    rsp: float
    eos: float
    rau: float
    rmse: float = 0.0

    @property
    def delta(self) -> float:
        """Amplitude ``mx - mn``."""
        return self.mx - self.mn

    @property
    def season_length(self) -> float:
        """Season length in days ``eos - sos``."""
        return self.eos - self.sos

    def evaluate(self, t: Any) -> Any:
        """Evaluate the curve at day(s) of year ``t``; see :func:`evaluate`."""
        return evaluate(self, t)

    def curve(self, doys: Sequence[float] | FloatArray) -> FloatArray:
        """Evaluate the curve at every day of year in ``doys``."""
        return np.asarray(evaluate(self, np.asarray(doys, dtype=np.float64)))

    def parameter(self, name: str) -> float:
        """Return a tracked parameter (or ``rmse``) by name."""
        if name not in PARAMETER_NAMES and name != "rmse":
            msg = f"Unknown phenology parameter: {name!r}"
            raise KeyError(msg)
        return float(getattr(self, name))

    def as_opt_array(self) -> FloatArray:
        """Reparameterized vector ``[mn, delta, sos, rsp, season_length, rau]``."""
        return np.array(
            [self.mn, self.delta, self.sos, self.rsp, self.season_length, self.rau],
            dtype=np.float64,
        )

    @classmethod
    def from_opt_array(cls, x: Sequence[float] | FloatArray, rmse: float = 0.0) -> DLParams:
        """Build parameters from a reparameterized optimizer vector."""
        mn, delta, sos, rsp, season_length, rau = (float(v) for v in x)
        return cls(
            mn=mn,
            mx=mn + delta,
            sos=sos,
            rsp=rsp,
            eos=sos + season_length,
            rau=rau,
            rmse=rmse,
        )

    def with_rmse(self, rmse: float) -> DLParams:
        """Return a copy carrying a new ``rmse``."""
        return replace(self, rmse=float(rmse))


def evaluate(params: DLParams, t: Any) -> Any:
    """Evaluate the double-logistic curve.

    Works for ``t`` far outside ``[sos, eos]``: the logistic tails
    saturate at ``mn`` instead of overflowing.

    Args:
        params: Curve parameters.
        t: Day of year, scalar or array.

    Returns:
        ``float`` for scalar input, numpy array otherwise.
    """
    t_arr = np.asarray(t, dtype=np.float64)
    spring = expit(params.rsp * (t_arr - params.sos))
    autumn = expit(params.rau * (t_arr - params.eos))
    value = params.mn + params.delta * (spring - autumn)
    if np.ndim(value) == 0:
        return float(value)
    return value


def rmse_arrays(params: DLParams, doys: FloatArray, values: FloatArray) -> float:
    """Root-mean-square residual for parallel ``doys`` / ``values`` arrays.

    Returns ``inf`` for empty input.
    """
    if len(doys) == 0:
        return math.inf
    diff = evaluate(params, doys) - values
    return float(np.sqrt(np.mean(np.square(diff))))


def residual(params: DLParams, observations: Sequence[Observation]) -> float:
    """Root-mean-square of ``evaluate(params, doy) - value`` over observations."""
    doys, values = observations_to_arrays(observations)
    return rmse_arrays(params, doys, values)
