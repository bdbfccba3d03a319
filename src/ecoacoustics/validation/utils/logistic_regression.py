"""
Logistic regression utilities for confidence threshold calibration.

This module fits the two-parameter binomial GLM  P(valid) = logistic(b0 + b1 * x)
with statsmodels and predicts on the link scale with standard errors taken
from the fitted coefficient covariance.
"""

import warnings
from dataclasses import dataclass
from typing import Tuple

import numpy as np
import statsmodels.api as sm
from scipy.special import expit
from statsmodels.tools.sm_exceptions import ConvergenceWarning, PerfectSeparationWarning

from ... import config
from ...exceptions import DataError


@dataclass
class LogisticFit:
    """Fitted logistic regression of a binary response on one predictor."""
    results: object
    converged: bool
    n_obs: int

    @property
    def intercept(self) -> float:
        return float(self.results.params[0])

    @property
    def slope(self) -> float:
        return float(self.results.params[1])

    @property
    def deviance(self) -> float:
        return float(self.results.deviance)

    @property
    def null_deviance(self) -> float:
        return float(self.results.null_deviance)

    def predict_link(self, x) -> Tuple[np.ndarray, np.ndarray]:
        """
        Predict on the link (log-odds) scale.

        Args:
            x: Predictor values

        Returns:
            Tuple of (linear predictor, standard error of the linear predictor)
        """
        exog = sm.add_constant(np.asarray(x, dtype=float).ravel(), has_constant='add')
        frame = self.results.get_prediction(exog, which='linear').summary_frame()
        return frame['predicted'].to_numpy(), frame['se'].to_numpy()

    def predict_proba(self, x) -> np.ndarray:
        """Predicted probability of a valid detection."""
        fit, _ = self.predict_link(x)
        return expit(fit)


def fit_logistic(x, y, max_iter: int = config.GLM_MAX_ITER,
                 tol: float = config.GLM_TOLERANCE) -> LogisticFit:
    """
    Fit a logistic regression of y on x.

    Perfectly separated data still return a fit; it is flagged with
    converged=False since the coefficients then diverge.

    Args:
        x: Predictor values
        y: Binary responses (0/1)
        max_iter: Maximum number of fitting iterations
        tol: Convergence tolerance of the fit

    Returns:
        LogisticFit wrapping the statsmodels results
    """
    x = np.asarray(x, dtype=float).ravel()
    y = np.asarray(y, dtype=float).ravel()

    if x.size != y.size:
        raise ValueError("x and y must have the same length")
    if x.size < 2:
        raise DataError("At least two observations are required to fit a logistic regression")
    if not np.all(np.isfinite(x)):
        raise DataError("Predictor values must be finite")
    if np.ptp(x) == 0:
        raise DataError("No variation in confidence scores - the slope is not identifiable")
    if np.unique(y).size < 2:
        raise DataError("No variation in validation data - all values are the same")

    model = sm.GLM(y, sm.add_constant(x, has_constant='add'), family=sm.families.Binomial())
    with warnings.catch_warnings(record=True) as caught:
        warnings.simplefilter('always')
        results = model.fit(maxiter=max_iter, tol=tol)

    separated = False
    for caught_warning in caught:
        if issubclass(caught_warning.category, (PerfectSeparationWarning, ConvergenceWarning)):
            separated = True
        else:
            warnings.warn(caught_warning.message, caught_warning.category, stacklevel=2)
    # fitted probabilities equal to the 0/1 responses mean the classes are separated
    if np.allclose(results.fittedvalues, y):
        separated = True

    return LogisticFit(
        results=results,
        converged=bool(results.converged) and not separated,
        n_obs=int(x.size),
    )
