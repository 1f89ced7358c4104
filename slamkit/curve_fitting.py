"""Fitting y = exp(a x^2 + b x + c) to noisy samples by nonlinear least squares.

Two solvers are provided: plain Gauss-Newton, which stops as soon as the
cost stops decreasing, and a damped Levenberg-Marquardt.
"""

from __future__ import annotations

import argparse
import sys
import time
from dataclasses import dataclass, field

import numpy as np

TRUE_PARAMS = (1.0, 2.0, 1.0)
INITIAL_PARAMS = (2.0, -1.0, 5.0)
NUM_POINTS = 100
SIGMA = 1.0

_LM_TAU = 1e-5
_LM_MAX_TRIALS = 10
_LM_MIN_STEP = 1e-12


@dataclass
class FitResult:
    """Outcome of a fit.

    ``cost`` is the sum of squared residuals at ``params``. ``history`` holds
    one ``(cost, update, params)`` tuple per accepted step: the cost before
    the step, the step itself, and the parameters after it.
    """

    params: np.ndarray
    cost: float
    iterations: int
    history: list = field(default_factory=list)


def generate_data(a=1.0, b=2.0, c=1.0, n=NUM_POINTS, sigma=SIGMA, seed=None):
    """Samples x = i / 100 for i < n, with Gaussian noise of std ``sigma ** 2``."""
    if n < 0:
        raise ValueError("n must not be negative")
    rng = np.random.default_rng(seed)
    x = np.arange(n) / 100.0
    y = model((a, b, c), x) + rng.normal(0.0, sigma * sigma, size=n)
    return x, y


def model(params, x):
    """exp(a x^2 + b x + c) evaluated at ``x``."""
    a, b, c = _params(params)
    xs = np.asarray(x, dtype=float)
    with np.errstate(over="ignore"):
        return np.exp(a * xs * xs + b * xs + c)


def jacobian(params, x):
    """Derivatives of the residual y - model with respect to (a, b, c), one row per x."""
    xs = np.atleast_1d(np.asarray(x, dtype=float))
    y = model(params, xs)
    with np.errstate(invalid="ignore", over="ignore"):
        return np.column_stack((-xs * xs * y, -xs * y, -y))


def _params(params):
    p = np.asarray(params, dtype=float)
    if p.shape != (3,):
        raise ValueError(f"params must have shape (3,), got {p.shape}")
    return p


def _prepare(x, y, initial, iterations):
    xs = np.asarray(x, dtype=float).ravel()
    ys = np.asarray(y, dtype=float).ravel()
    if xs.shape != ys.shape:
        raise ValueError("x and y must have the same length")
    if iterations < 0:
        raise ValueError("iterations must not be negative")
    return xs, ys, _params(initial).copy()


def _cost(x, y, params):
    with np.errstate(invalid="ignore", over="ignore"):
        err = y - model(params, x)
        return float(err @ err)


def gauss_newton(x, y, initial=INITIAL_PARAMS, iterations=100, inv_sigma=1.0):
    """Gauss-Newton iterations; stops when the cost no longer decreases."""
    xs, ys, params = _prepare(x, y, initial, iterations)
    weight = inv_sigma * inv_sigma
    history = []
    last_cost = 0.0
    for step in range(iterations):
        with np.errstate(invalid="ignore", over="ignore"):
            err = ys - model(params, xs)
            jac = jacobian(params, xs)
            hessian = weight * jac.T @ jac
            bias = -weight * jac.T @ err
            cost = float(err @ err)
        try:
            dx = np.linalg.solve(hessian, bias)
        except np.linalg.LinAlgError:
            break
        if not np.all(np.isfinite(dx)):
            break
        if step > 0 and cost >= last_cost:
            break
        params = params + dx
        last_cost = cost
        history.append((cost, dx, params.copy()))
    return FitResult(params, _cost(xs, ys, params), len(history), history)


def levenberg_marquardt(x, y, initial=INITIAL_PARAMS, iterations=10, inv_sigma=1.0):
    """Levenberg-Marquardt with adaptive damping."""
    xs, ys, params = _prepare(x, y, initial, iterations)
    weight = inv_sigma * inv_sigma
    history = []
    damping = None
    nu = 2.0
    for _ in range(iterations):
        with np.errstate(invalid="ignore", over="ignore"):
            err = ys - model(params, xs)
            jac = jacobian(params, xs)
            hessian = weight * jac.T @ jac
            gradient = -weight * jac.T @ err
            chi2 = weight * float(err @ err)
        if not (np.all(np.isfinite(hessian)) and np.isfinite(chi2)):
            break
        if damping is None:
            damping = _LM_TAU * float(np.max(np.diag(hessian)))
        accepted = None
        for _ in range(_LM_MAX_TRIALS):
            try:
                dx = np.linalg.solve(hessian + damping * np.eye(3), gradient)
            except np.linalg.LinAlgError:
                damping *= nu
                nu *= 2.0
                continue
            candidate = params + dx
            new_chi2 = weight * _cost(xs, ys, candidate)
            predicted = float(dx @ (damping * dx + gradient))
            rho = (chi2 - new_chi2) / predicted if predicted > 0 else -1.0
            if np.isfinite(new_chi2) and rho > 0:
                damping *= max(1.0 / 3.0, 1.0 - (2.0 * rho - 1.0) ** 3)
                nu = 2.0
                accepted = dx
                break
            damping *= nu
            nu *= 2.0
        if accepted is None:
            break
        history.append((chi2 / weight if weight else 0.0, accepted, params + accepted))
        params = params + accepted
        if np.linalg.norm(accepted) < _LM_MIN_STEP * (np.linalg.norm(params) + _LM_MIN_STEP):
            break
    return FitResult(params, _cost(xs, ys, params), len(history), history)


def _format(values):
    return " ".join(f"{v:g}" for v in values)


def main(argv=None):
    parser = argparse.ArgumentParser(description="Fit y = exp(a x^2 + b x + c) to noisy samples.")
    parser.add_argument(
        "--method",
        choices=("gauss-newton", "levenberg-marquardt"),
        default="gauss-newton",
    )
    parser.add_argument("--iterations", type=int, default=None)
    parser.add_argument("--seed", type=int, default=None)
    args = parser.parse_args(argv)

    x, y = generate_data(*TRUE_PARAMS, n=NUM_POINTS, sigma=SIGMA, seed=args.seed)
    inv_sigma = 1.0 / SIGMA
    start = time.perf_counter()
    if args.method == "gauss-newton":
        iterations = 100 if args.iterations is None else args.iterations
        result = gauss_newton(x, y, INITIAL_PARAMS, iterations, inv_sigma)
    else:
        iterations = 10 if args.iterations is None else args.iterations
        result = levenberg_marquardt(x, y, INITIAL_PARAMS, iterations, inv_sigma)
    elapsed = time.perf_counter() - start

    for cost, update, params in result.history:
        print(
            f"total cost: {cost:g}, \t\tupdate: {_format(update)}"
            f"\t\testimated params: {_format(params)}"
        )
    print(f"solve time cost = {elapsed:g} seconds. ")
    print(f"estimated a,b,c = {_format(result.params)}")
    return 0


if __name__ == "__main__":
    sys.exit(main())