"""Step integrators.

A step integrator advances the state from t to t+h given the RHS and
the parameter set, returning the candidate next state and, for
embedded schemes, a per-component local error estimate. Step-size
control and stop-time handling live in the TrajectoryDriver; the
integrators here are stateless and may be shared between runs.

Schemes
-------
DormandPrince45 : adaptive embedded Runge-Kutta 4(5) (default)
RungeKutta4 : classic fixed-step RK4
ForwardEuler : fixed-step first order, for testing
SciPyIntegrator : delegates each step to scipy.integrate.solve_ivp
"""

from dataclasses import dataclass
from typing import Any, Mapping, Optional

import numpy as np

from odevents.errors import ConfigurationError, IntegrationFailure


@dataclass
class StepResult:
    """Outcome of one trial step.

    Parameters
    ----------
    y : ndarray
        Candidate state at t+h
    error : ndarray or None
        Local truncation error estimate per component, None for schemes
        without an embedded estimate
    f_new : ndarray or None
        Derivative at (t+h, y) when the scheme computes it anyway (FSAL)
    """

    y: np.ndarray
    error: Optional[np.ndarray] = None
    f_new: Optional[np.ndarray] = None


def rms_norm(x: np.ndarray) -> float:
    return float(np.sqrt(np.mean(np.square(x))))


# ============================================================================
# Adaptive embedded Runge-Kutta
# ============================================================================


class DormandPrince45:
    """Dormand-Prince embedded Runge-Kutta 4(5) pair.

    Six new derivative evaluations per step; the seventh stage is the
    derivative at the new point and is handed back for reuse as the first
    stage of the following step (first same as last). The error estimate
    is the difference between the 5th and 4th order solutions.

    References
    ----------
    Dormand, J. R. and Prince, P. J. (1980). A family of embedded
    Runge-Kutta formulae. J. Comp. Appl. Math. 6(1), 19-26.
    """

    adaptive = True
    order = 5
    error_order = 4
    n_stages = 6
    requires_h_max = False

    C = np.array([0, 1 / 5, 3 / 10, 4 / 5, 8 / 9, 1])
    A = [
        np.array([]),
        np.array([1 / 5]),
        np.array([3 / 40, 9 / 40]),
        np.array([44 / 45, -56 / 15, 32 / 9]),
        np.array([19372 / 6561, -25360 / 2187, 64448 / 6561, -212 / 729]),
        np.array(
            [9017 / 3168, -355 / 33, 46732 / 5247, 49 / 176, -5103 / 18656]
        ),
    ]
    B = np.array([35 / 384, 0, 500 / 1113, 125 / 192, -2187 / 6784, 11 / 84])
    # 5th order weights minus 4th order weights, last entry for the FSAL stage
    E = np.array(
        [
            71 / 57600,
            0,
            -71 / 16695,
            71 / 1920,
            -17253 / 339200,
            22 / 525,
            -1 / 40,
        ]
    )

    def step(
        self,
        rhs: Any,
        t: float,
        y: np.ndarray,
        h: float,
        p: Mapping[str, float],
        f0: Optional[np.ndarray] = None,
    ) -> StepResult:
        """Take one trial step of size h from (t, y)."""
        K = np.empty((self.n_stages + 1, len(y)))
        K[0] = rhs.evaluate(t, y, p) if f0 is None else f0
        for s in range(1, self.n_stages):
            dy = h * (self.A[s] @ K[:s])
            K[s] = rhs.evaluate(t + self.C[s] * h, y + dy, p)

        y_new = y + h * (self.B @ K[: self.n_stages])
        K[-1] = rhs.evaluate(t + h, y_new, p)
        error = h * (self.E @ K)
        return StepResult(y=y_new, error=error, f_new=K[-1].copy())

    @staticmethod
    def error_norm(
        error: np.ndarray,
        y: np.ndarray,
        y_new: np.ndarray,
        abs_tol: float,
        rel_tol: float,
    ) -> float:
        """Weighted RMS error norm; a step is acceptable when <= 1.

        Non-finite estimates map to inf so the step is always rejected.
        """
        scale = abs_tol + rel_tol * np.maximum(np.abs(y), np.abs(y_new))
        with np.errstate(over="ignore", invalid="ignore"):
            norm = rms_norm(error / scale)
        if not np.isfinite(norm) or not np.all(np.isfinite(y_new)):
            return np.inf
        return norm

    def select_initial_step(
        self,
        rhs: Any,
        t0: float,
        y0: np.ndarray,
        f0: np.ndarray,
        p: Mapping[str, float],
        t_bound: float,
        config: Any,
    ) -> float:
        """Automatic first step size.

        Follows Hairer, Norsett and Wanner, Solving ODEs I, sec. II.4:
        estimate h from the size of y and f, probe one Euler step, then
        scale so the leading error term is near the tolerance.
        """
        interval = abs(t_bound - t0)
        if interval == 0:
            return config.h_min

        scale = config.abs_tol + np.abs(y0) * config.rel_tol
        d0 = rms_norm(y0 / scale)
        d1 = rms_norm(f0 / scale)
        if d0 < 1e-5 or d1 < 1e-5:
            h0 = 1e-6
        else:
            h0 = 0.01 * d0 / d1
        h0 = min(h0, interval)

        y1 = y0 + h0 * f0
        f1 = rhs.evaluate(t0 + h0, y1, p)
        d2 = rms_norm((f1 - f0) / scale) / h0

        if d1 <= 1e-15 and d2 <= 1e-15:
            h1 = max(1e-6, h0 * 1e-3)
        else:
            h1 = (0.01 / max(d1, d2)) ** (1 / (self.error_order + 1))

        h = min(100 * h0, h1, interval)
        return float(min(max(h, config.h_min), config.h_max))

    def __repr__(self):
        return "DormandPrince45()"


# ============================================================================
# Simple fixed-step integrators
# ============================================================================


class ForwardEuler:
    """Simple forward Euler integrator.

    Best for prototyping and testing. Not recommended for production use.
    Steps are never rejected; the driver uses h_max as the step size.
    """

    adaptive = False
    order = 1
    requires_h_max = True

    def step(self, rhs, t, y, h, p, f0=None) -> StepResult:
        dx = rhs.evaluate(t, y, p) if f0 is None else f0
        return StepResult(y=y + h * dx)

    def __repr__(self):
        return "ForwardEuler()"


class RungeKutta4:
    """Classic 4th-order Runge-Kutta integrator.

    Good for prototyping with moderate accuracy, and as a fixed-step
    reference for the adaptive scheme.

    Examples
    --------
    >>> from odevents.core import FunctionRHS
    >>> rhs = FunctionRHS(lambda t, y, p: -p['k'] * y)
    >>> result = RungeKutta4().step(rhs, 0.0, np.array([1.0]), 0.1, {'k': 1.0})
    """

    adaptive = False
    order = 4
    requires_h_max = True

    def step(self, rhs, t, y, h, p, f0=None) -> StepResult:
        k1 = rhs.evaluate(t, y, p) if f0 is None else f0
        k2 = rhs.evaluate(t + h / 2, y + h / 2 * k1, p)
        k3 = rhs.evaluate(t + h / 2, y + h / 2 * k2, p)
        k4 = rhs.evaluate(t + h, y + h * k3, p)
        return StepResult(y=y + h / 6 * (k1 + 2 * k2 + 2 * k3 + k4))

    def __repr__(self):
        return "RungeKutta4()"


# ============================================================================
# SciPy Integrator (reference solver)
# ============================================================================


class SciPyIntegrator:
    """Wrapper for scipy.integrate.solve_ivp solvers.

    Each step is handed to solve_ivp, which sub-steps adaptively inside
    the interval. The driver treats the scheme as fixed-step, so with an
    infinite h_max one call covers a whole stop-time interval.

    Parameters
    ----------
    method : str, optional
        scipy solve_ivp method: 'RK45', 'RK23', 'DOP853', 'Radau', 'BDF',
        'LSODA'. Default is 'RK45'.
    **solve_ivp_kwargs
        Additional keyword arguments passed to solve_ivp (rtol, atol, ...)
    """

    adaptive = False
    order = None
    requires_h_max = False

    def __init__(self, method: str = "RK45", **solve_ivp_kwargs):
        self.method = method
        self.kwargs = solve_ivp_kwargs

    def step(self, rhs, t, y, h, p, f0=None) -> StepResult:
        from scipy.integrate import solve_ivp

        # Define ODE with frozen parameters
        def ode(t_local, y_local):
            return rhs.evaluate(t_local, y_local, p)

        sol = solve_ivp(ode, (t, t + h), y, method=self.method, **self.kwargs)
        if not sol.success:
            raise IntegrationFailure(
                f"solve_ivp ({self.method}) failed on [{t}, {t + h}]: "
                f"{sol.message}",
                t=t,
                y=y,
                h=h,
            )
        return StepResult(y=sol.y[:, -1])

    def __repr__(self):
        return f"SciPyIntegrator(method='{self.method}')"


SCHEMES = {
    "dopri5": DormandPrince45,
    "rk45": DormandPrince45,
    "rk4": RungeKutta4,
    "euler": ForwardEuler,
    "scipy": SciPyIntegrator,
}


def get_integrator(config: Any) -> Any:
    """Create the step integrator named by config.scheme.

    Parameters
    ----------
    config : IntegratorConfig
        Run configuration; its tolerances are passed on to solvers that
        control their own error (SciPyIntegrator).

    Returns
    -------
    integrator : object with a step() method
    """
    name = str(config.scheme).lower()
    if name not in SCHEMES:
        raise ConfigurationError(
            f"Unknown integration scheme '{config.scheme}'; "
            f"expected one of {sorted(SCHEMES)}"
        )
    if name == "scipy":
        return SciPyIntegrator(
            method=config.scipy_method,
            rtol=config.rel_tol,
            atol=config.abs_tol,
        )
    return SCHEMES[name]()
