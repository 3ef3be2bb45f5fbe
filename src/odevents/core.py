"""Core integration engine and protocols.

This module provides the event-aware TrajectoryDriver, the integrate()
entry point and the small protocols it works against. A run advances
the state through an adaptive step integrator between consecutive stop
times (output times and event times), applies scheduled events exactly
at their trigger times and records the state at each requested output
time.
"""

import bisect
import dataclasses
import logging
import threading
import time as _time
from dataclasses import dataclass, field
from typing import Any, Callable, List, Mapping, Optional, Protocol, Sequence

import numpy as np
import pandas as pd

from odevents.errors import (
    ConfigurationError,
    IntegrationCancelled,
    IntegrationFailure,
    IntegrationTimeout,
)
from odevents.events import (
    Event,
    EventSchedule,
    apply_events,
    as_schedule,
    times_equal,
)
from odevents.integrators import SCHEMES, get_integrator
from odevents.results import RunStats, Trajectory
from odevents.state import StateVector, as_state

log = logging.getLogger(__name__)


class RHSFunction(Protocol):
    """Protocol for the right-hand side of an ODE system.

    Implemented by user code (see FunctionRHS) or by compiled models
    from a ModelProvider. Must be pure: it may be evaluated several
    times per step and concurrently from independent runs.
    """

    def evaluate(self, t: float, y: np.ndarray, p: Mapping[str, float]) -> Any:
        """Compute dy/dt = f(t, y, p).

        Parameters
        ----------
        t : float
            Current time
        y : ndarray
            Current state values, in state order
        p : dict
            Parameter set

        Returns
        -------
        dy : array-like
            Derivatives, same length as y
        """
        ...


class FunctionRHS:
    """Adapts a plain function f(t, y, p) to the RHSFunction protocol.

    Parameters
    ----------
    func : callable
        Function f(t, y, p) -> dy/dt

    Examples
    --------
    >>> rhs = FunctionRHS(lambda t, y, p: -p['k'] * y)
    >>> rhs.evaluate(0.0, np.array([2.0]), {'k': 0.5})
    array([-1.])
    """

    def __init__(self, func: Callable):
        self.func = func

    def evaluate(self, t, y, p):
        return np.asarray(self.func(t, y, p), dtype=float)

    def __repr__(self):
        name = getattr(self.func, "__name__", type(self.func).__name__)
        return f"FunctionRHS({name})"


def as_rhs(obj: Any) -> Any:
    """Return obj if it has an evaluate() method, else wrap a callable."""
    if hasattr(obj, "evaluate"):
        return obj
    if callable(obj):
        return FunctionRHS(obj)
    raise ConfigurationError(
        f"RHS must be callable or provide evaluate(t, y, p), got {obj!r}"
    )


@dataclass(frozen=True)
class IntegratorConfig:
    """Configuration for one integration run.

    Read-only after construction.

    Parameters
    ----------
    scheme : str, default='dopri5'
        Stepping scheme: 'dopri5' (adaptive Runge-Kutta 4(5)), 'rk4',
        'euler' (fixed-step, require a finite h_max) or 'scipy'
    abs_tol, rel_tol : float
        Absolute and relative error bounds for the step controller
    h_min, h_max : float
        Step size bounds. A step forced shorter than h_min by a stop
        time is allowed; a rejected step at h_min fails the run.
    h_init : float, optional
        First trial step. Selected automatically if None.
    safety : float, default=0.9
        Step controller safety factor
    min_factor, max_factor : float
        Bounds on the step size change after one step
    max_steps : int, optional
        Budget on attempted steps (accepted plus rejected)
    timeout : float, optional
        Wall-clock budget in seconds
    time_tol : float, default=1e-9
        Relative tolerance under which two times are the same instant
    scipy_method : str, default='RK45'
        solve_ivp method used by the 'scipy' scheme

    Examples
    --------
    >>> config = IntegratorConfig(abs_tol=1e-10, rel_tol=1e-8, h_max=0.5)
    """

    scheme: str = "dopri5"
    abs_tol: float = 1e-8
    rel_tol: float = 1e-6
    h_min: float = 1e-10
    h_max: float = np.inf
    h_init: Optional[float] = None
    safety: float = 0.9
    min_factor: float = 0.2
    max_factor: float = 10.0
    max_steps: Optional[int] = None
    timeout: Optional[float] = None
    time_tol: float = 1e-9
    scipy_method: str = "RK45"

    def __post_init__(self):
        """Validate configuration."""
        scheme = str(self.scheme).lower()
        if scheme not in SCHEMES:
            raise ConfigurationError(
                f"Unknown integration scheme '{self.scheme}'; "
                f"expected one of {sorted(SCHEMES)}"
            )
        if self.abs_tol <= 0 or self.rel_tol <= 0:
            raise ConfigurationError(
                f"Tolerances must be positive, got abs_tol={self.abs_tol}, "
                f"rel_tol={self.rel_tol}"
            )
        if not 0 < self.h_min <= self.h_max:
            raise ConfigurationError(
                f"Need 0 < h_min <= h_max, got h_min={self.h_min}, "
                f"h_max={self.h_max}"
            )
        if SCHEMES[scheme].requires_h_max and not np.isfinite(self.h_max):
            raise ConfigurationError(
                f"Fixed-step scheme '{self.scheme}' requires a finite h_max"
            )
        if self.h_init is not None and self.h_init <= 0:
            raise ConfigurationError(f"h_init must be positive, got {self.h_init}")
        if not 0 < self.safety <= 1:
            raise ConfigurationError(f"safety must be in (0, 1], got {self.safety}")
        if not 0 < self.min_factor < 1 < self.max_factor:
            raise ConfigurationError(
                "Need 0 < min_factor < 1 < max_factor, got "
                f"{self.min_factor}, {self.max_factor}"
            )
        if self.max_steps is not None and self.max_steps < 1:
            raise ConfigurationError(
                f"max_steps must be at least 1, got {self.max_steps}"
            )
        if self.timeout is not None and self.timeout <= 0:
            raise ConfigurationError(f"timeout must be positive, got {self.timeout}")
        if self.time_tol < 0:
            raise ConfigurationError(
                f"time_tol must be non-negative, got {self.time_tol}"
            )


class CancellationToken:
    """Thread-safe flag used to abort a run at the next stop time.

    Examples
    --------
    >>> token = CancellationToken()
    >>> token.cancel()
    >>> token.cancelled
    True
    """

    def __init__(self):
        self._event = threading.Event()

    def cancel(self):
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def __repr__(self):
        return f"CancellationToken(cancelled={self.cancelled})"


class _CountingRHS:
    """Counts evaluations and normalizes the RHS output to a float array."""

    def __init__(self, rhs, n_dims: int, stats: RunStats):
        self.rhs = rhs
        self.n_dims = n_dims
        self.stats = stats

    def evaluate(self, t, y, p):
        self.stats.n_rhs_evals += 1
        dy = np.asarray(self.rhs.evaluate(t, y.copy(), p), dtype=float)
        return dy.reshape(-1)


@dataclass
class _Stop:
    """A time the driver must land on exactly."""

    time: float
    outputs: List[float] = field(default_factory=list)
    events: List[Event] = field(default_factory=list)


def check_output_times(output_times: Any) -> np.ndarray:
    """Validate output times: non-empty, 1-D, finite, non-decreasing.

    Raises
    ------
    ConfigurationError
        If any condition does not hold
    """
    try:
        t_out = np.asarray(output_times, dtype=float)
    except (TypeError, ValueError) as err:
        raise ConfigurationError(f"Output times must be numeric: {err}") from err
    if t_out.ndim != 1 or len(t_out) == 0:
        raise ConfigurationError(
            f"Output times must be a non-empty 1-D sequence, got shape "
            f"{t_out.shape}"
        )
    if not np.all(np.isfinite(t_out)):
        raise ConfigurationError("Output times must be finite")
    decreasing = np.flatnonzero(np.diff(t_out) < 0)
    if len(decreasing) > 0:
        i = decreasing[0]
        raise ConfigurationError(
            f"Output times must be ascending: t[{i + 1}]={t_out[i + 1]} < "
            f"t[{i}]={t_out[i]}"
        )
    return t_out


def build_stop_times(
    output_times: np.ndarray, schedule: EventSchedule, tol: float
) -> List[_Stop]:
    """Union of output times and event times, ascending and deduplicated.

    Times within the snapping tolerance are merged onto one stop; an
    event time that snaps onto an output time takes the output time's
    value. Requested output times are kept per stop, duplicates included.
    """
    stops: List[_Stop] = []
    for t in output_times:
        t = float(t)
        if stops and times_equal(stops[-1].time, t, tol):
            stops[-1].outputs.append(t)
        else:
            stops.append(_Stop(time=t, outputs=[t]))

    times = [stop.time for stop in stops]
    for batch in schedule.batches(tol):
        i = bisect.bisect_left(times, batch.time)
        for j in (i - 1, i):
            if 0 <= j < len(stops) and times_equal(stops[j].time, batch.time, tol):
                stops[j].events.extend(batch.events)
                break
        else:
            stops.insert(i, _Stop(time=batch.time, events=list(batch.events)))
            times.insert(i, batch.time)
    return stops


class TrajectoryDriver:
    """Event-aware trajectory driver.

    The driver handles:
    - Building the stop times (output times plus event times)
    - Adaptive stepping between stop times, never crossing one
    - Applying same-time events as one atomic transition
    - Recording the post-event state at each requested output time
    - Cancellation and step/time budgets

    Parameters
    ----------
    integrator : step integrator
        Object with step(rhs, t, y, h, p, f0) -> StepResult, e.g.
        DormandPrince45()
    config : IntegratorConfig, optional
        Tolerances and step bounds. Defaults to IntegratorConfig().

    Examples
    --------
    >>> driver = TrajectoryDriver(DormandPrince45(), IntegratorConfig())
    >>> traj = driver.run(rhs, {'y': 1.0}, {'k': 0.5}, [0.0, 1.0, 2.0])
    """

    def __init__(self, integrator: Any, config: Optional[IntegratorConfig] = None):
        self.integrator = integrator
        self.config = config or IntegratorConfig()
        if not integrator.adaptive and not np.isfinite(self.config.h_max):
            if getattr(integrator, "requires_h_max", True):
                raise ConfigurationError(
                    f"{integrator!r} is fixed-step and requires a finite h_max"
                )

    def run(
        self,
        rhs: Any,
        initial_state: Any,
        parameters: Optional[Mapping[str, float]],
        output_times: Sequence[float],
        events: Any = None,
        cancel: Optional[CancellationToken] = None,
    ) -> Trajectory:
        """Integrate and record the state at every output time.

        Parameters
        ----------
        rhs : RHSFunction or callable
            Right-hand side f(t, y, p)
        initial_state : StateVector, dict or array-like
            State at the first output time
        parameters : dict
            Parameter set, constant for the whole run
        output_times : array-like
            Ascending output times; the first is t0 and the last is tN
        events : EventSchedule or sequence of Event, optional
            Events sorted by time, all within [t0, tN]
        cancel : CancellationToken, optional
            Checked at every stop-time boundary

        Returns
        -------
        trajectory : Trajectory
            One entry per output time

        Raises
        ------
        ConfigurationError
            Invalid inputs, detected before any stepping
        UnknownComponent, InvalidEventOperation
            Malformed event, at the time it is applied
        IntegrationFailure
            Step size underflow
        IntegrationTimeout
            Budget exceeded or run cancelled
        """
        config = self.config
        tol = config.time_tol

        # Validation (no RHS evaluation until all of it passes)
        t_out = check_output_times(output_times)
        rhs = as_rhs(rhs)
        state = as_state(initial_state, names=getattr(rhs, "state_names", None))
        if parameters is None:
            parameters = {}
        if not isinstance(parameters, Mapping):
            raise ConfigurationError(
                f"Parameters must be a mapping, got {type(parameters).__name__}"
            )
        params = dict(parameters)
        if hasattr(rhs, "check_parameters"):
            rhs.check_parameters(params)
        schedule = as_schedule(events)
        t0, tN = float(t_out[0]), float(t_out[-1])
        schedule.check_bounds(t0, tN, tol)
        stops = build_stop_times(t_out, schedule, tol)

        stats = RunStats()
        counted = _CountingRHS(rhs, state.n_dims, stats)
        names = state.names
        y = state.values
        f = counted.evaluate(t0, y, params)
        if f.shape != y.shape:
            raise ConfigurationError(
                f"RHS returned {f.size} derivative(s) for a state of "
                f"dimension {len(y)}"
            )

        log.info(
            "Integrating %d state(s) over [%g, %g]: %d output time(s), "
            "%d event(s), scheme=%s",
            len(y),
            t0,
            tN,
            len(t_out),
            len(schedule),
            config.scheme,
        )

        deadline = None
        if config.timeout is not None:
            deadline = _time.monotonic() + config.timeout

        times: List[float] = []
        rows: List[np.ndarray] = []
        t = t0
        h = config.h_init
        if h is not None:
            h = min(config.h_max, max(config.h_min, h))

        for i, stop in enumerate(stops):
            if cancel is not None and cancel.cancelled:
                raise IntegrationCancelled(
                    f"Run cancelled at t={t}", t=t, y=y.copy()
                )

            if i > 0:
                y, f, h = self._advance(
                    counted, params, t, y, f, stop.time, h, stats, deadline
                )
                t = stop.time

            if stop.events:
                new_state = apply_events(StateVector(names, y), stop.events)
                y = new_state.values
                f = None
                stats.n_events += len(stop.events)

            for t_req in stop.outputs:
                times.append(t_req)
                rows.append(y.copy())

        log.info(
            "Integration finished: %d step(s), %d rejected, %d RHS evaluation(s)",
            stats.n_steps,
            stats.n_rejected,
            stats.n_rhs_evals,
        )

        states = pd.DataFrame(
            np.array(rows), index=pd.Index(times, name="time"), columns=list(names)
        )
        return Trajectory(time=np.array(times), states=states, stats=stats, config=config)

    def _advance(self, rhs, p, t, y, f, t_b, h, stats, deadline):
        """Step from t to exactly t_b.

        Returns the state at t_b, the derivative there (or None) and the
        step size proposal for the next interval.
        """
        config = self.config
        tol = config.time_tol
        integrator = self.integrator

        while not times_equal(t, t_b, tol):
            self._check_budget(t, y, stats, deadline)
            if f is None:
                f = rhs.evaluate(t, y, p)
            remaining = t_b - t

            if not integrator.adaptive:
                h_step = min(config.h_max, remaining)
                if times_equal(t + h_step, t_b, tol):
                    h_step = remaining
                result = integrator.step(rhs, t, y, h_step, p, f)
                if not np.all(np.isfinite(result.y)):
                    raise IntegrationFailure(
                        f"Non-finite state after step from t={t} with h={h_step}",
                        t=t,
                        y=y.copy(),
                        h=h_step,
                    )
                stats.n_steps += 1
                t = t_b if h_step == remaining else t + h_step
                y = result.y
                f = result.f_new
                continue

            if h is None:
                h = integrator.select_initial_step(
                    rhs, t, y, f, p, t_b, config
                )
            h_step = min(h, remaining)
            if times_equal(t + h_step, t_b, tol):
                h_step = remaining

            result = integrator.step(rhs, t, y, h_step, p, f)
            err = integrator.error_norm(
                result.error, y, result.y, config.abs_tol, config.rel_tol
            )

            if err <= 1:
                stats.n_steps += 1
                if err == 0:
                    factor = config.max_factor
                else:
                    factor = config.safety * err ** (-1 / integrator.order)
                    factor = min(config.max_factor, max(config.min_factor, factor))
                if h_step < h:
                    # step was shortened to land on t_b; keep the proposal
                    h = max(h, h_step * factor)
                else:
                    h = h_step * factor
                h = min(config.h_max, max(config.h_min, h))
                t = t_b if h_step == remaining else t + h_step
                y = result.y
                f = result.f_new
            else:
                stats.n_rejected += 1
                if h_step <= config.h_min:
                    raise IntegrationFailure(
                        f"Step size underflow at t={t}: error norm {err:.3g} "
                        f"with h={h_step:.3g} <= h_min={config.h_min:.3g}",
                        t=t,
                        y=y.copy(),
                        h=h_step,
                    )
                if np.isfinite(err):
                    factor = config.safety * err ** (-1 / integrator.order)
                    factor = min(1.0, max(config.min_factor, factor))
                else:
                    factor = config.min_factor
                h = max(config.h_min, h_step * factor)
                log.debug(
                    "Rejected step at t=%g (error norm %.3g), retrying with h=%.3g",
                    t,
                    err,
                    h,
                )

        return y, f, h

    def _check_budget(self, t, y, stats, deadline):
        max_steps = self.config.max_steps
        if max_steps is not None and stats.n_attempted >= max_steps:
            raise IntegrationTimeout(
                f"Step budget of {max_steps} exhausted at t={t}",
                t=t,
                y=y.copy(),
            )
        if deadline is not None and _time.monotonic() > deadline:
            raise IntegrationTimeout(
                f"Wall-clock budget of {self.config.timeout} s exceeded at t={t}",
                t=t,
                y=y.copy(),
            )

    def __repr__(self):
        return f"TrajectoryDriver(integrator={self.integrator!r})"


def integrate(
    rhs: Any,
    initial_state: Any,
    parameters: Optional[Mapping[str, float]],
    output_times: Sequence[float],
    events: Any = None,
    config: Optional[IntegratorConfig] = None,
    cancel: Optional[CancellationToken] = None,
    **config_overrides,
) -> Trajectory:
    """Simulate an ODE system with scheduled events.

    Parameters
    ----------
    rhs : RHSFunction or callable
        Right-hand side f(t, y, p) -> dy/dt
    initial_state : StateVector, dict or array-like
        State at output_times[0]
    parameters : dict
        Parameter set
    output_times : array-like
        Ascending output times (t0 first, tN last)
    events : EventSchedule or sequence of Event, optional
        Events sorted by time
    config : IntegratorConfig, optional
        Solver configuration
    cancel : CancellationToken, optional
        Aborts the run at the next stop time when cancelled
    **config_overrides
        IntegratorConfig fields overriding config (e.g. rel_tol=1e-8)

    Returns
    -------
    trajectory : Trajectory

    Examples
    --------
    >>> def decay(t, y, p):
    ...     return -p['k'] * y
    >>> traj = integrate(decay, {'y': 1.0}, {'k': 0.5}, [0.0, 1.0, 2.0],
    ...                  events=[Event(1.5, 'y', 'add', 1.0)])
    """
    if config is None:
        config = IntegratorConfig(**config_overrides)
    elif config_overrides:
        config = dataclasses.replace(config, **config_overrides)
    driver = TrajectoryDriver(get_integrator(config), config)
    return driver.run(rhs, initial_state, parameters, output_times, events, cancel)
