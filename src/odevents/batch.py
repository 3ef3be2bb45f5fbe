"""Independent runs in parallel.

Runs share nothing mutable: each worker gets its own copy of the initial
state, the event schedule and the configuration. The RHS must be safe
to evaluate concurrently; with use_processes=True it must also be
picklable (module-level functions or compiled built-in models).
"""

import logging
from concurrent.futures import ProcessPoolExecutor, ThreadPoolExecutor
from typing import Any, List, Mapping, Optional, Sequence

from odevents.core import IntegratorConfig, integrate
from odevents.events import as_schedule
from odevents.results import Trajectory
from odevents.state import as_state

log = logging.getLogger(__name__)


def _run_one(args) -> Trajectory:
    rhs, initial_state, parameters, output_times, events, config = args
    return integrate(rhs, initial_state, parameters, output_times, events, config)


def run_batch(
    rhs: Any,
    initial_state: Any,
    parameter_sets: Sequence[Mapping[str, float]],
    output_times: Sequence[float],
    events: Any = None,
    config: Optional[IntegratorConfig] = None,
    max_workers: Optional[int] = None,
    use_processes: bool = False,
) -> List[Trajectory]:
    """Integrate the same system once per parameter set.

    Parameters
    ----------
    rhs : RHSFunction or callable
        Right-hand side shared by all runs
    initial_state : StateVector, dict or array-like
        Initial state for every run
    parameter_sets : sequence of dict
        One parameter set per run
    output_times : array-like
        Output times for every run
    events : EventSchedule or sequence of Event, optional
        Event schedule for every run
    config : IntegratorConfig, optional
        Solver configuration for every run
    max_workers : int, optional
        Pool size (executor default if None)
    use_processes : bool, default=False
        Use a process pool instead of a thread pool

    Returns
    -------
    trajectories : list of Trajectory
        In the order of parameter_sets. The first failing run's error is
        raised.

    Examples
    --------
    >>> model = get_model('two_compartment_pk')
    >>> trajs = run_batch(model, model.initial_state(), [p1, p2], t_out)
    """
    config = config or IntegratorConfig()
    schedule = as_schedule(events)
    state = as_state(initial_state, names=getattr(rhs, "state_names", None))
    jobs = [
        (rhs, state.copy(), dict(params), list(output_times), schedule, config)
        for params in parameter_sets
    ]
    if not jobs:
        return []

    executor_cls = ProcessPoolExecutor if use_processes else ThreadPoolExecutor
    log.info(
        "Running %d independent run(s) with %s", len(jobs), executor_cls.__name__
    )
    with executor_cls(max_workers=max_workers) as executor:
        return list(executor.map(_run_one, jobs))
