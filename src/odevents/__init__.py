"""Event-aware ODE integration engine.

This package integrates a user-supplied ODE right-hand side through an
adaptive embedded Runge-Kutta 4(5) integrator, applies scheduled
discrete events (additive or multiplicative changes to single state
components) at their exact trigger times, and reports the trajectory at
the caller's output times regardless of where the internal steps fall.

Main Components
---------------
integrate : Core entry point
TrajectoryDriver : Stepping, event and recording orchestrator
IntegratorConfig : Scheme, tolerances and step bounds
Trajectory : Results container (pandas DataFrame of states)

Events
------
Event, EventOperation, EventSchedule : Scheduled state modifications
apply_events : Event applicator
read_event_table, dosing_schedule, merge_schedules : Schedule builders

Integrators
-----------
DormandPrince45 : Adaptive embedded Runge-Kutta 4(5)
RungeKutta4, ForwardEuler : Fixed-step schemes
SciPyIntegrator : scipy.integrate.solve_ivp wrapper

Models
------
ModelDefinition, ModelProvider : RHS definitions and compile cache
get_model : Built-in models (two_compartment_pk, damped_oscillator, ...)

Examples
--------
>>> import numpy as np
>>> from odevents import dosing_schedule, get_model, integrate
>>> model = get_model('two_compartment_pk')
>>> doses = dosing_schedule('y_gut', 5.0, start=10.0, interval=10.0, count=7)
>>> params = {'CL': 10, 'Q': 13, 'V_cent': 20, 'V_peri': 73, 'ka': 3}
>>> traj = integrate(model, model.initial_state(), params,
...                  np.arange(0, 150.005, 0.005), events=doses)
>>> df = traj.to_dataframe()
"""

# Core engine
from odevents.core import (
    CancellationToken,
    FunctionRHS,
    IntegratorConfig,
    RHSFunction,
    TrajectoryDriver,
    integrate,
)

# Errors
from odevents.errors import (
    ConfigurationError,
    EventError,
    IntegrationCancelled,
    IntegrationFailure,
    IntegrationTimeout,
    InvalidEventOperation,
    OdeventsError,
    UnknownComponent,
)

# Events
from odevents.events import (
    Event,
    EventBatch,
    EventOperation,
    EventSchedule,
    apply_event,
    apply_events,
    dosing_schedule,
    merge_schedules,
    read_event_table,
)

# Integrators
from odevents.integrators import (
    DormandPrince45,
    ForwardEuler,
    RungeKutta4,
    SciPyIntegrator,
    StepResult,
    get_integrator,
)

# Models
from odevents.models import (
    CompiledModel,
    ModelDefinition,
    ModelProvider,
    define_model,
    fingerprint,
)
from odevents.library import MODELS, get_model

# Results and state
from odevents.results import RunStats, Trajectory
from odevents.state import StateVector

# Batch runs and configuration
from odevents.batch import run_batch
from odevents.setup import (
    RunSpec,
    load_run_spec,
    make_output_times,
    read_param_values,
    read_param_values_pint,
    to_parameter_set,
)

__all__ = [
    # Core
    "integrate",
    "TrajectoryDriver",
    "IntegratorConfig",
    "RHSFunction",
    "FunctionRHS",
    "CancellationToken",
    # Errors
    "OdeventsError",
    "ConfigurationError",
    "EventError",
    "UnknownComponent",
    "InvalidEventOperation",
    "IntegrationFailure",
    "IntegrationTimeout",
    "IntegrationCancelled",
    # Events
    "Event",
    "EventBatch",
    "EventOperation",
    "EventSchedule",
    "apply_event",
    "apply_events",
    "read_event_table",
    "dosing_schedule",
    "merge_schedules",
    # Integrators
    "DormandPrince45",
    "RungeKutta4",
    "ForwardEuler",
    "SciPyIntegrator",
    "StepResult",
    "get_integrator",
    # Models
    "ModelDefinition",
    "ModelProvider",
    "CompiledModel",
    "define_model",
    "fingerprint",
    "get_model",
    "MODELS",
    # Results and state
    "Trajectory",
    "RunStats",
    "StateVector",
    # Batch and setup
    "run_batch",
    "RunSpec",
    "load_run_spec",
    "make_output_times",
    "read_param_values",
    "read_param_values_pint",
    "to_parameter_set",
]
