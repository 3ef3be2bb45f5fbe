"""Setup utilities for run configurations.

Parameter files use nested dictionaries whose leaves carry a 'value'
and optional 'units'. Run specifications are YAML files naming a
built-in model, its parameters, initial conditions, output times,
events and solver options.
"""

import dataclasses
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional, Union

import numpy as np
import pint
import yaml

from odevents.core import IntegratorConfig, integrate
from odevents.errors import ConfigurationError
from odevents.events import Event, EventSchedule, read_event_table
from odevents.results import Trajectory

REQUIRED_SECTIONS = ["model", "parameters", "initial_conditions", "output_times"]


def read_param_values(params_dict, parent_key="", sep="_"):
    """
    Flatten nested parameter dictionary by concatenating keys.

    Returns a dictionary where each parameter is a dictionary with a
    'value' and any other attributes such as 'units'.

    Parameters
    ----------
    params_dict : dict
        Nested dictionary of parameters to flatten. Leaf nodes should have
        'value' and optionally 'units' keys (as strings).
    parent_key : str, optional
        Prefix for keys (used in recursion), by default ''
    sep : str, optional
        Separator between nested keys, by default '_'

    Returns
    -------
    dict
        Flat dictionary with concatenated keys. Each value is a dict with
        'value' and any additional fields (e.g., 'units', 'desc') from the
        original parameter dict.

    Examples
    --------
    >>> params = {
    ...     'clearance': {'value': 10, 'units': 'L/h'},
    ...     'volume': {
    ...         'cent': {'value': 20, 'units': 'L', 'desc': 'Central volume'},
    ...         'peri': {'value': 73, 'units': 'L'},
    ...     },
    ... }
    >>> result = read_param_values(params)
    >>> result['volume_cent']
    {'value': 20, 'units': 'L', 'desc': 'Central volume'}

    Notes
    -----
    - Extracts all fields from leaf dictionaries (those with 'value' key)
    - For non-dict values, stores as dict with value and units=None
    - Handles arbitrary nesting depth

    See Also
    --------
    read_param_values_pint : Converts units to pint unit objects
    """
    items = []

    for key, value in params_dict.items():
        new_key = f"{parent_key}{sep}{key}" if parent_key else key

        if isinstance(value, dict):
            if "value" in value:
                param_dict = {"value": value["value"]}
                for field_key, field_value in value.items():
                    if field_key != "value":
                        param_dict[field_key] = field_value
                items.append((new_key, param_dict))
            else:
                items.extend(
                    read_param_values(value, parent_key=new_key, sep=sep).items()
                )
        else:
            items.append((new_key, {"value": value, "units": None}))

    return dict(items)


def read_param_values_pint(params_dict, ureg=None, parent_key="", sep="_"):
    """
    Flatten nested parameter dictionary and convert units to pint objects.

    Parameters
    ----------
    params_dict : dict
        Nested dictionary of parameters (see read_param_values)
    ureg : pint.UnitRegistry, optional
        Unit registry to use for creating unit objects. If None, a new
        registry is created.
    parent_key : str, optional
        Prefix for keys (used in recursion), by default ''
    sep : str, optional
        Separator between nested keys, by default '_'

    Returns
    -------
    dict
        Flat dictionary; 'units' is a pint Unit object if units were
        specified in the input, otherwise None.

    Examples
    --------
    >>> ureg = pint.UnitRegistry()
    >>> result = read_param_values_pint({'CL': {'value': 10, 'units': 'L/h'}}, ureg)
    >>> result['CL']
    {'value': 10, 'units': <Unit('liter / hour')>}
    """
    if ureg is None:
        ureg = pint.UnitRegistry()
    params_flat = read_param_values(params_dict, parent_key=parent_key, sep=sep)

    for value in params_flat.values():
        units = value.get("units")
        value["units"] = ureg(units).units if units else None

    return params_flat


def to_parameter_set(params_flat, ureg=None, units=None) -> Dict[str, float]:
    """
    Reduce flattened parameters to a plain {name: float} parameter set.

    Parameters
    ----------
    params_flat : dict
        Output of read_param_values or read_param_values_pint
    ureg : pint.UnitRegistry, optional
        Registry used to parse unit strings. Created on demand.
    units : dict, optional
        Target units by parameter name. Values of listed parameters are
        converted from their declared units to the target units; other
        values are used as given.

    Returns
    -------
    dict
        Parameter set with float values

    Examples
    --------
    >>> flat = read_param_values({'CL': {'value': 10, 'units': 'L/h'}})
    >>> to_parameter_set(flat, units={'CL': 'L/min'})
    {'CL': 0.16666666666666666}
    """
    units = units or {}
    unknown = [k for k in units if k not in params_flat]
    if unknown:
        raise ConfigurationError(f"Target units given for unknown parameter(s) {unknown}")

    parameter_set = {}
    for name, entry in params_flat.items():
        value = entry["value"]
        if name in units:
            if ureg is None:
                ureg = pint.UnitRegistry()
            declared = entry.get("units")
            if declared is None:
                raise ConfigurationError(
                    f"Parameter '{name}' has no units to convert to {units[name]}"
                )
            if isinstance(declared, str):
                declared = ureg(declared).units
            try:
                value = ureg.Quantity(value, declared).to(units[name]).magnitude
            except pint.errors.DimensionalityError as err:
                raise ConfigurationError(
                    f"Cannot convert parameter '{name}': {err}"
                ) from err
        try:
            parameter_set[name] = float(value)
        except (TypeError, ValueError) as err:
            raise ConfigurationError(
                f"Parameter '{name}' is not numeric: {value!r}"
            ) from err
    return parameter_set


def make_output_times(start: float, stop: float, step: float) -> np.ndarray:
    """Evenly spaced output times from start to stop inclusive.

    Examples
    --------
    >>> make_output_times(0, 1, 0.25)
    array([0.  , 0.25, 0.5 , 0.75, 1.  ])
    """
    if step <= 0:
        raise ConfigurationError(f"Output time step must be positive, got {step}")
    if stop < start:
        raise ConfigurationError(f"stop={stop} is before start={start}")
    n = int(np.floor((stop - start) / step + 1e-9))
    times = start + step * np.arange(n + 1)
    # remove accumulation error on decimal grids
    decimals = max(0, int(np.ceil(-np.log10(step))) + 6)
    return np.round(times, decimals)


def _parse_output_times(spec) -> np.ndarray:
    if isinstance(spec, dict):
        missing = [k for k in ("start", "stop", "step") if k not in spec]
        if missing:
            raise ConfigurationError(f"output_times missing {missing}")
        return make_output_times(
            float(spec["start"]), float(spec["stop"]), float(spec["step"])
        )
    return np.asarray(spec, dtype=float)


def _parse_events(spec: dict, base_dir: Path) -> EventSchedule:
    if "events_file" in spec:
        return read_event_table(base_dir / spec["events_file"])
    rows = spec.get("events") or []
    events = []
    for row in rows:
        try:
            events.append(
                Event(
                    time=float(row["time"]),
                    component=str(row["component"]),
                    operation=row["method"],
                    operand=float(row["value"]),
                )
            )
        except KeyError as err:
            raise ConfigurationError(f"Event row {row} missing key {err}") from err
    # rows sharing a time keep their order
    events.sort(key=lambda event: event.time)
    return EventSchedule(events)


@dataclass
class RunSpec:
    """A fully materialized run loaded from a YAML specification."""

    name: str
    model: str
    parameters: Dict[str, float]
    initial_conditions: Dict[str, float]
    output_times: np.ndarray
    events: EventSchedule = field(default_factory=EventSchedule)
    config: IntegratorConfig = field(default_factory=IntegratorConfig)

    def run(self, provider=None) -> Trajectory:
        """Integrate the run with a built-in model."""
        from odevents.library import get_model

        model = get_model(self.model, provider)
        state = model.initial_state(**self.initial_conditions)
        return integrate(
            model,
            state,
            self.parameters,
            self.output_times,
            events=self.events,
            config=self.config,
        )


def load_run_spec(path: Union[str, Path], ureg: Optional[Any] = None) -> RunSpec:
    """
    Load a run specification from YAML.

    Parameters
    ----------
    path : str or Path
        YAML file with sections 'model', 'parameters',
        'initial_conditions', 'output_times' and optionally 'events' (or
        'events_file', a CSV path relative to the YAML file), 'units'
        (target units by parameter) and 'solver' (IntegratorConfig
        fields).
    ureg : pint.UnitRegistry, optional
        Registry for unit conversion

    Returns
    -------
    spec : RunSpec

    Examples
    --------
    >>> spec = load_run_spec('simulations/dosing/sim_specs/pk_01.yaml')
    >>> traj = spec.run()
    """
    path = Path(path)
    with open(path, "r") as f:
        spec = yaml.safe_load(f) or {}

    for section in REQUIRED_SECTIONS:
        if section not in spec:
            raise ConfigurationError(f"Missing required section: {section}")

    params_flat = read_param_values(spec["parameters"])
    parameters = to_parameter_set(params_flat, ureg=ureg, units=spec.get("units"))

    solver = dict(spec.get("solver") or {})
    known = {f.name for f in dataclasses.fields(IntegratorConfig)}
    unknown = sorted(set(solver) - known)
    if unknown:
        raise ConfigurationError(f"Unknown solver option(s) {unknown}")
    for key in ("h_max", "h_min", "h_init", "abs_tol", "rel_tol", "timeout"):
        if solver.get(key) is not None:
            solver[key] = float(solver[key])

    model_spec = spec["model"]
    model_name = model_spec["name"] if isinstance(model_spec, dict) else model_spec

    return RunSpec(
        name=spec.get("name", path.stem),
        model=str(model_name),
        parameters=parameters,
        initial_conditions={
            k: float(v) for k, v in (spec["initial_conditions"] or {}).items()
        },
        output_times=_parse_output_times(spec["output_times"]),
        events=_parse_events(spec, path.parent),
        config=IntegratorConfig(**solver),
    )
