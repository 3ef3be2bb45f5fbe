"""Tests for parallel batch runs."""

import numpy as np
import pytest

from odevents import (
    ConfigurationError,
    dosing_schedule,
    get_model,
    integrate,
    run_batch,
)

PK_PARAMS = {"CL": 10.0, "Q": 13.0, "V_cent": 20.0, "V_peri": 73.0, "ka": 3.0}


def test_batch_matches_sequential_runs():
    """Each run equals an independent sequential run with its parameters."""
    model = get_model("two_compartment_pk")
    doses = dosing_schedule("y_gut", 5.0, start=1.0, interval=2.0, count=3)
    t_out = np.linspace(0.0, 8.0, 17)
    parameter_sets = [dict(PK_PARAMS, CL=cl) for cl in (5.0, 10.0, 20.0)]

    trajectories = run_batch(
        model, model.initial_state(), parameter_sets, t_out, events=doses, max_workers=3
    )

    assert len(trajectories) == 3
    for params, traj in zip(parameter_sets, trajectories):
        expected = integrate(model, model.initial_state(), params, t_out, events=doses)
        np.testing.assert_array_equal(traj.states.to_numpy(), expected.states.to_numpy())

    # more clearance leaves less drug in the central compartment
    finals = [traj.final_state["y_cent"] for traj in trajectories]
    assert finals[0] > finals[1] > finals[2]


def test_batch_empty():
    model = get_model("exponential_decay")

    assert run_batch(model, {"y": 1.0}, [], [0.0, 1.0]) == []


def test_batch_processes():
    model = get_model("exponential_decay")

    trajectories = run_batch(
        model, {"y": 1.0}, [{"k": 1.0}, {"k": 2.0}], [0.0, 1.0], use_processes=True
    )

    assert trajectories[0].final_state["y"] == pytest.approx(np.exp(-1.0), rel=1e-5)
    assert trajectories[1].final_state["y"] == pytest.approx(np.exp(-2.0), rel=1e-5)


def test_batch_propagates_errors():
    model = get_model("exponential_decay")

    with pytest.raises(ConfigurationError, match="missing parameter"):
        run_batch(model, {"y": 1.0}, [{"k": 1.0}, {}], [0.0, 1.0])
