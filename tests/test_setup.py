"""Tests for odevents.setup module."""

from pathlib import Path

import numpy as np
import pint
import pytest

from odevents import (
    ConfigurationError,
    EventOperation,
    ModelProvider,
    load_run_spec,
    make_output_times,
    read_param_values,
    read_param_values_pint,
    to_parameter_set,
)

SPEC_DIR = Path(__file__).parent.parent / "simulations" / "dosing" / "sim_specs"

PK_YAML = """\
model: two_compartment_pk
parameters:
  CL: {value: 10, units: L/h}
  Q: {value: 13, units: L/h}
  V:
    cent: {value: 20, units: L}
    peri: {value: 73, units: L}
  ka: {value: 3, units: 1/h}
initial_conditions:
  y_gut: 0.0
output_times: [0, 5, 10, 15, 20]
"""


def test_read_param_values_basic():
    """Test basic flattening with two levels (units as strings)."""
    params = {
        "clearance": {"value": 10, "units": "L/h"},
        "volume": {
            "cent": {"value": 20, "units": "L"},
            "peri": {"value": 73, "units": "L"},
        },
    }

    result = read_param_values(params)

    assert "clearance" in result
    assert "volume_cent" in result
    assert "volume_peri" in result

    assert result["volume_cent"]["value"] == 20
    assert result["volume_cent"]["units"] == "L"
    assert result["clearance"]["units"] == "L/h"


def test_read_param_values_pint_basic():
    """Test flattening with pint units."""
    ureg = pint.UnitRegistry()
    params = {
        "CL": {"value": 10, "units": "L/h"},
        "V": {"cent": {"value": 20, "units": "L"}},
    }

    result = read_param_values_pint(params, ureg)

    assert result["CL"]["value"] == 10
    assert result["CL"]["units"] == ureg("L/h").units
    assert result["V_cent"]["units"] == ureg("L").units


def test_read_param_values_pint_no_units():
    """Parameters without units keep units=None."""
    result = read_param_values_pint({"n_doses": 7, "ka": {"value": 3}})

    assert result["n_doses"]["units"] is None
    assert result["ka"]["units"] is None


def test_read_param_values_mixed_types():
    """Test flattening with mixed value types (with and without units)."""
    params = {
        "drug": {"ka": {"value": 3.0, "units": "1/h"}},
        "dosing": {"count": 7, "interval": 10.0},
    }

    result = read_param_values(params)

    assert result["drug_ka"]["value"] == 3.0
    assert result["drug_ka"]["units"] == "1/h"
    assert result["dosing_count"]["value"] == 7
    assert result["dosing_count"]["units"] is None
    assert result["dosing_interval"]["value"] == 10.0


def test_read_param_values_custom_separator():
    result = read_param_values({"V": {"cent": {"value": 20, "units": "L"}}}, sep=".")

    assert "V.cent" in result


def test_read_param_values_empty_dict():
    assert read_param_values({}) == {}


def test_read_param_values_additional_fields():
    """Fields beyond value and units are carried through."""
    params = {"CL": {"value": 10, "units": "L/h", "desc": "Clearance"}}

    result = read_param_values(params)

    assert result["CL"] == {"value": 10, "units": "L/h", "desc": "Clearance"}


def test_to_parameter_set():
    flat = read_param_values({"CL": {"value": 10, "units": "L/h"}, "ka": 3})

    assert to_parameter_set(flat) == {"CL": 10.0, "ka": 3.0}


def test_to_parameter_set_unit_conversion():
    flat = read_param_values({"CL": {"value": 10, "units": "L/h"}})

    result = to_parameter_set(flat, units={"CL": "L/min"})

    assert result["CL"] == pytest.approx(10 / 60)


def test_to_parameter_set_pint_units():
    """Pint unit objects from read_param_values_pint are converted too."""
    ureg = pint.UnitRegistry()
    flat = read_param_values_pint({"V": {"value": 2, "units": "L"}}, ureg)

    result = to_parameter_set(flat, ureg=ureg, units={"V": "mL"})

    assert result["V"] == pytest.approx(2000.0)


@pytest.mark.parametrize(
    "params, units, match",
    [
        ({"CL": {"value": 10, "units": "L/h"}}, {"CL": "kg"}, "Cannot convert"),
        ({"CL": 10}, {"CL": "L/h"}, "has no units"),
        ({"CL": 10}, {"Q": "L/h"}, "unknown parameter"),
        ({"CL": {"value": "fast"}}, None, "not numeric"),
    ],
)
def test_to_parameter_set_errors(params, units, match):
    with pytest.raises(ConfigurationError, match=match):
        to_parameter_set(read_param_values(params), units=units)


def test_make_output_times():
    np.testing.assert_array_equal(
        make_output_times(0, 1, 0.25), [0.0, 0.25, 0.5, 0.75, 1.0]
    )

    times = make_output_times(0.0, 150.0, 0.005)
    assert len(times) == 30001
    assert times[-1] == 150.0
    assert times[3] == 0.015


def test_make_output_times_invalid():
    with pytest.raises(ConfigurationError, match="positive"):
        make_output_times(0, 1, 0)
    with pytest.raises(ConfigurationError, match="before start"):
        make_output_times(1, 0, 0.1)


def test_load_run_spec(tmp_path):
    path = tmp_path / "pk.yaml"
    path.write_text(
        PK_YAML
        + "events:\n"
        "  - {time: 5, component: y_gut, value: 5, method: add}\n"
        "  - {time: 5, component: y_gut, value: 2, method: multiply}\n"
        "solver:\n"
        "  scheme: dopri5\n"
        "  rel_tol: 1.0e-8\n"
    )

    spec = load_run_spec(path)

    assert spec.name == "pk"
    assert spec.model == "two_compartment_pk"
    assert spec.parameters == {
        "CL": 10.0,
        "Q": 13.0,
        "V_cent": 20.0,
        "V_peri": 73.0,
        "ka": 3.0,
    }
    assert spec.initial_conditions == {"y_gut": 0.0}
    np.testing.assert_array_equal(spec.output_times, [0, 5, 10, 15, 20])
    assert [e.operation for e in spec.events] == ["add", "multiply"]
    assert spec.config.rel_tol == 1e-8

    traj = spec.run(ModelProvider())

    # (0 + 5) * 2 lands in the gut at t=5
    assert traj["y_gut"][1] == 10.0
    assert traj["y_cent"][0] == 0.0
    assert traj["y_cent"][-1] > 0.0


def test_load_run_spec_missing_section(tmp_path):
    path = tmp_path / "bad.yaml"
    path.write_text("model: two_compartment_pk\nparameters: {}\n")

    with pytest.raises(ConfigurationError, match="Missing required section"):
        load_run_spec(path)


def test_load_run_spec_unknown_solver_option(tmp_path):
    path = tmp_path / "bad.yaml"
    path.write_text(PK_YAML + "solver:\n  order: 8\n")

    with pytest.raises(ConfigurationError, match="Unknown solver option"):
        load_run_spec(path)


def test_load_run_spec_units(tmp_path):
    path = tmp_path / "units.yaml"
    path.write_text(PK_YAML + "units:\n  CL: L/min\n")

    spec = load_run_spec(path)

    assert spec.parameters["CL"] == pytest.approx(10 / 60)


def test_load_example_specs():
    """The shipped dosing specs load and describe the expected events."""
    pk_01 = load_run_spec(SPEC_DIR / "pk_01.yaml")
    assert pk_01.events.times() == [10.0, 20.0, 30.0, 40.0, 50.0, 60.0, 70.0]
    assert len(pk_01.output_times) == 30001
    assert pk_01.config.abs_tol == 1e-8

    pk_02 = load_run_spec(SPEC_DIR / "pk_02.yaml")
    assert len(pk_02.events) == 4
    assert pk_02.events.times() == [5.0, 25.0]
    assert EventOperation.parse(pk_02.events.events[1].operation) is (
        EventOperation.MULTIPLY
    )
    assert pk_02.output_times[-1] == 100.0


def test_load_run_spec_event_row_needs_method(tmp_path):
    """Event rows in YAML require a method, as event tables do."""
    path = tmp_path / "bad_event.yaml"
    path.write_text(
        PK_YAML + "events:\n  - {time: 5, component: y_gut, value: 5}\n"
    )

    with pytest.raises(ConfigurationError, match="method"):
        load_run_spec(path)
