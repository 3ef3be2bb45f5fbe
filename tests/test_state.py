"""Tests for StateVector."""

import numpy as np
import pytest

from odevents import ConfigurationError, StateVector, UnknownComponent
from odevents.state import as_state


def test_state_access():
    y = StateVector(["y_gut", "y_cent"], [5.0, 0.0])

    assert y["y_gut"] == 5.0
    assert y[1] == 0.0
    assert y.n_dims == len(y) == 2
    assert y.names == ("y_gut", "y_cent")
    assert list(y) == [5.0, 0.0]
    assert y.index_of("y_cent") == 1
    assert repr(y) == "StateVector(y_gut=5, y_cent=0)"


def test_state_values_are_copies():
    """Mutating returned arrays never changes the state."""
    data = np.array([1.0, 2.0])
    y = StateVector(["a", "b"], data)
    data[0] = 99.0

    values = y.values
    values[1] = -1.0

    assert y.as_dict() == {"a": 1.0, "b": 2.0}


def test_with_component():
    y = StateVector(["a", "b"], [1.0, 2.0])

    z = y.with_component("b", 3.0)

    assert z.as_dict() == {"a": 1.0, "b": 3.0}
    assert y["b"] == 2.0


def test_with_values_length_checked():
    y = StateVector(["a", "b"], [1.0, 2.0])

    with pytest.raises(ConfigurationError, match="Expected 2 values"):
        y.with_values([1.0])


@pytest.mark.parametrize(
    "names, values, match",
    [
        ([], [], "at least one"),
        (["a", "a"], [1.0, 2.0], "Duplicate"),
        (["a", "b"], [1.0], "2 names but 1 values"),
    ],
)
def test_invalid_state(names, values, match):
    with pytest.raises(ConfigurationError, match=match):
        StateVector(names, values)


def test_unknown_component():
    y = StateVector(["a"], [1.0])

    with pytest.raises(UnknownComponent, match="'c'"):
        y["c"]
    # also usable as a KeyError
    with pytest.raises(KeyError):
        y.index_of("c")


def test_equality():
    assert StateVector(["a"], [1.0]) == StateVector(["a"], [1.0])
    assert StateVector(["a"], [1.0]) != StateVector(["b"], [1.0])
    assert StateVector(["a"], [1.0]) != StateVector(["a"], [2.0])


def test_from_array_default_names():
    y = StateVector.from_array([1.0, 2.0, 3.0])

    assert y.names == ("y1", "y2", "y3")


def test_as_state_mapping_reordered():
    y = as_state({"y_cent": 1.0, "y_gut": 5.0}, names=["y_gut", "y_cent"])

    assert y.names == ("y_gut", "y_cent")
    assert y.values.tolist() == [5.0, 1.0]


def test_as_state_mapping_mismatch():
    with pytest.raises(ConfigurationError, match="do not match"):
        as_state({"y_gut": 5.0}, names=["y_gut", "y_cent"])


def test_as_state_state_vector():
    y = StateVector(["a"], [1.0])

    z = as_state(y)

    assert z == y
    assert z is not y
    with pytest.raises(ConfigurationError):
        as_state(y, names=["b"])
