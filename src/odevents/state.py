"""State vector: fixed-size ordered collection of named components."""

from typing import Any, Dict, Iterator, Mapping, Optional, Sequence, Union

import numpy as np

from odevents.errors import ConfigurationError, UnknownComponent


class StateVector:
    """Named, ordered state of an ODE system at a single instant.

    Instances are treated as immutable: every operation returns a new
    StateVector and the underlying array is never shared between two
    states.

    Parameters
    ----------
    names : sequence of str
        Component names, unique, in state order
    values : array-like
        Component values, same length as names

    Examples
    --------
    >>> y = StateVector(["y_gut", "y_cent"], [5.0, 0.0])
    >>> y["y_gut"]
    5.0
    >>> y.with_component("y_cent", 1.5).as_dict()
    {'y_gut': 5.0, 'y_cent': 1.5}
    """

    __slots__ = ("_names", "_values", "_index")

    def __init__(self, names: Sequence[str], values: Any):
        names = tuple(str(name) for name in names)
        values = np.array(values, dtype=float).reshape(-1)

        if len(names) == 0:
            raise ConfigurationError("State vector must have at least one component")
        if len(set(names)) != len(names):
            raise ConfigurationError(f"Duplicate component names in {names}")
        if len(values) != len(names):
            raise ConfigurationError(
                f"State has {len(names)} names but {len(values)} values"
            )

        self._names = names
        self._values = values
        self._index = {name: i for i, name in enumerate(names)}

    @classmethod
    def from_mapping(cls, mapping: Mapping[str, float]) -> "StateVector":
        """Create a state from a name -> value mapping (insertion order)."""
        return cls(list(mapping.keys()), [mapping[k] for k in mapping])

    @classmethod
    def from_array(
        cls, values: Any, names: Optional[Sequence[str]] = None
    ) -> "StateVector":
        """Create a state from an array, naming components y1, y2, ...
        unless names are given."""
        values = np.asarray(values, dtype=float).reshape(-1)
        if names is None:
            names = [f"y{i + 1}" for i in range(len(values))]
        return cls(names, values)

    @property
    def names(self) -> tuple:
        """Component names in state order."""
        return self._names

    @property
    def values(self) -> np.ndarray:
        """Copy of the component values."""
        return self._values.copy()

    @property
    def n_dims(self) -> int:
        """Number of components."""
        return len(self._names)

    def index_of(self, name: str) -> int:
        """Position of a named component.

        Raises
        ------
        UnknownComponent
            If the state has no component with that name
        """
        try:
            return self._index[name]
        except KeyError:
            raise UnknownComponent(
                f"Unknown state component '{name}'; "
                f"expected one of {list(self._names)}",
                state=self,
            ) from None

    def with_values(self, values: Any) -> "StateVector":
        """New state with the same names and new values."""
        values = np.array(values, dtype=float).reshape(-1)
        if len(values) != self.n_dims:
            raise ConfigurationError(
                f"Expected {self.n_dims} values, got {len(values)}"
            )
        return StateVector(self._names, values)

    def with_component(self, name: str, value: float) -> "StateVector":
        """New state with one component replaced."""
        values = self._values.copy()
        values[self.index_of(name)] = value
        return StateVector(self._names, values)

    def as_dict(self) -> Dict[str, float]:
        return {name: float(v) for name, v in zip(self._names, self._values)}

    def copy(self) -> "StateVector":
        return StateVector(self._names, self._values)

    def __getitem__(self, key: Union[str, int]) -> float:
        if isinstance(key, str):
            key = self.index_of(key)
        return float(self._values[key])

    def __len__(self) -> int:
        return self.n_dims

    def __iter__(self) -> Iterator[float]:
        return iter(float(v) for v in self._values)

    def __eq__(self, other):
        if not isinstance(other, StateVector):
            return NotImplemented
        return self._names == other._names and np.array_equal(
            self._values, other._values
        )

    def __repr__(self):
        items = ", ".join(f"{k}={v:.6g}" for k, v in self.as_dict().items())
        return f"StateVector({items})"


def as_state(obj: Any, names: Optional[Sequence[str]] = None) -> StateVector:
    """Coerce a StateVector, mapping or array-like to a StateVector.

    Parameters
    ----------
    obj : StateVector, dict or array-like
        Initial state in any supported form
    names : sequence of str, optional
        Component names when obj is array-like

    Returns
    -------
    state : StateVector
    """
    if isinstance(obj, StateVector):
        if names is not None and tuple(names) != obj.names:
            raise ConfigurationError(
                f"State names {obj.names} do not match {tuple(names)}"
            )
        return obj.copy()
    if isinstance(obj, Mapping):
        state = StateVector.from_mapping(obj)
        if names is not None:
            # reorder to the requested component order
            missing = [n for n in names if n not in obj]
            if missing or len(names) != len(obj):
                raise ConfigurationError(
                    f"Initial state components {list(obj)} do not match "
                    f"model states {list(names)}"
                )
            state = StateVector(names, [obj[n] for n in names])
        return state
    return StateVector.from_array(obj, names=names)
