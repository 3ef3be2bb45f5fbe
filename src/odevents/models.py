"""Model definitions and the model provider.

A ModelDefinition describes an ODE system structurally: its name, state
and parameter names and a plain RHS function f(t, y, p). A
ModelProvider turns definitions into CompiledModel objects and caches
them under a structural fingerprint of the definition, so compiling the
same system twice is a cache hit and editing the RHS is a miss. The
cache belongs to the provider instance; there is no module-level state.
"""

import hashlib
import inspect
import logging
import textwrap
from dataclasses import dataclass
from typing import Any, Callable, Dict, Mapping, Optional, Sequence, Tuple

import numpy as np

from odevents.errors import ConfigurationError
from odevents.state import StateVector, as_state

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class ModelDefinition:
    """Structural description of an ODE system.

    Parameters
    ----------
    name : str
        Model name
    state_names : tuple of str
        State component names, in the order the RHS expects
    parameter_names : tuple of str
        Parameters the RHS reads from the parameter set
    rhs : callable
        Function f(t, y, p) -> dy/dt with y in state order

    Examples
    --------
    >>> def decay(t, y, p):
    ...     return -p['k'] * y
    >>> model = ModelDefinition('decay', ('y',), ('k',), decay)
    """

    name: str
    state_names: Tuple[str, ...]
    parameter_names: Tuple[str, ...]
    rhs: Callable

    def __post_init__(self):
        # normalize lists to tuples so definitions stay hashable
        object.__setattr__(self, "state_names", tuple(self.state_names))
        object.__setattr__(self, "parameter_names", tuple(self.parameter_names))
        if len(self.state_names) == 0:
            raise ConfigurationError(f"Model '{self.name}' has no states")
        if not callable(self.rhs):
            raise ConfigurationError(f"Model '{self.name}' rhs is not callable")


def _code_signature(code) -> list:
    """Structural summary of a code object, recursing into nested code."""
    parts = [code.co_code.hex(), repr(code.co_names), repr(code.co_varnames)]
    for const in code.co_consts:
        if inspect.iscode(const):
            parts.extend(_code_signature(const))
        else:
            parts.append(repr(const))
    return parts


def _function_signature(func: Callable) -> list:
    try:
        parts = [textwrap.dedent(inspect.getsource(func))]
    except (OSError, TypeError):
        code = getattr(func, "__code__", None)
        if code is None:
            code = getattr(type(func).__call__, "__code__", None)
        if code is None:
            raise ConfigurationError(
                f"Cannot fingerprint RHS {func!r}: no source or bytecode"
            ) from None
        parts = _code_signature(code)
    # closure values and defaults change behavior without changing source
    for cell in getattr(func, "__closure__", None) or ():
        try:
            parts.append(repr(cell.cell_contents))
        except ValueError:
            parts.append("<empty cell>")
    parts.append(repr(getattr(func, "__defaults__", None)))
    return parts


def fingerprint(definition: ModelDefinition) -> str:
    """SHA-256 fingerprint of a model definition's structure.

    Covers the model name, state and parameter names, and the RHS
    function's source (bytecode, constants and names when the source is
    unavailable) plus its closure values and defaults.
    """
    hasher = hashlib.sha256()
    parts = [
        definition.name,
        repr(definition.state_names),
        repr(definition.parameter_names),
    ]
    parts.extend(_function_signature(definition.rhs))
    for part in parts:
        hasher.update(part.encode("utf-8"))
        hasher.update(b"\0")
    return hasher.hexdigest()


class CompiledModel:
    """A model definition ready for integration.

    Implements the RHSFunction protocol and carries the state names, so
    integrate() accepts dict initial states in any key order.

    Parameters
    ----------
    definition : ModelDefinition
    key : str
        Fingerprint the model was compiled under
    """

    def __init__(self, definition: ModelDefinition, key: str):
        self.definition = definition
        self.key = key
        self._func = definition.rhs

    @property
    def name(self) -> str:
        return self.definition.name

    @property
    def state_names(self) -> Tuple[str, ...]:
        return self.definition.state_names

    @property
    def parameter_names(self) -> Tuple[str, ...]:
        return self.definition.parameter_names

    def evaluate(self, t, y, p):
        return np.asarray(self._func(t, y, p), dtype=float).reshape(-1)

    def check_parameters(self, parameters: Mapping[str, float]):
        """Raise ConfigurationError if a required parameter is missing."""
        missing = [k for k in self.parameter_names if k not in parameters]
        if missing:
            raise ConfigurationError(
                f"Model '{self.name}' missing parameter(s) {missing}"
            )

    def initial_state(self, values: Any = None, **components) -> StateVector:
        """Build an initial state in model order.

        Unspecified components default to zero.

        Examples
        --------
        >>> model.initial_state(y_gut=5.0)
        StateVector(y_gut=5, y_cent=0, y_peri=0)
        """
        if values is not None:
            return as_state(values, names=self.state_names)
        unknown = [k for k in components if k not in self.state_names]
        if unknown:
            raise ConfigurationError(
                f"Model '{self.name}' has no state(s) {unknown}"
            )
        return StateVector(
            self.state_names,
            [float(components.get(k, 0.0)) for k in self.state_names],
        )

    def __repr__(self):
        return f"CompiledModel(name='{self.name}', key='{self.key[:12]}')"


class ModelProvider:
    """Compiles model definitions and caches them by fingerprint.

    Examples
    --------
    >>> provider = ModelProvider()
    >>> model = provider.get(definition)
    >>> provider.get(definition) is model
    True
    >>> provider.invalidate(definition)
    """

    def __init__(self):
        self._cache: Dict[str, CompiledModel] = {}
        self.hits = 0
        self.misses = 0

    def compile(self, definition: ModelDefinition, key: str) -> CompiledModel:
        """Build a CompiledModel. Override to plug in other backends."""
        return CompiledModel(definition, key)

    def get(self, definition: ModelDefinition) -> CompiledModel:
        """Return the compiled model, compiling on first use."""
        key = fingerprint(definition)
        model = self._cache.get(key)
        if model is not None:
            self.hits += 1
            log.debug("Model cache hit for '%s' (%s)", definition.name, key[:12])
            return model
        self.misses += 1
        log.debug("Compiling model '%s' (%s)", definition.name, key[:12])
        model = self.compile(definition, key)
        self._cache[key] = model
        return model

    def invalidate(self, definition: Optional[ModelDefinition] = None):
        """Drop one cached model, or all of them if definition is None."""
        if definition is None:
            self._cache.clear()
        else:
            self._cache.pop(fingerprint(definition), None)

    def cache_info(self) -> Dict[str, int]:
        return {"hits": self.hits, "misses": self.misses, "size": len(self._cache)}

    def __contains__(self, definition: ModelDefinition) -> bool:
        return fingerprint(definition) in self._cache

    def __len__(self):
        return len(self._cache)

    def __repr__(self):
        return f"ModelProvider(size={len(self._cache)})"


def define_model(
    name: str,
    state_names: Sequence[str],
    parameter_names: Sequence[str] = (),
) -> Callable[[Callable], ModelDefinition]:
    """Decorator turning an RHS function into a ModelDefinition.

    Examples
    --------
    >>> @define_model('decay', ['y'], ['k'])
    ... def decay(t, y, p):
    ...     return -p['k'] * y
    """

    def wrapper(func: Callable) -> ModelDefinition:
        return ModelDefinition(name, tuple(state_names), tuple(parameter_names), func)

    return wrapper
