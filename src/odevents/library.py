"""Built-in ODE models.

Each model is a ModelDefinition; compile it with a ModelProvider (or
use get_model) before integrating. The RHS functions are module-level
so compiled models can be sent to worker processes.
"""

import numpy as np

from odevents.errors import ConfigurationError
from odevents.models import ModelDefinition, ModelProvider


def two_compartment_pk_rhs(t, y, p):
    """Two-compartment pharmacokinetics with first-order absorption.

    States are drug amounts in the gut, central and peripheral
    compartments. Doses enter as additive events on y_gut.
    """
    y_gut, y_cent, y_peri = y
    k_cent = p["CL"] / p["V_cent"]
    k_cp = p["Q"] / p["V_cent"]
    k_pc = p["Q"] / p["V_peri"]
    absorbed = p["ka"] * y_gut
    return np.array(
        [
            -absorbed,
            absorbed - (k_cent + k_cp) * y_cent + k_pc * y_peri,
            k_cp * y_cent - k_pc * y_peri,
        ]
    )


def damped_oscillator_rhs(t, y, p):
    """Harmonic oscillator with linear damping theta."""
    return np.array([y[1], -y[0] - p["theta"] * y[1]])


def exponential_decay_rhs(t, y, p):
    return -p["k"] * y


two_compartment_pk = ModelDefinition(
    "two_compartment_pk",
    ("y_gut", "y_cent", "y_peri"),
    ("CL", "Q", "V_cent", "V_peri", "ka"),
    two_compartment_pk_rhs,
)

damped_oscillator = ModelDefinition(
    "damped_oscillator", ("y1", "y2"), ("theta",), damped_oscillator_rhs
)

exponential_decay = ModelDefinition(
    "exponential_decay", ("y",), ("k",), exponential_decay_rhs
)

MODELS = {
    model.name: model
    for model in (two_compartment_pk, damped_oscillator, exponential_decay)
}


def get_model(name, provider=None):
    """Compiled built-in model by name.

    Parameters
    ----------
    name : str
        Key in MODELS
    provider : ModelProvider, optional
        Provider whose cache is used. A new provider if None.
    """
    if name not in MODELS:
        raise ConfigurationError(
            f"Unknown model '{name}'; expected one of {sorted(MODELS)}"
        )
    if provider is None:
        provider = ModelProvider()
    return provider.get(MODELS[name])
