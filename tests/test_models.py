"""Tests for model definitions, fingerprints and the model provider."""

import numpy as np
import pytest

from odevents import (
    MODELS,
    CompiledModel,
    ConfigurationError,
    ModelDefinition,
    ModelProvider,
    define_model,
    fingerprint,
    get_model,
)
from odevents.library import (
    damped_oscillator_rhs,
    exponential_decay_rhs,
    two_compartment_pk_rhs,
)


def make_scaled_decay(scale):
    def rhs(t, y, p):
        return -scale * p["k"] * y

    return ModelDefinition("scaled_decay", ("y",), ("k",), rhs)


def test_fingerprint_stable():
    """Equal definitions built separately share a fingerprint."""
    a = ModelDefinition("decay", ("y",), ("k",), exponential_decay_rhs)
    b = ModelDefinition("decay", ["y"], ["k"], exponential_decay_rhs)

    assert fingerprint(a) == fingerprint(b)
    assert len(fingerprint(a)) == 64


def test_fingerprint_sensitive_to_structure():
    base = ModelDefinition("decay", ("y",), ("k",), exponential_decay_rhs)

    renamed = ModelDefinition("decay2", ("y",), ("k",), exponential_decay_rhs)
    new_states = ModelDefinition("decay", ("x",), ("k",), exponential_decay_rhs)
    new_params = ModelDefinition("decay", ("y",), ("k", "c"), exponential_decay_rhs)
    new_rhs = ModelDefinition("decay", ("y",), ("k",), damped_oscillator_rhs)

    keys = {fingerprint(d) for d in (base, renamed, new_states, new_params, new_rhs)}
    assert len(keys) == 5


def test_fingerprint_closure_values():
    """Same source with different captured values is a different model."""
    assert fingerprint(make_scaled_decay(1.0)) == fingerprint(make_scaled_decay(1.0))
    assert fingerprint(make_scaled_decay(1.0)) != fingerprint(make_scaled_decay(2.0))


def test_definition_validation():
    with pytest.raises(ConfigurationError, match="no states"):
        ModelDefinition("empty", (), (), exponential_decay_rhs)
    with pytest.raises(ConfigurationError, match="not callable"):
        ModelDefinition("bad", ("y",), (), 42)


def test_provider_cache():
    provider = ModelProvider()
    definition = MODELS["exponential_decay"]

    model = provider.get(definition)
    assert isinstance(model, CompiledModel)
    assert provider.get(definition) is model
    assert provider.cache_info() == {"hits": 1, "misses": 1, "size": 1}
    assert definition in provider
    assert len(provider) == 1


def test_provider_recompiles_changed_definition():
    provider = ModelProvider()

    first = provider.get(make_scaled_decay(1.0))
    second = provider.get(make_scaled_decay(2.0))

    assert first is not second
    assert provider.misses == 2
    assert first.key != second.key


def test_provider_invalidate():
    provider = ModelProvider()
    decay = MODELS["exponential_decay"]
    oscillator = MODELS["damped_oscillator"]
    model = provider.get(decay)
    provider.get(oscillator)

    provider.invalidate(decay)
    assert decay not in provider
    assert oscillator in provider
    assert provider.get(decay) is not model

    provider.invalidate()
    assert len(provider) == 0


def test_compiled_model_evaluate():
    model = get_model("exponential_decay")

    dydt = model.evaluate(0.0, np.array([2.0]), {"k": 0.5})

    assert dydt.shape == (1,)
    assert dydt[0] == pytest.approx(-1.0)


def test_check_parameters():
    model = get_model("two_compartment_pk")

    model.check_parameters({"CL": 1, "Q": 1, "V_cent": 1, "V_peri": 1, "ka": 1})
    with pytest.raises(ConfigurationError, match=r"missing parameter\(s\) \['ka'\]"):
        model.check_parameters({"CL": 1, "Q": 1, "V_cent": 1, "V_peri": 1})


def test_initial_state():
    model = get_model("two_compartment_pk")

    y0 = model.initial_state(y_gut=5.0)
    assert y0.names == ("y_gut", "y_cent", "y_peri")
    assert y0.values.tolist() == [5.0, 0.0, 0.0]

    y0 = model.initial_state({"y_peri": 1.0, "y_cent": 2.0, "y_gut": 3.0})
    assert y0.values.tolist() == [3.0, 2.0, 1.0]

    with pytest.raises(ConfigurationError, match="y_liver"):
        model.initial_state(y_liver=1.0)


def test_get_model_uses_provider():
    provider = ModelProvider()

    model = get_model("damped_oscillator", provider)

    assert get_model("damped_oscillator", provider) is model
    assert provider.hits == 1


def test_get_model_unknown():
    with pytest.raises(ConfigurationError, match="Unknown model 'sir'"):
        get_model("sir")


def test_define_model():
    @define_model("logistic", ["N"], ["r", "K"])
    def logistic(t, y, p):
        return p["r"] * y * (1 - y / p["K"])

    assert isinstance(logistic, ModelDefinition)
    assert logistic.state_names == ("N",)
    assert logistic.parameter_names == ("r", "K")

    model = ModelProvider().get(logistic)
    assert model.evaluate(0.0, np.array([50.0]), {"r": 1.0, "K": 100.0})[0] == 25.0


def test_two_compartment_pk_rhs():
    """Derivatives match the hand-computed transfer rates."""
    p = {"CL": 10.0, "Q": 13.0, "V_cent": 20.0, "V_peri": 73.0, "ka": 3.0}
    y = np.array([5.0, 2.0, 1.0])

    dydt = two_compartment_pk_rhs(0.0, y, p)

    k_cent, k_cp, k_pc = 10.0 / 20.0, 13.0 / 20.0, 13.0 / 73.0
    assert dydt[0] == pytest.approx(-15.0)
    assert dydt[1] == pytest.approx(15.0 - (k_cent + k_cp) * 2.0 + k_pc * 1.0)
    assert dydt[2] == pytest.approx(k_cp * 2.0 - k_pc * 1.0)
    # transfer between compartments conserves mass, only CL removes it
    assert dydt.sum() == pytest.approx(-k_cent * 2.0)


def test_damped_oscillator_rhs():
    dydt = damped_oscillator_rhs(0.0, np.array([1.0, 2.0]), {"theta": 0.1})

    np.testing.assert_allclose(dydt, [2.0, -1.2])
