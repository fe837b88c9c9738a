"""
Tests for the base sampler: step size search, jitter, lifecycle and the
static HMC strategy end to end.
"""

import logging
import math
import jax
import jax.numpy as jnp
import jax.random as jr
import numpy as np
import pytest
from AHMC.datatypes import PhasePoint
from AHMC.errors import DomainError, ImproperPosteriorError, StepSizeCollapseError, ConfigurationError
from AHMC.target import gen_gaussian, gen_half_normal, gen_flat
from AHMC.metrics import DiagonalMetric, DenseMetric
from AHMC.integrator import ExplicitLeapfrog
from AHMC.trajectory import StaticPath
from AHMC.sampler import BaseHMC, SamplerPhase, STEPSIZE_CEILING, LOG_TARGET_ACCEPT, sample_chain

jax.config.update("jax_enable_x64", True)


class CollapsingModel:
    """
    Log density that is finite on every other call. Inside the step size
    search that means every init succeeds and every integrator step lands
    outside the support, whatever the step size.
    """
    dim = 1

    def __init__(self):
        self.calls = 0

    def log_density(self, q):
        self.calls += 1
        if self.calls % 2 == 0:
            raise DomainError("left the support")
        return -0.5 * float(q[0])**2

    def gradient(self, q):
        return -q


def snapshot(z: PhasePoint):
    return np.array(z.q), np.array(z.p), z.log_density


def assert_same_point(z: PhasePoint, snap):
    q, p, log_density = snap
    np.testing.assert_array_equal(np.array(z.q), q)
    np.testing.assert_array_equal(np.array(z.p), p)
    assert z.log_density == log_density or (math.isnan(z.log_density) and math.isnan(log_density))


def mean_one_step_accept(hamiltonian, eps, key, n=200):
    """Average single leapfrog step acceptance from typical (q, p)"""
    integrator = ExplicitLeapfrog()
    total = 0.0
    for k in jr.split(key, n):
        kq, kp = jr.split(k)
        z = PhasePoint(q=jr.normal(kq, shape=(1,)))
        hamiltonian.sample_momentum(z, kp)
        hamiltonian.init(z)
        H0 = hamiltonian.H(z)
        integrator.evolve(z, hamiltonian, eps)
        total += math.exp(min(0.0, H0 - hamiltonian.H(z)))
    return total / n


# ============================================================================
# Step size search
# ============================================================================

def test_stepsize_search_terminates():
    sampler = BaseHMC(gen_gaussian(dim=2), step_size=1.0)
    sampler.seed(jnp.array([0.3, -0.4]))
    sampler.init_hamiltonian()
    before = snapshot(sampler.z)

    sampler.init_stepsize(jr.PRNGKey(0))

    eps = sampler.nominal_step_size
    assert 0 < eps < STEPSIZE_CEILING
    # only doublings and halvings from 1.0
    assert math.log2(eps).is_integer()
    assert abs(math.log2(eps)) <= 50
    assert_same_point(sampler.z, before)
    assert sampler.phase is SamplerPhase.STEPSIZE_SEARCH


@pytest.mark.parametrize("step_size", [0.0, STEPSIZE_CEILING * (1 + 1e-9)])
def test_stepsize_search_skips_degenerate_step_sizes(step_size):
    sampler = BaseHMC(gen_gaussian(dim=1), step_size=step_size)
    sampler.seed(jnp.array([0.5]))
    sampler.init_hamiltonian()
    before = snapshot(sampler.z)

    sampler.init_stepsize(jr.PRNGKey(1))

    assert sampler.nominal_step_size == step_size
    assert sampler.phase is SamplerPhase.UNINITIALIZED
    assert_same_point(sampler.z, before)


def test_stepsize_search_shrinks_on_domain_error():
    """Leaving the support counts as a too large step, not a failure"""
    sampler = BaseHMC(gen_half_normal(), step_size=10.0)
    sampler.seed(jnp.array([0.5]))

    sampler.init_stepsize(jr.PRNGKey(2))

    assert 0 < sampler.nominal_step_size < 10.0
    np.testing.assert_array_equal(np.array(sampler.z.q), [0.5])


def test_stepsize_search_standard_normal():
    """
    A step of 2.0 overshoots a unit scale target. Each candidate is re-tested
    with fresh momentum, so whether a chain shrinks is stochastic. A chain
    whose first step comes back below log(0.8) never grows the step size and
    shrinks it unless the re-test at 2.0 passes; the others settle on 2.0 or
    grow. Every chain that shrinks lands on a step size with single step
    acceptance in [0.6, 0.95].
    """
    results = []
    for key in jr.split(jr.PRNGKey(2024), 16):
        sampler = BaseHMC(gen_gaussian(dim=1), step_size=2.0)
        sampler.seed(jnp.array([0.5]))
        delta_Hs = []
        one_step = sampler._one_step_delta_H

        def recording_one_step(k, one_step=one_step, delta_Hs=delta_Hs):
            delta_H = one_step(k)
            delta_Hs.append(delta_H)
            return delta_H

        sampler._one_step_delta_H = recording_one_step
        sampler.init_stepsize(key)
        eps = sampler.nominal_step_size
        assert 0 < eps < STEPSIZE_CEILING
        assert math.log2(eps / 2.0).is_integer()
        if delta_Hs[0] < LOG_TARGET_ACCEPT:
            # halving direction, the step size can only stay or shrink
            assert eps <= 2.0
            if delta_Hs[1] < LOG_TARGET_ACCEPT:
                assert eps < 2.0
        results.append(eps)
    print(f"step sizes found: {results}")

    shrunk = [eps for eps in results if eps < 2.0]
    assert shrunk, "no chain shrank the step size"

    for eps in sorted(set(shrunk)):
        accept = mean_one_step_accept(sampler.hamiltonian, eps, jr.PRNGKey(9))
        print(f"mean single step acceptance at {eps}: {accept:.3f}")
        assert 0.6 <= accept <= 0.95


def test_stepsize_search_improper_posterior():
    sampler = BaseHMC(gen_flat(dim=2), step_size=1.0)
    sampler.seed(jnp.array([1.0, -1.0]))
    sampler.init_hamiltonian()
    before = snapshot(sampler.z)

    with pytest.raises(ImproperPosteriorError, match="improper"):
        sampler.init_stepsize(jr.PRNGKey(3))

    assert sampler.nominal_step_size > STEPSIZE_CEILING
    assert_same_point(sampler.z, before)


def test_stepsize_search_collapse():
    sampler = BaseHMC(CollapsingModel(), step_size=1.0)
    sampler.seed(jnp.array([0.2]))
    before_q = np.array(sampler.z.q)

    with pytest.raises(StepSizeCollapseError, match="reached 0") as excinfo:
        sampler.init_stepsize(jr.PRNGKey(4))

    assert isinstance(excinfo.value, ConfigurationError)
    assert sampler.nominal_step_size == 0
    np.testing.assert_array_equal(np.array(sampler.z.q), before_q)


def test_stepsize_search_updates_trajectory_length():
    strategy = StaticPath(integration_time=4.0)
    sampler = BaseHMC(gen_gaussian(dim=1), strategy=strategy, step_size=1.0)
    assert strategy.L == 4
    sampler.seed(jnp.array([0.1]))
    sampler.init_stepsize(jr.PRNGKey(5))
    assert strategy.L == max(1, int(4.0 / sampler.nominal_step_size))


# ============================================================================
# Jitter and setters
# ============================================================================

def test_jitter_bounds():
    s, j = 0.5, 0.3
    sampler = BaseHMC(gen_gaussian(dim=1), step_size=s, jitter=j)
    draws = [sampler.sample_stepsize(k) for k in jr.split(jr.PRNGKey(6), 200)]
    assert all(s * (1 - j) <= eps <= s * (1 + j) for eps in draws)
    assert len(set(draws)) > 1
    assert sampler.nominal_step_size == s


def test_jitter_setter_ignores_out_of_range():
    sampler = BaseHMC(gen_gaussian(dim=1), jitter=0.25)
    assert sampler.jitter == 0.25
    for bad in (1.5, -0.2, 0.0, 1.0):
        sampler.jitter = bad
        assert sampler.jitter == 0.25


def test_no_jitter_uses_nominal_step_size():
    sampler = BaseHMC(gen_gaussian(dim=1), step_size=0.7)
    assert sampler.sample_stepsize(jr.PRNGKey(0)) == 0.7
    assert sampler.current_step_size == 0.7


def test_nominal_step_size_setter_ignores_non_positive():
    strategy = StaticPath(integration_time=1.0)
    sampler = BaseHMC(gen_gaussian(dim=1), strategy=strategy, step_size=0.5)
    sampler.nominal_step_size = 0.25
    assert sampler.nominal_step_size == 0.25
    assert strategy.L == 4
    for bad in (0.0, -1.0, float("nan")):
        sampler.nominal_step_size = bad
        assert sampler.nominal_step_size == 0.25


def test_trajectory_length_is_capped(caplog):
    strategy = StaticPath(integration_time=1.0, max_steps=100)
    sampler = BaseHMC(gen_gaussian(dim=1), strategy=strategy, step_size=0.5)
    assert strategy.L == 2

    with caplog.at_level(logging.WARNING, logger="AHMC.trajectory"):
        sampler.nominal_step_size = 1e-300
    assert strategy.L == 100
    assert "capping at 100" in caplog.text

    sampler.nominal_step_size = 5e-324
    assert strategy.L == 100

    sampler.nominal_step_size = 0.01
    assert strategy.L == 100
    sampler.nominal_step_size = 0.1
    assert strategy.L == 10

    with pytest.raises(ValueError):
        StaticPath(max_steps=0)


def test_negative_initial_step_size_rejected():
    with pytest.raises(ValueError):
        BaseHMC(gen_gaussian(dim=1), step_size=-1.0)


def test_metric_replacement():
    sampler = BaseHMC(gen_gaussian(dim=2), metric=DiagonalMetric(jnp.ones(2)))
    sampler.metric = DenseMetric(jnp.eye(2) * 2.0)
    assert isinstance(sampler.hamiltonian.metric, DenseMetric)
    with pytest.raises(ValueError):
        sampler.metric = DiagonalMetric(jnp.ones(3))


# ============================================================================
# Lifecycle and reporting
# ============================================================================

def test_lifecycle_and_freeze():
    sampler = BaseHMC(gen_gaussian(dim=2), metric=DiagonalMetric(jnp.ones(2)), jitter=0.1)
    sampler.seed(jnp.array([0.1, 0.2]))
    assert sampler.phase is SamplerPhase.UNINITIALIZED

    sampler.init_stepsize(jr.PRNGKey(0))
    assert sampler.phase is SamplerPhase.STEPSIZE_SEARCH

    sampler.transition(jr.PRNGKey(1))
    assert sampler.phase is SamplerPhase.ITERATING

    sampler.freeze()
    assert sampler.phase is SamplerPhase.FROZEN
    eps, metric = sampler.nominal_step_size, sampler.metric

    sampler.nominal_step_size = eps * 3
    sampler.jitter = 0.5
    sampler.metric = DiagonalMetric(jnp.ones(2) * 4.0)
    sampler.init_stepsize(jr.PRNGKey(2))

    assert sampler.nominal_step_size == eps
    assert sampler.jitter == 0.1
    assert sampler.metric is metric

    sampler.transition(jr.PRNGKey(3))
    assert sampler.phase is SamplerPhase.FROZEN


def test_writers_and_diagnostics():
    sampler = BaseHMC(gen_gaussian(dim=2), metric=DiagonalMetric(jnp.array([1.0, 0.5])), step_size=0.25)
    lines = []
    sampler.write_sampler_state(lines.append)
    assert lines == [
        "Step size = 0.25",
        "Diagonal elements of inverse mass matrix:",
        "1, 0.5",
    ]

    names = sampler.get_sampler_diagnostic_names()
    values = sampler.get_sampler_diagnostics()
    assert names == ["stepsize__", "inv_metric__0", "inv_metric__1"]
    assert values == [0.25, 1.0, 0.5]

    sampler.metric = DenseMetric(jnp.eye(2))
    assert len(sampler.get_sampler_diagnostic_names()) == len(sampler.get_sampler_diagnostics()) == 4

    sampler.seed(jnp.zeros(2))
    sampler.transition(jr.PRNGKey(0))
    assert sampler.get_sampler_param_names() == ["stepsize__", "int_time__", "energy__"]
    params = sampler.get_sampler_params()
    assert params[0] == sampler.current_step_size
    assert math.isfinite(params[2])


# ============================================================================
# Transitions
# ============================================================================

def test_rejected_transition_keeps_state():
    """A trajectory that leaves the support is rejected and z restored"""
    sampler = BaseHMC(gen_half_normal(), step_size=1000.0)
    sampler.seed(jnp.array([0.01]))
    sampler.init_hamiltonian()

    sample = sampler.transition(jr.PRNGKey(8))

    assert sample.accept_stat < 1e-6
    np.testing.assert_array_equal(np.array(sample.q), [0.01])
    np.testing.assert_array_equal(np.array(sampler.z.q), [0.01])
    assert math.isfinite(sampler.hamiltonian.H(sampler.z))


def test_static_hmc_recovers_gaussian():
    model = gen_gaussian(cov=jnp.diag(jnp.array([1.0, 4.0])), mean=jnp.array([1.0, -2.0]))
    sampler = BaseHMC(
        model,
        metric=DiagonalMetric(jnp.array([1.0, 4.0])),
        strategy=StaticPath(integration_time=1.5),
        step_size=0.3,
        jitter=0.1,
    )
    sampler.seed(jnp.array([1.0, -2.0]))
    sampler.freeze()
    assert sampler.strategy.L == 5

    output = sample_chain(sampler, jr.PRNGKey(42), 1000)

    print(f"accept rate: {output.accept_rate:.3f}")
    print(f"mean: {np.mean(output.samples, axis=0)}, var: {np.var(output.samples, axis=0)}")
    assert output.samples.shape == (1000, 2)
    assert output.log_prob.shape == (1000,)
    assert 0.5 < output.accept_rate <= 1.0
    np.testing.assert_allclose(np.mean(output.samples, axis=0), [1.0, -2.0], atol=0.3)
    np.testing.assert_allclose(np.var(output.samples, axis=0), [1.0, 4.0], rtol=0.35)
