"""
Description:
    Base HMC sampler: step size search, jitter and chain lifecycle.
    USE THE CORRECT ENVIRONMENT:  AHMC

Author: John Gallagher
Created: 2026-02-16
Last Modified: 2026-10-18
Version: 0.2

The sampler owns one PhasePoint for the life of the chain. Warmup is driven
from outside: whatever controls adaptation calls init_stepsize, sets the
nominal step size and metric between iterations, and calls freeze() when
sampling starts. Random keys are always passed in, never stored.
"""
import enum
import logging
import math
from typing import List, Optional

import jax.numpy as jnp
import jax.random as jr

from AHMC.datatypes import PhasePoint, Sample, SamplerOutput, PRNGKey, Writer
from AHMC.errors import ImproperPosteriorError, StepSizeCollapseError
from AHMC.hamiltonian import Hamiltonian
from AHMC.integrator import Integrator, ExplicitLeapfrog
from AHMC.metrics import Metric, UnitMetric
from AHMC.target import Model
from AHMC.trajectory import TrajectoryStrategy, StaticPath

logger = logging.getLogger(__name__)

STEPSIZE_CEILING = 1e7
TARGET_ACCEPT = 0.8 # single step acceptance sought by init_stepsize
LOG_TARGET_ACCEPT = math.log(TARGET_ACCEPT)

class SamplerPhase(enum.Enum):
    UNINITIALIZED = "uninitialized"
    STEPSIZE_SEARCH = "stepsize-search"
    ITERATING = "iterating"
    FROZEN = "frozen"

class BaseHMC:
    """
    Hamiltonian Monte Carlo chain with a pluggable trajectory strategy.

    Args:
        model: target log density and gradient
        metric: inverse mass matrix, UnitMetric by default
        integrator: symplectic integrator, ExplicitLeapfrog by default
        strategy: trajectory selection, StaticPath by default
        step_size: initial nominal step size. 0 disables the step size search.
        jitter: step size jitter fraction, ignored unless in (0, 1)
    """

    def __init__(
        self,
        model: Model,
        metric: Optional[Metric] = None,
        integrator: Optional[Integrator] = None,
        strategy: Optional[TrajectoryStrategy] = None,
        step_size: float = 1.0,
        jitter: float = 0.0
    ):
        step_size = float(step_size)
        if not step_size >= 0:
            raise ValueError(f"step_size must be non-negative, got {step_size}")
        self.z = PhasePoint.zeros(model.dim)
        self.hamiltonian = Hamiltonian(model, UnitMetric() if metric is None else metric)
        self._check_metric(self.hamiltonian.metric)
        self.integrator = ExplicitLeapfrog() if integrator is None else integrator
        self.strategy = StaticPath() if strategy is None else strategy
        self.phase = SamplerPhase.UNINITIALIZED
        self.last_sample: Optional[Sample] = None

        self._nominal_step_size = step_size
        self._current_step_size = step_size
        self._jitter = 0.0
        self.jitter = jitter
        if step_size > 0:
            self.strategy.update_L(self)

    # Step size and metric

    @property
    def nominal_step_size(self) -> float:
        return self._nominal_step_size

    @nominal_step_size.setter
    def nominal_step_size(self, e: float) -> None:
        """Non-positive values are ignored and the last good value kept"""
        if self._frozen("nominal_step_size"):
            return
        if e > 0:
            self._nominal_step_size = float(e)
            self.strategy.update_L(self)

    @property
    def current_step_size(self) -> float:
        """Nominal step size after this iteration's jitter"""
        return self._current_step_size

    @property
    def jitter(self) -> float:
        return self._jitter

    @jitter.setter
    def jitter(self, j: float) -> None:
        """Only values strictly inside (0, 1) are taken"""
        if self._frozen("jitter"):
            return
        if 0 < j < 1:
            self._jitter = float(j)

    @property
    def metric(self) -> Metric:
        return self.hamiltonian.metric

    @metric.setter
    def metric(self, metric: Metric) -> None:
        """Replace the metric. Only call between iterations."""
        if self._frozen("metric"):
            return
        self._check_metric(metric)
        self.hamiltonian.metric = metric

    def _check_metric(self, metric: Metric) -> None:
        dim = getattr(metric, "dim", self.z.dim)
        if dim != self.z.dim:
            raise ValueError(f"Metric has dimension {dim}, model has {self.z.dim}")

    def _frozen(self, what: str) -> bool:
        if self.phase is SamplerPhase.FROZEN:
            logger.warning("Sampler is frozen, ignoring change to %s", what)
            return True
        return False

    def freeze(self) -> None:
        """End of warmup. Step size, jitter and metric stop changing."""
        self.phase = SamplerPhase.FROZEN

    # Chain state

    def seed(self, q: jnp.ndarray) -> None:
        """
        Set the chain position. Touches q only, so init_hamiltonian (or a
        transition) must run before the point is evaluated.
        """
        q = jnp.asarray(q)
        if q.shape != self.z.q.shape:
            raise ValueError(f"Expected position of shape {self.z.q.shape}, got {q.shape}")
        self.z.q = q

    def init_hamiltonian(self) -> None:
        """Synchronise the cached log density and gradient with z.q"""
        self.hamiltonian.init(self.z)

    def sample_stepsize(self, key: PRNGKey) -> float:
        """Draw this iteration's step size from the nominal one and the jitter"""
        self._current_step_size = self._nominal_step_size
        if self._jitter:
            u = float(jr.uniform(key, shape=()))
            self._current_step_size *= 1.0 + self._jitter * (2.0 * u - 1.0)
        return self._current_step_size

    def _one_step_delta_H(self, key: PRNGKey) -> float:
        """H0 - H1 for one integrator step from z with fresh momentum"""
        self.hamiltonian.sample_momentum(self.z, key)
        self.hamiltonian.init(self.z)
        H0 = self.hamiltonian.H(self.z)
        self.integrator.evolve(self.z, self.hamiltonian, self._nominal_step_size)
        return H0 - self.hamiltonian.H(self.z)

    def init_stepsize(self, key: PRNGKey) -> None:
        """
        Double or halve the nominal step size until a single integrator step
        from z crosses an acceptance probability of TARGET_ACCEPT.

        z is restored on return and before either search failure is raised.

        Raises:
            ImproperPosteriorError: if the step size grows past STEPSIZE_CEILING
            StepSizeCollapseError: if the step size underflows to 0
            DomainError: if z.q itself is outside the support
        """
        if self.phase is SamplerPhase.FROZEN:
            logger.warning("Sampler is frozen, skipping step size search")
            return

        # Skip initialization for extreme step sizes
        if self._nominal_step_size == 0 or self._nominal_step_size > STEPSIZE_CEILING:
            return

        if self.phase is SamplerPhase.UNINITIALIZED:
            self.phase = SamplerPhase.STEPSIZE_SEARCH

        z_init = self.z.copy()
        key, subkey = jr.split(key)
        delta_H = self._one_step_delta_H(subkey)
        direction = 1 if delta_H > LOG_TARGET_ACCEPT else -1

        n_iter = 0
        while True:
            self.z.assign(z_init)
            key, subkey = jr.split(key)
            delta_H = self._one_step_delta_H(subkey)
            logger.debug(
                "step size search: iter %d, step size %g, delta H %g",
                n_iter, self._nominal_step_size, delta_H
            )
            n_iter += 1

            if direction == 1 and not delta_H > LOG_TARGET_ACCEPT:
                break
            elif direction == -1 and not delta_H < LOG_TARGET_ACCEPT:
                break
            else:
                self._nominal_step_size = (
                    2.0 * self._nominal_step_size if direction == 1
                    else 0.5 * self._nominal_step_size
                )

            if self._nominal_step_size > STEPSIZE_CEILING:
                self.z.assign(z_init)
                raise ImproperPosteriorError(
                    f"Step size exceeded {STEPSIZE_CEILING:g} during the step size search. "
                    "Posterior is improper. Please check your model."
                )
            if self._nominal_step_size == 0:
                self.z.assign(z_init)
                raise StepSizeCollapseError(
                    "Step size reached 0 during the step size search. No acceptably "
                    "small step size could be found. Perhaps the posterior is not continuous?"
                )

        self.z.assign(z_init)
        self.strategy.update_L(self)
        logger.info(
            "Step size search settled on %g after %d iterations",
            self._nominal_step_size, n_iter
        )

    def transition(self, key: PRNGKey) -> Sample:
        """
        One iteration: jitter the step size, draw momentum, hand over to
        the trajectory strategy.
        """
        k_eps, k_p, k_traj = jr.split(key, 3)
        if self.phase in (SamplerPhase.UNINITIALIZED, SamplerPhase.STEPSIZE_SEARCH):
            self.phase = SamplerPhase.ITERATING
        self.sample_stepsize(k_eps)
        self.hamiltonian.sample_momentum(self.z, k_p)
        self.hamiltonian.init(self.z)
        sample = self.strategy.build_transition(self, k_traj)
        self.last_sample = sample
        return sample

    # Reporting

    def write_sampler_stepsize(self, writer: Writer) -> None:
        writer(f"Step size = {self._nominal_step_size:g}")

    def write_sampler_metric(self, writer: Writer) -> None:
        self.metric.write_metric(writer)

    def write_sampler_state(self, writer: Writer) -> None:
        """Step size line followed by the metric dump"""
        self.write_sampler_stepsize(writer)
        self.write_sampler_metric(writer)

    def get_sampler_diagnostic_names(self) -> List[str]:
        return ["stepsize__"] + self.metric.param_names()

    def get_sampler_diagnostics(self) -> List[float]:
        return [self._current_step_size] + self.metric.param_values()

    def get_sampler_param_names(self) -> List[str]:
        return ["stepsize__"] + self.strategy.get_sampler_param_names()

    def get_sampler_params(self) -> List[float]:
        return [self._current_step_size] + self.strategy.get_sampler_params()

def sample_chain(sampler: BaseHMC, key: PRNGKey, num_samples: int) -> SamplerOutput:
    """
    Run num_samples transitions on a single chain.

    Args:
        sampler: seeded sampler
        key: JAX random key, split once per transition
        num_samples: Number of transitions

    Returns:
        SamplerOutput with positions, log densities and acceptance stats
    """
    draws = [sampler.transition(k) for k in jr.split(key, num_samples)]
    accept_stat = jnp.array([d.accept_stat for d in draws])
    return SamplerOutput(
        samples = jnp.stack([d.q for d in draws]),
        log_prob = jnp.array([d.log_prob for d in draws]),
        accept_stat = accept_stat,
        accept_rate = float(jnp.mean(accept_stat))
    )
