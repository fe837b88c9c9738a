"""
Description:
    Trajectory strategies plugged into the base sampler.
    USE THE CORRECT ENVIRONMENT:  AHMC

Author: John Gallagher
Created: 2026-10-18
Last Modified: 2026-10-18
Version: 0.2

A strategy decides how long a trajectory runs and which of its states
becomes the next chain state. The base sampler has already jittered the
step size, drawn momentum and initialised z before build_transition runs.
"""
import logging
import math
from abc import ABC, abstractmethod
from typing import List, TYPE_CHECKING
import jax.random as jr

from AHMC.datatypes import Sample, PRNGKey

if TYPE_CHECKING:
    from AHMC.sampler import BaseHMC

logger = logging.getLogger(__name__)

def accept_reject(delta_H: float, key: PRNGKey) -> bool:
    """
    Metropolis-Hastings accept/reject step.

    Accept probability: min(1, exp(delta_H))

    Args:
        delta_H: Energy difference H_current - H_proposed
        key: Random key

    Returns:
        True if accepted, False otherwise
    """
    if math.isnan(delta_H):
        return False
    alpha = math.exp(min(0.0, delta_H))
    u = float(jr.uniform(key, shape=()))
    return u < alpha

class TrajectoryStrategy(ABC):
    """Trajectory selection used by BaseHMC.transition"""

    def update_L(self, sampler: "BaseHMC") -> None:
        """Called whenever the nominal step size changes"""

    @abstractmethod
    def build_transition(self, sampler: "BaseHMC", key: PRNGKey) -> Sample:
        """
        Build a trajectory from sampler.z and leave the selected state in it.

        Pre: sampler.z has fresh momentum and synchronised log_density/grad,
            sampler.current_step_size is this iteration's step size.
        Post: sampler.z holds the next chain state, cached fields consistent.
        """

    def get_sampler_param_names(self) -> List[str]:
        return []

    def get_sampler_params(self) -> List[float]:
        return []

class StaticPath(TrajectoryStrategy):
    """
    HMC with a fixed integration time T.

    L = max(1, int(T / nominal step size)) leapfrog steps at the current
    (jittered) step size, then a Metropolis correction. L is capped at
    max_steps.
    """

    def __init__(self, integration_time: float = 2 * math.pi, max_steps: int = 2**16):
        if not integration_time > 0:
            raise ValueError(f"integration_time must be positive, got {integration_time}")
        if not max_steps >= 1:
            raise ValueError(f"max_steps must be at least 1, got {max_steps}")
        self.T = float(integration_time)
        self.max_steps = int(max_steps)
        self.L = 1
        self.energy = math.nan

    def update_L(self, sampler):
        n_steps = self.T / sampler.nominal_step_size
        if n_steps > self.max_steps:
            logger.warning(
                "Integration time %g at step size %g needs %g steps, capping at %d",
                self.T, sampler.nominal_step_size, n_steps, self.max_steps
            )
            self.L = self.max_steps
            return
        self.L = max(1, int(n_steps))

    def build_transition(self, sampler, key):
        z = sampler.z
        hamiltonian = sampler.hamiltonian
        z_init = z.copy()
        H0 = hamiltonian.H(z)

        for _ in range(self.L):
            sampler.integrator.evolve(z, hamiltonian, sampler.current_step_size)

        h = hamiltonian.H(z)
        delta_H = H0 - h
        accept_prob = math.exp(min(0.0, delta_H)) if not math.isnan(delta_H) else 0.0

        if not accept_reject(delta_H, key):
            z.assign(z_init)

        self.energy = hamiltonian.H(z)
        return Sample(q=z.q, log_prob=z.log_density, accept_stat=accept_prob)

    def get_sampler_param_names(self):
        return ["int_time__", "energy__"]

    def get_sampler_params(self):
        return [self.T, self.energy]
