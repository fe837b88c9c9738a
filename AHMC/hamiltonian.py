"""
Description:
    Hamiltonian structures and symplectic operations.
    USE THE CORRECT ENVIRONMENT:  AHMC

Author: John Gallagher
Created: 2026-02-16
Last Modified: 2026-10-18
Version: 0.2
"""
import logging
import math
import jax.numpy as jnp
from AHMC.datatypes import QP, PhasePoint, PRNGKey
from AHMC.errors import DomainError
from AHMC.metrics import Metric
from AHMC.target import Model

logger = logging.getLogger(__name__)

class Hamiltonian:
    """
    Hamiltonian(q,p) = U(q) + K(p)
    For Euclidean HMC:
        U(q) = -log π(q)
        K(p) = 0.5 *  p.T@ M^{-1}@ p

    The model is fixed for the life of the chain. The metric may be swapped
    for a new one between iterations, never while a trajectory is built.

    Methods that take a PhasePoint read its cached log_density/grad instead
    of calling the model, except init and update_potential_gradient which
    refresh them.
    """

    def __init__(self, model: Model, metric: Metric):
        self.model = model
        self.metric = metric

    def V(self, z: PhasePoint) -> float:
        """Potential U(q), from the cache"""
        return -z.log_density

    def T(self, z: PhasePoint) -> float:
        """Kinetic K(p)"""
        return self.metric.kinetic(z.p)

    def H(self, z: PhasePoint) -> float:
        """
        Total energy. Non-finite energies come back as +inf so that a
        divergent point always compares as worse than any valid one.
        """
        h = float(self.V(z) + self.T(z))
        if not math.isfinite(h):
            return math.inf
        return h

    def dtau_dp(self, z: PhasePoint) -> jnp.ndarray:
        """∂K/∂p"""
        return self.metric.velocity(z.p)

    def dphi_dq(self, z: PhasePoint) -> jnp.ndarray:
        """∂U/∂q"""
        return -z.grad

    def energy(self, qp: QP) -> float:
        """H(q,p) evaluated directly from the model, no caching"""
        return -self.model.log_density(qp.q) + self.metric.kinetic(qp.p)

    def grad(self, qp: QP) -> QP:
        """Full gradient (∂H/∂q, ∂H/∂p) as QP structure"""
        return QP(q=-self.model.gradient(qp.q), p=self.metric.velocity(qp.p))

    def init(self, z: PhasePoint) -> None:
        """
        Refresh log_density and grad at z.q. Touches log_density, grad.

        Raises:
            DomainError: if the model raises one or returns a non-finite
                log density or gradient at z.q
        """
        log_density = float(self.model.log_density(z.q))
        grad = jnp.asarray(self.model.gradient(z.q))
        if not math.isfinite(log_density):
            raise DomainError(f"log density is {log_density} at q = {z.q}")
        if not bool(jnp.all(jnp.isfinite(grad))):
            raise DomainError(f"gradient is not finite at q = {z.q}")
        z.log_density = log_density
        z.grad = grad

    def update_potential_gradient(self, z: PhasePoint) -> None:
        """
        Refresh log_density and grad at z.q during integration.
        Touches log_density, grad.

        A DomainError from the model leaves log_density = -inf and a NaN
        gradient, which makes H(z) = +inf. Nothing is raised.
        """
        try:
            z.log_density = float(self.model.log_density(z.q))
            z.grad = jnp.asarray(self.model.gradient(z.q))
        except DomainError as e:
            logger.info(
                "The current Metropolis proposal is about to be rejected "
                "because of the following issue: %s", e
            )
            z.log_density = -math.inf
            z.grad = jnp.full_like(z.q, jnp.nan)

    def sample_momentum(self, z: PhasePoint, key: PRNGKey) -> None:
        """Draw p ~ N(0, M). Touches p only."""
        z.p = self.metric.sample_momentum(key, z.dim)

# Symplectic operations
def J_sym(qp: QP) -> QP:
    """
    J is the symplectic Jacobian matrix for Hamiltonians where
    J = ([[0, I], [-I, 0]])
    """
    return QP(q = qp.p, p = -qp.q)
