"""
Description:
    Numerical integrators for Hamiltonian dynamics.
    USE THE CORRECT ENVIRONMENT:  AHMC

Author: John Gallagher
Created: 2026-02-16
Last Modified: 2026-10-18
Version: 0.2

Every integrator advances a PhasePoint in place by one step and leaves its
cached log_density/grad synchronised with the new q. A negative step size
runs the dynamics backwards. Non-finite values are never raised on, they
flow through to Hamiltonian.H which reports them as +inf.
"""
import logging
import math
from abc import ABC, abstractmethod
from typing import Callable, Optional
import jax
import jax.numpy as jnp
from AHMC.datatypes import QP, PhasePoint, IntegratorState, IntegratorConfig
from AHMC.errors import DomainError
from AHMC.hamiltonian import Hamiltonian, J_sym

logger = logging.getLogger(__name__)

class Integrator(ABC):
    @abstractmethod
    def evolve(self, z: PhasePoint, hamiltonian: Hamiltonian, step_size: float) -> None:
        """
        One symplectic step of size step_size, in place.

        Pre: z.log_density and z.grad match z.q.
        Post: q, p, log_density and grad all updated and consistent.
        """

class ExplicitLeapfrog(Integrator):
    """
    Single lf integration step.

    Does p-first: half step momentum, full step position, half step momentum.
    Only valid for separable Hamiltonians, K depends on p alone.
    """

    def begin_update_p(self, z: PhasePoint, hamiltonian: Hamiltonian, τ: float) -> None:
        """Touches p"""
        z.p = z.p - τ * hamiltonian.dphi_dq(z)

    def update_q(self, z: PhasePoint, hamiltonian: Hamiltonian, τ: float) -> None:
        """Touches q, then refreshes log_density and grad"""
        z.q = z.q + τ * hamiltonian.dtau_dp(z)
        hamiltonian.update_potential_gradient(z)

    def end_update_p(self, z: PhasePoint, hamiltonian: Hamiltonian, τ: float) -> None:
        """Touches p"""
        z.p = z.p - τ * hamiltonian.dphi_dq(z)

    def evolve(self, z, hamiltonian, step_size):
        # Half step momentum
        self.begin_update_p(z, hamiltonian, 0.5 * step_size)
        # Full step position
        self.update_q(z, hamiltonian, step_size)
        # Half step momentum
        self.end_update_p(z, hamiltonian, 0.5 * step_size)

def midpt_step(
        qp: QP,
        gradH: Callable[[QP], QP],
        τ: float,
        config: IntegratorConfig,
        solve: Callable = jnp.linalg.solve
) -> tuple[QP, IntegratorState]:
    """
    Single implicit midpoint step via Newton's method

    Solves: qp_{n+1} = qp_n + τ J ∇H(0.5(qp_n + qp_{n+1}))

    Using Newton iteration on
    F(y) = y - qp_n - τ J ∇H(0.5(qp_n + y)) = 0

    x0: flat [q,p] at the start of the step
    y: flat Newton iterate

    gradH must be traceable by jax since F is differentiated.
    """
    x0 = qp.to_array()

    def G(y):
        """
        Fixed point map: G(y) = x0 + τ J ∇H(0.5(x0 + y))
        """
        midpoint = QP.from_array(0.5 * (x0 + y))
        return x0 + τ * J_sym(gradH(midpoint)).to_array()

    def F(y):
        return y - G(y)

    jacF = jax.jacobian(F)

    def newton_step(y):
        return y - solve(jacF(y), F(y))

    def cond(carry):
        """bool for while err> tol and iter< max_iter"""
        i, y = carry
        err = jnp.linalg.norm(F(y))
        return (err > config.tol) & (i < config.max_iter)

    def body_step(carry):
        i, y = carry
        return i + 1, newton_step(y)

    n_iter, qp_out_flat = jax.lax.while_loop(cond, body_step, (0, x0))

    res_norm = jnp.linalg.norm(F(qp_out_flat))
    state = IntegratorState(
        qp = QP.from_array(qp_out_flat),
        step_size = τ,
        n_iter = int(n_iter),
        converged = bool(res_norm <= config.tol),
        residual_norm = float(res_norm)
    )
    return state.qp, state

class ImplicitMidpoint(Integrator):
    """
    Implicit midpoint rule. Symmetric and symplectic for any Hamiltonian,
    reversible up to the Newton tolerance.

    The Newton solve traces the model gradient. A model that signals leaving
    its support from Python control flow cannot be traced there, and a
    failed solve leaves z divergent (log_density = -inf, NaN gradient) just
    as a DomainError during leapfrog does.
    """

    def __init__(
        self,
        config: Optional[IntegratorConfig] = None,
        solve: Callable = jnp.linalg.solve
    ):
        self.config = IntegratorConfig() if config is None else config
        self.solve = solve
        self.last_state: Optional[IntegratorState] = None

    def evolve(self, z, hamiltonian, step_size):
        try:
            qp_out, state = midpt_step(z.qp, hamiltonian.grad, step_size, self.config, self.solve)
        except (DomainError, jax.errors.ConcretizationTypeError) as e:
            logger.info(
                "The current Metropolis proposal is about to be rejected "
                "because the implicit midpoint solve failed: %s", e
            )
            self.last_state = None
            z.log_density = -math.inf
            z.grad = jnp.full_like(z.q, jnp.nan)
            return
        if not state.converged:
            logger.debug(
                "Implicit midpoint did not converge: residual %.3g after %d iterations",
                state.residual_norm, state.n_iter
            )
        self.last_state = state
        z.q, z.p = qp_out
        hamiltonian.update_potential_gradient(z)

def make_integrator(kind: str) -> Integrator:
    """Integrator by name: 'leapfrog' or 'midpoint'"""
    if kind == "leapfrog":
        return ExplicitLeapfrog()
    if kind == "midpoint":
        return ImplicitMidpoint()
    raise ValueError(f"Unknown integrator {kind!r}, expected 'leapfrog' or 'midpoint'")
