"""
Description:
    Core data structures for AHMC.
    USE THE CORRECT ENVIRONMENT:  AHMC

Author: John Gallagher
Created: 2026-02-16
Last Modified: 2026-10-18
Version: 0.2

All modules import from here to ensure type consistency and avoid indexing bugs.
"""
from typing import NamedTuple, Callable, Optional
import jax
import jax.numpy as jnp

class QP(NamedTuple):
    """Phase space state(q,p)"""
    q: jnp.ndarray # position
    p: jnp.ndarray # momentum

    @property
    def dim(self) -> int:
        """Dimension of configuration space"""
        return self.q.shape[0]
    def to_array(self) -> jnp.ndarray:
        """Convert to flat array [q,p]"""
        return jnp.concatenate([self.q, self.p])
    @classmethod
    def from_array(cls, arr: jnp.ndarray):
        """Convert from flat array[q,p]"""
        dim = arr.shape[0]//2
        return cls(q=arr[:dim], p=arr[dim:])

class PhasePoint:
    """
    Mutable phase space point owned by a sampler for the lifetime of a chain.

    Fields:
        q: position
        p: momentum
        log_density: log π(q), cached
        grad: ∇ log π(q), cached

    The cached fields are only valid for the current q. Anything that
    reassigns q from outside the integrator must call Hamiltonian.init
    before the point is evaluated again.

    The arrays are immutable jax arrays so a copy is a rebinding of the four
    fields; two points never share mutable state.
    """
    __slots__ = ("q", "p", "log_density", "grad")

    def __init__(
        self,
        q: jnp.ndarray,
        p: Optional[jnp.ndarray] = None,
        log_density: float = jnp.nan,
        grad: Optional[jnp.ndarray] = None
    ):
        self.q = jnp.asarray(q)
        self.p = jnp.zeros_like(self.q) if p is None else jnp.asarray(p)
        self.log_density = log_density
        self.grad = jnp.zeros_like(self.q) if grad is None else jnp.asarray(grad)

    @classmethod
    def zeros(cls, dim: int) -> "PhasePoint":
        return cls(q=jnp.zeros(dim))

    @property
    def dim(self) -> int:
        return self.q.shape[0]

    @property
    def qp(self) -> QP:
        """Immutable (q,p) view"""
        return QP(q=self.q, p=self.p)

    def copy(self) -> "PhasePoint":
        return PhasePoint(self.q, self.p, self.log_density, self.grad)

    def assign(self, other: "PhasePoint") -> None:
        """Value copy of every field of other, cached quantities included."""
        self.q = other.q
        self.p = other.p
        self.log_density = other.log_density
        self.grad = other.grad

    def flip_momentum(self) -> None:
        """p -> -p. Touches p only."""
        self.p = -self.p

    def __repr__(self) -> str:
        return f"PhasePoint(q={self.q}, p={self.p}, log_density={self.log_density})"

class Sample(NamedTuple):
    """Chain state selected by one transition"""
    q: jnp.ndarray
    log_prob: float
    accept_stat: float

class SamplerOutput(NamedTuple):
    samples: jnp.ndarray # (n_samples, dim) - positions only
    log_prob: jnp.ndarray # (n_samples,)
    accept_stat: jnp.ndarray # (n_samples,)
    accept_rate: float

class IntegratorState(NamedTuple):
    """State after an implicit midpoint solve"""
    qp: QP
    step_size: float
    n_iter: int
    converged: bool
    residual_norm: float

class IntegratorConfig(NamedTuple):
    """Configuration for the implicit integrator"""
    tol: float = 1e-10 # Tolerance of implicit method
    max_iter: int = 20 # Max Newton iter

# Type aliases for clarity
LogDensity = Callable[[jnp.ndarray], float]
Gradient = Callable[[jnp.ndarray], jnp.ndarray]
Writer = Callable[[str], None]
PRNGKey = jax.Array
InvMassMatrix = jnp.ndarray
PrecisionMatrix = jnp.ndarray
