"""
Description:
    Target models and target distribution generators.
    USE THE CORRECT ENVIRONMENT:  AHMC

Author: John Gallagher
Created: 2026-02-16
Last Modified: 2026-10-18
Version: 0.2
"""
from typing import NamedTuple
import jax
import jax.numpy as jnp
from AHMC.datatypes import LogDensity, Gradient, PrecisionMatrix
from AHMC.errors import DomainError

class Model(NamedTuple):
    """
    Log density and gradient on the unconstrained space.

    Either callable may raise DomainError when q is outside the support.
    """
    log_density: LogDensity
    gradient: Gradient
    dim: int

    @classmethod
    def from_log_density(cls, log_density: LogDensity, dim: int, jit: bool = True):
        """Build a model whose gradient comes from jax.grad"""
        gradient = jax.grad(log_density)
        if jit:
            return cls(jax.jit(log_density), jax.jit(gradient), dim)
        return cls(log_density, gradient, dim)

def gen_gaussian(
        dim: int = 2,
        precision_matrix: PrecisionMatrix = None,
        cov: jnp.ndarray = None,
        mean: jnp.ndarray = None
) -> Model:
    if precision_matrix is not None and cov is not None:
        raise ValueError(
            "Please supply either a precision_matrix or a cov, not both"
        )

    if precision_matrix is None and cov is not None:
        precision_matrix = jnp.linalg.inv(cov)

    if precision_matrix is None and cov is None:
        precision_matrix = jnp.eye(dim)
    dim = precision_matrix.shape[0]
    mean = jnp.zeros(dim) if mean is None else jnp.asarray(mean)

    def log_density(q: jnp.ndarray) -> float:
        """Gaussian log density (unnormalized)"""
        r = q - mean
        return -0.5 * jnp.dot(r, precision_matrix @ r)

    def gradient(q: jnp.ndarray) -> jnp.ndarray:
        return -precision_matrix @ (q - mean)

    return Model(log_density, gradient, dim)

def gen_half_normal(scale: float = 1.0) -> Model:
    """
    One dimensional half normal on q > 0.

    Raises DomainError outside the support, like a model with a
    positivity constraint evaluated without its transform.
    """
    def check(q):
        if not bool(q[0] > 0):
            raise DomainError(f"q = {float(q[0])} is outside the support (0, inf)")

    def log_density(q: jnp.ndarray) -> float:
        check(q)
        return -0.5 * (q[0] / scale)**2

    def gradient(q: jnp.ndarray) -> jnp.ndarray:
        check(q)
        return -q / scale**2

    return Model(log_density, gradient, 1)

def gen_flat(dim: int = 1) -> Model:
    """Improper uniform density on R^dim"""
    def log_density(q: jnp.ndarray) -> float:
        return 0.0

    def gradient(q: jnp.ndarray) -> jnp.ndarray:
        return jnp.zeros_like(q)

    return Model(log_density, gradient, dim)

def gen_perturb_precision(
        dim: int = 2,
        perturbation: float = 0.05
) -> PrecisionMatrix:
    prec = jnp.diag(jnp.ones(dim))
    prec += perturbation * jnp.diag(jnp.ones(dim-1), k=-1 )
    prec += perturbation * jnp.diag(jnp.ones(dim-1), k=1 )
    return prec
