"""
Description:
    Euclidean metrics (inverse mass matrices) for HMC.
    USE THE CORRECT ENVIRONMENT:  AHMC

Author: John Gallagher
Created: 2026-02-16
Last Modified: 2026-10-18
Version: 0.2

A metric is replaced wholesale between iterations by whatever adapts it. The
sampler never mutates one in place, so these objects are treated as values.
"""
from abc import ABC, abstractmethod
from typing import List
import jax.numpy as jnp
import jax.random as jr
from jax.scipy.linalg import solve_triangular
import numpy as np

from AHMC.datatypes import InvMassMatrix, PRNGKey, Writer

def cov(X):
    Xμ = jnp.mean(X, axis = 0)
    n=X.shape[0]
    return (X - Xμ).T@(X-Xμ)/(n-1)

def _regularize(var, n: int, eye):
    """Shrink a warmup estimate towards 1e-3 * I, heavier for short windows"""
    return (n / (n + 5.0)) * var + 1e-3 * (5.0 / (n + 5.0)) * eye

def _format_row(values) -> str:
    return ", ".join(f"{float(v):g}" for v in values)

class Metric(ABC):
    """
    K(p) = 0.5 * p.T @ M^{-1} @ p with momentum p ~ N(0, M).

    Subclasses hold M^{-1}, the inverse mass matrix.
    """

    @abstractmethod
    def kinetic(self, p: jnp.ndarray) -> float:
        """K(p)"""

    @abstractmethod
    def velocity(self, p: jnp.ndarray) -> jnp.ndarray:
        """∂K/∂p = M^{-1} p"""

    @abstractmethod
    def sample_momentum(self, key: PRNGKey, dim: int) -> jnp.ndarray:
        """Draw p ~ N(0, M)"""

    @abstractmethod
    def write_metric(self, writer: Writer) -> None:
        """Header line followed by one line per structural component"""

    def param_names(self) -> List[str]:
        return []

    def param_values(self) -> List[float]:
        return []

class UnitMetric(Metric):
    """M = I"""

    def kinetic(self, p):
        return 0.5 * jnp.dot(p, p)

    def velocity(self, p):
        return p

    def sample_momentum(self, key, dim):
        return jr.normal(key, shape=(dim,))

    def write_metric(self, writer):
        writer("No free parameters for unit metric")

class DiagonalMetric(Metric):
    def __init__(self, inv_metric: InvMassMatrix):
        inv_metric = jnp.asarray(inv_metric)
        if inv_metric.ndim != 1:
            raise ValueError(
                f"Diagonal inverse metric must be a vector, got shape {inv_metric.shape}"
            )
        if not bool(jnp.all(jnp.isfinite(inv_metric) & (inv_metric > 0))):
            raise ValueError(
                "Diagonal inverse metric must be finite and strictly positive"
            )
        self.inv_metric = inv_metric

    @classmethod
    def from_samples(cls, X: jnp.ndarray, regularize: bool = True) -> "DiagonalMetric":
        """Estimate M^{-1} from warmup draws X of shape (n, dim)"""
        X = jnp.asarray(X)
        n = X.shape[0]
        if n < 2:
            raise ValueError("Need at least two draws to estimate a metric")
        var = jnp.var(X, axis=0, ddof=1)
        if regularize:
            var = _regularize(var, n, jnp.ones_like(var))
        return cls(var)

    @property
    def dim(self) -> int:
        return self.inv_metric.shape[0]

    def kinetic(self, p):
        return 0.5 * jnp.dot(p, self.inv_metric * p)

    def velocity(self, p):
        return self.inv_metric * p

    def sample_momentum(self, key, dim):
        return jr.normal(key, shape=(dim,)) / jnp.sqrt(self.inv_metric)

    def write_metric(self, writer):
        writer("Diagonal elements of inverse mass matrix:")
        writer(_format_row(self.inv_metric))

    def param_names(self):
        return [f"inv_metric__{i}" for i in range(self.dim)]

    def param_values(self):
        return [float(v) for v in np.asarray(self.inv_metric)]

class DenseMetric(Metric):
    def __init__(self, inv_metric: InvMassMatrix, tol: float = 1e-8):
        inv_metric = jnp.asarray(inv_metric)
        if inv_metric.ndim != 2 or inv_metric.shape[0] != inv_metric.shape[1]:
            raise ValueError(
                f"Dense inverse metric must be a square matrix, got shape {inv_metric.shape}"
            )
        if not bool(jnp.allclose(inv_metric, inv_metric.T, atol=tol, rtol=tol)):
            raise ValueError("Dense inverse metric must be symmetric")
        L = jnp.linalg.cholesky(inv_metric)
        if not bool(jnp.all(jnp.isfinite(L))):
            raise ValueError("Dense inverse metric must be positive definite")
        self.inv_metric = inv_metric
        self._L = L # M^{-1} = L @ L.T

    @classmethod
    def from_samples(cls, X: jnp.ndarray, regularize: bool = True) -> "DenseMetric":
        """Estimate M^{-1} from warmup draws X of shape (n, dim)"""
        X = jnp.asarray(X)
        n = X.shape[0]
        if n < 2:
            raise ValueError("Need at least two draws to estimate a metric")
        S = cov(X)
        if regularize:
            S = _regularize(S, n, jnp.eye(S.shape[0]))
        return cls(0.5 * (S + S.T))

    @property
    def dim(self) -> int:
        return self.inv_metric.shape[0]

    def kinetic(self, p):
        return 0.5 * jnp.dot(p, self.inv_metric @ p)

    def velocity(self, p):
        return self.inv_metric @ p

    def sample_momentum(self, key, dim):
        # Cov(L^{-T} u) = (L L^T)^{-1} = M
        u = jr.normal(key, shape=(dim,))
        return solve_triangular(self._L.T, u, lower=False)

    def write_metric(self, writer):
        writer("Elements of inverse mass matrix:")
        for row in np.asarray(self.inv_metric):
            writer(_format_row(row))

    def param_names(self):
        return [f"inv_metric__{i}.{j}" for i in range(self.dim) for j in range(i + 1)]

    def param_values(self):
        M = np.asarray(self.inv_metric)
        return [float(M[i, j]) for i in range(self.dim) for j in range(i + 1)]

def make_metric(kind: str, dim: int) -> Metric:
    """Identity-initialised metric by name: 'unit', 'diag' or 'dense'"""
    if kind == "unit":
        return UnitMetric()
    if kind == "diag":
        return DiagonalMetric(jnp.ones(dim))
    if kind == "dense":
        return DenseMetric(jnp.eye(dim))
    raise ValueError(f"Unknown metric {kind!r}, expected 'unit', 'diag' or 'dense'")
