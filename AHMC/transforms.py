"""
Description:
    Constrained <-> unconstrained parameter transforms.
    USE THE CORRECT ENVIRONMENT:  AHMC

Author: John Gallagher
Created: 2026-10-18
Last Modified: 2026-10-18
Version: 0.2

The sampler works on an unconstrained vector. These transforms only seed it
from, and report it back to, a constrained parameterisation.

    *_free(y, ...)       -> Result: unconstrained value or a TransformError
    *_constrain(x, ...)  -> (constrained value, log |Jacobian|)

Bad input never raises from a *_free function; the Result carries an error
kind instead, and Result.unwrap() raises TransformFailure for callers that
want an exception.
"""
import enum
from typing import Callable, Dict, List, NamedTuple, Optional, Tuple
import jax.numpy as jnp
import numpy as np

from AHMC.errors import TransformFailure

CONSTRAINT_TOLERANCE = 1e-8
LOG_TWO = np.log(2.0)

class TransformErrorKind(enum.Enum):
    NOT_POSITIVE = "not positive"
    BELOW_LOWER_BOUND = "below lower bound"
    ABOVE_UPPER_BOUND = "above upper bound"
    OUT_OF_BOUNDS = "out of bounds"
    NOT_ORDERED = "not ordered"
    NOT_POSITIVE_ORDERED = "not positive ordered"
    NOT_SIMPLEX = "not a simplex"
    NOT_UNIT_VECTOR = "not a unit vector"
    NOT_SQUARE = "not square"
    NOT_SYMMETRIC = "not symmetric"
    NOT_POSITIVE_DEFINITE = "not positive definite"
    NOT_CHOLESKY_FACTOR = "not a Cholesky factor"
    NOT_CORRELATION_MATRIX = "not a correlation matrix"
    INVALID_ARGUMENT = "invalid argument"

class TransformError(NamedTuple):
    kind: TransformErrorKind
    message: str

class Result(NamedTuple):
    """Unconstrained value, or the reason there is none"""
    value: Optional[jnp.ndarray]
    error: Optional[TransformError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap(self) -> jnp.ndarray:
        if self.error is not None:
            raise TransformFailure(self.error)
        return self.value

def _ok(value) -> Result:
    return Result(jnp.asarray(value))

def _fail(kind: TransformErrorKind, message: str) -> Result:
    return Result(None, TransformError(kind, message))

def _logit(u):
    return np.log(u) - np.log1p(-u)

def _log_inv_logit(x):
    return -np.logaddexp(0.0, -x)

def _inv_logit(x):
    return 1.0 / (1.0 + np.exp(-x))

# Scalars (elementwise on arrays)

def identity_free(y) -> Result:
    return _ok(y)

def positive_free(y) -> Result:
    y = np.asarray(y, dtype=float)
    if np.any(y < 0):
        return _fail(TransformErrorKind.NOT_POSITIVE, f"{y} is negative")
    return _ok(np.log(y))

def positive_constrain(x) -> Tuple[jnp.ndarray, float]:
    x = np.asarray(x, dtype=float)
    return jnp.asarray(np.exp(x)), float(np.sum(x))

def lb_free(y, lb: float) -> Result:
    y = np.asarray(y, dtype=float)
    if lb == -np.inf:
        return _ok(y)
    if np.any(y < lb):
        return _fail(TransformErrorKind.BELOW_LOWER_BOUND, f"{y} is below lower bound {lb}")
    return _ok(np.log(y - lb))

def lb_constrain(x, lb: float) -> Tuple[jnp.ndarray, float]:
    x = np.asarray(x, dtype=float)
    if lb == -np.inf:
        return jnp.asarray(x), 0.0
    return jnp.asarray(np.exp(x) + lb), float(np.sum(x))

def ub_free(y, ub: float) -> Result:
    y = np.asarray(y, dtype=float)
    if ub == np.inf:
        return _ok(y)
    if np.any(y > ub):
        return _fail(TransformErrorKind.ABOVE_UPPER_BOUND, f"{y} is above upper bound {ub}")
    return _ok(np.log(ub - y))

def ub_constrain(x, ub: float) -> Tuple[jnp.ndarray, float]:
    x = np.asarray(x, dtype=float)
    if ub == np.inf:
        return jnp.asarray(x), 0.0
    return jnp.asarray(ub - np.exp(x)), float(np.sum(x))

def lub_free(y, lb: float, ub: float) -> Result:
    if not lb < ub:
        return _fail(
            TransformErrorKind.INVALID_ARGUMENT,
            f"lower bound {lb} must be less than upper bound {ub}"
        )
    if lb == -np.inf:
        return ub_free(y, ub)
    if ub == np.inf:
        return lb_free(y, lb)
    y = np.asarray(y, dtype=float)
    if np.any((y < lb) | (y > ub)):
        return _fail(TransformErrorKind.OUT_OF_BOUNDS, f"{y} is outside [{lb}, {ub}]")
    return _ok(_logit((y - lb) / (ub - lb)))

def lub_constrain(x, lb: float, ub: float) -> Tuple[jnp.ndarray, float]:
    if lb == -np.inf:
        return ub_constrain(x, ub)
    if ub == np.inf:
        return lb_constrain(x, lb)
    x = np.asarray(x, dtype=float)
    lp = np.log(ub - lb) + _log_inv_logit(x) + _log_inv_logit(-x)
    return jnp.asarray(lb + (ub - lb) * _inv_logit(x)), float(np.sum(lp))

def offset_multiplier_free(y, offset: float, multiplier: float) -> Result:
    if not (np.isfinite(offset) and np.isfinite(multiplier) and multiplier > 0):
        return _fail(
            TransformErrorKind.INVALID_ARGUMENT,
            f"offset {offset} must be finite and multiplier {multiplier} finite and positive"
        )
    return _ok((np.asarray(y, dtype=float) - offset) / multiplier)

def offset_multiplier_constrain(x, offset: float, multiplier: float) -> Tuple[jnp.ndarray, float]:
    x = np.asarray(x, dtype=float)
    return jnp.asarray(offset + multiplier * x), float(x.size * np.log(multiplier))

def corr_free(y) -> Result:
    y = np.asarray(y, dtype=float)
    if np.any((y < -1) | (y > 1)):
        return _fail(TransformErrorKind.OUT_OF_BOUNDS, f"{y} is outside [-1, 1]")
    return _ok(np.arctanh(y))

def corr_constrain(x) -> Tuple[jnp.ndarray, float]:
    t = np.tanh(np.asarray(x, dtype=float))
    return jnp.asarray(t), float(np.sum(np.log1p(-t**2)))

def prob_free(y) -> Result:
    y = np.asarray(y, dtype=float)
    if np.any((y < 0) | (y > 1)):
        return _fail(TransformErrorKind.OUT_OF_BOUNDS, f"{y} is outside [0, 1]")
    return _ok(_logit(y))

def prob_constrain(x) -> Tuple[jnp.ndarray, float]:
    x = np.asarray(x, dtype=float)
    lp = _log_inv_logit(x) + _log_inv_logit(-x)
    return jnp.asarray(_inv_logit(x)), float(np.sum(lp))

# Vectors

def ordered_free(y) -> Result:
    y = np.asarray(y, dtype=float)
    if y.ndim != 1:
        return _fail(TransformErrorKind.INVALID_ARGUMENT, f"expected a vector, got shape {y.shape}")
    if np.any(np.diff(y) <= 0):
        return _fail(TransformErrorKind.NOT_ORDERED, f"{y} is not strictly increasing")
    return _ok(np.concatenate([y[:1], np.log(np.diff(y))]))

def ordered_constrain(x) -> Tuple[jnp.ndarray, float]:
    x = np.asarray(x, dtype=float)
    if x.size == 0:
        return jnp.asarray(x), 0.0
    y = np.concatenate([x[:1], x[0] + np.cumsum(np.exp(x[1:]))])
    return jnp.asarray(y), float(np.sum(x[1:]))

def positive_ordered_free(y) -> Result:
    y = np.asarray(y, dtype=float)
    if y.ndim != 1:
        return _fail(TransformErrorKind.INVALID_ARGUMENT, f"expected a vector, got shape {y.shape}")
    if y.size and y[0] < 0:
        return _fail(TransformErrorKind.NOT_POSITIVE_ORDERED, f"first element of {y} is negative")
    if np.any(np.diff(y) <= 0):
        return _fail(TransformErrorKind.NOT_POSITIVE_ORDERED, f"{y} is not strictly increasing")
    return _ok(np.log(np.concatenate([y[:1], np.diff(y)])))

def positive_ordered_constrain(x) -> Tuple[jnp.ndarray, float]:
    x = np.asarray(x, dtype=float)
    return jnp.asarray(np.cumsum(np.exp(x))), float(np.sum(x))

def simplex_free(y, tol: float = CONSTRAINT_TOLERANCE) -> Result:
    """Stick breaking: K simplex -> K-1 reals"""
    y = np.asarray(y, dtype=float)
    if y.ndim != 1 or y.size == 0:
        return _fail(TransformErrorKind.NOT_SIMPLEX, f"expected a non-empty vector, got shape {y.shape}")
    if abs(np.sum(y) - 1.0) > tol:
        return _fail(TransformErrorKind.NOT_SIMPLEX, f"{y} sums to {np.sum(y)}, not 1")
    if np.any(y < 0):
        return _fail(TransformErrorKind.NOT_SIMPLEX, f"{y} has negative elements")
    N = y.size - 1
    x = np.empty(N)
    stick_len = 1.0
    for k in range(N):
        x[k] = _logit(y[k] / stick_len) + np.log(N - k)
        stick_len -= y[k]
    return _ok(x)

def simplex_constrain(x) -> Tuple[jnp.ndarray, float]:
    x = np.asarray(x, dtype=float)
    N = x.size
    y = np.empty(N + 1)
    lp = 0.0
    stick_len = 1.0
    for k in range(N):
        adj = x[k] - np.log(N - k)
        y[k] = stick_len * _inv_logit(adj)
        lp += np.log(stick_len) + _log_inv_logit(adj) + _log_inv_logit(-adj)
        stick_len -= y[k]
    y[N] = stick_len
    return jnp.asarray(y), float(lp)

def unit_vector_free(y, tol: float = CONSTRAINT_TOLERANCE) -> Result:
    y = np.asarray(y, dtype=float)
    if y.ndim != 1 or y.size == 0:
        return _fail(TransformErrorKind.NOT_UNIT_VECTOR, f"expected a non-empty vector, got shape {y.shape}")
    if abs(np.dot(y, y) - 1.0) > tol:
        return _fail(TransformErrorKind.NOT_UNIT_VECTOR, f"{y} has squared norm {np.dot(y, y)}, not 1")
    return _ok(y)

def unit_vector_constrain(x) -> Tuple[jnp.ndarray, float]:
    x = np.asarray(x, dtype=float)
    sq = np.dot(x, x)
    return jnp.asarray(x / np.sqrt(sq)), float(-0.5 * sq)

# Matrices

def cholesky_factor_cov_free(L) -> Result:
    """
    M x N lower triangular factor with positive diagonal, M >= N, to
    N(N+1)/2 + (M-N)N reals. Row by row, diagonal entries on the log scale.
    """
    L = np.asarray(L, dtype=float)
    if L.ndim != 2 or L.size == 0:
        return _fail(TransformErrorKind.NOT_CHOLESKY_FACTOR, f"expected a non-empty matrix, got shape {L.shape}")
    M, N = L.shape
    if M < N:
        return _fail(TransformErrorKind.NOT_CHOLESKY_FACTOR, f"{M} rows is fewer than {N} columns")
    if np.any(np.triu(L, k=1) != 0):
        return _fail(TransformErrorKind.NOT_CHOLESKY_FACTOR, "matrix is not lower triangular")
    if np.any(np.diag(L) <= 0):
        return _fail(TransformErrorKind.NOT_CHOLESKY_FACTOR, "diagonal is not positive")
    x = []
    for m in range(N):
        x.extend(L[m, :m])
        x.append(np.log(L[m, m]))
    for m in range(N, M):
        x.extend(L[m, :N])
    return _ok(np.array(x))

def cholesky_factor_cov_constrain(x, M: int, N: int) -> Tuple[jnp.ndarray, float]:
    x = np.asarray(x, dtype=float)
    expected = N * (N + 1) // 2 + (M - N) * N
    if M < N or x.size != expected:
        raise ValueError(f"Need {expected} values for a {M} x {N} Cholesky factor, got {x.size}")
    L = np.zeros((M, N))
    lp = 0.0
    pos = 0
    for m in range(N):
        L[m, :m] = x[pos:pos + m]
        pos += m
        L[m, m] = np.exp(x[pos])
        lp += x[pos]
        pos += 1
    for m in range(N, M):
        L[m, :] = x[pos:pos + N]
        pos += N
    return jnp.asarray(L), float(lp)

def cov_matrix_free(S, tol: float = CONSTRAINT_TOLERANCE) -> Result:
    """K x K covariance matrix to K + K(K-1)/2 reals via its Cholesky factor"""
    S = np.asarray(S, dtype=float)
    if S.ndim != 2 or S.shape[0] != S.shape[1] or S.size == 0:
        return _fail(TransformErrorKind.NOT_SQUARE, f"expected a non-empty square matrix, got shape {S.shape}")
    if not np.allclose(S, S.T, atol=tol, rtol=0):
        return _fail(TransformErrorKind.NOT_SYMMETRIC, "matrix is not symmetric")
    try:
        L = np.linalg.cholesky(S)
    except np.linalg.LinAlgError:
        return _fail(TransformErrorKind.NOT_POSITIVE_DEFINITE, "matrix is not positive definite")
    K = S.shape[0]
    x = []
    for m in range(K):
        x.extend(L[m, :m])
        x.append(np.log(L[m, m]))
    return _ok(np.array(x))

def cov_matrix_constrain(x, K: int) -> Tuple[jnp.ndarray, float]:
    x = np.asarray(x, dtype=float)
    expected = K + K * (K - 1) // 2
    if x.size != expected:
        raise ValueError(f"Need {expected} values for a {K} x {K} covariance matrix, got {x.size}")
    L = np.zeros((K, K))
    pos = 0
    for m in range(K):
        L[m, :m] = x[pos:pos + m]
        pos += m
        L[m, m] = np.exp(x[pos])
        pos += 1
    # Jacobian of L -> L L^T plus the exp on the diagonal
    lp = K * LOG_TWO + sum((K - k + 1) * np.log(L[k, k]) for k in range(K))
    return jnp.asarray(L @ L.T), float(lp)

def _lower_pairs(K: int, rowwise: bool):
    """Strictly lower triangular (i, j), row by row or column by column"""
    if rowwise:
        return [(i, j) for i in range(1, K) for j in range(i)]
    return [(i, j) for j in range(K - 1) for i in range(j + 1, K)]

def _partial_correlations(L, rowwise: bool):
    """Canonical partial correlations of a Cholesky factor with unit rows"""
    pairs = _lower_pairs(L.shape[0], rowwise)
    return np.array([L[i, j] / np.sqrt(1.0 - np.sum(L[i, :j]**2)) for i, j in pairs])

def _unit_row_cholesky(cpcs, K: int, rowwise: bool):
    """Inverse of _partial_correlations, with log(1 - row sum of squares) before each entry"""
    L = np.zeros((K, K))
    pairs = _lower_pairs(K, rowwise)
    remaining = np.ones(K)
    log_remaining = np.zeros(len(pairs))
    for pos, (i, j) in enumerate(pairs):
        log_remaining[pos] = np.log(remaining[i])
        L[i, j] = cpcs[pos] * np.sqrt(remaining[i])
        remaining[i] -= L[i, j]**2
    L[np.diag_indices(K)] = np.sqrt(remaining)
    return L, log_remaining, pairs

def cholesky_factor_corr_free(L, tol: float = CONSTRAINT_TOLERANCE) -> Result:
    """K x K Cholesky factor of a correlation matrix to K(K-1)/2 reals, row by row"""
    L = np.asarray(L, dtype=float)
    if L.ndim != 2 or L.shape[0] != L.shape[1] or L.size == 0:
        return _fail(TransformErrorKind.NOT_CHOLESKY_FACTOR, f"expected a non-empty square matrix, got shape {L.shape}")
    if np.any(np.triu(L, k=1) != 0):
        return _fail(TransformErrorKind.NOT_CHOLESKY_FACTOR, "matrix is not lower triangular")
    if np.any(np.diag(L) <= 0):
        return _fail(TransformErrorKind.NOT_CHOLESKY_FACTOR, "diagonal is not positive")
    if np.any(np.abs(np.sum(L**2, axis=1) - 1.0) > tol):
        return _fail(TransformErrorKind.NOT_CHOLESKY_FACTOR, "rows are not unit vectors")
    return _ok(np.arctanh(_partial_correlations(L, rowwise=True)))

def cholesky_factor_corr_constrain(x, K: int) -> Tuple[jnp.ndarray, float]:
    x = np.asarray(x, dtype=float)
    expected = K * (K - 1) // 2
    if x.size != expected:
        raise ValueError(f"Need {expected} values for a {K} x {K} correlation Cholesky factor, got {x.size}")
    cpcs = np.tanh(x)
    L, log_remaining, pairs = _unit_row_cholesky(cpcs, K, rowwise=True)
    lp = np.sum(np.log1p(-cpcs**2))
    lp += 0.5 * sum(log_remaining[pos] for pos, (i, j) in enumerate(pairs) if j > 0)
    return jnp.asarray(L), float(lp)

def corr_matrix_free(S, tol: float = CONSTRAINT_TOLERANCE) -> Result:
    """K x K correlation matrix to K(K-1)/2 reals, partial correlations column by column"""
    S = np.asarray(S, dtype=float)
    if S.ndim != 2 or S.shape[0] != S.shape[1] or S.size == 0:
        return _fail(TransformErrorKind.NOT_SQUARE, f"expected a non-empty square matrix, got shape {S.shape}")
    if not np.allclose(S, S.T, atol=tol, rtol=0):
        return _fail(TransformErrorKind.NOT_SYMMETRIC, "matrix is not symmetric")
    if np.any(np.abs(np.diag(S) - 1.0) > tol):
        return _fail(TransformErrorKind.NOT_CORRELATION_MATRIX, "diagonal is not all ones")
    try:
        L = np.linalg.cholesky(S)
    except np.linalg.LinAlgError:
        return _fail(TransformErrorKind.NOT_POSITIVE_DEFINITE, "matrix is not positive definite")
    return _ok(np.arctanh(_partial_correlations(L, rowwise=False)))

def corr_matrix_constrain(x, K: int) -> Tuple[jnp.ndarray, float]:
    x = np.asarray(x, dtype=float)
    expected = K * (K - 1) // 2
    if x.size != expected:
        raise ValueError(f"Need {expected} values for a {K} x {K} correlation matrix, got {x.size}")
    cpcs = np.tanh(x)
    L, _, pairs = _unit_row_cholesky(cpcs, K, rowwise=False)
    # column j of the partial correlations carries weight K - j - 2
    weights = np.array([K - j - 2 for _, j in pairs])
    lp = np.sum(np.log1p(-cpcs**2)) + 0.5 * np.sum(weights * np.log1p(-cpcs**2))
    return jnp.asarray(L @ L.T), float(lp)

_FREE: Dict[str, Callable[..., Result]] = {
    "real": identity_free,
    "positive": positive_free,
    "lb": lb_free,
    "ub": ub_free,
    "lub": lub_free,
    "offset_multiplier": offset_multiplier_free,
    "corr": corr_free,
    "prob": prob_free,
    "ordered": ordered_free,
    "positive_ordered": positive_ordered_free,
    "simplex": simplex_free,
    "unit_vector": unit_vector_free,
    "cholesky_factor_cov": cholesky_factor_cov_free,
    "cov_matrix": cov_matrix_free,
    "cholesky_factor_corr": cholesky_factor_corr_free,
    "corr_matrix": corr_matrix_free,
}

class UnconstrainWriter:
    """
    Accumulates unconstrained reals (data_r) and integers (data_i) for
    seeding a chain.

    Each write returns its Result and only appends on success, so a failed
    write leaves the writer as it was.
    """

    def __init__(self, tol: float = CONSTRAINT_TOLERANCE):
        self.tol = tol
        self.data_r: List[float] = []
        self.data_i: List[int] = []

    def integer(self, n: int) -> None:
        self.data_i.append(int(n))

    def write(self, kind: str, value, *args) -> Result:
        """
        Unconstrain value with the named transform and append it.

        Args:
            kind: key of the transform, e.g. 'lub' or 'simplex'
            value: constrained value
            *args: transform arguments such as bounds
        """
        try:
            free = _FREE[kind]
        except KeyError:
            raise ValueError(f"Unknown transform {kind!r}") from None
        if kind in ("simplex", "unit_vector", "cov_matrix", "cholesky_factor_corr", "corr_matrix"):
            result = free(value, *args, tol=self.tol)
        else:
            result = free(value, *args)
        if result.ok:
            # matrices go in column major order
            self.data_r.extend(np.ravel(np.asarray(result.value), order="F").tolist())
        return result

    def params_r(self) -> jnp.ndarray:
        return jnp.asarray(self.data_r)
