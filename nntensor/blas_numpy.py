"""
Vectorized kernel set built on NumPy.

Every function takes flat ``float32`` arrays (usually views into a tensor
buffer) and works in place on its output argument, mirroring the BLAS level-1
and level-3 routines the engine needs. ``matmul`` goes through
``numpy.matmul`` and therefore through whatever BLAS NumPy was built against.

An increment of 0 means "replay ``x[0]``", which is how broadcast runs are
fed to the kernels.
"""
import numpy as np

NAME = "numpy"


def _strided(x: np.ndarray, n: int, inc: int) -> np.ndarray:
    """Return the ``n`` elements of ``x`` visited with increment ``inc``."""
    if inc == 0:
        return np.broadcast_to(x[:1], (n,))
    return x[: (n - 1) * inc + 1 : inc]


def scaled_add(
    n: int,
    alpha: float,
    x: np.ndarray,
    y: np.ndarray,
    incx: int = 1,
    incy: int = 1,
) -> None:
    """``y += alpha * x`` over ``n`` elements."""
    if n <= 0:
        return
    xv = _strided(x, n, incx)
    yv = _strided(y, n, incy)
    if alpha == 1.0:
        yv += xv
    else:
        yv += np.float32(alpha) * xv


def copy(
    n: int,
    x: np.ndarray,
    y: np.ndarray,
    incx: int = 1,
    incy: int = 1,
) -> None:
    """``y[:] = x[:]`` over ``n`` elements."""
    if n <= 0:
        return
    _strided(y, n, incy)[...] = _strided(x, n, incx)


def scale(n: int, alpha: float, x: np.ndarray, incx: int = 1) -> None:
    """``x *= alpha`` over ``n`` elements."""
    if n <= 0:
        return
    _strided(x, n, incx)[...] *= np.float32(alpha)


def sum_abs(n: int, x: np.ndarray, incx: int = 1) -> float:
    """Sum of absolute values of ``n`` elements."""
    if n <= 0:
        return 0.0
    return float(np.abs(_strided(x, n, incx)).sum(dtype=np.float32))


def norm2(n: int, x: np.ndarray, incx: int = 1) -> float:
    """Euclidean norm of ``n`` elements."""
    if n <= 0:
        return 0.0
    xv = _strided(x, n, incx)
    return float(np.sqrt(np.dot(xv, xv)))


def matmul(
    m: int,
    n: int,
    k: int,
    alpha: float,
    a: np.ndarray,
    b: np.ndarray,
    beta: float,
    c: np.ndarray,
    trans_a: bool = False,
    trans_b: bool = False,
) -> None:
    """
    Row-major GEMM: ``C = alpha * op(A) @ op(B) + beta * C``.

    Parameters
    ----------
    m, n, k : int
        ``op(A)`` is ``(m, k)``, ``op(B)`` is ``(k, n)`` and ``C`` is ``(m, n)``.
    alpha, beta : float
        Scale factors. With ``beta == 0`` the previous content of ``C`` is
        ignored (so NaNs in an uninitialized output do not leak through).
    a, b, c : numpy.ndarray
        Flat buffers holding at least ``m*k``, ``k*n`` and ``m*n`` elements.
    trans_a, trans_b : bool
        If True, ``a`` is stored as ``(k, m)`` (resp. ``b`` as ``(n, k)``).
    """
    if m <= 0 or n <= 0:
        return
    cm = c[: m * n].reshape(m, n)
    if k <= 0:
        if beta == 0.0:
            cm[...] = 0.0
        else:
            cm *= np.float32(beta)
        return

    am = a[: m * k].reshape(k, m).T if trans_a else a[: m * k].reshape(m, k)
    bm = b[: k * n].reshape(n, k).T if trans_b else b[: k * n].reshape(k, n)

    prod = np.matmul(am, bm)
    if alpha != 1.0:
        prod *= np.float32(alpha)

    if beta == 0.0:
        cm[...] = prod
    else:
        cm *= np.float32(beta)
        cm += prod
