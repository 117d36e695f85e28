"""
Numeric backend selection.

The kernel set is chosen once, when this module is first imported, from the
``NNTENSOR_BLAS`` environment variable:

- ``numpy`` (default): vectorized kernels from :mod:`nntensor.blas_numpy`.
- ``naive``: explicit loops from :mod:`nntensor.blas_naive`.

Tensor code calls the functions below and never inspects which set is active.
"""
import logging
import os
from types import ModuleType

import numpy as np

from nntensor import blas_naive, blas_numpy

logger = logging.getLogger("nntensor.blas")

_KERNEL_SETS = {
    blas_numpy.NAME: blas_numpy,
    blas_naive.NAME: blas_naive,
}


def _select_kernels() -> ModuleType:
    requested = os.environ.get("NNTENSOR_BLAS", blas_numpy.NAME).strip().lower()
    kernels = _KERNEL_SETS.get(requested)
    if kernels is None:
        logger.warning(
            "Unknown NNTENSOR_BLAS=%r, falling back to %r", requested, blas_numpy.NAME
        )
        kernels = blas_numpy
    logger.debug("Using %s kernel set", kernels.NAME)
    return kernels


_kernels = _select_kernels()

BACKEND_NAME: str = _kernels.NAME
"""str: Name of the kernel set selected at import."""


def scaled_add(
    n: int,
    alpha: float,
    x: np.ndarray,
    y: np.ndarray,
    incx: int = 1,
    incy: int = 1,
) -> None:
    """
    Scaled vector addition, ``y += alpha * x``.

    Parameters
    ----------
    n : int
        Number of elements.
    alpha : float
        Scale applied to ``x``.
    x, y : numpy.ndarray
        Flat ``float32`` buffers; ``y`` is updated in place.
    incx, incy : int, default 1
        Element increments. ``incx == 0`` replays ``x[0]`` ``n`` times.
    """
    _kernels.scaled_add(n, alpha, x, y, incx, incy)


def copy(
    n: int,
    x: np.ndarray,
    y: np.ndarray,
    incx: int = 1,
    incy: int = 1,
) -> None:
    """Copy ``n`` elements of ``x`` into ``y``."""
    _kernels.copy(n, x, y, incx, incy)


def scale(n: int, alpha: float, x: np.ndarray, incx: int = 1) -> None:
    """Scale ``n`` elements of ``x`` by ``alpha`` in place."""
    _kernels.scale(n, alpha, x, incx)


def sum_abs(n: int, x: np.ndarray, incx: int = 1) -> float:
    """Return the sum of absolute values of ``n`` elements of ``x``."""
    return _kernels.sum_abs(n, x, incx)


def norm2(n: int, x: np.ndarray, incx: int = 1) -> float:
    """Return the Euclidean norm of ``n`` elements of ``x``."""
    return _kernels.norm2(n, x, incx)


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
    Row-major general matrix multiply, ``C = alpha * op(A) @ op(B) + beta * C``.

    Parameters
    ----------
    m, n, k : int
        ``op(A)`` is ``(m, k)``, ``op(B)`` is ``(k, n)``, ``C`` is ``(m, n)``.
    alpha, beta : float
        Scale factors. ``beta == 0`` overwrites ``C``.
    a, b, c : numpy.ndarray
        Flat ``float32`` buffers; ``c`` is updated in place.
    trans_a, trans_b : bool, default False
        Interpret the stored matrix as transposed.

    Notes
    -----
    Both kernel sets agree to floating-point rounding tolerance, not bit for
    bit: the vectorized path may sum in a different order.
    """
    _kernels.matmul(m, n, k, alpha, a, b, beta, c, trans_a, trans_b)
