"""
Portable fallback kernel set written as explicit loops.

Same signatures and semantics as :mod:`nntensor.blas_numpy`. Arithmetic is
carried out on ``numpy.float32`` scalars so results stay in single precision.
The innermost loops of ``scaled_add`` and ``matmul`` are unrolled four ways.
"""
import math

import numpy as np

NAME = "naive"


def scaled_add(
    n: int,
    alpha: float,
    x: np.ndarray,
    y: np.ndarray,
    incx: int = 1,
    incy: int = 1,
) -> None:
    """``y += alpha * x`` over ``n`` elements."""
    alpha = np.float32(alpha)
    end = n - n % 4
    i = 0
    while i < end:
        y[i * incy] += alpha * x[i * incx]
        y[(i + 1) * incy] += alpha * x[(i + 1) * incx]
        y[(i + 2) * incy] += alpha * x[(i + 2) * incx]
        y[(i + 3) * incy] += alpha * x[(i + 3) * incx]
        i += 4
    for j in range(end, n):
        y[j * incy] += alpha * x[j * incx]


def copy(
    n: int,
    x: np.ndarray,
    y: np.ndarray,
    incx: int = 1,
    incy: int = 1,
) -> None:
    """``y[:] = x[:]`` over ``n`` elements."""
    for i in range(n):
        y[i * incy] = x[i * incx]


def scale(n: int, alpha: float, x: np.ndarray, incx: int = 1) -> None:
    """``x *= alpha`` over ``n`` elements."""
    alpha = np.float32(alpha)
    for i in range(n):
        x[i * incx] *= alpha


def sum_abs(n: int, x: np.ndarray, incx: int = 1) -> float:
    """Sum of absolute values of ``n`` elements."""
    total = np.float32(0.0)
    for i in range(n):
        total += abs(x[i * incx])
    return float(total)


def norm2(n: int, x: np.ndarray, incx: int = 1) -> float:
    """Euclidean norm of ``n`` elements."""
    total = np.float32(0.0)
    for i in range(n):
        v = x[i * incx]
        total += v * v
    return math.sqrt(float(total))


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

    See :func:`nntensor.blas_numpy.matmul` for the argument layout.
    """
    alpha = np.float32(alpha)
    beta = np.float32(beta)

    # element (i, l) of op(A) lives at i * a_row + l * a_col
    a_row, a_col = (1, m) if trans_a else (k, 1)
    # element (l, j) of op(B) lives at l * b_row + j * b_col
    b_row, b_col = (1, k) if trans_b else (n, 1)

    end = k - k % 4
    for i in range(m):
        a_base = i * a_row
        for j in range(n):
            b_base = j * b_col
            acc = np.float32(0.0)
            l = 0
            while l < end:
                acc += a[a_base + l * a_col] * b[b_base + l * b_row]
                acc += a[a_base + (l + 1) * a_col] * b[b_base + (l + 1) * b_row]
                acc += a[a_base + (l + 2) * a_col] * b[b_base + (l + 2) * b_row]
                acc += a[a_base + (l + 3) * a_col] * b[b_base + (l + 3) * b_row]
                l += 4
            for r in range(end, k):
                acc += a[a_base + r * a_col] * b[b_base + r * b_row]

            if beta == 0.0:
                c[i * n + j] = alpha * acc
            else:
                c[i * n + j] = alpha * acc + beta * c[i * n + j]
