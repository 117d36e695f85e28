import numpy as np
import pytest

from nntensor import blas, blas_naive, blas_numpy
from tests.utils import assert_close

KERNEL_SETS = [blas_numpy, blas_naive]


@pytest.mark.parametrize("k", KERNEL_SETS, ids=lambda k: k.NAME)
@pytest.mark.parametrize("n", [1, 4, 7, 16])
def test_scaled_add(rng, k, n):
    x = rng.normal(size=n).astype(np.float32)
    y = rng.normal(size=n).astype(np.float32)
    expected = y + np.float32(0.5) * x
    k.scaled_add(n, 0.5, x, y)
    assert_close(y, expected)


@pytest.mark.parametrize("k", KERNEL_SETS, ids=lambda k: k.NAME)
def test_scaled_add_zero_increment_replays_first_value(k):
    x = np.array([3.0, 100.0], dtype=np.float32)
    y = np.zeros(5, dtype=np.float32)
    k.scaled_add(5, 2.0, x, y, 0, 1)
    assert_close(y, np.full(5, 6.0))


@pytest.mark.parametrize("k", KERNEL_SETS, ids=lambda k: k.NAME)
def test_strided_copy_and_scale(k):
    x = np.arange(10, dtype=np.float32)
    y = np.zeros(10, dtype=np.float32)
    k.copy(5, x, y, 2, 2)
    assert_close(y, [0, 0, 2, 0, 4, 0, 6, 0, 8, 0])
    k.scale(5, -1.0, y, 2)
    assert_close(y, [0, 0, -2, 0, -4, 0, -6, 0, -8, 0])


@pytest.mark.parametrize("k", KERNEL_SETS, ids=lambda k: k.NAME)
def test_sum_abs_and_norm2(k):
    x = np.array([3.0, -4.0, 0.0], dtype=np.float32)
    assert k.sum_abs(3, x) == pytest.approx(7.0)
    assert k.norm2(3, x) == pytest.approx(5.0)
    assert k.sum_abs(0, x) == 0.0


@pytest.mark.parametrize("k", KERNEL_SETS, ids=lambda k: k.NAME)
@pytest.mark.parametrize("trans_a", [False, True])
@pytest.mark.parametrize("trans_b", [False, True])
def test_matmul_matches_numpy(rng, k, trans_a, trans_b):
    m, n, kk = 3, 5, 6
    a = rng.normal(size=(kk, m) if trans_a else (m, kk)).astype(np.float32)
    b = rng.normal(size=(n, kk) if trans_b else (kk, n)).astype(np.float32)
    c = rng.normal(size=(m, n)).astype(np.float32)

    op_a = a.T if trans_a else a
    op_b = b.T if trans_b else b
    expected = 2.0 * op_a @ op_b + 0.5 * c

    out = c.reshape(-1).copy()
    k.matmul(m, n, kk, 2.0, a.reshape(-1), b.reshape(-1), 0.5, out, trans_a, trans_b)
    assert_close(out.reshape(m, n), expected, atol=1e-5, rtol=1e-5)


@pytest.mark.parametrize("k", KERNEL_SETS, ids=lambda k: k.NAME)
def test_matmul_beta_zero_ignores_garbage(k):
    a = np.ones(4, dtype=np.float32)
    b = np.ones(4, dtype=np.float32)
    c = np.full(4, np.nan, dtype=np.float32)
    k.matmul(2, 2, 1, 1.0, a, b, 0.0, c)
    assert_close(c, np.ones(4))


def test_kernel_sets_agree(rng):
    a = rng.normal(size=7 * 9).astype(np.float32)
    b = rng.normal(size=9 * 4).astype(np.float32)
    c1 = np.zeros(7 * 4, dtype=np.float32)
    c2 = np.zeros(7 * 4, dtype=np.float32)
    blas_numpy.matmul(7, 4, 9, 1.0, a, b, 0.0, c1)
    blas_naive.matmul(7, 4, 9, 1.0, a, b, 0.0, c2)
    assert_close(c1, c2, atol=1e-5, rtol=1e-5)


def test_backend_name_matches_active_kernels():
    assert blas.BACKEND_NAME in ("numpy", "naive")
    assert blas._KERNEL_SETS[blas.BACKEND_NAME] is blas._kernels


def test_unknown_backend_falls_back_and_warns(monkeypatch, caplog):
    monkeypatch.setenv("NNTENSOR_BLAS", "fortran")
    with caplog.at_level("WARNING", logger="nntensor.blas"):
        chosen = blas._select_kernels()
    assert chosen is blas_numpy
    assert "fortran" in caplog.text


def test_env_selects_naive(monkeypatch):
    monkeypatch.setenv("NNTENSOR_BLAS", "Naive")
    assert blas._select_kernels() is blas_naive


def test_dispatch_goes_through_active_kernels(kernels):
    x = np.array([1.0, 2.0], dtype=np.float32)
    y = np.array([10.0, 20.0], dtype=np.float32)
    blas.scaled_add(2, -1.0, x, y)
    assert_close(y, [9.0, 18.0])
    assert blas._kernels.NAME == kernels
