import numpy as np
import pytest

from nntensor.errors import DimensionMismatchError
from nntensor.tensor import Tensor
from tests.utils import assert_close, make_tensor, tdata


def test_dot_2d(rng, kernels):
    a_np = rng.normal(size=(6, 10)).astype(np.float32)
    b_np = rng.normal(size=(10, 4)).astype(np.float32)

    y = make_tensor(a_np).dot(make_tensor(b_np))
    assert y.shape == (1, 1, 6, 4)
    assert_close(tdata(y)[0, 0], a_np @ b_np, atol=1e-5, rtol=5e-5)


@pytest.mark.parametrize("trans", [False, True])
@pytest.mark.parametrize("trans_m", [False, True])
def test_dot_transposed_operands(rng, kernels, trans, trans_m):
    a_np = rng.normal(size=(3, 1, 6, 5) if trans else (3, 1, 5, 6)).astype(np.float32)
    b_np = rng.normal(size=(3, 1, 4, 6) if trans_m else (3, 1, 6, 4)).astype(np.float32)
    op_a = a_np.swapaxes(-1, -2) if trans else a_np
    op_b = b_np.swapaxes(-1, -2) if trans_m else b_np

    y = make_tensor(a_np).dot(make_tensor(b_np), trans=trans, trans_m=trans_m)
    assert y.shape == (3, 1, 5, 4)
    assert_close(tdata(y), op_a @ op_b, atol=1e-5, rtol=5e-5)


def test_dot_same_batch(rng, kernels):
    a_np = rng.normal(size=(4, 1, 2, 3)).astype(np.float32)
    b_np = rng.normal(size=(4, 1, 3, 5)).astype(np.float32)
    y = make_tensor(a_np).dot(make_tensor(b_np))
    assert y.shape == (4, 1, 2, 5)
    assert_close(tdata(y), a_np @ b_np, atol=1e-5, rtol=5e-5)


def test_dot_broadcast_batch_one(rng, kernels):
    a_np = rng.normal(size=(4, 1, 2, 3)).astype(np.float32)
    b_np = rng.normal(size=(1, 1, 3, 5)).astype(np.float32)
    y = make_tensor(a_np).dot(make_tensor(b_np))
    assert y.shape == (4, 1, 2, 5)
    assert_close(tdata(y), a_np @ b_np, atol=1e-5, rtol=5e-5)


def test_dot_output_accumulates_with_beta(rng, kernels):
    a_np = rng.normal(size=(2, 3)).astype(np.float32)
    b_np = rng.normal(size=(3, 4)).astype(np.float32)
    c_np = rng.normal(size=(2, 4)).astype(np.float32)

    out = make_tensor(c_np)
    res = make_tensor(a_np).dot(make_tensor(b_np), output=out, beta=1.0)
    assert res is out
    assert_close(tdata(out)[0, 0], a_np @ b_np + c_np, atol=1e-5, rtol=5e-5)


def test_dot_beta_ignored_for_fresh_output(kernels):
    a = Tensor([[1.0, 2.0]])
    b = Tensor([[3.0], [4.0]])
    out = Tensor()
    a.dot(b, output=out, beta=5.0)
    assert out.shape == (1, 1, 1, 1)
    assert_close(out.get_data(), [11.0])


def test_dot_inner_mismatch_raises(kernels):
    with pytest.raises(DimensionMismatchError):
        Tensor(2, 3).dot(Tensor(4, 5))


def test_dot_bad_batch_raises(kernels):
    with pytest.raises(DimensionMismatchError):
        Tensor(3, 1, 2, 3).dot(Tensor(2, 1, 3, 2))


def test_dot_multichannel_raises(kernels):
    with pytest.raises(DimensionMismatchError):
        Tensor(1, 2, 2, 2).dot(Tensor(1, 1, 2, 2))


def test_dot_output_wrong_shape_raises(kernels):
    with pytest.raises(DimensionMismatchError):
        Tensor(2, 3).dot(Tensor(3, 4), output=Tensor(2, 2))


def test_dot_matches_torch(rng, kernels):
    torch = pytest.importorskip("torch")
    a_np = rng.normal(size=(4, 1, 6, 10)).astype(np.float32)
    b_np = rng.normal(size=(4, 1, 10, 5)).astype(np.float32)
    expected = (torch.from_numpy(a_np) @ torch.from_numpy(b_np)).numpy()
    y = make_tensor(a_np).dot(make_tensor(b_np))
    assert_close(tdata(y), expected, atol=1e-5, rtol=5e-5)


def test_dot_alpha_scales_product(rng, kernels):
    a_np = rng.normal(size=(2, 1, 2, 3)).astype(np.float32)
    b_np = rng.normal(size=(1, 1, 3, 4)).astype(np.float32)
    c_np = rng.normal(size=(2, 1, 2, 4)).astype(np.float32)

    y = make_tensor(a_np).dot(make_tensor(b_np), alpha=-0.5)
    assert_close(tdata(y), -0.5 * (a_np @ b_np), atol=1e-5, rtol=5e-5)

    out = make_tensor(c_np)
    make_tensor(a_np).dot(make_tensor(b_np), output=out, beta=2.0, alpha=3.0)
    assert_close(tdata(out), 3.0 * (a_np @ b_np) + 2.0 * c_np, atol=1e-5, rtol=5e-5)
