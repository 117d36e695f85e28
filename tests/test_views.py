import numpy as np
import pytest

from nntensor.dim import TensorDim
from nntensor.errors import OutOfRangeError, ShapeSizeMismatchError
from nntensor.tensor import Tensor
from tests.utils import assert_close, make_tensor, tdata


def _arange(*shape):
    return Tensor(np.arange(int(np.prod(shape)), dtype=np.float32).reshape(shape))


def test_batch_slice_aliases_origin():
    t = _arange(4, 1, 2, 3)
    s = t.get_batch_slice(1, 2)
    assert s.shape == (2, 1, 2, 3)
    assert_close(s.get_data(), np.arange(6, 18))

    s.set_value(-1.0)
    assert_close(t.get_data()[6:18], np.full(12, -1.0))
    assert_close(t.get_data()[:6], np.arange(6))

    t.set_value_at(2, 0, 1, 2, 99.0)
    assert s.get_value(1, 0, 1, 2) == 99.0

    t.set_value_at(3, 0, 0, 0, 123.0)
    assert 123.0 not in s.get_data()


def test_view_of_view_keeps_offset():
    t = _arange(4, 1, 1, 2)
    outer = t.get_batch_slice(1, 3)
    inner = outer.get_batch_slice(1, 1)
    assert_close(inner.get_data(), [4.0, 5.0])
    inner.set_value(0.0)
    assert_close(t.get_data(), [0, 1, 2, 3, 0, 0, 6, 7])


def test_shared_data_tensor_with_new_shape():
    t = _arange(1, 1, 3, 4)
    v = t.get_shared_data_tensor(TensorDim(1, 1, 2, 2), 5)
    assert_close(tdata(v), [[[[5, 6], [7, 8]]]])
    v.multiply_i(10)
    assert t.get_value(0, 0, 1, 1) == 50.0


def test_view_outlives_origin():
    v = _arange(2, 1, 1, 3).get_batch_slice(1, 1)
    assert_close(v.get_data(), [3.0, 4.0, 5.0])


@pytest.mark.parametrize("offset, size", [(3, 2), (0, 5), (-1, 1)])
def test_out_of_range_batch_slice_raises(offset, size):
    t = _arange(4, 1, 1, 2)
    with pytest.raises(OutOfRangeError):
        t.get_batch_slice(offset, size)


def test_shared_data_tensor_past_end_raises():
    t = _arange(1, 1, 2, 2)
    with pytest.raises(OutOfRangeError):
        t.get_shared_data_tensor(TensorDim(1, 1, 1, 2), 3)


def test_clone_is_independent():
    t = _arange(1, 1, 2, 2)
    c = t.clone()
    assert c == t
    c.set_value(0.0)
    assert_close(t.get_data(), [0, 1, 2, 3])


def test_clone_of_empty_is_empty():
    assert Tensor().clone().uninitialized()


def test_copy_reuses_buffer_when_lengths_match():
    src = _arange(1, 1, 2, 3)
    dst = Tensor(1, 1, 3, 2)
    data = dst.get_data()
    dst.copy(src)
    assert dst.shape == (1, 1, 2, 3)
    assert dst.get_data() is data
    assert_close(data, np.arange(6))


def test_copy_into_view_writes_through():
    t = Tensor(2, 1, 1, 2)
    t.get_batch_slice(1, 1).copy(Tensor([[7.0, 8.0]]))
    assert_close(t.get_data(), [0, 0, 7, 8])


def test_copy_reallocates_on_length_change():
    src = _arange(1, 1, 2, 3)
    dst = Tensor(2)
    dst.copy(src)
    assert dst.shape == (1, 1, 2, 3)
    src.set_value(0.0)
    assert_close(dst.get_data(), np.arange(6))


def test_reshape_keeps_buffer():
    t = _arange(1, 2, 3, 4)
    data = t.get_data()
    t.reshape(TensorDim(4, 1, 3, 2))
    assert t.shape == (4, 1, 3, 2)
    assert t.get_strides() == (6, 6, 2, 1)
    assert t.get_data() is data
    t.reshape((6, 4))
    assert t.shape == (1, 1, 6, 4)


def test_reshape_size_change_raises():
    t = _arange(1, 2, 3, 4)
    with pytest.raises(ShapeSizeMismatchError) as excinfo:
        t.reshape(TensorDim(1, 2, 3, 5))
    assert excinfo.value.from_len == 24
    assert excinfo.value.to_len == 30


def test_reshape_of_view_leaves_origin_shape():
    t = _arange(2, 1, 2, 2)
    v = t.get_batch_slice(0, 1)
    v.reshape(TensorDim(1, 1, 1, 4))
    assert t.shape == (2, 1, 2, 2)


@pytest.mark.parametrize("direction", ["0:1:2", "0:2:1", "1:0:2", "1:2:0", "2:0:1", "2:1:0"])
def test_transpose_matches_numpy(rng, direction):
    x_np = rng.normal(size=(2, 3, 4, 5)).astype(np.float32)
    perm = [int(p) + 1 for p in direction.split(":")]
    y = make_tensor(x_np).transpose(direction)
    expected = x_np.transpose(0, *perm)
    assert y.shape == expected.shape
    assert_close(tdata(y), expected)


def test_transpose_does_not_share_buffer():
    t = _arange(1, 1, 2, 3)
    y = t.transpose("0:2:1")
    y.set_value(0.0)
    assert_close(t.get_data(), np.arange(6))


@pytest.mark.parametrize("direction", ["0:1", "0:1:1", "a:b:c", "0:1:3"])
def test_transpose_bad_direction_raises(direction):
    from nntensor.errors import InvalidArgumentError

    with pytest.raises(InvalidArgumentError):
        _arange(1, 2, 2, 2).transpose(direction)
