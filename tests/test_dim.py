import pytest

from nntensor.dim import TensorDim
from nntensor.errors import InvalidArgumentError, OutOfRangeError


def test_data_len_and_strides():
    d = TensorDim(2, 3, 4, 5)
    assert d.get_data_len() == 120
    assert d.get_feature_len() == 60
    assert d.compute_strides() == (60, 20, 5, 1)


def test_default_is_uninitialized_shape():
    d = TensorDim()
    assert d.as_tuple() == (0, 0, 0, 0)
    assert d.get_data_len() == 0


def test_zero_axis_is_not_an_error():
    d = TensorDim(3, 0, 2, 2)
    assert d.get_data_len() == 0


def test_negative_size_raises():
    with pytest.raises(InvalidArgumentError):
        TensorDim(1, -1, 1, 1)
    d = TensorDim(1, 1, 1, 1)
    with pytest.raises(InvalidArgumentError):
        d.width = -3


@pytest.mark.parametrize("axis", [-1, 4, 10])
def test_bad_axis_raises(axis):
    d = TensorDim(1, 2, 3, 4)
    with pytest.raises(OutOfRangeError):
        d.get_tensor_dim(axis)
    with pytest.raises(OutOfRangeError):
        d.set_tensor_dim(axis, 1)


def test_axis_properties_roundtrip():
    d = TensorDim(1, 2, 3, 4)
    d.batch = 7
    d.set_tensor_dim(2, 9)
    assert (d.batch, d.channel, d.height, d.width) == (7, 2, 9, 4)
    assert list(d) == [7, 2, 9, 4]
    assert d.compute_strides() == (72, 36, 4, 1)


@pytest.mark.parametrize(
    "text, expected",
    [
        ("2:3:4:5", (2, 3, 4, 5)),
        ("3:4", (1, 1, 3, 4)),
        ("7", (1, 1, 1, 7)),
        (" 1 : 2 : 3 ", (1, 1, 2, 3)),
    ],
)
def test_from_string(text, expected):
    assert TensorDim.from_string(text).as_tuple() == expected


@pytest.mark.parametrize("text", ["", "1:2:3:4:5", "a:b", "1::2"])
def test_from_string_malformed(text):
    with pytest.raises(InvalidArgumentError):
        TensorDim.from_string(text)


def test_equality_and_copy():
    d = TensorDim(1, 2, 3, 4)
    c = d.copy()
    assert c == d
    c.height = 5
    assert c != d
    assert d.height == 3


def test_rank():
    assert TensorDim(1, 1, 3, 4).rank() == 2
    assert TensorDim(2, 1, 1, 1).rank() == 4
    assert TensorDim(1, 1, 1, 1).rank() == 1


def test_str_and_repr():
    d = TensorDim(1, 2, 3, 4)
    assert str(d) == "1:2:3:4"
    assert repr(d) == "TensorDim(batch=1, channel=2, height=3, width=4)"
