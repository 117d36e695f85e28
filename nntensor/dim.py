from typing import Iterator, List, Tuple

from nntensor.errors import InvalidArgumentError, OutOfRangeError

MAXDIM = 4
"""int: Number of axes of every tensor (batch, channel, height, width)."""

_AXIS_NAMES = ("batch", "channel", "height", "width")


class TensorDim:
    """
    Four-axis shape descriptor ``(batch, channel, height, width)``.

    A descriptor with any axis equal to zero describes the uninitialized
    (empty) tensor. This is a legitimate default state, not an error.

    Parameters
    ----------
    batch, channel, height, width : int, default 0
        Axis sizes. Must be non-negative.

    Raises
    ------
    InvalidArgumentError
        If any size is negative.

    Examples
    --------
    >>> d = TensorDim(2, 3, 4, 5)
    >>> d.get_data_len()
    120
    >>> d.compute_strides()
    (60, 20, 5, 1)
    """
    def __init__(
        self,
        batch: int = 0,
        channel: int = 0,
        height: int = 0,
        width: int = 0,
    ) -> None:
        self._dims: List[int] = [0] * MAXDIM
        for axis, value in enumerate((batch, channel, height, width)):
            self.set_tensor_dim(axis, value)

    @classmethod
    def from_string(cls, text: str) -> "TensorDim":
        """
        Parse a ``"b:c:h:w"`` shape string.

        Fewer than four fields fill the trailing axes and leave the leading
        ones at 1, so ``"3:4"`` is ``(1, 1, 3, 4)``.

        Raises
        ------
        InvalidArgumentError
            If the string has no fields, more than four, or a non-integer field.
        """
        fields = [f.strip() for f in str(text).split(":")]
        if not fields or len(fields) > MAXDIM or any(f == "" for f in fields):
            raise InvalidArgumentError(f"malformed tensor dim string: {text!r}")
        try:
            values = [int(f) for f in fields]
        except ValueError:
            raise InvalidArgumentError(f"malformed tensor dim string: {text!r}") from None

        values = [1] * (MAXDIM - len(values)) + values
        return cls(*values)

    def get_tensor_dim(self, axis: int) -> int:
        """Return the size of ``axis`` (0=batch ... 3=width)."""
        if not 0 <= axis < MAXDIM:
            raise OutOfRangeError(f"axis {axis} is out of range [0, {MAXDIM})")
        return self._dims[axis]

    def set_tensor_dim(self, axis: int, value: int) -> None:
        """Set the size of ``axis``."""
        if not 0 <= axis < MAXDIM:
            raise OutOfRangeError(f"axis {axis} is out of range [0, {MAXDIM})")
        value = int(value)
        if value < 0:
            raise InvalidArgumentError(
                f"{_AXIS_NAMES[axis]} must be non-negative, got {value}"
            )
        self._dims[axis] = value

    @property
    def batch(self) -> int:
        return self._dims[0]

    @batch.setter
    def batch(self, value: int) -> None:
        self.set_tensor_dim(0, value)

    @property
    def channel(self) -> int:
        return self._dims[1]

    @channel.setter
    def channel(self, value: int) -> None:
        self.set_tensor_dim(1, value)

    @property
    def height(self) -> int:
        return self._dims[2]

    @height.setter
    def height(self, value: int) -> None:
        self.set_tensor_dim(2, value)

    @property
    def width(self) -> int:
        return self._dims[3]

    @width.setter
    def width(self, value: int) -> None:
        self.set_tensor_dim(3, value)

    def get_data_len(self) -> int:
        """int: Total number of elements, ``batch*channel*height*width``."""
        return self._dims[0] * self._dims[1] * self._dims[2] * self._dims[3]

    def get_feature_len(self) -> int:
        """int: Elements per sample, ``channel*height*width``."""
        return self._dims[1] * self._dims[2] * self._dims[3]

    def compute_strides(self) -> Tuple[int, int, int, int]:
        """
        Row-major strides derived from the current shape.

        Returns
        -------
        tuple of int
            ``stride[i] == prod(shape[i+1:])``; the width stride is 1.
        """
        _, c, h, w = self._dims
        return (c * h * w, h * w, w, 1)

    def rank(self) -> int:
        """
        Number of significant axes, counting from the first axis that is not 1.

        ``(1, 1, 3, 4)`` has rank 2; ``(2, 1, 1, 1)`` has rank 4.
        """
        for axis, size in enumerate(self._dims):
            if size != 1:
                return MAXDIM - axis
        return 1

    def copy(self) -> "TensorDim":
        return TensorDim(*self._dims)

    def as_tuple(self) -> Tuple[int, int, int, int]:
        return tuple(self._dims)

    def __iter__(self) -> Iterator[int]:
        return iter(tuple(self._dims))

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, TensorDim):
            return NotImplemented
        return self._dims == other._dims

    def __ne__(self, other: object) -> bool:
        result = self.__eq__(other)
        if result is NotImplemented:
            return result
        return not result

    __hash__ = None

    def __str__(self) -> str:
        return ":".join(str(d) for d in self._dims)

    def __repr__(self) -> str:
        b, c, h, w = self._dims
        return f"TensorDim(batch={b}, channel={c}, height={h}, width={w})"
