"""
Exceptions raised by the tensor engine.

Every error derives from :class:`TensorError` and from the closest built-in
exception, so callers may catch either ``DimensionMismatchError`` or a plain
``ValueError``.
"""
from typing import Any, Optional


class TensorError(Exception):
    """Base class for all errors raised by ``nntensor``."""


class DimensionMismatchError(TensorError, ValueError):
    """
    Raised when two operand shapes cannot be combined.

    Used both for elementwise broadcasting (an axis differs and the right
    operand is not 1 on it) and for contraction (inner sizes disagree, or the
    right operand's batch is neither 1 nor the left operand's batch).

    Attributes
    ----------
    this_dim : TensorDim or None
        Shape of the left operand (or of the output being written).
    other_dim : TensorDim or None
        Shape of the right operand.
    """

    def __init__(
        self,
        message: str,
        this_dim: Optional[Any] = None,
        other_dim: Optional[Any] = None,
    ) -> None:
        if this_dim is not None or other_dim is not None:
            message = f"{message} (this: {this_dim}, other: {other_dim})"
        super().__init__(message)
        self.this_dim = this_dim
        self.other_dim = other_dim


class InvalidArgumentError(TensorError, ValueError):
    """Raised for a null map buffer, a malformed literal or an unknown selector."""


class OutOfRangeError(TensorError, IndexError):
    """Raised when an index, axis or view reaches past the buffer."""


class ShapeSizeMismatchError(TensorError, ValueError):
    """Raised when ``reshape`` would change the number of elements."""

    def __init__(self, from_len: int, to_len: int) -> None:
        super().__init__(
            f"reshape cannot change the tensor size: {from_len} -> {to_len}"
        )
        self.from_len = from_len
        self.to_len = to_len


class TensorIOError(TensorError, OSError):
    """Raised when a raw tensor dump is shorter than the target tensor."""
