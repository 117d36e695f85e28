from typing import List, Sequence

from nntensor.dim import MAXDIM, TensorDim
from nntensor.errors import DimensionMismatchError


class BroadcastInfo:
    """
    Loop plan for applying a binary op of ``this`` against a broadcast ``m``.

    The generic executor walks the axes ``0 .. buffer_axis`` with ordinary
    nested loops and hands each innermost run of ``buffer_size`` elements to a
    vectorized kernel. ``strides`` are the right operand's strides with 0 on
    every axis where it is broadcast; ``strides[3]`` is the increment used
    inside a run (0 replays a single value).

    Attributes
    ----------
    buffer_size : int
        Number of contiguous elements of ``this`` handled per kernel call.
    buffer_axis : int
        Last axis the executor must loop over before calling the kernel.
        ``-1`` means the whole tensor is a single run.
    strides : list of int
        Effective strides of the right operand.
    """
    __slots__ = ("buffer_size", "buffer_axis", "strides")

    def __init__(self) -> None:
        self.buffer_size = 0
        self.buffer_axis = -1
        self.strides: List[int] = [0] * MAXDIM

    def __repr__(self) -> str:
        return (
            f"BroadcastInfo(buffer_size={self.buffer_size}, "
            f"buffer_axis={self.buffer_axis}, strides={tuple(self.strides)})"
        )


def compute_broadcast_info(
    dim: TensorDim,
    m_dim: TensorDim,
    m_strides: Sequence[int],
) -> BroadcastInfo:
    """
    Check that ``m_dim`` broadcasts onto ``dim`` and build the loop plan.

    An axis is legal when both sizes are equal or ``m_dim`` is 1 on it. Only
    the right operand is ever broadcast, so the result of the operation has
    ``dim``'s shape.

    Parameters
    ----------
    dim : TensorDim
        Shape of the left operand (and of the result).
    m_dim : TensorDim
        Shape of the right operand.
    m_strides : sequence of int
        Strides of the right operand's buffer.

    Returns
    -------
    BroadcastInfo
        Plan consumed by ``Tensor._operator``.

    Raises
    ------
    DimensionMismatchError
        If some axis differs and ``m_dim`` is not 1 on it.

    Notes
    -----
    Two strategies are compared and the one with the longer inner run wins:

    - *matching tail*: the product of trailing axes on which both shapes are
      equal; ``m`` advances with stride 1 inside the run.
    - *consecutive ones*: when ``m`` is 1 on a trailing block of axes, one
      value of ``m`` is replayed over the whole block (inner stride 0).

    Examples
    --------
    >>> e = compute_broadcast_info(TensorDim(2, 3, 4, 5), TensorDim(1, 3, 4, 5), (60, 20, 5, 1))
    >>> e.buffer_axis, e.buffer_size
    (0, 60)
    """
    e = BroadcastInfo()

    for i in range(MAXDIM):
        if dim.get_tensor_dim(i) == m_dim.get_tensor_dim(i):
            e.strides[i] = m_strides[i]
            continue

        # a size-1 axis is replayed, its stride stays 0
        if m_dim.get_tensor_dim(i) == 1:
            continue

        raise DimensionMismatchError(
            "broadcasting is only allowed for dimension value of 1", dim, m_dim
        )

    e.buffer_size = 1
    e.buffer_axis = -1
    e.strides[3] = m_strides[3]

    for axis in range(MAXDIM - 1, -1, -1):
        if dim.get_tensor_dim(axis) != m_dim.get_tensor_dim(axis):
            e.buffer_axis = axis
            break
        e.buffer_size *= dim.get_tensor_dim(axis)

    if m_dim.width == 1:
        inner_loop_size = 1
        axis = MAXDIM - 1
        while axis >= 0:
            if m_dim.get_tensor_dim(axis) != 1:
                break
            inner_loop_size *= dim.get_tensor_dim(axis)
            axis -= 1

        if inner_loop_size > e.buffer_size:
            e.buffer_axis = axis
            e.buffer_size = inner_loop_size
            e.strides[3] = 0

    return e
