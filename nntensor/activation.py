"""
Activation functions and their derivatives on :class:`~nntensor.tensor.Tensor`.

Derivatives are expressed in terms of the activation *output* ``y`` rather
than its input, so a layer only has to keep its forward result around for the
backward pass.
"""
import enum
import math
from typing import Callable, Optional, Union

import numpy as np

from nntensor import blas
from nntensor.errors import DimensionMismatchError, InvalidArgumentError
from nntensor.tensor import Tensor


class ActivationType(enum.Enum):
    TANH = "tanh"
    SIGMOID = "sigmoid"
    RELU = "relu"
    SOFTMAX = "softmax"
    NONE = "none"


def sigmoid(x: float) -> float:
    """Logistic function ``1 / (1 + exp(-x))``."""
    # split on the sign so exp never overflows
    if x >= 0:
        return 1.0 / (1.0 + math.exp(-x))
    z = math.exp(x)
    return z / (1.0 + z)


def sigmoid_prime(y: float) -> float:
    """Derivative of :func:`sigmoid` given its output ``y``."""
    return y * (1.0 - y)


def tanh_float(x: float) -> float:
    return math.tanh(x)


def tanh_prime(y: float) -> float:
    """Derivative of ``tanh`` given its output ``y``."""
    return 1.0 - y * y


def relu(x: float) -> float:
    return x if x > 0.0 else 0.0


def relu_prime(y: float) -> float:
    return 1.0 if y > 0.0 else 0.0


def no_op(x: float) -> float:
    return x


def no_op_prime(y: float) -> float:
    return 1.0


def softmax(t: Tensor, output: Optional[Tensor] = None) -> Tensor:
    """
    Softmax over all non-batch elements of each sample.

    Parameters
    ----------
    t : Tensor
        Input of shape ``(B, C, H, W)``. Each sample is normalized over its
        ``C*H*W`` values.
    output : Tensor, optional
        Destination; may be ``t`` itself. Allocated if uninitialized.

    Returns
    -------
    Tensor
        Values in ``(0, 1]`` summing to one per sample.

    Notes
    -----
    The per-sample maximum is subtracted before exponentiation, so large
    inputs do not overflow.

    Examples
    --------
    >>> softmax(Tensor([1., 2., 3.])).get_data()
    array([0.09003057, 0.24472848, 0.66524094], dtype=float32)
    """
    if t.uninitialized():
        raise InvalidArgumentError("softmax called on an uninitialized tensor")

    if output is None:
        output = t.clone()
    elif output is not t:
        if not output.uninitialized() and output.get_dim() != t.get_dim():
            raise DimensionMismatchError("output tensor has the wrong shape", output.get_dim(), t.get_dim())
        output.copy(t)

    for k in range(output.batch):
        sample = output.get_batch_slice(k, 1)
        sample.add_i(-float(sample.get_data().max()))

    data = output.get_data()
    np.exp(data, out=data)
    return output.divide_i(output.sum_by_batch())


def softmax_prime(x: Tensor, output: Optional[Tensor], derivative: Optional[Tensor] = None) -> Tensor:
    """
    Back-propagate through :func:`softmax` along each width row.

    For every row of ``width`` values the result is ``d @ J`` with the softmax
    Jacobian ``J[l, j] = x[l] * (delta(l, j) - x[j])``.

    Parameters
    ----------
    x : Tensor
        Softmax output.
    output : Tensor or None
        Destination with ``x``'s shape; allocated if None or uninitialized.
    derivative : Tensor, optional
        Upstream gradient with ``x``'s shape. If None or uninitialized it is
        taken to be all ones.

    Returns
    -------
    Tensor
        ``output``.

    Notes
    -----
    Costs ``O(width**2)`` per row; the Jacobian is contracted with the
    backend ``matmul`` kernel.

    :func:`softmax` normalizes over all ``channel*height*width`` values of a
    sample, while this Jacobian only couples values within one width row. The
    two match only when ``channel == height == 1``; pass activations of shape
    ``(batch, 1, 1, width)``.
    """
    if x.uninitialized():
        raise InvalidArgumentError("softmax_prime called on an uninitialized tensor")

    dim = x.get_dim()
    if output is None:
        output = Tensor(dim)
    elif output.uninitialized():
        output.copy(x)
    elif output.get_dim() != dim:
        raise DimensionMismatchError("output tensor has the wrong shape", output.get_dim(), dim)

    width = x.width
    rows = x.length() // width if width else 0

    if derivative is None or derivative.uninitialized():
        d_data = np.ones(x.length(), dtype=np.float32)
    else:
        if derivative.get_dim() != dim:
            raise DimensionMismatchError("derivative has the wrong shape", derivative.get_dim(), dim)
        d_data = derivative.get_data().copy()

    x_data = x.get_data()
    out_data = output.get_data()
    for r in range(rows):
        start = r * width
        xr = x_data[start : start + width]
        jacobian = -np.outer(xr, xr)
        jacobian[np.diag_indices(width)] += xr
        blas.matmul(
            1,
            width,
            width,
            1.0,
            d_data[start:],
            jacobian.reshape(-1),
            0.0,
            out_data[start:],
        )
    return output


_SCALAR_KINDS = {
    ActivationType.TANH: (tanh_float, tanh_prime),
    ActivationType.SIGMOID: (sigmoid, sigmoid_prime),
    ActivationType.RELU: (relu, relu_prime),
    ActivationType.NONE: (no_op, no_op_prime),
}


class Activation:
    """
    Activation selected by kind, exposing a forward and a derivative pass.

    Parameters
    ----------
    kind : ActivationType or str
        Activation kind, or its name in any case (``"ReLU"``, ``"softmax"``).

    Raises
    ------
    InvalidArgumentError
        If ``kind`` does not name a known activation.

    Examples
    --------
    >>> act = Activation("sigmoid")
    >>> hidden = Tensor()
    >>> act.forward(Tensor([0.]), hidden).get_data()
    array([0.5], dtype=float32)
    """

    def __init__(self, kind: Union[ActivationType, str]) -> None:
        self.kind = self._resolve(kind)

        if self.kind is ActivationType.SOFTMAX:
            self._forward: Callable[[Tensor, Tensor], Tensor] = self._softmax_forward
            self._derivative: Callable[[Tensor, Tensor, Tensor], Tensor] = softmax_prime
        else:
            fn, prime = _SCALAR_KINDS[self.kind]
            self._forward = lambda x, hidden: x.apply(fn, hidden)
            self._derivative = lambda y, ret, d: d.multiply(y.apply(prime), ret)

    @staticmethod
    def _resolve(kind: Union[ActivationType, str]) -> ActivationType:
        if isinstance(kind, ActivationType):
            return kind
        if isinstance(kind, str):
            try:
                return ActivationType(kind.strip().lower())
            except ValueError:
                pass
        raise InvalidArgumentError(f"unknown activation type: {kind!r}")

    @staticmethod
    def _softmax_forward(x: Tensor, hidden: Tensor) -> Tensor:
        return x.apply_tensor(softmax, hidden)

    def forward(self, x: Tensor, hidden: Tensor) -> Tensor:
        """Write the activation of ``x`` into ``hidden`` and return it."""
        return self._forward(x, hidden)

    def derivative(self, y: Tensor, ret_derivative: Tensor, derivative: Tensor) -> Tensor:
        """
        Write ``derivative`` times the local gradient into ``ret_derivative``.

        Parameters
        ----------
        y : Tensor
            Output of :meth:`forward`.
        ret_derivative : Tensor
            Destination; allocated if uninitialized.
        derivative : Tensor
            Gradient flowing in from the next layer.
        """
        return self._derivative(y, ret_derivative, derivative)

    def __repr__(self) -> str:
        return f"Activation({self.kind.value!r})"
