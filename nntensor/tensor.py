from typing import Any, BinaryIO, Callable, List, Optional, Sequence, Tuple, Union

import numpy as np

from nntensor import blas
from nntensor.broadcast import BroadcastInfo, compute_broadcast_info
from nntensor.dim import MAXDIM, TensorDim
from nntensor.errors import (
    DimensionMismatchError,
    InvalidArgumentError,
    OutOfRangeError,
    ShapeSizeMismatchError,
    TensorIOError,
)

Number = Union[int, float]
"""Scalar types accepted wherever a right-hand tensor operand is expected."""

_FLOAT = np.float32
_RAW_DTYPE = np.dtype("<f4")


def _is_number(x: Any) -> bool:
    return isinstance(x, (int, float, np.integer, np.floating)) and not isinstance(x, bool)


def _run_view(buf: np.ndarray, n: int, inc: int) -> np.ndarray:
    """View of ``n`` elements of ``buf`` visited with increment ``inc`` (0 replays ``buf[0]``)."""
    if inc == 0:
        return np.broadcast_to(buf[:1], (n,))
    return buf[: (n - 1) * inc + 1 : inc]


def _literal_shape(data: Sequence[Any]) -> List[int]:
    """
    Infer and validate the shape of a nested list literal.

    Raises
    ------
    InvalidArgumentError
        If the literal is empty, deeper than four levels, or ragged.
    """
    shape = []
    node = data
    while isinstance(node, (list, tuple)):
        if len(node) == 0:
            raise InvalidArgumentError("cannot initialize a tensor from an empty sequence")
        shape.append(len(node))
        node = node[0]
    if len(shape) > MAXDIM:
        raise InvalidArgumentError(
            f"nested literal has {len(shape)} levels, at most {MAXDIM} are supported"
        )

    def check(node: Any, level: int) -> None:
        if level == len(shape):
            if not _is_number(node):
                raise InvalidArgumentError(f"tensor literal holds a non-numeric element: {node!r}")
            return
        if not isinstance(node, (list, tuple)) or len(node) != shape[level]:
            raise InvalidArgumentError(
                f"inconsistent row length at nesting level {level}: expected {shape[level]}"
            )
        for child in node:
            check(child, level + 1)

    check(data, 0)
    return shape


class Tensor:
    """
    Four-axis ``float32`` tensor backed by a flat, shareable buffer.

    A tensor is a :class:`TensorDim` plus a 1-D NumPy buffer. Several tensors
    may alias the same buffer (see :meth:`map`, :meth:`get_batch_slice` and
    :meth:`get_shared_data_tensor`); the buffer lives as long as the last
    NumPy view that refers to it. Writing through any holder is visible to
    every other holder.

    Parameters
    ----------
    *args
        One of:

        - nothing: the uninitialized (length 0) tensor;
        - a :class:`TensorDim`;
        - one to four ints, filling ``(batch, channel, height, width)`` from
          the right, so ``Tensor(3, 4)`` is ``(1, 1, 3, 4)``;
        - a nested list literal (one to four levels), filled the same way;
        - a NumPy array of rank one to four.
    buf : array-like, optional
        Initial values when constructing from a shape. Copied, never aliased.
        Rejected together with a literal or an array.

    Raises
    ------
    InvalidArgumentError
        For a ragged or empty literal, an unsupported argument, or ``buf``
        given alongside tensor data.

    Notes
    -----
    - Every binary operation comes in two explicit forms: ``op(...)`` returns a
      new tensor (or writes into ``output=``) and ``op_i(...)`` mutates ``self``.
    - Only the right operand is broadcast: on every axis it must either match
      ``self`` or be 1. The result always has ``self``'s shape.
    - All arithmetic runs through :mod:`nntensor.blas` where a kernel exists,
      so the same code serves both the vectorized and the naive kernel set.

    Examples
    --------
    >>> t = Tensor([[[[1, 2, 3]]], [[[4, 5, 6]]]])
    >>> t.shape
    (2, 1, 1, 3)
    >>> (t / 2).sum_by_batch().get_data()
    array([3. , 7.5], dtype=float32)
    """

    epsilon = 1e-5
    """float: Per-element tolerance used by ``==``."""

    def __init__(self, *args: Any, buf: Optional[Any] = None) -> None:
        self._dim = TensorDim()
        self._strides = self._dim.compute_strides()
        self.is_contiguous = True
        self._buffer: Optional[np.ndarray] = None
        self._offset = 0
        self._data: Optional[np.ndarray] = None

        if not args:
            return

        if buf is not None and len(args) == 1 and isinstance(args[0], (np.ndarray, list, tuple)):
            raise InvalidArgumentError("buf can only be combined with a shape, not with tensor data")

        if len(args) == 1 and isinstance(args[0], TensorDim):
            self._allocate(args[0])
        elif all(_is_number(a) and float(a).is_integer() for a in args):
            if len(args) > MAXDIM:
                raise InvalidArgumentError(f"at most {MAXDIM} dimensions are supported")
            sizes = [1] * (MAXDIM - len(args)) + [int(a) for a in args]
            self._allocate(TensorDim(*sizes))
        elif len(args) == 1 and isinstance(args[0], np.ndarray):
            self._from_array(args[0])
            return
        elif len(args) == 1 and isinstance(args[0], (list, tuple)):
            shape = _literal_shape(args[0])
            self._from_array(np.array(args[0], dtype=_FLOAT).reshape(shape))
            return
        else:
            raise InvalidArgumentError(f"cannot construct a Tensor from {args!r}")

        if buf is not None and self._data is not None:
            src = np.asarray(buf, dtype=_FLOAT).reshape(-1)
            if src.size < self.length():
                raise OutOfRangeError(
                    f"initial buffer holds {src.size} values, tensor needs {self.length()}"
                )
            self._data[...] = src[: self.length()]

    def _from_array(self, array: np.ndarray) -> None:
        if array.ndim == 0 or array.ndim > MAXDIM:
            raise InvalidArgumentError(
                f"array rank must be between 1 and {MAXDIM}, got {array.ndim}"
            )
        sizes = [1] * (MAXDIM - array.ndim) + list(array.shape)
        self._allocate(TensorDim(*sizes))
        if self._data is not None:
            self._data[...] = np.asarray(array, dtype=_FLOAT).reshape(-1)

    def _allocate(self, dim: TensorDim) -> None:
        """Bind ``self`` to a fresh zero-filled buffer of shape ``dim``."""
        self._dim = dim.copy()
        self._strides = self._dim.compute_strides()
        self._offset = 0
        length = self._dim.get_data_len()
        if length == 0:
            self._buffer = None
            self._data = None
        else:
            self._buffer = np.zeros(length, dtype=_FLOAT)
            self._data = self._buffer

    @staticmethod
    def map(buffer: Optional[np.ndarray], dim: TensorDim, offset: int = 0) -> "Tensor":
        """
        Wrap an existing buffer without copying it.

        Parameters
        ----------
        buffer : numpy.ndarray
            Contiguous ``float32`` array. The returned tensor aliases it.
        dim : TensorDim
            Shape of the new tensor.
        offset : int, default 0
            Element offset of the tensor's first value inside ``buffer``.

        Returns
        -------
        Tensor
            A tensor sharing ``buffer``.

        Raises
        ------
        InvalidArgumentError
            If ``buffer`` is None, not ``float32`` or not contiguous.
        OutOfRangeError
            If ``offset + dim.get_data_len()`` exceeds ``buffer.size``.
        """
        if buffer is None:
            raise InvalidArgumentError("mapping an empty buffer is not allowed")
        if not isinstance(buffer, np.ndarray) or buffer.dtype != _FLOAT:
            raise InvalidArgumentError("only float32 numpy buffers can be mapped")
        if not buffer.flags.c_contiguous:
            raise InvalidArgumentError("only contiguous buffers can be mapped")

        flat = buffer.reshape(-1)
        length = dim.get_data_len()
        if offset < 0 or offset + length > flat.size:
            raise OutOfRangeError(
                f"view of {length} values at offset {offset} exceeds buffer of {flat.size}"
            )

        t = Tensor()
        t._dim = dim.copy()
        t._strides = t._dim.compute_strides()
        t._buffer = flat
        t._offset = offset
        t._data = flat[offset : offset + length] if length else None
        return t

    @property
    def shape(self) -> Tuple[int, int, int, int]:
        """tuple of int: ``(batch, channel, height, width)``."""
        return self._dim.as_tuple()

    @property
    def batch(self) -> int:
        return self._dim.batch

    @property
    def channel(self) -> int:
        return self._dim.channel

    @property
    def height(self) -> int:
        return self._dim.height

    @property
    def width(self) -> int:
        return self._dim.width

    def get_dim(self) -> TensorDim:
        """Return a copy of the shape descriptor."""
        return self._dim.copy()

    def get_tensor_dim(self, axis: int) -> int:
        return self._dim.get_tensor_dim(axis)

    def get_strides(self) -> Tuple[int, int, int, int]:
        return self._strides

    def length(self) -> int:
        """int: Number of elements."""
        return self._dim.get_data_len()

    def uninitialized(self) -> bool:
        """bool: True for the empty (length 0) tensor."""
        return self.length() == 0

    def get_size(self) -> int:
        """int: Size of the data in bytes."""
        return self.length() * _FLOAT().itemsize

    def get_data(self) -> Optional[np.ndarray]:
        """
        Flat view of this tensor's elements.

        The array aliases the tensor's buffer; writing into it writes into the
        tensor (and into every tensor sharing that buffer). ``None`` for an
        uninitialized tensor.
        """
        return self._data

    def _index(self, b: int, c: int, h: int, w: int) -> int:
        if __debug__:
            for axis, i in enumerate((b, c, h, w)):
                if not 0 <= i < self._dim.get_tensor_dim(axis):
                    raise OutOfRangeError(
                        f"index {(b, c, h, w)} is out of range for dim {self._dim}"
                    )
        s = self._strides
        return b * s[0] + c * s[1] + h * s[2] + w * s[3]

    def get_value(self, b: int, c: int, h: int, w: int) -> float:
        """Return the element at ``(b, c, h, w)``."""
        return float(self._data[self._index(b, c, h, w)])

    def set_value_at(self, b: int, c: int, h: int, w: int, value: float) -> None:
        """Store ``value`` at ``(b, c, h, w)``."""
        self._data[self._index(b, c, h, w)] = value

    def get_value_padded_virtual(
        self,
        b: int,
        c: int,
        h: int,
        w: int,
        ph: int,
        pw: int,
        pad_value: float = 0.0,
    ) -> float:
        """
        Read as if the height/width axes were zero-padded by ``ph``/``pw``.

        Examples
        --------
        For a ``3x3`` tensor holding ``1..9``, virtually padded by one on each
        side, ``get_value_padded_virtual(0, 0, 2, 2, 1, 1)`` returns ``5.0``
        and ``get_value_padded_virtual(0, 0, 0, 0, 1, 1)`` returns ``0.0``.
        """
        if ph <= h < ph + self.height and pw <= w < pw + self.width:
            return self.get_value(b, c, h - ph, w - pw)
        return pad_value

    def set_value(self, value: float) -> None:
        """Fill every element with ``value``."""
        self._ensure_initialized("set_value")
        self._data.fill(value)

    def set_zero(self) -> None:
        self.set_value(0.0)

    def set_rand_normal(self, mean: float = 0.0, std: float = 0.05) -> None:
        """Fill with samples from ``N(mean, std**2)``."""
        self._ensure_initialized("set_rand_normal")
        self._data[...] = np.random.normal(mean, std, size=self.length()).astype(_FLOAT)

    def set_rand_uniform(self, min: float = -0.05, max: float = 0.05) -> None:
        """Fill with samples from ``U(min, max)``."""
        self._ensure_initialized("set_rand_uniform")
        self._data[...] = np.random.uniform(min, max, size=self.length()).astype(_FLOAT)

    def reshape(self, dim: Union[TensorDim, Sequence[int]]) -> None:
        """
        Change the shape in place, keeping the buffer.

        Parameters
        ----------
        dim : TensorDim or sequence of int
            New shape. Must hold exactly as many elements as the current one.

        Raises
        ------
        ShapeSizeMismatchError
            If the element count would change.

        Notes
        -----
        Other tensors sharing the buffer keep their own shape.
        """
        if not isinstance(dim, TensorDim):
            sizes = [int(d) for d in dim]
            dim = TensorDim(*([1] * (MAXDIM - len(sizes)) + sizes))
        if dim.get_data_len() != self.length():
            raise ShapeSizeMismatchError(self.length(), dim.get_data_len())
        self._dim = dim.copy()
        self._strides = self._dim.compute_strides()

    def _ensure_initialized(self, op: str) -> None:
        if self.uninitialized():
            raise InvalidArgumentError(f"{op} called on an uninitialized tensor")

    def _prepare_output(self, output: Optional["Tensor"], dim: TensorDim) -> "Tensor":
        """Return ``output`` checked against ``dim``, allocating it when needed."""
        if output is None:
            return Tensor(dim)
        if output.uninitialized():
            output._allocate(dim)
            return output
        if output._dim != dim:
            raise DimensionMismatchError("output tensor has the wrong shape", output._dim, dim)
        return output

    def _operator(
        self,
        m: "Tensor",
        v_func: Callable[[BroadcastInfo, np.ndarray, np.ndarray, np.ndarray], None],
        output: Optional["Tensor"],
        name: str,
    ) -> "Tensor":
        """
        Run ``v_func`` over every broadcast run of ``self`` against ``m``.

        ``v_func(e, buf, m_buf, out_buf)`` receives flat views starting at the
        current run; it must handle ``e.buffer_size`` elements, advancing ``m``
        with ``e.strides[3]``. Passing ``output=self`` runs in place.
        """
        self._ensure_initialized(name)
        m._ensure_initialized(name)
        e = compute_broadcast_info(self._dim, m._dim, m._strides)
        output = self._prepare_output(output, self._dim)
        self._operator_util(m, v_func, output._data, e, -1, 0, 0)
        return output

    def _operator_util(
        self,
        m: "Tensor",
        v_func: Callable[[BroadcastInfo, np.ndarray, np.ndarray, np.ndarray], None],
        out: np.ndarray,
        e: BroadcastInfo,
        cur_axis: int,
        offset: int,
        m_offset: int,
    ) -> None:
        if e.buffer_axis == cur_axis:
            v_func(e, self._data[offset:], m._data[m_offset:], out[offset:])
            return

        cur_axis += 1
        for i in range(self._dim.get_tensor_dim(cur_axis)):
            self._operator_util(
                m,
                v_func,
                out,
                e,
                cur_axis,
                offset + i * self._strides[cur_axis],
                m_offset + i * e.strides[cur_axis],
            )

    def add_i(self, m: Union["Tensor", Number], alpha: float = 1.0) -> "Tensor":
        """
        In-place ``self += alpha * m``.

        Parameters
        ----------
        m : Tensor or number
            Right operand, broadcast onto ``self`` (size-1 axes are replayed).
        alpha : float, default 1.0
            Scale applied to ``m``. Applied inside the ``scaled_add`` kernel,
            so no scaled copy of ``m`` is built.

        Returns
        -------
        Tensor
            ``self``.

        Raises
        ------
        DimensionMismatchError
            If ``m`` does not broadcast onto ``self``.
        """
        if _is_number(m):
            self._ensure_initialized("add_i")
            with np.errstate(over="ignore", invalid="ignore"):
                self._data += _FLOAT(alpha * m)
            return self

        def v_func(e, buf, m_buf, out_buf):
            blas.scaled_add(e.buffer_size, alpha, m_buf, out_buf, e.strides[3], self._strides[3])

        self._operator(m, v_func, self, "add_i")
        return self

    def add(
        self,
        m: Union["Tensor", Number],
        alpha: float = 1.0,
        output: Optional["Tensor"] = None,
    ) -> "Tensor":
        """
        Return ``self + alpha * m``.

        Parameters
        ----------
        m : Tensor or number
            Right operand, broadcast onto ``self``.
        alpha : float, default 1.0
            Scale applied to ``m``.
        output : Tensor, optional
            Destination. Allocated if uninitialized; must otherwise have
            ``self``'s shape. Must not alias ``m``.

        Returns
        -------
        Tensor
            ``output`` if given, otherwise a new tensor of ``self``'s shape.

        Examples
        --------
        >>> a = Tensor([[1., 2.], [3., 4.]])
        >>> b = Tensor([[10., 20.]])
        >>> a.add(b, alpha=0.5).get_data()
        array([ 6., 12.,  8., 14.], dtype=float32)
        """
        if _is_number(m):
            self._ensure_initialized("add")
            output = self._prepare_output(output, self._dim)
            with np.errstate(over="ignore", invalid="ignore"):
                np.add(self._data, _FLOAT(alpha * m), out=output._data)
            return output

        def v_func(e, buf, m_buf, out_buf):
            blas.copy(e.buffer_size, buf, out_buf, self._strides[3], self._strides[3])
            blas.scaled_add(e.buffer_size, alpha, m_buf, out_buf, e.strides[3], self._strides[3])

        return self._operator(m, v_func, output, "add")

    def subtract_i(self, m: Union["Tensor", Number], alpha: float = 1.0) -> "Tensor":
        """In-place ``self -= alpha * m``; see :meth:`add_i`."""
        return self.add_i(m, -alpha)

    def subtract(
        self,
        m: Union["Tensor", Number],
        alpha: float = 1.0,
        output: Optional["Tensor"] = None,
    ) -> "Tensor":
        """Return ``self - alpha * m``; see :meth:`add`."""
        return self.add(m, -alpha, output)

    def multiply_i(self, m: Union["Tensor", Number]) -> "Tensor":
        """
        In-place elementwise product (not a matrix product).

        A scalar ``m`` scales the whole buffer through the ``scale`` kernel.
        """
        if _is_number(m):
            self._ensure_initialized("multiply_i")
            blas.scale(self.length(), m, self._data)
            return self

        def v_func(e, buf, m_buf, out_buf):
            n = e.buffer_size
            np.multiply(out_buf[:n], _run_view(m_buf, n, e.strides[3]), out=out_buf[:n])

        with np.errstate(over="ignore", invalid="ignore"):
            self._operator(m, v_func, self, "multiply_i")
        return self

    def multiply(
        self,
        m: Union["Tensor", Number],
        output: Optional["Tensor"] = None,
    ) -> "Tensor":
        """
        Elementwise product ``self * m`` with broadcasting of ``m``.

        Parameters
        ----------
        m : Tensor or number
            Right operand.
        output : Tensor, optional
            Destination, allocated if uninitialized.

        Returns
        -------
        Tensor
            The product, in ``output`` if given.
        """
        if _is_number(m):
            self._ensure_initialized("multiply")
            output = self._prepare_output(output, self._dim)
            with np.errstate(over="ignore", invalid="ignore"):
                np.multiply(self._data, _FLOAT(m), out=output._data)
            return output

        def v_func(e, buf, m_buf, out_buf):
            n = e.buffer_size
            np.multiply(buf[:n], _run_view(m_buf, n, e.strides[3]), out=out_buf[:n])

        with np.errstate(over="ignore", invalid="ignore"):
            return self._operator(m, v_func, output, "multiply")

    def divide_i(self, m: Union["Tensor", Number]) -> "Tensor":
        """
        In-place elementwise division.

        Division by zero is not special-cased and yields ``inf``/``nan``.
        """
        if _is_number(m):
            self._ensure_initialized("divide_i")
            with np.errstate(divide="ignore", over="ignore", invalid="ignore"):
                np.divide(self._data, _FLOAT(m), out=self._data)
            return self

        def v_func(e, buf, m_buf, out_buf):
            n = e.buffer_size
            np.divide(out_buf[:n], _run_view(m_buf, n, e.strides[3]), out=out_buf[:n])

        with np.errstate(divide="ignore", over="ignore", invalid="ignore"):
            self._operator(m, v_func, self, "divide_i")
        return self

    def divide(
        self,
        m: Union["Tensor", Number],
        output: Optional["Tensor"] = None,
    ) -> "Tensor":
        """
        Elementwise quotient ``self / m`` with broadcasting of ``m``.

        Division by zero follows IEEE semantics.

        Examples
        --------
        >>> t = Tensor([[[[1, 2, 3]]], [[[4, 5, 6]]]])
        >>> t.divide(2).get_data()
        array([0.5, 1. , 1.5, 2. , 2.5, 3. ], dtype=float32)
        """
        if _is_number(m):
            self._ensure_initialized("divide")
            output = self._prepare_output(output, self._dim)
            with np.errstate(divide="ignore", over="ignore", invalid="ignore"):
                np.divide(self._data, _FLOAT(m), out=output._data)
            return output

        def v_func(e, buf, m_buf, out_buf):
            n = e.buffer_size
            np.divide(buf[:n], _run_view(m_buf, n, e.strides[3]), out=out_buf[:n])

        with np.errstate(divide="ignore", over="ignore", invalid="ignore"):
            return self._operator(m, v_func, output, "divide")

    def pow(self, exponent: float, output: Optional["Tensor"] = None) -> "Tensor":
        """Elementwise power ``self ** exponent`` (not a matrix power)."""
        self._ensure_initialized("pow")
        output = self._prepare_output(output, self._dim)
        with np.errstate(divide="ignore", over="ignore", invalid="ignore"):
            np.power(self._data, _FLOAT(exponent), out=output._data)
        return output

    def pow_i(self, exponent: float) -> "Tensor":
        self.pow(exponent, self)
        return self

    def dot(
        self,
        m: "Tensor",
        trans: bool = False,
        trans_m: bool = False,
        output: Optional["Tensor"] = None,
        beta: float = 0.0,
        alpha: float = 1.0,
    ) -> "Tensor":
        """
        Batched matrix product over the height/width axes.

        ``self`` is read as ``batch`` matrices of shape ``(height, width)`` and
        ``m`` as ``m.batch`` matrices of shape ``(m.height, m.width)``.

        Parameters
        ----------
        m : Tensor
            Right operand. ``m.batch`` must equal ``self.batch`` (one matrix per
            sample) or be 1 (the same matrix reused for every sample).
        trans, trans_m : bool, default False
            Use the transpose of ``self`` / ``m`` matrices, as in GEMM.
        output : Tensor, optional
            Destination of shape ``(batch, 1, M, N)``; allocated if
            uninitialized.
        beta : float, default 0.0
            With ``output`` given, compute
            ``output = alpha * op(self) @ op(m) + beta * output``.
        alpha : float, default 1.0
            Scale applied to the product.

        Returns
        -------
        Tensor
            Tensor of shape ``(batch, 1, M, N)`` where ``M``/``N`` are the row
            count of ``op(self)`` and the column count of ``op(m)``.

        Raises
        ------
        DimensionMismatchError
            If either operand has more than one channel, the inner sizes
            differ, or ``m.batch`` is neither 1 nor ``self.batch``.

        Notes
        -----
        The batch rule here differs from elementwise broadcasting: only the
        whole right-hand matrix stack is broadcast, and only from batch 1.

        Examples
        --------
        >>> x = Tensor(4, 1, 2, 3)
        >>> w = Tensor(1, 1, 3, 5)
        >>> x.dot(w).shape
        (4, 1, 2, 5)
        """
        self._ensure_initialized("dot")
        m._ensure_initialized("dot")

        if self.channel != 1 or m.channel != 1:
            raise DimensionMismatchError("dot supports single-channel operands only", self._dim, m._dim)
        if m.batch != 1 and m.batch != self.batch:
            raise DimensionMismatchError("dot requires m.batch to be 1 or equal to batch", self._dim, m._dim)

        rows, inner = (self.width, self.height) if trans else (self.height, self.width)
        m_inner, cols = (m.width, m.height) if trans_m else (m.height, m.width)
        if inner != m_inner:
            raise DimensionMismatchError("inner dimensions of dot do not match", self._dim, m._dim)

        out_dim = TensorDim(self.batch, 1, rows, cols)
        if output is None or output.uninitialized():
            output = self._prepare_output(output, out_dim)
            beta = 0.0
        else:
            output = self._prepare_output(output, out_dim)

        a_step = self.height * self.width
        m_step = 0 if m.batch == 1 else m.height * m.width
        c_step = rows * cols
        for b in range(self.batch):
            blas.matmul(
                rows,
                cols,
                inner,
                alpha,
                self._data[b * a_step :],
                m._data[b * m_step :],
                beta,
                output._data[b * c_step :],
                trans,
                trans_m,
            )
        return output

    def transpose(self, direction: str) -> "Tensor":
        """
        Permute the channel/height/width axes into a new tensor.

        Parameters
        ----------
        direction : str
            Colon-separated permutation of ``0`` (channel), ``1`` (height) and
            ``2`` (width). ``"0:2:1"`` swaps height and width.

        Returns
        -------
        Tensor
            A contiguous copy; the buffer is never shared with ``self``.

        Raises
        ------
        InvalidArgumentError
            If ``direction`` is not a permutation of ``0, 1, 2``.
        """
        self._ensure_initialized("transpose")
        try:
            order = [int(p) for p in str(direction).split(":")]
        except ValueError:
            raise InvalidArgumentError(f"malformed transpose direction: {direction!r}") from None
        if sorted(order) != [0, 1, 2]:
            raise InvalidArgumentError(f"malformed transpose direction: {direction!r}")

        sizes = self.shape
        out_dim = TensorDim(sizes[0], *(sizes[p + 1] for p in order))
        permuted = self._data.reshape(sizes).transpose(0, *(p + 1 for p in order))

        result = Tensor(out_dim)
        result._data[...] = np.ascontiguousarray(permuted).reshape(-1)
        return result

    def sum_by_batch(self) -> "Tensor":
        """
        Sum every non-batch axis.

        Returns
        -------
        Tensor
            Shape ``(batch, 1, 1, 1)``.
        """
        self._ensure_initialized("sum_by_batch")
        feat_len = self._dim.get_feature_len()
        ret = Tensor(self.batch, 1, 1, 1)
        ones = np.ones(feat_len, dtype=_FLOAT)
        blas.matmul(self.batch, 1, feat_len, 1.0, self._data, ones, 0.0, ret._data)
        return ret

    def sum(
        self,
        axis: Union[int, Sequence[int]],
        alpha: float = 1.0,
        output: Optional["Tensor"] = None,
    ) -> "Tensor":
        """
        Sum along one axis, or fold several axes one after another.

        Parameters
        ----------
        axis : int or sequence of int
            ``0`` batch, ``1`` channel, ``2`` height, ``3`` width. A sequence
            is reduced in the given order.
        alpha : float, default 1.0
            Scale applied to the sum (to the first reduction of a sequence).
        output : Tensor, optional
            Destination with the reduced shape; allocated if uninitialized.

        Returns
        -------
        Tensor
            Same shape as ``self`` with each reduced axis set to 1.

        Raises
        ------
        OutOfRangeError
            If an axis is not in ``0..3``.
        InvalidArgumentError
            If an empty sequence of axes is given.
        """
        if isinstance(axis, (list, tuple)):
            if not axis:
                raise InvalidArgumentError("empty axes given")
            if len(axis) == 1:
                return self._sum_axis(axis[0], alpha, output)
            ret = self._sum_axis(axis[0], alpha, None)
            for a in axis[1:-1]:
                ret = ret._sum_axis(a, 1.0, None)
            return ret._sum_axis(axis[-1], 1.0, output)
        return self._sum_axis(axis, alpha, output)

    def _sum_axis(self, axis: int, alpha: float, output: Optional["Tensor"]) -> "Tensor":
        self._ensure_initialized("sum")
        if not 0 <= axis < MAXDIM:
            raise OutOfRangeError(f"axis {axis} is invalid")

        out_dim = self.get_dim()
        out_dim.set_tensor_dim(axis, 1)
        output = self._prepare_output(output, out_dim)

        sizes = self.shape
        outer = int(np.prod(sizes[:axis], dtype=np.int64))
        size = sizes[axis]
        inner = int(np.prod(sizes[axis + 1 :], dtype=np.int64))

        # each outer block is a (size x inner) matrix reduced by a row of alphas
        ones = np.full(size, alpha, dtype=_FLOAT)
        for o in range(outer):
            blas.matmul(
                1,
                inner,
                size,
                1.0,
                ones,
                self._data[o * size * inner :],
                0.0,
                output._data[o * inner :],
            )
        return output

    def average(self, axis: Optional[Union[int, Sequence[int]]] = None) -> "Tensor":
        """
        Mean along one axis, several axes, or (with no argument) everything.

        Returns
        -------
        Tensor
            Reduced tensor; ``average()`` returns shape ``(1, 1, 1, 1)``.
        """
        self._ensure_initialized("average")
        if axis is None:
            flat = self.get_shared_data_tensor(TensorDim(1, 1, 1, self.length()), 0)
            return flat.average(3)

        if isinstance(axis, (list, tuple)):
            if not axis:
                return self.average()
            count = 1
            for a in axis:
                count *= self._dim.get_tensor_dim(a)
            return self.sum(list(axis), 1.0 / count)

        if not 0 <= axis < MAXDIM:
            raise OutOfRangeError(f"axis {axis} is invalid")
        return self.sum(axis, 1.0 / self._dim.get_tensor_dim(axis))

    def l2norm(self) -> float:
        """Euclidean norm of all elements."""
        self._ensure_initialized("l2norm")
        return blas.norm2(self.length(), self._data)

    def l1norm(self) -> float:
        """Sum of absolute values of all elements."""
        self._ensure_initialized("l1norm")
        return blas.sum_abs(self.length(), self._data)

    def argmax(self) -> List[int]:
        """Per-sample flat index (over channel/height/width) of the maximum."""
        self._ensure_initialized("argmax")
        per_batch = self._data.reshape(self.batch, self._dim.get_feature_len())
        return [int(i) for i in np.argmax(per_batch, axis=1)]

    def normalization_i(self) -> "Tensor":
        """Min-max scale every element into ``[0, 1]`` in place."""
        self._ensure_initialized("normalization_i")
        lo = float(self._data.min())
        hi = float(self._data.max())
        if hi == lo:
            self.set_zero()
        else:
            self.subtract_i(lo)
            self.divide_i(hi - lo)
        return self

    def normalization(self, output: Optional["Tensor"] = None) -> "Tensor":
        output = self._prepare_output(output, self._dim)
        output.copy(self)
        return output.normalization_i()

    def standardization_i(self) -> "Tensor":
        """
        Center every sample and divide by its scaled L2 norm, in place.

        The per-sample mean is removed first; each sample is then divided by
        ``l2norm(sample) / feature_len``.
        """
        self._ensure_initialized("standardization_i")
        feat_len = self._dim.get_feature_len()

        mean_by_batch = self.sum_by_batch()
        mean_by_batch.divide_i(feat_len)
        self.subtract_i(mean_by_batch)

        std_dev_by_batch = Tensor(self.batch, 1, 1, 1)
        for k in range(self.batch):
            std_dev_by_batch._data[k] = self.get_batch_slice(k, 1).l2norm()
        std_dev_by_batch.divide_i(feat_len)

        return self.divide_i(std_dev_by_batch)

    def standardization(self, output: Optional["Tensor"] = None) -> "Tensor":
        output = self._prepare_output(output, self._dim)
        output.copy(self)
        return output.standardization_i()

    def apply(
        self,
        fn: Callable[[float], float],
        output: Optional["Tensor"] = None,
    ) -> "Tensor":
        """
        Map a scalar function over every element.

        Parameters
        ----------
        fn : callable
            ``float -> float``. Vectorized with :class:`numpy.vectorize`.
        output : Tensor, optional
            Destination; may be ``self``. Allocated if uninitialized.

        Returns
        -------
        Tensor
            ``output`` or a new tensor.
        """
        self._ensure_initialized("apply")
        output = self._prepare_output(output, self._dim)
        vectorized = np.vectorize(fn, otypes=[_FLOAT])
        with np.errstate(divide="ignore", over="ignore", invalid="ignore"):
            output._data[...] = vectorized(self._data)
        return output

    def apply_i(self, fn: Callable[[float], float]) -> "Tensor":
        self.apply(fn, self)
        return self

    def apply_tensor(
        self,
        fn: Callable[..., "Tensor"],
        output: Optional["Tensor"] = None,
    ) -> "Tensor":
        """
        Apply a whole-tensor function.

        Calls ``fn(self)``, or ``fn(self, output)`` when ``output`` is given.
        Used for transforms such as softmax that couple elements.
        """
        if output is None:
            return fn(self)
        return fn(self, output)

    def softmax(self, output: Optional["Tensor"] = None) -> "Tensor":
        """Per-sample softmax; see :func:`nntensor.activation.softmax`."""
        from nntensor.activation import softmax

        return softmax(self, output)

    def chain(self) -> "LazyTensor":
        """
        Start a deferred chain anchored on a copy of ``self``.

        Examples
        --------
        >>> t = Tensor([[1., 2.], [3., 4.]])
        >>> t.chain().multiply_i(2).add_i(1).run().get_data()
        array([3., 5., 7., 9.], dtype=float32)
        """
        from nntensor.lazy import LazyTensor

        return LazyTensor(self)

    def copy(self, src: "Tensor") -> "Tensor":
        """
        Copy ``src``'s shape and values into ``self``.

        When the element counts match, the existing buffer is reused (so every
        tensor sharing it sees the new values); otherwise ``self`` is rebound
        to a fresh buffer. Copying an uninitialized tensor is a no-op.
        """
        if src is self or src.uninitialized():
            return self
        if self.uninitialized() or self.length() != src.length():
            self._allocate(src._dim)
        else:
            self.reshape(src._dim)
        blas.copy(self.length(), src._data, self._data)
        return self

    def clone(self) -> "Tensor":
        """Return an independent copy with its own buffer."""
        t = Tensor()
        t.copy(self)
        return t

    def get_shared_data_tensor(self, dim: TensorDim, offset: int) -> "Tensor":
        """
        View ``dim.get_data_len()`` elements starting at element ``offset``.

        Parameters
        ----------
        dim : TensorDim
            Shape of the view.
        offset : int
            Element offset from this tensor's first element.

        Returns
        -------
        Tensor
            A tensor sharing this tensor's buffer. Nothing is copied.

        Raises
        ------
        OutOfRangeError
            If ``offset + dim.get_data_len()`` exceeds ``self.length()``.
        """
        if offset < 0 or offset + dim.get_data_len() > self.length():
            raise OutOfRangeError(
                "creating shared tensor of size bigger than tensor memory: "
                f"{dim.get_data_len()} values at offset {offset}, tensor holds {self.length()}"
            )
        return Tensor.map(self._buffer, dim, self._offset + offset)

    def get_batch_slice(self, offset: int, size: int) -> "Tensor":
        """View of ``size`` samples starting at sample ``offset``."""
        dim = self.get_dim()
        dim.batch = size
        return self.get_shared_data_tensor(dim, offset * self._dim.get_feature_len())

    def save(self, file: BinaryIO) -> None:
        """
        Write the raw buffer as little-endian ``float32`` values, no header.

        Parameters
        ----------
        file : binary file object
            Opened for writing.
        """
        self._ensure_initialized("save")
        file.write(self._data.astype(_RAW_DTYPE, copy=False).tobytes())

    def read(self, file: BinaryIO) -> None:
        """
        Fill the tensor from a raw dump written by :meth:`save`.

        The shape is not stored in the file; ``self`` must already have it.

        Raises
        ------
        InvalidArgumentError
            If ``self`` is uninitialized.
        TensorIOError
            If the file holds fewer than ``length()`` values.
        """
        self._ensure_initialized("read")
        nbytes = self.length() * _RAW_DTYPE.itemsize
        raw = file.read(nbytes)
        if raw is None or len(raw) != nbytes:
            got = 0 if raw is None else len(raw)
            raise TensorIOError(f"read operation failed: expected {nbytes} bytes, got {got}")
        self._data[...] = np.frombuffer(raw, dtype=_RAW_DTYPE)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Tensor):
            return NotImplemented
        if self._dim != other._dim:
            return False
        if self.uninitialized():
            return True
        a, b = self._data, other._data
        if np.isnan(a).any() or np.isnan(b).any():
            return False
        with np.errstate(invalid="ignore", over="ignore"):
            return bool(np.all(np.abs(a - b) <= self.epsilon))

    def __ne__(self, other: object) -> bool:
        result = self.__eq__(other)
        if result is NotImplemented:
            return result
        return not result

    __hash__ = None

    def __add__(self, other: Union["Tensor", Number]) -> "Tensor":
        return self.add(other)

    def __radd__(self, other: Number) -> "Tensor":
        return self.add(other)

    def __iadd__(self, other: Union["Tensor", Number]) -> "Tensor":
        return self.add_i(other)

    def __sub__(self, other: Union["Tensor", Number]) -> "Tensor":
        return self.subtract(other)

    def __rsub__(self, other: Number) -> "Tensor":
        return self.multiply(-1.0).add_i(other)

    def __isub__(self, other: Union["Tensor", Number]) -> "Tensor":
        return self.subtract_i(other)

    def __mul__(self, other: Union["Tensor", Number]) -> "Tensor":
        return self.multiply(other)

    def __rmul__(self, other: Number) -> "Tensor":
        return self.multiply(other)

    def __imul__(self, other: Union["Tensor", Number]) -> "Tensor":
        return self.multiply_i(other)

    def __truediv__(self, other: Union["Tensor", Number]) -> "Tensor":
        return self.divide(other)

    def __rtruediv__(self, other: Number) -> "Tensor":
        numerator = Tensor(self._dim)
        numerator.set_value(other)
        return numerator.divide_i(self)

    def __itruediv__(self, other: Union["Tensor", Number]) -> "Tensor":
        return self.divide_i(other)

    def __pow__(self, exponent: float) -> "Tensor":
        return self.pow(exponent)

    def __neg__(self) -> "Tensor":
        return self.multiply(-1.0)

    def __repr__(self) -> str:
        """
        Readable representation in the ``tensor(...)`` style.

        Examples
        --------
        >>> Tensor([[1, 2], [3, 4]])
        tensor([[[[1., 2.],
                  [3., 4.]]]], dim='1:1:2:2')
        """
        if self.uninitialized():
            return f"tensor([], dim='{self._dim}')"
        data_str = np.array2string(
            self._data.reshape(self.shape), separator=", ", prefix="tensor("
        )
        return f"tensor({data_str}, dim='{self._dim}')"
