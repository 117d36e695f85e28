from typing import TYPE_CHECKING, Callable, List, Optional, Sequence, Union

if TYPE_CHECKING:
    from nntensor.tensor import Number, Tensor

Step = Callable[["Tensor"], "Tensor"]


class LazyTensor:
    """
    Deferred chain of tensor operations.

    Builder methods only record a step and return the chain, so calls can be
    strung together; nothing is computed until :meth:`run`. The chain is
    anchored on a copy of the tensor taken when it was created, so later
    changes to that tensor do not affect the result.

    Parameters
    ----------
    target : Tensor
        Tensor whose current values start the chain.

    Notes
    -----
    - ``run()`` works on a fresh copy of the anchor every time. Calling it
      twice returns two equal, independent tensors.
    - Shape errors are raised by ``run()``, from the step that fails.

    Examples
    --------
    >>> from nntensor.tensor import Tensor
    >>> x = Tensor([[1., 2.], [3., 4.]])
    >>> y = x.chain().add_i(1).multiply_i(2).sum(3).run()
    >>> y.get_data()
    array([10., 18.], dtype=float32)
    """

    def __init__(self, target: "Tensor") -> None:
        self._anchor = target.clone()
        self._steps: List[Step] = []

    def _record(self, step: Step) -> "LazyTensor":
        self._steps.append(step)
        return self

    def add_i(self, m: Union["Tensor", "Number"], alpha: float = 1.0) -> "LazyTensor":
        return self._record(lambda t: t.add_i(m, alpha))

    def subtract_i(self, m: Union["Tensor", "Number"], alpha: float = 1.0) -> "LazyTensor":
        return self._record(lambda t: t.subtract_i(m, alpha))

    def multiply_i(self, m: Union["Tensor", "Number"]) -> "LazyTensor":
        return self._record(lambda t: t.multiply_i(m))

    def divide_i(self, m: Union["Tensor", "Number"]) -> "LazyTensor":
        return self._record(lambda t: t.divide_i(m))

    def dot(self, m: "Tensor", trans: bool = False, trans_m: bool = False) -> "LazyTensor":
        return self._record(lambda t: t.dot(m, trans, trans_m))

    def transpose(self, direction: str) -> "LazyTensor":
        return self._record(lambda t: t.transpose(direction))

    def sum_by_batch(self) -> "LazyTensor":
        return self._record(lambda t: t.sum_by_batch())

    def sum(self, axis: Union[int, Sequence[int]], alpha: float = 1.0) -> "LazyTensor":
        return self._record(lambda t: t.sum(axis, alpha))

    def average(self, axis: Optional[Union[int, Sequence[int]]] = None) -> "LazyTensor":
        return self._record(lambda t: t.average(axis))

    def apply(self, fn: Callable[[float], float]) -> "LazyTensor":
        return self._record(lambda t: t.apply_i(fn))

    def run(self) -> "Tensor":
        """
        Execute the recorded steps in order.

        Returns
        -------
        Tensor
            Output of the last step, or a copy of the anchor if no step was
            recorded.
        """
        result = self._anchor.clone()
        for step in self._steps:
            result = step(result)
        return result

    def __len__(self) -> int:
        return len(self._steps)

    def __repr__(self) -> str:
        return f"LazyTensor(dim='{self._anchor.get_dim()}', steps={len(self._steps)})"
