import numpy as np

from nntensor.tensor import Tensor

ATOL = 1e-6
RTOL = 1e-5

def tdata(t: Tensor) -> np.ndarray:
    return np.asarray(t.get_data()).reshape(t.shape)

def make_tensor(x_np: np.ndarray) -> Tensor:
    return Tensor(np.asarray(x_np, dtype=np.float32))

def assert_close(a, b, atol=ATOL, rtol=RTOL):
    a = np.asarray(a, dtype=np.float64)
    b = np.asarray(b, dtype=np.float64)
    assert a.shape == b.shape or a.size == b.size, f"shape {a.shape} vs {b.shape}"
    a = a.reshape(b.shape)
    assert np.allclose(a, b, atol=atol, rtol=rtol), f"max|diff|={np.max(np.abs(a-b))}"
