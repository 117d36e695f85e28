import numpy as np
import pytest

from nntensor import blas, blas_naive, blas_numpy

_KERNEL_SETS = {"numpy": blas_numpy, "naive": blas_naive}

@pytest.fixture
def rng():
    return np.random.default_rng(0)

@pytest.fixture(params=["numpy", "naive"])
def kernels(request, monkeypatch):
    monkeypatch.setattr(blas, "_kernels", _KERNEL_SETS[request.param])
    return request.param
