import pytest
import torch

from torch_rts import debug


@pytest.fixture(autouse=True)
def deterministic():
    torch.manual_seed(0)
    torch.cuda.manual_seed_all(0)
    torch.use_deterministic_algorithms(True)


@pytest.fixture(autouse=True)
def reset_symmetry_checks():
    enabled = debug.symmetry_checks_enabled()
    yield
    debug.set_symmetry_checks(enabled)


def pytest_runtest_setup(item):
    if "cuda" in item.keywords and not torch.cuda.is_available():
        pytest.skip("CUDA not available")
