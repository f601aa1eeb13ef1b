"""Verification mode.

When enabled, the measurement update asserts that both the prior and the posterior covariances are
symmetric (within a relative tolerance of 1e-5). This is a development-time guard: it costs a comparison
per update and aborts with an ``AssertionError``. It is disabled by default.

It can be switched on:
- for the whole process with the ``TORCH_RTS_CHECK_SYMMETRY`` environment variable (``1``, ``true``, ``yes``, ``on``),
- programmatically with :func:`set_symmetry_checks`,
- temporarily with the :func:`symmetry_checks` context manager.
"""

from __future__ import annotations

import contextlib
import os
from typing import Iterator

import torch

SYMMETRY_RTOL = 1e-5
SYMMETRY_ATOL = 1e-8


def _env_flag(name: str) -> bool:
    return os.environ.get(name, "").strip().lower() in ("1", "true", "yes", "on")


_check_symmetry = _env_flag("TORCH_RTS_CHECK_SYMMETRY")


def symmetry_checks_enabled() -> bool:
    """Whether covariance symmetry is asserted during updates."""
    return _check_symmetry


def set_symmetry_checks(enabled: bool) -> None:
    """Enable or disable symmetry assertions for the whole process."""
    global _check_symmetry  # noqa: PLW0603
    _check_symmetry = enabled


@contextlib.contextmanager
def symmetry_checks(enabled=True) -> Iterator[None]:
    """Change the verification mode temporarily.

    Example:
    ```python
        with torch_rts.debug.symmetry_checks():
            kf.filter(initial, observations)  # Raises AssertionError on asymmetric covariances
    ```
    """
    previous = symmetry_checks_enabled()
    set_symmetry_checks(enabled)
    try:
        yield
    finally:
        set_symmetry_checks(previous)


def assert_symmetric(matrix: torch.Tensor, name="matrix") -> None:
    """Raise an AssertionError if ``matrix`` is not symmetric.

    Args:
        matrix (torch.Tensor): Square matrix to check.
            Shape: ``(dim, dim)``
        name (str): Name used in the error message.
    """
    if not torch.allclose(matrix, matrix.mT, rtol=SYMMETRY_RTOL, atol=SYMMETRY_ATOL):
        error = (matrix - matrix.mT).abs().max().item()
        raise AssertionError(f"{name} is not symmetric (max asymmetry: {error:.3e})")
