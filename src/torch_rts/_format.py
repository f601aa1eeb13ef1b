from __future__ import annotations

import contextlib
import copy

import torch

if hasattr(torch._tensor_str, "printoptions"):  # noqa: SLF001
    printoptions = torch._tensor_str.printoptions  # noqa: SLF001
else:

    @contextlib.contextmanager
    def printoptions(**kwargs):
        """Change pytorch printoptions temporarily. From the future of pytorch."""
        old_printoptions = copy.copy(torch._tensor_str.PRINT_OPTS)  # noqa: SLF001
        torch.set_printoptions(**kwargs)
        try:
            yield
        finally:
            torch._tensor_str.PRINT_OPTS = old_printoptions  # noqa: SLF001


def pretty(tensor: torch.Tensor) -> str:
    """Format a vector/matrix for trace logs (one row per line, 3 decimals)."""
    with printoptions(precision=3, sci_mode=False, linewidth=120):
        return "\n" + str(tensor)
