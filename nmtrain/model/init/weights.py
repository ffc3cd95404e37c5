# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Deterministic weight initialization.

All initialization draws from one torch.Generator seeded from the config, so
two models built with the same seed and architecture start from identical
parameters regardless of the global RNG state.
"""

import torch
import torch.nn as nn


def init_weights(module: nn.Module, seed: int, init_std: float = 0.02) -> None:
    """
    Initialize all parameters in a module deterministically.

    Matrices (linear, embedding, fused attention projections) get a normal
    init; one-dimensional weights (LayerNorm gains) start at 1.0; biases at 0.0.

    Args:
        module: The nn.Module to initialize.
        seed: Random seed for the Generator.
        init_std: Standard deviation for normal initialization.
    """
    generator = torch.Generator()
    generator.manual_seed(seed)

    with torch.no_grad():
        for name, param in module.named_parameters():
            if param.dim() >= 2:
                # Draw on CPU so the stream doesn't depend on the device.
                sample = torch.empty(param.shape, dtype=param.dtype)
                sample.normal_(0.0, init_std, generator=generator)
                param.copy_(sample)
            elif name.endswith("weight"):
                param.fill_(1.0)
            else:
                param.zero_()
