# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Smoothed cross-entropy objective.

The loss is computed against an explicit target distribution rather than
class indices so that label smoothing is visible in one place:

    gold[b, t, k] = 1 − p             if k == label[b, t]
                    p / (V − 1)       otherwise

    loss[b, t]    = −Σ_k gold[b, t, k] · log_softmax(logits)[b, t, k] · padding[b, t]

The per-position loss tensor is returned unreduced: the step runner sums it
to a host scalar for the loss gate and backpropagates from the same tensor.
"""

import torch
import torch.nn.functional as F


def index_to_onehot(
    index: torch.Tensor,
    size: int,
    label_smoothing_p: float = 0.0,
) -> torch.Tensor:
    """
    Expand class indices into a (smoothed) one-hot distribution.

    Args:
        index: Integer tensor of any shape.
        size: Number of classes.
        label_smoothing_p: Probability mass spread uniformly over the
            non-target classes.

    Returns:
        Float tensor of shape index.shape + (size,), on index's device.
    """
    if size < 1:
        raise ValueError(f"size must be positive, got {size}")

    if label_smoothing_p == 0.0 or size == 1:
        return F.one_hot(index.long(), num_classes=size).float()

    off_value = label_smoothing_p / (size - 1)
    on_value = 1.0 - label_smoothing_p

    gold = torch.full(
        (*index.shape, size),
        off_value,
        dtype=torch.float32,
        device=index.device,
    )
    gold.scatter_(-1, index.long().unsqueeze(-1), on_value)
    return gold


def cross_entropy(
    output: torch.Tensor,
    gold: torch.Tensor,
    padding: torch.Tensor,
) -> torch.Tensor:
    """
    Per-position cross-entropy between logits and a target distribution.

    Args:
        output: Logits of shape (batch, length, vocab).
        gold: Target distribution of the same shape.
        padding: Mask of shape (batch, length); 0 removes a position.

    Returns:
        Loss tensor of shape (batch, length).
    """
    log_probs = F.log_softmax(output.float(), dim=-1)
    loss = -(gold * log_probs).sum(dim=-1)
    return loss * padding.to(loss.dtype)
