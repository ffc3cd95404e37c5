# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Loss gate: decides whether a step's loss is safe to backpropagate.

A step is usable when its per-word loss is finite and below a fixed ceiling.
Anything else (NaN, ±inf, or a blow-up past the ceiling) is skipped whole:
no backward, no parameter update, no moment or bias-correction advance.
"""

import math
from dataclasses import dataclass

DEFAULT_LOSS_CEILING = 1000.0


@dataclass(frozen=True)
class GateDecision:
    """Outcome of checking one step's loss."""

    usable: bool
    loss_local: float


@dataclass(frozen=True)
class LossGate:
    """
    Per-word loss check.

    Args:
        threshold: Per-word losses at or above this value are rejected.
    """

    threshold: float = DEFAULT_LOSS_CEILING

    def check(self, loss_batch: float, word_count: int) -> GateDecision:
        if word_count <= 0:
            return GateDecision(usable=False, loss_local=math.nan)
        loss_local = loss_batch / word_count
        usable = math.isfinite(loss_local) and loss_local < self.threshold
        return GateDecision(usable=usable, loss_local=loss_local)
