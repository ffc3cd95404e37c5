# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Parameter update rules with run-owned optimizer state.

Two variants share one class:

  SGD:       p ← p − lr · g

  Adaptive:  β1ᵗ ← β1ᵗ · β1,  β2ᵗ ← β2ᵗ · β2          (once per update call)
             e  = lr · √(1 − β2ᵗ) / (1 − β1ᵗ)
             d' = δ · √(1 − β2ᵗ)
             m  ← β1 · m + (1 − β1) · g
             v  ← β2 · v + (1 − β2) · g²
             p  ← p − e · m / (√v + d')

Bias correction is folded into e and d', so the moment buffers stay
uncorrected. The bias-correction powers advance only when an update actually
happens: the step loop never calls `update` for a skipped step.

torch.optim.Adam is not used because its per-parameter step counters advance
independently; here one pair of powers is shared by the whole run and every
parameter sees the same e and d' within one call.

The parameter list P and the moment lists M, V are parallel arrays. Their
alignment is checked on every update; a mismatch means the run is corrupted
and raises OptimizerStateError.
"""

import logging
import math
from collections.abc import Sequence

import torch

from nmtrain.config.schema import TrainConfig
from nmtrain.logging.logger import get_logger
from nmtrain.training.exceptions import OptimizerStateError

logger: logging.Logger = get_logger(__name__)


class TrainingOptimizer:
    """
    SGD or first+second moment optimizer over an ordered parameter list.

    Args:
        use_adam: Use the adaptive rule; plain SGD otherwise.
        beta1: First moment decay.
        beta2: Second moment decay.
        delta: Denominator stabiliser.
    """

    def __init__(
        self,
        use_adam: bool = True,
        beta1: float = 0.9,
        beta2: float = 0.98,
        delta: float = 1e-9,
    ) -> None:
        self.use_adam = use_adam
        self.beta1 = beta1
        self.beta2 = beta2
        self.delta = delta

        self.params: list[torch.Tensor] = []
        self.moments: list[torch.Tensor] = []
        self.moments2nd: list[torch.Tensor] = []
        self.beta1_power = 1.0
        self.beta2_power = 1.0
        self.update_count = 0

    def prepare(self, params: Sequence[torch.Tensor]) -> None:
        """
        Bind the optimizer to a parameter list and reset all state.

        Every trainable parameter gets a zero gradient buffer up front, so
        backward accumulates into it and `update` always finds one. Gradients
        left over from an earlier run are zeroed. Frozen parameters keep
        `grad=None` and are skipped by `update`.

        Args:
            params: Parameters in the order the model exposes them.
        """
        self.params = list(params)
        self.moments = []
        self.moments2nd = []

        for param in self.params:
            if param.requires_grad:
                if param.grad is None:
                    param.grad = torch.zeros_like(param)
                else:
                    param.grad.zero_()

            if self.use_adam:
                self.moments.append(torch.zeros_like(param, memory_format=torch.preserve_format))
                self.moments2nd.append(torch.zeros_like(param, memory_format=torch.preserve_format))

        self.beta1_power = 1.0
        self.beta2_power = 1.0
        self.update_count = 0

        logger.debug(
            "Optimizer prepared",
            extra={
                "use_adam": self.use_adam,
                "parameters": len(self.params),
                "trainable": sum(1 for p in self.params if p.grad is not None),
            },
        )

    def _check_state(self) -> None:
        """Verify the parallel arrays still line up. Raises OptimizerStateError."""
        if not self.use_adam:
            return

        if not (len(self.moments) == len(self.moments2nd) == len(self.params)):
            raise OptimizerStateError(
                f"Moment buffers out of sync: |P|={len(self.params)}, "
                f"|M|={len(self.moments)}, |V|={len(self.moments2nd)}"
            )

        for i, (param, m, v) in enumerate(zip(self.params, self.moments, self.moments2nd)):
            if m.shape != param.shape or v.shape != param.shape:
                raise OptimizerStateError(
                    f"Moment shape mismatch at parameter {i}: "
                    f"param={tuple(param.shape)}, m={tuple(m.shape)}, v={tuple(v.shape)}"
                )
            if m.device != param.device or v.device != param.device:
                raise OptimizerStateError(
                    f"Moment device mismatch at parameter {i}: "
                    f"param={param.device}, m={m.device}, v={v.device}"
                )
            if param.grad is not None and param.grad.shape != param.shape:
                raise OptimizerStateError(
                    f"Gradient shape mismatch at parameter {i}: "
                    f"param={tuple(param.shape)}, grad={tuple(param.grad.shape)}"
                )

    @torch.no_grad()
    def update(self, lr: float) -> None:
        """
        Apply one update with learning rate `lr` and zero the gradients.

        Raises:
            OptimizerStateError: If the moment buffers don't match the parameters.
        """
        self._check_state()

        if self.use_adam:
            self._adaptive_update(lr)
        else:
            for param in self.params:
                grad = param.grad
                if grad is None:
                    continue
                param.add_(grad, alpha=-lr)
                grad.zero_()

        self.update_count += 1

    def _adaptive_update(self, lr: float) -> None:
        self.beta1_power *= self.beta1
        self.beta2_power *= self.beta2

        correction = math.sqrt(1.0 - self.beta2_power)
        e = lr * correction / (1.0 - self.beta1_power)
        d = self.delta * correction

        for param, m, v in zip(self.params, self.moments, self.moments2nd):
            grad = param.grad
            if grad is None:
                continue

            m.mul_(self.beta1).add_(grad, alpha=1.0 - self.beta1)
            v.mul_(self.beta2).addcmul_(grad, grad, value=1.0 - self.beta2)

            denom = v.sqrt().add_(d)
            param.addcdiv_(m, denom, value=-e)
            del denom

            grad.zero_()

    def release(self) -> None:
        """Drop the moment buffers and unbind the parameters."""
        self.moments = []
        self.moments2nd = []
        self.params = []


def create_optimizer(train_config: TrainConfig) -> TrainingOptimizer:
    """
    Create the optimizer described by the training config.

    The result is unbound; call `prepare` with the model's parameters before
    the first update.
    """
    return TrainingOptimizer(
        use_adam=train_config.use_adam,
        beta1=train_config.adam_beta1,
        beta2=train_config.adam_beta2,
        delta=train_config.adam_delta,
    )
