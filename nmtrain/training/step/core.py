# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
One training step: forward → loss → gate → backward → (maybe) update.

The step runner is shared by training and validation. `forward` is the
read-only half (graph, smoothed one-hot, masked cross-entropy, host scalar);
`train_step` adds the loss gate, backpropagation, gradient accumulation and
the optimizer call.

Gradient accumulation: each accepted micro-batch adds its gradient into the
parameters' `.grad` buffers. Only when `update_step` micro-batches have been
accepted is the optimizer invoked, which also zeroes the gradients. A rejected
micro-batch contributes nothing and does not count towards the window.
"""

import logging
from dataclasses import dataclass
from typing import Callable, Optional

import torch

from nmtrain.logging.logger import get_logger
from nmtrain.model.interfaces import TrainableModel
from nmtrain.training.dataloader.core import Batch
from nmtrain.training.engine.state import TrainingState
from nmtrain.training.exceptions import BatchShapeError, ModelTypeError
from nmtrain.training.gate.core import LossGate
from nmtrain.training.objectives import cross_entropy, index_to_onehot
from nmtrain.training.optimizer.core import TrainingOptimizer

logger: logging.Logger = get_logger(__name__)


@dataclass(frozen=True)
class StepOutcome:
    """What happened during one training step."""

    loss_batch: float
    word_count: int
    sent_count: int
    usable: bool
    updated: bool
    learning_rate: Optional[float] = None


class StepRunner:
    """
    Runs the forward pass, and in training mode the backward pass and update.

    Args:
        model: The model to run.
        vocab_size: Target vocabulary size, the width of the one-hot labels.
        label_smoothing_p: Smoothing applied in training mode only.
        gate: Loss gate consulted before backward.
        optimizer: Optimizer invoked at the end of each accumulation window.
        schedule: Maps a 1-based global step to a learning rate.
        update_step: Accepted micro-batches per parameter update.
    """

    def __init__(
        self,
        model: TrainableModel,
        vocab_size: int,
        label_smoothing_p: float = 0.0,
        gate: Optional[LossGate] = None,
        optimizer: Optional[TrainingOptimizer] = None,
        schedule: Optional[Callable[[int], float]] = None,
        update_step: int = 1,
    ) -> None:
        self.model = model
        self.vocab_size = vocab_size
        self.label_smoothing_p = label_smoothing_p
        self.gate = gate if gate is not None else LossGate()
        self.optimizer = optimizer
        self.schedule = schedule
        self.update_step = update_step

    def _build_graph(self, batch: Batch, training: bool) -> torch.Tensor:
        if self.model.is_lm:
            return self.model.make_lm(batch.enc, batch.pad_enc, training)
        if self.model.is_mt:
            return self.model.make_mt(batch.enc, batch.dec, batch.pad_enc, batch.pad_dec, training)
        raise ModelTypeError(f"Illegal model type: {getattr(self.model, 'kind', None)!r}")

    def forward(self, batch: Batch, training: bool) -> tuple[torch.Tensor, float]:
        """
        Build the graph and compute the loss.

        Returns:
            (loss_tensor, loss_batch): per-position loss of shape (batch, length)
            and its sum as a host float.

        Raises:
            BatchShapeError: If the encoder batch is not rank 2.
            ModelTypeError: If the model is neither LM nor MT.
        """
        if batch.enc.dim() != 2:
            raise BatchShapeError(
                f"Wrong tensor order of the sequence batch: expected 2, got {batch.enc.dim()}"
            )

        output = self._build_graph(batch, training)

        smoothing = self.label_smoothing_p if training else 0.0
        gold = index_to_onehot(batch.label, self.vocab_size, smoothing)
        loss_tensor = cross_entropy(output, gold, batch.pad_dec)

        # .item() is the host sync point: device work is complete after this.
        loss_batch = float(loss_tensor.sum().item())
        return loss_tensor, loss_batch

    def train_step(self, batch: Batch, state: TrainingState) -> StepOutcome:
        """
        Run one training step and fold its result into `state`.

        Does not advance `state.step`; the loop owns that counter.
        """
        if self.optimizer is None or self.schedule is None:
            raise RuntimeError("train_step needs an optimizer and a schedule")

        loss_tensor, loss_batch = self.forward(batch, training=True)
        decision = self.gate.check(loss_batch, batch.word_count)

        if not decision.usable:
            state.n_skipped += 1
            logger.debug(
                "Step skipped by loss gate",
                extra={"step": state.step + 1, "loss_local": decision.loss_local},
            )
            return StepOutcome(
                loss_batch=loss_batch,
                word_count=batch.word_count,
                sent_count=batch.sent_count,
                usable=False,
                updated=False,
            )

        loss_tensor.sum().backward()

        state.grad_step += 1
        state.loss += loss_batch
        state.word_count += batch.word_count
        state.word_count_total += batch.word_count
        state.batch_count_total += batch.sent_count

        lr: Optional[float] = None
        if state.grad_step == self.update_step:
            lr = self.schedule(state.step + 1)
            self.optimizer.update(lr)
            state.learning_rate = lr
            state.grad_step = 0
            state.valid_step += 1

        return StepOutcome(
            loss_batch=loss_batch,
            word_count=batch.word_count,
            sent_count=batch.sent_count,
            usable=True,
            updated=lr is not None,
            learning_rate=lr,
        )
