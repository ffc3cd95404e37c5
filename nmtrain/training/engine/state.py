# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Mutable counters of one training run.

A fresh TrainingState is allocated every time `Trainer.train` is entered, so
nothing leaks from one run into the next.
"""

import math
from dataclasses import dataclass


@dataclass
class TrainingState:
    """
    Counters owned by the training loop.

    step:              batches attempted, usable or not
    grad_step:         accepted micro-batches waiting for the next update
    valid_step:        parameter updates performed
    epoch:             current epoch, 1-based
    loss, word_count:  running totals of the current epoch (accepted steps only)
    word_count_total:  target tokens of all accepted steps
    batch_count_total: sequences of all accepted steps
    n_skipped:         steps rejected by the loss gate
    n_step_check:      updates since the last step checkpoint
    n_checkpoint:      step checkpoints emitted
    learning_rate:     rate used by the most recent update
    """

    step: int = 0
    grad_step: int = 0
    valid_step: int = 0
    epoch: int = 0
    loss: float = 0.0
    word_count: int = 0
    word_count_total: int = 0
    batch_count_total: int = 0
    n_skipped: int = 0
    n_step_check: int = 0
    n_checkpoint: int = 0
    learning_rate: float = 0.0

    def start_epoch(self, epoch: int) -> None:
        self.epoch = epoch
        self.loss = 0.0
        self.word_count = 0

    @property
    def epoch_loss(self) -> float:
        """Mean per-word loss of the current epoch."""
        return self.loss / self.word_count if self.word_count > 0 else math.nan

    @property
    def epoch_perplexity(self) -> float:
        mean = self.epoch_loss
        if not math.isfinite(mean):
            return math.nan
        return math.exp(mean) if mean < 700.0 else math.inf
