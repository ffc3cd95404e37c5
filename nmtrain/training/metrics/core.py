# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Progress records for the training loop.

Every `log_interval` steps the reporter emits one structured record:
elapsed wall time, global step, epoch, cumulative tokens and sequences, the
running epoch loss and perplexity, the perplexity of the current batch, and
whether the current step was skipped. At the end of a run it emits the final
summary pair.
"""

import logging
import math
import time
from dataclasses import dataclass, field

from nmtrain.logging.logger import get_logger
from nmtrain.training.engine.state import TrainingState

logger: logging.Logger = get_logger(__name__)


def _safe_exp(value: float) -> float:
    try:
        return math.exp(value)
    except OverflowError:
        return math.inf


@dataclass
class ProgressReporter:
    """
    Emits periodic progress and the final summary.

    Args:
        log_interval: Emit a progress record every N global steps.
    """

    log_interval: int = 100
    _start_time: float = field(default_factory=time.monotonic, init=False)

    def start(self) -> None:
        """Reset the wall clock; called when the run begins."""
        self._start_time = time.monotonic()

    @property
    def elapsed(self) -> float:
        return time.monotonic() - self._start_time

    def maybe_log(
        self,
        state: TrainingState,
        loss_batch: float,
        word_count: int,
        usable: bool,
    ) -> bool:
        """
        Emit a progress record if `state.step` is on the interval.

        Returns:
            True if a record was emitted.
        """
        if state.step % self.log_interval != 0:
            return False

        sppl = _safe_exp(loss_batch / word_count) if word_count > 0 else math.nan
        record: dict[str, object] = {
            "elapsed": round(self.elapsed, 1),
            "step": state.step,
            "epoch": state.epoch,
            "total_word": state.word_count_total,
            "total_batch": state.batch_count_total,
            "loss": round(state.epoch_loss, 3),
            "ppl": round(state.epoch_perplexity, 3),
            "sppl": round(sppl, 3),
            "lr": state.learning_rate,
        }
        if not usable:
            record["no_update"] = True

        logger.info("Training progress", extra=record)
        return True

    def log_summary(self, state: TrainingState, nepoch: int) -> None:
        """Emit the final summary and the 'training finished' record."""
        elapsed = round(self.elapsed, 1)
        epoch = min(state.epoch, nepoch)

        logger.info(
            "Training summary",
            extra={
                "lr": state.learning_rate,
                "elapsed": elapsed,
                "step": state.step,
                "epoch": epoch,
                "word": state.word_count_total,
                "loss": round(state.epoch_loss, 3),
                "ppl": round(state.epoch_perplexity, 3),
            },
        )
        logger.info(
            "Training finished",
            extra={
                "elapsed": elapsed,
                "step": state.step,
                "skipped": state.n_skipped,
                "updates": state.valid_step,
                "epoch": epoch,
            },
        )
