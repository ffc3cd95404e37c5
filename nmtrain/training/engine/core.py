# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Epoch/step driver for nmtrain.

The loop, explicitly:

  for epoch in 1..nepoch:
      reset the epoch's running loss and word count, rewind the loader
      for every batch in the epoch (until the loader is empty or step >= nstep):
          1. forward, smoothed cross-entropy, host loss scalar
          2. loss gate: skip the step entirely if the loss is NaN/Inf/huge
          3. backward into the accumulated gradients
          4. every `update_step` accepted batches: schedule lr, optimizer update
          5. step += 1 (whether or not the step was usable)
          6. progress record every `log_interval` steps
          7. step checkpoint every `n_step_checkpoint` updates
      epoch checkpoint, if enabled
  summary, final model dump

All counters live in a TrainingState and the optimizer state in a
TrainingOptimizer; both are created fresh on each call to `train`, so a
Trainer can be reused for several runs.
"""

import logging
import threading
from dataclasses import dataclass, field
from functools import partial
from pathlib import Path
from typing import Callable, Optional, Union

from nmtrain.config.schema import ModelConfig, TrainConfig
from nmtrain.logging.logger import get_logger
from nmtrain.model.interfaces import TrainableModel, disable_decoder_caches
from nmtrain.training.checkpoint.core import CheckpointPolicy, CheckpointRecord
from nmtrain.training.dataloader.core import BatchLoader
from nmtrain.training.engine.state import TrainingState
from nmtrain.training.exceptions import DataFormatError
from nmtrain.training.gate.core import LossGate
from nmtrain.training.metrics.core import ProgressReporter
from nmtrain.training.optimizer.core import TrainingOptimizer, create_optimizer
from nmtrain.training.scheduler.core import make_schedule
from nmtrain.training.step.core import StepRunner
from nmtrain.training.validation.core import Validator

logger: logging.Logger = get_logger(__name__)


@dataclass(frozen=True)
class TrainingResult:
    """Final result of a training run."""

    final_step: int
    epochs: int
    updates: int
    skipped: int
    total_words: int
    final_loss: float
    final_perplexity: float
    learning_rate: float
    model_path: str
    stopped_early: bool = False
    checkpoints: tuple[CheckpointRecord, ...] = field(default_factory=tuple)


def make_loader_factory(model_cfg: ModelConfig, seed: int, is_len_sorted: bool) -> Callable[[], BatchLoader]:
    """Loader factory whose special token ids match the model's vocabulary."""
    return partial(
        BatchLoader,
        pad_id=model_cfg.pad_id,
        sos_id=model_cfg.sos_id,
        eos_id=model_cfg.eos_id,
        seed=seed,
        is_len_sorted=is_len_sorted,
    )


class Trainer:
    """
    Drives a model through supervised training.

    Args:
        train_cfg: Validated training configuration.
        model_cfg: Validated model configuration (vocabulary, size, token ids).
        seed: Seed for batch shuffling.
        loader_factory: Builds batch loaders; defaults to one matching `model_cfg`.
    """

    def __init__(
        self,
        train_cfg: TrainConfig,
        model_cfg: ModelConfig,
        seed: int = 42,
        loader_factory: Optional[Callable[[], BatchLoader]] = None,
    ) -> None:
        self.train_cfg = train_cfg
        self.model_cfg = model_cfg
        self.seed = seed
        self.loader_factory = loader_factory or make_loader_factory(
            model_cfg, seed, train_cfg.is_len_sorted,
        )

        self.state = TrainingState()
        self.optimizer: Optional[TrainingOptimizer] = None
        self._stop = threading.Event()

    def request_stop(self) -> None:
        """Ask the loop to finish after the current batch."""
        self._stop.set()

    def _make_validator(self, model: TrainableModel) -> Validator:
        return Validator(
            model,
            vocab_size=self.model_cfg.tgt_vocab_size,
            s_batch_size=self.train_cfg.s_batch_size,
            loader_factory=self.loader_factory,
        )

    def _checkpoint(
        self,
        policy: CheckpointPolicy,
        model: TrainableModel,
        label: str,
        records: list[CheckpointRecord],
    ) -> None:
        # Bad snapshot or validation I/O costs this checkpoint only.
        try:
            records.append(policy.make_checkpoint(model, label))
        except (OSError, UnicodeDecodeError, DataFormatError) as err:
            logger.error(
                "Checkpoint failed",
                extra={"label": label, "step": self.state.step, "error": str(err)},
            )

    def train(
        self,
        train_path: Union[str, Path],
        valid_path: Optional[Union[str, Path]],
        model_path: Union[str, Path],
        model: TrainableModel,
    ) -> TrainingResult:
        """
        Train `model` on `train_path`.

        Args:
            train_path: Training data file.
            valid_path: Held-out file validated at each checkpoint, or None.
            model_path: Where the final model is written; checkpoints are
                written next to it.
            model: The model to train, already on its device.

        Returns:
            TrainingResult with the final counters.

        Raises:
            TrainingError: On fatal errors (bad model type, bad batch, corrupted
                optimizer state). The run is aborted and the error re-raised.
        """
        cfg = self.train_cfg
        disable_decoder_caches(model)

        self.state = TrainingState()
        self._stop.clear()
        state = self.state

        optimizer = create_optimizer(cfg)
        optimizer.prepare(model.get_params())
        self.optimizer = optimizer

        runner = StepRunner(
            model,
            vocab_size=self.model_cfg.tgt_vocab_size,
            label_smoothing_p=cfg.label_smoothing_p,
            gate=LossGate(),
            optimizer=optimizer,
            schedule=make_schedule(cfg, self.model_cfg.model_size),
            update_step=cfg.update_step,
        )
        policy = CheckpointPolicy(
            model_path=model_path,
            max_checkpoint=cfg.max_checkpoint,
            n_step_checkpoint=cfg.n_step_checkpoint,
            use_epoch_checkpoint=cfg.use_epoch_checkpoint,
            valid_path=valid_path,
            validator_factory=partial(self._make_validator, model),
        )
        reporter = ProgressReporter(log_interval=cfg.log_interval)
        records: list[CheckpointRecord] = []

        loader = self.loader_factory()
        loader.init(train_path, cfg.bucket_size, cfg.is_shuffled)
        device = model.device

        logger.info(
            "Training started",
            extra={
                "train_file": str(train_path),
                "valid_file": str(valid_path) if valid_path is not None else None,
                "device": str(device),
                "nepoch": cfg.nepoch,
                "nstep": cfg.nstep,
                "update_step": cfg.update_step,
                "use_adam": cfg.use_adam,
                "lrate": cfg.lrate,
                "nwarmup": cfg.nwarmup,
            },
        )

        reporter.start()
        is_end = False
        try:
            for epoch in range(1, cfg.nepoch + 1):
                state.start_epoch(epoch)
                loader.clear_buf()

                while not loader.is_empty():
                    batch = loader.load_batch(cfg.s_batch_size, cfg.w_batch_size, device)
                    outcome = runner.train_step(batch, state)

                    state.step += 1
                    if state.step >= cfg.nstep:
                        is_end = True

                    reporter.maybe_log(state, outcome.loss_batch, outcome.word_count, outcome.usable)

                    if outcome.updated and policy.step_due(state):
                        self._checkpoint(policy, model, "step", records)
                        state.n_step_check = 0
                        state.n_checkpoint += 1

                    if is_end or self._stop.is_set():
                        break

                if is_end or self._stop.is_set():
                    break

                if policy.epoch_due():
                    self._checkpoint(policy, model, "epoch", records)

            reporter.log_summary(state, cfg.nepoch)

            logger.info("Saving the final model", extra={"path": str(model_path)})
            model.dump(model_path)
        except Exception as err:
            logger.error(
                "Training aborted",
                extra={"step": state.step, "epoch": state.epoch, "error": str(err)},
                exc_info=True,
            )
            raise
        finally:
            optimizer.release()

        return TrainingResult(
            final_step=state.step,
            epochs=min(state.epoch, cfg.nepoch),
            updates=state.valid_step,
            skipped=state.n_skipped,
            total_words=state.word_count_total,
            final_loss=state.epoch_loss,
            final_perplexity=state.epoch_perplexity,
            learning_rate=state.learning_rate,
            model_path=str(model_path),
            stopped_early=self._stop.is_set(),
            checkpoints=tuple(records),
        )
