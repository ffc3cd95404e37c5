# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Rotating model snapshots with paired validation output.

Triggers:
  - step:  every `n_step_checkpoint` parameter updates (disabled when <= 0)
  - epoch: at the end of every epoch, when enabled

Rotation: the policy keeps `slots`, starting at `max_checkpoint`. Each
emission takes id = max_checkpoint − slots and decrements slots; when slots
hits zero it is reset, so ids cycle 0, 1, …, max_checkpoint − 1 and later
snapshots overwrite earlier files. At most `max_checkpoint` files per label
exist on disk.

Filenames:
  <model>.<label>.<id:03d>          model snapshot
  <model>.<label>.<id:03d>.output   validation result of that snapshot

One policy instance lives for the whole run, so the slot counter carries over
between emissions.
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional, Union

from nmtrain.logging.logger import get_logger
from nmtrain.model.interfaces import TrainableModel
from nmtrain.training.engine.state import TrainingState
from nmtrain.training.validation.core import ValidationResult, Validator

logger: logging.Logger = get_logger(__name__)


@dataclass(frozen=True)
class CheckpointRecord:
    """One emitted checkpoint."""

    label: str
    checkpoint_id: int
    model_path: Path
    output_path: Path
    validation: Optional[ValidationResult] = None


class CheckpointPolicy:
    """
    Decides when to snapshot and where the snapshot goes.

    Args:
        model_path: Base path of the final model; snapshots are siblings of it.
        max_checkpoint: Number of rotating slots.
        n_step_checkpoint: Updates between step checkpoints; <= 0 disables them.
        use_epoch_checkpoint: Emit a checkpoint at every epoch end.
        valid_path: Held-out file validated after each snapshot, if any.
        validator_factory: Builds a fresh Validator for every emission.
    """

    def __init__(
        self,
        model_path: Union[str, Path],
        max_checkpoint: int,
        n_step_checkpoint: int = -1,
        use_epoch_checkpoint: bool = False,
        valid_path: Optional[Union[str, Path]] = None,
        validator_factory: Optional[Callable[[], Validator]] = None,
    ) -> None:
        if max_checkpoint < 1:
            raise ValueError(f"max_checkpoint must be >= 1, got {max_checkpoint}")
        self.model_path = Path(model_path)
        self.max_checkpoint = max_checkpoint
        self.slots = max_checkpoint
        self.n_step_checkpoint = n_step_checkpoint
        self.use_epoch_checkpoint = use_epoch_checkpoint
        self.valid_path = Path(valid_path) if valid_path is not None else None
        self.validator_factory = validator_factory

    def step_due(self, state: TrainingState) -> bool:
        """
        Count one parameter update and report whether a step checkpoint is due.

        The caller resets `state.n_step_check` after emitting.
        """
        if self.n_step_checkpoint <= 0:
            return False
        state.n_step_check += 1
        return state.n_step_check >= self.n_step_checkpoint

    def epoch_due(self) -> bool:
        return self.use_epoch_checkpoint

    def next_id(self) -> int:
        """Take the next rotating slot id."""
        checkpoint_id = self.max_checkpoint - self.slots
        self.slots -= 1
        if self.slots == 0:
            self.slots = self.max_checkpoint
        return checkpoint_id

    def checkpoint_paths(self, label: str, checkpoint_id: int) -> tuple[Path, Path]:
        snapshot = self.model_path.with_name(f"{self.model_path.name}.{label}.{checkpoint_id:03d}")
        return snapshot, snapshot.with_name(snapshot.name + ".output")

    def make_checkpoint(self, model: TrainableModel, label: str) -> CheckpointRecord:
        """
        Snapshot the model into the next slot, then validate it.

        Raises:
            OSError: If the snapshot or the validation output can't be written,
                or the validation file can't be read.
            UnicodeDecodeError: If the validation file is not UTF-8.
            DataFormatError: If a validation line is not token ids.
        """
        checkpoint_id = self.next_id()
        snapshot_path, output_path = self.checkpoint_paths(label, checkpoint_id)

        logger.info(
            "Making a checkpoint",
            extra={"label": label, "id": checkpoint_id, "path": str(snapshot_path)},
        )
        model.dump(snapshot_path)

        validation: Optional[ValidationResult] = None
        if self.valid_path is not None and self.validator_factory is not None:
            validator = self.validator_factory()
            validation = validator.validate(self.valid_path, output_path)

        return CheckpointRecord(
            label=label,
            checkpoint_id=checkpoint_id,
            model_path=snapshot_path,
            output_path=output_path,
            validation=validation,
        )
