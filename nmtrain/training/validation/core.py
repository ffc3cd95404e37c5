# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Forward-only evaluation over a held-out file.

The validator shares the model with training but only reads it: every batch
runs through the step runner's forward path in non-training mode (no dropout,
no label smoothing) under torch.no_grad(). It never sees the optimizer, so
moment buffers and bias-correction powers cannot move.

The held-out file is read in file order with no bucketing and no word budget,
so results are comparable across checkpoints.
"""

import json
import logging
import math
import time
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Callable, Optional, Union

import torch

from nmtrain.logging.logger import get_logger
from nmtrain.model.interfaces import TrainableModel
from nmtrain.training.dataloader.core import BatchLoader
from nmtrain.training.step.core import StepRunner
from nmtrain.utils.filesystem import atomic_write

logger: logging.Logger = get_logger(__name__)


@dataclass(frozen=True)
class ValidationResult:
    """Aggregate loss over a validation pass."""

    loss: float
    word_count: int
    sent_count: int
    elapsed: float

    @property
    def mean_loss(self) -> float:
        return self.loss / self.word_count if self.word_count > 0 else math.nan

    @property
    def perplexity(self) -> float:
        mean = self.mean_loss
        if not math.isfinite(mean):
            return math.nan
        return math.exp(mean) if mean < 700.0 else math.inf

    def to_dict(self) -> dict[str, float]:
        data = asdict(self)
        data["mean_loss"] = self.mean_loss
        data["perplexity"] = self.perplexity
        return data


class Validator:
    """
    Computes loss and perplexity of `model` on a token-id file.

    Args:
        model: Model to evaluate; left untouched.
        vocab_size: Target vocabulary size.
        s_batch_size: Sentences per validation batch.
        loader_factory: Builds the (fresh) batch loader for the pass.
    """

    def __init__(
        self,
        model: TrainableModel,
        vocab_size: int,
        s_batch_size: int,
        loader_factory: Callable[[], BatchLoader] = BatchLoader,
    ) -> None:
        self.model = model
        self.s_batch_size = s_batch_size
        self.loader_factory = loader_factory
        self.runner = StepRunner(model, vocab_size=vocab_size, label_smoothing_p=0.0)

    @torch.no_grad()
    def validate(
        self,
        valid_path: Union[str, Path],
        output_path: Optional[Union[str, Path]] = None,
    ) -> ValidationResult:
        """
        Run one pass over `valid_path`.

        Args:
            valid_path: Held-out data file.
            output_path: When given, the result is written there as JSON.

        Returns:
            ValidationResult with summed loss, word and sentence counts.
        """
        start = time.monotonic()
        loader = self.loader_factory()
        loader.init(valid_path, bucket_size=0, shuffle=False)

        loss = 0.0
        word_count = 0
        sent_count = 0
        device = self.model.device

        while not loader.is_empty():
            batch = loader.load_batch(self.s_batch_size, 0, device)
            _, loss_batch = self.runner.forward(batch, training=False)
            loss += loss_batch
            word_count += batch.word_count
            sent_count += batch.sent_count

        result = ValidationResult(
            loss=loss,
            word_count=word_count,
            sent_count=sent_count,
            elapsed=time.monotonic() - start,
        )

        logger.info(
            "Validation finished",
            extra={
                "path": str(valid_path),
                "elapsed": round(result.elapsed, 1),
                "sentence": sent_count,
                "word": word_count,
                "loss": round(result.mean_loss, 3),
                "ppl": round(result.perplexity, 3),
            },
        )

        if output_path is not None:
            atomic_write(
                Path(output_path),
                json.dumps({"valid_file": str(valid_path), **result.to_dict()}, indent=2),
            )

        return result
