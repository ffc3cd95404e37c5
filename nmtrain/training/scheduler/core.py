# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Warmup + inverse square root learning rate schedule.

  step <  nwarmup:  lr rises linearly from 1e-7 towards lrate
  step >= nwarmup:  lr = lrate * sqrt(nwarmup) / sqrt(step)

The two branches meet at step == nwarmup, where lr == lrate exactly.

This is a plain function rather than a torch LambdaLR: the optimizer takes
the learning rate as an argument on every update, so there is no scheduler
object whose internal step count could drift from the trainer's.
"""

import math
from functools import partial
from typing import Callable

from nmtrain.config.schema import TrainConfig

WARMUP_INIT_LR = 1e-7


def get_learning_rate(
    step: int,
    d: int,
    nwarmup: int,
    lrate: float,
) -> float:
    """
    Compute the learning rate for a given step.

    Args:
        step: Global step, 1-based.
        d: Model hidden size. Accepted for signature compatibility with
           size-scaled schedules; it does not enter this formula.
        nwarmup: Number of warmup steps.
        lrate: Peak learning rate, reached at the end of warmup.

    Returns:
        Learning rate as a float.
    """
    warmup_end_lr = lrate
    lr_step = (warmup_end_lr - WARMUP_INIT_LR) / nwarmup
    decay_factor = warmup_end_lr * math.sqrt(nwarmup)

    if step < nwarmup:
        return WARMUP_INIT_LR + step * lr_step
    return decay_factor * step ** -0.5


def make_schedule(train_cfg: TrainConfig, model_size: int) -> Callable[[int], float]:
    """Bind the configured schedule parameters into a `step -> lr` callable."""
    return partial(
        get_learning_rate,
        d=model_size,
        nwarmup=train_cfg.nwarmup,
        lrate=train_cfg.lrate,
    )
