# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Errors that abort a training run.

Numerical instability is not in this list: a NaN or exploding loss is handled
inside the step by skipping it. Everything here means the run itself is wrong
and has to stop.
"""


class TrainingError(Exception):
    """Base for all fatal training errors."""


class ModelTypeError(TrainingError):
    """The model is neither a language model nor a translation model."""


class BatchShapeError(TrainingError):
    """A batch tensor does not have the expected rank."""


class OptimizerStateError(TrainingError):
    """Moment buffers no longer line up with the parameters they track."""


class DataFormatError(TrainingError):
    """A data file line could not be parsed into token ids."""
