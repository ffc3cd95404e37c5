# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Runtime bootstrap for nmtrain.

Every CLI command goes through this before touching data or models:
  1. Validate the interpreter
  2. Seed every source of randomness
  3. Apply the configured log level (and log file) to all package loggers
  4. Log a startup record with the environment
"""

import os
import random
from pathlib import Path

import torch

from nmtrain.config.schema import GlobalConfig
from nmtrain.logging.logger import configure_package_loggers, get_logger
from nmtrain.runtime.environment import check_minimum_python, get_system_info


def set_deterministic_seed(seed: int) -> None:
    """
    Lock down all sources of randomness to the given seed.

    Seeds Python's `random`, PYTHONHASHSEED, and torch (CPU and every CUDA
    device). cuDNN is switched to deterministic kernels when CUDA is present.

    Args:
        seed: Integer seed value. Must be >= 0.
    """
    random.seed(seed)
    os.environ["PYTHONHASHSEED"] = str(seed)

    torch.manual_seed(seed)
    if torch.cuda.is_available():
        torch.cuda.manual_seed_all(seed)
        torch.backends.cudnn.deterministic = True  # type: ignore[attr-defined]
        torch.backends.cudnn.benchmark = False  # type: ignore[attr-defined]


def bootstrap(config: GlobalConfig) -> None:
    """
    Run the bootstrap sequence.

    Args:
        config: The validated global configuration.
    """
    check_minimum_python()
    set_deterministic_seed(config.seed)

    log_file = Path(config.log_file) if config.log_file is not None else None
    logger = get_logger("nmtrain.runtime", log_level=config.log_level, log_file=log_file)
    configure_package_loggers(config.log_level, log_file)

    system_info = get_system_info()
    logger.info(
        "nmtrain bootstrap complete",
        extra={
            "project": config.project_name,
            "seed": config.seed,
            "python_version": system_info.python_version,
            "platform": system_info.platform,
            "architecture": system_info.architecture,
            "torch_version": system_info.torch_version,
            "cuda_available": system_info.cuda_available,
        },
    )
