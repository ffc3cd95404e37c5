# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Handlers for every nmtrain subcommand.

Each handler takes the parsed argparse namespace and returns an exit code from
exit_codes.py. Handlers never call sys.exit themselves; main() does that.
"""

import argparse
import logging
import signal
from pathlib import Path
from typing import Optional

from nmtrain.cli.exit_codes import CONFIG_ERROR, RUNTIME_ERROR, SUCCESS, USER_ERROR, VALIDATION_ERROR
from nmtrain.config.exceptions import ConfigError
from nmtrain.config.loader import load_config
from nmtrain.config.schema import NMTrainConfig, TrainConfig
from nmtrain.logging.logger import get_logger
from nmtrain.runtime.bootstrap import bootstrap, set_deterministic_seed
from nmtrain.training.exceptions import TrainingError


def _load_and_bootstrap(
    args: argparse.Namespace,
    command_name: str,
) -> tuple[int, Optional[NMTrainConfig], logging.Logger]:
    """
    The shared setup every command needs: load config, run bootstrap.

    Returns a tuple of (exit_code, config, logger). If exit_code is not SUCCESS,
    the caller should return it immediately.
    """
    logger = get_logger(f"nmtrain.cli.{command_name}", log_level=args.log_level)

    config = None
    if args.config is not None:
        try:
            config = load_config(Path(args.config))
        except ConfigError as err:
            logger.error(
                "Configuration error",
                extra={"command": command_name, "error": str(err)},
            )
            return CONFIG_ERROR, None, logger

    if config is not None:
        bootstrap(config.global_config)
    else:
        logger.debug(
            "No config provided, running with defaults",
            extra={"command": command_name},
        )

    if args.seed is not None:
        set_deterministic_seed(args.seed)

    return SUCCESS, config, logger


def _resolve_seed(args: argparse.Namespace, config: NMTrainConfig) -> int:
    return args.seed if args.seed is not None else config.global_config.seed


def _check_input_file(path: Optional[str], flag: str, logger: logging.Logger) -> bool:
    if path is None or not Path(path).is_file():
        logger.error("Input file not found", extra={"flag": flag, "path": path})
        return False
    return True


def handle_train(args: argparse.Namespace) -> int:
    """Train a model on --train-file and write it to --model-file."""
    exit_code, config, logger = _load_and_bootstrap(args, "train")
    if exit_code != SUCCESS:
        return exit_code

    if config is None or config.model is None or config.train is None:
        logger.error(
            "Model and training config sections are required",
            extra={"command": "train"},
        )
        return CONFIG_ERROR

    if not _check_input_file(args.train_file, "--train-file", logger):
        return USER_ERROR
    if args.valid_file is not None and not _check_input_file(args.valid_file, "--valid-file", logger):
        return USER_ERROR

    logger.info(
        "Starting training",
        extra={"command": "train", "dry_run": args.dry_run},
    )

    if args.dry_run:
        logger.info(
            "Dry run, would start training",
            extra={
                "nepoch": config.train.nepoch,
                "nstep": config.train.nstep,
                "s_batch_size": config.train.s_batch_size,
                "w_batch_size": config.train.w_batch_size,
                "use_adam": config.train.use_adam,
            },
        )
        return SUCCESS

    try:
        from nmtrain.model.transformer import build_model
        from nmtrain.runtime.environment import select_device
        from nmtrain.training.engine.core import Trainer

        seed = _resolve_seed(args, config)
        device = select_device(config.train.device)
        model = build_model(config.model, seed, device)
        logger.info(
            "Model built",
            extra={"parameters": model.count_parameters(), "device": str(device)},
        )

        trainer = Trainer(config.train, config.model, seed=seed)

        # Ctrl-C finishes the current batch, then saves the model.
        previous = signal.signal(signal.SIGINT, lambda signum, frame: trainer.request_stop())
        try:
            result = trainer.train(args.train_file, args.valid_file, args.model_file, model)
        finally:
            signal.signal(signal.SIGINT, previous)

        logger.info(
            "Training complete",
            extra={
                "final_step": result.final_step,
                "updates": result.updates,
                "skipped": result.skipped,
                "final_loss": result.final_loss,
                "model_file": result.model_path,
                "stopped_early": result.stopped_early,
            },
        )
        return SUCCESS

    except TrainingError as err:
        logger.error("Training failed", extra={"error": str(err)}, exc_info=True)
        return VALIDATION_ERROR
    except Exception as err:
        logger.error("Training failed", extra={"error": str(err)}, exc_info=True)
        return RUNTIME_ERROR


def handle_validate(args: argparse.Namespace) -> int:
    """Compute loss and perplexity of a saved model on --valid-file."""
    exit_code, config, logger = _load_and_bootstrap(args, "validate")
    if exit_code != SUCCESS:
        return exit_code

    if config is None or config.model is None:
        logger.error("Model config section is required", extra={"command": "validate"})
        return CONFIG_ERROR

    if not _check_input_file(args.valid_file, "--valid-file", logger):
        return USER_ERROR
    if not _check_input_file(args.model_file, "--model-file", logger):
        return USER_ERROR

    if args.dry_run:
        logger.info("Dry run, would validate", extra={"valid_file": args.valid_file})
        return SUCCESS

    try:
        from nmtrain.model.transformer import build_model
        from nmtrain.runtime.environment import select_device
        from nmtrain.training.engine.core import make_loader_factory
        from nmtrain.training.validation.core import Validator

        train_cfg = (
            config.train
            if config.train is not None
            else TrainConfig(config_version=config.model.config_version)
        )
        seed = _resolve_seed(args, config)
        model = build_model(config.model, seed, select_device(train_cfg.device))
        model.load_weights(args.model_file)

        validator = Validator(
            model,
            vocab_size=config.model.tgt_vocab_size,
            s_batch_size=train_cfg.s_batch_size,
            loader_factory=make_loader_factory(config.model, seed, train_cfg.is_len_sorted),
        )
        result = validator.validate(args.valid_file, args.output)

        logger.info(
            "Validation complete",
            extra={
                "loss": result.mean_loss,
                "perplexity": result.perplexity,
                "word_count": result.word_count,
                "output": args.output,
            },
        )
        return SUCCESS

    except TrainingError as err:
        logger.error("Validation failed", extra={"error": str(err)}, exc_info=True)
        return VALIDATION_ERROR
    except Exception as err:
        logger.error("Validation failed", extra={"error": str(err)}, exc_info=True)
        return RUNTIME_ERROR


def handle_info(args: argparse.Namespace) -> int:
    """Display environment and configuration information."""
    logger = get_logger("nmtrain.cli.info", log_level=args.log_level)

    from nmtrain.runtime.environment import NMTRAIN_VERSION, get_system_info

    system_info = get_system_info()

    logger.info(
        "System information",
        extra={
            "nmtrain_version": NMTRAIN_VERSION,
            "python_version": system_info.python_version,
            "platform": system_info.platform,
            "architecture": system_info.architecture,
            "torch_version": system_info.torch_version,
            "cuda_available": system_info.cuda_available,
            "config": args.config,
        },
    )
    return SUCCESS
