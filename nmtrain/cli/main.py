# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
CLI entrypoint for nmtrain.

Every operation is a subcommand of `nmtrain`. The global options (--config,
--log-level, --dry-run, --seed) are inherited by every subcommand through
argparse's parent parser mechanism.

Usage:
    nmtrain train --config configs/train.yaml --train-file data/train.ids \\
        --valid-file data/valid.ids --model-file out/model.pt
    nmtrain validate --config configs/train.yaml --valid-file data/valid.ids \\
        --model-file out/model.pt --output out/valid.json
    nmtrain info
"""

import argparse
import sys

from nmtrain.cli.commands import handle_info, handle_train, handle_validate
from nmtrain.cli.exit_codes import USER_ERROR


def _build_global_parser() -> argparse.ArgumentParser:
    """Parent parser with the options every subcommand inherits."""
    parent = argparse.ArgumentParser(add_help=False)
    parent.add_argument(
        "--config",
        type=str,
        default=None,
        help="Path to YAML configuration file.",
    )
    parent.add_argument(
        "--log-level",
        type=str,
        default="INFO",
        dest="log_level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Set the logging verbosity level.",
    )
    parent.add_argument(
        "--dry-run",
        action="store_true",
        default=False,
        dest="dry_run",
        help="Validate inputs without training or writing anything.",
    )
    parent.add_argument(
        "--seed",
        type=int,
        default=None,
        help="Override the random seed (takes precedence over config).",
    )
    return parent


def _register_subcommands(
    subparsers: argparse._SubParsersAction,  # type: ignore[type-arg]
    parent: argparse.ArgumentParser,
) -> None:
    commands = [
        ("train", "Train a model from scratch.", handle_train),
        ("validate", "Compute loss and perplexity on a held-out file.", handle_validate),
        ("info", "Display environment and config info.", handle_info),
    ]

    for name, help_text, handler in commands:
        parser = subparsers.add_parser(name, parents=[parent], help=help_text)
        parser.set_defaults(func=handler)

    train_parser = subparsers.choices["train"]
    train_parser.add_argument("--train-file", type=str, required=True, dest="train_file",
                              help="Training data, one example per line.")
    train_parser.add_argument("--valid-file", type=str, default=None, dest="valid_file",
                              help="Held-out data validated at every checkpoint.")
    train_parser.add_argument("--model-file", type=str, required=True, dest="model_file",
                              help="Where the final model is written.")

    validate_parser = subparsers.choices["validate"]
    validate_parser.add_argument("--valid-file", type=str, required=True, dest="valid_file",
                                 help="Held-out data file.")
    validate_parser.add_argument("--model-file", type=str, required=True, dest="model_file",
                                 help="Model weights to evaluate.")
    validate_parser.add_argument("--output", type=str, default=None,
                                 help="Write the validation result as JSON here.")


def main() -> None:
    """
    Main CLI entrypoint, referenced by pyproject.toml's [project.scripts].

    If no subcommand is given, we show help and exit with USER_ERROR.
    """
    parent = _build_global_parser()

    root_parser = argparse.ArgumentParser(
        prog="nmtrain",
        description="nmtrain: transformer training loop for translation and language models.",
        parents=[parent],
    )
    subparsers = root_parser.add_subparsers(dest="command")
    _register_subcommands(subparsers, parent)

    args = root_parser.parse_args()

    if not hasattr(args, "func") or args.func is None:
        root_parser.print_help()
        sys.exit(USER_ERROR)

    exit_code = args.func(args)
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
