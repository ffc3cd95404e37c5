# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Bucketed batch loader for parallel and monolingual token-id files.

File format: one example per line, token ids separated by whitespace.
  - translation data: `source ids<TAB>target ids`
  - language-model data: a single sequence of ids

Batching works bucket by bucket:
  1. take the next `bucket_size` examples (0 = the whole file, in file order)
  2. optionally sort the bucket by length so batches waste little padding
  3. pack consecutive examples into batches limited by sentence count and,
     when a word budget is given, by padded target tokens
  4. optionally shuffle the order of the bucket's batches

Shuffling uses a seeded RNG advanced once per `clear_buf`, so every epoch sees
a different but reproducible order.

Decoder side: inputs are `[sos] + target`, labels `target + [eos]`. For
language-model data the encoder input is `[sos] + seq` and the label
`seq + [eos]`; the decoder fields mirror the encoder ones.
"""

import logging
import random
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union

import torch

from nmtrain.logging.logger import get_logger
from nmtrain.training.exceptions import DataFormatError

logger: logging.Logger = get_logger(__name__)


@dataclass
class Batch:
    """
    One padded batch, all tensors of shape (batch, length).

    Padding masks are float tensors: 1.0 for a real token, 0.0 for a pad.
    `word_count` counts real target tokens (the loss normaliser),
    `sent_count` counts sequences.
    """

    enc: torch.Tensor
    pad_enc: torch.Tensor
    dec: torch.Tensor
    pad_dec: torch.Tensor
    label: torch.Tensor
    word_count: int
    sent_count: int


@dataclass(frozen=True)
class _Example:
    source: tuple[int, ...]
    target: Optional[tuple[int, ...]]

    @property
    def length(self) -> int:
        if self.target is None:
            return len(self.source) + 1
        return max(len(self.source), len(self.target) + 1)

    @property
    def target_length(self) -> int:
        if self.target is None:
            return len(self.source) + 1
        return len(self.target) + 1


def _parse_ids(text: str, path: Path, line_no: int) -> tuple[int, ...]:
    try:
        return tuple(int(tok) for tok in text.split())
    except ValueError as err:
        raise DataFormatError(f"{path}:{line_no}: non-integer token id ({err})") from err


class BatchLoader:
    """
    Loads padded batches from a token-id file.

    Args:
        pad_id: Id written into padded positions.
        sos_id: Id prepended to decoder inputs.
        eos_id: Id appended to labels.
        seed: Seed for the batch-order shuffle.
        is_len_sorted: Sort each bucket by length before packing.
    """

    def __init__(
        self,
        pad_id: int = 1,
        sos_id: int = 2,
        eos_id: int = 2,
        seed: int = 42,
        is_len_sorted: bool = True,
    ) -> None:
        self.pad_id = pad_id
        self.sos_id = sos_id
        self.eos_id = eos_id
        self.seed = seed
        self.is_len_sorted = is_len_sorted

        self.path: Optional[Path] = None
        self.bucket_size = 0
        self.shuffle = False
        self._examples: list[_Example] = []
        self._cursor = 0
        self._pending: list[list[_Example]] = []
        self._resets = 0

    def init(self, path: Union[str, Path], bucket_size: int, shuffle: bool) -> None:
        """
        Read the data file and reset the loader.

        Raises:
            FileNotFoundError: If the file doesn't exist.
            DataFormatError: If a line doesn't parse.
        """
        self.path = Path(path)
        self.bucket_size = bucket_size
        self.shuffle = shuffle
        self._examples = self._read_examples(self.path)
        self._resets = 0
        self.clear_buf()

        logger.info(
            "Data file loaded",
            extra={
                "path": str(self.path),
                "examples": len(self._examples),
                "bucket_size": bucket_size,
                "shuffle": shuffle,
            },
        )

    def _read_examples(self, path: Path) -> list[_Example]:
        if not path.is_file():
            raise FileNotFoundError(f"Data file not found: {path}")

        examples: list[_Example] = []
        dropped = 0
        with path.open("r", encoding="utf-8") as handle:
            for line_no, line in enumerate(handle, start=1):
                line = line.rstrip("\n")
                if not line.strip():
                    continue
                if "\t" in line:
                    src_text, tgt_text = line.split("\t", 1)
                    source = _parse_ids(src_text, path, line_no)
                    target: Optional[tuple[int, ...]] = _parse_ids(tgt_text, path, line_no)
                else:
                    source = _parse_ids(line, path, line_no)
                    target = None

                # An empty source would leave the encoder nothing to attend to.
                if not source:
                    dropped += 1
                    continue
                examples.append(_Example(source=source, target=target))

        kinds = {ex.target is None for ex in examples}
        if len(kinds) > 1:
            raise DataFormatError(f"{path}: mixes parallel and monolingual lines")

        if dropped:
            logger.warning(
                "Dropped examples with an empty source side",
                extra={"path": str(path), "dropped": dropped},
            )
        return examples

    def clear_buf(self) -> None:
        """Rewind to the start of the file and drop any pending batches."""
        self._cursor = 0
        self._pending = []
        self._resets += 1

    def is_empty(self) -> bool:
        return not self._pending and self._cursor >= len(self._examples)

    def _fill(self, s_batch_size: int, w_batch_size: int) -> None:
        if self.bucket_size > 0:
            end = min(self._cursor + self.bucket_size, len(self._examples))
        else:
            end = len(self._examples)
        bucket = self._examples[self._cursor:end]
        self._cursor = end

        # Bucketing proper (sorting) only applies when a bucket size is set.
        if self.is_len_sorted and self.bucket_size > 0:
            bucket = sorted(bucket, key=lambda ex: ex.length)

        batches: list[list[_Example]] = []
        current: list[_Example] = []
        max_target = 0
        for example in bucket:
            longest = max(max_target, example.target_length)
            over_sentences = len(current) + 1 > s_batch_size
            over_words = w_batch_size > 0 and longest * (len(current) + 1) > w_batch_size
            if current and (over_sentences or over_words):
                batches.append(current)
                current = []
                longest = example.target_length
            current.append(example)
            max_target = longest
        if current:
            batches.append(current)

        if self.shuffle:
            random.Random(self.seed * 1_000_003 + self._resets).shuffle(batches)

        self._pending = batches

    def load_batch(
        self,
        s_batch_size: int,
        w_batch_size: int,
        device: Union[str, torch.device] = "cpu",
    ) -> Batch:
        """
        Produce the next batch.

        Args:
            s_batch_size: Max sequences per batch.
            w_batch_size: Max padded target tokens per batch; 0 disables the budget.
            device: Where the batch tensors are created.

        Raises:
            EOFError: If the loader is empty.
        """
        if self.is_empty():
            raise EOFError("No batches left; call clear_buf() to start a new pass")

        # Budgets apply when a bucket is packed; batches already pending keep theirs.
        if not self._pending:
            self._fill(s_batch_size, w_batch_size)

        return self._collate(self._pending.pop(0), torch.device(device))

    def _pad(self, rows: list[list[int]]) -> tuple[torch.Tensor, torch.Tensor]:
        width = max(len(r) for r in rows)
        ids = torch.full((len(rows), width), self.pad_id, dtype=torch.long)
        mask = torch.zeros((len(rows), width), dtype=torch.float32)
        for i, row in enumerate(rows):
            ids[i, : len(row)] = torch.tensor(row, dtype=torch.long)
            mask[i, : len(row)] = 1.0
        return ids, mask

    def _collate(self, examples: list[_Example], device: torch.device) -> Batch:
        if examples[0].target is None:
            inputs = [[self.sos_id, *ex.source] for ex in examples]
            labels = [[*ex.source, self.eos_id] for ex in examples]
            enc, pad_enc = self._pad(inputs)
            label, _ = self._pad(labels)
            dec, pad_dec = enc, pad_enc
        else:
            enc, pad_enc = self._pad([list(ex.source) for ex in examples])
            dec, pad_dec = self._pad([[self.sos_id, *ex.target] for ex in examples])
            label, _ = self._pad([[*ex.target, self.eos_id] for ex in examples])

        word_count = int(pad_dec.sum().item())
        return Batch(
            enc=enc.to(device),
            pad_enc=pad_enc.to(device),
            dec=dec.to(device),
            pad_dec=pad_dec.to(device),
            label=label.to(device),
            word_count=word_count,
            sent_count=len(examples),
        )
