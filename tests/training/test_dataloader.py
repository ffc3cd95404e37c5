# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Tests for the bucketed batch loader.

We verify:
  - decoder inputs, labels and masks for translation and LM data
  - sentence and word budgets
  - one pass yields every example exactly once
  - shuffling is seeded and changes from epoch to epoch
  - malformed files are rejected
"""

from pathlib import Path

import pytest
import torch

from nmtrain.training.dataloader.core import BatchLoader
from nmtrain.training.exceptions import DataFormatError


def _drain(loader: BatchLoader, s_batch: int, w_batch: int = 0) -> list:
    batches = []
    while not loader.is_empty():
        batches.append(loader.load_batch(s_batch, w_batch))
    return batches


class TestCollation:
    def test_translation_batch_layout(self, tmp_path: Path) -> None:
        path = tmp_path / "pair.ids"
        path.write_text("3 4 5\t6 7\n", encoding="utf-8")
        loader = BatchLoader(pad_id=1, sos_id=2, eos_id=0)
        loader.init(path, bucket_size=0, shuffle=False)

        batch = loader.load_batch(4, 0)

        assert batch.enc.tolist() == [[3, 4, 5]]
        assert batch.dec.tolist() == [[2, 6, 7]]
        assert batch.label.tolist() == [[6, 7, 0]]
        assert batch.pad_dec.tolist() == [[1.0, 1.0, 1.0]]
        assert batch.word_count == 3
        assert batch.sent_count == 1

    def test_language_model_batch_layout(self, tmp_path: Path) -> None:
        path = tmp_path / "mono.ids"
        path.write_text("5 6\n7 8 9\n", encoding="utf-8")
        loader = BatchLoader(pad_id=1, sos_id=2, eos_id=0)
        loader.init(path, bucket_size=0, shuffle=False)

        batch = loader.load_batch(4, 0)

        assert batch.enc.tolist() == [[2, 5, 6, 1], [2, 7, 8, 9]]
        assert batch.label.tolist() == [[5, 6, 0, 1], [7, 8, 9, 0]]
        assert batch.pad_enc.tolist() == [[1.0, 1.0, 1.0, 0.0], [1.0, 1.0, 1.0, 1.0]]
        assert torch.equal(batch.dec, batch.enc)
        assert batch.word_count == 7

    def test_padding_mask_is_float(self, mt_data_file: Path) -> None:
        loader = BatchLoader()
        loader.init(mt_data_file, bucket_size=0, shuffle=False)
        batch = loader.load_batch(3, 0)
        assert batch.pad_enc.dtype == torch.float32
        assert batch.pad_dec.dtype == torch.float32
        assert batch.enc.dtype == torch.long


class TestBudgets:
    def test_sentence_budget(self, mt_data_file: Path) -> None:
        loader = BatchLoader()
        loader.init(mt_data_file, bucket_size=0, shuffle=False)
        batches = _drain(loader, s_batch=4)
        assert [b.sent_count for b in batches] == [4, 2]

    def test_word_budget_limits_padded_target_tokens(self, mt_data_file: Path) -> None:
        loader = BatchLoader()
        loader.init(mt_data_file, bucket_size=0, shuffle=False)
        for batch in _drain(loader, s_batch=10, w_batch=8):
            assert batch.sent_count == 1 or batch.dec.numel() <= 8

    def test_oversized_example_gets_its_own_batch(self, mt_data_file: Path) -> None:
        loader = BatchLoader()
        loader.init(mt_data_file, bucket_size=0, shuffle=False)
        batches = _drain(loader, s_batch=10, w_batch=1)
        assert len(batches) == 6
        assert all(b.sent_count == 1 for b in batches)


class TestPasses:
    def test_one_pass_covers_every_example(self, mt_data_file: Path) -> None:
        loader = BatchLoader(seed=3)
        loader.init(mt_data_file, bucket_size=4, shuffle=True)
        batches = _drain(loader, s_batch=2)
        assert sum(b.sent_count for b in batches) == 6

    def test_clear_buf_rewinds(self, mt_data_file: Path) -> None:
        loader = BatchLoader()
        loader.init(mt_data_file, bucket_size=0, shuffle=False)
        first = _drain(loader, s_batch=2)
        assert loader.is_empty()

        loader.clear_buf()

        assert not loader.is_empty()
        second = _drain(loader, s_batch=2)
        assert [b.enc.tolist() for b in first] == [b.enc.tolist() for b in second]

    def test_load_from_empty_loader_raises(self, mt_data_file: Path) -> None:
        loader = BatchLoader()
        loader.init(mt_data_file, bucket_size=0, shuffle=False)
        _drain(loader, s_batch=6)
        with pytest.raises(EOFError):
            loader.load_batch(6, 0)

    def test_shuffle_is_reproducible(self, mt_data_file: Path) -> None:
        orders = []
        for _ in range(2):
            loader = BatchLoader(seed=11)
            loader.init(mt_data_file, bucket_size=0, shuffle=True)
            orders.append([b.enc.tolist() for b in _drain(loader, s_batch=1)])
        assert orders[0] == orders[1]

    def test_length_sorting_within_bucket(self, mt_data_file: Path) -> None:
        loader = BatchLoader(is_len_sorted=True)
        loader.init(mt_data_file, bucket_size=6, shuffle=False)
        widths = [max(b.enc.shape[1], b.dec.shape[1]) for b in _drain(loader, s_batch=1)]
        assert widths == sorted(widths)


class TestFileErrors:
    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError):
            BatchLoader().init(tmp_path / "nope.ids", 0, False)

    def test_non_integer_token(self, tmp_path: Path) -> None:
        path = tmp_path / "bad.ids"
        path.write_text("3 x 5\n", encoding="utf-8")
        with pytest.raises(DataFormatError, match="bad.ids:1"):
            BatchLoader().init(path, 0, False)

    def test_mixed_line_kinds(self, tmp_path: Path) -> None:
        path = tmp_path / "mixed.ids"
        path.write_text("3 4\t5\n6 7\n", encoding="utf-8")
        with pytest.raises(DataFormatError, match="mixes"):
            BatchLoader().init(path, 0, False)

    def test_empty_source_is_dropped(self, tmp_path: Path) -> None:
        path = tmp_path / "holes.ids"
        path.write_text("\t5 6\n3 4\t7\n", encoding="utf-8")
        loader = BatchLoader()
        loader.init(path, 0, False)
        batches = _drain(loader, s_batch=4)
        assert sum(b.sent_count for b in batches) == 1
