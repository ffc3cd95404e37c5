# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Shared pytest fixtures for nmtrain tests.

Fixtures here are available to every test file automatically. Besides config
files and tiny data files, this provides `TinyModel`: a few-parameter model
that satisfies the TrainableModel protocol, so the step runner, validator and
training loop can be exercised in milliseconds.
"""

import math
import textwrap
from pathlib import Path
from typing import Union

import pytest
import torch
import torch.nn as nn

from nmtrain.config.schema import ModelConfig, TrainConfig
from nmtrain.model.cache import AttentionCache
from nmtrain.model.interfaces import ModelKind
from nmtrain.utils.filesystem import atomic_torch_save

VOCAB = 16


class TinyDecoder:
    def __init__(self, n_layer: int = 2) -> None:
        self.n_layer = n_layer
        self.self_att_cache = [AttentionCache() for _ in range(n_layer)]
        self.en_de_att_cache = [AttentionCache() for _ in range(n_layer)]


class TinyModel(nn.Module):
    """
    Embedding + linear projection.

    Setting `poison` to True makes the next forward passes return NaN logits,
    which the loss gate must reject.
    """

    def __init__(self, kind: ModelKind = ModelKind.MT, vocab: int = VOCAB, dim: int = 8) -> None:
        super().__init__()
        torch.manual_seed(0)
        self.kind = kind
        self.decoder = TinyDecoder()
        self.src_embed = nn.Embedding(vocab, dim)
        self.tgt_embed = nn.Embedding(vocab, dim)
        self.output = nn.Linear(dim, vocab)
        self.poison = False
        self.calls: list[bool] = []
        self.dumped: list[Path] = []

    @property
    def device(self) -> torch.device:
        return self.output.weight.device

    @property
    def is_lm(self) -> bool:
        return self.kind == ModelKind.LM

    @property
    def is_mt(self) -> bool:
        return self.kind == ModelKind.MT

    def _project(self, h: torch.Tensor) -> torch.Tensor:
        logits = self.output(h)
        if self.poison:
            logits = logits * math.nan
        return logits

    def make_lm(self, batch_enc: torch.Tensor, padding_enc: torch.Tensor, training: bool) -> torch.Tensor:
        self.calls.append(training)
        return self._project(self.src_embed(batch_enc))

    def make_mt(
        self,
        batch_enc: torch.Tensor,
        batch_dec: torch.Tensor,
        padding_enc: torch.Tensor,
        padding_dec: torch.Tensor,
        training: bool,
    ) -> torch.Tensor:
        self.calls.append(training)
        weights = padding_enc.unsqueeze(-1)
        context = (self.src_embed(batch_enc) * weights).sum(1) / weights.sum(1).clamp(min=1.0)
        return self._project(self.tgt_embed(batch_dec) + context.unsqueeze(1))

    def get_params(self) -> list[torch.Tensor]:
        return list(self.parameters())

    def dump(self, path: Union[str, Path]) -> None:
        self.dumped.append(Path(path))
        atomic_torch_save(self.state_dict(), Path(path))


@pytest.fixture()
def tiny_mt_model() -> TinyModel:
    return TinyModel(ModelKind.MT)


@pytest.fixture()
def tiny_lm_model() -> TinyModel:
    return TinyModel(ModelKind.LM)


@pytest.fixture()
def model_cfg() -> ModelConfig:
    return ModelConfig(
        config_version="1.0.0",
        src_vocab_size=VOCAB,
        tgt_vocab_size=VOCAB,
        model_size=8,
        n_heads=2,
        n_encoder_layers=1,
        n_decoder_layers=1,
        ffn_size=16,
        dropout=0.0,
        max_seq_len=32,
    )


@pytest.fixture()
def train_cfg() -> TrainConfig:
    return TrainConfig(
        config_version="1.0.0",
        lrate=1e-2,
        nwarmup=4,
        s_batch_size=2,
        w_batch_size=0,
        bucket_size=0,
        is_shuffled=False,
        nepoch=1,
        nstep=1000,
        label_smoothing_p=0.1,
        max_checkpoint=2,
        log_interval=1,
        device="cpu",
    )


@pytest.fixture()
def mt_data_file(tmp_path: Path) -> Path:
    """Six translation pairs of token ids in [3, 15]."""
    lines = [
        "3 4 5\t6 7",
        "8 9\t10 11 12",
        "13\t14",
        "3 5 7 9\t4 6",
        "10 12 14\t3",
        "15 3\t5 7 9 11",
    ]
    path = tmp_path / "train.mt.ids"
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    return path


@pytest.fixture()
def lm_data_file(tmp_path: Path) -> Path:
    """Four monolingual sequences."""
    lines = ["3 4 5 6", "7 8", "9 10 11", "12 13 14 15 3"]
    path = tmp_path / "train.lm.ids"
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    return path


@pytest.fixture()
def tmp_config_file(tmp_path: Path) -> Path:
    """
    Create a minimal valid config YAML file in a temp directory.

    This is the smallest config that passes schema validation.
    Tests that need specific config values should write their own files.
    """
    config_content = textwrap.dedent("""\
        global:
          config_version: "1.0.0"
          project_name: "nmtrain-test"
          seed: 42
          log_level: "DEBUG"
    """)
    config_file = tmp_path / "test_config.yaml"
    config_file.write_text(config_content, encoding="utf-8")
    return config_file


@pytest.fixture()
def full_config_file(tmp_path: Path) -> Path:
    """A config with all three sections and a tiny transformer."""
    config_content = textwrap.dedent("""\
        global:
          config_version: "1.0.0"
          project_name: "nmtrain-test"
          seed: 7
          log_level: "WARNING"

        model:
          config_version: "1.0.0"
          model_type: "mt"
          src_vocab_size: 16
          tgt_vocab_size: 16
          model_size: 8
          n_heads: 2
          n_encoder_layers: 1
          n_decoder_layers: 1
          ffn_size: 16
          dropout: 0.0
          max_seq_len: 32

        train:
          config_version: "1.0.0"
          lrate: 0.001
          nwarmup: 2
          s_batch_size: 2
          w_batch_size: 0
          bucket_size: 0
          nepoch: 1
          nstep: 3
          max_checkpoint: 2
          log_interval: 1
          device: "cpu"
    """)
    config_file = tmp_path / "full_config.yaml"
    config_file.write_text(config_content, encoding="utf-8")
    return config_file


@pytest.fixture()
def invalid_config_file(tmp_path: Path) -> Path:
    """A config file that's valid YAML but fails schema validation (missing required field)."""
    config_content = textwrap.dedent("""\
        global:
          project_name: "nmtrain-test"
          seed: 42
    """)
    config_file = tmp_path / "invalid_config.yaml"
    config_file.write_text(config_content, encoding="utf-8")
    return config_file


@pytest.fixture()
def broken_yaml_file(tmp_path: Path) -> Path:
    """A file that isn't valid YAML at all."""
    config_file = tmp_path / "broken.yaml"
    config_file.write_text("{{not: yaml: at: all:::", encoding="utf-8")
    return config_file
