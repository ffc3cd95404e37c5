# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Encoder-decoder transformer for translation and language modeling.

Topology (MT):
  source tokens → embedding + positions → N × encoder blocks → norm ─┐
  target tokens → embedding + positions → M × decoder blocks ←───────┘ → norm → output projection

Topology (LM):
  tokens → embedding + positions → N × causal encoder blocks → norm → output projection

Blocks are pre-norm. Padding masks follow the loader convention: 1.0 marks a
real token, 0.0 a pad. Initialization is deterministic from the config seed.
"""

import math
from pathlib import Path
from typing import Union

import torch
import torch.nn as nn

from nmtrain.config.schema import ModelConfig
from nmtrain.model.cache import AttentionCache
from nmtrain.model.init.weights import init_weights
from nmtrain.model.interfaces import ModelKind
from nmtrain.utils.filesystem import atomic_torch_save


class TransformerModelConfig:
    """
    Plain value object carrying the architecture into the torch modules.

    The pydantic ModelConfig validates user input; this is what the modules
    consume, plus the seed used for initialization.
    """

    __slots__ = (
        "kind", "src_vocab_size", "tgt_vocab_size", "dim", "n_heads",
        "n_encoder_layers", "n_decoder_layers", "ffn_size", "dropout",
        "max_seq_len", "init_std", "pad_id", "seed",
    )

    def __init__(
        self,
        kind: ModelKind,
        src_vocab_size: int,
        tgt_vocab_size: int,
        dim: int,
        n_heads: int,
        n_encoder_layers: int,
        n_decoder_layers: int,
        ffn_size: int,
        dropout: float = 0.1,
        max_seq_len: int = 1024,
        init_std: float = 0.02,
        pad_id: int = 1,
        seed: int = 42,
    ) -> None:
        self.kind = kind
        self.src_vocab_size = src_vocab_size
        self.tgt_vocab_size = tgt_vocab_size
        self.dim = dim
        self.n_heads = n_heads
        self.n_encoder_layers = n_encoder_layers
        self.n_decoder_layers = n_decoder_layers
        self.ffn_size = ffn_size
        self.dropout = dropout
        self.max_seq_len = max_seq_len
        self.init_std = init_std
        self.pad_id = pad_id
        self.seed = seed

    @classmethod
    def from_schema(cls, model_cfg: ModelConfig, seed: int) -> "TransformerModelConfig":
        return cls(
            kind=ModelKind(model_cfg.model_type),
            src_vocab_size=model_cfg.src_vocab_size,
            tgt_vocab_size=model_cfg.tgt_vocab_size,
            dim=model_cfg.model_size,
            n_heads=model_cfg.n_heads,
            n_encoder_layers=model_cfg.n_encoder_layers,
            n_decoder_layers=model_cfg.n_decoder_layers,
            ffn_size=model_cfg.ffn_size,
            dropout=model_cfg.dropout,
            max_seq_len=model_cfg.max_seq_len,
            init_std=model_cfg.init_std,
            pad_id=model_cfg.pad_id,
            seed=seed,
        )


def _sinusoid_table(max_seq_len: int, dim: int) -> torch.Tensor:
    position = torch.arange(max_seq_len, dtype=torch.float32).unsqueeze(1)
    div_term = torch.exp(
        torch.arange(0, dim, 2, dtype=torch.float32) * (-math.log(10000.0) / dim)
    )
    table = torch.zeros(max_seq_len, dim)
    table[:, 0::2] = torch.sin(position * div_term)
    table[:, 1::2] = torch.cos(position * div_term[: dim // 2])
    return table


class Embedder(nn.Module):
    """Token embedding scaled by sqrt(dim) plus fixed sinusoidal positions."""

    def __init__(self, vocab_size: int, dim: int, max_seq_len: int, dropout: float) -> None:
        super().__init__()
        self.dim = dim
        self.max_seq_len = max_seq_len
        self.tokens = nn.Embedding(vocab_size, dim)
        self.dropout = nn.Dropout(dropout)
        self.register_buffer("positions", _sinusoid_table(max_seq_len, dim), persistent=False)

    def forward(self, tokens: torch.Tensor) -> torch.Tensor:
        length = tokens.shape[1]
        if length > self.max_seq_len:
            raise ValueError(
                f"Sequence length {length} exceeds max_seq_len {self.max_seq_len}"
            )
        h = self.tokens(tokens) * math.sqrt(self.dim)
        h = h + self.positions[:length]
        return self.dropout(h)


class Decoder(nn.Module):
    """
    Stack of pre-norm decoder blocks with per-layer caches.

    `self_att_cache[i]` keeps the input to block i's self-attention and
    `en_de_att_cache[i]` the encoder memory it attended to, for incremental
    decoding. Both are inert once disabled.
    """

    def __init__(self, dim: int, n_heads: int, ffn_size: int, n_layer: int, dropout: float) -> None:
        super().__init__()
        self.n_layer = n_layer
        self.layers = nn.ModuleList([
            nn.TransformerDecoderLayer(
                d_model=dim,
                nhead=n_heads,
                dim_feedforward=ffn_size,
                dropout=dropout,
                batch_first=True,
                norm_first=True,
            )
            for _ in range(n_layer)
        ])
        self.norm = nn.LayerNorm(dim)
        self.self_att_cache = [AttentionCache() for _ in range(n_layer)]
        self.en_de_att_cache = [AttentionCache() for _ in range(n_layer)]

    def forward(
        self,
        h: torch.Tensor,
        memory: torch.Tensor,
        causal_mask: torch.Tensor,
        tgt_key_padding_mask: torch.Tensor,
        memory_key_padding_mask: torch.Tensor,
    ) -> torch.Tensor:
        for i, layer in enumerate(self.layers):
            self.self_att_cache[i].store(h)
            self.en_de_att_cache[i].store(memory)
            h = layer(
                h,
                memory,
                tgt_mask=causal_mask,
                tgt_key_padding_mask=tgt_key_padding_mask,
                memory_key_padding_mask=memory_key_padding_mask,
            )
        return self.norm(h)


class NMTTransformer(nn.Module):
    """
    Transformer that builds either the translation or the language-model graph.

    Args:
        config: TransformerModelConfig with all architecture parameters.
    """

    def __init__(self, config: TransformerModelConfig) -> None:
        super().__init__()
        self.config = config
        self.kind = config.kind

        self.src_embed = Embedder(config.src_vocab_size, config.dim, config.max_seq_len, config.dropout)
        self.encoder_layers = nn.ModuleList([
            nn.TransformerEncoderLayer(
                d_model=config.dim,
                nhead=config.n_heads,
                dim_feedforward=config.ffn_size,
                dropout=config.dropout,
                batch_first=True,
                norm_first=True,
            )
            for _ in range(config.n_encoder_layers)
        ])
        self.encoder_norm = nn.LayerNorm(config.dim)

        self.tgt_embed = Embedder(config.tgt_vocab_size, config.dim, config.max_seq_len, config.dropout)
        self.decoder = Decoder(
            dim=config.dim,
            n_heads=config.n_heads,
            ffn_size=config.ffn_size,
            n_layer=config.n_decoder_layers,
            dropout=config.dropout,
        )

        self.output = nn.Linear(config.dim, config.tgt_vocab_size, bias=False)

        init_weights(self, seed=config.seed, init_std=config.init_std)

    @property
    def device(self) -> torch.device:
        return next(self.parameters()).device

    @property
    def is_lm(self) -> bool:
        return self.kind == ModelKind.LM

    @property
    def is_mt(self) -> bool:
        return self.kind == ModelKind.MT

    @staticmethod
    def _causal_mask(length: int, device: torch.device) -> torch.Tensor:
        # True above the diagonal = position may not attend to the future.
        return torch.triu(torch.ones(length, length, dtype=torch.bool, device=device), diagonal=1)

    def _encode(
        self,
        batch_enc: torch.Tensor,
        key_padding_mask: torch.Tensor,
        causal: bool,
    ) -> torch.Tensor:
        h = self.src_embed(batch_enc)
        mask = self._causal_mask(batch_enc.shape[1], batch_enc.device) if causal else None
        for layer in self.encoder_layers:
            h = layer(h, src_mask=mask, src_key_padding_mask=key_padding_mask)
        return self.encoder_norm(h)

    def make_lm(
        self,
        batch_enc: torch.Tensor,
        padding_enc: torch.Tensor,
        training: bool,
    ) -> torch.Tensor:
        """
        Build the language-model graph.

        Args:
            batch_enc: Token ids of shape (batch, length).
            padding_enc: Float mask of shape (batch, length), 1.0 for real tokens.
            training: Enables dropout.

        Returns:
            Logits of shape (batch, length, tgt_vocab_size).
        """
        self.train(training)
        h = self._encode(batch_enc, padding_enc == 0, causal=True)
        return self.output(h)

    def make_mt(
        self,
        batch_enc: torch.Tensor,
        batch_dec: torch.Tensor,
        padding_enc: torch.Tensor,
        padding_dec: torch.Tensor,
        training: bool,
    ) -> torch.Tensor:
        """
        Build the translation graph.

        Args:
            batch_enc: Source token ids (batch, src_length).
            batch_dec: Decoder input ids (batch, tgt_length).
            padding_enc: Source mask, 1.0 for real tokens.
            padding_dec: Target mask, 1.0 for real tokens.
            training: Enables dropout.

        Returns:
            Logits of shape (batch, tgt_length, tgt_vocab_size).
        """
        self.train(training)
        src_pad = padding_enc == 0
        memory = self._encode(batch_enc, src_pad, causal=False)

        h = self.tgt_embed(batch_dec)
        causal = self._causal_mask(batch_dec.shape[1], batch_dec.device)
        h = self.decoder(h, memory, causal, padding_dec == 0, src_pad)
        return self.output(h)

    def get_params(self) -> list[torch.Tensor]:
        """All parameters in registration order, which is fixed for the model's lifetime."""
        return list(self.parameters())

    def count_parameters(self) -> int:
        return sum(p.numel() for p in self.parameters() if p.requires_grad)

    def dump(self, path: Union[str, Path]) -> None:
        """Write the state dict to `path` atomically."""
        atomic_torch_save(self.state_dict(), Path(path))

    def load_weights(self, path: Union[str, Path]) -> None:
        state = torch.load(Path(path), map_location=self.device, weights_only=True)
        self.load_state_dict(state)


def build_model(
    model_cfg: ModelConfig,
    seed: int,
    device: torch.device,
) -> NMTTransformer:
    """Construct the model described by `model_cfg` on `device`."""
    model = NMTTransformer(TransformerModelConfig.from_schema(model_cfg, seed))
    return model.to(device)
