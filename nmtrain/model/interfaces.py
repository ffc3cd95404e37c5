# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
The contract between the trainer and the model it trains.

The trainer never looks inside the network. It needs exactly:

- a kind tag (language model or translation model) to pick the graph builder
- the graph builders themselves, returning [batch, length, vocab] logits
- the parameters in an order that stays fixed for the whole run
- a way to write the weights to disk
- the compute device
- the decoder caches, so they can be switched off before training

Anything that satisfies `TrainableModel` structurally can be trained; tests
rely on this to drive the loop with tiny hand-written models.
"""

from enum import Enum
from pathlib import Path
from typing import Protocol, Sequence, Union

import torch

from nmtrain.model.cache import AttentionCache


class ModelKind(str, Enum):
    """Which forward graph a model builds."""

    LM = "lm"
    MT = "mt"


class DecoderCaches(Protocol):
    """Per-layer caches exposed by a model's decoder."""

    n_layer: int
    self_att_cache: Sequence[AttentionCache]
    en_de_att_cache: Sequence[AttentionCache]


class TrainableModel(Protocol):
    """Structural type of every model the trainer accepts."""

    kind: ModelKind
    decoder: DecoderCaches

    @property
    def device(self) -> torch.device: ...

    @property
    def is_lm(self) -> bool: ...

    @property
    def is_mt(self) -> bool: ...

    def make_lm(
        self,
        batch_enc: torch.Tensor,
        padding_enc: torch.Tensor,
        training: bool,
    ) -> torch.Tensor: ...

    def make_mt(
        self,
        batch_enc: torch.Tensor,
        batch_dec: torch.Tensor,
        padding_enc: torch.Tensor,
        padding_dec: torch.Tensor,
        training: bool,
    ) -> torch.Tensor: ...

    def get_params(self) -> list[torch.Tensor]: ...

    def dump(self, path: Union[str, Path]) -> None: ...


def disable_decoder_caches(model: TrainableModel) -> None:
    """Switch off and empty every decoder cache of `model`."""
    for i in range(model.decoder.n_layer):
        for cache in (model.decoder.self_att_cache[i], model.decoder.en_de_att_cache[i]):
            cache.enable = False
            cache.clear()
