# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""Per-layer decoder state caches used for incremental decoding."""

from dataclasses import dataclass
from typing import Optional

import torch


@dataclass
class AttentionCache:
    """
    Holds the most recent attention input of one decoder layer.

    When `enable` is False the cache is inert: `store` is a no-op. The
    trainer switches every cache off before the first step so that the
    forward pass during training and validation never depends on state left
    behind by a previous call.
    """

    enable: bool = True
    states: Optional[torch.Tensor] = None

    def store(self, states: torch.Tensor) -> None:
        if self.enable:
            self.states = states.detach()

    def clear(self) -> None:
        self.states = None

    @property
    def is_filled(self) -> bool:
        return self.states is not None
