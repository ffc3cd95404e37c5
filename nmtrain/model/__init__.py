# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
nmtrain model package.

The trainer only talks to models through the contract in `interfaces`:
  - make_lm / make_mt build the forward graph and return logits
  - get_params exposes parameters in a stable order
  - dump serializes the weights
  - decoder caches can be switched off for training

`transformer.NMTTransformer` is the bundled implementation: a pre-norm
encoder-decoder transformer with sinusoidal positions that can also run as a
causal language model over its encoder stack.
"""
