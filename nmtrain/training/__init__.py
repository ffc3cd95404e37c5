# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
nmtrain training core.

Subsystems:
  - scheduler: warmup + inverse square root learning rate
  - gate: NaN/Inf/outlier rejection of per-step losses
  - optimizer: SGD and first+second moment updates with run-owned state
  - step: one forward/loss/backward/update step
  - validation: forward-only perplexity over a held-out file
  - checkpoint: rotating snapshots with paired validation output
  - engine: the epoch/step driver
  - dataloader: bucketed, padded batches from token-id text files
  - metrics: progress records
"""
