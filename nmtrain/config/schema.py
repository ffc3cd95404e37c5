# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Type-safe configuration schemas for nmtrain.

A run is described by one YAML file with three sections:

  global:  seed, logging, project identity
  model:   architecture of the translation / language model
  train:   optimizer, schedule, batching and checkpoint policy

Every section is a frozen pydantic model with extra="forbid", so a typo in a
key name fails at load time instead of silently falling back to a default.
"""

from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


class GlobalConfig(BaseModel):
    """Cross-cutting settings: reproducibility and observability."""

    model_config = ConfigDict(frozen=True, extra="forbid", validate_default=True)

    config_version: str = Field(
        description="Schema version for compatibility tracking, e.g. '1.0.0'"
    )
    project_name: str = Field(
        default="nmtrain", description="Human-readable run identifier"
    )
    seed: int = Field(
        default=42,
        ge=0,
        description="Random seed for weight init, batch shuffling and dropout",
    )
    log_level: str = Field(
        default="INFO",
        description="One of DEBUG, INFO, WARNING, ERROR, CRITICAL",
    )
    log_file: Optional[str] = Field(
        default=None,
        description="Optional path for file-based log output",
    )


class ModelConfig(BaseModel):
    """
    Architecture of the model being trained.

    `model_type` selects the forward graph: "mt" is an encoder-decoder
    translation model, "lm" a causal language model over the encoder stack.
    Token ids for padding and sequence boundaries are shared with the batch
    loader so that masks and labels agree with the embedding tables.
    """

    model_config = ConfigDict(frozen=True, extra="forbid", validate_default=True)

    config_version: str = Field(description="Schema version")
    model_type: Literal["mt", "lm"] = Field(
        default="mt",
        description="Forward graph to build: encoder-decoder (mt) or language model (lm)",
    )
    src_vocab_size: int = Field(default=10000, ge=4, description="Source vocabulary size")
    tgt_vocab_size: int = Field(default=10000, ge=4, description="Target vocabulary size")
    model_size: int = Field(default=512, ge=8, description="Hidden size of the model")
    n_heads: int = Field(default=8, ge=1, description="Attention heads per layer")
    n_encoder_layers: int = Field(default=6, ge=1, description="Encoder blocks")
    n_decoder_layers: int = Field(default=6, ge=1, description="Decoder blocks")
    ffn_size: int = Field(default=2048, ge=1, description="Inner size of the feed-forward blocks")
    dropout: float = Field(default=0.1, ge=0.0, le=1.0, description="Dropout probability")
    max_seq_len: int = Field(default=1024, ge=1, description="Longest position embedded")
    init_std: float = Field(default=0.02, gt=0.0, description="Std of the normal weight init")
    pad_id: int = Field(default=1, ge=0, description="Padding token id")
    sos_id: int = Field(default=2, ge=0, description="Start-of-sequence token id")
    eos_id: int = Field(default=2, ge=0, description="End-of-sequence token id")

    @model_validator(mode="after")
    def _check_heads(self) -> "ModelConfig":
        if self.model_size % self.n_heads != 0:
            raise ValueError(
                f"model_size ({self.model_size}) must be divisible by n_heads ({self.n_heads})"
            )
        vocab = min(self.src_vocab_size, self.tgt_vocab_size)
        for name in ("pad_id", "sos_id", "eos_id"):
            if getattr(self, name) >= vocab:
                raise ValueError(f"{name} must be smaller than the vocabulary size ({vocab})")
        return self


class TrainConfig(BaseModel):
    """
    Training hyperparameters, batching and checkpoint policy.

    The learning rate follows a linear warmup from 1e-7 to `lrate` over
    `nwarmup` steps, then decays with the inverse square root of the step.
    """

    model_config = ConfigDict(frozen=True, extra="forbid", validate_default=True)

    config_version: str = Field(description="Schema version")

    # schedule
    lrate: float = Field(default=7e-4, gt=0.0, description="Peak learning rate")
    nwarmup: int = Field(default=4000, ge=1, description="Linear warmup steps")

    # batching
    s_batch_size: int = Field(default=1024, ge=1, description="Max sentences per batch")
    w_batch_size: int = Field(
        default=4096,
        ge=0,
        description="Max padded target tokens per batch; 0 packs by sentence count only",
    )
    bucket_size: int = Field(
        default=50000,
        ge=0,
        description="Examples read per bucket before sorting and packing; 0 means the whole file",
    )
    is_shuffled: bool = Field(default=True, description="Shuffle batch order every epoch")
    is_len_sorted: bool = Field(default=True, description="Sort each bucket by length before packing")

    # loop
    nepoch: int = Field(default=50, ge=1, description="Maximum number of epochs")
    nstep: int = Field(default=100000, ge=1, description="Maximum number of training steps")
    update_step: int = Field(
        default=1,
        ge=1,
        description="Accepted micro-batches accumulated per parameter update",
    )

    # optimizer
    use_adam: bool = Field(default=True, description="Adaptive moments instead of plain SGD")
    adam_beta1: float = Field(default=0.9, ge=0.0, lt=1.0, description="First moment decay")
    adam_beta2: float = Field(default=0.98, ge=0.0, lt=1.0, description="Second moment decay")
    adam_delta: float = Field(default=1e-9, gt=0.0, description="Denominator stabiliser")
    label_smoothing_p: float = Field(
        default=0.1,
        ge=0.0,
        lt=1.0,
        description="Probability mass spread over non-target classes",
    )

    # checkpoints
    max_checkpoint: int = Field(default=10, ge=1, description="Rotating checkpoint slots")
    n_step_checkpoint: int = Field(
        default=-1,
        description="Checkpoint every N parameter updates; <= 0 disables",
    )
    use_epoch_checkpoint: bool = Field(default=False, description="Checkpoint at every epoch end")

    log_interval: int = Field(default=100, ge=1, description="Progress record every N steps")
    device: Literal["auto", "cpu", "cuda"] = Field(
        default="auto",
        description="Compute device; auto picks cuda when available",
    )


class NMTrainConfig(BaseModel):
    """
    Top-level config container.

    Only `global` is required. Commands check for the sections they need,
    e.g. `train` needs both `model` and `train`.
    """

    model_config = ConfigDict(frozen=True, extra="forbid", validate_default=True)

    global_config: GlobalConfig = Field(alias="global")
    model: Optional[ModelConfig] = Field(default=None)
    train: Optional[TrainConfig] = Field(default=None)
