# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""Tests for the loss gate."""

import math

from nmtrain.training.gate.core import LossGate


class TestLossGate:
    def test_finite_loss_is_usable(self) -> None:
        decision = LossGate().check(250.0, 100)
        assert decision.usable
        assert decision.loss_local == 2.5

    def test_nan_is_rejected(self) -> None:
        assert not LossGate().check(math.nan, 10).usable

    def test_infinity_is_rejected(self) -> None:
        assert not LossGate().check(math.inf, 10).usable
        assert not LossGate().check(-math.inf, 10).usable

    def test_ceiling_is_exclusive(self) -> None:
        """A per-word loss of exactly 1000 is already too large."""
        assert not LossGate().check(1000.0 * 4, 4).usable
        assert LossGate().check(999.0 * 4, 4).usable

    def test_custom_threshold(self) -> None:
        assert not LossGate(threshold=5.0).check(60.0, 10).usable

    def test_zero_words_is_rejected(self) -> None:
        decision = LossGate().check(0.0, 0)
        assert not decision.usable
        assert math.isnan(decision.loss_local)
