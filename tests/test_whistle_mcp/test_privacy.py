"""Tests for severity obfuscation."""

import random

import pytest

from whistle_mcp.privacy import SeverityObfuscator


class TestMultiplier:
    def test_range(self):
        obfuscator = SeverityObfuscator()
        for count in range(500):
            assert 1 <= obfuscator.generate_multiplier(count, "reporter") <= 1000

    def test_varies_between_calls(self):
        obfuscator = SeverityObfuscator()
        values = {obfuscator.generate_multiplier(1, "reporter") for _ in range(50)}
        assert len(values) > 1


class TestObfuscate:
    @pytest.mark.parametrize(
        "raw, multiplier, expected",
        [
            (50, 1, 50),
            (100, 10, 0),
            (99, 1000, 0),
            (7, 143, 1),
            (42, 24, 8),
        ],
    )
    def test_known_values(self, raw, multiplier, expected):
        assert SeverityObfuscator.obfuscate(raw, multiplier) == expected

    def test_always_below_modulus(self):
        rng = random.Random(1234)
        for _ in range(1000):
            raw = rng.randint(1, 100)
            multiplier = rng.randint(1, 1000)
            assert 0 <= SeverityObfuscator.obfuscate(raw, multiplier) < 1000
