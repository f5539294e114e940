"""
Tests for engine configuration.
"""
from __future__ import annotations

import json

import pytest
from pydantic import ValidationError

from archcost.core.config import EngineConfig


class TestEngineConfig:
    def test_defaults(self):
        config = EngineConfig()
        assert config.provider == "aws"
        assert config.region == "us-east-1"
        assert config.currency == "USD"
        assert config.max_workers == 8
        assert config.allow_degraded is False
        assert config.use_builtin_rates is True
        assert config.partial_on_timeout is True
        assert config.decimal_places == 6

    def test_unknown_keys_rejected(self):
        with pytest.raises(ValidationError):
            EngineConfig(regoin="eu-west-1")

    @pytest.mark.parametrize(
        "field,value",
        [("max_workers", 0), ("decimal_places", 13), ("request_timeout_seconds", 0)],
    )
    def test_bounds(self, field, value):
        with pytest.raises(ValidationError):
            EngineConfig(**{field: value})

    def test_frozen(self):
        config = EngineConfig()
        with pytest.raises(ValidationError):
            config.region = "eu-west-1"

    def test_load_from_file(self, tmp_path):
        path = tmp_path / "archcost.json"
        path.write_text(json.dumps({"region": "eu-west-1", "allow_degraded": True}))
        config = EngineConfig.load(path)
        assert config.region == "eu-west-1"
        assert config.allow_degraded is True
