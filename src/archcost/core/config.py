"""
Engine Configuration - knobs for a single estimation pipeline.

Loaded from a JSON file or built in code. Everything here is read-only
once the pipeline is constructed.
"""

from __future__ import annotations

import json
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field

from archcost.core.schema import DEFAULT_CURRENCY


class BaseConfig(BaseModel):
    """Base configuration for engine settings."""

    model_config = ConfigDict(
        extra="forbid",
        str_strip_whitespace=True,
        frozen=True,
    )


class EngineConfig(BaseConfig):
    """
    Configuration for the estimation pipeline.

    Degraded modes are opt-in: by default a reference data failure aborts
    the request instead of pricing against an empty table.
    """

    provider: str = "aws"
    region: str = "us-east-1"
    currency: str = DEFAULT_CURRENCY

    # Fan-out over resource nodes
    max_workers: int = Field(default=8, ge=1, le=256)

    # Reference data fetch and whole-request deadlines
    reference_timeout_seconds: float = Field(default=10.0, gt=0)
    request_timeout_seconds: float = Field(default=30.0, gt=0)

    # Price against an empty rule/rate snapshot when loading fails
    allow_degraded: bool = False

    # Consult the static default table when no stored rate applies
    use_builtin_rates: bool = True

    # Reject diagrams containing resource types the engine does not know
    strict_resource_types: bool = False

    # On timeout, return what was priced instead of raising
    partial_on_timeout: bool = True

    # Fixed-point precision of every subtotal
    decimal_places: int = Field(default=6, ge=0, le=12)

    @classmethod
    def load(cls, path: str | Path) -> EngineConfig:
        """Load configuration from a JSON file."""
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
        return cls(**data)
