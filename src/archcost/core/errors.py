"""
Engine error taxonomy.

Fatal for the whole request:
- MalformedGraphError: the diagram cannot be priced at all
- ReferenceDataUnavailableError: rules/rates could not be loaded
- EstimationCancelledError: the request deadline passed (strict mode only)

Non-fatal, recorded as diagnostics on the estimate:
- ExpressionEvaluationError: one dependency rule is skipped
- PricingRateNotFoundError: one resource (or hidden component) is unpriced
"""
from __future__ import annotations


class ArchCostError(Exception):
    """Base class for all engine errors."""


class MalformedGraphError(ArchCostError):
    """The diagram's containment structure is invalid."""

    def __init__(self, message: str, *, node_id: str | None = None):
        super().__init__(message)
        self.node_id = node_id


class ExpressionEvaluationError(ArchCostError):
    """An expression could not be evaluated against a configuration."""

    def __init__(self, message: str, *, expression: str | None = None):
        super().__init__(message)
        self.expression = expression


class ExpressionSyntaxError(ExpressionEvaluationError):
    """An expression could not be parsed."""

    def __init__(self, message: str, *, expression: str | None = None, position: int | None = None):
        super().__init__(message, expression=expression)
        self.position = position


class PricingRateNotFoundError(ArchCostError):
    """No rate exists for a resource type, neither stored nor built-in."""

    def __init__(self, provider: str, resource_type: str, region: str | None):
        super().__init__(
            f"No pricing rate for {provider}/{resource_type} in region {region or '<any>'}"
        )
        self.provider = provider
        self.resource_type = resource_type
        self.region = region


class ReferenceDataUnavailableError(ArchCostError):
    """Dependency rules or pricing rates could not be fetched."""


class EstimationCancelledError(ArchCostError):
    """Per-resource work was aborted before completion."""
