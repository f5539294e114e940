"""
Reference Data Protocol - read-only interfaces for rules and rates.

Implementations:
- InMemoryRuleRepository / InMemoryRateRepository: keep in memory (tests, embedding)
- JsonRuleRepository / JsonRateRepository: read rules.json / rates.json
- BuiltinRuleRepository: the shipped hidden-dependency seed
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from typing import List, Optional

from archcost.core.schema import DependencyRule, PricingRate


class DependencyRuleRepository(ABC):
    """
    Source of hidden-dependency rules.

    Retry and caching policy belong to the implementation, not the engine.
    """

    @abstractmethod
    def list_rules(self, provider: str, parent_resource_type: str) -> List[DependencyRule]:
        """All rules whose parent is the given resource type. Empty list if none."""
        ...


class PricingRateRepository(ABC):
    """Source of time-bounded pricing rates."""

    @abstractmethod
    def list_rates(
        self, provider: str, resource_type: str, region: Optional[str]
    ) -> List[PricingRate]:
        """
        Rates for the given region plus region-less defaults.

        Not filtered by effective window; selection happens in the engine.
        """
        ...
