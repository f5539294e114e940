"""
In-Memory Repositories - reference data held in process.

Useful for tests and for callers that load rules and rates themselves.
"""
from __future__ import annotations

from collections.abc import Iterable
from typing import List, Optional

from archcost.core.schema import DependencyRule, PricingRate, canonical_type_name
from archcost.repository.protocol import DependencyRuleRepository, PricingRateRepository


class InMemoryRuleRepository(DependencyRuleRepository):
    def __init__(self, rules: Iterable[DependencyRule] = ()):
        self._rules = tuple(rules)

    def __len__(self) -> int:
        return len(self._rules)

    def all_rules(self) -> List[DependencyRule]:
        return list(self._rules)

    def list_rules(self, provider: str, parent_resource_type: str) -> List[DependencyRule]:
        provider = provider.lower()
        parent = canonical_type_name(parent_resource_type)
        return [
            r for r in self._rules
            if r.provider == provider and r.parent_resource_type == parent
        ]


class InMemoryRateRepository(PricingRateRepository):
    def __init__(self, rates: Iterable[PricingRate] = ()):
        self._rates = tuple(rates)

    def __len__(self) -> int:
        return len(self._rates)

    def list_rates(
        self, provider: str, resource_type: str, region: Optional[str]
    ) -> List[PricingRate]:
        provider = provider.lower()
        resource_type = canonical_type_name(resource_type)
        return [
            r for r in self._rates
            if r.provider == provider
            and r.resource_type == resource_type
            and (r.region is None or r.region == region)
        ]
