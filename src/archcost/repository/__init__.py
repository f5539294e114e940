"""Reference data repositories for dependency rules and pricing rates."""

from archcost.repository.protocol import DependencyRuleRepository, PricingRateRepository
from archcost.repository.memory import InMemoryRateRepository, InMemoryRuleRepository
from archcost.repository.filesystem import JsonRateRepository, JsonRuleRepository
from archcost.repository.defaults import BUILTIN_RULES, BuiltinRuleRepository

__all__ = [
    "DependencyRuleRepository",
    "PricingRateRepository",
    "InMemoryRuleRepository",
    "InMemoryRateRepository",
    "JsonRuleRepository",
    "JsonRateRepository",
    "BuiltinRuleRepository",
    "BUILTIN_RULES",
]
