"""
Filesystem Repositories - read reference data from JSON files.

File layout:
    rules.json  [{"parentResourceType": "nat_gateway", "childResourceType": "elastic_ip", ...}]
    rates.json  [{"resourceType": "nat_gateway", "pricingModel": "per_hour", "unitRate": "0.045", ...}]

Either file may also wrap its list in an object: {"rules": [...]} / {"rates": [...]}.
Keys are accepted in camelCase or snake_case.

A missing rules file is an empty rule table. A missing rates file is a
reference data failure, since pricing against nothing is never intended.
"""
from __future__ import annotations

import json
import logging
import threading
from pathlib import Path
from typing import Any, List, Optional, Union

from pydantic import ValidationError

from archcost.core.errors import ReferenceDataUnavailableError
from archcost.core.schema import DependencyRule, PricingRate
from archcost.repository.memory import InMemoryRateRepository, InMemoryRuleRepository
from archcost.repository.protocol import DependencyRuleRepository, PricingRateRepository

log = logging.getLogger(__name__)


def _read_json(path: Path) -> Any:
    """Read data from JSON file."""
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)


def _unwrap(data: Any, key: str, path: Path) -> list:
    if isinstance(data, dict) and key in data:
        data = data[key]
    if not isinstance(data, list):
        raise ReferenceDataUnavailableError(f"{path}: expected a list of {key}")
    return data


class JsonRuleRepository(DependencyRuleRepository):
    """Dependency rules from a JSON file, read once on first use."""

    def __init__(self, path: Union[str, Path]):
        self._path = Path(path)
        self._loaded: Optional[InMemoryRuleRepository] = None
        self._lock = threading.Lock()

    def list_rules(self, provider: str, parent_resource_type: str) -> List[DependencyRule]:
        return self._load().list_rules(provider, parent_resource_type)

    def all_rules(self) -> List[DependencyRule]:
        return self._load().all_rules()

    def _load(self) -> InMemoryRuleRepository:
        with self._lock:
            if self._loaded is None:
                self._loaded = InMemoryRuleRepository(self._read())
            return self._loaded

    def _read(self) -> List[DependencyRule]:
        if not self._path.exists():
            log.info("No rules file at %s; pricing base costs only", self._path)
            return []
        try:
            items = _unwrap(_read_json(self._path), "rules", self._path)
            rules = [DependencyRule.model_validate(item) for item in items]
        except (OSError, ValueError, ValidationError) as e:
            raise ReferenceDataUnavailableError(f"Cannot read rules from {self._path}: {e}") from e
        log.debug("Loaded %d dependency rules from %s", len(rules), self._path)
        return rules


class JsonRateRepository(PricingRateRepository):
    """Pricing rates from a JSON file, read once on first use."""

    def __init__(self, path: Union[str, Path]):
        self._path = Path(path)
        self._loaded: Optional[InMemoryRateRepository] = None
        self._lock = threading.Lock()

    def list_rates(
        self, provider: str, resource_type: str, region: Optional[str]
    ) -> List[PricingRate]:
        return self._load().list_rates(provider, resource_type, region)

    def _load(self) -> InMemoryRateRepository:
        with self._lock:
            if self._loaded is None:
                self._loaded = InMemoryRateRepository(self._read())
            return self._loaded

    def _read(self) -> List[PricingRate]:
        if not self._path.exists():
            raise ReferenceDataUnavailableError(f"Rates file not found: {self._path}")
        try:
            items = _unwrap(_read_json(self._path), "rates", self._path)
            rates = [PricingRate.model_validate(item) for item in items]
        except (OSError, ValueError, ValidationError) as e:
            raise ReferenceDataUnavailableError(f"Cannot read rates from {self._path}: {e}") from e
        log.debug("Loaded %d pricing rates from %s", len(rates), self._path)
        return rates
