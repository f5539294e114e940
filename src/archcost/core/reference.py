"""
Reference Snapshot - rules and rates loaded once per estimation request.

The only I/O the engine performs. Fetching runs in a worker thread bounded
by a timeout; after loading, the snapshot is immutable and shared by every
pricing worker without locking.
"""
from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Optional

from archcost.core.errors import ReferenceDataUnavailableError
from archcost.core.rates import RateTable
from archcost.core.schema import (
    DependencyRule,
    Diagnostic,
    DiagnosticCode,
    PricingRate,
    Severity,
)
from archcost.repository.protocol import DependencyRuleRepository, PricingRateRepository

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReferenceSnapshot:
    rules_by_parent: Mapping[str, tuple[DependencyRule, ...]]
    rates: RateTable
    degraded: bool = False
    diagnostics: tuple[Diagnostic, ...] = field(default=())

    @property
    def rule_count(self) -> int:
        return sum(len(rules) for rules in self.rules_by_parent.values())

    @classmethod
    def load(
        cls,
        rule_repository: DependencyRuleRepository,
        rate_repository: PricingRateRepository,
        *,
        provider: str,
        pairs: Iterable[tuple[str, Optional[str]]],
        timeout: float,
        use_builtin_rates: bool = True,
        allow_degraded: bool = False,
    ) -> ReferenceSnapshot:
        """
        Fetch rules for every resource type present, then rates for every
        (type, region) pair including the child types those rules produce.

        Raises ReferenceDataUnavailableError on timeout or repository
        failure, unless allow_degraded is set; in that case an empty
        snapshot is returned with an error diagnostic attached.
        """
        pairs = sorted(set(pairs), key=lambda p: (p[0], p[1] or ""))
        executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="archcost-reference")
        try:
            future = executor.submit(
                _fetch, rule_repository, rate_repository, provider, pairs
            )
            rules_by_parent, rates = future.result(timeout=timeout)
        except FutureTimeoutError:
            error = ReferenceDataUnavailableError(
                f"Reference data was not loaded within {timeout:g}s"
            )
            return cls._degrade_or_raise(error, allow_degraded, use_builtin_rates)
        except ReferenceDataUnavailableError as e:
            return cls._degrade_or_raise(e, allow_degraded, use_builtin_rates)
        finally:
            executor.shutdown(wait=False, cancel_futures=True)

        log.debug(
            "Loaded reference snapshot: %d rules, %d rates",
            sum(len(r) for r in rules_by_parent.values()), len(rates),
        )
        return cls(
            rules_by_parent=MappingProxyType(rules_by_parent),
            rates=RateTable(rates, use_builtin=use_builtin_rates),
        )

    @classmethod
    def _degrade_or_raise(
        cls,
        error: ReferenceDataUnavailableError,
        allow_degraded: bool,
        use_builtin_rates: bool,
    ) -> ReferenceSnapshot:
        if not allow_degraded:
            raise error
        log.warning("Continuing with empty reference data: %s", error)
        return cls(
            rules_by_parent=MappingProxyType({}),
            rates=RateTable(use_builtin=use_builtin_rates),
            degraded=True,
            diagnostics=(
                Diagnostic(
                    code=DiagnosticCode.REFERENCE_DATA_UNAVAILABLE,
                    severity=Severity.ERROR,
                    message=str(error),
                ),
            ),
        )


def _fetch(
    rule_repository: DependencyRuleRepository,
    rate_repository: PricingRateRepository,
    provider: str,
    pairs: list[tuple[str, Optional[str]]],
) -> tuple[dict[str, tuple[DependencyRule, ...]], list[PricingRate]]:
    try:
        return _fetch_all(rule_repository, rate_repository, provider, pairs)
    except ReferenceDataUnavailableError:
        raise
    except Exception as e:
        # Repositories are external adapters; any failure is a load failure
        raise ReferenceDataUnavailableError(f"Reference data could not be loaded: {e}") from e


def _fetch_all(
    rule_repository: DependencyRuleRepository,
    rate_repository: PricingRateRepository,
    provider: str,
    pairs: list[tuple[str, Optional[str]]],
) -> tuple[dict[str, tuple[DependencyRule, ...]], list[PricingRate]]:
    rules_by_parent: dict[str, tuple[DependencyRule, ...]] = {}
    rate_pairs = set(pairs)
    for resource_type, region in pairs:
        if resource_type not in rules_by_parent:
            rules_by_parent[resource_type] = tuple(
                rule_repository.list_rules(provider, resource_type)
            )
        for rule in rules_by_parent[resource_type]:
            rate_pairs.add((rule.child_resource_type, region))

    rates: dict[str, PricingRate] = {}
    for resource_type, region in sorted(rate_pairs, key=lambda p: (p[0], p[1] or "")):
        for rate in rate_repository.list_rates(provider, resource_type, region):
            # Region-less defaults come back once per region asked for
            rates.setdefault(rate.model_dump_json(), rate)
    return rules_by_parent, list(rates.values())
