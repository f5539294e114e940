"""
Estimation Pipeline - diagram in, ArchitectureCostEstimate out.

Stages:
1. Parse the diagram and build the containment graph (fail fast)
2. Load the reference snapshot once (rules + rates, bounded by a timeout)
3. Fan out per resource: resolve hidden dependencies, then price
4. Fan in and roll up in containment order

Per-resource work has no dependency on siblings, so it runs on a bounded
thread pool. Nothing is shared between workers except the frozen snapshot.
"""
from __future__ import annotations

import logging
import re
import threading
import time
from concurrent.futures import FIRST_EXCEPTION, Future, ThreadPoolExecutor, wait
from datetime import datetime, timedelta, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Optional, Union

from archcost.core.aggregator import CostAggregator
from archcost.core.config import EngineConfig
from archcost.core.diagram import Diagram
from archcost.core.errors import EstimationCancelledError
from archcost.core.expressions import ExpressionEvaluator
from archcost.core.graph import DiagramGraph, GraphBuilder
from archcost.core.reference import ReferenceSnapshot
from archcost.core.resolver import HiddenDependencyResolver
from archcost.core.schema import (
    ArchitectureCostEstimate,
    Diagnostic,
    DiagnosticCode,
    ResourceCostEstimate,
    ResourceNode,
    Severity,
)
from archcost.repository.defaults import BuiltinRuleRepository
from archcost.repository.memory import InMemoryRateRepository
from archcost.repository.protocol import DependencyRuleRepository, PricingRateRepository

log = logging.getLogger(__name__)

DEFAULT_PERIOD = timedelta(hours=720)

_PERIOD_RE = re.compile(r"^\s*(?P<amount>\d+(?:\.\d+)?)\s*(?P<unit>[hdm]?)\s*$", re.IGNORECASE)
_PERIOD_UNIT_HOURS = {"": 1, "h": 1, "d": 24, "m": 720}


def parse_period(text: str) -> timedelta:
    """
    Parse a pricing period.

    "720h" -> 720 hours, "30d" -> 30 days, "1m" -> 30 days, "24" -> 24 hours.
    """
    match = _PERIOD_RE.match(text or "")
    if not match:
        raise ValueError(f"Invalid period {text!r}; expected <n>h, <n>d, <n>m or hours")
    try:
        amount = Decimal(match.group("amount"))
    except InvalidOperation as e:
        raise ValueError(f"Invalid period {text!r}") from e
    hours = amount * _PERIOD_UNIT_HOURS[match.group("unit").lower()]
    if hours <= 0:
        raise ValueError(f"Period must be positive: {text!r}")
    try:
        return timedelta(hours=float(hours))
    except OverflowError as e:
        raise ValueError(f"Period is too long: {text!r}") from e


class CancelToken:
    """Cooperative cancellation flag checked at per-resource checkpoints."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise EstimationCancelledError("Estimation was cancelled")


class EstimationPipeline:
    """
    Price an architecture diagram.

    Construct once with the reference data repositories and configuration;
    each estimate() call is independent and keeps no state afterwards.

    Example:
        pipeline = EstimationPipeline(
            rule_repository=BuiltinRuleRepository(),
            rate_repository=JsonRateRepository("rates.json"),
        )
        estimate = pipeline.estimate(diagram_json, region="us-east-1")
        print(estimate.total_cost)
    """

    def __init__(
        self,
        rule_repository: Optional[DependencyRuleRepository] = None,
        rate_repository: Optional[PricingRateRepository] = None,
        config: Optional[EngineConfig] = None,
    ):
        self.rule_repository = rule_repository or BuiltinRuleRepository()
        self.rate_repository = rate_repository or InMemoryRateRepository()
        self.config = config or EngineConfig()

    def estimate(
        self,
        diagram: Union[Diagram, str, bytes, dict[str, Any]],
        *,
        region: Optional[str] = None,
        provider: Optional[str] = None,
        period: timedelta = DEFAULT_PERIOD,
        as_of: Optional[datetime] = None,
        cancel_token: Optional[CancelToken] = None,
    ) -> ArchitectureCostEstimate:
        """
        Run the full pipeline.

        Raises:
            MalformedGraphError: the diagram cannot be priced at all
            ReferenceDataUnavailableError: rules/rates failed to load
            EstimationCancelledError: deadline passed and partial results are disabled
        """
        config = self.config
        region = region or config.region
        provider = (provider or config.provider).lower()
        as_of = _utc(as_of) if as_of is not None else datetime.now(timezone.utc)
        token = cancel_token or CancelToken()
        deadline = time.monotonic() + config.request_timeout_seconds

        if period <= timedelta(0):
            raise ValueError("period must be positive")

        graph = self.build_graph(diagram, region=region)
        resources = graph.resources()
        log.info(
            "Estimating %d resources (%d nodes) in %s for %s",
            len(resources), graph.node_count(), region, period,
        )

        snapshot = ReferenceSnapshot.load(
            self.rule_repository,
            self.rate_repository,
            provider=provider,
            pairs={(node.type_name, node.region) for node in resources},
            timeout=config.reference_timeout_seconds,
            use_builtin_rates=config.use_builtin_rates,
            allow_degraded=config.allow_degraded,
        )

        resolver = HiddenDependencyResolver(snapshot.rules_by_parent, evaluator=ExpressionEvaluator())
        aggregator = CostAggregator(
            snapshot.rates,
            period=period,
            as_of=as_of,
            provider=provider,
            currency=config.currency,
            decimal_places=config.decimal_places,
        )

        outcomes = self._fan_out(resources, resolver, aggregator, token, deadline)

        estimates: list[ResourceCostEstimate] = []
        diagnostics: list[Diagnostic] = list(snapshot.diagnostics)
        complete = True
        for node in resources:
            outcome = outcomes.get(node.id)
            if outcome is None:
                complete = False
                estimates.append(aggregator.unknown(node))
                diagnostics.append(
                    Diagnostic(
                        code=DiagnosticCode.CANCELLED,
                        severity=Severity.ERROR,
                        message="Pricing was cancelled before this resource completed",
                        resource_id=node.id,
                    )
                )
                continue
            estimate, resource_diagnostics = outcome
            estimates.append(estimate)
            diagnostics.extend(resource_diagnostics)

        if not complete:
            if not config.partial_on_timeout:
                raise EstimationCancelledError(
                    f"Estimation did not finish within {config.request_timeout_seconds:g}s"
                )
            log.warning(
                "Returning partial estimate: %d of %d resources priced",
                len(outcomes), len(resources),
            )

        result = aggregator.architecture(
            estimates, region=region, diagnostics=diagnostics, complete=complete
        )
        log.info("Estimated total %s %s", result.total_cost, result.currency)
        return result

    def build_graph(
        self, diagram: Union[Diagram, str, bytes, dict[str, Any]], *, region: Optional[str] = None
    ) -> DiagramGraph:
        if not isinstance(diagram, Diagram):
            diagram = Diagram.from_json(diagram)
        builder = GraphBuilder(
            default_region=region or self.config.region,
            strict_resource_types=self.config.strict_resource_types,
        )
        return builder.build(nodes=diagram.resource_nodes(), edges=diagram.edges)

    def _fan_out(
        self,
        resources: list[ResourceNode],
        resolver: HiddenDependencyResolver,
        aggregator: CostAggregator,
        token: CancelToken,
        deadline: float,
    ) -> dict[str, tuple[ResourceCostEstimate, list[Diagnostic]]]:
        """Price every resource on the worker pool. Missing keys were cancelled."""
        if not resources:
            return {}

        def price(node: ResourceNode) -> tuple[ResourceCostEstimate, list[Diagnostic]]:
            token.raise_if_cancelled()
            try:
                resolution = resolver.resolve(node)
                token.raise_if_cancelled()
                return aggregator.price_resource(node, resolution)
            except EstimationCancelledError:
                raise
            except Exception as e:
                # One resource failing must not abort its siblings
                log.exception("Pricing failed for %s", node.id)
                return aggregator.unknown(node), [
                    Diagnostic(
                        code=DiagnosticCode.PRICING_ERROR,
                        severity=Severity.ERROR,
                        message=f"Pricing failed: {e}",
                        resource_id=node.id,
                    )
                ]

        outcomes: dict[str, tuple[ResourceCostEstimate, list[Diagnostic]]] = {}
        workers = min(self.config.max_workers, len(resources))
        executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="archcost-price")
        try:
            futures: dict[Future, str] = {executor.submit(price, node): node.id for node in resources}
            pending = set(futures)
            while pending and not token.cancelled:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    log.warning("Request deadline reached with %d resources pending", len(pending))
                    token.cancel()
                    break
                done, pending = wait(pending, timeout=remaining, return_when=FIRST_EXCEPTION)
                for future in done:
                    self._collect(future, futures[future], outcomes)
            for future in futures:
                if future.done() and futures[future] not in outcomes:
                    self._collect(future, futures[future], outcomes)
        finally:
            executor.shutdown(wait=False, cancel_futures=True)
        return outcomes

    @staticmethod
    def _collect(
        future: Future,
        node_id: str,
        outcomes: dict[str, tuple[ResourceCostEstimate, list[Diagnostic]]],
    ) -> None:
        if future.cancelled():
            return
        try:
            outcomes[node_id] = future.result()
        except EstimationCancelledError:
            log.debug("Pricing of %s was cancelled", node_id)


def _utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
