"""
Cost Aggregator - turn resources and their hidden dependencies into money.

Pricing formula per component:
- per_hour:                  quantity x unit_rate x period_hours
- per_gb, per_request, flat: quantity x unit_rate

Base components keep the rate's component name ("EC2 Instance Hourly").
Hidden components are tagged with the child type ("EBS Volume Storage (ebs_volume)").
"""
from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping, Sequence
from datetime import datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Optional

from archcost.core.errors import PricingRateNotFoundError
from archcost.core.rates import RateTable, snake_key
from archcost.core.resolver import Resolution
from archcost.core.schema import (
    DEFAULT_CURRENCY,
    ArchitectureCostEstimate,
    CostComponent,
    CostStatus,
    Diagnostic,
    DiagnosticCode,
    PricingModel,
    PricingRate,
    ResourceCostEstimate,
    ResourceNode,
    ResourceType,
    Severity,
    VirtualResource,
)

log = logging.getLogger(__name__)

_ONE = Decimal("1")
_MICROSECONDS_PER_HOUR = Decimal(3_600_000_000)


# Usage field and default per (resource type, pricing model).
# Pairs not listed bill one unit (one instance, one gateway, one fee).
USAGE_QUANTITIES: Mapping[tuple[ResourceType, PricingModel], tuple[str, Decimal]] = {
    (ResourceType.EBS_VOLUME, PricingModel.PER_GB): ("size_gb", Decimal("8")),
    (ResourceType.RDS_INSTANCE, PricingModel.PER_GB): ("allocated_storage", Decimal("20")),
    (ResourceType.S3_BUCKET, PricingModel.PER_GB): ("size_gb", Decimal("0")),
    (ResourceType.DYNAMODB_TABLE, PricingModel.PER_GB): ("size_gb", Decimal("0")),
    (ResourceType.NAT_GATEWAY, PricingModel.PER_GB): ("data_processed_gb", Decimal("0")),
    (ResourceType.VPC_ENDPOINT, PricingModel.PER_GB): ("data_processed_gb", Decimal("0")),
    (ResourceType.LAMBDA_FUNCTION, PricingModel.PER_REQUEST): ("requests_per_month", Decimal("0")),
    (ResourceType.AUTO_SCALING_GROUP, PricingModel.PER_HOUR): ("desired_capacity", Decimal("1")),
}


def period_hours(period: timedelta) -> Decimal:
    """Exact number of hours in a period."""
    return Decimal(period // timedelta(microseconds=1)) / _MICROSECONDS_PER_HOUR


def hidden_tag(child_resource_type: str) -> str:
    return snake_key(child_resource_type) or "unknown"


def hidden_component_name(rate: PricingRate, child_resource_type: str) -> str:
    return f"{rate.display_component_name} ({hidden_tag(child_resource_type)})"


class CostAggregator:
    """
    Price resources against a rate snapshot.

    Every subtotal is quantized to a fixed number of decimal places, and
    totals are sums of quantized subtotals, so the architecture total
    equals the sum of resource totals exactly.

    Example:
        aggregator = CostAggregator(rate_table, period=timedelta(hours=720), as_of=now)
        estimate, diagnostics = aggregator.price_resource(node, resolution)
    """

    def __init__(
        self,
        rates: RateTable,
        *,
        period: timedelta,
        as_of: datetime,
        provider: str = "aws",
        currency: str = DEFAULT_CURRENCY,
        decimal_places: int = 6,
    ):
        self._rates = rates
        self._period = period
        self._hours = period_hours(period)
        self._as_of = as_of
        self._provider = provider
        self._currency = currency
        self._quantum = Decimal(1).scaleb(-decimal_places)

    def quantize(self, value: Decimal) -> Decimal:
        return value.quantize(self._quantum, rounding=ROUND_HALF_UP)

    def component(self, name: str, rate: PricingRate, quantity: Decimal) -> CostComponent:
        duration = self._hours if rate.pricing_model is PricingModel.PER_HOUR else _ONE
        return CostComponent(
            name=name,
            pricing_model=rate.pricing_model,
            quantity=quantity,
            unit_rate=rate.unit_rate,
            duration_factor=duration,
            subtotal=self.quantize(quantity * rate.unit_rate * duration),
        )

    def price_resource(
        self, node: ResourceNode, resolution: Optional[Resolution] = None
    ) -> tuple[ResourceCostEstimate, list[Diagnostic]]:
        """
        Price one real resource and its hidden dependencies.

        Missing base rate: the resource is UNKNOWN with an empty breakdown.
        Missing hidden rate: that component is skipped and the resource is PARTIAL.
        """
        diagnostics: list[Diagnostic] = []
        if resolution is not None:
            diagnostics.extend(resolution.diagnostics)

        if node.resource_type is ResourceType.UNSUPPORTED:
            diagnostics.append(
                Diagnostic(
                    code=DiagnosticCode.UNSUPPORTED_RESOURCE_TYPE,
                    severity=Severity.INFO,
                    message=f"Resource type {node.raw_type!r} is not recognized",
                    resource_id=node.id,
                )
            )

        try:
            base_rates = self._rates.rates_for(
                self._provider, node.type_name, node.region, self._as_of,
                config=node.config, currency=self._currency,
            )
        except PricingRateNotFoundError as e:
            log.warning("Cost unknown for %s (%s): %s", node.id, node.type_name, e)
            diagnostics.append(
                Diagnostic(
                    code=DiagnosticCode.RATE_NOT_FOUND,
                    severity=Severity.ERROR,
                    message=str(e),
                    resource_id=node.id,
                )
            )
            return self.unknown(node), diagnostics

        breakdown: list[CostComponent] = []
        for rate in base_rates:
            quantity = self._usage_quantity(node, rate, diagnostics)
            try:
                breakdown.append(self.component(rate.display_component_name, rate, quantity))
            except ArithmeticError as e:
                log.warning("Cost unknown for %s: %s overflowed (%r)", node.id, rate.display_component_name, e)
                diagnostics.append(
                    Diagnostic(
                        code=DiagnosticCode.PRICING_ERROR,
                        severity=Severity.ERROR,
                        message=f"{rate.display_component_name} for quantity {quantity} is out of range",
                        resource_id=node.id,
                    )
                )
                return self.unknown(node), diagnostics

        degraded = resolution is not None and resolution.degraded
        for virtual in (resolution.virtual_resources if resolution else ()):
            components = self._price_virtual(node, virtual, diagnostics)
            if components is None:
                degraded = True
                continue
            breakdown.extend(components)

        return self._estimate(
            node,
            breakdown,
            CostStatus.PARTIAL if degraded else CostStatus.COMPLETE,
        ), diagnostics

    def unknown(self, node: ResourceNode) -> ResourceCostEstimate:
        return self._estimate(node, [], CostStatus.UNKNOWN)

    def architecture(
        self,
        estimates: Sequence[ResourceCostEstimate],
        *,
        region: str,
        diagnostics: Iterable[Diagnostic] = (),
        complete: bool = True,
    ) -> ArchitectureCostEstimate:
        """Roll resource estimates up. The total is computed once, from resource totals."""
        return ArchitectureCostEstimate(
            resource_estimates=tuple(estimates),
            total_cost=sum((e.total_cost for e in estimates), Decimal("0")),
            currency=self._currency,
            provider=self._provider,
            region=region,
            period=self._period,
            as_of=self._as_of,
            complete=complete,
            diagnostics=tuple(diagnostics),
        )

    def _price_virtual(
        self, node: ResourceNode, virtual: VirtualResource, diagnostics: list[Diagnostic]
    ) -> Optional[list[CostComponent]]:
        child_type = virtual.rule.child_resource_type
        try:
            rates = self._rates.rates_for(
                self._provider, child_type, virtual.region, self._as_of,
                config=node.config, currency=self._currency,
            )
        except PricingRateNotFoundError as e:
            log.warning("Skipping hidden %s on %s: %s", child_type, node.id, e)
            diagnostics.append(
                Diagnostic(
                    code=DiagnosticCode.RATE_NOT_FOUND,
                    message=str(e),
                    resource_id=node.id,
                    rule_child_type=child_type,
                )
            )
            return None
        try:
            return [
                self.component(hidden_component_name(rate, child_type), rate, virtual.quantity)
                for rate in rates
            ]
        except ArithmeticError as e:
            log.warning("Skipping hidden %s on %s: quantity overflowed (%r)", child_type, node.id, e)
            diagnostics.append(
                Diagnostic(
                    code=DiagnosticCode.PRICING_ERROR,
                    message=f"Hidden {child_type} quantity {virtual.quantity} is out of range",
                    resource_id=node.id,
                    rule_child_type=child_type,
                )
            )
            return None

    def _usage_quantity(
        self, node: ResourceNode, rate: PricingRate, diagnostics: list[Diagnostic]
    ) -> Decimal:
        usage = USAGE_QUANTITIES.get((node.resource_type, rate.pricing_model))
        if usage is None:
            return _ONE
        field, default = usage
        raw = _config_value(node.config, field)
        if raw is None:
            return default
        try:
            value = Decimal(str(raw).strip())
        except InvalidOperation:
            value = None
        if isinstance(raw, bool) or value is None or not value.is_finite() or value < 0:
            diagnostics.append(
                Diagnostic(
                    code=DiagnosticCode.MISSING_QUANTITY,
                    message=f"{field}={raw!r} is not a usable quantity; using {default}",
                    resource_id=node.id,
                )
            )
            return default
        return value

    def _estimate(
        self, node: ResourceNode, breakdown: list[CostComponent], status: CostStatus
    ) -> ResourceCostEstimate:
        return ResourceCostEstimate(
            resource_id=node.id,
            resource_name=node.name,
            resource_type=node.type_name,
            region=node.region,
            breakdown=tuple(breakdown),
            total_cost=sum((c.subtotal for c in breakdown), Decimal("0")),
            currency=self._currency,
            status=status,
        )


def _config_value(config: Mapping[str, Any], field: str) -> Any:
    """Look a usage field up by snake_case name, accepting camelCase keys."""
    if field in config:
        return config[field]
    for key, value in config.items():
        if snake_key(key) == field:
            return value
    return None
