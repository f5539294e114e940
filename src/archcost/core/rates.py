"""
Pricing Rate Provider - pick exactly one rate per billing component.

Selection (deterministic, total order):
1. Keep rates whose [effective_from, effective_to) contains the instant
2. Keep rates whose attributes all match the resource config (and currency, if given)
3. Prefer an exact region match over a provider-wide default (region=None)
4. Prefer an attribute-specific rate over a generic one
5. Prefer the most recent effective_from (last write wins)
6. Break remaining ties on the rate's own fields

Stored rates always win. The static default table below is consulted only
when no stored rate survives the filters.
"""
from __future__ import annotations

import logging
import re
from collections.abc import Iterable, Mapping
from datetime import datetime, timezone
from decimal import Decimal
from types import MappingProxyType
from typing import Any, Optional

from archcost.core.errors import PricingRateNotFoundError
from archcost.core.schema import PricingModel, PricingRate

log = logging.getLogger(__name__)

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
_FAR_FUTURE = datetime(9999, 12, 31, tzinfo=timezone.utc)


def _builtin(
    resource_type: str,
    component_name: str,
    model: PricingModel,
    rate: str,
    unit: str,
    **attributes: str,
) -> PricingRate:
    return PricingRate(
        provider="aws",
        resource_type=resource_type,
        component_name=component_name,
        pricing_model=model,
        unit_rate=Decimal(rate),
        unit=unit,
        effective_from=_EPOCH,
        attributes=attributes,
    )


# Static pricing (us-east-1 on-demand, approximate)
# Used only when the rate repository has nothing for a resource type.
_BUILTIN_RATES: tuple[PricingRate, ...] = (
    # NAT Gateway: $0.045/hr + $0.045/GB processed
    _builtin("nat_gateway", "NAT Gateway Hourly", PricingModel.PER_HOUR, "0.045", "hour"),
    _builtin("nat_gateway", "NAT Gateway Data Processing", PricingModel.PER_GB, "0.045", "GB"),
    # Elastic IP: $0.005/hr
    _builtin("elastic_ip", "Elastic IP Hourly", PricingModel.PER_HOUR, "0.005", "hour"),
    # ENI: free when attached
    _builtin("network_interface", "Network Interface Hourly", PricingModel.PER_HOUR, "0", "hour"),
    # VPC interface endpoint: $0.01/hr per ENI + $0.01/GB
    _builtin("vpc_endpoint", "VPC Endpoint Hourly", PricingModel.PER_HOUR, "0.01", "hour"),
    _builtin("vpc_endpoint", "VPC Endpoint Data Processing", PricingModel.PER_GB, "0.01", "GB"),
    # EC2 on-demand, Linux
    _builtin("ec2_instance", "EC2 Instance Hourly", PricingModel.PER_HOUR, "0.0104", "hour"),
    _builtin("ec2_instance", "EC2 Instance Hourly", PricingModel.PER_HOUR, "0.0104", "hour", instance_type="t3.micro"),
    _builtin("ec2_instance", "EC2 Instance Hourly", PricingModel.PER_HOUR, "0.0208", "hour", instance_type="t3.small"),
    _builtin("ec2_instance", "EC2 Instance Hourly", PricingModel.PER_HOUR, "0.0416", "hour", instance_type="t3.medium"),
    _builtin("ec2_instance", "EC2 Instance Hourly", PricingModel.PER_HOUR, "0.096", "hour", instance_type="m5.large"),
    # EBS: gp3 $0.08/GB-month, gp2 $0.10/GB-month
    _builtin("ebs_volume", "EBS Volume Storage", PricingModel.PER_GB, "0.08", "GB-month"),
    _builtin("ebs_volume", "EBS Volume Storage", PricingModel.PER_GB, "0.10", "GB-month", volume_type="gp2"),
    # S3 Standard: $0.023/GB-month
    _builtin("s3_bucket", "S3 Storage", PricingModel.PER_GB, "0.023", "GB-month"),
    # ALB/NLB: $0.0225/hr, CLB $0.025/hr (LCU charges not included)
    _builtin("load_balancer", "Load Balancer Hourly", PricingModel.PER_HOUR, "0.0225", "hour"),
    _builtin("load_balancer", "Load Balancer Hourly", PricingModel.PER_HOUR, "0.025", "hour", load_balancer_type="classic"),
    # ASG: priced as its instances
    _builtin("auto_scaling_group", "Auto Scaling Group Instances Hourly", PricingModel.PER_HOUR, "0.0104", "hour"),
    # Lambda: $0.20 per million requests
    _builtin("lambda_function", "Lambda Requests", PricingModel.PER_REQUEST, "0.0000002", "request"),
    # RDS single-AZ on-demand
    _builtin("rds_instance", "RDS Instance Hourly", PricingModel.PER_HOUR, "0.017", "hour"),
    _builtin("rds_instance", "RDS Instance Hourly", PricingModel.PER_HOUR, "0.034", "hour", instance_class="db.t3.small"),
    _builtin("rds_instance", "RDS Instance Hourly", PricingModel.PER_HOUR, "0.068", "hour", instance_class="db.t3.medium"),
    _builtin("rds_instance", "RDS Instance Hourly", PricingModel.PER_HOUR, "0.176", "hour", instance_class="db.m5.large"),
    # DynamoDB on-demand storage: $0.25/GB-month
    _builtin("dynamodb_table", "DynamoDB Storage", PricingModel.PER_GB, "0.25", "GB-month"),
    # Free structural resources
    _builtin("vpc", "VPC", PricingModel.FLAT, "0", "each"),
    _builtin("subnet", "Subnet", PricingModel.FLAT, "0", "each"),
    _builtin("security_group", "Security Group", PricingModel.FLAT, "0", "each"),
    _builtin("route_table", "Route Table", PricingModel.FLAT, "0", "each"),
    _builtin("internet_gateway", "Internet Gateway", PricingModel.FLAT, "0", "each"),
    _builtin("iam_role", "IAM Role", PricingModel.FLAT, "0", "each"),
)


def _index(rates: Iterable[PricingRate]) -> Mapping[tuple[str, str], tuple[PricingRate, ...]]:
    grouped: dict[tuple[str, str], list[PricingRate]] = {}
    for rate in rates:
        grouped.setdefault((rate.provider, rate.resource_type), []).append(rate)
    return MappingProxyType({k: tuple(v) for k, v in grouped.items()})


BUILTIN_RATES = _index(_BUILTIN_RATES)


def snake_key(key: str) -> str:
    """instanceType -> instance_type, Instance-Type -> instance_type"""
    key = re.sub(r"(?<=[a-z0-9])(?=[A-Z])", "_", key.strip())
    return re.sub(r"[^a-z0-9]+", "_", key.lower()).strip("_")


def _normalized_config(config: Optional[Mapping[str, Any]]) -> dict[str, str]:
    if not config:
        return {}
    result = {}
    for key, value in config.items():
        if isinstance(value, (str, int, float)) and not isinstance(value, bool):
            result[snake_key(key)] = str(value).strip().lower()
    return result


def attributes_match(rate: PricingRate, normalized_config: Mapping[str, str]) -> bool:
    for key, expected in rate.attributes.items():
        if normalized_config.get(snake_key(key)) != str(expected).strip().lower():
            return False
    return True


def select_rate(
    candidates: Iterable[PricingRate],
    *,
    region: Optional[str],
    as_of: datetime,
    config: Optional[Mapping[str, Any]] = None,
    currency: Optional[str] = None,
) -> Optional[PricingRate]:
    """Apply the selection order to a candidate list. Returns None when nothing applies."""
    normalized = _normalized_config(config)
    eligible = [
        rate
        for rate in candidates
        if rate.is_effective(as_of)
        and (rate.region is None or rate.region == region)
        and (currency is None or rate.currency == currency)
        and attributes_match(rate, normalized)
    ]
    if not eligible:
        return None
    return max(eligible, key=lambda r: _preference_key(r, region))


def _preference_key(rate: PricingRate, region: Optional[str]) -> tuple:
    return (
        rate.region is not None and rate.region == region,
        len(rate.attributes),
        rate.effective_from,
        # total order for identical windows
        rate.effective_to or _FAR_FUTURE,
        rate.unit_rate,
        rate.pricing_model.value,
        rate.currency,
        rate.unit or "",
    )


class RateTable:
    """
    Read-only snapshot of pricing rates for one estimation request.

    Loaded once, then shared by all worker threads without locking.

    Example:
        table = RateTable(rates)
        rates = table.rates_for("aws", "nat_gateway", "us-east-1", as_of)
    """

    def __init__(
        self,
        rates: Iterable[PricingRate] = (),
        *,
        use_builtin: bool = True,
        builtin: Mapping[tuple[str, str], tuple[PricingRate, ...]] = BUILTIN_RATES,
    ):
        self._stored = _index(rates)
        self._builtin = builtin if use_builtin else MappingProxyType({})

    def __len__(self) -> int:
        return sum(len(v) for v in self._stored.values())

    def stored_rates(self, provider: str, resource_type: str) -> tuple[PricingRate, ...]:
        return self._stored.get((provider.lower(), resource_type), ())

    def lookup(
        self,
        provider: str,
        resource_type: str,
        region: Optional[str],
        as_of: datetime,
        *,
        component_name: Optional[str] = None,
        config: Optional[Mapping[str, Any]] = None,
        currency: Optional[str] = None,
    ) -> PricingRate:
        """
        Return exactly one rate.

        With component_name, only that component is considered. Raises
        PricingRateNotFoundError when neither stored nor built-in rates apply.
        """
        for source in self._sources(provider, resource_type):
            if component_name is not None:
                source = tuple(r for r in source if r.display_component_name == component_name)
            rate = select_rate(source, region=region, as_of=as_of, config=config, currency=currency)
            if rate is not None:
                return rate
        raise PricingRateNotFoundError(provider, resource_type, region)

    def rates_for(
        self,
        provider: str,
        resource_type: str,
        region: Optional[str],
        as_of: datetime,
        *,
        config: Optional[Mapping[str, Any]] = None,
        currency: Optional[str] = None,
    ) -> list[PricingRate]:
        """
        Return one rate per billing component, ordered by component name.

        Stored rates take precedence as a whole: the built-in table is only
        used when no stored component applies.
        """
        for source_name, source in zip(("stored", "builtin"), self._sources(provider, resource_type)):
            components: dict[str, list[PricingRate]] = {}
            for rate in source:
                components.setdefault(rate.display_component_name, []).append(rate)

            selected = []
            for name in sorted(components):
                rate = select_rate(
                    components[name], region=region, as_of=as_of, config=config, currency=currency
                )
                if rate is not None:
                    selected.append(rate)
            if selected:
                log.debug(
                    "Selected %d %s rate(s) for %s/%s in %s",
                    len(selected), source_name, provider, resource_type, region,
                )
                return selected
        raise PricingRateNotFoundError(provider, resource_type, region)

    def _sources(self, provider: str, resource_type: str) -> tuple[tuple[PricingRate, ...], ...]:
        key = (provider.lower(), resource_type)
        return (self._stored.get(key, ()), self._builtin.get(key, ()))
