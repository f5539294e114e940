"""
Core data models.

Reference data (loaded once per request, read-only):
- DependencyRule: a hidden resource a parent type provisions implicitly
- PricingRate: a time-bounded unit price

Request-scoped values (discarded once the estimate is returned):
- ResourceNode / DiagramEdge: the typed diagram
- VirtualResource: a synthesized hidden dependency
- CostComponent / ResourceCostEstimate / ArchitectureCostEstimate: the result

All models serialize with camelCase aliases, matching the diagram canvas
JSON and the estimate output contract.
"""
from __future__ import annotations

import re
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel


DEFAULT_CURRENCY = "USD"

# Hidden components are named "<base name> (<child_type>)"
HIDDEN_COMPONENT_PATTERN = re.compile(r"^(?P<base>.+) \((?P<child>[a-z0-9_]+)\)$")


class BaseSchema(BaseModel):
    """Base config shared by all engine models."""

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
        populate_by_name=True,
        alias_generator=to_camel,
        str_strip_whitespace=True,
    )


class NodeKind(str, Enum):
    """Structural role of a diagram node."""

    CONTAINER = "container"
    RESOURCE = "resource"


class ResourceType(str, Enum):
    """Closed set of resource kinds the engine understands."""

    REGION = "region"
    AVAILABILITY_ZONE = "availability_zone"
    VPC = "vpc"
    SUBNET = "subnet"
    SECURITY_GROUP = "security_group"
    ROUTE_TABLE = "route_table"
    INTERNET_GATEWAY = "internet_gateway"
    NAT_GATEWAY = "nat_gateway"
    ELASTIC_IP = "elastic_ip"
    NETWORK_INTERFACE = "network_interface"
    VPC_ENDPOINT = "vpc_endpoint"
    EC2_INSTANCE = "ec2_instance"
    EBS_VOLUME = "ebs_volume"
    S3_BUCKET = "s3_bucket"
    LOAD_BALANCER = "load_balancer"
    AUTO_SCALING_GROUP = "auto_scaling_group"
    LAMBDA_FUNCTION = "lambda_function"
    RDS_INSTANCE = "rds_instance"
    DYNAMODB_TABLE = "dynamodb_table"
    IAM_ROLE = "iam_role"
    UNSUPPORTED = "unsupported"

    @classmethod
    def resolve(cls, raw: str | None) -> ResourceType:
        """
        Map a diagram spelling to a member.

        Accepts snake_case, kebab-case, PascalCase and the short aliases
        used on the canvas palette ("ec2", "rds", "eip", ...). Unknown
        strings map to UNSUPPORTED.
        """
        if not raw:
            return cls.UNSUPPORTED
        compact = re.sub(r"[^a-z0-9]", "", raw.lower())
        return _ALIASES.get(compact, cls.UNSUPPORTED)

    @property
    def display_name(self) -> str:
        return _DISPLAY_NAMES.get(self, self.value.replace("_", " ").title())


_ALIASES: dict[str, ResourceType] = {
    member.value.replace("_", ""): member
    for member in ResourceType
    if member is not ResourceType.UNSUPPORTED
}
_ALIASES.update(
    {
        "az": ResourceType.AVAILABILITY_ZONE,
        "sg": ResourceType.SECURITY_GROUP,
        "igw": ResourceType.INTERNET_GATEWAY,
        "nat": ResourceType.NAT_GATEWAY,
        "natgw": ResourceType.NAT_GATEWAY,
        "eip": ResourceType.ELASTIC_IP,
        "eni": ResourceType.NETWORK_INTERFACE,
        "ec2": ResourceType.EC2_INSTANCE,
        "instance": ResourceType.EC2_INSTANCE,
        "ebs": ResourceType.EBS_VOLUME,
        "s3": ResourceType.S3_BUCKET,
        "alb": ResourceType.LOAD_BALANCER,
        "nlb": ResourceType.LOAD_BALANCER,
        "elb": ResourceType.LOAD_BALANCER,
        "asg": ResourceType.AUTO_SCALING_GROUP,
        "lambda": ResourceType.LAMBDA_FUNCTION,
        "rds": ResourceType.RDS_INSTANCE,
        "dynamodb": ResourceType.DYNAMODB_TABLE,
    }
)

_DISPLAY_NAMES = {
    ResourceType.VPC: "VPC",
    ResourceType.NAT_GATEWAY: "NAT Gateway",
    ResourceType.ELASTIC_IP: "Elastic IP",
    ResourceType.VPC_ENDPOINT: "VPC Endpoint",
    ResourceType.EC2_INSTANCE: "EC2 Instance",
    ResourceType.EBS_VOLUME: "EBS Volume",
    ResourceType.S3_BUCKET: "S3 Bucket",
    ResourceType.RDS_INSTANCE: "RDS Instance",
    ResourceType.DYNAMODB_TABLE: "DynamoDB Table",
    ResourceType.IAM_ROLE: "IAM Role",
}


def canonical_type_name(raw: str) -> str:
    """Canonical string for a resource type, keeping unknown strings as-is."""
    resolved = ResourceType.resolve(raw)
    if resolved is ResourceType.UNSUPPORTED:
        return raw.strip()
    return resolved.value


class PricingModel(str, Enum):
    """Unit basis of a rate."""

    PER_HOUR = "per_hour"
    PER_GB = "per_gb"
    PER_REQUEST = "per_request"
    FLAT = "flat"


class CostStatus(str, Enum):
    """How much of a resource's cost could be resolved."""

    COMPLETE = "complete"
    PARTIAL = "partial"  # some hidden dependencies were skipped
    UNKNOWN = "unknown"  # no base rate, nothing priced


class ConditionResult(str, Enum):
    """Tri-state outcome of a condition expression."""

    TRUE = "true"
    FALSE = "false"
    ABSENT = "absent"  # referenced a missing field


class DiagnosticCode(str, Enum):
    EXPRESSION_ERROR = "EXPRESSION_ERROR"
    MISSING_QUANTITY = "MISSING_QUANTITY"
    RATE_NOT_FOUND = "RATE_NOT_FOUND"
    REFERENCE_DATA_UNAVAILABLE = "REFERENCE_DATA_UNAVAILABLE"
    UNSUPPORTED_RESOURCE_TYPE = "UNSUPPORTED_RESOURCE_TYPE"
    PRICING_ERROR = "PRICING_ERROR"
    CANCELLED = "CANCELLED"


class Severity(str, Enum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


# ---------------------------------------------------------------------------
# Diagram
# ---------------------------------------------------------------------------


class ResourceNode(BaseSchema):
    """A typed diagram node. parent_id is a reference, never ownership."""

    id: str
    kind: NodeKind
    resource_type: ResourceType
    raw_type: str
    name: str
    config: dict[str, Any] = Field(default_factory=dict)
    parent_id: Optional[str] = None
    region: Optional[str] = None

    @property
    def type_name(self) -> str:
        """Canonical type string, or the raw diagram string when unsupported."""
        if self.resource_type is ResourceType.UNSUPPORTED:
            return self.raw_type
        return self.resource_type.value


class DiagramEdge(BaseSchema):
    """A user-drawn connection. Opaque to pricing."""

    model_config = ConfigDict(extra="allow")

    id: Optional[str] = None
    source: str
    target: str
    type: Optional[str] = None
    label: Optional[str] = None
    data: Optional[dict[str, Any]] = None


# ---------------------------------------------------------------------------
# Reference data
# ---------------------------------------------------------------------------


class DependencyRule(BaseSchema):
    """Declares that a parent resource type silently provisions a child."""

    provider: str = "aws"
    parent_resource_type: str
    child_resource_type: str
    quantity_expression: str = "1"
    condition_expression: str = ""
    is_attached: bool = True
    description: str = ""
    default_quantity: Optional[Decimal] = Field(default=None, ge=0)

    @field_validator("parent_resource_type", "child_resource_type")
    @classmethod
    def _canonical_type(cls, v: str) -> str:
        return canonical_type_name(v)

    @field_validator("provider")
    @classmethod
    def _lower_provider(cls, v: str) -> str:
        return v.lower()


class PricingRate(BaseSchema):
    """A unit price valid over [effective_from, effective_to)."""

    provider: str = "aws"
    resource_type: str
    component_name: Optional[str] = None
    pricing_model: PricingModel
    unit_rate: Decimal = Field(ge=0)
    unit: Optional[str] = None
    currency: str = DEFAULT_CURRENCY
    region: Optional[str] = None  # None = default for all regions
    effective_from: datetime
    effective_to: Optional[datetime] = None  # None = open-ended
    attributes: dict[str, str] = Field(default_factory=dict)

    @field_validator("resource_type")
    @classmethod
    def _canonical_type(cls, v: str) -> str:
        return canonical_type_name(v)

    @field_validator("provider")
    @classmethod
    def _lower_provider(cls, v: str) -> str:
        return v.lower()

    @field_validator("effective_from", "effective_to")
    @classmethod
    def _utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        return _as_utc(v) if v is not None else None

    @model_validator(mode="after")
    def _check_window(self) -> PricingRate:
        if self.effective_to is not None and self.effective_to <= self.effective_from:
            raise ValueError("effective_to must be after effective_from")
        return self

    @property
    def display_component_name(self) -> str:
        if self.component_name:
            return self.component_name
        display = ResourceType.resolve(self.resource_type).display_name
        return f"{display} {_MODEL_SUFFIX[self.pricing_model]}"

    def is_effective(self, as_of: datetime) -> bool:
        as_of = _as_utc(as_of)
        if as_of < self.effective_from:
            return False
        return self.effective_to is None or as_of < self.effective_to


_MODEL_SUFFIX = {
    PricingModel.PER_HOUR: "Hourly",
    PricingModel.PER_GB: "Usage",
    PricingModel.PER_REQUEST: "Requests",
    PricingModel.FLAT: "Flat Fee",
}


class VirtualResource(BaseSchema):
    """A hidden dependency synthesized for one resolution pass. Never persisted."""

    id: str
    name: str
    resource_type: ResourceType
    quantity: Decimal
    is_attached: bool
    parent_id: str
    region: Optional[str] = None
    rule: DependencyRule


# ---------------------------------------------------------------------------
# Estimates
# ---------------------------------------------------------------------------


class CostComponent(BaseSchema):
    """subtotal = quantity x unit_rate x duration_factor"""

    name: str = Field(alias="componentName")
    pricing_model: PricingModel = Field(alias="model")
    quantity: Decimal
    unit_rate: Decimal
    duration_factor: Decimal = Decimal("1")
    subtotal: Decimal

    @property
    def hidden_child_type(self) -> Optional[str]:
        """Child type encoded in the name, or None for a base component."""
        match = HIDDEN_COMPONENT_PATTERN.match(self.name)
        return match.group("child") if match else None

    @property
    def is_hidden(self) -> bool:
        return self.hidden_child_type is not None


class Diagnostic(BaseSchema):
    """A non-fatal problem encountered while pricing."""

    code: DiagnosticCode
    severity: Severity = Severity.WARNING
    message: str
    resource_id: Optional[str] = None
    rule_child_type: Optional[str] = None


class ResourceCostEstimate(BaseSchema):
    resource_id: str
    resource_name: str
    resource_type: str
    region: Optional[str] = None
    breakdown: tuple[CostComponent, ...] = ()
    total_cost: Decimal = Decimal("0")
    currency: str = DEFAULT_CURRENCY
    status: CostStatus = CostStatus.COMPLETE

    @property
    def cost_known(self) -> bool:
        return self.status is not CostStatus.UNKNOWN

    def base_cost(self) -> Decimal:
        return sum((c.subtotal for c in self.breakdown if not c.is_hidden), Decimal("0"))

    def hidden_cost(self) -> Decimal:
        return sum((c.subtotal for c in self.breakdown if c.is_hidden), Decimal("0"))


class ArchitectureCostEstimate(BaseSchema):
    """Top-level result. total_cost == sum of resource totals."""

    resource_estimates: tuple[ResourceCostEstimate, ...] = ()
    total_cost: Decimal = Decimal("0")
    currency: str = DEFAULT_CURRENCY
    provider: str
    region: str
    period: timedelta
    as_of: datetime
    complete: bool = True
    diagnostics: tuple[Diagnostic, ...] = ()

    def base_cost(self) -> Decimal:
        return sum((r.base_cost() for r in self.resource_estimates), Decimal("0"))

    def hidden_cost(self) -> Decimal:
        return sum((r.hidden_cost() for r in self.resource_estimates), Decimal("0"))

    def estimate_for(self, resource_id: str) -> Optional[ResourceCostEstimate]:
        for estimate in self.resource_estimates:
            if estimate.resource_id == resource_id:
                return estimate
        return None

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)

    def to_json(self, indent: Optional[int] = 2) -> str:
        return self.model_dump_json(by_alias=True, indent=indent)
