"""
Built-in hidden-dependency rules.

What AWS provisions alongside a resource without it being drawn:
- NAT Gateway: an Elastic IP, billed while not attached to a running instance
- EC2 instance: a root EBS volume and a primary network interface
- RDS instance: its storage volume and automated backups in S3
"""
from __future__ import annotations

from decimal import Decimal

from archcost.core.schema import DependencyRule
from archcost.repository.memory import InMemoryRuleRepository

BUILTIN_RULES: tuple[DependencyRule, ...] = (
    DependencyRule(
        parent_resource_type="nat_gateway",
        child_resource_type="elastic_ip",
        quantity_expression="1",
        condition_expression='metadata.allocationId == null || metadata.allocationId == ""',
        is_attached=False,
        description="Elastic IP allocated for the NAT Gateway",
    ),
    DependencyRule(
        parent_resource_type="ec2_instance",
        child_resource_type="ebs_volume",
        quantity_expression="metadata.size_gb",
        default_quantity=Decimal("8"),
        description="Root EBS volume (GB)",
    ),
    DependencyRule(
        parent_resource_type="ec2_instance",
        child_resource_type="network_interface",
        quantity_expression="1",
        description="Primary network interface",
    ),
    DependencyRule(
        parent_resource_type="rds_instance",
        child_resource_type="ebs_volume",
        quantity_expression="metadata.allocated_storage",
        default_quantity=Decimal("20"),
        description="Database storage volume (GB)",
    ),
    DependencyRule(
        parent_resource_type="rds_instance",
        child_resource_type="s3_bucket",
        quantity_expression="metadata.allocated_storage",
        condition_expression="metadata.backup_retention_period > 0",
        default_quantity=Decimal("20"),
        is_attached=False,
        description="Automated backup storage (GB)",
    ),
)


class BuiltinRuleRepository(InMemoryRuleRepository):
    """The shipped rule seed, optionally extended with extra rules."""

    def __init__(self, extra_rules=()):
        super().__init__(BUILTIN_RULES + tuple(extra_rules))
