"""
Tests for hidden-dependency resolution.
"""
from __future__ import annotations

from decimal import Decimal

import pytest
from pydantic import ValidationError

from archcost.core.resolver import HiddenDependencyResolver
from archcost.core.schema import DiagnosticCode, NodeKind, ResourceNode, ResourceType
from archcost.repository import BUILTIN_RULES

from tests.fixtures import make_rule


def make_node(node_id="res-1", resource_type=ResourceType.NAT_GATEWAY, config=None, name=None):
    return ResourceNode(
        id=node_id,
        kind=NodeKind.RESOURCE,
        resource_type=resource_type,
        raw_type=resource_type.value,
        name=name or node_id,
        config=config or {},
        region="us-east-1",
    )


def resolver_for(*rules):
    by_parent = {}
    for rule in rules:
        by_parent.setdefault(rule.parent_resource_type, []).append(rule)
    return HiddenDependencyResolver(by_parent)


@pytest.fixture
def builtin_resolver():
    return resolver_for(*BUILTIN_RULES)


class TestResolver:
    def test_nat_without_allocation_gets_elastic_ip(self, builtin_resolver):
        resolution = builtin_resolver.resolve(make_node("nat-1", name="Main NAT"))
        assert len(resolution.virtual_resources) == 1
        eip = resolution.virtual_resources[0]
        assert eip.id == "nat-1-hidden-elastic_ip"
        assert eip.name == "Main NAT-elastic_ip"
        assert eip.resource_type is ResourceType.ELASTIC_IP
        assert eip.quantity == Decimal("1")
        assert eip.is_attached is False
        assert eip.parent_id == "nat-1"
        assert eip.region == "us-east-1"
        assert not resolution.degraded

    def test_nat_with_allocation_has_no_hidden_eip(self, builtin_resolver):
        node = make_node("nat-1", config={"allocationId": "eipalloc-0abc"})
        assert builtin_resolver.resolve(node).virtual_resources == ()

    def test_ec2_default_volume_size(self, builtin_resolver):
        node = make_node("web-1", ResourceType.EC2_INSTANCE)
        resolution = builtin_resolver.resolve(node)
        by_type = {vr.resource_type: vr for vr in resolution.virtual_resources}
        assert by_type[ResourceType.EBS_VOLUME].quantity == Decimal("8")
        assert by_type[ResourceType.NETWORK_INTERFACE].quantity == Decimal("1")

    def test_ec2_configured_volume_size(self, builtin_resolver):
        node = make_node("web-1", ResourceType.EC2_INSTANCE, config={"size_gb": 100})
        resolution = builtin_resolver.resolve(node)
        ebs = [vr for vr in resolution.virtual_resources if vr.resource_type is ResourceType.EBS_VOLUME]
        assert ebs[0].quantity == Decimal("100")

    def test_rds_backups_only_with_retention(self, builtin_resolver):
        without = builtin_resolver.resolve(make_node("db-1", ResourceType.RDS_INSTANCE))
        assert {vr.resource_type for vr in without.virtual_resources} == {ResourceType.EBS_VOLUME}

        node = make_node(
            "db-1", ResourceType.RDS_INSTANCE,
            config={"allocated_storage": 50, "backup_retention_period": 7},
        )
        with_backups = builtin_resolver.resolve(node)
        quantities = {vr.resource_type: vr.quantity for vr in with_backups.virtual_resources}
        assert quantities == {
            ResourceType.EBS_VOLUME: Decimal("50"),
            ResourceType.S3_BUCKET: Decimal("50"),
        }

    def test_no_rules_no_virtual_resources(self, builtin_resolver):
        resolution = builtin_resolver.resolve(make_node("lb-1", ResourceType.LOAD_BALANCER))
        assert resolution.virtual_resources == ()
        assert resolution.diagnostics == ()

    def test_missing_quantity_without_default_is_skipped(self):
        resolver = resolver_for(make_rule("ec2_instance", "ebs_volume", quantity="metadata.size_gb"))
        resolution = resolver.resolve(make_node("web-1", ResourceType.EC2_INSTANCE))
        assert resolution.virtual_resources == ()
        assert resolution.degraded
        assert resolution.diagnostics[0].code is DiagnosticCode.MISSING_QUANTITY
        assert resolution.diagnostics[0].rule_child_type == "ebs_volume"

    def test_coalesce_fallback_in_expression(self):
        resolver = resolver_for(make_rule("ec2_instance", "ebs_volume", quantity="metadata.size_gb ?? 30"))
        resolution = resolver.resolve(make_node("web-1", ResourceType.EC2_INSTANCE))
        assert resolution.virtual_resources[0].quantity == Decimal("30")

    def test_bad_expression_skips_only_that_rule(self):
        resolver = resolver_for(
            make_rule("ec2_instance", "ebs_volume", quantity="metadata.size_gb *"),
            make_rule("ec2_instance", "network_interface"),
        )
        resolution = resolver.resolve(make_node("web-1", ResourceType.EC2_INSTANCE))
        assert [vr.resource_type for vr in resolution.virtual_resources] == [ResourceType.NETWORK_INTERFACE]
        assert resolution.diagnostics[0].code is DiagnosticCode.EXPRESSION_ERROR
        assert resolution.skipped_rules == 1

    def test_bad_condition_is_a_diagnostic(self):
        resolver = resolver_for(make_rule("nat_gateway", "elastic_ip", condition="metadata.name > 3"))
        resolution = resolver.resolve(make_node("nat-1", config={"name": "edge"}))
        assert resolution.virtual_resources == ()
        assert resolution.diagnostics[0].code is DiagnosticCode.EXPRESSION_ERROR

    def test_false_condition_is_not_degraded(self):
        resolver = resolver_for(
            make_rule("rds_instance", "s3_bucket", condition="metadata.backup_retention_period > 0")
        )
        node = make_node("db-1", ResourceType.RDS_INSTANCE, config={"backup_retention_period": 0})
        resolution = resolver.resolve(node)
        assert resolution.virtual_resources == ()
        assert not resolution.degraded

    def test_repeated_child_type_gets_indexed_ids(self):
        resolver = resolver_for(
            make_rule("ec2_instance", "ebs_volume", quantity="8"),
            make_rule("ec2_instance", "ebs_volume", quantity="100"),
        )
        resolution = resolver.resolve(make_node("web-1", ResourceType.EC2_INSTANCE))
        assert [vr.id for vr in resolution.virtual_resources] == [
            "web-1-hidden-ebs_volume",
            "web-1-hidden-ebs_volume-2",
        ]

    def test_virtual_resources_are_not_expanded(self):
        # A rule chain ec2 -> ebs -> s3 must stop after one level
        resolver = resolver_for(
            make_rule("ec2_instance", "ebs_volume"),
            make_rule("ebs_volume", "s3_bucket"),
        )
        resolution = resolver.resolve(make_node("web-1", ResourceType.EC2_INSTANCE))
        assert [vr.resource_type for vr in resolution.virtual_resources] == [ResourceType.EBS_VOLUME]


def test_negative_default_quantity_rejected():
    with pytest.raises(ValidationError):
        make_rule("ec2_instance", "ebs_volume", quantity="metadata.size_gb", default_quantity="-8")
