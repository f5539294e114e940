"""
Tests for reference data repositories and the snapshot loader.
"""
from __future__ import annotations

import json
import threading
from decimal import Decimal

import pytest

from archcost.core.errors import ReferenceDataUnavailableError
from archcost.core.reference import ReferenceSnapshot
from archcost.core.schema import DiagnosticCode
from archcost.repository import (
    BuiltinRuleRepository,
    InMemoryRateRepository,
    InMemoryRuleRepository,
    JsonRateRepository,
    JsonRuleRepository,
    PricingRateRepository,
)

from tests.fixtures import make_rate, make_rule, scenario_rates, scenario_rules


class TestInMemoryRepositories:
    def test_rules_filtered_by_parent_and_provider(self):
        repo = InMemoryRuleRepository([
            make_rule("nat_gateway", "elastic_ip"),
            make_rule("ec2_instance", "ebs_volume"),
            make_rule("nat_gateway", "elastic_ip", provider="gcp"),
        ])
        rules = repo.list_rules("AWS", "nat-gateway")
        assert [r.child_resource_type for r in rules] == ["elastic_ip"]

    def test_rates_include_region_defaults(self):
        repo = InMemoryRateRepository([
            make_rate("nat_gateway", "0.045"),
            make_rate("nat_gateway", "0.048", region="eu-west-1"),
            make_rate("nat_gateway", "0.050", region="ap-south-1"),
        ])
        rates = repo.list_rates("aws", "nat_gateway", "eu-west-1")
        assert sorted(r.unit_rate for r in rates) == [Decimal("0.045"), Decimal("0.048")]

    def test_builtin_rules(self):
        repo = BuiltinRuleRepository()
        children = {r.child_resource_type for r in repo.list_rules("aws", "ec2_instance")}
        assert children == {"ebs_volume", "network_interface"}
        nat_rule = repo.list_rules("aws", "nat_gateway")[0]
        assert nat_rule.is_attached is False

    def test_builtin_rules_can_be_extended(self):
        repo = BuiltinRuleRepository([make_rule("load_balancer", "elastic_ip")])
        assert len(repo.list_rules("aws", "load_balancer")) == 1


class TestJsonRepositories:
    def test_rules_file(self, tmp_path):
        path = tmp_path / "rules.json"
        path.write_text(json.dumps({"rules": [
            {
                "parentResourceType": "nat-gateway",
                "childResourceType": "eip",
                "conditionExpression": "metadata.allocationId == null",
                "isAttached": False,
            }
        ]}))
        rules = JsonRuleRepository(path).list_rules("aws", "nat_gateway")
        assert rules[0].child_resource_type == "elastic_ip"
        assert rules[0].quantity_expression == "1"

    def test_missing_rules_file_is_empty(self, tmp_path):
        repo = JsonRuleRepository(tmp_path / "nope.json")
        assert repo.list_rules("aws", "nat_gateway") == []

    def test_rates_file(self, tmp_path):
        path = tmp_path / "rates.json"
        path.write_text(json.dumps([
            {
                "resourceType": "nat_gateway",
                "componentName": "NAT Gateway Hourly",
                "pricingModel": "per_hour",
                "unitRate": "0.045",
                "effectiveFrom": "2024-01-01T00:00:00Z",
            }
        ]))
        rates = JsonRateRepository(path).list_rates("aws", "nat_gateway", "us-east-1")
        assert rates[0].unit_rate == Decimal("0.045")

    def test_missing_rates_file_is_unavailable(self, tmp_path):
        with pytest.raises(ReferenceDataUnavailableError):
            JsonRateRepository(tmp_path / "nope.json").list_rates("aws", "nat_gateway", None)

    @pytest.mark.parametrize(
        "content",
        ["{not json", '{"rates": {}}', '[{"resourceType": "nat_gateway"}]'],
    )
    def test_invalid_rates_file_is_unavailable(self, tmp_path, content):
        path = tmp_path / "rates.json"
        path.write_text(content)
        with pytest.raises(ReferenceDataUnavailableError):
            JsonRateRepository(path).list_rates("aws", "nat_gateway", None)


class ExplodingRateRepository(PricingRateRepository):
    def list_rates(self, provider, resource_type, region):
        raise ConnectionError("database is down")


class BlockingRateRepository(PricingRateRepository):
    def __init__(self):
        self.release = threading.Event()

    def list_rates(self, provider, resource_type, region):
        self.release.wait(timeout=5)
        return []


class TestReferenceSnapshot:
    def test_loads_rates_for_child_types(self):
        snapshot = ReferenceSnapshot.load(
            InMemoryRuleRepository(scenario_rules()),
            InMemoryRateRepository(scenario_rates()),
            provider="aws",
            pairs=[("nat_gateway", "us-east-1")],
            timeout=5,
            use_builtin_rates=False,
        )
        assert snapshot.rule_count == 1
        assert snapshot.rates.stored_rates("aws", "elastic_ip")
        assert not snapshot.rates.stored_rates("aws", "ec2_instance")

    def test_region_defaults_loaded_once(self):
        snapshot = ReferenceSnapshot.load(
            InMemoryRuleRepository(),
            InMemoryRateRepository([make_rate("s3_bucket", "0.023")]),
            provider="aws",
            pairs=[("s3_bucket", "us-east-1"), ("s3_bucket", "eu-west-1")],
            timeout=5,
        )
        assert len(snapshot.rates) == 1

    def test_repository_failure_is_unavailable(self):
        with pytest.raises(ReferenceDataUnavailableError) as exc:
            ReferenceSnapshot.load(
                InMemoryRuleRepository(),
                ExplodingRateRepository(),
                provider="aws",
                pairs=[("nat_gateway", "us-east-1")],
                timeout=5,
            )
        assert isinstance(exc.value.__cause__, ConnectionError)

    def test_timeout_is_unavailable(self):
        repo = BlockingRateRepository()
        try:
            with pytest.raises(ReferenceDataUnavailableError, match="within"):
                ReferenceSnapshot.load(
                    InMemoryRuleRepository(),
                    repo,
                    provider="aws",
                    pairs=[("nat_gateway", "us-east-1")],
                    timeout=0.05,
                )
        finally:
            repo.release.set()

    def test_degraded_mode(self):
        snapshot = ReferenceSnapshot.load(
            InMemoryRuleRepository(),
            ExplodingRateRepository(),
            provider="aws",
            pairs=[("nat_gateway", "us-east-1")],
            timeout=5,
            allow_degraded=True,
        )
        assert snapshot.degraded
        assert snapshot.diagnostics[0].code is DiagnosticCode.REFERENCE_DATA_UNAVAILABLE
        assert snapshot.rule_count == 0
