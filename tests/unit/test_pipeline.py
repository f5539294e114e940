"""
Tests for the estimation pipeline: fan-out, cancellation, degraded modes.
"""
from __future__ import annotations

import threading
from datetime import timedelta
from decimal import Decimal

import pytest

from archcost.core.config import EngineConfig
from archcost.core.errors import (
    EstimationCancelledError,
    MalformedGraphError,
    ReferenceDataUnavailableError,
)
from archcost.core.pipeline import CancelToken, EstimationPipeline, parse_period
from archcost.core.schema import CostStatus, DiagnosticCode
from archcost.repository import (
    InMemoryRateRepository,
    InMemoryRuleRepository,
    PricingRateRepository,
)

from tests.fixtures import (
    AS_OF,
    MONTH,
    ec2_diagram,
    make_diagram,
    make_node,
    make_region,
    nat_gateway_diagram,
    scenario_rates,
    scenario_rules,
)


def make_pipeline(rates=None, rules=None, **config):
    config.setdefault("use_builtin_rates", False)
    return EstimationPipeline(
        rule_repository=InMemoryRuleRepository(scenario_rules() if rules is None else rules),
        rate_repository=InMemoryRateRepository(scenario_rates() if rates is None else rates),
        config=EngineConfig(**config),
    )


class FailingRateRepository(PricingRateRepository):
    def list_rates(self, provider, resource_type, region):
        raise RuntimeError("boom")


class TestParsePeriod:
    @pytest.mark.parametrize(
        "text,hours",
        [("720h", 720), ("720", 720), ("30d", 720), ("1m", 720), ("1.5h", 1.5), (" 2D ", 48)],
    )
    def test_valid(self, text, hours):
        assert parse_period(text) == timedelta(hours=hours)

    @pytest.mark.parametrize("text", ["", "h", "-5h", "0h", "3w", "ten hours", "30000000000h"])
    def test_invalid(self, text):
        with pytest.raises(ValueError):
            parse_period(text)


class TestPipeline:
    def test_estimate_from_json_text(self):
        import json

        result = make_pipeline().estimate(json.dumps(nat_gateway_diagram()), period=MONTH, as_of=AS_OF)
        assert result.total_cost == Decimal("36.00")
        assert result.complete
        assert result.region == "us-east-1"
        assert result.provider == "aws"

    def test_containers_are_not_priced(self):
        result = make_pipeline().estimate(ec2_diagram(), as_of=AS_OF)
        assert [e.resource_id for e in result.resource_estimates] == ["web-1"]

    def test_results_in_containment_order(self):
        document = make_diagram(
            make_region(),
            make_node("b-nat", "nat_gateway", parent_id="region-1"),
            make_node("a-web", "ec2", parent_id="region-1"),
            make_node("c-nat", "nat_gateway", parent_id="region-1"),
        )
        result = make_pipeline(max_workers=4).estimate(document, as_of=AS_OF)
        assert [e.resource_id for e in result.resource_estimates] == ["b-nat", "a-web", "c-nat"]

    def test_malformed_graph_fails_before_reference_load(self):
        pipeline = EstimationPipeline(
            rule_repository=InMemoryRuleRepository(),
            rate_repository=FailingRateRepository(),
        )
        document = make_diagram(make_node("web-1", "ec2", parent_id="ghost"))
        with pytest.raises(MalformedGraphError):
            pipeline.estimate(document, as_of=AS_OF)

    def test_reference_failure_is_fatal_by_default(self):
        pipeline = EstimationPipeline(
            rule_repository=InMemoryRuleRepository(),
            rate_repository=FailingRateRepository(),
        )
        with pytest.raises(ReferenceDataUnavailableError):
            pipeline.estimate(nat_gateway_diagram(), as_of=AS_OF)

    def test_degraded_mode_prices_what_it_can(self):
        pipeline = EstimationPipeline(
            rule_repository=InMemoryRuleRepository(),
            rate_repository=FailingRateRepository(),
            config=EngineConfig(allow_degraded=True, use_builtin_rates=False),
        )
        result = pipeline.estimate(nat_gateway_diagram(), as_of=AS_OF)
        assert result.resource_estimates[0].status is CostStatus.UNKNOWN
        codes = [d.code for d in result.diagnostics]
        assert codes[0] is DiagnosticCode.REFERENCE_DATA_UNAVAILABLE
        assert DiagnosticCode.RATE_NOT_FOUND in codes

    def test_builtin_rates_used_without_repository(self):
        pipeline = EstimationPipeline()
        result = pipeline.estimate(nat_gateway_diagram(), as_of=AS_OF)
        estimate = result.resource_estimates[0]
        assert estimate.status is CostStatus.COMPLETE
        assert estimate.total_cost == Decimal("36.00")

    def test_region_override(self):
        document = make_diagram(make_node("s3-1", "s3", config={"size_gb": 100}))
        result = make_pipeline(rates=[]).estimate(document, region="eu-central-1", as_of=AS_OF)
        assert result.region == "eu-central-1"
        assert result.resource_estimates[0].region == "eu-central-1"

    def test_non_positive_period_rejected(self):
        with pytest.raises(ValueError):
            make_pipeline().estimate(nat_gateway_diagram(), period=timedelta(0), as_of=AS_OF)

    def test_out_of_range_quantity_does_not_abort_siblings(self):
        document = make_diagram(
            make_region(),
            make_node("nat-1", "nat_gateway", parent_id="region-1"),
            make_node("web-1", "ec2", parent_id="region-1", config={"size_gb": 10**24}),
        )
        result = make_pipeline().estimate(document, period=MONTH, as_of=AS_OF)
        assert result.estimate_for("nat-1").total_cost == Decimal("36.00")
        web = result.estimate_for("web-1")
        assert web.status is CostStatus.PARTIAL
        assert web.total_cost == Decimal("7.488")
        assert result.total_cost == Decimal("43.488")
        assert any(d.code is DiagnosticCode.PRICING_ERROR for d in result.diagnostics)

    def test_worker_failure_marks_only_that_resource_unknown(self, monkeypatch):
        from archcost.core import aggregator as aggregator_module

        original = aggregator_module.CostAggregator.price_resource

        def flaky_price(self, node, resolution=None):
            if node.id == "web-1":
                raise RuntimeError("corrupt rate row")
            return original(self, node, resolution)

        monkeypatch.setattr(aggregator_module.CostAggregator, "price_resource", flaky_price)
        document = make_diagram(
            make_region(),
            make_node("nat-1", "nat_gateway", parent_id="region-1"),
            make_node("web-1", "ec2", parent_id="region-1"),
        )
        result = make_pipeline().estimate(document, period=MONTH, as_of=AS_OF)
        assert result.complete
        assert result.estimate_for("nat-1").status is CostStatus.COMPLETE
        assert result.estimate_for("web-1").status is CostStatus.UNKNOWN
        errors = [d for d in result.diagnostics if d.code is DiagnosticCode.PRICING_ERROR]
        assert errors[0].resource_id == "web-1"
        assert "corrupt rate row" in errors[0].message

    def test_empty_diagram(self):
        result = make_pipeline().estimate({"nodes": []}, as_of=AS_OF)
        assert result.resource_estimates == ()
        assert result.total_cost == Decimal("0")
        assert result.complete


class TestCancellation:
    def test_pre_cancelled_token_yields_partial_result(self):
        token = CancelToken()
        token.cancel()
        result = make_pipeline().estimate(nat_gateway_diagram(), as_of=AS_OF, cancel_token=token)
        assert not result.complete
        estimate = result.resource_estimates[0]
        assert estimate.status is CostStatus.UNKNOWN
        assert any(d.code is DiagnosticCode.CANCELLED for d in result.diagnostics)

    def test_strict_mode_raises(self):
        token = CancelToken()
        token.cancel()
        pipeline = make_pipeline(partial_on_timeout=False)
        with pytest.raises(EstimationCancelledError):
            pipeline.estimate(nat_gateway_diagram(), as_of=AS_OF, cancel_token=token)

    def test_request_deadline(self, monkeypatch):
        gate = threading.Event()
        pipeline = make_pipeline(request_timeout_seconds=0.05, max_workers=1)

        from archcost.core import aggregator as aggregator_module

        original = aggregator_module.CostAggregator.price_resource

        def slow_price(self, node, resolution=None):
            gate.wait(timeout=2)
            return original(self, node, resolution)

        monkeypatch.setattr(aggregator_module.CostAggregator, "price_resource", slow_price)
        try:
            result = pipeline.estimate(nat_gateway_diagram(), as_of=AS_OF)
        finally:
            gate.set()
        assert not result.complete
        assert result.resource_estimates[0].status is CostStatus.UNKNOWN
        assert result.total_cost == Decimal("0")
