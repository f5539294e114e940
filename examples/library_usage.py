import json
from datetime import timedelta
from decimal import Decimal

# Example: Programmatic usage of archcost
#
# Prices a small diagram in process, with a custom rate table and the
# built-in hidden-dependency rules.

from archcost.core.config import EngineConfig
from archcost.core.pipeline import EstimationPipeline
from archcost.core.schema import PricingModel, PricingRate
from archcost.repository import BuiltinRuleRepository, InMemoryRateRepository


DIAGRAM = {
    "nodes": [
        {"id": "region", "type": "containerNode",
         "data": {"resourceType": "region", "config": {"name": "us-east-1"}}},
        {"id": "vpc", "type": "containerNode", "parentId": "region",
         "data": {"resourceType": "vpc", "config": {}}},
        {"id": "nat", "type": "resourceNode", "parentId": "vpc",
         "data": {"label": "Egress NAT", "resourceType": "nat-gateway", "config": {}}},
        {"id": "web", "type": "resourceNode", "parentId": "vpc",
         "data": {"label": "Web", "resourceType": "ec2",
                  "config": {"instance_type": "t3.small", "size_gb": 30}}},
    ],
    "edges": [{"id": "e1", "source": "web", "target": "nat"}],
}


def main():
    print("archcost Library Usage Example")
    print("==============================")

    # A negotiated NAT price overrides the built-in table for that type only
    rates = InMemoryRateRepository([
        PricingRate(
            resource_type="nat_gateway",
            component_name="NAT Gateway Hourly",
            pricing_model=PricingModel.PER_HOUR,
            unit_rate=Decimal("0.040"),
            effective_from="2024-01-01T00:00:00Z",
        ),
    ])
    pipeline = EstimationPipeline(
        rule_repository=BuiltinRuleRepository(),
        rate_repository=rates,
        config=EngineConfig(region="us-east-1"),
    )
    estimate = pipeline.estimate(DIAGRAM, period=timedelta(days=30))

    for resource in estimate.resource_estimates:
        print(f"\n[*] {resource.resource_name} ({resource.resource_type}) - {resource.status.value}")
        for component in resource.breakdown:
            marker = "hidden" if component.is_hidden else "base"
            print(f"    - [{marker}] {component.name}: ${component.subtotal}")

    print(f"\n[+] Total: ${estimate.total_cost} (hidden: ${estimate.hidden_cost()})")
    print(json.dumps(estimate.to_dict()["diagnostics"], indent=2))


if __name__ == "__main__":
    main()
