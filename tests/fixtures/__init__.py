"""Test fixtures for archcost."""

from tests.fixtures.diagrams import (
    AS_OF,
    MONTH,
    RATES_FROM,
    ec2_diagram,
    make_diagram,
    make_node,
    make_rate,
    make_region,
    make_rule,
    make_vpc,
    nat_gateway_diagram,
    scenario_rates,
    scenario_rules,
)

__all__ = [
    "AS_OF",
    "MONTH",
    "RATES_FROM",
    "ec2_diagram",
    "make_diagram",
    "make_node",
    "make_rate",
    "make_region",
    "make_rule",
    "make_vpc",
    "nat_gateway_diagram",
    "scenario_rates",
    "scenario_rules",
]
