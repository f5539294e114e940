"""
Hidden-Dependency Resolver - synthesize the resources a node implies.

For each real resource node:
1. Fetch the rules whose parent is the node's resource type
2. Evaluate the rule's condition against the node config
3. Evaluate the quantity, falling back to the rule's default_quantity
4. Emit a VirtualResource parented to the node

Virtual resources are never walked again (one level of expansion).
Expression problems are recorded as diagnostics; the rule is skipped and
resolution carries on.
"""
from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from archcost.core.errors import ExpressionEvaluationError
from archcost.core.expressions import ABSENT, ExpressionEvaluator
from archcost.core.schema import (
    ConditionResult,
    DependencyRule,
    Diagnostic,
    DiagnosticCode,
    ResourceNode,
    ResourceType,
    VirtualResource,
)

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class Resolution:
    """Outcome of resolving one node."""

    node_id: str
    virtual_resources: tuple[VirtualResource, ...] = ()
    diagnostics: tuple[Diagnostic, ...] = ()
    skipped_rules: int = 0

    @property
    def degraded(self) -> bool:
        return self.skipped_rules > 0


class HiddenDependencyResolver:
    """
    Resolve hidden dependencies against a fixed rule table.

    The table maps a canonical parent type to its rules. The resolver holds
    no mutable state beyond the evaluator's parse cache, so one instance can
    serve every worker of a request.

    Example:
        resolver = HiddenDependencyResolver(rules_by_parent)
        resolution = resolver.resolve(node)
        for vr in resolution.virtual_resources:
            print(vr.id, vr.quantity)
    """

    def __init__(
        self,
        rules_by_parent: Mapping[str, Sequence[DependencyRule]],
        *,
        evaluator: Optional[ExpressionEvaluator] = None,
    ):
        self._rules = rules_by_parent
        self._evaluator = evaluator or ExpressionEvaluator()

    def rules_for(self, node: ResourceNode) -> Sequence[DependencyRule]:
        return self._rules.get(node.type_name, ())

    def resolve(self, node: ResourceNode) -> Resolution:
        virtual: list[VirtualResource] = []
        diagnostics: list[Diagnostic] = []
        skipped = 0
        seen_children: dict[str, int] = {}

        for rule in self.rules_for(node):
            try:
                quantity = self._quantity_if_firing(rule, node)
            except ExpressionEvaluationError as e:
                log.warning(
                    "Skipping %s -> %s rule for %s: %s",
                    rule.parent_resource_type, rule.child_resource_type, node.id, e,
                )
                diagnostics.append(
                    Diagnostic(
                        code=DiagnosticCode.EXPRESSION_ERROR,
                        message=str(e),
                        resource_id=node.id,
                        rule_child_type=rule.child_resource_type,
                    )
                )
                skipped += 1
                continue

            if quantity is None:
                continue
            if quantity is ABSENT:
                log.warning(
                    "No quantity for %s on %s and the rule has no default; skipping",
                    rule.child_resource_type, node.id,
                )
                diagnostics.append(
                    Diagnostic(
                        code=DiagnosticCode.MISSING_QUANTITY,
                        message=(
                            f"Quantity expression {rule.quantity_expression!r} "
                            f"for {rule.child_resource_type} could not be determined"
                        ),
                        resource_id=node.id,
                        rule_child_type=rule.child_resource_type,
                    )
                )
                skipped += 1
                continue

            count = seen_children.get(rule.child_resource_type, 0) + 1
            seen_children[rule.child_resource_type] = count
            virtual.append(self._synthesize(node, rule, quantity, count))

        if virtual:
            log.debug("Resolved %d hidden dependencies for %s", len(virtual), node.id)
        return Resolution(
            node_id=node.id,
            virtual_resources=tuple(virtual),
            diagnostics=tuple(diagnostics),
            skipped_rules=skipped,
        )

    def _quantity_if_firing(self, rule: DependencyRule, node: ResourceNode):
        """None when the rule does not fire, ABSENT when it fires without a quantity."""
        condition = self._evaluator.evaluate_condition(rule.condition_expression, node.config)
        if condition is not ConditionResult.TRUE:
            if condition is ConditionResult.ABSENT:
                log.debug(
                    "Condition %r for %s on %s references a missing field",
                    rule.condition_expression, rule.child_resource_type, node.id,
                )
            return None

        quantity = self._evaluator.evaluate_quantity(rule.quantity_expression, node.config)
        if quantity is ABSENT and rule.default_quantity is not None:
            return rule.default_quantity
        return quantity

    @staticmethod
    def _synthesize(
        node: ResourceNode, rule: DependencyRule, quantity: Decimal, count: int
    ) -> VirtualResource:
        suffix = f"-{count}" if count > 1 else ""
        return VirtualResource(
            id=f"{node.id}-hidden-{rule.child_resource_type}{suffix}",
            name=f"{node.name}-{rule.child_resource_type}{suffix}",
            resource_type=ResourceType.resolve(rule.child_resource_type),
            quantity=quantity,
            is_attached=rule.is_attached,
            parent_id=node.id,
            region=node.region,
            rule=rule,
        )
