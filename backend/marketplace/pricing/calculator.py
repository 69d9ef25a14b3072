"""
Request cost calculation.

    total = base + attribute surcharge + priority surcharge

Pure and deterministic. Called once when a request is created; the
breakdown is frozen on the request row and never recomputed, so later
edits to service pricing don't change what existing requests cost.
"""

from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Optional

from marketplace.config.settings import DEFAULT_PRIORITY_COSTS
from marketplace.pricing.attributes import parse_attributes, response_map

PRIORITY_TIERS: Dict[int, str] = {1: "low", 2: "medium", 3: "high"}
DEFAULT_PRIORITY_TIER = "medium"


@dataclass(frozen=True)
class CostBreakdown:
    base: int
    attribute_surcharge: int
    priority_surcharge: int

    @property
    def total(self) -> int:
        return self.base + self.attribute_surcharge + self.priority_surcharge

    def to_dict(self) -> Dict[str, int]:
        return {
            "base": self.base,
            "attribute_surcharge": self.attribute_surcharge,
            "priority_surcharge": self.priority_surcharge,
            "total": self.total,
        }


@dataclass(frozen=True)
class AttributeCostLine:
    question: str
    answer: Any
    cost: int


def base_cost(service_type) -> int:
    """Base credit cost; rows without one cost 1."""
    cost = getattr(service_type, "credit_cost", None)
    if not cost or cost < 1:
        return 1
    return int(cost)


def priority_surcharge(service_type, priority: Optional[int]) -> int:
    """Look up the tier for priority 1/2/3; anything else uses medium."""
    tier = PRIORITY_TIERS.get(priority, DEFAULT_PRIORITY_TIER)
    value = getattr(service_type, f"priority_cost_{tier}", None)
    if value is None:
        value = DEFAULT_PRIORITY_COSTS[tier]
    return max(0, int(value))


def attribute_credit_breakdown(
    attributes: Optional[Iterable[Mapping[str, Any]]],
    responses: Optional[Iterable[Mapping[str, Any]]],
) -> List[AttributeCostLine]:
    """Per-question surcharge lines, omitting zero-cost answers."""
    answers = response_map(responses)
    lines: List[AttributeCostLine] = []
    for attr in parse_attributes(attributes):
        if attr.question not in answers:
            continue
        answer = answers[attr.question]
        if attr.is_missing(answer):
            continue
        cost = attr.surcharge(answer)
        if cost > 0:
            lines.append(AttributeCostLine(question=attr.question, answer=answer, cost=cost))
    return lines


def calculate_attribute_credits(
    attributes: Optional[Iterable[Mapping[str, Any]]],
    responses: Optional[Iterable[Mapping[str, Any]]],
) -> int:
    return sum(line.cost for line in attribute_credit_breakdown(attributes, responses))


def calculate_cost(
    service_type,
    attribute_responses: Optional[Iterable[Mapping[str, Any]]],
    priority: Optional[int],
) -> CostBreakdown:
    """
    Compute the credit cost of a new request.

    Args:
        service_type: ServiceType (or any object with the same pricing attributes)
        attribute_responses: [{"question": ..., "answer": ...}, ...]
        priority: 1 (low), 2 (medium), 3 (high)

    Returns:
        CostBreakdown whose total is always >= 1
    """
    definitions = getattr(service_type, "attributes", None) or []
    return CostBreakdown(
        base=base_cost(service_type),
        attribute_surcharge=calculate_attribute_credits(definitions, attribute_responses),
        priority_surcharge=priority_surcharge(service_type, priority),
    )
