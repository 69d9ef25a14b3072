"""
Request pricing: attribute definitions, answer validation and cost calculation.
"""

from marketplace.pricing.attributes import (
    AttributeOption,
    TextAttribute,
    SingleChoiceAttribute,
    MultiChoiceAttribute,
    NumberAttribute,
    ServiceAttribute,
    parse_attribute,
    parse_attributes,
)
from marketplace.pricing.calculator import (
    AttributeCostLine,
    CostBreakdown,
    attribute_credit_breakdown,
    calculate_attribute_credits,
    calculate_cost,
    priority_surcharge,
)
from marketplace.pricing.validation import (
    ValidationResult,
    format_attribute_responses,
    validate_attribute_responses,
)

__all__ = [
    "AttributeOption",
    "TextAttribute",
    "SingleChoiceAttribute",
    "MultiChoiceAttribute",
    "NumberAttribute",
    "ServiceAttribute",
    "parse_attribute",
    "parse_attributes",
    "AttributeCostLine",
    "CostBreakdown",
    "attribute_credit_breakdown",
    "calculate_attribute_credits",
    "calculate_cost",
    "priority_surcharge",
    "ValidationResult",
    "format_attribute_responses",
    "validate_attribute_responses",
]
