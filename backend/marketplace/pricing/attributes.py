"""
Service attribute definitions as a tagged variant.

Service types store their Q&A attributes as JSON. parse_attribute() turns
each definition into one of:

    TextAttribute          free text / textarea, never priced
    SingleChoiceAttribute  "select": one option, optional per-option cost
    MultiChoiceAttribute   "multiselect": any subset, per-option costs summed
    NumberAttribute        numeric answer, priced per unit above an included quantity

Each variant validates and prices its own answers. Pricing never raises:
anything it cannot interpret contributes 0.
"""

import logging
import math
import re
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

logger = logging.getLogger(__name__)

Answer = Union[str, int, float, Sequence[str], None]

TEXT_TYPES = ("text", "textarea")

# Leading decimal number of a string ("2 segments" -> 2, "1.5x" -> 1.5)
_LEADING_NUMBER = re.compile(r"\s*([+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?)")


def _field(definition: Mapping[str, Any], snake: str, camel: str, default: Any = None) -> Any:
    """Read a definition key, accepting the legacy camelCase spelling."""
    if snake in definition:
        return definition[snake]
    return definition.get(camel, default)


def _to_number(value: Any) -> Optional[float]:
    """
    Numeric value of an answer or definition field.

    Strings are read up to the first non-numeric character. Non-finite
    results (overflowing exponents, "inf", "nan") count as not a number.
    """
    if isinstance(value, bool):
        return None
    try:
        if isinstance(value, (int, float)):
            number = float(value)
        elif isinstance(value, str):
            match = _LEADING_NUMBER.match(value)
            if match is None:
                return None
            number = float(match.group(1))
        else:
            return None
    except OverflowError:
        return None
    if not math.isfinite(number):
        return None
    return number


def _credits(value: float) -> int:
    """Round a surcharge up to whole credits; negatives and non-finite values count as 0."""
    if not math.isfinite(value) or value <= 0:
        return 0
    return int(math.ceil(value))


def _excess(value: float, included_quantity: Optional[float]) -> float:
    if included_quantity is None:
        return value
    return max(0.0, value - included_quantity)


@dataclass(frozen=True)
class AttributeOption:
    value: str
    credit_cost: int = 0


@dataclass(frozen=True)
class BaseAttribute:
    question: str
    required: bool = False

    kind = "base"

    def is_missing(self, answer: Answer) -> bool:
        if answer is None:
            return True
        if isinstance(answer, str) and answer == "":
            return True
        if isinstance(answer, (list, tuple)) and len(answer) == 0:
            return True
        return False

    def validate(self, answer: Answer) -> Optional[str]:
        return None

    def surcharge(self, answer: Answer) -> int:
        return 0


@dataclass(frozen=True)
class TextAttribute(BaseAttribute):
    multiline: bool = False

    kind = "text"

    def validate(self, answer: Answer) -> Optional[str]:
        if not isinstance(answer, str):
            return f'"{self.question}" must be a string'
        if answer.strip() == "":
            return f'"{self.question}" cannot be empty'
        return None


@dataclass(frozen=True)
class SingleChoiceAttribute(BaseAttribute):
    options: Tuple[AttributeOption, ...] = ()
    credit_impact: int = 0
    included_quantity: Optional[float] = None

    kind = "select"

    @property
    def option_values(self) -> List[str]:
        return [o.value for o in self.options]

    def validate(self, answer: Answer) -> Optional[str]:
        if not self.options:
            return None
        if not isinstance(answer, str) or answer not in self.option_values:
            return f'"{self.question}" must be one of: {", ".join(self.option_values)}'
        return None

    def surcharge(self, answer: Answer) -> int:
        if not isinstance(answer, str):
            return 0
        for option in self.options:
            if option.value == answer and option.credit_cost:
                return _credits(option.credit_cost)
        # Legacy rule: numeric option value above the included quantity x credit_impact
        # ("2 segments" x 5)
        if self.credit_impact:
            number = _to_number(answer)
            if number is not None:
                return _credits(_excess(number, self.included_quantity) * self.credit_impact)
        return 0


@dataclass(frozen=True)
class MultiChoiceAttribute(BaseAttribute):
    options: Tuple[AttributeOption, ...] = ()

    kind = "multiselect"

    @property
    def option_values(self) -> List[str]:
        return [o.value for o in self.options]

    def validate(self, answer: Answer) -> Optional[str]:
        if not isinstance(answer, (list, tuple)):
            return f'"{self.question}" must be an array'
        if self.options:
            invalid = [str(a) for a in answer if a not in self.option_values]
            if invalid:
                return f'"{self.question}" contains invalid options: {", ".join(invalid)}'
        return None

    def surcharge(self, answer: Answer) -> int:
        if not isinstance(answer, (list, tuple)):
            return 0
        costs = {o.value: o.credit_cost for o in self.options}
        # A repeated selection is charged once
        return sum(_credits(costs.get(value, 0)) for value in dict.fromkeys(answer))


@dataclass(frozen=True)
class NumberAttribute(BaseAttribute):
    min: Optional[float] = None
    max: Optional[float] = None
    credit_impact: int = 0
    included_quantity: Optional[float] = None

    kind = "number"

    def validate(self, answer: Answer) -> Optional[str]:
        if isinstance(answer, (list, tuple)) or isinstance(answer, bool):
            return f'"{self.question}" must be a number'
        value = _to_number(answer)
        if value is None:
            return f'"{self.question}" must be a valid number'
        if self.min is not None and value < self.min:
            return f'"{self.question}" must be at least {self.min:g}'
        if self.max is not None and value > self.max:
            return f'"{self.question}" must be at most {self.max:g}'
        return None

    def surcharge(self, answer: Answer) -> int:
        if not self.credit_impact:
            return 0
        value = _to_number(answer)
        if value is None:
            return 0
        return _credits(_excess(value, self.included_quantity) * self.credit_impact)


ServiceAttribute = Union[TextAttribute, SingleChoiceAttribute, MultiChoiceAttribute, NumberAttribute]


def _parse_options(definition: Mapping[str, Any]) -> Tuple[AttributeOption, ...]:
    priced = _field(definition, "options_with_cost", "optionsWithCost") or []
    costs: Dict[str, int] = {}
    ordered: List[str] = []
    for item in priced:
        if not isinstance(item, Mapping) or "value" not in item:
            continue
        value = str(item["value"])
        costs[value] = int(_field(item, "credit_cost", "creditCost", 0) or 0)
        ordered.append(value)
    for value in definition.get("options") or []:
        value = str(value)
        if value not in costs:
            ordered.append(value)
    return tuple(AttributeOption(value=v, credit_cost=costs.get(v, 0)) for v in dict.fromkeys(ordered))


def parse_attribute(definition: Mapping[str, Any]) -> ServiceAttribute:
    """
    Build a typed attribute from its stored JSON definition.

    Raises:
        ValueError: missing question or unknown type
    """
    question = definition.get("question")
    if not question or not isinstance(question, str):
        raise ValueError("Attribute definition requires a question")

    attr_type = (definition.get("type") or "text").lower()
    required = bool(definition.get("required", False))

    if attr_type in TEXT_TYPES:
        return TextAttribute(question=question, required=required, multiline=attr_type == "textarea")
    if attr_type == "select":
        return SingleChoiceAttribute(
            question=question,
            required=required,
            options=_parse_options(definition),
            credit_impact=int(_field(definition, "credit_impact", "creditImpact", 0) or 0),
            included_quantity=_to_number(_field(definition, "included_quantity", "includedQuantity")),
        )
    if attr_type == "multiselect":
        return MultiChoiceAttribute(
            question=question,
            required=required,
            options=_parse_options(definition),
        )
    if attr_type == "number":
        return NumberAttribute(
            question=question,
            required=required,
            min=_to_number(definition.get("min")),
            max=_to_number(definition.get("max")),
            credit_impact=int(_field(definition, "credit_impact", "creditImpact", 0) or 0),
            included_quantity=_to_number(_field(definition, "included_quantity", "includedQuantity")),
        )
    raise ValueError(f"Unknown attribute type: {attr_type}")


def parse_attributes(definitions: Optional[Iterable[Mapping[str, Any]]]) -> List[ServiceAttribute]:
    """Parse every definition, skipping (and logging) malformed ones."""
    parsed: List[ServiceAttribute] = []
    for definition in definitions or []:
        try:
            parsed.append(parse_attribute(definition))
        except (ValueError, TypeError) as e:
            logger.warning("Skipping malformed service attribute", extra={"error": str(e)})
    return parsed


def response_map(responses: Optional[Iterable[Mapping[str, Any]]]) -> Dict[str, Answer]:
    """question -> answer. Later duplicates win."""
    answers: Dict[str, Answer] = {}
    for response in responses or []:
        if not isinstance(response, Mapping):
            continue
        question = response.get("question")
        if isinstance(question, str):
            answers[question] = response.get("answer")
    return answers
