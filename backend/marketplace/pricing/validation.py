"""
Validation of client answers against a service's Q&A attributes.
"""

from dataclasses import dataclass, field
from typing import Any, Iterable, List, Mapping, Optional, Sequence

from marketplace.pricing.attributes import ServiceAttribute, parse_attributes, response_map


@dataclass(frozen=True)
class ValidationResult:
    valid: bool
    errors: List[str] = field(default_factory=list)


def validate_attribute_responses(
    attributes: Sequence[Mapping[str, Any]],
    responses: Optional[Iterable[Mapping[str, Any]]],
) -> ValidationResult:
    """
    Validate client responses against attribute definitions.

    Checks, collecting every failure rather than stopping at the first:
    - each required attribute has a non-empty answer
    - each answered question exists on the service
    - each answer satisfies its attribute type (options, number range, ...)

    Returns:
        ValidationResult with human-readable error strings
    """
    parsed: List[ServiceAttribute] = parse_attributes(attributes)
    answers = response_map(responses)
    errors: List[str] = []

    known = {attr.question for attr in parsed}
    for question in answers:
        if question not in known:
            errors.append(f'Unknown question: "{question}"')

    for attr in parsed:
        answer = answers.get(attr.question)
        if attr.is_missing(answer):
            if attr.required:
                errors.append(f'"{attr.question}" is required')
            continue
        error = attr.validate(answer)
        if error:
            errors.append(error)

    return ValidationResult(valid=not errors, errors=errors)


def format_attribute_responses(responses: Optional[Iterable[Mapping[str, Any]]]) -> str:
    """Render responses as markdown-ish text for comments and notifications."""
    answers = response_map(responses)
    if not answers:
        return "No additional information provided"

    blocks = []
    for question, answer in answers.items():
        if isinstance(answer, (list, tuple)):
            answer = ", ".join(str(a) for a in answer)
        blocks.append(f"**{question}**\n{answer}")
    return "\n\n".join(blocks)
