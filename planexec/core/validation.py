"""
Parameter validation run between reference resolution and tool invocation
"""

import re
from datetime import datetime
from typing import Any, Dict, List, Tuple

from ..logging.config import get_logger
from .references import EXPRESSION_PATTERN


OBJECT_ID_PATTERN = re.compile(r"^[0-9a-fA-F]{24}$")
UUID_PATTERN = re.compile(r"^[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}$")
TOKEN_ID_PATTERN = re.compile(r"^[a-zA-Z0-9_-]+$")
DATE_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")
DATETIME_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}")
EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
CANONICAL_REFERENCE_PATTERN = re.compile(r"^\$\{step_\d+\.result")
ENTITY_REFERENCE_PATTERN = re.compile(r"^\$\{(\w+?)_(\d+)\.(\w+)\}$")

SUGGESTION_ENTITIES = ("facility", "shipment", "client", "contract")


def is_id_param(name: str) -> bool:
    return "_id" in name or name == "id"


def is_valid_id(value: str) -> bool:
    """24-hex object id, UUID or a plain alphanumeric/dash token"""
    return bool(
        OBJECT_ID_PATTERN.match(value)
        or UUID_PATTERN.match(value)
        or TOKEN_ID_PATTERN.match(value)
    )


def is_valid_date(value: str) -> bool:
    """ISO 8601 date or datetime that also parses"""
    if DATE_PATTERN.match(value):
        try:
            datetime.strptime(value, "%Y-%m-%d")
            return True
        except ValueError:
            return False

    if DATETIME_PATTERN.match(value):
        try:
            datetime.strptime(value[:19], "%Y-%m-%dT%H:%M:%S")
            return True
        except ValueError:
            return False

    return False


def is_valid_email(value: str) -> bool:
    return bool(EMAIL_PATTERN.match(value))


def suggest_step_reference(expression: str, entity_type: str) -> str:
    """Suggest the canonical form for an entity style reference"""
    match = ENTITY_REFERENCE_PATTERN.match(expression)
    if match:
        return "${step_%s.result.%s}" % (match.group(2), match.group(3))
    return "${step_0.result.%s_id}" % entity_type


def find_unresolved_references(value: Any) -> List[str]:
    """Collect ``${...}`` expressions that are not in the canonical step form"""
    found: List[str] = []
    if isinstance(value, dict):
        for item in value.values():
            found.extend(find_unresolved_references(item))
    elif isinstance(value, list):
        for item in value:
            found.extend(find_unresolved_references(item))
    elif isinstance(value, str):
        for match in EXPRESSION_PATTERN.finditer(value):
            if not CANONICAL_REFERENCE_PATTERN.match(match.group(0)):
                found.append(match.group(0))
    return found


def _contains_placeholder_text(value: Any) -> bool:
    if isinstance(value, dict):
        return any(_contains_placeholder_text(item) for item in value.values())
    if isinstance(value, list):
        return any(_contains_placeholder_text(item) for item in value)
    if isinstance(value, str):
        return "ObjectId of" in value or "placeholder" in value
    return False


class ParameterValidator:
    """Rejects resolved parameters that cannot be sent to a tool"""

    def __init__(self):
        self.logger = get_logger(__name__)

    def validate(self, tool: str, params: Any) -> Tuple[bool, List[str]]:
        """
        Validate resolved step parameters

        Args:
            tool: Tool the parameters are destined for
            params: Resolved parameter object

        Returns:
            Tuple of (is_valid, error messages)
        """
        errors: List[str] = []

        if not isinstance(params, dict):
            return False, ["Parameters must be an object"]

        for key, value in params.items():
            errors.extend(self.validate_parameter(key, value))

        unresolved = find_unresolved_references(params)
        if unresolved:
            errors.append(f"Unresolved variable references found: {', '.join(unresolved)}")
            for expression in unresolved:
                for entity_type in SUGGESTION_ENTITIES:
                    if f"{entity_type}_" in expression:
                        errors.append(
                            f"  -> Found '{expression}' - should be "
                            f"'{suggest_step_reference(expression, entity_type)}'"
                        )
                        break

        if _contains_placeholder_text(params):
            errors.append("Placeholder text found in parameters")

        for key, value in params.items():
            if value == "null":
                errors.append(f'Parameter "{key}" has string "null" instead of null value')

        if errors:
            self.logger.warning("Parameter validation failed", tool=tool, errors=errors)

        return len(errors) == 0, errors

    def validate_parameter(self, name: str, value: Any) -> List[str]:
        """Checks that depend on the parameter name"""
        errors: List[str] = []

        if value is None:
            if is_id_param(name):
                errors.append(f"Required parameter '{name}' is null or undefined")
            return errors

        if isinstance(value, str):
            if "PLACEHOLDER" in value or "placeholder" in value:
                errors.append(f"Parameter '{name}' contains placeholder value: {value}")

            if is_id_param(name) and not is_valid_id(value):
                errors.append(f"Parameter '{name}' has invalid ID format: {value}")

            if ("date" in name or "time" in name) and not is_valid_date(value):
                errors.append(f"Parameter '{name}' has invalid date format: {value}")

            if "email" in name and not is_valid_email(value):
                errors.append(f"Parameter '{name}' has invalid email format: {value}")

        # bool is an int subclass but never negative
        if isinstance(value, (int, float)) and not isinstance(value, bool) and value < 0:
            if "page" in name or "limit" in name or "count" in name:
                errors.append(f"Parameter '{name}' cannot be negative: {value}")

        return errors


def validate_params(tool: str, params: Dict[str, Any]) -> Tuple[bool, List[str]]:
    """Module level shortcut for one-off validation"""
    return ParameterValidator().validate(tool, params)
