"""
Cross-step reference resolution

Step parameters may embed expressions pointing at earlier step results:

    ${step_0.result.id}
    ${step_2.result.items[0].facility_id}
    ${facility_0.uid}            (entity form, matched heuristically)

Expressions are parsed into a small path AST and evaluated against the
completed step results. Failed lookups never raise: the parameter receives a
name based fallback value and a warning is logged.
"""

import json
import re
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, FrozenSet, List, Optional, Sequence, Tuple, Union

from ..logging.config import get_logger
from ..models.execution import ExecutionStepResult, StepStatus
from .errors import ParameterResolutionWarning


EXPRESSION_PATTERN = re.compile(r"\$\{([^{}]*)\}")

PLACEHOLDER_ID = "PLACEHOLDER_ID"
PLACEHOLDER_NAME = "PLACEHOLDER_NAME"
PLACEHOLDER_EMAIL = "placeholder@example.com"


@dataclass(frozen=True)
class FieldAccess:
    """``.name`` accessor"""
    name: str


@dataclass(frozen=True)
class IndexAccess:
    """``[n]`` accessor"""
    index: int


PathSegment = Union[FieldAccess, IndexAccess]


@dataclass(frozen=True)
class StepReference:
    """``${step_N.result<path>}``"""
    step_index: int
    path: Tuple[PathSegment, ...] = ()


@dataclass(frozen=True)
class EntityReference:
    """``${entity_K.field}``"""
    entity_type: str
    ordinal: int
    field: str


Reference = Union[StepReference, EntityReference]


class ReferenceSyntaxError(ValueError):
    """Raised by the parser when an expression is not a recognised reference"""
    pass


class _ExpressionParser:
    """Recursive-descent parser for the body of a ``${...}`` expression

    Grammar::

        reference  := head accessor*
        head       := IDENT              (``step_N`` or ``entity_K``)
        accessor   := '.' IDENT | '[' INT ']'
    """

    _IDENT = re.compile(r"[A-Za-z_][A-Za-z0-9_]*")
    _INT = re.compile(r"\d+")
    _HEAD = re.compile(r"^(\w+?)_(\d+)$")

    def __init__(self, text: str):
        self.text = text.strip()
        self.pos = 0

    def parse(self) -> Reference:
        head = self._identifier()
        match = self._HEAD.match(head)
        if not match:
            raise ReferenceSyntaxError(f"Expected '<name>_<number>' at start of '{self.text}'")

        prefix, number = match.group(1), int(match.group(2))
        path = self._accessors()
        if self.pos != len(self.text):
            raise ReferenceSyntaxError(f"Unexpected '{self.text[self.pos:]}' in '{self.text}'")

        if prefix == "step":
            if not path or path[0] != FieldAccess("result"):
                raise ReferenceSyntaxError(f"Step reference must start with 'step_N.result': '{self.text}'")
            return StepReference(step_index=number, path=tuple(path[1:]))

        if len(path) != 1 or not isinstance(path[0], FieldAccess):
            raise ReferenceSyntaxError(f"Entity reference must have exactly one field: '{self.text}'")
        return EntityReference(entity_type=prefix, ordinal=number, field=path[0].name)

    def _accessors(self) -> List[PathSegment]:
        segments: List[PathSegment] = []
        while self.pos < len(self.text):
            char = self.text[self.pos]
            if char == ".":
                self.pos += 1
                segments.append(FieldAccess(self._identifier()))
            elif char == "[":
                self.pos += 1
                index = self._integer()
                self._expect("]")
                segments.append(IndexAccess(index))
            else:
                break
        return segments

    def _identifier(self) -> str:
        match = self._IDENT.match(self.text, self.pos)
        if not match:
            raise ReferenceSyntaxError(f"Expected identifier at position {self.pos} in '{self.text}'")
        self.pos = match.end()
        return match.group(0)

    def _integer(self) -> int:
        match = self._INT.match(self.text, self.pos)
        if not match:
            raise ReferenceSyntaxError(f"Expected array index at position {self.pos} in '{self.text}'")
        self.pos = match.end()
        return int(match.group(0))

    def _expect(self, char: str) -> None:
        if self.pos >= len(self.text) or self.text[self.pos] != char:
            raise ReferenceSyntaxError(f"Expected '{char}' at position {self.pos} in '{self.text}'")
        self.pos += 1


def parse_reference(expression: str) -> Reference:
    """
    Parse a single reference expression

    Args:
        expression: Either the full ``${...}`` text or just its body

    Returns:
        StepReference or EntityReference

    Raises:
        ReferenceSyntaxError: if the expression is not a recognised reference
    """
    body = expression.strip()
    if body.startswith("${") and body.endswith("}"):
        body = body[2:-1]
    return _ExpressionParser(body).parse()


class PathEvaluationError(LookupError):
    """Raised when a path cannot be navigated"""
    pass


def evaluate_path(value: Any, path: Sequence[PathSegment]) -> Any:
    """Walk a parsed path against a result tree"""
    current = value
    for segment in path:
        if isinstance(segment, IndexAccess):
            if not isinstance(current, list):
                raise PathEvaluationError(
                    f"expected array for [{segment.index}] but got {type(current).__name__}"
                )
            if segment.index >= len(current):
                raise PathEvaluationError(
                    f"array index {segment.index} out of bounds (length: {len(current)})"
                )
            current = current[segment.index]
        else:
            if not isinstance(current, dict):
                raise PathEvaluationError(
                    f"cannot access property '{segment.name}' of {type(current).__name__}"
                )
            if segment.name not in current:
                raise PathEvaluationError(f"property '{segment.name}' not found")
            current = current[segment.name]
    return current


class EntityKind(str, Enum):
    """Entity shapes recognised by the heuristic reference syntax"""
    FACILITY = "facility"
    SHIPMENT = "shipment"
    CLIENT = "client"
    CONTRACT = "contract"
    UNKNOWN = "unknown"

    @classmethod
    def from_name(cls, name: str) -> "EntityKind":
        try:
            return cls(name.lower())
        except ValueError:
            return cls.UNKNOWN


ID_FIELDS = ("_id", "id", "uid")

ENTITY_SIGNATURES: Dict[EntityKind, Tuple[str, ...]] = {
    EntityKind.FACILITY: ("name", "location", "type"),
    EntityKind.SHIPMENT: ("weight", "status", "facility_id"),
    EntityKind.CLIENT: ("name", "email", "contact"),
    EntityKind.CONTRACT: ("client_id", "start_date", "end_date"),
}


def classify_entity(obj: Any) -> FrozenSet[EntityKind]:
    """
    Return every entity kind an object looks like

    An object must carry an identifier (``_id``, ``id`` or ``uid``) to be an
    entity at all; it then matches each kind whose signature fields it has.
    Every identified object also matches ``UNKNOWN``.
    """
    if not isinstance(obj, dict):
        return frozenset()
    if not any(obj.get(field) for field in ID_FIELDS):
        return frozenset()

    kinds = {EntityKind.UNKNOWN}
    for kind, fields in ENTITY_SIGNATURES.items():
        if any(field in obj for field in fields):
            kinds.add(kind)
    return frozenset(kinds)


def result_contains_entity(result: Any, kind: EntityKind) -> bool:
    """Check an object, a list, or an ``items`` envelope for an entity of the given kind"""
    if isinstance(result, list):
        return any(kind in classify_entity(item) for item in result)
    if isinstance(result, dict):
        if kind in classify_entity(result):
            return True
        items = result.get("items")
        if isinstance(items, list):
            return any(kind in classify_entity(item) for item in items)
    return False


def fallback_value(param_name: str, now: Optional[Callable[[], datetime]] = None) -> Any:
    """Name based default used when a reference cannot be resolved"""
    if "_id" in param_name or param_name == "id":
        return PLACEHOLDER_ID
    if "page" in param_name:
        return 1
    if "limit" in param_name:
        return 10
    if "date" in param_name or "time" in param_name:
        return (now or datetime.utcnow)().isoformat()
    if "status" in param_name:
        return "active"
    if "name" in param_name:
        return PLACEHOLDER_NAME
    if "email" in param_name:
        return PLACEHOLDER_EMAIL
    if "weight" in param_name or "count" in param_name:
        return 0
    if param_name.startswith(("is_", "has_", "enable_")):
        return False
    return None


def _interpolate(value: Any) -> str:
    if isinstance(value, str):
        return value
    return json.dumps(value, ensure_ascii=False, default=str)


class _Unresolved(Exception):
    """Internal signal carrying the reason a reference did not resolve"""
    pass


class ReferenceResolver:
    """Substitutes ``${...}`` expressions in step parameters"""

    def __init__(self, now: Optional[Callable[[], datetime]] = None):
        self.now = now or datetime.utcnow
        self.logger = get_logger(__name__)

    def resolve_params(
        self,
        params: Any,
        step_results: Sequence[ExecutionStepResult],
        param_name: str = "unknown"
    ) -> Any:
        """
        Resolve every expression in a parameter tree

        Args:
            params: Parameter object, list or scalar
            step_results: Results of the current execution, indexed by step
            param_name: Name used for fallback selection of scalar values

        Returns:
            A new tree with expressions replaced; the input is not modified
        """
        if isinstance(params, dict):
            return {
                key: self.resolve_params(value, step_results, key)
                for key, value in params.items()
            }
        if isinstance(params, list):
            return [self.resolve_params(item, step_results, param_name) for item in params]
        if isinstance(params, str) and "${" in params:
            return self.resolve_expression(params, step_results, param_name)
        return params

    def resolve_expression(
        self,
        expression: str,
        step_results: Sequence[ExecutionStepResult],
        param_name: str = "unknown"
    ) -> Any:
        """
        Resolve a string containing one or more references

        A string that is exactly one reference resolves to the referenced
        value with its type preserved. References embedded in surrounding
        text are interpolated as strings.
        """
        matches = list(EXPRESSION_PATTERN.finditer(expression))
        if not matches:
            return expression

        try:
            references = [parse_reference(match.group(1)) for match in matches]
        except ReferenceSyntaxError as e:
            self.logger.warning(
                "Unrecognized reference pattern",
                param=param_name,
                expression=expression,
                reason=str(e),
                category=ParameterResolutionWarning.__name__
            )
            return expression

        try:
            if len(matches) == 1 and matches[0].group(0) == expression.strip():
                return self._lookup(references[0], step_results)

            pieces = []
            last = 0
            for match, reference in zip(matches, references):
                pieces.append(expression[last:match.start()])
                pieces.append(_interpolate(self._lookup(reference, step_results)))
                last = match.end()
            pieces.append(expression[last:])
            return "".join(pieces)
        except _Unresolved as e:
            fallback = fallback_value(param_name, self.now)
            self.logger.warning(
                "Reference resolution fell back to default",
                param=param_name,
                expression=expression,
                reason=str(e),
                fallback=fallback,
                category=ParameterResolutionWarning.__name__
            )
            return fallback

    def _lookup(self, reference: Reference, step_results: Sequence[ExecutionStepResult]) -> Any:
        if isinstance(reference, StepReference):
            return self._lookup_step(reference, step_results)
        return self._lookup_entity(reference, step_results)

    def _lookup_step(self, reference: StepReference, step_results: Sequence[ExecutionStepResult]) -> Any:
        index = reference.step_index
        if index >= len(step_results):
            raise _Unresolved(f"step {index} is not part of the plan")

        step_result = step_results[index]
        if step_result.status != StepStatus.COMPLETED or step_result.result is None:
            raise _Unresolved(f"step {index} has no completed result")

        try:
            value = evaluate_path(step_result.result, reference.path)
        except PathEvaluationError as e:
            raise _Unresolved(f"step {index}: {e}")
        if value is None:
            raise _Unresolved(f"step {index}: path resolved to null")
        return value

    def _lookup_entity(self, reference: EntityReference, step_results: Sequence[ExecutionStepResult]) -> Any:
        matching = self.find_steps_by_entity(reference.entity_type, step_results)
        if reference.ordinal >= len(matching):
            raise _Unresolved(
                f"entity {reference.entity_type}_{reference.ordinal} not found "
                f"({len(matching)} matching step(s))"
            )

        try:
            value = evaluate_path(matching[reference.ordinal].result, (FieldAccess(reference.field),))
        except PathEvaluationError as e:
            raise _Unresolved(f"entity {reference.entity_type}_{reference.ordinal}: {e}")
        if value is None:
            raise _Unresolved(f"entity {reference.entity_type}_{reference.ordinal}: field is null")
        return value

    def find_steps_by_entity(
        self,
        entity_type: str,
        step_results: Sequence[ExecutionStepResult]
    ) -> List[ExecutionStepResult]:
        """Completed steps whose tool name or result shape matches an entity type"""
        kind = EntityKind.from_name(entity_type)
        matching = []
        for step_result in step_results:
            if step_result.status != StepStatus.COMPLETED or step_result.result is None:
                continue
            if entity_type in step_result.tool or result_contains_entity(step_result.result, kind):
                matching.append(step_result)
        return matching
