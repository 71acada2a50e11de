"""
Result quality analysis for completed steps
Detects empty results and low quality payloads and explains them
"""

from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, Field

from ..logging.config import get_logger
from ..models.execution import ExecutionStepResult, StepStatus
from .validation import is_valid_date


# required fields per entity, used for quality and completeness scoring
ENTITY_FIELDS: Dict[str, Tuple[str, ...]] = {
    "facilit": ("name", "location"),
    "shipment": ("weight", "status"),
    "client": ("name", "email"),
    "contract": ("client_id", "start_date"),
}

TOOL_SUGGESTIONS: Dict[str, str] = {
    "facilit": "Try searching facilities by type or location",
    "shipment": "Try searching shipments by date range or status",
    "client": "Try searching clients by name or contact information",
    "contract": "Ensure client_id parameter is provided and valid",
}

REASON_SUGGESTIONS: Dict[str, List[str]] = {
    "invalid_filters": [
        "Try removing or relaxing filter parameters",
        "Check if date ranges are reasonable",
        "Verify location parameters match existing data",
    ],
    "wrong_parameters": [
        "Verify all required parameters are provided",
        "Check parameter formats (IDs, dates, etc.)",
        "Remove placeholder or invalid values",
    ],
    "no_data": [
        "Try a broader search without specific filters",
        "Check if the requested data exists in the system",
        "Consider using different search criteria",
    ],
}


class ResultAnalysis(BaseModel):
    """Outcome of analysing one step result"""
    has_data: bool = False
    is_empty: bool = True
    data_quality: str = Field(default="empty", description="excellent, good, poor or empty")
    data_count: int = 0
    quality_score: int = Field(default=0, description="0-100")
    reason: Optional[str] = None
    reason_type: Optional[str] = Field(None, description="invalid_filters, wrong_parameters or no_data")
    suggestions: List[str] = Field(default_factory=list)


def _entity_key(tool: str) -> Optional[str]:
    name = tool.lower()
    for key in ENTITY_FIELDS:
        if key in name:
            return key
    return None


def _extract_items(result: Any) -> Tuple[List[Any], bool]:
    """Records carried by a result and whether the result holds any data"""
    if result is None:
        return [], False
    if isinstance(result, list):
        return result, len(result) > 0
    if isinstance(result, dict):
        for key in ("items", "data"):
            if isinstance(result.get(key), list):
                return result[key], len(result[key]) > 0
        return [result], True
    return [result], True


class ResultAnalyzer:
    """Classifies stored step results; never changes step status"""

    def __init__(self):
        self.logger = get_logger(__name__)

    def analyze_step_result(self, step_result: ExecutionStepResult) -> ResultAnalysis:
        if step_result.status != StepStatus.COMPLETED:
            return ResultAnalysis(
                reason="Step execution failed",
                suggestions=["Check step parameters", "Verify tool availability", "Review error logs"]
            )

        items, has_data = _extract_items(step_result.result)
        quality = self._assess_quality(items, step_result.tool) if has_data else "empty"
        score = self._quality_score(items, step_result.tool) if has_data else 0

        reason_type, reason = (None, None)
        if not has_data:
            reason_type, reason = self._empty_reason(step_result.tool, step_result.params or {})

        suggestions = list(REASON_SUGGESTIONS.get(reason_type, [])) if reason_type else []
        entity = _entity_key(step_result.tool)
        if entity and not has_data:
            suggestions.append(TOOL_SUGGESTIONS[entity])

        return ResultAnalysis(
            has_data=has_data,
            is_empty=not has_data,
            data_quality=quality,
            data_count=len(items) if has_data else 0,
            quality_score=score,
            reason=reason,
            reason_type=reason_type,
            suggestions=suggestions
        )

    def log_analysis(self, execution_id: str, step_result: ExecutionStepResult, analysis: ResultAnalysis) -> None:
        if analysis.is_empty:
            self.logger.warning(
                "Step returned empty results",
                execution_id=execution_id,
                step_index=step_result.step_index,
                tool=step_result.tool,
                reason=analysis.reason,
                suggestions=analysis.suggestions
            )
        elif analysis.data_quality == "poor":
            self.logger.warning(
                "Step returned poor quality data",
                execution_id=execution_id,
                step_index=step_result.step_index,
                tool=step_result.tool,
                quality_score=analysis.quality_score
            )

    def _assess_quality(self, items: List[Any], tool: str) -> str:
        if not items:
            return "empty"

        has_nulls = any(item is None for item in items)
        has_empty = any(isinstance(item, dict) and not item for item in items)
        missing_ids = any(
            isinstance(item, dict) and not (item.get("_id") or item.get("id") or item.get("uid"))
            for item in items
        )

        entity = _entity_key(tool)
        entity_poor = False
        if entity:
            required = ENTITY_FIELDS[entity]
            entity_poor = not all(
                isinstance(item, dict) and all(item.get(field) not in (None, "") for field in required)
                for item in items
            )

        if has_nulls or has_empty or missing_ids or entity_poor:
            return "poor"
        if len(items) >= 10:
            return "excellent"
        return "good"

    def _quality_score(self, items: List[Any], tool: str) -> int:
        score = 50

        if len(items) >= 10:
            score += 20
        elif len(items) >= 5:
            score += 10
        elif len(items) >= 1:
            score += 5

        entity = _entity_key(tool)
        if entity:
            required = ENTITY_FIELDS[entity]
            ratio = sum(
                len([f for f in required if isinstance(item, dict) and item.get(f) not in (None, "")]) / len(required)
                for item in items
            ) / len(items)
            score += round(ratio * 20)
        else:
            score += 10

        score += self._consistency_score(items)
        return max(0, min(100, score))

    def _consistency_score(self, items: List[Any]) -> int:
        if len(items) <= 1:
            return 10
        records = [item for item in items if isinstance(item, dict)]
        fields = set()
        for record in records:
            fields.update(record.keys())
        if not fields:
            return 0
        consistency = sum(
            len([record for record in records if field in record]) / len(items)
            for field in fields
        ) / len(fields)
        return round(consistency * 10)

    def _empty_reason(self, tool: str, params: Dict[str, Any]) -> Tuple[str, str]:
        if self._has_restrictive_filters(params):
            return "invalid_filters", "Query filters are too restrictive"

        if self._has_invalid_parameters(params):
            return "wrong_parameters", "Query parameters are invalid or malformed"

        name = tool.lower()
        if "contract" in name and not params.get("client_id"):
            return "wrong_parameters", "Contract queries typically require a client_id parameter"
        if "shipment" in name and not params.get("facility_id"):
            return "wrong_parameters", "Shipment queries typically require a facility_id parameter"

        return "no_data", "No data matches the query criteria"

    def _has_restrictive_filters(self, params: Dict[str, Any]) -> bool:
        if "status" in params and params["status"] != "active":
            return True
        if params.get("limit") == 1:
            return True
        page = params.get("page")
        if isinstance(page, int) and page > 10:
            return True
        date_from = params.get("date_from")
        if isinstance(date_from, str) and is_valid_date(date_from):
            try:
                parsed = datetime.fromisoformat(date_from[:19])
            except ValueError:
                return False
            return parsed < datetime.utcnow() - timedelta(days=365)
        return False

    def _has_invalid_parameters(self, params: Dict[str, Any]) -> bool:
        for field in ("_id", "id", "facility_id", "client_id", "shipment_id"):
            value = params.get(field)
            if isinstance(value, str) and (len(value) < 3 or "PLACEHOLDER" in value):
                return True
        for field in ("date_from", "date_to", "start_date", "end_date"):
            value = params.get(field)
            if isinstance(value, str) and value and not is_valid_date(value):
                return True
        return False
