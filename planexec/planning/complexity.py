"""
Query complexity analysis and execution strategy selection
Scores a natural-language query plus its tool selection and maps the score
onto one of the simple / parallel / batched / complex scheduling policies
"""

import re
from typing import Iterable, List, Optional, Set, Tuple

from ..logging.config import get_logger
from ..models.complexity import (
    ExecutionStrategy,
    OpportunityType,
    ParallelizationOpportunity,
    QueryComplexity,
    StrategyType,
)


ENTITY_WEIGHT = 0.1
RELATIONSHIP_WEIGHT = 0.15
AGGREGATION_WEIGHT = 0.2
TIME_WEIGHT = 0.1
PAGINATION_WEIGHT = 0.05
CROSS_REFERENCE_WEIGHT = 0.25

RELATIONSHIP_KEYWORDS = ("with", "and", "between", "across", "related", "linked")
AGGREGATION_KEYWORDS = ("total", "sum", "count", "average", "aggregate", "summary", "report")
TIME_KEYWORDS = ("last", "recent", "since", "from", "to", "between", "today", "yesterday", "week", "month", "year")
PAGINATION_KEYWORDS = ("all", "list", "show", "get", "find")
CROSS_REFERENCE_KEYWORDS = ("analyze", "compare", "correlate", "cross-reference", "merge", "join")

COMPLEX_THRESHOLD = 0.6
VERY_COMPLEX_THRESHOLD = 0.8


def _keyword_hits(query: str, keywords: Iterable[str]) -> List[str]:
    """Keywords that occur in the query as whole words"""
    return [
        keyword for keyword in keywords
        if re.search(r"(?<![\w-])" + re.escape(keyword) + r"(?![\w-])", query)
    ]


class ComplexityAnalyzer:
    """
    Pure scoring of (query, selected tools)

    Weights:
    - entities: +0.1 per distinct entity prefix among the tools
    - relationship keywords: +0.15 each
    - aggregation keywords: +0.2 each
    - time keywords: +0.1 each
    - pagination keywords: +0.05 each
    - cross-reference keywords: +0.25 each
    - more than 5 tools: +0.2, more than 3 tools: +0.1

    The score is clamped to 1.0 and a query is complex above 0.6.
    """

    def __init__(self, known_tools: Optional[Iterable[str]] = None):
        self.known_tools: Optional[Set[str]] = set(known_tools) if known_tools is not None else None
        self.logger = get_logger(__name__)

    def analyze_query_complexity(self, query: str, selected_tools: List[str]) -> QueryComplexity:
        """
        Score a query and its tool selection

        Args:
            query: Natural-language query the plan answers
            selected_tools: Tool names of the plan steps

        Returns:
            QueryComplexity with score, flags, opportunities and risks
        """
        score, entity_count, relationship_count, aggregation, time_filter, pagination = \
            self._calculate_metrics(query or "", selected_tools)

        return QueryComplexity(
            is_complex=score > COMPLEX_THRESHOLD,
            complexity_score=score,
            entity_count=entity_count,
            relationship_count=relationship_count,
            aggregation_needed=aggregation,
            time_based_filtering=time_filter,
            pagination_required=pagination,
            parallelization_opportunities=self.identify_parallelization_opportunities(selected_tools),
            estimated_steps=len(selected_tools),
            risk_factors=self.identify_risk_factors(query or "", selected_tools)
        )

    def get_execution_strategy(self, complexity: QueryComplexity) -> ExecutionStrategy:
        """Decision table over (is_complex, score, opportunity count)"""
        opportunities = len(complexity.parallelization_opportunities)
        steps = complexity.estimated_steps

        if not complexity.is_complex:
            return ExecutionStrategy(
                strategy=StrategyType.SIMPLE,
                max_parallel_steps=1,
                batch_size=1,
                error_recovery=False,
                progress_tracking=False,
                estimated_duration_ms=steps * 2000
            )

        if complexity.complexity_score > VERY_COMPLEX_THRESHOLD:
            return ExecutionStrategy(
                strategy=StrategyType.COMPLEX,
                max_parallel_steps=min(5, opportunities),
                batch_size=3,
                error_recovery=True,
                progress_tracking=True,
                estimated_duration_ms=steps * 1500
            )

        if opportunities > 2:
            return ExecutionStrategy(
                strategy=StrategyType.PARALLEL,
                max_parallel_steps=min(3, opportunities),
                batch_size=2,
                error_recovery=True,
                progress_tracking=True,
                estimated_duration_ms=steps * 1200
            )

        return ExecutionStrategy(
            strategy=StrategyType.BATCHED,
            max_parallel_steps=2,
            batch_size=2,
            error_recovery=True,
            progress_tracking=False,
            estimated_duration_ms=steps * 1800
        )

    def analyze(self, query: str, selected_tools: List[str]) -> Tuple[QueryComplexity, ExecutionStrategy]:
        """Score the query, pick a strategy and log both"""
        complexity = self.analyze_query_complexity(query, selected_tools)
        strategy = self.get_execution_strategy(complexity)

        self.logger.info(
            "Query complexity analysis",
            is_complex=complexity.is_complex,
            complexity_score=round(complexity.complexity_score, 3),
            entity_count=complexity.entity_count,
            parallelization_opportunities=len(complexity.parallelization_opportunities),
            strategy=strategy.strategy,
            max_parallel_steps=strategy.max_parallel_steps
        )
        for risk in complexity.risk_factors:
            self.logger.info("Risk factor identified", risk=risk)

        return complexity, strategy

    def _calculate_metrics(self, query: str, selected_tools: List[str]):
        text = query.lower()
        score = 0.0

        entities = set()
        for tool in selected_tools:
            if self.known_tools is not None and tool not in self.known_tools:
                continue
            entities.add(tool.split("_")[0])
        entity_count = len(entities)
        score += entity_count * ENTITY_WEIGHT

        relationship_hits = _keyword_hits(text, RELATIONSHIP_KEYWORDS)
        score += len(relationship_hits) * RELATIONSHIP_WEIGHT

        aggregation_hits = _keyword_hits(text, AGGREGATION_KEYWORDS)
        score += len(aggregation_hits) * AGGREGATION_WEIGHT

        time_hits = _keyword_hits(text, TIME_KEYWORDS)
        score += len(time_hits) * TIME_WEIGHT

        pagination_hits = _keyword_hits(text, PAGINATION_KEYWORDS)
        score += len(pagination_hits) * PAGINATION_WEIGHT

        cross_reference_hits = _keyword_hits(text, CROSS_REFERENCE_KEYWORDS)
        score += len(cross_reference_hits) * CROSS_REFERENCE_WEIGHT

        if len(selected_tools) > 5:
            score += 0.2
        elif len(selected_tools) > 3:
            score += 0.1

        return (
            min(1.0, score),
            entity_count,
            len(relationship_hits),
            bool(aggregation_hits),
            bool(time_hits),
            bool(pagination_hits),
        )

    def identify_parallelization_opportunities(self, selected_tools: List[str]) -> List[ParallelizationOpportunity]:
        opportunities = []

        list_tools = [tool for tool in selected_tools if "_list" in tool]
        get_tools = [tool for tool in selected_tools if "_get" in tool]
        independent_tools = [
            tool for tool in selected_tools
            if "_list" not in tool and "_get" not in tool and "_create" not in tool
        ]

        if len(list_tools) > 1:
            opportunities.append(ParallelizationOpportunity(
                type=OpportunityType.INDEPENDENT_QUERIES,
                description="Multiple list operations can run in parallel",
                tools=list_tools,
                confidence=0.9
            ))

        if len(get_tools) > 1:
            opportunities.append(ParallelizationOpportunity(
                type=OpportunityType.BATCH_OPERATIONS,
                description="Multiple get operations can be batched",
                tools=get_tools,
                confidence=0.8
            ))

        if len(independent_tools) > 1:
            opportunities.append(ParallelizationOpportunity(
                type=OpportunityType.PARALLEL_FILTERS,
                description="Independent operations can run in parallel",
                tools=independent_tools,
                confidence=0.7
            ))

        return opportunities

    def identify_risk_factors(self, query: str, selected_tools: List[str]) -> List[str]:
        """Advisory only; never changes scheduling"""
        risks = []
        text = query.lower()

        has_create = any("_create" in tool for tool in selected_tools)
        has_get = any("_get" in tool for tool in selected_tools)
        if has_create and has_get:
            risks.append("Potential circular dependency between create and get operations")

        if len(selected_tools) > 8:
            risks.append("High number of tools may cause timeout issues")

        if _keyword_hits(text, ("all",)) and len(selected_tools) > 3:
            risks.append("Query requests all data which may be slow")

        if _keyword_hits(text, ("last",)) and "limit" not in text:
            risks.append("Time-based query without limits may return large datasets")

        return risks

    def get_optimization_suggestions(self, complexity: QueryComplexity) -> List[str]:
        suggestions = []

        if complexity.complexity_score > 0.7:
            suggestions.append("Consider breaking this query into smaller, focused queries")

        if complexity.parallelization_opportunities:
            suggestions.append(
                f"Found {len(complexity.parallelization_opportunities)} parallelization opportunities"
            )

        if complexity.risk_factors:
            suggestions.append("Consider adding pagination or time limits to reduce risk")

        if complexity.aggregation_needed:
            suggestions.append("Consider using database aggregation instead of application-level processing")

        return suggestions
