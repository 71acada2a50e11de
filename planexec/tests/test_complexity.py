"""
Tests for query complexity analysis and strategy selection
"""

import pytest

from planexec.models.complexity import QueryComplexity, ParallelizationOpportunity, StrategyType
from planexec.planning.complexity import ComplexityAnalyzer


@pytest.fixture
def analyzer():
    return ComplexityAnalyzer()


def opportunity(n):
    return [
        ParallelizationOpportunity(type="independent_queries", description="d", tools=[], confidence=0.9)
        for _ in range(n)
    ]


class TestComplexityScoring:

    def test_simple_query(self, analyzer):
        complexity = analyzer.analyze_query_complexity("show clients", ["clients_list"])

        assert complexity.is_complex is False
        assert complexity.complexity_score == pytest.approx(0.15)
        assert complexity.entity_count == 1
        assert complexity.pagination_required is True
        assert complexity.estimated_steps == 1

    def test_keywords_match_whole_words_only(self, analyzer):
        complexity = analyzer.analyze_query_complexity("brandon totals", [])

        assert complexity.complexity_score == 0.0
        assert complexity.relationship_count == 0
        assert complexity.aggregation_needed is False

    def test_score_is_clamped(self, analyzer):
        complexity = analyzer.analyze_query_complexity(
            "analyze and compare total sum across all shipments with clients since last month",
            ["shipments_list", "clients_list", "facilities_list", "contracts_list", "reports_get", "audit_get"]
        )

        assert complexity.complexity_score == 1.0
        assert complexity.is_complex is True
        assert complexity.aggregation_needed is True
        assert complexity.time_based_filtering is True

    def test_tool_count_bonus(self, analyzer):
        tools = ["a_x", "a_y", "a_z", "a_w"]

        assert analyzer.analyze_query_complexity("", tools).complexity_score == pytest.approx(0.2)

    def test_unknown_tools_do_not_count_as_entities(self):
        analyzer = ComplexityAnalyzer(known_tools=["clients_list"])

        complexity = analyzer.analyze_query_complexity("", ["clients_list", "ghosts_list"])

        assert complexity.entity_count == 1

    def test_parallelization_opportunities(self, analyzer):
        complexity = analyzer.analyze_query_complexity(
            "", ["shipments_list", "facilities_list", "clients_get", "contracts_get", "reports_run", "audit_run"]
        )

        types = [o.type for o in complexity.parallelization_opportunities]
        assert types == ["independent_queries", "batch_operations", "parallel_filters"]
        assert complexity.parallelization_opportunities[0].tools == ["shipments_list", "facilities_list"]

    def test_risk_factors(self, analyzer):
        risks = analyzer.identify_risk_factors(
            "get all records from last week", ["a_create", "a_get", "b_list", "c_list"]
        )

        assert "Potential circular dependency between create and get operations" in risks
        assert "Query requests all data which may be slow" in risks
        assert "Time-based query without limits may return large datasets" in risks


class TestStrategySelection:

    def test_simple(self, analyzer):
        strategy = analyzer.get_execution_strategy(QueryComplexity(is_complex=False, estimated_steps=2))

        assert strategy.strategy == StrategyType.SIMPLE
        assert strategy.max_parallel_steps == 1
        assert strategy.estimated_duration_ms == 4000

    def test_complex(self, analyzer):
        strategy = analyzer.get_execution_strategy(QueryComplexity(
            is_complex=True, complexity_score=0.9, estimated_steps=4,
            parallelization_opportunities=opportunity(2)
        ))

        assert strategy.strategy == StrategyType.COMPLEX
        assert strategy.max_parallel_steps == 2
        assert strategy.batch_size == 3
        assert strategy.uses_batches is True

    def test_parallel(self, analyzer):
        strategy = analyzer.get_execution_strategy(QueryComplexity(
            is_complex=True, complexity_score=0.7, estimated_steps=3,
            parallelization_opportunities=opportunity(3)
        ))

        assert strategy.strategy == StrategyType.PARALLEL
        assert strategy.max_parallel_steps == 3
        assert strategy.uses_batches is False

    def test_batched(self, analyzer):
        strategy = analyzer.get_execution_strategy(QueryComplexity(
            is_complex=True, complexity_score=0.7, estimated_steps=5,
            parallelization_opportunities=opportunity(1)
        ))

        assert strategy.strategy == StrategyType.BATCHED
        assert strategy.max_parallel_steps == 2
        assert strategy.estimated_duration_ms == 9000

    def test_optimization_suggestions(self, analyzer):
        complexity = QueryComplexity(
            complexity_score=0.75,
            aggregation_needed=True,
            parallelization_opportunities=opportunity(1),
            risk_factors=["x"]
        )

        suggestions = analyzer.get_optimization_suggestions(complexity)

        assert len(suggestions) == 4
        assert "Found 1 parallelization opportunities" in suggestions
