"""Tests for FilterEngine with strategy pattern."""

import gc
from datetime import datetime
from typing import List, Optional
from unittest.mock import Mock

import pytest
from fastapi_fetcheable.associations import resolve_column
from fastapi_fetcheable.config import FetcheableConfig
from fastapi_fetcheable.exceptions import (
    ConfigError,
    ParameterTypeError,
    UnsupportedPredicateError,
)
from fastapi_fetcheable.filters import (
    PREDICATE_STRATEGIES,
    FilterEngine,
    _coerce_value,
    _is_string_column,
    _split_values,
    _unique_values,
    catalog_predicate,
)
from fastapi_fetcheable.models import LIST_PREDICATES, RANGE_PREDICATES, PredicateKind
from fastapi_fetcheable.registry import FieldRegistry
from sqlalchemy import StaticPool, String, func
from sqlalchemy.ext.hybrid import hybrid_property
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlmodel import Field, Relationship, Session, SQLModel, create_engine, select


class FilterCategory(SQLModel, table=True):
    """Test model for association filtering."""

    __tablename__ = "filter_category"

    id: Optional[int] = Field(default=None, primary_key=True)
    name: str = Field(default="")
    questions: List["FilterQuestion"] = Relationship(back_populates="category")


class FilterQuestion(SQLModel, table=True):
    """Test model for filter engine tests."""

    __tablename__ = "filter_question"

    id: Optional[int] = Field(default=None, primary_key=True)
    content: str = Field(default="")
    status: Optional[str] = Field(default=None)
    position: Optional[int] = Field(default=None)
    active: bool = Field(default=True)
    created_at: Optional[datetime] = Field(default=None)
    category_id: Optional[int] = Field(default=None, foreign_key="filter_category.id")
    category: Optional[FilterCategory] = Relationship(back_populates="questions")


class ComputedBase(DeclarativeBase):
    pass


class ComputedItem(ComputedBase):
    """Model with computed columns, which resolve to a new expression on every access."""

    __tablename__ = "computed_item"

    id: Mapped[int] = mapped_column(primary_key=True)
    title: Mapped[str] = mapped_column(String(50))
    score: Mapped[int] = mapped_column()

    @hybrid_property
    def title_upper(self):
        return self.title.upper()

    @title_upper.expression
    def title_upper(cls):
        return func.upper(cls.title, type_=String)

    @hybrid_property
    def double_score(self):
        return self.score * 2


@pytest.fixture(scope="module")
def engine():
    """Create test engine with seeded data."""
    eng = create_engine(
        "sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool
    )
    SQLModel.metadata.create_all(eng)
    with Session(eng) as session:
        programming = FilterCategory(id=1, name="Programming")
        cooking = FilterCategory(id=2, name="Cooking")
        session.add_all(
            [
                programming,
                cooking,
                FilterQuestion(
                    id=1,
                    content="How to learn python",
                    status="active",
                    position=1,
                    created_at=datetime(2021, 1, 1),
                    category=programming,
                ),
                FilterQuestion(
                    id=2,
                    content="Python decorators",
                    status="pending",
                    position=2,
                    created_at=datetime(2021, 6, 1),
                    category=programming,
                ),
                FilterQuestion(
                    id=3,
                    content="Best pasta recipe",
                    status="archived",
                    position=3,
                    active=False,
                    created_at=datetime(2022, 1, 1),
                    category=cooking,
                ),
                FilterQuestion(
                    id=4,
                    content="Rust ownership",
                    status="active",
                    position=4,
                    created_at=datetime(2022, 6, 1),
                ),
            ]
        )
        session.commit()
    yield eng
    eng.dispose()


@pytest.fixture
def session(engine):
    with Session(engine) as session:
        yield session


@pytest.fixture
def columns():
    """Get columns from test model."""
    return select(FilterQuestion).selected_columns


def filtered_ids(session, params, registry, fe=None):
    """Apply filters and return the sorted ids of matching questions."""
    fe = fe or FilterEngine()
    query = fe.apply_filters(select(FilterQuestion), params, registry)
    return sorted(q.id for q in session.exec(query).all())


class TestStrategyRegistry:
    """Tests for the PREDICATE_STRATEGIES registry."""

    def test_all_predicates_registered(self):
        """Every PredicateKind has a strategy registered."""
        for kind in PredicateKind:
            assert kind in PREDICATE_STRATEGIES, f"Missing strategy for {kind}"

    def test_strategy_count_matches_predicates(self):
        assert len(PREDICATE_STRATEGIES) == len(PredicateKind) == 35

    def test_strategies_are_callable(self):
        for kind, strategy in PREDICATE_STRATEGIES.items():
            assert callable(strategy), f"Strategy for {kind} is not callable"

    def test_range_and_list_families_are_disjoint(self):
        assert not LIST_PREDICATES & RANGE_PREDICATES

    def test_catalog_lookup_by_name(self):
        assert catalog_predicate("gteq") is PredicateKind.GTEQ
        assert catalog_predicate(PredicateKind.IN) is PredicateKind.IN

    @pytest.mark.parametrize("predicate", ["unsupported_predicate", 42, None])
    def test_catalog_lookup_unsupported(self, predicate):
        with pytest.raises(UnsupportedPredicateError, match="unsupported predicate"):
            catalog_predicate(predicate)


class TestBuildPredicate:
    """Tests for strategy-based leaf building."""

    def test_eq(self, columns):
        condition = FilterEngine.build_predicate("eq", columns["position"], "30")
        assert str(condition) == "filter_question.position = :position_1"
        assert condition.right.value == 30

    def test_not_eq(self, columns):
        condition = FilterEngine.build_predicate("not_eq", columns["position"], "30")
        assert "!=" in str(condition)

    @pytest.mark.parametrize(
        "predicate, op",
        [("gt", ">"), ("gteq", ">="), ("lt", "<"), ("lteq", "<=")],
    )
    def test_ordering(self, columns, predicate, op):
        condition = FilterEngine.build_predicate(predicate, columns["position"], "3")
        assert f"filter_question.position {op} :position_1" == str(condition)

    def test_ilike_wraps_value(self, columns):
        condition = FilterEngine.build_predicate("ilike", columns["content"], "john")
        assert "LIKE" in str(condition).upper()
        assert condition.right.value == "%john%"

    def test_matches_keeps_pattern(self, columns):
        condition = FilterEngine.build_predicate("matches", columns["content"], "jo_n%")
        assert condition.right.value == "jo_n%"

    def test_does_not_match(self, columns):
        condition = FilterEngine.build_predicate("does_not_match", columns["content"], "spam")
        assert "NOT" in str(condition).upper()

    def test_pattern_on_integer_column_casts_to_text(self, columns):
        condition = FilterEngine.build_predicate("ilike", columns["position"], "3")
        compiled = str(condition).upper()
        assert "CAST" in compiled or "VARCHAR" in compiled

    def test_pattern_on_string_column_no_cast(self, columns):
        condition = FilterEngine.build_predicate("ilike", columns["content"], "oh")
        assert "CAST" not in str(condition).upper()

    def test_in_flattens_drops_none_and_deduplicates(self, columns):
        condition = FilterEngine.build_predicate(
            "in", columns["position"], [["1", "2"], ["2", None], "3"]
        )
        assert "IN" in str(condition).upper()
        assert condition.right.value == [1, 2, 3]

    def test_in_any_and_in_all(self, columns):
        any_condition = FilterEngine.build_predicate("in_any", columns["position"], [["1", "2"]])
        all_condition = FilterEngine.build_predicate("in_all", columns["position"], [["1", "2"]])
        assert " OR " in str(any_condition)
        assert " AND " in str(all_condition)

    def test_not_in_all_keeps_value_sets(self, columns):
        condition = FilterEngine.build_predicate(
            "not_in_all", columns["position"], [["1", "2"], ["3"]]
        )
        compiled = str(condition).upper()
        assert compiled.count("NOT IN") == 2
        assert " AND " in compiled

    def test_eq_any(self, columns):
        condition = FilterEngine.build_predicate("eq_any", columns["status"], [["a", "b"], ["c"]])
        assert str(condition).count(" OR ") == 2

    def test_between(self, columns):
        condition = FilterEngine.build_predicate("between", columns["position"], ["18", "65"])
        assert "BETWEEN" in str(condition).upper()
        assert " OR " not in str(condition)

    def test_not_between(self, columns):
        condition = FilterEngine.build_predicate("not_between", columns["position"], ["1", "2"])
        assert "NOT BETWEEN" in str(condition).upper()

    def test_between_needs_two_bounds(self, columns):
        assert FilterEngine.build_predicate("between", columns["position"], ["18"]) is None
        assert FilterEngine.build_predicate("between", columns["position"], ["1", "2", "3"]) is None

    def test_empty_list_yields_nothing(self, columns):
        assert FilterEngine.build_predicate("in", columns["position"], []) is None
        assert FilterEngine.build_predicate("eq_all", columns["position"], []) is None

    def test_with_precomputed_pytype(self, columns):
        condition = FilterEngine.build_predicate("eq", columns["position"], "30", pytype=int)
        assert condition.right.value == 30


class TestCompile:
    """Tests for FilterEngine.compile() structure."""

    def test_no_params(self):
        fe = FilterEngine()
        registry = FieldRegistry().register("content")
        query = select(FilterQuestion)

        assert fe.compile(query, None, registry) == (query, None)
        assert fe.compile(query, {}, registry) == (query, None)

    def test_filter_must_be_mapping(self):
        fe = FilterEngine()
        with pytest.raises(ParameterTypeError, match="Incorrect type string"):
            fe.compile(select(FilterQuestion), "string_instead_of_hash", FieldRegistry())

    def test_array_root_has_no_fields(self):
        fe = FilterEngine()
        _, condition = fe.compile(select(FilterQuestion), ["content"], FieldRegistry())
        assert condition is None

    def test_unknown_keys_are_dropped(self):
        fe = FilterEngine()
        registry = FieldRegistry().register("content")
        _, condition = fe.compile(select(FilterQuestion), {"secret": "x"}, registry)
        assert condition is None

    @pytest.mark.parametrize("value", ["", None, []])
    def test_empty_value_yields_no_predicate(self, value):
        fe = FilterEngine()
        registry = FieldRegistry().register("content")
        _, condition = fe.compile(select(FilterQuestion), {"content": value}, registry)
        assert condition is None

    def test_empty_field_does_not_break_and(self):
        fe = FilterEngine()
        registry = FieldRegistry().register("content", "status")
        _, condition = fe.compile(
            select(FilterQuestion), {"content": "", "status": "active"}, registry
        )
        assert " AND " not in str(condition)
        assert "status" in str(condition)

    def test_multi_value_or_and_cross_field_and(self):
        fe = FilterEngine()
        registry = FieldRegistry().register("status", "content")
        _, condition = fe.compile(
            select(FilterQuestion), {"status": "active,pending", "content": "john"}, registry
        )
        compiled = str(condition)
        assert compiled.count(" OR ") == 1
        assert compiled.count(" AND ") == 1
        assert compiled.index(" OR ") < compiled.index(" AND ")

    def test_between_is_single_leaf(self):
        fe = FilterEngine()
        registry = FieldRegistry().register("position", predicate="between")
        _, condition = fe.compile(select(FilterQuestion), {"position": "18,65"}, registry)
        assert "BETWEEN" in str(condition).upper()
        assert " OR " not in str(condition)

    def test_unsupported_predicate(self):
        fe = FilterEngine()
        registry = FieldRegistry().register("content", predicate="unsupported_predicate")
        with pytest.raises(UnsupportedPredicateError, match="`unsupported_predicate`"):
            fe.compile(select(FilterQuestion), {"content": "test"}, registry)

    def test_unresolvable_alias_is_dropped(self):
        fe = FilterEngine()
        registry = FieldRegistry().register("content", alias="body")
        _, condition = fe.compile(select(FilterQuestion), {"content": "x"}, registry)
        assert condition is None

    def test_list_value_not_permitted_for_scalar_predicate(self):
        fe = FilterEngine()
        registry = FieldRegistry().register("content")
        _, condition = fe.compile(select(FilterQuestion), {"content": ["a", "b"]}, registry)
        assert condition is None

    def test_nested_mapping_value_is_dropped(self):
        fe = FilterEngine()
        registry = FieldRegistry().register("content")
        _, condition = fe.compile(
            select(FilterQuestion), {"content": {"invalid": "nested_structure"}}, registry
        )
        assert condition is None

    def test_association_joins_once(self):
        fe = FilterEngine()
        registry = (
            FieldRegistry()
            .register("category", entity=FilterCategory, alias="name")
            .register("category_id", entity=FilterCategory, alias="id", predicate="eq")
        )
        query, condition = fe.compile(
            select(FilterQuestion), {"category": "cook", "category_id": "2"}, registry
        )
        assert str(query).count("JOIN") == 1
        assert "filter_category.name" in str(condition)

    def test_already_joined_association_is_not_joined_again(self):
        fe = FilterEngine()
        registry = FieldRegistry().register("category", entity=FilterCategory, alias="name")
        base = select(FilterQuestion).join(FilterCategory)
        query, _ = fe.compile(base, {"category": "cook"}, registry)
        assert str(query).count("JOIN") == 1

    def test_unknown_association(self):
        fe = FilterEngine()
        registry = FieldRegistry().register(
            "category", entity=FilterCategory, alias="name", association="nope"
        )
        with pytest.raises(ConfigError, match="nope"):
            fe.compile(select(FilterQuestion), {"category": "cook"}, registry)

    def test_custom_predicate_receives_query_and_value(self):
        calls = []

        def custom(query, value):
            calls.append((query, value))
            return FilterQuestion.position == int(value)

        fe = FilterEngine()
        registry = FieldRegistry().register("rank", predicate=custom)
        query = select(FilterQuestion)
        _, condition = fe.compile(query, {"rank": "1,2"}, registry)

        assert [value for _, value in calls] == ["1", "2"]
        assert calls[0][0] is query
        assert " OR " in str(condition)

    def test_custom_predicate_errors_propagate(self):
        def broken(query, value):
            raise RuntimeError("boom")

        fe = FilterEngine()
        registry = FieldRegistry().register("rank", predicate=broken)
        with pytest.raises(RuntimeError, match="boom"):
            fe.compile(select(FilterQuestion), {"rank": "1"}, registry)

    def test_datetime_parser_is_injectable(self):
        parser = Mock(return_value=datetime(2021, 1, 1))
        fe = FilterEngine(config=FetcheableConfig(datetime_parser=parser))
        registry = FieldRegistry().register(
            "created_at", predicate="between", value_format="datetime"
        )
        fe.compile(select(FilterQuestion), {"created_at": "1,2"}, registry)
        assert [c.args[0] for c in parser.call_args_list] == ["1", "2"]


class TestApplyFilters:
    """Tests for FilterEngine.apply_filters() against a database."""

    def test_default_predicate_is_case_insensitive_contains(self, session):
        registry = FieldRegistry().register("content")
        assert filtered_ids(session, {"content": "PYTHON"}, registry) == [1, 2]

    def test_or_within_field(self, session):
        registry = FieldRegistry().register("status", predicate="eq")
        assert filtered_ids(session, {"status": "active,pending"}, registry) == [1, 2, 4]

    def test_and_across_fields(self, session):
        registry = FieldRegistry().register("status", "content")
        params = {"status": "active,pending", "content": "python"}
        assert filtered_ids(session, params, registry) == [1, 2]

    def test_values_are_stripped(self, session):
        registry = FieldRegistry().register("status", predicate="eq")
        assert filtered_ids(session, {"status": " archived , pending "}, registry) == [2, 3]

    def test_gteq_coerces_integers(self, session):
        registry = FieldRegistry().register("position", predicate="gteq")
        assert filtered_ids(session, {"position": "3"}, registry) == [3, 4]

    def test_eq_coerces_booleans(self, session):
        registry = FieldRegistry().register("active", predicate="eq")
        assert filtered_ids(session, {"active": "false"}, registry) == [3]

    def test_between(self, session):
        registry = FieldRegistry().register("position", predicate="between")
        assert filtered_ids(session, {"position": "2,3"}, registry) == [2, 3]

    def test_not_between(self, session):
        registry = FieldRegistry().register("position", predicate="not_between")
        assert filtered_ids(session, {"position": "2,3"}, registry) == [1, 4]

    def test_multiple_ranges_are_ored(self, session):
        registry = FieldRegistry().register("position", predicate="between")
        assert filtered_ids(session, {"position": ["1,1", "4,4"]}, registry) == [1, 4]

    def test_datetime_range(self, session):
        registry = FieldRegistry().register(
            "created_at", predicate="between", value_format="datetime"
        )
        # 2020-12-31 .. 2021-07-01
        params = {"created_at": "1609372800,1625097600"}
        assert filtered_ids(session, params, registry) == [1, 2]

    def test_unparseable_datetime_token_is_dropped(self, session):
        registry = FieldRegistry().register(
            "created_at", predicate="between", value_format="datetime"
        )
        assert filtered_ids(session, {"created_at": "nonsense,1625097600"}, registry) == [
            1,
            2,
            3,
            4,
        ]

    def test_out_of_range_datetime_token_is_dropped(self, session):
        registry = FieldRegistry().register(
            "created_at", predicate="gteq", value_format="datetime"
        )
        assert filtered_ids(session, {"created_at": "99999999999:00"}, registry) == [1, 2, 3, 4]

    def test_in(self, session):
        registry = FieldRegistry().register("position", predicate="in")
        assert filtered_ids(session, {"position": "1,3"}, registry) == [1, 3]

    def test_not_in(self, session):
        registry = FieldRegistry().register("position", predicate="not_in")
        assert filtered_ids(session, {"position": ["1,3"]}, registry) == [2, 4]

    def test_in_any_with_list_of_lists(self, session):
        registry = FieldRegistry().register("position", predicate="in_any")
        assert filtered_ids(session, {"position": ["1,2", "2"]}, registry) == [1, 2]

    def test_eq_any(self, session):
        registry = FieldRegistry().register("status", predicate="eq_any")
        assert filtered_ids(session, {"status": ["active,archived"]}, registry) == [1, 3, 4]

    def test_not_eq_all(self, session):
        registry = FieldRegistry().register("status", predicate="not_eq_all")
        assert filtered_ids(session, {"status": ["active", "pending"]}, registry) == [3]

    def test_ilike_all(self, session):
        registry = FieldRegistry().register("content", predicate="ilike_all")
        assert filtered_ids(session, {"content": "python,learn"}, registry) == [1]

    def test_matches(self, session):
        registry = FieldRegistry().register("content", predicate="matches")
        assert filtered_ids(session, {"content": "%python%"}, registry) == [1, 2]
        assert filtered_ids(session, {"content": "python"}, registry) == []

    def test_does_not_match(self, session):
        registry = FieldRegistry().register("content", predicate="does_not_match")
        assert filtered_ids(session, {"content": "python"}, registry) == [3, 4]

    def test_array_format_accepts_lists(self, session):
        registry = FieldRegistry().register("status", predicate="eq", value_format="array")
        assert filtered_ids(session, {"status": ["archived", "pending"]}, registry) == [2, 3]

    def test_association(self, session):
        registry = FieldRegistry().register("category", entity=FilterCategory, alias="name")
        assert filtered_ids(session, {"category": "cook"}, registry) == [3]

    def test_association_through_relationship(self, session):
        registry = FieldRegistry().register(
            "category", entity=FilterCategory, alias="name", association="category"
        )
        assert filtered_ids(session, {"category": "programming"}, registry) == [1, 2]

    def test_custom_predicate(self, session):
        registry = FieldRegistry().register(
            "min_position", predicate=lambda query, value: FilterQuestion.position >= int(value)
        )
        assert filtered_ids(session, {"min_position": "4"}, registry) == [4]

    def test_unconfigured_filter_is_ignored(self, session):
        registry = FieldRegistry().register("content")
        assert filtered_ids(session, {"status": "active"}, registry) == [1, 2, 3, 4]


class TestFilterEngineColumnType:
    """Tests for FilterEngine column type lookup."""

    def test_reads_column_type(self, columns):
        assert FilterEngine.get_column_type(columns["position"]) is int
        assert FilterEngine.get_column_type(columns["content"]) is str

    def test_computed_column_type(self):
        assert FilterEngine.get_column_type(resolve_column(ComputedItem, "double_score")) is int

    def test_handles_missing_python_type(self):
        fe = FilterEngine()
        mock_col = Mock()
        mock_col.type = Mock(spec=[])  # No python_type attribute

        assert fe.get_column_type(mock_col) is None


class TestComputedColumns:
    """Tests for filters on hybrid properties with one long-lived engine."""

    def test_computed_column_resolves(self):
        registry = FieldRegistry().register("title_upper")
        _, condition = FilterEngine().compile(select(ComputedItem), {"title_upper": "X"}, registry)
        assert "upper(computed_item.title)" in str(condition)

    def test_shared_engine_coerces_every_request(self):
        fe = FilterEngine()
        text_fields = FieldRegistry().register("title_upper")
        int_fields = FieldRegistry().register("double_score", predicate="gt")

        for _ in range(100):
            fe.compile(select(ComputedItem), {"title_upper": "X"}, text_fields)
            gc.collect()
            _, condition = fe.compile(select(ComputedItem), {"double_score": "5"}, int_fields)
            gc.collect()

            assert condition.right.value == 5
            assert isinstance(condition.right.value, int)

    def test_engine_keeps_no_per_column_state(self):
        fe = FilterEngine()
        registry = FieldRegistry().register("double_score", predicate="gt")
        before = dict(vars(fe))

        for _ in range(20):
            fe.compile(select(ComputedItem), {"double_score": "5"}, registry)

        assert vars(fe) == before


class TestModuleFunctions:
    """Tests for module-level helper functions."""

    def test_coerce_value_integer(self, columns):
        assert _coerce_value(columns["position"], "42") == 42

    def test_coerce_value_boolean(self, columns):
        assert _coerce_value(columns["active"], "true") is True
        assert _coerce_value(columns["active"], "false") is False

    def test_coerce_value_datetime(self, columns):
        assert isinstance(_coerce_value(columns["created_at"], "2024-01-15T10:30:00"), datetime)

    def test_coerce_value_keeps_non_strings(self, columns):
        moment = datetime(2021, 1, 1)
        assert _coerce_value(columns["created_at"], moment) is moment

    def test_coerce_value_falls_back_to_raw(self, columns):
        assert _coerce_value(columns["position"], "abc") == "abc"

    def test_split_values(self):
        assert _split_values("a,b,c") == ["a", "b", "c"]
        assert _split_values("  a  ,  b  ") == ["a", "b"]
        assert _split_values(",a,,") == ["a"]

    def test_unique_values(self):
        assert _unique_values([["a", "b"], ["b", None], "c"]) == ["a", "b", "c"]

    def test_is_string_column(self, columns):
        assert _is_string_column(columns["content"]) is True
        assert _is_string_column(columns["position"]) is False
