"""Unit tests for placeholder translation and result normalization."""

from decimal import Decimal

import pytest

from polystore.core.errors import QueryError, QueryErrorKind
from polystore.core.query_adapter import (
    NumberedAdapter,
    PositionalAdapter,
    adapter_for,
)
from polystore.models.backend import PlaceholderStyle
from polystore.models.query import FieldDescriptor, NativeResult, QueryRequest


@pytest.fixture
def numbered() -> NumberedAdapter:
    return NumberedAdapter("relational-primary")


@pytest.fixture
def positional() -> PositionalAdapter:
    return PositionalAdapter("relational-secondary")


@pytest.mark.unit
class TestNumberedAdapter:
    """? -> $n rewriting."""

    def test_rewrites_in_order(self, numbered: NumberedAdapter) -> None:
        query, params = numbered.translate(
            QueryRequest("SELECT * FROM t WHERE a = ? AND b = ?", ("x", 2))
        )

        assert query == "SELECT * FROM t WHERE a = $1 AND b = $2"
        assert params == ("x", 2)

    def test_existing_numbered_markers_accepted(self, numbered: NumberedAdapter) -> None:
        query, params = numbered.translate(
            QueryRequest("UPDATE t SET a = $2 WHERE id = $1", (1, "v"))
        )

        assert query == "UPDATE t SET a = $2 WHERE id = $1"
        assert params == (1, "v")

    def test_repeated_numbered_marker_counts_once(self, numbered: NumberedAdapter) -> None:
        query, _ = numbered.translate(QueryRequest("SELECT $1, $1", (5,)))

        assert query == "SELECT $1, $1"

    def test_markers_in_literals_and_comments_ignored(self, numbered: NumberedAdapter) -> None:
        text = (
            "SELECT '?' AS q, \"col?\" -- why?\n"
            "FROM t /* ? */ WHERE note = 'it''s ?' AND id = ?"
        )
        query, _ = numbered.translate(QueryRequest(text, (1,)))

        assert query.endswith("AND id = $1")
        assert "'?' AS q" in query
        assert "/* ? */" in query

    def test_dollar_quoted_body_ignored(self, numbered: NumberedAdapter) -> None:
        text = "DO $body$ BEGIN PERFORM ?; END $body$; SELECT ?"
        query, _ = numbered.translate(QueryRequest(text, (1,)))

        assert query == "DO $body$ BEGIN PERFORM ?; END $body$; SELECT $1"

    def test_mixing_styles_is_malformed(self, numbered: NumberedAdapter) -> None:
        with pytest.raises(QueryError) as exc_info:
            numbered.translate(QueryRequest("SELECT ?, $1", (1, 2)))

        assert exc_info.value.kind == QueryErrorKind.MALFORMED

    def test_gap_in_numbered_markers_is_malformed(self, numbered: NumberedAdapter) -> None:
        with pytest.raises(QueryError) as exc_info:
            numbered.translate(QueryRequest("SELECT $1, $3", (1, 2, 3)))

        assert exc_info.value.kind == QueryErrorKind.MALFORMED

    @pytest.mark.parametrize("params", [(), (1, 2)])
    def test_param_count_mismatch(self, numbered: NumberedAdapter, params: tuple) -> None:
        with pytest.raises(QueryError) as exc_info:
            numbered.translate(QueryRequest("SELECT ?", params))

        assert exc_info.value.kind == QueryErrorKind.PARAM_MISMATCH
        assert exc_info.value.backend == "relational-primary"

    def test_unterminated_quote_is_malformed(self, numbered: NumberedAdapter) -> None:
        with pytest.raises(QueryError) as exc_info:
            numbered.translate(QueryRequest("SELECT 'oops"))

        assert exc_info.value.kind == QueryErrorKind.MALFORMED

    def test_values_are_not_coerced(self, numbered: NumberedAdapter) -> None:
        amount = Decimal("10.50")
        _, params = numbered.translate(QueryRequest("SELECT ?, ?", ("42", amount)))

        assert params == ("42", amount)
        assert isinstance(params[0], str)
        assert isinstance(params[1], Decimal)


@pytest.mark.unit
class TestPositionalAdapter:
    """? -> %s for aiomysql."""

    def test_emits_driver_marker_and_doubles_percent(self, positional: PositionalAdapter) -> None:
        query, params = positional.translate(
            QueryRequest("SELECT * FROM t WHERE name LIKE 'a%' AND id = ?", (7,))
        )

        assert query == "SELECT * FROM t WHERE name LIKE 'a%%' AND id = %s"
        assert params == (7,)

    def test_no_params_passes_text_through(self, positional: PositionalAdapter) -> None:
        text = "SELECT * FROM t WHERE name LIKE 'a%'"
        query, params = positional.translate(QueryRequest(text))

        assert query == text
        assert params is None

    def test_backslash_escaped_quote(self, positional: PositionalAdapter) -> None:
        query, _ = positional.translate(QueryRequest("SELECT 'it\\'s ?', ?", ("x",)))

        assert query == "SELECT 'it\\'s ?', %s"

    def test_hash_comment_ignored(self, positional: PositionalAdapter) -> None:
        query, _ = positional.translate(QueryRequest("SELECT ? # really?\n", (1,)))

        assert query == "SELECT %s # really?\n"

    def test_numbered_markers_rejected(self, positional: PositionalAdapter) -> None:
        with pytest.raises(QueryError) as exc_info:
            positional.translate(QueryRequest("SELECT $1", (1,)))

        assert exc_info.value.kind == QueryErrorKind.MALFORMED

    def test_param_count_mismatch(self, positional: PositionalAdapter) -> None:
        with pytest.raises(QueryError) as exc_info:
            positional.translate(QueryRequest("SELECT ?, ?", (1,)))

        assert exc_info.value.kind == QueryErrorKind.PARAM_MISMATCH


@pytest.mark.unit
class TestNormalize:
    """Native results become QueryResult."""

    def test_select_rows(self, numbered: NumberedAdapter) -> None:
        native = NativeResult(
            columns=(FieldDescriptor("test", "int4"),),
            records=[(1,)],
            status="SELECT 1",
        )
        result = numbered.normalize(native)

        assert result.rows == [{"test": 1}]
        assert result.row_count == 1
        assert result.field_names == ["test"]
        assert result.scalar() == 1

    def test_postgres_status_tag(self, numbered: NumberedAdapter) -> None:
        assert numbered.normalize(NativeResult(status="INSERT 0 3")).row_count == 3
        assert numbered.normalize(NativeResult(status="UPDATE 2")).row_count == 2
        assert numbered.normalize(NativeResult(status="CREATE TABLE")).row_count == 0

    def test_mysql_rowcount(self, positional: PositionalAdapter) -> None:
        assert positional.normalize(NativeResult(status=4)).row_count == 4
        assert positional.normalize(NativeResult(status=-1)).row_count == 0

    def test_empty_select_keeps_fields(self, positional: PositionalAdapter) -> None:
        native = NativeResult(columns=(FieldDescriptor("id"), FieldDescriptor("name")))
        result = positional.normalize(native)

        assert result.rows == []
        assert result.row_count == 0
        assert result.field_names == ["id", "name"]
        assert result.first() is None


@pytest.mark.unit
def test_adapter_for_selects_by_style() -> None:
    assert isinstance(adapter_for(PlaceholderStyle.NUMBERED), NumberedAdapter)
    assert isinstance(adapter_for(PlaceholderStyle.POSITIONAL), PositionalAdapter)


@pytest.mark.unit
def test_query_request_rejects_string_params() -> None:
    with pytest.raises(TypeError):
        QueryRequest("SELECT ?", "abc")
