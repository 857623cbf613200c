"""
Tests for JMESPath queries over documents and structured values.
"""

import pytest

from figtreelib.errors import EvaluationError, InvalidExpression, QueryError
from figtreelib.query import QueryEngine, query, to_structured_value, validate_query


STRUCTURED = {"name": "X", "document": {"children": [{"name": "P1"}, {"name": "P2"}]}}


class TestStructuredValues:

    def test_projection(self):
        assert query(STRUCTURED, "document.children[*].name") == ["P1", "P2"]

    def test_length(self):
        assert query(STRUCTURED, "length(document.children)") == 2

    def test_no_match_is_none(self):
        assert query(STRUCTURED, "document.missing") is None


class TestDocuments:

    def test_page_names(self, document):
        assert query(document, "document.children[*].name") == ["Page 1", "Page 2"]

    def test_filter(self, document):
        assert query(document, "document.children[?name=='Page 2'].id") == ["0:2"]

    def test_wrapper_extras_are_queryable(self, document):
        assert query(document, "editorType") == "figma"

    def test_numbers_pass_through(self, document):
        x = query(document, "document.children[0].children[0].children[1].children[0].absoluteBoundingBox.x")
        width = query(document, "document.children[0].children[0].absoluteBoundingBox.width")
        assert x == 10.5
        assert width == 1440 and isinstance(width, int)

    def test_structured_value_matches_source(self, document, file_payload):
        assert to_structured_value(document) == file_payload

    def test_compiled_engine_is_reusable(self, document):
        engine = QueryEngine("length(document.children)")
        assert engine.search(document) == 2
        assert engine.search(STRUCTURED) == 2


class TestErrors:

    def test_parse_error(self):
        with pytest.raises(InvalidExpression) as exc_info:
            QueryEngine("document.children[")
        assert exc_info.value.expression == "document.children["

    def test_empty_expression(self):
        with pytest.raises(InvalidExpression):
            validate_query("")

    def test_validate_accepts_good_expression(self):
        validate_query("document.children[*].name")

    def test_type_error(self):
        with pytest.raises(EvaluationError) as exc_info:
            query(STRUCTURED, "abs(name)")
        assert exc_info.value.expression == "abs(name)"

    def test_unknown_function(self):
        with pytest.raises(EvaluationError):
            query(STRUCTURED, "no_such_function(name)")

    def test_arity_error(self):
        with pytest.raises(EvaluationError):
            query(STRUCTURED, "length(name, name)")

    def test_expression_reference_result(self):
        with pytest.raises(EvaluationError):
            query(STRUCTURED, "&name")

    def test_errors_share_base_class(self):
        with pytest.raises(QueryError):
            query(STRUCTURED, "[")
