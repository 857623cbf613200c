"""Declarative queries over documents (JMESPath).

Queries run against the variant-erased, JSON-native view of a document
(the same shape the remote service returns), so any field, including ones
the typed model keeps only in ``extra``, can be selected::

    query(document, "document.children[*].name")         # page names
    query(document, "length(document.children)")          # page count
    query(document, "document.children[?name=='Home'].id")

Expressions are compiled once by ``QueryEngine`` and can be evaluated many
times.
"""

import logging
from typing import Any, Mapping, Union

import jmespath
from jmespath.exceptions import JMESPathError

from .core.document import Document, encode_document
from .errors import EvaluationError, InvalidExpression


logger = logging.getLogger(__name__)


def to_structured_value(document: Document) -> dict:
    """Convert a document into plain dicts/lists/strings/numbers.

    Numbers are passed through exactly as decoded.
    """
    return encode_document(document)


class QueryEngine:
    """A compiled query expression.

    Args:
        expression: JMESPath expression

    Raises:
        InvalidExpression: If the expression cannot be parsed
    """

    def __init__(self, expression: str):
        if not isinstance(expression, str):
            raise InvalidExpression("expression must be a string", repr(expression))
        self.expression = expression
        try:
            self._compiled = jmespath.compile(expression)
        except JMESPathError as e:
            raise InvalidExpression(f"invalid expression ({_first_line(e)})", expression) from e

    def search(self, data: Union[Document, Mapping[str, Any], list]) -> Any:
        """Evaluate against a document or an already structured value.

        Returns:
            The JSON-native result (``None`` when nothing matches)

        Raises:
            EvaluationError: On type/arity errors, unknown functions, or a
                result that is not a JSON value
        """
        if isinstance(data, Document):
            data = to_structured_value(data)
        try:
            result = self._compiled.search(data)
        except JMESPathError as e:
            raise EvaluationError(f"evaluation failed ({_first_line(e)})", self.expression) from e

        if not _is_json_value(result):
            raise EvaluationError("expression produced a non-JSON value", self.expression)
        logger.debug("Query %r returned %s", self.expression, type(result).__name__)
        return result

    def __repr__(self) -> str:
        return f"QueryEngine({self.expression!r})"


def query(data: Union[Document, Mapping[str, Any]], expression: str) -> Any:
    """Compile ``expression`` and evaluate it once against ``data``."""
    return QueryEngine(expression).search(data)


def validate_query(expression: str) -> None:
    """Raise ``InvalidExpression`` if ``expression`` does not parse."""
    QueryEngine(expression)


def _is_json_value(value: Any) -> bool:
    if value is None or isinstance(value, (str, bool, int, float)):
        return True
    if isinstance(value, list):
        return all(_is_json_value(item) for item in value)
    if isinstance(value, dict):
        return all(isinstance(k, str) and _is_json_value(v) for k, v in value.items())
    return False


def _first_line(error: Exception) -> str:
    lines = str(error).strip().splitlines()
    return lines[0] if lines else type(error).__name__
