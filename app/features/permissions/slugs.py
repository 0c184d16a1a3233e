"""
Role and permission query expressions.

A query is one slug or several joined by ``|`` (any may match). Slugs are
dot-separated components of lowercase letters, digits, ``_`` and ``-``.
A component written as ``*`` turns the term into a partial match where each
``*`` stands for one or more characters:

    "claims.read"               exact slug
    "claims.*"                  every slug under claims
    "claims.*|reports.export"   either of the above

Expressions are validated before any query is built. A malformed expression
raises ``InvalidSlugExpression`` instead of matching nothing.
"""
import re
from typing import Iterable

from sqlalchemy import ColumnElement, or_

from app.features.permissions.exceptions import InvalidSlugExpression


DELIMITER = "|"
SEPARATOR = "."
WILDCARD = "*"
LIKE_ESCAPE = "\\"

_COMPONENT = re.compile(r"^[a-z0-9_-]+$")


def _check_components(expression: str, term: str) -> list[str]:
    components = term.split(SEPARATOR)
    for component in components:
        if component == "":
            raise InvalidSlugExpression(expression, f"empty component in {term!r}")
        if component != WILDCARD and not _COMPONENT.match(component):
            raise InvalidSlugExpression(expression, f"disallowed characters in {component!r}")
    if all(component == WILDCARD for component in components):
        raise InvalidSlugExpression(expression, f"{term!r} has no literal component")
    return components


def validate_slug(slug: str) -> str:
    """Validate a single, fully-qualified slug and return it."""
    if not isinstance(slug, str) or not slug.strip():
        raise InvalidSlugExpression(str(slug), "empty slug")
    slug = slug.strip()
    if DELIMITER in slug:
        raise InvalidSlugExpression(slug, "expected a single slug")
    if WILDCARD in _check_components(slug, slug):
        raise InvalidSlugExpression(slug, "wildcards are not allowed here")
    return slug


def _like_pattern(term: str) -> str:
    escaped = (
        term.replace(LIKE_ESCAPE, LIKE_ESCAPE * 2)
        .replace("%", LIKE_ESCAPE + "%")
        .replace("_", LIKE_ESCAPE + "_")
    )
    return escaped.replace(WILDCARD, "%")


class SlugTerm:
    """One alternative of an expression."""

    def __init__(self, text: str, partial: bool):
        self.text = text
        self.partial = partial
        self._regex = None
        if partial:
            pieces = [re.escape(piece) for piece in text.split(WILDCARD)]
            self._regex = re.compile("^" + ".+".join(pieces) + "$")

    def clause(self, column) -> ColumnElement[bool]:
        if self.partial:
            return column.like(_like_pattern(self.text), escape=LIKE_ESCAPE)
        return column == self.text

    def matches(self, slug: str) -> bool:
        if self.partial:
            return bool(self._regex.match(slug))
        return slug == self.text

    def __repr__(self) -> str:
        return f"<SlugTerm({self.text!r}, partial={self.partial})>"


class SlugExpression:
    """
    Parsed role/permission query.

    Usage:
        expression = SlugExpression("admin|editor.*")
        stmt = select(user_role).where(expression.clause(user_role.c.roles_slug))
    """

    def __init__(self, expression: str | Iterable[str]):
        if not isinstance(expression, str):
            expression = DELIMITER.join(expression)
        self.expression = expression
        self.terms = self._parse(expression)

    @staticmethod
    def _parse(expression: str) -> list[SlugTerm]:
        if not expression or not expression.strip():
            raise InvalidSlugExpression(expression, "empty expression")

        terms = []
        for raw in expression.split(DELIMITER):
            term = raw.strip()
            if not term:
                raise InvalidSlugExpression(expression, "empty term")
            components = _check_components(expression, term)
            terms.append(SlugTerm(term, partial=WILDCARD in components))
        return terms

    @property
    def is_partial(self) -> bool:
        return any(term.partial for term in self.terms)

    def clause(self, column) -> ColumnElement[bool]:
        """SQL predicate over ``column`` true when any term matches."""
        return or_(*(term.clause(column) for term in self.terms))

    def matches(self, slug: str) -> bool:
        """In-memory equivalent of ``clause``."""
        return any(term.matches(slug) for term in self.terms)

    def __repr__(self) -> str:
        return f"<SlugExpression({self.expression!r})>"
