"""
Errors raised by the role/permission engine.

Conditions that are merely "not found" (detaching a role the user does not
hold, granting an unknown permission) are reported as ``False`` by the
operations themselves and never raise.
"""


class CanError(Exception):
    """Base class for role/permission engine errors."""


class UnknownRole(CanError):
    """No global role, and no custom role on the group's root, has this slug."""

    def __init__(self, slug: str, group_id: str | None = None):
        self.slug = slug
        self.group_id = group_id
        super().__init__(f"There is no role with the slug: {slug}")


class InvalidSlugExpression(CanError, ValueError):
    """A role or permission query expression could not be parsed."""

    def __init__(self, expression: str, reason: str):
        self.expression = expression
        self.reason = reason
        super().__init__(f"Invalid slug expression {expression!r}: {reason}")
