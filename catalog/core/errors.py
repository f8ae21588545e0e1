"""Error kinds raised by the category core.

Each kind carries a stable ``code`` so the request layer can map it to a message
or status without matching on text.
"""


class CatalogError(Exception):
    code = "catalog_error"

    def __init__(self, message: str = "", **context):
        super().__init__(message or self.code)
        self.context = context


class ValidationError(CatalogError):
    """Malformed input, e.g. an empty or too short name."""

    code = "validation_error"


class NotFound(CatalogError):
    """The referenced record does not exist or is not visible."""

    code = "not_found"


class InvalidParent(CatalogError):
    code = "invalid_parent"


class InvalidTarget(CatalogError):
    code = "invalid_target"


class CircularReference(CatalogError):
    """The requested parent would put the category inside its own subtree."""

    code = "circular_reference"


class TargetRequired(CatalogError):
    """Deleting a category with products needs a category to move them to."""

    code = "target_required"


class Conflict(CatalogError):
    """A concurrent write won the race; the caller may retry."""

    code = "conflict"
