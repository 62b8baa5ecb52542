from __future__ import annotations

import re

from ..errors import QueryValidationError

PATH_MARKER = "->"

_IDENTIFIER_RE = re.compile(r"^[A-Za-z_$][A-Za-z0-9_$]*$")
_CAMEL_BOUNDARY_RE = re.compile(r"([a-z0-9])([A-Z])|([A-Z])([A-Z][a-z])")
_DIGIT_BOUNDARY_RE = re.compile(r"([A-Za-z])([0-9])")
_SEPARATOR_RE = re.compile(r"[\s\-]+")

# Text after the path marker: a single-quoted JSON path, ``->>`` allowed
_JSON_PATH_RE = re.compile(r"^>?\s*'\$[^'\\;]*'$")


def validate_identifier(name: str, identifier_type: str = "identifier") -> str:
    """
    Validate that a table name is safe for SQL interpolation.

    Accepts ``table`` or ``schema.table``; each part may contain letters,
    digits, underscores and dollar signs and is limited to MySQL's 64
    characters.

    Identifiers MUST be trusted (hardcoded or validated at application
    boundaries). This check guards against typos and obvious injection, it
    is not an authorisation layer.

    Raises:
        TypeError: If identifier is not a string
        ValueError: If identifier contains unsafe characters or is invalid
    """
    if not isinstance(name, str):
        raise TypeError(f"{identifier_type} must be a string, got {type(name).__name__}")

    if not name:
        raise ValueError(f"{identifier_type} cannot be empty")

    parts = name.split(".")
    if len(parts) > 2:
        raise ValueError(f"Invalid {identifier_type} {name!r}: at most one '.' is allowed")

    for part in parts:
        if not _IDENTIFIER_RE.match(part):
            raise ValueError(
                f"Invalid {identifier_type} {name!r}: "
                "must start with a letter, underscore or '$' and contain only "
                "alphanumeric characters, underscores and '$'"
            )
        if len(part) > 64:
            raise ValueError(f"{identifier_type} {name!r} exceeds MySQL's 64-character limit")

    return name


def to_snake_case(name: str) -> str:
    """
    Convert a caller-facing property name to the storage naming convention.

    >>> to_snake_case("firstName")
    'first_name'
    >>> to_snake_case("address1")
    'address_1'
    >>> to_snake_case("date_created")
    'date_created'
    """
    name = _SEPARATOR_RE.sub("_", name.strip())
    name = _CAMEL_BOUNDARY_RE.sub(
        lambda m: f"{m.group(1)}_{m.group(2)}" if m.group(1) else f"{m.group(3)}_{m.group(4)}",
        name,
    )
    name = _DIGIT_BOUNDARY_RE.sub(r"\1_\2", name)
    return re.sub(r"_+", "_", name).strip("_").lower()


def to_camel_case(name: str) -> str:
    """``date_created`` -> ``dateCreated``."""
    head, *rest = to_snake_case(name).split("_")
    return head + "".join(part.title() for part in rest)


def is_path_accessor(name: str) -> bool:
    return PATH_MARKER in name


def quote_identifier(name: str) -> str:
    if "`" in name:
        raise ValueError(f"Identifier {name!r} cannot contain backticks")
    return f"`{name}`"


def normalize_column(name: str) -> str:
    """
    Storage column name for a caller-facing property name.

    Path accessors (``data->'$.key'``) are kept verbatim apart from quoting
    their leading column.

    Raises:
        QueryValidationError: If the name does not reduce to a valid column
            identifier, or a path accessor carries anything but a quoted
            JSON path
    """
    if not isinstance(name, str) or not name:
        raise QueryValidationError(f"Column name must be a non-empty string, got {name!r}")
    if is_path_accessor(name):
        column, _, path = name.partition(PATH_MARKER)
        column = _checked_column(column.strip().strip("`"), name)
        if not _JSON_PATH_RE.match(path.strip()):
            raise QueryValidationError(f"Invalid JSON path in column {name!r}")
        return f"{quote_identifier(column)}{PATH_MARKER}{path}"
    return _checked_column(to_snake_case(name), name)


def _checked_column(column: str, name: str) -> str:
    try:
        return validate_identifier(column, "column")
    except (TypeError, ValueError) as exc:
        raise QueryValidationError(f"Invalid column name {name!r}") from exc


def quoted_column(name: str) -> str:
    """Normalized column name, backtick-quoted unless it is a path accessor."""
    column = normalize_column(name)
    if is_path_accessor(name):
        return column
    return quote_identifier(column)
