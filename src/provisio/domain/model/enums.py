"""Domain enums (pure, dependency-light)."""

from __future__ import annotations

from enum import StrEnum


class AttributeKind(StrEnum):
    STRING = "string"
    INTEGER = "integer"
    NUMBER = "number"
    BOOLEAN = "boolean"
    LIST = "list"
    MAP = "map"
    ANY = "any"


class ReplacementOrder(StrEnum):
    """How a resource is replaced when an immutable attribute changes."""

    # names must be unique: remove the old object first
    DELETE_BEFORE_CREATE = "delete_before_create"
    # zero downtime preferred: stand up the new object first
    CREATE_BEFORE_DELETE = "create_before_delete"


class ChangeAction(StrEnum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    REPLACE = "replace"
    NOOP = "noop"
