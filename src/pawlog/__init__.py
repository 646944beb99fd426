"""Pawlog kernel: entity definitions, error taxonomy, attachment outcomes."""

from .entities import DOG, EntityDefinition, validate_entity_fields
from .errors import (
    BackendError,
    ConstraintError,
    SchemaDriftError,
    TransportError,
    ValidationError,
    WorkflowError,
    classify_backend_error,
)
from .outcome import Linked, Skipped, UploadedOnly
from .reconcile import reconcile

__all__ = [
    "BackendError",
    "ConstraintError",
    "DOG",
    "EntityDefinition",
    "Linked",
    "SchemaDriftError",
    "Skipped",
    "TransportError",
    "UploadedOnly",
    "ValidationError",
    "WorkflowError",
    "classify_backend_error",
    "reconcile",
    "validate_entity_fields",
]
