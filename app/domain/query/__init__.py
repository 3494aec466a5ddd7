"""
Query Domain

SQL safety validation and filter application for query templates.
"""

from app.domain.query.validator import Invalid, Valid, validate_query
from app.domain.query.placeholders import (
    apply_legacy_ladder,
    extract_placeholders,
    has_unresolved_placeholders,
)
from app.domain.query.parameterizer import (
    ParameterizedQuery,
    build_filtered_query,
    validate_filter_meta,
)
from app.domain.query.inference import build_auto_filtered_query, infer_filter_bindings

__all__ = [
    "Invalid",
    "Valid",
    "validate_query",
    "apply_legacy_ladder",
    "extract_placeholders",
    "has_unresolved_placeholders",
    "ParameterizedQuery",
    "build_filtered_query",
    "validate_filter_meta",
    "build_auto_filtered_query",
    "infer_filter_bindings",
]
