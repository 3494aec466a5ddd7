"""
Request Safety Guards for QueryGate

This module provides guards that run before or after a batch executes:
1. Batch size limit (too many queries in one request)
2. Unique query keys (every key must map to exactly one result)
3. Large result warnings

GUARD PHILOSOPHY:
-----------------
- Fail with clear, actionable error messages
- Return HTTP 400 (not 500) for request-level failures
- Don't silently truncate - inform the user
- Limits are configurable via QUERYGATE_ environment variables

DEFAULT LIMITS:
---------------
- QUERYGATE_BATCH_MAX_QUERIES: 50
- QUERYGATE_RESULT_WARN_ROWS: 100,000 (warning only)
"""

import logging
from collections import Counter
from typing import Any, Dict, List, Optional, Sequence

from app.core.config import settings
from app.errors import batch_too_large, duplicate_query_keys

logger = logging.getLogger(__name__)


# =============================================================================
# BATCH GUARDS
# =============================================================================

def validate_batch_size(count: int, limit: Optional[int] = None) -> None:
    """
    Reject batches above the configured query count.

    Raises:
        QueryGateError: ERR_LIMIT_EXCEEDED
    """
    limit = settings.batch_max_queries if limit is None else limit
    if count > limit:
        raise batch_too_large(count, limit)


def validate_unique_keys(keys: Sequence[str]) -> None:
    """
    Reject batches that reuse a query key.

    Raises:
        QueryGateError: ERR_DUPLICATE_QUERY_KEY
    """
    duplicates = sorted(key for key, seen in Counter(keys).items() if seen > 1)
    if duplicates:
        raise duplicate_query_keys(duplicates)


# =============================================================================
# RESULT SIZE GUARD
# =============================================================================

def check_result_size(rows: List[Dict[str, Any]], key: str = "", warn_threshold: Optional[int] = None) -> None:
    """
    Check result size and log warning if large.

    This doesn't fail the query, but helps with monitoring.
    """
    threshold = settings.result_warn_rows if warn_threshold is None else warn_threshold
    row_count = len(rows)

    if row_count >= threshold:
        label = f" for {key}" if key else ""
        logger.warning(f"Large query result{label}: {row_count} rows")


# =============================================================================
# SAFETY STATUS
# =============================================================================

def get_safety_status() -> dict:
    """Get guard limits for health checks."""
    return {
        "limits": {
            "max_sql_length": settings.max_sql_length,
            "batch_max_queries": settings.batch_max_queries,
            "batch_max_parallel": settings.batch_max_parallel,
            "result_warn_rows": settings.result_warn_rows,
        }
    }
