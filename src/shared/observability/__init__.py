"""Observability module for structured logging."""

from .logging import (
    ClusterContext,
    cluster_id_var,
    get_logger,
    log_database_query,
    operation_var,
    setup_logging,
)

__all__ = [
    # Setup
    "setup_logging",
    "get_logger",
    # Context
    "ClusterContext",
    "cluster_id_var",
    "operation_var",
    # Logging helpers
    "log_database_query",
]
