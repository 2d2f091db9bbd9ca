"""
Structured logging for vectorization runs, vector store operations and index builds.
"""

import logging
import os
from typing import Any, Dict, Optional


def _truncate(value: str, limit: int = 50) -> str:
    return value[:limit] + "..." if len(value) > limit else value


class StructuredLogger:
    """Structured logger for vectorization, storage and search operations."""

    def __init__(self, name: str = "treevec"):
        self.logger = logging.getLogger(name)
        debug = os.getenv("TREEVEC_DEBUG", "false").lower() == "true"
        self.logger.setLevel(logging.DEBUG if debug else logging.INFO)

        # Create handler if not already set
        if not self.logger.handlers:
            handler = logging.StreamHandler()
            formatter = logging.Formatter(
                '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
            )
            handler.setFormatter(formatter)
            self.logger.addHandler(handler)

    def log_operation(self, operation: str, status: str, details: Dict[str, Any] = None, level: int = logging.INFO):
        """Log a structured operation."""
        message = f"Operation: {operation}, Status: {status}"
        if details:
            message += f", Details: {details}"

        self.logger.log(level, message)

    def log_vector_operation(self, operation: str, record_id: str, details: Dict[str, Any] = None, status: str = "success"):
        """Log a vector store operation."""
        log_details = {"record_id": record_id}
        if details:
            log_details.update(details)

        self.log_operation(f"vector.{operation}", status, log_details, level=logging.DEBUG)

    def log_vectorization(self, node_type: str, path: str, processed: int, errors: int, details: Dict[str, Any] = None):
        """Log the outcome of vectorizing one tree node."""
        log_details = {"path": path, "processed": processed, "errors": errors}
        if details:
            log_details.update(details)

        status = "failed" if errors and not processed else "success"
        self.log_operation(f"vectorize.{node_type}", status, log_details)

    def log_run_summary(self, root: str, processed: int, errors: int, duration_ms: float):
        """Log the aggregate outcome of a full-tree run."""
        self.log_operation("vectorize.run", "completed", {
            "root": root,
            "processed": processed,
            "errors": errors,
            "duration_ms": round(duration_ms, 2),
        })

    def log_index_build(self, count: int, partitions: int, index_type: str, status: str = "success", details: Dict[str, Any] = None):
        """Log an approximate index build or rebuild."""
        log_details = {"count": count, "partitions": partitions, "index_type": index_type}
        if details:
            log_details.update(details)

        level = logging.WARNING if status == "failed" else logging.INFO
        self.log_operation("vector.index_build", status, log_details, level=level)

    def log_search(self, limit: int, hits: int, indexed: bool, query: Optional[str] = None):
        """Log a similarity search."""
        details = {"limit": limit, "hits": hits, "indexed": indexed}
        if query is not None:
            details["query"] = _truncate(query)
        self.log_operation("vector.search", "success", details, level=logging.DEBUG)

    # Standard logging methods for compatibility
    def info(self, message: str) -> None:
        """Log an info message."""
        self.logger.info(message)

    def warning(self, message: str) -> None:
        """Log a warning message."""
        self.logger.warning(message)

    def error(self, message: str, exc_info: bool = False) -> None:
        """Log an error message."""
        self.logger.error(message, exc_info=exc_info)

    def debug(self, message: str) -> None:
        """Log a debug message."""
        self.logger.debug(message)


# Global logger instance
logger = StructuredLogger()
