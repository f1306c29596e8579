"""Execution helpers shared by the pipeline."""

from report_engine.executor.retry import RetryConfig, async_retry_with_backoff

__all__ = ["RetryConfig", "async_retry_with_backoff"]
