#!/usr/bin/env python3
"""
WallCraft - Robustness Module

Failure handling shared by the ingestion pipeline:
- Error taxonomy with recoverability categories
- Retry with exponential backoff
- Pre-flight health checks
"""

import asyncio
import logging
from enum import Enum
from functools import wraps
from typing import Any, Callable, Optional, TypeVar

logger = logging.getLogger("wallcraft")

# =============================================================================
# ERROR CATEGORIES
# =============================================================================

class ErrorCategory(Enum):
    """Classification of errors by severity and recoverability."""
    FATAL = "fatal"              # Abort the current cycle
    RECOVERABLE = "recoverable"  # Fall back or skip
    WARNING = "warning"          # Drop the item, log and continue


class WallcraftError(Exception):
    """Base class for ingestion errors."""
    category: ErrorCategory = ErrorCategory.RECOVERABLE


class ProviderUnavailable(WallcraftError):
    """
    An upstream provider could not serve a request.

    Raised for transport failures, timeouts, non-2xx responses and
    undecodable bodies. Adapters raise it without retrying; `retryable`
    is False when a repeat call cannot succeed (missing or rejected key).
    """
    category = ErrorCategory.RECOVERABLE

    def __init__(self, provider: str, cause: Any, retryable: bool = True):
        self.provider = provider
        self.cause = cause
        self.retryable = retryable
        super().__init__(f"{provider} unavailable: {cause}")


class MalformedUpstreamRecord(WallcraftError):
    """A provider record is missing a field the catalog requires."""
    category = ErrorCategory.WARNING

    def __init__(self, provider: str, reason: str, external_id: Optional[str] = None):
        self.provider = provider
        self.reason = reason
        self.external_id = external_id
        super().__init__(f"Malformed {provider} record {external_id or '?'}: {reason}")


class StoreUnavailable(WallcraftError):
    """The catalog store cannot be reached or written."""
    category = ErrorCategory.FATAL

    def __init__(self, cause: Any):
        self.cause = cause
        super().__init__(f"Catalog store unavailable: {cause}")


# =============================================================================
# RETRY WITH BACKOFF
# =============================================================================

T = TypeVar("T")


def retry_with_backoff(
    max_retries: int = 1,
    base_delay: float = 2.0,
    max_delay: float = 30.0,
    exceptions: tuple = (ProviderUnavailable,),
    on_retry: Optional[Callable[[int, Exception, float], None]] = None,
) -> Callable[[Callable[..., T]], Callable[..., T]]:
    """
    Retry decorator with exponential backoff for coroutines.

    Args:
        max_retries: Maximum number of retry attempts after the first call.
        base_delay: Base delay in seconds (2^attempt * base_delay).
        max_delay: Maximum delay cap.
        exceptions: Tuple of exception types to catch and retry.
        on_retry: Optional callback(attempt, exception, delay) for logging.

    Returns:
        Decorated coroutine function with retry logic.
    """
    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @wraps(func)
        async def async_wrapper(*args, **kwargs) -> T:
            last_exception = None

            for attempt in range(max_retries + 1):
                try:
                    return await func(*args, **kwargs)
                except exceptions as e:
                    last_exception = e
                    if not getattr(e, "retryable", True):
                        logger.warning(f"{func.__name__} failed permanently, not retrying: {e}")
                        raise
                    if attempt >= max_retries:
                        break

                    delay = min(base_delay * (2 ** attempt), max_delay)
                    if on_retry:
                        on_retry(attempt + 1, e, delay)
                    else:
                        logger.warning(
                            f"Attempt {attempt + 1}/{max_retries + 1} failed for {func.__name__}: {e}. "
                            f"Retrying in {delay:.1f}s..."
                        )
                    await asyncio.sleep(delay)

            logger.error(f"All {max_retries + 1} attempts failed for {func.__name__}")
            raise last_exception

        return async_wrapper

    return decorator


# =============================================================================
# HEALTH CHECKER
# =============================================================================

class HealthChecker:
    """
    Pre-flight health checks.

    Missing provider credentials only disable that provider; an unreachable
    store is fatal because nothing can be ingested or served.
    """

    def __init__(self, config: Any, store: Any = None):
        self.config = config
        self.store = store

    def check_api_credentials(self) -> dict[str, bool]:
        """Report which providers have credentials configured."""
        results = {}
        for name in ("unsplash", "pexels"):
            provider = self.config.get_provider_config(name)
            results[name] = bool(provider.api_key) and not provider.api_key.startswith("your_")
        return results

    def check_store(self) -> bool:
        """Check the catalog store answers a trivial query."""
        if self.store is None:
            return False
        try:
            self.store.ping()
            return True
        except StoreUnavailable as e:
            logger.error(f"Store health check failed: {e}")
            return False

    def run_all_checks(self) -> tuple[bool, list[str]]:
        """
        Run all health checks.

        Returns:
            Tuple of (all_passed, list of error messages).
        """
        errors = []

        logger.info("Running pre-flight health checks...")

        for api, available in self.check_api_credentials().items():
            if not available:
                logger.warning(f"{api.upper()} credentials missing (provider calls will fail)")
                errors.append(f"WARNING: {api.upper()} credentials missing")

        if not self.check_store():
            errors.append("FATAL: Catalog store is not reachable")

        all_passed = not any(e.startswith("FATAL") for e in errors)

        if all_passed:
            logger.info("All health checks passed")
        else:
            logger.error(f"Health checks failed: {errors}")

        return all_passed, errors
