from .logger import setup_logging, get_logger, feed_logger, analyzer_logger
from .retry import RetryConfig, RetryableClient
from .cache import CacheManager, cache_manager, cached_fetch
from .validation import (
    is_valid_eth_address,
    validate_eth_address,
    finite_or_none,
    sanitize_for_json,
)

__all__ = [
    # Logger
    "setup_logging",
    "get_logger",
    "feed_logger",
    "analyzer_logger",

    # Retry
    "RetryConfig",
    "RetryableClient",

    # Cache
    "CacheManager",
    "cache_manager",
    "cached_fetch",

    # Validation
    "is_valid_eth_address",
    "validate_eth_address",
    "finite_or_none",
    "sanitize_for_json",
]
