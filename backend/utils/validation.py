import math
import re
from typing import Any

# Ethereum address regex
ETH_ADDRESS_REGEX = re.compile(r"^0x[a-fA-F0-9]{40}$")


def is_valid_eth_address(address: str) -> bool:
    return bool(address) and bool(ETH_ADDRESS_REGEX.match(address))


def validate_eth_address(address: str) -> str:
    """Validate Ethereum address format"""
    if not address:
        raise ValueError("Address cannot be empty")

    address = address.strip()

    if not ETH_ADDRESS_REGEX.match(address):
        raise ValueError(f"Invalid Ethereum address format: {address}")

    return address


def finite_or_none(value: Any) -> Any:
    """Replace non-finite floats (which JSON cannot carry) with ``None``."""
    if isinstance(value, float) and not math.isfinite(value):
        return None
    return value


def sanitize_for_json(value: Any) -> Any:
    """Recursively apply :func:`finite_or_none` to dicts and lists."""
    if isinstance(value, dict):
        return {k: sanitize_for_json(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [sanitize_for_json(v) for v in value]
    return finite_or_none(value)

