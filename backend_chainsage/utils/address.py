"""EVM address validation utilities."""

from eth_utils import is_address, is_checksum_address

from backend_chainsage.core.exceptions import InvalidAddress


def _is_mixed_case(address: str) -> bool:
    body = address[2:] if address[:2].lower() == "0x" else address
    return body != body.lower() and body != body.upper()


def is_valid_address(address: str | None) -> bool:
    """
    Return True if address is a valid 20-byte hex chain address.
    All-lower and all-upper hex pass as is; mixed case must be a correct EIP-55 checksum.
    """
    if not address or not isinstance(address, str):
        return False
    candidate = address.strip()
    if not is_address(candidate):
        return False
    if _is_mixed_case(candidate):
        return bool(is_checksum_address(candidate))
    return True


def normalize_address(address: str | None) -> str:
    """Validate and lower-case an address. Raises InvalidAddress if malformed."""
    if not is_valid_address(address):
        raise InvalidAddress(address or "")
    return address.strip().lower()
