"""
Wallet Signature Verification

Recovers the account that produced an EIP-191 ``personal_sign`` signature,
the scheme browser wallets use for ``signer.signMessage(text)``.

Also defines the exact texts reporters and watchers are asked to sign, so
the server and any client produce byte-identical messages.
"""

from __future__ import annotations

import json
from typing import Any

import structlog
from eth_account import Account
from eth_account.messages import encode_defunct

logger = structlog.get_logger(__name__)

SIGNATURE_LENGTH = 65


class InvalidSignatureError(ValueError):
    """The signature is malformed or no signer can be recovered from it."""

    pass


def _signature_bytes(signature: str | bytes) -> bytes:
    """Decode a hex (optionally 0x-prefixed) or raw signature."""
    if isinstance(signature, (bytes, bytearray)):
        raw = bytes(signature)
    elif isinstance(signature, str):
        try:
            raw = bytes.fromhex(signature.strip().removeprefix("0x").removeprefix("0X"))
        except ValueError as e:
            raise InvalidSignatureError("Signature is not valid hex") from e
    else:
        raise InvalidSignatureError(f"Unsupported signature type: {type(signature).__name__}")

    if len(raw) != SIGNATURE_LENGTH:
        raise InvalidSignatureError(
            f"Signature must be {SIGNATURE_LENGTH} bytes, got {len(raw)}"
        )
    # Some wallets emit v as 0/1 instead of 27/28
    if raw[-1] in (0, 1):
        raw = raw[:-1] + bytes([raw[-1] + 27])
    return raw


def recover_signer(message: str, signature: str | bytes) -> str:
    """
    Recover the address that signed ``message``.

    The message is hashed with the personal-sign prefix
    (``"\\x19Ethereum Signed Message:\\n" + len``) before recovery, which is
    what wallet software does.

    Args:
        message: The exact UTF-8 text that was signed
        signature: 65-byte r||s||v signature, hex or bytes; v may be 0/1 or 27/28

    Returns:
        Checksummed address of the signer

    Raises:
        InvalidSignatureError: If the signature is malformed or recovery fails
    """
    raw = _signature_bytes(signature)
    signable = encode_defunct(text=message)

    try:
        recovered: str = Account.recover_message(signable, signature=raw)
    except Exception as e:
        logger.debug("signature_recovery_failed", error=str(e))
        raise InvalidSignatureError(f"Could not recover signer: {e}") from e

    return recovered


def addresses_match(left: str, right: str) -> bool:
    """Compare two account identifiers case-insensitively."""
    return left.strip().lower() == right.strip().lower()


def _js_number(value: int | float) -> int | float:
    """Render numbers the way JSON.stringify does (no trailing .0)."""
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return value


def canonical_report_message(
    suspicious_address: str,
    details: str,
    reporter: str,
    timestamp: int | float,
) -> str:
    """
    The text a reporter signs when filing an incident.

    Compact JSON with keys in the order suspiciousAddress, details,
    reporter, timestamp; identical to ``JSON.stringify(formData)`` in
    the portal's browser client.
    """
    form_data: dict[str, Any] = {
        "suspiciousAddress": suspicious_address,
        "details": details,
        "reporter": reporter,
        "timestamp": _js_number(timestamp),
    }
    return json.dumps(form_data, separators=(",", ":"), ensure_ascii=False)


def verification_message(incident_id: str) -> str:
    """The text a watcher signs to attest to an incident."""
    return f"I verify incident #{incident_id}"


__all__ = [
    "InvalidSignatureError",
    "recover_signer",
    "addresses_match",
    "canonical_report_message",
    "verification_message",
]
