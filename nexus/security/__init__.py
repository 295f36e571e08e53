"""
Nexus Security Module

Wallet signature recovery and the canonical signed-message formats.
"""

from nexus.security.signatures import (
    InvalidSignatureError,
    addresses_match,
    canonical_report_message,
    recover_signer,
    verification_message,
)

__all__ = [
    "InvalidSignatureError",
    "addresses_match",
    "canonical_report_message",
    "recover_signer",
    "verification_message",
]
