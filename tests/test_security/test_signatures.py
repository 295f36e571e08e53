"""
Tests for wallet signature recovery and the signed message formats.
"""

import pytest
from eth_account import Account

from nexus.client import sign_text
from nexus.security.signatures import (
    InvalidSignatureError,
    addresses_match,
    canonical_report_message,
    recover_signer,
    verification_message,
)

KEY = "0x59c6995e998f97a5a0044966f0945389dc9e86dae88c7a8412f4603b6b78690d"


@pytest.fixture
def account():
    return Account.from_key(KEY)


class TestRecoverSigner:
    """Tests for recover_signer."""

    def test_recovers_signing_account(self, account) -> None:
        """Test that recovery yields the signer's address."""
        signature = sign_text(account, "hello watchers")

        assert recover_signer("hello watchers", signature) == account.address

    def test_accepts_bare_hex_and_bytes(self, account) -> None:
        """Test that the 0x prefix is optional and raw bytes work."""
        signature = sign_text(account, "hello")

        assert recover_signer("hello", signature[2:]) == account.address
        assert recover_signer("hello", bytes.fromhex(signature[2:])) == account.address

    def test_accepts_zero_based_recovery_id(self, account) -> None:
        """Test that v encoded as 0/1 recovers the same signer as 27/28."""
        raw = bytearray.fromhex(sign_text(account, "hello")[2:])
        raw[-1] -= 27

        assert recover_signer("hello", bytes(raw)) == account.address

    def test_tampered_message_recovers_different_address(self, account) -> None:
        """Test that changing one character breaks attribution."""
        signature = sign_text(account, "I verify incident #abc")

        assert recover_signer("I verify incident #abd", signature) != account.address

    @pytest.mark.parametrize("index", [0, 31, 32, 63])
    def test_tampered_signature_breaks_attribution(self, account, index) -> None:
        """Test that flipping one byte of r or s never recovers the signer."""
        raw = bytearray.fromhex(sign_text(account, "I verify incident #abc")[2:])
        raw[index] ^= 0x01

        try:
            recovered = recover_signer("I verify incident #abc", bytes(raw))
        except InvalidSignatureError:
            recovered = None

        assert recovered != account.address

    def test_malformed_hex_rejected(self) -> None:
        with pytest.raises(InvalidSignatureError):
            recover_signer("hello", "0xnothex")

    def test_wrong_length_rejected(self) -> None:
        with pytest.raises(InvalidSignatureError):
            recover_signer("hello", "0x" + "ab" * 64)


class TestAddressesMatch:
    def test_case_insensitive(self, account) -> None:
        assert addresses_match(account.address, account.address.lower())
        assert addresses_match(account.address.upper().replace("0X", "0x"), account.address)

    def test_different_addresses(self) -> None:
        assert not addresses_match("0xabc", "0xabd")


class TestMessageFormats:
    """Tests for the texts reporters and watchers sign."""

    def test_report_message_is_compact_ordered_json(self) -> None:
        message = canonical_report_message("0xBad", "Phishing site", "0xReporter", 1717000000000)

        assert message == (
            '{"suspiciousAddress":"0xBad","details":"Phishing site",'
            '"reporter":"0xReporter","timestamp":1717000000000}'
        )

    def test_integral_float_timestamp_has_no_decimal_point(self) -> None:
        message = canonical_report_message("a", "b", "c", 1717000000000.0)

        assert message.endswith('"timestamp":1717000000000}')

    def test_fractional_timestamp_preserved(self) -> None:
        message = canonical_report_message("a", "b", "c", 1.5)

        assert message.endswith('"timestamp":1.5}')

    def test_non_ascii_kept_verbatim(self) -> None:
        message = canonical_report_message("a", "Estafa ⚠️ \"quoted\"", "c", 1)

        assert '"details":"Estafa ⚠️ \\"quoted\\""' in message

    def test_verification_message(self) -> None:
        assert verification_message("abc123") == "I verify incident #abc123"
