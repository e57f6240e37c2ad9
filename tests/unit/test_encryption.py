"""Unit tests for AES-256-GCM secret encryption."""

import pytest

from outpost.core.encryption import AESGCMCipher
from outpost.core.exceptions import DecryptionError

from tests.unit.fakes.constants import TEST_ENCRYPTION_KEY


def test_encrypt_decrypt_returns_plaintext(cipher: AESGCMCipher) -> None:
    ciphertext = cipher.encrypt("ghp_secret_token")

    assert cipher.decrypt(ciphertext) == "ghp_secret_token"


def test_ciphertext_format_is_iv_tag_body_hex(cipher: AESGCMCipher) -> None:
    iv, tag, body = cipher.encrypt("abc").split(":")

    assert len(iv) == 24
    assert len(tag) == 32
    assert len(body) == 6
    bytes.fromhex(iv + tag + body)


def test_same_plaintext_encrypts_differently(cipher: AESGCMCipher) -> None:
    """Test a fresh IV is drawn for every encryption."""
    first = cipher.encrypt("same value")
    second = cipher.encrypt("same value")

    assert first != second
    assert cipher.decrypt(first) == cipher.decrypt(second) == "same value"


def test_unicode_plaintext(cipher: AESGCMCipher) -> None:
    assert cipher.decrypt(cipher.encrypt("zażółć gęślą jaźń")) == "zażółć gęślą jaźń"


def test_tampered_ciphertext_is_rejected(cipher: AESGCMCipher) -> None:
    iv, tag, body = cipher.encrypt("secret").split(":")
    flipped = f"{int(body[:2], 16) ^ 0x01:02x}{body[2:]}"

    with pytest.raises(DecryptionError, match="key mismatch or corrupted"):
        cipher.decrypt(f"{iv}:{tag}:{flipped}")


def test_wrong_key_is_rejected(cipher: AESGCMCipher) -> None:
    other = AESGCMCipher("f" * 64)

    with pytest.raises(DecryptionError):
        other.decrypt(cipher.encrypt("secret"))


@pytest.mark.parametrize(
    "value",
    [
        "not-a-ciphertext",
        "aa:bb",
        "zz:zz:zz",
        "00:00:00",
    ],
)
def test_malformed_ciphertext_is_rejected(cipher: AESGCMCipher, value: str) -> None:
    with pytest.raises(DecryptionError, match="Malformed"):
        cipher.decrypt(value)


def test_missing_key_raises_value_error() -> None:
    with pytest.raises(ValueError, match="not configured"):
        AESGCMCipher("")


def test_short_key_raises_value_error() -> None:
    with pytest.raises(ValueError, match="64 hex characters"):
        AESGCMCipher(TEST_ENCRYPTION_KEY[:32])


def test_non_hex_key_raises_value_error() -> None:
    with pytest.raises(ValueError, match="hexadecimal"):
        AESGCMCipher("g" * 64)
