try:
    from . import _bootstrap  # noqa: F401
except Exception:  # pragma: no cover - fallback for direct execution
    import _bootstrap  # type: ignore # noqa: F401

import pytest

from market_gateway.services.token_cipher import TokenCipher


def test_refresh_token_is_not_stored_in_clear() -> None:
    cipher = TokenCipher(secret="gateway-secret")

    encrypted = cipher.encrypt("rt-123")

    assert "rt-123" not in encrypted
    assert cipher.decrypt(encrypted) == "rt-123"


def test_cipher_instances_with_same_secret_interoperate() -> None:
    encrypted = TokenCipher(secret="shared").encrypt("rt-abc")

    assert TokenCipher(secret="shared").decrypt(encrypted) == "rt-abc"


def test_rotated_secret_cannot_decrypt() -> None:
    encrypted = TokenCipher(secret="old-secret").encrypt("rt-abc")

    with pytest.raises(ValueError, match="rotated"):
        TokenCipher(secret="new-secret").decrypt(encrypted)


def test_empty_secret_is_rejected() -> None:
    with pytest.raises(ValueError):
        TokenCipher(secret="")


def test_decrypt_or_none_tolerates_foreign_ciphertext() -> None:
    encrypted = TokenCipher(secret="old-secret").encrypt("rt-abc")

    assert TokenCipher(secret="new-secret").decrypt_or_none(encrypted) is None
    assert TokenCipher(secret="old-secret").decrypt_or_none(encrypted) == "rt-abc"
