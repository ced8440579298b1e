import base64

import pytest

from orderhub.utils.token_crypto import decrypt_token, encrypt_token, is_encrypted, load_key, try_decrypt_token

HEX_KEY = "0123456789abcdef" * 4


def test_load_key_accepts_hex_and_base64():
    assert len(load_key(HEX_KEY)) == 32
    assert len(load_key(base64.b64encode(b"k" * 16).decode())) == 16
    assert len(load_key(base64.b64encode(b"k" * 24).decode())) == 24


@pytest.mark.parametrize("raw", [
    "0x" + HEX_KEY,
    "0X" + HEX_KEY.upper(),
    "-".join(HEX_KEY[i:i + 8] for i in range(0, 64, 8)),
    "  " + HEX_KEY[:32] + "\n" + HEX_KEY[32:] + "  ",
])
def test_load_key_normalizes_prefix_and_separators(raw):
    assert load_key(raw) == bytes.fromhex(HEX_KEY)


@pytest.mark.parametrize("raw", [None, "", "short", base64.b64encode(b"k" * 10).decode()])
def test_load_key_rejects_invalid_keys(raw):
    with pytest.raises(ValueError, match="Invalid TOKENS_ENCRYPTION_KEY"):
        load_key(raw)


def test_encrypted_token_format_and_decrypt():
    key = load_key(HEX_KEY)
    stored = encrypt_token("APP_USR-123", key)
    assert stored.startswith("enc:gcm:")
    assert len(stored.split(":")) == 4
    assert is_encrypted(stored)
    assert decrypt_token(stored, key) == "APP_USR-123"
    # IV aleatório
    assert encrypt_token("APP_USR-123", key) != stored


def test_decrypt_rejects_plaintext():
    with pytest.raises(ValueError):
        decrypt_token("APP_USR-123", load_key(HEX_KEY))


def test_try_decrypt_passes_legacy_tokens_through():
    key = load_key(HEX_KEY)
    assert try_decrypt_token("APP_USR-legacy", key) == "APP_USR-legacy"
    assert try_decrypt_token(None, key) is None

    stored = encrypt_token("secret", key)
    other_key = load_key("f" * 64)
    assert try_decrypt_token(stored, other_key) == stored
