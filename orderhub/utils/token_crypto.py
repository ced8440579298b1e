"""
Criptografia dos tokens OAuth em repouso (AES-GCM)

Formato armazenado: enc:gcm:<iv base64>:<ciphertext+tag base64>
"""
import base64
import binascii
import logging
import os
import re
from typing import Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

logger = logging.getLogger(__name__)

PREFIX = "enc:gcm:"
VALID_KEY_SIZES = (16, 24, 32)


def load_key(raw: Optional[str]) -> bytes:
    """Decodifica a chave (base64 ou hex) e valida o tamanho; aceita prefixo 0x, espaços e hífens"""
    if not raw:
        raise ValueError("Invalid TOKENS_ENCRYPTION_KEY: chave não configurada")
    text = re.sub(r"[\s-]", "", re.sub(r"^0x", "", raw.strip(), flags=re.IGNORECASE))

    candidates = []
    try:
        candidates.append(base64.b64decode(text, validate=True))
    except (binascii.Error, ValueError):
        pass
    try:
        candidates.append(bytes.fromhex(text))
    except ValueError:
        pass

    for key in candidates:
        if len(key) in VALID_KEY_SIZES:
            return key
    raise ValueError("Invalid TOKENS_ENCRYPTION_KEY: esperado 16, 24 ou 32 bytes em base64 ou hex")


def is_encrypted(value: Optional[str]) -> bool:
    return isinstance(value, str) and value.startswith("enc:")


def encrypt_token(plain: str, key: bytes) -> str:
    iv = os.urandom(12)
    ciphertext = AESGCM(key).encrypt(iv, plain.encode("utf-8"), None)
    return f"{PREFIX}{base64.b64encode(iv).decode()}:{base64.b64encode(ciphertext).decode()}"


def decrypt_token(value: str, key: bytes) -> str:
    if not value or not value.startswith(PREFIX):
        raise ValueError("Token não está no formato enc:gcm")
    parts = value[len(PREFIX):].split(":")
    if len(parts) != 2:
        raise ValueError("Token enc:gcm malformado")
    iv = base64.b64decode(parts[0])
    ciphertext = base64.b64decode(parts[1])
    return AESGCM(key).decrypt(iv, ciphertext, None).decode("utf-8")


def try_decrypt_token(value: Optional[str], key: Optional[bytes]) -> Optional[str]:
    """Descriptografa quando possível; tokens legados em texto puro passam direto"""
    if not value or not key or not is_encrypted(value):
        return value
    try:
        return decrypt_token(value, key)
    except (InvalidTag, ValueError, binascii.Error) as e:
        logger.warning(f"⚠️ Falha ao descriptografar token, usando valor original: {e}")
        return value
