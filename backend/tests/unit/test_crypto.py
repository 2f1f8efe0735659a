from cryptography.fernet import Fernet
import pytest

from roombook.core import crypto
from roombook.core.crypto import MASKED_SECRET, decrypt_str, encrypt_str, mask_secret


@pytest.fixture
def fernet_key(monkeypatch):
    key = Fernet.generate_key().decode()
    monkeypatch.setattr(crypto.settings, "encryption_key", key)
    return key


def test_roundtrip_with_key(fernet_key):
    token = encrypt_str("sk_live_abc")
    assert token != "sk_live_abc"
    assert decrypt_str(token) == "sk_live_abc"


def test_passthrough_without_key(monkeypatch):
    monkeypatch.setattr(crypto.settings, "encryption_key", None)
    assert encrypt_str("plain") == "plain"
    assert decrypt_str("plain") == "plain"


def test_wrong_key_cannot_decrypt(fernet_key, monkeypatch):
    token = encrypt_str("secret")
    monkeypatch.setattr(crypto.settings, "encryption_key", Fernet.generate_key().decode())
    with pytest.raises(ValueError):
        decrypt_str(token)


def test_mask_secret():
    assert mask_secret("sk_test") == MASKED_SECRET
    assert mask_secret(None) is None
    assert mask_secret("") is None
