import pytest

from conftest import SECRET_KEY
from redmine_timesheet.crypto import GCM_PREFIX, SecretCipher, derive_iv
from redmine_timesheet.models import ConfigError, CryptoError


def decrypt_outcome(cipher, value, username):
    """Return ("plaintext", text) or ("error", CryptoError)."""
    try:
        return "plaintext", cipher.decrypt(value, username)
    except CryptoError as e:
        return "error", e


class TestKey:
    def test_missing_key_is_a_config_error(self):
        with pytest.raises(ConfigError):
            SecretCipher(None)

    def test_short_key_is_rejected(self):
        with pytest.raises(ConfigError):
            SecretCipher("too-short")

    def test_32_byte_text_key_is_accepted(self):
        cipher = SecretCipher("k" * 32, "cbc")
        assert cipher.decrypt(cipher.encrypt("secret", "sandy"), "sandy") == "secret"

    def test_unknown_scheme(self):
        with pytest.raises(ConfigError):
            SecretCipher(SECRET_KEY, "ecb")


class TestLegacyScheme:
    def test_round_trip(self, legacy_cipher):
        api_key = "8088d8fc19c40df7cc6d03cec156ee9f385e8136"
        encrypted = legacy_cipher.encrypt(api_key, "sandy.tu")
        assert encrypted != api_key
        assert legacy_cipher.decrypt(encrypted, "sandy.tu") == api_key

    def test_same_username_gives_same_ciphertext(self, legacy_cipher):
        assert legacy_cipher.encrypt("abc", "sandy") == legacy_cipher.encrypt("abc", "sandy")

    def test_other_username_garbles_the_first_block(self, legacy_cipher):
        plaintext = "8088d8fc19c40df7cc6d03cec156ee9f385e8136"
        encrypted = legacy_cipher.encrypt(plaintext, "alice")

        # CBC: only the first block depends on the IV
        first = bytes(
            p ^ a ^ b
            for p, a, b in zip(plaintext[:16].encode(), derive_iv("alice"), derive_iv("bob"))
        )
        garbled = first + plaintext[16:].encode()
        outcome, value = decrypt_outcome(legacy_cipher, encrypted, "bob")
        try:
            expected = ("plaintext", garbled.decode("utf-8"))
        except UnicodeDecodeError:
            expected = ("error", None)

        assert outcome == expected[0]
        if outcome == "plaintext":
            assert value == expected[1]
            assert value != plaintext

    def test_iv_is_md5_of_username(self):
        assert len(derive_iv("sandy")) == 16
        assert derive_iv("sandy") != derive_iv("sandy.tu")

    def test_without_username_iv_is_stored_with_value(self, legacy_cipher):
        encrypted = legacy_cipher.encrypt("secret")
        iv_hex, _, _ = encrypted.partition(":")
        assert len(bytes.fromhex(iv_hex)) == 16
        assert legacy_cipher.decrypt(encrypted) == "secret"

    def test_value_needing_username_fails_without_one(self, legacy_cipher):
        with pytest.raises(CryptoError):
            legacy_cipher.decrypt(legacy_cipher.encrypt("secret", "sandy"))

    def test_other_key_does_not_recover_plaintext(self, legacy_cipher):
        plaintext = "8088d8fc19c40df7cc6d03cec156ee9f"
        encrypted = legacy_cipher.encrypt(plaintext, "sandy")
        other = SecretCipher("ff" * 32, "cbc")

        outcome, value = decrypt_outcome(other, encrypted, "sandy")
        assert outcome in ("error", "plaintext")
        if outcome == "error":
            assert isinstance(value, CryptoError)
        else:
            assert value != plaintext

    def test_garbage_is_a_crypto_error(self, legacy_cipher):
        with pytest.raises(CryptoError):
            legacy_cipher.decrypt("not-hex", "sandy")


class TestAuthenticatedScheme:
    def test_round_trip(self, cipher):
        encrypted = cipher.encrypt("secret", "sandy")
        assert encrypted.startswith(GCM_PREFIX)
        assert cipher.decrypt(encrypted, "sandy") == "secret"

    def test_fresh_nonce_per_call(self, cipher):
        assert cipher.encrypt("secret", "sandy") != cipher.encrypt("secret", "sandy")

    def test_bound_to_username(self, cipher):
        encrypted = cipher.encrypt("secret", "alice")
        with pytest.raises(CryptoError):
            cipher.decrypt(encrypted, "bob")

    def test_tampering_is_detected(self, cipher):
        encrypted = cipher.encrypt("secret", "sandy")
        last = "0" if encrypted[-1] != "0" else "1"
        with pytest.raises(CryptoError):
            cipher.decrypt(encrypted[:-1] + last, "sandy")

    def test_reads_legacy_values(self, cipher, legacy_cipher):
        encrypted = legacy_cipher.encrypt("secret", "sandy")
        assert cipher.decrypt(encrypted, "sandy") == "secret"
