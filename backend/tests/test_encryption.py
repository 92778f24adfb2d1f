"""Token encryption tests"""
import base64

import pytest

from descsync.utils.encryption import HEADER_LENGTH, DecryptionError, decrypt, encrypt


@pytest.mark.critical
class TestEncryption:
    """Test AES-GCM token sealing"""

    def test_decrypt_returns_original_token(self):
        blob = encrypt("ya29.access-token")
        assert blob != "ya29.access-token"
        assert decrypt(blob) == "ya29.access-token"

    def test_same_plaintext_encrypts_differently(self):
        """Fresh salt and IV per blob"""
        assert encrypt("token") != encrypt("token")

    def test_blob_layout_has_salt_iv_and_tag(self):
        raw = base64.b64decode(encrypt("abc"))
        assert len(raw) == HEADER_LENGTH + len("abc")

    def test_tampered_ciphertext_is_rejected(self):
        raw = bytearray(base64.b64decode(encrypt("refresh-token")))
        raw[-1] ^= 0x01
        with pytest.raises(DecryptionError):
            decrypt(base64.b64encode(bytes(raw)).decode())

    def test_wrong_key_is_rejected(self):
        blob = encrypt("refresh-token", secret="key-one")
        with pytest.raises(DecryptionError):
            decrypt(blob, secret="key-two")

    def test_short_blob_is_an_error_not_empty(self):
        short = base64.b64encode(b"x" * (HEADER_LENGTH - 1)).decode()
        with pytest.raises(DecryptionError):
            decrypt(short)

    @pytest.mark.parametrize("blob", ["", "not base64 !!"])
    def test_malformed_blob_is_rejected(self, blob):
        with pytest.raises(DecryptionError):
            decrypt(blob)

    def test_decryption_error_is_a_value_error(self):
        assert issubclass(DecryptionError, ValueError)

    def test_missing_key_raises(self):
        with pytest.raises(ValueError):
            encrypt("token", secret="")
