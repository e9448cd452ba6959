"""
test_crypto.py - Content Transform Tests

Tests for the passphrase-keyed whole-stream transform.
"""

import io
import shutil
import tempfile
from pathlib import Path

import pytest

from endfs.crypto import STREAM_MAGIC, TAG_SIZE, ContentTransform, Direction
from endfs.exceptions import TransformFailure

# Low iteration count keeps key derivation fast in tests
TEST_ITERATIONS = 1000


class TestContentTransform:
    """Test cases for ContentTransform."""

    def setup_method(self):
        """Setup test environment."""
        self.temp_dir = Path(tempfile.mkdtemp())
        self.transform = ContentTransform(b"correct horse", iterations=TEST_ITERATIONS)

    def teardown_method(self):
        """Cleanup test environment."""
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    @pytest.mark.parametrize("plaintext", [
        b"x",
        b"This is sensitive test data!",
        b"0123456789abcdef",  # exactly one AES block
        bytes(range(256)) * 3,
    ])
    def test_round_trip(self, plaintext):
        """Decrypting an encrypted buffer yields the original."""
        ciphertext = self.transform.encrypt_bytes(plaintext)

        assert ciphertext != plaintext
        assert ciphertext.startswith(STREAM_MAGIC)
        assert self.transform.decrypt_bytes(ciphertext) == plaintext

    def test_empty_plaintext_round_trip(self):
        """Empty plaintext still produces a full stream."""
        ciphertext = self.transform.encrypt_bytes(b"")

        # magic + one padding block + tag
        assert len(ciphertext) == len(STREAM_MAGIC) + 16 + TAG_SIZE
        assert self.transform.decrypt_bytes(ciphertext) == b""

    def test_zero_length_input_decrypts_to_nothing(self):
        """A zero-length backing file is empty plaintext."""
        assert self.transform.decrypt_bytes(b"") == b""

    def test_deterministic_under_fixed_passphrase(self):
        """Same passphrase and plaintext always give the same ciphertext."""
        other = ContentTransform("correct horse", iterations=TEST_ITERATIONS)
        plaintext = b"Hello World! " * 50

        assert self.transform.encrypt_bytes(plaintext) == other.encrypt_bytes(plaintext)

    def test_different_passphrase_changes_ciphertext(self):
        other = ContentTransform(b"battery staple", iterations=TEST_ITERATIONS)

        assert self.transform.encrypt_bytes(b"data") != other.encrypt_bytes(b"data")

    def test_wrong_passphrase_fails(self):
        """Decrypting with another passphrase is a TransformFailure."""
        ciphertext = self.transform.encrypt_bytes(b"Secret message")
        other = ContentTransform(b"battery staple", iterations=TEST_ITERATIONS)

        with pytest.raises(TransformFailure):
            other.decrypt_bytes(ciphertext)

    def test_tampered_ciphertext_fails(self):
        """Flipping one ciphertext bit fails authentication."""
        ciphertext = bytearray(self.transform.encrypt_bytes(b"Secret message"))
        ciphertext[len(STREAM_MAGIC)] ^= 1

        with pytest.raises(TransformFailure):
            self.transform.decrypt_bytes(bytes(ciphertext))

    def test_truncated_ciphertext_fails(self):
        ciphertext = self.transform.encrypt_bytes(b"Secret message")

        with pytest.raises(TransformFailure):
            self.transform.decrypt_bytes(ciphertext[:-1])

        with pytest.raises(TransformFailure):
            self.transform.decrypt_bytes(ciphertext[:len(STREAM_MAGIC) + 3])

    def test_unencrypted_input_fails(self):
        """Plain text that was never encrypted is rejected."""
        with pytest.raises(TransformFailure) as exc_info:
            self.transform.decrypt_bytes(b"HELLOWORLD")

        assert exc_info.value.errno == 5  # EIO

    def test_file_streaming(self):
        """Streaming transform across many chunks."""
        test_file = self.temp_dir / "test_input.txt"
        test_data = b"Hello World! " * 20000  # ~260KB, several chunks
        test_file.write_bytes(test_data)

        encrypted_file = self.temp_dir / "test_encrypted.enc"
        with open(test_file, 'rb') as input_f, open(encrypted_file, 'wb') as output_f:
            written = self.transform.transform(input_f, output_f, Direction.ENCRYPT)

        assert written == encrypted_file.stat().st_size
        assert encrypted_file.stat().st_size > len(test_data)

        decrypted_file = self.temp_dir / "test_decrypted.txt"
        with open(encrypted_file, 'rb') as input_f, open(decrypted_file, 'wb') as output_f:
            written = self.transform.transform(input_f, output_f, Direction.DECRYPT)

        assert written == len(test_data)
        assert decrypted_file.read_bytes() == test_data

    def test_small_chunk_size(self):
        """Chunk boundaries that split the tag still decrypt."""
        plaintext = b"chunk boundaries " * 10
        ciphertext = io.BytesIO()
        self.transform.transform(io.BytesIO(plaintext), ciphertext, Direction.ENCRYPT, chunk_size=7)

        output = io.BytesIO()
        ciphertext.seek(0)
        self.transform.transform(ciphertext, output, Direction.DECRYPT, chunk_size=5)

        assert output.getvalue() == plaintext
