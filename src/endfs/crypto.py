"""
src/endfs/crypto.py - Content Transform

🔐 FEATURE: TRANSPARENT CONTENT ENCRYPTION
Whole-stream encrypt/decrypt primitive keyed by the mount passphrase.

🏗️ ARCHITECTURE:
- Key Material: PBKDF2-HMAC-SHA256(passphrase, fixed salt) -> 80 bytes
- Encryption Key: AES-256 key (first 32 bytes)
- IV: CBC initialisation vector (next 16 bytes)
- MAC Key: HMAC-SHA256 key (last 32 bytes)

Stream layout::

    b"EFS1" | AES-256-CBC(PKCS7(plaintext)) | HMAC-SHA256(magic | ciphertext)

🛡️ PROPERTIES:
- Deterministic: the same plaintext and passphrase always give the same
  ciphertext, so identical files are recognisable in the backing tree
- Authenticated: a wrong passphrase or a modified backing file is reported
  as a TransformFailure instead of returning garbage
- Streaming: processed in 64KB chunks
- Empty input decrypts to empty output (freshly created backing files)
"""

import io
from enum import Enum
from typing import BinaryIO, Union

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes, hmac, padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from .exceptions import TransformFailure

STREAM_MAGIC = b"EFS1"
TAG_SIZE = 32
KDF_SALT = b"endfs-content-v1"
DEFAULT_KDF_ITERATIONS = 200_000
CHUNK_SIZE = 64 * 1024


class Direction(Enum):
    """Transform direction."""
    ENCRYPT = "encrypt"
    DECRYPT = "decrypt"


class ContentTransform:
    """
    Passphrase-keyed whole-stream content transform.

    Guarantees ``decrypt(encrypt(P)) == P`` for every plaintext ``P`` and
    signals failure by raising TransformFailure.
    """

    def __init__(self, passphrase: Union[str, bytes],
                 iterations: int = DEFAULT_KDF_ITERATIONS):
        """
        Initialize the transform.

        Args:
            passphrase: Mount passphrase
            iterations: PBKDF2 iteration count
        """
        if isinstance(passphrase, str):
            passphrase = passphrase.encode("utf-8")

        key_material = self._derive_key_material(passphrase, iterations)
        self._enc_key = key_material[:32]
        self._iv = key_material[32:48]
        self._mac_key = key_material[48:]

    @staticmethod
    def _derive_key_material(passphrase: bytes, iterations: int) -> bytes:
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=80,
            salt=KDF_SALT,
            iterations=iterations,
        )
        return kdf.derive(passphrase)

    def _new_cipher(self) -> Cipher:
        return Cipher(algorithms.AES(self._enc_key), modes.CBC(self._iv))

    def _new_mac(self) -> hmac.HMAC:
        return hmac.HMAC(self._mac_key, hashes.SHA256())

    def transform(self, input_file: BinaryIO, output_file: BinaryIO,
                  direction: Direction, chunk_size: int = CHUNK_SIZE) -> int:
        """
        Encrypt or decrypt a whole stream.

        On failure, anything already written to ``output_file`` is partial
        plaintext and must be discarded by the caller.

        Args:
            input_file: Source stream, read to EOF
            output_file: Destination stream
            direction: Direction.ENCRYPT or Direction.DECRYPT
            chunk_size: Size of chunks to process

        Returns:
            Number of bytes written to ``output_file``

        Raises:
            TransformFailure: If the input is not a valid stream for this
                passphrase
        """
        if direction is Direction.ENCRYPT:
            return self._encrypt_stream(input_file, output_file, chunk_size)
        return self._decrypt_stream(input_file, output_file, chunk_size)

    def _encrypt_stream(self, input_file: BinaryIO, output_file: BinaryIO,
                        chunk_size: int) -> int:
        mac = self._new_mac()
        encryptor = self._new_cipher().encryptor()
        padder = padding.PKCS7(algorithms.AES.block_size).padder()

        output_file.write(STREAM_MAGIC)
        mac.update(STREAM_MAGIC)
        written = len(STREAM_MAGIC)

        while True:
            chunk = input_file.read(chunk_size)
            if not chunk:
                break
            block = encryptor.update(padder.update(chunk))
            mac.update(block)
            output_file.write(block)
            written += len(block)

        block = encryptor.update(padder.finalize()) + encryptor.finalize()
        mac.update(block)
        output_file.write(block)
        written += len(block)

        tag = mac.finalize()
        output_file.write(tag)
        return written + len(tag)

    def _decrypt_stream(self, input_file: BinaryIO, output_file: BinaryIO,
                        chunk_size: int) -> int:
        magic = input_file.read(len(STREAM_MAGIC))
        if not magic:
            # Zero-length backing file, e.g. just created
            return 0
        if magic != STREAM_MAGIC:
            raise TransformFailure("Backing data is not an encrypted stream")

        mac = self._new_mac()
        mac.update(magic)
        decryptor = self._new_cipher().decryptor()
        unpadder = padding.PKCS7(algorithms.AES.block_size).unpadder()

        # The last TAG_SIZE bytes are the MAC, never ciphertext
        pending = b""
        written = 0
        while True:
            chunk = input_file.read(chunk_size)
            if not chunk:
                break
            pending += chunk
            if len(pending) <= TAG_SIZE:
                continue
            body, pending = pending[:-TAG_SIZE], pending[-TAG_SIZE:]
            mac.update(body)
            plain = unpadder.update(decryptor.update(body))
            output_file.write(plain)
            written += len(plain)

        if len(pending) != TAG_SIZE:
            raise TransformFailure("Encrypted stream is truncated")

        try:
            mac.verify(pending)
        except InvalidSignature:
            raise TransformFailure("Authentication failed: wrong passphrase or modified data")

        try:
            plain = unpadder.update(decryptor.finalize()) + unpadder.finalize()
        except ValueError as e:
            raise TransformFailure(f"Invalid ciphertext: {e}")

        output_file.write(plain)
        return written + len(plain)

    def encrypt_bytes(self, plaintext: bytes) -> bytes:
        """Encrypt an in-memory buffer."""
        output = io.BytesIO()
        self.transform(io.BytesIO(plaintext), output, Direction.ENCRYPT)
        return output.getvalue()

    def decrypt_bytes(self, ciphertext: bytes) -> bytes:
        """Decrypt an in-memory buffer."""
        output = io.BytesIO()
        self.transform(io.BytesIO(ciphertext), output, Direction.DECRYPT)
        return output.getvalue()
