"""AES in Counter with CBC-MAC mode (NIST SP 800-38C)."""

from __future__ import annotations

from Crypto.Cipher import AES

_BLOCK = 16
_MASK128 = (1 << 128) - 1


class AuthenticationError(ValueError):
    """The ciphertext failed authentication."""


def _max_payload(q: int) -> int:
    return (1 << (q * 8)) - 1


def _pad(data: bytes) -> bytes:
    remainder = len(data) % _BLOCK
    return data if remainder == 0 else data + bytes(_BLOCK - remainder)


def _xor(a: bytes, b: bytes) -> bytes:
    return bytes(x ^ y for x, y in zip(a, b))


class CCM:
    """AEAD cipher with configurable nonce and tag lengths."""

    def __init__(self, key: bytes, nonce_size: int, tag_size: int) -> None:
        if not 7 <= nonce_size <= 13:
            raise ValueError("cipher: invalid nonce size")
        if not (4 <= tag_size <= 16 and tag_size % 2 == 0):
            raise ValueError("cipher: invalid tag size")
        self._encrypt = AES.new(bytes(key), AES.MODE_ECB).encrypt
        self._nonce_size = nonce_size
        self._tag_size = tag_size

    @property
    def nonce_size(self) -> int:
        """Length in bytes of the nonce this cipher expects."""
        return self._nonce_size

    @property
    def overhead(self) -> int:
        """Length in bytes of the authentication tag."""
        return self._tag_size

    @property
    def _q(self) -> int:
        return 15 - self._nonce_size

    def _check_nonce(self, nonce: bytes) -> None:
        if len(nonce) != self._nonce_size:
            raise ValueError("cipher: incorrect nonce length given to CCM")

    def _counter_block(self, nonce: bytes, counter: int) -> bytes:
        return bytes([self._q - 1]) + bytes(nonce) + counter.to_bytes(self._q, "big")

    def _ctr(self, initial: bytes, data: bytes) -> bytes:
        counter = int.from_bytes(initial, "big")
        out = bytearray()
        for start in range(0, len(data), _BLOCK):
            stream = self._encrypt(counter.to_bytes(_BLOCK, "big"))
            out += _xor(data[start:start + _BLOCK], stream)
            counter = (counter + 1) & _MASK128
        return bytes(out)

    def _tag(self, nonce: bytes, data: bytes, plaintext: bytes) -> bytes:
        flags = (self._q - 1) | (((self._tag_size - 2) // 2) << 3)
        if data:
            flags |= 1 << 6
        b0 = bytes([flags]) + bytes(nonce) + len(plaintext).to_bytes(self._q, "big")

        blocks = bytearray(b0)
        if data:
            size = len(data)
            if size < (1 << 15) - (1 << 7):
                header = size.to_bytes(2, "big")
            elif size <= (1 << 31) - 1:
                header = b"\xff\xfe" + size.to_bytes(4, "big")
            else:
                header = b"\xff\xff" + size.to_bytes(8, "big")
            blocks += _pad(header + bytes(data))
        blocks += _pad(bytes(plaintext))

        chain = bytes(_BLOCK)
        for start in range(0, len(blocks), _BLOCK):
            chain = self._encrypt(_xor(chain, blocks[start:start + _BLOCK]))
        return chain

    def seal(self, nonce: bytes, plaintext: bytes, data: bytes = b"") -> bytes:
        """Encrypt and authenticate; return ciphertext followed by the tag."""
        self._check_nonce(nonce)
        if len(plaintext) > _max_payload(self._q):
            raise ValueError("cipher: plaintext exceeds the maximum payload size")
        s0 = self._encrypt(self._counter_block(nonce, 0))
        ciphertext = self._ctr(self._counter_block(nonce, 1), bytes(plaintext))
        tag = _xor(self._tag(nonce, data, plaintext), s0)
        return ciphertext + tag[: self._tag_size]

    def open(self, nonce: bytes, ciphertext: bytes, data: bytes = b"") -> bytes:
        """Verify and decrypt; raise AuthenticationError on a bad tag."""
        self._check_nonce(nonce)
        if len(ciphertext) <= self._tag_size:
            raise ValueError("cipher: incorrect ciphertext length given to CCM")
        payload_size = len(ciphertext) - self._tag_size
        if payload_size > _max_payload(self._q):
            raise ValueError(
                "cipher: len(ciphertext)-tagSize exceeds the maximum payload size"
            )
        s0 = self._encrypt(self._counter_block(nonce, 0))
        plaintext = self._ctr(self._counter_block(nonce, 1), bytes(ciphertext[:payload_size]))
        tag = _xor(self._tag(nonce, data, plaintext), s0)
        if tag[: self._tag_size] != bytes(ciphertext[payload_size:]):
            raise AuthenticationError("crypto/ccm: message authentication failed")
        return plaintext