"""NTLMv2 primitives: key derivation, responses, AV pairs and signatures."""

from __future__ import annotations

import enum
import hashlib
import hmac
import struct
import zlib
from dataclasses import dataclass, field
from typing import Iterator, Optional, Protocol, Union

from Crypto.Hash import MD4

SIGNATURE = b"NTLMSSP\x00"

NTLM_NEGOTIATE = 0x00000001
NTLM_CHALLENGE = 0x00000002
NTLM_AUTHENTICATE = 0x00000003

WINDOWS_MAJOR_VERSION_5 = 0x05
WINDOWS_MAJOR_VERSION_6 = 0x06
WINDOWS_MAJOR_VERSION_10 = 0x0A

WINDOWS_MINOR_VERSION_0 = 0x00
WINDOWS_MINOR_VERSION_1 = 0x01
WINDOWS_MINOR_VERSION_2 = 0x02
WINDOWS_MINOR_VERSION_3 = 0x03

NTLMSSP_REVISION_W2K3 = 0x0F

# ProductMajorVersion, ProductMinorVersion, ProductBuild(2), Reserved(3), NTLMRevisionCurrent
VERSION = bytes(
    [WINDOWS_MAJOR_VERSION_10, WINDOWS_MINOR_VERSION_0, 0, 0, 0, 0, 0, NTLMSSP_REVISION_W2K3]
)

_UINT32 = 0xFFFFFFFF


class NTLMError(Exception):
    """A malformed NTLM message or a failed authentication."""


class NegotiateFlag(enum.IntFlag):
    """NTLM negotiate flags."""

    NEGOTIATE_UNICODE = 1 << 0
    NEGOTIATE_OEM = 1 << 1
    REQUEST_TARGET = 1 << 2
    NEGOTIATE_SIGN = 1 << 4
    NEGOTIATE_SEAL = 1 << 5
    NEGOTIATE_DATAGRAM = 1 << 6
    NEGOTIATE_LM_KEY = 1 << 7
    NEGOTIATE_NTLM = 1 << 9
    ANONYMOUS = 1 << 11
    NEGOTIATE_OEM_DOMAIN_SUPPLIED = 1 << 12
    NEGOTIATE_OEM_WORKSTATION_SUPPLIED = 1 << 13
    NEGOTIATE_ALWAYS_SIGN = 1 << 15
    TARGET_TYPE_DOMAIN = 1 << 16
    TARGET_TYPE_SERVER = 1 << 17
    NEGOTIATE_EXTENDED_SESSIONSECURITY = 1 << 19
    NEGOTIATE_IDENTIFY = 1 << 20
    REQUEST_NON_NT_SESSION_KEY = 1 << 22
    NEGOTIATE_TARGET_INFO = 1 << 23
    NEGOTIATE_VERSION = 1 << 25
    NEGOTIATE_128 = 1 << 29
    NEGOTIATE_KEY_EXCH = 1 << 30
    NEGOTIATE_56 = 1 << 31


DEFAULT_FLAGS = (
    NegotiateFlag.NEGOTIATE_56
    | NegotiateFlag.NEGOTIATE_KEY_EXCH
    | NegotiateFlag.NEGOTIATE_128
    | NegotiateFlag.NEGOTIATE_TARGET_INFO
    | NegotiateFlag.NEGOTIATE_EXTENDED_SESSIONSECURITY
    | NegotiateFlag.NEGOTIATE_ALWAYS_SIGN
    | NegotiateFlag.NEGOTIATE_NTLM
    | NegotiateFlag.NEGOTIATE_SIGN
    | NegotiateFlag.REQUEST_TARGET
    | NegotiateFlag.NEGOTIATE_UNICODE
    | NegotiateFlag.NEGOTIATE_VERSION
)


class AvId(enum.IntEnum):
    """Identifiers of AV pairs in target info."""

    EOL = 0
    NB_COMPUTER_NAME = 1
    NB_DOMAIN_NAME = 2
    DNS_COMPUTER_NAME = 3
    DNS_DOMAIN_NAME = 4
    DNS_TREE_NAME = 5
    FLAGS = 6
    TIMESTAMP = 7
    SINGLE_HOST = 8
    TARGET_NAME = 9
    CHANNEL_BINDINGS = 10


class StreamCipher(Protocol):
    """A stateful keystream cipher such as RC4."""

    def encrypt(self, data: bytes) -> bytes: ...


def ntowfv2(user: bytes, password: bytes, domain: bytes) -> bytes:
    """NTOWFv2 from the UTF-16LE upper-case user, password and domain."""
    password_hash = MD4.new(bytes(password)).digest()
    return ntowfv2_hash(user, password_hash, domain)


def ntowfv2_hash(user: bytes, password_hash: bytes, domain: bytes) -> bytes:
    """NTOWFv2 from an already computed NT password hash."""
    return hmac.new(bytes(password_hash), bytes(user) + bytes(domain), hashlib.md5).digest()


def _walk_av_pairs(data: bytes) -> Iterator[tuple[int, int, int]]:
    """Yield (id, value start, value end) for each AV pair in ``data``."""
    offset = 0
    while offset < len(data):
        if len(data) - offset < 4:
            raise NTLMError("invalid AV pair list")
        av_id, length = struct.unpack_from("<HH", data, offset)
        start = offset + 4
        end = start + length
        if end > len(data):
            raise NTLMError("invalid AV pair list")
        yield av_id, start, end
        offset = end


def parse_av_pairs(data: bytes) -> dict[int, bytes]:
    """Parse an AV pair list terminated by MsvAvEOL into a dict."""
    data = bytes(data)
    if len(data) < 4 or any(data[-4:]):
        raise NTLMError("invalid AV pair list")
    return {av_id: data[start:end] for av_id, start, end in _walk_av_pairs(data)}


@dataclass
class TargetInfoEncoder:
    """Target info echoed back by the client, with flags, bindings and SPN added."""

    info: bytes
    spn: bytes = b""
    info_map: dict[int, bytes] = field(default_factory=dict)

    @classmethod
    def parse(cls, info: bytes, spn: bytes = b"") -> "TargetInfoEncoder":
        """Build an encoder from the server's target info."""
        info = bytes(info)
        try:
            info_map = parse_av_pairs(info)
        except NTLMError:
            raise NTLMError("invalid target info format") from None
        return cls(info=info, spn=bytes(spn or b""), info_map=info_map)

    def size(self) -> int:
        """Length of the encoded target info."""
        size = len(self.info)
        if AvId.FLAGS not in self.info_map:
            size += 8
        size += 20
        if self.spn:
            size += 4 + len(self.spn)
        return size

    def _flags_offset(self) -> Optional[int]:
        offset = None
        for av_id, start, _ in _walk_av_pairs(self.info):
            if av_id == AvId.FLAGS:
                offset = start
        return offset

    def encode(self) -> bytes:
        """Encode the target info, marking that a MIC is present."""
        body = bytearray(self.info[:-4])
        if AvId.FLAGS in self.info_map:
            value = self.info_map[AvId.FLAGS]
            start = self._flags_offset()
            if len(value) < 4 or start is None or start + 4 > len(body):
                raise NTLMError("invalid target info format")
            flags = struct.unpack_from("<I", body, start)[0] | 0x02
            struct.pack_into("<I", body, start, flags)
            self.info = bytes(body) + self.info[-4:]
            self.info_map[AvId.FLAGS] = self.info[start:start + len(value)]
        else:
            body += struct.pack("<HHI", AvId.FLAGS, 4, 0x02)

        body += struct.pack("<HH", AvId.CHANNEL_BINDINGS, 16) + bytes(16)

        if self.spn:
            body += struct.pack("<HH", AvId.TARGET_NAME, len(self.spn)) + self.spn

        body += struct.pack("<HH", AvId.EOL, 0)
        return bytes(body)


def encode_ntlmv2_response(
    ntlmv2_hash: bytes,
    server_challenge: bytes,
    client_challenge: bytes,
    timestamp: bytes,
    target_info: Union[bytes, TargetInfoEncoder],
) -> bytes:
    """Build an NTLMv2 response: the 16-byte proof then the client challenge blob."""
    if isinstance(target_info, TargetInfoEncoder):
        info = target_info.encode()
    else:
        info = bytes(target_info)
    blob = (
        b"\x01\x01"
        + bytes(6)
        + bytes(timestamp[:8]).ljust(8, b"\x00")
        + bytes(client_challenge[:8]).ljust(8, b"\x00")
        + bytes(4)
        + info
    )
    proof = hmac.new(bytes(ntlmv2_hash), bytes(server_challenge) + blob, hashlib.md5).digest()
    return proof + blob


def mac(
    negotiate_flags: int,
    handle: StreamCipher,
    signing_key: Optional[bytes],
    seq_num: int,
    msg: bytes,
) -> tuple[bytes, int]:
    """Compute a 16-byte message signature; return it and the next sequence number."""
    flags = int(negotiate_flags)
    seq_num &= _UINT32
    msg = bytes(msg)
    if not flags & NegotiateFlag.NEGOTIATE_EXTENDED_SESSIONSECURITY:
        checksum = struct.pack("<I", zlib.crc32(msg) & _UINT32)
        handle.encrypt(bytes(4))  # random pad, zeroed in the result
        encrypted_checksum = handle.encrypt(checksum)
        encrypted_seq = struct.unpack("<I", handle.encrypt(bytes(4)))[0]
        tag = (
            struct.pack("<I", 1)
            + bytes(4)
            + encrypted_checksum
            + struct.pack("<I", encrypted_seq ^ seq_num)
        )
        if not flags & NegotiateFlag.NEGOTIATE_DATAGRAM:
            seq_num = (seq_num + 1) & _UINT32
        return tag, seq_num

    seq_bytes = struct.pack("<I", seq_num)
    checksum = hmac.new(bytes(signing_key or b""), seq_bytes + msg, hashlib.md5).digest()[:8]
    if flags & NegotiateFlag.NEGOTIATE_KEY_EXCH:
        checksum = handle.encrypt(checksum)
    tag = struct.pack("<I", 1) + checksum + seq_bytes
    return tag, (seq_num + 1) & _UINT32


_CLIENT_SIGN_MAGIC = b"session key to client-to-server signing key magic constant\x00"
_SERVER_SIGN_MAGIC = b"session key to server-to-client signing key magic constant\x00"
_CLIENT_SEAL_MAGIC = b"session key to client-to-server sealing key magic constant\x00"
_SERVER_SEAL_MAGIC = b"session key to server-to-client sealing key magic constant\x00"


def sign_key(negotiate_flags: int, random_session_key: bytes, from_client: bool) -> Optional[bytes]:
    """Derive a signing key; None without extended session security."""
    if int(negotiate_flags) & NegotiateFlag.NEGOTIATE_EXTENDED_SESSIONSECURITY:
        magic = _CLIENT_SIGN_MAGIC if from_client else _SERVER_SIGN_MAGIC
        return hashlib.md5(bytes(random_session_key) + magic).digest()
    return None


def seal_key(negotiate_flags: int, random_session_key: bytes, from_client: bool) -> bytes:
    """Derive a sealing key."""
    flags = int(negotiate_flags)
    key = bytes(random_session_key)
    if flags & NegotiateFlag.NEGOTIATE_EXTENDED_SESSIONSECURITY:
        if flags & NegotiateFlag.NEGOTIATE_128:
            material = key
        elif flags & NegotiateFlag.NEGOTIATE_56:
            material = key[:7]
        else:
            material = key[:5]
        magic = _CLIENT_SEAL_MAGIC if from_client else _SERVER_SEAL_MAGIC
        return hashlib.md5(material + magic).digest()

    if flags & NegotiateFlag.NEGOTIATE_LM_KEY:
        if flags & NegotiateFlag.NEGOTIATE_56:
            return key[:7] + b"\xa0"
        return key[:5] + b"\xe5\x38\xb0"

    return key