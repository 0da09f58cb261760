"""NTLMv2 client side of the three-message handshake."""

from __future__ import annotations

import hashlib
import hmac
import os
import struct
import time
from dataclasses import dataclass, field
from typing import Optional

from Crypto.Cipher import ARC4

from .ntlm import (
    DEFAULT_FLAGS,
    NTLM_AUTHENTICATE,
    NTLM_CHALLENGE,
    NTLM_NEGOTIATE,
    SIGNATURE,
    VERSION,
    AvId,
    NegotiateFlag,
    NTLMError,
    TargetInfoEncoder,
    encode_ntlmv2_response,
    ntowfv2,
    ntowfv2_hash,
)
from .ntlm_session import Session

_NEGOTIATE_SIZE = 40
_CHALLENGE_MIN_SIZE = 48
_AUTHENTICATE_HEADER_SIZE = 88
_LM_RESPONSE_SIZE = 24
_SESSION_KEY_SIZE = 16
_MIC_OFFSET = 72
_FILETIME_EPOCH_OFFSET = 116444736000000000


def _utf16(text: str) -> Optional[bytes]:
    return text.encode("utf-16-le") if text else None


def _read_field(msg: bytes, at: int, what: str) -> bytes:
    length, max_length, offset = struct.unpack_from("<HHI", msg, at)
    if max_length < length or offset + length > len(msg):
        raise NTLMError(f"invalid {what} format")
    return msg[offset:offset + length]


def _filetime_now() -> bytes:
    return struct.pack("<Q", time.time_ns() // 100 + _FILETIME_EPOCH_OFFSET)


@dataclass
class Client:
    """NTLMv2 initiator; ``nt_hash`` may stand in for the password."""

    user: str = ""
    password: str = ""
    nt_hash: Optional[bytes] = None
    domain: str = ""
    workstation: str = ""
    target_spn: str = ""
    with_negotiate_check: bool = False
    _nmsg: Optional[bytes] = field(default=None, init=False, repr=False)
    _session: Optional[Session] = field(default=None, init=False, repr=False)

    def negotiate(self) -> bytes:
        """Build the NEGOTIATE message."""
        nmsg = bytearray(_NEGOTIATE_SIZE)
        nmsg[:8] = SIGNATURE
        struct.pack_into("<II", nmsg, 8, NTLM_NEGOTIATE, int(DEFAULT_FLAGS))
        nmsg[32:40] = VERSION
        self._nmsg = bytes(nmsg)
        return self._nmsg

    def authenticate(self, cmsg: bytes) -> bytes:
        """Answer a CHALLENGE message with an AUTHENTICATE message."""
        if self._nmsg is None:
            raise NTLMError("negotiate message has not been sent")
        cmsg = bytes(cmsg)
        if len(cmsg) < _CHALLENGE_MIN_SIZE:
            raise NTLMError("message length is too short")
        if cmsg[:8] != SIGNATURE:
            raise NTLMError("invalid signature")
        if struct.unpack_from("<I", cmsg, 8)[0] != NTLM_CHALLENGE:
            raise NTLMError("invalid message type")

        flags = struct.unpack_from("<I", self._nmsg, 12)[0] & struct.unpack_from("<I", cmsg, 20)[0]

        if self.with_negotiate_check and not flags & NegotiateFlag.REQUEST_TARGET:
            raise NTLMError("invalid negotiate flags")
        target_name = _read_field(cmsg, 12, "target name")

        if self.with_negotiate_check and not flags & NegotiateFlag.NEGOTIATE_TARGET_INFO:
            raise NTLMError("invalid negotiate flags")
        target_info = _read_field(cmsg, 40, "target info")
        info = TargetInfoEncoder.parse(target_info, _utf16(self.target_spn) or b"")

        domain = _utf16(self.domain)
        if domain is None:
            domain = target_name
        user = _utf16(self.user)
        workstation = _utf16(self.workstation)

        nt_response_size = 16 + 28 + info.size() + 4
        total = (
            _AUTHENTICATE_HEADER_SIZE
            + len(domain)
            + len(user or b"")
            + len(workstation or b"")
            + _LM_RESPONSE_SIZE
            + nt_response_size
            + _SESSION_KEY_SIZE
        )
        amsg = bytearray(total)
        amsg[:8] = SIGNATURE
        struct.pack_into("<I", amsg, 8, NTLM_AUTHENTICATE)

        off = _AUTHENTICATE_HEADER_SIZE
        for value, at in ((domain, 28), (user, 36), (workstation, 44)):
            if value is None:
                continue
            amsg[off:off + len(value)] = value
            struct.pack_into("<HHI", amsg, at, len(value), len(value), off)
            off += len(value)

        if self.user or self.password or self.nt_hash is not None:
            upper_user = self.user.upper().encode("utf-16-le")
            if self.nt_hash is not None:
                ntlmv2_hash = ntowfv2_hash(upper_user, bytes(self.nt_hash), domain)
            else:
                ntlmv2_hash = ntowfv2(upper_user, self.password.encode("utf-16-le"), domain)

            # LMv2 response is left zeroed.
            struct.pack_into("<HHI", amsg, 12, _LM_RESPONSE_SIZE, _LM_RESPONSE_SIZE, off)
            off += _LM_RESPONSE_SIZE

            server_challenge = cmsg[24:32]
            client_challenge = os.urandom(8)
            timestamp = info.info_map.get(AvId.TIMESTAMP) or _filetime_now()
            av_pairs = info.info_map

            nt_response = encode_ntlmv2_response(
                ntlmv2_hash,
                server_challenge,
                client_challenge,
                timestamp,
                info.encode() + bytes(4),
            )
            amsg[off:off + len(nt_response)] = nt_response
            struct.pack_into("<HHI", amsg, 20, len(nt_response), len(nt_response), off)
            off = total - _SESSION_KEY_SIZE

            key_exchange_key = hmac.new(ntlmv2_hash, nt_response[:16], hashlib.md5).digest()

            if flags & NegotiateFlag.NEGOTIATE_KEY_EXCH:
                exported_session_key = os.urandom(_SESSION_KEY_SIZE)
                encrypted = ARC4.new(key_exchange_key).encrypt(exported_session_key)
                amsg[off:off + _SESSION_KEY_SIZE] = encrypted
                struct.pack_into(
                    "<HHI", amsg, 52, _SESSION_KEY_SIZE, _SESSION_KEY_SIZE, off
                )
            else:
                exported_session_key = key_exchange_key

            struct.pack_into("<I", amsg, 60, flags)
            amsg[64:72] = VERSION
            mic = hmac.new(
                exported_session_key, self._nmsg + cmsg + bytes(amsg), hashlib.md5
            ).digest()
            amsg[_MIC_OFFSET:_MIC_OFFSET + 16] = mic

            self._session = Session(
                is_client_side=True,
                user=self.user,
                negotiate_flags=flags,
                exported_session_key=exported_session_key,
                av_pairs=av_pairs,
            )

        return bytes(amsg)

    def session(self) -> Optional[Session]:
        """The session established by ``authenticate``, if any."""
        return self._session