"""An established NTLM security context: signing and sealing."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Mapping, Optional

from Crypto.Cipher import ARC4

from .ntlm import AvId, NegotiateFlag, NTLMError, mac, seal_key, sign_key

_SIGNATURE_SIZE = 16


def _decode_utf16(data: Optional[bytes]) -> str:
    if not data:
        return ""
    return bytes(data).decode("utf-16-le", errors="replace")


@dataclass(frozen=True)
class InfoMap:
    """Names the server reported in its target info."""

    nb_computer_name: str = ""
    nb_domain_name: str = ""
    dns_computer_name: str = ""
    dns_domain_name: str = ""
    dns_tree_name: str = ""


class Session:
    """Keys and cipher state derived from a completed NTLM exchange."""

    def __init__(
        self,
        is_client_side: bool,
        user: str,
        negotiate_flags: int,
        exported_session_key: bytes,
        av_pairs: Optional[Mapping[int, bytes]] = None,
    ) -> None:
        self.is_client_side = is_client_side
        self.user = user
        self.negotiate_flags = int(negotiate_flags)
        self._exported_session_key = bytes(exported_session_key)
        self._av_pairs = dict(av_pairs or {})

        flags = self.negotiate_flags
        key = self._exported_session_key
        self._client_signing_key = sign_key(flags, key, True)
        self._server_signing_key = sign_key(flags, key, False)
        self._client_handle = ARC4.new(seal_key(flags, key, True))
        self._server_handle = ARC4.new(seal_key(flags, key, False))

    @property
    def _outgoing(self):
        if self.is_client_side:
            return self._client_handle, self._client_signing_key
        return self._server_handle, self._server_signing_key

    @property
    def _incoming(self):
        if self.is_client_side:
            return self._server_handle, self._server_signing_key
        return self._client_handle, self._client_signing_key

    def session_key(self) -> bytes:
        """The exported session key."""
        return self._exported_session_key

    def info_map(self) -> InfoMap:
        """Names taken from the server's AV pairs."""
        return InfoMap(
            nb_computer_name=_decode_utf16(self._av_pairs.get(AvId.NB_COMPUTER_NAME)),
            nb_domain_name=_decode_utf16(self._av_pairs.get(AvId.NB_DOMAIN_NAME)),
            dns_computer_name=_decode_utf16(self._av_pairs.get(AvId.DNS_COMPUTER_NAME)),
            dns_domain_name=_decode_utf16(self._av_pairs.get(AvId.DNS_DOMAIN_NAME)),
            dns_tree_name=_decode_utf16(self._av_pairs.get(AvId.DNS_TREE_NAME)),
        )

    def overhead(self) -> int:
        """Bytes a signature adds to a sealed message."""
        return _SIGNATURE_SIZE

    def sum(self, plaintext: bytes, seq_num: int) -> tuple[Optional[bytes], int]:
        """Sign an outgoing message; (None, 0) when signing was not negotiated."""
        if not self.negotiate_flags & NegotiateFlag.NEGOTIATE_SIGN:
            return None, 0
        handle, key = self._outgoing
        return mac(self.negotiate_flags, handle, key, seq_num, plaintext)

    def check_sum(
        self, signature: Optional[bytes], plaintext: bytes, seq_num: int
    ) -> tuple[bool, int]:
        """Verify an incoming signature; return whether it holds and the next sequence number."""
        if not self.negotiate_flags & NegotiateFlag.NEGOTIATE_SIGN:
            return signature is None, 0
        handle, key = self._incoming
        expected, next_seq = mac(self.negotiate_flags, handle, key, seq_num, plaintext)
        if signature is None or bytes(signature) != expected:
            return False, 0
        return True, next_seq

    def seal(self, plaintext: bytes, seq_num: int) -> tuple[bytes, int]:
        """Return the signature followed by the (possibly encrypted) message."""
        plaintext = bytes(plaintext)
        flags = self.negotiate_flags
        if flags & NegotiateFlag.NEGOTIATE_SEAL:
            body = self._client_handle.encrypt(plaintext)
            handle, key = self._outgoing
            tag, seq_num = mac(flags, handle, key, seq_num, plaintext)
        elif flags & NegotiateFlag.NEGOTIATE_SIGN:
            body = plaintext
            handle, key = self._outgoing
            tag, seq_num = mac(flags, handle, key, seq_num, plaintext)
        else:
            body = plaintext
            tag = bytes(_SIGNATURE_SIZE)
        return tag + body, seq_num

    def unseal(self, ciphertext: bytes, seq_num: int) -> tuple[bytes, int]:
        """Check and strip the signature; raise NTLMError on a mismatch."""
        ciphertext = bytes(ciphertext)
        if len(ciphertext) < _SIGNATURE_SIZE:
            raise NTLMError("message is too short")
        signature = ciphertext[:_SIGNATURE_SIZE]
        body = ciphertext[_SIGNATURE_SIZE:]
        flags = self.negotiate_flags

        if flags & NegotiateFlag.NEGOTIATE_SEAL:
            plaintext = self._server_handle.encrypt(body)
            handle, key = self._incoming
            expected, seq_num = mac(flags, handle, key, seq_num, plaintext)
            if signature != expected:
                raise NTLMError("signature mismatch")
        elif flags & NegotiateFlag.NEGOTIATE_SIGN:
            plaintext = body
            handle, key = self._incoming
            expected, seq_num = mac(flags, handle, key, seq_num, plaintext)
            if signature != expected:
                raise NTLMError("signature mismatch")
        else:
            plaintext = body
            if any(signature):
                raise NTLMError("signature mismatch")

        return plaintext, seq_num