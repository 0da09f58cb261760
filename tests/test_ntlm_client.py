import hashlib
import hmac
import struct

import pytest
from Crypto.Cipher import ARC4

from smbwire.ntlm import (
    DEFAULT_FLAGS,
    SIGNATURE,
    VERSION,
    AvId,
    NegotiateFlag,
    NTLMError,
    ntowfv2,
    parse_av_pairs,
)
from smbwire.ntlm_client import Client

SERVER_CHALLENGE = bytes.fromhex("0123456789abcdef")


def av(av_id, value=b""):
    return struct.pack("<HH", av_id, len(value)) + value


def build_challenge(flags=int(DEFAULT_FLAGS), target_name="Server", target_info=None):
    if target_info is None:
        target_info = av(AvId.NB_DOMAIN_NAME, "Domain".encode("utf-16-le")) + av(AvId.EOL)
    name = target_name.encode("utf-16-le")
    header = bytearray(56)
    header[:8] = SIGNATURE
    struct.pack_into("<I", header, 8, 2)
    struct.pack_into("<HHI", header, 12, len(name), len(name), 56)
    struct.pack_into("<I", header, 20, flags)
    header[24:32] = SERVER_CHALLENGE
    struct.pack_into("<HHI", header, 40, len(target_info), len(target_info), 56 + len(name))
    header[48:56] = VERSION
    return bytes(header) + name + target_info


def field_of(msg, at):
    length, _, offset = struct.unpack_from("<HHI", msg, at)
    return msg[offset:offset + length]


def make_client(**kwargs):
    password = "password"
    return Client(user="user", password=password, **kwargs)


def test_negotiate_message_layout():
    nmsg = Client().negotiate()
    assert len(nmsg) == 40
    assert nmsg[:8] == b"NTLMSSP\x00"
    assert struct.unpack_from("<I", nmsg, 8)[0] == 1
    assert struct.unpack_from("<I", nmsg, 12)[0] == int(DEFAULT_FLAGS)
    assert nmsg[32:40] == bytes([0x0A, 0, 0, 0, 0, 0, 0, 0x0F])


def test_authenticate_before_negotiate_fails():
    with pytest.raises(NTLMError):
        make_client().authenticate(build_challenge())


def test_authenticate_header_and_names():
    c = make_client(domain="Domain", workstation="HOST")
    c.negotiate()
    amsg = c.authenticate(build_challenge())
    assert amsg[:8] == SIGNATURE
    assert struct.unpack_from("<I", amsg, 8)[0] == 3
    assert field_of(amsg, 28) == "Domain".encode("utf-16-le")
    assert field_of(amsg, 36) == "user".encode("utf-16-le")
    assert field_of(amsg, 44) == "HOST".encode("utf-16-le")
    assert field_of(amsg, 12) == bytes(24)
    assert amsg[64:72] == VERSION
    assert struct.unpack_from("<I", amsg, 60)[0] == int(DEFAULT_FLAGS)


def test_nt_response_verifies_with_target_name_as_domain():
    c = make_client()
    c.negotiate()
    amsg = c.authenticate(build_challenge(target_name="Server"))
    domain = field_of(amsg, 28)
    assert domain == "Server".encode("utf-16-le")
    nt = field_of(amsg, 20)
    key = ntowfv2("USER".encode("utf-16-le"), "password".encode("utf-16-le"), domain)
    proof = hmac.new(key, SERVER_CHALLENGE + nt[16:], hashlib.md5).digest()
    assert nt[:16] == proof
    assert nt[16:18] == b"\x01\x01"


def test_client_blob_target_info_marks_mic_and_bindings():
    c = make_client(target_spn="cifs/host")
    c.negotiate()
    amsg = c.authenticate(build_challenge())
    blob = field_of(amsg, 20)[16:]
    pairs = parse_av_pairs(blob[28:])
    assert struct.unpack("<I", pairs[AvId.FLAGS])[0] & 0x02
    assert pairs[AvId.CHANNEL_BINDINGS] == bytes(16)
    assert pairs[AvId.TARGET_NAME] == "cifs/host".encode("utf-16-le")
    assert pairs[AvId.NB_DOMAIN_NAME] == "Domain".encode("utf-16-le")


def test_timestamp_taken_from_target_info():
    stamp = bytes(range(1, 9))
    info = av(AvId.TIMESTAMP, stamp) + av(AvId.EOL)
    c = make_client()
    c.negotiate()
    amsg = c.authenticate(build_challenge(target_info=info))
    blob = field_of(amsg, 20)[16:]
    assert blob[8:16] == stamp


def test_mic_and_encrypted_session_key():
    c = make_client(domain="Domain")
    nmsg = c.negotiate()
    cmsg = build_challenge()
    amsg = c.authenticate(cmsg)
    session = c.session()
    key = session.session_key()

    zeroed = amsg[:72] + bytes(16) + amsg[88:]
    assert amsg[72:88] == hmac.new(key, nmsg + cmsg + zeroed, hashlib.md5).digest()

    ntlmv2_hash = ntowfv2(
        "USER".encode("utf-16-le"), "password".encode("utf-16-le"), "Domain".encode("utf-16-le")
    )
    base_key = hmac.new(ntlmv2_hash, field_of(amsg, 20)[:16], hashlib.md5).digest()
    encrypted = field_of(amsg, 52)
    assert len(encrypted) == 16
    assert ARC4.new(base_key).decrypt(encrypted) == key


def test_without_key_exchange_session_key_is_base_key():
    flags = int(DEFAULT_FLAGS) & ~int(NegotiateFlag.NEGOTIATE_KEY_EXCH)
    c = make_client(domain="Domain")
    c.negotiate()
    amsg = c.authenticate(build_challenge(flags=flags))
    ntlmv2_hash = ntowfv2(
        "USER".encode("utf-16-le"), "password".encode("utf-16-le"), "Domain".encode("utf-16-le")
    )
    base_key = hmac.new(ntlmv2_hash, field_of(amsg, 20)[:16], hashlib.md5).digest()
    assert c.session().session_key() == base_key
    assert field_of(amsg, 52) == b""


def test_nt_hash_matches_password():
    nt_hash = hashlib.new("md4", "password".encode("utf-16-le")).digest() if "md4" in hashlib.algorithms_available else None
    from Crypto.Hash import MD4

    nt_hash = MD4.new("password".encode("utf-16-le")).digest()
    c = Client(user="user", nt_hash=nt_hash, domain="Domain")
    c.negotiate()
    amsg = c.authenticate(build_challenge())
    nt = field_of(amsg, 20)
    key = ntowfv2(
        "USER".encode("utf-16-le"), "password".encode("utf-16-le"), "Domain".encode("utf-16-le")
    )
    assert nt[:16] == hmac.new(key, SERVER_CHALLENGE + nt[16:], hashlib.md5).digest()


def test_session_info_map_and_user():
    c = make_client()
    c.negotiate()
    c.authenticate(build_challenge())
    session = c.session()
    assert session.user == "user"
    assert session.info_map().nb_domain_name == "Domain"


def test_no_credentials_no_session():
    c = Client()
    c.negotiate()
    amsg = c.authenticate(build_challenge())
    assert c.session() is None
    assert field_of(amsg, 20) == b""


@pytest.mark.parametrize(
    "mutate, message",
    [
        (lambda m: m[:40], "message length is too short"),
        (lambda m: b"XTLMSSP\x00" + m[8:], "invalid signature"),
        (lambda m: m[:8] + struct.pack("<I", 1) + m[12:], "invalid message type"),
        (lambda m: m[:12] + struct.pack("<HHI", 12, 4, 56) + m[20:], "invalid target name format"),
        (lambda m: m[:40] + struct.pack("<HHI", 8, 8, 5000) + m[48:], "invalid target info format"),
    ],
)
def test_malformed_challenge(mutate, message):
    c = make_client()
    c.negotiate()
    with pytest.raises(NTLMError, match=message):
        c.authenticate(mutate(build_challenge()))


def test_unterminated_target_info_rejected():
    c = make_client()
    c.negotiate()
    info = av(AvId.NB_DOMAIN_NAME, b"ab")
    with pytest.raises(NTLMError, match="invalid target info format"):
        c.authenticate(build_challenge(target_info=info))


def test_negotiate_check_requires_request_target():
    flags = int(DEFAULT_FLAGS) & ~int(NegotiateFlag.REQUEST_TARGET)
    c = make_client(with_negotiate_check=True)
    c.negotiate()
    with pytest.raises(NTLMError, match="invalid negotiate flags"):
        c.authenticate(build_challenge(flags=flags))


def test_negotiate_check_requires_target_info():
    flags = int(DEFAULT_FLAGS) & ~int(NegotiateFlag.NEGOTIATE_TARGET_INFO)
    c = make_client(with_negotiate_check=True)
    c.negotiate()
    with pytest.raises(NTLMError, match="invalid negotiate flags"):
        c.authenticate(build_challenge(flags=flags))