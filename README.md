# smbwire

Pure-Python pieces that an SMB2 client uses below the file-system layer:

- `smbwire.ntlm`: NTLMv2 primitives: negotiate flags (`NegotiateFlag`), AV pair
  identifiers (`AvId`), `ntowfv2`, `ntowfv2_hash`, `encode_ntlmv2_response`,
  `parse_av_pairs`, `TargetInfoEncoder`, message signatures (`mac`) and key
  derivation (`sign_key`, `seal_key`). Malformed input raises `NTLMError`.
- `smbwire.ntlm_client`: `Client`, the initiator side of the NTLMv2 handshake.
- `smbwire.ntlm_session`: `Session`, the established security context that
  signs, verifies, seals and unseals messages, and `InfoMap`, the names the
  server reported.
- `smbwire.ccm`: `CCM`, AES in Counter with CBC-MAC mode (NIST SP 800-38C) with
  selectable nonce and tag sizes.
- `smbwire.match`: shell-style wildcard matching with `\` as the path separator.

## Installation

```
pip install smbwire
```

The AES, MD4 and RC4 primitives come from `pycryptodome`.

## Wildcard matching

```python
from smbwire.match import BadPatternError, match, simplify_pattern, has_meta

match("a*", "abc")               # True
match("a*", "ab\\c")             # False: "*" does not cross a separator
match("a*/b", "abc\\b")          # True: "/" in a pattern stands for "\"
match("ab[^e-g]", "abc")         # True
has_meta("report.txt")           # False
simplify_pattern("ab[0-9].ext")  # "ab?.ext", a pattern a server understands

try:
    match("[", "a")
except BadPatternError:
    ...
```

`match` checks the whole pattern, so a malformed pattern raises
`BadPatternError` even when the name has already failed to match.

## AES-CCM

```python
from smbwire.ccm import CCM, AuthenticationError

key = bytes(range(0x40, 0x50))
ccm = CCM(key, nonce_size=7, tag_size=4)
nonce = bytes(range(0x10, 0x17))
associated = bytes(range(8))

sealed = ccm.seal(nonce, b"\x20\x21\x22\x23", associated)
sealed.hex()                                  # "7162015b4dac255d"
ccm.open(nonce, sealed, associated)           # b" !\"#"

try:
    ccm.open(nonce, sealed, b"other associated data")
except AuthenticationError:
    ...
```

`nonce_size` must lie between 7 and 13 and `tag_size` be an even number from 4
to 16; anything else raises `ValueError`, as does a nonce of the wrong length.

## NTLMv2

`Client` builds the NEGOTIATE message and answers the server's CHALLENGE with
an AUTHENTICATE message:

```python
from smbwire.ntlm_client import Client

password = "password"
client = Client(user="user", password=password, domain="WORKGROUP")

nmsg = client.negotiate()          # send to the server
amsg = client.authenticate(cmsg)   # cmsg: the server's challenge message
session = client.session()
```

An NT hash may be given as `nt_hash` instead of a password. With
`with_negotiate_check=True` the client refuses a challenge whose flags lack a
request for the target name or target info. `target_spn` is added to the
target info as the target name.

After a successful exchange, `client.session()` returns a `Session`:

- `session_key()` gives the exported session key, from which SMB signing and
  encryption keys are derived.
- `sum(plaintext, seq_num)` and `check_sum(signature, plaintext, seq_num)`
  sign and verify messages; each returns the next sequence number.
- `seal(plaintext, seq_num)` returns the 16-byte signature followed by the
  message (encrypted when sealing was negotiated); `unseal` reverses it and
  raises `NTLMError` on a signature mismatch.
- `info_map()` returns the computer, domain and tree names from the
  server's target info.

The primitives can be used on their own:

```python
from smbwire.ntlm import NegotiateFlag, seal_key, sign_key

key = bytes([0x55]) * 16
flags = NegotiateFlag.NEGOTIATE_EXTENDED_SESSIONSECURITY | NegotiateFlag.NEGOTIATE_128
seal_key(flags, key, True).hex()  # "59f600973cc4960a25480a7c196e4c58"
sign_key(flags, key, True).hex()  # "4788dc861b4782f35d43fd98fe1a2d39"
```

## What the package does not do

It does not open connections or speak SMB2 itself, and it has no accept
side of NTLM: it cannot check a client's AUTHENTICATE message against a table
of accounts. It provides no AES-CMAC signer, no DCE/RPC messages for listing
the shares of a server, and no accounting of SMB2 credits.

## Running the tests

```
pip install -e ".[test]"
pytest
```