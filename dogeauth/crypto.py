"""
Signed-message verification for base58 (P2PKH) wallet addresses.

Implements the compact recoverable-ECDSA scheme wallets use for "sign
message": the signer's public key is recovered from the signature and the
message digest, turned into an address, and compared with the address the
client claims.

Wire format of a signature (65 bytes, base64 or hex encoded):

    header (1) | R (32) | S (32)

``header`` is ``27 + recovery_id``, plus 4 when the signing key was in
compressed form.
"""

import base64
import binascii
import hashlib
import hmac
import re
from dataclasses import dataclass
from hashlib import sha256
from typing import Dict, Tuple, Union

import base58
from coincurve import PublicKey

from dogeauth.errors import MalformedSignature

SIGNATURE_LENGTH = 65
HEADER_BASE = 27
HEADER_MAX = 34
COMPRESSED_FLAG = 4

_HEX_SIGNATURE = re.compile(r"[0-9a-fA-F]{130}")


@dataclass(frozen=True)
class NetworkParams:
    """Address version byte and signed-message prefix of a coin network."""

    name: str
    p2pkh_version: int
    message_prefix: str


DOGECOIN = NetworkParams("dogecoin", 0x1E, "Dogecoin Signed Message:\n")
DOGECOIN_TESTNET = NetworkParams("dogecoin-testnet", 0x71, "Dogecoin Signed Message:\n")
BITCOIN = NetworkParams("bitcoin", 0x00, "Bitcoin Signed Message:\n")
BITCOIN_TESTNET = NetworkParams("bitcoin-testnet", 0x6F, "Bitcoin Signed Message:\n")

NETWORKS: Dict[str, NetworkParams] = {
    params.name: params for params in (DOGECOIN, DOGECOIN_TESTNET, BITCOIN, BITCOIN_TESTNET)
}


def get_network(name: str) -> NetworkParams:
    """Look up network parameters by name (``dogecoin``, ``bitcoin-testnet``, ...)."""
    try:
        return NETWORKS[name.strip().lower()]
    except KeyError:
        raise ValueError(f"Unknown network {name!r}; expected one of {sorted(NETWORKS)}") from None


def encode_varint(value: int) -> bytes:
    """Encode a length as a Bitcoin-style CompactSize integer."""
    if value < 0xFD:
        return bytes([value])
    if value <= 0xFFFF:
        return b"\xfd" + value.to_bytes(2, "little")
    if value <= 0xFFFFFFFF:
        return b"\xfe" + value.to_bytes(4, "little")
    return b"\xff" + value.to_bytes(8, "little")


def message_digest(message: str, network: NetworkParams = DOGECOIN) -> bytes:
    """
    Hash a message the way wallets do before signing it.

    Args:
        message: Plaintext message (UTF-8 encoded before hashing)
        network: Network whose message prefix is used

    Returns:
        32-byte double SHA-256 of ``varint(len(prefix)) + prefix + varint(len(msg)) + msg``
    """
    prefix = network.message_prefix.encode("utf-8")
    body = message.encode("utf-8")
    payload = encode_varint(len(prefix)) + prefix + encode_varint(len(body)) + body
    return sha256(sha256(payload).digest()).digest()


def _ripemd160(data: bytes) -> bytes:
    try:
        return hashlib.new("ripemd160", data).digest()
    except ValueError:
        # OpenSSL 3 without the legacy provider does not expose RIPEMD-160.
        from Crypto.Hash import RIPEMD160

        return RIPEMD160.new(data).digest()


def hash160(data: bytes) -> bytes:
    return _ripemd160(sha256(data).digest())


def pubkey_to_address(pubkey: bytes, network: NetworkParams = DOGECOIN) -> str:
    """
    Derive the P2PKH address of a serialized public key.

    Args:
        pubkey: 33-byte compressed or 65-byte uncompressed SEC public key
        network: Network whose version byte prefixes the hash

    Returns:
        Base58Check-encoded address
    """
    return base58.b58encode_check(bytes([network.p2pkh_version]) + hash160(pubkey)).decode("ascii")


def canonical_address(address: str) -> str:
    # base58 is case sensitive, so only surrounding whitespace is dropped
    return address.strip()


def is_valid_address(address: str, network: NetworkParams = DOGECOIN) -> bool:
    """Check base58 checksum, payload length and version byte of an address."""
    address = canonical_address(address or "")
    if not address:
        return False
    try:
        raw = base58.b58decode_check(address)
    except ValueError:
        return False
    return len(raw) == 21 and raw[0] == network.p2pkh_version


def decode_signature(signature: Union[str, bytes]) -> bytes:
    """
    Decode a wire signature into its 65 raw bytes.

    130 hex characters are read as hex, anything else as base64 (missing
    padding is tolerated).

    Raises:
        MalformedSignature: If the input cannot be decoded or has the wrong length
    """
    if isinstance(signature, (bytes, bytearray)):
        raw = bytes(signature)
    else:
        text = signature.strip()
        if _HEX_SIGNATURE.fullmatch(text):
            raw = bytes.fromhex(text)
        else:
            padded = text + "=" * (-len(text) % 4)
            try:
                raw = base64.b64decode(padded, validate=True)
            except (binascii.Error, ValueError) as exc:
                raise MalformedSignature("Signature is neither base64 nor hex") from exc

    if len(raw) != SIGNATURE_LENGTH:
        raise MalformedSignature(f"Signature must be {SIGNATURE_LENGTH} bytes (got {len(raw)})")
    return raw


def split_signature(raw: bytes) -> Tuple[int, bytes, bytes]:
    """
    Split a compact signature into ``(recovery_id, r, s)``.

    Raises:
        MalformedSignature: On wrong length or a header byte outside 27..34
    """
    if len(raw) != SIGNATURE_LENGTH:
        raise MalformedSignature(f"Signature must be {SIGNATURE_LENGTH} bytes (got {len(raw)})")

    header = raw[0]
    if not HEADER_BASE <= header <= HEADER_MAX:
        raise MalformedSignature(f"Signature header byte {header} outside {HEADER_BASE}..{HEADER_MAX}")

    recovery_id = (header - HEADER_BASE) % COMPRESSED_FLAG
    return recovery_id, raw[1:33], raw[33:65]


def recover_public_key(digest: bytes, recovery_id: int, r: bytes, s: bytes) -> PublicKey:
    """
    Recover the signer's public key on secp256k1.

    Raises:
        ValueError: If ``r``/``s`` are out of range or no curve point matches
    """
    return PublicKey.from_signature_and_message(r + s + bytes([recovery_id]), digest, hasher=None)


class SignatureVerifier:
    """
    Decides whether a signature over a message was made by an address's key.

    Stateless apart from the immutable network parameters, so one instance
    can serve concurrent requests.
    """

    def __init__(self, network: NetworkParams = DOGECOIN):
        self.network = network

    def verify(self, address: str, message: str, signature: Union[str, bytes]) -> bool:
        """
        Verify a signed message against a claimed address.

        Args:
            address: Address the signer claims to control
            message: Exact message that was signed
            signature: Compact signature, raw bytes or base64/hex text

        Returns:
            True if the recovered key's address (compressed or uncompressed
            form) equals ``address``

        Raises:
            MalformedSignature: If the signature cannot be parsed
        """
        raw = decode_signature(signature)
        recovery_id, r, s = split_signature(raw)
        digest = message_digest(message, self.network)

        try:
            pubkey = recover_public_key(digest, recovery_id, r, s)
        except ValueError:
            return False

        claimed = canonical_address(address).encode("utf-8")
        candidates = (
            pubkey_to_address(pubkey.format(compressed=True), self.network),
            pubkey_to_address(pubkey.format(compressed=False), self.network),
        )
        # both forms are always compared
        matches = [hmac.compare_digest(candidate.encode("ascii"), claimed) for candidate in candidates]
        return any(matches)
