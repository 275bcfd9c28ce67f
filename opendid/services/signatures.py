"""
OpenDID Signature Primitives
Message digests for the ledger's signature protocol and signer recovery.

Digests use Solidity packed encoding (strings as raw UTF-8, address as
20 bytes, nonce as uint256) and are signed as Ethereum personal messages.
"""

import logging
from typing import Union

from eth_account import Account
from eth_account.messages import encode_defunct
from hexbytes import HexBytes
from web3 import Web3

logger = logging.getLogger(__name__)

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"

REGISTER_TAG = "Register"
APPEND_TAG = "Append"

# Gateway text record writes
CLAIM_DID_TAG = "ClaimDID"
UPDATE_DID_TAG = "UpdateDID"
REVOKE_DID_TAG = "RevokeDID"

SIGNATURE_LENGTH = 65
DIGEST_LENGTH = 32

BytesLike = Union[bytes, bytearray, str]


def registration_digest(did: str, contract_address: str, nonce: int) -> bytes:
    """keccak256(abi.encodePacked("Register", did, contract, nonce))"""
    return bytes(Web3.solidity_keccak(
        ["string", "string", "address", "uint256"],
        [REGISTER_TAG, did, Web3.to_checksum_address(contract_address), nonce]
    ))


def append_digest(
    did: str,
    cid: str,
    claim_type: str,
    contract_address: str,
    nonce: int
) -> bytes:
    """keccak256(abi.encodePacked("Append", did, cid, claimType, contract, nonce))"""
    return bytes(Web3.solidity_keccak(
        ["string", "string", "string", "string", "address", "uint256"],
        [APPEND_TAG, did, cid, claim_type, Web3.to_checksum_address(contract_address), nonce]
    ))


def record_digest(tag: str, name: str, cid: str, gateway_address: str, nonce: int) -> bytes:
    """keccak256(abi.encodePacked(tag, name, cid, gateway, nonce)); cid is "" for revocation"""
    return bytes(Web3.solidity_keccak(
        ["string", "string", "string", "address", "uint256"],
        [tag, name, cid, Web3.to_checksum_address(gateway_address), nonce]
    ))


def _to_bytes(value: BytesLike) -> bytes:
    if isinstance(value, str):
        return bytes(HexBytes(value))
    return bytes(value)


def recover_signer(digest: BytesLike, signature: BytesLike) -> str:
    """
    Recover the address that signed `digest` as a personal message.

    Args:
        digest: 32-byte application digest
        signature: 65-byte r || s || v signature

    Returns:
        Checksum address of the signer, or the zero address when the
        digest or signature is malformed or recovery fails
    """
    try:
        digest_bytes = _to_bytes(digest)
        signature_bytes = _to_bytes(signature)
    except (ValueError, TypeError):
        return ZERO_ADDRESS

    if len(digest_bytes) != DIGEST_LENGTH or len(signature_bytes) != SIGNATURE_LENGTH:
        return ZERO_ADDRESS

    try:
        return Account.recover_message(
            encode_defunct(primitive=digest_bytes),
            signature=signature_bytes
        )
    except Exception as e:
        logger.debug(f"Signature recovery failed: {e}")
        return ZERO_ADDRESS


def same_address(a: str, b: str) -> bool:
    """Case-insensitive address comparison; invalid or zero addresses never match."""
    if not (Web3.is_address(a) and Web3.is_address(b)):
        return False
    if int(a, 16) == 0 or int(b, 16) == 0:
        return False
    return Web3.to_checksum_address(a) == Web3.to_checksum_address(b)


def verify_signer(digest: BytesLike, signature: BytesLike, expected: str) -> bool:
    """Check that `signature` over `digest` recovers to `expected`."""
    recovered = recover_signer(digest, signature)
    if recovered == ZERO_ADDRESS:
        return False
    return same_address(recovered, expected)


def sign_digest(digest: BytesLike, private_key: str) -> bytes:
    """Sign a 32-byte digest as a personal message (client side)."""
    signed = Account.sign_message(
        encode_defunct(primitive=_to_bytes(digest)),
        private_key=private_key
    )
    return bytes(signed.signature)
