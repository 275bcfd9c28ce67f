"""
TEST SIGNATURE PRIMITIVES
=========================
Digest layouts and personal-message signer recovery.
"""

from web3 import Web3

from opendid.services.signatures import (
    CLAIM_DID_TAG,
    ZERO_ADDRESS,
    append_digest,
    record_digest,
    recover_signer,
    registration_digest,
    same_address,
    sign_digest,
    verify_signer,
)
from tests.conftest import ALICE, ALICE_KEY, BOB, LEDGER_ADDRESS

DID = "did:opendid:alice.eth"


class TestDigests:

    def test_registration_digest_is_packed_encoding(self):
        packed = (
            b"Register"
            + DID.encode("utf-8")
            + bytes.fromhex(LEDGER_ADDRESS[2:])
            + (0).to_bytes(32, "big")
        )
        assert registration_digest(DID, LEDGER_ADDRESS, 0) == bytes(Web3.keccak(packed))

    def test_append_digest_is_packed_encoding(self):
        packed = (
            b"Append"
            + DID.encode("utf-8")
            + b"Qm123"
            + b"ghana-national-id"
            + bytes.fromhex(LEDGER_ADDRESS[2:])
            + (7).to_bytes(32, "big")
        )
        digest = append_digest(DID, "Qm123", "ghana-national-id", LEDGER_ADDRESS, 7)
        assert digest == bytes(Web3.keccak(packed))

    def test_digest_binds_nonce_contract_and_action(self):
        base = registration_digest(DID, LEDGER_ADDRESS, 0)
        assert registration_digest(DID, LEDGER_ADDRESS, 1) != base
        assert registration_digest(DID, "0x" + "99" * 20, 0) != base
        assert registration_digest("did:opendid:bob.eth", LEDGER_ADDRESS, 0) != base
        assert append_digest(DID, "", "", LEDGER_ADDRESS, 0) != base

    def test_digest_is_32_bytes(self):
        assert len(registration_digest(DID, LEDGER_ADDRESS, 0)) == 32


class TestRecovery:

    def setup_method(self):
        self.digest = registration_digest(DID, LEDGER_ADDRESS, 0)
        self.signature = sign_digest(self.digest, ALICE_KEY)

    def test_signature_is_65_bytes(self):
        assert len(self.signature) == 65

    def test_recovers_signer(self):
        assert recover_signer(self.digest, self.signature) == ALICE

    def test_accepts_hex_strings(self):
        assert recover_signer("0x" + self.digest.hex(), "0x" + self.signature.hex()) == ALICE

    def test_wrong_length_signature_recovers_zero_address(self):
        assert recover_signer(self.digest, self.signature[:64]) == ZERO_ADDRESS
        assert recover_signer(self.digest, self.signature + b"\x00") == ZERO_ADDRESS

    def test_wrong_length_digest_recovers_zero_address(self):
        assert recover_signer(self.digest[:31], self.signature) == ZERO_ADDRESS

    def test_non_hex_signature_recovers_zero_address(self):
        assert recover_signer(self.digest, "0xnot-a-signature") == ZERO_ADDRESS

    def test_non_bytes_signature_recovers_zero_address(self):
        assert recover_signer(self.digest, None) == ZERO_ADDRESS
        assert recover_signer(None, self.signature) == ZERO_ADDRESS
        assert not verify_signer(self.digest, None, ALICE)

    def test_other_digest_recovers_someone_else(self):
        other = registration_digest(DID, LEDGER_ADDRESS, 1)
        assert recover_signer(other, self.signature) != ALICE

    def test_verify_signer(self):
        assert verify_signer(self.digest, self.signature, ALICE)
        assert verify_signer(self.digest, self.signature, ALICE.lower())
        assert not verify_signer(self.digest, self.signature, BOB)

    def test_zero_address_never_verifies(self):
        assert not verify_signer(self.digest, b"\x00" * 10, ZERO_ADDRESS)


def test_same_address_rejects_invalid_addresses():
    assert same_address(ALICE, ALICE.lower())
    assert not same_address(ALICE, "alice")
    assert not same_address("", "")
    assert not same_address(ZERO_ADDRESS, ZERO_ADDRESS)
    assert not same_address(ZERO_ADDRESS, ALICE)


def test_record_digest_is_packed_encoding():
    packed = (
        b"ClaimDID"
        + b"alice.eth"
        + b"Qm1"
        + bytes.fromhex(LEDGER_ADDRESS[2:])
        + (3).to_bytes(32, "big")
    )
    assert record_digest(CLAIM_DID_TAG, "alice.eth", "Qm1", LEDGER_ADDRESS, 3) == bytes(Web3.keccak(packed))
