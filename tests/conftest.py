"""Shared fixtures: deterministic keys, a fresh ledger/gateway pair and a fake IPFS store."""

import hashlib

import pytest
from eth_account import Account

from opendid.services.ens import InMemoryENSRegistry, InMemoryTextResolver
from opendid.services.gateway import OpenDIDGateway
from opendid.services.ipfs import IPFSUploadResult
from opendid.services.registry import DIDClaimsRegistry
from opendid.services.signatures import append_digest, record_digest, registration_digest, sign_digest

ALICE_KEY = "0x" + "a1" * 32
BOB_KEY = "0x" + "b2" * 32
ISSUER_KEY = "0x" + "c3" * 32

ALICE = Account.from_key(ALICE_KEY).address
BOB = Account.from_key(BOB_KEY).address
ISSUER = Account.from_key(ISSUER_KEY).address

LEDGER_ADDRESS = "0x1234567890abcdef1234567890abcdef12345678"
GATEWAY_ADDRESS = "0xabcdef1234567890abcdef1234567890abcdef12"


def sign_registration(registry, did, private_key, nonce=None):
    """Owner signature over the registration digest at the current (or given) nonce."""
    if nonce is None:
        nonce = registry.get_current_nonce(did)
    return sign_digest(registration_digest(did, registry.address, nonce), private_key)


def sign_append(registry, did, cid, claim_type, private_key, nonce=None):
    """Owner signature over the append digest at the current (or given) nonce."""
    if nonce is None:
        nonce = registry.get_current_nonce(did)
    return sign_digest(append_digest(did, cid, claim_type, registry.address, nonce), private_key)


def sign_record(gateway, tag, name, cid, private_key, nonce=None):
    """ENS owner signature over a gateway record write at the current (or given) nonce."""
    if nonce is None:
        nonce = gateway.get_name_nonce(name)
    return sign_digest(record_digest(tag, name, cid, gateway.address, nonce), private_key)


class FakeIPFS:
    """Content-addressed dict standing in for an IPFS node."""

    def __init__(self, fail_uploads=False):
        self.blobs = {}
        self.fail_uploads = fail_uploads

    def upload(self, data, filename="data.json"):
        if isinstance(data, str):
            data = data.encode("utf-8")
        if self.fail_uploads:
            return IPFSUploadResult(success=False, cid="", size_bytes=len(data),
                                    gateway_url="", error="node offline")
        cid = "bafk" + hashlib.sha256(data).hexdigest()[:40]
        self.blobs[cid] = data
        return IPFSUploadResult(success=True, cid=cid, size_bytes=len(data),
                                gateway_url=f"https://ipfs.io/ipfs/{cid}")

    def fetch(self, cid):
        if cid not in self.blobs:
            return None, f"Failed to fetch CID: {cid}"
        return self.blobs[cid], None


@pytest.fixture
def registry():
    return DIDClaimsRegistry(address=LEDGER_ADDRESS, clock=lambda: 1_700_000_000)


@pytest.fixture
def ens():
    return InMemoryENSRegistry()


@pytest.fixture
def resolver():
    return InMemoryTextResolver()


@pytest.fixture
def gateway(ens, registry):
    return OpenDIDGateway(ens, registry, address=GATEWAY_ADDRESS)


@pytest.fixture
def ipfs():
    return FakeIPFS()
