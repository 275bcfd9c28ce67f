"""
TEST HTTP API
=============
End-to-end flows through the FastAPI app with fresh in-memory services.
"""

import pytest
from fastapi.testclient import TestClient

from opendid import services
from opendid.config import config
from opendid.main import app
from opendid.services.claims import ClaimService
from opendid.services.ens import InMemoryENSRegistry, InMemoryTextResolver
from opendid.services.gateway import OpenDIDGateway
from opendid.services.registry import DIDClaimsRegistry
from opendid.services.signatures import CLAIM_DID_TAG, REVOKE_DID_TAG, UPDATE_DID_TAG, sign_digest
from tests.conftest import (
    ALICE,
    ALICE_KEY,
    BOB,
    BOB_KEY,
    ISSUER,
    LEDGER_ADDRESS,
    FakeIPFS,
    sign_append,
    sign_record,
    sign_registration,
)

DID = "did:opendid:alice.eth"


@pytest.fixture
def client(monkeypatch, tmp_path):
    registry = DIDClaimsRegistry(address=LEDGER_ADDRESS)
    ens = InMemoryENSRegistry()
    ens.register_name("alice.eth", ALICE, InMemoryTextResolver())
    gateway = OpenDIDGateway(ens, registry)

    monkeypatch.setattr(services, "claims_registry", registry)
    monkeypatch.setattr(services, "ens_registry", ens)
    monkeypatch.setattr(services, "gateway", gateway)
    monkeypatch.setattr(config, "DB_PATH", str(tmp_path / "events.db"))

    with TestClient(app) as test_client:
        yield test_client


def _hex(signature: bytes) -> str:
    return "0x" + signature.hex()


def _register(client):
    signature = sign_registration(services.claims_registry, DID, ALICE_KEY)
    return client.post("/api/dids/register", json={"did": DID, "owner": ALICE, "signature": _hex(signature)})


def _append(client, cid, claim_type, key=ALICE_KEY):
    signature = sign_append(services.claims_registry, DID, cid, claim_type, key)
    return client.post(
        f"/api/dids/{DID}/claims",
        json={"cid": cid, "claim_type": claim_type, "signature": _hex(signature)}
    )


class TestHealth:

    def test_health(self, client):
        response = client.get("/api/health")
        assert response.status_code == 200
        assert response.json()["ledger_address"] == services.claims_registry.address


class TestLedgerAPI:

    def test_claim_type_lifecycle(self, client):
        response = client.post("/api/claim-types", json={
            "claim_type": "kyc", "description": "Know your customer", "issuer": ISSUER
        })
        assert response.status_code == 201
        assert response.json()["exists"] is True

        duplicate = client.post("/api/claim-types", json={"claim_type": "kyc", "issuer": BOB})
        assert duplicate.status_code == 409
        assert duplicate.json()["error"] == "CLAIM_TYPE_ALREADY_EXISTS"

        assert client.get("/api/claim-types/kyc").json()["issuer"] == ISSUER
        assert [t["claim_type"] for t in client.get("/api/claim-types").json()] == ["kyc"]

    def test_unknown_claim_type_is_404(self, client):
        response = client.get("/api/claim-types/passport")
        assert response.status_code == 404
        assert response.json()["error"] == "NOT_FOUND"

    def test_empty_claim_type_key(self, client):
        response = client.post("/api/claim-types", json={"claim_type": "", "issuer": ISSUER})
        assert response.status_code == 422
        assert response.json()["error"] == "EMPTY_KEY"

    def test_register_and_append(self, client):
        client.post("/api/claim-types", json={"claim_type": "ghana-national-id", "issuer": ISSUER})

        registered = _register(client)
        assert registered.status_code == 200
        assert registered.json()["nonce"] == 1

        appended = _append(client, "Qm123", "ghana-national-id")
        assert appended.status_code == 201
        assert appended.json()["index"] == 0
        assert appended.json()["nonce"] == 2

        status = client.get(f"/api/dids/{DID}").json()
        assert status["registered"] is True
        assert status["owner"] == ALICE
        assert status["latest_cid"] == "Qm123"

        by_type = client.get(f"/api/dids/{DID}/claims/types/ghana-national-id").json()
        assert by_type["claims"] == ["Qm123"]
        assert by_type["count"] == 1

        assert client.get(f"/api/dids/{DID}/claims/0").json()["cid"] == "Qm123"
        assert client.get(f"/api/dids/{DID}/claims/types/ghana-national-id/0").json()["cid"] == "Qm123"

    def test_bad_signature_is_403(self, client):
        signature = sign_registration(services.claims_registry, DID, BOB_KEY)
        response = client.post("/api/dids/register", json={
            "did": DID, "owner": ALICE, "signature": _hex(signature)
        })
        assert response.status_code == 403
        assert response.json()["error"] == "UNAUTHORIZED"

    def test_double_registration_is_409(self, client):
        _register(client)
        assert _register(client).status_code == 409

    def test_append_errors(self, client):
        client.post("/api/claim-types", json={"claim_type": "kyc", "issuer": ISSUER})
        assert _append(client, "Qm1", "kyc").json()["error"] == "NOT_REGISTERED"

        _register(client)
        assert _append(client, "Qm1", "passport").json()["error"] == "UNKNOWN_CLAIM_TYPE"
        assert _append(client, "Qm1", "kyc", key=BOB_KEY).status_code == 403

    def test_ranges(self, client):
        client.post("/api/claim-types", json={"claim_type": "kyc", "issuer": ISSUER})
        _register(client)
        for cid in ("Qm0", "Qm1", "Qm2"):
            _append(client, cid, "kyc")

        response = client.get(f"/api/dids/{DID}/claims", params={"start": 1, "end": 2})
        assert response.json()["claims"] == ["Qm1", "Qm2"]
        assert response.json()["count"] == 3

        assert client.get(f"/api/dids/{DID}/claims", params={"start": 1, "end": 3}).status_code == 416
        assert client.get(f"/api/dids/{DID}/claims", params={"start": 1}).status_code == 400
        assert client.get(f"/api/dids/{DID}/claims/7").status_code == 404

    def test_unregistered_did_defaults(self, client):
        status = client.get("/api/dids/did:opendid:nobody.eth").json()
        assert status["registered"] is False
        assert status["nonce"] == 0
        assert status["owner"] == "0x" + "0" * 40
        assert client.get("/api/dids/did:opendid:nobody.eth/claims").json()["claims"] == []


def _record_signature(tag, name, cid="", key=ALICE_KEY):
    return _hex(sign_record(services.gateway, tag, name, cid, key))


def _claim_did(client, name, cid, key=ALICE_KEY):
    return client.post("/api/ens/claim", json={
        "name": name, "cid": cid, "signature": _record_signature(CLAIM_DID_TAG, name, cid, key)
    })


def _revoke_did(client, name, key=ALICE_KEY):
    return client.post("/api/ens/revoke", json={
        "name": name, "signature": _record_signature(REVOKE_DID_TAG, name, "", key)
    })


class TestGatewayAPI:

    def test_claim_update_revoke(self, client):
        claimed = _claim_did(client, "alice.eth", "Qm1")
        assert claimed.status_code == 201
        assert claimed.json()["did"] == "did:opendid:Qm1"

        info = client.get("/api/ens/alice.eth").json()
        assert info["has_did"] is True
        assert info["owner"] == ALICE

        assert _claim_did(client, "alice.eth", "Qm2").status_code == 409

        updated = client.post("/api/ens/update", json={
            "name": "alice.eth", "cid": "Qm2",
            "signature": _record_signature(UPDATE_DID_TAG, "alice.eth", "Qm2")
        })
        assert updated.json()["did"] == "did:opendid:Qm2"

        assert _revoke_did(client, "alice.eth").status_code == 200
        assert client.get("/api/ens/alice.eth").json()["did"] == ""
        assert services.gateway.get_name_nonce("alice.eth") == 3

    def test_unsigned_write_is_403(self, client):
        response = client.post("/api/ens/claim", json={"name": "alice.eth", "cid": "QmAttacker", "sender": ALICE})
        assert response.status_code == 403
        assert response.json()["error"] == "UNAUTHORIZED"

        response = client.post("/api/ens/claim", json={"name": "alice.eth", "cid": "QmAttacker", "signature": ""})
        assert response.status_code == 403
        assert client.get("/api/ens/alice.eth").json()["has_did"] is False

    def test_unsigned_overwrite_and_revoke_are_403(self, client):
        _claim_did(client, "alice.eth", "Qm1")

        update = client.post("/api/ens/update", json={"name": "alice.eth", "cid": "QmAttacker", "sender": ALICE})
        revoke = client.post("/api/ens/revoke", json={"name": "alice.eth", "sender": ALICE})
        assert (update.status_code, revoke.status_code) == (403, 403)
        assert client.get("/api/ens/alice.eth").json()["did"] == "did:opendid:Qm1"

    def test_wrong_key_is_403(self, client):
        response = _claim_did(client, "alice.eth", "QmAttacker", key=BOB_KEY)
        assert response.status_code == 403
        assert response.json()["error"] == "NOT_OWNER"
        assert services.gateway.get_name_nonce("alice.eth") == 0

    def test_replayed_signature_is_403(self, client):
        signature = _record_signature(CLAIM_DID_TAG, "alice.eth", "Qm1")
        body = {"name": "alice.eth", "cid": "Qm1", "signature": signature}
        assert client.post("/api/ens/claim", json=body).status_code == 201
        _revoke_did(client, "alice.eth")

        replayed = client.post("/api/ens/claim", json=body)
        assert replayed.status_code == 403
        assert client.get("/api/ens/alice.eth").json()["did"] == ""

    def test_record_message_round_trip(self, client):
        message = client.get("/api/ens/alice.eth/messages/record", params={"action": "claim", "cid": "Qm7"}).json()
        assert message["nonce"] == 0
        assert message["cid"] == "Qm7"
        assert message["gateway_address"] == services.gateway.address

        signature = sign_digest(bytes.fromhex(message["message_hash"][2:]), ALICE_KEY)
        claimed = client.post("/api/ens/claim", json={"name": "alice.eth", "cid": "Qm7", "signature": _hex(signature)})
        assert claimed.status_code == 201

        revoke = client.get("/api/ens/alice.eth/messages/record", params={"action": "revoke", "cid": "Qm7"}).json()
        assert revoke["cid"] == ""
        assert revoke["nonce"] == 1

    def test_record_message_unknown_action(self, client):
        response = client.get("/api/ens/alice.eth/messages/record", params={"action": "transfer"})
        assert response.status_code == 400

    def test_missing_resolver_is_424(self, client):
        services.ens_registry.register_name("bare.eth", ALICE)
        assert _claim_did(client, "bare.eth", "Qm1").status_code == 424

    def test_batch_claim(self, client):
        services.ens_registry.register_name("carol.eth", ALICE, InMemoryTextResolver())
        response = client.post("/api/ens/batch-claim", json={
            "names": ["alice.eth", "bob.eth", "carol.eth"],
            "cids": ["Qm1", "Qm2", "Qm3"],
            "signatures": [
                _record_signature(CLAIM_DID_TAG, "alice.eth", "Qm1"),
                _record_signature(CLAIM_DID_TAG, "bob.eth", "Qm2"),
                _record_signature(CLAIM_DID_TAG, "carol.eth", "Qm3", key=BOB_KEY)
            ]
        })
        assert response.status_code == 200
        assert response.json() == {"submitted": 3, "with_did": ["alice.eth"]}

    def test_batch_claim_length_mismatch(self, client):
        response = client.post("/api/ens/batch-claim", json={
            "names": ["alice.eth"], "cids": ["Qm1"], "signatures": []
        })
        assert response.status_code == 422
        assert response.json()["error"] == "INPUT_LENGTH_MISMATCH"

    def test_signed_registration_through_gateway(self, client):
        message = client.post("/api/ens/alice.eth/messages/registration", json={"sender": ALICE}).json()
        assert message["did"] == DID
        assert message["nonce"] == 0
        assert message["ledger_address"] == services.claims_registry.address

        signature = sign_digest(bytes.fromhex(message["message_hash"][2:]), ALICE_KEY)
        registered = client.post("/api/dids/register", json={
            "did": DID, "owner": ALICE, "signature": _hex(signature)
        })
        assert registered.status_code == 200

        client.post("/api/claim-types", json={"claim_type": "kyc", "issuer": ISSUER})
        claim_message = client.post("/api/ens/alice.eth/messages/claim", json={
            "sender": ALICE, "cid": "Qm9", "claim_type": "kyc"
        }).json()
        assert claim_message["nonce"] == 1

        signature = sign_digest(bytes.fromhex(claim_message["message_hash"][2:]), ALICE_KEY)
        appended = client.post(f"/api/dids/{DID}/claims", json={
            "cid": "Qm9", "claim_type": "kyc", "signature": _hex(signature)
        })
        assert appended.status_code == 201


class TestClaimsAPI:

    @pytest.fixture(autouse=True)
    def claim_service(self, client, monkeypatch):
        self.ipfs = FakeIPFS()
        service = ClaimService(services.gateway, services.claims_registry, self.ipfs)
        monkeypatch.setattr(services, "claim_service", service)
        monkeypatch.setattr(config, "PRIVATE_KEY", ALICE_KEY)
        services.gateway.claim_did("alice.eth", "QmProfile", ALICE)
        service.create_claim_type("kyc", "Know your customer", ISSUER)
        return service

    def test_register_issue_and_verify(self, client):
        registered = client.post("/api/claims/register", json={"ens_name": "alice.eth"})
        assert registered.status_code == 200
        assert registered.json()["did"] == DID
        assert registered.json()["nonce"] == 1

        issued = client.post("/api/claims/issue", json={
            "ens_name": "alice.eth", "claim_type": "kyc", "data": {"level": 2}
        })
        assert issued.status_code == 201
        cid = issued.json()["cid"]
        assert issued.json()["index"] == 0
        assert issued.json()["gateway_url"].endswith(cid)
        assert cid in self.ipfs.blobs

        claim = client.get(f"/api/claims/{DID}/kyc/0").json()
        assert claim["cid"] == cid
        assert claim["data"] == {"level": 2}

        assert client.get(f"/api/claims/{DID}/kyc/latest").json()["cid"] == cid
        listed = client.get(f"/api/claims/{DID}/kyc").json()
        assert [c["cid"] for c in listed["claims"]] == [cid]

    def test_no_claims_yet(self, client):
        assert client.get(f"/api/claims/{DID}/kyc/latest").status_code == 404
        assert client.get(f"/api/claims/{DID}/kyc").json()["claims"] == []
        assert client.get(f"/api/claims/{DID}/kyc/0").status_code == 404

    def test_issue_before_registration(self, client):
        response = client.post("/api/claims/issue", json={
            "ens_name": "alice.eth", "claim_type": "kyc", "data": {}
        })
        assert response.json()["error"] == "NOT_REGISTERED"
        assert self.ipfs.blobs == {}

    def test_wallet_required(self, client, monkeypatch):
        monkeypatch.setattr(config, "PRIVATE_KEY", "")
        assert client.post("/api/claims/register", json={"ens_name": "alice.eth"}).status_code == 503


class TestHistoryAPI:

    def test_did_history(self, client):
        client.post("/api/claim-types", json={"claim_type": "kyc", "issuer": ISSUER})
        _register(client)
        _append(client, "Qm1", "kyc")

        history = client.get(f"/api/dids/{DID}/history").json()
        assert history["registered"] is True
        assert history["nonce"] == 2
        assert [event["event_type"] for event in history["timeline"]] == ["DIDRegistered", "ClaimAppended"]
        assert history["timeline"][1]["payload"]["cid"] == "Qm1"

    def test_unknown_did_history_is_404(self, client):
        assert client.get(f"/api/dids/{DID}/history").status_code == 404

    def test_ens_history(self, client):
        _claim_did(client, "alice.eth", "Qm1")
        _revoke_did(client, "alice.eth")

        history = client.get("/api/ens/alice.eth/history").json()
        assert [event["event_type"] for event in history["timeline"]] == ["DIDClaimed", "DIDRevoked"]
        assert all(event["source"] == "OpenDID" for event in history["timeline"])
