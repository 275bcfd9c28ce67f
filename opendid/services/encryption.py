"""
OpenDID Encryption Service
Claim payload encryption for a recipient's P-256 public key.

Scheme: ephemeral ECDH-ES on P-256, HKDF-SHA256 key derivation,
AES-256-GCM. The ciphertext is a base64url JSON envelope carrying the
ephemeral public key, IV and sealed payload.
"""

import base64
import hashlib
import json
import os
from typing import Any, Dict, Tuple, Union

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

from opendid.errors import DecryptionError

ALGORITHM = "ECDH-ES+HKDF-SHA256"
CONTENT_ENCRYPTION = "A256GCM"
HKDF_INFO = b"opendid-claim-v1"


def _b64u(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def _b64u_decode(s: str) -> bytes:
    pad = "=" * (-len(s) % 4)
    return base64.urlsafe_b64decode(s + pad)


def _load_public(pem: Union[bytes, str]) -> ec.EllipticCurvePublicKey:
    if isinstance(pem, str):
        pem = pem.encode("ascii")
    key = serialization.load_pem_public_key(pem)
    if not isinstance(key, ec.EllipticCurvePublicKey) or not isinstance(key.curve, ec.SECP256R1):
        raise ValueError("Recipient key must be a P-256 public key")
    return key


def _load_private(pem: Union[bytes, str]) -> ec.EllipticCurvePrivateKey:
    if isinstance(pem, str):
        pem = pem.encode("ascii")
    key = serialization.load_pem_private_key(pem, password=None)
    if not isinstance(key, ec.EllipticCurvePrivateKey) or not isinstance(key.curve, ec.SECP256R1):
        raise ValueError("Recipient key must be a P-256 private key")
    return key


def _derive_key(shared_secret: bytes, epk: bytes) -> bytes:
    return HKDF(
        algorithm=hashes.SHA256(),
        length=32,
        salt=epk,
        info=HKDF_INFO
    ).derive(shared_secret)


def make_recipient_keypair() -> Tuple[bytes, bytes]:
    """
    Generate a recipient key pair.

    Returns:
        (private_pem, public_pem); keep the private key in a wallet or
        keystore and share the public key with issuers
    """
    private_key = ec.generate_private_key(ec.SECP256R1())
    private_pem = private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption()
    )
    public_pem = private_key.public_key().public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo
    )
    return private_pem, public_pem


class EncryptionService:
    """Encrypts claim documents so only the recipient can read them."""

    def encrypt(self, plaintext: bytes, recipient_public_pem: Union[bytes, str]) -> str:
        """
        Encrypt bytes for a recipient.

        Returns:
            Opaque base64url token
        """
        recipient = _load_public(recipient_public_pem)
        ephemeral = ec.generate_private_key(ec.SECP256R1())
        epk = ephemeral.public_key().public_bytes(
            encoding=serialization.Encoding.X962,
            format=serialization.PublicFormat.UncompressedPoint
        )

        key = _derive_key(ephemeral.exchange(ec.ECDH(), recipient), epk)
        iv = os.urandom(12)
        header = {"alg": ALGORITHM, "enc": CONTENT_ENCRYPTION, "epk": _b64u(epk)}
        aad = json.dumps(header, sort_keys=True).encode("utf-8")
        sealed = AESGCM(key).encrypt(iv, plaintext, aad)

        envelope = dict(header, iv=_b64u(iv), ct=_b64u(sealed))
        return _b64u(json.dumps(envelope, sort_keys=True).encode("utf-8"))

    def decrypt(self, token: str, recipient_private_pem: Union[bytes, str]) -> bytes:
        """Decrypt a token produced by `encrypt`."""
        try:
            envelope = json.loads(_b64u_decode(token))
            header = {key: envelope[key] for key in ("alg", "enc", "epk")}
            iv = _b64u_decode(envelope["iv"])
            sealed = _b64u_decode(envelope["ct"])
        except (ValueError, KeyError, TypeError) as e:
            raise DecryptionError(f"Malformed ciphertext: {e}")

        if header["alg"] != ALGORITHM or header["enc"] != CONTENT_ENCRYPTION:
            raise DecryptionError(f"Unsupported algorithm: {header['alg']}/{header['enc']}")

        try:
            private_key = _load_private(recipient_private_pem)
        except (ValueError, TypeError) as e:
            raise DecryptionError(f"Invalid recipient private key: {e}")

        try:
            epk = _b64u_decode(header["epk"])
            ephemeral = ec.EllipticCurvePublicKey.from_encoded_point(ec.SECP256R1(), epk)
        except (ValueError, TypeError) as e:
            raise DecryptionError(f"Invalid ephemeral key: {e}")

        key = _derive_key(private_key.exchange(ec.ECDH(), ephemeral), epk)
        aad = json.dumps(header, sort_keys=True).encode("utf-8")
        try:
            return AESGCM(key).decrypt(iv, sealed, aad)
        except InvalidTag:
            raise DecryptionError("Ciphertext authentication failed")

    def encrypt_document(self, document: Dict[str, Any], recipient_public_pem: Union[bytes, str]) -> str:
        """Encrypt a JSON claim document."""
        plaintext = json.dumps(document, sort_keys=True, default=str).encode("utf-8")
        return self.encrypt(plaintext, recipient_public_pem)

    def decrypt_document(self, token: str, recipient_private_pem: Union[bytes, str]) -> Dict[str, Any]:
        """Decrypt a JSON claim document."""
        plaintext = self.decrypt(token, recipient_private_pem)
        try:
            return json.loads(plaintext)
        except ValueError as e:
            raise DecryptionError(f"Decrypted payload is not JSON: {e}")


# Global encryption service instance
encryption_service = EncryptionService()


def compute_sha256(data: Union[bytes, str]) -> str:
    """Compute SHA256 hash of data."""
    if isinstance(data, str):
        data = data.encode('utf-8')
    return hashlib.sha256(data).hexdigest()
