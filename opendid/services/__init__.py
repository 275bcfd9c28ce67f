"""
OpenDID Services Package
Provides the claims ledger, the ENS gateway, IPFS storage, encryption and
claim issuance, wired from the application config.
"""

import logging

from opendid.config import config
from opendid.services.claims import ClaimService
from opendid.services.encryption import encryption_service
from opendid.services.ens import InMemoryENSRegistry, Web3ENSRegistry
from opendid.services.gateway import OpenDIDGateway
from opendid.services.ipfs import IPFSService
from opendid.services.registry import DIDClaimsRegistry

logger = logging.getLogger(__name__)


def build_ens_registry():
    """Live ENS registry when an RPC endpoint is configured, else in-memory."""
    if config.is_ens_configured():
        logger.info("[+] Using ENS registry at %s", config.ENS_REGISTRY_ADDRESS)
        return Web3ENSRegistry()
    logger.info("📌 Using in-memory ENS registry")
    return InMemoryENSRegistry()


claims_registry = DIDClaimsRegistry(
    address=config.CLAIMS_REGISTRY_ADDRESS or None,
    enforce_issuer=config.ENFORCE_CLAIM_TYPE_ISSUER
)
ens_registry = build_ens_registry()
gateway = OpenDIDGateway(
    ens_registry,
    claims_registry,
    address=config.OPENDID_GATEWAY_ADDRESS or None
)
ipfs_service = IPFSService()
claim_service = ClaimService(gateway, claims_registry, ipfs_service, encryption_service)

__all__ = [
    'claims_registry',
    'ens_registry',
    'gateway',
    'ipfs_service',
    'claim_service',
    'encryption_service'
]
