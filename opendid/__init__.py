"""
OpenDID Claims Registry

ENS-anchored decentralized identity claims:
- ENS namehash gateway with a single `opendid` text record per name
- Signature-gated DID registration and claim ledger with per-DID nonces
- IPFS for encrypted claim payloads

Version: 1.0.0
"""

__version__ = "1.0.0"
__author__ = "OpenDID Team"
