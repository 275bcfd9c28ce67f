"""
OpenDID ENS Service
Namehash and the external ENS registry/resolver collaborators.

Two backends:
- In-memory registry and text resolver for local devnets and tests
- web3.py contract calls against a live ENS registry
"""

import logging
from typing import Dict, Optional, Tuple

from eth_account import Account
from web3 import Web3

from opendid.config import config
from opendid.errors import ExternalCallFailed
from opendid.services.signatures import ZERO_ADDRESS

logger = logging.getLogger(__name__)

ZERO_NODE = b"\x00" * 32


def namehash(name: str) -> bytes:
    """
    Compute the ENS namehash (EIP-137) of a dotted name.

    Labels are folded from the top-level label down:
    node = keccak256(node || keccak256(label)), starting at the zero node.
    """
    node = ZERO_NODE
    if not name:
        return node
    for label in reversed(name.split(".")):
        label_hash = Web3.keccak(text=label)
        node = bytes(Web3.keccak(node + label_hash))
    return node


# ENS registry ABI - owner and resolver lookups only
ENS_REGISTRY_ABI = [
    {
        "inputs": [{"name": "node", "type": "bytes32"}],
        "name": "owner",
        "outputs": [{"name": "", "type": "address"}],
        "stateMutability": "view",
        "type": "function"
    },
    {
        "inputs": [{"name": "node", "type": "bytes32"}],
        "name": "resolver",
        "outputs": [{"name": "", "type": "address"}],
        "stateMutability": "view",
        "type": "function"
    }
]

# Text record resolver ABI (EIP-634)
TEXT_RESOLVER_ABI = [
    {
        "inputs": [
            {"name": "node", "type": "bytes32"},
            {"name": "key", "type": "string"}
        ],
        "name": "text",
        "outputs": [{"name": "", "type": "string"}],
        "stateMutability": "view",
        "type": "function"
    },
    {
        "inputs": [
            {"name": "node", "type": "bytes32"},
            {"name": "key", "type": "string"},
            {"name": "value", "type": "string"}
        ],
        "name": "setText",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function"
    }
]


# ============ In-memory backend ============

class InMemoryTextResolver:
    """Text-record resolver holding records in a dict."""

    def __init__(self, address: Optional[str] = None):
        self.address = address or Account.create().address
        self._records: Dict[Tuple[bytes, str], str] = {}

    def text(self, node: bytes, key: str) -> str:
        return self._records.get((bytes(node), key), "")

    def set_text(self, node: bytes, key: str, value: str) -> None:
        self._records[(bytes(node), key)] = value


class InMemoryENSRegistry:
    """ENS registry with owners and resolvers kept in memory."""

    def __init__(self):
        self._owners: Dict[bytes, str] = {}
        self._resolvers: Dict[bytes, InMemoryTextResolver] = {}

    def owner(self, node: bytes) -> str:
        return self._owners.get(bytes(node), ZERO_ADDRESS)

    def resolver(self, node: bytes) -> Optional[InMemoryTextResolver]:
        return self._resolvers.get(bytes(node))

    def set_owner(self, node: bytes, owner: str) -> None:
        self._owners[bytes(node)] = Web3.to_checksum_address(owner)

    def set_resolver(self, node: bytes, resolver: Optional[InMemoryTextResolver]) -> None:
        if resolver is None:
            self._resolvers.pop(bytes(node), None)
        else:
            self._resolvers[bytes(node)] = resolver

    def register_name(
        self,
        name: str,
        owner: str,
        resolver: Optional[InMemoryTextResolver] = None
    ) -> bytes:
        """Assign `name` to `owner` with an optional resolver; returns the node."""
        node = namehash(name)
        self.set_owner(node, owner)
        if resolver is not None:
            self.set_resolver(node, resolver)
        return node


# ============ web3 backend ============

class Web3TextResolver:
    """Text-record resolver contract on a live chain."""

    def __init__(self, w3: Web3, address: str, account=None, private_key: str = ""):
        self.w3 = w3
        self.address = Web3.to_checksum_address(address)
        self.account = account
        self.private_key = private_key
        self.contract = self.w3.eth.contract(address=self.address, abi=TEXT_RESOLVER_ABI)

    def text(self, node: bytes, key: str) -> str:
        try:
            return self.contract.functions.text(bytes(node), key).call()
        except Exception as e:
            raise ExternalCallFailed(f"Resolver text() failed: {e}")

    def _send_transaction(self, function) -> str:
        """
        Sign and send a resolver transaction with the configured wallet.

        Returns:
            Transaction hash (0x-prefixed)
        """
        if not self.account:
            raise ExternalCallFailed("Blockchain wallet not configured")

        try:
            nonce = self.w3.eth.get_transaction_count(self.account.address, 'pending')

            tx = function.build_transaction({
                'from': self.account.address,
                'nonce': nonce,
                'gas': config.GAS_LIMIT,
                'gasPrice': self.w3.eth.gas_price,
                'chainId': config.CHAIN_ID
            })

            signed_tx = self.w3.eth.account.sign_transaction(tx, private_key=self.private_key)
            tx_hash = self.w3.eth.send_raw_transaction(signed_tx.raw_transaction)
            receipt = self.w3.eth.wait_for_transaction_receipt(tx_hash, timeout=120)
        except Exception as e:
            raise ExternalCallFailed(f"Resolver transaction error: {e}")

        tx_hex = tx_hash.hex()
        if not tx_hex.startswith('0x'):
            tx_hex = '0x' + tx_hex

        if receipt['status'] != 1:
            raise ExternalCallFailed("Resolver transaction reverted", {"tx_hash": tx_hex})

        logger.info(f"Resolver transaction confirmed: {config.get_tx_url(tx_hex)}")
        return tx_hex

    def set_text(self, node: bytes, key: str, value: str) -> None:
        self._send_transaction(self.contract.functions.setText(bytes(node), key, value))


class Web3ENSRegistry:
    """ENS registry contract on a live chain."""

    def __init__(
        self,
        w3: Optional[Web3] = None,
        registry_address: str = None,
        private_key: str = None
    ):
        self.w3 = w3 or Web3(Web3.HTTPProvider(config.RPC_URL))
        self.private_key = private_key if private_key is not None else config.PRIVATE_KEY

        if self.private_key:
            self.account = Account.from_key(self.private_key)
        else:
            self.account = None

        self.contract = self.w3.eth.contract(
            address=Web3.to_checksum_address(registry_address or config.ENS_REGISTRY_ADDRESS),
            abi=ENS_REGISTRY_ABI
        )

    def is_connected(self) -> bool:
        """Check if connected to blockchain."""
        try:
            return self.w3.is_connected()
        except Exception:
            return False

    def owner(self, node: bytes) -> str:
        try:
            return self.contract.functions.owner(bytes(node)).call()
        except Exception as e:
            raise ExternalCallFailed(f"ENS owner() failed: {e}")

    def resolver(self, node: bytes) -> Optional[Web3TextResolver]:
        try:
            address = self.contract.functions.resolver(bytes(node)).call()
        except Exception as e:
            raise ExternalCallFailed(f"ENS resolver() failed: {e}")

        if not address or int(address, 16) == 0:
            return None
        return Web3TextResolver(self.w3, address, self.account, self.private_key)
