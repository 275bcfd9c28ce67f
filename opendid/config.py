"""
OpenDID Configuration Module
Loads environment variables and provides configuration settings for the
ENS gateway, the claims ledger and the IPFS payload store.
"""

import os
from dataclasses import dataclass
from pathlib import Path
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


def _env_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes")


@dataclass
class Config:
    """Application configuration settings."""

    # ============ API Settings ============
    API_HOST: str = os.getenv("API_HOST", "0.0.0.0")
    API_PORT: int = int(os.getenv("API_PORT", "8000"))
    API_LOG_LEVEL: str = os.getenv("API_LOG_LEVEL", "info")

    # ============ Ethereum (ENS side) ============
    # Explicit RPC URL wins over the Alchemy key
    ETH_RPC_URL: str = os.getenv("ETH_RPC_URL", "")
    ALCHEMY_KEY: str = os.getenv("ALCHEMY_KEY", "")

    # Wallet used for resolver writes
    PRIVATE_KEY: str = os.getenv("PRIVATE_KEY", "")

    CHAIN_ID: int = int(os.getenv("CHAIN_ID", "11155111"))  # Sepolia testnet
    GAS_LIMIT: int = int(os.getenv("GAS_LIMIT", "300000"))

    # Same address on mainnet and Sepolia
    ENS_REGISTRY_ADDRESS: str = os.getenv(
        "ENS_REGISTRY_ADDRESS", "0x00000000000C2E074eC69A0bFb2997BA6C7d2e1e"
    )

    # Gateway address bound into signed record writes; random when unset
    OPENDID_GATEWAY_ADDRESS: str = os.getenv("OPENDID_GATEWAY_ADDRESS", "")

    # ============ Claims ledger (Filecoin side) ============
    # Address bound into every signed message; random when unset
    CLAIMS_REGISTRY_ADDRESS: str = os.getenv("CLAIMS_REGISTRY_ADDRESS", "")

    # Require the claim type's issuer to submit claims of that type
    ENFORCE_CLAIM_TYPE_ISSUER: bool = _env_bool("ENFORCE_CLAIM_TYPE_ISSUER")

    # ============ IPFS (Kubo HTTP API) ============
    IPFS_API_URL: str = os.getenv("IPFS_API_URL", "http://localhost:5001")
    IPFS_API_KEY: str = os.getenv("IPFS_API_KEY", "")
    IPFS_GATEWAY: str = os.getenv("IPFS_GATEWAY", "https://ipfs.io/ipfs")

    # ============ Event journal ============
    DATA_DIR: str = os.getenv("DATA_DIR", "data")
    DB_PATH: str = os.getenv("DB_PATH", os.path.join(os.getenv("DATA_DIR", "data"), "opendid.db"))

    @property
    def RPC_URL(self) -> str:
        """Get the Ethereum RPC URL (explicit URL or Alchemy Sepolia)."""
        if self.ETH_RPC_URL:
            return self.ETH_RPC_URL
        if self.ALCHEMY_KEY:
            return f"https://eth-sepolia.g.alchemy.com/v2/{self.ALCHEMY_KEY}"
        return ""

    @property
    def SEPOLIA_EXPLORER_URL(self) -> str:
        """Get Etherscan URL for Sepolia."""
        return "https://sepolia.etherscan.io"

    def get_tx_url(self, tx_hash: str) -> str:
        """Get Etherscan URL for a transaction."""
        return f"{self.SEPOLIA_EXPLORER_URL}/tx/{tx_hash}"

    def is_ens_configured(self) -> bool:
        """Check if a live ENS registry can be used."""
        return bool(self.RPC_URL and self.ENS_REGISTRY_ADDRESS)

    def is_wallet_configured(self) -> bool:
        """Check if a signing wallet is available."""
        return bool(self.PRIVATE_KEY)

    def is_ipfs_configured(self) -> bool:
        """Check if IPFS is properly configured."""
        return bool(self.IPFS_API_URL)

    def ensure_data_dir(self) -> None:
        """Create the directory holding the event journal."""
        Path(self.DB_PATH).parent.mkdir(parents=True, exist_ok=True)


# Global config instance
config = Config()
