"""
OpenDID IPFS Service
Off-chain claim payload storage through the IPFS (Kubo) HTTP API.

Implements:
- Content upload (`add`) returning the CID
- Retrieval by CID (`cat`)
- Pin management and node reachability
"""

import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple, Union

import httpx

from opendid.config import config

logger = logging.getLogger(__name__)


@dataclass
class IPFSUploadResult:
    """Result of an IPFS upload operation."""
    success: bool
    cid: str
    size_bytes: int
    gateway_url: str
    error: Optional[str] = None


class IPFSService:
    """
    IPFS client for a Kubo node's HTTP RPC API.

    Every Kubo RPC endpoint is a POST under /api/v0.
    """

    def __init__(
        self,
        api_url: str = None,
        api_key: str = None,
        gateway_url: str = None,
        transport: httpx.BaseTransport = None
    ):
        """
        Initialize IPFS service.

        Args:
            api_url: Base URL of the Kubo RPC API
            api_key: Optional bearer token for a gated node
            gateway_url: Public gateway used for shareable links
            transport: Optional httpx transport (tests)
        """
        self.api_url = (api_url or config.IPFS_API_URL).rstrip("/")
        self.api_key = api_key if api_key is not None else config.IPFS_API_KEY
        self.gateway_url = (gateway_url or config.IPFS_GATEWAY).rstrip("/")

        # HTTP client with connection pooling
        self.client = httpx.Client(
            base_url=f"{self.api_url}/api/v0",
            timeout=60.0,
            headers=self._build_headers(),
            transport=transport
        )

    def _build_headers(self) -> Dict[str, str]:
        """Build authentication headers for the node."""
        if self.api_key:
            return {"Authorization": f"Bearer {self.api_key}"}
        return {}

    def upload(self, data: Union[bytes, str], filename: str = "data.json") -> IPFSUploadResult:
        """
        Upload raw content to IPFS.

        Args:
            data: Content to store (str is UTF-8 encoded)
            filename: Name attached to the multipart upload

        Returns:
            IPFSUploadResult with CID and upload status
        """
        if isinstance(data, str):
            data = data.encode("utf-8")

        try:
            response = self.client.post(
                "/add",
                params={"pin": "true"},
                files={"file": (filename, data, "application/octet-stream")}
            )
        except httpx.HTTPError as e:
            logger.warning(f"[!] IPFS upload failed: {e}")
            return IPFSUploadResult(
                success=False, cid="", size_bytes=len(data), gateway_url="",
                error=f"Upload failed: {e}"
            )

        if response.status_code != 200:
            return IPFSUploadResult(
                success=False, cid="", size_bytes=len(data), gateway_url="",
                error=f"IPFS error {response.status_code}: {response.text}"
            )

        cid = response.json().get("Hash", "")
        logger.info(f"[+] Uploaded {len(data)} bytes to IPFS: {cid}")
        return IPFSUploadResult(
            success=bool(cid),
            cid=cid,
            size_bytes=len(data),
            gateway_url=self.get_gateway_url(cid),
            error=None if cid else "IPFS response carried no hash"
        )

    def upload_json(self, document: Dict[str, Any]) -> IPFSUploadResult:
        """Upload a JSON document."""
        return self.upload(json.dumps(document, sort_keys=True, default=str))

    def fetch(self, cid: str) -> Tuple[Optional[bytes], Optional[str]]:
        """
        Fetch raw content by CID.

        Returns:
            Tuple of (content, error_message)
        """
        if not cid:
            return None, "CID is required"

        try:
            response = self.client.post("/cat", params={"arg": cid})
        except httpx.HTTPError as e:
            return None, f"Failed to fetch CID {cid}: {e}"

        if response.status_code != 200:
            return None, f"Failed to fetch CID {cid}: {response.status_code}"
        return response.content, None

    def fetch_json(self, cid: str) -> Tuple[Optional[Dict[str, Any]], Optional[str]]:
        """Fetch and parse a JSON document by CID."""
        content, error = self.fetch(cid)
        if error:
            return None, error
        try:
            return json.loads(content), None
        except ValueError as e:
            return None, f"Failed to parse JSON from {cid}: {e}"

    def pin(self, cid: str) -> bool:
        """Pin content so the node keeps it."""
        return self._simple_call("/pin/add", cid)

    def unpin(self, cid: str) -> bool:
        """Unpin content (allows garbage collection)."""
        return self._simple_call("/pin/rm", cid)

    def _simple_call(self, path: str, cid: str) -> bool:
        if not cid:
            return False
        try:
            return self.client.post(path, params={"arg": cid}).status_code == 200
        except httpx.HTTPError as e:
            logger.warning(f"[!] IPFS {path} failed for {cid}: {e}")
            return False

    def is_accessible(self) -> bool:
        """Check if the IPFS node answers."""
        try:
            return self.client.post("/version").status_code == 200
        except httpx.HTTPError:
            return False

    def get_gateway_url(self, cid: str) -> str:
        """Get gateway URL for a CID."""
        return f"{self.gateway_url}/{cid}"

    def close(self):
        """Close HTTP client."""
        self.client.close()
