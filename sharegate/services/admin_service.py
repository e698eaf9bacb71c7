"""
Gatekeeping for the operator-facing admin app.
"""

import hmac
import ipaddress
import logging
from typing import Optional

from fastapi import HTTPException, Request

logger = logging.getLogger(__name__)

INTERNAL_NETWORKS = [
    ipaddress.ip_network(cidr)
    for cidr in (
        "127.0.0.0/8",
        "10.0.0.0/8",
        "172.16.0.0/12",
        "192.168.0.0/16",
        "::1/128",
        "fc00::/7",
    )
]


def is_internal_network(ip_str: str) -> bool:
    """Check if an IP address belongs to an internal/private network.

    Internal networks:
    - 127.0.0.0/8 (localhost)
    - 10.0.0.0/8 (Class A private)
    - 172.16.0.0/12 (Class B private)
    - 192.168.0.0/16 (Class C private)
    - ::1 (IPv6 localhost)
    - fc00::/7 (IPv6 unique local)

    Documentation and other reserved ranges count as external.
    """
    if ip_str == "localhost":
        return True

    try:
        ip = ipaddress.ip_address(ip_str)
    except ValueError:
        # Invalid IP format, treat as external for safety
        return False

    if isinstance(ip, ipaddress.IPv6Address) and ip.ipv4_mapped is not None:
        ip = ip.ipv4_mapped
    return any(ip in network for network in INTERNAL_NETWORKS)


class AdminService:
    """Verifies that admin calls come from the operator."""

    def __init__(self, master_key: Optional[str] = None):
        """Initialize with an optional master key."""
        self.master_key = master_key

    def verify_request(self, request: Request, provided_key: Optional[str]) -> bool:
        """Verify the request comes from an internal address and carries the key.

        Only the socket peer is checked; forwarding headers are client-controlled.

        Raises:
            HTTPException 403: External network access attempt
            HTTPException 401: Missing or invalid master key
        """
        client_ip = request.client.host if request.client else "unknown"

        if not is_internal_network(client_ip):
            logger.warning(f"Admin request from external address {client_ip} blocked")
            raise HTTPException(status_code=403, detail="EXTERNAL_NETWORK_BLOCKED")

        if self.master_key is not None:
            if not provided_key or not hmac.compare_digest(provided_key, self.master_key):
                logger.warning(f"Admin request from {client_ip} with invalid master key")
                raise HTTPException(
                    status_code=401,
                    detail="Authority Verification Failed: Invalid Master Key."
                )

        return True
