"""Azure DNS client on top of the Azure Resource Manager REST API."""

import logging
import time
from typing import Any, Dict, Optional

import requests

logger = logging.getLogger(__name__)

LOGIN_URL = "https://login.microsoftonline.com/{tenant_id}/oauth2/v2.0/token"
MANAGEMENT_URL = "https://management.azure.com"
MANAGEMENT_SCOPE = "https://management.azure.com/.default"
DNS_API_VERSION = "2018-05-01"

TOKEN_REFRESH_BUFFER = 5 * 60


class AzureDnsError(Exception):
    """Authentication or record-set call against Azure failed."""


class AzureDnsClient:
    """Service principal client for Azure DNS record sets."""

    def __init__(
        self,
        tenant_id: str,
        client_id: str,
        client_secret: str,
        subscription_id: str,
        resource_group: str,
        session: Optional[requests.Session] = None,
        timeout: float = 30,
    ):
        self.tenant_id = tenant_id
        self.client_id = client_id
        self.client_secret = client_secret
        self.subscription_id = subscription_id
        self.resource_group = resource_group
        self.timeout = timeout
        self._access_token: Optional[str] = None
        self._token_expires_at = 0.0
        self._session = session or requests.Session()
        self._session.headers.update({"Accept": "application/json"})

    def authenticate(self) -> str:
        """Fetch an access token with the client credentials grant."""
        try:
            response = self._session.post(
                LOGIN_URL.format(tenant_id=self.tenant_id),
                data={
                    "grant_type": "client_credentials",
                    "client_id": self.client_id,
                    "client_secret": self.client_secret,
                    "scope": MANAGEMENT_SCOPE,
                },
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise AzureDnsError(f"Azure authentication request failed: {e}") from e

        if not response.ok:
            raise AzureDnsError(
                f"Azure authentication failed with status {response.status_code}: {response.text[:200]}"
            )

        try:
            payload = response.json()
        except ValueError as e:
            raise AzureDnsError("Azure authentication response was not valid JSON") from e

        token = payload.get("access_token") if isinstance(payload, dict) else None
        if not token:
            raise AzureDnsError("Azure authentication response did not contain an access token")

        self._access_token = token
        self._token_expires_at = time.time() + int(payload.get("expires_in", 3600))
        logger.info("Authenticated with Azure AD (token valid for %ss)", payload.get("expires_in", 3600))
        return token

    def _ensure_token(self) -> str:
        if self._access_token and time.time() < self._token_expires_at - TOKEN_REFRESH_BUFFER:
            return self._access_token
        return self.authenticate()

    def record_set_url(self, zone: str, record_type: str, name: str) -> str:
        return (
            f"{MANAGEMENT_URL}/subscriptions/{self.subscription_id}"
            f"/resourceGroups/{self.resource_group}"
            f"/providers/Microsoft.Network/dnsZones/{zone}/{record_type}/{name}"
        )

    @staticmethod
    def record_set_body(record_type: str, value: str, ttl: int) -> Dict[str, Any]:
        properties: Dict[str, Any] = {"TTL": ttl}
        if record_type == "A":
            properties["ARecords"] = [{"ipv4Address": value}]
        elif record_type == "AAAA":
            properties["AAAARecords"] = [{"ipv6Address": value}]
        else:
            raise ValueError(f"Unsupported record type: {record_type}")
        return {"properties": properties}

    def create_or_update_record(self, zone: str, name: str, record_type: str, value: str, ttl: int = 300) -> None:
        """Create or replace the record set ``name`` in ``zone``.

        Raises:
            AzureDnsError: on authentication failure or a non-2xx answer
        """
        token = self._ensure_token()
        try:
            response = self._session.put(
                self.record_set_url(zone, record_type, name),
                params={"api-version": DNS_API_VERSION},
                json=self.record_set_body(record_type, value, ttl),
                headers={"Authorization": f"Bearer {token}"},
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise AzureDnsError(f"Failed to update {record_type} record {name}.{zone}: {e}") from e

        if response.status_code == 401:
            # Token revoked or expired early, next call re-authenticates
            self._access_token = None

        if not response.ok:
            raise AzureDnsError(
                f"Failed to update {record_type} record {name}.{zone}: "
                f"{response.status_code} - {response.text[:200]}"
            )

        logger.info("Updated %s record %s.%s to %s", record_type, name, zone, value)
