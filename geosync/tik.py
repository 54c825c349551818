"""MikroTik RouterOS REST client for firewall address lists."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional

import requests
from requests.auth import HTTPBasicAuth

from geosync.errors import TransportError

ADDRESS_LIST_PATH = "ip/firewall/address-list"
ADDRESS_LIST_PROPS = ".id,address,list,comment"


def normalize_address(address: str) -> str:
    """RouterOS omits the prefix for single hosts; treat those as /32."""
    address = address.strip()
    if "/" not in address:
        return f"{address}/32"
    return address


@dataclass(frozen=True)
class RemoteAddress:
    """An entry of a RouterOS firewall address list."""
    id: str
    address: str
    list: str
    comment: Optional[str] = None

    @classmethod
    def from_json(cls, data: dict[str, Any]) -> "RemoteAddress":
        return cls(
            id=data[".id"],
            address=normalize_address(data["address"]),
            list=data.get("list", ""),
            comment=data.get("comment"),
        )


class RouterOSClient:
    """
    RouterOS REST API client (``https://<host>/rest/``).

    Every call raises TransportError on a connection failure or an
    unexpected status; callers decide whether that aborts anything.
    """

    def __init__(
        self,
        host: str,
        username: str,
        password: str,
        session: requests.Session,
        logger: logging.Logger,
        timeout: int = 30,
    ):
        self.base_url = f"https://{host.strip('/')}/rest"
        self.session = session
        self.logger = logger
        self.timeout = timeout
        self.auth = HTTPBasicAuth(username, password)

    def _request(
        self,
        method: str,
        path: str,
        expected: tuple[int, ...],
        **kwargs,
    ) -> requests.Response:
        url = f"{self.base_url}/{path}"
        try:
            response = self.session.request(
                method,
                url,
                auth=self.auth,
                timeout=self.timeout,
                **kwargs,
            )
        except requests.RequestException as e:
            raise TransportError(f"{method} {path} failed: {e}") from e

        if response.status_code not in expected:
            raise TransportError(
                f"{method} {path} returned unexpected status",
                status_code=response.status_code,
                body=response.text[:200],
            )
        return response

    def health_check(self) -> bool:
        """Check if the REST API is reachable with the configured credentials."""
        try:
            self._request("GET", "system/resource", expected=(200,))
            return True
        except TransportError as e:
            self.logger.error(f"RouterOS health check failed: {e}")
            return False

    def list_addresses(self) -> list[RemoteAddress]:
        """Fetch every address-list entry on the device in one call."""
        response = self._request(
            "GET",
            ADDRESS_LIST_PATH,
            expected=(200,),
            params={".proplist": ADDRESS_LIST_PROPS},
        )
        try:
            data = response.json()
        except ValueError as e:
            raise TransportError(
                "Address list response is not JSON",
                status_code=response.status_code,
                body=response.text[:200],
            ) from e

        # An empty object instead of an array means the query was rejected
        if not isinstance(data, list):
            raise TransportError(
                "Address list response is not an array",
                status_code=response.status_code,
                body=response.text[:200],
            )

        addresses: list[RemoteAddress] = []
        for item in data:
            try:
                addresses.append(RemoteAddress.from_json(item))
            except (KeyError, TypeError, AttributeError):
                self.logger.warning(f"Skipping malformed address-list entry: {item!r}")
        return addresses

    def create_address(self, address: str, list_name: str, comment: Optional[str] = None) -> dict:
        """Add an entry to a list (RouterOS answers PUT with 200 or 201)."""
        payload = {"address": address, "list": list_name}
        if comment:
            payload["comment"] = comment
        response = self._request("PUT", ADDRESS_LIST_PATH, expected=(200, 201), json=payload)
        try:
            return response.json()
        except ValueError:
            return {}

    def update_address(self, item_id: str, **fields: Any) -> dict:
        """Patch fields (address, list, comment, ...) of an existing entry."""
        response = self._request("PATCH", f"{ADDRESS_LIST_PATH}/{item_id}", expected=(200,), json=fields)
        try:
            return response.json()
        except ValueError:
            return {}

    def delete_address(self, item_id: str) -> None:
        """Remove an entry by its RouterOS id (e.g. ``*1A``)."""
        self._request("DELETE", f"{ADDRESS_LIST_PATH}/{item_id}", expected=(200, 204))
