"""
Storage network (Bundlr) HTTP client.

Fetches publication and timestamp-proof blobs, looks up who uploaded a
transaction, bulk-fetches blobs for the ingestion loop and pages through the
DA transaction index with GraphQL.
"""

import base64
import json
import logging
from typing import Any, Dict, List, Optional

import httpx

from .environment import Deployment, Environment, get_submitters
from .errors import BundlrTimeoutError
from .models import TransactionsPage

log = logging.getLogger(__name__)

BUNDLR_NODE = "https://lens.bundlr.network/"
BUNDLR_GATEWAY = "https://lens-gateway.bundlr.network/"

DEFAULT_TIMEOUT = 5.0
BULK_LIMIT = 1000

TRANSACTIONS_QUERY = """
query DataAvailabilityTransactions($owners: [String!], $limit: Int, $after: String) {
  transactions(owners: $owners, limit: $limit, after: $after, order: ASC, hasTags: true) {
    edges {
      node {
        id
        address
      }
      cursor
    }
    pageInfo {
      hasNextPage
      endCursor
    }
  }
}
"""


class BundlrClient:
    """Async client for the Bundlr node and gateway."""

    def __init__(
        self,
        node_url: str = BUNDLR_NODE,
        gateway_url: str = BUNDLR_GATEWAY,
        timeout: float = DEFAULT_TIMEOUT,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.node_url = node_url
        self.gateway_url = gateway_url
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def __aenter__(self) -> "BundlrClient":
        return self

    async def __aexit__(self, *exc):
        await self.aclose()

    async def aclose(self):
        await self._client.aclose()

    async def _get(self, url: str) -> Optional[httpx.Response]:
        try:
            response = await self._client.get(url)
        except httpx.TransportError as e:
            raise BundlrTimeoutError(f"GET {url} failed: {e}") from e

        if response.status_code != 200:
            log.debug("GET %s returned %s", url, response.status_code)
            return None
        return response

    async def get_by_id(self, tx_id: str) -> Optional[Dict[str, Any]]:
        """
        Fetch a JSON blob by transaction id.

        Returns:
            The parsed JSON, or None if the id does not resolve to a JSON blob

        Raises:
            BundlrTimeoutError: If the gateway cannot be reached in time
        """
        response = await self._get(f"{self.gateway_url}tx/{tx_id}/data")
        if response is None:
            return None
        try:
            return response.json()
        except ValueError:
            return None

    async def get_owner_of_transaction(self, tx_id: str) -> Optional[str]:
        """Address that uploaded a transaction, or None if unknown."""
        response = await self._get(f"{self.node_url}tx/{tx_id}")
        if response is None:
            return None
        try:
            return response.json().get("address")
        except ValueError:
            return None

    async def get_bulk_txs(self, tx_ids: List[str]) -> Dict[str, Any]:
        """
        Bulk-fetch transaction data.

        Returns:
            ``{"success": [{"id", "address", "data"}], "failed": {id: reason}}``
            with ``data`` already decoded from base64 JSON
        """
        merged: Dict[str, Any] = {"success": [], "failed": {}}

        for start in range(0, len(tx_ids), BULK_LIMIT):
            chunk = tx_ids[start:start + BULK_LIMIT]
            url = f"{self.node_url}bulk/txs/data"
            try:
                response = await self._client.post(url, json=chunk)
                response.raise_for_status()
            except httpx.TransportError as e:
                raise BundlrTimeoutError(f"POST {url} failed: {e}") from e

            body = response.json()
            for entry in body.get("success", []):
                merged["success"].append({
                    "id": entry["id"],
                    "address": entry.get("address"),
                    "data": decode_bulk_data(entry["data"]),
                })
            merged["failed"].update(body.get("failed") or {})

        return merged

    async def get_data_availability_transactions(
        self,
        environment: Environment,
        deployment: Deployment,
        cursor: Optional[str],
        limit: int = BULK_LIMIT,
    ) -> TransactionsPage:
        """One page of DA transaction ids uploaded by the trusted submitters, oldest first."""
        payload = {
            "query": TRANSACTIONS_QUERY,
            "variables": {
                "owners": get_submitters(environment, deployment),
                "limit": limit,
                "after": cursor,
            },
        }

        url = f"{self.node_url}graphql"
        try:
            response = await self._client.post(url, json=payload)
            response.raise_for_status()
        except httpx.TransportError as e:
            raise BundlrTimeoutError(f"POST {url} failed: {e}") from e

        data = response.json().get("data")
        if not data:
            raise ValueError("No data returned from Bundlr GraphQL API")

        transactions = data["transactions"]
        page_info = transactions["pageInfo"]
        return TransactionsPage(
            ids=[edge["node"]["id"] for edge in transactions["edges"]],
            end_cursor=page_info.get("endCursor"),
            has_next_page=bool(page_info.get("hasNextPage")),
        )


def decode_bulk_data(data: str) -> Dict[str, Any]:
    """Bulk responses carry each blob as base64-encoded JSON."""
    return json.loads(base64.b64decode(data).decode("utf-8"))
