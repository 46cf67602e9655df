"""
Order API client used to enrich scans with order data.

The API answers every call with HTTP 200; business failures come back as a
free-text ``response.error_response`` which is classified here:

    "no esta listo" / "no puede" / "despachar"    -> NOT_READY (cannot ship)
    "no existe" / "not found" / "no encontrada"   -> NOT_FOUND
    "ya" + "escaneada" / "escaneado" / "scanned"  -> ALREADY_SCANNED
    anything else                                 -> UNKNOWN

Enrichment is best effort. lookup() never raises: transport failures are
returned as an UNAVAILABLE result and the scan continues without order data.
"""

import asyncio
from typing import Any, Dict, Optional

import requests

from logger import get_logger
from persistence import OrderLookup
from scan_record import (
    EnrichmentResult, REASON_ALREADY_SCANNED, REASON_NOT_FOUND, REASON_NOT_READY, REASON_UNKNOWN,
)

logger = get_logger(__name__)

ORDER_INFO_ENDPOINT = "dfx_scanner_get_orderinfo"

_MESSAGES = {
    REASON_NOT_READY: "Order not ready to ship",
    REASON_NOT_FOUND: "Tracking number does not exist",
    REASON_ALREADY_SCANNED: "Order was already scanned",
}


def classify_error(error_text: str) -> str:
    """Map the API's free-text error to a reason constant."""
    text = (error_text or "").lower()
    if "no esta listo" in text or "no puede" in text or "despachar" in text:
        return REASON_NOT_READY
    if "no existe" in text or "not found" in text or "no encontrada" in text:
        return REASON_NOT_FOUND
    if "ya" in text and ("escaneada" in text or "escaneado" in text or "scanned" in text):
        return REASON_ALREADY_SCANNED
    return REASON_UNKNOWN


def parse_order_response(body: Dict[str, Any]) -> EnrichmentResult:
    """
    Turn the API's JSON body into an EnrichmentResult.

    Every explicit error_response carries can_ship=False, matching the API's
    own convention; a missing response object is a plain not-found.
    """
    response = body.get("response") if isinstance(body, dict) else None

    if isinstance(response, dict) and response.get("error_response"):
        raw_error = str(response["error_response"])
        reason = classify_error(raw_error)
        return EnrichmentResult(
            found=False,
            reason=reason,
            can_ship=False,
            message=_MESSAGES.get(reason, raw_error),
            data={"raw_error": raw_error},
        )

    if not isinstance(response, dict):
        return EnrichmentResult(found=False, reason=REASON_NOT_FOUND, message="Order not found")

    return EnrichmentResult(
        found=True,
        can_ship=True,
        data={
            "order_id": response.get("order_id"),
            "firstname": response.get("firstname"),
            "lastname": response.get("lastname"),
            "store": response.get("store"),
            "order_items": response.get("orderItems"),
            "sync_status": response.get("sync_status"),
            "pay_type": response.get("pay_type"),
            "carrier": response.get("transportadora"),
        },
    )


class OrderApiClient(OrderLookup):
    """
    HTTP client for the order API.

    Args:
        base_url: API workflow root, e.g. https://orders.example.com/api/1.1/wf
        api_key: Bearer token
        timeout: Per-request timeout in seconds
        session: Optional requests.Session (tests pass a mock)
    """

    def __init__(self, base_url: str, api_key: Optional[str] = None, timeout: float = 8.0,
                 session: Optional[requests.Session] = None):
        self.url = f"{base_url.rstrip('/')}/{ORDER_INFO_ENDPOINT}"
        self.api_key = api_key
        self.timeout = timeout
        self.session = session or requests.Session()

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    def fetch(self, code: str) -> EnrichmentResult:
        """Blocking lookup; run through lookup() from async code."""
        try:
            response = self.session.post(self.url, json={"code": code}, headers=self._headers(),
                                         timeout=self.timeout)
            response.raise_for_status()
            body = response.json()
        except requests.RequestException as e:
            logger.warning(f"Order API request failed for {code}: {e}")
            return EnrichmentResult.unavailable(f"Order API unavailable: {e}")
        except ValueError as e:
            logger.warning(f"Order API returned invalid JSON for {code}: {e}")
            return EnrichmentResult.unavailable("Order API returned an invalid response")

        result = parse_order_response(body)
        if result.found:
            logger.debug(f"Order found for {code}: {result.order_id}")
        else:
            logger.warning(f"Order lookup for {code}: {result.reason} ({result.message})")
        return result

    async def lookup(self, code: str) -> EnrichmentResult:
        return await asyncio.to_thread(self.fetch, code)
