"""
Shared httpx helpers for the HTTP-based extractors
"""

from typing import Optional

import httpx

from core.exceptions import TransportError
import logging

logger = logging.getLogger(__name__)


def build_timeout(connect: float, read: float) -> httpx.Timeout:
    return httpx.Timeout(connect=connect, read=read, write=read, pool=connect)


async def http_get(
    client: httpx.AsyncClient,
    url: str,
    source_id: str,
    service: str = "datamart",
    headers: Optional[dict] = None
) -> httpx.Response:
    """
    Issue one GET and map every failure to TransportError.

    No retry is attempted; the next scheduled run picks up where the
    watermark left off.
    """
    try:
        response = await client.get(url, headers=headers)
    except httpx.TimeoutException as e:
        raise TransportError(
            f"Request to {service} timed out",
            context={"url": url, "source_id": source_id},
            original_exception=e
        )
    except httpx.HTTPError as e:
        raise TransportError(
            f"Failed to retrieve data from {service}",
            context={"url": url, "source_id": source_id},
            original_exception=e
        )

    if not response.is_success:
        raise TransportError(
            f"{service} returned HTTP {response.status_code}",
            context={
                "url": url,
                "source_id": source_id,
                "status_code": response.status_code,
                "response_body": response.text[:500]
            }
        )

    logger.debug(f"GET {url} -> {response.status_code} ({len(response.content)} bytes)")
    return response
