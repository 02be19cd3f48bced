from __future__ import annotations

import logging
import re
from functools import lru_cache

import httpx

from adrevenue.errors import ProtocolError
from adrevenue.util import excerpt


logger = logging.getLogger(__name__)

_XML_ENTITIES = (
    ("&lt;", "<"),
    ("&gt;", ">"),
    ("&quot;", '"'),
    ("&amp;", "&"),
)


@lru_cache(maxsize=64)
def _field_pattern(field_name: str) -> re.Pattern[str]:
    # Optional namespace prefix, exact local name, optional attributes.
    return re.compile(
        rf"<(?:[A-Za-z_][\w.-]*:)?{re.escape(field_name)}(?:\s[^>]*)?>([^<]*)<",
        re.IGNORECASE,
    )


def extract_field(xml_text: str, field_name: str) -> str | None:
    """Return the text of the first element named `field_name`, ignoring namespace prefixes.

    Returns None when no such element exists; whitespace-only text is returned
    stripped (an empty string), callers decide what absence means.
    """
    match = _field_pattern(field_name).search(xml_text or "")
    if match is None:
        return None
    return match.group(1).strip()


def decode_xml_entities(value: str) -> str:
    for entity, char in _XML_ENTITIES:
        value = value.replace(entity, char)
    return value


class SoapTransport:
    """Posts SOAP envelopes to the ReportService endpoint."""

    def __init__(self, client: httpx.AsyncClient, endpoint: str):
        self._client = client
        self.endpoint = endpoint

    async def send(self, access_token: str, operation: str, body: str) -> str:
        headers = {
            "Authorization": f"Bearer {access_token}",
            "Content-Type": "text/xml; charset=utf-8",
            "SOAPAction": operation,
        }
        logger.debug("SOAP %s -> %s", operation, self.endpoint)
        try:
            resp = await self._client.post(self.endpoint, content=body.encode("utf-8"), headers=headers)
        except httpx.HTTPError as exc:
            raise ProtocolError(f"SOAP {operation} request failed: {exc}") from exc

        text = resp.text
        if not resp.is_success:
            body_excerpt = excerpt(text)
            logger.error("SOAP %s failed: %s - %s", operation, resp.status_code, body_excerpt)
            raise ProtocolError(
                f"SOAP request failed: {resp.status_code} - {body_excerpt}",
                status_code=resp.status_code,
                body_excerpt=body_excerpt,
            )
        return text
