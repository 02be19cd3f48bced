"""Streaming download + incremental aggregation of report CSV dumps.

The body is never held in memory as a whole: bytes are gunzipped and decoded
chunk by chunk, complete lines are folded into an AggregatedReport, and the
trailing partial line is carried into the next chunk.
"""

from __future__ import annotations

import asyncio
import codecs
import csv
import logging
import zlib
from collections.abc import AsyncIterable, AsyncIterator, Iterable

import httpx

from adrevenue.errors import DownloadError
from adrevenue.gam.jobs import TokenSource
from adrevenue.gam.soap import ENTITY_DIMENSIONS
from adrevenue.models import AggregatedReport, EntityFilter
from adrevenue.util import excerpt, normalize_hostname


logger = logging.getLogger(__name__)

GZIP_MAGIC = b"\x1f\x8b"
MICROS_PER_UNIT = 1_000_000


async def iter_decompressed(chunks: AsyncIterable[bytes]) -> AsyncIterator[bytes]:
    """Gunzip a byte stream; bodies without the gzip magic pass through unchanged.

    Raises zlib.error when the stream ends inside a gzip member.
    """
    head = b""
    decompressor = None
    passthrough = False
    in_member = False

    async for chunk in chunks:
        if not chunk:
            continue
        if decompressor is None and not passthrough:
            head += chunk
            if len(head) < len(GZIP_MAGIC):
                continue
            chunk, head = head, b""
            if chunk.startswith(GZIP_MAGIC):
                decompressor = zlib.decompressobj(wbits=16 + zlib.MAX_WBITS)
            else:
                passthrough = True

        if passthrough:
            yield chunk
            continue

        while chunk:
            in_member = True
            out = decompressor.decompress(chunk)
            if out:
                yield out
            if not decompressor.eof:
                break
            # Concatenated gzip members.
            in_member = False
            chunk = decompressor.unused_data
            decompressor = zlib.decompressobj(wbits=16 + zlib.MAX_WBITS)

    if head:
        yield head
    if in_member:
        raise zlib.error("Truncated gzip stream: input ended before the end of a member")


async def iter_lines(chunks: AsyncIterable[bytes], encoding: str = "utf-8") -> AsyncIterator[str]:
    """Decode a byte stream incrementally and yield complete lines (without terminators)."""
    decoder = codecs.getincrementaldecoder(encoding)(errors="replace")
    buffer = ""

    async for chunk in chunks:
        buffer += decoder.decode(chunk)
        lines = buffer.split("\n")
        buffer = lines.pop()
        for line in lines:
            yield line.rstrip("\r")

    buffer += decoder.decode(b"", final=True)
    if buffer.strip():
        yield buffer.rstrip("\r")


class ReportAggregator:
    """Folds CSV_DUMP rows into an AggregatedReport.

    Rows are `date, <entity columns in dimension order>, impressions, micro_revenue`.
    """

    def __init__(
        self,
        entity_dimensions: tuple[str, ...] = (),
        entity_filter: EntityFilter | None = None,
    ):
        self.entity_keys = tuple(ENTITY_DIMENSIONS[d] for d in entity_dimensions)
        if entity_filter is not None and entity_filter.dimension not in self.entity_keys:
            raise ValueError(f"Entity filter on '{entity_filter.dimension}' but report dimensions are {self.entity_keys}")
        self.entity_filter = entity_filter
        self.min_columns = 3 + len(self.entity_keys)
        self.report = AggregatedReport(
            by_ad_unit={} if "ad_unit" in self.entity_keys else None,
            by_site={} if "site" in self.entity_keys else None,
        )
        self.skipped_rows = 0
        self._header_skipped = False

    def fold_row(self, fields: list[str]) -> bool:
        if len(fields) < self.min_columns:
            self.skipped_rows += 1
            return False

        day = fields[0].strip()
        metrics = 1 + len(self.entity_keys)
        try:
            impressions = int(float(fields[metrics].strip() or "0"))
            revenue = float(fields[metrics + 1].strip() or "0") / MICROS_PER_UNIT
        except ValueError:
            self.skipped_rows += 1
            return False
        if not day:
            self.skipped_rows += 1
            return False

        entities: dict[str, str] = {}
        for key, raw in zip(self.entity_keys, fields[1:metrics]):
            value = raw.strip()
            entities[key] = (normalize_hostname(value) or value) if key == "site" else value

        if self.entity_filter is not None and not self.entity_filter.matches(entities[self.entity_filter.dimension]):
            return False

        self.report.add(day, impressions, revenue, entities)
        return True

    def fold_lines(self, lines: Iterable[str]) -> None:
        for line in lines:
            if not line.strip():
                continue
            if not self._header_skipped:
                self._header_skipped = True
                continue
            # One reader per line: an unbalanced quote must not swallow the rows after it.
            try:
                fields = next(csv.reader([line]))
            except csv.Error:
                self.skipped_rows += 1
                continue
            self.fold_row(fields)

    async def consume(self, lines: AsyncIterable[str], batch_size: int = 500) -> AggregatedReport:
        batch: list[str] = []
        async for line in lines:
            batch.append(line)
            if len(batch) >= batch_size:
                self.fold_lines(batch)
                batch = []
        if batch:
            self.fold_lines(batch)

        logger.info("Processed %d rows (%d skipped)", self.report.row_count, self.skipped_rows)
        return self.report


async def _aggregate_response(resp: httpx.Response, aggregator: ReportAggregator) -> AggregatedReport:
    # httpx undoes Content-Encoding; a gzip file body is detected by iter_decompressed.
    return await aggregator.consume(iter_lines(iter_decompressed(resp.aiter_bytes())))


async def _download(
    client: httpx.AsyncClient,
    url: str,
    tokens: TokenSource,
    aggregator: ReportAggregator,
) -> AggregatedReport:
    async with client.stream("GET", url) as resp:
        if resp.status_code not in (401, 403):
            if resp.is_success:
                return await _aggregate_response(resp, aggregator)
            await _raise_download_error(resp)

    logger.info("Retrying download with Authorization header...")
    access_token = await tokens.get_access_token()
    async with client.stream("GET", url, headers={"Authorization": f"Bearer {access_token}"}) as resp:
        if not resp.is_success:
            await _raise_download_error(resp)
        return await _aggregate_response(resp, aggregator)


async def _raise_download_error(resp: httpx.Response) -> None:
    await resp.aread()
    body_excerpt = excerpt(resp.text)
    logger.error("Download failed: %s - %s", resp.status_code, body_excerpt)
    raise DownloadError(
        f"Failed to download report: {resp.status_code}",
        status_code=resp.status_code,
        body_excerpt=body_excerpt,
    )


async def download_and_aggregate(
    client: httpx.AsyncClient,
    url: str,
    tokens: TokenSource,
    aggregator: ReportAggregator,
    *,
    timeout_seconds: float | None = None,
) -> AggregatedReport:
    try:
        return await asyncio.wait_for(_download(client, url, tokens, aggregator), timeout=timeout_seconds)
    except asyncio.TimeoutError as exc:
        raise DownloadError(f"Report download exceeded {timeout_seconds}s") from exc
    except httpx.HTTPError as exc:
        raise DownloadError(f"Report download failed: {exc}") from exc
    except zlib.error as exc:
        raise DownloadError(f"Report body is not valid gzip: {exc}") from exc
