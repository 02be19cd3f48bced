from __future__ import annotations

import asyncio
import gzip
import zlib

import httpx
import pytest

from adrevenue.errors import DownloadError
from adrevenue.gam.stream import (
    ReportAggregator,
    download_and_aggregate,
    iter_decompressed,
    iter_lines,
)
from adrevenue.models import EntityFilter


DATE_ONLY_CSV = (
    "Dimension.DATE,Column.TOTAL_LINE_ITEM_LEVEL_IMPRESSIONS,Column.TOTAL_LINE_ITEM_LEVEL_CPM_AND_CPC_REVENUE\n"
    "2024-01-01,100,5000000\n"
    "2024-01-01,50,2500000\n"
    "2024-01-02,10,1000000\n"
)

SITE_CSV = (
    "Dimension.DATE,Dimension.SITE_NAME,Column.TOTAL_LINE_ITEM_LEVEL_IMPRESSIONS,Column.TOTAL_LINE_ITEM_LEVEL_CPM_AND_CPC_REVENUE\r\n"
    "2024-01-01,www.Alpha.example,100,5000000\r\n"
    "2024-01-01,beta.example,40,1000000\r\n"
    "2024-01-02,alpha.example,60,3000000\r\n"
    "2024-01-02,other.example,999,9000000\r\n"
)


async def _chunks(data: bytes, size: int):
    for i in range(0, len(data), size):
        yield data[i : i + size]


def _aggregate(data: bytes, chunk_size: int, dimensions=(), entity_filter=None):
    aggregator = ReportAggregator(dimensions, entity_filter)

    async def run():
        return await aggregator.consume(iter_lines(iter_decompressed(_chunks(data, chunk_size))), batch_size=2)

    return asyncio.run(run()), aggregator


def _summary(report):
    return (
        {d: (t.impressions, round(t.revenue, 6)) for d, t in report.by_date.items()},
        report.total_impressions,
        round(report.total_revenue, 6),
        report.row_count,
    )


def test_date_aggregation():
    report, _ = _aggregate(DATE_ONLY_CSV.encode("utf-8"), 4096)

    assert report.by_date["2024-01-01"].impressions == 150
    assert report.by_date["2024-01-01"].revenue == pytest.approx(7.5)
    assert report.by_date["2024-01-02"].impressions == 10
    assert report.by_date["2024-01-02"].revenue == pytest.approx(1.0)
    assert report.total_impressions == 160
    assert report.total_revenue == pytest.approx(8.5)
    assert report.row_count == 3
    assert report.by_site is None


def test_result_is_independent_of_chunking():
    data = gzip.compress(DATE_ONLY_CSV.encode("utf-8"))
    expected = _summary(_aggregate(data, len(data))[0])
    for size in (1, 2, 3, 7, 16, 64):
        assert _summary(_aggregate(data, size)[0]) == expected


def test_multibyte_site_names_survive_chunk_splits():
    csv_text = (
        "Dimension.DATE,Dimension.SITE_NAME,Column.IMPRESSIONS,Column.REVENUE\n"
        "2024-01-01,café.example,3,3000000\n"
        "2024-01-01,日本.example,4,4000000\n"
    )
    data = gzip.compress(csv_text.encode("utf-8"))
    for size in (1, 2, 5):
        report, _ = _aggregate(data, size, dimensions=("SITE_NAME",))
        assert set(report.by_site) == {"café.example", "日本.example"}
        assert report.by_site["日本.example"].impressions == 4


def test_plain_body_passes_through():
    report, _ = _aggregate(DATE_ONLY_CSV.encode("utf-8"), 5)
    assert report.row_count == 3


def test_concatenated_gzip_members():
    header, *rows = DATE_ONLY_CSV.splitlines(keepends=True)
    data = gzip.compress((header + rows[0]).encode("utf-8")) + gzip.compress("".join(rows[1:]).encode("utf-8"))
    report, _ = _aggregate(data, 9)
    assert report.row_count == 3
    assert report.total_impressions == 160


def test_header_only_report_is_empty():
    report, _ = _aggregate(DATE_ONLY_CSV.splitlines(keepends=True)[0].encode("utf-8"), 16)
    assert report.row_count == 0
    assert report.by_date == {}


def test_malformed_rows_are_skipped():
    csv_text = DATE_ONLY_CSV + "2024-01-03,7\n2024-01-04,abc,100\n\n"
    report, aggregator = _aggregate(csv_text.encode("utf-8"), 4096)
    assert report.row_count == 3
    assert aggregator.skipped_rows == 2
    assert "2024-01-03" not in report.by_date


def test_final_line_without_newline_is_counted():
    report, _ = _aggregate(DATE_ONLY_CSV.rstrip("\n").encode("utf-8"), 8)
    assert report.row_count == 3


def test_site_breakdown_normalizes_hostnames():
    report, _ = _aggregate(SITE_CSV.encode("utf-8"), 13, dimensions=("SITE_NAME",))
    assert report.by_site["alpha.example"].impressions == 160
    assert report.by_site["alpha.example"].revenue == pytest.approx(8.0)
    assert report.total_impressions == 1199


def test_entity_filter_excludes_rows_from_totals():
    allowed = EntityFilter(dimension="site", values=frozenset({"alpha.example", "beta.example"}))
    report, _ = _aggregate(SITE_CSV.encode("utf-8"), 4096, dimensions=("SITE_NAME",), entity_filter=allowed)

    assert set(report.by_site) == {"alpha.example", "beta.example"}
    assert report.total_impressions == 200
    assert report.total_revenue == pytest.approx(9.0)
    assert report.by_date["2024-01-02"].impressions == 60
    assert report.row_count == 3


def test_entity_filter_requires_matching_dimension():
    with pytest.raises(ValueError):
        ReportAggregator((), EntityFilter(dimension="site", values=frozenset({"a.example"})))


def test_ad_unit_and_site_columns_in_dimension_order():
    csv_text = (
        "DATE,AD_UNIT_NAME,SITE_NAME,IMPRESSIONS,REVENUE\n"
        "2024-01-01,sidebar,alpha.example,5,500000\n"
        "2024-01-01,header,alpha.example,7,700000\n"
    )
    report, _ = _aggregate(csv_text.encode("utf-8"), 4096, dimensions=("AD_UNIT_NAME", "SITE_NAME"))
    assert report.by_ad_unit["header"].impressions == 7
    assert report.by_site["alpha.example"].impressions == 12


def _download(handler, tokens, *, timeout_seconds=None):
    async def run():
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            return await download_and_aggregate(
                client,
                "https://storage.example/report.csv.gz",
                tokens,
                ReportAggregator(),
                timeout_seconds=timeout_seconds,
            )

    return asyncio.run(run())


def test_download_without_auth_header_first(tokens):
    seen: list[str | None] = []
    body = gzip.compress(DATE_ONLY_CSV.encode("utf-8"))

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request.headers.get("Authorization"))
        return httpx.Response(200, content=body)

    report = _download(handler, tokens)
    assert report.row_count == 3
    assert seen == [None]
    assert tokens.calls == 0


def test_download_retries_with_bearer_on_forbidden(tokens):
    seen: list[str | None] = []
    body = gzip.compress(DATE_ONLY_CSV.encode("utf-8"))

    def handler(request: httpx.Request) -> httpx.Response:
        auth = request.headers.get("Authorization")
        seen.append(auth)
        if auth is None:
            return httpx.Response(403, text="forbidden")
        return httpx.Response(200, content=body)

    report = _download(handler, tokens)
    assert report.total_impressions == 160
    assert seen == [None, "Bearer test-token"]


def test_download_failure_after_retry(tokens):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(401, text="denied " * 200)

    with pytest.raises(DownloadError) as excinfo:
        _download(handler, tokens)
    assert excinfo.value.status_code == 401
    assert len(excinfo.value.body_excerpt) == 500


def test_download_server_error_is_not_retried(tokens):
    calls: list[int] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(1)
        return httpx.Response(500, text="boom")

    with pytest.raises(DownloadError) as excinfo:
        _download(handler, tokens)
    assert excinfo.value.body_excerpt == "boom"
    assert len(calls) == 1


def test_corrupt_gzip_is_download_error(tokens):
    body = gzip.compress(DATE_ONLY_CSV.encode("utf-8"))
    corrupt = body[:10] + b"\x00" * 20 + body[30:]

    with pytest.raises(DownloadError):
        _download(lambda request: httpx.Response(200, content=corrupt), tokens)


def test_truncated_gzip_is_rejected():
    rows = "".join(f"2024-01-{d:02d},{d * 10},{d * 1000000}\n" for d in range(1, 29))
    body = gzip.compress((DATE_ONLY_CSV.splitlines(keepends=True)[0] + rows).encode("utf-8"))
    truncated = body[: len(body) // 2]

    for size in (7, len(truncated)):
        with pytest.raises(zlib.error):
            _aggregate(truncated, size)


def test_truncated_download_is_download_error(tokens):
    body = gzip.compress(DATE_ONLY_CSV.encode("utf-8"))

    with pytest.raises(DownloadError):
        _download(lambda request: httpx.Response(200, content=body[: len(body) - 6]), tokens)


def test_stray_quote_does_not_swallow_following_rows():
    csv_text = (
        DATE_ONLY_CSV.splitlines(keepends=True)[0]
        + '2024-01-01,"100,5000000\n'
        + "2024-01-02,10,1000000\n"
        + "2024-01-03,20,2000000\n"
    )
    for batch_size in (1, 500):
        aggregator = ReportAggregator()

        async def run():
            return await aggregator.consume(iter_lines(_chunks(csv_text.encode("utf-8"), 4096)), batch_size=batch_size)

        report = asyncio.run(run())
        assert sorted(report.by_date) == ["2024-01-02", "2024-01-03"]
        assert report.total_impressions == 30
        assert aggregator.skipped_rows == 1


def test_trailing_columns_are_ignored():
    csv_text = DATE_ONLY_CSV.splitlines(keepends=True)[0] + "2024-01-01,100,5000000,x\n"
    report, aggregator = _aggregate(csv_text.encode("utf-8"), 4096)
    assert report.total_impressions == 100
    assert report.total_revenue == pytest.approx(5.0)
    assert aggregator.skipped_rows == 0
