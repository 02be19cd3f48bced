"""SOAP envelopes for the Ad Manager ReportService.

Three operations are supported:
  runReportJob                    : submit a report query, returns a job id
  getReportJobStatus              : poll a job, returns IN_PROGRESS | COMPLETED | FAILED
  getReportDownloadUrlWithOptions : resolve the gzip CSV download URL
"""

from __future__ import annotations

from xml.sax.saxutils import escape

from adrevenue.config import DEFAULT_API_VERSION, DEFAULT_APPLICATION_NAME
from adrevenue.models import ReportRequest
from adrevenue.util import date_parts


RUN_REPORT_JOB = "runReportJob"
GET_REPORT_JOB_STATUS = "getReportJobStatus"
GET_REPORT_DOWNLOAD_URL = "getReportDownloadUrlWithOptions"

DATE_DIMENSION = "DATE"

# Report dimension -> AggregatedReport breakdown key
ENTITY_DIMENSIONS = {
    "AD_UNIT_NAME": "ad_unit",
    "SITE_NAME": "site",
}

REPORT_COLUMNS = (
    "TOTAL_LINE_ITEM_LEVEL_IMPRESSIONS",
    "TOTAL_LINE_ITEM_LEVEL_CPM_AND_CPC_REVENUE",
)


def _namespace(api_version: str) -> str:
    return f"https://www.google.com/apis/ads/publisher/{api_version}"


def _envelope(network_code: str, body: str, *, api_version: str, application_name: str) -> str:
    return f"""<?xml version="1.0" encoding="UTF-8"?>
<soapenv:Envelope xmlns:soapenv="http://schemas.xmlsoap.org/soap/envelope/" xmlns:gam="{_namespace(api_version)}">
  <soapenv:Header>
    <gam:RequestHeader>
      <gam:networkCode>{escape(network_code)}</gam:networkCode>
      <gam:applicationName>{escape(application_name)}</gam:applicationName>
    </gam:RequestHeader>
  </soapenv:Header>
  <soapenv:Body>
{body}
  </soapenv:Body>
</soapenv:Envelope>"""


def _date_block(tag: str, value: str) -> str:
    year, month, day = date_parts(value)
    return f"""          <gam:{tag}>
            <gam:year>{year}</gam:year>
            <gam:month>{month}</gam:month>
            <gam:day>{day}</gam:day>
          </gam:{tag}>"""


def _line_item_statement(line_item_id: str | None) -> str:
    if not line_item_id:
        return ""
    return f"""
          <gam:statement>
            <gam:query>WHERE LINE_ITEM_ID = :lineItemId</gam:query>
            <gam:values>
              <gam:key>lineItemId</gam:key>
              <gam:value xmlns:xsi="http://www.w3.org/2001/XMLSchema-instance" xsi:type="gam:NumberValue">
                <gam:value>{escape(line_item_id)}</gam:value>
              </gam:value>
            </gam:values>
          </gam:statement>"""


def build_run_report_job(
    network_code: str,
    request: ReportRequest,
    *,
    entity_dimensions: tuple[str, ...] = ("SITE_NAME",),
    line_item_id: str | None = None,
    api_version: str = DEFAULT_API_VERSION,
    application_name: str = DEFAULT_APPLICATION_NAME,
) -> str:
    unknown = [d for d in entity_dimensions if d not in ENTITY_DIMENSIONS]
    if unknown:
        raise ValueError(f"Unsupported report dimensions: {unknown}")

    dimensions = "\n".join(
        f"          <gam:dimensions>{d}</gam:dimensions>" for d in (DATE_DIMENSION, *entity_dimensions)
    )
    columns = "\n".join(f"          <gam:columns>{c}</gam:columns>" for c in REPORT_COLUMNS)

    body = f"""    <gam:runReportJob>
      <gam:reportJob>
        <gam:reportQuery>
{dimensions}
          <gam:adUnitView>FLAT</gam:adUnitView>
{columns}
{_date_block("startDate", request.start_date)}
{_date_block("endDate", request.end_date)}
          <gam:dateRangeType>CUSTOM_DATE</gam:dateRangeType>{_line_item_statement(line_item_id)}
        </gam:reportQuery>
      </gam:reportJob>
    </gam:runReportJob>"""
    return _envelope(network_code, body, api_version=api_version, application_name=application_name)


def build_report_job_status(
    network_code: str,
    job_id: str,
    *,
    api_version: str = DEFAULT_API_VERSION,
    application_name: str = DEFAULT_APPLICATION_NAME,
) -> str:
    body = f"""    <gam:getReportJobStatus>
      <gam:reportJobId>{escape(job_id)}</gam:reportJobId>
    </gam:getReportJobStatus>"""
    return _envelope(network_code, body, api_version=api_version, application_name=application_name)


def build_report_download_url(
    network_code: str,
    job_id: str,
    *,
    api_version: str = DEFAULT_API_VERSION,
    application_name: str = DEFAULT_APPLICATION_NAME,
) -> str:
    body = f"""    <gam:getReportDownloadUrlWithOptions>
      <gam:reportJobId>{escape(job_id)}</gam:reportJobId>
      <gam:reportDownloadOptions>
        <gam:exportFormat>CSV_DUMP</gam:exportFormat>
        <gam:includeReportProperties>false</gam:includeReportProperties>
        <gam:includeTotalsRow>false</gam:includeTotalsRow>
        <gam:useGzipCompression>true</gam:useGzipCompression>
      </gam:reportDownloadOptions>
    </gam:getReportDownloadUrlWithOptions>"""
    return _envelope(network_code, body, api_version=api_version, application_name=application_name)
