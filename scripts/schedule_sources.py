"""Read the operator's web pages: GTFS effective date and special schedule PDF links."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable
from urllib.parse import urljoin

import requests
from bs4 import BeautifulSoup

logger = logging.getLogger(__name__)

DEVELOPERS_URL = "https://www.ridepatco.org/developers/"
SCHEDULES_URL = "https://www.ridepatco.org/schedules/schedules.asp"
SCHEDULES_BASE_URL = "https://www.ridepatco.org/schedules/"
GTFS_ZIP_URL = "https://rapid.nationalrtap.org/GTFSFileManagement/UserUploadFiles/13562/PATCO_GTFS.zip"

HTML_TIMEOUT_SECONDS = 60
DOWNLOAD_TIMEOUT_SECONDS = 180
DOWNLOAD_CHUNK_SIZE = 1024 * 1024

EFFECTIVE_DATE_RE = re.compile(r"timetable effective (\d{1,2})/(\d{1,2})/(\d{4})", re.IGNORECASE)
# the schedules page nests its markup badly, so the section is cut out by text first
SPECIAL_SECTION_RE = re.compile(r"Special Schedule\(s\)([\s\S]*?)(?:</td>|<hr)", re.IGNORECASE)


@dataclass(frozen=True)
class SpecialScheduleLink:
    date_label: str
    pdf_url: str


def fetch_html(session: requests.Session, url: str) -> str:
    response = session.get(url, timeout=HTML_TIMEOUT_SECONDS)
    response.raise_for_status()
    return response.text


def html_fetcher(session: requests.Session) -> Callable[[str], str]:
    return lambda url: fetch_html(session, url)


def parse_effective_date(html: str) -> str:
    text = BeautifulSoup(html, "html.parser").get_text(" ")
    match = EFFECTIVE_DATE_RE.search(text)
    if not match:
        raise RuntimeError("Could not find effective date on developers page")
    month, day, year = match.groups()
    return f"{year}-{int(month):02d}-{int(day):02d}"


def fetch_gtfs_effective_date(fetch_html: Callable[[str], str]) -> str:
    """Effective date of the published GTFS feed as ``YYYY-MM-DD``."""
    return parse_effective_date(fetch_html(DEVELOPERS_URL))


def resolve_pdf_url(href: str) -> str:
    if href.startswith("http"):
        return href
    return urljoin(SCHEDULES_BASE_URL, re.sub(r"^\.+/", "", href))


def parse_special_schedule_links(section_html: str) -> list[SpecialScheduleLink]:
    soup = BeautifulSoup(section_html, "html.parser")
    links: list[SpecialScheduleLink] = []
    for item in soup.find_all("li"):
        anchor = item.find("a", href=True)
        if anchor is None:
            continue
        href = str(anchor["href"]).strip()
        if not href.lower().endswith(".pdf"):
            continue
        links.append(
            SpecialScheduleLink(
                date_label=anchor.get_text(strip=True),
                pdf_url=resolve_pdf_url(href),
            )
        )
    return links


def parse_special_schedules_page(html: str) -> list[SpecialScheduleLink]:
    match = SPECIAL_SECTION_RE.search(html)
    if not match:
        logger.info("No special schedules section found on page")
        return []
    return parse_special_schedule_links(match.group(1))


def fetch_special_schedules(fetch_html: Callable[[str], str]) -> list[SpecialScheduleLink]:
    return parse_special_schedules_page(fetch_html(SCHEDULES_URL))


def download_bytes(session: requests.Session, url: str) -> bytes:
    response = session.get(url, timeout=DOWNLOAD_TIMEOUT_SECONDS)
    response.raise_for_status()
    return response.content


def download_file(session: requests.Session, url: str, destination: Path) -> dict[str, Any]:
    destination.parent.mkdir(parents=True, exist_ok=True)
    temp_file = destination.with_suffix(destination.suffix + ".part")
    if temp_file.exists():
        temp_file.unlink()

    response = session.get(url, stream=True, timeout=DOWNLOAD_TIMEOUT_SECONDS)
    response.raise_for_status()
    with temp_file.open("wb") as file_handle:
        for chunk in response.iter_content(chunk_size=DOWNLOAD_CHUNK_SIZE):
            if chunk:
                file_handle.write(chunk)
    temp_file.replace(destination)

    return {
        "url": url,
        "local_path": str(destination),
        "file_size": destination.stat().st_size,
    }
