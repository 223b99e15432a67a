# app/core/ioc_classifier.py
"""
Indicator extraction from free-form evidence text.

Every pattern scans the whole text on its own. The first pattern to claim a
(lower-cased) value decides its type, private IPv4 space is dropped, and a
domain that only appears as part of a URL found in the same text is not
reported separately.
"""
import ipaddress
import re
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Tuple

from app.db.models.enums import IndicatorType

# Order decides which type wins when two patterns match the same literal value
IOC_PATTERNS: Tuple[Tuple[IndicatorType, "re.Pattern[str]"], ...] = (
    (IndicatorType.IP, re.compile(
        r"\b(?:(?:25[0-5]|2[0-4][0-9]|[01]?[0-9][0-9]?)\.){3}"
        r"(?:25[0-5]|2[0-4][0-9]|[01]?[0-9][0-9]?)\b",
        re.ASCII
    )),
    (IndicatorType.DOMAIN, re.compile(
        r"\b(?:[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?\.)+[a-zA-Z]{2,}\b",
        re.ASCII
    )),
    (IndicatorType.URL, re.compile(r"\bhttps?://[^\s/$.?#].[^\s]*\b", re.ASCII)),
    (IndicatorType.MD5, re.compile(r"\b[a-fA-F0-9]{32}\b", re.ASCII)),
    (IndicatorType.SHA256, re.compile(r"\b[a-fA-F0-9]{64}\b", re.ASCII)),
    (IndicatorType.SENDER, re.compile(
        r"\b[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}\b",
        re.ASCII
    )),
)

PRIVATE_IPV4_NETWORKS = (
    ipaddress.ip_network("10.0.0.0/8"),
    ipaddress.ip_network("172.16.0.0/12"),
    ipaddress.ip_network("192.168.0.0/16"),
    ipaddress.ip_network("127.0.0.0/8"),
)


@dataclass(frozen=True)
class ExtractedIndicator:
    value: str
    type: IndicatorType


def is_private_ipv4(value: str) -> bool:
    """True for addresses in 10/8, 172.16/12, 192.168/16 and 127/8"""
    try:
        address = ipaddress.ip_address(value)
    except ValueError:
        # Zero-padded octets ("010.0.0.1") are not valid addresses; keep them
        return False
    return any(address in network for network in PRIVATE_IPV4_NETWORKS)


def extract_indicators(text: Optional[str]) -> List[ExtractedIndicator]:
    """
    Extract deduplicated (value, type) indicator candidates from text.

    Args:
        text: Free-form evidence content. Anything that is not a string
            yields no candidates.

    Returns:
        Candidates in first-seen order. Calling twice with the same text
        returns the same list.
    """
    if not isinstance(text, str) or not text:
        return []

    found: Dict[str, IndicatorType] = {}
    for indicator_type, pattern in IOC_PATTERNS:
        for match in pattern.finditer(text):
            value = match.group(0).lower()

            if indicator_type is IndicatorType.IP and is_private_ipv4(value):
                continue

            found.setdefault(value, indicator_type)

    urls = [value for value, indicator_type in found.items() if indicator_type is IndicatorType.URL]

    results = []
    for value, indicator_type in found.items():
        if indicator_type is IndicatorType.DOMAIN and any(value in url for url in urls):
            continue
        results.append(ExtractedIndicator(value=value, type=indicator_type))

    return results


def file_hash_indicators(files: Optional[Iterable[Any]]) -> List[ExtractedIndicator]:
    """
    Turn evidence attachments into sha256 indicators.

    Images are skipped, as are attachments without a hash. Accepts dicts or
    objects exposing ``mime`` and ``sha256``.
    """
    results: List[ExtractedIndicator] = []
    seen = set()
    for attachment in files or []:
        if isinstance(attachment, dict):
            mime = attachment.get("mime") or ""
            digest = attachment.get("sha256") or ""
        else:
            mime = getattr(attachment, "mime", "") or ""
            digest = getattr(attachment, "sha256", "") or ""

        digest = digest.strip().lower()
        if not digest or mime.startswith("image/") or digest in seen:
            continue

        seen.add(digest)
        results.append(ExtractedIndicator(value=digest, type=IndicatorType.SHA256))

    return results
