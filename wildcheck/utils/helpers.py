"""Utility functions for wildcheck.

Helpers for deduplication, host-name and resolver-address normalisation, and
reading line-oriented input.
"""

from __future__ import annotations

import ipaddress
import random
import re
import string
from typing import Iterable, List, Optional, Tuple, TypeVar
from urllib.parse import urlsplit

T = TypeVar("T")

DEFAULT_DNS_PORT = 53

# Labels may carry underscores (_dmarc, _domainkey) in enumeration output
_HOSTNAME_RE = re.compile(
    r"^(?:[a-z0-9_](?:[a-z0-9_\-]{0,61}[a-z0-9_])?\.)+"
    r"[a-z0-9](?:[a-z0-9\-]{0,61}[a-z0-9])?$"
)
_SCHEME_RE = re.compile(r"^[a-z][a-z0-9+.\-]*://", re.IGNORECASE)
_LABEL_ALPHABET = string.ascii_lowercase + string.digits
_rng = random.SystemRandom()


def deduplicate(items: Iterable[T]) -> List[T]:
    """Return a list with duplicates removed while preserving insertion order.

    Args:
        items: Any iterable of hashable items.

    Returns:
        Ordered unique list.
    """
    seen: set = set()
    result: List[T] = []
    for item in items:
        if item not in seen:
            seen.add(item)
            result.append(item)
    return result


def is_valid_hostname(name: str) -> bool:
    """Return ``True`` if *name* is a syntactically valid, lowercase host name."""
    if not name or len(name) > 253:
        return False
    return bool(_HOSTNAME_RE.match(name))


def is_valid_ip(address: str) -> bool:
    """Return ``True`` if *address* is a valid IPv4 or IPv6 address.

    Args:
        address: String to validate.

    Returns:
        Boolean validation result.
    """
    try:
        ipaddress.ip_address(address)
        return True
    except ValueError:
        return False


def extract_host(line: str) -> str:
    """Reduce a URL to its host name; other input is returned unchanged.

    Args:
        line: A raw input line such as ``https://example.com/path``.

    Returns:
        Host portion of the URL, or *line* itself when it has no scheme.
    """
    if not _SCHEME_RE.match(line):
        return line
    return urlsplit(line).hostname or ""


def remove_asterisk_label(name: str) -> str:
    """Strip leading ``*.`` wildcard labels from *name*."""
    while name.startswith("*."):
        name = name[2:]
    return name


def normalise_name(line: str) -> str:
    """Return the canonical form of a candidate name read from input.

    URLs are reduced to their host, the result is lowercased, wildcard labels
    are removed and surrounding dots trimmed.

    Args:
        line: Raw input line.

    Returns:
        Normalised name (may be empty).
    """
    name = extract_host(line.strip()).lower()
    name = remove_asterisk_label(name.strip("."))
    return name.strip(".")


def split_address(address: str) -> Tuple[str, int]:
    """Split a normalised ``host:port`` resolver address.

    Args:
        address: Address produced by :func:`normalise_resolver_address`.

    Returns:
        ``(host, port)`` tuple; IPv6 brackets are removed from *host*.
    """
    host, _, port = address.rpartition(":")
    return host.strip("[]"), int(port)


def normalise_resolver_address(entry: str) -> Optional[str]:
    """Normalise a resolver entry to ``host:port``.

    ``"1.1.1.1"`` becomes ``"1.1.1.1:53"`` and ``"1.1.1.1:5353"`` is kept.
    IPv6 addresses are accepted bare or bracketed and always returned
    bracketed. Host names are rejected since nameservers must be addresses.

    Args:
        entry: Raw resolver entry.

    Returns:
        Normalised address, or ``None`` when *entry* does not parse.
    """
    entry = entry.strip()
    if not entry:
        return None

    try:
        ip = ipaddress.ip_address(entry)
    except ValueError:
        pass
    else:
        host = f"[{ip}]" if ip.version == 6 else str(ip)
        return f"{host}:{DEFAULT_DNS_PORT}"

    if entry.startswith("["):
        host, sep, rest = entry[1:].partition("]")
        port_text = rest[1:] if rest.startswith(":") else ""
        if not sep or (rest and not port_text):
            return None
    else:
        host, _, port_text = entry.partition(":")

    try:
        ip = ipaddress.ip_address(host)
        port = int(port_text) if port_text else DEFAULT_DNS_PORT
    except ValueError:
        return None
    if not 0 < port < 65536:
        return None

    host = f"[{ip}]" if ip.version == 6 else str(ip)
    return f"{host}:{port}"


def parse_resolver_lines(lines: Iterable[str]) -> List[str]:
    """Parse resolver list content, one ``host`` or ``host:port`` per line.

    Blank lines, ``#`` comments and lines that fail to parse are skipped and
    duplicates are removed.

    Args:
        lines: Raw lines, e.g. an open file object.

    Returns:
        Ordered unique list of normalised addresses.
    """
    parsed: List[str] = []
    for line in lines:
        line = line.strip()
        if not line or line.startswith("#"):
            continue
        address = normalise_resolver_address(line)
        if address is not None:
            parsed.append(address)
    return deduplicate(parsed)


def random_label(length: int = 16) -> str:
    """Return a random lowercase alphanumeric DNS label.

    Args:
        length: Label length (at most 63).

    Returns:
        Label that is vanishingly unlikely to exist anywhere.
    """
    return "".join(_rng.choices(_LABEL_ALPHABET, k=min(length, 63)))
