"""Base-domain grouping for candidate names.

:class:`DomainGrouper` turns raw input lines into
:class:`~wildcheck.core.wildcard.ClassificationJob` objects, reusing base
domains it has already derived so the public-suffix lookup runs once per
domain rather than once per name.
"""

from __future__ import annotations

from typing import Callable, List, Optional

import tldextract

from wildcheck.core.errors import DomainLookupError
from wildcheck.core.wildcard import ClassificationJob
from wildcheck.utils.helpers import is_valid_hostname, is_valid_ip, normalise_name
from wildcheck.utils.logger import get_logger

logger = get_logger(__name__)

# Bundled suffix list snapshot; never fetched over the network
_extract = tldextract.TLDExtract(suffix_list_urls=())


def registrable_domain(name: str) -> str:
    """Return the registrable base domain of *name*.

    Names under a TLD missing from the suffix list fall back to their last
    two labels, like the implicit ``*`` rule of the public suffix algorithm.

    Args:
        name: Normalised host name.

    Returns:
        Base domain such as ``example.co.uk``.

    Raises:
        DomainLookupError: If *name* is itself a public suffix or has a
            single label.
    """
    ext = _extract(name)
    if ext.suffix and ext.domain:
        return f"{ext.domain}.{ext.suffix}"
    if not ext.suffix:
        labels = name.split(".")
        if len(labels) >= 2 and all(labels):
            return ".".join(labels[-2:])
    raise DomainLookupError(f"no registrable domain for {name!r}")


class DomainGrouper:
    """Maps names to base domains with an append-only memo of known domains.

    Example::

        grouper = DomainGrouper()
        job = grouper.job("https://a.b.example.com/login")
        # ClassificationJob(name="a.b.example.com", domain="example.com")
    """

    def __init__(
        self,
        target_domain: Optional[str] = None,
        lookup: Callable[[str], str] = registrable_domain,
    ) -> None:
        """Initialise the grouper.

        Args:
            target_domain: When given, every name must lie under this domain
                and no suffix lookup is performed.
            lookup: External base-domain lookup.

        Raises:
            DomainLookupError: If *target_domain* is not a valid host name.
        """
        self._lookup = lookup
        self._domains: List[str] = []
        self._target: Optional[str] = None
        self.lookups = 0
        self.skipped = 0
        if target_domain is not None:
            target = normalise_name(target_domain)
            if not is_valid_hostname(target):
                raise DomainLookupError(f"invalid target domain {target_domain!r}")
            self._target = target
            self._domains.append(target)

    @property
    def domains(self) -> List[str]:
        """Base domains seen so far, in discovery order."""
        return list(self._domains)

    def base_domain(self, name: str) -> str:
        """Return the base domain for a normalised *name*.

        Raises:
            DomainLookupError: If no base domain can be derived.
        """
        for domain in self._domains:
            if name == domain or name.endswith("." + domain):
                return domain
        if self._target is not None:
            raise DomainLookupError(f"{name!r} is not under {self._target}")

        self.lookups += 1
        domain = self._lookup(name)
        self._domains.append(domain)
        return domain

    def job(self, line: str) -> Optional[ClassificationJob]:
        """Build a job from one input line.

        Blank lines return ``None`` silently; names that cannot be grouped
        are logged, counted in :attr:`skipped` and return ``None``.
        """
        name = normalise_name(line)
        if not name:
            return None
        if is_valid_ip(name) or not is_valid_hostname(name):
            logger.warning("Skipping invalid name: %s", name)
            self.skipped += 1
            return None
        try:
            domain = self.base_domain(name)
        except DomainLookupError as exc:
            logger.warning("Failed to get main domain from %s: %s", name, exc)
            self.skipped += 1
            return None
        return ClassificationJob(name=name, domain=domain)
