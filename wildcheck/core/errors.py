"""Exception hierarchy for wildcheck."""

from __future__ import annotations


class WildcheckError(Exception):
    """Base class for all wildcheck errors."""


class EmptyResolverPoolError(WildcheckError):
    """No usable resolver remains, so no query can be issued."""


class DomainLookupError(WildcheckError):
    """A name could not be reduced to a registrable base domain."""


class PublicDNSError(WildcheckError):
    """The public resolver list could not be fetched."""
