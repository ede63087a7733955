import hashlib
import logging
import re
import secrets
from typing import Optional

from firehose_log_delivery.config import ConfigurationError

logger = logging.getLogger(__name__)

SUFFIX_BYTES = 8
SUFFIX_PATTERN = re.compile(r"^[0-9a-f]{%d}$" % (SUFFIX_BYTES * 2))


def derive_suffix(seed: str) -> str:
    """First 8 bytes of the SHA-256 of ``seed``, hex encoded."""
    return hashlib.sha256(seed.encode("utf-8")).hexdigest()[:SUFFIX_BYTES * 2]


class NamingService:
    """
    Holds the suffix that keeps resource names unique across repeated
    instantiations of the module.

    The suffix is fixed for the lifetime of the object. In order of
    precedence it is the pinned ``suffix``, a hash of ``seed``, or random
    bytes. CloudFormation keeps no random state between synths, so the
    module always passes a seed that identifies the instantiation (its
    construct path and, when known, its account and region). The same
    app then synthesises the same names every time, and two instantiations
    get different ones.
    """

    def __init__(self, suffix: Optional[str] = None, seed: Optional[str] = None) -> None:
        if suffix is not None:
            if not SUFFIX_PATTERN.match(suffix):
                raise ConfigurationError(
                    f"nameSuffix must be {SUFFIX_BYTES * 2} lowercase hex characters, got {suffix!r}"
                )
        elif seed is not None:
            suffix = derive_suffix(seed)
            logger.debug("Derived name suffix %s from %s", suffix, seed)
        else:
            suffix = secrets.token_hex(SUFFIX_BYTES)
        self._suffix = suffix

    @property
    def suffix(self) -> str:
        return self._suffix

    def name(self, *parts: str) -> str:
        """Join ``parts`` and the suffix with dashes."""
        return "-".join([*parts, self._suffix])
