"""Certificate helpers and claim parsing shared by credential verifiers."""

from __future__ import annotations

import abc
import datetime
import logging
import re
from typing import Any, ClassVar, Union

from cryptography import x509
from cryptography.x509.oid import ExtensionOID

from credcheck.crypto import CoseSign1
from credcheck.outcome import ClaimKind, ClaimValue, Failure

logger = logging.getLogger(__name__)

_X5CHAIN_LABEL = 33
_DATE_PATTERN = re.compile(r"(\d{4})-(\d{2})-(\d{2})")


class CertificateError(Exception):
    """A certificate is missing, malformed or not usable for verification."""


def get_signer_certificate(cwt: CoseSign1) -> x509.Certificate:
    """Return the signer certificate carried in the x5chain protected header."""
    if _X5CHAIN_LABEL not in cwt.protected:
        raise CertificateError("x5chain (label '33') is not in the protected header")
    x5chain = cwt.protected[_X5CHAIN_LABEL]
    if isinstance(x5chain, bytes):
        der = x5chain
    elif isinstance(x5chain, list) and len(x5chain) == 1:
        der = x5chain[0]
        if not isinstance(der, bytes):
            raise CertificateError(f"unexpected format for x509 certificate: {der!r}")
    elif isinstance(x5chain, list):
        raise CertificateError("x5chain contains more than one certificate")
    else:
        raise CertificateError(f"unexpected format for x5chain: {x5chain!r}")
    try:
        return x509.load_der_x509_certificate(der)
    except ValueError as exc:
        raise CertificateError("signer certificate could not be parsed") from exc


def extract_extensions(
    certificate: x509.Certificate,
) -> tuple[x509.KeyUsage, x509.CRLDistributionPoints]:
    """Return the key usage and CRL distribution points extensions.

    Raises CertificateError if either is missing or an unsupported critical
    extension is present.
    """
    try:
        extensions = certificate.extensions
    except ValueError as exc:
        raise CertificateError("certificate extensions could not be parsed") from exc
    if len(extensions) == 0:
        raise CertificateError("no extensions")

    key_usage: Any = None
    crl_dp: Any = None
    for extension in extensions:
        if extension.oid == ExtensionOID.KEY_USAGE:
            key_usage = extension.value
        elif extension.oid == ExtensionOID.CRL_DISTRIBUTION_POINTS:
            crl_dp = extension.value
        elif extension.critical:
            raise CertificateError(
                f"unexpected critical extension: {extension.oid.dotted_string}"
            )
        else:
            logger.debug("skipping certificate extension %s", extension.oid.dotted_string)

    if key_usage is None:
        raise CertificateError("'key usage' extension could not be found")
    if not isinstance(key_usage, x509.KeyUsage):
        raise CertificateError("unable to parse 'key usage' extension")
    if crl_dp is None:
        raise CertificateError("'crl distribution points' extension could not be found")
    if not isinstance(crl_dp, x509.CRLDistributionPoints):
        raise CertificateError("unable to parse 'crl distribution points' extension")
    return key_usage, crl_dp


def check_validity(
    certificate: x509.Certificate, now: Union[datetime.datetime, None] = None
) -> None:
    """Raise CertificateError unless not_before <= now < not_after."""
    if now is None:
        now = datetime.datetime.now(datetime.timezone.utc)
    elif now.tzinfo is None:
        now = now.replace(tzinfo=datetime.timezone.utc)
    if certificate.not_valid_before_utc <= now < certificate.not_valid_after_utc:
        return
    raise CertificateError("certificate is invalid")


class Claim(abc.ABC):
    """A claim read from a CWT claims set under a fixed integer label."""

    CWT_LABEL: ClassVar[int]
    LABEL: ClassVar[str]

    @classmethod
    def from_claims(cls, claims: dict) -> Any:
        """Read the claim from a claims set; raise Failure if it is absent or malformed."""
        if cls.CWT_LABEL not in claims:
            raise Failure.missing_claim(cls.LABEL)
        return cls.from_value(claims[cls.CWT_LABEL])

    @classmethod
    def parse_datestr(cls, value: Any) -> ClaimValue:
        """Parse a date string of the form "YYYY-MM-DD" into a date claim value."""
        if not isinstance(value, str):
            raise Failure.malformed_claim(cls.LABEL, value, "wrong type")
        match = _DATE_PATTERN.fullmatch(value)
        if match is None:
            raise Failure.malformed_claim(cls.LABEL, value, "expected [year]-[month]-[day]")
        try:
            datetime.date(*(int(part) for part in match.groups()))
        except ValueError as exc:
            raise Failure.malformed_claim(cls.LABEL, value, exc) from exc
        return ClaimValue(ClaimKind.DATE, value)

    @classmethod
    @abc.abstractmethod
    def from_value(cls, value: Any) -> Any:
        """Build the claim from its raw CBOR value; raise Failure if malformed."""