"""Decoding and verification of CWT credentials presented as QR codes."""

from __future__ import annotations

import abc
import base64
import datetime
import json
import re
import zlib
from typing import Any, ClassVar, Iterable

from cryptography import x509
from cryptography.hazmat.primitives.serialization import Encoding

from credcheck import helpers
from credcheck.crypto import CoseP256Verifier, CoseSign1, Crypto, SignatureError
from credcheck.helpers import CertificateError
from credcheck.outcome import CredentialInfo, Failure, Outcome, Unverified, Verified

_SCHEMA_LABEL = -65537
_EXP_LABEL = 4
_BASE10_PREFIX = "9"
_DIGITS = re.compile(r"[0-9]+")
_DIGIT_CHUNK = 1000
_NO_CANDIDATE = "\n"
_SEPARATOR = "\n--------------\n"
_STATUS_BITS = (1, 2, 4, 8)


class StatusListError(Exception):
    """A status list could not be parsed, decoded or indexed."""


def retrieve_entry_from_status_list(status_list: str, idx: int) -> int:
    """Return the status stored at ``idx`` in a JSON token status list."""
    try:
        document = json.loads(status_list)
    except ValueError as exc:
        raise StatusListError("Unable to parse JSON String") from exc
    if (
        not isinstance(document, dict)
        or document.get("bits") not in _STATUS_BITS
        or isinstance(document.get("bits"), bool)
        or not isinstance(document.get("lst"), str)
    ):
        raise StatusListError("Unable to parse JSON String")

    bits = document["bits"]
    lst = document["lst"]
    try:
        compressed = base64.urlsafe_b64decode(lst + "=" * (-len(lst) % 4))
        bitstring = zlib.decompress(compressed)
    except (ValueError, zlib.error) as exc:
        raise StatusListError("Unable to decode JsonStatusList bitstring") from exc

    if idx < 0:
        raise StatusListError("Unable to get idx from bitstring")
    byte_index, shift = divmod(idx * bits, 8)
    if byte_index >= len(bitstring):
        raise StatusListError("Unable to get idx from bitstring")
    return (bitstring[byte_index] >> shift) & ((1 << bits) - 1)


def _parse_base10(digits: str) -> int:
    """Parse a long decimal string without the interpreter's digit limit."""
    number = 0
    for start in range(0, len(digits), _DIGIT_CHUNK):
        chunk = digits[start : start + _DIGIT_CHUNK]
        number = number * 10 ** len(chunk) + int(chunk)
    return number


def _claims_of(cwt: CoseSign1) -> dict:
    try:
        claims = cwt.claims_set()
    except ValueError as exc:
        raise Failure.claims_retrieval(exc) from exc
    if claims is None:
        raise Failure.empty_payload()
    return claims


def _name(name: x509.Name) -> str:
    return name.rfc4514_string()


class Credential(abc.ABC):
    """A kind of credential identified by its schema, verified from a QR code."""

    SCHEMA: ClassVar[str]
    TITLE: ClassVar[str]
    IMAGE: ClassVar[bytes]

    @abc.abstractmethod
    def parse_claims(self, claims: dict) -> dict:
        """Turn the remaining CWT claims into named claim values; raise Failure."""

    def decode(self, qr_code_payload: str) -> tuple[CoseSign1, CredentialInfo]:
        """Decode a base-10 QR payload into its COSE message and credential info."""
        if not qr_code_payload.startswith(_BASE10_PREFIX):
            raise Failure.base10_decoding("payload did not begin with multibase prefix '9'")
        digits = qr_code_payload[len(_BASE10_PREFIX) :]
        if not digits:
            raise Failure.base10_decoding("cannot parse integer from empty string")
        if _DIGITS.fullmatch(digits) is None:
            raise Failure.base10_decoding("invalid digit found in string")
        number = _parse_base10(digits)
        compressed = number.to_bytes(max(1, (number.bit_length() + 7) // 8), "big")

        inflater = zlib.decompressobj(-zlib.MAX_WBITS)
        try:
            cwt_bytes = inflater.decompress(compressed)
        except zlib.error as exc:
            raise Failure.decompression(exc) from exc
        if not inflater.eof:
            raise Failure.decompression("deflate stream is truncated")

        try:
            cwt = CoseSign1.from_bytes(cwt_bytes)
        except ValueError as exc:
            raise Failure.cbor_decoding(exc) from exc

        claims = _claims_of(cwt)
        if _SCHEMA_LABEL not in claims:
            raise Failure.missing_claim("Credential Schema")
        schema = claims.pop(_SCHEMA_LABEL)
        if not (isinstance(schema, str) and schema == self.SCHEMA):
            raise Failure.incorrect_credential(self.SCHEMA, schema)

        info = CredentialInfo(
            title=self.TITLE, image=bytes(self.IMAGE), claims=self.parse_claims(claims)
        )
        return cwt, info

    def validate(
        self, crypto: Crypto, cwt: CoseSign1, trusted_roots: Iterable[x509.Certificate]
    ) -> None:
        """Establish trust in the signer through a trusted root, then check the CWT."""
        try:
            signer = helpers.get_signer_certificate(cwt)
        except CertificateError as exc:
            raise Failure.trust(exc) from exc

        errors = _NO_CANDIDATE
        trusted = False
        for root in trusted_roots:
            if root.subject != signer.issuer:
                continue
            try:
                self.validate_certificate_chain(crypto, cwt, root)
            except CertificateError as exc:
                errors = f"{errors}{_SEPARATOR}{exc}"
            else:
                trusted = True
                break

        if not trusted:
            if errors == _NO_CANDIDATE:
                message = (
                    "signer certificate was not issued by the root:\n\texpected:\n\t\t"
                    f"{_name(signer.issuer)}\n\tfound: None."
                )
            else:
                message = errors
            raise Failure.trust(CertificateError(message))

        self.validate_cwt(cwt)

    def validate_cwt(self, cwt: CoseSign1) -> None:
        """Raise Failure if the CWT's expiration time has passed or is malformed."""
        claims = _claims_of(cwt)
        if _EXP_LABEL not in claims:
            return
        exp: Any = claims[_EXP_LABEL]
        if isinstance(exp, bool) or not isinstance(exp, (int, float)):
            raise Failure.malformed_claim("exp", exp, "could not parse")
        try:
            expires = datetime.datetime.fromtimestamp(exp, tz=datetime.timezone.utc)
        except (OverflowError, OSError, ValueError) as exc:
            raise Failure.malformed_claim("exp", exc, "could not parse") from exc
        if expires < datetime.datetime.now(datetime.timezone.utc):
            raise Failure.cwt_expired(
                f"{expires.month:02d}/{expires.day:02d}/{expires.year:04d}"
            )

    def validate_certificate_chain(
        self, crypto: Crypto, cwt: CoseSign1, root_certificate: x509.Certificate
    ) -> None:
        """Check that the root issued the signer and the signer signed the CWT.

        Raises CertificateError describing the first problem found.
        """
        signer = helpers.get_signer_certificate(cwt)

        helpers.check_validity(root_certificate)
        try:
            root_usage, _ = helpers.extract_extensions(root_certificate)
        except CertificateError as exc:
            raise CertificateError("couldn't extract extensions from root certificate") from exc
        if not root_usage.key_cert_sign:
            raise CertificateError(
                "root certificate cannot be used for verifying certificate signatures"
            )

        if root_certificate.subject != signer.issuer:
            raise CertificateError(
                "signer certificate was not issued by the root:\n\texpected:\n\t\t"
                f"{_name(root_certificate.subject)}\n\tfound:\n\t\t{_name(signer.issuer)}"
            )
        try:
            crypto.p256_verify(
                root_certificate.public_bytes(Encoding.DER),
                signer.tbs_certificate_bytes,
                signer.signature,
            ).into_result()
        except SignatureError as exc:
            raise CertificateError(
                "failed to verify the signature on the signer certificate"
            ) from exc

        try:
            signer_usage, _ = helpers.extract_extensions(signer)
        except CertificateError as exc:
            raise CertificateError(
                "couldn't extract extensions from signer certificate"
            ) from exc
        if not signer_usage.digital_signature:
            raise CertificateError("signer certificate cannot be used for verifying signatures")

        verifier = CoseP256Verifier(crypto, signer.public_bytes(Encoding.DER))
        try:
            cwt.verify(verifier)
        except SignatureError as exc:
            raise CertificateError(f"failed to verify the CWT signature: {exc}") from exc
        except ValueError as exc:
            raise CertificateError("error occurred when verifying CWT signature") from exc

    def verify(
        self,
        crypto: Crypto,
        qr_code_payload: str,
        trusted_roots: Iterable[x509.Certificate],
    ) -> Outcome:
        """Decode and validate a QR payload, reporting the outcome."""
        try:
            cwt, credential_info = self.decode(qr_code_payload)
        except Failure as failure:
            return Unverified(failure=failure)
        try:
            self.validate(crypto, cwt, trusted_roots)
        except Failure as failure:
            return Unverified(failure=failure, credential_info=credential_info)
        return Verified(credential_info=credential_info)