"""COSE_Sign1 messages and ECDSA P-256 signature verification."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Union

import cbor2
from cryptography import x509
from cryptography.exceptions import InvalidSignature, UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.asymmetric.utils import encode_dss_signature

#: COSE algorithm identifier for ECDSA with SHA-256.
ES256 = -7

_COSE_SIGN1_TAG = 18
_ALG_LABEL = 1
_COMPONENT_LEN = 32


class SignatureError(Exception):
    """A signature could not be parsed or did not verify."""


@dataclass(frozen=True)
class VerificationResult:
    """The result of a signature check: success, or failure with a cause."""

    cause: Union[str, None] = None

    @classmethod
    def success(cls) -> VerificationResult:
        return cls(None)

    @classmethod
    def failure(cls, cause: str) -> VerificationResult:
        return cls(cause)

    def into_result(self) -> None:
        """Return on success; raise SignatureError carrying the cause otherwise."""
        if self.cause is not None:
            raise SignatureError(self.cause)


class Crypto:
    """Verifies ECDSA P-256 signatures against the key of a DER certificate."""

    def p256_verify(
        self, certificate_der: bytes, payload: bytes, signature: bytes
    ) -> VerificationResult:
        try:
            certificate = x509.load_der_x509_certificate(bytes(certificate_der))
            public_key = certificate.public_key()
        except (ValueError, TypeError, UnsupportedAlgorithm) as exc:
            return VerificationResult.failure(f"unable to load certificate: {exc}")
        if not isinstance(public_key, ec.EllipticCurvePublicKey) or not isinstance(
            public_key.curve, ec.SECP256R1
        ):
            return VerificationResult.failure("certificate key is not a P-256 key")
        try:
            public_key.verify(bytes(signature), bytes(payload), ec.ECDSA(hashes.SHA256()))
        except InvalidSignature:
            return VerificationResult.failure("signature verification failed")
        except ValueError as exc:
            return VerificationResult.failure(f"malformed signature: {exc}")
        return VerificationResult.success()


def _decode_header(raw: bytes) -> dict:
    if not raw:
        return {}
    try:
        header = cbor2.loads(raw)
    except (cbor2.CBORDecodeError, ValueError) as exc:
        raise ValueError(f"protected header is not valid CBOR: {exc}") from exc
    if not isinstance(header, dict):
        raise ValueError("protected header is not a map")
    return header


@dataclass(frozen=True)
class CoseSign1:
    """A COSE_Sign1 message: protected header, unprotected header, payload, signature."""

    protected_bytes: bytes
    unprotected: dict
    payload: Union[bytes, None]
    signature: bytes
    protected: dict = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "protected", _decode_header(self.protected_bytes))

    @classmethod
    def from_bytes(cls, data: bytes) -> CoseSign1:
        """Decode a tagged or untagged COSE_Sign1 structure; raise ValueError if malformed."""
        try:
            obj = cbor2.loads(data)
        except (cbor2.CBORDecodeError, ValueError) as exc:
            raise ValueError(f"invalid CBOR: {exc}") from exc
        if isinstance(obj, cbor2.CBORTag):
            if obj.tag != _COSE_SIGN1_TAG:
                raise ValueError(f"unexpected CBOR tag {obj.tag} for COSE_Sign1")
            obj = obj.value
        if not isinstance(obj, list) or len(obj) != 4:
            raise ValueError("COSE_Sign1 must be an array of four elements")
        protected, unprotected, payload, signature = obj
        if not isinstance(protected, bytes):
            raise ValueError("protected header must be a byte string")
        if not isinstance(unprotected, dict):
            raise ValueError("unprotected header must be a map")
        if payload is not None and not isinstance(payload, bytes):
            raise ValueError("payload must be a byte string or nil")
        if not isinstance(signature, bytes):
            raise ValueError("signature must be a byte string")
        return cls(protected, unprotected, payload, signature)

    def claims_set(self) -> Union[dict, None]:
        """Decode the payload as a CWT claims map, or return None if there is none."""
        if self.payload is None:
            return None
        try:
            claims = cbor2.loads(self.payload)
        except (cbor2.CBORDecodeError, ValueError) as exc:
            raise ValueError(f"payload is not valid CBOR: {exc}") from exc
        if not isinstance(claims, dict):
            raise ValueError("payload is not a claims map")
        return claims

    def sig_structure(self, external_aad: bytes = b"") -> bytes:
        """Encode the Sig_structure that the signature covers."""
        if self.payload is None:
            raise ValueError("payload is detached")
        return cbor2.dumps(["Signature1", self.protected_bytes, external_aad, self.payload])

    def verify(self, verifier: Any) -> None:
        """Check the signature with the verifier; raise SignatureError if it does not hold."""
        alg = self.protected.get(_ALG_LABEL, self.unprotected.get(_ALG_LABEL))
        expected = verifier.algorithm()
        if alg != expected:
            raise SignatureError(f"algorithm mismatch: expected {expected}, found {alg}")
        signature = CoseP256Signature.from_bytes(self.signature)
        verifier.verify(self.sig_structure(), signature)


@dataclass(frozen=True)
class CoseP256Signature:
    """A raw COSE ECDSA P-256 signature, split into its r and s halves."""

    r: bytes
    s: bytes

    @classmethod
    def from_bytes(cls, value: bytes) -> CoseP256Signature:
        value = bytes(value)
        if len(value) < _COMPONENT_LEN:
            raise SignatureError(
                "failed to parse 'r' parameter from slice: "
                f"expected {_COMPONENT_LEN} bytes, found {len(value)}"
            )
        r, s = value[:_COMPONENT_LEN], value[_COMPONENT_LEN:]
        if len(s) != _COMPONENT_LEN:
            raise SignatureError(
                "failed to parse 's' parameter from slice: "
                f"expected {_COMPONENT_LEN} bytes, found {len(s)}"
            )
        return cls(r, s)

    def to_der(self) -> bytes:
        """Encode as a DER SEQUENCE of two INTEGERs."""
        return encode_dss_signature(
            int.from_bytes(self.r, "big"), int.from_bytes(self.s, "big")
        )


@dataclass
class CoseP256Verifier:
    """Verifies COSE ECDSA P-256 signatures with the key of a signer certificate."""

    crypto: Crypto
    certificate_der: bytes

    def algorithm(self) -> int:
        return ES256

    def verify(self, message: bytes, signature: CoseP256Signature) -> None:
        self.crypto.p256_verify(
            self.certificate_der, bytes(message), signature.to_der()
        ).into_result()