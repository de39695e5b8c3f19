"""Outcomes, claim values and failures produced when verifying a credential."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any, Union

FORMAT_INCORRECT = (
    "Credential format incorrect: The credential could not be parsed from the QR code. "
    "Please ensure you are scanning a valid/supported credential"
)
SIGNATURE_INVALID = "Signature Invalid: The credentials signature is incorrect."
CREDENTIAL_EXPIRED = "Credential Expired: This credential is no longer valid."
UNRECOVERABLE = "An unrecoverable error occurred."
ROOTS_NOT_LOADED = "Trust could not be established in the credential"


class ClaimKind(enum.Enum):
    """The kind of a credential claim value."""

    TEXT = "text"
    DATE = "date"
    MAP = "map"


@dataclass(frozen=True)
class ClaimValue:
    """A claim value: text, a `YYYY-MM-DD` date, or a string-to-string map."""

    kind: ClaimKind
    value: Union[str, dict]

    def __post_init__(self) -> None:
        if self.kind is ClaimKind.MAP:
            if not isinstance(self.value, dict):
                raise TypeError("a map claim needs a dict value")
        elif not isinstance(self.value, str):
            raise TypeError(f"a {self.kind.value} claim needs a str value")


@dataclass
class CredentialInfo:
    """What a verified credential shows: a title, an image and its claims."""

    title: str
    image: bytes
    claims: dict = field(default_factory=dict)


def _describe(error: BaseException) -> str:
    """Render an error together with the chain of errors that caused it."""
    text = str(error)
    causes = []
    current = error.__cause__ or error.__context__
    while current is not None:
        causes.append(str(current))
        current = current.__cause__ or current.__context__
    if causes:
        text += "\n\nCaused by:\n" + "\n".join(f"    {cause}" for cause in causes)
    return text


class Failure(Exception):
    """A verification failure with a numeric code, a reason and details."""

    def __init__(self, code: int, reason: str, details: str) -> None:
        super().__init__(code, reason, details)
        self.code = code
        self.reason = reason
        self.details = details

    def __str__(self) -> str:
        return f"{self.reason} ({self.details})"

    def __repr__(self) -> str:
        return f"Failure(code={self.code!r}, reason={self.reason!r}, details={self.details!r})"

    @classmethod
    def internal(cls, detail: Any) -> Failure:
        return cls(1, UNRECOVERABLE, str(detail))

    @classmethod
    def base10_decoding(cls, error: Any) -> Failure:
        return cls(2, FORMAT_INCORRECT, f"unable to decode the payload of the QR code: {error}")

    @classmethod
    def decompression(cls, error: Any) -> Failure:
        return cls(
            3, FORMAT_INCORRECT, f"unable to decompress the payload of the QR code: {error}"
        )

    @classmethod
    def cbor_decoding(cls, error: Any) -> Failure:
        return cls(4, FORMAT_INCORRECT, f"unable to decode the credential: {error}")

    @classmethod
    def claims_retrieval(cls, error: Any) -> Failure:
        return cls(
            5, FORMAT_INCORRECT, f"unable to retrieve the claims from the credential: {error}"
        )

    @classmethod
    def empty_payload(cls) -> Failure:
        return cls(6, FORMAT_INCORRECT, "credential does not have a payload")

    @classmethod
    def incorrect_credential(cls, expected: Any, found: Any) -> Failure:
        return cls(
            7,
            FORMAT_INCORRECT,
            "user did not present the expected credential: "
            f"expected {expected}, received {found!r}",
        )

    @classmethod
    def missing_claim(cls, name: Any) -> Failure:
        return cls(8, FORMAT_INCORRECT, f"credential is missing expected claim: {name}")

    @classmethod
    def malformed_claim(cls, name: Any, value: Any, reason: Any) -> Failure:
        return cls(
            9, FORMAT_INCORRECT, f"credential claim {name} is malformed: {reason}: {value!r}"
        )

    @classmethod
    def trust(cls, error: BaseException) -> Failure:
        return cls(
            10,
            SIGNATURE_INVALID,
            f"could not establish trust in the credential: {_describe(error)}",
        )

    @classmethod
    def cwt_expired(cls, expiration_date: str) -> Failure:
        return cls(11, CREDENTIAL_EXPIRED, f"Expiration Date: {expiration_date}")

    @classmethod
    def load_root_certificates(cls, error: BaseException) -> Failure:
        return cls(
            12,
            ROOTS_NOT_LOADED,
            f"Root certificates could not be loaded: {_describe(error)}",
        )


@dataclass
class Verified:
    """The credential was successfully verified."""

    credential_info: CredentialInfo


@dataclass
class Unverified:
    """The credential could not be verified."""

    failure: Failure
    credential_info: Union[CredentialInfo, None] = None


Outcome = Union[Verified, Unverified]