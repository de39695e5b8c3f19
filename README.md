# credcheck

`credcheck` decodes and verifies credentials that arrive as QR code payloads.
Each credential is a compressed COSE_Sign1 CWT signed with ECDSA P-256 by a
signer certificate, which in turn is issued by a trusted root certificate.
The package also provides an asynchronous collection for storing verifiable
digital credentials on top of a key-value store you supply.

## Installation

```
pip install credcheck
```

With the test dependencies:

```
pip install "credcheck[test]"
```

## Modules

- `credcheck.outcome`: `Verified`, `Unverified`, `CredentialInfo`,
  `ClaimValue`, `ClaimKind` and the `Failure` exception.
- `credcheck.crypto`: `Crypto`, `VerificationResult`, `SignatureError`,
  `CoseSign1`, `CoseP256Signature` and `CoseP256Verifier`.
- `credcheck.helpers`: `get_signer_certificate`, `extract_extensions`,
  `check_validity`, `CertificateError` and the `Claim` base class.
- `credcheck.verifier`: the `Credential` base class,
  `retrieve_entry_from_status_list` and `StatusListError`.
- `credcheck.vdc_collection`: `VdcCollection`, `StoredCredential`,
  `StorageManager` and `VdcCollectionError`.

## Verifying a QR code credential

A payload is a base-10 multibase string: the prefix `9` followed by decimal
digits. `Credential.decode` turns the digits into a number, converts it to
big-endian bytes, inflates them as a raw deflate stream, and parses the result
as a COSE_Sign1 message (tagged or untagged). It then reads the CWT claims. The
claim under label `-65537` must equal the credential's `SCHEMA`. The remaining
claims go to `parse_claims`.

`Credential.validate` does the following:

1. It takes the signer certificate from the `x5chain` protected header (label
   `33`).
2. It tries every trusted root whose subject matches the signer's issuer. A
   root is accepted when all of these hold:
   - the root is within its validity period;
   - the root has the key-usage and CRL-distribution-points extensions, with
     `keyCertSign` set;
   - no other critical extension is present;
   - the root's key verifies the signer certificate's signature;
   - the signer has the same extensions, with `digitalSignature` set;
   - the signer's key verifies the COSE signature (ES256).
3. If no root is accepted, it raises a trust `Failure`.
4. It checks the `exp` claim (label `4`). An expired CWT raises `Failure` with
   code 11.

Describe a credential by subclassing `Credential`:

```python
from credcheck.crypto import Crypto
from credcheck.helpers import Claim
from credcheck.outcome import Verified
from credcheck.verifier import Credential


class BirthDate(Claim):
    CWT_LABEL = -65538
    LABEL = "Birth Date"

    @classmethod
    def from_value(cls, value):
        return cls.parse_datestr(value)


class MyCredential(Credential):
    SCHEMA = "MyCredential"
    TITLE = "My Credential"
    IMAGE = b""

    def parse_claims(self, claims):
        return {"Birth Date": BirthDate.from_claims(claims)}


outcome = MyCredential().verify(Crypto(), qr_code_payload, trusted_roots)
if isinstance(outcome, Verified):
    print(outcome.credential_info.claims)
else:
    print(outcome.failure.code, outcome.failure.reason, outcome.failure.details)
```

In this example:

- `trusted_roots` is an iterable of `cryptography.x509.Certificate` objects.
- `verify` never raises `Failure`. It returns `Verified(credential_info)` or
  `Unverified(failure, credential_info)`.
- `credential_info` in `Unverified` is `None` when decoding itself failed.

`Claim.parse_datestr` accepts strings of the form `YYYY-MM-DD` that name a real
calendar date and returns a `ClaimValue` of kind `ClaimKind.DATE`.

### Signature checks

`Crypto.p256_verify(certificate_der, payload, signature)` verifies a DER-encoded
ECDSA P-256 / SHA-256 signature against the public key of a DER certificate. It
returns a `VerificationResult`, and `into_result()` raises `SignatureError` on
failure. To verify in some other way, pass your own object with a
`p256_verify` method of the same shape.

### Failure codes

| code | factory                  | meaning                                   |
|------|--------------------------|-------------------------------------------|
| 1    | `internal`               | unrecoverable error                       |
| 2    | `base10_decoding`        | payload is not `9` followed by digits     |
| 3    | `decompression`          | deflate stream could not be inflated      |
| 4    | `cbor_decoding`          | not a COSE_Sign1 message                  |
| 5    | `claims_retrieval`       | payload is not a CBOR claims map          |
| 6    | `empty_payload`          | message has no payload                    |
| 7    | `incorrect_credential`   | schema claim does not match               |
| 8    | `missing_claim`          | an expected claim is absent               |
| 9    | `malformed_claim`        | a claim has the wrong type or form        |
| 10   | `trust`                  | signer could not be trusted               |
| 11   | `cwt_expired`            | CWT expiration time has passed            |
| 12   | `load_root_certificates` | root certificates could not be loaded     |

### Status lists

`retrieve_entry_from_status_list(status_list, idx)` reads one entry from a JSON
token status list. The list is an object with `bits` (1, 2, 4 or 8) and `lst`
(base64url, zlib-compressed). The function raises `StatusListError` when the
JSON cannot be parsed, when `lst` cannot be decoded, or when `idx` is out of
range.

## Storing credentials

`VdcCollection` keeps `StoredCredential` records (`id`, `format`,
`credential_type`, `payload`, `key_alias`) in any backend that implements the
asynchronous `StorageManager` interface: `add`, `get`, `remove` and `list`.
Each record is encoded as a CBOR map and stored under the key
`Credential.<uuid>`.

```python
collection = VdcCollection(storage)
await collection.add(credential)
ids = await collection.all_entries()
same = await collection.get(credential.id)
licences = await collection.all_entries_by_type("org.iso.18013.5.1.mDL")
await collection.delete(credential.id)
await collection.dump()
```

In this example:

- `all_entries` ignores keys that are not credential keys.
- `all_entries_by_type` skips records it cannot read.
- `dump` logs each stored record at INFO level through the
  `credcheck.vdc_collection` logger.
- Failures raise `VdcCollectionError`. When the backend raised the failure, its
  exception is in `storage_error`.

## What the package does not do

- It does not read QR codes from images. It works on the decoded payload
  string.
- It ships no storage backend. You provide a `StorageManager` implementation.
- It does not check certificate revocation. CRL distribution points are read
  but not fetched.
- Status lists are not consulted during `Credential.verify`.
- It has no command-line tool.

## Running the tests

```
pytest
```