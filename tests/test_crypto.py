import datetime

import cbor2
import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.asymmetric.utils import decode_dss_signature
from cryptography.x509.oid import NameOID

from credcheck.crypto import (
    ES256,
    CoseP256Signature,
    CoseP256Verifier,
    CoseSign1,
    Crypto,
    SignatureError,
    VerificationResult,
)


def _make_cert(key):
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, "Test Signer")])
    now = datetime.datetime(2024, 1, 1, tzinfo=datetime.timezone.utc)
    return (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(key.public_key())
        .serial_number(1234)
        .not_valid_before(now)
        .not_valid_after(now + datetime.timedelta(days=365))
        .sign(key, hashes.SHA256())
    )


def _der(cert):
    return cert.public_bytes(serialization.Encoding.DER)


def _raw_sign(key, data):
    r, s = decode_dss_signature(key.sign(data, ec.ECDSA(hashes.SHA256())))
    return r.to_bytes(32, "big") + s.to_bytes(32, "big")


@pytest.fixture(scope="module")
def signer():
    key = ec.generate_private_key(ec.SECP256R1())
    return key, _der(_make_cert(key))


def _message(key, cert_der, alg=ES256, claims=None):
    protected = cbor2.dumps({1: alg, 33: cert_der})
    payload = cbor2.dumps(claims if claims is not None else {1: "issuer", 4: 2000000000})
    unsigned = CoseSign1(protected, {}, payload, b"")
    signature = _raw_sign(key, unsigned.sig_structure())
    return cbor2.dumps(cbor2.CBORTag(18, [protected, {}, payload, signature]))


def test_verification_result_success():
    assert VerificationResult.success().cause is None
    assert VerificationResult.success().into_result() is None


def test_verification_result_failure_raises():
    with pytest.raises(SignatureError, match="bad things"):
        VerificationResult.failure("bad things").into_result()


def test_p256_verify_success_and_failure(signer):
    key, cert_der = signer
    der_sig = key.sign(b"hello", ec.ECDSA(hashes.SHA256()))
    crypto = Crypto()
    assert crypto.p256_verify(cert_der, b"hello", der_sig) == VerificationResult.success()
    assert crypto.p256_verify(cert_der, b"hellO", der_sig).cause is not None
    assert crypto.p256_verify(cert_der, b"hellO", der_sig).cause.startswith("signature")


def test_p256_verify_rejects_bad_certificate():
    result = Crypto().p256_verify(b"not a certificate", b"x", b"y")
    assert result.cause.startswith("unable to load certificate")


def test_p256_verify_rejects_other_curves():
    key = ec.generate_private_key(ec.SECP384R1())
    cert_der = _der(_make_cert(key))
    sig = key.sign(b"data", ec.ECDSA(hashes.SHA256()))
    assert Crypto().p256_verify(cert_der, b"data", sig).cause == (
        "certificate key is not a P-256 key"
    )


def test_signature_from_bytes_splits_halves():
    raw = bytes(range(64))
    sig = CoseP256Signature.from_bytes(raw)
    assert sig.r == raw[:32]
    assert sig.s == raw[32:]


@pytest.mark.parametrize("length,which", [(10, "'r'"), (63, "'s'"), (65, "'s'")])
def test_signature_from_bytes_wrong_length(length, which):
    with pytest.raises(SignatureError, match=which):
        CoseP256Signature.from_bytes(bytes(length))


@pytest.mark.parametrize("fill", [0x01, 0x7F, 0x80, 0xFF])
def test_signature_to_der_round_trip(fill):
    raw = bytes([fill]) * 64
    sig = CoseP256Signature.from_bytes(raw)
    r, s = decode_dss_signature(sig.to_der())
    assert r == int.from_bytes(raw[:32], "big")
    assert s == int.from_bytes(raw[32:], "big")


def test_verifier_algorithm_is_es256(signer):
    verifier = CoseP256Verifier(Crypto(), signer[1])
    assert verifier.algorithm() == ES256
    assert ES256 == -7


def test_from_bytes_tagged_and_untagged(signer):
    key, cert_der = signer
    tagged = _message(key, cert_der)
    msg = CoseSign1.from_bytes(tagged)
    untagged = CoseSign1.from_bytes(cbor2.dumps(cbor2.loads(tagged).value))
    assert msg == untagged
    assert msg.protected[33] == cert_der
    assert msg.protected[1] == ES256


def test_from_bytes_rejects_malformed():
    with pytest.raises(ValueError):
        CoseSign1.from_bytes(cbor2.dumps(cbor2.CBORTag(17, [b"", {}, b"", b""])))
    with pytest.raises(ValueError):
        CoseSign1.from_bytes(cbor2.dumps([b"", {}, b""]))
    with pytest.raises(ValueError):
        CoseSign1.from_bytes(cbor2.dumps({"a": 1}))
    with pytest.raises(ValueError):
        CoseSign1.from_bytes(cbor2.dumps([b"", {}, b"", "text"]))


def test_claims_set(signer):
    key, cert_der = signer
    msg = CoseSign1.from_bytes(_message(key, cert_der, claims={1: "issuer", -65537: "schema"}))
    assert msg.claims_set() == {1: "issuer", -65537: "schema"}


def test_claims_set_absent_and_invalid():
    assert CoseSign1(b"", {}, None, b"").claims_set() is None
    with pytest.raises(ValueError):
        CoseSign1(b"", {}, cbor2.dumps([1, 2]), b"").claims_set()


def test_sig_structure_layout():
    protected = cbor2.dumps({1: ES256})
    msg = CoseSign1(protected, {}, b"payload", b"")
    assert cbor2.loads(msg.sig_structure()) == ["Signature1", protected, b"", b"payload"]
    assert cbor2.loads(msg.sig_structure(b"aad"))[2] == b"aad"


def test_sig_structure_detached_payload():
    with pytest.raises(ValueError):
        CoseSign1(b"", {}, None, b"").sig_structure()


def test_verify_success(signer):
    key, cert_der = signer
    msg = CoseSign1.from_bytes(_message(key, cert_der))
    assert msg.verify(CoseP256Verifier(Crypto(), cert_der)) is None


def test_verify_tampered_payload(signer):
    key, cert_der = signer
    original = CoseSign1.from_bytes(_message(key, cert_der))
    tampered = CoseSign1(
        original.protected_bytes, {}, cbor2.dumps({1: "forged"}), original.signature
    )
    with pytest.raises(SignatureError):
        tampered.verify(CoseP256Verifier(Crypto(), cert_der))


def test_verify_wrong_key(signer):
    key, _ = signer
    other = ec.generate_private_key(ec.SECP256R1())
    other_der = _der(_make_cert(other))
    msg = CoseSign1.from_bytes(_message(key, other_der))
    with pytest.raises(SignatureError):
        msg.verify(CoseP256Verifier(Crypto(), other_der))


def test_verify_algorithm_mismatch(signer):
    key, cert_der = signer
    msg = CoseSign1.from_bytes(_message(key, cert_der, alg=-35))
    with pytest.raises(SignatureError, match="algorithm mismatch"):
        msg.verify(CoseP256Verifier(Crypto(), cert_der))