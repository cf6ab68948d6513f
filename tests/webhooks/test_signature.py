import hashlib
import hmac

from domain.webhook.signature import sign_payload, verify_signature


SECRET = "whsec_0123456789abcdef"
BODY = b'{"type":"payment.succeeded","data":{"id":"p1","amount":"10.00"}}'


def test_signature_is_hex_hmac_sha256_of_body():
    expected = hmac.new(SECRET.encode(), BODY, hashlib.sha256).hexdigest()
    assert sign_payload(BODY, SECRET) == expected
    assert sign_payload(BODY.decode(), SECRET) == expected


def test_verify_accepts_own_signature():
    assert verify_signature(BODY, sign_payload(BODY, SECRET), SECRET)


def test_verify_rejects_any_flipped_byte():
    signature = sign_payload(BODY, SECRET)
    for i in range(len(BODY)):
        tampered = bytearray(BODY)
        tampered[i] ^= 0x01
        assert not verify_signature(bytes(tampered), signature, SECRET)


def test_verify_rejects_wrong_secret():
    signature = sign_payload(BODY, SECRET)
    assert not verify_signature(BODY, signature, SECRET + "x")


def test_verify_rejects_malformed_signature():
    assert not verify_signature(BODY, None, SECRET)
    assert not verify_signature(BODY, "", SECRET)
    assert not verify_signature(BODY, "not-hex", SECRET)
    assert not verify_signature(BODY, sign_payload(BODY, SECRET)[:-2], SECRET)
