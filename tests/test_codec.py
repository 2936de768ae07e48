import base64
import json

import pytest

from conftest import MERCHANT, PAYER, USDC
from x402_payflow.core.codec import decode_payment_payload, encode_payment_payload
from x402_payflow.core.errors import PayloadEncodingError
from x402_payflow.core.models import PaymentPayload, Scheme

BIG_VALUE = str(2**200 + 1)


def _payload(**payload_overrides):
    body = {
        "from": PAYER,
        "to": MERCHANT,
        "value": BIG_VALUE,
        "validAfter": "1699999940",
        "validBefore": "1700003600",
        "nonce": "0x" + "01" * 32,
        "signature": "0x" + "ab" * 65,
    }
    body.update(payload_overrides)
    return PaymentPayload(
        x402_version=2,
        scheme=Scheme.STABLECOIN_AUTHORIZATION,
        network="avalanche",
        chain_id=43114,
        token=USDC,
        payload=body,
    )


def test_round_trip_preserves_envelope_and_big_integers():
    payload = _payload()
    decoded = decode_payment_payload(encode_payment_payload(payload))

    assert decoded["x402Version"] == 2
    assert decoded["scheme"] == "x402-eip3009"
    assert decoded["network"] == "avalanche"
    assert decoded["chainId"] == 43114
    assert decoded["token"] == USDC
    assert decoded["payload"] == dict(payload.payload)
    assert decoded["payload"]["value"] == BIG_VALUE


def test_encoding_is_deterministic():
    assert encode_payment_payload(_payload()) == encode_payment_payload(_payload())


def test_encoding_is_plain_base64_json():
    header = encode_payment_payload({"x402Version": 2, "scheme": "x402-native", "payload": {"txHash": "0x01"}})
    assert json.loads(base64.b64decode(header)) == {
        "x402Version": 2,
        "scheme": "x402-native",
        "payload": {"txHash": "0x01"},
    }


def test_native_payload_omits_token():
    payload = PaymentPayload(
        x402_version=2,
        scheme=Scheme.NATIVE_TRANSFER,
        network="avalanche",
        chain_id=43114,
        payload={"txHash": "0x" + "cd" * 32, "from": PAYER, "to": MERCHANT, "amount": "0.05"},
    )
    decoded = decode_payment_payload(encode_payment_payload(payload))
    assert "token" not in decoded
    assert decoded["payload"]["amount"] == "0.05"


def test_unstringified_big_integer_is_rejected():
    with pytest.raises(PayloadEncodingError):
        encode_payment_payload(_payload(value=2**200))


def test_float_is_rejected():
    with pytest.raises(PayloadEncodingError):
        encode_payment_payload(_payload(value=0.05))


def test_decode_rejects_garbage():
    with pytest.raises(PayloadEncodingError):
        decode_payment_payload("not base64 at all!")
    with pytest.raises(PayloadEncodingError):
        decode_payment_payload(base64.b64encode(b"[1, 2]").decode())
