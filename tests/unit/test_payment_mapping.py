import pytest

from ticketing.models.enums import PaymentChannel, PaymentChannelCode, PaymentStatus
from ticketing.services.payment_mapping import channel_for_method, infer_channel, map_provider_status


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("PAID", PaymentStatus.PAID),
        ("settled", PaymentStatus.PAID),
        ("EXPIRED", PaymentStatus.EXPIRED),
        ("FAILED", PaymentStatus.FAILED),
        ("PENDING", PaymentStatus.PENDING),
        ("WHATEVER", PaymentStatus.PENDING),
        ("", PaymentStatus.PENDING),
        (None, PaymentStatus.PENDING),
    ],
)
def test_map_provider_status(raw, expected):
    assert map_provider_status(raw) is expected


@pytest.mark.parametrize(
    "payload, expected",
    [
        ({"bank_code": "BNI", "payment_method": "BANK_TRANSFER"}, (PaymentChannel.VIRTUAL_ACCOUNT, PaymentChannelCode.BNI)),
        ({"payment_channel": "QRIS"}, (PaymentChannel.QRIS, PaymentChannelCode.QRIS)),
        ({"payment_method": "QRIS"}, (PaymentChannel.QRIS, PaymentChannelCode.QRIS)),
        ({"payment_method": "EWALLET", "payment_channel": "OVO"}, (PaymentChannel.E_WALLET, PaymentChannelCode.OVO)),
        ({"payment_channel": "ALFAMART"}, (PaymentChannel.RETAIL_OUTLET, PaymentChannelCode.ALFAMART)),
        ({"payment_method": "CREDIT_CARD"}, (PaymentChannel.CREDIT_CARD, PaymentChannelCode.CREDIT_CARD)),
        ({"payment_method": "simulation"}, (None, None)),
        ({}, (None, None)),
    ],
)
def test_infer_channel(payload, expected):
    assert infer_channel(payload) == expected


def test_channel_for_method():
    assert channel_for_method(None) == (None, None)
    assert channel_for_method("various") == (None, None)
    assert channel_for_method("bca") == (PaymentChannel.VIRTUAL_ACCOUNT, PaymentChannelCode.BCA)
    assert channel_for_method("DANA") == (PaymentChannel.E_WALLET, PaymentChannelCode.DANA)
    assert channel_for_method("bitcoin") == (None, None)
