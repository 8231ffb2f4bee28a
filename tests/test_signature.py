"""Signature codec: field order, omission, encoding and verification."""

import hashlib

from ikhaya.common.signature import (
    CHECKOUT_FIELD_ORDER,
    NOTIFICATION_FIELD_ORDER,
    build_signature_string,
    encode_value,
    ordered_fields,
    sign,
    verify_signature,
)


def _checkout_fields():
    return {
        "merchant_id": "10000100",
        "merchant_key": "46f0cd694581a",
        "return_url": "https://shop.example.co.za/checkout/success",
        "cancel_url": "https://shop.example.co.za/checkout?cancelled=true",
        "notify_url": "https://api.example.co.za/payfast/notify",
        "name_first": "Thandi",
        "name_last": "Nkosi",
        "email_address": "thandi@example.co.za",
        "m_payment_id": "TEMP-1700000000000-abc123de",
        "amount": "300.00",
        "item_name": "Ikhaya Order TEMP-1700000000000-abc123de",
    }


def test_checkout_schema_has_24_fields():
    assert len(CHECKOUT_FIELD_ORDER) == 24
    assert CHECKOUT_FIELD_ORDER[0] == "merchant_id"
    assert CHECKOUT_FIELD_ORDER[-1] == "payment_method"


def test_order_follows_schema_not_insertion():
    fields = _checkout_fields()
    reversed_fields = dict(reversed(list(fields.items())))

    assert sign(fields, "secret") == sign(reversed_fields, "secret")
    assert [key for key, _ in ordered_fields(reversed_fields)] == [
        key for key in CHECKOUT_FIELD_ORDER if key in fields
    ]


def test_empty_and_none_values_are_omitted():
    fields = _checkout_fields()
    with_blanks = {**fields, "cell_number": "", "custom_str1": None}

    assert build_signature_string(with_blanks) == build_signature_string(fields)
    assert "cell_number" not in build_signature_string(with_blanks)


def test_reserved_characters_are_escaped_like_the_gateway():
    assert encode_value("a b") == "a+b"
    assert encode_value("!'()*") == "%21%27%28%29%2A"
    assert encode_value("A-Z_a.z~0") == "A-Z_a.z~0"
    assert encode_value("x/y:z@w") == "x%2Fy%3Az%40w"


def test_signature_string_layout():
    fields = {"merchant_id": "10000100", "amount": "300.00", "item_name": "Vase & Napkins"}

    assert build_signature_string(fields) == "merchant_id=10000100&amount=300.00&item_name=Vase+%26+Napkins"
    assert build_signature_string(fields, "my pass") == (
        "merchant_id=10000100&amount=300.00&item_name=Vase+%26+Napkins&passphrase=my+pass"
    )


def test_blank_passphrase_is_ignored():
    fields = _checkout_fields()

    assert sign(fields, "   ") == sign(fields)
    assert sign(fields, "") == sign(fields, None)


def test_signature_is_md5_of_signature_string():
    fields = _checkout_fields()
    expected = hashlib.md5(build_signature_string(fields, "jt7NOE43FZPn").encode("utf-8")).hexdigest()

    assert sign(fields, "jt7NOE43FZPn") == expected
    assert len(expected) == 32


def test_passphrase_changes_signature():
    fields = _checkout_fields()

    assert sign(fields, "one") != sign(fields, "two")


def test_verify_notification_signature():
    fields = {
        "m_payment_id": "TEMP-1700000000000-abc123de",
        "pf_payment_id": "PF-999",
        "payment_status": "COMPLETE",
        "amount_gross": "300.00",
        "merchant_id": "10000100",
    }
    signature = sign(fields, "jt7NOE43FZPn", NOTIFICATION_FIELD_ORDER)

    assert verify_signature(fields, signature, "jt7NOE43FZPn")
    assert verify_signature(fields, signature.upper(), "jt7NOE43FZPn")
    assert not verify_signature(fields, signature, "wrong")
    assert not verify_signature({**fields, "amount_gross": "1.00"}, signature, "jt7NOE43FZPn")
    assert not verify_signature(fields, None, "jt7NOE43FZPn")
