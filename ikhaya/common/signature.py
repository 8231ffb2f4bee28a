"""PayFast request/notification signing.

PayFast signs the URL-encoded concatenation of its variables in a fixed,
protocol-mandated order (not alphabetical, not insertion order). Empty
values are left out entirely and a configured passphrase is appended last.
The MD5 hex digest of that string is the signature, and the gateway
recomputes it on its side, so the output must be byte-for-byte stable.
"""

import hashlib
import hmac
from collections.abc import Mapping, Sequence
from urllib.parse import quote_plus


CHECKOUT_FIELD_ORDER: tuple[str, ...] = (
    # merchant details
    "merchant_id",
    "merchant_key",
    "return_url",
    "cancel_url",
    "notify_url",
    # buyer details
    "name_first",
    "name_last",
    "email_address",
    "cell_number",
    # transaction details
    "m_payment_id",
    "amount",
    "item_name",
    "item_description",
    "custom_str1",
    "custom_str2",
    "custom_str3",
    "custom_str4",
    "custom_str5",
    "custom_int1",
    "custom_int2",
    "custom_int3",
    "custom_int4",
    "custom_int5",
    "payment_method",
)

# Variable order of an ITN post back to `notify_url`.
NOTIFICATION_FIELD_ORDER: tuple[str, ...] = (
    "m_payment_id",
    "pf_payment_id",
    "payment_status",
    "item_name",
    "item_description",
    "amount_gross",
    "amount_fee",
    "amount_net",
    "custom_str1",
    "custom_str2",
    "custom_str3",
    "custom_str4",
    "custom_str5",
    "custom_int1",
    "custom_int2",
    "custom_int3",
    "custom_int4",
    "custom_int5",
    "name_first",
    "name_last",
    "email_address",
    "merchant_id",
)


def encode_value(value: str) -> str:
    """Percent-encode one value the way the gateway's encoder does.

    Only `A-Za-z0-9-_.~` survive unescaped, space becomes `+`, and
    `! ' ( ) *` are escaped as `%21 %27 %28 %29 %2A`.
    """

    return quote_plus(value, safe="")


def _present(value: object) -> bool:
    return value is not None and value != ""


def ordered_fields(
    fields: Mapping[str, object], field_order: Sequence[str] = CHECKOUT_FIELD_ORDER
) -> list[tuple[str, str]]:
    """Return the present schema fields as `(name, value)` pairs in schema order."""

    return [(key, str(fields[key])) for key in field_order if _present(fields.get(key))]


def build_signature_string(
    fields: Mapping[str, object],
    passphrase: str | None = None,
    field_order: Sequence[str] = CHECKOUT_FIELD_ORDER,
) -> str:
    """Build the pre-hash `key=value&...` string."""

    pairs = [f"{key}={encode_value(value)}" for key, value in ordered_fields(fields, field_order)]
    signature_string = "&".join(pairs)
    if passphrase and passphrase.strip():
        signature_string += f"&passphrase={encode_value(passphrase)}"
    return signature_string


def sign(
    fields: Mapping[str, object],
    passphrase: str | None = None,
    field_order: Sequence[str] = CHECKOUT_FIELD_ORDER,
) -> str:
    """Return the MD5 hex signature for `fields`."""

    signature_string = build_signature_string(fields, passphrase, field_order)
    return hashlib.md5(signature_string.encode("utf-8")).hexdigest()


def verify_signature(
    fields: Mapping[str, object],
    signature: str | None,
    passphrase: str | None = None,
    field_order: Sequence[str] = NOTIFICATION_FIELD_ORDER,
) -> bool:
    """Constant-time comparison of a supplied signature with the recomputed one."""

    if not signature:
        return False
    expected = sign(fields, passphrase, field_order)
    return hmac.compare_digest(expected, signature.strip().lower())
