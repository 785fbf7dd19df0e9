"""
BOLT11 invoice codec.

Encodes and decodes Lightning payment requests: bech32 human-readable part
carrying network and amount, a 35-bit timestamp, tagged fields, and a 65-byte
recoverable secp256k1 signature over ``hrp || data``.  Amounts are always
millisatoshi.
"""

import re
import time
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple, Union

from bech32 import CHARSET, bech32_encode, bech32_verify_checksum, convertbits
from coincurve import PrivateKey, PublicKey

NETWORKS = ("bcrt", "bc", "tbs", "tb")

# Multipliers expressed in millisatoshi; 1 BTC = 10**11 msat.
_MSAT_PER_BTC = 10**11
_MULTIPLIERS = (("m", 10**8), ("u", 10**5), ("n", 10**2))

TAG_PAYMENT_HASH = 1  # p
TAG_FEATURES = 5  # 9
TAG_EXPIRY = 6  # x
TAG_DESCRIPTION = 13  # d
TAG_PAYMENT_SECRET = 16  # s
TAG_DESCRIPTION_HASH = 23  # h
TAG_MIN_FINAL_CLTV = 24  # c

# var_onion_optin (8) and payment_secret (14), both required.
DEFAULT_FEATURES = (1 << 8) | (1 << 14)

DEFAULT_EXPIRY = 3600
DEFAULT_MIN_FINAL_CLTV = 18

_SIGNATURE_GROUPS = 104
_TIMESTAMP_GROUPS = 7
_HRP_AMOUNT = re.compile(r"^(\d+)([munp]?)$")


class InvoiceError(ValueError):
    """Raised for malformed or unverifiable invoices."""

    pass


@dataclass(frozen=True)
class DecodedInvoice:
    network: str
    amount_msat: Optional[int]
    timestamp: int
    payment_hash: bytes
    payment_secret: Optional[bytes]
    description: Optional[str]
    description_hash: Optional[bytes]
    expiry: int
    min_final_cltv: int
    features: int
    payee_pubkey: str

    @property
    def expires_at(self) -> int:
        return self.timestamp + self.expiry


def amount_to_hrp(amount_msat: int) -> str:
    """Render a msat amount with the shortest exact BOLT11 multiplier."""
    if isinstance(amount_msat, bool) or not isinstance(amount_msat, int) or amount_msat <= 0:
        raise InvoiceError("amount must be a positive integer number of millisatoshi")
    if amount_msat % _MSAT_PER_BTC == 0:
        return str(amount_msat // _MSAT_PER_BTC)
    for unit, msat in _MULTIPLIERS:
        if amount_msat % msat == 0:
            return f"{amount_msat // msat}{unit}"
    # pico-bitcoin: 10 p per msat, so the last digit is always 0
    return f"{amount_msat * 10}p"


def hrp_to_amount(amount: str) -> Optional[int]:
    if amount == "":
        return None
    match = _HRP_AMOUNT.match(amount)
    if not match:
        raise InvoiceError(f"invalid amount {amount!r}")
    value, unit = int(match.group(1)), match.group(2)
    if unit == "":
        return value * _MSAT_PER_BTC
    if unit == "p":
        if value % 10:
            raise InvoiceError("pico-bitcoin amounts must be whole millisatoshi")
        return value // 10
    return value * dict(_MULTIPLIERS)[unit]


def _split_hrp(hrp: str) -> Tuple[str, Optional[int]]:
    if not hrp.startswith("ln"):
        raise InvoiceError("invoice prefix must be 'ln'")
    for network in NETWORKS:
        if hrp.startswith("ln" + network):
            return network, hrp_to_amount(hrp[2 + len(network):])
    raise InvoiceError("unknown network prefix")


def _int_to_groups(value: int, length: Optional[int] = None) -> List[int]:
    groups = []
    while value:
        groups.append(value & 31)
        value >>= 5
    if length is not None:
        if len(groups) > length:
            raise InvoiceError("value does not fit field")
        groups.extend([0] * (length - len(groups)))
    groups.reverse()
    return groups or [0]


def _groups_to_int(groups: List[int]) -> int:
    value = 0
    for group in groups:
        value = (value << 5) | group
    return value


def _tagged(tag: int, groups: List[int]) -> List[int]:
    if len(groups) >= 1024:
        raise InvoiceError("tagged field too long")
    return [tag, len(groups) >> 5, len(groups) & 31] + groups


def _tagged_bytes(tag: int, payload: bytes) -> List[int]:
    return _tagged(tag, convertbits(payload, 8, 5, True))


def _signing_message(hrp: str, groups: List[int]) -> bytes:
    return hrp.encode("ascii") + bytes(convertbits(groups, 5, 8, True))


def encode_invoice(
    private_key: Union[bytes, PrivateKey],
    amount_msat: Optional[int],
    payment_hash: bytes,
    payment_secret: bytes,
    description_hash: Optional[bytes] = None,
    description: Optional[str] = None,
    expiry: int = DEFAULT_EXPIRY,
    min_final_cltv: int = DEFAULT_MIN_FINAL_CLTV,
    network: str = "bc",
    timestamp: Optional[int] = None,
    features: int = DEFAULT_FEATURES,
) -> str:
    """
    Build and sign a BOLT11 payment request.

    Exactly one of ``description`` or ``description_hash`` must be given.
    """
    if network not in NETWORKS:
        raise InvoiceError(f"unknown network {network!r}")
    if (description is None) == (description_hash is None):
        raise InvoiceError("exactly one of description or description_hash is required")
    if len(payment_hash) != 32 or len(payment_secret) != 32:
        raise InvoiceError("payment hash and secret must be 32 bytes")
    if description_hash is not None and len(description_hash) != 32:
        raise InvoiceError("description hash must be 32 bytes")

    key = private_key if isinstance(private_key, PrivateKey) else PrivateKey(private_key)
    hrp = "ln" + network + (amount_to_hrp(amount_msat) if amount_msat is not None else "")

    groups = _int_to_groups(int(time.time()) if timestamp is None else timestamp, _TIMESTAMP_GROUPS)
    groups += _tagged_bytes(TAG_PAYMENT_HASH, payment_hash)
    groups += _tagged_bytes(TAG_PAYMENT_SECRET, payment_secret)
    if description_hash is not None:
        groups += _tagged_bytes(TAG_DESCRIPTION_HASH, description_hash)
    else:
        groups += _tagged_bytes(TAG_DESCRIPTION, description.encode("utf-8"))
    groups += _tagged(TAG_EXPIRY, _int_to_groups(expiry))
    groups += _tagged(TAG_MIN_FINAL_CLTV, _int_to_groups(min_final_cltv))
    groups += _tagged(TAG_FEATURES, _int_to_groups(features))

    signature = key.sign_recoverable(_signing_message(hrp, groups))
    groups += convertbits(signature, 8, 5, True)
    return bech32_encode(hrp, groups)


def decode_invoice(invoice: str) -> DecodedInvoice:
    """Parse a payment request, verifying its checksum and recovering the payee key."""
    invoice = invoice.strip().lower()
    if invoice.startswith("lightning:"):
        invoice = invoice[len("lightning:"):]

    pos = invoice.rfind("1")
    if pos < 1:
        raise InvoiceError("missing bech32 separator")
    hrp, data_part = invoice[:pos], invoice[pos + 1:]
    try:
        data = [CHARSET.index(char) for char in data_part]
    except ValueError:
        raise InvoiceError("invalid bech32 character") from None
    if len(data) < _TIMESTAMP_GROUPS + _SIGNATURE_GROUPS + 6:
        raise InvoiceError("invoice too short")
    if not bech32_verify_checksum(hrp, data):
        raise InvoiceError("invalid checksum")

    network, amount_msat = _split_hrp(hrp)
    data = data[:-6]
    body, sig_groups = data[:-_SIGNATURE_GROUPS], data[-_SIGNATURE_GROUPS:]
    signature = bytes(convertbits(sig_groups, 5, 8, False))
    try:
        payee = PublicKey.from_signature_and_message(signature, _signing_message(hrp, body))
    except ValueError as e:
        raise InvoiceError("invalid signature") from e

    fields: Dict[int, List[int]] = {}
    i = _TIMESTAMP_GROUPS
    while i < len(body):
        if i + 3 > len(body):
            raise InvoiceError("truncated tagged field")
        tag, length = body[i], (body[i + 1] << 5) | body[i + 2]
        value = body[i + 3:i + 3 + length]
        if len(value) != length:
            raise InvoiceError("truncated tagged field")
        # first occurrence wins, as BOLT11 readers are told to do
        fields.setdefault(tag, value)
        i += 3 + length

    def as_bytes(tag: int) -> Optional[bytes]:
        if tag not in fields:
            return None
        converted = convertbits(fields[tag], 5, 8, False)
        if converted is None:
            raise InvoiceError("invalid field padding")
        return bytes(converted)

    payment_hash = as_bytes(TAG_PAYMENT_HASH)
    if payment_hash is None or len(payment_hash) != 32:
        raise InvoiceError("missing payment hash")
    description = as_bytes(TAG_DESCRIPTION)

    return DecodedInvoice(
        network=network,
        amount_msat=amount_msat,
        timestamp=_groups_to_int(body[:_TIMESTAMP_GROUPS]),
        payment_hash=payment_hash,
        payment_secret=as_bytes(TAG_PAYMENT_SECRET),
        description=description.decode("utf-8") if description is not None else None,
        description_hash=as_bytes(TAG_DESCRIPTION_HASH),
        expiry=_groups_to_int(fields[TAG_EXPIRY]) if TAG_EXPIRY in fields else DEFAULT_EXPIRY,
        min_final_cltv=(
            _groups_to_int(fields[TAG_MIN_FINAL_CLTV]) if TAG_MIN_FINAL_CLTV in fields else DEFAULT_MIN_FINAL_CLTV
        ),
        features=_groups_to_int(fields.get(TAG_FEATURES, [])),
        payee_pubkey=payee.format(compressed=True).hex(),
    )
