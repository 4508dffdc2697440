"""
VietQR payload builder: bank transfer QR generated locally.

Produces the EMVCo merchant-presented string that Vietnamese banking apps
scan (NAPAS 247 "QRIBFTTA" service, transfer to account). Each field is
ID (2 digits) + length (2 digits) + value; the payload ends with a
CRC-16/CCITT-FALSE checksum over everything up to and including "6304".
"""
import binascii

NAPAS_GUID = "A000000727"
SERVICE_TRANSFER_TO_ACCOUNT = "QRIBFTTA"
CURRENCY_VND = "704"
COUNTRY_VN = "VN"


def _field(tag: str, value: str) -> str:
    if len(value) > 99:
        raise ValueError(f"VietQR field {tag} too long ({len(value)} chars)")
    return f"{tag}{len(value):02d}{value}"


def crc16_ccitt(data: str) -> str:
    return f"{binascii.crc_hqx(data.encode('utf-8'), 0xFFFF):04X}"


def build_payload(*, bank_bin: str, account_number: str, amount: float | None = None, note: str = "") -> str:
    """Build a dynamic (amount-bound) or static VietQR payload."""
    beneficiary = _field("00", bank_bin) + _field("01", account_number)
    merchant_info = (
        _field("00", NAPAS_GUID)
        + _field("01", beneficiary)
        + _field("02", SERVICE_TRANSFER_TO_ACCOUNT)
    )

    payload = _field("00", "01")
    payload += _field("01", "12" if amount else "11")
    payload += _field("38", merchant_info)
    payload += _field("53", CURRENCY_VND)
    if amount:
        payload += _field("54", str(int(round(amount))))
    payload += _field("58", COUNTRY_VN)
    if note:
        payload += _field("62", _field("08", note))

    payload += "6304"
    return payload + crc16_ccitt(payload)


def transfer_note(object_type: str, object_id: int) -> str:
    """Reference the customer types into the transfer description: ORDER-12."""
    return f"{object_type.upper()}-{object_id}"
