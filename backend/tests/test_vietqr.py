"""
Tests for the locally generated VietQR bank-transfer payload.
"""
import pytest

from services import vietqr


@pytest.mark.unit
def test_crc_matches_ccitt_false_check_value():
    # Standard check value for CRC-16/CCITT-FALSE over "123456789"
    assert vietqr.crc16_ccitt("123456789") == "29B1"


@pytest.mark.unit
def test_dynamic_payload_fields():
    payload = vietqr.build_payload(
        bank_bin="970436",
        account_number="0123456789",
        amount=290_000,
        note="ORDER-12",
    )

    assert payload.startswith("000201" + "010212")
    assert "0010A000000727" in payload
    assert "00069704360110" + "0123456789" in payload
    assert "0208QRIBFTTA" in payload
    assert "5303704" in payload
    assert "5406290000" in payload
    assert "5802VN" in payload
    assert "62120808ORDER-12" in payload


@pytest.mark.unit
def test_payload_ends_with_its_own_crc():
    payload = vietqr.build_payload(bank_bin="970436", account_number="0123456789", amount=50_000, note="ORDER-1")
    body, crc = payload[:-4], payload[-4:]
    assert body.endswith("6304")
    assert crc == vietqr.crc16_ccitt(body)


@pytest.mark.unit
def test_static_payload_without_amount():
    payload = vietqr.build_payload(bank_bin="970436", account_number="0123456789")
    assert "010211" in payload
    assert "54" not in payload[payload.index("5303704") + 7:payload.index("5802VN")]


@pytest.mark.unit
def test_transfer_note_format():
    assert vietqr.transfer_note("order", 12) == "ORDER-12"
    assert vietqr.transfer_note("reservation", 3) == "RESERVATION-3"


@pytest.mark.unit
def test_overlong_field_rejected():
    with pytest.raises(ValueError):
        vietqr.build_payload(bank_bin="970436", account_number="1", amount=1, note="x" * 120)
