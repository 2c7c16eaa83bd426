"""Tests for escrow struct parsing."""

import pytest

from p2pramp.errors import ParseError
from p2pramp.parsers import (
    parse_deposit,
    parse_deposit_view,
    parse_intent_view,
    parse_verifiers,
    to_plain,
    to_uint,
)

UINT256_MAX = 2**256 - 1
DEPOSITOR = "0x0000000000000000000000000000000000001111"
USDC = "0x0000000000000000000000000000000000002222"
VERIFIER = "0x0000000000000000000000000000000000003333"
USD_HASH = "0xc4ae21aac0c6549d71dd96035b7e0bdb6c79ebdba8891b666115bc976d16a29e"


def _make_raw_deposit(**overrides) -> dict:
    raw = {
        "depositor": DEPOSITOR,
        "token": USDC,
        "amount": "100000000",
        "remainingDeposits": "0x3b9aca0",  # 62500000
        "outstandingIntentAmount": "2500000",
        "intentHashes": ["0xaa", "0xbb"],
        "intentAmountRange": {"min": "1000000", "max": "50000000"},
        "acceptingIntents": True,
    }
    raw.update(overrides)
    return raw


def _make_raw_verifier(currencies=None) -> dict:
    return {
        "verifier": VERIFIER,
        "verificationData": {
            "intentGatingService": "0x0000000000000000000000000000000000004444",
            "payeeDetails": "0xhashedpayee",
            "data": "0x",
        },
        "currencies": currencies
        if currencies is not None
        else [{"code": USD_HASH, "conversionRate": "1050000000000000000"}],
    }


def test_decimal_and_hex_fields_keep_magnitude():
    """Every numeric field survives parse -> str unchanged, up to 2**256 - 1."""
    for value in (0, 1, 10**18, 2**128 + 7, UINT256_MAX):
        raw = _make_raw_deposit(
            amount=str(value),
            remainingDeposits=hex(value),
            outstandingIntentAmount=str(value),
        )
        deposit = parse_deposit(raw)
        assert str(deposit.deposit_amount) == str(value)
        assert hex(deposit.remaining_deposit_amount) == hex(value)
        assert str(deposit.outstanding_intent_amount) == str(value)


def test_copies_verbatim_fields():
    deposit = parse_deposit(_make_raw_deposit())
    assert deposit.depositor == DEPOSITOR
    assert deposit.token == USDC
    assert deposit.intent_hashes == ["0xaa", "0xbb"]
    assert deposit.accepting_intents is True
    assert deposit.remaining_deposit_amount == 62_500_000
    assert deposit.intent_amount_range.max == 50_000_000


def test_available_liquidity_never_negative():
    deposit = parse_deposit(_make_raw_deposit(remainingDeposits="1000", outstandingIntentAmount="5000"))
    assert deposit.available_liquidity == 0


def test_remaining_above_amount_rejected():
    with pytest.raises(ParseError) as exc:
        parse_deposit(_make_raw_deposit(amount="10", remainingDeposits="11"))
    assert exc.value.field == "remainingDeposits"


@pytest.mark.parametrize("bad", ["12.5", "abc", "0xzz", "-1", "", hex(UINT256_MAX + 1)])
def test_malformed_numbers_raise_parse_error(bad):
    with pytest.raises(ParseError) as exc:
        parse_deposit(_make_raw_deposit(amount=bad))
    assert exc.value.field == "amount"


def test_missing_address_names_field():
    raw = _make_raw_deposit()
    del raw["depositor"]
    with pytest.raises(ParseError) as exc:
        parse_deposit(raw)
    assert exc.value.field == "depositor"
    assert "depositor" in exc.value.message


def test_to_uint_rejects_bool():
    with pytest.raises(ParseError):
        to_uint(True, "flag")


def test_bad_currency_does_not_fail_verifier():
    verifiers = parse_verifiers([
        _make_raw_verifier([
            {"code": USD_HASH, "conversionRate": "not-a-number"},
            {"code": "0xeur", "conversionRate": "920000000000000000"},
        ])
    ])
    assert len(verifiers) == 1
    assert [c.code for c in verifiers[0].currencies] == ["0xeur"]
    assert verifiers[0].currencies[0].conversion_rate == 920_000_000_000_000_000


def test_verifier_rate_lookup_is_case_insensitive():
    verifier = parse_verifiers([_make_raw_verifier()])[0]
    assert verifier.rate_for(USD_HASH.upper().replace("0X", "0x")) == 1_050_000_000_000_000_000
    assert verifier.rate_for("0xdead") is None


def test_deposit_view_floors_available_liquidity():
    view = parse_deposit_view({
        "depositId": "7",
        "deposit": _make_raw_deposit(),
        "availableLiquidity": "60000000",
        "verifiers": [_make_raw_verifier()],
    })
    assert view.deposit_id == 7
    assert view.available_liquidity == 60_000_000
    assert view.verifier_for(VERIFIER.upper().replace("0X", "0x")) is not None


def test_deposit_view_without_upstream_liquidity_uses_deposit():
    view = parse_deposit_view({"depositId": 1, "deposit": _make_raw_deposit(), "verifiers": []})
    assert view.available_liquidity == 62_500_000 - 2_500_000


def test_intent_view():
    view = parse_intent_view({
        "intentHash": "0xintent",
        "intent": {
            "owner": "0x0000000000000000000000000000000000005555",
            "to": "0x0000000000000000000000000000000000006666",
            "depositId": "7",
            "amount": "95238095",
            "timestamp": "0x677487f0",
            "paymentVerifier": VERIFIER,
            "fiatCurrency": USD_HASH,
            "conversionRate": "1050000000000000000",
        },
        "deposit": {"depositId": "7", "deposit": _make_raw_deposit(), "verifiers": [_make_raw_verifier()]},
    })
    assert view.intent_hash == "0xintent"
    assert view.intent.amount == 95_238_095
    assert view.intent.timestamp == 0x677487F0
    assert view.deposit.deposit_id == 7


def test_intent_missing_owner():
    with pytest.raises(ParseError) as exc:
        parse_intent_view({
            "intentHash": "0x1",
            "intent": {"to": DEPOSITOR, "paymentVerifier": VERIFIER},
            "deposit": {"depositId": "1", "deposit": _make_raw_deposit()},
        })
    assert exc.value.field == "owner"


def test_to_plain_handles_named_tuples_and_bytes():
    from collections import namedtuple

    Range = namedtuple("Range", ["min", "max"])
    Outer = namedtuple("Outer", ["intentHash", "range", "hashes"])

    plain = to_plain(Outer(b"\x01\x02", Range(1, 2), [b"\xff"]))
    assert plain == {"intentHash": "0x0102", "range": {"min": 1, "max": 2}, "hashes": ["0xff"]}


@pytest.mark.parametrize("bad", ["0x1_0", "1_000", "١٢", "+5", "0x"])
def test_only_ascii_digits_accepted(bad):
    with pytest.raises(ParseError):
        to_uint(bad, "amount")


def test_uppercase_hex_prefix():
    assert to_uint("0XFF", "amount") == 255
