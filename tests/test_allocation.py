import sys
import math
import logging
import pathlib
from datetime import datetime, timezone

import pytest

# Ensure repo root is on sys.path so tests can import the flat modules
ROOT = pathlib.Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT))

import allocation
from allocation import (
    EmployeeHours,
    InputPolicy,
    InvalidHoursError,
    InvalidNumericInput,
    allocate,
    build_record,
    compute_totals,
    parse_amount,
    validate_hours,
)


def crew(*hours):
    names = ['Alice', 'Bob', 'Carol', 'Dave', 'Erin']
    return [EmployeeHours(employee_id=i + 1, employee_name=names[i], hours=h) for i, h in enumerate(hours)]


def tips_of(result):
    return [t.deserved_tip for t in result.tips]


def test_totals_from_fives_only():
    totals = compute_totals({5: 10, 10: 0, 20: 0, 50: 0, 100: 0}, 0)
    assert totals.total_tips == 50
    assert totals.sales_tax == 0
    assert totals.net_tips == 50


def test_totals_all_denominations_as_text():
    totals = compute_totals({5: '1', 10: '2', 20: '3', 50: '1', 100: '2'}, '')
    assert totals.total_tips == 5 + 20 + 60 + 50 + 200


def test_sales_tax_is_quarter_of_registered_tips():
    assert compute_totals({}, 100).sales_tax == 25


@pytest.mark.parametrize('registered, expected', [(30, 10), (50, 15), (10, 5), (9, 0), (0, 0)])
def test_sales_tax_rounds_half_up(registered, expected):
    # 50 * 0.25 / 5 == 2.5 rounds up to 3, not to the even 2
    assert compute_totals({}, registered).sales_tax == expected


def test_sales_tax_always_multiple_of_five():
    for registered in range(0, 1000, 7):
        assert compute_totals({}, registered).sales_tax % 5 == 0


def test_net_tips_can_go_negative():
    totals = compute_totals({5: 2}, 100)
    assert totals.net_tips == 10 - 25


def test_unknown_denomination_rejected():
    with pytest.raises(ValueError):
        compute_totals({3: 1}, 0)


def test_malformed_input_coerced_by_default():
    totals = compute_totals({5: 'abc', 10: '3 bills', 20: None}, 'n/a')
    assert totals.total_tips == 30
    assert totals.sales_tax == 0


def test_malformed_input_rejected_under_reject_policy():
    with pytest.raises(InvalidNumericInput) as exc:
        compute_totals({5: 'abc'}, 0, InputPolicy.REJECT)
    assert exc.value.field == '$5 count'


@pytest.mark.parametrize('raw, expected', [
    (None, 0.0),
    ('', 0.0),
    ('   ', 0.0),
    ('12abc', 12.0),
    (' 3.5 ', 3.5),
    ('.5', 0.5),
    ('1e2', 100.0),
    ('-4', -4.0),
    ('abc', 0.0),
    ('NaN', 0.0),
    (float('nan'), 0.0),
    (float('inf'), 0.0),
    (7, 7.0),
])
def test_parse_amount_coerce(raw, expected):
    assert parse_amount(raw) == expected


@pytest.mark.parametrize('raw', ['12abc', 'abc', '-4', 'nan', float('inf'), -1])
def test_parse_amount_reject(raw):
    with pytest.raises(InvalidNumericInput):
        parse_amount(raw, InputPolicy.REJECT, field='hours')


def test_parse_amount_reject_accepts_clean_numbers():
    assert parse_amount(' 12.25 ', InputPolicy.REJECT) == 12.25
    assert parse_amount('', InputPolicy.REJECT) == 0.0


def test_empty_roster_produces_no_rows():
    result = allocate(100, [])
    assert result.tips == ()
    assert result.remainder == 100


def test_zero_hours_everyone_gets_nothing():
    result = allocate(123, crew(0, 0, 0))
    assert tips_of(result) == [0, 0, 0]
    assert result.remainder == 123
    assert not result.retried


def test_full_timer_takes_whole_pool():
    result = allocate(100, crew(40, 0))
    assert tips_of(result) == [100, 0]
    assert result.remainder == 0


def test_even_split_leaves_floored_remainder():
    result = allocate(47, crew(20, 20))
    assert tips_of(result) == [20, 20]
    assert result.remainder == 7
    assert not result.retried
    assert not result.remainder_unresolved


def test_rows_keep_roster_order():
    result = allocate(300, crew(10, 40, 25))
    assert [t.employee_name for t in result.tips] == ['Alice', 'Bob', 'Carol']
    assert [t.employee_id for t in result.tips] == [1, 2, 3]
    assert [t.hours for t in result.tips] == [10, 40, 25]


def test_payouts_are_non_negative_multiples_of_five():
    for net in (0, 5, 47, 99, 250, 1003, 4999):
        for hours in ((1, 2, 3), (7.5, 33.25, 40), (12, 0, 61.5, 149), (0.5,)):
            result = allocate(net, crew(*hours))
            for tip in tips_of(result):
                assert tip >= 0
                assert tip % 5 == 0
            assert result.remainder >= 0


def test_allocate_is_pure():
    hours = crew(12.5, 30, 38)
    first = allocate(512, hours)
    second = allocate(512, hours)
    assert first == second
    assert [h.hours for h in hours] == [12.5, 30, 38]


def test_more_hours_never_lowers_own_tip():
    # net 200, Bob fixed at 40h, Alice climbing
    expected = {0: 0, 10: 40, 20: 65, 30: 80, 40: 100}
    for alice_hours, alice_tip in expected.items():
        result = allocate(200, crew(alice_hours, 40))
        assert result.tips[0].deserved_tip == alice_tip
    assert list(expected.values()) == sorted(expected.values())


def _inflate_ratio(monkeypatch, first_pass_only):
    real = allocation._hourly_ratio
    calls = []

    def inflated(net_tips, total_share, discount=1.0):
        calls.append(discount)
        ratio = real(net_tips, total_share, discount)
        if first_pass_only:
            return ratio + 10 if discount == 1.0 else ratio
        return ratio + 20

    monkeypatch.setattr(allocation, '_hourly_ratio', inflated)
    return calls


def test_overshoot_triggers_single_discounted_retry(monkeypatch):
    calls = _inflate_ratio(monkeypatch, first_pass_only=True)

    result = allocate(100, crew(20, 20))

    assert calls == [1.0, 0.95]
    # adjusted ratio = floor(100 * 0.95 / 1.0 / 5) * 5 = 95
    adjusted = math.floor(100 * 0.95 / 1.0 / 5) * 5
    assert adjusted == 95
    assert tips_of(result) == [math.floor(adjusted * 20 / 40 / 5) * 5] * 2 == [45, 45]
    assert result.remainder == 10
    assert result.retried
    assert not result.remainder_unresolved


def test_still_negative_after_retry_is_reported(monkeypatch, caplog):
    calls = _inflate_ratio(monkeypatch, first_pass_only=False)

    with caplog.at_level(logging.WARNING, logger='allocation'):
        result = allocate(100, crew(20, 20))

    # no third attempt
    assert calls == [1.0, 0.95]
    assert tips_of(result) == [55, 55]
    assert result.remainder == -10
    assert result.retried
    assert result.remainder_unresolved
    assert 'still negative' in caplog.text


def test_negative_net_tips_flow_through():
    result = allocate(-10, crew(40))
    assert tips_of(result) == [-10]
    assert result.remainder == 0


def test_validate_hours_accepts_zero_and_fractions():
    validate_hours(crew(0, 7.25, 149))


@pytest.mark.parametrize('bad', [-1, float('nan'), float('inf')])
def test_validate_hours_names_offender(bad):
    with pytest.raises(InvalidHoursError) as exc:
        validate_hours(crew(8, bad))
    assert exc.value.employee_name == 'Bob'
    assert 'Bob' in str(exc.value)


def test_build_record_snapshots_by_name():
    totals = compute_totals({5: 10}, 20)
    result = allocate(totals.net_tips, crew(20, 20))
    stamp = datetime(2026, 3, 1, 18, 30, tzinfo=timezone.utc)

    record = build_record(totals, result, stamp)

    assert record.total_tips == 50
    assert record.sales_tax == 5
    assert record.net_tips == 45
    assert record.remainder == 5
    assert list(record.employee_data) == ['Alice', 'Bob']
    assert record.employee_data['Alice'].hours == 20
    assert record.employee_data['Alice'].deserved_tip == 20
    assert record.timestamp == stamp


def test_build_record_defaults_to_now():
    record = build_record(compute_totals({}, 0), allocate(0, []))
    assert record.timestamp.tzinfo is not None
    assert record.employee_data == {}
