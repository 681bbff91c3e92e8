from datetime import date

import pytest

from payment_analyzer.domain import analysis as analysis_ops
from payment_analyzer.domain.models import InvoiceLine
from payment_analyzer.domain.reconciliation import MergeStrategy, merge_paid_amount, reconcile
from payment_analyzer.domain.results import ExtractionBatch
from payment_analyzer.domain.rules import PaymentRules
from payment_analyzer.domain.services import PaymentCalculator
from payment_analyzer.domain.values import DateRange, Money

TUESDAY = date(2024, 1, 2)
WEDNESDAY = date(2024, 1, 3)


def make_calculator() -> PaymentCalculator:
    return PaymentCalculator(
        [
            PaymentRules(
                owner_id="owner-1",
                weekday_rate=Money.of("100"),
                saturday_rate=Money.of("120"),
                unloading_bonus=Money.of("30"),
                attendance_bonus=Money.of("25"),
                early_bonus=Money.of("50"),
                pickup_rate=Money.of("5"),
            )
        ]
    )


def make_analysis(paid: str = "400", consignments: int = 5):
    calculator = make_calculator()
    analysis = analysis_ops.new_analysis("owner-1", DateRange(date(2024, 1, 1), date(2024, 1, 7)), 1)
    return analysis_ops.add_daily_entry(
        analysis, calculator.build_entry(analysis.id, TUESDAY, consignments, Money.of(paid))
    )


def make_batch(*amounts: str, consignments=None, on_date: date = TUESDAY) -> ExtractionBatch:
    return ExtractionBatch(
        consignments=consignments or {},
        invoice_lines=tuple(InvoiceLine(date=on_date, amount=Money.of(amount)) for amount in amounts),
    )


def paid_on(result, day: date = TUESDAY) -> Money:
    return analysis_ops.get_daily_entry(result.analysis, day).paid_amount


def test_replace_is_idempotent():
    calculator = make_calculator()
    batch = make_batch("250")

    first = reconcile(make_analysis(), batch, calculator, MergeStrategy.REPLACE)
    second = reconcile(first.analysis, batch, calculator, MergeStrategy.REPLACE)

    assert paid_on(first) == Money.of("250")
    assert paid_on(second) == Money.of("250")
    assert second.totals == first.totals


def test_add_accumulates_every_application():
    calculator = make_calculator()
    batch = make_batch("250")

    first = reconcile(make_analysis(), batch, calculator, MergeStrategy.ADD)
    second = reconcile(first.analysis, batch, calculator, MergeStrategy.ADD)

    assert paid_on(first) == Money.of("650")
    assert paid_on(second) == Money.of("900")


@pytest.mark.parametrize(
    "existing, incoming, expected",
    [("400", "250", "400"), ("100", "250", "250")],
)
def test_max_keeps_larger_amount(existing, incoming, expected):
    result = reconcile(make_analysis(paid=existing), make_batch(incoming), make_calculator(), MergeStrategy.MAX)

    assert paid_on(result) == Money.of(expected)


def test_smart_replaces_single_line_and_adds_multiple_lines():
    calculator = make_calculator()

    single = reconcile(make_analysis(), make_batch("250"), calculator)
    multiple = reconcile(make_analysis(), make_batch("100", "150"), calculator)

    assert paid_on(single) == Money.of("250")
    assert paid_on(multiple) == Money.of("650")


def test_merge_paid_amount_resolves_smart_by_line_count():
    existing = Money.of("10")
    incoming = Money.of("5")

    assert merge_paid_amount(existing, incoming, 1, MergeStrategy.SMART) == Money.of("5")
    assert merge_paid_amount(existing, incoming, 3, MergeStrategy.SMART) == Money.of("15")


def test_runsheet_count_overwrites_consignments_and_keeps_paid():
    result = reconcile(make_analysis(), make_batch(consignments={TUESDAY: 8}), make_calculator())

    entry = analysis_ops.get_daily_entry(result.analysis, TUESDAY)
    assert entry.consignments.count == 8
    assert entry.paid_amount == Money.of("400")
    assert entry.expected_total == Money.of("905")
    assert result.updated == (TUESDAY,)


def test_new_dates_are_created():
    batch = make_batch("120", consignments={WEDNESDAY: 1}, on_date=WEDNESDAY)

    result = reconcile(make_analysis(), batch, make_calculator(), MergeStrategy.REPLACE)

    assert result.created == (WEDNESDAY,)
    assert result.analysis.dates == (TUESDAY, WEDNESDAY)
    assert result.totals.paid_total == Money.of("520")


def test_dates_outside_period_widen_the_period():
    outside = date(2024, 1, 9)
    analysis = make_analysis()

    result = reconcile(analysis, make_batch("99", on_date=outside), make_calculator())

    assert result.extended == (outside,)
    assert result.created == (outside,)
    assert result.analysis.period == DateRange(date(2024, 1, 1), outside)
    assert result.analysis.dates == (TUESDAY, outside)
    assert analysis_ops.get_daily_entry(result.analysis, outside).paid_amount == Money.of("99")
    assert result.summary()["extended"] == ["2024-01-09"]


def test_dates_inside_period_leave_it_unchanged():
    analysis = make_analysis()

    result = reconcile(analysis, make_batch("99", on_date=WEDNESDAY), make_calculator())

    assert result.extended == ()
    assert result.analysis.period == analysis.period


def test_pickup_lines_are_counted_and_priced():
    batch = ExtractionBatch(
        invoice_lines=(
            InvoiceLine(date=TUESDAY, amount=Money.of("100")),
            InvoiceLine(date=TUESDAY, amount=Money.of("5"), is_pickup=True),
        )
    )

    result = reconcile(make_analysis(), batch, make_calculator(), MergeStrategy.REPLACE)

    entry = analysis_ops.get_daily_entry(result.analysis, TUESDAY)
    assert entry.pickups.count == 1
    assert entry.pickup_total == Money.of("5")
    assert entry.paid_amount == Money.of("105")
