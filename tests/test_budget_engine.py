from datetime import date, datetime
from decimal import Decimal

import pytest
from sqlalchemy.exc import OperationalError, SQLAlchemyError

from budget_engine import (
    BudgetEvaluationError,
    BudgetEvaluator,
    BudgetStatus,
    classify,
    percent_used,
)
from database import Category, Notification, Transaction
from notifications import BUDGET_ALERT_TITLE, NotificationEmitter, NotifyPolicy


@pytest.mark.parametrize(
    "spend, limit, expected",
    [
        ("0", "100", BudgetStatus.SAFE),
        ("79.99", "100", BudgetStatus.SAFE),
        ("80", "100", BudgetStatus.NEAR_LIMIT),
        ("99.99", "100", BudgetStatus.NEAR_LIMIT),
        ("100", "100", BudgetStatus.OVER_BUDGET),
        ("105", "100", BudgetStatus.OVER_BUDGET),
        ("0.80", "1", BudgetStatus.NEAR_LIMIT),
    ],
)
def test_classify_bands_are_closed_at_lower_end(spend, limit, expected):
    assert classify(Decimal(spend), Decimal(limit)) is expected


def test_classify_accepts_floats_without_drift():
    assert classify(0.8, 1.0) is BudgetStatus.NEAR_LIMIT
    assert classify(Decimal("0.1") * 8, 1) is BudgetStatus.NEAR_LIMIT


def test_classify_custom_ratio():
    assert classify(50, 100, near_limit_ratio=Decimal("0.5")) is BudgetStatus.NEAR_LIMIT
    assert classify(49, 100, near_limit_ratio=Decimal("0.5")) is BudgetStatus.SAFE


def test_percent_used_handles_zero_limit():
    assert percent_used(Decimal("10"), Decimal("0")) == 0
    assert percent_used(Decimal("25"), Decimal("200")) == 12.5


def test_sum_is_zero_without_transactions(store, user, groceries):
    total = store.sum_transactions(user.id, groceries.id, date(2024, 5, 1), date(2024, 5, 31))
    assert total == Decimal("0.00")


def test_sum_includes_both_window_edges(store, user, groceries, make_transaction):
    make_transaction(user, groceries, 10, when=datetime(2024, 5, 1, 0, 0))
    make_transaction(user, groceries, 20, when=datetime(2024, 5, 31, 23, 59, 59))
    make_transaction(user, groceries, 40, when=datetime(2024, 4, 30, 23, 59, 59))
    make_transaction(user, groceries, 80, when=datetime(2024, 6, 1, 0, 0))

    total = store.sum_transactions(user.id, groceries.id, date(2024, 5, 1), date(2024, 5, 31))
    assert total == Decimal("30.00")


def test_sum_is_exact_for_cents(store, user, groceries, make_transaction):
    for _ in range(10):
        make_transaction(user, groceries, "0.10")
    make_transaction(user, groceries, "0.20")

    total = store.sum_transactions(user.id, groceries.id, date(2024, 5, 1), date(2024, 5, 31))
    assert total == Decimal("1.20")


def test_sum_is_additive_over_partitions(store, user, groceries, make_transaction):
    amounts = ["12.34", "0.66", "100", "7.05"]
    for day, amount in enumerate(amounts, start=1):
        make_transaction(user, groceries, amount, when=datetime(2024, 5, day * 7, 9, 0))

    whole = store.sum_transactions(user.id, groceries.id, date(2024, 5, 1), date(2024, 5, 31))
    first = store.sum_transactions(user.id, groceries.id, date(2024, 5, 1), date(2024, 5, 14))
    second = store.sum_transactions(user.id, groceries.id, date(2024, 5, 15), date(2024, 5, 31))
    assert whole == first + second == sum(Decimal(a) for a in amounts)


def test_sum_is_scoped_to_user_and_category(
    store, user, other_user, groceries, make_transaction
):
    transport = store.add(Category(user_id=user.id, name="Transport", type="expense"))
    make_transaction(user, groceries, 10)
    make_transaction(user, transport, 99)
    make_transaction(other_user, groceries, 500)

    total = store.sum_transactions(user.id, groceries.id, date(2024, 5, 1), date(2024, 5, 31))
    assert total == Decimal("10.00")
    assert store.sum_transactions(
        other_user.id, transport.id, date(2024, 5, 1), date(2024, 5, 31)
    ) == Decimal("0.00")


def test_scenarios_safe_near_limit_over_budget(
    store, evaluator, user, groceries, make_budget, make_transaction
):
    make_budget(user, groceries, 100)

    outcome = evaluator.evaluate_transaction(make_transaction(user, groceries, 60), groceries)
    assert outcome.status is BudgetStatus.SAFE
    assert outcome.total_expense == Decimal("60")
    assert not outcome.notified

    outcome = evaluator.evaluate_transaction(make_transaction(user, groceries, 25), groceries)
    assert outcome.status is BudgetStatus.NEAR_LIMIT
    assert outcome.total_expense == Decimal("85")

    outcome = evaluator.evaluate_transaction(make_transaction(user, groceries, 20), groceries)
    assert outcome.status is BudgetStatus.OVER_BUDGET
    assert outcome.total_expense == Decimal("105")
    assert outcome.notified

    notifications = store.list_notifications(user.id)
    assert len(notifications) == 1
    assert notifications[0].title == BUDGET_ALERT_TITLE
    assert "Groceries" in notifications[0].message


def test_no_budget_reports_own_amount(store, evaluator, user, groceries, make_transaction):
    make_transaction(user, groceries, 500)

    outcome = evaluator.evaluate_transaction(make_transaction(user, groceries, 42), groceries)

    assert outcome.status is BudgetStatus.SAFE
    assert outcome.total_expense == Decimal("42")
    assert outcome.budget_id is None
    assert store.list_notifications(user.id) == []


def test_other_users_budget_is_ignored(
    store, evaluator, user, other_user, groceries, make_budget, make_transaction
):
    make_budget(other_user, groceries, 1)

    outcome = evaluator.evaluate_transaction(make_transaction(user, groceries, 50), groceries)

    assert outcome.budget_id is None
    assert store.list_notifications(other_user.id) == []


def test_default_policy_notifies_on_every_over_budget_transaction(
    store, evaluator, user, groceries, make_budget, make_transaction
):
    make_budget(user, groceries, 100)
    evaluator.evaluate_transaction(make_transaction(user, groceries, 120), groceries)
    evaluator.evaluate_transaction(make_transaction(user, groceries, 5), groceries)

    assert len(store.list_notifications(user.id)) == 2


def test_transition_policy_notifies_once(
    store, user, groceries, make_budget, make_transaction
):
    evaluator = BudgetEvaluator(store, NotificationEmitter(store, NotifyPolicy.ON_TRANSITION))
    make_budget(user, groceries, 100)

    first = evaluator.evaluate_transaction(make_transaction(user, groceries, 90), groceries)
    second = evaluator.evaluate_transaction(make_transaction(user, groceries, 15), groceries)
    third = evaluator.evaluate_transaction(make_transaction(user, groceries, 5), groceries)

    assert (first.notified, second.notified, third.notified) == (False, True, False)
    assert third.status is BudgetStatus.OVER_BUDGET
    assert len(store.list_notifications(user.id)) == 1


def test_transition_policy_ignores_transactions_outside_window(
    store, user, groceries, make_budget, make_transaction
):
    evaluator = BudgetEvaluator(store, NotificationEmitter(store, "on_transition"))
    make_budget(user, groceries, 100)
    make_transaction(user, groceries, 150)

    outcome = evaluator.evaluate_transaction(
        make_transaction(user, groceries, 10, when=datetime(2024, 7, 1, 8, 0)), groceries
    )

    assert outcome.status is BudgetStatus.OVER_BUDGET
    assert outcome.total_expense == Decimal("150")
    assert not outcome.notified


def test_transaction_outside_window_does_not_change_spend(
    store, evaluator, user, groceries, make_budget, make_transaction
):
    budget = make_budget(user, groceries, 100)
    make_transaction(user, groceries, 30)
    before = evaluator.assess(budget)

    outcome = evaluator.evaluate_transaction(
        make_transaction(user, groceries, 70, when=datetime(2024, 6, 2, 8, 0)), groceries
    )

    assert outcome.total_expense == Decimal("30")
    assert evaluator.assess(budget).spent == before.spent == Decimal("30")


def test_overlapping_budgets_prefer_window_containing_transaction(
    store, evaluator, user, groceries, make_budget, make_transaction
):
    may = make_budget(user, groceries, 100, date(2024, 5, 1), date(2024, 5, 31))
    make_budget(user, groceries, 1000, date(2024, 6, 1), date(2024, 6, 30))

    outcome = evaluator.evaluate_transaction(make_transaction(user, groceries, 10), groceries)

    assert outcome.budget_id == may.id


def test_overlapping_budgets_prefer_most_recent(
    store, evaluator, user, groceries, make_budget, make_transaction
):
    make_budget(user, groceries, 100, date(2024, 5, 1), date(2024, 5, 31))
    newer = make_budget(user, groceries, 50, date(2024, 5, 5), date(2024, 5, 20))

    outcome = evaluator.evaluate_transaction(make_transaction(user, groceries, 45), groceries)

    assert outcome.budget_id == newer.id
    assert outcome.status is BudgetStatus.NEAR_LIMIT


def test_budget_outside_transaction_date_still_governs(
    store, evaluator, user, groceries, make_budget, make_transaction
):
    budget = make_budget(user, groceries, 100)
    make_transaction(user, groceries, 100)

    outcome = evaluator.evaluate_transaction(
        make_transaction(user, groceries, 1, when=datetime(2025, 1, 1, 8, 0)), groceries
    )

    assert outcome.budget_id == budget.id
    assert outcome.status is BudgetStatus.OVER_BUDGET
    assert outcome.total_expense == Decimal("100")


def test_notification_failure_does_not_fail_evaluation(
    monkeypatch, store, evaluator, user, groceries, make_budget, make_transaction
):
    make_budget(user, groceries, 10)
    transaction = make_transaction(user, groceries, 20)

    def broken(*args, **kwargs):
        raise SQLAlchemyError("notifications table unavailable")

    monkeypatch.setattr(store, "create_notification", broken)
    outcome = evaluator.evaluate_transaction(transaction, groceries)

    assert outcome.status is BudgetStatus.OVER_BUDGET
    assert not outcome.notified
    assert store.get_transaction(user.id, transaction.id) is not None


def test_aggregation_failure_is_reported_against_stored_transaction(
    monkeypatch, store, session, evaluator, user, groceries, make_budget, make_transaction
):
    make_budget(user, groceries, 100)
    transaction = make_transaction(user, groceries, 20)

    def broken(*args, **kwargs):
        raise OperationalError("SELECT sum", {}, Exception("connection lost"))

    monkeypatch.setattr(store, "sum_transactions", broken)
    with pytest.raises(BudgetEvaluationError) as excinfo:
        evaluator.evaluate_transaction(transaction, groceries)

    assert excinfo.value.transaction_id == transaction.id
    assert session.query(Transaction).count() == 1
    assert session.query(Notification).count() == 0


def test_read_paths_share_aggregation(
    store, evaluator, user, groceries, make_budget, make_transaction
):
    transport = store.add(Category(user_id=user.id, name="Transport", type="expense"))
    food_budget = make_budget(user, groceries, 100)
    make_budget(user, transport, 300)
    make_transaction(user, groceries, 60)
    make_transaction(user, groceries, 25)
    make_transaction(user, transport, 30)

    statuses = evaluator.budget_statuses(user.id)
    assert [(a.category_name, a.spent, a.status) for a in statuses] == [
        ("Groceries", Decimal("85"), BudgetStatus.NEAR_LIMIT),
        ("Transport", Decimal("30"), BudgetStatus.SAFE),
    ]

    detail = evaluator.budget_detail(user.id, food_budget.id)
    assert detail.assessment.spent == Decimal("85")
    assert [t.amount for t in detail.transactions] == [Decimal("60"), Decimal("25")]

    summary = evaluator.budget_summary(user.id)
    assert summary.total_limit == Decimal("400")
    assert summary.total_expense == Decimal("115")
    assert summary.percent_used == 28.75

    # repeated reads without writes are stable
    assert evaluator.budget_summary(user.id) == summary


def test_budget_detail_is_scoped_to_owner(
    evaluator, user, other_user, groceries, make_budget
):
    budget = make_budget(user, groceries, 100)

    assert evaluator.budget_detail(other_user.id, budget.id) is None
    assert evaluator.budget_detail(user.id, budget.id + 1) is None


def test_summary_without_budgets(evaluator, user):
    summary = evaluator.budget_summary(user.id)

    assert summary.total_limit == 0
    assert summary.total_expense == 0
    assert summary.percent_used == 0
