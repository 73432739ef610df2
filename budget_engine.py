"""Spend aggregation, budget classification and post-transaction evaluation."""

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import List, Optional

from fastapi import Depends, Request
from sqlalchemy.exc import SQLAlchemyError

from config import NEAR_LIMIT_RATIO
from database import Budget, Category, Transaction, to_money
from notifications import NotificationEmitter
from store import ZERO, LedgerStore, get_store

logger = logging.getLogger(__name__)


class BudgetStatus(str, Enum):
    SAFE = "Safe"
    NEAR_LIMIT = "Near Limit"
    OVER_BUDGET = "Over Budget"


def classify(spend, limit, near_limit_ratio=NEAR_LIMIT_RATIO) -> BudgetStatus:
    """Map spend against a limit to a status.

    Each band is closed at its lower end: ``spend == limit`` is Over Budget
    and ``spend == limit * ratio`` is Near Limit.
    """
    spend = Decimal(str(spend))
    limit = Decimal(str(limit))
    if spend >= limit:
        return BudgetStatus.OVER_BUDGET
    if spend >= limit * Decimal(str(near_limit_ratio)):
        return BudgetStatus.NEAR_LIMIT
    return BudgetStatus.SAFE


class BudgetEvaluationError(Exception):
    """Budget feedback could not be derived for an already stored transaction."""

    def __init__(self, transaction_id: int, cause: Exception):
        super().__init__(
            f"budget evaluation failed for transaction {transaction_id}: {cause}"
        )
        self.transaction_id = transaction_id
        self.cause = cause


@dataclass
class TransactionOutcome:
    transaction: Transaction
    status: BudgetStatus
    total_expense: Decimal
    budget_id: Optional[int] = None
    notified: bool = False


@dataclass
class BudgetAssessment:
    budget: Budget
    category_name: Optional[str]
    spent: Decimal
    status: BudgetStatus


@dataclass
class BudgetDetail:
    assessment: BudgetAssessment
    transactions: List[Transaction] = field(default_factory=list)


@dataclass
class BudgetSummary:
    total_limit: Decimal
    total_expense: Decimal
    percent_used: float


def percent_used(total_expense: Decimal, total_limit: Decimal) -> float:
    if total_limit == 0:
        return 0.0
    return float(total_expense / total_limit * 100)


def in_window(budget: Budget, transaction: Transaction) -> bool:
    return budget.start_date <= transaction.date.date() <= budget.end_date


class BudgetEvaluator:
    def __init__(
        self,
        store: LedgerStore,
        emitter: NotificationEmitter,
        near_limit_ratio=NEAR_LIMIT_RATIO,
    ):
        self.store = store
        self.emitter = emitter
        self.near_limit_ratio = Decimal(str(near_limit_ratio))

    def classify(self, spend, limit) -> BudgetStatus:
        return classify(spend, limit, self.near_limit_ratio)

    def spend_for(self, budget: Budget) -> Decimal:
        return self.store.sum_transactions(
            budget.user_id, budget.category_id, budget.start_date, budget.end_date
        )

    def assess(self, budget: Budget, category_name: Optional[str] = None) -> BudgetAssessment:
        if category_name is None:
            category = self.store.find_category(budget.user_id, budget.category_id)
            category_name = category.name if category else None
        spent = self.spend_for(budget)
        return BudgetAssessment(
            budget=budget,
            category_name=category_name,
            spent=spent,
            status=self.classify(spent, budget.limit_amount),
        )

    def evaluate_transaction(
        self, transaction: Transaction, category: Category
    ) -> TransactionOutcome:
        """Re-evaluate the budget of a freshly stored transaction.

        The transaction is already committed when this runs. Store failures
        while locating the budget or summing spend raise
        ``BudgetEvaluationError``; a failure to store the alert is logged
        and otherwise ignored.
        """
        transaction_id = transaction.id
        user_id = transaction.user_id
        try:
            budget = self.store.find_budget(
                user_id, category.id, on=transaction.date.date()
            )
            if budget is None:
                return TransactionOutcome(
                    transaction=transaction,
                    status=BudgetStatus.SAFE,
                    total_expense=to_money(transaction.amount),
                )
            spent = self.spend_for(budget)
        except SQLAlchemyError as exc:
            self.store.rollback()
            logger.exception(
                "Budget evaluation failed for transaction %s of user %s",
                transaction_id,
                user_id,
            )
            raise BudgetEvaluationError(transaction_id, exc) from exc

        status = self.classify(spent, budget.limit_amount)
        outcome = TransactionOutcome(
            transaction=transaction,
            status=status,
            total_expense=spent,
            budget_id=budget.id,
        )
        if status is not BudgetStatus.OVER_BUDGET:
            return outcome

        previous = spent - transaction.amount if in_window(budget, transaction) else spent
        was_over = self.classify(previous, budget.limit_amount) is BudgetStatus.OVER_BUDGET
        if self.emitter.should_notify(was_over):
            notification = self.emitter.emit_budget_alert(user_id, category.name)
            outcome.notified = notification is not None
        return outcome

    def budget_statuses(self, user_id: int) -> List[BudgetAssessment]:
        return [self.assess(budget) for budget in self.store.list_budgets(user_id)]

    def budget_detail(self, user_id: int, budget_id: int) -> Optional[BudgetDetail]:
        budget = self.store.get_budget(user_id, budget_id)
        if budget is None:
            return None
        return BudgetDetail(
            assessment=self.assess(budget),
            transactions=self.store.window_transactions(
                user_id, budget.category_id, budget.start_date, budget.end_date
            ),
        )

    def budget_summary(self, user_id: int) -> BudgetSummary:
        total_limit = ZERO
        total_expense = ZERO
        for budget in self.store.list_budgets(user_id):
            total_limit += budget.limit_amount
            total_expense += self.spend_for(budget)
        return BudgetSummary(
            total_limit=total_limit,
            total_expense=total_expense,
            percent_used=percent_used(total_expense, total_limit),
        )


def get_evaluator(
    request: Request, store: LedgerStore = Depends(get_store)
) -> BudgetEvaluator:
    settings = request.app.state.settings
    emitter = NotificationEmitter(store, settings.notify_policy)
    return BudgetEvaluator(store, emitter, settings.near_limit_ratio)
