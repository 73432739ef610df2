import logging
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

from auth import Identity, get_current_identity
from budget_engine import (
    BudgetAssessment,
    BudgetEvaluationError,
    BudgetEvaluator,
    get_evaluator,
)
from database import Budget, Category, Transaction
from schemas import (
    BudgetCreate,
    BudgetDetailOut,
    BudgetOut,
    BudgetStatusItem,
    BudgetSummaryOut,
    BudgetUpdate,
    CategoryCreate,
    CategoryOut,
    CategoryUpdate,
    NotificationCreate,
    NotificationOut,
    TransactionCreate,
    TransactionCreated,
    TransactionListItem,
    TransactionOut,
    TransactionUpdate,
)
from store import LedgerStore, get_store

logger = logging.getLogger(__name__)

router = APIRouter()


def budget_out(assessment: BudgetAssessment) -> BudgetOut:
    out = BudgetOut.model_validate(assessment.budget)
    out.spent_amount = assessment.spent
    out.status = assessment.status.value
    return out


def require_category(store: LedgerStore, user_id: int, category_id: int) -> Category:
    category = store.find_category(user_id, category_id)
    if not category:
        raise HTTPException(status_code=400, detail="Invalid category")
    return category


# -- categories -------------------------------------------------------------


@router.post(
    "/categories", response_model=CategoryOut, status_code=status.HTTP_201_CREATED
)
async def create_category(
    category: CategoryCreate,
    store: LedgerStore = Depends(get_store),
    identity: Identity = Depends(get_current_identity),
):
    if store.find_category_by_name(identity.user_id, category.name, category.type):
        raise HTTPException(status_code=400, detail="Category already exists")

    return store.add(
        Category(user_id=identity.user_id, name=category.name, type=category.type)
    )


@router.get("/categories", response_model=list[CategoryOut])
async def get_categories(
    store: LedgerStore = Depends(get_store),
    identity: Identity = Depends(get_current_identity),
):
    return store.list_categories(identity.user_id)


@router.put("/categories/{category_id}", response_model=CategoryOut)
async def update_category(
    category_id: int,
    update: CategoryUpdate,
    store: LedgerStore = Depends(get_store),
    identity: Identity = Depends(get_current_identity),
):
    category = store.find_category(identity.user_id, category_id)
    if not category:
        raise HTTPException(status_code=404, detail="Category not found")

    new_type = update.type or category.type
    new_name = update.name or category.name
    if update.name is not None or update.type is not None:
        existing = store.find_category_by_name(identity.user_id, new_name, new_type)
        if existing and existing.id != category.id:
            raise HTTPException(status_code=400, detail="Category already exists")

    category.name = new_name
    category.type = new_type
    return store.save(category)


@router.delete("/categories/{category_id}")
async def delete_category(
    category_id: int,
    store: LedgerStore = Depends(get_store),
    identity: Identity = Depends(get_current_identity),
):
    category = store.find_category(identity.user_id, category_id)
    if not category:
        raise HTTPException(status_code=404, detail="Category not found")
    if store.category_in_use(identity.user_id, category_id):
        raise HTTPException(status_code=400, detail="Category is in use")

    store.delete(category)
    return {"message": "Category deleted successfully"}


# -- transactions -----------------------------------------------------------


@router.post(
    "/transactions",
    response_model=TransactionCreated,
    status_code=status.HTTP_201_CREATED,
)
async def create_transaction(
    transaction: TransactionCreate,
    store: LedgerStore = Depends(get_store),
    evaluator: BudgetEvaluator = Depends(get_evaluator),
    identity: Identity = Depends(get_current_identity),
):
    category = require_category(store, identity.user_id, transaction.category_id)

    db_transaction = store.add(
        Transaction(
            user_id=identity.user_id,
            category_id=category.id,
            amount=transaction.amount,
            date=transaction.date,
            note=transaction.note,
        )
    )
    logger.info(
        "Transaction %s stored for user %s", db_transaction.id, identity.user_id
    )

    # The row is committed; from here on failures are reported against it
    try:
        outcome = evaluator.evaluate_transaction(db_transaction, category)
    except BudgetEvaluationError as exc:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={
                "error": "Budget evaluation failed",
                "transaction_id": exc.transaction_id,
            },
        )

    return TransactionCreated(
        transaction=TransactionOut.model_validate(outcome.transaction),
        budget_status=outcome.status.value,
        total_expense=outcome.total_expense,
    )


@router.get("/transactions", response_model=list[TransactionListItem])
async def get_transactions(
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    category_id: Optional[int] = None,
    keyword: Optional[str] = None,
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    store: LedgerStore = Depends(get_store),
    identity: Identity = Depends(get_current_identity),
):
    rows = store.search_transactions(
        identity.user_id,
        start_date=start_date,
        end_date=end_date,
        category_id=category_id,
        keyword=keyword,
        limit=limit,
        offset=offset,
    )
    return [
        TransactionListItem(
            id=t.id,
            amount=t.amount,
            note=t.note,
            date=t.date,
            category_id=c.id,
            category_name=c.name,
            category_type=c.type,
        )
        for t, c in rows
    ]


@router.get("/transactions/{transaction_id}", response_model=TransactionOut)
async def get_transaction(
    transaction_id: int,
    store: LedgerStore = Depends(get_store),
    identity: Identity = Depends(get_current_identity),
):
    transaction = store.get_transaction(identity.user_id, transaction_id)
    if not transaction:
        raise HTTPException(status_code=404, detail="Transaction not found")
    return transaction


@router.put("/transactions/{transaction_id}", response_model=TransactionOut)
async def update_transaction(
    transaction_id: int,
    update: TransactionUpdate,
    store: LedgerStore = Depends(get_store),
    identity: Identity = Depends(get_current_identity),
):
    transaction = store.get_transaction(identity.user_id, transaction_id)
    if not transaction:
        raise HTTPException(status_code=404, detail="Transaction not found")

    if update.category_id is not None:
        require_category(store, identity.user_id, update.category_id)
        transaction.category_id = update.category_id
    if update.amount is not None:
        transaction.amount = update.amount
    if update.date is not None:
        transaction.date = update.date
    if update.note is not None:
        transaction.note = update.note

    return store.save(transaction)


@router.delete("/transactions/{transaction_id}")
async def delete_transaction(
    transaction_id: int,
    store: LedgerStore = Depends(get_store),
    identity: Identity = Depends(get_current_identity),
):
    transaction = store.get_transaction(identity.user_id, transaction_id)
    if not transaction:
        raise HTTPException(status_code=404, detail="Transaction not found")
    store.delete(transaction)
    return {"message": "Transaction deleted successfully"}


# -- budgets ----------------------------------------------------------------


@router.post("/budgets", response_model=BudgetOut, status_code=status.HTTP_201_CREATED)
async def create_budget(
    budget: BudgetCreate,
    store: LedgerStore = Depends(get_store),
    evaluator: BudgetEvaluator = Depends(get_evaluator),
    identity: Identity = Depends(get_current_identity),
):
    category = require_category(store, identity.user_id, budget.category_id)
    if budget.end_date <= budget.start_date:
        raise HTTPException(
            status_code=400, detail="end_date must be after start_date"
        )

    db_budget = store.add(
        Budget(
            user_id=identity.user_id,
            category_id=category.id,
            limit_amount=budget.limit_amount,
            start_date=budget.start_date,
            end_date=budget.end_date,
        )
    )
    return budget_out(evaluator.assess(db_budget, category.name))


@router.get("/budgets", response_model=list[BudgetOut])
async def get_budgets(
    limit: int = Query(20, ge=1, le=500),
    offset: int = Query(0, ge=0),
    store: LedgerStore = Depends(get_store),
    evaluator: BudgetEvaluator = Depends(get_evaluator),
    identity: Identity = Depends(get_current_identity),
):
    budgets = store.list_budgets(identity.user_id, limit=limit, offset=offset)
    return [budget_out(evaluator.assess(b)) for b in budgets]


@router.get("/budgets/status", response_model=list[BudgetStatusItem])
async def get_budget_status(
    evaluator: BudgetEvaluator = Depends(get_evaluator),
    identity: Identity = Depends(get_current_identity),
):
    return [
        BudgetStatusItem(
            budget_id=a.budget.id,
            category_name=a.category_name,
            limit_amount=a.budget.limit_amount,
            total_expense=a.spent,
            status=a.status.value,
        )
        for a in evaluator.budget_statuses(identity.user_id)
    ]


@router.get("/budgets/summary", response_model=BudgetSummaryOut)
async def get_budget_summary(
    evaluator: BudgetEvaluator = Depends(get_evaluator),
    identity: Identity = Depends(get_current_identity),
):
    summary = evaluator.budget_summary(identity.user_id)
    return BudgetSummaryOut(
        total_limit=summary.total_limit,
        total_expense=summary.total_expense,
        percent_used=summary.percent_used,
    )


@router.get("/budgets/{budget_id}/detail", response_model=BudgetDetailOut)
async def get_budget_detail(
    budget_id: int,
    evaluator: BudgetEvaluator = Depends(get_evaluator),
    identity: Identity = Depends(get_current_identity),
):
    detail = evaluator.budget_detail(identity.user_id, budget_id)
    if detail is None:
        raise HTTPException(status_code=404, detail="Budget not found")

    assessment = detail.assessment
    return BudgetDetailOut(
        budget=budget_out(assessment),
        category_name=assessment.category_name,
        transactions=[TransactionOut.model_validate(t) for t in detail.transactions],
        total_expense=assessment.spent,
        status=assessment.status.value,
    )


@router.put("/budgets/{budget_id}", response_model=BudgetOut)
async def update_budget(
    budget_id: int,
    update: BudgetUpdate,
    store: LedgerStore = Depends(get_store),
    evaluator: BudgetEvaluator = Depends(get_evaluator),
    identity: Identity = Depends(get_current_identity),
):
    budget = store.get_budget(identity.user_id, budget_id)
    if not budget:
        raise HTTPException(status_code=404, detail="Budget not found")

    start_date = update.start_date or budget.start_date
    end_date = update.end_date or budget.end_date
    if end_date < start_date:
        raise HTTPException(
            status_code=400, detail="end_date must not be before start_date"
        )

    if update.limit_amount is not None:
        budget.limit_amount = update.limit_amount
    budget.start_date = start_date
    budget.end_date = end_date
    return budget_out(evaluator.assess(store.save(budget)))


@router.delete("/budgets/{budget_id}")
async def delete_budget(
    budget_id: int,
    store: LedgerStore = Depends(get_store),
    identity: Identity = Depends(get_current_identity),
):
    budget = store.get_budget(identity.user_id, budget_id)
    if not budget:
        raise HTTPException(status_code=404, detail="Budget not found")
    store.delete(budget)
    return {"message": "Budget deleted successfully"}


# -- notifications ----------------------------------------------------------


@router.post(
    "/notifications",
    response_model=NotificationOut,
    status_code=status.HTTP_201_CREATED,
)
async def create_notification(
    notification: NotificationCreate,
    store: LedgerStore = Depends(get_store),
    identity: Identity = Depends(get_current_identity),
):
    return store.create_notification(
        identity.user_id, notification.title, notification.message
    )


@router.get("/notifications", response_model=list[NotificationOut])
async def get_notifications(
    store: LedgerStore = Depends(get_store),
    identity: Identity = Depends(get_current_identity),
):
    return store.list_notifications(identity.user_id)


@router.get("/notifications/{notification_id}", response_model=NotificationOut)
async def get_notification(
    notification_id: int,
    store: LedgerStore = Depends(get_store),
    identity: Identity = Depends(get_current_identity),
):
    notification = store.get_notification(identity.user_id, notification_id)
    if not notification:
        raise HTTPException(status_code=404, detail="Notification not found")
    return notification


@router.delete("/notifications/{notification_id}")
async def delete_notification(
    notification_id: int,
    store: LedgerStore = Depends(get_store),
    identity: Identity = Depends(get_current_identity),
):
    notification = store.get_notification(identity.user_id, notification_id)
    if not notification:
        raise HTTPException(status_code=404, detail="Notification not found")
    store.delete(notification)
    return {"message": "Notification deleted successfully"}
