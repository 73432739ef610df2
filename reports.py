from collections import OrderedDict

from fastapi import APIRouter, Depends

from auth import Identity, get_current_identity
from schemas import CategoryExpense, MonthlyTotals, ReportSummary
from store import ZERO, LedgerStore, get_store

report_router = APIRouter()


@report_router.get("/summary", response_model=ReportSummary)
async def get_summary(
    store: LedgerStore = Depends(get_store),
    identity: Identity = Depends(get_current_identity),
):
    totals = {"income": ZERO, "expense": ZERO}
    for _, category_type, total in store.totals_by_category(identity.user_id):
        totals[category_type] = totals.get(category_type, ZERO) + total

    return ReportSummary(
        total_income=totals["income"],
        total_expense=totals["expense"],
        balance=totals["income"] - totals["expense"],
    )


@report_router.get("/monthly", response_model=list[MonthlyTotals])
async def get_monthly_summary(
    store: LedgerStore = Depends(get_store),
    identity: Identity = Depends(get_current_identity),
):
    months = OrderedDict()
    for when, amount, category_type in store.dated_amounts(identity.user_id):
        month = months.setdefault(
            when.strftime("%Y-%m"), {"income": ZERO, "expense": ZERO}
        )
        if category_type in month:
            month[category_type] += amount

    return [
        MonthlyTotals(
            month=label,
            total_income=totals["income"],
            total_expense=totals["expense"],
        )
        for label, totals in months.items()
    ]


@report_router.get("/expense-by-category", response_model=list[CategoryExpense])
async def get_expense_by_category(
    store: LedgerStore = Depends(get_store),
    identity: Identity = Depends(get_current_identity),
):
    return [
        CategoryExpense(category_name=name, total_expense=total)
        for name, category_type, total in store.totals_by_category(identity.user_id)
        if category_type == "expense"
    ]
