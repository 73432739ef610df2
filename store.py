"""User-scoped queries over the ledger tables."""

from datetime import date, datetime, time, timedelta
from decimal import Decimal
from typing import List, Optional

from fastapi import Depends
from sqlalchemy import and_, case, func
from sqlalchemy.orm import Session

from database import (
    Budget,
    Category,
    Money,
    Notification,
    Transaction,
    User,
    get_db,
    to_money,
)

ZERO = to_money(0)


def window_bounds(start: date, end: date):
    """Half-open datetime range covering the calendar days start..end inclusive."""
    return (
        datetime.combine(start, time.min),
        datetime.combine(end + timedelta(days=1), time.min),
    )


class LedgerStore:
    def __init__(self, db: Session):
        self.db = db

    # -- generic writes ----------------------------------------------------

    def add(self, row):
        self.db.add(row)
        self.db.commit()
        self.db.refresh(row)
        return row

    def save(self, row):
        self.db.commit()
        self.db.refresh(row)
        return row

    def delete(self, row):
        self.db.delete(row)
        self.db.commit()

    def rollback(self):
        self.db.rollback()

    # -- users ---------------------------------------------------------------

    def get_user(self, user_id: int) -> Optional[User]:
        return self.db.query(User).filter(User.id == user_id).first()

    def find_user_by_email(self, email: str) -> Optional[User]:
        return (
            self.db.query(User).filter(func.lower(User.email) == email.lower()).first()
        )

    # -- categories ----------------------------------------------------------

    def find_category(self, user_id: int, category_id: int) -> Optional[Category]:
        return (
            self.db.query(Category)
            .filter(Category.id == category_id, Category.user_id == user_id)
            .first()
        )

    def find_category_by_name(
        self, user_id: int, name: str, type_: str
    ) -> Optional[Category]:
        # SQL lower() only folds ASCII, so names are compared here
        key = name.casefold()
        candidates = self.db.query(Category).filter(
            Category.user_id == user_id, Category.type == type_
        )
        return next((c for c in candidates if c.name.casefold() == key), None)

    def list_categories(self, user_id: int) -> List[Category]:
        return (
            self.db.query(Category)
            .filter(Category.user_id == user_id)
            .order_by(Category.id)
            .all()
        )

    def category_in_use(self, user_id: int, category_id: int) -> bool:
        transactions = (
            self.db.query(func.count(Transaction.id))
            .filter(
                Transaction.user_id == user_id,
                Transaction.category_id == category_id,
            )
            .scalar()
        )
        budgets = (
            self.db.query(func.count(Budget.id))
            .filter(Budget.user_id == user_id, Budget.category_id == category_id)
            .scalar()
        )
        return transactions + budgets > 0

    # -- transactions --------------------------------------------------------

    def get_transaction(self, user_id: int, transaction_id: int) -> Optional[Transaction]:
        return (
            self.db.query(Transaction)
            .filter(Transaction.id == transaction_id, Transaction.user_id == user_id)
            .first()
        )

    def search_transactions(
        self,
        user_id: int,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        category_id: Optional[int] = None,
        keyword: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
    ):
        query = (
            self.db.query(Transaction, Category)
            .join(Category, Transaction.category_id == Category.id)
            .filter(Transaction.user_id == user_id)
        )
        if category_id is not None:
            query = query.filter(Category.id == category_id)
        if start_date:
            query = query.filter(
                Transaction.date >= datetime.combine(start_date, time.min)
            )
        if end_date:
            query = query.filter(
                Transaction.date < datetime.combine(end_date + timedelta(days=1), time.min)
            )
        if keyword:
            query = query.filter(Transaction.note.ilike(f"%{keyword}%"))
        return (
            query.order_by(Transaction.date.desc(), Transaction.id.desc())
            .limit(limit)
            .offset(offset)
            .all()
        )

    def sum_transactions(
        self, user_id: int, category_id: int, start: date, end: date
    ) -> Decimal:
        lower, upper = window_bounds(start, end)
        total = (
            self.db.query(
                func.coalesce(func.sum(Transaction.amount), 0, type_=Money())
            )
            .filter(
                Transaction.user_id == user_id,
                Transaction.category_id == category_id,
                Transaction.date >= lower,
                Transaction.date < upper,
            )
            .scalar()
        )
        return total if total is not None else ZERO

    def window_transactions(
        self, user_id: int, category_id: int, start: date, end: date
    ) -> List[Transaction]:
        lower, upper = window_bounds(start, end)
        return (
            self.db.query(Transaction)
            .filter(
                Transaction.user_id == user_id,
                Transaction.category_id == category_id,
                Transaction.date >= lower,
                Transaction.date < upper,
            )
            .order_by(Transaction.date, Transaction.id)
            .all()
        )

    def totals_by_category(self, user_id: int):
        """(category name, category type, total) for every used category."""
        return (
            self.db.query(
                Category.name,
                Category.type,
                func.coalesce(func.sum(Transaction.amount), 0, type_=Money()),
            )
            .join(Transaction, Transaction.category_id == Category.id)
            .filter(Transaction.user_id == user_id, Category.user_id == user_id)
            .group_by(Category.id, Category.name, Category.type)
            .order_by(Category.name)
            .all()
        )

    def dated_amounts(self, user_id: int):
        """(date, amount, category type) for every transaction of the user."""
        return (
            self.db.query(Transaction.date, Transaction.amount, Category.type)
            .join(Category, Transaction.category_id == Category.id)
            .filter(Transaction.user_id == user_id)
            .order_by(Transaction.date)
            .all()
        )

    # -- budgets -------------------------------------------------------------

    def get_budget(self, user_id: int, budget_id: int) -> Optional[Budget]:
        return (
            self.db.query(Budget)
            .filter(Budget.id == budget_id, Budget.user_id == user_id)
            .first()
        )

    def list_budgets(
        self, user_id: int, limit: Optional[int] = None, offset: int = 0
    ) -> List[Budget]:
        query = (
            self.db.query(Budget).filter(Budget.user_id == user_id).order_by(Budget.id)
        )
        if limit is not None:
            query = query.limit(limit).offset(offset)
        return query.all()

    def find_budget(
        self, user_id: int, category_id: int, on: Optional[date] = None
    ) -> Optional[Budget]:
        """Pick the budget governing (user, category).

        Any budget of the pair qualifies. When several do, a budget whose
        window contains ``on`` wins, then the most recently created one.
        """
        query = self.db.query(Budget).filter(
            Budget.user_id == user_id, Budget.category_id == category_id
        )
        ordering = [Budget.created_at.desc(), Budget.id.desc()]
        if on is not None:
            covers = case(
                (and_(Budget.start_date <= on, Budget.end_date >= on), 1), else_=0
            )
            ordering.insert(0, covers.desc())
        return query.order_by(*ordering).first()

    # -- notifications -------------------------------------------------------

    def create_notification(self, user_id: int, title: str, message: str) -> Notification:
        return self.add(Notification(user_id=user_id, title=title, message=message))

    def list_notifications(self, user_id: int) -> List[Notification]:
        return (
            self.db.query(Notification)
            .filter(Notification.user_id == user_id)
            .order_by(Notification.created_at.desc(), Notification.id.desc())
            .all()
        )

    def get_notification(self, user_id: int, notification_id: int) -> Optional[Notification]:
        return (
            self.db.query(Notification)
            .filter(
                Notification.id == notification_id, Notification.user_id == user_id
            )
            .first()
        )


def get_store(db: Session = Depends(get_db)) -> LedgerStore:
    return LedgerStore(db)
