from __future__ import annotations

from datetime import date
from typing import Iterable, Optional

from sqlalchemy import case, func, select, update
from sqlalchemy.orm import Session, selectinload

from errors import AuthorizationError, not_found
from models import (
    Budget,
    BudgetAllocation,
    Category,
    Goal,
    GoalStatus,
    Report,
    Transaction,
    TransactionType,
    User,
)
from periods import DateWindow


class UserStore:
    def __init__(self, session: Session) -> None:
        self.session = session

    def exists(self, user_id: int) -> bool:
        return self.session.get(User, user_id) is not None


class CategoryStore:
    def __init__(self, session: Session) -> None:
        self.session = session

    def find_by_id(self, category_id: int) -> Optional[Category]:
        return self.session.get(Category, category_id)

    def by_ids(self, category_ids: Iterable[int]) -> dict[int, Category]:
        ids = {cid for cid in category_ids if cid is not None}
        if not ids:
            return {}
        rows = self.session.scalars(select(Category).where(Category.id.in_(ids))).all()
        return {c.id: c for c in rows}


class TransactionStore:
    def __init__(self, session: Session) -> None:
        self.session = session

    def find(
        self,
        user_id: int,
        *,
        category_ids: Optional[list[int]] = None,
        type: Optional[TransactionType] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
    ) -> list[Transaction]:
        stmt = (
            select(Transaction)
            .options(selectinload(Transaction.category))
            .where(Transaction.user_id == user_id)
            .order_by(Transaction.date, Transaction.id)
        )
        if category_ids:
            stmt = stmt.where(Transaction.category_id.in_(category_ids))
        if type is not None:
            stmt = stmt.where(Transaction.type == type)
        if date_from is not None:
            stmt = stmt.where(Transaction.date >= date_from)
        if date_to is not None:
            stmt = stmt.where(Transaction.date <= date_to)
        return list(self.session.scalars(stmt).all())

    def find_in_window(
        self,
        user_id: int,
        window: DateWindow,
        *,
        type: Optional[TransactionType] = None,
        category_ids: Optional[list[int]] = None,
    ) -> list[Transaction]:
        return self.find(
            user_id,
            category_ids=category_ids,
            type=type,
            date_from=window.start,
            date_to=window.end,
        )

    def net_balance(self, user_id: int, up_to: Optional[date] = None) -> int:
        """Income minus expenses on or before ``up_to``; transfers are neutral."""
        signed = case(
            (Transaction.type == TransactionType.income, Transaction.amount_cents),
            (Transaction.type == TransactionType.expense, -Transaction.amount_cents),
            else_=0,
        )
        stmt = select(func.coalesce(func.sum(signed), 0)).where(
            Transaction.user_id == user_id
        )
        if up_to is not None:
            stmt = stmt.where(Transaction.date <= up_to)
        return int(self.session.execute(stmt).scalar_one() or 0)

    def spent_by_category(
        self,
        user_id: int,
        start: date,
        end: date,
        category_ids: Optional[list[int]] = None,
    ) -> dict[int, int]:
        stmt = (
            select(
                Transaction.category_id,
                func.coalesce(func.sum(Transaction.amount_cents), 0).label("spent"),
            )
            .where(
                Transaction.user_id == user_id,
                Transaction.type == TransactionType.expense,
                Transaction.date.between(start, end),
                Transaction.category_id.is_not(None),
            )
            .group_by(Transaction.category_id)
        )
        if category_ids:
            stmt = stmt.where(Transaction.category_id.in_(category_ids))
        return {
            int(row.category_id): int(row.spent or 0)
            for row in self.session.execute(stmt)
        }


class BudgetStore:
    def __init__(self, session: Session) -> None:
        self.session = session
        self.transactions = TransactionStore(session)

    def find(
        self,
        user_id: int,
        *,
        active_on: Optional[date] = None,
        overlapping: Optional[DateWindow] = None,
        budget_ids: Optional[list[int]] = None,
    ) -> list[Budget]:
        stmt = (
            select(Budget)
            .options(
                selectinload(Budget.allocations).selectinload(BudgetAllocation.category)
            )
            .where(Budget.user_id == user_id)
            .order_by(Budget.start_date, Budget.id)
        )
        if active_on is not None:
            stmt = stmt.where(Budget.start_date <= active_on, Budget.end_date >= active_on)
        if overlapping is not None:
            if overlapping.end is not None:
                stmt = stmt.where(Budget.start_date <= overlapping.end)
            if overlapping.start is not None:
                stmt = stmt.where(Budget.end_date >= overlapping.start)
        if budget_ids:
            stmt = stmt.where(Budget.id.in_(budget_ids))
        return list(self.session.scalars(stmt).all())

    def get_owned(self, user_id: int, budget_id: int) -> Budget:
        budget = self.session.get(Budget, budget_id)
        if budget is None:
            raise not_found("Budget", budget_id)
        if budget.user_id != user_id:
            raise AuthorizationError("Budget", budget_id)
        return budget

    def update_spent_amount(
        self, budget_id: int, category_id: int, amount_cents: int
    ) -> None:
        self.session.execute(
            update(BudgetAllocation)
            .where(
                BudgetAllocation.budget_id == budget_id,
                BudgetAllocation.category_id == category_id,
            )
            .values(spent_cents=amount_cents)
        )

    def recompute_spent(self, budget: Budget) -> dict[int, int]:
        """Rebuild every allocation's spent amount from source transactions.

        Sums are taken over the budget's own date range, never the report
        window, so repeated calls with unchanged transactions write the
        same values.
        """
        category_ids = [a.category_id for a in budget.allocations]
        if not category_ids:
            return {}
        spent = self.transactions.spent_by_category(
            budget.user_id, budget.start_date, budget.end_date, category_ids
        )
        result: dict[int, int] = {}
        for allocation in budget.allocations:
            amount = spent.get(allocation.category_id, 0)
            result[allocation.category_id] = amount
            self.update_spent_amount(budget.id, allocation.category_id, amount)
        self.session.flush()
        return result


class GoalStore:
    def __init__(self, session: Session) -> None:
        self.session = session

    def find(
        self,
        user_id: int,
        *,
        goal_id: Optional[int] = None,
        include_completed: bool = True,
    ) -> list[Goal]:
        stmt = (
            select(Goal)
            .where(Goal.user_id == user_id)
            .order_by(Goal.target_date, Goal.id)
        )
        if goal_id is not None:
            stmt = stmt.where(Goal.id == goal_id)
        if not include_completed:
            stmt = stmt.where(Goal.status != GoalStatus.completed)
        return list(self.session.scalars(stmt).all())

    def get_owned(self, user_id: int, goal_id: int) -> Goal:
        goal = self.session.get(Goal, goal_id)
        if goal is None:
            raise not_found("Goal", goal_id)
        if goal.user_id != user_id:
            raise AuthorizationError("Goal", goal_id)
        return goal


class ReportStore:
    def __init__(self, session: Session) -> None:
        self.session = session

    def create(self, report: Report) -> Report:
        self.session.add(report)
        self.session.commit()
        self.session.refresh(report)
        return report

    def find_recent(self, user_id: int, limit: int = 10) -> list[Report]:
        stmt = (
            select(Report)
            .where(Report.user_id == user_id)
            .order_by(Report.created_at.desc(), Report.id)
            .limit(limit)
        )
        return list(self.session.scalars(stmt).all())

    def find_by_id(self, user_id: int, report_id: str) -> Optional[Report]:
        report = self.session.get(Report, report_id)
        if report is None or report.user_id != user_id:
            return None
        return report
