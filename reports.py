from __future__ import annotations

import logging
import time
import uuid
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date, timedelta
from statistics import mean, pstdev
from typing import Callable, Optional, Union

from sqlalchemy.orm import Session, sessionmaker

from database import session_scope
from errors import AuthorizationError, not_found
from models import (
    Budget,
    Goal,
    GoalStatus,
    Report,
    ReportStatus,
    ReportType,
    Transaction,
    TransactionType,
)
from periods import DateWindow, local_today, month_end, month_start, shift_months
from schemas import ReportOptions, build_options, parse_report_type
from stores import (
    BudgetStore,
    CategoryStore,
    GoalStore,
    ReportStore,
    TransactionStore,
    UserStore,
)

logger = logging.getLogger(__name__)

UNCATEGORIZED = "Uncategorized"
TOP_MERCHANTS_LIMIT = 10
# minimum swing in net cash flow, in cents, before a trend is reported
TREND_TOLERANCE_CENTS = 100
TREND_TOLERANCE_RATIO = 0.05
# a goal projected to finish this many days early is likely to be met
GOAL_SAFETY_MARGIN_DAYS = 30


def percentage(part: float, whole: float) -> float:
    return (part * 100 / whole) if whole else 0.0


def savings_rate(income_cents: int, expenses_cents: int) -> float:
    """Share of income kept, in percent. Zero income yields 0; never clamped."""
    if income_cents == 0:
        return 0.0
    return (income_cents - expenses_cents) * 100 / income_cents


def budget_status(percentage_used: float) -> str:
    if percentage_used <= 75:
        return "on-track"
    if percentage_used <= 90:
        return "warning"
    if percentage_used <= 100:
        return "near-limit"
    return "over-budget"


def bucket_key(d: date, group_by: str) -> str:
    if group_by == "day":
        return d.isoformat()
    if group_by == "week":
        iso_year, iso_week, _ = d.isocalendar()
        return f"{iso_year}-W{iso_week:02d}"
    if group_by == "year":
        return f"{d.year:04d}"
    return f"{d.year:04d}-{d.month:02d}"


def classify_trend(first: int, last: int) -> str:
    tolerance = max(TREND_TOLERANCE_CENTS, abs(first) * TREND_TOLERANCE_RATIO)
    delta = last - first
    if delta > tolerance:
        return "increasing"
    if delta < -tolerance:
        return "decreasing"
    return "stable"


def _category_label(txn: Transaction) -> tuple[Optional[int], str, Optional[str]]:
    if txn.category is None:
        return None, UNCATEGORIZED, None
    return txn.category.id, txn.category.name, txn.category.color


def _transaction_row(txn: Transaction) -> dict[str, object]:
    _, name, _ = _category_label(txn)
    return {
        "id": txn.id,
        "date": txn.date.isoformat(),
        "type": txn.type.value,
        "amount_cents": txn.amount_cents,
        "category_id": txn.category_id,
        "category_name": name,
        "description": txn.description,
    }


def group_by_category(transactions: list[Transaction]) -> list[dict[str, object]]:
    """Per-category totals sorted by amount, largest first."""
    grouped: dict[Optional[int], list[Transaction]] = defaultdict(list)
    labels: dict[Optional[int], tuple[str, Optional[str]]] = {}
    for txn in transactions:
        category_id, name, color = _category_label(txn)
        grouped[category_id].append(txn)
        labels[category_id] = (name, color)

    total = sum(t.amount_cents for t in transactions)
    rows: list[dict[str, object]] = []
    for category_id, txns in grouped.items():
        amounts = [t.amount_cents for t in txns]
        category_total = sum(amounts)
        name, color = labels[category_id]
        rows.append(
            {
                "category_id": category_id,
                "category_name": name,
                "category_color": color,
                "total_cents": category_total,
                "percentage": percentage(category_total, total),
                "transaction_count": len(txns),
                "average_cents": round(category_total / len(txns)),
                "min_cents": min(amounts),
                "max_cents": max(amounts),
            }
        )
    rows.sort(key=lambda r: (-int(r["total_cents"]), str(r["category_name"])))
    return rows


def bucket_totals(
    transactions: list[Transaction], group_by: str
) -> list[dict[str, object]]:
    totals: dict[str, int] = defaultdict(int)
    for txn in transactions:
        totals[bucket_key(txn.date, group_by)] += txn.amount_cents
    return [{"period": key, "amount_cents": totals[key]} for key in sorted(totals)]


def top_descriptions(
    transactions: list[Transaction], limit: int = TOP_MERCHANTS_LIMIT
) -> list[dict[str, object]]:
    totals: dict[str, int] = defaultdict(int)
    counts: dict[str, int] = defaultdict(int)
    for txn in transactions:
        label = (txn.description or "").strip()
        if not label:
            continue
        totals[label] += txn.amount_cents
        counts[label] += 1
    ranked = sorted(totals, key=lambda k: (-totals[k], k))[:limit]
    return [
        {
            "description": label,
            "total_cents": totals[label],
            "transaction_count": counts[label],
        }
        for label in ranked
    ]


def recurring_sources(transactions: list[Transaction]) -> list[dict[str, object]]:
    """Income sources paid at least twice with near-constant amounts."""
    amounts_by_source: dict[str, list[int]] = defaultdict(list)
    for txn in transactions:
        label = (txn.description or "").strip() or _category_label(txn)[1]
        amounts_by_source[label].append(txn.amount_cents)

    recurring: list[dict[str, object]] = []
    for source, amounts in sorted(amounts_by_source.items()):
        if len(amounts) < 2:
            continue
        avg = mean(amounts)
        if avg <= 0:
            continue
        if pstdev(amounts) / avg >= 0.1:
            continue
        mean_abs_dev = sum(abs(a - avg) for a in amounts) / len(amounts)
        recurring.append(
            {
                "source": source,
                "estimated_amount_cents": round(avg),
                "frequency": len(amounts),
                "reliability": 1 - mean_abs_dev / avg,
            }
        )
    return recurring


@dataclass
class GeneratedReport:
    type: ReportType
    window: DateWindow
    data: dict[str, object]
    total_records: int
    generation_time_ms: int
    options: ReportOptions = field(default_factory=ReportOptions)


class ReportService:
    def __init__(
        self,
        session: Session,
        user_id: int,
        *,
        today: Optional[date] = None,
    ) -> None:
        self.session = session
        self.user_id = user_id
        self.today = today or local_today()
        self.transactions = TransactionStore(session)
        self.budgets = BudgetStore(session)
        self.goals = GoalStore(session)
        self.categories = CategoryStore(session)
        self.users = UserStore(session)
        self.records_scanned = 0

    def _ensure_user(self) -> None:
        if not self.users.exists(self.user_id):
            raise not_found("User", self.user_id)

    def _check_categories(self, category_ids: Optional[list[int]]) -> None:
        if not category_ids:
            return
        found = self.categories.by_ids(category_ids)
        for category_id in category_ids:
            category = found.get(category_id)
            if category is None:
                raise not_found("Category", category_id)
            if category.user_id != self.user_id:
                raise AuthorizationError("Category", category_id)

    def _generators(self) -> dict[ReportType, Callable[[DateWindow, ReportOptions], dict]]:
        return {
            ReportType.spending: self.spending,
            ReportType.income: self.income,
            ReportType.cash_flow: self.cash_flow,
            ReportType.budget_performance: self.budget_performance,
            ReportType.goal_progress: self.goal_progress,
            ReportType.net_worth: self.net_worth,
        }

    def generate(
        self,
        report_type: Union[str, ReportType],
        window: DateWindow,
        options: Union[ReportOptions, dict, None] = None,
    ) -> dict[str, object]:
        return self.run(report_type, window, options).data

    def run(
        self,
        report_type: Union[str, ReportType],
        window: DateWindow,
        options: Union[ReportOptions, dict, None] = None,
    ) -> GeneratedReport:
        if not isinstance(report_type, ReportType):
            report_type = parse_report_type(report_type)
        if not isinstance(options, ReportOptions):
            options = build_options(options)
        self._ensure_user()
        self._check_categories(options.category_ids)

        self.records_scanned = 0
        started = time.perf_counter()
        data = self._generators()[report_type](window, options)
        duration_ms = int((time.perf_counter() - started) * 1000)
        logger.info(
            f"report_generated: type={report_type.value} user_id={self.user_id} "
            f"window={window.start}to{window.end} records={self.records_scanned} "
            f"duration_ms={duration_ms}"
        )
        return GeneratedReport(
            type=report_type,
            window=window,
            data=data,
            total_records=self.records_scanned,
            generation_time_ms=duration_ms,
            options=options,
        )

    def spending(self, window: DateWindow, options: ReportOptions) -> dict[str, object]:
        expenses = self.transactions.find_in_window(
            self.user_id,
            window,
            type=TransactionType.expense,
            category_ids=options.category_ids,
        )
        self.records_scanned += len(expenses)
        total = sum(t.amount_cents for t in expenses)
        categories = group_by_category(expenses)

        previous_window = window.previous()
        previous_total = 0
        if previous_window.start is not None:
            previous_total = sum(
                t.amount_cents
                for t in self.transactions.find_in_window(
                    self.user_id,
                    previous_window,
                    type=TransactionType.expense,
                    category_ids=options.category_ids,
                )
            )
        change = total - previous_total
        change_percent = percentage(change, previous_total)

        report: dict[str, object] = {
            "period": window.as_dict(),
            "summary": {
                "total_spending_cents": total,
                "transaction_count": len(expenses),
                "categories_count": len(categories),
                "average_transaction_cents": round(total / len(expenses))
                if expenses
                else 0,
                "average_daily_spending_cents": round(total / window.days)
                if window.days
                else 0,
            },
            "category_analysis": categories[: options.limit]
            if options.limit
            else categories,
            "comparison": {
                "current_cents": total,
                "previous_cents": previous_total,
                "change_cents": change,
                "percentage_change": change_percent,
                "trend": "increasing"
                if change > 0
                else "decreasing"
                if change < 0
                else "stable",
            },
            "top_merchants": top_descriptions(expenses),
        }
        if options.include_charts:
            report["trends"] = bucket_totals(expenses, options.group_by)
        if options.include_transaction_details:
            report["transactions"] = [_transaction_row(t) for t in expenses]
        return report

    def income(self, window: DateWindow, options: ReportOptions) -> dict[str, object]:
        incomes = self.transactions.find_in_window(
            self.user_id,
            window,
            type=TransactionType.income,
            category_ids=options.category_ids,
        )
        self.records_scanned += len(incomes)
        total = sum(t.amount_cents for t in incomes)
        sources = group_by_category(incomes)

        diversification = 0.0
        if len(sources) > 1 and total:
            hhi = sum((int(s["total_cents"]) / total) ** 2 for s in sources)
            diversification = 1 - hhi

        monthly = bucket_totals(incomes, "month")
        growth_rate = 0.0
        if len(monthly) >= 2:
            prior = int(monthly[-2]["amount_cents"])
            latest = int(monthly[-1]["amount_cents"])
            growth_rate = percentage(latest - prior, prior)

        report: dict[str, object] = {
            "period": window.as_dict(),
            "summary": {
                "total_income_cents": total,
                "transaction_count": len(incomes),
                "source_count": len(sources),
                "average_monthly_income_cents": round(total / len(monthly))
                if monthly
                else 0,
                "diversification_score": diversification,
            },
            "source_analysis": sources[: options.limit] if options.limit else sources,
            "analysis": {
                "growth_rate": growth_rate,
                "diversification_score": diversification,
                "monthly_totals": monthly,
            },
            "recurring_income": recurring_sources(incomes),
        }
        if options.include_charts:
            report["trends"] = bucket_totals(incomes, options.group_by)
        if options.include_transaction_details:
            report["transactions"] = [_transaction_row(t) for t in incomes]
        return report

    def cash_flow(self, window: DateWindow, options: ReportOptions) -> dict[str, object]:
        txns = self.transactions.find_in_window(self.user_id, window)
        self.records_scanned += len(txns)

        income_by_month: dict[str, int] = defaultdict(int)
        expense_by_month: dict[str, int] = defaultdict(int)
        for txn in txns:
            key = bucket_key(txn.date, "month")
            if txn.type == TransactionType.income:
                income_by_month[key] += txn.amount_cents
            elif txn.type == TransactionType.expense:
                expense_by_month[key] += txn.amount_cents

        opening_balance = 0
        if window.start is not None:
            opening_balance = self.transactions.net_balance(
                self.user_id, window.start - timedelta(days=1)
            )

        months: list[dict[str, object]] = []
        running = opening_balance
        running_balance: list[dict[str, object]] = []
        for key in sorted(set(income_by_month) | set(expense_by_month)):
            income = income_by_month[key]
            expenses = expense_by_month[key]
            net = income - expenses
            running += net
            months.append(
                {
                    "period": key,
                    "income_cents": income,
                    "expenses_cents": expenses,
                    "net_cash_flow_cents": net,
                    "savings_rate": savings_rate(income, expenses),
                }
            )
            running_balance.append({"period": key, "balance_cents": running})

        total_income = sum(int(m["income_cents"]) for m in months)
        total_expenses = sum(int(m["expenses_cents"]) for m in months)
        nets = [int(m["net_cash_flow_cents"]) for m in months]
        best = max(months, key=lambda m: int(m["net_cash_flow_cents"]), default=None)
        worst = min(months, key=lambda m: int(m["net_cash_flow_cents"]), default=None)

        trend = "stable"
        if len(nets) >= 2:
            trend = classify_trend(nets[0], nets[-1])

        avg_income = mean(int(m["income_cents"]) for m in months) if months else 0
        avg_expenses = mean(int(m["expenses_cents"]) for m in months) if months else 0
        projections: list[dict[str, object]] = []
        if months:
            last_month = date.fromisoformat(f"{months[-1]['period']}-01")
            for offset in range(1, options.projection_months + 1):
                target = shift_months(last_month, offset)
                projections.append(
                    {
                        "period": bucket_key(target, "month"),
                        "projected_income_cents": round(avg_income),
                        "projected_expenses_cents": round(avg_expenses),
                        "projected_net_cash_flow_cents": round(avg_income - avg_expenses),
                    }
                )

        return {
            "period": window.as_dict(),
            "summary": {
                "total_income_cents": total_income,
                "total_expenses_cents": total_expenses,
                "net_cash_flow_cents": total_income - total_expenses,
                "average_net_cash_flow_cents": round(mean(nets)) if nets else 0,
                "average_savings_rate": mean(float(m["savings_rate"]) for m in months)
                if months
                else 0.0,
                "best_month": best,
                "worst_month": worst,
                "month_count": len(months),
            },
            "monthly_cash_flow": months,
            "patterns": {
                "trend": trend,
                "volatility_cents": round(pstdev(nets)) if len(nets) >= 2 else 0,
                "positive_months": sum(1 for n in nets if n > 0),
                "negative_months": sum(1 for n in nets if n < 0),
            },
            "running_balance": {
                "opening_balance_cents": opening_balance,
                "points": running_balance,
            },
            "projections": projections,
        }

    def _budget_row(self, budget: Budget, spent: dict[int, int]) -> dict[str, object]:
        allocations: list[dict[str, object]] = []
        for allocation in budget.allocations:
            spent_cents = spent.get(allocation.category_id, 0)
            allocated = allocation.allocated_cents
            used = percentage(spent_cents, allocated)
            if allocated == 0 and spent_cents > 0:
                used = 100.0
            status = budget_status(used)
            if spent_cents > allocated:
                status = "over-budget"
            allocations.append(
                {
                    "category_id": allocation.category_id,
                    "category_name": allocation.category.name
                    if allocation.category
                    else UNCATEGORIZED,
                    "allocated_cents": allocated,
                    "spent_cents": spent_cents,
                    "variance_cents": allocated - spent_cents,
                    "remaining_cents": max(0, allocated - spent_cents),
                    "percentage_used": used,
                    "status": status,
                }
            )

        total_allocated = sum(int(a["allocated_cents"]) for a in allocations)
        total_spent = sum(int(a["spent_cents"]) for a in allocations)
        used_total = percentage(total_spent, total_allocated)
        return {
            "budget_id": budget.id,
            "budget_name": budget.name,
            "period": budget.period.value,
            "start_date": budget.start_date.isoformat(),
            "end_date": budget.end_date.isoformat(),
            "total_budget_cents": budget.total_amount_cents,
            "total_allocated_cents": total_allocated,
            "total_spent_cents": total_spent,
            "total_variance_cents": total_allocated - total_spent,
            "percentage_used": used_total,
            "status": budget_status(used_total),
            "allocations": allocations,
        }

    def budget_performance(
        self, window: DateWindow, options: ReportOptions
    ) -> dict[str, object]:
        budgets = self.budgets.find(
            self.user_id, overlapping=window, budget_ids=options.budget_ids
        )
        rows = []
        for budget in budgets:
            spent = self.budgets.recompute_spent(budget)
            rows.append(self._budget_row(budget, spent))
        self.session.commit()
        self.records_scanned += len(budgets)

        allocations = [a for row in rows for a in row["allocations"]]
        total_allocated = sum(int(a["allocated_cents"]) for a in allocations)
        total_spent = sum(int(a["spent_cents"]) for a in allocations)
        breakdown: dict[str, int] = defaultdict(int)
        for allocation in allocations:
            breakdown[str(allocation["status"])] += 1

        return {
            "period": window.as_dict(),
            "summary": {
                "budget_count": len(rows),
                "total_allocated_cents": total_allocated,
                "total_spent_cents": total_spent,
                "total_variance_cents": total_allocated - total_spent,
                "overall_performance_percentage": percentage(
                    total_spent, total_allocated
                ),
                "categories_over_budget": sum(
                    1
                    for a in allocations
                    if int(a["spent_cents"]) > int(a["allocated_cents"])
                ),
                "status_breakdown": dict(breakdown),
            },
            "budget_performance": rows,
        }

    def _goal_timeline(self, goal: Goal) -> dict[str, object]:
        created = goal.created_at.date() if goal.created_at else self.today
        total_days = (goal.target_date - created).days
        elapsed_days = (self.today - created).days
        time_progress = elapsed_days / total_days if total_days > 0 else 1.0
        amount_progress = goal.current_amount_cents / goal.target_amount_cents

        if amount_progress >= 1 or (
            time_progress > 0 and amount_progress >= time_progress * 1.1
        ):
            status = "ahead"
        elif amount_progress < time_progress * 0.9:
            status = "behind"
        else:
            status = "on-track"
        return {
            "status": status,
            "time_progress": min(max(time_progress, 0.0) * 100, 100.0),
            "amount_progress": min(amount_progress * 100, 100.0),
        }

    def _predict_completion(self, goal: Goal) -> dict[str, object]:
        """Project the completion date from the average daily progress so far."""
        created = goal.created_at.date() if goal.created_at else self.today
        elapsed_days = (self.today - created).days
        if goal.current_amount_cents <= 0 or elapsed_days <= 0:
            return {
                "likelihood": "unknown",
                "estimated_completion_date": None,
                "on_target": None,
            }

        remaining = max(0, goal.target_amount_cents - goal.current_amount_cents)
        days_needed = -(-remaining * elapsed_days // goal.current_amount_cents)
        completion = self.today + timedelta(days=days_needed)
        if completion > goal.target_date:
            likelihood = "low"
        elif completion <= goal.target_date - timedelta(days=GOAL_SAFETY_MARGIN_DAYS):
            likelihood = "high"
        else:
            likelihood = "moderate"
        return {
            "likelihood": likelihood,
            "estimated_completion_date": completion.isoformat(),
            "on_target": completion <= goal.target_date,
        }

    def _monthly_requirement(self, goal: Goal, days_remaining: int) -> int:
        months_remaining = max(1.0, days_remaining / 30)
        remaining = goal.target_amount_cents - goal.current_amount_cents
        return max(0, round(remaining / months_remaining))

    def goal_progress(self, window: DateWindow, options: ReportOptions) -> dict[str, object]:
        if options.goal_id is not None:
            goals = [self.goals.get_owned(self.user_id, options.goal_id)]
        else:
            goals = self.goals.find(
                self.user_id, include_completed=options.include_completed
            )
        self.records_scanned += len(goals)

        rows: list[dict[str, object]] = []
        recommendations: list[dict[str, object]] = []
        for goal in goals:
            progress = goal.current_amount_cents * 100 / goal.target_amount_cents
            days_remaining = (goal.target_date - self.today).days
            timeline = self._goal_timeline(goal)
            requirement = self._monthly_requirement(goal, days_remaining)
            remaining = goal.target_amount_cents - goal.current_amount_cents
            rows.append(
                {
                    "goal_id": goal.id,
                    "name": goal.name,
                    "target_amount_cents": goal.target_amount_cents,
                    "current_amount_cents": goal.current_amount_cents,
                    "remaining_cents": remaining,
                    "progress": progress,
                    "target_date": goal.target_date.isoformat(),
                    "days_remaining": days_remaining,
                    "status": goal.status.value,
                    "timeline": timeline,
                    "monthly_requirement_cents": requirement,
                    "prediction": self._predict_completion(goal),
                }
            )
            if timeline["status"] == "behind":
                recommendations.append(
                    {
                        "type": "increase-contribution",
                        "goal_id": goal.id,
                        "priority": "high",
                        "message": f"Consider increasing monthly contribution to "
                        f"{requirement / 100:.2f} for {goal.name}",
                    }
                )
            if 90 <= progress < 100:
                recommendations.append(
                    {
                        "type": "near-completion",
                        "goal_id": goal.id,
                        "priority": "low",
                        "message": f"Only {remaining / 100:.2f} left for {goal.name}",
                    }
                )

        def count(status: str) -> int:
            return sum(1 for r in rows if r["timeline"]["status"] == status)

        return {
            "period": window.as_dict(),
            "summary": {
                "total_goals": len(rows),
                "completed_goals": sum(1 for r in rows if float(r["progress"]) >= 100),
                "on_track_goals": count("on-track"),
                "behind_goals": count("behind"),
                "ahead_goals": count("ahead"),
                "average_progress": mean(float(r["progress"]) for r in rows)
                if rows
                else 0.0,
            },
            "goals": rows,
            "recommendations": recommendations,
        }

    def net_worth(self, window: DateWindow, options: ReportOptions) -> dict[str, object]:
        as_of = min(window.end or self.today, self.today)
        balance = self.transactions.net_balance(self.user_id, as_of)
        active_goals = self.goals.find(self.user_id, include_completed=False)
        goal_savings = sum(
            g.current_amount_cents for g in active_goals if g.status == GoalStatus.active
        )

        history: list[dict[str, object]] = []
        anchor = month_start(as_of)
        for back in range(options.historical_months - 1, -1, -1):
            point = min(month_end(shift_months(anchor, -back)), as_of)
            history.append(
                {
                    "period": bucket_key(point, "month"),
                    "net_worth_cents": self.transactions.net_balance(self.user_id, point),
                }
            )
        self.records_scanned += len(history)

        values = [int(h["net_worth_cents"]) for h in history]
        changes = [b - a for a, b in zip(values, values[1:])]
        if len(values) < 2:
            trend: dict[str, object] = {
                "trend": "insufficient-data",
                "monthly_change_cents": 0,
                "monthly_percentage_change": 0.0,
                "overall_change_cents": 0,
                "overall_percentage_change": 0.0,
                "volatility_cents": 0,
            }
        else:
            last_change = changes[-1]
            overall = values[-1] - values[0]
            trend = {
                "trend": "increasing"
                if last_change > 0
                else "decreasing"
                if last_change < 0
                else "stable",
                "monthly_change_cents": last_change,
                "monthly_percentage_change": percentage(last_change, abs(values[-2])),
                "overall_change_cents": overall,
                "overall_percentage_change": percentage(overall, abs(values[0])),
                "volatility_cents": round(pstdev(changes)),
            }

        rate = mean(changes) if changes else 0
        projections = [
            {
                "period": bucket_key(shift_months(anchor, offset), "month"),
                "projected_net_worth_cents": round(balance + rate * offset),
            }
            for offset in range(1, options.projection_months + 1)
        ]

        return {
            "period": window.as_dict(),
            "current": {
                "net_worth_cents": balance,
                "total_assets_cents": max(balance, 0),
                "total_liabilities_cents": max(-balance, 0),
                "goal_savings_cents": goal_savings,
                "as_of": as_of.isoformat(),
            },
            "trends": history,
            "trend": trend,
            "projections": projections,
        }


def report_categories(data: dict[str, object]) -> list[str]:
    names: list[str] = []
    for key in ("category_analysis", "source_analysis"):
        for row in data.get(key) or []:
            names.append(str(row["category_name"]))
    for budget in data.get("budget_performance") or []:
        for allocation in budget["allocations"]:
            names.append(str(allocation["category_name"]))
    return sorted(set(names))


def build_report_record(
    user_id: int,
    generated: GeneratedReport,
    *,
    name: Optional[str] = None,
    period: Optional[str] = None,
    format: str = "json",
    status: ReportStatus = ReportStatus.completed,
    error: Optional[str] = None,
) -> Report:
    meta: dict[str, object] = {
        "total_records": generated.total_records,
        "generation_time_ms": generated.generation_time_ms,
        "categories": report_categories(generated.data),
        "options": generated.options.model_dump(),
    }
    if error:
        meta["error"] = error
    label = generated.type.value.replace("_", " ").title()
    return Report(
        id=str(uuid.uuid4()),
        user_id=user_id,
        name=name or f"{label} Report",
        type=generated.type,
        period=period or generated.window.slug,
        start_date=generated.window.start,
        end_date=generated.window.end,
        status=status,
        format=format,
        data=generated.data,
        meta=meta,
    )


def persist_report_safely(
    session_factory: sessionmaker[Session], report: Report
) -> Optional[str]:
    """Store a generated report; failures are logged and never raised.

    Runs after the response has been sent, so it opens its own session.
    """
    try:
        with session_scope(session_factory) as session:
            ReportStore(session).create(report)
        logger.info(
            f"report_persisted: id={report.id} user_id={report.user_id} "
            f"type={report.type.value} status={report.status.value}"
        )
        return report.id
    except Exception:
        logger.exception(
            f"report_persist_failed: user_id={report.user_id} type={report.type.value}"
        )
        return None
