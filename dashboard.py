from __future__ import annotations

import asyncio
import logging
import time
from datetime import date
from typing import Optional, Sequence

from sqlalchemy.orm import Session, sessionmaker

from database import session_scope
from models import ReportType
from periods import DateWindow, resolve_window
from reports import ReportService, savings_rate

logger = logging.getLogger(__name__)

TOP_CATEGORY_COUNT = 3
RECENT_MONTHS = 6

DASHBOARD_REPORTS: tuple[tuple[ReportType, dict[str, object]], ...] = (
    (ReportType.spending, {"limit": 5}),
    (ReportType.income, {}),
    (ReportType.cash_flow, {}),
    (ReportType.budget_performance, {}),
    (ReportType.goal_progress, {}),
    (ReportType.net_worth, {}),
)


def summarize_dashboard(
    window: DateWindow,
    spending: dict,
    income: dict,
    cash_flow: dict,
    budgets: dict,
    goals: dict,
    net_worth: dict,
) -> dict[str, object]:
    income_cents = int(income["summary"]["total_income_cents"])
    expense_cents = int(spending["summary"]["total_spending_cents"])
    return {
        "period": window.slug,
        "start_date": window.start.isoformat() if window.start else None,
        "end_date": window.end.isoformat() if window.end else None,
        "monthly_income_cents": income_cents,
        "monthly_expenses_cents": expense_cents,
        "net_worth_cents": int(net_worth["current"]["net_worth_cents"]),
        "savings_rate": round(savings_rate(income_cents, expense_cents), 2),
        "budget_utilization": round(
            float(budgets["summary"]["overall_performance_percentage"]), 2
        ),
        "goal_progress": round(float(goals["summary"]["average_progress"]), 2),
        "top_expense_categories": spending["category_analysis"][:TOP_CATEGORY_COUNT],
        "recent_trends": cash_flow["monthly_cash_flow"][-RECENT_MONTHS:],
        "cash_flow_trend": cash_flow["patterns"]["trend"],
        "budget_count": budgets["summary"]["budget_count"],
        "goal_count": goals["summary"]["total_goals"],
    }


def generate_isolated(
    session_factory: sessionmaker[Session],
    user_id: int,
    report_type: ReportType,
    window: DateWindow,
    options: Optional[dict[str, object]] = None,
    *,
    today: Optional[date] = None,
) -> dict[str, object]:
    """Generate one report in a session of its own, for use from worker threads."""
    with session_scope(session_factory) as session:
        return ReportService(session, user_id, today=today).generate(
            report_type, window, options
        )


async def gather_reports(
    session_factory: sessionmaker[Session],
    user_id: int,
    window: DateWindow,
    jobs: Sequence[tuple[ReportType, dict[str, object]]],
    *,
    today: Optional[date] = None,
) -> list[dict[str, object]]:
    """Run report jobs concurrently; the first failure propagates."""
    return list(
        await asyncio.gather(
            *(
                asyncio.to_thread(
                    generate_isolated,
                    session_factory,
                    user_id,
                    report_type,
                    window,
                    options,
                    today=today,
                )
                for report_type, options in jobs
            )
        )
    )


class DashboardComposer:
    """Runs the six report generators for one window and flattens them.

    Every generator runs in a worker thread with its own session, so the
    composer needs a session factory rather than a session.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        *,
        today: Optional[date] = None,
    ) -> None:
        self.session_factory = session_factory
        self.today = today

    async def compose(
        self,
        user_id: int,
        period: Optional[str] = None,
        *,
        start: Optional[str] = None,
        end: Optional[str] = None,
    ) -> dict[str, object]:
        window = resolve_window(period, start, end, today=self.today)
        started = time.perf_counter()
        results = await gather_reports(
            self.session_factory, user_id, window, DASHBOARD_REPORTS, today=self.today
        )
        summary = summarize_dashboard(window, *results)
        logger.info(
            f"dashboard_composed: user_id={user_id} period={window.slug} "
            f"duration_ms={int((time.perf_counter() - started) * 1000)}"
        )
        return summary
