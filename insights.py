from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from datetime import date
from typing import Callable, Optional

from sqlalchemy.orm import Session, sessionmaker

from dashboard import gather_reports
from models import ReportType
from periods import DateWindow, local_today, shift_months

logger = logging.getLogger(__name__)

SPENDING_INCREASE_PERCENT = 20
SPENDING_DECREASE_PERCENT = -10
CATEGORY_CONCENTRATION_PERCENT = 40
INCOME_GROWTH_PERCENT = 10
INCOME_DIVERSIFICATION_MIN = 0.3
LOW_SAVINGS_PERCENT = 10
HIGH_SAVINGS_PERCENT = 20
BUDGET_DISCIPLINE_PERCENT = 85
GOAL_RISK_DAYS = 90
GOAL_RISK_PROGRESS = 75
GOAL_WITHIN_REACH_PROGRESS = 90
INSIGHT_WINDOW_MONTHS = 6

INSIGHT_SECTIONS = ("spending", "income", "savings", "budget", "goals")

INSIGHT_REPORTS: tuple[tuple[ReportType, dict[str, object]], ...] = (
    (ReportType.spending, {"group_by": "month"}),
    (ReportType.income, {}),
    (ReportType.cash_flow, {}),
    (ReportType.budget_performance, {}),
    (ReportType.goal_progress, {}),
)


@dataclass(frozen=True)
class Insight:
    type: str
    title: str
    message: str
    action: str

    def as_dict(self) -> dict[str, str]:
        return asdict(self)


def _get(data: object, *path: str) -> object:
    for key in path:
        if not isinstance(data, dict):
            return None
        data = data.get(key)
    return data


def _number(value: object) -> Optional[float]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return float(value)


def spending_insights(report: object) -> list[Insight]:
    insights: list[Insight] = []
    trends = _get(report, "trends")
    if isinstance(trends, list) and len(trends) >= 2:
        latest = _number(_get(trends[-1], "amount_cents"))
        prior = _number(_get(trends[-2], "amount_cents"))
        if latest is not None and prior:
            change = (latest - prior) * 100 / prior
            if change > SPENDING_INCREASE_PERCENT:
                insights.append(
                    Insight(
                        "warning",
                        "Spending Increase Alert",
                        f"Your spending has increased by {change:.1f}% compared to last period.",
                        "Review your recent transactions and identify unnecessary expenses.",
                    )
                )
            elif change < SPENDING_DECREASE_PERCENT:
                insights.append(
                    Insight(
                        "positive",
                        "Great Spending Control",
                        f"You've reduced your spending by {abs(change):.1f}% this period.",
                        "Keep up the good work!",
                    )
                )

    categories = _get(report, "category_analysis")
    total = _number(_get(report, "summary", "total_spending_cents"))
    if isinstance(categories, list) and categories and total:
        top = categories[0]
        amount = _number(_get(top, "total_cents"))
        if amount is not None:
            share = amount * 100 / total
            if share > CATEGORY_CONCENTRATION_PERCENT:
                insights.append(
                    Insight(
                        "info",
                        "Category Concentration",
                        f"{share:.1f}% of your spending is in {_get(top, 'category_name')}.",
                        "Consider if this allocation aligns with your financial goals.",
                    )
                )
    return insights


def income_insights(report: object) -> list[Insight]:
    insights: list[Insight] = []
    growth = _number(_get(report, "analysis", "growth_rate"))
    if growth is not None and growth > INCOME_GROWTH_PERCENT:
        insights.append(
            Insight(
                "positive",
                "Income Growth",
                f"Your income has grown by {growth:.1f}% over the period.",
                "Consider increasing your savings rate to match your income growth.",
            )
        )

    has_income = _number(_get(report, "summary", "total_income_cents"))
    diversification = _number(_get(report, "analysis", "diversification_score"))
    if has_income and diversification is not None:
        if diversification < INCOME_DIVERSIFICATION_MIN:
            insights.append(
                Insight(
                    "warning",
                    "Income Concentration Risk",
                    "Your income is heavily concentrated in few sources.",
                    "Consider diversifying your income streams for better financial security.",
                )
            )
    return insights


def savings_insights(report: object) -> list[Insight]:
    months = _get(report, "monthly_cash_flow")
    rate = _number(_get(report, "summary", "average_savings_rate"))
    if not isinstance(months, list) or not months or rate is None:
        return []
    if rate < LOW_SAVINGS_PERCENT:
        return [
            Insight(
                "warning",
                "Low Savings Rate",
                f"Your average savings rate is {rate:.1f}%.",
                "Financial experts recommend saving at least 20% of your income.",
            )
        ]
    if rate >= HIGH_SAVINGS_PERCENT:
        return [
            Insight(
                "positive",
                "Excellent Savings Rate",
                f"You're saving {rate:.1f}% of your income.",
                "Great job! Consider investing your savings for long-term growth.",
            )
        ]
    return []


def budget_insights(report: object) -> list[Insight]:
    insights: list[Insight] = []
    over = _number(_get(report, "summary", "categories_over_budget"))
    if over is not None and over > 0:
        insights.append(
            Insight(
                "warning",
                "Budget Overruns",
                f"{int(over)} categories are over budget.",
                "Review and adjust your budget or spending in these categories.",
            )
        )

    performance = _number(_get(report, "summary", "overall_performance_percentage"))
    if performance is not None and performance > BUDGET_DISCIPLINE_PERCENT:
        insights.append(
            Insight(
                "positive",
                "Budget Discipline",
                f"You're maintaining {performance:.1f}% budget adherence.",
                "Excellent budget management!",
            )
        )
    return insights


def goal_insights(report: object) -> list[Insight]:
    goals = _get(report, "goals")
    if not isinstance(goals, list):
        return []

    at_risk = 0
    within_reach = 0
    for goal in goals:
        days = _number(_get(goal, "days_remaining"))
        progress = _number(_get(goal, "progress"))
        if days is None or progress is None:
            continue
        if days < GOAL_RISK_DAYS and progress < GOAL_RISK_PROGRESS:
            at_risk += 1
        if progress >= GOAL_WITHIN_REACH_PROGRESS and days > 0:
            within_reach += 1

    insights: list[Insight] = []
    if at_risk:
        insights.append(
            Insight(
                "warning",
                "Goals at Risk",
                f"{at_risk} goals may not be achieved on time.",
                "Consider increasing contributions or adjusting timelines.",
            )
        )
    if within_reach:
        insights.append(
            Insight(
                "positive",
                "Goals Within Reach",
                f"{within_reach} goals are close to completion.",
                "You're almost there! Keep up the momentum.",
            )
        )
    return insights


RULES: dict[str, tuple[str, Callable[[object], list[Insight]]]] = {
    "spending": ("spending", spending_insights),
    "income": ("income", income_insights),
    "savings": ("cash_flow", savings_insights),
    "budget": ("budget_performance", budget_insights),
    "goals": ("goal_progress", goal_insights),
}


def generate_insights(reports: dict[str, object]) -> dict[str, list[Insight]]:
    """Apply the insight rule table to already generated reports.

    ``reports`` maps report type names (``spending``, ``income``,
    ``cash_flow``, ``budget_performance``, ``goal_progress``) to report
    data. Missing or malformed reports produce no insights for their
    section; this function does not raise.
    """
    result: dict[str, list[Insight]] = {section: [] for section in INSIGHT_SECTIONS}
    if not isinstance(reports, dict):
        return result
    for section, (report_key, rule) in RULES.items():
        try:
            result[section] = rule(reports.get(report_key))
        except (TypeError, ValueError, KeyError, AttributeError, IndexError):
            logger.warning(f"insight_rule_skipped: section={section}", exc_info=True)
    return result


def summarize_insights(insights: dict[str, list[Insight]]) -> dict[str, int]:
    flat = [i for section in insights.values() for i in section]
    return {
        "total_insights": len(flat),
        "positive_insights": sum(1 for i in flat if i.type == "positive"),
        "warning_insights": sum(1 for i in flat if i.type == "warning"),
        "info_insights": sum(1 for i in flat if i.type == "info"),
    }


def default_insight_window(today: date) -> DateWindow:
    return DateWindow("custom", shift_months(today, -INSIGHT_WINDOW_MONTHS), today)


class InsightService:
    def __init__(
        self,
        session_factory: sessionmaker[Session],
        *,
        today: Optional[date] = None,
    ) -> None:
        self.session_factory = session_factory
        self.today = today

    async def generate_for_user(
        self, user_id: int, window: Optional[DateWindow] = None
    ) -> dict[str, object]:
        window = window or default_insight_window(self.today or local_today())
        results = await gather_reports(
            self.session_factory, user_id, window, INSIGHT_REPORTS, today=self.today
        )
        reports = {
            report_type.value: data
            for (report_type, _), data in zip(INSIGHT_REPORTS, results)
        }
        insights = generate_insights(reports)
        summary = summarize_insights(insights)
        logger.info(
            f"insights_generated: user_id={user_id} total={summary['total_insights']}"
        )
        return {
            "period": window.as_dict(),
            "insights": {
                section: [i.as_dict() for i in items]
                for section, items in insights.items()
            },
            "summary": summary,
        }
