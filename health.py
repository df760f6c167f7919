from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from datetime import date
from typing import Iterable, Optional, Sequence

from sqlalchemy.orm import Session

from models import Budget, ReportType
from periods import local_today, trailing_months
from reports import ReportService, savings_rate
from stores import BudgetStore

logger = logging.getLogger(__name__)

SPENDING_CONTROL_WEIGHT = 40
SAVINGS_RATE_WEIGHT = 25
GOAL_PROGRESS_WEIGHT = 20
EMERGENCY_FUND_WEIGHT = 15

ON_TRACK_TOLERANCE = 0.10
TARGET_SAVINGS_RATE = 20.0
TARGET_EMERGENCY_MONTHS = 6.0
NO_GOALS_SCORE = 50.0
IMPROVEMENT_THRESHOLD = 60
CONTEXT_MONTHS = 3
MAX_RECOMMENDATIONS = 20
LONG_BUDGET_DAYS = 90
MIN_BUDGETS_FOR_STRUCTURE = 3

PRIORITY_ORDER = {"high": 0, "medium": 1, "low": 2}

HEALTH_LEVELS = (
    (90, "Excellent"),
    (75, "Good"),
    (60, "Fair"),
    (40, "Poor"),
)


def clamp(value: float, low: float = 0.0, high: float = 100.0) -> float:
    return max(low, min(high, value))


def health_level(score: float) -> str:
    for threshold, label in HEALTH_LEVELS:
        if score >= threshold:
            return label
    return "Critical"


@dataclass(frozen=True)
class AllocationSnapshot:
    category_id: int
    category_name: str
    allocated_cents: int
    spent_cents: int

    @property
    def utilization(self) -> float:
        if self.allocated_cents == 0:
            # any spend against a zero allocation counts as fully used
            return 0.0 if self.spent_cents == 0 else 1.0
        return self.spent_cents / self.allocated_cents

    @property
    def is_over(self) -> bool:
        return self.spent_cents > self.allocated_cents


@dataclass(frozen=True)
class BudgetSnapshot:
    budget_id: int
    name: str
    total_amount_cents: int
    start_date: date
    end_date: date
    allocations: tuple[AllocationSnapshot, ...] = ()

    @property
    def total_spent_cents(self) -> int:
        return sum(a.spent_cents for a in self.allocations)

    @classmethod
    def from_budget(cls, budget: Budget) -> "BudgetSnapshot":
        return cls(
            budget_id=budget.id,
            name=budget.name,
            total_amount_cents=budget.total_amount_cents,
            start_date=budget.start_date,
            end_date=budget.end_date,
            allocations=tuple(
                AllocationSnapshot(
                    category_id=a.category_id,
                    category_name=a.category.name if a.category else str(a.category_id),
                    allocated_cents=a.allocated_cents,
                    spent_cents=a.spent_cents,
                )
                for a in budget.allocations
            ),
        )


@dataclass(frozen=True)
class FinancialContext:
    savings_rate: float = 0.0
    # None when the user has no goals
    average_goal_progress: Optional[float] = None
    emergency_fund_months: float = 0.0


@dataclass(frozen=True)
class PerformanceMetrics:
    total_budget_cents: int
    total_spent_cents: int
    utilization_rate: float
    total_days: int
    elapsed_days: int
    time_progress: float
    daily_spending_rate: float
    ideal_burn_rate: float
    burn_rate_variance: float
    projected_end_spending: float
    projected_overrun: float
    is_on_track: bool


@dataclass
class HealthScore:
    overall_score: int
    spending_control_score: float
    savings_rate_score: float
    goal_progress_score: float
    emergency_fund_score: float
    health_level: str
    improvement_areas: list[str] = field(default_factory=list)
    recommendations: list[str] = field(default_factory=list)
    factors: list[dict[str, object]] = field(default_factory=list)

    def as_dict(self) -> dict[str, object]:
        return asdict(self)


@dataclass
class Recommendation:
    type: str
    category: str
    priority: str
    title: str
    description: str
    action: str
    impact: str
    budget_id: Optional[int] = None
    potential_savings_cents: Optional[int] = None
    metadata: dict[str, object] = field(default_factory=dict)

    def as_dict(self) -> dict[str, object]:
        return asdict(self)


def performance_metrics(budget: BudgetSnapshot, as_of: date) -> PerformanceMetrics:
    total_budget = budget.total_amount_cents
    spent = budget.total_spent_cents
    total_days = (budget.end_date - budget.start_date).days + 1
    if as_of < budget.start_date:
        elapsed_days = 0
    else:
        elapsed_days = min(total_days, (as_of - budget.start_date).days + 1)

    if total_budget:
        utilization_rate = spent / total_budget
    else:
        utilization_rate = 1.0 if spent else 0.0
    time_progress = elapsed_days / total_days
    daily_rate = spent / elapsed_days if elapsed_days else 0.0
    ideal_rate = total_budget / total_days
    projected = daily_rate * total_days
    return PerformanceMetrics(
        total_budget_cents=total_budget,
        total_spent_cents=spent,
        utilization_rate=utilization_rate,
        total_days=total_days,
        elapsed_days=elapsed_days,
        time_progress=time_progress,
        daily_spending_rate=daily_rate,
        ideal_burn_rate=ideal_rate,
        burn_rate_variance=daily_rate - ideal_rate,
        projected_end_spending=projected,
        projected_overrun=max(0.0, projected - total_budget),
        is_on_track=utilization_rate <= time_progress + ON_TRACK_TOLERANCE,
    )


def spending_control_score(
    budget: BudgetSnapshot, metrics: PerformanceMetrics
) -> tuple[float, list[dict[str, object]]]:
    score = 100.0
    factors: list[dict[str, object]] = []
    used = metrics.utilization_rate * 100
    elapsed = metrics.time_progress * 100

    if used > 100:
        penalty = min(30.0, (used - 100) * 2)
        score -= penalty
        factors.append(
            {
                "factor": "Over Budget",
                "impact": -penalty,
                "description": f"{used - 100:.1f}% over budget",
            }
        )
    elif used < 50 and elapsed > 75:
        score -= 10
        factors.append(
            {
                "factor": "Under-Utilized",
                "impact": -10.0,
                "description": "Significant unused budget allocation",
            }
        )

    pacing = used - elapsed
    if abs(pacing) > 20:
        penalty = min(20.0, abs(pacing) / 2)
        score -= penalty
        factors.append(
            {
                "factor": "Poor Pacing",
                "impact": -penalty,
                "description": f"Spending {'too fast' if pacing > 0 else 'too slow'}",
            }
        )

    funded = [a for a in budget.allocations if a.allocated_cents > 0]
    if funded:
        spread = sum(abs(a.utilization * 100 - 100) for a in funded) / len(funded)
        if spread > 25:
            penalty = min(15.0, spread / 5)
            score -= penalty
            factors.append(
                {
                    "factor": "Category Imbalance",
                    "impact": -penalty,
                    "description": "Uneven spending across categories",
                }
            )

    over = [a for a in budget.allocations if a.is_over]
    if over:
        penalty = min(20.0, 5.0 * len(over))
        score -= penalty
        factors.append(
            {
                "factor": "Categories Over Allocation",
                "impact": -penalty,
                "description": f"{len(over)} categories exceeded their allocation",
            }
        )
    return clamp(score), factors


def score(
    budget: BudgetSnapshot, context: FinancialContext, as_of: date
) -> HealthScore:
    metrics = performance_metrics(budget, as_of)
    control, factors = spending_control_score(budget, metrics)
    savings = clamp(context.savings_rate / TARGET_SAVINGS_RATE * 100)
    if context.average_goal_progress is None:
        goals = NO_GOALS_SCORE
    else:
        goals = clamp(context.average_goal_progress)
    emergency = clamp(context.emergency_fund_months / TARGET_EMERGENCY_MONTHS * 100)

    weighted = (
        control * SPENDING_CONTROL_WEIGHT
        + savings * SAVINGS_RATE_WEIGHT
        + goals * GOAL_PROGRESS_WEIGHT
        + emergency * EMERGENCY_FUND_WEIGHT
    ) / 100
    overall = int(round(clamp(weighted)))

    areas: list[str] = []
    advice: list[str] = []
    if control < IMPROVEMENT_THRESHOLD:
        areas.append("Spending Control")
        advice.append("Track category spending weekly and pause non-essential purchases.")
    if savings < IMPROVEMENT_THRESHOLD:
        areas.append("Savings Rate")
        advice.append(
            f"Aim to save at least {TARGET_SAVINGS_RATE:.0f}% of your income each month."
        )
    if goals < IMPROVEMENT_THRESHOLD:
        areas.append("Goal Progress")
        advice.append("Set up automatic contributions towards your financial goals.")
    if emergency < IMPROVEMENT_THRESHOLD:
        areas.append("Emergency Fund")
        advice.append(
            f"Build an emergency fund covering {TARGET_EMERGENCY_MONTHS:.0f} months of expenses."
        )

    return HealthScore(
        overall_score=overall,
        spending_control_score=round(control, 2),
        savings_rate_score=round(savings, 2),
        goal_progress_score=round(goals, 2),
        emergency_fund_score=round(emergency, 2),
        health_level=health_level(overall),
        improvement_areas=areas,
        recommendations=advice,
        factors=factors,
    )


def _underutilized(
    budget: BudgetSnapshot,
    history: Sequence[BudgetSnapshot],
    metrics: PerformanceMetrics,
) -> list[Recommendation]:
    periods = list(history)
    # an unfinished budget only counts once most of its time has passed
    if metrics.time_progress > 0.75:
        periods.append(budget)

    under: dict[int, list[float]] = {}
    names: dict[int, str] = {}
    for snapshot in periods:
        for allocation in snapshot.allocations:
            if allocation.allocated_cents <= 0:
                continue
            names[allocation.category_id] = allocation.category_name
            if allocation.utilization < 0.5:
                under.setdefault(allocation.category_id, []).append(allocation.utilization)

    current_categories = {a.category_id for a in budget.allocations}
    result: list[Recommendation] = []
    for category_id, rates in sorted(under.items()):
        if len(rates) < 2 or category_id not in current_categories:
            continue
        name = names[category_id]
        average = sum(rates) / len(rates) * 100
        result.append(
            Recommendation(
                type="opportunity",
                category="underutilization",
                priority="low",
                title=f"{name} Consistently Under-Utilized",
                description=f"{name} used only {average:.1f}% of its allocation "
                f"across {len(rates)} periods",
                action="Consider reallocating unused funds to savings or investment goals",
                impact="optimization",
                budget_id=budget.budget_id,
                metadata={
                    "category_id": category_id,
                    "category_name": name,
                    "periods_under_utilized": len(rates),
                    "average_utilization": average,
                },
            )
        )
    return result


def _overspending_patterns(
    budget: BudgetSnapshot, history: Sequence[BudgetSnapshot]
) -> list[Recommendation]:
    totals: dict[int, dict[str, object]] = {}
    for snapshot in [*history, budget]:
        for allocation in snapshot.allocations:
            entry = totals.setdefault(
                allocation.category_id,
                {"name": allocation.category_name, "allocated": 0, "spent": 0, "count": 0},
            )
            entry["allocated"] = int(entry["allocated"]) + allocation.allocated_cents
            entry["spent"] = int(entry["spent"]) + allocation.spent_cents
            entry["count"] = int(entry["count"]) + 1

    result: list[Recommendation] = []
    for category_id, entry in sorted(totals.items()):
        allocated = int(entry["allocated"])
        if allocated <= 0 or int(entry["count"]) < 2:
            continue
        used = int(entry["spent"]) / allocated * 100
        if used <= 120:
            continue
        name = str(entry["name"])
        result.append(
            Recommendation(
                type="insight",
                category="pattern_analysis",
                priority="medium",
                title=f"Consistent Overspending in {name}",
                description=f"{name} consistently exceeds budget by {used - 100:.1f}% "
                "across multiple budgets",
                action=f"Consider increasing allocation for {name} by 20-30% in future budgets",
                impact="budget_accuracy",
                budget_id=budget.budget_id,
                metadata={
                    "category_id": category_id,
                    "category_name": name,
                    "average_utilization": used,
                    "budgets_affected": int(entry["count"]),
                },
            )
        )
    return result


def _budget_structure(budgets: Sequence[BudgetSnapshot]) -> list[Recommendation]:
    if len(budgets) < MIN_BUDGETS_FOR_STRUCTURE:
        return []
    average_days = sum((b.end_date - b.start_date).days for b in budgets) / len(budgets)
    if average_days <= LONG_BUDGET_DAYS:
        return []
    return [
        Recommendation(
            type="suggestion",
            category="budget_structure",
            priority="low",
            title="Consider Shorter Budget Periods",
            description="Your budgets average more than 3 months. "
            "Shorter periods may improve tracking accuracy",
            action="Try monthly budgets for better control and more frequent adjustments",
            impact="budget_control",
            metadata={"avg_duration_days": round(average_days)},
        )
    ]


def recommend(
    budget: BudgetSnapshot,
    history: Iterable[BudgetSnapshot] = (),
    *,
    as_of: date,
) -> list[Recommendation]:
    """Rule-based suggestions for one budget, highest priority first.

    ``history`` holds earlier budgets of the same user and feeds the
    cross-period rules: persistent under-use, repeated overspending and
    overly long budget periods.
    """
    history = list(history)
    metrics = performance_metrics(budget, as_of)
    recommendations: list[Recommendation] = []

    overage = metrics.total_spent_cents - metrics.total_budget_cents
    if overage > 0:
        if metrics.total_budget_cents:
            over_by = f"{overage * 100 / metrics.total_budget_cents:.1f}%"
        else:
            over_by = f"{overage / 100:.2f}"
        recommendations.append(
            Recommendation(
                type="warning",
                category="overspending",
                priority="high",
                title="Budget Exceeded",
                description=f'Budget "{budget.name}" is {over_by} over budget',
                action="Consider reducing spending in high-variance categories "
                "or increasing budget allocation",
                impact="financial_health",
                budget_id=budget.budget_id,
                potential_savings_cents=overage,
                metadata={
                    "overage_cents": overage,
                    "utilization_rate": metrics.utilization_rate,
                },
            )
        )

    if metrics.burn_rate_variance > 0 and metrics.projected_overrun > 0:
        recommendations.append(
            Recommendation(
                type="warning",
                category="burn_rate",
                priority="medium",
                title="High Spending Rate",
                description=f"At the current pace spending will exceed the budget by "
                f"{metrics.projected_overrun / 100:.2f}",
                action="Review recent transactions and reduce discretionary spending",
                impact="budget_adherence",
                budget_id=budget.budget_id,
                metadata={
                    "daily_spending_rate": metrics.daily_spending_rate,
                    "ideal_burn_rate": metrics.ideal_burn_rate,
                    "burn_rate_variance": metrics.burn_rate_variance,
                    "projected_overrun": metrics.projected_overrun,
                },
            )
        )

    for allocation in budget.allocations:
        if not allocation.is_over:
            continue
        overage = allocation.spent_cents - allocation.allocated_cents
        recommendations.append(
            Recommendation(
                type="action",
                category="category_overspend",
                priority="medium",
                title=f"{allocation.category_name} Category Over Budget",
                description=f"{allocation.category_name} is {overage / 100:.2f} over budget",
                action=f"Reduce spending in {allocation.category_name} or reallocate "
                "funds from under-utilized categories",
                impact="category_balance",
                budget_id=budget.budget_id,
                potential_savings_cents=overage,
                metadata={
                    "category_id": allocation.category_id,
                    "category_name": allocation.category_name,
                    "overage_cents": overage,
                    "utilization_rate": allocation.utilization * 100,
                },
            )
        )

    recommendations.extend(_underutilized(budget, history, metrics))
    recommendations.extend(_overspending_patterns(budget, history))
    recommendations.extend(_budget_structure([*history, budget]))
    recommendations.sort(key=lambda r: PRIORITY_ORDER[r.priority])
    return recommendations[:MAX_RECOMMENDATIONS]


def summarize_recommendations(
    recommendations: Sequence[Recommendation],
) -> dict[str, object]:
    by_category: dict[str, int] = {}
    for rec in recommendations:
        by_category[rec.category] = by_category.get(rec.category, 0) + 1
    return {
        "total": len(recommendations),
        "high": sum(1 for r in recommendations if r.priority == "high"),
        "medium": sum(1 for r in recommendations if r.priority == "medium"),
        "low": sum(1 for r in recommendations if r.priority == "low"),
        "by_category": by_category,
    }


class BudgetHealthService:
    def __init__(
        self, session: Session, user_id: int, *, today: Optional[date] = None
    ) -> None:
        self.session = session
        self.user_id = user_id
        self.today = today or local_today()
        self.budgets = BudgetStore(session)
        self.reports = ReportService(session, user_id, today=self.today)

    def _load(self, budget_id: int) -> BudgetSnapshot:
        budget = self.budgets.get_owned(self.user_id, budget_id)
        self.budgets.recompute_spent(budget)
        self.session.commit()
        return BudgetSnapshot.from_budget(budget)

    def financial_context(self) -> FinancialContext:
        window = trailing_months(self.today, CONTEXT_MONTHS)
        cash_flow = self.reports.generate(ReportType.cash_flow, window)
        goals = self.reports.generate(ReportType.goal_progress, window)
        net_worth = self.reports.generate(ReportType.net_worth, window)

        summary = cash_flow["summary"]
        income = int(summary["total_income_cents"])
        expenses = int(summary["total_expenses_cents"])
        months = int(summary["month_count"])
        balance = int(net_worth["current"]["net_worth_cents"])
        if expenses and months:
            emergency_months = max(0.0, balance / (expenses / months))
        else:
            emergency_months = TARGET_EMERGENCY_MONTHS if balance > 0 else 0.0

        goal_summary = goals["summary"]
        average_goal = (
            float(goal_summary["average_progress"])
            if goal_summary["total_goals"]
            else None
        )
        return FinancialContext(
            savings_rate=savings_rate(income, expenses),
            average_goal_progress=average_goal,
            emergency_fund_months=emergency_months,
        )

    def score_budget_health(self, budget_id: int) -> dict[str, object]:
        snapshot = self._load(budget_id)
        metrics = performance_metrics(snapshot, self.today)
        health = score(snapshot, self.financial_context(), self.today)
        logger.info(
            f"budget_health_scored: budget_id={budget_id} user_id={self.user_id} "
            f"score={health.overall_score} level={health.health_level}"
        )
        return {
            "budget_id": snapshot.budget_id,
            "budget_name": snapshot.name,
            "metrics": asdict(metrics),
            "health": health.as_dict(),
        }

    def optimize(self, budget_id: int) -> dict[str, object]:
        snapshot = self._load(budget_id)
        history: list[BudgetSnapshot] = []
        for earlier in self.budgets.find(self.user_id):
            if earlier.id == snapshot.budget_id or earlier.end_date >= snapshot.start_date:
                continue
            self.budgets.recompute_spent(earlier)
            history.append(BudgetSnapshot.from_budget(earlier))
        self.session.commit()

        recommendations = recommend(snapshot, history, as_of=self.today)
        return {
            "budget_id": snapshot.budget_id,
            "budget_name": snapshot.name,
            "recommendations": [r.as_dict() for r in recommendations],
            "summary": summarize_recommendations(recommendations),
            "budgets_analyzed": len(history) + 1,
        }
