from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError as PydanticValidationError

from errors import ValidationError
from models import ReportType

REPORT_TYPE_ALIASES = {
    "spending": ReportType.spending,
    "income": ReportType.income,
    "cash_flow": ReportType.cash_flow,
    "cashflow": ReportType.cash_flow,
    "cash-flow": ReportType.cash_flow,
    "budget_performance": ReportType.budget_performance,
    "budget-performance": ReportType.budget_performance,
    "budget": ReportType.budget_performance,
    "goal_progress": ReportType.goal_progress,
    "goal-progress": ReportType.goal_progress,
    "goals": ReportType.goal_progress,
    "net_worth": ReportType.net_worth,
    "net-worth": ReportType.net_worth,
    "networth": ReportType.net_worth,
}


class ReportOptions(BaseModel):
    model_config = ConfigDict(extra="ignore")

    include_charts: bool = True
    include_transaction_details: bool = False
    limit: Optional[int] = Field(None, ge=1, le=100)
    category_ids: Optional[list[int]] = None
    group_by: Literal["day", "week", "month", "year"] = "month"
    goal_id: Optional[int] = None
    include_completed: bool = True
    budget_ids: Optional[list[int]] = None
    projection_months: int = Field(6, ge=0, le=60)
    historical_months: int = Field(12, ge=1, le=120)


class ReportRequest(BaseModel):
    type: str
    name: Optional[str] = Field(None, max_length=200)
    period: Optional[str] = "month"
    start_date: Optional[str] = None
    end_date: Optional[str] = None
    format: Literal["json", "csv", "pdf"] = "json"
    options: ReportOptions = Field(default_factory=ReportOptions)


def parse_report_type(value: str) -> ReportType:
    report_type = REPORT_TYPE_ALIASES.get((value or "").strip().lower())
    if report_type is None:
        raise ValidationError(f"Unknown report type: {value!r}")
    return report_type


def build_options(raw: Optional[dict[str, object]] = None) -> ReportOptions:
    try:
        return ReportOptions.model_validate(raw or {})
    except PydanticValidationError as exc:
        raise ValidationError(str(exc)) from exc
