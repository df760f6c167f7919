import csv
import re
from io import StringIO
from typing import Sequence

from models import ReportType


def sanitize_csv_value(value: str) -> str:
    """
    Sanitize CSV values to prevent formula injection by prefixing dangerous patterns with tab.
    """
    if not value or value.strip() == "":
        return ""

    value = value.strip()

    formula_triggers = ("=", "+", "-", "@", "\t", "\r")

    if value.startswith(formula_triggers):
        return "\t" + value

    dangerous_patterns = [
        r"^cmd\s*",
        r"^powershell\s*",
        r"^bash\s*",
        r"^sh\s*",
        r"^\.",
        r"^http[s]?://",
    ]

    for pattern in dangerous_patterns:
        if re.match(pattern, value, re.IGNORECASE):
            return "\t" + value

    return value


def format_cents(cents: object) -> str:
    return f"{int(cents or 0) / 100:.2f}"


def format_ratio(value: object) -> str:
    return f"{float(value or 0):.2f}"


def _category_rows(rows: Sequence[dict]) -> list[list[str]]:
    return [
        [
            sanitize_csv_value(str(row.get("category_name") or "")),
            format_cents(row.get("total_cents")),
            format_ratio(row.get("percentage")),
            str(row.get("transaction_count", 0)),
        ]
        for row in rows
    ]


def flatten_report(
    report_type: ReportType, data: dict
) -> tuple[list[str], list[list[str]]]:
    """Tabular view of a report: header row plus one row per breakdown item."""
    if report_type == ReportType.spending:
        return (
            ["Category", "Amount", "Percentage", "Transactions"],
            _category_rows(data.get("category_analysis") or []),
        )
    if report_type == ReportType.income:
        return (
            ["Source", "Amount", "Percentage", "Transactions"],
            _category_rows(data.get("source_analysis") or []),
        )
    if report_type == ReportType.cash_flow:
        return (
            ["Month", "Income", "Expenses", "NetCashFlow", "SavingsRate"],
            [
                [
                    str(m["period"]),
                    format_cents(m["income_cents"]),
                    format_cents(m["expenses_cents"]),
                    format_cents(m["net_cash_flow_cents"]),
                    format_ratio(m["savings_rate"]),
                ]
                for m in data.get("monthly_cash_flow") or []
            ],
        )
    if report_type == ReportType.budget_performance:
        rows = []
        for budget in data.get("budget_performance") or []:
            for allocation in budget["allocations"]:
                rows.append(
                    [
                        sanitize_csv_value(str(budget["budget_name"])),
                        sanitize_csv_value(str(allocation["category_name"])),
                        format_cents(allocation["allocated_cents"]),
                        format_cents(allocation["spent_cents"]),
                        format_cents(allocation["variance_cents"]),
                        format_ratio(allocation["percentage_used"]),
                        str(allocation["status"]),
                    ]
                )
        return (
            ["Budget", "Category", "Allocated", "Spent", "Variance", "PercentUsed", "Status"],
            rows,
        )
    if report_type == ReportType.goal_progress:
        return (
            ["Goal", "Target", "Current", "Progress", "TargetDate", "DaysRemaining", "Status"],
            [
                [
                    sanitize_csv_value(str(g["name"])),
                    format_cents(g["target_amount_cents"]),
                    format_cents(g["current_amount_cents"]),
                    format_ratio(g["progress"]),
                    str(g["target_date"]),
                    str(g["days_remaining"]),
                    str(g["timeline"]["status"]),
                ]
                for g in data.get("goals") or []
            ],
        )
    return (
        ["Month", "NetWorth"],
        [
            [str(p["period"]), format_cents(p["net_worth_cents"])]
            for p in data.get("trends") or []
        ],
    )


def export_report(report_type: ReportType, data: dict) -> str:
    headers, rows = flatten_report(report_type, data)
    output = StringIO()
    writer = csv.writer(output)
    writer.writerow(headers)
    writer.writerows(rows)
    return output.getvalue()
