import pytest

from insights import (
    Insight,
    budget_insights,
    generate_insights,
    goal_insights,
    income_insights,
    savings_insights,
    spending_insights,
    summarize_insights,
)


def spending_report(latest: int, prior: int) -> dict:
    return {
        "summary": {"total_spending_cents": latest},
        "category_analysis": [],
        "trends": [
            {"period": "2025-01", "amount_cents": prior},
            {"period": "2025-02", "amount_cents": latest},
        ],
    }


def titles(insights: list[Insight]) -> list[str]:
    return [i.title for i in insights]


def test_spending_increase_is_strictly_above_threshold() -> None:
    assert spending_insights(spending_report(12_000, 10_000)) == []
    flagged = spending_insights(spending_report(12_001, 10_000))
    assert titles(flagged) == ["Spending Increase Alert"]
    assert flagged[0].type == "warning"
    assert "20.0%" in flagged[0].message


def test_spending_decrease_is_strictly_below_threshold() -> None:
    assert spending_insights(spending_report(9_000, 10_000)) == []
    praised = spending_insights(spending_report(8_999, 10_000))
    assert titles(praised) == ["Great Spending Control"]
    assert praised[0].type == "positive"


def test_spending_change_needs_prior_spending() -> None:
    assert spending_insights(spending_report(5_000, 0)) == []


def test_category_concentration_above_forty_percent() -> None:
    report = {
        "summary": {"total_spending_cents": 10_000},
        "category_analysis": [{"category_name": "Rent", "total_cents": 4_000}],
    }
    assert spending_insights(report) == []

    report["category_analysis"][0]["total_cents"] = 4_100
    flagged = spending_insights(report)
    assert titles(flagged) == ["Category Concentration"]
    assert flagged[0].type == "info"
    assert "Rent" in flagged[0].message


def test_income_growth_and_diversification() -> None:
    report = {
        "summary": {"total_income_cents": 100_000},
        "analysis": {"growth_rate": 10.0, "diversification_score": 0.3},
    }
    assert income_insights(report) == []

    report["analysis"] = {"growth_rate": 10.5, "diversification_score": 0.29}
    assert titles(income_insights(report)) == ["Income Growth", "Income Concentration Risk"]


def test_no_income_skips_diversification_warning() -> None:
    report = {
        "summary": {"total_income_cents": 0},
        "analysis": {"growth_rate": 0.0, "diversification_score": 0.0},
    }
    assert income_insights(report) == []


@pytest.mark.parametrize(
    "rate, expected",
    [
        (9.99, ["Low Savings Rate"]),
        (10.0, []),
        (15.0, []),
        (19.99, []),
        (20.0, ["Excellent Savings Rate"]),
        (-40.0, ["Low Savings Rate"]),
    ],
)
def test_savings_rate_thresholds(rate: float, expected: list[str]) -> None:
    report = {
        "summary": {"average_savings_rate": rate},
        "monthly_cash_flow": [{"period": "2025-01"}],
    }
    assert titles(savings_insights(report)) == expected


def test_savings_without_months_produces_nothing() -> None:
    report = {"summary": {"average_savings_rate": 0.0}, "monthly_cash_flow": []}
    assert savings_insights(report) == []


def test_budget_overruns_and_discipline() -> None:
    report = {"summary": {"categories_over_budget": 0, "overall_performance_percentage": 85}}
    assert budget_insights(report) == []

    report = {"summary": {"categories_over_budget": 2, "overall_performance_percentage": 85.5}}
    result = budget_insights(report)
    assert titles(result) == ["Budget Overruns", "Budget Discipline"]
    assert result[0].message.startswith("2 categories")


def test_goal_risk_and_within_reach() -> None:
    report = {
        "goals": [
            {"days_remaining": 30, "progress": 50.0},
            {"days_remaining": -5, "progress": 10.0},
            {"days_remaining": 10, "progress": 90.0},
            {"days_remaining": 0, "progress": 95.0},
            {"days_remaining": 200, "progress": 20.0},
        ]
    }

    result = goal_insights(report)

    assert titles(result) == ["Goals at Risk", "Goals Within Reach"]
    assert result[0].message.startswith("2 goals")
    assert result[1].message.startswith("1 goals")


def test_goal_at_ninety_days_is_not_at_risk() -> None:
    report = {"goals": [{"days_remaining": 90, "progress": 10.0}]}
    assert goal_insights(report) == []


def test_generate_insights_maps_reports_to_sections() -> None:
    reports = {
        "spending": spending_report(13_000, 10_000),
        "income": {
            "summary": {"total_income_cents": 100_000},
            "analysis": {"growth_rate": 0.0, "diversification_score": 0.8},
        },
        "cash_flow": {
            "summary": {"average_savings_rate": 25.0},
            "monthly_cash_flow": [{"period": "2025-01"}],
        },
        "budget_performance": {
            "summary": {"categories_over_budget": 1, "overall_performance_percentage": 50}
        },
        "goal_progress": {"goals": []},
    }

    result = generate_insights(reports)

    assert set(result) == {"spending", "income", "savings", "budget", "goals"}
    assert titles(result["spending"]) == ["Spending Increase Alert"]
    assert result["income"] == []
    assert titles(result["savings"]) == ["Excellent Savings Rate"]
    assert titles(result["budget"]) == ["Budget Overruns"]
    assert result["goals"] == []
    assert summarize_insights(result) == {
        "total_insights": 3,
        "positive_insights": 1,
        "warning_insights": 2,
        "info_insights": 0,
    }


@pytest.mark.parametrize(
    "reports",
    [
        None,
        {},
        {"spending": "not a report", "income": [], "cash_flow": 3},
        {"spending": {"trends": [1, 2], "category_analysis": "x"}},
        {"goal_progress": {"goals": ["a", None, {"progress": "high"}]}},
        {"budget_performance": {"summary": {"categories_over_budget": True}}},
    ],
)
def test_malformed_reports_yield_empty_sections(reports) -> None:
    result = generate_insights(reports)
    assert set(result) == {"spending", "income", "savings", "budget", "goals"}
    assert all(items == [] for items in result.values())


def test_nearly_funded_goal_with_days_left_is_within_reach() -> None:
    result = goal_insights({"goals": [{"days_remaining": 10, "progress": 95.0}]})
    assert titles(result) == ["Goals Within Reach"]
