from datetime import date, datetime

import pytest
from sqlalchemy import create_engine, select
from sqlalchemy.orm import Session

from database import Base
from errors import AuthorizationError, NotFoundError, ValidationError
from models import (
    Budget,
    BudgetAllocation,
    BudgetPeriod,
    Category,
    Goal,
    GoalStatus,
    Transaction,
    TransactionType,
    User,
)
from periods import DateWindow
from reports import ReportService

JANUARY = DateWindow("custom", date(2025, 1, 1), date(2025, 1, 31))
TODAY = date(2025, 1, 31)


def make_session() -> Session:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    return Session(engine)


def seed_user(session: Session, user_id: int = 1) -> dict[str, Category]:
    session.add(User(id=user_id, name=f"user{user_id}"))
    session.flush()
    categories = {
        "salary": Category(user_id=user_id, name="Salary", type=TransactionType.income),
        "food": Category(
            user_id=user_id, name="Food", type=TransactionType.expense, color="#22c55e"
        ),
        "rent": Category(user_id=user_id, name="Rent", type=TransactionType.expense),
    }
    session.add_all(categories.values())
    session.flush()
    return categories


def add_txn(
    session: Session,
    day: date,
    type: TransactionType,
    amount_cents: int,
    category: Category | None = None,
    description: str | None = None,
    user_id: int = 1,
) -> Transaction:
    txn = Transaction(
        user_id=user_id,
        date=day,
        type=type,
        amount_cents=amount_cents,
        category_id=category.id if category else None,
        description=description,
    )
    session.add(txn)
    session.flush()
    return txn


def seed_january_scenario(session: Session) -> dict[str, Category]:
    categories = seed_user(session)
    add_txn(session, date(2025, 1, 1), TransactionType.income, 200_000, categories["salary"])
    add_txn(session, date(2025, 1, 10), TransactionType.expense, 50_000, categories["food"])
    add_txn(session, date(2025, 1, 20), TransactionType.expense, 160_000, categories["food"])
    session.add(
        Budget(
            user_id=1,
            name="January",
            total_amount_cents=100_000,
            period=BudgetPeriod.monthly,
            start_date=date(2025, 1, 1),
            end_date=date(2025, 1, 31),
            allocations=[
                BudgetAllocation(
                    category_id=categories["food"].id, allocated_cents=100_000
                )
            ],
        )
    )
    session.commit()
    return categories


def test_spending_groups_by_category_sorted_by_amount() -> None:
    with make_session() as session:
        categories = seed_user(session)
        add_txn(session, date(2025, 1, 3), TransactionType.expense, 30_000, categories["food"], "Market")
        add_txn(session, date(2025, 1, 5), TransactionType.expense, 90_000, categories["rent"], "Landlord")
        add_txn(session, date(2025, 1, 9), TransactionType.expense, 10_000, categories["food"], "Market")
        add_txn(session, date(2025, 1, 9), TransactionType.transfer, 55_000, None, "Savings")
        add_txn(session, date(2025, 2, 1), TransactionType.expense, 99_000, categories["food"])
        session.commit()

        data = ReportService(session, 1, today=TODAY).generate("spending", JANUARY)

        assert data["summary"]["total_spending_cents"] == 130_000
        assert data["summary"]["transaction_count"] == 3
        names = [row["category_name"] for row in data["category_analysis"]]
        assert names == ["Rent", "Food"]
        food = data["category_analysis"][1]
        assert food["total_cents"] == 40_000
        assert food["transaction_count"] == 2
        assert food["category_color"] == "#22c55e"
        assert food["min_cents"] == 10_000
        assert food["max_cents"] == 30_000
        assert data["trends"] == [{"period": "2025-01", "amount_cents": 130_000}]
        assert data["top_merchants"][0] == {
            "description": "Landlord",
            "total_cents": 90_000,
            "transaction_count": 1,
        }
        assert "transactions" not in data


def test_spending_flags_control_payload_size() -> None:
    with make_session() as session:
        categories = seed_user(session)
        add_txn(session, date(2025, 1, 3), TransactionType.expense, 30_000, categories["food"])
        add_txn(session, date(2025, 1, 5), TransactionType.expense, 90_000, categories["rent"])
        session.commit()

        service = ReportService(session, 1, today=TODAY)
        data = service.generate(
            "spending",
            JANUARY,
            {"include_charts": False, "include_transaction_details": True, "limit": 1},
        )

        assert "trends" not in data
        assert len(data["transactions"]) == 2
        assert len(data["category_analysis"]) == 1
        assert data["summary"]["categories_count"] == 2


def test_spending_compares_with_previous_window() -> None:
    with make_session() as session:
        categories = seed_user(session)
        add_txn(session, date(2024, 12, 15), TransactionType.expense, 50_000, categories["food"])
        add_txn(session, date(2025, 1, 15), TransactionType.expense, 75_000, categories["food"])
        session.commit()

        data = ReportService(session, 1, today=TODAY).generate("spending", JANUARY)

        comparison = data["comparison"]
        assert comparison["previous_cents"] == 50_000
        assert comparison["change_cents"] == 25_000
        assert comparison["percentage_change"] == 50.0
        assert comparison["trend"] == "increasing"


def test_income_growth_and_diversification() -> None:
    with make_session() as session:
        categories = seed_user(session)
        freelance = Category(user_id=1, name="Freelance", type=TransactionType.income)
        session.add(freelance)
        session.flush()
        add_txn(session, date(2025, 1, 1), TransactionType.income, 100_000, categories["salary"], "ACME payroll")
        add_txn(session, date(2025, 2, 1), TransactionType.income, 100_000, categories["salary"], "ACME payroll")
        add_txn(session, date(2025, 2, 10), TransactionType.income, 20_000, freelance, "Client")
        session.commit()

        window = DateWindow("custom", date(2025, 1, 1), date(2025, 2, 28))
        data = ReportService(session, 1, today=TODAY).generate("income", window)

        assert data["summary"]["total_income_cents"] == 220_000
        assert data["summary"]["source_count"] == 2
        assert data["summary"]["average_monthly_income_cents"] == 110_000
        assert data["analysis"]["growth_rate"] == pytest.approx(20.0)
        salary_share = 200_000 / 220_000
        freelance_share = 20_000 / 220_000
        expected = 1 - (salary_share**2 + freelance_share**2)
        assert data["analysis"]["diversification_score"] == pytest.approx(expected)
        assert data["recurring_income"][0]["source"] == "ACME payroll"
        assert data["recurring_income"][0]["frequency"] == 2


def test_income_with_single_source_has_zero_diversification() -> None:
    with make_session() as session:
        categories = seed_user(session)
        add_txn(session, date(2025, 1, 1), TransactionType.income, 100_000, categories["salary"])
        session.commit()

        data = ReportService(session, 1, today=TODAY).generate("income", JANUARY)

        assert data["analysis"]["diversification_score"] == 0.0
        assert data["analysis"]["growth_rate"] == 0.0


def test_cash_flow_savings_rate_handles_zero_and_negative() -> None:
    with make_session() as session:
        categories = seed_user(session)
        add_txn(session, date(2025, 1, 2), TransactionType.income, 100_000, categories["salary"])
        add_txn(session, date(2025, 1, 5), TransactionType.expense, 85_000, categories["food"])
        add_txn(session, date(2025, 2, 5), TransactionType.expense, 10_000, categories["food"])
        add_txn(session, date(2025, 3, 1), TransactionType.income, 10_000, categories["salary"])
        add_txn(session, date(2025, 3, 2), TransactionType.expense, 20_000, categories["rent"])
        session.commit()

        window = DateWindow("custom", date(2025, 1, 1), date(2025, 3, 31))
        data = ReportService(session, 1, today=date(2025, 3, 31)).generate(
            "cash_flow", window
        )

        months = {m["period"]: m for m in data["monthly_cash_flow"]}
        assert months["2025-01"]["savings_rate"] == 15.0
        assert months["2025-02"]["savings_rate"] == 0.0
        assert months["2025-02"]["net_cash_flow_cents"] == -10_000
        assert months["2025-03"]["savings_rate"] == -100.0
        assert data["summary"]["net_cash_flow_cents"] == -5_000
        assert data["summary"]["best_month"]["period"] == "2025-01"
        assert data["summary"]["worst_month"]["period"] in {"2025-02", "2025-03"}
        assert data["patterns"]["trend"] == "decreasing"
        assert len(data["projections"]) == 6
        assert data["running_balance"]["points"][-1]["balance_cents"] == -5_000


def test_cash_flow_trend_is_stable_within_tolerance() -> None:
    with make_session() as session:
        categories = seed_user(session)
        add_txn(session, date(2025, 1, 2), TransactionType.income, 100_000, categories["salary"])
        add_txn(session, date(2025, 2, 2), TransactionType.income, 100_050, categories["salary"])
        session.commit()

        window = DateWindow("custom", date(2025, 1, 1), date(2025, 2, 28))
        data = ReportService(session, 1, today=TODAY).generate("cash_flow", window)

        assert data["patterns"]["trend"] == "stable"


def test_budget_performance_january_scenario() -> None:
    with make_session() as session:
        seed_january_scenario(session)

        data = ReportService(session, 1, today=TODAY).generate(
            "budget_performance", JANUARY
        )

        summary = data["summary"]
        assert summary["total_spent_cents"] == 210_000
        assert summary["categories_over_budget"] == 1
        assert summary["overall_performance_percentage"] == 210.0
        assert summary["total_variance_cents"] == -110_000
        allocation = data["budget_performance"][0]["allocations"][0]
        assert allocation["spent_cents"] == 210_000
        assert allocation["status"] == "over-budget"


def test_budget_recompute_is_idempotent_and_uses_budget_dates() -> None:
    with make_session() as session:
        categories = seed_january_scenario(session)
        add_txn(session, date(2025, 2, 2), TransactionType.expense, 5_000, categories["food"])
        session.commit()

        late_january = DateWindow("custom", date(2025, 1, 25), date(2025, 2, 5))
        service = ReportService(session, 1, today=TODAY)
        first = service.generate("budget_performance", late_january)
        second = service.generate("budget_performance", late_january)

        assert first["summary"]["total_spent_cents"] == 210_000
        assert second["summary"] == first["summary"]
        stored = session.scalars(select(BudgetAllocation)).one()
        assert stored.spent_cents == 210_000


def test_budget_status_thresholds() -> None:
    with make_session() as session:
        categories = seed_user(session)
        add_txn(session, date(2025, 1, 3), TransactionType.expense, 75_000, categories["food"])
        add_txn(session, date(2025, 1, 3), TransactionType.expense, 90_000, categories["rent"])
        session.add(
            Budget(
                user_id=1,
                name="January",
                total_amount_cents=200_000,
                start_date=date(2025, 1, 1),
                end_date=date(2025, 1, 31),
                allocations=[
                    BudgetAllocation(category_id=categories["food"].id, allocated_cents=100_000),
                    BudgetAllocation(category_id=categories["rent"].id, allocated_cents=100_000),
                ],
            )
        )
        session.commit()

        data = ReportService(session, 1, today=TODAY).generate("budget", JANUARY)

        statuses = {
            a["category_name"]: a["status"]
            for a in data["budget_performance"][0]["allocations"]
        }
        assert statuses == {"Food": "on-track", "Rent": "warning"}
        assert data["summary"]["categories_over_budget"] == 0


def test_goal_progress_reports_days_remaining_and_average() -> None:
    with make_session() as session:
        seed_user(session)
        session.add_all(
            [
                Goal(
                    user_id=1,
                    name="Vacation",
                    target_amount_cents=100_000,
                    current_amount_cents=95_000,
                    target_date=date(2025, 2, 10),
                    created_at=datetime(2024, 1, 1),
                ),
                Goal(
                    user_id=1,
                    name="Car",
                    target_amount_cents=200_000,
                    current_amount_cents=50_000,
                    target_date=date(2025, 1, 1),
                    created_at=datetime(2024, 1, 1),
                ),
            ]
        )
        session.commit()

        data = ReportService(session, 1, today=TODAY).generate("goals", JANUARY)

        goals = {g["name"]: g for g in data["goals"]}
        assert goals["Vacation"]["progress"] == 95.0
        assert goals["Vacation"]["days_remaining"] == 10
        assert goals["Car"]["days_remaining"] == -30
        assert goals["Car"]["timeline"]["status"] == "behind"
        assert data["summary"]["average_progress"] == pytest.approx(60.0)
        assert data["summary"]["behind_goals"] == 1
        types = {r["type"] for r in data["recommendations"]}
        assert types == {"increase-contribution", "near-completion"}

        assert goals["Vacation"]["prediction"] == {
            "likelihood": "low",
            "estimated_completion_date": "2025-02-21",
            "on_target": False,
        }
        assert goals["Car"]["prediction"]["likelihood"] == "low"


def test_goal_prediction_from_average_daily_progress() -> None:
    with make_session() as session:
        seed_user(session)
        session.add_all(
            [
                Goal(
                    user_id=1,
                    name="House",
                    target_amount_cents=100_000,
                    current_amount_cents=60_000,
                    target_date=date(2026, 1, 31),
                    created_at=datetime(2024, 1, 31),
                ),
                Goal(
                    user_id=1,
                    name="Laptop",
                    target_amount_cents=100_000,
                    current_amount_cents=60_000,
                    target_date=date(2025, 10, 20),
                    created_at=datetime(2024, 1, 31),
                ),
                Goal(
                    user_id=1,
                    name="Boat",
                    target_amount_cents=100_000,
                    current_amount_cents=0,
                    target_date=date(2026, 1, 31),
                    created_at=datetime(2024, 1, 31),
                ),
            ]
        )
        session.commit()

        data = ReportService(session, 1, today=TODAY).generate("goals", JANUARY)

        goals = {g["name"]: g["prediction"] for g in data["goals"]}
        assert goals["House"] == {
            "likelihood": "high",
            "estimated_completion_date": "2025-10-02",
            "on_target": True,
        }
        assert goals["Laptop"]["likelihood"] == "moderate"
        assert goals["Laptop"]["on_target"] is True
        assert goals["Boat"] == {
            "likelihood": "unknown",
            "estimated_completion_date": None,
            "on_target": None,
        }

def test_goal_progress_without_goals_averages_zero() -> None:
    with make_session() as session:
        seed_user(session)
        session.commit()

        data = ReportService(session, 1, today=TODAY).generate("goal_progress", JANUARY)

        assert data["summary"]["average_progress"] == 0.0
        assert data["goals"] == []


def test_goal_filter_and_completed_exclusion() -> None:
    with make_session() as session:
        seed_user(session)
        done = Goal(
            user_id=1,
            name="Laptop",
            target_amount_cents=100_000,
            current_amount_cents=100_000,
            target_date=date(2025, 6, 1),
            status=GoalStatus.completed,
        )
        open_goal = Goal(
            user_id=1,
            name="House",
            target_amount_cents=1_000_000,
            current_amount_cents=10_000,
            target_date=date(2027, 1, 1),
        )
        session.add_all([done, open_goal])
        session.commit()

        service = ReportService(session, 1, today=TODAY)
        active_only = service.generate("goal_progress", JANUARY, {"include_completed": False})
        assert [g["name"] for g in active_only["goals"]] == ["House"]

        single = service.generate("goal_progress", JANUARY, {"goal_id": done.id})
        assert [g["name"] for g in single["goals"]] == ["Laptop"]

        with pytest.raises(NotFoundError):
            service.generate("goal_progress", JANUARY, {"goal_id": 9999})


def test_goal_owned_by_someone_else_looks_missing() -> None:
    with make_session() as session:
        seed_user(session, 1)
        seed_user(session, 2)
        theirs = Goal(
            user_id=2,
            name="Boat",
            target_amount_cents=100_000,
            target_date=date(2026, 1, 1),
        )
        session.add(theirs)
        session.commit()

        with pytest.raises(AuthorizationError) as excinfo:
            ReportService(session, 1, today=TODAY).generate(
                "goal_progress", JANUARY, {"goal_id": theirs.id}
            )
        assert str(excinfo.value) == f"Goal {theirs.id} not found"


def test_net_worth_balance_trend_and_projection() -> None:
    with make_session() as session:
        seed_january_scenario(session)

        data = ReportService(session, 1, today=TODAY).generate(
            "net_worth", JANUARY, {"historical_months": 2, "projection_months": 2}
        )

        current = data["current"]
        assert current["net_worth_cents"] == -10_000
        assert current["total_assets_cents"] == 0
        assert current["total_liabilities_cents"] == 10_000
        assert data["trends"] == [
            {"period": "2024-12", "net_worth_cents": 0},
            {"period": "2025-01", "net_worth_cents": -10_000},
        ]
        assert data["trend"]["trend"] == "decreasing"
        assert data["trend"]["monthly_change_cents"] == -10_000
        assert data["projections"] == [
            {"period": "2025-02", "projected_net_worth_cents": -20_000},
            {"period": "2025-03", "projected_net_worth_cents": -30_000},
        ]


def test_transfers_do_not_move_net_worth() -> None:
    with make_session() as session:
        categories = seed_user(session)
        add_txn(session, date(2025, 1, 2), TransactionType.income, 50_000, categories["salary"])
        add_txn(session, date(2025, 1, 3), TransactionType.transfer, 40_000)
        session.commit()

        data = ReportService(session, 1, today=TODAY).generate("net_worth", JANUARY)

        assert data["current"]["net_worth_cents"] == 50_000


def test_unknown_user_and_invalid_inputs() -> None:
    with make_session() as session:
        seed_user(session)
        session.commit()

        with pytest.raises(NotFoundError):
            ReportService(session, 42, today=TODAY).generate("spending", JANUARY)
        service = ReportService(session, 1, today=TODAY)
        with pytest.raises(ValidationError):
            service.generate("profit", JANUARY)
        with pytest.raises(ValidationError):
            service.generate("spending", JANUARY, {"group_by": "hour"})
        with pytest.raises(ValidationError):
            service.generate("spending", JANUARY, {"limit": 0})


def test_category_filter_rejects_foreign_categories() -> None:
    with make_session() as session:
        seed_user(session, 1)
        other = seed_user(session, 2)
        session.commit()

        with pytest.raises(NotFoundError):
            ReportService(session, 1, today=TODAY).generate(
                "spending", JANUARY, {"category_ids": [other["food"].id]}
            )


def test_run_reports_record_count_and_timing() -> None:
    with make_session() as session:
        seed_january_scenario(session)

        generated = ReportService(session, 1, today=TODAY).run("spending", JANUARY)

        assert generated.total_records == 2
        assert generated.generation_time_ms >= 0
        assert generated.data["summary"]["total_spending_cents"] == 210_000
