import logging
from datetime import date

from sqlalchemy.orm import Session, sessionmaker

from csv_utils import export_report, flatten_report, sanitize_csv_value
from database import Base, create_db_engine, create_session_factory
from models import Category, ReportStatus, ReportType, Transaction, TransactionType, User
from periods import DateWindow
from reports import ReportService, build_report_record, persist_report_safely
from stores import ReportStore

JANUARY = DateWindow("custom", date(2025, 1, 1), date(2025, 1, 31))


def make_factory(tmp_path) -> sessionmaker[Session]:
    engine = create_db_engine(f"sqlite:///{tmp_path / 'reports.db'}")
    Base.metadata.create_all(engine)
    return create_session_factory(engine)


def seed(factory: sessionmaker[Session]) -> None:
    with factory() as session:
        session.add_all([User(id=1, name="owner"), User(id=2, name="other")])
        session.flush()
        food = Category(user_id=1, name="Food", type=TransactionType.expense)
        session.add(food)
        session.flush()
        session.add(
            Transaction(
                user_id=1,
                date=date(2025, 1, 4),
                type=TransactionType.expense,
                amount_cents=12_345,
                category_id=food.id,
                description="Groceries",
            )
        )
        session.commit()


def generate(factory: sessionmaker[Session], report_type: str = "spending"):
    with factory() as session:
        return ReportService(session, 1, today=date(2025, 1, 31)).run(report_type, JANUARY)


def test_build_report_record_fills_metadata(tmp_path) -> None:
    factory = make_factory(tmp_path)
    seed(factory)
    generated = generate(factory)

    record = build_report_record(1, generated)

    assert len(record.id) == 36
    assert record.name == "Spending Report"
    assert record.period == "custom"
    assert record.start_date == date(2025, 1, 1)
    assert record.status == ReportStatus.completed
    assert record.meta["total_records"] == 1
    assert record.meta["categories"] == ["Food"]
    assert record.meta["options"]["include_charts"] is True
    assert "error" not in record.meta


def test_persist_report_and_read_back(tmp_path) -> None:
    factory = make_factory(tmp_path)
    seed(factory)
    record = build_report_record(1, generate(factory), name="January spending")

    report_id = persist_report_safely(factory, record)

    assert report_id == record.id
    with factory() as session:
        store = ReportStore(session)
        saved = store.find_by_id(1, report_id)
        assert saved is not None
        assert saved.name == "January spending"
        assert saved.type == ReportType.spending
        assert saved.data["summary"]["total_spending_cents"] == 12_345
        assert store.find_by_id(2, report_id) is None
        assert store.find_by_id(1, "missing") is None
        assert [r.id for r in store.find_recent(1)] == [report_id]
        assert store.find_recent(2) == []


def test_persist_failure_is_logged_not_raised(tmp_path, caplog) -> None:
    factory = make_factory(tmp_path)
    seed(factory)
    generated = generate(factory)
    broken = create_session_factory(create_db_engine(f"sqlite:///{tmp_path / 'empty.db'}"))
    record = build_report_record(
        1, generated, status=ReportStatus.failed, error="OperationalError"
    )

    with caplog.at_level(logging.ERROR, logger="reports"):
        assert persist_report_safely(broken, record) is None

    assert "report_persist_failed" in caplog.text
    assert record.meta["error"] == "OperationalError"


def test_csv_export_neutralizes_formulas() -> None:
    data = {
        "category_analysis": [
            {
                "category_name": "=HYPERLINK(\"http://x\")",
                "total_cents": 12_345,
                "percentage": 100.0,
                "transaction_count": 1,
            }
        ]
    }

    text = export_report(ReportType.spending, data)

    lines = text.splitlines()
    assert lines[0] == "Category,Amount,Percentage,Transactions"
    assert "\t=HYPERLINK" in lines[1]
    assert "123.45" in lines[1]


def test_sanitize_csv_value() -> None:
    assert sanitize_csv_value("") == ""
    assert sanitize_csv_value("  Food ") == "Food"
    assert sanitize_csv_value("+1") == "\t+1"
    assert sanitize_csv_value("cmd /c calc") == "\tcmd /c calc"


def test_flatten_cash_flow_and_net_worth() -> None:
    headers, rows = flatten_report(
        ReportType.cash_flow,
        {
            "monthly_cash_flow": [
                {
                    "period": "2025-01",
                    "income_cents": 100_000,
                    "expenses_cents": 85_000,
                    "net_cash_flow_cents": 15_000,
                    "savings_rate": 15.0,
                }
            ]
        },
    )
    assert headers[0] == "Month"
    assert rows == [["2025-01", "1000.00", "850.00", "150.00", "15.00"]]

    headers, rows = flatten_report(
        ReportType.net_worth,
        {"trends": [{"period": "2025-01", "net_worth_cents": -2_500}]},
    )
    assert headers == ["Month", "NetWorth"]
    assert rows == [["2025-01", "-25.00"]]
