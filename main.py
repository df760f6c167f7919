import logging
from datetime import datetime
from pathlib import Path
from typing import Optional

from fastapi import BackgroundTasks, Depends, FastAPI, Header, HTTPException, Request
from fastapi.responses import JSONResponse, StreamingResponse
from fastapi.templating import Jinja2Templates
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from config import get_settings
from csv_utils import export_report, flatten_report
from dashboard import DashboardComposer
from database import SessionLocal
from errors import AnalyticsError, NotFoundError, ValidationError
from health import BudgetHealthService
from insights import InsightService
from models import Report, ReportStatus
from periods import DateWindow, resolve_window
from reports import (
    GeneratedReport,
    ReportService,
    build_report_record,
    persist_report_safely,
)
from schemas import ReportRequest, build_options, parse_report_type
from stores import ReportStore

settings = get_settings()
logging.basicConfig(level=settings.log_level)
logger = logging.getLogger(__name__)

app = FastAPI(title="Finance Analytics")
templates = Jinja2Templates(directory=str(Path(__file__).resolve().parent / "templates"))

OPTION_FIELDS = (
    "include_charts",
    "include_transaction_details",
    "limit",
    "group_by",
    "goal_id",
    "include_completed",
    "projection_months",
    "historical_months",
)
OPTION_LIST_FIELDS = ("category_ids", "budget_ids")


def format_currency(cents: int) -> str:
    return f"{cents / 100:,.2f}"


templates.env.filters["currency"] = format_currency


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_session_factory() -> sessionmaker[Session]:
    return SessionLocal


def current_user_id(x_user_id: Optional[int] = Header(None)) -> int:
    return x_user_id or settings.default_user_id


def http_error(exc: Exception, action: str) -> HTTPException:
    if isinstance(exc, ValidationError):
        return HTTPException(status_code=400, detail=str(exc))
    if isinstance(exc, NotFoundError):
        return HTTPException(status_code=404, detail=str(exc))
    logger.exception(f"{action}_failed")
    return HTTPException(status_code=500, detail="Internal server error")


def window_from_request(request: Request) -> DateWindow:
    params = request.query_params
    try:
        return resolve_window(params.get("period"), params.get("start"), params.get("end"))
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


def options_from_request(request: Request) -> dict[str, object]:
    params = request.query_params
    raw: dict[str, object] = {}
    for name in OPTION_FIELDS:
        if name in params:
            raw[name] = params[name]
    for name in OPTION_LIST_FIELDS:
        values = params.getlist(name)
        if values:
            raw[name] = values
    return raw


def report_summary(report: Report) -> dict[str, object]:
    return {
        "id": report.id,
        "name": report.name,
        "type": report.type.value,
        "period": report.period,
        "start_date": report.start_date.isoformat() if report.start_date else None,
        "end_date": report.end_date.isoformat() if report.end_date else None,
        "status": report.status.value,
        "format": report.format,
        "metadata": report.meta,
        "created_at": report.created_at.isoformat(),
    }


@app.get("/health")
def health_check():
    return {"status": "ok"}


@app.get("/api/reports/dashboard")
async def api_dashboard(
    request: Request,
    user_id: int = Depends(current_user_id),
    session_factory: sessionmaker[Session] = Depends(get_session_factory),
):
    params = request.query_params
    composer = DashboardComposer(session_factory)
    try:
        return await composer.compose(
            user_id,
            params.get("period"),
            start=params.get("start"),
            end=params.get("end"),
        )
    except (AnalyticsError, SQLAlchemyError) as exc:
        raise http_error(exc, "dashboard") from exc


@app.get("/api/reports/insights")
async def api_insights(
    request: Request,
    user_id: int = Depends(current_user_id),
    session_factory: sessionmaker[Session] = Depends(get_session_factory),
):
    params = request.query_params
    window = None
    if params.get("period") or params.get("start") or params.get("end"):
        window = window_from_request(request)
    try:
        return await InsightService(session_factory).generate_for_user(user_id, window)
    except (AnalyticsError, SQLAlchemyError) as exc:
        raise http_error(exc, "insights") from exc


@app.get("/api/reports")
def api_recent_reports(
    request: Request,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    raw_limit = request.query_params.get("limit", settings.recent_reports_limit)
    try:
        limit = int(raw_limit)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=f"Invalid limit: {raw_limit!r}") from exc
    limit = min(max(limit, 1), 100)
    reports = ReportStore(db).find_recent(user_id, limit)
    return {"items": [report_summary(r) for r in reports]}


@app.post("/api/reports")
def api_create_report(
    payload: ReportRequest,
    background_tasks: BackgroundTasks,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
    session_factory: sessionmaker[Session] = Depends(get_session_factory),
):
    try:
        report_type = parse_report_type(payload.type)
        window = resolve_window(payload.period, payload.start_date, payload.end_date)
        generated = ReportService(db, user_id).run(report_type, window, payload.options)
    except AnalyticsError as exc:
        raise http_error(exc, "report_generation") from exc
    except SQLAlchemyError as exc:
        failed = GeneratedReport(
            type=report_type,
            window=window,
            data={},
            total_records=0,
            generation_time_ms=0,
            options=payload.options,
        )
        # background tasks do not run for error responses
        persist_report_safely(
            session_factory,
            build_report_record(
                user_id,
                failed,
                name=payload.name,
                format=payload.format,
                status=ReportStatus.failed,
                error=type(exc).__name__,
            ),
        )
        raise http_error(exc, "report_generation") from exc

    record = build_report_record(
        user_id,
        generated,
        name=payload.name,
        format=payload.format,
    )
    background_tasks.add_task(persist_report_safely, session_factory, record)
    return {
        "id": record.id,
        "name": record.name,
        "type": report_type.value,
        "status": record.status.value,
        "period": window.as_dict(),
        "metadata": record.meta,
        "data": generated.data,
    }


@app.get("/api/reports/saved/{report_id}")
def api_saved_report(
    report_id: str,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    report = ReportStore(db).find_by_id(user_id, report_id)
    if report is None:
        raise HTTPException(status_code=404, detail=f"Report {report_id} not found")
    return {**report_summary(report), "data": report.data}


@app.get("/api/reports/saved/{report_id}/export")
def api_export_report(
    report_id: str,
    request: Request,
    format: str = "json",
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    report = ReportStore(db).find_by_id(user_id, report_id)
    if report is None:
        raise HTTPException(status_code=404, detail=f"Report {report_id} not found")

    filename = f"{report.type.value}-report-{report.created_at.date().isoformat()}"
    if format == "json":
        return JSONResponse(
            {**report_summary(report), "data": report.data},
            headers={"Content-Disposition": f'attachment; filename="{filename}.json"'},
        )
    if format == "csv":
        csv_text = export_report(report.type, report.data)
        return StreamingResponse(
            iter([csv_text]),
            media_type="text/csv",
            headers={"Content-Disposition": f'attachment; filename="{filename}.csv"'},
        )
    if format != "pdf":
        raise HTTPException(status_code=400, detail=f"Unsupported export format: {format}")

    try:
        from weasyprint import HTML
    except Exception as exc:
        raise HTTPException(
            status_code=500,
            detail="PDF export requires WeasyPrint system dependencies; install them for your OS and retry.",
        ) from exc

    try:
        headers, rows = flatten_report(report.type, report.data)
        html = templates.env.get_template("report.html").render(
            report=report,
            summary=report.data.get("summary") or report.data.get("current") or {},
            headers=headers,
            rows=rows,
            meta=report.meta,
            generated_at=datetime.now(),
        )
        start_time = datetime.now()
        pdf_bytes = HTML(string=html, base_url=str(request.base_url)).write_pdf()
        pdf_duration = (datetime.now() - start_time).total_seconds()
        logger.info(
            f"report_exported: id={report.id} format=pdf "
            f"pdf_size_bytes={len(pdf_bytes)} pdf_duration={pdf_duration:.2f}s"
        )
        return StreamingResponse(
            iter([pdf_bytes]),
            media_type="application/pdf",
            headers={
                "Content-Disposition": f'attachment; filename="{filename}.pdf"',
                "Content-Length": str(len(pdf_bytes)),
            },
        )
    except Exception as exc:
        logger.exception("Error generating PDF report")
        raise HTTPException(status_code=500, detail="PDF generation failed") from exc


@app.get("/api/reports/{report_type}")
def api_report(
    report_type: str,
    request: Request,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    window = window_from_request(request)
    try:
        options = build_options(options_from_request(request))
        return ReportService(db, user_id).generate(report_type, window, options)
    except (AnalyticsError, SQLAlchemyError) as exc:
        raise http_error(exc, "report_generation") from exc


@app.get("/api/budgets/{budget_id}/health")
def api_budget_health(
    budget_id: int,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    try:
        return BudgetHealthService(db, user_id).score_budget_health(budget_id)
    except (AnalyticsError, SQLAlchemyError) as exc:
        raise http_error(exc, "budget_health") from exc


@app.get("/api/budgets/{budget_id}/recommendations")
def api_budget_recommendations(
    budget_id: int,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    try:
        return BudgetHealthService(db, user_id).optimize(budget_id)
    except (AnalyticsError, SQLAlchemyError) as exc:
        raise http_error(exc, "budget_optimization") from exc
