import logging
from datetime import date
from typing import Optional

from fastapi import Body, Depends, FastAPI, HTTPException, Request
from pydantic import ValidationError
from sqlalchemy.orm import Session
from starlette.middleware.sessions import SessionMiddleware

from config import get_settings
from context import UserContext
from csrf import generate_csrf_token, validate_csrf_token
from database import SessionLocal
from models import Account, AvailableBudget, Budget, BudgetLimit, Tag, canonical_decimal
from periods import ChartGranularity, Period, resolve_period
from reports import BudgetReportService, TagReportService
from scheduler import SchedulerManager
from schemas import (
    AccountIn,
    AvailableBudgetIn,
    BudgetIn,
    BudgetLimitIn,
    BudgetUpdateIn,
    JournalIn,
    TagIn,
)
from services import (
    AccountService,
    BudgetService,
    CategoryService,
    CurrencyService,
    JournalService,
    TagService,
    first_validation_error,
)

app = FastAPI(title="Ledger Reports")
app.add_middleware(
    SessionMiddleware,
    secret_key=get_settings().secret_key,
    session_cookie="ledger_session",
)

FLASH_SESSION_KEY = "_flashes"


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_context(request: Request) -> UserContext:
    # Authentication lives in front of this service; default to the single user.
    return UserContext(user_id=int(request.session.get("user_id", 1)))


def require_csrf(request: Request, context: UserContext = Depends(get_context)) -> None:
    token = request.headers.get("X-CSRF-Token", "")
    if not validate_csrf_token(token, context.user_id):
        raise HTTPException(status_code=400, detail="Invalid CSRF token")


scheduler_manager = SchedulerManager()


@app.on_event("startup")
def startup_event():
    scheduler_manager.start()


@app.on_event("shutdown")
def shutdown_event():
    scheduler_manager.stop()


def respond(request: Request, context: UserContext, data: object) -> dict[str, object]:
    messages = [m.as_dict() for m in context.messages]
    if messages:
        stored = list(request.session.get(FLASH_SESSION_KEY, []))
        request.session[FLASH_SESSION_KEY] = stored + messages
    return {"data": data, "messages": messages}


def period_from_request(request: Request) -> Period:
    start = request.query_params.get("start")
    end = request.query_params.get("end")
    period_slug = request.query_params.get("period")
    if not period_slug and start and end:
        period_slug = "custom"
    try:
        return resolve_period(period_slug, start, end)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


def granularity_from_request(request: Request) -> Optional[ChartGranularity]:
    value = request.query_params.get("granularity")
    if not value:
        return None
    try:
        return ChartGranularity(value)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail="Invalid granularity") from exc


def ids_from_request(request: Request, name: str) -> list[int]:
    raw = request.query_params.get(name, "")
    try:
        return [int(part) for part in raw.split(",") if part.strip()]
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=f"Invalid {name}") from exc


def accounts_from_request(
    request: Request, db: Session, context: UserContext
) -> list[Account]:
    account_ids = ids_from_request(request, "accounts")
    accounts = AccountService(db, context).get_many(account_ids)
    # an empty selection reports on every asset account, so unknown ids must not shrink to it
    if len(accounts) != len(set(account_ids)):
        raise HTTPException(status_code=404, detail="Account not found")
    return accounts


def flag_from_request(request: Request, name: str) -> bool:
    return request.query_params.get(name, "0") in ("1", "true", "yes")


def budget_out(budget: Budget) -> dict[str, object]:
    return {"id": budget.id, "name": budget.name, "active": budget.active}


def limit_out(limit: BudgetLimit) -> Optional[dict[str, object]]:
    if limit.id is None:
        return None
    return {
        "id": limit.id,
        "budget_id": limit.budget_id,
        "start_date": limit.start_date.isoformat(),
        "end_date": limit.end_date.isoformat(),
        "amount": canonical_decimal(limit.amount),
        "repeat_freq": limit.repeat_freq.value if limit.repeat_freq else None,
        "repeats": limit.repeats,
    }


def tag_out(tag: Tag) -> dict[str, object]:
    return {
        "id": tag.id,
        "tag": tag.tag,
        "date": tag.date.isoformat() if tag.date else None,
        "description": tag.description,
    }


def available_out(available: AvailableBudget) -> dict[str, object]:
    return {
        "id": available.id,
        "currency": available.transaction_currency.code,
        "start_date": available.start_date.isoformat(),
        "end_date": available.end_date.isoformat(),
        "amount": canonical_decimal(available.amount),
    }


@app.get("/api/csrf-token")
def api_csrf_token(context: UserContext = Depends(get_context)):
    return {"token": generate_csrf_token(context.user_id)}


@app.get("/api/flashes")
def api_flashes(request: Request):
    return {"messages": request.session.pop(FLASH_SESSION_KEY, [])}


# -- charts -----------------------------------------------------------------


def _tag_report_args(request: Request, db: Session, context: UserContext):
    period = period_from_request(request)
    accounts = accounts_from_request(request, db, context)
    tags = TagService(db, context).get_many(ids_from_request(request, "tags"))
    return accounts, tags, period.start, period.end


@app.get("/api/chart/tag-report/main")
def chart_tag_report_main(
    request: Request,
    db: Session = Depends(get_db),
    context: UserContext = Depends(get_context),
):
    accounts, tags, start, end = _tag_report_args(request, db, context)
    return TagReportService(db, context).main_chart(
        accounts, tags, start, end, granularity_from_request(request)
    )


@app.get("/api/chart/tag-report/account-expense")
def chart_tag_report_account_expense(
    request: Request,
    db: Session = Depends(get_db),
    context: UserContext = Depends(get_context),
):
    accounts, tags, start, end = _tag_report_args(request, db, context)
    return TagReportService(db, context).account_expense(
        accounts, tags, start, end, flag_from_request(request, "others")
    )


@app.get("/api/chart/tag-report/account-income")
def chart_tag_report_account_income(
    request: Request,
    db: Session = Depends(get_db),
    context: UserContext = Depends(get_context),
):
    accounts, tags, start, end = _tag_report_args(request, db, context)
    return TagReportService(db, context).account_income(
        accounts, tags, start, end, flag_from_request(request, "others")
    )


@app.get("/api/chart/tag-report/budget-expense")
def chart_tag_report_budget_expense(
    request: Request,
    db: Session = Depends(get_db),
    context: UserContext = Depends(get_context),
):
    accounts, tags, start, end = _tag_report_args(request, db, context)
    return TagReportService(db, context).budget_expense(accounts, tags, start, end)


@app.get("/api/chart/tag-report/category-expense")
def chart_tag_report_category_expense(
    request: Request,
    db: Session = Depends(get_db),
    context: UserContext = Depends(get_context),
):
    accounts, tags, start, end = _tag_report_args(request, db, context)
    return TagReportService(db, context).category_expense(accounts, tags, start, end)


@app.get("/api/chart/tag-report/tag-expense")
def chart_tag_report_tag_expense(
    request: Request,
    db: Session = Depends(get_db),
    context: UserContext = Depends(get_context),
):
    accounts, tags, start, end = _tag_report_args(request, db, context)
    return TagReportService(db, context).tag_expense(
        accounts, tags, start, end, flag_from_request(request, "others")
    )


@app.get("/api/chart/tag-report/tag-income")
def chart_tag_report_tag_income(
    request: Request,
    db: Session = Depends(get_db),
    context: UserContext = Depends(get_context),
):
    accounts, tags, start, end = _tag_report_args(request, db, context)
    return TagReportService(db, context).tag_income(
        accounts, tags, start, end, flag_from_request(request, "others")
    )


@app.get("/api/chart/budget-report/period")
def chart_budget_report_period(
    request: Request,
    db: Session = Depends(get_db),
    context: UserContext = Depends(get_context),
):
    period = period_from_request(request)
    accounts = accounts_from_request(request, db, context)
    budgets = BudgetService(db, context).get_many(ids_from_request(request, "budgets"))
    return BudgetReportService(db, context).period_chart(
        budgets, accounts, period.start, period.end, granularity_from_request(request)
    )


# -- budgets ----------------------------------------------------------------


@app.get("/api/budgets")
def api_budgets(
    db: Session = Depends(get_db), context: UserContext = Depends(get_context)
):
    service = BudgetService(db, context)
    return {
        "active": [budget_out(b) for b in service.active_budgets()],
        "inactive": [budget_out(b) for b in service.inactive_budgets()],
    }


@app.post("/api/budgets", dependencies=[Depends(require_csrf)])
def api_create_budget(
    data: BudgetIn,
    request: Request,
    db: Session = Depends(get_db),
    context: UserContext = Depends(get_context),
):
    try:
        budget = BudgetService(db, context).store(data)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    context.flash("success", f"Stored new budget \"{budget.name}\".")
    return respond(request, context, budget_out(budget))


@app.post("/api/budgets/{budget_id}", dependencies=[Depends(require_csrf)])
def api_update_budget(
    budget_id: int,
    data: BudgetUpdateIn,
    request: Request,
    db: Session = Depends(get_db),
    context: UserContext = Depends(get_context),
):
    service = BudgetService(db, context)
    budget = service.find(budget_id)
    if budget.id is None:
        raise HTTPException(status_code=404, detail="Budget not found")
    try:
        budget = service.update(budget, data)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    context.flash("success", f"Updated budget \"{budget.name}\".")
    return respond(request, context, budget_out(budget))


@app.post("/api/budgets/{budget_id}/delete", dependencies=[Depends(require_csrf)])
def api_delete_budget(
    budget_id: int,
    request: Request,
    db: Session = Depends(get_db),
    context: UserContext = Depends(get_context),
):
    service = BudgetService(db, context)
    budget = service.find(budget_id)
    if budget.id is None:
        raise HTTPException(status_code=404, detail="Budget not found")
    name = budget.name
    service.destroy(budget)
    context.flash("success", f"Deleted budget \"{name}\".")
    return respond(request, context, None)


@app.post("/api/budgets/{budget_id}/limit", dependencies=[Depends(require_csrf)])
def api_update_limit(
    budget_id: int,
    data: BudgetLimitIn,
    request: Request,
    db: Session = Depends(get_db),
    context: UserContext = Depends(get_context),
):
    service = BudgetService(db, context)
    limit = service.update_limit_amount(
        service.find(budget_id), data.start, data.end, data.amount
    )
    return respond(request, context, limit_out(limit))


@app.post("/api/limits", dependencies=[Depends(require_csrf)])
async def api_store_limit(
    request: Request,
    db: Session = Depends(get_db),
    context: UserContext = Depends(get_context),
):
    try:
        payload = await request.json()
    except ValueError as exc:
        raise HTTPException(status_code=400, detail="Invalid JSON body") from exc
    if not isinstance(payload, dict):
        raise HTTPException(status_code=400, detail="Invalid JSON body")
    limit = BudgetService(db, context).store_limit(payload)
    if limit.id is not None:
        context.flash("success", "Stored new limit.")
    return respond(request, context, limit_out(limit))


@app.get("/api/budget-report/period")
def api_budget_period_report(
    request: Request,
    db: Session = Depends(get_db),
    context: UserContext = Depends(get_context),
):
    period = period_from_request(request)
    service = BudgetService(db, context)
    accounts = accounts_from_request(request, db, context)
    budget_ids = ids_from_request(request, "budgets")
    budgets = service.get_many(budget_ids) if budget_ids else service.active_budgets()
    granularity = granularity_from_request(request)
    report = service.budget_period_report(
        budgets, accounts, period.start, period.end, granularity
    )
    no_budget = service.no_budget_period_report(
        accounts, period.start, period.end, granularity
    )
    return {
        "budgets": {str(key): bucket.as_dict() for key, bucket in report.items()},
        "no_budget": no_budget.as_dict(),
    }


@app.get("/api/budget-limits")
def api_budget_limits(
    request: Request,
    db: Session = Depends(get_db),
    context: UserContext = Depends(get_context),
):
    period = period_from_request(request)
    service = BudgetService(db, context)
    budget_id = request.query_params.get("budget")
    if budget_id:
        try:
            parsed_id = int(budget_id)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail="Invalid budget") from exc
        budget = service.find(parsed_id)
        if budget.id is None:
            raise HTTPException(status_code=404, detail="Budget not found")
        limits = service.budget_limits(budget, period.start, period.end)
    else:
        limits = service.all_budget_limits(period.start, period.end)
    return {"items": [limit_out(limit) for limit in limits]}


@app.get("/api/budgets/{budget_id}/spent")
def api_budget_spent(
    budget_id: int,
    request: Request,
    db: Session = Depends(get_db),
    context: UserContext = Depends(get_context),
):
    period = period_from_request(request)
    service = BudgetService(db, context)
    budget = service.find(budget_id)
    if budget.id is None:
        raise HTTPException(status_code=404, detail="Budget not found")
    accounts = accounts_from_request(request, db, context)
    spent = service.spent_in_period([budget], accounts, period.start, period.end)
    return {
        "budget_id": budget.id,
        "start": period.start.isoformat(),
        "end": period.end.isoformat(),
        "spent": canonical_decimal(spent),
    }


@app.get("/api/available-budget")
def api_available_budget(
    request: Request,
    db: Session = Depends(get_db),
    context: UserContext = Depends(get_context),
):
    period = period_from_request(request)
    code = request.query_params.get("currency", "EUR")
    currency = CurrencyService(db).find_by_code(code)
    if currency is None:
        raise HTTPException(status_code=404, detail="Currency not found")
    amount = BudgetService(db, context).available_budget(
        currency, period.start, period.end
    )
    return {
        "currency": currency.code,
        "start": period.start.isoformat(),
        "end": period.end.isoformat(),
        "amount": canonical_decimal(amount),
    }


@app.post("/api/available-budget", dependencies=[Depends(require_csrf)])
def api_set_available_budget(
    data: AvailableBudgetIn,
    request: Request,
    db: Session = Depends(get_db),
    context: UserContext = Depends(get_context),
):
    if data.start > data.end:
        raise HTTPException(status_code=400, detail="Start date must be before end date")
    currency = CurrencyService(db).get_or_create(data.currency_code)
    available = BudgetService(db, context).set_available_budget(
        currency, data.start, data.end, data.amount
    )
    return respond(request, context, available_out(available))


@app.post("/api/admin/cleanup-budgets", dependencies=[Depends(require_csrf)])
def api_cleanup_budgets(
    request: Request,
    db: Session = Depends(get_db),
    context: UserContext = Depends(get_context),
):
    deleted = BudgetService(db, context).cleanup_budgets()
    logging.info(f"Removed {deleted} empty budget limits for user {context.user_id}")
    return respond(request, context, {"deleted": deleted})


# -- tags and journals ------------------------------------------------------


@app.get("/api/tags")
def api_tags(db: Session = Depends(get_db), context: UserContext = Depends(get_context)):
    return {"items": [tag_out(t) for t in TagService(db, context).list_all()]}


@app.post("/api/tags", dependencies=[Depends(require_csrf)])
def api_create_tag(
    data: TagIn,
    request: Request,
    db: Session = Depends(get_db),
    context: UserContext = Depends(get_context),
):
    try:
        tag = TagService(db, context).create(data)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return respond(request, context, tag_out(tag))


@app.post("/api/tags/{tag_id}", dependencies=[Depends(require_csrf)])
def api_update_tag(
    tag_id: int,
    data: TagIn,
    request: Request,
    db: Session = Depends(get_db),
    context: UserContext = Depends(get_context),
):
    try:
        tag = TagService(db, context).update(tag_id, data)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return respond(request, context, tag_out(tag))


@app.post("/api/tags/{tag_id}/delete", dependencies=[Depends(require_csrf)])
def api_delete_tag(
    tag_id: int,
    request: Request,
    db: Session = Depends(get_db),
    context: UserContext = Depends(get_context),
):
    try:
        TagService(db, context).delete(tag_id)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return respond(request, context, None)


@app.post("/api/journals", dependencies=[Depends(require_csrf)])
async def api_create_journal(
    request: Request,
    db: Session = Depends(get_db),
    context: UserContext = Depends(get_context),
):
    try:
        data = JournalIn.model_validate(await request.json())
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=first_validation_error(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail="Invalid JSON body") from exc
    try:
        journal = JournalService(db, context).create(data)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except Exception as exc:
        logging.exception("Error storing journal")
        raise HTTPException(status_code=500, detail="Could not store journal") from exc
    return respond(
        request,
        context,
        {
            "id": journal.id,
            "date": journal.date.isoformat(),
            "type": journal.type.value,
            "tags": sorted(t.tag for t in journal.tags),
        },
    )


@app.post("/api/journals/{journal_id}/delete", dependencies=[Depends(require_csrf)])
def api_delete_journal(
    journal_id: int,
    request: Request,
    db: Session = Depends(get_db),
    context: UserContext = Depends(get_context),
):
    try:
        JournalService(db, context).delete(journal_id)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return respond(request, context, None)


@app.get("/api/first-use/{budget_id}")
def api_budget_first_use(
    budget_id: int,
    db: Session = Depends(get_db),
    context: UserContext = Depends(get_context),
):
    service = BudgetService(db, context)
    budget = service.find(budget_id)
    if budget.id is None:
        raise HTTPException(status_code=404, detail="Budget not found")
    first: date = service.first_use_date(budget)
    return {"budget_id": budget.id, "first_use": first.isoformat()}


@app.get("/api/accounts")
def api_accounts(
    db: Session = Depends(get_db), context: UserContext = Depends(get_context)
):
    return {
        "items": [
            {"id": a.id, "name": a.name, "type": a.type.value, "active": a.active}
            for a in AccountService(db, context).list_all()
        ]
    }


@app.post("/api/accounts", dependencies=[Depends(require_csrf)])
def api_create_account(
    data: AccountIn,
    request: Request,
    db: Session = Depends(get_db),
    context: UserContext = Depends(get_context),
):
    account = AccountService(db, context).create(data)
    return respond(
        request, context, {"id": account.id, "name": account.name, "type": account.type.value}
    )


@app.post("/api/categories", dependencies=[Depends(require_csrf)])
def api_create_category(
    request: Request,
    name: str = Body(..., embed=True),
    db: Session = Depends(get_db),
    context: UserContext = Depends(get_context),
):
    try:
        category = CategoryService(db, context).create(name)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return respond(request, context, {"id": category.id, "name": category.name})


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=False)
