import asyncio
import json
import logging
import os
import uuid
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

from babel.numbers import get_currency_symbol
from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import (
    Boolean,
    Column,
    Date,
    Integer,
    MetaData,
    Numeric,
    String,
    Table,
    Text,
    create_engine,
    delete,
    insert,
    select,
    update,
)

from costengine.billing_cycle import BillingCycle, cycle_label, monthly_equivalent, yearly_equivalent
from costengine.currencies import normalize_currency, search_currencies
from costengine.currency_conversion import (
    CurrencyConverter,
    FrankfurterRateProvider,
    RateCacheError,
    StaticRateProvider,
)
from costengine.expense_aggregation import Receipt, category_totals, summary
from costengine.payloads import (
    CategoryCostResponse,
    CategoryTotalResponse,
    CurrencyResponse,
    DashboardResponse,
    RateStatusResponse,
    ReceiptItemPayload,
    ReceiptPayload,
    ReceiptResponse,
    RefreshResponse,
    ReminderResponse,
    RenewalScheduleResponse,
    SubscriptionInsightsResponse,
    SubscriptionPayload,
    SubscriptionResponse,
    SubscriptionTotalsResponse,
)
from costengine.rate_cache import RateCache
from costengine.renewal_schedule import days_until, is_trial_active, reminder_dates, renewal_progress
from costengine.subscriptions import (
    Subscription,
    actual_charged_monthly_cost,
    advance_due_renewals,
    filter_subscriptions,
    monthly_cost,
    sort_subscriptions,
    subscription_insights,
    yearly_cost,
)

logger = logging.getLogger(__name__)

app = FastAPI()

frontend_origin = os.getenv("FRONTEND_ORIGIN", "http://localhost:3000")
app.add_middleware(
    CORSMiddleware,
    allow_origins=[frontend_origin],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

database_url = os.getenv("DATABASE_URL", "sqlite:///./costengine.db")
connect_args = {}
if database_url.startswith("sqlite"):
    connect_args = {"check_same_thread": False}

engine = create_engine(database_url, connect_args=connect_args)
metadata = MetaData()


def get_system_default_currency() -> str:
    raw = os.getenv("DEFAULT_CURRENCY", "USD")
    try:
        return normalize_currency(raw)
    except ValueError:
        return "USD"


def get_stale_threshold() -> timedelta:
    raw = os.getenv("RATES_STALE_AFTER_HOURS", "24")
    try:
        hours = float(raw)
    except ValueError:
        hours = 24.0
    return timedelta(hours=max(hours, 0))


SYSTEM_DEFAULT_CURRENCY = get_system_default_currency()
RATES_STALE_AFTER = get_stale_threshold()

subscriptions = Table(
    "subscriptions",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("name", String(255), nullable=False, server_default=""),
    Column("service_name", String(255), nullable=False),
    Column("amount", Numeric(12, 2), nullable=False),
    Column("currency", String(3), nullable=False),
    Column("billing_cycle", String(20), nullable=False),
    Column("interval_count", Integer),
    Column("next_renewal_date", Date, nullable=False),
    Column("is_active", Boolean, nullable=False, default=True),
    Column("is_trial", Boolean, nullable=False, default=False),
    Column("trial_end_date", Date),
    Column("notify_before_renewal_days", Integer, nullable=False, default=3),
    Column("notify_before_trial_end_days", Integer, nullable=False, default=2),
    Column("category", String(255)),
    Column("payment_method", String(255)),
    Column("notes", String(500)),
    Column("logo_url", String(500)),
)

receipts = Table(
    "receipts",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("store_name", String(255), nullable=False),
    Column("receipt_name", String(255)),
    Column("purchase_date", Date, nullable=False),
    Column("currency", String(3), nullable=False),
    Column("total_amount", Numeric(12, 2), nullable=False),
    Column("total_tax", Numeric(12, 2), nullable=False),
    Column("payment_method", String(255)),
    Column("items", Text, nullable=False),
)


def build_rate_provider():
    mode = os.getenv("RATE_PROVIDER", "frankfurter").strip().lower()
    if mode == "static":
        table = StaticRateProvider().fetch_rates().rebased(SYSTEM_DEFAULT_CURRENCY)
        return StaticRateProvider(rates=table.rates, base_currency=table.base)
    return FrankfurterRateProvider(
        base_currency=SYSTEM_DEFAULT_CURRENCY,
        base_url=os.getenv("FX_BASE_URL", "https://api.frankfurter.app"),
    )


def build_converter(rate_cache: RateCache) -> CurrencyConverter:
    provider = build_rate_provider()
    try:
        initial_table = rate_cache.load(SYSTEM_DEFAULT_CURRENCY)
    except RateCacheError:
        logger.exception("Ignoring unreadable exchange-rate cache")
        initial_table = None
    if initial_table is None:
        # Approximate rates keep conversions usable until the first refresh.
        initial_table = StaticRateProvider().fetch_rates().rebased(SYSTEM_DEFAULT_CURRENCY)
    return CurrencyConverter(provider=provider, cache=rate_cache, initial_table=initial_table)


@app.on_event("startup")
async def init_app() -> None:
    metadata.create_all(engine)
    rate_cache = RateCache(engine)
    rate_cache.ensure_schema()
    converter = build_converter(rate_cache)
    app.state.converter = converter
    app.state.refresh_task = None
    if converter.is_stale(datetime.now(timezone.utc), RATES_STALE_AFTER):
        app.state.refresh_task = asyncio.create_task(converter.refresh())


@app.on_event("shutdown")
async def stop_app() -> None:
    task = getattr(app.state, "refresh_task", None)
    if task is not None and not task.done():
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass


def get_converter(request: Request) -> CurrencyConverter:
    return request.app.state.converter


def resolve_currency(value: str | None) -> str:
    if value is None or not value.strip():
        return SYSTEM_DEFAULT_CURRENCY
    try:
        return normalize_currency(value)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


def row_to_subscription(row) -> Subscription:
    return Subscription(
        id=row["id"],
        name=row["name"] or "",
        service_name=row["service_name"],
        amount=Decimal(row["amount"]),
        currency=row["currency"],
        billing_cycle=BillingCycle.parse(row["billing_cycle"], row["interval_count"]),
        next_renewal_date=row["next_renewal_date"],
        is_active=row["is_active"],
        is_trial=row["is_trial"],
        trial_end_date=row["trial_end_date"],
        notify_before_renewal_days=row["notify_before_renewal_days"],
        notify_before_trial_end_days=row["notify_before_trial_end_days"],
        category=row["category"],
        payment_method=row["payment_method"],
        notes=row["notes"],
        logo_url=row["logo_url"],
    )


def subscription_values(payload: SubscriptionPayload) -> dict:
    return {
        "name": payload.name,
        "service_name": payload.service_name,
        "amount": payload.amount,
        "currency": payload.currency,
        "billing_cycle": payload.billing_cycle,
        "interval_count": payload.interval_count,
        "next_renewal_date": payload.next_renewal_date,
        "is_active": payload.is_active,
        "is_trial": payload.is_trial,
        "trial_end_date": payload.trial_end_date,
        "notify_before_renewal_days": payload.notify_before_renewal_days,
        "notify_before_trial_end_days": payload.notify_before_trial_end_days,
        "category": payload.category,
        "payment_method": payload.payment_method,
        "notes": payload.notes,
        "logo_url": payload.logo_url,
    }


def to_subscription_response(sub: Subscription) -> SubscriptionResponse:
    return SubscriptionResponse(
        id=sub.id,
        name=sub.name,
        service_name=sub.service_name,
        amount=sub.amount,
        currency=sub.currency,
        billing_cycle=sub.billing_cycle.kind.value,
        interval_count=sub.interval_count,
        next_renewal_date=sub.next_renewal_date,
        is_active=sub.is_active,
        is_trial=sub.is_trial,
        trial_end_date=sub.trial_end_date,
        notify_before_renewal_days=sub.notify_before_renewal_days,
        notify_before_trial_end_days=sub.notify_before_trial_end_days,
        category=sub.category,
        payment_method=sub.payment_method,
        notes=sub.notes,
        logo_url=sub.logo_url,
        monthly_equivalent=monthly_equivalent(sub.amount, sub.billing_cycle),
        yearly_equivalent=yearly_equivalent(sub.amount, sub.billing_cycle),
        cycle_label=cycle_label(sub.billing_cycle),
    )


def row_to_receipt(row) -> Receipt:
    payload = ReceiptPayload(
        store_name=row["store_name"],
        receipt_name=row["receipt_name"],
        purchase_date=row["purchase_date"],
        currency=row["currency"],
        total_amount=Decimal(row["total_amount"]),
        total_tax=Decimal(row["total_tax"]),
        payment_method=row["payment_method"],
        items=[ReceiptItemPayload(**item) for item in json.loads(row["items"])],
    )
    return payload.to_receipt(row["id"])


def to_receipt_response(receipt: Receipt) -> ReceiptResponse:
    return ReceiptResponse(
        id=receipt.id,
        store_name=receipt.store_name,
        receipt_name=receipt.receipt_name,
        purchase_date=receipt.purchase_date,
        currency=receipt.currency,
        total_amount=receipt.total_amount,
        total_tax=receipt.total_tax,
        payment_method=receipt.payment_method,
        items=[
            ReceiptItemPayload(
                name=item.name,
                price=item.price,
                category=item.category,
                original_price=item.original_price,
                discount_description=item.discount_description,
                is_discount=item.is_discount,
            )
            for item in receipt.items
        ],
        savings=receipt.savings,
    )


def fetch_subscriptions() -> list[Subscription]:
    with engine.connect() as conn:
        rows = conn.execute(
            select(subscriptions).order_by(subscriptions.c.next_renewal_date.asc())
        ).mappings().all()
    return [row_to_subscription(row) for row in rows]


def fetch_subscription(subscription_id: str) -> Subscription:
    with engine.connect() as conn:
        row = conn.execute(
            select(subscriptions).where(subscriptions.c.id == subscription_id)
        ).mappings().first()
    if not row:
        raise HTTPException(status_code=404, detail="Subscription not found.")
    return row_to_subscription(row)


def fetch_receipts() -> list[Receipt]:
    with engine.connect() as conn:
        rows = conn.execute(
            select(receipts).order_by(receipts.c.purchase_date.desc())
        ).mappings().all()
    return [row_to_receipt(row) for row in rows]


def rate_status(converter: CurrencyConverter) -> dict:
    now = datetime.now(timezone.utc)
    table = converter.table
    last_updated = converter.last_updated
    return {
        "base_currency": table.base if table else None,
        "last_updated": last_updated.isoformat() if last_updated else None,
        "last_updated_text": converter.last_updated_text(now),
        "is_stale": converter.is_stale(now, RATES_STALE_AFTER),
        "conversion_degraded": converter.conversion_degraded,
    }


@app.get("/health")
def health() -> dict:
    return {"status": "ok"}


@app.get("/currencies", response_model=list[CurrencyResponse])
def list_currencies(query: str = Query("")) -> list[CurrencyResponse]:
    return [
        CurrencyResponse(
            code=currency.code,
            name=currency.name,
            symbol=get_currency_symbol(currency.code, locale=currency.locale),
        )
        for currency in search_currencies(query)
    ]


@app.get("/rates", response_model=RateStatusResponse)
def get_rate_status(converter: CurrencyConverter = Depends(get_converter)) -> RateStatusResponse:
    return RateStatusResponse(**rate_status(converter))


@app.post("/rates/refresh", response_model=RefreshResponse)
async def refresh_rates(converter: CurrencyConverter = Depends(get_converter)) -> RefreshResponse:
    result = await converter.refresh()
    return RefreshResponse(
        succeeded=result.succeeded,
        error=result.error,
        **rate_status(converter),
    )


@app.get("/subscriptions", response_model=list[SubscriptionResponse])
def list_subscriptions(
    status: str = Query("all"),
    query: str | None = Query(None),
    sort: str = Query("next_renewal"),
    currency: str | None = Query(None),
    converter: CurrencyConverter = Depends(get_converter),
) -> list[SubscriptionResponse]:
    preferred_currency = resolve_currency(currency)
    try:
        subs = filter_subscriptions(fetch_subscriptions(), status=status, query=query)
        subs = sort_subscriptions(subs, sort, preferred_currency, converter.convert_sync)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return [to_subscription_response(sub) for sub in subs]


@app.post("/subscriptions", response_model=SubscriptionResponse)
def create_subscription(payload: SubscriptionPayload) -> SubscriptionResponse:
    try:
        payload = SubscriptionPayload.validate_payload(payload, today=date.today())
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    subscription_id = str(uuid.uuid4())
    with engine.begin() as conn:
        conn.execute(
            insert(subscriptions).values(id=subscription_id, **subscription_values(payload))
        )
    logger.info("Added subscription %s (%s)", subscription_id, payload.service_name)
    return to_subscription_response(payload.to_subscription(subscription_id))


@app.put("/subscriptions/{subscription_id}", response_model=SubscriptionResponse)
def update_subscription(subscription_id: str, payload: SubscriptionPayload) -> SubscriptionResponse:
    try:
        payload = SubscriptionPayload.validate_payload(payload)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    with engine.begin() as conn:
        result = conn.execute(
            update(subscriptions)
            .where(subscriptions.c.id == subscription_id)
            .values(**subscription_values(payload))
        )
        updated = result.rowcount
    if updated == 0:
        raise HTTPException(status_code=404, detail="Subscription not found.")
    return to_subscription_response(payload.to_subscription(subscription_id))


@app.delete("/subscriptions/{subscription_id}")
def delete_subscription(subscription_id: str) -> dict:
    with engine.begin() as conn:
        result = conn.execute(
            delete(subscriptions).where(subscriptions.c.id == subscription_id)
        )
        updated = result.rowcount
    if updated == 0:
        raise HTTPException(status_code=404, detail="Subscription not found.")
    logger.info("Deleted subscription %s", subscription_id)
    return {"status": "deleted"}


@app.post("/subscriptions/advance-renewals", response_model=list[SubscriptionResponse])
def advance_renewals() -> list[SubscriptionResponse]:
    current = fetch_subscriptions()
    advanced = advance_due_renewals(current, date.today())
    changed = [
        new
        for old, new in zip(current, advanced)
        if new.next_renewal_date != old.next_renewal_date
    ]
    if changed:
        with engine.begin() as conn:
            for sub in changed:
                conn.execute(
                    update(subscriptions)
                    .where(subscriptions.c.id == sub.id)
                    .values(next_renewal_date=sub.next_renewal_date)
                )
    return [to_subscription_response(sub) for sub in changed]


@app.get("/subscriptions/totals", response_model=SubscriptionTotalsResponse)
def get_subscription_totals(
    currency: str | None = Query(None),
    converter: CurrencyConverter = Depends(get_converter),
) -> SubscriptionTotalsResponse:
    preferred_currency = resolve_currency(currency)
    subs = fetch_subscriptions()
    convert = converter.convert_sync
    monthly = monthly_cost(subs, preferred_currency, convert)
    yearly = yearly_cost(subs, preferred_currency, convert)
    charged = actual_charged_monthly_cost(subs, date.today(), preferred_currency, convert)
    return SubscriptionTotalsResponse(
        currency=preferred_currency,
        monthly_cost=monthly,
        yearly_cost=yearly,
        actual_charged_monthly_cost=charged,
        formatted_monthly_cost=converter.format(monthly, preferred_currency),
        formatted_yearly_cost=converter.format(yearly, preferred_currency),
        conversion_degraded=converter.conversion_degraded,
    )


@app.get("/subscriptions/insights", response_model=SubscriptionInsightsResponse)
def get_subscription_insights(
    currency: str | None = Query(None),
    converter: CurrencyConverter = Depends(get_converter),
) -> SubscriptionInsightsResponse:
    preferred_currency = resolve_currency(currency)
    insights = subscription_insights(
        fetch_subscriptions(), date.today(), preferred_currency, converter.convert_sync
    )
    return SubscriptionInsightsResponse(
        currency=preferred_currency,
        active_count=insights.active_count,
        monthly_total=insights.monthly_total,
        annual_total=insights.annual_total,
        average_monthly_cost=insights.average_monthly_cost,
        next_renewal_id=insights.next_renewal.id if insights.next_renewal else None,
        upcoming_renewal_ids=[sub.id for sub in insights.upcoming_renewals],
        trials_ending_soon_ids=[sub.id for sub in insights.trials_ending_soon],
        category_breakdown=[
            CategoryCostResponse(
                category=item.category,
                monthly_total=item.monthly_total,
                count=item.count,
            )
            for item in insights.category_breakdown
        ],
    )


@app.get("/subscriptions/{subscription_id}/schedule", response_model=RenewalScheduleResponse)
def get_renewal_schedule(subscription_id: str) -> RenewalScheduleResponse:
    sub = fetch_subscription(subscription_id)
    today = date.today()
    return RenewalScheduleResponse(
        subscription_id=sub.id,
        next_renewal_date=sub.next_renewal_date,
        days_until_renewal=days_until(sub.next_renewal_date, today),
        renewal_progress=renewal_progress(sub.next_renewal_date, sub.billing_cycle, today),
        is_trial_active=is_trial_active(sub, today),
        reminders=[
            ReminderResponse(
                kind=reminder.kind,
                fire_date=reminder.fire_date,
                event_date=reminder.event_date,
            )
            for reminder in reminder_dates(sub, today)
        ],
    )


@app.get("/receipts", response_model=list[ReceiptResponse])
def list_receipts() -> list[ReceiptResponse]:
    return [to_receipt_response(receipt) for receipt in fetch_receipts()]


@app.post("/receipts", response_model=ReceiptResponse)
def create_receipt(payload: ReceiptPayload) -> ReceiptResponse:
    try:
        payload = ReceiptPayload.validate_payload(payload)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    receipt_id = str(uuid.uuid4())
    items = [item.model_dump(mode="json") for item in payload.items]
    with engine.begin() as conn:
        conn.execute(
            insert(receipts).values(
                id=receipt_id,
                store_name=payload.store_name,
                receipt_name=payload.receipt_name,
                purchase_date=payload.purchase_date,
                currency=payload.currency,
                total_amount=payload.total_amount,
                total_tax=payload.total_tax,
                payment_method=payload.payment_method,
                items=json.dumps(items),
            )
        )
    return to_receipt_response(payload.to_receipt(receipt_id))


@app.get("/dashboard", response_model=DashboardResponse)
def get_dashboard(
    currency: str | None = Query(None),
    converter: CurrencyConverter = Depends(get_converter),
) -> DashboardResponse:
    preferred_currency = resolve_currency(currency)
    receipt_list = fetch_receipts()
    subs = fetch_subscriptions()
    today = date.today()
    convert = converter.convert_sync

    totals = category_totals(receipt_list, subs, today, preferred_currency, convert)
    overview = summary(receipt_list, subs, today, preferred_currency, convert)
    return DashboardResponse(
        currency=preferred_currency,
        total_expense=overview.total_expense,
        total_tax=overview.total_tax,
        total_savings=overview.total_savings,
        formatted_total_expense=converter.format(overview.total_expense, preferred_currency),
        formatted_total_tax=converter.format(overview.total_tax, preferred_currency),
        formatted_total_savings=converter.format(overview.total_savings, preferred_currency),
        categories=[
            CategoryTotalResponse(
                category=category,
                total=total,
                formatted_total=converter.format(total, preferred_currency),
            )
            for category, total in totals
        ],
        conversion_degraded=converter.conversion_degraded,
        rates_last_updated=converter.last_updated_text(datetime.now(timezone.utc)),
    )
