import logging
import os
from datetime import date, datetime
from decimal import Decimal

from fastapi import Depends, FastAPI, File, HTTPException, Query, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response
from pydantic import BaseModel, Field

from fxledger.budget_engine import DEFAULT_MONTHS
from fxledger.coordinator import RateFetchCoordinator, RateSnapshot
from fxledger.csv_parser import (
    CSVParseResult,
    export_transactions_csv,
    parse_transactions_csv,
)
from fxledger.currency_conversion import (
    convert_amount,
    normalize_currency,
    safe_normalize_currency,
)
from fxledger.dashboard import build_dashboard
from fxledger.rate_cache import (
    DEFAULT_TTL_SECONDS,
    InMemoryRateCacheStore,
    RateCache,
    RateCacheStore,
    SqlRateCacheStore,
)
from fxledger.rate_source import (
    DEFAULT_TIMEOUT_SECONDS,
    EXCHANGERATE_HOST_URL,
    FRANKFURTER_URL,
    RateSource,
    default_providers,
)
from fxledger.transactions import BudgetRecord, Transaction

logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO").upper())
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


def get_system_default_currency() -> str:
    return safe_normalize_currency(os.getenv("DEFAULT_CURRENCY", "EUR"), "EUR")


def build_cache_store() -> RateCacheStore:
    database_url = os.getenv("RATE_CACHE_DATABASE_URL")
    if not database_url:
        return InMemoryRateCacheStore()
    return SqlRateCacheStore(database_url)


SYSTEM_DEFAULT_CURRENCY = get_system_default_currency()
RATE_SOURCE = RateSource(
    providers=default_providers(
        exchangerate_host_key=os.getenv("EXCHANGERATE_HOST_KEY"),
        exchangerate_host_url=os.getenv("EXCHANGERATE_HOST_URL", EXCHANGERATE_HOST_URL),
        frankfurter_url=os.getenv("FRANKFURTER_URL", FRANKFURTER_URL),
    ),
    timeout=float(os.getenv("RATES_TIMEOUT_SECONDS", DEFAULT_TIMEOUT_SECONDS)),
)
RATE_CACHE = RateCache(
    build_cache_store(),
    ttl_seconds=float(os.getenv("RATE_CACHE_TTL_SECONDS", DEFAULT_TTL_SECONDS)),
)


def get_rate_source() -> RateSource:
    return RATE_SOURCE


def get_rate_cache() -> RateCache:
    return RATE_CACHE


@app.on_event("shutdown")
async def close_rate_source() -> None:
    await RATE_SOURCE.aclose()


class TransactionPayload(BaseModel):
    id: str
    description: str = ""
    amount: Decimal
    date: datetime
    currency: str | None = None
    category: str | None = None

    def to_transaction(self) -> Transaction:
        return Transaction(
            id=self.id,
            description=self.description.strip(),
            amount=self.amount,
            date=self.date,
            currency=normalize_currency(self.currency) if self.currency else None,
            category=self.category.strip() if self.category else None,
        )


class BudgetPayload(BaseModel):
    amount: Decimal = Field(ge=0)
    currency: str | None = None


class DashboardPayload(BaseModel):
    display_currency: str | None = None
    months: int = Field(DEFAULT_MONTHS, ge=1, le=120)
    transactions: list[TransactionPayload] = []
    budgets: dict[str, BudgetPayload] = {}


class TransactionExportPayload(BaseModel):
    transactions: list[TransactionPayload]


class RatesResponse(BaseModel):
    base: str
    rates: dict[str, Decimal]
    status: str
    authoritative: bool
    error: str | None = None


class ConversionResponse(BaseModel):
    amount: Decimal
    source: str
    target: str
    converted_amount: Decimal
    authoritative: bool


class BalancePointResponse(BaseModel):
    date: datetime
    transaction_id: str
    amount: Decimal
    balance: Decimal


class MonthSummaryResponse(BaseModel):
    month: str
    net: Decimal
    expenses: Decimal
    budget: Decimal
    over_budget: bool


class DashboardResponse(BaseModel):
    display_currency: str
    rates_status: str
    balance: list[BalancePointResponse] | None = None
    latest_balance: Decimal | None = None
    months: list[MonthSummaryResponse] = []


def parse_month_value(value: str) -> str:
    try:
        parsed = datetime.strptime(value.strip(), "%Y-%m").date()
    except ValueError as exc:
        raise ValueError("Invalid month format. Use YYYY-MM.") from exc
    return parsed.strftime("%Y-%m")


def resolve_currency(value: str | None) -> str:
    if not value:
        return SYSTEM_DEFAULT_CURRENCY
    try:
        return normalize_currency(value)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


async def resolve_rates(
    currency: str, source: RateSource, cache: RateCache, force: bool = False
) -> RateSnapshot:
    coordinator = RateFetchCoordinator(source, cache=cache)
    coordinator.select_currency(currency, force=force)
    try:
        return await coordinator.wait()
    finally:
        await coordinator.aclose()


@app.get("/health")
def health() -> dict:
    return {"status": "ok"}


@app.get("/rates", response_model=RatesResponse)
async def get_rates(
    base: str | None = Query(None),
    force: bool = Query(False),
    source: RateSource = Depends(get_rate_source),
    cache: RateCache = Depends(get_rate_cache),
) -> RatesResponse:
    currency = resolve_currency(base)
    snapshot = await resolve_rates(currency, source, cache, force=force)
    return RatesResponse(
        base=currency,
        rates=dict(snapshot.table.rates) if snapshot.table else {},
        status=snapshot.state.value,
        authoritative=snapshot.authoritative,
        error=snapshot.error,
    )


@app.get("/convert", response_model=ConversionResponse)
async def convert(
    amount: Decimal = Query(...),
    source_currency: str = Query(..., alias="source"),
    target_currency: str | None = Query(None, alias="target"),
    rate_source: RateSource = Depends(get_rate_source),
    cache: RateCache = Depends(get_rate_cache),
) -> ConversionResponse:
    source = resolve_currency(source_currency)
    target = resolve_currency(target_currency)
    snapshot = await resolve_rates(target, rate_source, cache)
    return ConversionResponse(
        amount=amount,
        source=source,
        target=target,
        converted_amount=convert_amount(amount, source, target, snapshot.table),
        authoritative=snapshot.authoritative,
    )


@app.post("/dashboard", response_model=DashboardResponse)
async def dashboard(
    payload: DashboardPayload,
    source: RateSource = Depends(get_rate_source),
    cache: RateCache = Depends(get_rate_cache),
) -> DashboardResponse:
    display = resolve_currency(payload.display_currency)
    try:
        transactions = [item.to_transaction() for item in payload.transactions]
        budgets = {
            parse_month_value(key): BudgetRecord(
                amount=value.amount,
                currency=normalize_currency(value.currency) if value.currency else None,
            )
            for key, value in payload.budgets.items()
        }
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    snapshot = await resolve_rates(display, source, cache)
    summary = build_dashboard(
        transactions, budgets, snapshot, months=payload.months, today=date.today()
    )
    if not summary.rates_available:
        logger.warning(f"Dashboard for {display} served without rates")
        return DashboardResponse(display_currency=display, rates_status=summary.rates_status)

    balance = summary.balance
    return DashboardResponse(
        display_currency=summary.display_currency,
        rates_status=summary.rates_status,
        balance=[
            BalancePointResponse(
                date=point.date,
                transaction_id=point.transaction_id,
                amount=point.amount,
                balance=point.balance,
            )
            for point in balance.points
        ]
        if balance is not None and balance.has_data
        else None,
        latest_balance=balance.latest if balance is not None else None,
        months=[
            MonthSummaryResponse(
                month=month.month,
                net=month.net,
                expenses=month.expenses,
                budget=month.budget,
                over_budget=month.over_budget,
            )
            for month in summary.months
        ],
    )


@app.post("/transactions/parse-csv", response_model=CSVParseResult)
async def parse_transactions(file: UploadFile = File(...)) -> CSVParseResult:
    if not file.filename or not file.filename.lower().endswith(".csv"):
        raise HTTPException(status_code=400, detail="CSV file required.")

    contents = await file.read()
    try:
        decoded = contents.decode("utf-8-sig")
    except UnicodeDecodeError as exc:
        raise HTTPException(status_code=400, detail="CSV must be UTF-8 encoded.") from exc

    try:
        return parse_transactions_csv(decoded)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@app.post("/transactions/export")
def export_transactions(payload: TransactionExportPayload) -> Response:
    try:
        transactions = [item.to_transaction() for item in payload.transactions]
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return Response(
        content=export_transactions_csv(transactions),
        media_type="text/csv",
        headers={"Content-Disposition": 'attachment; filename="transactions.csv"'},
    )
