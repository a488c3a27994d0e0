from __future__ import annotations

import csv
import io
import re
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Iterable

from pydantic import BaseModel

from fxledger.transactions import Transaction

CSV_COLUMNS = ("date", "description", "amount", "currency", "category")
DEFAULT_DESCRIPTION = "Imported"
DEFAULT_CATEGORY = "Imported"

DATE_FORMATS = ("%Y-%m-%d", "%d/%m/%Y", "%m/%d/%Y", "%d.%m.%Y", "%d %b %Y", "%d %B %Y")


class ParsedTransaction(BaseModel):
    id: str
    date: datetime
    description: str
    amount: Decimal
    currency: str | None = None
    category: str | None = None

    def to_transaction(self) -> Transaction:
        return Transaction(
            id=self.id,
            description=self.description,
            amount=self.amount,
            date=self.date,
            currency=self.currency,
            category=self.category,
        )


class CSVParseResult(BaseModel):
    rows: list[ParsedTransaction]
    has_currency_column: bool

    def transactions(self) -> list[Transaction]:
        return [row.to_transaction() for row in self.rows]


def parse_transactions_csv(contents: str, now: datetime | None = None) -> CSVParseResult:
    """Parse ``date,description,amount,currency,category`` rows.

    Columns are looked up by header name, so their order and the presence of
    everything except ``amount`` is optional.
    """
    reader = csv.reader(io.StringIO(contents))
    rows = [row for row in reader if not is_blank_row(row)]
    if not rows:
        raise ValueError("CSV missing header row.")

    fieldnames = [normalize_header(name) for name in rows[0]]
    if "amount" not in fieldnames:
        raise ValueError("CSV headers missing required fields.")
    if len(rows) == 1:
        raise ValueError("CSV has no data.")

    stamp = now or datetime.now(timezone.utc)
    batch = int(stamp.timestamp() * 1000)
    has_category = "category" in fieldnames

    parsed: list[ParsedTransaction] = []
    for index, raw in enumerate(rows[1:], start=1):
        row = row_to_dict(fieldnames, raw)
        amount = parse_decimal(row.get("amount"))
        if amount is None:
            raise ValueError(f"Row {index}: invalid amount {row.get('amount')!r}.")

        date_text = clean_text(row.get("date"))
        date_value = parse_date(date_text) if date_text else stamp
        if date_value is None:
            raise ValueError(f"Row {index}: invalid date {date_text!r}.")

        category = clean_text(row.get("category")) if has_category else DEFAULT_CATEGORY
        currency = clean_text(row.get("currency")).upper()

        parsed.append(
            ParsedTransaction(
                id=f"imp_{batch}_{index}",
                date=date_value,
                description=clean_text(row.get("description")) or DEFAULT_DESCRIPTION,
                amount=amount,
                currency=currency or None,
                category=category or None,
            )
        )

    return CSVParseResult(rows=parsed, has_currency_column="currency" in fieldnames)


def export_transactions_csv(transactions: Iterable[Transaction]) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(CSV_COLUMNS)
    for txn in transactions:
        writer.writerow(
            [
                txn.date.isoformat(),
                txn.description,
                str(txn.amount),
                txn.currency or "",
                txn.category or "",
            ]
        )
    return buffer.getvalue()


def row_to_dict(fieldnames: list[str], row: list[str]) -> dict[str, str | None]:
    if len(row) < len(fieldnames):
        row = row + [""] * (len(fieldnames) - len(row))
    if len(row) > len(fieldnames):
        row = row[: len(fieldnames)]
    return dict(zip(fieldnames, row))


def parse_date(value: str | None) -> datetime | None:
    cleaned = clean_text(value)
    if not cleaned:
        return None
    iso = cleaned[:-1] + "+00:00" if cleaned.endswith("Z") else cleaned
    try:
        return datetime.fromisoformat(iso)
    except ValueError:
        pass
    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(cleaned, fmt)
        except ValueError:
            continue
    return None


def parse_decimal(value: str | None) -> Decimal | None:
    cleaned = clean_text(value)
    if not cleaned:
        return None

    negative = False
    if cleaned.startswith("(") and cleaned.endswith(")"):
        negative = True
        cleaned = cleaned[1:-1]

    cleaned = re.sub(r"[\s$€£]", "", cleaned).replace(",", "")

    if cleaned.startswith("-"):
        negative = True
        cleaned = cleaned[1:]
    elif cleaned.startswith("+"):
        cleaned = cleaned[1:]

    try:
        amount = Decimal(cleaned)
    except InvalidOperation:
        return None
    if not amount.is_finite():
        return None

    return -amount if negative else amount


def normalize_header(value: str) -> str:
    return re.sub(r"[^a-z0-9]", "", value.strip().lower())


def clean_text(value: str | None) -> str:
    return value.strip() if value else ""


def is_blank_row(row: list[str]) -> bool:
    return all(not clean_text(value) for value in row)
