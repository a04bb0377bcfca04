"""Helpers shared by the entity sync modules"""
import json
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional

from sqlalchemy.orm import Session


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse a Square RFC 3339 timestamp into naive UTC"""
    if not value:
        return None
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def format_timestamp(value: datetime) -> str:
    """Naive UTC datetime as the RFC 3339 form Square expects"""
    return value.strftime("%Y-%m-%dT%H:%M:%SZ")


def money(obj: Optional[Dict[str, Any]], field: str) -> int:
    """Minor-unit amount of a Money field, zero when absent"""
    amount = ((obj or {}).get(field) or {}).get("amount")
    return int(amount) if amount is not None else 0


def quantity(value: Optional[str], default: str = "1") -> Decimal:
    try:
        return Decimal(value if value is not None else default)
    except (InvalidOperation, TypeError):
        return Decimal(default)


def dump_raw(obj: Any) -> str:
    return json.dumps(obj, default=str)


def upsert(
    db: Session,
    model,
    values: Dict[str, Any],
    index_elements: Iterable[str],
    update_columns: Iterable[str],
) -> None:
    """
    Insert one row, or overwrite update_columns when the natural key exists.

    Columns outside update_columns keep their stored values on conflict.
    """
    if db.get_bind().dialect.name == "postgresql":
        from sqlalchemy.dialects.postgresql import insert
    else:
        from sqlalchemy.dialects.sqlite import insert

    stmt = insert(model).values(**values)
    stmt = stmt.on_conflict_do_update(
        index_elements=list(index_elements),
        set_={column: getattr(stmt.excluded, column) for column in update_columns},
    )
    db.execute(stmt)


async def paginate(
    fetch_page: Callable[[Optional[str]], Awaitable[Dict[str, Any]]],
    records_key: str,
    on_page: Callable[[List[Dict[str, Any]]], None],
) -> int:
    """
    Walk a cursor-paginated list endpoint.

    on_page runs once per non-empty page and commits that page on its own.
    Returns the number of records seen.
    """
    cursor = None
    total = 0

    while True:
        data = await fetch_page(cursor)
        records = data.get(records_key) or []
        if records:
            on_page(records)
            total += len(records)

        cursor = data.get("cursor")
        if not cursor:
            break

    return total
