"""
Read-only policy lookup over the two currency-segregated policy databases.

USD policies live in view VClient_LookUP_USD, ZIG policies in
VClient_LookUP_ZIG; each currency has its own engine. Queries are built with
SQLAlchemy Core so TOP/LIMIT compiles per dialect.
"""

from __future__ import annotations

import asyncio
import logging
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Mapping, Optional

from sqlalchemy import create_engine, or_, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.sql import column, table

from policy_gateway.database.postgres_real import _normalize_connection_string
from policy_gateway.errors import PolicyNotFound, PolicySourceUnavailable, UnsupportedCurrency
from policy_gateway.integrations.contracts.interfaces import PolicyRecord, PolicySource

logger = logging.getLogger(__name__)

VIEW_NAMES = {"USD": "VClient_LookUP_USD", "ZIG": "VClient_LookUP_ZIG"}
DATABASE_NAMES = {"USD": "ZIMNATUSD", "ZIG": "ZIMNATZIG"}

# product_filter -> product_category LIKE pattern
CATEGORY_FILTERS = {"Life": "%Life%", "General": "%Accident and Health%"}

_COLUMNS = (
    "insurance_ref",
    "resolved_name",
    "product_category",
    "description",
    "Status",
    "GROSS_PREMIUM",
    "SUM_INSURED",
    "cover_start_date",
    "expiry_date",
    "mobile",
    "agent_shortname",
    "alternative_identifier",
)

SEARCH_LIMIT = 100


def _view(currency: str):
    return table(VIEW_NAMES[currency], *(column(name) for name in _COLUMNS))


def _clean(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _decimal(value: Any) -> Optional[Decimal]:
    if value is None or value == "":
        return None
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        return None


def row_to_policy(row: Mapping[str, Any], currency: str) -> PolicyRecord:
    category = _clean(row.get("product_category")) or "GENERAL"
    return PolicyRecord(
        policy_number=_clean(row.get("insurance_ref")) or "N/A",
        holder_name=_clean(row.get("resolved_name")) or "Unknown",
        currency=currency,
        product_category=category,
        insurance_type="Life" if "life" in category.lower() else "General",
        status=_clean(row.get("Status")) or "UNKNOWN",
        premium=_decimal(row.get("GROSS_PREMIUM")),
        sum_insured=_decimal(row.get("SUM_INSURED")),
        database=DATABASE_NAMES[currency],
        mobile=_clean(row.get("mobile")),
        agent=_clean(row.get("agent_shortname")),
        cover_start_date=_clean(row.get("cover_start_date")),
        expiry_date=_clean(row.get("expiry_date")),
        metadata={
            "description": _clean(row.get("description")) or "",
            "alternative_identifier": _clean(row.get("alternative_identifier")),
        },
    )


class SqlPolicySource(PolicySource):
    def __init__(self, connection_strings: Dict[str, str]) -> None:
        self._engines: Dict[str, Engine] = {}
        for currency, url in connection_strings.items():
            if url:
                self._engines[currency.upper()] = create_engine(
                    _normalize_connection_string(url), pool_pre_ping=True
                )

    def _engine(self, currency: str) -> Engine:
        currency = (currency or "").upper()
        if currency not in VIEW_NAMES:
            raise UnsupportedCurrency(f"Unsupported currency: {currency}", currency=currency)
        engine = self._engines.get(currency)
        if engine is None:
            raise PolicySourceUnavailable(f"No policy database configured for {currency}", currency=currency)
        return engine

    def _fetch(self, engine: Engine, stmt) -> List[Dict[str, Any]]:
        with engine.connect() as conn:
            return [dict(r) for r in conn.execute(stmt).mappings().all()]

    async def _query(self, currency: str, stmt) -> List[Dict[str, Any]]:
        engine = self._engine(currency)
        try:
            return await asyncio.to_thread(self._fetch, engine, stmt)
        except SQLAlchemyError as exc:
            logger.error("Policy database query failed: currency=%s error=%s", currency, exc)
            raise PolicySourceUnavailable(
                f"Policy database for {currency} is unavailable", currency=currency
            ) from exc

    async def search(
        self,
        policy_identifier: str,
        currency: str,
        product_filter: Optional[str] = None,
    ) -> List[PolicyRecord]:
        currency = (currency or "").upper()
        self._engine(currency)
        view = _view(currency)
        stmt = select(*view.c)
        if policy_identifier:
            stmt = stmt.where(view.c.insurance_ref == str(policy_identifier).strip())
        if product_filter in CATEGORY_FILTERS:
            stmt = stmt.where(view.c.product_category.like(CATEGORY_FILTERS[product_filter]))
        stmt = stmt.order_by(view.c.insurance_ref).limit(SEARCH_LIMIT)

        logger.info(
            "Executing policy search: policy=%s currency=%s filter=%s view=%s",
            policy_identifier,
            currency,
            product_filter,
            VIEW_NAMES[currency],
        )
        rows = await self._query(currency, stmt)
        logger.info("Policy search completed: found=%d currency=%s", len(rows), currency)
        return [row_to_policy(r, currency) for r in rows]

    async def get_details(self, policy_identifier: str, currency: str) -> PolicyRecord:
        currency = (currency or "").upper()
        self._engine(currency)
        view = _view(currency)
        identifier = str(policy_identifier).strip()
        stmt = (
            select(*view.c)
            .where(or_(view.c.insurance_ref == identifier, view.c.alternative_identifier == identifier))
            .limit(1)
        )
        rows = await self._query(currency, stmt)
        if not rows:
            raise PolicyNotFound(
                f"Policy {identifier} not found in {currency} policies",
                policy_identifier=identifier,
                currency=currency,
            )
        return row_to_policy(rows[0], currency)

    def dispose(self) -> None:
        for engine in self._engines.values():
            engine.dispose()
