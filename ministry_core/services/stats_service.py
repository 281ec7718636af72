# =============================================================================
# ministry_core/services/stats_service.py
# Dashboard aggregation over already-fetched rows
# =============================================================================
"""
Unit and executive dashboard numbers.

Inputs are records (or DataFrames from ``LocalMirror.to_dataframe``); no
backend calls happen here.
"""

from __future__ import annotations
from datetime import date
from typing import Any, Dict, Iterable, List, Optional, Union

import pandas as pd

from ministry_core.data.models import Record
from ministry_core.services.base_service import BaseService, ServiceResult

Rows = Union[pd.DataFrame, Iterable[Record], Iterable[Dict[str, Any]]]


def _frame(rows: Rows, columns: List[str]) -> pd.DataFrame:
    """Normalize input rows into a DataFrame that has at least ``columns``."""
    if isinstance(rows, pd.DataFrame):
        df = rows.copy()
    else:
        df = pd.DataFrame([r.to_local() if isinstance(r, Record) else dict(r) for r in rows])
    for column in columns:
        if column not in df.columns:
            df[column] = None
    return df


def _dates(series: pd.Series) -> pd.Series:
    return pd.to_datetime(series, errors="coerce")


class UnitStatsService(BaseService):
    """Numbers for a unit's home dashboard."""

    def summarize(
        self,
        members: Rows,
        subunit_count: int = 0,
        today: Optional[date] = None,
    ) -> ServiceResult:
        return self.safe_execute(
            "Summarizing unit", self._summarize, members, subunit_count, today or date.today()
        )

    def _summarize(self, members: Rows, subunit_count: int, today: date) -> Dict[str, Any]:
        df = _frame(members, ["id", "full_name", "gender", "dob"])
        total = len(df)
        gender = df["gender"].fillna("").astype(str).str.lower()
        male = int((gender == "male").sum())
        female = int((gender == "female").sum())
        ratio = (male / total) * 100 if total > 0 else 50.0

        dob = _dates(df["dob"])
        this_month = df[dob.dt.month == today.month].assign(_day=dob.dt.day)
        birthdays = (
            this_month.sort_values("_day", kind="stable")
            .drop(columns="_day")
            .to_dict(orient="records")
        )

        return {
            "total": total,
            "male": male,
            "female": female,
            "ratio": ratio,
            "subunits_count": subunit_count,
            "birthdays": birthdays,
        }


class ExecutiveStatsService(BaseService):
    """Cross-unit numbers for executive roles."""

    def finance_summary(
        self,
        requests: Rows,
        unit_names: Optional[Dict[str, str]] = None,
    ) -> ServiceResult:
        return self.safe_execute(
            "Summarizing finance", self._finance_summary, requests, unit_names or {}
        )

    def _finance_summary(self, requests: Rows, unit_names: Dict[str, str]) -> Dict[str, Any]:
        df = _frame(requests, ["unit_id", "amount", "status"])
        pending = int((df["status"] == "pending").sum())

        spent = df[df["status"].isin(["approved", "paid"])].copy()
        spent["unit"] = spent["unit_id"].map(
            lambda u: unit_names.get(str(u), "General") if pd.notna(u) else "General"
        )
        spent["amount"] = pd.to_numeric(spent["amount"], errors="coerce").fillna(0.0)
        by_unit = (
            spent.groupby("unit")["amount"].sum().sort_values(ascending=False)
            if not spent.empty else pd.Series(dtype=float)
        )

        return {
            "pending_count": pending,
            "spending_by_unit": [
                {"name": name, "value": float(value)} for name, value in by_unit.items()
            ],
        }

    def souls_summary(
        self,
        records: Rows,
        members: Rows = (),
        today: Optional[date] = None,
        top: int = 3,
    ) -> ServiceResult:
        return self.safe_execute(
            "Summarizing souls", self._souls_summary, records, members, today or date.today(), top
        )

    def _souls_summary(self, records: Rows, members: Rows, today: date, top: int) -> Dict[str, Any]:
        df = _frame(records, ["member_id", "total_count", "record_date"])
        people = _frame(members, ["id", "full_name"])
        names = {str(k): v for k, v in zip(people["id"], people["full_name"]) if pd.notna(k)}

        when = _dates(df["record_date"])
        count = pd.to_numeric(df["total_count"], errors="coerce").fillna(0).astype(int)
        this_year = when.dt.year == today.year
        this_month = this_year & (when.dt.month == today.month)

        yearly = df[this_year].assign(_count=count[this_year])
        if yearly.empty:
            winners = []
        else:
            totals = (
                yearly.groupby(yearly["member_id"].astype(str))["_count"].sum()
                .sort_values(ascending=False, kind="stable")
                .head(top)
            )
            winners = [
                {"name": names.get(member_id, "Unknown"), "count": int(total)}
                for member_id, total in totals.items()
            ]

        return {
            "month": int(count[this_month].sum()),
            "year": int(count[this_year].sum()),
            "top_winners": winners,
        }
