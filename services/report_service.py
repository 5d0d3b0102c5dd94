"""
Reporting over a user's invoices: dashboard summary, outstanding balances,
revenue and tax by period, client payment history and CSV export.
"""

from datetime import date, timedelta
from typing import Any, Dict, List, Optional, Tuple

import pandas as pd
from sqlalchemy import func, select

from services.base_service import BaseService
from storage.tables import Invoice
from utils.calculations import round2
from utils.error_handling import ValidationError

UNKNOWN_CLIENT = "Unknown Client"
SUMMARY_MONTHS = 6
TOP_CLIENTS = 5

REVENUE_PERIODS = ("daily", "weekly", "monthly", "yearly")
TAX_GROUPS = ("month", "quarter", "year")
EXPORT_TYPES = ("outstanding", "revenue", "tax", "clients")


def client_name(invoice: Invoice) -> str:
    return (invoice.client_info or {}).get("name") or UNKNOWN_CLIENT


def outstanding_amount(invoice: Invoice) -> float:
    return (invoice.total or 0) - (invoice.paid_amount or 0)


def shift_month(year: int, month: int, delta: int) -> Tuple[int, int]:
    index = year * 12 + (month - 1) + delta
    return index // 12, index % 12 + 1


def revenue_period_key(day: date, period: str) -> str:
    if period == "daily":
        return day.isoformat()
    if period == "weekly":
        # Weeks start on Sunday
        return (day - timedelta(days=(day.weekday() + 1) % 7)).isoformat()
    if period == "yearly":
        return str(day.year)
    return f"{day.year}-{day.month:02d}"


def tax_period_key(day: date, group_by: str) -> str:
    if group_by == "quarter":
        return f"{day.year}-Q{(day.month - 1) // 3 + 1}"
    if group_by == "year":
        return str(day.year)
    return f"{day.year}-{day.month:02d}"


def rows_to_csv(rows: List[Dict[str, Any]]) -> str:
    """
    Render rows as CSV with a header line taken from the first row.

    Values containing commas, quotes or newlines are quoted.
    """
    if not rows:
        raise ValidationError("No data to export")
    columns = list(rows[0].keys())
    frame = pd.DataFrame(rows, columns=columns)
    return frame.to_csv(index=False, lineterminator="\n").rstrip("\n")


class ReportService(BaseService):
    name = "reports"

    def _invoices(self, user_id: str, *conditions, order_by=None) -> List[Invoice]:
        query = select(Invoice).where(Invoice.user_id == user_id, *conditions)
        if order_by is not None:
            query = query.order_by(order_by)
        return list(self.session.scalars(query))

    @staticmethod
    def _date_range(start_date: Optional[date], end_date: Optional[date]) -> list:
        conditions = []
        if start_date:
            conditions.append(Invoice.invoice_date >= start_date)
        if end_date:
            conditions.append(Invoice.invoice_date <= end_date)
        return conditions

    def summary(self, user_id: str, today: Optional[date] = None) -> Dict[str, Any]:
        """Revenue for the last six months, top clients and the status distribution."""
        today = today or date.today()
        months = [shift_month(today.year, today.month, -offset) for offset in range(SUMMARY_MONTHS - 1, -1, -1)]
        monthly = {
            (year, month): {"month": date(year, month, 1).strftime("%b %Y"), "revenue": 0.0, "paid": 0.0}
            for year, month in months
        }

        start = date(*months[0], 1)
        invoices = self._invoices(user_id, Invoice.payment_status != "cancelled")
        clients: Dict[str, Dict[str, Any]] = {}
        for invoice in invoices:
            created = invoice.created_at.date() if invoice.created_at else invoice.invoice_date
            entry = monthly.get((created.year, created.month))
            if entry is not None and created >= start:
                entry["revenue"] += invoice.total or 0
                entry["paid"] += invoice.paid_amount or 0

            name = client_name(invoice)
            client = clients.setdefault(name, {"name": name, "total_billed": 0.0, "invoice_count": 0})
            client["total_billed"] += invoice.total or 0
            client["invoice_count"] += 1

        for entry in monthly.values():
            entry["revenue"] = round2(entry["revenue"])
            entry["paid"] = round2(entry["paid"])
        for client in clients.values():
            client["total_billed"] = round2(client["total_billed"])

        rows = self.session.execute(
            select(Invoice.payment_status, func.count(Invoice.id), func.coalesce(func.sum(Invoice.total), 0))
            .where(Invoice.user_id == user_id)
            .group_by(Invoice.payment_status)
        )
        return {
            "monthly_data": list(monthly.values()),
            "top_clients": sorted(clients.values(), key=lambda c: c["total_billed"], reverse=True)[:TOP_CLIENTS],
            "status_distribution": [
                {"status": status, "count": count, "total": round2(total)} for status, count, total in rows
            ],
        }

    def outstanding(self, user_id: str) -> Dict[str, Any]:
        invoices = self._invoices(
            user_id, Invoice.payment_status.in_(("pending", "overdue")), order_by=Invoice.due_date
        )

        by_client: Dict[str, Dict[str, Any]] = {}
        rows = []
        for invoice in invoices:
            amount = outstanding_amount(invoice)
            name = client_name(invoice)
            group = by_client.setdefault(
                name, {"client_name": name, "invoice_count": 0, "total_amount": 0.0, "invoices": []}
            )
            group["invoice_count"] += 1
            group["total_amount"] = round2(group["total_amount"] + amount)
            group["invoices"].append(invoice.id)
            rows.append({
                "id": invoice.id,
                "invoice_number": invoice.invoice_number,
                "client_name": (invoice.client_info or {}).get("name"),
                "invoice_date": invoice.invoice_date.isoformat(),
                "due_date": invoice.due_date.isoformat(),
                "total": invoice.total,
                "paid_amount": invoice.paid_amount or 0,
                "outstanding": round2(amount),
                "payment_status": invoice.payment_status,
                "currency": invoice.currency,
            })

        overdue = [i for i in invoices if i.payment_status == "overdue"]
        pending = [i for i in invoices if i.payment_status == "pending"]
        return {
            "summary": {
                "total_outstanding": round2(sum(outstanding_amount(i) for i in invoices)),
                "overdue_total": round2(sum(outstanding_amount(i) for i in overdue)),
                "pending_total": round2(sum(outstanding_amount(i) for i in pending)),
                "invoice_count": len(invoices),
                "overdue_count": len(overdue),
            },
            "by_client": sorted(by_client.values(), key=lambda g: g["total_amount"], reverse=True),
            "invoices": rows,
        }

    def revenue(self, user_id: str, period: str = "monthly", start_date: Optional[date] = None,
                end_date: Optional[date] = None) -> Dict[str, Any]:
        """Billed, paid and unpaid amounts per day, week, month or year of the invoice date."""
        if period not in REVENUE_PERIODS:
            period = "monthly"

        invoices = self._invoices(
            user_id,
            Invoice.payment_status != "cancelled",
            *self._date_range(start_date, end_date),
            order_by=Invoice.invoice_date,
        )

        buckets: Dict[str, Dict[str, Any]] = {}
        for invoice in invoices:
            key = revenue_period_key(invoice.invoice_date, period)
            bucket = buckets.setdefault(key, {
                "period": key, "total_revenue": 0.0, "paid_revenue": 0.0,
                "unpaid_revenue": 0.0, "invoice_count": 0, "paid_count": 0,
            })
            bucket["total_revenue"] += invoice.total or 0
            bucket["invoice_count"] += 1
            if invoice.payment_status == "paid":
                bucket["paid_revenue"] += invoice.paid_amount or invoice.total or 0
                bucket["paid_count"] += 1
            else:
                bucket["unpaid_revenue"] += outstanding_amount(invoice)

        data = sorted(buckets.values(), key=lambda b: b["period"])
        for bucket in data:
            for field in ("total_revenue", "paid_revenue", "unpaid_revenue"):
                bucket[field] = round2(bucket[field])

        totals = {
            "total_revenue": round2(sum(b["total_revenue"] for b in data)),
            "paid_revenue": round2(sum(b["paid_revenue"] for b in data)),
            "unpaid_revenue": round2(sum(b["unpaid_revenue"] for b in data)),
            "invoice_count": sum(b["invoice_count"] for b in data),
            "paid_count": sum(b["paid_count"] for b in data),
        }
        return {"period": period, "data": data, "totals": totals}

    def tax(self, user_id: str, group_by: str = "month", start_date: Optional[date] = None,
            end_date: Optional[date] = None) -> Dict[str, Any]:
        """Collected tax per month, quarter or year, for invoices that carry tax."""
        if group_by not in TAX_GROUPS:
            group_by = "month"

        invoices = self._invoices(
            user_id,
            Invoice.payment_status != "cancelled",
            Invoice.tax_amount > 0,
            *self._date_range(start_date, end_date),
            order_by=Invoice.invoice_date,
        )

        buckets: Dict[str, Dict[str, Any]] = {}
        for invoice in invoices:
            key = tax_period_key(invoice.invoice_date, group_by)
            bucket = buckets.setdefault(key, {
                "period": key, "total_tax": 0.0, "total_revenue": 0.0,
                "invoice_count": 0, "average_tax_rate": 0.0,
            })
            bucket["total_tax"] += invoice.tax_amount or 0
            bucket["total_revenue"] += invoice.total or 0
            bucket["invoice_count"] += 1

        data = sorted(buckets.values(), key=lambda b: b["period"])
        for bucket in data:
            if bucket["total_revenue"] > 0:
                bucket["average_tax_rate"] = round2(bucket["total_tax"] / bucket["total_revenue"] * 100)
            bucket["total_tax"] = round2(bucket["total_tax"])
            bucket["total_revenue"] = round2(bucket["total_revenue"])

        total_tax = round2(sum(b["total_tax"] for b in data))
        total_revenue = round2(sum(b["total_revenue"] for b in data))
        return {
            "group_by": group_by,
            "data": data,
            "totals": {
                "total_tax": total_tax,
                "total_revenue": total_revenue,
                "invoice_count": sum(b["invoice_count"] for b in data),
                "overall_tax_rate": round2(total_tax / total_revenue * 100) if total_revenue > 0 else 0,
            },
        }

    def client_payment_history(self, user_id: str, client_id: Optional[str] = None) -> Dict[str, Any]:
        """Per-client totals with on-time and late payment counts."""
        conditions = [Invoice.payment_status != "cancelled"]
        if client_id:
            conditions.append(Invoice.client_id == client_id)
        invoices = self._invoices(user_id, *conditions, order_by=Invoice.invoice_date.desc())

        history: Dict[str, Dict[str, Any]] = {}
        for invoice in invoices:
            name = client_name(invoice)
            entry = history.setdefault(invoice.client_id or name, {
                "client_id": invoice.client_id,
                "client_name": name,
                "total_invoices": 0,
                "total_amount": 0.0,
                "paid_amount": 0.0,
                "outstanding_amount": 0.0,
                "average_invoice_value": 0.0,
                "on_time_payments": 0,
                "late_payments": 0,
                "invoices": [],
            })

            paid = invoice.paid_amount or (invoice.total if invoice.payment_status == "paid" else 0)
            outstanding = (invoice.total or 0) - paid
            entry["total_invoices"] += 1
            entry["total_amount"] += invoice.total or 0
            entry["paid_amount"] += paid
            entry["outstanding_amount"] += outstanding

            if invoice.payment_status == "paid":
                on_time = invoice.payment_date is not None and invoice.payment_date.date() <= invoice.due_date
                entry["on_time_payments" if on_time else "late_payments"] += 1

            entry["invoices"].append({
                "id": invoice.id,
                "invoice_number": invoice.invoice_number,
                "invoice_date": invoice.invoice_date.isoformat(),
                "due_date": invoice.due_date.isoformat(),
                "total": invoice.total,
                "paid_amount": round2(paid),
                "outstanding": round2(outstanding),
                "payment_status": invoice.payment_status,
                "payment_date": invoice.payment_date.isoformat() if invoice.payment_date else None,
                "currency": invoice.currency,
                "payments": [payment.to_dict() for payment in invoice.payments],
            })

        for entry in history.values():
            entry["average_invoice_value"] = round2(entry["total_amount"] / entry["total_invoices"])
            for field in ("total_amount", "paid_amount", "outstanding_amount"):
                entry[field] = round2(entry[field])

        return {"clients": sorted(history.values(), key=lambda c: c["total_amount"], reverse=True)}

    def export_rows(self, user_id: str, report_type: str) -> List[Dict[str, Any]]:
        if report_type == "outstanding":
            return self.outstanding(user_id)["invoices"]
        if report_type == "revenue":
            return self.revenue(user_id)["data"]
        if report_type == "tax":
            return self.tax(user_id)["data"]
        if report_type == "clients":
            return [
                {key: value for key, value in client.items() if key != "invoices"}
                for client in self.client_payment_history(user_id)["clients"]
            ]
        raise ValidationError(f"Unknown report type. Must be one of: {', '.join(EXPORT_TYPES)}")

    def export_csv(self, user_id: str, report_type: str) -> Tuple[str, str]:
        """
        Returns:
            Tuple of (filename, CSV text)
        """
        rows = self.export_rows(user_id, report_type)
        return f"{report_type}-report.csv", rows_to_csv(rows)
