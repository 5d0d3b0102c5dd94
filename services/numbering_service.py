"""
Invoice number sequences.

A format is a template such as ``PREFIX-YYYY-NNNN``. Formats containing
``YYYY-MM`` restart numbering every month, formats containing ``YYYY`` every
year, and all others never.
"""

import time
from datetime import date
from typing import Any, Dict, Optional

from sqlalchemy import select

from services.base_service import BaseService
from storage.tables import InvoiceNumberSequence
from utils.error_handling import ValidationError

DEFAULT_PREFIX = "INV"
DEFAULT_FORMAT = "PREFIX-YYYY-NNNN"


def reset_period_for(fmt: str) -> Optional[str]:
    if "YYYY-MM" in fmt:
        return "month"
    if "YYYY" in fmt:
        return "year"
    return None


def render_number(fmt: str, prefix: str, number: int, today: date) -> str:
    """Fill a format template. Each placeholder is replaced once, longest counter first."""
    result = fmt.replace("PREFIX", prefix, 1)
    result = result.replace("YYYY", str(today.year), 1)
    result = result.replace("MM", f"{today.month:02d}", 1)
    result = result.replace("NNNN", f"{number:04d}", 1)
    result = result.replace("NNN", f"{number:03d}", 1)
    result = result.replace("NN", f"{number:02d}", 1)
    return result


class NumberingService(BaseService):
    """Hands out sequential invoice numbers per user and prefix."""

    name = "numbering"

    def next_invoice_number(
        self,
        user_id: str,
        prefix: str = DEFAULT_PREFIX,
        fmt: str = DEFAULT_FORMAT,
        today: Optional[date] = None
    ) -> Dict[str, Any]:
        """
        Reserve the next number of a sequence, creating the sequence on first use.

        Returns:
            Dict with ``invoice_number`` and the ``sequence`` it came from
        """
        today = today or date.today()
        period = reset_period_for(fmt)

        query = select(InvoiceNumberSequence).where(
            InvoiceNumberSequence.user_id == user_id,
            InvoiceNumberSequence.prefix == prefix,
        )
        if period in ("year", "month"):
            query = query.where(InvoiceNumberSequence.year == today.year)
        if period == "month":
            query = query.where(InvoiceNumberSequence.month == today.month)

        sequence = self.session.scalars(query.order_by(InvoiceNumberSequence.created_at)).first()

        if sequence is None:
            sequence = InvoiceNumberSequence(
                user_id=user_id,
                prefix=prefix,
                format=fmt,
                current_number=1,
                year=today.year if period else None,
                month=today.month if period == "month" else None,
                reset_period=period,
            )
            self.session.add(sequence)
        elif (period == "year" and sequence.year != today.year) or \
                (period == "month" and (sequence.year != today.year or sequence.month != today.month)):
            sequence.current_number = 1
            sequence.year = today.year
            sequence.month = today.month if period == "month" else None

        number = sequence.current_number
        invoice_number = render_number(fmt, prefix, number, today)
        sequence.current_number = number + 1
        self.session.flush()

        self.logger.debug(f"Issued invoice number {invoice_number} for user {user_id}")
        return {
            "invoice_number": invoice_number,
            "sequence": {
                "prefix": sequence.prefix,
                "format": sequence.format,
                "current_number": number,
            },
        }

    def configure_sequence(
        self,
        user_id: str,
        prefix: Optional[str],
        fmt: Optional[str],
        reset_period: Optional[str] = None,
        today: Optional[date] = None
    ) -> InvoiceNumberSequence:
        """Create or update the sequence for a prefix."""
        if not prefix or not fmt:
            raise ValidationError("Prefix and format are required")
        if "PREFIX" not in fmt or "NNNN" not in fmt:
            raise ValidationError("Format must include PREFIX and NNNN (or NNN, NN)")

        today = today or date.today()
        query = select(InvoiceNumberSequence).where(
            InvoiceNumberSequence.user_id == user_id,
            InvoiceNumberSequence.prefix == prefix,
        )
        if reset_period in ("year", "month"):
            query = query.where(InvoiceNumberSequence.year == today.year)
        if reset_period == "month":
            query = query.where(InvoiceNumberSequence.month == today.month)

        sequence = self.session.scalars(query).first()
        if sequence is not None:
            sequence.format = fmt
            sequence.reset_period = reset_period or None
        else:
            sequence = InvoiceNumberSequence(
                user_id=user_id,
                prefix=prefix,
                format=fmt,
                current_number=1,
                year=today.year if reset_period else None,
                month=today.month if reset_period == "month" else None,
                reset_period=reset_period or None,
            )
            self.session.add(sequence)

        self.session.flush()
        return sequence

    def whatsapp_invoice_number(self, user_id: str, today: Optional[date] = None) -> str:
        """
        Number for an invoice created over WhatsApp.

        Uses the user's most recently created sequence as ``{prefix}-{year}-{n:04}``;
        users without a sequence get a timestamp based number.
        """
        today = today or date.today()
        sequence = self.session.scalars(
            select(InvoiceNumberSequence)
            .where(InvoiceNumberSequence.user_id == user_id)
            .order_by(InvoiceNumberSequence.created_at.desc())
        ).first()

        if sequence is None:
            return f"INV-{int(time.time() * 1000)}"

        number = sequence.current_number
        sequence.current_number = number + 1
        self.session.flush()
        return f"{sequence.prefix}-{today.year}-{number:04d}"
