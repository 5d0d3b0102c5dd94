"""
Extracts invoice details from free-text WhatsApp messages.

Example messages understood by the parser::

    Invoice for John Smith, john@example.com
    5 hours at $100
    tax 10%
    due 14 days
    notes: thanks for your business
"""

import re
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Any, Dict, List, Optional

CLIENT_NAME_PATTERN = re.compile(
    r"(?:client|customer|to|for|bill to)[\s:]+([A-Za-z\s]+?)(?:,|$|\n|invoice|items|amount|total)",
    re.IGNORECASE,
)
EMAIL_PATTERN = re.compile(r"([a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,})")
PHONE_PATTERN = re.compile(r"(\+?[1-9]\d{1,14}|\d{10,15})")

# "5 items at $100", "3 hours @ 150"
UNIT_ITEM_PATTERN = re.compile(
    r"(\d+)\s+(?:items?|units?|hours?|days?)\s+(?:at|@)\s*\$?(\d+(?:\.\d+)?)",
    re.IGNORECASE,
)
# "Web Design $500"
PRICED_ITEM_PATTERN = re.compile(r"([A-Za-z\s]+?)[\s:]+?\$?(\d+(?:\.\d+)?)")
# "2 of Logo Design at $300"
COUNTED_ITEM_PATTERN = re.compile(
    r"(\d+)\s+(?:of\s+)?([A-Za-z\s]+?)\s+(?:at|@)\s*\$?(\d+(?:\.\d+)?)",
    re.IGNORECASE,
)

DUE_DATE_PATTERN = re.compile(
    r"(?:due|payment due|pay by)[\s:]+(\d{1,2}[/\-]\d{1,2}[/\-]\d{2,4}|\d+\s+(?:days?|weeks?|months?))",
    re.IGNORECASE,
)
TAX_PATTERN = re.compile(r"(?:tax|vat)[\s:]+(\d+(?:\.\d+)?)%?", re.IGNORECASE)
DISCOUNT_PATTERN = re.compile(r"(?:discount|off)[\s:]+(\d+(?:\.\d+)?)%?", re.IGNORECASE)
CURRENCY_PATTERN = re.compile(r"\$|€|£|¥|₦|usd|eur|gbp|jpy|ngn|cad|aud", re.IGNORECASE)
NOTES_PATTERN = re.compile(r"(?:notes?|remarks?)[\s:]+(.+)", re.IGNORECASE)

CURRENCY_MAP = {
    "$": "USD",
    "usd": "USD",
    "€": "EUR",
    "eur": "EUR",
    "£": "GBP",
    "gbp": "GBP",
    "¥": "JPY",
    "jpy": "JPY",
    "₦": "NGN",
    "ngn": "NGN",
    "cad": "CAD",
    "aud": "AUD",
}

INVOICE_COMMANDS = ("create invoice", "new invoice", "invoice for", "bill to")

DATE_FORMATS = ("%m/%d/%Y", "%m-%d-%Y", "%m/%d/%y", "%m-%d-%y",
                "%d/%m/%Y", "%d-%m-%Y", "%d/%m/%y", "%d-%m-%y")


@dataclass
class ParsedItem:
    description: str
    quantity: float
    rate: float

    @property
    def amount(self) -> float:
        return self.quantity * self.rate

    def to_dict(self) -> Dict[str, Any]:
        return {
            "description": self.description,
            "quantity": self.quantity,
            "rate": self.rate,
            "amount": self.amount,
        }


@dataclass
class ParsedInvoice:
    client_name: Optional[str] = None
    client_email: Optional[str] = None
    client_phone: Optional[str] = None
    items: List[ParsedItem] = field(default_factory=list)
    due_date: Optional[date] = None
    tax_rate: Optional[float] = None
    discount_rate: Optional[float] = None
    notes: Optional[str] = None
    currency: Optional[str] = None


def is_invoice_command(message: str) -> bool:
    """Whether a message asks for an invoice to be created."""
    lower = message.lower()
    if any(command in lower for command in INVOICE_COMMANDS):
        return True
    return "client" in lower and "$" in lower


def _parse_items(message: str) -> List[ParsedItem]:
    items: List[ParsedItem] = []

    for match in UNIT_ITEM_PATTERN.finditer(message):
        items.append(ParsedItem(
            description=f"Item {len(items) + 1}",
            quantity=int(match.group(1)),
            rate=float(match.group(2)),
        ))

    if not items:
        for match in PRICED_ITEM_PATTERN.finditer(message):
            description = match.group(1)
            lowered = description.lower()
            if "total" in lowered or "subtotal" in lowered:
                continue
            items.append(ParsedItem(
                description=description.strip(),
                quantity=1,
                rate=float(match.group(2)),
            ))

    if not items:
        for match in COUNTED_ITEM_PATTERN.finditer(message):
            items.append(ParsedItem(
                description=match.group(2).strip(),
                quantity=int(match.group(1)),
                rate=float(match.group(3)),
            ))

    return items


def _parse_due_date(text: str, today: date) -> Optional[date]:
    lowered = text.lower()
    if "day" in lowered or "week" in lowered or "month" in lowered:
        days_match = re.search(r"(\d+)\s+days?", text, re.IGNORECASE)
        weeks_match = re.search(r"(\d+)\s+weeks?", text, re.IGNORECASE)
        months_match = re.search(r"(\d+)\s+months?", text, re.IGNORECASE)
        if days_match:
            days = int(days_match.group(1))
        elif weeks_match:
            days = int(weeks_match.group(1)) * 7
        elif months_match:
            days = int(months_match.group(1)) * 30
        else:
            days = 30
        return today + timedelta(days=days)

    # Month first, then day first for dates such as 31/12/2026
    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    return None


def parse_invoice_command(message: str, today: Optional[date] = None) -> ParsedInvoice:
    """
    Parse an invoice creation message.

    Args:
        message: Raw message text
        today: Reference date for relative due dates (defaults to today)

    Returns:
        ParsedInvoice: Whatever could be extracted; missing fields stay None
    """
    today = today or date.today()
    data = ParsedInvoice()

    match = CLIENT_NAME_PATTERN.search(message)
    if match:
        data.client_name = match.group(1).strip() or None

    match = EMAIL_PATTERN.search(message)
    if match:
        data.client_email = match.group(1)

    match = PHONE_PATTERN.search(message)
    if match:
        data.client_phone = match.group(0)

    data.items = _parse_items(message)

    match = DUE_DATE_PATTERN.search(message)
    if match:
        data.due_date = _parse_due_date(match.group(1), today)

    match = TAX_PATTERN.search(message)
    if match:
        data.tax_rate = float(match.group(1))

    match = DISCOUNT_PATTERN.search(message)
    if match:
        data.discount_rate = float(match.group(1))

    match = CURRENCY_PATTERN.search(message)
    if match:
        data.currency = CURRENCY_MAP.get(match.group(0).lower(), "USD")

    match = NOTES_PATTERN.search(message)
    if match:
        data.notes = match.group(1).strip()

    return data


def validate_parsed_invoice(data: ParsedInvoice) -> List[str]:
    """Return the problems that prevent creating an invoice; empty when valid."""
    errors = []

    if not data.client_name and not data.client_email:
        errors.append("Client name or email is required")

    if not data.items:
        errors.append("At least one item is required")

    for index, item in enumerate(data.items, start=1):
        if not item.description or not item.description.strip():
            errors.append(f"Item {index}: Description is required")
        if item.quantity <= 0:
            errors.append(f"Item {index}: Quantity must be greater than 0")
        if item.rate < 0:
            errors.append(f"Item {index}: Rate must be positive")

    return errors


def generate_help_message(missing_fields: List[str]) -> str:
    if not missing_fields:
        return "✅ All required information provided!"

    lines = ["⚠️ Missing information:"]
    lines.extend(f"- {name}" for name in missing_fields)
    return "\n".join(lines) + "\n\nPlease provide the missing details."


USAGE_MESSAGE = (
    "👋 Hello! I can help you create invoices via WhatsApp.\n\n"
    "📝 To create an invoice, send a message like:\n"
    "\"Create invoice for John Doe, 5 items at $100 each, due in 30 days\"\n\n"
    "Or:\n"
    "\"Invoice: Client: ABC Company, Items: Web Design $500, Development $1000\"\n\n"
    "💡 Tips:\n"
    "- Include client name\n"
    "- List items with quantities and prices\n"
    "- Specify due date if needed"
)
