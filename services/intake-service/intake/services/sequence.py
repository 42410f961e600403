"""
Ticket ID sequence: REQ-YYMM### with the counter restarting every month.

The counter comes from the last row of the Tickets sheet, so the caller must
hold the mutation lock between reading that row and appending the new one.
"""
import re
from datetime import datetime
from typing import NamedTuple, Optional

from intake.core.logger import get_logger

logger = get_logger(__name__)

ID_PREFIX = "REQ-"
# counters past 999 keep all their digits
ID_PATTERN = re.compile(r"REQ-(\d{4})-?(\d{3,})")


class TicketIdParts(NamedTuple):
    year_month: str
    counter: int


def parse_ticket_id(value: Optional[str]) -> Optional[TicketIdParts]:
    match = ID_PATTERN.search(value or "")
    if not match:
        return None
    return TicketIdParts(match.group(1), int(match.group(2)))


def year_month(now: datetime) -> str:
    return now.strftime("%y%m")


def next_ticket_id(now: datetime, last_id: Optional[str]) -> str:
    current = year_month(now)
    counter = 1

    parts = parse_ticket_id(last_id)
    if parts is None:
        if last_id:
            logger.warning(f"Last ticket id {last_id!r} is not a REQ id, restarting counter at 1")
    elif parts.year_month == current:
        counter = parts.counter + 1

    return f"{ID_PREFIX}{current}{counter:03d}"
