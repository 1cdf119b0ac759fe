"""
Reference number helpers
"""

import re
import secrets
import time
from datetime import datetime
from typing import Optional

from fee_settlement.schemas.common.enums import GatewayKind

ORDER_PREFIXES = {
    GatewayKind.PUSH_MOBILE_MONEY: "MP",
    GatewayKind.BANK_CHECKOUT: "EQ",
    GatewayKind.BANK_PUSH_USSD: "EQP",
    GatewayKind.MANUAL: "MAN",
}

RECEIPT_RAIL_CODES = {
    GatewayKind.PUSH_MOBILE_MONEY: "MPS",
    GatewayKind.BANK_CHECKOUT: "EQB",
    GatewayKind.BANK_PUSH_USSD: "EQB",
    GatewayKind.MANUAL: "MAN",
}


def _clean(code: str) -> str:
    return re.sub(r'[^A-Za-z0-9]', '', code).upper()[:20] or "STU"


def generate_order_reference(gateway_kind: GatewayKind, student_code: str, now_ms: Optional[int] = None) -> str:
    """
    Build a unique order reference embedding the student and a timestamp.

    Format: ``<PREFIX>-<STUDENT>-<epoch millis>-<random>``.
    """
    millis = now_ms if now_ms is not None else int(time.time() * 1000)
    return f"{ORDER_PREFIXES[gateway_kind]}-{_clean(student_code)}-{millis}-{secrets.token_hex(2).upper()}"


def format_receipt_number(gateway_kind: GatewayKind, day: str, sequence: int) -> str:
    """``RCPT-<RAIL>-YYYYMMDD-NNNN``"""
    return f"RCPT-{RECEIPT_RAIL_CODES[gateway_kind]}-{day}-{sequence:04d}"


def receipt_day(moment: datetime) -> str:
    return moment.strftime("%Y%m%d")
