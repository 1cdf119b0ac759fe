"""
Validation utilities for payer contact details and amounts
"""

import re
from decimal import Decimal, InvalidOperation
from typing import List, Optional


class ValidationResult:
    """Validation result container"""

    def __init__(self, is_valid: bool = True, errors: Optional[List[str]] = None, value: Optional[str] = None):
        self.is_valid = is_valid
        self.errors = errors or []
        self.value = value

    def add_error(self, error: str):
        """Add validation error"""
        self.is_valid = False
        self.errors.append(error)

    def __bool__(self):
        return self.is_valid

    def __str__(self):
        if self.is_valid:
            return "Validation passed"
        return f"Validation failed: {', '.join(self.errors)}"


class PhoneValidator:
    """Mobile number normalization for the supported numbering plans"""

    # Kenyan mobile numbers: 2547XXXXXXXX or 2541XXXXXXXX
    MSISDN_PATTERNS = {
        'KE': re.compile(r'^254[17]\d{8}$'),
    }
    PREFIX_RULES = {
        'KE': (re.compile(r'^\+?254|^0'), '254'),
    }

    @classmethod
    def extract_digits(cls, phone: str) -> str:
        """Strip separators, keeping a leading plus sign"""
        if not phone:
            return ""
        phone = phone.strip()
        plus = '+' if phone.startswith('+') else ''
        return plus + re.sub(r'\D', '', phone)

    @classmethod
    def format_msisdn(cls, phone: str, country_code: str = 'KE') -> ValidationResult:
        """
        Normalize a phone number to its international MSISDN form.

        ``0712345678``, ``+254712345678`` and ``254712345678`` all become
        ``254712345678``.
        """
        result = ValidationResult()

        if not phone:
            result.add_error("Phone number is required")
            return result

        if country_code not in cls.MSISDN_PATTERNS:
            result.add_error(f"Validation not supported for country code: {country_code}")
            return result

        prefix, replacement = cls.PREFIX_RULES[country_code]
        formatted = prefix.sub(replacement, cls.extract_digits(phone), count=1)

        if not cls.MSISDN_PATTERNS[country_code].match(formatted):
            result.add_error("Invalid phone number format. Use 07XXXXXXXX or 2547XXXXXXXX")
            return result

        result.value = formatted
        return result


class AmountValidator:
    """Monetary amount checks"""

    @staticmethod
    def parse(value) -> Optional[Decimal]:
        """Parse a gateway supplied amount, returning None when absent or malformed"""
        if value is None or value == '':
            return None
        try:
            return Decimal(str(value)).quantize(Decimal('0.01'))
        except (InvalidOperation, ValueError):
            return None
