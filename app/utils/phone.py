"""
Phone number normalization used to deduplicate imported clients.

Imported phone numbers arrive as ``061 234 567``, ``+387 61 234-567``,
``00387612345678`` or as spreadsheet floats. Normalization keeps only digits,
preserves an international ``+`` prefix (``00`` is treated as ``+``) and
rejects values that cannot be a phone number.
"""

import re
from typing import Any, Optional
import logging

logger = logging.getLogger(__name__)


def normalize_phone(
    value: Any,
    *,
    min_digits: int = 6,
    max_digits: int = 15,
) -> Optional[str]:
    """
    Normalize a phone number for lookups and deduplication.

    Args:
        value: Phone number in any format
        min_digits: Minimum number of digits to consider valid (default 6)
        max_digits: Maximum number of digits to consider valid (default 15, E.164)

    Returns:
        ``+<digits>`` for international numbers, ``<digits>`` for local ones,
        or None if the value is empty or not a plausible phone number.

    Examples:
        "+387 61 234-567" -> "+38761234567"
        "00387 61 234 567" -> "+38761234567"
        "061/234-567" -> "061234567"
    """
    if value is None or isinstance(value, bool):
        return None

    # Spreadsheets turn phone columns into floats (61234567.0)
    if isinstance(value, float):
        if value != value or not value.is_integer():
            return None
        value = int(value)

    text = str(value).strip()
    if not text:
        return None

    # Drop extensions (x123, ext 123) before counting digits
    text = re.split(r"(?:x|ext|extension)[\s.]?\d+$", text, flags=re.IGNORECASE)[0].strip()

    international = text.startswith("+")
    digits = re.sub(r"\D", "", text)

    if not international and digits.startswith("00"):
        international = True
        digits = digits[2:]

    if len(digits) < min_digits or len(digits) > max_digits:
        logger.debug(
            "Phone number %r has %d digits, expected between %d and %d",
            value,
            len(digits),
            min_digits,
            max_digits,
        )
        return None

    return f"+{digits}" if international else digits
