"""Telegram MarkdownV2 formatting helpers.

Amounts are rendered with adaptive precision so that both whale-sized
and dust-sized values stay readable in a one-line notification.
"""

from __future__ import annotations

import math
from decimal import Decimal

ACCOUNT_EXPLORER_URL = "https://pikespeak.ai/wallet-explorer/{account_id}"
TRANSACTION_EXPLORER_URL = "https://pikespeak.ai/transaction-viewer/{tx_hash}/detailed"

# Characters Telegram requires to be escaped outside of entities.
_MARKDOWNV2_SPECIAL = set("_*[]()~`>#+-=|{}.!\\")

# Raw amounts are scaled down to at most this many fractional digits
# before conversion to float.
_MAX_PRECISION = 12


def escape_markdownv2(text: str) -> str:
    """Escape a string for Telegram MarkdownV2."""
    return "".join(f"\\{c}" if c in _MARKDOWNV2_SPECIAL else c for c in text)


def escape_markdownv2_code(text: str) -> str:
    """Escape a string for use inside a MarkdownV2 code block."""
    return text.replace("\\", "\\\\").replace("`", "\\`")


def truncate_account_id(account_id: str, chars: int = 6) -> str:
    """Shorten implicit (64-hex) accounts to ``abcdef...123456``."""
    if len(account_id) < chars * 2 + 4:
        return account_id
    return f"{account_id[:chars]}...{account_id[-chars:]}"


def _strip_trailing_zeros(s: str) -> str:
    if "." in s:
        s = s.rstrip("0").rstrip(".")
    return s


def format_token_amount(amount: int, decimals: int, symbol: str) -> str:
    """Format a raw token amount as a human-readable string.

    Args:
        amount: Amount in the token's smallest units (may be negative).
        decimals: Token decimals.
        symbol: Token ticker appended after the number.

    Returns:
        E.g. ``"1.5 NEAR"``, ``"12345678 SHIT"``, ``"0.00012 BLACKDRAGON"``.
    """
    if decimals == 0:
        return f"{amount} {symbol}"
    if amount == 0:
        return f"0 {symbol}"

    precision = min(_MAX_PRECISION, decimals)
    scaled = abs(amount) // 10 ** (decimals - precision)
    value = scaled / 10**precision

    if value >= 1_000_000:
        s = f"{value:.0f}"
    elif value >= 10:
        s = f"{value:.2f}"
    elif value >= 1:
        s = f"{value:.3f}"
    elif value >= 1e-12:
        digits = -math.floor(math.log10(value)) + 2
        s = f"{value:.{digits}f}"
    else:
        s = "0"

    sign = "-" if amount < 0 and s != "0" else ""
    return f"{sign}{_strip_trailing_zeros(s)} {symbol}"


def format_usd_amount(amount: Decimal | float) -> str:
    """Format a USD value, keeping roughly three significant digits for small values."""
    value = float(amount)
    if value <= 0:
        return "$0"
    digits = max(0, 2 - int(math.log10(value)))
    return f"${value:.{digits}f}"


def format_account_link(account_id: str) -> str:
    """Markdown link to an account on the explorer."""
    name = escape_markdownv2(truncate_account_id(account_id))
    return f"[{name}]({ACCOUNT_EXPLORER_URL.format(account_id=account_id)})"


def format_tx_link(tx_hash: str, label: str = "Tx") -> str:
    """Markdown link to a transaction on the explorer."""
    url = TRANSACTION_EXPLORER_URL.format(tx_hash=tx_hash)
    return f"[{escape_markdownv2(label)}]({url})"
