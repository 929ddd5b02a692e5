"""
Currency inference for extracted documents.

The model is asked for an ISO code but often leaves it null; the printed
document usually still carries a symbol ("₹", "$") or code ("AED") somewhere.
Codes are matched on word boundaries so "SAR" is not found inside "NECESSARY".
When several currencies appear, the one mentioned first wins.
"""
import re
from typing import Iterable, Optional

_CURRENCY_TOKENS: list[tuple[str, tuple[str, ...], tuple[str, ...]]] = [
    # code,  word tokens,                 symbols
    ("AED",  ("AED", "DIRHAM", "DIRHAMS", "DHS"), ("د.إ",)),
    ("INR",  ("INR", "RUPEE", "RUPEES"),           ("₹",)),
    ("USD",  ("USD", "DOLLAR", "DOLLARS", "US$"),  ("$",)),
    ("EUR",  ("EUR", "EURO", "EUROS"),             ("€",)),
    ("GBP",  ("GBP", "POUND", "POUNDS"),           ("£",)),
    ("SAR",  ("SAR", "RIYAL", "RIYALS"),           ()),
    ("QAR",  ("QAR",),                             ()),
    ("KWD",  ("KWD",),                             ()),
    ("OMR",  ("OMR",),                             ()),
    ("BHD",  ("BHD",),                             ()),
]

# "Rs" only next to an amount ("Rs. 120", "Rs1500", "120 Rs"), so names like
# "RS Components" and part codes like "6204-2RS" are not rupees.
_RUPEE_ABBREVIATION = re.compile(r"(?<![A-Z])RS\.?\s?(?=\d)|(?<=\d)\sRS(?![A-Z])", re.IGNORECASE)

KNOWN_CURRENCIES: frozenset[str] = frozenset(code for code, _, _ in _CURRENCY_TOKENS)

_SYMBOLS = {"INR": "₹", "USD": "$", "EUR": "€", "GBP": "£"}


def _word_pattern(words: tuple[str, ...]) -> re.Pattern:
    alternatives = "|".join(re.escape(w) for w in words)
    return re.compile(rf"(?<![A-Z])(?:{alternatives})(?![A-Z])", re.IGNORECASE)


_EXTRA_PATTERNS = {"INR": [_RUPEE_ABBREVIATION]}

_PATTERNS: list[tuple[str, list[re.Pattern]]] = [
    (
        code,
        [_word_pattern(words)]
        + [re.compile(re.escape(s)) for s in symbols]
        + _EXTRA_PATTERNS.get(code, []),
    )
    for code, words, symbols in _CURRENCY_TOKENS
]


def detect_currency(text: str) -> Optional[str]:
    """Return the currency whose code, name, or symbol appears earliest in *text*."""
    if not text:
        return None
    best: Optional[tuple[int, str]] = None
    for code, patterns in _PATTERNS:
        for pattern in patterns:
            m = pattern.search(text)
            if m and (best is None or m.start() < best[0]):
                best = (m.start(), code)
    return best[1] if best else None


def resolve_currency(
    explicit: Optional[str],
    texts: Iterable[str],
    default: str,
) -> str:
    """
    Pick the document currency: an explicit value that resolves to a known
    code, else the first signal found in *texts*, else *default*.
    """
    if explicit:
        code = str(explicit).strip().upper()
        if code in KNOWN_CURRENCIES:
            return code
        detected = detect_currency(str(explicit))
        if detected:
            return detected
    for text in texts:
        detected = detect_currency(text)
        if detected:
            return detected
    return default


def currency_symbol(code: Optional[str], default: str = "INR") -> str:
    code = (code or default).upper()
    return _SYMBOLS.get(code, f"{code} ")


def format_amount(amount: float, code: Optional[str], default: str = "INR") -> str:
    """Format *amount* with its currency symbol, e.g. "₹1,250.00" or "AED 80.00"."""
    return f"{currency_symbol(code, default)}{amount:,.2f}"
