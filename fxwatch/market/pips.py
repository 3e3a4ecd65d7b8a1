"""Pip arithmetic — pure math, no I/O.

Resolves the pip size of a currency pair and converts bid/ask spreads
into pips.
"""

import math

# Overrides for instruments that do not follow the JPY / non-JPY rule.
INSTRUMENT_PIP_VALUES: dict[str, float] = {
    "XAU/USD": 0.01,
    "XAG/USD": 0.001,
}

_DEFAULT_PIP = 0.0001
_JPY_PIP = 0.01

# Spreads are quoted in 10-pip units.
SPREAD_UNIT_PIPS = 10


def normalize_pair(pair: str) -> str:
    """Return *pair* in canonical ``"BASE/QUOTE"`` form.

    Accepts ``"EUR/USD"``, ``"EUR_USD"`` and lowercase variants.

    Raises ``ValueError`` if the pair is not two 3-letter codes.
    """
    cleaned = pair.strip().upper().replace("_", "/")
    parts = cleaned.split("/")
    if len(parts) != 2 or not all(len(p) == 3 and p.isalpha() for p in parts):
        raise ValueError(f"Invalid currency pair '{pair}' (expected e.g. 'EUR/USD')")
    if parts[0] == parts[1]:
        raise ValueError(f"Invalid currency pair '{pair}': same currency on both legs")
    return f"{parts[0]}/{parts[1]}"


def split_pair(pair: str) -> tuple[str, str]:
    """Return ``(base, quote)`` currency codes for *pair*."""
    base, quote = normalize_pair(pair).split("/")
    return base, quote


def pip_size(pair: str) -> float:
    """Smallest standard price increment for *pair*.

    0.01 for JPY-quoted pairs, 0.0001 otherwise, unless listed in
    ``INSTRUMENT_PIP_VALUES``.
    """
    canonical = normalize_pair(pair)
    if canonical in INSTRUMENT_PIP_VALUES:
        return INSTRUMENT_PIP_VALUES[canonical]
    _, quote = canonical.split("/")
    return _JPY_PIP if quote == "JPY" else _DEFAULT_PIP


def price_precision(pair: str) -> int:
    """Number of decimals used when rounding prices of *pair*.

    One digit finer than the pip (fractional pips), e.g. 5 for EUR/USD and
    3 for USD/JPY.
    """
    return round(-math.log10(pip_size(pair))) + 1


def spread_in_pips(bid: float, ask: float, pair: str) -> float:
    """Return the quoted spread of *pair*.

    Spreads are reported in units of ``SPREAD_UNIT_PIPS`` pips, so the
    1.0854 / 1.0858 EUR/USD quote reads ``0.4``.  Rounded to one decimal so
    float noise such as ``0.39999999`` reports as ``0.4``.
    """
    return round((ask - bid) / (pip_size(pair) * SPREAD_UNIT_PIPS), 1)


def is_spread_acceptable(
    bid: float,
    ask: float,
    pair: str,
    max_spread_pips: float,
) -> bool:
    """Return ``True`` if the current spread is within ``max_spread_pips``."""
    return spread_in_pips(bid, ask, pair) <= max_spread_pips
