from decimal import Decimal, InvalidOperation, ROUND_DOWN, ROUND_HALF_UP, localcontext
from typing import Any, Optional


def _coerce_to_decimal(value: Any) -> Optional[Decimal]:
    """Parse a venue number into a Decimal; ``"0.01%"`` becomes ``0.0001``."""
    if value is None or value is False:
        return None
    if isinstance(value, Decimal):
        return value if value.is_finite() else None

    text = str(value).strip().replace(',', '')
    scale = Decimal(1)
    if text.endswith('%'):
        scale = Decimal('100')
        text = text[:-1].rstrip()
    if not text:
        return None

    try:
        with localcontext() as ctx:
            ctx.prec = max(28, ctx.prec)
            parsed = Decimal(text)
            if not parsed.is_finite():
                return None
            return parsed / scale if scale != 1 else parsed
    except (InvalidOperation, ValueError):
        return None


def to_decimal(value: Any, default: Optional[Decimal] = None) -> Optional[Decimal]:
    """Parse exchange numbers (strings, floats, ints) into Decimal."""
    parsed = _coerce_to_decimal(value)
    return default if parsed is None else parsed


def to_float(value: Any, default: float = 0.0) -> float:
    parsed = _coerce_to_decimal(value)
    if parsed is None:
        return default
    return float(parsed)


def precision_from_step(step: Any) -> int:
    """Number of decimal places implied by a lot step such as ``0.001`` (-> 3)."""
    dec_step = _coerce_to_decimal(step)
    if dec_step is None or dec_step <= 0:
        return 0
    exponent = dec_step.normalize().as_tuple().exponent
    return max(0, -int(exponent))


def round_down_to_precision(value: Decimal, precision: int) -> Decimal:
    """Truncate ``value`` to ``precision`` decimal places; never rounds up an order size."""
    quant = Decimal(1).scaleb(-precision) if precision > 0 else Decimal(1)
    return value.quantize(quant, rounding=ROUND_DOWN)


def round_to_contracts(value: Decimal) -> Decimal:
    """Round a contract count to the nearest whole contract (half-up)."""
    return value.quantize(Decimal(1), rounding=ROUND_HALF_UP)


def format_decimal(value: Decimal) -> str:
    """Plain (non-scientific) string without trailing zeros, as venues expect."""
    normalized = format(value.normalize(), 'f')
    if '.' in normalized:
        normalized = normalized.rstrip('0').rstrip('.')
    if normalized in ('', '-0'):
        normalized = '0'
    return normalized


def normalize_funding_rate(raw_value: Any, assume_percent: bool = False) -> Optional[str]:
    """Funding rate as a plain decimal string, or None when it cannot be parsed.

    Percent strings are converted on the way in; ``assume_percent`` does the
    same for venues that publish bare percentage numbers.
    """
    rate = _coerce_to_decimal(raw_value)
    if rate is None:
        return None
    if assume_percent:
        rate = rate / Decimal('100')
    return format_decimal(rate)


def funding_rate_to_float(raw_value: Any) -> float:
    # unparseable rates read as flat funding
    text = normalize_funding_rate(raw_value)
    return float(text) if text is not None else 0.0
