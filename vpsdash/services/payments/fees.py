"""Deposit fee rules.

Fees are computed once when a deposit is created and stored on the
transaction; nothing recomputes them afterwards.
"""

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal

CENT = Decimal("0.01")


@dataclass(frozen=True)
class FeeRule:
    """`fixed`: flat amount. `percentage_plus_fixed`: amount * rate + flat."""

    kind: str
    fixed: Decimal = Decimal("0")
    percentage: Decimal = Decimal("0")


DEFAULT_FEE_RULE = FeeRule(kind="percentage_plus_fixed", percentage=Decimal("0.02"), fixed=Decimal("10"))

_USDT_RULE = FeeRule(kind="percentage_plus_fixed", percentage=Decimal("0.02"), fixed=Decimal("7"))

CRYPTO_DEPOSIT_FEES: dict[str, FeeRule] = {
    "usdt": _USDT_RULE,
    "usdt_trc20": _USDT_RULE,
    "usdt_erc20": _USDT_RULE,
    "usdttrc20": _USDT_RULE,
    "usdterc20": _USDT_RULE,
}


def _as_decimal(value) -> Decimal:
    return value if isinstance(value, Decimal) else Decimal(str(value))


def fee_rule(currency_code: str) -> FeeRule:
    """Rule for `currency_code`; unknown codes get the default rule."""

    return CRYPTO_DEPOSIT_FEES.get((currency_code or "").strip().lower(), DEFAULT_FEE_RULE)


def compute_fee(currency_code: str, base_amount) -> Decimal:
    rule = fee_rule(currency_code)
    amount = _as_decimal(base_amount)
    if rule.kind == "fixed":
        fee = rule.fixed
    elif rule.kind == "percentage_plus_fixed":
        fee = amount * rule.percentage + rule.fixed
    else:
        fee = Decimal("0")
    return fee.quantize(CENT, rounding=ROUND_HALF_UP)


def describe_fee(currency_code: str) -> str:
    """Human readable rule, e.g. `2.0% + $7 fee`."""

    rule = fee_rule(currency_code)
    if rule.kind == "fixed":
        return f"${rule.fixed} fixed fee"
    if rule.kind == "percentage_plus_fixed":
        return f"{rule.percentage * 100:.1f}% + ${rule.fixed} fee"
    return "No fee information available"
