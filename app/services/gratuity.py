from dataclasses import dataclass

DRIVER_TIP_MIN_CENTS = 500
DRIVER_TIP_FLAT_CENTS = 500
DRIVER_TIP_FLAT_UPTO_CENTS = 1500
DRIVER_TIP_SHARE = 0.25
DRIVER_TIP_CAP_CENTS = 1500


@dataclass(frozen=True)
class GratuitySplit:
    customer_tip: int
    driver_tip: int
    internal_tip: int


def _round_half_up(value: float) -> int:
    # matches Math.round for positive values; round() would use banker's rounding
    return int(value + 0.5)


def calculate_gratuity_split(customer_tip_cents: int) -> GratuitySplit:
    """
    Split a customer tip (cents) between the courier and Brew & Board.

    - under $5.00: courier gets nothing, everything is retained
    - $5.00 to $15.00 inclusive: courier gets a flat $5.00
    - over $15.00: courier gets 25% of the tip, capped at $15.00
    """
    if isinstance(customer_tip_cents, bool) or not isinstance(customer_tip_cents, int):
        raise ValueError("customer tip must be an integer number of cents")
    if customer_tip_cents < 0:
        raise ValueError("customer tip cannot be negative")

    if customer_tip_cents < DRIVER_TIP_MIN_CENTS:
        driver_tip = 0
    elif customer_tip_cents <= DRIVER_TIP_FLAT_UPTO_CENTS:
        driver_tip = DRIVER_TIP_FLAT_CENTS
    else:
        driver_tip = min(_round_half_up(customer_tip_cents * DRIVER_TIP_SHARE), DRIVER_TIP_CAP_CENTS)

    return GratuitySplit(
        customer_tip=customer_tip_cents,
        driver_tip=driver_tip,
        internal_tip=customer_tip_cents - driver_tip,
    )
