from splitpay.services.payment_gateways import MandateOptions

SPORADIC = "sporadic"
MAXIMUM = "maximum"

SUBSCRIPTION_INTERVALS = {
    "monthly": ("month", 1),
    "quarterly": ("month", 3),
    "biannually": ("month", 6),
    "yearly": ("year", 1),
    "every_two_years": ("year", 2),
}


def mandate_options(purchases) -> MandateOptions | None:
    """Card mandate terms covering future off-session charges for these purchases."""
    purchases = list(purchases)
    if not purchases:
        return None

    if len(purchases) == 1:
        purchase = purchases[0]
        interval, interval_count = SPORADIC, None
        if purchase.is_original_subscription_purchase or purchase.is_upgrade_purchase:
            interval, interval_count = SUBSCRIPTION_INTERVALS.get(
                purchase.subscription_duration, (SPORADIC, None)
            )
        return MandateOptions(
            interval=interval,
            interval_count=interval_count,
            amount=purchase.total_transaction_cents,
            amount_type=MAXIMUM,
        )

    return MandateOptions(
        interval=SPORADIC,
        interval_count=None,
        amount=max(purchase.total_transaction_cents for purchase in purchases),
        amount_type=MAXIMUM,
    )
