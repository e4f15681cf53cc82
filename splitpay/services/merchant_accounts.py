from sqlalchemy.orm import Session

from splitpay.models import MerchantAccount


class MerchantAccountNotFound(LookupError):
    pass


def resolve_merchant_account(db: Session, seller_id: int, processor_id: str) -> MerchantAccount:
    """Seller's live account for the processor, else the platform's own account."""
    seller_account = (
        db.query(MerchantAccount)
        .filter(
            MerchantAccount.user_id == seller_id,
            MerchantAccount.charge_processor_id == processor_id,
            MerchantAccount.deleted_at.is_(None),
        )
        .order_by(MerchantAccount.id.desc())
        .first()
    )
    if seller_account:
        return seller_account

    platform_account = (
        db.query(MerchantAccount)
        .filter(
            MerchantAccount.user_id.is_(None),
            MerchantAccount.charge_processor_id == processor_id,
            MerchantAccount.deleted_at.is_(None),
        )
        .order_by(MerchantAccount.id.desc())
        .first()
    )
    if platform_account:
        return platform_account

    raise MerchantAccountNotFound(f"No {processor_id} merchant account for seller {seller_id}")
