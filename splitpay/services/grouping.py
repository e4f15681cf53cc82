from dataclasses import dataclass, field


@dataclass
class ChargeGroup:
    seller_id: int
    purchases: list = field(default_factory=list)

    @property
    def line_item_uids(self) -> list[str]:
        return [purchase.line_item_uid for purchase in self.purchases]


def group_by_seller(purchases) -> list[ChargeGroup]:
    """Partition purchases by seller.

    Groups come out in order of each seller's first line item; purchases inside a
    group keep their line-item order.
    """
    ordered = sorted(purchases, key=lambda purchase: purchase.position or 0)
    groups: dict[int, ChargeGroup] = {}
    for purchase in ordered:
        group = groups.get(purchase.seller_id)
        if group is None:
            group = groups[purchase.seller_id] = ChargeGroup(seller_id=purchase.seller_id)
        group.purchases.append(purchase)
    return list(groups.values())
