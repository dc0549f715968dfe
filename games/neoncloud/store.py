"""Software store — catalog and purchase rules."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

from core.events import CURRENCY_CHANGED, ITEM_PURCHASED

log = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class StoreItem:
    id: str
    name: str
    price: int
    category: str = ""
    description: str = ""
    tool: str | None = None
    tier: str = "basic"
    unlocks: tuple[str, ...] = ()
    requires: tuple[str, ...] = ()


def load_catalog(path: str | Path) -> dict[str, StoreItem]:
    with open(path, encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    catalog: dict[str, StoreItem] = {}
    for d in data.get("items", []):
        catalog[d["id"]] = StoreItem(
            id=d["id"], name=d.get("name", d["id"]), price=int(d.get("price", 0)),
            category=d.get("category", ""), description=d.get("description", ""),
            tool=d.get("tool"), tier=d.get("tier", "basic"),
            unlocks=tuple(d.get("unlocks", ())), requires=tuple(d.get("requires", ())),
        )
    log.info("Store catalog loaded: %d items", len(catalog))
    return catalog


class PurchaseError(Exception):
    pass


def _owned(player: Any, catalog: dict[str, StoreItem], tool: str) -> list[StoreItem]:
    items = []
    for item_id in player.inventory:
        item = catalog.get(item_id)
        if item is not None and item.tool == tool:
            items.append(item)
    return items


def owns_premium(player: Any, catalog: dict[str, StoreItem], tool: str) -> bool:
    """True when the player owns the premium tier of tool."""
    return any(item.tier == "premium" for item in _owned(player, catalog, tool))


def owns_tool(player: Any, catalog: dict[str, StoreItem], tool: str) -> bool:
    return bool(_owned(player, catalog, tool))


async def purchase(player: Any, catalog: dict[str, StoreItem], item_id: str) -> StoreItem:
    """Buy item_id for player. Raises PurchaseError with a user-facing message."""
    item = catalog.get(item_id)
    if item is None:
        raise PurchaseError(f"No such item: {item_id}. Type 'store' to list items.")
    if player.has_item(item.id):
        raise PurchaseError(f"You already own {item.name}.")
    missing = [m for m in item.requires if not player.missions.is_completed(m)]
    if missing:
        raise PurchaseError(f"{item.name} requires completing: {', '.join(missing)}")
    tx = player.wallet.debit(item.price, f"Purchased {item.name}")
    if tx is None:
        raise PurchaseError(
            f"Insufficient funds: {item.name} costs {item.price} NC, "
            f"you have {player.wallet.balance} NC."
        )

    player.inventory.append(item.id)
    player.unlock(*item.unlocks)
    log.info("%s bought %s for %d", player.name, item.id, item.price)
    await player.bus.publish(CURRENCY_CHANGED, amount=-item.price,
                             balance=tx.balance, reason=tx.reason)
    await player.bus.publish(ITEM_PURCHASED, item_id=item.id, price=item.price)
    return item
