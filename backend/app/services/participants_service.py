from __future__ import annotations

from dataclasses import dataclass

from app.domain.models import EventName, MarketParticipant, Network

from .events_store import EventStore


@dataclass
class _Position:
    total_yes: int = 0
    total_no: int = 0
    last_side: bool = True


def get_market_participants(
    store: EventStore,
    market_id: str | int,
    *,
    network: Network | None = None,
) -> list[MarketParticipant]:
    """Aggregate ``SharesBought`` logs of one market into per-buyer positions."""

    positions: dict[str, _Position] = {}
    # Store logs are newest first; replay oldest first so last_side is the latest purchase.
    for log in reversed(store.get_market_logs(market_id)):
        if log.event_name != EventName.SHARES_BOUGHT.value:
            continue
        if network is not None and log.network is not network:
            continue
        buyer = log.args.get("buyer")
        side = log.args.get("side")
        amount = log.args.get("amount")
        if not isinstance(buyer, str) or not isinstance(side, bool) or not isinstance(amount, int):
            continue
        position = positions.setdefault(buyer, _Position())
        if side:
            position.total_yes += amount
        else:
            position.total_no += amount
        position.last_side = side

    total_pool = sum(p.total_yes + p.total_no for p in positions.values())
    participants = [
        MarketParticipant(
            address=address,
            total_yes=position.total_yes,
            total_no=position.total_no,
            total_investment=position.total_yes + position.total_no,
            last_side=position.last_side,
            investment_percentage=(
                ((position.total_yes + position.total_no) * 10000 // total_pool) / 100
                if total_pool > 0
                else 0.0
            ),
        )
        for address, position in positions.items()
    ]
    participants.sort(key=lambda item: (-item.total_investment, item.address))
    return participants
