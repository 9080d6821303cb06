# Overview: Deck weight aggregator; stores per-deck samples and derives gross weight.

from __future__ import annotations

from decimal import Decimal

from sqlalchemy import func

from ..extensions import db
from ..errors import DuplicateDeck
from ..models import DeckWeight, WeighingSession
from .axle_config_service import VehicleAxleProfile


def list_decks(session_id: int) -> list[DeckWeight]:
    return (
        db.session.query(DeckWeight)
        .filter_by(session_id=session_id)
        .order_by(DeckWeight.deck_number)
        .all()
    )


def gross_weight(session_id: int) -> Decimal:
    """Sum of every deck recorded for the session. Zero when none."""
    total = (
        db.session.query(func.coalesce(func.sum(DeckWeight.weight), 0))
        .filter(DeckWeight.session_id == session_id)
        .scalar()
    )
    return Decimal(str(total)).quantize(Decimal("0.01"))


def sum_deck_weights(decks) -> Decimal:
    total = Decimal("0")
    for deck in decks:
        total += deck.weight
    return total


def record_deck_sample(
    ws: WeighingSession,
    deck_number: int,
    weight: Decimal,
    profile: VehicleAxleProfile,
) -> DeckWeight:
    """
    Attach one deck reading to a locked, open session (no commit).

    The axle type and limit are copied from the profile so the reading keeps
    the limit that applied when it was taken. The overload flag set here is
    provisional; finalize recomputes it from the evaluator.
    """
    existing = (
        db.session.query(DeckWeight.id)
        .filter_by(session_id=ws.id, deck_number=deck_number)
        .first()
    )
    if existing is not None:
        raise DuplicateDeck(
            f"Deck {deck_number} already recorded for session {ws.id}",
            details={"session_id": ws.id, "deck_number": deck_number},
        )

    axle = profile.axle(deck_number)
    deck = DeckWeight(
        session_id=ws.id,
        deck_number=deck_number,
        weight=weight,
        axle_type=axle.axle_type if axle else None,
        max_allowed_weight=axle.max_allowed_weight if axle else None,
        is_overloaded=bool(axle and weight > axle.max_allowed_weight),
    )
    ws.decks.append(deck)
    return deck
