# Overview: Overload evaluator; compares deck weights against the vehicle's axle limits.

"""
Overload Evaluator

Rules:
- Each deck sample is matched to the axle with the same number.
- An axle is overloaded iff weight > max_allowed_weight (strict; equal is legal).
- The vehicle is overloaded iff any axle is overloaded.
- overload_amount = sum of (weight - max) over overloaded axles only.
- Samples with no matching axle are skipped and listed as unverified. A
  missing profile never blocks finalize.
- Declared axles with no sample are listed as missing decks
  (partial weighing warning, non-fatal).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Iterable

from .axle_config_service import VehicleAxleProfile, get_profile


@dataclass(frozen=True)
class DeckReading:
    """Minimal view of a deck sample the evaluator needs."""
    deck_number: int
    weight: Decimal


@dataclass(frozen=True)
class AxleEvaluation:
    deck_number: int
    weight: Decimal
    axle_type: str | None = None
    max_allowed_weight: Decimal | None = None
    is_overloaded: bool = False

    @property
    def is_verified(self) -> bool:
        return self.max_allowed_weight is not None

    @property
    def excess(self) -> Decimal:
        if not self.is_overloaded:
            return Decimal("0")
        return self.weight - self.max_allowed_weight

    def to_dict(self) -> dict:
        return {
            "axle_number": self.deck_number,
            "axle_type": self.axle_type,
            "weight": float(self.weight),
            "max_allowed_weight": (
                float(self.max_allowed_weight) if self.max_allowed_weight is not None else None
            ),
            "excess": float(self.excess),
        }


@dataclass(frozen=True)
class OverloadResult:
    vehicle_id: int
    axles: tuple[AxleEvaluation, ...] = field(default_factory=tuple)
    missing_decks: tuple[int, ...] = field(default_factory=tuple)

    @property
    def is_overloaded(self) -> bool:
        return any(axle.is_overloaded for axle in self.axles)

    @property
    def overload_amount(self) -> Decimal:
        total = Decimal("0")
        for axle in self.axles:
            total += axle.excess
        return total

    @property
    def overloaded_axles(self) -> list[AxleEvaluation]:
        return [axle for axle in self.axles if axle.is_overloaded]

    @property
    def unverified_axles(self) -> list[int]:
        return [axle.deck_number for axle in self.axles if not axle.is_verified]

    @property
    def partial_weighing(self) -> bool:
        return bool(self.missing_decks)

    @property
    def gross_weight(self) -> Decimal:
        total = Decimal("0")
        for axle in self.axles:
            total += axle.weight
        return total

    def for_deck(self, deck_number: int) -> AxleEvaluation | None:
        for axle in self.axles:
            if axle.deck_number == deck_number:
                return axle
        return None

    def warnings(self) -> list[dict]:
        found = []
        if self.partial_weighing:
            found.append({"code": "PARTIAL_WEIGHING", "missing_decks": list(self.missing_decks)})
        if self.unverified_axles:
            found.append({"code": "UNVERIFIED_AXLES", "axles": self.unverified_axles})
        return found

    def to_dict(self) -> dict:
        return {
            "vehicle_id": self.vehicle_id,
            "is_overloaded": self.is_overloaded,
            "overload_amount": float(self.overload_amount),
            "axles": [
                dict(axle.to_dict(), is_overloaded=axle.is_overloaded) for axle in self.axles
            ],
            "overloaded_axles": [axle.to_dict() for axle in self.overloaded_axles],
            "unverified_axles": self.unverified_axles,
            "missing_decks": list(self.missing_decks),
            "warnings": self.warnings(),
        }


def evaluate_against_profile(
    profile: VehicleAxleProfile,
    samples: Iterable[DeckReading],
) -> OverloadResult:
    """Pure evaluation of deck readings against a loaded profile."""
    evaluations = []
    seen = set()
    for sample in sorted(samples, key=lambda s: s.deck_number):
        seen.add(sample.deck_number)
        axle = profile.axle(sample.deck_number)
        if axle is None:
            evaluations.append(AxleEvaluation(deck_number=sample.deck_number, weight=sample.weight))
            continue
        evaluations.append(
            AxleEvaluation(
                deck_number=sample.deck_number,
                weight=sample.weight,
                axle_type=axle.axle_type,
                max_allowed_weight=axle.max_allowed_weight,
                is_overloaded=sample.weight > axle.max_allowed_weight,
            )
        )

    missing = tuple(
        n for n in range(1, profile.declared_axle_count + 1) if n not in seen
    )
    return OverloadResult(
        vehicle_id=profile.vehicle_id,
        axles=tuple(evaluations),
        missing_decks=missing,
    )


def evaluate(vehicle_id: int, deck_samples: Iterable, tenant_id: int | None = None) -> OverloadResult:
    """
    Evaluate deck samples (DeckWeight rows or DeckReading) for a vehicle.

    Raises NotFound if the vehicle does not exist.
    """
    profile = get_profile(vehicle_id, tenant_id)
    readings = [DeckReading(deck_number=s.deck_number, weight=s.weight) for s in deck_samples]
    return evaluate_against_profile(profile, readings)
