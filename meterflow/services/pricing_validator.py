"""Coverage checks and charge calculation over a service's pricing tiers.

Everything here is pure: callers pass tier-like objects exposing
``id``, ``tier_order``, ``min_quantity``, ``max_quantity``, ``unit_price``,
``effective_from``, ``effective_until`` and ``active`` (ORM rows or
``TierBand`` values).
"""

from dataclasses import dataclass
from datetime import date
from decimal import Decimal, ROUND_HALF_UP
from itertools import combinations
from typing import Iterable, List, Optional, Sequence
from uuid import UUID

from meterflow.schemas.pricing import QuantityRange, TierOverlap, TierScheduleReport

ZERO = Decimal("0")
CENT = Decimal("0.01")


@dataclass(frozen=True)
class TierBand:
	id: Optional[UUID]
	tier_order: int
	min_quantity: Decimal
	max_quantity: Optional[Decimal]
	unit_price: Decimal = ZERO
	effective_from: Optional[date] = None
	effective_until: Optional[date] = None
	active: bool = True

	@classmethod
	def of(cls, tier) -> "TierBand":
		return cls(
			id=tier.id,
			tier_order=tier.tier_order,
			min_quantity=Decimal(tier.min_quantity),
			max_quantity=Decimal(tier.max_quantity) if tier.max_quantity is not None else None,
			unit_price=Decimal(tier.unit_price),
			effective_from=tier.effective_from,
			effective_until=tier.effective_until,
			active=tier.active,
		)


def is_currently_active(tier, today: Optional[date] = None) -> bool:
	"""Active flag set and today within [effective_from, effective_until)"""
	today = today or date.today()
	if not tier.active or tier.effective_from is None:
		return False
	if tier.effective_from > today:
		return False
	if tier.effective_until is not None and tier.effective_until <= today:
		return False
	return True


def currently_active(tiers: Iterable, today: Optional[date] = None) -> List:
	return [t for t in tiers if is_currently_active(t, today)]


def _by_min(tiers: Iterable) -> List:
	return sorted(tiers, key=lambda t: (Decimal(t.min_quantity), t.tier_order))


def has_unbounded(tiers: Iterable) -> bool:
	return any(t.max_quantity is None for t in tiers)


def detect_gaps(tiers: Sequence) -> List[QuantityRange]:
	"""Quantity ranges not covered by any tier.

	Adjacent integer bounds (50 then 51) count as contiguous. When no tier
	is unbounded the range above the highest max is reported with end=None.
	"""
	if not tiers:
		return []

	ordered = _by_min(tiers)
	gaps: List[QuantityRange] = []

	first_min = Decimal(ordered[0].min_quantity)
	if first_min > 0:
		gaps.append(QuantityRange(start=ZERO, end=first_min))

	for current, following in zip(ordered, ordered[1:]):
		if current.max_quantity is None:
			continue
		current_max = Decimal(current.max_quantity)
		next_min = Decimal(following.min_quantity)
		if current_max + 1 < next_min:
			gaps.append(QuantityRange(start=current_max, end=next_min))

	if not has_unbounded(ordered):
		top = max(Decimal(t.max_quantity) for t in ordered)
		gaps.append(QuantityRange(start=top, end=None))

	return gaps


def has_infinite_gap(gaps: Iterable[QuantityRange]) -> bool:
	return any(g.end is None for g in gaps)


def detect_overlaps(tiers: Sequence) -> List[TierOverlap]:
	"""Every pair of tiers whose quantity ranges intersect.

	A shared boundary point is not an overlap unless one of the two tiers
	is itself a single point (min == max).
	"""
	overlaps: List[TierOverlap] = []

	for a, b in combinations(tiers, 2):
		a_min, b_min = Decimal(a.min_quantity), Decimal(b.min_quantity)
		a_max = Decimal(a.max_quantity) if a.max_quantity is not None else None
		b_max = Decimal(b.max_quantity) if b.max_quantity is not None else None

		start = max(a_min, b_min)
		if a_max is None:
			end = b_max
		elif b_max is None:
			end = a_max
		else:
			end = min(a_max, b_max)

		if end is not None and start > end:
			continue
		single_point = a_min == a_max or b_min == b_max
		if end is None or start < end or (start == end and single_point):
			overlaps.append(TierOverlap(
				tier_a=a.id,
				tier_b=b.id,
				tier_a_order=a.tier_order,
				tier_b_order=b.tier_order,
				range=QuantityRange(start=start, end=end),
			))

	return overlaps


def schedule_report(service_code: str, tiers: Sequence) -> TierScheduleReport:
	return TierScheduleReport(
		service_code=service_code,
		gaps=detect_gaps(tiers),
		overlaps=detect_overlaps(tiers),
		has_unbounded_tier=has_unbounded(tiers),
	)


def compute_charge(quantity: Decimal, tiers: Sequence) -> tuple[Decimal, List[dict]]:
	"""Progressive charge: each tier bills the share of quantity inside its band.

	Returns the total rounded to cents and one line per billed tier.
	"""
	quantity = Decimal(quantity)
	if quantity < 0:
		raise ValueError("quantity must not be negative")

	consumed = ZERO
	total = ZERO
	lines: List[dict] = []

	for tier in _by_min(tiers):
		if consumed >= quantity:
			break
		upper = quantity if tier.max_quantity is None else min(quantity, Decimal(tier.max_quantity))
		take = max(ZERO, upper - consumed)
		if take == 0:
			continue
		price = Decimal(tier.unit_price)
		amount = (take * price).quantize(CENT, rounding=ROUND_HALF_UP)
		lines.append({
			"tier_order": tier.tier_order,
			"quantity": str(take),
			"unit_price": str(price),
			"amount": str(amount),
		})
		consumed += take
		total += amount

	return total, lines
