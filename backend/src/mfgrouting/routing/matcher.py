"""Capability-based manufacturer matcher.

Pipeline for one line item:
1. Keep active manufacturers that accept new orders
2. Keep those supporting every required capability (skipped if none required)
3. Keep those whose minimum order quantity is <= the line quantity
4. Keep those with spare capacity (no limit, or open jobs below the limit)
5. If steps 2-4 leave nothing, fall back to the step 1 set (tier FALLBACK),
   preferring manufacturers with spare capacity
6. If step 1 is empty, the line item is UNMATCHED

Ties are broken by lowest lead time, then lowest manufacturer id.
"""

from typing import List, Sequence

from .ports import (
    MatcherPort,
    MatchResult,
    MatchTier,
    ManufacturerCandidate,
    LineItemRequirements,
)


def pick_best(candidates: Sequence[ManufacturerCandidate]) -> ManufacturerCandidate:
    """Deterministic tie-break: lowest lead time, then lowest id."""
    return min(candidates, key=lambda c: (c.lead_time_days, c.id))


class CapabilityMatcher(MatcherPort):
    """Pure manufacturer matcher over capability, MOQ and capacity filters."""

    def match(
        self,
        requirements: LineItemRequirements,
        pool: Sequence[ManufacturerCandidate]
    ) -> MatchResult:
        eligible = [c for c in pool if c.is_eligible]
        if not eligible:
            return MatchResult(
                manufacturer_id=None,
                tier=MatchTier.UNMATCHED,
                reason="No active manufacturer is accepting new orders",
            )

        required = requirements.required_capabilities
        if required:
            capable = [c for c in eligible if required <= c.capabilities]
        else:
            capable = eligible

        if not capable:
            return self._fallback(eligible, self._capability_shortfall(required, eligible))

        quantity = requirements.quantity
        moq_ok = [c for c in capable if c.min_order_qty <= quantity]
        if not moq_ok:
            lowest_moq = min(c.min_order_qty for c in capable)
            return self._fallback(
                eligible,
                f"No capable manufacturer accepts quantity {quantity} "
                f"(lowest minimum order quantity is {lowest_moq})",
            )

        with_capacity = [c for c in moq_ok if c.has_capacity]
        if not with_capacity:
            full = "; ".join(
                f"{c.name} is at capacity ({c.open_job_count}/{c.max_concurrent_jobs} jobs)"
                for c in sorted(moq_ok, key=lambda c: c.id)
            )
            return self._fallback(eligible, full)

        best = pick_best(with_capacity)
        if required:
            detail = f"supports {', '.join(sorted(required))}"
        else:
            detail = "no capability required"
        return MatchResult(
            manufacturer_id=best.id,
            tier=MatchTier.AUTO,
            reason=f'Matched "{best.name}": {detail}, lead time {best.lead_time_days} days',
        )

    def match_batch(
        self,
        requirements: Sequence[LineItemRequirements],
        pool: Sequence[ManufacturerCandidate]
    ) -> List[MatchResult]:
        """Match several line items against the same pool (same order as input)."""
        return [self.match(req, pool) for req in requirements]

    @staticmethod
    def _fallback(eligible: Sequence[ManufacturerCandidate], shortfall: str) -> MatchResult:
        # At-capacity manufacturers are used only when no one else is eligible
        with_capacity = [c for c in eligible if c.has_capacity]
        best = pick_best(with_capacity or eligible)
        return MatchResult(
            manufacturer_id=best.id,
            tier=MatchTier.FALLBACK,
            reason=f'{shortfall}. Fallback manufacturer: "{best.name}"',
        )

    @staticmethod
    def _capability_shortfall(required, eligible: Sequence[ManufacturerCandidate]) -> str:
        offered = set()
        for candidate in eligible:
            offered |= candidate.capabilities
        missing = sorted(required - offered)
        if missing:
            return f"No manufacturer supports capability {', '.join(missing)}"
        return f"No single manufacturer supports all of {', '.join(sorted(required))}"


# Module-level matcher for callers that just need the default strategy
default_matcher = CapabilityMatcher()


def match(requirements: LineItemRequirements, pool: Sequence[ManufacturerCandidate]) -> MatchResult:
    """Match one line item with the default capability matcher."""
    return default_matcher.match(requirements, pool)
