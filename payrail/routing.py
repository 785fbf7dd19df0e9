"""
Route Selector

Lists the settlement rails a sender may use for a given transfer, each with
fee, latency, privacy and reliability estimates from a declared cost model.
The list is advisory: ranking follows rail priority (internal ledger, then
pull payment, then token transfer) and picking a rail is the caller's job.

Nothing about a query is recorded.  Membership is asked fresh on every call.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Union

from payrail.errors import Rejected
from payrail.membership import MembershipVerifier
from payrail.models import LatencyRange, PrivacyLevel, RailKind, RouteCandidate

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RailCostModel:
    """
    Per-rail estimates.

    - fee_ppm     : fee proportional to amount, parts per million (rounded up)
    - base_fee    : fixed fee in msat
    - latency     : expected completion window
    - privacy     : ordinal privacy of the rail
    - reliability : probability the transfer completes
    """

    fee_ppm: int
    base_fee: int
    latency: LatencyRange
    privacy: PrivacyLevel
    reliability: float

    def fee_for(self, amount: int) -> int:
        return self.base_fee + -(-amount * self.fee_ppm // 1_000_000)


def default_cost_models(pull_fee_ppm: int = 1_000) -> Dict[RailKind, RailCostModel]:
    return {
        RailKind.INTERNAL_LEDGER: RailCostModel(
            fee_ppm=0, base_fee=0, latency=LatencyRange(200, 1_000), privacy=PrivacyLevel.HIGH, reliability=0.99
        ),
        RailKind.PULL_PAYMENT: RailCostModel(
            fee_ppm=pull_fee_ppm,
            base_fee=0,
            latency=LatencyRange(1_000, 3_000),
            privacy=PrivacyLevel.MEDIUM,
            reliability=0.98,
        ),
        RailKind.TOKEN_TRANSFER: RailCostModel(
            fee_ppm=0, base_fee=0, latency=LatencyRange(2_000, 5_000), privacy=PrivacyLevel.HIGH, reliability=0.95
        ),
    }


def _valid_amount(value: Any) -> bool:
    return not isinstance(value, bool) and isinstance(value, int) and value > 0


class RouteSelector:
    """Rank admissible rails for ``(sender, recipient, amount)``."""

    def __init__(
        self,
        membership: MembershipVerifier,
        cost_models: Optional[Mapping[RailKind, RailCostModel]] = None,
    ):
        self.membership = membership
        self.cost_models = dict(cost_models or default_cost_models())

    @classmethod
    def from_config(cls, membership: MembershipVerifier, cfg: Mapping[str, Any]) -> "RouteSelector":
        return cls(membership, default_cost_models(cfg.get("ROUTE_PULL_FEE_PPM", 1_000)))

    def select_routes(
        self,
        sender: str,
        recipient: str,
        amount: Any,
        max_fee: Optional[int] = None,
        min_privacy: Optional[Union[PrivacyLevel, str]] = None,
    ) -> List[RouteCandidate]:
        """
        Return every rail ``sender`` may use to pay ``recipient`` ``amount`` msat.

        ``max_fee`` and ``min_privacy`` narrow the list; by default nothing is
        filtered.

        Raises:
            Rejected: invalid sender, recipient, amount or filter
            Timeout: the membership verifier did not answer in time
            Unavailable: the membership verifier is unreachable
        """
        if not isinstance(sender, str) or not sender.strip():
            raise Rejected(Rejected.INVALID_SENDER)
        if not isinstance(recipient, str) or not recipient.strip():
            raise Rejected(Rejected.INVALID_RECIPIENT)
        if not _valid_amount(amount):
            raise Rejected(Rejected.INVALID_AMOUNT)
        if max_fee is not None and (isinstance(max_fee, bool) or not isinstance(max_fee, int) or max_fee < 0):
            raise Rejected(Rejected.INVALID_FILTER)
        if isinstance(min_privacy, str):
            try:
                min_privacy = PrivacyLevel.from_label(min_privacy)
            except ValueError:
                raise Rejected(Rejected.INVALID_FILTER) from None
        elif min_privacy is not None and not isinstance(min_privacy, PrivacyLevel):
            raise Rejected(Rejected.INVALID_FILTER)

        sender, recipient = sender.strip(), recipient.strip()
        rails = [RailKind.PULL_PAYMENT, RailKind.TOKEN_TRANSFER]
        if self.membership.is_member(sender, recipient):
            rails.append(RailKind.INTERNAL_LEDGER)

        candidates = []
        for rail in sorted(rails, key=lambda r: r.priority):
            model = self.cost_models.get(rail)
            if model is None:
                continue
            candidate = RouteCandidate(
                rail_kind=rail,
                estimated_fee=model.fee_for(amount),
                estimated_latency=model.latency,
                privacy_level=model.privacy,
                reliability=model.reliability,
            )
            if max_fee is not None and candidate.estimated_fee > max_fee:
                continue
            if min_privacy is not None and candidate.privacy_level < min_privacy:
                continue
            candidates.append(candidate)

        logger.debug(f"Route selection produced {len(candidates)} candidate(s)")
        return candidates
