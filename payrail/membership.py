"""
Trust-group membership verification.

The route selector asks ``is_member(group_owner, candidate_id)`` on every
request; nothing here caches an answer because membership can change at any
time.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Mapping, Optional, Protocol, Set
from urllib.parse import quote

import requests

from payrail.errors import Timeout, Unavailable

logger = logging.getLogger(__name__)


class MembershipVerifier(Protocol):
    def is_member(self, group_owner: str, candidate_id: str) -> bool:
        ...


@dataclass
class StaticMembershipVerifier:
    """
    In-memory trust groups for tests and single-node deployments.

    - groups : owner id -> set of member ids
    """

    groups: Dict[str, Set[str]] = field(default_factory=dict)

    def add_member(self, group_owner: str, member_id: str) -> None:
        self.groups.setdefault(group_owner, set()).add(member_id)

    def remove_member(self, group_owner: str, member_id: str) -> None:
        self.groups.get(group_owner, set()).discard(member_id)

    def set_members(self, group_owner: str, members: Iterable[str]) -> None:
        self.groups[group_owner] = set(members)

    def is_member(self, group_owner: str, candidate_id: str) -> bool:
        return candidate_id in self.groups.get(group_owner, set())


class HttpMembershipVerifier:
    """
    Ask a directory service whether ``candidate_id`` is in ``group_owner``'s group.

    ``GET {base_url}/groups/{owner}/members/{candidate}`` answers 200 for a
    member and 404 otherwise.  Anything else fails closed.
    """

    def __init__(self, base_url: str, timeout_ms: int = 1000, session: Optional[requests.Session] = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout_ms / 1000.0
        self.session = session or requests.Session()

    def is_member(self, group_owner: str, candidate_id: str) -> bool:
        url = f"{self.base_url}/groups/{quote(group_owner, safe='')}/members/{quote(candidate_id, safe='')}"
        try:
            resp = self.session.get(url, timeout=self.timeout)
        except requests.Timeout as e:
            logger.warning("Membership check timed out")
            raise Timeout("membership timeout") from e
        except requests.RequestException as e:
            logger.warning(f"Membership check failed: {type(e).__name__}")
            raise Unavailable("membership service unreachable") from e

        if resp.status_code == 200:
            return True
        if resp.status_code == 404:
            return False
        logger.warning(f"Membership service answered {resp.status_code}")
        raise Unavailable(f"membership status {resp.status_code}")


class UnconfiguredMembershipVerifier:
    """Used when no directory is configured; every check fails closed."""

    def is_member(self, group_owner: str, candidate_id: str) -> bool:
        raise Unavailable("membership verifier not configured")


def build_membership_verifier(cfg: Mapping[str, Any]) -> MembershipVerifier:
    if cfg.get("MEMBERSHIP_URL"):
        return HttpMembershipVerifier(cfg["MEMBERSHIP_URL"], cfg.get("MEMBERSHIP_TIMEOUT_MS", 1000))
    logger.warning("MEMBERSHIP_URL not set; route selection will fail closed until a verifier is configured")
    return UnconfiguredMembershipVerifier()
