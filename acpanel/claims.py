"""Per-principal read and claim tracking for announcements and compensations."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from typing import List, Optional, Protocol, Tuple

from .cache import EntityCache
from .errors import Rejection
from .models import ANNOUNCEMENTS, CLAIM_LOGS, COMPENSATIONS, Announcement, ClaimLog, Compensation, RewardItem

logger = logging.getLogger(__name__)


class RewardGranter(Protocol):
    def grant_reward(self, principal: str, item: RewardItem) -> bool:
        ...


@dataclass
class ClaimResult:
    compensation_id: str
    log_id: Optional[str] = None
    granted: List[RewardItem] = field(default_factory=list)
    failed: List[RewardItem] = field(default_factory=list)

    @property
    def complete(self) -> bool:
        return not self.failed


class ClaimService:
    """Moves (record, principal) pairs from unseen to seen exactly once.

    Every transition on a record runs under that record's lock, so concurrent
    claims of one compensation grant its items at most once per principal.
    """

    def __init__(self, cache: EntityCache) -> None:
        self.cache = cache

    # Announcements -----------------------------------------------------

    def unread_announcements(self, principal: str) -> List[Announcement]:
        unread = self.cache.filter(
            ANNOUNCEMENTS, lambda item: item.sent and not item.is_read_by(principal)
        )
        unread.sort(key=lambda item: (-item.priority, -(item.created_at or 0)))
        return unread

    def mark_read(self, announcement_id: str, principal: str) -> Tuple[bool, Optional[Rejection]]:
        """Returns ``(changed, rejection)``; re-marking a read entry changes nothing."""
        with self.cache.locked(ANNOUNCEMENTS, announcement_id):
            announcement = self.cache.get(ANNOUNCEMENTS, announcement_id)
            if announcement is None:
                return False, Rejection.NOT_FOUND
            if announcement.is_read_by(principal):
                return False, None
            status = dict(announcement.read_status)
            status[principal] = True
            self.cache.upsert(ANNOUNCEMENTS, replace(announcement, read_status=status))
            return True, None

    def deliver_unread(self, principal: str) -> List[Announcement]:
        """Unread announcements for a joining player, marked read on the way out."""
        delivered = self.unread_announcements(principal)
        for announcement in delivered:
            self.mark_read(announcement.id, principal)
        return delivered

    # Compensations -----------------------------------------------------

    def unclaimed_compensations(self, principal: str) -> List[Compensation]:
        pending = self.cache.filter(COMPENSATIONS, lambda item: not item.is_claimed(principal))
        pending.sort(key=lambda item: item.created_at or 0)
        return pending

    def is_claimed(self, compensation_id: str, principal: str) -> bool:
        compensation = self.cache.get(COMPENSATIONS, compensation_id)
        return compensation is not None and compensation.is_claimed(principal)

    def claim(
        self,
        compensation_id: str,
        principal_uuid: str,
        principal_name: str,
        granter: RewardGranter,
    ) -> Tuple[Optional[ClaimResult], Optional[Rejection]]:
        with self.cache.locked(COMPENSATIONS, compensation_id):
            compensation = self.cache.get(COMPENSATIONS, compensation_id)
            if compensation is None:
                return None, Rejection.NOT_FOUND
            if compensation.is_claimed(principal_uuid):
                return None, Rejection.ALREADY_CLAIMED

            result = ClaimResult(compensation_id=compensation_id)
            for item in compensation.items:
                try:
                    delivered = bool(granter.grant_reward(principal_uuid, item))
                except Exception:
                    logger.exception("Granting %s x%d to %s raised", item.material, item.amount, principal_name)
                    delivered = False
                (result.granted if delivered else result.failed).append(item)
            if result.failed:
                logger.warning(
                    "%d of %d items of compensation %s were not delivered to %s",
                    len(result.failed),
                    len(compensation.items),
                    compensation_id,
                    principal_name,
                )

            status = dict(compensation.claim_status)
            status[principal_uuid] = True
            self.cache.upsert(COMPENSATIONS, replace(compensation, claim_status=status))
            log = ClaimLog(
                player_name=principal_name,
                player_uuid=principal_uuid,
                compensation_id=compensation_id,
            )
            self.cache.upsert(CLAIM_LOGS, log)
            result.log_id = log.id
            logger.info("%s claimed compensation %s", principal_name, compensation.title)
            return result, None

    def claim_all(self, principal_uuid: str, principal_name: str, granter: RewardGranter) -> List[ClaimResult]:
        results: List[ClaimResult] = []
        for compensation in self.unclaimed_compensations(principal_uuid):
            result, rejection = self.claim(compensation.id, principal_uuid, principal_name, granter)
            if result is not None:
                results.append(result)
            elif rejection is not Rejection.ALREADY_CLAIMED:
                logger.info("Skipped compensation %s for %s: %s", compensation.id, principal_name, rejection.message)
        return results
