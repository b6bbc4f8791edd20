"""
Package projection.

Advisory read cache of package state derived only from the event stream. It
speeds up queries and notification fan-out; it is never a source of truth for
access control, which must read the chain.
"""

import logging
from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.orm import Session

from .models import DecodedEvent, EventType, PackageStatus
from .storage.tables import GuardianCache, PackageCache, utcnow

logger = logging.getLogger(__name__)


class PackageProjection:
    """Applies decoded events to the package_cache table of one (chain, contract)."""

    def __init__(self, chain_id: int, contract_address: str):
        self.chain_id = chain_id
        self.contract_address = contract_address

    def get(self, session: Session, package_key: str) -> PackageCache | None:
        return session.scalars(
            select(PackageCache).where(
                PackageCache.chain_id == self.chain_id,
                PackageCache.contract_address == self.contract_address,
                PackageCache.package_key == package_key.lower(),
            )
        ).first()

    def _get_or_create(self, session: Session, package_key: str) -> PackageCache:
        package = self.get(session, package_key)
        if package is None:
            package = PackageCache(
                chain_id=self.chain_id,
                contract_address=self.contract_address,
                package_key=package_key.lower(),
            )
            session.add(package)
        return package

    def apply(self, session: Session, event: DecodedEvent, now: datetime | None = None) -> bool:
        """
        Update the cached package for one event.

        Args:
            session: Database session (the caller owns the transaction)
            event: Decoded event, applied in chain order
            now: Processing time used for time-stamped effects

        Returns:
            True if the event changed the projection
        """
        now = now or utcnow()

        match event.event_type:
            case (
                EventType.GUARDIAN_APPROVED
                | EventType.GUARDIAN_VETOED
                | EventType.GUARDIAN_VETO_RESCINDED
                | EventType.GUARDIAN_APPROVE_RESCINDED
                | EventType.GUARDIAN_STATE_RESET
            ):
                # Guardian tallies are not cached
                return False
            case EventType.PACKAGE_ACTIVATED:
                package = self._get_or_create(session, event.package_key)
                package.cached_status = PackageStatus.ACTIVE.value
                package.owner_address = event.data.get("owner")
                package.beneficiary_address = event.data.get("beneficiary")
                package.manifest_uri = event.data.get("manifestUri")
                self._replace_guardians(session, package, event.data.get("guardians") or [])
            case EventType.MANIFEST_UPDATED:
                package = self._get_or_create(session, event.package_key)
                package.manifest_uri = event.data.get("manifestUri")
            case EventType.CHECK_IN:
                package = self._get_or_create(session, event.package_key)
                package.last_check_in = now
            case EventType.RENEWED:
                package = self._get_or_create(session, event.package_key)
                paid_until = int(event.data.get("paidUntil") or 0)
                if paid_until > 0:
                    try:
                        package.paid_until = datetime.fromtimestamp(paid_until, tz=timezone.utc)
                    except (OverflowError, OSError, ValueError):
                        logger.warning(f"paidUntil {paid_until} out of range for {event}")
            case EventType.PENDING_RELEASE:
                package = self._get_or_create(session, event.package_key)
                package.cached_status = PackageStatus.PENDING_RELEASE.value
                package.pending_since = now
            case EventType.RELEASED:
                package = self._get_or_create(session, event.package_key)
                package.cached_status = PackageStatus.RELEASED.value
                package.released_at = now
            case EventType.REVOKED:
                package = self._get_or_create(session, event.package_key)
                package.cached_status = PackageStatus.REVOKED.value
            case EventType.PACKAGE_RESCUED:
                package = self._get_or_create(session, event.package_key)
                package.cached_status = PackageStatus.ACTIVE.value
                package.pending_since = None
            case _:
                raise ValueError(f"Unhandled event type: {event.event_type}")

        package.last_indexed_block = event.block_number
        package.updated_at = now
        session.flush()
        logger.debug(f"Projected {event} -> status={package.cached_status}")
        return True

    def _replace_guardians(self, session: Session, package: PackageCache, guardians: list[str]) -> None:
        # Delete the old set before inserting so re-listed guardians don't hit the unique key
        package.guardians.clear()
        session.flush()

        ordered = list(dict.fromkeys(guardians))
        package.guardians.extend(
            GuardianCache(guardian_address=address, position=position)
            for position, address in enumerate(ordered)
        )
