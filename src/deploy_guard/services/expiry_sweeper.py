import asyncio
import logging

from deploy_guard.clients.record_store import RecordStore
from deploy_guard.contracts.multisig import ProposalStatus
from deploy_guard.services.clock import Clock, utc_now
from deploy_guard.services.errors import ConcurrentModificationError, RegistryUnavailableError
from deploy_guard.services.proposal_service import ProposalService
from deploy_guard.services.threshold import is_expired

logger = logging.getLogger(__name__)

_OPEN_STATUSES = (ProposalStatus.PENDING, ProposalStatus.APPROVED)


class ExpirySweeper:
    """Periodically persists expiry for idle open proposals.

    Only keeps listings accurate; reads and writes evaluate expiry on their
    own, so a stopped or slow sweeper never lets a proposal execute late.
    """

    def __init__(
        self,
        store: RecordStore,
        proposal_service: ProposalService,
        interval_seconds: float,
        clock: Clock = utc_now,
    ):
        self._store = store
        self._proposals = proposal_service
        self._interval_seconds = interval_seconds
        self._clock = clock

    async def sweep_once(self) -> int:
        now = self._clock()
        expired = 0
        for proposal in await self._store.list_proposals(_OPEN_STATUSES):
            if not is_expired(proposal, now):
                continue
            try:
                stored = await self._proposals.expire(proposal)
            except ConcurrentModificationError:
                logger.warning("skipping expiry of %s, record is busy", proposal.id)
                continue
            if stored.status == ProposalStatus.EXPIRED:
                expired += 1
        if expired:
            logger.info("expiry sweep closed %s proposals", expired)
        return expired

    async def run(self) -> None:
        while True:
            try:
                await self.sweep_once()
            except RegistryUnavailableError as exc:
                logger.error("expiry sweep skipped: %s", exc.detail)
            await asyncio.sleep(self._interval_seconds)
