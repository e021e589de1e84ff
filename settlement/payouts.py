"""Out-of-band reconciliation of sales whose transfer has not completed."""
import asyncio
import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from config import settings_conf
from models import Sale, SaleStatus, utcnow

logger = logging.getLogger(__name__)


class PayoutManager:
    """Retries pending transfers and lists them for operators."""

    def __init__(
        self,
        store,
        settlement,
        settings: Optional[Dict[str, Any]] = None,
        clock: Callable[[], datetime] = utcnow
    ):
        """Initialize payout manager.

        Args:
            store: MarketStore holding the sales
            settlement: SettlementManager used to dispatch transfers
            settings: Validated settings, defaults to settings_conf
            clock: Callable returning the current UTC time
        """
        settings = settings or settings_conf
        self.store = store
        self.settlement = settlement
        self.clock = clock
        self.max_attempts = settings['max_transfer_attempts']
        self.retry_delay = timedelta(seconds=settings['transfer_retry_delay'])
        self.interval = settings['reconcile_interval']
        self._stop_requested = False

    def stop(self):
        """Signal the reconciliation loop to stop."""
        self._stop_requested = True

    async def pending_transfers(self) -> List[Sale]:
        """Sales still waiting for their transfer, oldest first."""
        sales = await self.store.find_sales(status=SaleStatus.PENDING_TRANSFER)
        return sorted(sales, key=lambda sale: sale.settled_at)

    async def reconcile_pending(self) -> Dict[str, int]:
        """Retry every pending transfer that is due.

        A sale is due when it has attempts left and its last attempt is older
        than the retry delay. The due check is repeated under the store lock
        when the sale is claimed, so a transfer already in flight is skipped.

        Returns:
            Counts of retried, settled, failed and exhausted sales
        """
        now = self.clock()
        counts = {'retried': 0, 'settled': 0, 'failed': 0, 'exhausted': 0}

        for sale in await self.pending_transfers():
            if sale.transfer_attempts >= self.max_attempts:
                counts['exhausted'] += 1
                continue
            if sale.last_transfer_attempt and now - sale.last_transfer_attempt < self.retry_delay:
                continue

            updated = await self.settlement.dispatch_transfer(sale)
            if updated is None:
                # Settled or claimed elsewhere since it was listed
                continue

            counts['retried'] += 1
            if updated.status == SaleStatus.SETTLED:
                counts['settled'] += 1
            else:
                counts['failed'] += 1
                if updated.transfer_attempts >= self.max_attempts:
                    logger.error(
                        f"Sale {sale.id} exhausted {self.max_attempts} transfer attempts; "
                        f"manual payout required"
                    )

        if counts['retried']:
            logger.info(
                f"Reconciled {counts['retried']} pending transfers: "
                f"{counts['settled']} settled, {counts['failed']} failed"
            )
        return counts

    async def process_payouts(self):
        """Main reconciliation loop.

        Runs until stop() is called, retrying due transfers every
        reconcile_interval seconds.
        """
        logger.info("Starting payout reconciliation")
        while not self._stop_requested:
            try:
                await self.reconcile_pending()
            except Exception as e:
                logger.error(f"Error in payout reconciliation: {e}")
            await asyncio.sleep(self.interval)
