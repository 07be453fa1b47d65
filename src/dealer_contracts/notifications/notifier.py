"""Signing-link delivery.

``Notifier`` renders a template and hands it to the configured channel.
``NotificationDispatcher`` runs deliveries on a thread pool, records each
attempt on the contract and never lets a delivery failure reach the caller.
"""

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor, wait
from typing import Any, Dict, List, Optional, Tuple

from .channels import LogChannel, NotificationChannel
from .templates import get_template
from ..contracts.exceptions import ContractError, UpstreamFailure
from ..contracts.models import DeliveryChannel, DeliveryStatus, NotificationRecord, utcnow

logger = logging.getLogger(__name__)

Delivery = Tuple[DeliveryChannel, str]


class Notifier:
    """Best-effort delivery of a rendered template over one channel."""

    def __init__(self, channels: Optional[Dict[DeliveryChannel, NotificationChannel]] = None):
        self.channels: Dict[DeliveryChannel, NotificationChannel] = dict(channels or {})

    def register(self, channel: DeliveryChannel, handler: NotificationChannel):
        self.channels[channel] = handler

    def get_channel(self, channel: DeliveryChannel) -> NotificationChannel:
        handler = self.channels.get(channel)
        if handler is None:
            logger.warning(f"No {channel.value} channel configured, logging message instead")
            handler = LogChannel(channel)
            self.channels[channel] = handler
        return handler

    def send(
        self,
        recipient: str,
        channel: DeliveryChannel,
        template: str,
        signing_url: str,
        context: Optional[Dict[str, Any]] = None,
    ) -> DeliveryStatus:
        """Deliver ``template`` to ``recipient``. Raises UpstreamFailure."""
        if not recipient:
            raise UpstreamFailure(f"No recipient for {channel.value}", service=channel.value)

        message = get_template(template).render({**(context or {}), "signing_url": signing_url})
        return self.get_channel(channel).send(recipient, message)


class NotificationDispatcher:
    """Fire-and-forget delivery with an audit record per attempt."""

    def __init__(self, notifier: Notifier, repository, max_workers: int = 4, enabled: bool = True):
        self.notifier = notifier
        self.repository = repository
        self.enabled = enabled
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="notify")
        self._pending = set()
        self._lock = threading.Lock()

    def dispatch(
        self,
        tenant_id: str,
        contract_id: str,
        signature_id: str,
        deliveries: List[Delivery],
        template: str,
        signing_url: str,
        context: Optional[Dict[str, Any]] = None,
    ) -> Optional[Future]:
        """Queue delivery. Returns the future, or None when disabled."""
        if not self.enabled or not deliveries:
            return None
        future = self._executor.submit(
            self.deliver, tenant_id, contract_id, signature_id,
            deliveries, template, signing_url, context,
        )
        with self._lock:
            self._pending.add(future)
        future.add_done_callback(self._discard)
        return future

    def _discard(self, future: Future):
        with self._lock:
            self._pending.discard(future)

    def flush(self, timeout: Optional[float] = None):
        """Wait for queued deliveries to finish."""
        with self._lock:
            pending = list(self._pending)
        wait(pending, timeout=timeout)

    def deliver(
        self,
        tenant_id: str,
        contract_id: str,
        signature_id: str,
        deliveries: List[Delivery],
        template: str,
        signing_url: str,
        context: Optional[Dict[str, Any]] = None,
    ) -> List[NotificationRecord]:
        records = []
        for channel, recipient in deliveries:
            record = NotificationRecord(
                to=recipient,
                channel=channel,
                template=template,
                status=DeliveryStatus.SENT,
                signature_id=signature_id,
                sent_at=utcnow(),
            )
            try:
                record.status = self.notifier.send(recipient, channel, template, signing_url, context)
            except UpstreamFailure as e:
                record.status = DeliveryStatus.FAILED
                record.error = str(e)
                logger.warning(f"Delivery to {channel.value} failed for contract {contract_id}: {e}")
            except Exception as e:
                record.status = DeliveryStatus.FAILED
                record.error = str(e)
                logger.exception(f"Unexpected delivery error for contract {contract_id}")

            try:
                self.repository.record_notification(tenant_id, contract_id, record)
            except ContractError as e:
                logger.warning(f"Could not record notification for contract {contract_id}: {e}")
            records.append(record)
        return records

    def shutdown(self, wait: bool = True):
        self._executor.shutdown(wait=wait)
