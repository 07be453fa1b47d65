"""Wiring of the contract components into one service object."""

import logging
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Callable, Optional

from .completion import CompletionAggregator, PackageAssembler
from .contracts.models import DeliveryChannel, utcnow
from .contracts.repository import ContractRepository
from .digitization import DigitizationProcessor, ExtractionEngine, HttpExtractionEngine, NullExtractionEngine
from .integrations import ApiKeyDirectory, DocumentStore, HttpDocumentStore, IdentityDirectory, LocalDocumentStore
from .notifications import EmailChannel, NotificationDispatcher, Notifier, SMSChannel, WhatsAppChannel
from .signing import SignatureRequestManager
from .storage import ContractDatabase
from .tasks import ExpirySweeper

logger = logging.getLogger(__name__)


@dataclass
class ContractServices:
    """Every component, wired together."""

    db: ContractDatabase
    repository: ContractRepository
    store: DocumentStore
    identity: IdentityDirectory
    notifier: Notifier
    dispatcher: NotificationDispatcher
    signing: SignatureRequestManager
    digitization: DigitizationProcessor
    completion: CompletionAggregator
    sweeper: ExpirySweeper

    @classmethod
    def build(
        cls,
        db_path: Optional[Path] = None,
        store: Optional[DocumentStore] = None,
        identity: Optional[IdentityDirectory] = None,
        notifier: Optional[Notifier] = None,
        engine: Optional[ExtractionEngine] = None,
        base_url: str = "http://localhost:8000",
        clock: Callable[[], datetime] = utcnow,
        link_expiry_days: int = 7,
        sender_name: str = "Your dealership",
        notifications_enabled: bool = True,
        notification_workers: int = 4,
        sweeper_interval: int = 300,
    ) -> "ContractServices":
        db = ContractDatabase(db_path)
        store = store or LocalDocumentStore()
        repository = ContractRepository(db, clock=clock, store=store)
        notifier = notifier or Notifier()
        dispatcher = NotificationDispatcher(
            notifier, repository, max_workers=notification_workers, enabled=notifications_enabled,
        )
        completion = CompletionAggregator(repository, PackageAssembler(store))
        signing = SignatureRequestManager(
            repository,
            dispatcher=dispatcher,
            base_url=base_url,
            clock=clock,
            default_expiry_days=link_expiry_days,
            sender_name=sender_name,
            listeners=[completion.on_signature_change],
        )
        return cls(
            db=db,
            repository=repository,
            store=store,
            identity=identity or ApiKeyDirectory(),
            notifier=notifier,
            dispatcher=dispatcher,
            signing=signing,
            digitization=DigitizationProcessor(repository, engine=engine, clock=clock, store=store),
            completion=completion,
            sweeper=ExpirySweeper(signing, interval_seconds=sweeper_interval),
        )

    @classmethod
    def from_settings(cls, settings, db_path: Optional[Path] = None) -> "ContractServices":
        """Build the services from a Settings object."""
        if settings.document_store_url:
            store = HttpDocumentStore(settings.document_store_url, api_key=settings.document_store_api_key)
        else:
            store = LocalDocumentStore(Path(settings.document_store_root))

        notifier = Notifier()
        if settings.smtp_host:
            notifier.register(DeliveryChannel.EMAIL, EmailChannel(
                host=settings.smtp_host,
                port=settings.smtp_port,
                user=settings.smtp_user,
                password=settings.smtp_password,
                from_email=settings.from_email,
                use_tls=settings.smtp_use_tls,
            ))
        if settings.sms_webhook_url:
            notifier.register(DeliveryChannel.SMS, SMSChannel(
                settings.sms_webhook_url, api_key=settings.messaging_api_key,
            ))
        if settings.whatsapp_webhook_url:
            notifier.register(DeliveryChannel.WHATSAPP, WhatsAppChannel(
                settings.whatsapp_webhook_url, api_key=settings.messaging_api_key,
            ))

        if settings.extraction_url:
            engine = HttpExtractionEngine(
                settings.extraction_url,
                api_key=settings.extraction_api_key,
                callback_base_url=settings.api_base_url,
            )
        else:
            engine = NullExtractionEngine()

        return cls.build(
            db_path=db_path or Path(settings.db_path),
            store=store,
            identity=ApiKeyDirectory.from_json(settings.api_keys_json),
            notifier=notifier,
            engine=engine,
            base_url=settings.public_base_url,
            link_expiry_days=settings.link_expiry_days,
            sender_name=settings.sender_name,
            notifications_enabled=settings.notifications_enabled,
            notification_workers=settings.notification_workers,
            sweeper_interval=settings.sweeper_interval,
        )

    def shutdown(self):
        """Stop background work and drain pending deliveries."""
        if self.sweeper.running:
            self.sweeper.stop()
        self.digitization.shutdown(wait=True)
        self.dispatcher.shutdown(wait=True)
        logger.info("Contract services shut down")
