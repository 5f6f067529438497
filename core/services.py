"""
Application service container

Everything with process lifetime (engine, provider clients, rate limiter) is
built once here and handed to the app; per-request objects are assembled
from it around a fresh database session.
"""
import logging
from dataclasses import dataclass
from typing import Iterator, Optional

import httpx
from fastapi import Depends, Request
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from core.config import Settings
from d2_checkout.checkout import CheckoutConfig, CheckoutSessionCreator
from d2_checkout.payment_links import PaymentLinkCreator
from d2_checkout.rate_limiter import PaymentLinkRateLimiter
from d2_checkout.stripe_client import StripeClient, StripeConfig
from d3_webhooks.webhooks import WebhookProcessor
from d4_downloads.tokens import DownloadTokenIssuer
from d5_fulfillment.emailer import FulfillmentEmailer
from d5_fulfillment.fulfillment import FulfillmentService
from d5_fulfillment.sendgrid_client import SendGridClient
from database.session import create_db_engine, create_session_factory

logger = logging.getLogger(__name__)


@dataclass
class Services:
    """Long-lived collaborators shared by all requests"""

    settings: Settings
    engine: Engine
    session_factory: sessionmaker
    stripe_client: StripeClient
    mail_client: SendGridClient
    rate_limiter: PaymentLinkRateLimiter

    def checkout_creator(self, db: Session) -> CheckoutSessionCreator:
        return CheckoutSessionCreator(db, self.stripe_client, CheckoutConfig.from_settings(self.settings))

    def payment_link_creator(self, db: Session) -> PaymentLinkCreator:
        return PaymentLinkCreator(
            db,
            self.stripe_client,
            self.rate_limiter,
            site_url=self.settings.site_url,
            config=CheckoutConfig.from_settings(self.settings),
        )

    def token_issuer(self, db: Session) -> DownloadTokenIssuer:
        return DownloadTokenIssuer(
            db,
            ttl_hours=self.settings.download_token_ttl_hours,
            max_downloads=self.settings.download_max_redemptions,
        )

    def emailer(self) -> FulfillmentEmailer:
        return FulfillmentEmailer(
            self.mail_client,
            store_name=self.settings.store_name,
            link_ttl_hours=self.settings.download_token_ttl_hours,
        )

    def fulfillment(self, db: Session) -> FulfillmentService:
        return FulfillmentService(db, self.emailer(), self.token_issuer(db), base_url=self.settings.base_url)

    def webhook_processor(self, db: Session) -> WebhookProcessor:
        return WebhookProcessor(
            db,
            self.stripe_client,
            fulfillment=self.fulfillment(db),
            max_event_age_hours=self.settings.webhook_max_event_age_hours,
        )

    def close(self) -> None:
        self.mail_client.close()
        self.engine.dispose()
        logger.info("Services closed")


def build_services(settings: Settings, mail_transport: Optional[httpx.BaseTransport] = None) -> Services:
    """Build the service container from settings"""
    engine = create_db_engine(settings.database_url, echo=settings.database_echo, pool_size=settings.database_pool_size)
    services = Services(
        settings=settings,
        engine=engine,
        session_factory=create_session_factory(engine),
        stripe_client=StripeClient(StripeConfig.from_settings(settings)),
        mail_client=SendGridClient.from_settings(settings, transport=mail_transport),
        rate_limiter=PaymentLinkRateLimiter(
            quota=settings.payment_link_rate_limit,
            window_seconds=settings.payment_link_rate_window_seconds,
        ),
    )
    logger.info(f"Services built for environment={settings.environment}")
    return services


# FastAPI dependencies
def get_services(request: Request) -> Services:
    return request.app.state.services


def get_db(services: Services = Depends(get_services)) -> Iterator[Session]:
    """Request-scoped database session"""
    db = services.session_factory()
    try:
        yield db
    finally:
        db.close()
