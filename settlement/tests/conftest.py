from decimal import Decimal

import pytest

from settlement.config import Settings
from settlement.models import (
    CreateCampaignRequest,
    CreateSubmissionRequest,
    RegisterAccountRequest,
    Role,
)
from settlement.service import MarketplaceService
from settlement.store import InMemoryStorage


class StaleReadStorage(InMemoryStorage):
    """Store whose reads all lose the race once stale_reads is switched on."""

    stale_reads = False

    def _read(self, collection, record_id):
        record, version = super()._read(collection, record_id)
        if self.stale_reads:
            version = -1
        return record, version


@pytest.fixture
def settings():
    return Settings(max_attempts=100, retry_backoff_ms=0)


@pytest.fixture
def service(settings):
    return MarketplaceService(settings=settings)


@pytest.fixture
def advertiser(service):
    return service.register_account(RegisterAccountRequest(
        role=Role.ADVERTISER,
        email="brand@example.com",
        initial_bonus=Decimal("500.00"),
    ))


@pytest.fixture
def clipper(service):
    return service.register_account(RegisterAccountRequest(
        role=Role.CLIPPER,
        email="clipper@example.com",
        pix_key="clipper@example.com",
    ))


@pytest.fixture
def campaign(service, advertiser):
    return service.create_campaign(advertiser.id, CreateCampaignRequest(
        title="Summer launch clips",
        rpm=Decimal("10.00"),
        total_budget=Decimal("1000.00"),
    ))


@pytest.fixture
def submit(service, clipper, campaign):
    """Factory for pending submissions from the default clipper on the default campaign."""
    counter = {"n": 0}

    def _submit(declared_views=20000, video_link=None, clipper_id=None, campaign_id=None):
        counter["n"] += 1
        return service.create_submission(
            clipper_id or clipper.id,
            CreateSubmissionRequest(
                campaign_id=campaign_id or campaign.id,
                video_link=video_link or f"https://clips.example.com/v/{counter['n']}",
                declared_views=declared_views,
            ),
        )

    return _submit


@pytest.fixture
def contended_service():
    """A service whose store always reports a conflict once the stale switch is on.

    Uses the default attempt limit.
    """
    return MarketplaceService(storage=StaleReadStorage(), settings=Settings(retry_backoff_ms=0))
