import logging
from typing import Optional
from uuid import UUID

from fastapi import FastAPI, Header, Query, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .config import Settings
from .errors import (
    BudgetExceededError,
    CampaignInactiveError,
    ConflictRetryExhaustedError,
    DuplicateSubmissionError,
    InsufficientFundsError,
    InvalidTransitionError,
    MarketplaceError,
    NotFoundError,
    UnauthorizedError,
)
from .models import (
    Account,
    Campaign,
    CampaignStatus,
    CampaignStatusRequest,
    CreateCampaignRequest,
    CreateSubmissionRequest,
    LedgerHistoryResponse,
    ReconciliationReport,
    RegisterAccountRequest,
    SettleRequest,
    SettlementResponse,
    Submission,
    SubmissionStatus,
)
from .service import MarketplaceService

logger = logging.getLogger(__name__)

ERROR_STATUS = {
    NotFoundError: status.HTTP_404_NOT_FOUND,
    UnauthorizedError: status.HTTP_403_FORBIDDEN,
    InsufficientFundsError: status.HTTP_402_PAYMENT_REQUIRED,
    BudgetExceededError: status.HTTP_409_CONFLICT,
    InvalidTransitionError: status.HTTP_409_CONFLICT,
    DuplicateSubmissionError: status.HTTP_409_CONFLICT,
    CampaignInactiveError: status.HTTP_409_CONFLICT,
    ConflictRetryExhaustedError: status.HTTP_503_SERVICE_UNAVAILABLE,
}


def create_app(
    service: Optional[MarketplaceService] = None,
    settings: Optional[Settings] = None,
    root_path: str = "",
) -> FastAPI:
    settings = settings or Settings.from_env()
    service = service or MarketplaceService(settings=settings)

    app = FastAPI(
        title="Clip Settlement API",
        description="Campaign budgets, submission audits and pay-per-view settlement for clippers",
        version="1.0.0",
        root_path=root_path,
    )
    app.state.service = service

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(MarketplaceError)
    async def handle_marketplace_error(request: Request, exc: MarketplaceError):
        code = ERROR_STATUS.get(type(exc), status.HTTP_400_BAD_REQUEST)
        if code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc}")
        return JSONResponse(
            status_code=code,
            content={"error": type(exc).__name__, "detail": str(exc)},
        )

    @app.get("/health", tags=["System"])
    def health_check():
        return {"status": "healthy", "service": "clip-settlement"}

    @app.post("/accounts", response_model=Account, status_code=status.HTTP_201_CREATED, tags=["Accounts"])
    def register_account(request: RegisterAccountRequest) -> Account:
        return service.register_account(request)

    @app.get("/accounts/{account_id}", response_model=Account, tags=["Accounts"])
    def get_account(account_id: UUID) -> Account:
        return service.get_account(account_id)

    @app.get("/accounts/{account_id}/ledger", response_model=LedgerHistoryResponse, tags=["Accounts"])
    def get_account_ledger(account_id: UUID, limit: int = Query(50, ge=1), offset: int = Query(0, ge=0)):
        return service.get_ledger_history(account_id, limit, offset)

    @app.get("/accounts/{account_id}/reconciliation", response_model=ReconciliationReport, tags=["Accounts"])
    def reconcile_account(account_id: UUID):
        return service.reconcile_account(account_id)

    @app.post("/campaigns", response_model=Campaign, status_code=status.HTTP_201_CREATED, tags=["Campaigns"])
    def create_campaign(request: CreateCampaignRequest, x_actor_id: UUID = Header(...)) -> Campaign:
        return service.create_campaign(x_actor_id, request)

    @app.get("/campaigns", response_model=list[Campaign], tags=["Campaigns"])
    def list_campaigns(advertiser_id: Optional[UUID] = None, status: Optional[CampaignStatus] = None):
        return service.list_campaigns(advertiser_id, status)

    @app.get("/campaigns/{campaign_id}", response_model=Campaign, tags=["Campaigns"])
    def get_campaign(campaign_id: UUID) -> Campaign:
        return service.get_campaign(campaign_id)

    @app.post("/campaigns/{campaign_id}/status", response_model=Campaign, tags=["Campaigns"])
    def set_campaign_status(campaign_id: UUID, request: CampaignStatusRequest, x_actor_id: UUID = Header(...)):
        return service.set_campaign_status(x_actor_id, campaign_id, request.status)

    @app.post("/submissions", response_model=Submission, status_code=status.HTTP_201_CREATED, tags=["Submissions"])
    def create_submission(request: CreateSubmissionRequest, x_actor_id: UUID = Header(...)) -> Submission:
        return service.create_submission(x_actor_id, request)

    @app.get("/submissions", response_model=list[Submission], tags=["Submissions"])
    def list_submissions(
        campaign_id: Optional[UUID] = None,
        clipper_id: Optional[UUID] = None,
        advertiser_id: Optional[UUID] = None,
        status: Optional[SubmissionStatus] = None,
        limit: int = Query(50, ge=1),
        offset: int = Query(0, ge=0),
    ):
        return service.list_submissions(campaign_id, clipper_id, advertiser_id, status, limit, offset)

    @app.get("/submissions/{submission_id}", response_model=Submission, tags=["Submissions"])
    def get_submission(submission_id: UUID) -> Submission:
        return service.get_submission(submission_id)

    @app.post("/submissions/{submission_id}/settle", response_model=SettlementResponse, tags=["Submissions"])
    def settle_submission(submission_id: UUID, request: SettleRequest, x_actor_id: UUID = Header(...)):
        return service.settle(submission_id, request.decision, x_actor_id)

    return app
