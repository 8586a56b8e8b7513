"""
HTTP surface for schedulers and internal callers.

Every route requires the shared secret in the x-webhook-secret header.
Route handlers only translate between HTTP and the flows; all behavior
lives in household_ledger.orchestrator.
"""

import hmac
from decimal import Decimal
from typing import Optional

import structlog
from fastapi import APIRouter, Depends, FastAPI, Header, HTTPException, Request, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from household_ledger.audit import configure_logging
from household_ledger.config import get_settings
from household_ledger.engine import ValidationError
from household_ledger.models import BatchReport, SettlementPlan
from household_ledger.orchestrator import AppComponents, create_app_components
from household_ledger.services.storage import NotFoundError, PersistenceError, StorageError

logger = structlog.get_logger(__name__)


class AutoCreateRequest(BaseModel):
    """Optional filters for a manual batch trigger."""
    template_id: Optional[str] = None
    household_id: Optional[str] = None


class SettlementRequest(BaseModel):
    from_member_id: str = Field(..., min_length=1)
    to_member_id: str = Field(..., min_length=1)
    amount: Decimal
    note: Optional[str] = Field(default=None, max_length=500)


def get_components(request: Request) -> AppComponents:
    return request.app.state.components


def require_webhook_secret(
    x_webhook_secret: Optional[str] = Header(default=None),
    components: AppComponents = Depends(get_components),
) -> None:
    """Reject the call unless the header matches the configured secret."""
    expected = components.webhook_secret
    if (
        not expected
        or not x_webhook_secret
        or not hmac.compare_digest(x_webhook_secret.encode(), expected.encode())
    ):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")


webhook_router = APIRouter(
    prefix="/api/webhooks",
    tags=["webhooks"],
    dependencies=[Depends(require_webhook_secret)],
)

household_router = APIRouter(
    prefix="/api/households",
    tags=["households"],
    dependencies=[Depends(require_webhook_secret)],
)


async def _run_batch(
    components: AppComponents,
    template_id: Optional[str] = None,
    household_id: Optional[str] = None,
):
    try:
        return await components.chore_flow.run_due_templates(
            template_id=template_id,
            household_id=household_id,
        )
    except NotFoundError as e:
        return JSONResponse(
            status_code=status.HTTP_404_NOT_FOUND,
            content={"success": False, "error": str(e)},
        )
    except StorageError as e:
        logger.error("recurring_templates_fetch_failed", error=str(e))
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "success": False,
                "error": "Failed to fetch recurring templates",
                "details": str(e),
            },
        )
    except Exception as e:
        logger.exception("auto_create_failed")
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "success": False,
                "error": "Internal server error",
                "details": str(e),
            },
        )


@webhook_router.get("/auto-create-recurring-chores", response_model=BatchReport)
async def auto_create_recurring_chores(
    components: AppComponents = Depends(get_components),
):
    """Create chores for every due recurring template."""
    return await _run_batch(components)


@webhook_router.post("/auto-create-recurring-chores", response_model=BatchReport)
async def trigger_recurring_chores(
    body: Optional[AutoCreateRequest] = None,
    components: AppComponents = Depends(get_components),
):
    """Manual trigger, optionally restricted to one template or household."""
    body = body or AutoCreateRequest()
    return await _run_batch(components, body.template_id, body.household_id)


@household_router.get("/{household_id}/balances")
async def get_balances(
    household_id: str,
    components: AppComponents = Depends(get_components),
):
    flow = components.settlement_flow
    balances = await flow.load_balances(household_id)
    totals = await flow.load_member_totals(household_id)
    return {
        "household_id": household_id,
        "balances": [balance.model_dump(mode="json") for balance in balances],
        "member_totals": [total.model_dump(mode="json") for total in totals],
    }


@household_router.post(
    "/{household_id}/settlements",
    response_model=SettlementPlan,
    status_code=status.HTTP_201_CREATED,
)
async def create_settlement(
    household_id: str,
    body: SettlementRequest,
    components: AppComponents = Depends(get_components),
):
    try:
        return await components.settlement_flow.settle_between(
            household_id,
            body.from_member_id,
            body.to_member_id,
            body.amount,
            body.note,
        )
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=str(e))
    except NotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except PersistenceError as e:
        return JSONResponse(
            status_code=status.HTTP_409_CONFLICT,
            content={
                "detail": str(e),
                "applied_split_ids": e.applied_split_ids,
                "failed_split_id": e.failed_split_id,
            },
        )


def create_app(components: Optional[AppComponents] = None) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        components: Pre-built flows (tests inject in-memory ones);
                    defaults to create_app_components()
    """
    settings = get_settings()
    configure_logging(settings.app.log_level)

    app = FastAPI(title="Household Ledger", debug=settings.app.debug_mode)
    app.state.components = components or create_app_components(settings)

    app.include_router(webhook_router)
    app.include_router(household_router)

    return app
