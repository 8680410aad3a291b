import logging

from dependency_injector.wiring import inject, Provide
from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import JSONResponse, Response

from localhy.containers import Container
from localhy.schemas.webhook import WebhookResponse, WebhookState
from localhy.services.payment_webhook_service import PaymentWebhookService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


@router.options("/payment")
async def payment_webhook_preflight() -> Response:
    return Response(status_code=status.HTTP_200_OK)


@router.post("/payment", response_model=WebhookResponse)
@inject
async def payment_webhook(
    request: Request,
    webhook_service: PaymentWebhookService = Depends(
        Provide[Container.services.payment_webhook_service]
    ),
) -> JSONResponse:
    """
    Payment provider notifications (PayPal IPN, Creem).

    200: credits applied, or the payment was already processed
    400: rejected (invalid payload, unknown provider, failed verification,
         payment not completed)
    500: failure while applying; the provider will redeliver
    """
    raw_body = await request.body()
    try:
        result = await webhook_service.handle(raw_body, request.headers)
    except Exception as e:
        logger.error(f"Payment webhook failed while applying: {str(e)}", exc_info=True)
        failure = WebhookResponse(
            success=False,
            state=WebhookState.VERIFIED,
            message="Failed to process payment",
        )
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=failure.model_dump(mode="json"),
        )

    return JSONResponse(
        status_code=status.HTTP_200_OK if result.success else status.HTTP_400_BAD_REQUEST,
        content=result.model_dump(mode="json"),
    )
