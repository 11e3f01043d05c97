import logging

from fastapi import APIRouter, HTTPException, Request, status
from fastapi.concurrency import run_in_threadpool

from meeting_proxy.core.config import get_settings
from meeting_proxy.schemas.webhook import UrlValidationResponse, WebhookAcknowledgement
from meeting_proxy.services.errors import ProxyError, SignatureError, to_http_exception
from meeting_proxy.services.webhook_service import ZoomWebhookService

router = APIRouter(prefix="/webhooks", tags=["webhooks"])
logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "x-zm-signature"
TIMESTAMP_HEADER = "x-zm-request-timestamp"


@router.post(
    "/zoom",
    response_model=UrlValidationResponse | WebhookAcknowledgement,
    response_model_exclude_none=True,
)
async def receive_zoom_webhook(request: Request) -> UrlValidationResponse | WebhookAcknowledgement:
    raw_body = await request.body()
    logger.info(
        "Webhook received path=%s has_signature=%s",
        str(request.url.path),
        bool(request.headers.get(SIGNATURE_HEADER)),
    )

    try:
        service = ZoomWebhookService(get_settings())
        response = await run_in_threadpool(
            service.handle_event,
            raw_body=raw_body,
            signature=request.headers.get(SIGNATURE_HEADER),
            timestamp=request.headers.get(TIMESTAMP_HEADER),
        )
    except SignatureError as exc:
        logger.warning("Webhook rejected path=%s reason=%s", str(request.url.path), exc.message)
        raise to_http_exception(exc) from exc
    except ProxyError as exc:
        logger.warning(
            "Webhook failed path=%s status_code=%s code=%s error=%s",
            str(request.url.path),
            exc.status_code,
            exc.code,
            exc.message,
        )
        raise to_http_exception(exc) from exc
    except Exception as exc:
        logger.exception("Webhook processing failed path=%s", str(request.url.path))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"error": "Webhook processing failed.", "code": "internal_error"},
        ) from exc

    if isinstance(response, WebhookAcknowledgement):
        logger.info(
            "Webhook processed event=%s status=%s occurrence_id=%s records=%s",
            response.event,
            response.status,
            response.occurrence_id,
            response.records_written,
        )
    return response
