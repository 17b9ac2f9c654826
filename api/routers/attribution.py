"""
Attribution API Endpoints.

Capture UTM / click-id parameters for a session and reset them.
"""

from fastapi import APIRouter, Depends, Response

from api.dependencies import ServiceContainer, get_services
from api.models import AttributionCaptureRequest, AttributionResponse
from services.attribution_capture import capture, clear_attribution

router = APIRouter()


@router.post(
    "/attribution/capture",
    response_model=AttributionResponse,
    summary="Capture Attribution",
    description="Merge a page load's UTM and click-id parameters into the session's attribution."
)
async def capture_attribution(
    request: AttributionCaptureRequest,
    services: ServiceContainer = Depends(get_services),
):
    """
    Previously captured values are kept unless the new query string carries
    a non-empty value for the same key.

    **Example request:**
    ```json
    {"session_id": "abc", "query_string": "?utm_source=fb&utm_campaign=sale"}
    ```
    """
    context = capture(request.query_string, services.session_storage(request.session_id))
    return AttributionResponse.from_context(context)


@router.delete(
    "/attribution/{session_id}",
    status_code=204,
    response_class=Response,
    summary="Reset Attribution",
)
async def reset_attribution(session_id: str, services: ServiceContainer = Depends(get_services)):
    clear_attribution(services.drop_session(session_id))
    return Response(status_code=204)
