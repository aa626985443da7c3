"""
HTTP surface of the admission validators. The API server posts
AdmissionReview bodies to one path per validated kind.
"""

# Standard
from typing import Iterable, Optional
import threading

# Third Party
from fastapi import APIRouter, Body, FastAPI, status
from fastapi.responses import JSONResponse
import uvicorn

# First Party
import alog

# Local
from .. import config
from ..deploy_manager import DeployManagerBase, OpenshiftDeployManager
from .admission import AdmissionRequest
from .validator import (
    ClusterPodPlacementConfigValidator,
    PodPlacementConfigValidator,
    ValidatorBase,
)

log = alog.use_channel("WBHK")


def validation_router(validators: Iterable[ValidatorBase]) -> APIRouter:
    """Build a router with one POST route per validator"""
    router = APIRouter(tags=["admission"])
    for validator in validators:
        router.add_api_route(
            validator.path,
            _review_endpoint(validator),
            methods=["POST"],
            name=f"validate-{validator.kind}",
        )
    return router


def _review_endpoint(validator: ValidatorBase):
    # Plain def so FastAPI runs the requests in its threadpool
    def review(body: dict = Body(...)):
        try:
            request = AdmissionRequest.from_review(body)
        except ValueError as err:
            log.warning("Rejecting malformed admission review: %s", err)
            return JSONResponse(
                status_code=status.HTTP_400_BAD_REQUEST,
                content={"error": str(err)},
            )
        return validator.handle(request).to_review()

    return review


def health_router(ready: threading.Event) -> APIRouter:
    """Liveness and readiness probes"""
    router = APIRouter(tags=["health"])

    @router.get("/healthz", status_code=status.HTTP_200_OK)
    def healthz():
        return {"status": "ok"}

    @router.get("/readyz")
    def readyz():
        if not ready.is_set():
            return JSONResponse(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                content={"status": "not_ready"},
            )
        return {"status": "ready"}

    return router


def create_app(
    deploy_manager: Optional[DeployManagerBase] = None,
    ready: Optional[threading.Event] = None,
) -> FastAPI:
    """Create the admission application

    Args:
        deploy_manager:  Optional[DeployManagerBase]
            Used to list the sibling objects. Defaults to an
            OpenshiftDeployManager
        ready:  Optional[threading.Event]
            Gates the readiness probe. Defaults to an event that is already set

    Returns:
        app:  FastAPI
            The application with the validation and probe routes
    """
    deploy_manager = deploy_manager or OpenshiftDeployManager()
    if ready is None:
        ready = threading.Event()
        ready.set()

    validators = [
        PodPlacementConfigValidator(deploy_manager),
        ClusterPodPlacementConfigValidator(deploy_manager),
    ]
    app = FastAPI(title="multiarch-tuning-operator admission webhooks")
    app.include_router(validation_router(validators))
    app.include_router(health_router(ready))
    app.state.validators = validators
    return app


def run_server(app: FastAPI):
    """Serve the application with the configured address and certificates"""
    ssl_args = {}
    if config.webhook.tls_cert_file and config.webhook.tls_key_file:
        ssl_args = {
            "ssl_certfile": config.webhook.tls_cert_file,
            "ssl_keyfile": config.webhook.tls_key_file,
        }
    else:
        log.warning("No TLS certificate configured. Serving plain HTTP")
    log.info(
        "Serving admission webhooks on %s:%s",
        config.webhook.host,
        config.webhook.port,
    )
    uvicorn.run(
        app,
        host=config.webhook.host,
        port=int(config.webhook.port),
        log_config=None,
        **ssl_args,
    )
