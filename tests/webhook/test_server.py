"""
Tests for the admission webhook HTTP server
"""

# Standard
from unittest import mock
import threading

# Third Party
from fastapi.testclient import TestClient
import pytest

# First Party
import aconfig

# Local
from multiarch_tuning import constants
from multiarch_tuning.deploy_manager import OpenshiftDeployManager
from multiarch_tuning.test_helpers.helpers import (
    MockDeployManager,
    admission_review,
    library_config,
    make_cppc,
    make_ppc,
)
from multiarch_tuning.webhook import admission
from multiarch_tuning.webhook.server import create_app, run_server

## Helpers #####################################################################


@pytest.fixture
def client():
    dm = MockDeployManager(resources=[make_ppc(name="taken", priority=9)])
    return TestClient(create_app(deploy_manager=dm))


def webhook_config(cert="", key=""):
    return aconfig.Config(
        {"host": "127.0.0.1", "port": 8443, "tls_cert_file": cert, "tls_key_file": key},
        override_env_vars=False,
    )


## Probes ######################################################################


def test_healthz(client):
    response = client.get("/healthz")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_readyz_gated():
    """Make sure the readiness probe follows the ready event"""
    ready = threading.Event()
    client = TestClient(create_app(deploy_manager=MockDeployManager(), ready=ready))
    assert client.get("/readyz").status_code == 503
    ready.set()
    response = client.get("/readyz")
    assert response.status_code == 200
    assert response.json() == {"status": "ready"}


## Validation routes ###########################################################


def test_ppc_allowed(client):
    review = admission_review(admission.CREATE, make_ppc(priority=1), uid="u-1")
    response = client.post(constants.POD_PLACEMENT_CONFIG_WEBHOOK_PATH, json=review)
    assert response.status_code == 200
    body = response.json()
    assert body["kind"] == admission.ADMISSION_REVIEW_KIND
    assert body["response"]["uid"] == "u-1"
    assert body["response"]["allowed"] is True
    assert body["response"]["status"]["code"] == 200


def test_ppc_denied(client):
    """A denial is a successful review carrying allowed=false"""
    review = admission_review(admission.CREATE, make_ppc(name="new", priority=9))
    response = client.post(constants.POD_PLACEMENT_CONFIG_WEBHOOK_PATH, json=review)
    assert response.status_code == 200
    body = response.json()["response"]
    assert body["allowed"] is False
    assert body["status"]["code"] == 403
    assert body["status"]["reason"] == "Forbidden"


def test_cppc_delete_denied(client):
    review = admission_review(admission.DELETE, old=make_cppc())
    response = client.post(
        constants.CLUSTER_POD_PLACEMENT_CONFIG_WEBHOOK_PATH, json=review
    )
    assert response.status_code == 200
    assert response.json()["response"]["allowed"] is False


def test_ppc_malformed_object_answers_review(client):
    """An object with fields of the wrong shape still gets a review back"""
    ppc = make_ppc()
    ppc["spec"]["plugins"] = []
    review = admission_review(admission.CREATE, ppc, uid="u-2")
    response = client.post(constants.POD_PLACEMENT_CONFIG_WEBHOOK_PATH, json=review)
    assert response.status_code == 200
    body = response.json()["response"]
    assert body["uid"] == "u-2"
    assert body["allowed"] is False
    assert body["status"]["code"] == 400


@pytest.mark.parametrize(
    "body",
    [
        {"kind": "NotAReview"},
        {"kind": admission.ADMISSION_REVIEW_KIND, "request": {}},
    ],
)
def test_malformed_review(client, body):
    response = client.post(constants.POD_PLACEMENT_CONFIG_WEBHOOK_PATH, json=body)
    assert response.status_code == 400
    assert "error" in response.json()


def test_unknown_path(client):
    response = client.post("/validate-something-else", json={})
    assert response.status_code == 404


## App construction ############################################################


def test_create_app_defaults():
    """The default deploy manager does not connect until it is used"""
    app = create_app()
    kinds = [validator.kind for validator in app.state.validators]
    assert kinds == [
        constants.POD_PLACEMENT_CONFIG_KIND,
        constants.CLUSTER_POD_PLACEMENT_CONFIG_KIND,
    ]
    for validator in app.state.validators:
        assert isinstance(validator.deploy_manager, OpenshiftDeployManager)


@pytest.mark.parametrize(
    ["cert", "key", "ssl_expected"],
    [("/tls/tls.crt", "/tls/tls.key", True), ("", "", False)],
)
def test_run_server(cert, key, ssl_expected):
    app = create_app(deploy_manager=MockDeployManager())
    with library_config(webhook=webhook_config(cert, key)), mock.patch(
        "multiarch_tuning.webhook.server.uvicorn.run"
    ) as run_mock:
        run_server(app)
    run_mock.assert_called_once()
    kwargs = run_mock.call_args.kwargs
    assert run_mock.call_args.args == (app,)
    assert kwargs["host"] == "127.0.0.1"
    assert kwargs["port"] == 8443
    assert ("ssl_certfile" in kwargs) == ssl_expected
    if ssl_expected:
        assert kwargs["ssl_keyfile"] == key
