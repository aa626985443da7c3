"""
Types for the admission.k8s.io/v1 AdmissionReview exchange
"""

# Standard
from dataclasses import dataclass, field
from typing import Optional

# First Party
import alog

log = alog.use_channel("ADMSN")

ADMISSION_API_VERSION = "admission.k8s.io/v1"
ADMISSION_REVIEW_KIND = "AdmissionReview"

## Operations ##################################################################

CREATE = "CREATE"
UPDATE = "UPDATE"
DELETE = "DELETE"
CONNECT = "CONNECT"


## Request/Response ############################################################


@dataclass
class AdmissionRequest:
    """The request block of an AdmissionReview"""

    uid: str
    operation: str
    name: Optional[str] = None
    namespace: Optional[str] = None
    object: Optional[dict] = None
    old_object: Optional[dict] = None

    @classmethod
    def from_review(cls, review: dict) -> "AdmissionRequest":
        """Parse the request out of an AdmissionReview body

        Raises:
            ValueError: The body is not an AdmissionReview with a request
        """
        if not isinstance(review, dict) or review.get("kind") != ADMISSION_REVIEW_KIND:
            raise ValueError("body is not an AdmissionReview")
        request = review.get("request")
        if not isinstance(request, dict) or not request.get("uid"):
            raise ValueError("AdmissionReview has no request uid")
        return cls(
            uid=request["uid"],
            operation=request.get("operation", ""),
            name=request.get("name"),
            namespace=request.get("namespace"),
            object=request.get("object"),
            old_object=request.get("oldObject"),
        )


@dataclass
class AdmissionResponse:
    """The verdict returned for one AdmissionRequest"""

    allowed: bool
    code: int
    message: str = ""
    reason: Optional[str] = None
    uid: Optional[str] = None
    warnings: list = field(default_factory=list)

    def to_review(self, uid: Optional[str] = None) -> dict:
        """Wrap this response into an AdmissionReview body"""
        status = {"code": self.code, "message": self.message}
        if self.reason:
            status["reason"] = self.reason
        response = {
            "uid": uid or self.uid or "",
            "allowed": self.allowed,
            "status": status,
        }
        if self.warnings:
            response["warnings"] = list(self.warnings)
        return {
            "apiVersion": ADMISSION_API_VERSION,
            "kind": ADMISSION_REVIEW_KIND,
            "response": response,
        }


def allowed(message: str) -> AdmissionResponse:
    return AdmissionResponse(allowed=True, code=200, message=message)


def denied(message: str) -> AdmissionResponse:
    return AdmissionResponse(
        allowed=False, code=403, message=message, reason="Forbidden"
    )


def errored(code: int, error: Exception) -> AdmissionResponse:
    """A failure to evaluate the request. The webhooks are registered fail
    closed, so the write is rejected.
    """
    return AdmissionResponse(allowed=False, code=code, message=str(error))


## Decoder #####################################################################


class ObjectDecoder:
    """Decodes the raw objects carried by an AdmissionRequest into manifests of
    a single kind
    """

    def __init__(self, api_version: str, kind: str):
        self.api_version = api_version
        self.kind = kind

    def decode(self, raw: Optional[dict]) -> dict:
        """Check that the raw object is a manifest of the decoder's kind

        Args:
            raw:  Optional[dict]
                The object or oldObject of the request

        Returns:
            manifest:  dict
                The decoded manifest

        Raises:
            ValueError: The object is missing or of another kind
        """
        if not isinstance(raw, dict):
            raise ValueError(f"no {self.kind} object in the request")
        if raw.get("kind") != self.kind or raw.get("apiVersion") != self.api_version:
            raise ValueError(
                f"expected {self.api_version}/{self.kind}, got "
                f"{raw.get('apiVersion')}/{raw.get('kind')}"
            )
        spec = raw.get("spec", {})
        if spec is not None and not isinstance(spec, dict):
            raise ValueError(f"spec of {self.kind} must be an object")
        log.debug4("Decoded %s", raw)
        return raw
