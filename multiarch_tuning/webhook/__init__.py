"""
Admission validators and the server exposing them
"""

# Local
from .admission import AdmissionRequest, AdmissionResponse
from .server import create_app, run_server
from .validator import ClusterPodPlacementConfigValidator, PodPlacementConfigValidator
