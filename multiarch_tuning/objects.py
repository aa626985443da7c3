"""
Builders for the dependent objects of the ClusterPodPlacementConfig. Every
builder is a pure function returning a manifest dict. The ObjectSetBuilder
groups them into the object sets the controller and the deletion orchestrator
work with.
"""

# Standard
from typing import List, Optional
import os

# First Party
import alog

# Local
from . import config, constants, resources
from .utils import get_operator_namespace

log = alog.use_channel("OBJCT")

## Verbs #######################################################################

CREATE = "create"
UPDATE = "update"
PATCH = "patch"
LIST = "list"
WATCH = "watch"
GET = "get"
USE = "use"
DELETE = "delete"

ALL_VERBS = [LIST, WATCH, GET, UPDATE, PATCH, CREATE, DELETE]

TRUSTED_CA_VOLUME = "trusted-ca"
SERVER_CERT_VOLUME = "webhook-server-cert"
TLS_MOUNT_PATH = "/var/run/manager/tls"
RUNBOOK_BASE_URL = (
    "https://github.com/openshift/multiarch-tuning-operator/blob/main/docs/alerts"
)

## Generic builders ############################################################


def operand_labels(name: str) -> dict:
    """Labels shared by every operand object"""
    return {
        constants.OPERAND_LABEL_KEY: constants.OPERAND_NAME,
        constants.CONTROLLER_NAME_KEY: name,
    }


def object_reference(
    kind: str, api_version: str, name: str, namespace: Optional[str] = None
) -> dict:
    """Minimal manifest identifying an object. Used to look up and delete."""
    metadata = {"name": name}
    if namespace:
        metadata["namespace"] = namespace
    return {"apiVersion": api_version, "kind": kind, "metadata": metadata}


def build_service(name: str, namespace: str) -> dict:
    return {
        "apiVersion": constants.CORE_API_VERSION,
        "kind": constants.SERVICE_KIND,
        "metadata": {
            "name": name,
            "namespace": namespace,
            "labels": operand_labels(name),
            "annotations": {constants.SERVING_CERT_ANNOTATION: name},
        },
        "spec": {
            "ports": [
                {"name": "https", "port": 443, "targetPort": 9443, "protocol": "TCP"},
                {
                    "name": "metrics",
                    "port": 8443,
                    "targetPort": 8443,
                    "protocol": "TCP",
                },
            ],
            "selector": operand_labels(name),
        },
    }


def build_service_account(name: str, namespace: str) -> dict:
    return {
        "apiVersion": constants.CORE_API_VERSION,
        "kind": constants.SERVICE_ACCOUNT_KIND,
        "metadata": {
            "name": name,
            "namespace": namespace,
            "labels": operand_labels(name),
        },
        "automountServiceAccountToken": False,
    }


def policy_rule(
    api_groups: List[str],
    resource_names: List[str],
    verbs: List[str],
    names: Optional[List[str]] = None,
) -> dict:
    rule = {"apiGroups": api_groups, "resources": resource_names, "verbs": verbs}
    if names:
        rule["resourceNames"] = names
    return rule


def build_cluster_role(name: str, rules: List[dict]) -> dict:
    return {
        "apiVersion": constants.RBAC_API_VERSION,
        "kind": constants.CLUSTER_ROLE_KIND,
        "metadata": {"name": name, "labels": operand_labels(name)},
        "rules": rules,
    }


def build_role(name: str, namespace: str, rules: List[dict]) -> dict:
    return {
        "apiVersion": constants.RBAC_API_VERSION,
        "kind": constants.ROLE_KIND,
        "metadata": {
            "name": name,
            "namespace": namespace,
            "labels": operand_labels(name),
        },
        "rules": rules,
    }


def build_cluster_role_binding(name: str, namespace: str) -> dict:
    """Bind the cluster role and service account sharing the given name"""
    return {
        "apiVersion": constants.RBAC_API_VERSION,
        "kind": constants.CLUSTER_ROLE_BINDING_KIND,
        "metadata": {"name": name, "labels": operand_labels(name)},
        "roleRef": {
            "apiGroup": constants.RBAC_API_GROUP,
            "kind": constants.CLUSTER_ROLE_KIND,
            "name": name,
        },
        "subjects": [
            {
                "kind": constants.SERVICE_ACCOUNT_KIND,
                "name": name,
                "namespace": namespace,
            }
        ],
    }


def build_role_binding(name: str, namespace: str) -> dict:
    """Bind the role and service account sharing the given name"""
    return {
        "apiVersion": constants.RBAC_API_VERSION,
        "kind": constants.ROLE_BINDING_KIND,
        "metadata": {
            "name": name,
            "namespace": namespace,
            "labels": operand_labels(name),
        },
        "roleRef": {
            "apiGroup": constants.RBAC_API_GROUP,
            "kind": constants.ROLE_KIND,
            "name": name,
        },
        "subjects": [
            {
                "kind": constants.SERVICE_ACCOUNT_KIND,
                "name": name,
                "namespace": namespace,
            }
        ],
    }


def _probe(path: str, initial_delay: int, period: int) -> dict:
    return {
        "httpGet": {"path": path, "port": 8081, "scheme": "HTTP"},
        "initialDelaySeconds": initial_delay,
        "timeoutSeconds": 1,
        "periodSeconds": period,
        "successThreshold": 1,
        "failureThreshold": 3,
    }


def build_deployment(
    name: str,
    namespace: str,
    image: str,
    replicas: int,
    log_level: int,
    finalizer: Optional[str] = None,
    args: Optional[List[str]] = None,
) -> dict:
    """Build an operand deployment running the manager binary

    Args:
        name:  str
            Name of the deployment, its service account and its labels
        namespace:  str
            The operator namespace
        image:  str
            The operand image
        replicas:  int
            Desired replica count
        log_level:  int
            Numeric verbosity passed as --initial-log-level
        finalizer:  Optional[str]
            Finalizer to set on the deployment
        args:  Optional[List[str]]
            Extra arguments for the manager

    Returns:
        deployment:  dict
            The Deployment manifest
    """
    metadata = {
        "name": name,
        "namespace": namespace,
        "labels": operand_labels(name),
    }
    if finalizer:
        metadata["finalizers"] = [finalizer]

    container = {
        "name": name,
        "image": image,
        "imagePullPolicy": "IfNotPresent",
        "env": [
            {"name": "NAMESPACE", "value": namespace},
            {"name": "HTTP_PROXY", "value": os.environ.get("HTTP_PROXY", "")},
            {"name": "HTTPS_PROXY", "value": os.environ.get("HTTPS_PROXY", "")},
            {"name": "NO_PROXY", "value": os.environ.get("NO_PROXY", "")},
        ],
        "args": [
            "--health-probe-bind-address=:8081",
            "--metrics-bind-address=:8443",
            f"--initial-log-level={log_level}",
        ]
        + list(args or []),
        "command": ["/manager"],
        "livenessProbe": _probe("/healthz", 15, 20),
        "readinessProbe": _probe("/readyz", 5, 10),
        "resources": {"requests": {"cpu": "10m", "memory": "64Mi"}},
        "securityContext": {
            "allowPrivilegeEscalation": False,
            "capabilities": {"drop": ["ALL"]},
            "privileged": False,
            "readOnlyRootFilesystem": True,
            "runAsNonRoot": True,
        },
        "volumeMounts": [
            {
                "name": TRUSTED_CA_VOLUME,
                "mountPath": "/etc/pki/ca-trust/extracted/pem",
                "readOnly": True,
            },
            {"name": SERVER_CERT_VOLUME, "mountPath": TLS_MOUNT_PATH, "readOnly": True},
        ],
    }

    return {
        "apiVersion": constants.APPS_API_VERSION,
        "kind": constants.DEPLOYMENT_KIND,
        "metadata": metadata,
        "spec": {
            "replicas": replicas,
            "selector": {"matchLabels": operand_labels(name)},
            "strategy": {
                "type": "RollingUpdate",
                "rollingUpdate": {"maxSurge": "25%", "maxUnavailable": "25%"},
            },
            "template": {
                "metadata": {
                    "labels": operand_labels(name),
                    "annotations": {
                        constants.WORKLOAD_MANAGEMENT_ANNOTATION: (
                            '{"effect": "PreferredDuringScheduling"}'
                        ),
                        constants.REQUIRED_SCC_ANNOTATION: (
                            constants.REQUIRED_SCC_RESTRICTED_V2
                        ),
                    },
                },
                "spec": {
                    "automountServiceAccountToken": True,
                    "affinity": {
                        "nodeAffinity": {
                            "requiredDuringSchedulingIgnoredDuringExecution": {
                                "nodeSelectorTerms": [
                                    {
                                        "matchExpressions": [
                                            {
                                                "key": constants.ARCH_LABEL,
                                                "operator": "In",
                                                "values": list(
                                                    constants.SUPPORTED_ARCHITECTURES
                                                ),
                                            }
                                        ]
                                    }
                                ]
                            }
                        }
                    },
                    "containers": [container],
                    "priorityClassName": constants.PRIORITY_CLASS_NAME,
                    "serviceAccountName": name,
                    "securityContext": {"runAsNonRoot": True},
                    "topologySpreadConstraints": [
                        {
                            "maxSkew": 1,
                            "topologyKey": "kubernetes.io/hostname",
                            "whenUnsatisfiable": "ScheduleAnyway",
                            "labelSelector": {"matchLabels": operand_labels(name)},
                            "matchLabelKeys": ["pod-template-hash"],
                        }
                    ],
                    "volumes": [
                        {
                            "name": TRUSTED_CA_VOLUME,
                            "configMap": {
                                "name": constants.TRUSTED_CA_CONFIGMAP_NAME,
                                "items": [
                                    {"key": "ca-bundle.crt", "path": "tls-ca-bundle.pem"}
                                ],
                            },
                        },
                        {
                            "name": SERVER_CERT_VOLUME,
                            "secret": {"secretName": name, "defaultMode": 420},
                        },
                    ],
                },
            },
        },
    }


def build_service_monitor(name: str, namespace: str) -> dict:
    return {
        "apiVersion": constants.MONITORING_API_VERSION,
        "kind": constants.SERVICE_MONITOR_KIND,
        "metadata": {"name": name, "namespace": namespace},
        "spec": {
            "endpoints": [
                {
                    "honorLabels": True,
                    "path": "/metrics",
                    "port": "metrics",
                    "scheme": "https",
                    "bearerTokenFile": (
                        "/var/run/secrets/kubernetes.io/serviceaccount/token"
                    ),
                    "tlsConfig": {
                        "caFile": (
                            "/etc/prometheus/configmaps/serving-certs-ca-bundle/"
                            "service-ca.crt"
                        ),
                        "serverName": f"{name}.{namespace}.svc",
                    },
                }
            ],
            "namespaceSelector": {"matchNames": [namespace]},
            "selector": {"matchLabels": {constants.CONTROLLER_NAME_KEY: name}},
        },
    }


def _alert(
    alert: str, expr: str, for_duration: str, severity: str, annotations: dict
) -> dict:
    return {
        "alert": alert,
        "expr": expr,
        "for": for_duration,
        "annotations": annotations,
        "labels": {"severity": severity},
    }


def build_prometheus_rule(
    name: str, namespace: str, group_name: str, rules: List[dict]
) -> dict:
    return {
        "apiVersion": constants.MONITORING_API_VERSION,
        "kind": constants.PROMETHEUS_RULE_KIND,
        "metadata": {"name": name, "namespace": namespace},
        "spec": {"groups": [{"name": group_name, "rules": rules}]},
    }


def _replicas_down_expr(namespace: str, deployment: str) -> str:
    return (
        f'kube_deployment_status_replicas_available{{namespace="{namespace}", '
        f'deployment="{deployment}"}} == 0'
    )


## Pod placement operand #######################################################


def build_controller_cluster_role() -> dict:
    return build_cluster_role(
        constants.POD_PLACEMENT_CONTROLLER_NAME,
        [
            policy_rule(
                ["security.openshift.io"], ["securitycontextconstraints"], [USE]
            ),
            policy_rule([""], ["pods"], [LIST, WATCH, GET, UPDATE]),
            policy_rule([""], ["events"], [CREATE, PATCH]),
            policy_rule([""], ["pods/status"], [UPDATE]),
            policy_rule(
                [constants.GROUP], ["clusterpodplacementconfigs"], [LIST, WATCH, GET]
            ),
            policy_rule(
                [constants.GROUP], ["podplacementconfigs"], [LIST, WATCH, GET]
            ),
            policy_rule([""], ["configmaps", "secrets"], [LIST, WATCH, GET]),
            policy_rule(["authentication.k8s.io"], ["tokenreviews"], [CREATE]),
            policy_rule(["authorization.k8s.io"], ["subjectaccessreviews"], [CREATE]),
        ],
    )


def build_webhook_cluster_role() -> dict:
    return build_cluster_role(
        constants.POD_PLACEMENT_WEBHOOK_NAME,
        [
            policy_rule([""], ["events"], [CREATE, PATCH]),
            policy_rule(
                [constants.GROUP], ["clusterpodplacementconfigs"], [LIST, WATCH, GET]
            ),
            policy_rule(
                [constants.GROUP], ["podplacementconfigs"], [LIST, WATCH, GET]
            ),
            policy_rule([""], ["pods"], [LIST, WATCH, GET]),
            policy_rule(["authentication.k8s.io"], ["tokenreviews"], [CREATE]),
            policy_rule(["authorization.k8s.io"], ["subjectaccessreviews"], [CREATE]),
        ],
    )


def build_controller_role(namespace: str) -> dict:
    """Leader election permissions of the pod placement controller"""
    return build_role(
        constants.POD_PLACEMENT_CONTROLLER_NAME,
        namespace,
        [
            policy_rule([""], ["configmaps"], ALL_VERBS),
            policy_rule(["coordination.k8s.io"], ["leases"], ALL_VERBS),
        ],
    )


def build_controller_deployment(cppc: dict, namespace: str, image: str) -> dict:
    """The pod placement controller ungates pods, so it holds the primary
    finalizer until the teardown releases it
    """
    return build_deployment(
        constants.POD_PLACEMENT_CONTROLLER_NAME,
        namespace,
        image,
        replicas=2,
        log_level=resources.log_verbosity_level(cppc),
        finalizer=constants.PRIMARY_FINALIZER,
        args=["--leader-elect", "--enable-ppc-controllers", "--enable-cppc-informer"],
    )


def build_webhook_deployment(cppc: dict, namespace: str, image: str) -> dict:
    return build_deployment(
        constants.POD_PLACEMENT_WEBHOOK_NAME,
        namespace,
        image,
        replicas=3,
        log_level=resources.log_verbosity_level(cppc),
        args=["--enable-ppc-webhook", "--enable-cppc-informer"],
    )


def build_mutating_webhook_configuration(cppc: dict, namespace: str) -> dict:
    """The registration routing pod creations to the gating webhook"""
    return {
        "apiVersion": constants.ADMISSION_API_VERSION,
        "kind": constants.MUTATING_WEBHOOK_CONFIGURATION_KIND,
        "metadata": {
            "name": constants.MUTATING_WEBHOOK_CONFIGURATION_NAME,
            "labels": operand_labels(constants.POD_PLACEMENT_WEBHOOK_NAME),
            "annotations": {constants.INJECT_CA_BUNDLE_ANNOTATION: "true"},
        },
        "webhooks": [
            {
                "name": constants.MUTATING_WEBHOOK_NAME,
                "admissionReviewVersions": ["v1"],
                "clientConfig": {
                    "service": {
                        "name": constants.POD_PLACEMENT_WEBHOOK_NAME,
                        "namespace": namespace,
                        "path": "/add-pod-scheduling-gate",
                    }
                },
                "namespaceSelector": resources.namespace_selector(cppc),
                "failurePolicy": "Ignore",
                "sideEffects": "None",
                "rules": [
                    {
                        "operations": ["CREATE"],
                        "apiGroups": [""],
                        "apiVersions": ["v1"],
                        "resources": ["pods"],
                    }
                ],
            }
        ],
    }


def build_operator_alert_rule(namespace: str) -> dict:
    return build_prometheus_rule(
        constants.OPERATOR_NAME,
        namespace,
        "multiarch-tuning-operator.rules",
        [
            _alert(
                "PodPlacementControllerDown",
                _replicas_down_expr(namespace, constants.POD_PLACEMENT_CONTROLLER_NAME),
                "1m",
                "critical",
                {
                    "summary": (
                        "The pod placement controller should have at least 1 "
                        "replica running and ready."
                    ),
                    "description": (
                        "The pod placement controller has been down for more than "
                        "1 minute. If the controller is not running, no "
                        "architecture constraints can be set. The "
                        f"{constants.SCHEDULING_GATE_NAME} scheduling gate will not "
                        "be automatically removed from gated pods, and pods may "
                        "stuck in the Pending state."
                    ),
                    "runbook_url": f"{RUNBOOK_BASE_URL}/pod-placement-controller-down.md",
                },
            ),
            _alert(
                "PodPlacementWebhookDown",
                _replicas_down_expr(namespace, constants.POD_PLACEMENT_WEBHOOK_NAME),
                "5m",
                "warning",
                {
                    "summary": (
                        "The pod placement webhook should have at least 1 replica "
                        "running and ready."
                    ),
                    "description": (
                        "The pod placement webhook has been down for more than 5 "
                        "minutes. Pods will not be gated. Therefore, the "
                        "architecture-specific constraints will not be enforced "
                        "and pods may be scheduled on nodes that are not supported "
                        "by their images."
                    ),
                    "runbook_url": f"{RUNBOOK_BASE_URL}/pod-placement-webhook-down.md",
                },
            ),
        ],
    )


## Exec format error monitor plugin ############################################


def build_enoexec_controller_cluster_role() -> dict:
    return build_cluster_role(
        constants.ENOEXEC_CONTROLLER_NAME,
        [
            policy_rule([""], ["pods", "nodes"], [LIST, GET]),
            policy_rule([""], ["events"], [CREATE, PATCH]),
            policy_rule([""], ["pods", "pods/status"], [UPDATE]),
            policy_rule(["authentication.k8s.io"], ["tokenreviews"], [CREATE]),
            policy_rule(["authorization.k8s.io"], ["subjectaccessreviews"], [CREATE]),
        ],
    )


def build_enoexec_controller_role(namespace: str) -> dict:
    return build_role(
        constants.ENOEXEC_CONTROLLER_NAME,
        namespace,
        [
            policy_rule([constants.GROUP], ["enoexecevents"], ALL_VERBS),
            policy_rule([""], ["configmaps"], ALL_VERBS),
            policy_rule(["coordination.k8s.io"], ["leases"], ALL_VERBS),
        ],
    )


def build_enoexec_daemonset_cluster_role() -> dict:
    return build_cluster_role(
        constants.ENOEXEC_DAEMONSET_NAME,
        [
            policy_rule(
                ["security.openshift.io"],
                ["securitycontextconstraints"],
                [USE],
                names=["privileged"],
            )
        ],
    )


def build_enoexec_daemonset_role(namespace: str) -> dict:
    return build_role(
        constants.ENOEXEC_DAEMONSET_NAME,
        namespace,
        [
            policy_rule([constants.GROUP], ["enoexecevents"], [GET, CREATE, DELETE]),
            policy_rule([constants.GROUP], ["enoexecevents/status"], [UPDATE]),
        ],
    )


def build_enoexec_deployment(cppc: dict, namespace: str, image: str) -> dict:
    return build_deployment(
        constants.ENOEXEC_CONTROLLER_NAME,
        namespace,
        image,
        replicas=2,
        log_level=resources.log_verbosity_level(cppc),
        args=["--leader-elect", "--enable-enoexec-event-controllers"],
    )


def build_enoexec_daemonset(cppc: dict, namespace: str, image: str) -> dict:
    """The per node agent recording exec format errors as ENoExecEvents"""
    name = constants.ENOEXEC_DAEMONSET_NAME
    labels = {"app": name}
    host_paths = [
        ("debugfs", "/sys/kernel/debug", "Directory"),
        ("tracingfs", "/sys/kernel/tracing", "Directory"),
        ("crio", "/var/run/crio/crio.sock", "Socket"),
    ]
    return {
        "apiVersion": constants.APPS_API_VERSION,
        "kind": constants.DAEMONSET_KIND,
        "metadata": {"name": name, "namespace": namespace, "labels": labels},
        "spec": {
            "selector": {"matchLabels": labels},
            "template": {
                "metadata": {"labels": labels},
                "spec": {
                    "serviceAccountName": name,
                    "automountServiceAccountToken": True,
                    "hostPID": True,
                    "containers": [
                        {
                            "name": name,
                            "image": image,
                            "imagePullPolicy": "IfNotPresent",
                            "command": [
                                "/enoexec-daemon",
                                "--initial-log-level="
                                f"{resources.log_verbosity_level(cppc)}",
                            ],
                            "env": [
                                {
                                    "name": "NAMESPACE",
                                    "valueFrom": {
                                        "fieldRef": {
                                            "apiVersion": "v1",
                                            "fieldPath": "metadata.namespace",
                                        }
                                    },
                                },
                                {
                                    "name": "NODE_NAME",
                                    "valueFrom": {
                                        "fieldRef": {
                                            "apiVersion": "v1",
                                            "fieldPath": "spec.nodeName",
                                        }
                                    },
                                },
                            ],
                            "securityContext": {
                                "privileged": True,
                                "runAsUser": 0,
                                "readOnlyRootFilesystem": True,
                            },
                            "volumeMounts": [
                                {"name": vol, "mountPath": path, "readOnly": True}
                                for vol, path, _ in host_paths
                            ],
                        }
                    ],
                    "volumes": [
                        {"name": vol, "hostPath": {"path": path, "type": path_type}}
                        for vol, path, path_type in host_paths
                    ],
                },
            },
        },
    }


def build_enoexec_alert_rules(namespace: str) -> List[dict]:
    return [
        build_prometheus_rule(
            constants.EXEC_FORMAT_ERROR_MONITOR_PLUGIN.lower(),
            namespace,
            "multiarch-tuning-operator-enoexec.rules",
            [
                _alert(
                    "ExecFormatErrorHandlerDown",
                    _replicas_down_expr(namespace, constants.ENOEXEC_CONTROLLER_NAME),
                    "1m",
                    "critical",
                    {
                        "summary": (
                            "The exec format error handler should have at least 1 "
                            "replica running and ready."
                        ),
                        "description": (
                            "The exec format error handler has been down for more "
                            "than 1 minute."
                        ),
                        "runbook_url": f"{RUNBOOK_BASE_URL}/enoexec-event-handler-down.md",
                    },
                ),
                _alert(
                    "ExecFormatErrorDaemonDown",
                    (
                        "kube_daemonset_status_number_unavailable"
                        f'{{namespace="{namespace}", '
                        f'daemonset="{constants.ENOEXEC_DAEMONSET_NAME}"}} > 0'
                    ),
                    "20m",
                    "warning",
                    {
                        "summary": (
                            "The exec format error daemon is not available in all "
                            "the nodes."
                        ),
                        "description": (
                            "Some nodes that should be running the exec format "
                            "error daemon have none of the daemonset pod running "
                            "and available for more than 20 minutes. Exec Format "
                            "Errors will not be detected in those nodes"
                        ),
                        "runbook_url": f"{RUNBOOK_BASE_URL}/enoexec-event-daemon-down.md",
                    },
                ),
            ],
        ),
        build_prometheus_rule(
            constants.EXEC_FORMAT_ERRORS_DETECTED_RULE_NAME,
            namespace,
            "multiarch-tuning-operator-enoexec-detected.rules",
            [
                _alert(
                    "ExecFormatErrorsDetected",
                    "rate(mto_enoexecevents_total[6h]) > 0",
                    "1m",
                    "critical",
                    {
                        "summary": "Exec Format Errors detected in the past 6 hours.",
                        "description": (
                            "Exec Format Errors detected in the past 6 hours."
                        ),
                        "runbook_url": f"{RUNBOOK_BASE_URL}/enoexec-controller-down.md",
                    },
                )
            ],
        ),
    ]


## Object sets #################################################################


class ObjectSetBuilder:
    """Produces the object sets for one operator namespace and operand image.
    All methods are pure: they only build manifests.
    """

    def __init__(self, namespace: Optional[str] = None, image: Optional[str] = None):
        self.namespace = namespace or get_operator_namespace()
        self.image = image or config.operand_image

    ## Desired objects #########################################################

    def primary_objects(self, cppc: dict) -> List[dict]:
        """The pod placement operand. Order matters: identities and RBAC come
        before the workloads using them.
        """
        namespace = self.namespace
        controller = constants.POD_PLACEMENT_CONTROLLER_NAME
        webhook = constants.POD_PLACEMENT_WEBHOOK_NAME
        return [
            build_service(controller, namespace),
            build_service(webhook, namespace),
            build_controller_cluster_role(),
            build_webhook_cluster_role(),
            build_controller_role(namespace),
            build_service_account(webhook, namespace),
            build_service_account(controller, namespace),
            build_cluster_role_binding(controller, namespace),
            build_role_binding(controller, namespace),
            build_cluster_role_binding(webhook, namespace),
            build_controller_deployment(cppc, namespace, self.image),
            build_webhook_deployment(cppc, namespace, self.image),
        ]

    def plugin_objects(self, cppc: dict) -> List[dict]:
        """The exec format error monitor"""
        namespace = self.namespace
        handler = constants.ENOEXEC_CONTROLLER_NAME
        daemon = constants.ENOEXEC_DAEMONSET_NAME
        return [
            build_service(handler, namespace),
            build_service_account(handler, namespace),
            build_service_account(daemon, namespace),
            build_enoexec_controller_cluster_role(),
            build_enoexec_controller_role(namespace),
            build_enoexec_daemonset_cluster_role(),
            build_enoexec_daemonset_role(namespace),
            build_cluster_role_binding(handler, namespace),
            build_role_binding(handler, namespace),
            build_cluster_role_binding(daemon, namespace),
            build_role_binding(daemon, namespace),
            build_enoexec_deployment(cppc, namespace, self.image),
            build_enoexec_daemonset(cppc, namespace, self.image),
        ]

    def primary_monitoring_objects(self) -> List[dict]:
        namespace = self.namespace
        return [
            build_service_monitor(constants.POD_PLACEMENT_CONTROLLER_NAME, namespace),
            build_service_monitor(constants.POD_PLACEMENT_WEBHOOK_NAME, namespace),
            build_operator_alert_rule(namespace),
        ]

    def plugin_monitoring_objects(self) -> List[dict]:
        namespace = self.namespace
        return [
            build_service_monitor(constants.ENOEXEC_CONTROLLER_NAME, namespace)
        ] + build_enoexec_alert_rules(namespace)

    def mutating_webhook_configuration(self, cppc: dict) -> dict:
        return build_mutating_webhook_configuration(cppc, self.namespace)

    @staticmethod
    def namespace_labels() -> dict:
        """Labels required on the operator namespace"""
        labels = {}
        for mode in ["audit", "enforce", "warn"]:
            prefix = f"{constants.POD_SECURITY_LABEL_PREFIX}/{mode}"
            labels[prefix] = constants.POD_SECURITY_LEVEL
            labels[f"{prefix}-version"] = constants.POD_SECURITY_VERSION
        labels[constants.WORKLOAD_ALLOWED_LABEL] = constants.WORKLOAD_ALLOWED_VALUE
        return labels

    ## References ##############################################################

    def deployment_ref(self, name: str) -> dict:
        return object_reference(
            constants.DEPLOYMENT_KIND, constants.APPS_API_VERSION, name, self.namespace
        )

    def daemonset_ref(self, name: str) -> dict:
        return object_reference(
            constants.DAEMONSET_KIND, constants.APPS_API_VERSION, name, self.namespace
        )

    def service_ref(self, name: str) -> dict:
        return object_reference(
            constants.SERVICE_KIND, constants.CORE_API_VERSION, name, self.namespace
        )

    def service_account_ref(self, name: str) -> dict:
        return object_reference(
            constants.SERVICE_ACCOUNT_KIND,
            constants.CORE_API_VERSION,
            name,
            self.namespace,
        )

    def role_refs(self, name: str) -> List[dict]:
        """The Role and RoleBinding sharing the given name"""
        return [
            object_reference(
                kind, constants.RBAC_API_VERSION, name, self.namespace
            )
            for kind in [constants.ROLE_KIND, constants.ROLE_BINDING_KIND]
        ]

    @staticmethod
    def cluster_role_refs(name: str) -> List[dict]:
        """The ClusterRole and ClusterRoleBinding sharing the given name"""
        return [
            object_reference(kind, constants.RBAC_API_VERSION, name)
            for kind in [
                constants.CLUSTER_ROLE_KIND,
                constants.CLUSTER_ROLE_BINDING_KIND,
            ]
        ]

    @staticmethod
    def mutating_webhook_configuration_ref() -> dict:
        return object_reference(
            constants.MUTATING_WEBHOOK_CONFIGURATION_KIND,
            constants.ADMISSION_API_VERSION,
            constants.MUTATING_WEBHOOK_CONFIGURATION_NAME,
        )

    def namespace_ref(self) -> dict:
        return object_reference(
            constants.NAMESPACE_KIND, constants.CORE_API_VERSION, self.namespace
        )

    @staticmethod
    def service_monitors_crd_ref() -> dict:
        return object_reference(
            constants.CUSTOM_RESOURCE_DEFINITION_KIND,
            constants.APIEXTENSIONS_API_VERSION,
            constants.SERVICE_MONITORS_CRD_NAME,
        )

    def _monitoring_ref(self, kind: str, name: str) -> dict:
        return object_reference(
            kind, constants.MONITORING_API_VERSION, name, self.namespace
        )

    ## Teardown sets ###########################################################

    def plugin_daemonset_refs(self) -> List[dict]:
        """Deleted first when the plugin is torn down. The plugin deployment
        is deleted here too but stays behind its finalizer until the event
        records are drained.
        """
        daemon = constants.ENOEXEC_DAEMONSET_NAME
        return (
            self.cluster_role_refs(daemon)
            + self.role_refs(daemon)
            + [
                self.service_account_ref(daemon),
                self.daemonset_ref(daemon),
                self.deployment_ref(constants.ENOEXEC_CONTROLLER_NAME),
            ]
        )

    def plugin_remaining_refs(self, with_monitoring: bool) -> List[dict]:
        handler = constants.ENOEXEC_CONTROLLER_NAME
        refs = (
            self.role_refs(handler)
            + self.cluster_role_refs(handler)
            + [
                self.service_account_ref(handler),
                self.service_account_ref(constants.ENOEXEC_DAEMONSET_NAME),
                self.service_ref(handler),
            ]
        )
        if with_monitoring:
            refs += [
                self._monitoring_ref(constants.SERVICE_MONITOR_KIND, handler),
                self._monitoring_ref(
                    constants.PROMETHEUS_RULE_KIND,
                    constants.EXEC_FORMAT_ERROR_MONITOR_PLUGIN.lower(),
                ),
                self._monitoring_ref(
                    constants.PROMETHEUS_RULE_KIND,
                    constants.EXEC_FORMAT_ERRORS_DETECTED_RULE_NAME,
                ),
            ]
        return refs

    def hook_refs(self) -> List[dict]:
        """The hook registration and everything serving it"""
        webhook = constants.POD_PLACEMENT_WEBHOOK_NAME
        return (
            [
                self.mutating_webhook_configuration_ref(),
                self.service_ref(webhook),
                self.deployment_ref(webhook),
            ]
            + self.cluster_role_refs(webhook)
            + [self.service_account_ref(webhook)]
        )

    def primary_remaining_refs(self, with_monitoring: bool) -> List[dict]:
        controller = constants.POD_PLACEMENT_CONTROLLER_NAME
        refs = (
            [self.service_ref(controller), self.deployment_ref(controller)]
            + self.cluster_role_refs(controller)
            + self.role_refs(controller)
            + [self.service_account_ref(controller)]
        )
        if with_monitoring:
            refs += [
                self._monitoring_ref(
                    constants.SERVICE_MONITOR_KIND, constants.POD_PLACEMENT_WEBHOOK_NAME
                ),
                self._monitoring_ref(constants.SERVICE_MONITOR_KIND, controller),
                self._monitoring_ref(
                    constants.PROMETHEUS_RULE_KIND, constants.OPERATOR_NAME
                ),
            ]
        return refs
