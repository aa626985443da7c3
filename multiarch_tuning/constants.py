"""
Shared module to hold constant values for the operator
"""

## Custom resources ############################################################

GROUP = "multiarch.openshift.io"
VERSION = "v1beta1"
API_VERSION = f"{GROUP}/{VERSION}"

CLUSTER_POD_PLACEMENT_CONFIG_KIND = "ClusterPodPlacementConfig"
POD_PLACEMENT_CONFIG_KIND = "PodPlacementConfig"
ENOEXEC_EVENT_KIND = "ENoExecEvent"

# The singleton ClusterPodPlacementConfig must carry this name
SINGLETON_NAME = "cluster"

## Persisted tokens ############################################################

# NOTE: These values are stored on objects in the cluster. Renaming any of them
#   requires a migration of the existing objects.
PRIMARY_FINALIZER = "finalizers.multiarch.openshift.io/pod-placement"
PLUGIN_FINALIZER = "finalizers.multiarch.openshift.io/exec-format-error-monitor"
SCHEDULING_GATE_NAME = "multiarch.openshift.io/scheduling-gate"

## Plugins #####################################################################

NODE_AFFINITY_SCORING_PLUGIN = "NodeAffinityScoring"
EXEC_FORMAT_ERROR_MONITOR_PLUGIN = "ExecFormatErrorMonitor"

# Keys of the plugins in the spec.plugins block
NODE_AFFINITY_SCORING_KEY = "nodeAffinityScoring"
EXEC_FORMAT_ERROR_MONITOR_KEY = "execFormatErrorMonitor"

## Architectures ###############################################################

ARCHITECTURE_AMD64 = "amd64"
ARCHITECTURE_ARM64 = "arm64"
ARCHITECTURE_PPC64LE = "ppc64le"
ARCHITECTURE_S390X = "s390x"
SUPPORTED_ARCHITECTURES = (
    ARCHITECTURE_AMD64,
    ARCHITECTURE_ARM64,
    ARCHITECTURE_PPC64LE,
    ARCHITECTURE_S390X,
)

MIN_PLATFORM_WEIGHT = 1
MAX_PLATFORM_WEIGHT = 100
MIN_PRIORITY = 0
MAX_PRIORITY = 255

## Dependent names #############################################################

OPERATOR_NAME = "multiarch-tuning-operator"
OPERAND_NAME = "pod-placement-controller"
POD_PLACEMENT_CONTROLLER_NAME = "pod-placement-controller"
POD_PLACEMENT_WEBHOOK_NAME = "pod-placement-web-hook"
ENOEXEC_CONTROLLER_NAME = "enoexec-event-handler"
ENOEXEC_DAEMONSET_NAME = "enoexec-event-daemon"
EXEC_FORMAT_ERRORS_DETECTED_RULE_NAME = "exec-format-errors-detected"
MUTATING_WEBHOOK_CONFIGURATION_NAME = "pod-placement-mutating-webhook-configuration"
MUTATING_WEBHOOK_NAME = "pod-placement-scheduling-gate.multiarch.openshift.io"
PRIORITY_CLASS_NAME = "system-cluster-critical"
TRUSTED_CA_CONFIGMAP_NAME = "multiarch-tuning-operator-trusted-ca"
SERVICE_MONITORS_CRD_NAME = "servicemonitors.monitoring.coreos.com"

## Labels and annotations ######################################################

OPERAND_LABEL_KEY = "multiarch.openshift.io/operand"
CONTROLLER_NAME_KEY = "controller"
ARCH_LABEL = "kubernetes.io/arch"
SERVING_CERT_ANNOTATION = "service.beta.openshift.io/serving-cert-secret-name"
INJECT_CA_BUNDLE_ANNOTATION = "service.beta.openshift.io/inject-cabundle"
REQUIRED_SCC_ANNOTATION = "openshift.io/required-scc"
REQUIRED_SCC_RESTRICTED_V2 = "restricted-v2"
WORKLOAD_MANAGEMENT_ANNOTATION = "target.workload.openshift.io/management"

# Labels applied to the operator namespace
POD_SECURITY_LABEL_PREFIX = "pod-security.kubernetes.io"
POD_SECURITY_LEVEL = "privileged"
POD_SECURITY_VERSION = "v1.29"
WORKLOAD_ALLOWED_LABEL = "workload.openshift.io/allowed"
WORKLOAD_ALLOWED_VALUE = "management"

## Log verbosity ###############################################################

LOG_VERBOSITY_NORMAL = "Normal"
LOG_VERBOSITY_DEBUG = "Debug"
LOG_VERBOSITY_TRACE = "Trace"
LOG_VERBOSITY_TRACE_ALL = "TraceAll"

# Numeric value passed to the operands as --initial-log-level
LOG_VERBOSITY_LEVELS = {
    LOG_VERBOSITY_NORMAL: 0,
    LOG_VERBOSITY_DEBUG: 1,
    LOG_VERBOSITY_TRACE: 2,
    LOG_VERBOSITY_TRACE_ALL: 3,
}

# alog level used by this process for each verbosity
LOG_VERBOSITY_ALOG_LEVELS = {
    LOG_VERBOSITY_NORMAL: "info",
    LOG_VERBOSITY_DEBUG: "debug",
    LOG_VERBOSITY_TRACE: "debug2",
    LOG_VERBOSITY_TRACE_ALL: "debug4",
}

## Admission ###################################################################

POD_PLACEMENT_CONFIG_WEBHOOK_PATH = (
    "/validate-multiarch-openshift-io-v1beta1-podplacementconfig"
)
CLUSTER_POD_PLACEMENT_CONFIG_WEBHOOK_PATH = (
    "/validate-multiarch-openshift-io-v1beta1-clusterpodplacementconfig"
)

# Delimiter used for nested dict keys
NESTED_DICT_DELIM = "."

# Field manager used for server side apply
FIELD_MANAGER = OPERATOR_NAME

## Kubernetes kinds ############################################################

CORE_API_VERSION = "v1"
APPS_API_VERSION = "apps/v1"
RBAC_API_GROUP = "rbac.authorization.k8s.io"
RBAC_API_VERSION = f"{RBAC_API_GROUP}/v1"
ADMISSION_API_VERSION = "admissionregistration.k8s.io/v1"
MONITORING_API_VERSION = "monitoring.coreos.com/v1"
APIEXTENSIONS_API_VERSION = "apiextensions.k8s.io/v1"

DEPLOYMENT_KIND = "Deployment"
DAEMONSET_KIND = "DaemonSet"
SERVICE_KIND = "Service"
SERVICE_ACCOUNT_KIND = "ServiceAccount"
CLUSTER_ROLE_KIND = "ClusterRole"
CLUSTER_ROLE_BINDING_KIND = "ClusterRoleBinding"
ROLE_KIND = "Role"
ROLE_BINDING_KIND = "RoleBinding"
MUTATING_WEBHOOK_CONFIGURATION_KIND = "MutatingWebhookConfiguration"
SERVICE_MONITOR_KIND = "ServiceMonitor"
PROMETHEUS_RULE_KIND = "PrometheusRule"
POD_KIND = "Pod"
NAMESPACE_KIND = "Namespace"
CUSTOM_RESOURCE_DEFINITION_KIND = "CustomResourceDefinition"

# Field selector matching the pods that may still carry the scheduling gate
PENDING_PODS_FIELD_SELECTOR = "status.phase=Pending"
