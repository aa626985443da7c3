"""
Tests for the dependent object builders
"""

# Third Party
import pytest

# Local
from multiarch_tuning import constants, objects
from multiarch_tuning.test_helpers.helpers import (
    TEST_IMAGE,
    TEST_NAMESPACE,
    make_builder,
    make_cppc,
)

## Helpers #####################################################################


def by_kind_name(manifests):
    return {(obj["kind"], obj["metadata"]["name"]): obj for obj in manifests}


def container_of(deployment):
    return deployment["spec"]["template"]["spec"]["containers"][0]


## Object sets #################################################################


def test_primary_objects():
    """Make sure the operand is built with its identities before the
    workloads
    """
    builder = make_builder()
    manifests = builder.primary_objects(make_cppc())
    kinds = [obj["kind"] for obj in manifests]
    assert kinds.index(constants.SERVICE_ACCOUNT_KIND) < kinds.index(
        constants.DEPLOYMENT_KIND
    )
    indexed = by_kind_name(manifests)
    controller = indexed[
        (constants.DEPLOYMENT_KIND, constants.POD_PLACEMENT_CONTROLLER_NAME)
    ]
    webhook = indexed[(constants.DEPLOYMENT_KIND, constants.POD_PLACEMENT_WEBHOOK_NAME)]
    assert controller["spec"]["replicas"] == 2
    assert webhook["spec"]["replicas"] == 3
    assert controller["metadata"]["finalizers"] == [constants.PRIMARY_FINALIZER]
    assert "finalizers" not in webhook["metadata"]
    assert container_of(controller)["image"] == TEST_IMAGE
    for obj in manifests:
        if obj["kind"] not in [
            constants.CLUSTER_ROLE_KIND,
            constants.CLUSTER_ROLE_BINDING_KIND,
        ]:
            assert obj["metadata"]["namespace"] == TEST_NAMESPACE
    assert constants.MUTATING_WEBHOOK_CONFIGURATION_KIND not in kinds


@pytest.mark.parametrize(
    ["verbosity", "level"],
    [
        (None, 0),
        (constants.LOG_VERBOSITY_DEBUG, 1),
        (constants.LOG_VERBOSITY_TRACE_ALL, 3),
    ],
)
def test_operand_log_level(verbosity, level):
    """Make sure the log verbosity is passed down to every operand"""
    builder = make_builder()
    cppc = make_cppc(plugin_enabled=True, log_verbosity=verbosity)
    manifests = builder.primary_objects(cppc) + builder.plugin_objects(cppc)
    workloads = [
        obj
        for obj in manifests
        if obj["kind"] in [constants.DEPLOYMENT_KIND, constants.DAEMONSET_KIND]
    ]
    assert len(workloads) == 4
    for workload in workloads:
        container = container_of(workload)
        flags = container.get("args", []) + container.get("command", [])
        assert f"--initial-log-level={level}" in flags


def test_plugin_objects():
    """Make sure the plugin has its deployment, daemonset and RBAC"""
    builder = make_builder()
    indexed = by_kind_name(builder.plugin_objects(make_cppc(plugin_enabled=True)))
    handler = indexed[(constants.DEPLOYMENT_KIND, constants.ENOEXEC_CONTROLLER_NAME)]
    assert handler["spec"]["replicas"] == 2
    assert "finalizers" not in handler["metadata"]
    assert (constants.DAEMONSET_KIND, constants.ENOEXEC_DAEMONSET_NAME) in indexed
    for kind in [
        constants.ROLE_KIND,
        constants.ROLE_BINDING_KIND,
        constants.CLUSTER_ROLE_KIND,
        constants.CLUSTER_ROLE_BINDING_KIND,
        constants.SERVICE_ACCOUNT_KIND,
    ]:
        assert (kind, constants.ENOEXEC_DAEMONSET_NAME) in indexed
        assert (kind, constants.ENOEXEC_CONTROLLER_NAME) in indexed


def test_monitoring_objects():
    builder = make_builder()
    primary = by_kind_name(builder.primary_monitoring_objects())
    assert set(primary) == {
        (constants.SERVICE_MONITOR_KIND, constants.POD_PLACEMENT_CONTROLLER_NAME),
        (constants.SERVICE_MONITOR_KIND, constants.POD_PLACEMENT_WEBHOOK_NAME),
        (constants.PROMETHEUS_RULE_KIND, constants.OPERATOR_NAME),
    }
    plugin = by_kind_name(builder.plugin_monitoring_objects())
    assert set(plugin) == {
        (constants.SERVICE_MONITOR_KIND, constants.ENOEXEC_CONTROLLER_NAME),
        (
            constants.PROMETHEUS_RULE_KIND,
            constants.EXEC_FORMAT_ERROR_MONITOR_PLUGIN.lower(),
        ),
        (
            constants.PROMETHEUS_RULE_KIND,
            constants.EXEC_FORMAT_ERRORS_DETECTED_RULE_NAME,
        ),
    }


def test_mutating_webhook_configuration():
    """Make sure the hook points at the webhook service and carries the
    namespace selector of the singleton
    """
    selector = {"matchLabels": {"gated": "true"}}
    hook = make_builder().mutating_webhook_configuration(
        make_cppc(namespaceSelector=selector)
    )
    assert hook["metadata"]["name"] == constants.MUTATING_WEBHOOK_CONFIGURATION_NAME
    assert "namespace" not in hook["metadata"]
    webhook = hook["webhooks"][0]
    assert webhook["namespaceSelector"] == selector
    assert webhook["clientConfig"]["service"] == {
        "name": constants.POD_PLACEMENT_WEBHOOK_NAME,
        "namespace": TEST_NAMESPACE,
        "path": "/add-pod-scheduling-gate",
    }
    assert webhook["rules"][0]["operations"] == ["CREATE"]


def test_namespace_labels():
    labels = objects.ObjectSetBuilder.namespace_labels()
    assert labels["pod-security.kubernetes.io/enforce"] == "privileged"
    assert labels["pod-security.kubernetes.io/audit-version"] == "v1.29"
    assert labels[constants.WORKLOAD_ALLOWED_LABEL] == "management"


def test_builder_defaults_from_config():
    """Make sure the namespace and image default to the config"""
    builder = objects.ObjectSetBuilder()
    assert builder.namespace
    assert builder.image


## References ##################################################################


def test_refs():
    """Make sure the references carry the namespace only for namespaced
    kinds
    """
    builder = make_builder()
    assert builder.deployment_ref("foo") == {
        "apiVersion": constants.APPS_API_VERSION,
        "kind": constants.DEPLOYMENT_KIND,
        "metadata": {"name": "foo", "namespace": TEST_NAMESPACE},
    }
    assert "namespace" not in builder.mutating_webhook_configuration_ref()["metadata"]
    assert "namespace" not in builder.namespace_ref()["metadata"]
    assert builder.namespace_ref()["metadata"]["name"] == TEST_NAMESPACE
    assert [ref["kind"] for ref in builder.cluster_role_refs("foo")] == [
        constants.CLUSTER_ROLE_KIND,
        constants.CLUSTER_ROLE_BINDING_KIND,
    ]


def test_teardown_sets_cover_the_applied_objects():
    """Make sure every applied object is deleted by one of the teardown sets"""
    builder = make_builder()
    cppc = make_cppc(plugin_enabled=True)
    applied = set(
        by_kind_name(
            builder.primary_objects(cppc)
            + builder.plugin_objects(cppc)
            + builder.primary_monitoring_objects()
            + builder.plugin_monitoring_objects()
            + [builder.mutating_webhook_configuration(cppc)]
        )
    )
    deleted = set(
        by_kind_name(
            builder.plugin_daemonset_refs()
            + builder.plugin_remaining_refs(True)
            + builder.hook_refs()
            + builder.primary_remaining_refs(True)
        )
    )
    assert applied == deleted


def test_teardown_sets_without_monitoring():
    builder = make_builder()
    for refs in [
        builder.plugin_remaining_refs(False),
        builder.primary_remaining_refs(False),
    ]:
        kinds = {ref["kind"] for ref in refs}
        assert constants.SERVICE_MONITOR_KIND not in kinds
        assert constants.PROMETHEUS_RULE_KIND not in kinds


def test_hook_refs_start_with_the_registration():
    """The registration goes before the service serving it"""
    refs = make_builder().hook_refs()
    assert refs[0]["kind"] == constants.MUTATING_WEBHOOK_CONFIGURATION_KIND
