"""Normal-path reconciliation of a Cluster.

A pass runs every step once, in order. Steps are independent probes: a
failing step does not stop the ones after it, so their status updates still
land, but only steps that ran before the first failure contribute to the
merged requeue result.
"""

from collections.abc import Callable

from cluster_controller import conditions
from cluster_controller.exceptions import (
    DependentCertificateNotFoundError,
    ExternalReferenceError,
    KubernetesError,
    NotFoundError,
    aggregate,
)
from cluster_controller.external import ExternalReferenceResolver, UnstructuredObject
from cluster_controller.kubeconfig import SECRET_API_VERSION, create_kubeconfig_secret, secret_name
from cluster_controller.logging_config import get_logger
from cluster_controller.models.cluster import APIEndpoint, Cluster, ClusterPhase
from cluster_controller.models.condition import (
    CONTROL_PLANE_READY_CONDITION,
    INFRASTRUCTURE_READY_CONDITION,
    WAITING_FOR_CONTROL_PLANE_FALLBACK_REASON,
    WAITING_FOR_INFRASTRUCTURE_FALLBACK_REASON,
    ConditionSeverity,
)
from cluster_controller.models.machine import Machine
from cluster_controller.models.meta import CLUSTER_API_VERSION, CLUSTER_LABEL, ObjectReference
from cluster_controller.result import Result, lowest_non_zero_result
from cluster_controller.store import ObjectStore

logger = get_logger(__name__)

# Recheck interval while a referenced provider object or the CA secret is missing
EXTERNAL_REQUEUE_AFTER = 30.0

Step = Callable[[Cluster], Result]


def reconcile_phase(cluster: Cluster) -> None:
    """Derive status.phase from the rest of the Cluster. Later rules win."""
    if cluster.status.phase is None:
        cluster.status.phase = ClusterPhase.PENDING

    if cluster.spec.infrastructure_ref is not None:
        cluster.status.phase = ClusterPhase.PROVISIONING

    if cluster.status.infrastructure_ready and cluster.spec.control_plane_endpoint.is_valid():
        cluster.status.phase = ClusterPhase.PROVISIONED

    if cluster.status.failure_reason or cluster.status.failure_message:
        cluster.status.phase = ClusterPhase.FAILED

    if cluster.metadata.is_deleting:
        cluster.status.phase = ClusterPhase.DELETING


class PhaseReconciler:
    """Runs the ordered pipeline of sub-reconciliations for a live Cluster."""

    def __init__(
        self,
        store: ObjectStore,
        resolver: ExternalReferenceResolver,
        steps: list[Step] | None = None,
    ):
        """Initialize the reconciler.

        Args:
            store: Object store for machines and secrets
            resolver: Resolver for infrastructure and control plane references
            steps: Override of the default pipeline
        """
        self.store = store
        self.resolver = resolver
        if steps is None:
            steps = [
                self.reconcile_infrastructure,
                self.reconcile_control_plane,
                self.reconcile_kubeconfig,
                self.reconcile_control_plane_initialized,
            ]
        self.steps = steps

    def reconcile(self, cluster: Cluster) -> Result:
        """Run every step once and merge their results.

        Returns:
            The earliest requeue requested by steps before the first failure

        Raises:
            AggregateError: With every step failure of this pass
        """
        result = Result()
        errors = []
        for step in self.steps:
            try:
                step_result = step(cluster)
            except Exception as e:
                logger.error(f"Cluster {cluster.key}: {getattr(step, '__name__', step)} failed: {e}")
                errors.append(e)
                continue
            if errors:
                continue
            result = lowest_non_zero_result(result, step_result)

        err = aggregate(errors)
        if err is not None:
            raise err
        return result

    def _ensure_ownership(self, cluster: Cluster, obj: UnstructuredObject) -> None:
        """Make cluster an owner of obj and label it with the cluster name."""
        owner_refs = list(obj.owner_references)
        owned = any(
            ref.get("kind") == cluster.kind and ref.get("name") == cluster.name
            for ref in owner_refs
        )
        labelled = obj.labels.get(CLUSTER_LABEL) == cluster.name
        if owned and labelled:
            return

        patch: dict = {"metadata": {"labels": {CLUSTER_LABEL: cluster.name}}}
        if not owned:
            patch["metadata"]["ownerReferences"] = [*owner_refs, cluster.owner_reference()]
        try:
            self.store.patch(obj.api_version, obj.kind, obj.namespace, obj.name, patch)
        except Exception as e:
            raise ExternalReferenceError(
                f"failed to set owner of {obj.kind} {obj.namespace}/{obj.name} to Cluster {cluster.key}",
                str(e),
            ) from e

    def _reconcile_external(
        self, cluster: Cluster, ref: ObjectReference
    ) -> tuple[UnstructuredObject | None, Result]:
        try:
            obj = self.resolver.get(ref, cluster.namespace)
        except NotFoundError:
            logger.info(
                f"Could not find {ref.kind} {ref.name} for cluster {cluster.key}, requeuing"
            )
            return None, Result(requeue_after=EXTERNAL_REQUEUE_AFTER)

        if obj.is_paused():
            logger.info(f"{ref.kind} {ref.name} of cluster {cluster.key} is paused")
            return None, Result()

        self._ensure_ownership(cluster, obj)

        failure_reason = obj.status.get("failureReason")
        if failure_reason:
            cluster.status.failure_reason = failure_reason
        failure_message = obj.status.get("failureMessage")
        if failure_message:
            cluster.status.failure_message = (
                f"Failure detected from referenced resource {ref.api_version}/{ref.kind} "
                f"with name {ref.name!r}: {failure_message}"
            )
        return obj, Result()

    def reconcile_infrastructure(self, cluster: Cluster) -> Result:
        ref = cluster.spec.infrastructure_ref
        if ref is None:
            return Result()

        infra, result = self._reconcile_external(cluster, ref)
        if infra is None or infra.deletion_timestamp:
            return result

        ready = infra.is_ready()
        conditions.set_mirror(
            cluster,
            INFRASTRUCTURE_READY_CONDITION,
            infra,
            conditions.Fallback(
                ready, WAITING_FOR_INFRASTRUCTURE_FALLBACK_REASON, ConditionSeverity.INFO
            ),
        )
        if not ready:
            logger.info(f"Infrastructure provider for cluster {cluster.key} is not ready yet")
            return Result()

        if not cluster.spec.control_plane_endpoint.is_valid():
            endpoint = infra.spec.get("controlPlaneEndpoint")
            if endpoint:
                cluster.spec.control_plane_endpoint = APIEndpoint.model_validate(endpoint)

        failure_domains = infra.status.get("failureDomains")
        if failure_domains:
            cluster.status.failure_domains = failure_domains

        cluster.status.infrastructure_ready = True
        return Result()

    def reconcile_control_plane(self, cluster: Cluster) -> Result:
        ref = cluster.spec.control_plane_ref
        if ref is None:
            return Result()

        control_plane, result = self._reconcile_external(cluster, ref)
        if control_plane is None or control_plane.deletion_timestamp:
            return result

        ready = control_plane.is_ready()
        cluster.status.control_plane_ready = ready
        conditions.set_mirror(
            cluster,
            CONTROL_PLANE_READY_CONDITION,
            control_plane,
            conditions.Fallback(
                ready, WAITING_FOR_CONTROL_PLANE_FALLBACK_REASON, ConditionSeverity.INFO
            ),
        )

        if control_plane.status.get("initialized") is True:
            cluster.status.control_plane_initialized = True

        if not ready:
            logger.info(f"Control plane provider for cluster {cluster.key} is not ready yet")
            return Result()

        if not cluster.spec.control_plane_endpoint.is_valid():
            endpoint = control_plane.spec.get("controlPlaneEndpoint")
            if endpoint:
                cluster.spec.control_plane_endpoint = APIEndpoint.model_validate(endpoint)
        return Result()

    def reconcile_kubeconfig(self, cluster: Cluster) -> Result:
        if not cluster.spec.control_plane_endpoint.is_valid():
            return Result()

        # A control plane provider manages its own CA and kubeconfig
        if cluster.spec.control_plane_ref is not None:
            return Result()

        try:
            self.store.get(
                SECRET_API_VERSION,
                "Secret",
                cluster.namespace,
                secret_name(cluster.name, "kubeconfig"),
            )
            return Result()
        except NotFoundError:
            pass
        except Exception as e:
            raise KubernetesError(
                f"failed to retrieve Kubeconfig Secret for Cluster {cluster.key}", str(e)
            ) from e

        try:
            create_kubeconfig_secret(self.store, cluster)
        except DependentCertificateNotFoundError as e:
            logger.info(f"{e.message}, requeuing")
            return Result(requeue_after=EXTERNAL_REQUEUE_AFTER)
        return Result()

    def reconcile_control_plane_initialized(self, cluster: Cluster) -> Result:
        """Latch status.controlPlaneInitialized once a control plane machine has a node."""
        if cluster.spec.control_plane_ref is not None:
            return Result()

        if cluster.status.control_plane_initialized:
            return Result()

        try:
            items = self.store.list(
                CLUSTER_API_VERSION, "Machine", cluster.namespace, labels={CLUSTER_LABEL: cluster.name}
            )
        except Exception as e:
            logger.error(f"Error getting machines in cluster {cluster.key}: {e}")
            raise

        for item in items:
            machine = Machine.model_validate(item)
            if machine.metadata.is_deleting:
                continue
            if machine.is_control_plane() and machine.status.node_ref is not None:
                cluster.status.control_plane_initialized = True
                break
        return Result()
