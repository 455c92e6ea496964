"""Reconcile entry point for Cluster objects."""

from pydantic import ValidationError as PydanticValidationError

from cluster_controller import conditions
from cluster_controller.config import ControllerConfig
from cluster_controller.deletion import CascadingDeletionCoordinator
from cluster_controller.descendants import DescendantGraph
from cluster_controller.exceptions import NotFoundError, ValidationError, aggregate
from cluster_controller.external import ExternalReferenceResolver
from cluster_controller.logging_config import get_logger
from cluster_controller.models.cluster import CLUSTER_FINALIZER, Cluster
from cluster_controller.models.condition import (
    CONTROL_PLANE_READY_CONDITION,
    INFRASTRUCTURE_READY_CONDITION,
    READY_CONDITION,
)
from cluster_controller.models.meta import CLUSTER_API_VERSION
from cluster_controller.patch import PatchHelper
from cluster_controller.phases import PhaseReconciler, reconcile_phase
from cluster_controller.result import Request, Result
from cluster_controller.store import ObjectStore

logger = get_logger(__name__)

OWNED_CONDITIONS = [READY_CONDITION, CONTROL_PLANE_READY_CONDITION, INFRASTRUCTURE_READY_CONDITION]


def patch_cluster(helper: PatchHelper, cluster: Cluster, observed_generation: bool = False) -> None:
    """Summarize Ready and patch the cluster, resolving conflicts on owned conditions."""
    conditions.set_summary(cluster, [CONTROL_PLANE_READY_CONDITION, INFRASTRUCTURE_READY_CONDITION])
    helper.patch(
        cluster, owned_conditions=OWNED_CONDITIONS, observed_generation=observed_generation
    )


class ClusterReconciler:
    """Reconciles a Cluster towards its spec and tears it down on deletion.

    The caller guarantees a given Cluster is never reconciled concurrently
    with itself; different Clusters may be reconciled in parallel.
    """

    def __init__(self, store: ObjectStore, config: ControllerConfig | None = None):
        """Initialize the reconciler.

        Args:
            store: Object store holding Clusters and their descendants
            config: Controller configuration, defaults when omitted
        """
        self.store = store
        self.config = config or ControllerConfig()
        self.resolver = ExternalReferenceResolver(store)
        self.graph = DescendantGraph(store, machine_pools_enabled=self.config.machine_pool_enabled)
        self.deletion = CascadingDeletionCoordinator(store, self.graph, self.resolver)
        self.phases = PhaseReconciler(store, self.resolver)

    def reconcile(self, request: Request) -> Result:
        """Run one reconcile pass for the Cluster identified by request.

        Returns:
            Requeue hint for the work queue

        Raises:
            ClusterControllerError: Any failure of the pass or of the final patch;
                the caller retries with backoff
        """
        try:
            data = self.store.get(CLUSTER_API_VERSION, "Cluster", request.namespace, request.name)
        except NotFoundError:
            # Deleted objects are garbage collected once the finalizer is gone
            logger.debug(f"Cluster {request} not found, nothing to do")
            return Result()

        try:
            cluster = Cluster.model_validate(data)
        except PydanticValidationError as e:
            raise ValidationError(f"Cluster {request} is malformed", str(e)) from e
        if cluster.is_paused():
            logger.info(f"Reconciliation is paused for cluster {request}")
            return Result()

        helper = PatchHelper(cluster, self.store)
        result = Result()
        errors = []
        try:
            result = self._reconcile(cluster)
        except Exception as e:
            errors.append(e)
        finally:
            reconcile_phase(cluster)
            try:
                patch_cluster(helper, cluster, observed_generation=not errors)
            except Exception as e:
                logger.error(f"Failed to patch cluster {request}: {e}")
                errors.append(e)

        err = aggregate(errors)
        if err is not None:
            raise err
        return result

    def _reconcile(self, cluster: Cluster) -> Result:
        # The finalizer is recorded before any other work so a deletion
        # request can never land on a cluster that has no finalizer yet
        if not cluster.metadata.has_finalizer(CLUSTER_FINALIZER):
            # A deleting cluster never gets new finalizers
            if cluster.metadata.is_deleting:
                return Result()
            cluster.metadata.add_finalizer(CLUSTER_FINALIZER)
            return Result()

        if cluster.metadata.is_deleting:
            return self.deletion.reconcile_delete(cluster)

        return self.phases.reconcile(cluster)
