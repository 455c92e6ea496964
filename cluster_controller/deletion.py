"""Cascading deletion of a Cluster and everything it owns."""

from cluster_controller import conditions
from cluster_controller.descendants import DescendantGraph
from cluster_controller.exceptions import (
    ExternalReferenceError,
    KubernetesError,
    NotFoundError,
    aggregate,
)
from cluster_controller.external import ExternalReferenceResolver
from cluster_controller.logging_config import get_logger
from cluster_controller.models.cluster import CLUSTER_FINALIZER, Cluster
from cluster_controller.models.condition import (
    CONTROL_PLANE_READY_CONDITION,
    DELETED_REASON,
    DELETING_REASON,
    INFRASTRUCTURE_READY_CONDITION,
    ConditionSeverity,
)
from cluster_controller.models.meta import ObjectReference
from cluster_controller.result import Result
from cluster_controller.store import ObjectStore

logger = get_logger(__name__)

# How long to wait before checking again whether descendants or provider objects remain
DELETE_REQUEUE_AFTER = 5.0


class CascadingDeletionCoordinator:
    """Drives one deletion pass of a Cluster.

    Each pass makes as much progress as it can and returns; the finalizer is
    only removed once descendants, control plane and infrastructure are gone.
    """

    def __init__(
        self,
        store: ObjectStore,
        graph: DescendantGraph,
        resolver: ExternalReferenceResolver,
    ):
        self.store = store
        self.graph = graph
        self.resolver = resolver

    def reconcile_delete(self, cluster: Cluster) -> Result:
        """Run one deletion pass.

        Returns:
            Result requesting a recheck while descendants or provider objects remain

        Raises:
            KubernetesError: If descendants cannot be listed
            AggregateError: If any owned descendant could not be deleted
            ExternalReferenceError: If a provider object cannot be resolved or deleted
        """
        try:
            descendants = self.graph.list_descendants(cluster)
        except KubernetesError as e:
            logger.error(f"Failed to list descendants of cluster {cluster.key}: {e.message}")
            raise

        children = descendants.filter_owned_descendants(cluster)
        if children:
            logger.info(
                f"Cluster {cluster.key} still has {len(children)} children - deleting them first"
            )
            errors = []
            for child in children:
                if child.metadata.is_deleting:
                    continue
                logger.info(f"Deleting {child.kind} {child.namespace}/{child.name}")
                try:
                    self.store.delete(child.api_version, child.kind, child.namespace, child.name)
                except NotFoundError:
                    continue
                except Exception as e:
                    logger.error(f"Error deleting {child.kind} {child.name}: {e}")
                    errors.append(
                        KubernetesError(
                            f"error deleting cluster {cluster.key}: "
                            f"failed to delete {child.kind} {child.name}",
                            str(e),
                        )
                    )
            err = aggregate(errors)
            if err is not None:
                raise err

        descendant_count = descendants.length()
        if descendant_count > 0:
            indirect = descendant_count - len(children)
            logger.info(
                f"Cluster {cluster.key} still has descendants - need to requeue: "
                f"{descendants.descendant_names()} ({indirect} indirect)"
            )
            return Result(requeue_after=DELETE_REQUEUE_AFTER)

        if cluster.spec.control_plane_ref is not None:
            if not self._delete_external(
                cluster, cluster.spec.control_plane_ref, CONTROL_PLANE_READY_CONDITION
            ):
                return Result(requeue_after=DELETE_REQUEUE_AFTER)

        if cluster.spec.infrastructure_ref is not None:
            if not self._delete_external(
                cluster, cluster.spec.infrastructure_ref, INFRASTRUCTURE_READY_CONDITION
            ):
                return Result(requeue_after=DELETE_REQUEUE_AFTER)

        logger.info(f"Cluster {cluster.key} has no remaining descendants, removing finalizer")
        cluster.metadata.remove_finalizer(CLUSTER_FINALIZER)
        return Result()

    def _delete_external(self, cluster: Cluster, ref: ObjectReference, condition_type: str) -> bool:
        """Request deletion of a provider object.

        Returns:
            True once the object is confirmed gone, False while deletion is pending
        """
        try:
            obj = self.resolver.get(ref, cluster.namespace)
        except NotFoundError:
            conditions.mark_false(cluster, condition_type, DELETED_REASON, ConditionSeverity.INFO)
            return True
        except ExternalReferenceError as e:
            raise ExternalReferenceError(
                f"failed to get {ref.api_version}/{ref.kind} {ref.name!r} for Cluster {cluster.key}",
                e.message,
            ) from e

        conditions.set_mirror(
            cluster,
            condition_type,
            obj,
            conditions.Fallback(False, DELETING_REASON, ConditionSeverity.INFO),
        )

        try:
            self.resolver.delete(obj)
        except Exception as e:
            raise ExternalReferenceError(
                f"failed to delete {obj.api_version}/{obj.kind} {obj.name!r} for Cluster {cluster.key}",
                str(e),
            ) from e

        logger.info(f"Cluster {cluster.key} is waiting for {ref.kind} {ref.name} to be deleted")
        return False
