"""Patch helper that writes back only what a reconcile pass changed.

The helper snapshots an object when created. On patch it sends three
separate merge patches, each only when non-empty:

1. metadata (labels, annotations, finalizers) and spec
2. status, except conditions
3. status.conditions, merged against a fresh read of the object

Conditions changed by someone else since the snapshot are a conflict,
unless the condition type is owned by the caller, in which case the local
value wins.
"""

import time
from collections.abc import Iterable

from cluster_controller.exceptions import ConflictError, aggregate
from cluster_controller.logging_config import get_logger
from cluster_controller.models.cluster import Cluster
from cluster_controller.models.condition import READY_CONDITION, Condition
from cluster_controller.store import ObjectStore, create_merge_patch

logger = get_logger(__name__)

MAX_CONFLICT_RETRIES = 5
CONFLICT_RETRY_DELAY = 0.05

METADATA_FIELDS = ("labels", "annotations", "finalizers")


def _object_view(data: dict) -> dict:
    metadata = data.get("metadata", {})
    return {
        "metadata": {k: metadata[k] for k in METADATA_FIELDS if k in metadata},
        "spec": data.get("spec", {}),
    }


def _status_view(data: dict) -> dict:
    return {k: v for k, v in (data.get("status") or {}).items() if k != "conditions"}


def _conditions(data: dict) -> dict[str, dict]:
    """Conditions keyed by type, normalized through the Condition model."""
    return {
        raw["type"]: Condition.model_validate(raw).to_dict()
        for raw in (data.get("status") or {}).get("conditions") or []
    }


class PatchHelper:
    """Computes and applies the patches for one object."""

    def __init__(self, obj: Cluster, store: ObjectStore):
        self.store = store
        self.before = obj.to_dict()

    def patch(
        self,
        obj: Cluster,
        owned_conditions: Iterable[str] = (),
        observed_generation: bool = False,
    ) -> None:
        """Write obj's changes since the snapshot.

        Args:
            obj: The object after reconciliation
            owned_conditions: Condition types whose conflicts resolve in favor of obj
            observed_generation: Set status.observedGeneration to metadata.generation

        Raises:
            ConflictError: If a condition outside owned_conditions was changed concurrently
            AggregateError: If more than one of the patches failed
        """
        if observed_generation:
            obj.status.observed_generation = obj.metadata.generation

        after = obj.to_dict()
        owned = set(owned_conditions)
        errors = []

        try:
            self._patch_object(obj, after)
        except Exception as e:
            errors.append(e)

        # Removing the last finalizer of a deleting object lets it be garbage collected
        if obj.metadata.is_deleting and not obj.metadata.finalizers and not errors:
            logger.debug(f"{obj.kind} {obj.key} released, skipping status patch")
            self.before = after
            return

        for step in (self._patch_status, self._patch_status_conditions):
            try:
                step(obj, after, owned)
            except Exception as e:
                errors.append(e)

        err = aggregate(errors)
        if err is not None:
            if len(err.errors) == 1:
                raise err.errors[0]
            raise err
        self.before = after

    def _patch_object(self, obj: Cluster, after: dict) -> None:
        diff = create_merge_patch(_object_view(self.before), _object_view(after))
        if not diff:
            return
        logger.debug(f"Patching {obj.kind} {obj.key}: {sorted(diff)}")
        self.store.patch(obj.api_version, obj.kind, obj.namespace, obj.name, diff)

    def _patch_status(self, obj: Cluster, after: dict, owned: set[str]) -> None:
        diff = create_merge_patch(_status_view(self.before), _status_view(after))
        if not diff:
            return
        self.store.patch(
            obj.api_version, obj.kind, obj.namespace, obj.name, {"status": diff}, subresource="status"
        )

    def _patch_status_conditions(self, obj: Cluster, after: dict, owned: set[str]) -> None:
        before_conditions = _conditions(self.before)
        after_conditions = _conditions(after)
        changed = sorted(
            t
            for t in before_conditions.keys() | after_conditions.keys()
            if before_conditions.get(t) != after_conditions.get(t)
        )
        if not changed:
            return

        for attempt in range(MAX_CONFLICT_RETRIES):
            latest = self.store.get(obj.api_version, obj.kind, obj.namespace, obj.name)
            latest_conditions = _conditions(latest)
            merged = dict(latest_conditions)
            for condition_type in changed:
                base = before_conditions.get(condition_type)
                ours = after_conditions.get(condition_type)
                theirs = latest_conditions.get(condition_type)
                if theirs != base and theirs != ours and condition_type not in owned:
                    raise ConflictError(
                        f"condition {condition_type} of {obj.kind} {obj.key} was changed concurrently",
                        "the condition is not owned by this controller",
                    )
                if ours is None:
                    merged.pop(condition_type, None)
                else:
                    merged[condition_type] = ours

            ordered = sorted(
                merged.values(), key=lambda c: (c["type"] != READY_CONDITION, c["type"])
            )
            body = {
                "metadata": {"resourceVersion": latest["metadata"]["resourceVersion"]},
                "status": {"conditions": ordered},
            }
            try:
                self.store.patch(
                    obj.api_version, obj.kind, obj.namespace, obj.name, body, subresource="status"
                )
                return
            except ConflictError:
                logger.debug(
                    f"Conflict patching conditions of {obj.kind} {obj.key}, retry {attempt + 1}"
                )
                time.sleep(CONFLICT_RETRY_DELAY * 2**attempt)

        raise ConflictError(
            f"failed to patch conditions of {obj.kind} {obj.key}",
            f"still conflicting after {MAX_CONFLICT_RETRIES} attempts",
        )
