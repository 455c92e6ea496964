"""Resolution of provider objects referenced only by (apiVersion, kind, name)."""

from datetime import datetime
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from cluster_controller.exceptions import ExternalReferenceError, NotFoundError
from cluster_controller.logging_config import get_logger
from cluster_controller.models.condition import Condition
from cluster_controller.models.meta import PAUSED_ANNOTATION, ObjectReference
from cluster_controller.store import ObjectStore

logger = get_logger(__name__)


class UnstructuredObject:
    """Weakly-typed view of a provider object.

    Infrastructure and control-plane providers define their own schemas; this
    core only relies on metadata, spec, status and status.conditions.
    """

    def __init__(self, data: dict[str, Any]):
        self.data = data

    @property
    def api_version(self) -> str:
        return self.data.get("apiVersion", "")

    @property
    def kind(self) -> str:
        return self.data.get("kind", "")

    @property
    def metadata(self) -> dict[str, Any]:
        return self.data.setdefault("metadata", {})

    @property
    def name(self) -> str:
        return self.metadata.get("name", "")

    @property
    def namespace(self) -> str:
        return self.metadata.get("namespace", "default")

    @property
    def labels(self) -> dict[str, str]:
        return self.metadata.get("labels") or {}

    @property
    def annotations(self) -> dict[str, str]:
        return self.metadata.get("annotations") or {}

    @property
    def owner_references(self) -> list[dict[str, Any]]:
        return self.metadata.get("ownerReferences") or []

    @property
    def deletion_timestamp(self) -> datetime | str | None:
        return self.metadata.get("deletionTimestamp")

    @property
    def spec(self) -> dict[str, Any]:
        return self.data.get("spec") or {}

    @property
    def status(self) -> dict[str, Any]:
        return self.data.get("status") or {}

    def is_paused(self) -> bool:
        return PAUSED_ANNOTATION in self.annotations

    def is_ready(self) -> bool:
        """Providers report readiness as status.ready; absent means not ready."""
        ready = self.status.get("ready", False)
        if not isinstance(ready, bool):
            raise ExternalReferenceError(
                f"{self.kind} {self.namespace}/{self.name} has non-boolean status.ready",
                f"got {ready!r}",
            )
        return ready

    @property
    def conditions(self) -> list[Condition]:
        parsed = []
        for raw in self.status.get("conditions") or []:
            try:
                parsed.append(Condition.model_validate(raw))
            except PydanticValidationError as e:
                logger.warning(f"Ignoring malformed condition on {self.kind} {self.name}: {e}")
        return parsed

    def get_condition(self, condition_type: str) -> Condition | None:
        return next((c for c in self.conditions if c.type == condition_type), None)


class ExternalReferenceResolver:
    """Get and delete objects identified by an ObjectReference."""

    def __init__(self, store: ObjectStore):
        self.store = store

    def get(self, ref: ObjectReference, namespace: str) -> UnstructuredObject:
        """Fetch the referenced object from namespace.

        Raises:
            NotFoundError: If the object does not exist
            ExternalReferenceError: For any other failure, chained to the cause
        """
        if ref is None:
            raise ExternalReferenceError("cannot get object - reference is nil")
        try:
            data = self.store.get(ref.api_version, ref.kind, namespace, ref.name)
        except NotFoundError:
            raise
        except Exception as e:
            raise ExternalReferenceError(
                f"failed to retrieve {ref.kind} external object {namespace}/{ref.name}", str(e)
            ) from e
        return UnstructuredObject(data)

    def delete(self, obj: UnstructuredObject) -> None:
        """Request deletion of obj. An object that is already gone is not an error."""
        try:
            self.store.delete(obj.api_version, obj.kind, obj.namespace, obj.name)
        except NotFoundError:
            logger.debug(f"{obj.kind} {obj.namespace}/{obj.name} already deleted")
