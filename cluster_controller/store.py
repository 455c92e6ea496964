"""Object store access.

The controller talks to the API server through the narrow ObjectStore
interface: get, list, create, delete and JSON merge patch, keyed on
(apiVersion, kind, namespace, name). KubernetesObjectStore is backed by the
kubernetes client. InMemoryObjectStore mimics API server semantics
(resource versions, finalizers, status subresource) for tests and dry runs.
"""

from __future__ import annotations

import copy
import itertools
import uuid
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any

from kubernetes import client
from kubernetes.client.rest import ApiException

from cluster_controller.exceptions import ConflictError, KubernetesError, NotFoundError
from cluster_controller.logging_config import get_logger
from cluster_controller.models.meta import api_group

logger = get_logger(__name__)

MERGE_PATCH = "application/merge-patch+json"


def merge_patch(target: Any, patch: Any) -> Any:
    """Apply an RFC 7386 JSON merge patch and return the result."""
    if not isinstance(patch, dict):
        return copy.deepcopy(patch)
    result = copy.deepcopy(target) if isinstance(target, dict) else {}
    for key, value in patch.items():
        if value is None:
            result.pop(key, None)
        else:
            result[key] = merge_patch(result.get(key), value)
    return result


def create_merge_patch(before: dict, after: dict) -> dict:
    """Compute the JSON merge patch that turns before into after."""
    patch: dict[str, Any] = {}
    for key in before:
        if key not in after:
            patch[key] = None
    for key, value in after.items():
        old = before.get(key)
        if isinstance(old, dict) and isinstance(value, dict):
            nested = create_merge_patch(old, value)
            if nested:
                patch[key] = nested
        elif key not in before or old != value:
            patch[key] = copy.deepcopy(value)
    return patch


def label_selector(labels: dict[str, str] | None) -> str:
    return ",".join(f"{k}={v}" for k, v in sorted((labels or {}).items()))


class ObjectStore(ABC):
    """Get/List/Create/Delete/Patch by namespaced name and label selector."""

    @abstractmethod
    def get(self, api_version: str, kind: str, namespace: str, name: str) -> dict:
        """Return the object, or raise NotFoundError."""

    @abstractmethod
    def list(
        self, api_version: str, kind: str, namespace: str, labels: dict[str, str] | None = None
    ) -> list[dict]:
        """Return every object of kind in namespace matching all labels."""

    @abstractmethod
    def create(self, obj: dict) -> dict:
        """Create obj and return the stored copy."""

    @abstractmethod
    def delete(self, api_version: str, kind: str, namespace: str, name: str) -> None:
        """Request deletion. Raises NotFoundError if the object is gone."""

    @abstractmethod
    def patch(
        self,
        api_version: str,
        kind: str,
        namespace: str,
        name: str,
        patch: dict,
        subresource: str | None = None,
    ) -> dict:
        """Apply a JSON merge patch.

        A metadata.resourceVersion in the patch acts as an optimistic lock and
        raises ConflictError when it is stale.
        """


class KubernetesObjectStore(ObjectStore):
    """ObjectStore backed by the Kubernetes API.

    Custom resources go through CustomObjectsApi, Secrets through CoreV1Api.
    """

    def __init__(self, api_client: client.ApiClient | None = None):
        self.custom_api = client.CustomObjectsApi(api_client)
        self.core_api = client.CoreV1Api(api_client)
        self.api_client = self.core_api.api_client

    @staticmethod
    def _is_secret(api_version: str, kind: str) -> bool:
        return api_version == "v1" and kind == "Secret"

    @staticmethod
    def _resource(api_version: str, kind: str) -> tuple[str, str, str]:
        group, _, version = api_version.rpartition("/")
        # Provider kinds follow the lower-case plural convention
        return group, version, kind.lower() + "s"

    def _translate(self, e: ApiException, verb: str, kind: str, namespace: str, name: str):
        target = f"{kind} {namespace}/{name}" if name else f"{kind} in {namespace}"
        message = f"Failed to {verb} {target}"
        if e.status == 404:
            return NotFoundError(f"{target} not found", e.reason)
        if e.status == 409:
            return ConflictError(f"{message}: conflict", e.reason)
        return KubernetesError(message, f"HTTP {e.status}: {e.reason}")

    def get(self, api_version: str, kind: str, namespace: str, name: str) -> dict:
        try:
            if self._is_secret(api_version, kind):
                secret = self.core_api.read_namespaced_secret(name, namespace)
                return self.api_client.sanitize_for_serialization(secret)
            group, version, plural = self._resource(api_version, kind)
            return self.custom_api.get_namespaced_custom_object(
                group, version, namespace, plural, name
            )
        except ApiException as e:
            raise self._translate(e, "get", kind, namespace, name) from e

    def list(
        self, api_version: str, kind: str, namespace: str, labels: dict[str, str] | None = None
    ) -> list[dict]:
        selector = label_selector(labels)
        try:
            if self._is_secret(api_version, kind):
                secrets = self.core_api.list_namespaced_secret(namespace, label_selector=selector)
                return [self.api_client.sanitize_for_serialization(s) for s in secrets.items]
            group, version, plural = self._resource(api_version, kind)
            result = self.custom_api.list_namespaced_custom_object(
                group, version, namespace, plural, label_selector=selector
            )
            return result.get("items", [])
        except ApiException as e:
            raise self._translate(e, "list", kind, namespace, "") from e

    def create(self, obj: dict) -> dict:
        api_version, kind = obj["apiVersion"], obj["kind"]
        namespace = obj["metadata"].get("namespace", "default")
        name = obj["metadata"].get("name", "")
        try:
            if self._is_secret(api_version, kind):
                created = self.core_api.create_namespaced_secret(namespace, obj)
                return self.api_client.sanitize_for_serialization(created)
            group, version, plural = self._resource(api_version, kind)
            return self.custom_api.create_namespaced_custom_object(
                group, version, namespace, plural, obj
            )
        except ApiException as e:
            raise self._translate(e, "create", kind, namespace, name) from e

    def delete(self, api_version: str, kind: str, namespace: str, name: str) -> None:
        try:
            if self._is_secret(api_version, kind):
                self.core_api.delete_namespaced_secret(name, namespace)
                return
            group, version, plural = self._resource(api_version, kind)
            self.custom_api.delete_namespaced_custom_object(group, version, namespace, plural, name)
        except ApiException as e:
            raise self._translate(e, "delete", kind, namespace, name) from e

    def patch(
        self,
        api_version: str,
        kind: str,
        namespace: str,
        name: str,
        patch: dict,
        subresource: str | None = None,
    ) -> dict:
        try:
            if self._is_secret(api_version, kind):
                patched = self.core_api.patch_namespaced_secret(name, namespace, patch)
                return self.api_client.sanitize_for_serialization(patched)
            group, version, plural = self._resource(api_version, kind)
            if subresource == "status":
                return self.custom_api.patch_namespaced_custom_object_status(
                    group, version, namespace, plural, name, patch, _content_type=MERGE_PATCH
                )
            return self.custom_api.patch_namespaced_custom_object(
                group, version, namespace, plural, name, patch, _content_type=MERGE_PATCH
            )
        except ApiException as e:
            raise self._translate(e, "patch", kind, namespace, name) from e


class InMemoryObjectStore(ObjectStore):
    """Dict-backed ObjectStore with API server semantics.

    - every write bumps metadata.resourceVersion; spec writes bump generation
    - delete on an object with finalizers only sets deletionTimestamp
    - removing the last finalizer from a deleting object removes it
    - status is only writable through the "status" subresource

    Every call is appended to ``calls`` as (verb, kind, namespace, name), and
    ``fail(verb, kind, name, error)`` makes matching calls raise.
    """

    def __init__(self):
        self._objects: dict[tuple[str, str, str, str], dict] = {}
        self._versions = itertools.count(1)
        self._failures: dict[tuple[str, str, str | None], Exception] = {}
        self.calls: list[tuple[str, str, str, str]] = []

    @staticmethod
    def _key(api_version: str, kind: str, namespace: str, name: str):
        return (api_group(api_version), kind, namespace, name)

    def fail(self, verb: str, kind: str, name: str | None = None, error: Exception | None = None):
        """Make verb on kind (optionally a single name) raise error."""
        self._failures[(verb, kind, name)] = error or KubernetesError(f"injected {verb} failure")

    def _record(self, verb: str, kind: str, namespace: str, name: str) -> None:
        self.calls.append((verb, kind, namespace, name))
        for key in ((verb, kind, name), (verb, kind, None)):
            if key in self._failures:
                raise self._failures[key]

    def _bump(self, obj: dict) -> None:
        obj["metadata"]["resourceVersion"] = str(next(self._versions))

    def get(self, api_version: str, kind: str, namespace: str, name: str) -> dict:
        self._record("get", kind, namespace, name)
        obj = self._objects.get(self._key(api_version, kind, namespace, name))
        if obj is None:
            raise NotFoundError(f"{kind} {namespace}/{name} not found")
        return copy.deepcopy(obj)

    def list(
        self, api_version: str, kind: str, namespace: str, labels: dict[str, str] | None = None
    ) -> list[dict]:
        self._record("list", kind, namespace, "")
        group = api_group(api_version)
        items = []
        for (g, k, ns, _), obj in sorted(self._objects.items()):
            if (g, k, ns) != (group, kind, namespace):
                continue
            obj_labels = obj["metadata"].get("labels") or {}
            if all(obj_labels.get(lk) == lv for lk, lv in (labels or {}).items()):
                items.append(copy.deepcopy(obj))
        return items

    def create(self, obj: dict) -> dict:
        obj = copy.deepcopy(obj)
        metadata = obj.setdefault("metadata", {})
        metadata.setdefault("namespace", "default")
        key = self._key(obj["apiVersion"], obj["kind"], metadata["namespace"], metadata["name"])
        self._record("create", obj["kind"], metadata["namespace"], metadata["name"])
        if key in self._objects:
            raise ConflictError(f"{obj['kind']} {metadata['namespace']}/{metadata['name']} already exists")
        metadata.setdefault("uid", str(uuid.uuid4()))
        metadata["generation"] = 1
        self._bump(obj)
        self._objects[key] = obj
        return copy.deepcopy(obj)

    def delete(self, api_version: str, kind: str, namespace: str, name: str) -> None:
        self._record("delete", kind, namespace, name)
        key = self._key(api_version, kind, namespace, name)
        obj = self._objects.get(key)
        if obj is None:
            raise NotFoundError(f"{kind} {namespace}/{name} not found")
        metadata = obj["metadata"]
        if not metadata.get("finalizers"):
            del self._objects[key]
            return
        if not metadata.get("deletionTimestamp"):
            metadata["deletionTimestamp"] = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
            self._bump(obj)

    def patch(
        self,
        api_version: str,
        kind: str,
        namespace: str,
        name: str,
        patch: dict,
        subresource: str | None = None,
    ) -> dict:
        self._record("patch", kind, namespace, name)
        key = self._key(api_version, kind, namespace, name)
        obj = self._objects.get(key)
        if obj is None:
            raise NotFoundError(f"{kind} {namespace}/{name} not found")

        patch = copy.deepcopy(patch)
        expected = patch.get("metadata", {}).pop("resourceVersion", None)
        if expected is not None and expected != obj["metadata"]["resourceVersion"]:
            raise ConflictError(
                f"{kind} {namespace}/{name} was modified",
                f"resourceVersion {expected} is stale",
            )

        if subresource == "status":
            patched = dict(obj, status=merge_patch(obj.get("status"), patch.get("status", {})))
        else:
            patch.pop("status", None)
            patched = merge_patch(obj, patch)
            if patched.get("spec") != obj.get("spec"):
                patched["metadata"]["generation"] = obj["metadata"].get("generation", 1) + 1

        self._bump(patched)
        if patched["metadata"].get("deletionTimestamp") and not patched["metadata"].get("finalizers"):
            del self._objects[key]
        else:
            self._objects[key] = patched
        return copy.deepcopy(patched)

    def deleted(self) -> list[tuple[str, str]]:
        """(kind, name) of every delete call, in call order."""
        return [(kind, name) for verb, kind, _, name in self.calls if verb == "delete"]
