"""Pytest configuration and shared fixtures."""

import os

import pytest
from hypothesis import Verbosity, settings

from cluster_controller.models.cluster import CLUSTER_FINALIZER
from cluster_controller.models.meta import (
    CLUSTER_API_VERSION,
    CLUSTER_LABEL,
    CONTROL_PLANE_LABEL,
    EXP_API_VERSION,
)
from cluster_controller.store import InMemoryObjectStore

# Configure Hypothesis for property-based testing
settings.register_profile("default", max_examples=100, verbosity=Verbosity.normal)
settings.register_profile("ci", max_examples=1000, verbosity=Verbosity.verbose)
settings.register_profile("dev", max_examples=10, verbosity=Verbosity.verbose)

settings.load_profile(os.getenv("HYPOTHESIS_PROFILE", "default"))

NAMESPACE = "default"
INFRA_API_VERSION = "infrastructure.cluster.x-k8s.io/v1alpha4"
CONTROL_PLANE_API_VERSION = "controlplane.cluster.x-k8s.io/v1alpha4"


def cluster_data(
    name="test-cluster",
    finalizers=(CLUSTER_FINALIZER,),
    infrastructure_ref=None,
    control_plane_ref=None,
    status=None,
    annotations=None,
    paused=False,
):
    """Build a Cluster object in wire format."""
    spec = {"paused": paused}
    if infrastructure_ref:
        spec["infrastructureRef"] = {"apiVersion": INFRA_API_VERSION, **infrastructure_ref}
    if control_plane_ref:
        spec["controlPlaneRef"] = {"apiVersion": CONTROL_PLANE_API_VERSION, **control_plane_ref}
    return {
        "apiVersion": CLUSTER_API_VERSION,
        "kind": "Cluster",
        "metadata": {
            "name": name,
            "namespace": NAMESPACE,
            "uid": f"{name}-uid",
            "finalizers": list(finalizers),
            "annotations": annotations or {},
        },
        "spec": spec,
        "status": status or {},
    }


def descendant_data(
    kind,
    name,
    cluster="test-cluster",
    owned=True,
    control_plane=False,
    node_ref=False,
    finalizers=(),
):
    """Build a MachinePool/MachineDeployment/MachineSet/Machine in wire format."""
    labels = {CLUSTER_LABEL: cluster}
    if control_plane:
        labels[CONTROL_PLANE_LABEL] = ""
    metadata = {"name": name, "namespace": NAMESPACE, "labels": labels, "finalizers": list(finalizers)}
    if owned:
        metadata["ownerReferences"] = [
            {"apiVersion": CLUSTER_API_VERSION, "kind": "Cluster", "name": cluster, "uid": f"{cluster}-uid"}
        ]
    obj = {
        "apiVersion": EXP_API_VERSION if kind == "MachinePool" else CLUSTER_API_VERSION,
        "kind": kind,
        "metadata": metadata,
    }
    if kind == "Machine":
        obj["spec"] = {"clusterName": cluster}
        obj["status"] = {"nodeRef": {"kind": "Node", "name": f"{name}-node"}} if node_ref else {}
    return obj


def provider_data(kind, name, api_version=INFRA_API_VERSION, spec=None, status=None, finalizers=()):
    """Build an infrastructure or control plane provider object."""
    return {
        "apiVersion": api_version,
        "kind": kind,
        "metadata": {"name": name, "namespace": NAMESPACE, "finalizers": list(finalizers)},
        "spec": spec or {},
        "status": status or {},
    }


@pytest.fixture
def store():
    """Empty in-memory object store."""
    return InMemoryObjectStore()


@pytest.fixture
def make_cluster():
    """Factory for Cluster objects in wire format."""
    return cluster_data


@pytest.fixture
def make_descendant():
    """Factory for Cluster descendants in wire format."""
    return descendant_data


@pytest.fixture
def make_provider():
    """Factory for provider objects in wire format."""
    return provider_data


@pytest.fixture
def ca_secret():
    """A self-signed cluster CA stored as the "<cluster>-ca" secret of test-cluster."""
    import base64
    from datetime import datetime, timedelta, timezone

    from cryptography import x509
    from cryptography.hazmat.primitives import hashes, serialization
    from cryptography.hazmat.primitives.asymmetric import rsa
    from cryptography.x509.oid import NameOID

    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, "kubernetes")])
    now = datetime.now(timezone.utc)
    cert = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - timedelta(minutes=1))
        .not_valid_after(now + timedelta(days=1))
        .add_extension(x509.BasicConstraints(ca=True, path_length=None), critical=True)
        .sign(key, hashes.SHA256())
    )
    cert_pem = cert.public_bytes(serialization.Encoding.PEM)
    key_pem = key.private_bytes(
        serialization.Encoding.PEM,
        serialization.PrivateFormat.TraditionalOpenSSL,
        serialization.NoEncryption(),
    )
    return {
        "apiVersion": "v1",
        "kind": "Secret",
        "metadata": {"name": "test-cluster-ca", "namespace": NAMESPACE},
        "data": {
            "tls.crt": base64.b64encode(cert_pem).decode(),
            "tls.key": base64.b64encode(key_pem).decode(),
        },
    }
