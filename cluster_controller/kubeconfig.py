"""Kubeconfig secret generation for workload clusters.

The kubeconfig is signed by the cluster CA stored in the "<cluster>-ca"
secret and written to "<cluster>-kubeconfig" under the "value" key.
"""

import base64
from datetime import datetime, timedelta, timezone

import yaml
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import ExtendedKeyUsageOID, NameOID

from cluster_controller.exceptions import DependentCertificateNotFoundError, NotFoundError
from cluster_controller.logging_config import get_logger
from cluster_controller.models.cluster import Cluster
from cluster_controller.models.meta import CLUSTER_LABEL
from cluster_controller.store import ObjectStore

logger = get_logger(__name__)

SECRET_API_VERSION = "v1"
CLUSTER_SECRET_TYPE = "cluster.x-k8s.io/secret"
KUBECONFIG_DATA_KEY = "value"
ADMIN_USER = "kubernetes-admin"
ADMIN_GROUP = "system:masters"
CERTIFICATE_VALIDITY = timedelta(days=365)


def secret_name(cluster_name: str, purpose: str) -> str:
    return f"{cluster_name}-{purpose}"


def _b64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def generate_client_certificate(ca_cert_pem: bytes, ca_key_pem: bytes) -> tuple[bytes, bytes]:
    """Issue an admin client certificate signed by the cluster CA.

    Returns:
        (certificate PEM, private key PEM)
    """
    ca_cert = x509.load_pem_x509_certificate(ca_cert_pem)
    ca_key = serialization.load_pem_private_key(ca_key_pem, password=None)

    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    subject = x509.Name(
        [
            x509.NameAttribute(NameOID.ORGANIZATION_NAME, ADMIN_GROUP),
            x509.NameAttribute(NameOID.COMMON_NAME, ADMIN_USER),
        ]
    )
    now = datetime.now(timezone.utc)
    cert = (
        x509.CertificateBuilder()
        .subject_name(subject)
        .issuer_name(ca_cert.subject)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - timedelta(minutes=5))
        .not_valid_after(now + CERTIFICATE_VALIDITY)
        .add_extension(
            x509.KeyUsage(
                digital_signature=True,
                content_commitment=False,
                key_encipherment=True,
                data_encipherment=False,
                key_agreement=False,
                key_cert_sign=False,
                crl_sign=False,
                encipher_only=False,
                decipher_only=False,
            ),
            critical=True,
        )
        .add_extension(x509.ExtendedKeyUsage([ExtendedKeyUsageOID.CLIENT_AUTH]), critical=False)
        .sign(ca_key, hashes.SHA256())
    )

    cert_pem = cert.public_bytes(serialization.Encoding.PEM)
    key_pem = key.private_bytes(
        serialization.Encoding.PEM,
        serialization.PrivateFormat.TraditionalOpenSSL,
        serialization.NoEncryption(),
    )
    return cert_pem, key_pem


def generate_kubeconfig(cluster: Cluster, ca_cert_pem: bytes, ca_key_pem: bytes) -> str:
    """Render an admin kubeconfig for cluster as YAML."""
    endpoint = cluster.spec.control_plane_endpoint
    client_cert, client_key = generate_client_certificate(ca_cert_pem, ca_key_pem)
    user = f"{cluster.name}-admin"
    context = f"{user}@{cluster.name}"
    config = {
        "apiVersion": "v1",
        "kind": "Config",
        "clusters": [
            {
                "name": cluster.name,
                "cluster": {
                    "server": f"https://{endpoint.host}:{endpoint.port}",
                    "certificate-authority-data": _b64(ca_cert_pem),
                },
            }
        ],
        "contexts": [{"name": context, "context": {"cluster": cluster.name, "user": user}}],
        "current-context": context,
        "users": [
            {
                "name": user,
                "user": {
                    "client-certificate-data": _b64(client_cert),
                    "client-key-data": _b64(client_key),
                },
            }
        ],
    }
    return yaml.safe_dump(config, default_flow_style=False)


def create_kubeconfig_secret(store: ObjectStore, cluster: Cluster) -> dict:
    """Create the kubeconfig secret for cluster.

    Raises:
        DependentCertificateNotFoundError: If the cluster CA secret does not exist yet
    """
    ca_name = secret_name(cluster.name, "ca")
    try:
        ca_secret = store.get(SECRET_API_VERSION, "Secret", cluster.namespace, ca_name)
    except NotFoundError as e:
        raise DependentCertificateNotFoundError(
            f"could not find secret {ca_name!r} for Cluster {cluster.key}"
        ) from e

    data = ca_secret.get("data") or {}
    if "tls.crt" not in data or "tls.key" not in data:
        raise DependentCertificateNotFoundError(
            f"secret {ca_name!r} for Cluster {cluster.key} has no tls.crt/tls.key"
        )

    kubeconfig = generate_kubeconfig(
        cluster, base64.b64decode(data["tls.crt"]), base64.b64decode(data["tls.key"])
    )
    secret = {
        "apiVersion": SECRET_API_VERSION,
        "kind": "Secret",
        "metadata": {
            "name": secret_name(cluster.name, "kubeconfig"),
            "namespace": cluster.namespace,
            "labels": {CLUSTER_LABEL: cluster.name},
            "ownerReferences": [cluster.owner_reference()],
        },
        "type": CLUSTER_SECRET_TYPE,
        "data": {KUBECONFIG_DATA_KEY: _b64(kubeconfig.encode())},
    }
    logger.info(f"Creating kubeconfig secret for cluster {cluster.key}")
    return store.create(secret)
