"""
EC2 Key Pair Module

Generate an SSH key pair locally and register it with EC2 so a Terraform
managed instance can be launched with it. The key pair is deleted from the
account again during teardown.

Security Requirements:
- RSA 2048-bit keys generated in-process (never written by this module)
- Private key material never logged
- Only the public half is sent to AWS
"""

import logging
import os
from dataclasses import asdict, dataclass
from typing import Any

import boto3
from botocore.exceptions import BotoCoreError, ClientError
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

logger = logging.getLogger(__name__)

RSA_KEY_SIZE = 2048
RSA_PUBLIC_EXPONENT = 65537


class KeyPairError(Exception):
    """Raised when key pair generation, import or deletion fails."""

    pass


@dataclass
class KeyPair:
    """Public/private key material in OpenSSH/PEM text form."""

    public_key: str
    private_key: str

    def __repr__(self) -> str:
        return f"KeyPair(public_key={self.public_key[:24]!r}..., private_key=<redacted>)"


@dataclass
class Ec2KeyPair:
    """A key pair registered with EC2 in one region."""

    name: str
    region: str
    key_pair: KeyPair
    key_pair_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary, excluding None values."""
        data = asdict(self)
        return {k: v for k, v in data.items() if v is not None}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Ec2KeyPair":
        """Create from dictionary."""
        key_data = data.get("key_pair") or {}
        return cls(
            name=data["name"],
            region=data["region"],
            key_pair=KeyPair(
                public_key=key_data.get("public_key", ""),
                private_key=key_data.get("private_key", ""),
            ),
            key_pair_id=data.get("key_pair_id"),
        )


def generate_rsa_key_pair(key_size: int = RSA_KEY_SIZE) -> KeyPair:
    """
    Generate an RSA key pair.

    Args:
        key_size: Key size in bits

    Returns:
        KeyPair: OpenSSH public key and PEM (traditional OpenSSL) private key
    """
    private_key = rsa.generate_private_key(public_exponent=RSA_PUBLIC_EXPONENT, key_size=key_size)

    private_pem = private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.TraditionalOpenSSL,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode("utf-8")

    public_openssh = (
        private_key.public_key()
        .public_bytes(
            encoding=serialization.Encoding.OpenSSH,
            format=serialization.PublicFormat.OpenSSH,
        )
        .decode("utf-8")
    )

    return KeyPair(public_key=public_openssh, private_key=private_pem)


def _ec2_client(region: str, client: Any | None = None) -> Any:
    if client is not None:
        return client

    # CRITICAL: Prevent unit tests from touching a real AWS account
    if os.getenv("INFRAPROBE_TEST_MODE") == "true" and os.getenv("RUN_E2E_TESTS") != "true":
        raise KeyPairError(
            "Cannot create a real EC2 client during tests. "
            "Pass client= or set RUN_E2E_TESTS=true."
        )

    return boto3.client("ec2", region_name=region)


def create_and_import_ec2_key_pair(region: str, name: str, client: Any | None = None) -> Ec2KeyPair:
    """
    Generate a key pair and import its public half into EC2.

    Args:
        region: AWS region
        name: Key pair name in the account
        client: Optional pre-built EC2 client

    Returns:
        Ec2KeyPair: Registered key pair, including the private key

    Raises:
        KeyPairError: If the import fails
    """
    key_pair = generate_rsa_key_pair()
    return import_ec2_key_pair(region, name, key_pair, client=client)


def import_ec2_key_pair(
    region: str, name: str, key_pair: KeyPair, client: Any | None = None
) -> Ec2KeyPair:
    """Import an existing public key into EC2 under the given name."""
    logger.info(f"Creating EC2 Keypair {name} in {region}")
    try:
        ec2 = _ec2_client(region, client)
        response = ec2.import_key_pair(
            KeyName=name,
            PublicKeyMaterial=key_pair.public_key.encode("utf-8"),
        )
    except (ClientError, BotoCoreError) as e:
        raise KeyPairError(f"Failed to import key pair {name} in {region}: {e}") from e

    return Ec2KeyPair(
        name=name,
        region=region,
        key_pair=key_pair,
        key_pair_id=response.get("KeyPairId"),
    )


def delete_ec2_key_pair(ec2_key_pair: Ec2KeyPair, client: Any | None = None) -> None:
    """
    Delete a key pair from EC2.

    Args:
        ec2_key_pair: Key pair to delete
        client: Optional pre-built EC2 client

    Raises:
        KeyPairError: If the deletion fails
    """
    logger.info(f"Deleting EC2 Keypair {ec2_key_pair.name} in {ec2_key_pair.region}")
    if ec2_key_pair.key_pair_id:
        kwargs = {"KeyPairId": ec2_key_pair.key_pair_id}
    else:
        kwargs = {"KeyName": ec2_key_pair.name}

    try:
        ec2 = _ec2_client(ec2_key_pair.region, client)
        ec2.delete_key_pair(**kwargs)
    except (ClientError, BotoCoreError) as e:
        raise KeyPairError(f"Failed to delete key pair {ec2_key_pair.name}: {e}") from e


__all__ = [
    "Ec2KeyPair",
    "KeyPair",
    "KeyPairError",
    "create_and_import_ec2_key_pair",
    "delete_ec2_key_pair",
    "generate_rsa_key_pair",
    "import_ec2_key_pair",
]
