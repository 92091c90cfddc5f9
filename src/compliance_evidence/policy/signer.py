"""Policy package signer.

Signs the policy file with RSA-SHA256 (PKCS#1 v1.5) and records the new
checksum in policy/version.json. The signer refuses to write anything it
cannot prove verifiable:

1. The private key's derived public key must equal the committed public key.
2. The fresh signature must verify against the committed public key.

Only then are the signature file and the manifest rewritten.
"""

from __future__ import annotations

import base64
from collections.abc import Callable
from datetime import UTC, datetime
from pathlib import Path

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa

from compliance_evidence.core.errors import CompletenessError, SignatureError
from compliance_evidence.core.files import load_model, sha256_bytes, write_json
from compliance_evidence.core.models import PolicyManifest, format_timestamp
from compliance_evidence.observability import get_logger

logger = get_logger(__name__)

DEFAULT_MANIFEST_PATH = Path("policy/version.json")
SIGNATURE_ALGORITHM = "sha256-rsa"


def normalize_pem(value: str) -> str:
    return value.replace("\r\n", "\n").strip()


def load_private_key(raw: str) -> rsa.RSAPrivateKey:
    """Load an RSA private key from PEM text.

    Literal "\\n" sequences (as found in CI secrets) are turned into newlines.

    Raises:
        SignatureError: If the key cannot be parsed or is not RSA.
    """
    pem = raw.replace("\\n", "\n").encode("utf-8")
    try:
        key = serialization.load_pem_private_key(pem, password=None)
    except (ValueError, TypeError) as exc:
        raise SignatureError(f"POLICY_SIGNING_PRIVATE_KEY could not be loaded: {exc}") from exc
    if not isinstance(key, rsa.RSAPrivateKey):
        raise SignatureError("POLICY_SIGNING_PRIVATE_KEY must be an RSA private key.")
    return key


def public_key_pem(private_key: rsa.RSAPrivateKey) -> str:
    """Derive the SPKI PEM of a private key's public half."""
    return (
        private_key.public_key()
        .public_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PublicFormat.SubjectPublicKeyInfo,
        )
        .decode("utf-8")
    )


def sign_content(content: bytes, private_key: rsa.RSAPrivateKey) -> str:
    """Return the base64 RSA-SHA256 signature of content."""
    signature = private_key.sign(content, padding.PKCS1v15(), hashes.SHA256())
    return base64.b64encode(signature).decode("ascii")


def verify_signature(content: bytes, signature_b64: str, public_pem: str) -> None:
    """Verify a base64 RSA-SHA256 signature.

    Raises:
        SignatureError: If the key is unusable or the signature does not verify.
    """
    try:
        public_key = serialization.load_pem_public_key(public_pem.encode("utf-8"))
    except (ValueError, TypeError) as exc:
        raise SignatureError(f"Policy public key could not be loaded: {exc}") from exc
    if not isinstance(public_key, rsa.RSAPublicKey):
        raise SignatureError("Policy public key must be an RSA public key.")
    try:
        public_key.verify(base64.b64decode(signature_b64), content, padding.PKCS1v15(), hashes.SHA256())
    except InvalidSignature as exc:
        raise SignatureError("Generated signature could not be verified with public key.") from exc


class PolicySigner:
    """Signs the policy package described by a policy manifest.

    Args:
        root_dir: Repository root; manifest paths resolve against it.
        private_key_pem: PEM-encoded RSA private key.
        manifest_path: Policy manifest, relative to root_dir.
        clock: Source of the current UTC time.
    """

    def __init__(
        self,
        root_dir: Path,
        private_key_pem: str | None,
        manifest_path: Path = DEFAULT_MANIFEST_PATH,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._root_dir = root_dir
        self._private_key_pem = private_key_pem
        self._manifest_path = root_dir / manifest_path
        self._clock = clock or (lambda: datetime.now(UTC))

    def sign(self) -> PolicyManifest:
        """Sign the policy file and update the manifest.

        Returns:
            The rewritten policy manifest.

        Raises:
            CompletenessError: If the key, manifest, policy file or public
                key is missing.
            SignatureError: If the key does not match the committed public
                key or the signature does not verify. Nothing is written.
        """
        if not self._private_key_pem or not self._private_key_pem.strip():
            raise CompletenessError("POLICY_SIGNING_PRIVATE_KEY secret is required.", field="POLICY_SIGNING_PRIVATE_KEY")

        manifest = load_model(self._manifest_path, PolicyManifest, "Policy manifest")
        policy_path = self._root_dir / manifest.policy.file_path
        signature_path = self._root_dir / manifest.policy.signature_path
        public_key_path = self._root_dir / manifest.policy.public_key_path
        for path, label in ((policy_path, "Policy file"), (public_key_path, "Policy public key")):
            if not path.is_file():
                raise CompletenessError(f"{label} is missing: {path}", field=str(path))

        policy_content = policy_path.read_bytes()
        stored_public_pem = public_key_path.read_text(encoding="utf-8")

        private_key = load_private_key(self._private_key_pem)
        if normalize_pem(public_key_pem(private_key)) != normalize_pem(stored_public_pem):
            logger.error("Signing key does not match committed public key", public_key_path=str(public_key_path))
            raise SignatureError(
                f"POLICY_SIGNING_PRIVATE_KEY does not match {manifest.policy.public_key_path}.",
                field=manifest.policy.public_key_path,
            )

        signature = sign_content(policy_content, private_key)
        verify_signature(policy_content, signature, stored_public_pem)

        signature_path.parent.mkdir(parents=True, exist_ok=True)
        signature_path.write_text(f"{signature}\n", encoding="utf-8")

        updated = manifest.model_copy(
            update={
                "updated_at": format_timestamp(self._clock()),
                "policy": manifest.policy.model_copy(
                    update={"sha256": sha256_bytes(policy_content), "signature_algorithm": SIGNATURE_ALGORITHM}
                ),
            }
        )
        write_json(self._manifest_path, updated.to_wire())
        logger.info(
            "Signed policy package",
            version=updated.version,
            policy=manifest.policy.file_path,
            sha256=updated.policy.sha256,
        )
        return updated
