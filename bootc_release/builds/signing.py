"""Image signing, verification and attestation through the signer tool."""

from __future__ import annotations

import logging
from pathlib import Path

from bootc_release.config import Settings, get_settings
from bootc_release.errors import CommandFailedError
from bootc_release.executor import (
    CommandExecutor,
    CommandResult,
    RunOptions,
    SubprocessExecutor,
    require_commands,
)

logger = logging.getLogger(__name__)


def signature_ref(image_ref: str) -> str:
    """Return the signature reference recorded for a signed image."""
    return f"{image_ref}.sig"


def compose_sign_args(image_ref: str, key: str | None = None) -> list[str]:
    """Compose `sign` arguments; no key selects the keyless flow."""
    args = ["sign"]
    if key:
        args.extend(["--key", key])
    args.extend(["--yes", image_ref])
    return args


def compose_verify_args(image_ref: str, key: str | None = None) -> list[str]:
    """Compose `verify` arguments.

    Keyless verification accepts any certificate identity and issuer.
    """
    args = ["verify"]
    if key:
        args.extend(["--key", key])
    else:
        args.extend(
            [
                "--certificate-identity-regexp",
                ".*",
                "--certificate-oidc-issuer-regexp",
                ".*",
            ]
        )
    args.append(image_ref)
    return args


def compose_attest_args(
    image_ref: str,
    predicate: Path,
    predicate_type: str = "spdxjson",
) -> list[str]:
    """Compose `attest` arguments."""
    return [
        "attest",
        "--yes",
        "--predicate",
        str(predicate),
        "--type",
        predicate_type,
        image_ref,
    ]


class Signer:
    """Signs, verifies and attests images with the configured signer."""

    def __init__(
        self,
        executor: CommandExecutor | None = None,
        settings: Settings | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.executor = executor or SubprocessExecutor()
        self.settings = settings or get_settings()
        self.log = logger or logging.getLogger(__name__)

    @property
    def tool(self) -> str:
        return self.settings.signer

    def _run(self, args: list[str], action: str, timeout: float | None) -> CommandResult:
        require_commands(self.executor, self.tool)
        if timeout is None:
            timeout = self.settings.command_timeout
        result = self.executor.run(self.tool, args, RunOptions(timeout=timeout))
        if not result.ok:
            raise CommandFailedError(action, result)
        return result

    def sign(
        self,
        image_ref: str,
        key: str | None = None,
        timeout: float | None = None,
    ) -> str:
        """Sign an image.

        Args:
            image_ref: Image to sign.
            key: Private key path; None signs keyless.
            timeout: Timeout in seconds (defaults to the command timeout).

        Returns:
            Signature reference.

        Raises:
            ToolNotFoundError: If the signer is not installed.
            CommandFailedError: If signing fails.
        """
        mode = "key" if key else "keyless"
        self.log.info("Signing %s (%s)", image_ref, mode)
        self._run(compose_sign_args(image_ref, key), f"signing {image_ref}", timeout)
        return signature_ref(image_ref)

    def verify(
        self,
        image_ref: str,
        key: str | None = None,
        timeout: float | None = None,
    ) -> CommandResult:
        """Verify an image signature.

        Raises:
            ToolNotFoundError: If the signer is not installed.
            CommandFailedError: If verification fails.
        """
        self.log.info("Verifying signature of %s", image_ref)
        return self._run(
            compose_verify_args(image_ref, key), f"verifying {image_ref}", timeout
        )

    def attest(
        self,
        image_ref: str,
        predicate: Path,
        predicate_type: str = "spdxjson",
        timeout: float | None = None,
    ) -> CommandResult:
        """Attach an attestation (e.g. an SBOM) to an image.

        Raises:
            ToolNotFoundError: If the signer is not installed.
            CommandFailedError: If attestation fails.
        """
        self.log.info("Attesting %s with %s", image_ref, predicate)
        return self._run(
            compose_attest_args(image_ref, predicate, predicate_type),
            f"attesting {image_ref}",
            timeout,
        )


__all__ = [
    "Signer",
    "compose_attest_args",
    "compose_sign_args",
    "compose_verify_args",
    "signature_ref",
]
