"""Runner for the external container-signing tool (Sigstore cosign).

The evidence document carries cosign commands as data. Publishers and
consumers who have the binary installed can re-run them; everyone else
skips the step.
"""

from __future__ import annotations

import shlex
import shutil
import subprocess
from collections.abc import Iterable

from compliance_evidence.core.errors import SignatureError
from compliance_evidence.core.models import VerificationCommand
from compliance_evidence.observability import get_logger

logger = get_logger(__name__)


class CosignRunner:
    """Executes cosign verification commands.

    Args:
        binary: Executable name looked up on PATH.
    """

    def __init__(self, binary: str = "cosign") -> None:
        self._binary = binary

    def is_available(self) -> bool:
        return shutil.which(self._binary) is not None

    def run(self, command: VerificationCommand) -> None:
        """Run one verification command.

        Raises:
            SignatureError: If the command is not a cosign command or exits
                non-zero.
        """
        argv = shlex.split(command.command)
        if not argv or argv[0] != "cosign":
            raise SignatureError(f"Refusing to run non-cosign command: {command.label}", field=command.label)
        argv[0] = self._binary

        logger.info("Running signature verification", label=command.label)
        completed = subprocess.run(argv, capture_output=True, text=True, check=False)
        if completed.returncode != 0:
            logger.error(
                "Signature verification failed",
                label=command.label,
                returncode=completed.returncode,
                stderr=completed.stderr[-500:],
            )
            raise SignatureError(
                f"{command.label} failed (exit {completed.returncode}): {completed.stderr.strip()}",
                field=command.label,
            )

    def run_all(self, commands: Iterable[VerificationCommand]) -> int:
        """Run every command in order, stopping at the first failure.

        Returns:
            Number of commands executed.
        """
        executed = 0
        for command in commands:
            self.run(command)
            executed += 1
        return executed
