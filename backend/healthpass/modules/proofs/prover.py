"""
Prover capability: produce and check zero-knowledge proofs of record signatures.

Issuer and verifier depend on the :class:`Prover` interface only. Two adapters
ship with the service:

- :class:`NargoProver` drives the Noir toolchain as a child process inside a
  throw-away workspace per call.
- :class:`SimulatedProver` produces opaque stand-in proofs without any
  toolchain, for development environments.

Circuit inputs are written as a ``Prover.toml`` where every 32-byte field is a
list of 32 quoted hex byte literals.
"""

from __future__ import annotations

import asyncio
import contextlib
import hashlib
import secrets
import shlex
import shutil
import tempfile
from abc import ABC, abstractmethod
from collections.abc import AsyncGenerator
from dataclasses import dataclass, fields
from pathlib import Path

from healthpass.core.config import Settings, get_settings
from healthpass.core.errors import BadInputError, InternalError, ProverUnavailableError
from healthpass.core.logging import get_logger

logger = get_logger(__name__)

CIRCUIT_FIELD_SIZE = 32
MAX_DIAGNOSTIC_CHARS = 2000
WORKSPACE_PLACEHOLDER = "<workspace>"
CIRCUIT_PLACEHOLDER = "<circuit>"


def format_byte_array(value: bytes) -> str:
    """Render bytes as ``["0x01", "0xab", ...]``."""
    return "[" + ", ".join(f'"0x{byte:02x}"' for byte in value) + "]"


@dataclass(frozen=True)
class CircuitInputs:
    """Public and private inputs of the signature-verification circuit."""

    msg_hash: bytes
    pubkey_x: bytes
    pubkey_y: bytes
    signature_r: bytes
    signature_s: bytes

    def __post_init__(self) -> None:
        for item in fields(self):
            value = getattr(self, item.name)
            if len(value) != CIRCUIT_FIELD_SIZE:
                raise BadInputError(
                    f"Circuit input {item.name} must be {CIRCUIT_FIELD_SIZE} bytes, "
                    f"got {len(value)}"
                )

    def to_prover_toml(self) -> str:
        return "".join(
            f"{item.name} = {format_byte_array(getattr(self, item.name))}\n"
            for item in fields(self)
        )


class Prover(ABC):
    """Out-of-process proving system, seen from the service."""

    @abstractmethod
    async def prove(self, inputs: CircuitInputs) -> bytes:
        """Return opaque proof bytes or raise :class:`ProverUnavailableError`."""

    @abstractmethod
    async def verify(self, proof_data: bytes, verification_key: bytes) -> bool:
        """Check a proof; raise :class:`ProverUnavailableError` if the check cannot run."""


class SimulatedProver(Prover):
    """Stand-in prover for environments without the Noir toolchain.

    Proofs are a digest of the inputs plus a random nonce, so two proofs of
    the same record never collide. Verification accepts any non-empty proof.
    """

    PREFIX = b"simulated-proof:"

    async def prove(self, inputs: CircuitInputs) -> bytes:
        digest = hashlib.sha256(inputs.to_prover_toml().encode("utf-8")).digest()
        return self.PREFIX + digest + secrets.token_bytes(16)

    async def verify(self, proof_data: bytes, verification_key: bytes) -> bool:
        return bool(proof_data)


class NargoProver(Prover):
    """Run the Noir circuit with ``nargo execute`` in an isolated workspace.

    Each call gets a uniquely named scratch directory holding a copy of the
    circuit and the generated ``Prover.toml``; the directory is removed on
    every exit path, including timeouts and cancellation.

    Without a ``verify_command`` proof verification is a stub that accepts
    any non-empty proof. With one, the command is run with ``{proof}`` and
    ``{vk}`` replaced by paths to the proof and verification key files and a
    zero exit status means the proof is valid.
    """

    def __init__(
        self,
        *,
        circuit_path: str | Path,
        command: str = "nargo",
        artifact_name: str = "health_passport_circuit",
        timeout_seconds: float = 120.0,
        workspace_root: str | Path | None = None,
        verify_command: str = "",
    ) -> None:
        self._circuit_path = Path(circuit_path).expanduser()
        self._command = shlex.split(command)
        self._artifact_name = artifact_name
        self._timeout = timeout_seconds
        self._workspace_root = Path(workspace_root).expanduser() if workspace_root else None
        self._verify_command = shlex.split(verify_command) if verify_command.strip() else []

    @property
    def verification_stubbed(self) -> bool:
        return not self._verify_command

    async def prove(self, inputs: CircuitInputs) -> bytes:
        async with self._workspace() as workspace:
            await asyncio.to_thread(self._stage_circuit, workspace, inputs.to_prover_toml())

            returncode, diagnostic = await self._run(
                [*self._command, "execute"], workspace, action="execution"
            )
            if returncode != 0:
                logger.warning("prover_execution_failed", returncode=returncode)
                raise ProverUnavailableError(f"Noir execution failed: {diagnostic}")

            artifact = workspace / "target" / f"{self._artifact_name}.gz"
            try:
                proof = await asyncio.to_thread(artifact.read_bytes)
            except OSError as exc:
                raise ProverUnavailableError("Failed to read generated proof") from exc
            if not proof:
                raise ProverUnavailableError("Prover produced an empty proof")
            return proof

    async def verify(self, proof_data: bytes, verification_key: bytes) -> bool:
        if self.verification_stubbed:
            logger.debug("prover_verification_stubbed")
            return bool(proof_data)

        async with self._workspace() as workspace:
            proof_path = workspace / "proof"
            key_path = workspace / "vk"
            try:
                await asyncio.to_thread(proof_path.write_bytes, proof_data)
                await asyncio.to_thread(key_path.write_bytes, verification_key)
            except OSError as exc:
                raise InternalError("Failed to stage proof for verification") from exc
            args = [
                part.replace("{proof}", str(proof_path)).replace("{vk}", str(key_path))
                for part in self._verify_command
            ]
            returncode, diagnostic = await self._run(args, workspace, action="verification")
            if returncode != 0:
                logger.info(
                    "proof_rejected_by_verifier", returncode=returncode, diagnostic=diagnostic
                )
                return False
            return True

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @contextlib.asynccontextmanager
    async def _workspace(self) -> AsyncGenerator[Path, None]:
        try:
            workspace = await asyncio.to_thread(self._create_workspace)
        except OSError as exc:
            raise InternalError("Failed to create prover workspace") from exc
        try:
            yield workspace
        finally:
            try:
                await asyncio.to_thread(shutil.rmtree, workspace)
            except OSError:
                logger.warning("prover_workspace_cleanup_failed", exc_info=True)

    def _create_workspace(self) -> Path:
        if self._workspace_root is not None:
            self._workspace_root.mkdir(parents=True, exist_ok=True)
        return Path(tempfile.mkdtemp(prefix="zk_proof_", dir=self._workspace_root))

    def _stage_circuit(self, workspace: Path, prover_toml: str) -> None:
        try:
            shutil.copy2(self._circuit_path / "Nargo.toml", workspace / "Nargo.toml")
            (workspace / "src").mkdir()
            shutil.copy2(self._circuit_path / "src" / "main.nr", workspace / "src" / "main.nr")
            (workspace / "Prover.toml").write_text(prover_toml, encoding="utf-8")
        except OSError as exc:
            raise ProverUnavailableError("Noir circuit could not be staged") from exc

    async def _run(self, args: list[str], workspace: Path, *, action: str) -> tuple[int, str]:
        try:
            process = await asyncio.create_subprocess_exec(
                *args,
                cwd=str(workspace),
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            raise ProverUnavailableError(f"Prover {action} could not be started") from exc

        try:
            _stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=self._timeout)
        except TimeoutError:
            await self._terminate(process)
            logger.warning("prover_timed_out", action=action, timeout_seconds=self._timeout)
            raise ProverUnavailableError(
                f"Prover {action} timed out after {self._timeout:g} seconds"
            ) from None
        except asyncio.CancelledError:
            await self._terminate(process)
            raise

        returncode = process.returncode if process.returncode is not None else -1
        return returncode, self._scrub(stderr.decode("utf-8", errors="replace"), workspace)

    @staticmethod
    async def _terminate(process: asyncio.subprocess.Process) -> None:
        with contextlib.suppress(ProcessLookupError):
            process.kill()
        await process.wait()

    def _scrub(self, diagnostic: str, workspace: Path) -> str:
        """Strip file-system locations from prover output."""
        text = diagnostic.replace(str(workspace), WORKSPACE_PLACEHOLDER)
        for location in {str(self._circuit_path), str(self._circuit_path.resolve())}:
            text = text.replace(location, CIRCUIT_PLACEHOLDER)
        text = text.strip()
        if len(text) > MAX_DIAGNOSTIC_CHARS:
            text = text[:MAX_DIAGNOSTIC_CHARS] + "..."
        return text or "no diagnostic output"


def build_prover(settings: Settings | None = None) -> Prover:
    """Build the prover adapter selected by ``PROVER_BACKEND``."""
    settings = settings or get_settings()
    if settings.prover_backend == "simulated":
        return SimulatedProver()
    prover = NargoProver(
        circuit_path=settings.noir_circuit_path,
        command=settings.prover_command,
        artifact_name=settings.prover_artifact_name,
        timeout_seconds=settings.prover_timeout_seconds,
        workspace_root=settings.prover_workspace_root,
        verify_command=settings.prover_verify_command,
    )
    if prover.verification_stubbed:
        logger.warning(
            "prover_verification_stub_enabled",
            detail="proofs matching a stored record are accepted without re-verification",
        )
    return prover
