"""Unified backup run.

A run resolves the encryption mode, checks free space, creates a
timestamp-named bundle directory and produces one artifact per
subsystem.  Every artifact goes through the same transform.  The run
then writes metadata and checksums, applies retention, and finally
attempts the optional upload and notification, neither of which can
fail the run.

A critical subsystem failure aborts with :class:`ArtifactError`; the
partial bundle is left in place for inspection.
"""

from __future__ import annotations

import logging
import shutil
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import psutil

from ..config import AGE_KEY_FILE, BUNDLE_TIMESTAMP_FORMAT, MIN_BACKUP_FREE_GB, VERSION
from ..docker.compose import ComposeClient, Runner, run_command
from ..errors import ArtifactError, StackguardError
from ..secretstore.store import SecretStore
from ..settings.models import Settings
from .artifacts import Subsystem, default_subsystems
from .encryption import EncryptionMode, apply_transform, resolve_encryption_mode
from .manifest import (
    BackupMetadata,
    EncryptionInfo,
    RunConfiguration,
    bundle_files,
    bundle_size,
    human_size,
    write_checksums,
    write_metadata,
)
from .notify import send_notification
from .remote import upload_bundle
from .retention import apply_retention

logger = logging.getLogger(__name__)

Uploader = Callable[..., bool]
Notifier = Callable[[str, Dict[str, Any]], bool]


@dataclass
class BackupArtifact:
    subsystem: str
    path: Path

    @property
    def size(self) -> int:
        return self.path.stat().st_size


@dataclass
class BackupBundle:
    """Outcome of one successful run."""

    path: Path
    mode: EncryptionMode
    metadata: BackupMetadata
    artifacts: List[BackupArtifact] = field(default_factory=list)
    removed: List[Path] = field(default_factory=list)
    uploaded: bool = False
    notified: bool = False

    @property
    def services(self) -> Dict[str, bool]:
        return self.metadata.services_backed_up


class BackupPipeline:
    """Produce one verified backup bundle for the stack.

    Args:
        settings: Runtime settings (backup root, retention, encryption,
            sidecar mode, remote and webhook configuration).
        store: Secret store; defaults to ``settings.secrets_dir``.
        compose: Compose client used by the default subsystems.
        subsystems: Override the default database/cache/app data/configuration set.
        runner: Command runner for ``age`` and the upload CLIs.
        uploader: ``(settings, bundle, runner=...) -> bool``.
        notifier: ``(url, payload) -> bool``.
        age_available: Override detection of the ``age`` binary.
        free_space: ``psutil.disk_usage`` compatible callable.
        clock: Returns the local time used for the bundle name.
    """

    def __init__(
        self,
        settings: Settings,
        store: Optional[SecretStore] = None,
        compose: Optional[ComposeClient] = None,
        *,
        subsystems: Optional[List[Subsystem]] = None,
        runner: Runner = run_command,
        uploader: Uploader = upload_bundle,
        notifier: Notifier = send_notification,
        age_available: Optional[bool] = None,
        free_space: Callable[[str], Any] = psutil.disk_usage,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.settings = settings
        self.store = store or SecretStore(settings.secrets_dir)
        self.compose = compose or ComposeClient(settings.project_root)
        self.subsystems = (
            subsystems
            if subsystems is not None
            else default_subsystems(settings, self.store, self.compose)
        )
        self.runner = runner
        self.uploader = uploader
        self.notifier = notifier
        self.age_available = (
            age_available if age_available is not None else shutil.which("age") is not None
        )
        self.free_space = free_space
        self.clock = clock

    def resolve_mode(self) -> EncryptionMode:
        return resolve_encryption_mode(
            self.settings.encryption_mode,
            age_available=self.age_available,
            recipients_exists=self.settings.age_recipients_file.is_file(),
            required=self.settings.encryption_required,
        )

    def _check_free_space(self, root: Path) -> None:
        free_gb = self.free_space(str(root)).free / 1024**3
        if free_gb < MIN_BACKUP_FREE_GB:
            raise ArtifactError(
                f"Insufficient disk space: {free_gb:.1f}GB free, "
                f"at least {MIN_BACKUP_FREE_GB}GB required"
            )

    def _create_bundle(self) -> Path:
        root = self.settings.backup_root
        root.mkdir(parents=True, exist_ok=True)
        self._check_free_space(root)
        bundle = root / self.clock().strftime(BUNDLE_TIMESTAMP_FORMAT)
        try:
            bundle.mkdir()
        except FileExistsError:
            raise ArtifactError(f"Backup directory already exists: {bundle}") from None
        return bundle

    def _produce(self, subsystem: Subsystem, bundle: Path, mode: EncryptionMode) -> Optional[Path]:
        raw = subsystem.produce(bundle)
        if raw is None:
            return None
        return apply_transform(raw, mode, self.settings.age_recipients_file, self.runner)

    def _versions(self) -> Dict[str, str]:
        versions = {"application": "unknown", "database": "unknown"}
        commands = {
            "application": ("n8n", ["n8n", "--version"]),
            "database": ("postgres", ["postgres", "--version"]),
        }
        for key, (service, command) in commands.items():
            try:
                proc = self.compose.exec(service, command)
            except StackguardError as exc:
                logger.debug("Version lookup for %s failed: %s", service, exc)
                continue
            words = (proc.stdout or "").strip().split()
            if proc.returncode == 0 and words:
                versions[key] = words[-1]
        return versions

    def run(self) -> BackupBundle:
        """Execute the backup.

        Raises:
            ConfigError: If required encryption is unavailable.
            ArtifactError: On insufficient disk space or a failed
                critical subsystem.
        """
        mode = self.resolve_mode()
        bundle = self._create_bundle()
        logger.info(
            "Starting backup %s",
            bundle.name,
            extra={"event": "backup_started", "bundle": bundle.name, "mode": mode.value},
        )

        artifacts: List[BackupArtifact] = []
        services: Dict[str, bool] = {}
        for subsystem in self.subsystems:
            try:
                path = self._produce(subsystem, bundle, mode)
            except StackguardError as exc:
                if subsystem.critical:
                    logger.error(
                        "%s backup failed: %s",
                        subsystem.name,
                        exc,
                        extra={"event": "backup_failed", "subsystem": subsystem.name},
                    )
                    raise ArtifactError(f"{subsystem.name} backup failed: {exc}") from exc
                logger.warning("%s backup failed: %s", subsystem.name, exc)
                (bundle / subsystem.filename).unlink(missing_ok=True)
                services[subsystem.name] = False
                continue
            services[subsystem.name] = path is not None
            if path is not None:
                artifacts.append(BackupArtifact(subsystem.name, path))

        now = self.clock()
        files = [p.name for p in bundle_files(bundle)]
        size = bundle_size(bundle)
        metadata = BackupMetadata(
            timestamp=bundle.name,
            date=now.isoformat(timespec="seconds"),
            version=VERSION,
            encryption=EncryptionInfo(
                mode=mode.value,
                required=self.settings.encryption_required,
                age_available=self.age_available,
            ),
            configuration=RunConfiguration(
                sidecar=self.settings.use_sidecar,
                retention_days=self.settings.retention_days,
            ),
            versions=self._versions(),
            files=files,
            size_bytes=size,
            size=human_size(size),
            file_count=len(files),
            services_backed_up=services,
        )
        write_metadata(bundle, metadata)
        write_checksums(bundle)

        removed = apply_retention(
            self.settings.backup_root, self.settings.retention_days, current=bundle
        )
        result = BackupBundle(bundle, mode, metadata, artifacts, removed)
        result.uploaded = self.uploader(self.settings, bundle, runner=self.runner)
        if self.settings.notification_webhook:
            result.notified = self.notifier(
                self.settings.notification_webhook, self.notification_payload(result)
            )
        logger.info(
            "Backup %s completed (%s)",
            bundle.name,
            metadata.size,
            extra={
                "event": "backup_completed",
                "bundle": bundle.name,
                "size_bytes": size,
                "file_count": len(files),
            },
        )
        return result

    def notification_payload(self, result: BackupBundle) -> Dict[str, Any]:
        metadata = result.metadata
        return {
            "text": f"Backup completed successfully: {metadata.size} ({result.mode.value})",
            "timestamp": metadata.date,
            "backup_mode": result.mode.value,
            "size": metadata.size,
            "files": metadata.file_count,
            "location": str(result.path),
            "sidecar_mode": self.settings.use_sidecar,
            "status": "success",
        }


def age_identity(settings: Settings) -> Path:
    return settings.secrets_dir / AGE_KEY_FILE


__all__ = ["BackupArtifact", "BackupBundle", "BackupPipeline", "age_identity"]
