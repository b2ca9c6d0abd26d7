from __future__ import annotations

import getpass
import os
import platform
import shutil
import time
from datetime import datetime
from typing import Callable, Iterable, List, Optional

from rites.core.backup.collector import capture, discard_partial, expand_targets, mirror_path
from rites.core.backup.models import INFO_NAME, SnapshotHandle, SnapshotInfo, RestoreResult
from rites.core.backup.restorer import run_restore_script, write_restore_script
from rites.core.backup.verifier import VerifyResult, verify_snapshot
from rites.core.config.io import atomic_write_text, read_json_file
from rites.core.errors import SnapshotError


def _current_user() -> str:
    try:
        return getpass.getuser()
    except Exception:  # noqa: BLE001
        return ""


class SnapshotStore:
    """
    Timestamped, manifest-indexed copies of files a module is about to mutate.

    Layout under base_dir:
      <prefix><id>/            one snapshot root per creation
        .manifest              absolute source paths, one per line, written incrementally
        restore.py             self-contained restore procedure
        .snapshot_info.json    who/when/what
        <mirrored copies>
      <prefix>latest -> <prefix><id>
    """

    def __init__(
        self,
        *,
        base_dir: str,
        home: str,
        prefix: str = "dotfiles-backup-",
        retention: int = 5,
        latest_link: bool = True,
        logger=None,
        capture_fn: Callable[[str, str], None] = capture,
    ):
        self.base_dir = os.path.abspath(base_dir)
        self.home = os.path.abspath(home)
        self.prefix = prefix
        self.retention = max(1, int(retention))
        self.latest_link = bool(latest_link)
        self.logger = logger
        self._capture = capture_fn

    @classmethod
    def from_config(cls, cm, *, logger=None, capture_fn: Callable[[str, str], None] = capture) -> "SnapshotStore":
        snaps = cm.get().snapshots
        return cls(
            base_dir=cm.snapshots_dir(),
            home=cm.home_dir(),
            prefix=snaps.prefix,
            retention=snaps.retention,
            latest_link=snaps.latest_link,
            logger=logger,
            capture_fn=capture_fn,
        )

    @property
    def latest_link_path(self) -> str:
        return os.path.join(self.base_dir, f"{self.prefix}latest")

    # ---------- lookup ----------
    def list_snapshots(self) -> List[SnapshotHandle]:
        """Oldest first."""
        if not os.path.isdir(self.base_dir):
            return []
        out: List[SnapshotHandle] = []
        for name in sorted(os.listdir(self.base_dir)):
            if not name.startswith(self.prefix):
                continue
            root = os.path.join(self.base_dir, name)
            if os.path.islink(root) or not os.path.isdir(root):
                continue
            out.append(self.load(root))
        return out

    def latest(self) -> Optional[SnapshotHandle]:
        link = self.latest_link_path
        if os.path.islink(link) and os.path.isdir(link):
            return self.load(os.path.realpath(link))
        items = self.list_snapshots()
        return items[-1] if items else None

    def load(self, root: str) -> SnapshotHandle:
        root = os.path.abspath(root)
        name = os.path.basename(root)
        snapshot_id = name[len(self.prefix) :] if name.startswith(self.prefix) else name
        home = self.home
        rr = read_json_file(os.path.join(root, INFO_NAME))
        if rr.ok and rr.data.get("home"):
            home = str(rr.data["home"])
        return SnapshotHandle(snapshot_id=snapshot_id, root=root, home=home)

    def info(self, handle: SnapshotHandle) -> Optional[SnapshotInfo]:
        rr = read_json_file(handle.info_path)
        if not rr.ok:
            return None
        try:
            return SnapshotInfo.model_validate(rr.data)
        except Exception:  # noqa: BLE001
            return None

    # ---------- retention ----------
    def purge(self, keep: int) -> List[str]:
        items = self.list_snapshots()
        removed: List[str] = []
        excess = len(items) - max(0, int(keep))
        for h in items[: max(0, excess)]:
            try:
                shutil.rmtree(h.root)
                removed.append(h.root)
                if self.logger:
                    self.logger.info(f"[snapshot] Purged old snapshot: {h.root}")
            except OSError as e:
                if self.logger:
                    self.logger.warning(f"[snapshot] Could not purge {h.root}: {e}")
        return removed

    # ---------- create ----------
    def create_snapshot(self, targets: Iterable[str], *, module: Optional[str] = None) -> SnapshotHandle:
        os.makedirs(self.base_dir, exist_ok=True)
        # Purge first so a crash mid-creation never leaves more than retention + 1 roots.
        self.purge(self.retention - 1)

        handle = self._new_root()
        paths = expand_targets(targets, self.home)
        warnings: List[str] = []
        captured = 0
        if self.logger:
            self.logger.info(f"[snapshot] Creating snapshot {handle.root}")

        try:
            with open(handle.manifest_path, "w", encoding="utf-8") as manifest:
                manifest.write(f"# rites snapshot {handle.snapshot_id}\n")
                manifest.write(f"# home: {self.home}\n")
                manifest.flush()
                for source in paths:
                    if not os.path.lexists(source):
                        continue
                    dest = mirror_path(handle.root, self.home, source)
                    existed = os.path.lexists(dest)
                    try:
                        self._capture(source, dest)
                    except (OSError, shutil.Error) as e:
                        if not existed:
                            discard_partial(dest)
                        warnings.append(f"capture failed: {source}: {e}")
                        if self.logger:
                            self.logger.warning(f"[snapshot] Failed to capture {source}: {e}")
                        continue
                    manifest.write(source + "\n")
                    manifest.flush()
                    os.fsync(manifest.fileno())
                    captured += 1
                    if self.logger:
                        self.logger.info(f"[snapshot]   captured: {source}")

            write_restore_script(handle)
            info = SnapshotInfo(
                snapshot_id=handle.snapshot_id,
                created_at=time.time(),
                home=self.home,
                module=module,
                created_by_user=_current_user(),
                created_on_host=platform.node(),
                requested_targets=len(paths),
                captured_targets=captured,
                warnings=warnings,
            )
            atomic_write_text(handle.info_path, info.model_dump_json(indent=2) + "\n")
        except OSError as e:
            raise SnapshotError(f"Snapshot creation failed: {e}", root=handle.root) from e

        if self.latest_link:
            self._update_latest(handle)
        if self.logger:
            self.logger.info(f"[snapshot] Snapshot ready: {handle.root} ({captured} captured)")
        return handle

    def _new_root(self) -> SnapshotHandle:
        base_id = datetime.now().strftime("%Y%m%d-%H%M%S-%f")
        snapshot_id = base_id
        n = 0
        while True:
            root = os.path.join(self.base_dir, f"{self.prefix}{snapshot_id}")
            try:
                os.makedirs(root)
                os.chmod(root, 0o700)
                return SnapshotHandle(snapshot_id=snapshot_id, root=root, home=self.home)
            except FileExistsError:
                n += 1
                snapshot_id = f"{base_id}-{n}"

    def _update_latest(self, handle: SnapshotHandle) -> None:
        link = self.latest_link_path
        tmp = f"{link}.{os.getpid()}.tmp"
        try:
            if os.path.lexists(tmp):
                os.unlink(tmp)
            os.symlink(handle.root, tmp)
            os.replace(tmp, link)
        except OSError as e:
            if self.logger:
                self.logger.warning(f"[snapshot] Could not update latest link: {e}")

    # ---------- verify / restore ----------
    def verify_snapshot(self, handle: SnapshotHandle) -> VerifyResult:
        res = verify_snapshot(handle)
        if self.logger:
            if res.ok:
                self.logger.info(f"[snapshot] Verified {handle.root} ({res.checked_files} entries)")
            else:
                self.logger.warning(f"[snapshot] Verification failed for {handle.root}: {res.errors[:5]}")
        return res

    def restore(self, handle: SnapshotHandle) -> RestoreResult:
        if not os.path.isfile(handle.manifest_path):
            raise SnapshotError("Snapshot has no manifest; it cannot be restored.", root=handle.root)
        if not os.path.isfile(handle.restore_script):
            raise SnapshotError("Snapshot has no restore procedure; it cannot be restored.", root=handle.root)
        if self.logger:
            self.logger.info(f"[snapshot] Restoring from {handle.root}")
        res = run_restore_script(handle)
        if self.logger:
            if res.failed_count > 0:
                self.logger.error(
                    f"[snapshot] Restore incomplete: {res.restored_count} restored, {res.failed_count} failed. "
                    f"Manual intervention required: inspect {handle.root} and run {handle.restore_script}."
                )
            else:
                self.logger.info(f"[snapshot] Restored {res.restored_count} path(s) from {handle.root}")
        return res
