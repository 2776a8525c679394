"""
Repo Registry

Durable record of every repository an identity has cloned, plus one active
repository pointer per identity.

HARD CONSTRAINTS:
- Record ids are monotonic and persisted (next_repo_id), never reused
- local_path is derived from the id at creation and never changes
- Records are immutable and never deleted
- All mutations are atomic and logged
"""

import json
import logging
import threading
from dataclasses import dataclass, asdict
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from .errors import CommetaError

logger = logging.getLogger("repo_registry")


def repo_name_from_url(remote_url: str) -> str:
    """Last path segment of a remote URL without the .git suffix."""
    tail = remote_url.rstrip("/").split("/")[-1]
    if ":" in tail:
        tail = tail.split(":")[-1]
    if tail.endswith(".git"):
        tail = tail[:-4]
    return tail or "repository"


# -----------------------------------------------------------------------------
# Repo Model
# -----------------------------------------------------------------------------
@dataclass(frozen=True)
class RepoRecord:
    """A remote repository linked to a local working copy."""
    id: int
    identity: str
    remote_url: str
    local_path: str
    created_at: str

    @property
    def name(self) -> str:
        return repo_name_from_url(self.remote_url)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RepoRecord":
        return cls(
            id=int(data["id"]),
            identity=data["identity"],
            remote_url=data["remote_url"],
            local_path=data["local_path"],
            created_at=data["created_at"],
        )


class RegistryError(CommetaError):
    pass


# -----------------------------------------------------------------------------
# Repo Registry
# -----------------------------------------------------------------------------
class RepoRegistry:
    """JSON-backed registry of cloned repositories."""

    def __init__(self, registry_file: Path, repos_dir: Path):
        self._registry_file = Path(registry_file)
        self._repos_dir = Path(repos_dir)
        self._repos: List[RepoRecord] = []
        self._active: Dict[str, int] = {}
        self._next_id = 1
        self._lock = threading.Lock()
        self._load_registry()

    # -------------------------------------------------------------------------
    # Persistence
    # -------------------------------------------------------------------------

    def _load_registry(self) -> None:
        if not self._registry_file.exists():
            logger.info("No existing registry file, starting fresh")
            return

        try:
            with open(self._registry_file) as f:
                data = json.load(f)
        except (json.JSONDecodeError, OSError) as e:
            logger.error(f"Failed to load registry: {e}")
            return

        for repo_data in data.get("repos", []):
            try:
                self._repos.append(RepoRecord.from_dict(repo_data))
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"Failed to load repo record {repo_data!r}: {e}")

        self._active = {
            identity: int(repo_id)
            for identity, repo_id in data.get("active", {}).items()
            if repo_id is not None
        }
        highest = max((r.id for r in self._repos), default=0)
        self._next_id = max(int(data.get("next_repo_id", 1)), highest + 1)
        logger.info(f"Loaded {len(self._repos)} repos from registry")

    def _save_registry(self) -> None:
        try:
            self._registry_file.parent.mkdir(parents=True, exist_ok=True)
            data = {
                "version": "1.0",
                "updated_at": datetime.utcnow().isoformat(),
                "next_repo_id": self._next_id,
                "active": self._active,
                "repos": [r.to_dict() for r in self._repos],
            }
            temp_file = self._registry_file.with_suffix(".tmp")
            with open(temp_file, "w") as f:
                json.dump(data, f, indent=2)
            temp_file.replace(self._registry_file)
        except OSError as e:
            logger.error(f"Failed to save registry: {e}")
            raise RegistryError(
                code="SAVE_FAILED",
                message="Failed to save repository registry",
                details={"error": str(e)},
            )

    # -------------------------------------------------------------------------
    # Operations
    # -------------------------------------------------------------------------

    def path_for(self, repo_id: int) -> Path:
        return self._repos_dir / str(repo_id)

    def reserve_id(self) -> Tuple[int, Path]:
        """
        Allocate the next id and its local path for a clone in progress.

        The counter is advanced and persisted here. A reserved id is never
        handed out again, even when the clone using it fails.
        """
        with self._lock:
            repo_id = self._next_id
            self._next_id += 1
            self._save_registry()
        logger.info(f"Reserved repo id {repo_id}")
        return repo_id, self.path_for(repo_id)

    def add(self, identity: str, remote_url: str, repo_id: Optional[int] = None) -> RepoRecord:
        """Record a successful clone and make it the identity's active repo."""
        if repo_id is None:
            repo_id, _ = self.reserve_id()
        with self._lock:
            if repo_id >= self._next_id or any(r.id == repo_id for r in self._repos):
                raise RegistryError(
                    code="INVALID_REPO_ID",
                    message=f"Repository id {repo_id} was not reserved or is already in use",
                    details={"repo_id": repo_id},
                )
            record = RepoRecord(
                id=repo_id,
                identity=identity,
                remote_url=remote_url,
                local_path=str(self.path_for(repo_id)),
                created_at=datetime.utcnow().isoformat(),
            )
            self._repos.append(record)
            self._active[identity] = repo_id
            self._save_registry()

        logger.info(f"Registered repo {record.name} (id={repo_id}) for {identity}")
        return record

    def list(self, identity: str) -> List[RepoRecord]:
        """Records for one identity, in creation order."""
        with self._lock:
            return [r for r in self._repos if r.identity == identity]

    def get(self, identity: str, repo_id: int) -> Optional[RepoRecord]:
        for record in self.list(identity):
            if record.id == repo_id:
                return record
        return None

    def find_by_url(self, identity: str, remote_url: str) -> Optional[RepoRecord]:
        normalized = _normalize_url(remote_url)
        for record in self.list(identity):
            if _normalize_url(record.remote_url) == normalized:
                return record
        return None

    def set_active(self, identity: str, repo_id: int) -> RepoRecord:
        record = self.get(identity, repo_id)
        if record is None:
            raise RegistryError(
                code="REPO_NOT_FOUND",
                message=f"Repository id {repo_id} not found",
                details={"repo_id": repo_id},
            )
        with self._lock:
            self._active[identity] = repo_id
            self._save_registry()
        logger.info(f"Active repo for {identity} set to {record.name} (id={repo_id})")
        return record

    def get_active(self, identity: str) -> Optional[RepoRecord]:
        with self._lock:
            repo_id = self._active.get(identity)
        if repo_id is None:
            return None
        return self.get(identity, repo_id)


def _normalize_url(url: str) -> str:
    url = url.strip().rstrip("/")
    if url.endswith(".git"):
        url = url[:-4]
    return url.lower()
