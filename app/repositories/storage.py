"""Unified storage abstraction using fsspec for local and GCS access."""

from pathlib import Path

import fsspec


class StorageBackend:
    """Filesystem abstraction that provides identical API for local and GCS paths.

    Uses fsspec internally.  Filesystem instances are lazily created and
    cached per protocol (``file`` for local, ``gcs`` for Cloud Storage).
    """

    def __init__(self) -> None:
        self._filesystems: dict[str, fsspec.AbstractFileSystem] = {}

    def _get_fs(self, path: str) -> tuple[fsspec.AbstractFileSystem, str]:
        """Resolve the fsspec filesystem and normalised path for *path*."""
        if path.startswith("gs://"):
            protocol = "gcs"
            norm_path = path
        else:
            protocol = "file"
            norm_path = str(Path(path).resolve())

        if protocol not in self._filesystems:
            self._filesystems[protocol] = fsspec.filesystem(protocol)

        return self._filesystems[protocol], norm_path

    def exists(self, path: str) -> bool:
        fs, norm_path = self._get_fs(path)
        return fs.exists(norm_path)

    def isdir(self, path: str) -> bool:
        fs, norm_path = self._get_fs(path)
        return fs.isdir(norm_path)

    def read_bytes(self, path: str) -> bytes:
        """Read the entire contents of *path* as bytes."""
        fs, norm_path = self._get_fs(path)
        return fs.cat(norm_path)

    def open(self, path: str, mode: str = "rb"):
        """Return an open file-like object for *path*."""
        fs, norm_path = self._get_fs(path)
        return fs.open(norm_path, mode)

    def list_files(self, path: str, extensions: set[str] | None = None) -> list[str]:
        """List the files directly under *path*, sorted, optionally by suffix.

        GCS entries come back without the ``gs://`` prefix; it is restored
        so results can be passed back into this backend.
        """
        fs, norm_path = self._get_fs(path)
        entries = fs.ls(norm_path, detail=True)
        files: list[str] = []
        for entry in entries:
            if entry.get("type") != "file":
                continue
            name = entry["name"]
            if extensions is not None and Path(name).suffix.lower() not in extensions:
                continue
            if path.startswith("gs://") and not name.startswith("gs://"):
                name = f"gs://{name}"
            files.append(name)
        return sorted(files)
