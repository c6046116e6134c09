#!/usr/bin/env python3
"""
Local filesystem object store for mock/development mode.
"""

import os
from pathlib import Path

from .base import StorageBackend
from ..deployment.errors import ArtifactNotFound


class LocalStorage(StorageBackend):
    """Stores artifacts as plain files below a root directory."""

    def __init__(self, config):
        self.root = Path(config.get('root', './artifact-store')).resolve()

    def _path_for(self, storage_key):
        path = (self.root / storage_key).resolve()
        if self.root not in path.parents:
            raise ValueError(f"Storage key escapes store root: {storage_key}")
        return path

    def put_object(self, storage_key, data):
        path = self._path_for(storage_key)
        path.parent.mkdir(parents=True, exist_ok=True)
        # Readers must never observe a partially written object
        temp_path = path.with_name(path.name + '.partial')
        temp_path.write_bytes(data)
        os.replace(temp_path, path)
        return str(path)

    def get_object(self, storage_key):
        path = self._path_for(storage_key)
        if not path.is_file():
            raise ArtifactNotFound(f"Object not found: {storage_key}")
        return path.read_bytes()

    def delete_object(self, storage_key):
        self._path_for(storage_key).unlink(missing_ok=True)

    def exists(self, storage_key):
        return self._path_for(storage_key).is_file()

    def get_url(self, storage_key):
        return str(self._path_for(storage_key))
