#!/usr/bin/env python3
"""
Artifact Publisher.

Key layout in the object store:
    {group}/{version}/{artifact_name}   immutable, written once
    {group}/current/{artifact_name}     latest successfully published bytes
    {group}/current/VERSION             version id of the current bytes
"""

from datetime import datetime

from .errors import ArtifactNotFound, ArtifactPublishFailed
from .utils import new_timestamp


class ArtifactPublisher:

    def __init__(self, storage, artifact_name='build.tar.gz', now=datetime.now):
        self.storage = storage
        self.artifact_name = artifact_name
        self.now = now
        self._last_version = {}

    def version_key(self, group, version):
        return f"{group}/{version}/{self.artifact_name}"

    def current_key(self, group):
        return f"{group}/current/{self.artifact_name}"

    def marker_key(self, group):
        return f"{group}/current/VERSION"

    def artifact_url(self, group, version):
        return self.storage.get_url(self.version_key(group, version))

    def _next_version(self, group):
        """Timestamp version id, bumped past the last known one if the clock has not moved."""
        candidate = new_timestamp(self.now())
        floor = self._last_version.get(group) or self.current_version(group)
        if floor and int(candidate) <= int(floor):
            candidate = str(int(floor) + 1)
        self._last_version[group] = candidate
        return candidate

    def _put(self, key, data):
        try:
            self.storage.put_object(key, data)
        except ArtifactPublishFailed:
            raise
        except OSError as e:
            raise ArtifactPublishFailed(f"Write failed for {key}: {e}")

    def stage(self, group, data):
        """Write bytes under a new version key only. Returns the version id."""
        version = self._next_version(group)
        self._put(self.version_key(group, version), data)
        print(f"[OK] Staged {group} artifact version {version} ({len(data)} bytes)")
        return version

    def _revert_current(self, group, previous):
        """Put the previous current bytes back, or remove them if there were none."""
        key = self.current_key(group)
        if previous is not None:
            self._put(key, previous)
            return
        try:
            self.storage.delete_object(key)
        except ArtifactPublishFailed:
            raise
        except OSError as e:
            raise ArtifactPublishFailed(f"Delete failed for {key}: {e}")

    def promote(self, group, version):
        """
        Point "current" at an already staged version.

        The bytes and the VERSION marker move together: if the marker cannot
        be written, the previous current bytes are restored before raising.
        """
        data = self.fetch_version(group, version)
        try:
            previous = self.fetch_current(group)
        except ArtifactNotFound:
            previous = None

        try:
            self._put(self.current_key(group), data)
        except ArtifactPublishFailed as e:
            raise ArtifactPublishFailed(
                f"Could not advance current pointer for '{group}' to {version}; "
                f"versioned artifact remains at {self.version_key(group, version)}: {e}"
            )

        try:
            self._put(self.marker_key(group), version.encode('utf-8'))
        except ArtifactPublishFailed as e:
            message = (
                f"Could not advance current pointer for '{group}' to {version}; "
                f"versioned artifact remains at {self.version_key(group, version)}: {e}"
            )
            try:
                self._revert_current(group, previous)
            except ArtifactPublishFailed as revert_error:
                raise ArtifactPublishFailed(f"{message}; current bytes could not be reverted: {revert_error}")
            raise ArtifactPublishFailed(message)
        print(f"[OK] Current {group} artifact -> {version}")

    def publish(self, group, data):
        """Stage then promote. Returns the version id."""
        version = self.stage(group, data)
        self.promote(group, version)
        return version

    def fetch_version(self, group, version):
        return self.storage.get_object(self.version_key(group, version))

    def fetch_current(self, group):
        return self.storage.get_object(self.current_key(group))

    def current_version(self, group):
        try:
            return self.storage.get_object(self.marker_key(group)).decode('utf-8').strip()
        except ArtifactNotFound:
            return None
