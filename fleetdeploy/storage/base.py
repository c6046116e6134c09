#!/usr/bin/env python3
"""
Base object store interface for deployment artifacts.
"""


class StorageBackend:
    """Base interface for object stores holding build artifacts."""

    def put_object(self, storage_key, data):
        """Store bytes under storage_key, replacing any previous value."""
        raise NotImplementedError

    def get_object(self, storage_key):
        """Return the bytes stored under storage_key (ArtifactNotFound if absent)."""
        raise NotImplementedError

    def delete_object(self, storage_key):
        """Remove storage_key. Deleting an absent key is not an error."""
        raise NotImplementedError

    def exists(self, storage_key):
        raise NotImplementedError

    def get_url(self, storage_key):
        """Location a target can fetch the object from (path or s3:// URL)."""
        raise NotImplementedError
