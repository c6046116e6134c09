"""Tests for the artifact publisher and the local object store."""

from datetime import datetime

import pytest

from fleetdeploy.deployment.errors import ArtifactNotFound, ArtifactPublishFailed
from fleetdeploy.deployment.publisher import ArtifactPublisher
from fleetdeploy.storage import LocalStorage, S3Storage, get_storage_backend


class FlakyStorage(LocalStorage):
    """Fails every write to the "current" pointer."""

    def put_object(self, storage_key, data):
        if '/current/' in storage_key:
            raise OSError('No space left on device')
        return super().put_object(storage_key, data)


class MarkerFlakyStorage(LocalStorage):
    """Fails writes to the VERSION marker once fail_marker is set."""

    fail_marker = False

    def put_object(self, storage_key, data):
        if self.fail_marker and storage_key.endswith('/current/VERSION'):
            raise OSError('Quota exceeded')
        return super().put_object(storage_key, data)


class TestPublisher:

    def test_publish_round_trip(self, publisher):
        version = publisher.publish('web', b'v1 bytes')
        assert publisher.fetch_current('web') == b'v1 bytes'
        assert publisher.fetch_version('web', version) == b'v1 bytes'
        assert publisher.current_version('web') == version

    def test_stage_does_not_move_current(self, publisher):
        first = publisher.publish('web', b'one')
        publisher.stage('web', b'two')
        assert publisher.current_version('web') == first
        assert publisher.fetch_current('web') == b'one'

    def test_current_tracks_latest_publish(self, publisher):
        publisher.publish('web', b'one')
        second = publisher.publish('web', b'two')
        assert publisher.current_version('web') == second
        assert publisher.fetch_current('web') == b'two'

    def test_versions_monotonic_with_frozen_clock(self, storage):
        frozen = datetime(2025, 6, 1, 9, 30, 0)
        publisher = ArtifactPublisher(storage, now=lambda: frozen)
        versions = [publisher.stage('web', b'x') for _ in range(3)]
        assert versions == sorted(versions, key=int)
        assert len(set(versions)) == 3

    def test_new_publisher_continues_past_current(self, storage):
        frozen = datetime(2025, 6, 1, 9, 30, 0)
        first = ArtifactPublisher(storage, now=lambda: frozen).publish('web', b'x')
        second = ArtifactPublisher(storage, now=lambda: frozen).stage('web', b'y')
        assert int(second) > int(first)

    def test_groups_are_separate(self, publisher):
        publisher.publish('web', b'web')
        publisher.publish('api', b'api')
        assert publisher.fetch_current('web') == b'web'
        assert publisher.fetch_current('api') == b'api'

    def test_fetch_current_missing(self, publisher):
        with pytest.raises(ArtifactNotFound):
            publisher.fetch_current('web')
        assert publisher.current_version('web') is None

    def test_failed_current_write_keeps_versioned_artifact(self, config, clock):
        storage = FlakyStorage(config['storage'])
        publisher = ArtifactPublisher(storage, now=clock.now)

        with pytest.raises(ArtifactPublishFailed, match='versioned artifact remains'):
            publisher.publish('web', b'bytes')

        versions = list((storage.root / 'web').iterdir())
        assert len(versions) == 1
        assert publisher.fetch_version('web', versions[0].name) == b'bytes'
        assert publisher.current_version('web') is None

    def test_failed_marker_write_restores_previous_current(self, config, clock):
        storage = MarkerFlakyStorage(config['storage'])
        publisher = ArtifactPublisher(storage, now=clock.now)
        first = publisher.publish('web', b'one')

        storage.fail_marker = True
        with pytest.raises(ArtifactPublishFailed, match='versioned artifact remains'):
            publisher.publish('web', b'two')

        assert publisher.fetch_current('web') == b'one'
        assert publisher.current_version('web') == first

    def test_failed_first_marker_write_leaves_no_current(self, config, clock):
        storage = MarkerFlakyStorage(config['storage'])
        storage.fail_marker = True
        publisher = ArtifactPublisher(storage, now=clock.now)

        with pytest.raises(ArtifactPublishFailed):
            publisher.publish('web', b'bytes')

        with pytest.raises(ArtifactNotFound):
            publisher.fetch_current('web')
        assert publisher.current_version('web') is None

    def test_artifact_url_points_at_version(self, publisher, storage):
        url = publisher.artifact_url('web', '123')
        assert url == str(storage.root / 'web' / '123' / 'build.tar.gz')


class TestLocalStorage:

    def test_overwrite_replaces_bytes(self, storage):
        storage.put_object('a/b', b'one')
        storage.put_object('a/b', b'two')
        assert storage.get_object('a/b') == b'two'
        assert not (storage.root / 'a' / 'b.partial').exists()

    def test_exists(self, storage):
        assert storage.exists('a/b') is False
        storage.put_object('a/b', b'x')
        assert storage.exists('a/b') is True

    def test_delete_object(self, storage):
        storage.put_object('a/b', b'x')
        storage.delete_object('a/b')
        assert storage.exists('a/b') is False
        storage.delete_object('a/b')

    def test_rejects_escaping_keys(self, storage):
        with pytest.raises(ValueError):
            storage.put_object('../outside', b'x')


class TestStorageFactory:

    def test_local_backend(self, config):
        assert isinstance(get_storage_backend(config), LocalStorage)

    def test_s3_backend(self, config):
        config['deployment']['storage_backend'] = 's3'
        config['s3'] = {'bucket_name': 'artifacts'}
        assert isinstance(get_storage_backend(config), S3Storage)

    def test_unknown_backend_exits(self, config):
        config['deployment']['storage_backend'] = 'ftp'
        with pytest.raises(SystemExit):
            get_storage_backend(config)
