#!/usr/bin/env python3
"""S3 object store for production mode."""

import os

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from .base import StorageBackend
from ..deployment.errors import ArtifactNotFound, ArtifactPublishFailed


class S3Storage(StorageBackend):
    """S3/MinIO object store for production mode."""

    def __init__(self, config):
        self.bucket = config.get('bucket_name')
        self.region = config.get('region', 'us-east-1')
        self.endpoint_url = config.get('endpoint_url')  # None = AWS S3, URL = MinIO
        self.prefix = config.get('prefix', '')

        if not self.bucket:
            raise ValueError("S3 storage requires s3.bucket_name in deployment config")

        self._client = None

    def _get_client(self):
        """Lazy initialization of boto3 client."""
        if self._client is None:
            kwargs = {'region_name': self.region}
            if self.endpoint_url:
                kwargs['endpoint_url'] = self.endpoint_url
            # Static keys are optional; otherwise boto3 walks its usual credential chain
            if 'AWS_ACCESS_KEY_ID' in os.environ and 'AWS_SECRET_ACCESS_KEY' in os.environ:
                kwargs['aws_access_key_id'] = os.environ['AWS_ACCESS_KEY_ID']
                kwargs['aws_secret_access_key'] = os.environ['AWS_SECRET_ACCESS_KEY']
            self._client = boto3.client('s3', **kwargs)
        return self._client

    def _full_key(self, storage_key):
        return f"{self.prefix}{storage_key}"

    def _get_s3_url(self, storage_key):
        return f"s3://{self.bucket}/{self._full_key(storage_key)}"

    def put_object(self, storage_key, data):
        s3_url = self._get_s3_url(storage_key)
        print(f"Uploading to S3: {s3_url}")
        try:
            self._get_client().put_object(Bucket=self.bucket, Key=self._full_key(storage_key), Body=data)
        except (BotoCoreError, ClientError) as e:
            raise ArtifactPublishFailed(f"S3 upload failed for {s3_url}: {e}")
        print("[OK] Uploaded")
        return s3_url

    def get_object(self, storage_key):
        s3_url = self._get_s3_url(storage_key)
        try:
            response = self._get_client().get_object(Bucket=self.bucket, Key=self._full_key(storage_key))
        except ClientError as e:
            if e.response['Error']['Code'] in ('NoSuchKey', '404'):
                raise ArtifactNotFound(f"Object not found: {s3_url}")
            raise
        return response['Body'].read()

    def delete_object(self, storage_key):
        s3_url = self._get_s3_url(storage_key)
        try:
            self._get_client().delete_object(Bucket=self.bucket, Key=self._full_key(storage_key))
        except (BotoCoreError, ClientError) as e:
            raise ArtifactPublishFailed(f"S3 delete failed for {s3_url}: {e}")
        print(f"Deleted {s3_url}")

    def exists(self, storage_key):
        try:
            self._get_client().head_object(Bucket=self.bucket, Key=self._full_key(storage_key))
            return True
        except ClientError as e:
            if e.response['Error']['Code'] in ('404', 'NoSuchKey', 'NotFound'):
                return False
            raise

    def get_url(self, storage_key):
        return self._get_s3_url(storage_key)
