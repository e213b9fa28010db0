"""File storage adapters selected by ``STORAGE_ADAPTER``."""

import os
import random
import re
import string
import time
from urllib.error import HTTPError, URLError
from urllib.parse import quote
from urllib.request import Request, urlopen

import boto3
from botocore.exceptions import ClientError
from flask import current_app

_BASE36 = string.digits + string.ascii_lowercase


def generate_storage_key(original_name):
    """``<ms>-<6 random base36>-<sanitised stem[:50]>.<ext>``"""
    stem, ext = os.path.splitext(original_name or "file")
    safe_stem = re.sub(r"[^A-Za-z0-9]", "-", stem)[:50] or "file"
    ext = ext.lstrip(".").lower() or "bin"
    timestamp = int(time.time() * 1000)
    rand = "".join(random.choice(_BASE36) for _ in range(6))
    return f"{timestamp}-{rand}-{safe_stem}.{ext}"


class StorageError(Exception):
    pass


class StorageAdapter:
    name = "base"

    def upload(self, key, data, mime_type, filename=None):
        raise NotImplementedError

    def download(self, key):
        raise NotImplementedError

    def get_url(self, key):
        raise NotImplementedError

    def delete(self, key):
        raise NotImplementedError

    def exists(self, key):
        raise NotImplementedError


class LocalStorage(StorageAdapter):
    name = "local"

    def __init__(self, root):
        self.root = os.path.abspath(root)
        os.makedirs(self.root, exist_ok=True)

    def _path(self, key):
        path = os.path.abspath(os.path.join(self.root, key))
        if not path.startswith(self.root + os.sep):
            raise StorageError(f"Invalid storage key: {key}")
        return path

    def upload(self, key, data, mime_type, filename=None):
        path = self._path(key)
        os.makedirs(os.path.dirname(path), exist_ok=True)
        with open(path, "wb") as fh:
            fh.write(data)
        return key

    def download(self, key):
        path = self._path(key)
        if not os.path.exists(path):
            raise StorageError(f"File not found: {key}")
        with open(path, "rb") as fh:
            return fh.read()

    def get_url(self, key):
        return f"/api/files/storage/{quote(key)}"

    def delete(self, key):
        path = self._path(key)
        if os.path.exists(path):
            os.remove(path)

    def exists(self, key):
        return os.path.exists(self._path(key))


class S3Storage(StorageAdapter):
    name = "s3"

    def __init__(self, bucket, region=None, endpoint_url=None, access_key=None, secret_key=None):
        if not bucket:
            raise StorageError("S3_BUCKET is required for the s3 storage adapter")
        self.bucket = bucket
        session = boto3.session.Session(
            aws_access_key_id=access_key,
            aws_secret_access_key=secret_key,
            region_name=region,
        )
        self._client = session.client("s3", endpoint_url=endpoint_url)

    def upload(self, key, data, mime_type, filename=None):
        extra = {}
        if filename:
            extra["ContentDisposition"] = f'inline; filename="{filename}"'
        self._client.put_object(
            Bucket=self.bucket, Key=key, Body=data, ContentType=mime_type, **extra
        )
        return key

    def download(self, key):
        try:
            response = self._client.get_object(Bucket=self.bucket, Key=key)
        except ClientError as exc:
            raise StorageError(f"File not found: {key}") from exc
        return response["Body"].read()

    def get_url(self, key):
        return self._client.generate_presigned_url(
            "get_object", Params={"Bucket": self.bucket, "Key": key}, ExpiresIn=3600
        )

    def delete(self, key):
        try:
            self._client.delete_object(Bucket=self.bucket, Key=key)
        except ClientError as exc:
            current_app.logger.warning("S3 delete failed for %s: %s", key, exc)

    def exists(self, key):
        try:
            self._client.head_object(Bucket=self.bucket, Key=key)
            return True
        except ClientError:
            return False


class SupabaseStorage(StorageAdapter):
    """Supabase Storage over its REST API."""

    name = "supabase"

    def __init__(self, base_url, service_key, bucket):
        if not base_url or not service_key:
            raise StorageError("SUPABASE_URL and SUPABASE_SERVICE_KEY are required")
        self.base_url = base_url.rstrip("/")
        self.service_key = service_key
        self.bucket = bucket

    def _object_url(self, key):
        return f"{self.base_url}/storage/v1/object/{self.bucket}/{quote(key)}"

    def _request(self, url, method="GET", data=None, headers=None):
        all_headers = {
            "Authorization": f"Bearer {self.service_key}",
            "apikey": self.service_key,
        }
        all_headers.update(headers or {})
        request = Request(url, data=data, headers=all_headers, method=method)
        with urlopen(request, timeout=60) as resp:
            return resp.read()

    def upload(self, key, data, mime_type, filename=None):
        try:
            self._request(
                self._object_url(key),
                method="POST",
                data=data,
                headers={"Content-Type": mime_type, "x-upsert": "false"},
            )
        except (HTTPError, URLError, TimeoutError, OSError) as exc:
            raise StorageError(f"Upload failed: {exc}") from exc
        return key

    def download(self, key):
        try:
            return self._request(self._object_url(key))
        except (HTTPError, URLError, TimeoutError, OSError) as exc:
            raise StorageError(f"File not found: {key}") from exc

    def get_url(self, key):
        return f"{self.base_url}/storage/v1/object/public/{self.bucket}/{quote(key)}"

    def delete(self, key):
        try:
            self._request(self._object_url(key), method="DELETE")
        except HTTPError as exc:
            if exc.code != 404:
                current_app.logger.warning("Supabase delete failed for %s: %s", key, exc)
        except (URLError, TimeoutError, OSError) as exc:
            current_app.logger.warning("Supabase delete failed for %s: %s", key, exc)

    def exists(self, key):
        try:
            self._request(
                f"{self.base_url}/storage/v1/object/info/{self.bucket}/{quote(key)}"
            )
            return True
        except (HTTPError, URLError, TimeoutError, OSError):
            return False


def get_storage():
    """Build the adapter configured for the current app."""
    config = current_app.config
    adapter = config.get("STORAGE_ADAPTER", "local")
    if adapter == "s3":
        return S3Storage(
            bucket=config.get("S3_BUCKET"),
            region=config.get("S3_REGION"),
            endpoint_url=config.get("S3_ENDPOINT_URL"),
            access_key=config.get("S3_ACCESS_KEY_ID"),
            secret_key=config.get("S3_SECRET_ACCESS_KEY"),
        )
    if adapter == "supabase":
        return SupabaseStorage(
            base_url=config.get("SUPABASE_URL"),
            service_key=config.get("SUPABASE_SERVICE_KEY"),
            bucket=config.get("SUPABASE_BUCKET", "files"),
        )
    return LocalStorage(config["UPLOAD_FOLDER"])
