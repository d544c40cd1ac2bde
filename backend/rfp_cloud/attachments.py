# attachments.py
# Move inbound email attachments into object storage (DigitalOcean Spaces or
# any S3-compatible bucket) and describe where they went.

import logging
import re
import uuid
from typing import Iterable, List, Optional

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from . import models
from .config import Settings
from .exceptions import ConfigurationError, StorageUploadError

logger = logging.getLogger(__name__)

KEY_PREFIX = "inbound/"
_WHITESPACE = re.compile(r"\s+")


class S3ObjectStorage:
    """
    Thin put/sign wrapper around a boto3 S3 client. The client is created on
    first use; connect and read timeouts come from settings.
    """

    def __init__(self, settings: Settings):
        self.settings = settings
        self._client = None

    @property
    def endpoint(self) -> Optional[str]:
        if self.settings.spaces_endpoint:
            return self.settings.spaces_endpoint.rstrip("/")
        if self.settings.spaces_region:
            return f"https://{self.settings.spaces_region}.digitaloceanspaces.com"
        return None

    @property
    def client(self):
        if self._client is None:
            s = self.settings
            if not (s.spaces_bucket and s.spaces_region and s.spaces_key and s.spaces_secret):
                raise ConfigurationError(
                    "DO Spaces is not configured (DO_SPACES_KEY/SECRET/NAME/REGION are required)")
            config = Config(
                signature_version="s3v4",
                connect_timeout=s.storage_timeout_seconds,
                read_timeout=s.storage_timeout_seconds,
                retries={"max_attempts": 2},
            )
            self._client = boto3.client(
                "s3",
                region_name=s.spaces_region,
                endpoint_url=self.endpoint,
                aws_access_key_id=s.spaces_key,
                aws_secret_access_key=s.spaces_secret,
                config=config,
            )
        return self._client

    def put_object(self, key: str, body: bytes, content_type: Optional[str] = None,
                   acl: Optional[str] = None) -> None:
        extra = {}
        if content_type:
            extra["ContentType"] = content_type
        if acl:
            extra["ACL"] = acl
        try:
            self.client.put_object(Bucket=self.settings.spaces_bucket, Key=key, Body=body, **extra)
        except (BotoCoreError, ClientError) as e:
            raise StorageUploadError(f"Upload of {key} failed: {e}", key=key) from e

    def sign_url(self, key: str, ttl: int = 3600) -> str:
        try:
            return self.client.generate_presigned_url(
                "get_object",
                Params={"Bucket": self.settings.spaces_bucket, "Key": key},
                ExpiresIn=ttl,
            )
        except (BotoCoreError, ClientError) as e:
            raise StorageUploadError(f"Could not sign URL for {key}: {e}", key=key) from e

    def public_url(self, key: str) -> str:
        s = self.settings
        if s.spaces_cdn_url:
            return f"{s.spaces_cdn_url.rstrip('/')}/{key}"
        if s.spaces_endpoint:
            return f"{self.endpoint}/{s.spaces_bucket}/{key}"
        return f"https://{s.spaces_bucket}.{s.spaces_region}.digitaloceanspaces.com/{key}"


def storage_key(filename: str) -> str:
    safe_name = _WHITESPACE.sub("_", filename.strip()) or "attachment"
    return f"{KEY_PREFIX}{uuid.uuid4()}__{safe_name}"


class AttachmentRelocator:
    def __init__(self, object_storage, settings: Settings):
        self.object_storage = object_storage
        self.settings = settings

    def relocate(self, content: bytes, filename: str,
                 content_type: Optional[str] = None) -> models.AttachmentMeta:
        key = storage_key(filename)
        acl = "public-read" if self.settings.public_objects else None
        self.object_storage.put_object(key, content, content_type, acl)
        return models.AttachmentMeta(
            filename=filename,
            key=key,
            url=self.object_storage.public_url(key),
            size=len(content),
            content_type=content_type or None,
        )

    def relocate_all(self, attachments: Iterable[models.InboundAttachment]) -> List[models.AttachmentMeta]:
        """Upload one at a time; a failed item is logged and left out."""
        meta = []
        for a in attachments:
            try:
                meta.append(self.relocate(a.content, a.filename, a.content_type))
            except (StorageUploadError, ConfigurationError) as e:
                logger.warning("Skipping attachment %r: %s", a.filename, e)
        return meta
