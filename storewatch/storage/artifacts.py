"""Screenshot artifact storage backends."""

from __future__ import annotations

import io
from abc import ABC, abstractmethod
from pathlib import Path
from urllib.parse import urlsplit

import boto3
import structlog
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError
from PIL import Image, UnidentifiedImageError

from storewatch.config import WatchConfig
from storewatch.errors import ArtifactStoreError


logger = structlog.get_logger(__name__)

PNG_CONTENT_TYPE = "image/png"
LONG_CACHE_CONTROL = "public, max-age=31536000"


def optimize_png(data: bytes) -> bytes:
    """Re-encode a PNG with maximum compression; non-PNG payloads pass through."""
    try:
        with Image.open(io.BytesIO(data)) as img:
            if img.format != "PNG":
                return data
            out = io.BytesIO()
            img.save(out, format="PNG", optimize=True, compress_level=9)
    except (UnidentifiedImageError, OSError):
        return data
    optimized = out.getvalue()
    return optimized if len(optimized) < len(data) else data


class ArtifactStore(ABC):
    """Blob storage with public read URLs, keyed by path-like strings."""

    def __init__(self, public_url: str):
        self.public_url = public_url.rstrip("/")

    @abstractmethod
    def _write(self, key: str, data: bytes, content_type: str) -> None:
        ...

    @abstractmethod
    def _read(self, key: str) -> bytes | None:
        ...

    def put(self, key: str, data: bytes, content_type: str = PNG_CONTENT_TYPE) -> str:
        """Store ``data`` under ``key`` and return its public URL."""
        key = key.lstrip("/")
        if content_type == PNG_CONTENT_TYPE:
            data = optimize_png(data)
        self._write(key, data, content_type)
        logger.debug("Artifact stored", key=key, size=len(data))
        return self.url_for(key)

    def get(self, key: str | None) -> bytes | None:
        """Return the artifact bytes, or None when the key is unknown or unreadable."""
        if not key:
            return None
        return self._read(key.lstrip("/"))

    def url_for(self, key: str) -> str:
        return f"{self.public_url}/{key.lstrip('/')}"

    def key_from_url(self, url: str | None) -> str | None:
        """Derive the storage key from a public URL produced by :meth:`put`."""
        if not url:
            return None
        prefix = self.public_url + "/"
        if url.startswith(prefix):
            return url[len(prefix):] or None
        try:
            path = urlsplit(url).path
        except ValueError:
            return None
        # URLs minted under an older public prefix still carry the key as their path.
        base_path = urlsplit(self.public_url).path.rstrip("/")
        if base_path and path.startswith(base_path + "/"):
            path = path[len(base_path):]
        return path.lstrip("/") or None


class LocalArtifactStore(ArtifactStore):
    """Keep artifacts on local disk, served under ``base_url``."""

    def __init__(self, root: Path | str, base_url: str = "/artifacts"):
        super().__init__(base_url)
        self._root = Path(root).resolve()
        self._root.mkdir(parents=True, exist_ok=True)

    @property
    def root(self) -> Path:
        return self._root

    def _path(self, key: str) -> Path:
        path = (self._root / key).resolve()
        if self._root not in path.parents:
            raise ArtifactStoreError(f"Artifact key escapes storage root: {key}")
        return path

    def _write(self, key: str, data: bytes, content_type: str) -> None:
        path = self._path(key)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            tmp = path.with_suffix(path.suffix + ".tmp")
            tmp.write_bytes(data)
            tmp.replace(path)
        except OSError as e:
            raise ArtifactStoreError(f"Failed to write artifact {key}: {e}") from e

    def _read(self, key: str) -> bytes | None:
        try:
            path = self._path(key)
            return path.read_bytes()
        except (ArtifactStoreError, OSError) as e:
            logger.warning("Artifact read failed", key=key, error=str(e))
            return None


class S3ArtifactStore(ArtifactStore):
    """S3-compatible object storage (AWS S3, Cloudflare R2, MinIO)."""

    def __init__(
        self,
        bucket: str,
        public_url: str,
        endpoint_url: str | None = None,
        region: str = "auto",
        access_key: str | None = None,
        secret_key: str | None = None,
        client=None,
    ):
        super().__init__(public_url)
        self.bucket = bucket

        if client is None:
            client_kwargs = {
                "service_name": "s3",
                "region_name": region,
                "config": Config(signature_version="s3v4"),
            }
            if endpoint_url:
                client_kwargs["endpoint_url"] = endpoint_url
            if access_key and secret_key:
                client_kwargs["aws_access_key_id"] = access_key
                client_kwargs["aws_secret_access_key"] = secret_key
            client = boto3.client(**client_kwargs)
        self.client = client

        logger.info("S3 artifact store initialized", bucket=bucket, endpoint=endpoint_url)

    def _write(self, key: str, data: bytes, content_type: str) -> None:
        try:
            self.client.put_object(
                Bucket=self.bucket,
                Key=key,
                Body=data,
                ContentType=content_type,
                CacheControl=LONG_CACHE_CONTROL,
            )
        except (BotoCoreError, ClientError) as e:
            raise ArtifactStoreError(f"Failed to upload {key}: {e}") from e

    def _read(self, key: str) -> bytes | None:
        try:
            response = self.client.get_object(Bucket=self.bucket, Key=key)
            return response["Body"].read()
        except (BotoCoreError, ClientError) as e:
            logger.warning("Artifact download failed", key=key, error=str(e))
            return None


def build_artifact_store(config: WatchConfig) -> ArtifactStore:
    """Create the artifact backend selected by ``config.artifact_backend``."""
    backend = config.artifact_backend.strip().lower()
    if backend == "local":
        return LocalArtifactStore(config.artifacts_dir, base_url=config.artifacts_base_url)
    if backend == "s3":
        public_url = config.s3_public_url or f"{(config.s3_endpoint_url or '').rstrip('/')}/{config.s3_bucket}"
        return S3ArtifactStore(
            bucket=config.s3_bucket,
            public_url=public_url,
            endpoint_url=config.s3_endpoint_url,
            region=config.s3_region,
            access_key=config.s3_access_key,
            secret_key=config.s3_secret_key,
        )
    raise ValueError(f"Unknown artifact backend: {config.artifact_backend}")
