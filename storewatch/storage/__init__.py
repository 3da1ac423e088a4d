"""Persistence: screenshot artifacts and monitoring records."""

from .artifacts import ArtifactStore, LocalArtifactStore, S3ArtifactStore, build_artifact_store
from .database import StoreRepository

__all__ = ["ArtifactStore", "LocalArtifactStore", "S3ArtifactStore", "build_artifact_store", "StoreRepository"]
