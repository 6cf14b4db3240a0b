"""
Exception hierarchy for anchorage.

Library code raises these; only the CLI turns them into messages and
exit codes.
"""

from __future__ import annotations


class AnchorageError(Exception):
    """Base class for all anchorage errors."""


class InvalidDigest(AnchorageError, ValueError):
    """A value is not a 64-char sha256 hex digest."""


class SubmissionRejected(AnchorageError, ValueError):
    """An upload failed validation before any record was created."""


class ConfigError(AnchorageError, ValueError):
    """Configuration file is missing required values or malformed."""


class InvalidTransition(AnchorageError):
    """A status change violates the artifact lifecycle."""


class ArtifactNotFound(AnchorageError):
    """No artifact record exists for the given id."""

    def __init__(self, artifact_id: str):
        super().__init__(f"Artifact not found: {artifact_id}")
        self.artifact_id = artifact_id


class DuplicateHash(AnchorageError):
    """
    A record with the same content hash already exists.

    Carries the id of the record that won the create, so callers can
    answer with a conflict that points at the existing artifact.
    """

    def __init__(self, content_hash: str, existing_id: str):
        super().__init__(f"Content {content_hash[:12]}… already registered as {existing_id}")
        self.content_hash = content_hash
        self.existing_id = existing_id
