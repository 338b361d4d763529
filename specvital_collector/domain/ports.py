"""Interfaces of the collaborators the analyze use case depends on."""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Protocol, runtime_checkable
from uuid import UUID

from specvital_collector.deadline import Deadline
from specvital_collector.domain.models import (
    CreateAnalysisRecordParams,
    DueCodebase,
    Inventory,
    SaveAnalysisInventoryParams,
)


@runtime_checkable
class Source(Protocol):
    """A live, exclusively owned checkout of a repository."""

    @property
    def branch(self) -> str: ...

    @property
    def commit_sha(self) -> str: ...

    @property
    def root(self) -> str: ...

    def close(self, *, deadline: Deadline | None = None) -> None: ...

    def verify_commit_exists(self, sha: str, *, deadline: Deadline | None = None) -> bool: ...


class VCS(Protocol):
    def clone(
        self, url: str, token: str | None = None, *, deadline: Deadline | None = None
    ) -> Source: ...

    def get_head_commit(
        self, url: str, token: str | None = None, *, deadline: Deadline | None = None
    ) -> str: ...


class Parser(Protocol):
    def scan(self, source: Source, *, deadline: Deadline | None = None) -> Inventory | None: ...


class TokenLookup(Protocol):
    """Resolves OAuth access tokens.

    Implementations raise TokenNotFoundError (never a generic error) when
    the user has no usable token for the provider.
    """

    def get_oauth_token(
        self, user_id: str, provider: str, *, deadline: Deadline | None = None
    ) -> str: ...


class AnalysisStore(Protocol):
    def create_analysis_record(
        self, params: CreateAnalysisRecordParams, *, deadline: Deadline | None = None
    ) -> UUID: ...

    def save_analysis_inventory(
        self, params: SaveAnalysisInventoryParams, *, deadline: Deadline | None = None
    ) -> None: ...

    def record_failure(
        self, analysis_id: UUID, error_message: str, *, deadline: Deadline | None = None
    ) -> None: ...


class RefreshStore(Protocol):
    def list_due_for_refresh(
        self,
        now: datetime,
        batch_size: int,
        *,
        refresh_interval: timedelta = ...,
        deadline: Deadline | None = None,
    ) -> list[DueCodebase]: ...

    def mark_refresh_checked(
        self, codebase_id: UUID, checked_at: datetime, *, deadline: Deadline | None = None
    ) -> None: ...


class TaskQueue(Protocol):
    def enqueue_analyze(self, owner: str, repo: str, user_id: str | None = None) -> str: ...
