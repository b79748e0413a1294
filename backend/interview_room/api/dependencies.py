from __future__ import annotations

import logging

from interview_room.conversation.orchestrator import ConversationOrchestrator
from interview_room.db.repository import InMemoryInterviewRepository, InterviewRepository
from interview_room.services.openai_service import InterviewAI
from interview_room.session.coordinator import SessionCoordinator
from interview_room.session.store import SessionStore, build_session_store
from interview_room.storage.blob_store import BlobStore, build_blob_store

logger = logging.getLogger("interview_room.api.dependencies")


class DependencyProvider:
    """Lazily wires the collaborators shared by the HTTP routes and the WebSocket endpoint."""

    def __init__(self):
        self._store: SessionStore | None = None
        self._repository: InterviewRepository | None = None
        self._blob_store: BlobStore | None = None
        self._ai: InterviewAI | None = None
        self._coordinator: SessionCoordinator | None = None

    @property
    def store(self) -> SessionStore:
        if self._store is None:
            self._store = build_session_store()
            logger.info("Session store initialized: %s", self._store.__class__.__name__)
        return self._store

    @property
    def repository(self) -> InterviewRepository:
        if self._repository is None:
            self._repository = InMemoryInterviewRepository()
        return self._repository

    @property
    def blob_store(self) -> BlobStore:
        if self._blob_store is None:
            self._blob_store = build_blob_store()
            logger.info("Blob store initialized: %s", self._blob_store.__class__.__name__)
        return self._blob_store

    @property
    def ai(self) -> InterviewAI:
        if self._ai is None:
            self._ai = InterviewAI()
        return self._ai

    @property
    def coordinator(self) -> SessionCoordinator:
        if self._coordinator is None:
            self._coordinator = SessionCoordinator(
                store=self.store,
                repository=self.repository,
                orchestrator=ConversationOrchestrator(generator=self.ai),
                result_generator=self.ai,
            )
        return self._coordinator

    def override(
        self,
        *,
        store: SessionStore | None = None,
        repository: InterviewRepository | None = None,
        blob_store: BlobStore | None = None,
        ai=None,
        coordinator: SessionCoordinator | None = None,
    ) -> None:
        if store is not None:
            self._store = store
        if repository is not None:
            self._repository = repository
        if blob_store is not None:
            self._blob_store = blob_store
        if ai is not None:
            self._ai = ai
        self._coordinator = coordinator

    def reset(self) -> None:
        self.__init__()


dependency_provider = DependencyProvider()
