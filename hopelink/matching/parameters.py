"""Cached access to the active matching parameters of each context."""

from __future__ import annotations

import logging
import time
from typing import Any, Callable, Mapping

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from hopelink.core.config import get_settings
from hopelink.db.models.matching_parameters import MatchingParameterRecord
from hopelink.db.repositories.parameters_repository import MatchingParametersRepository
from hopelink.matching.config import DEFAULT_CONTEXT, MatchingParameters, validate_context
from hopelink.matching.drafts import ParameterDraft
from hopelink.matching.errors import CandidateNotFoundError, TransientFetchError

logger = logging.getLogger(__name__)


class ParameterStore:
    """
    Read-through TTL cache over the ``matching_parameters`` table.

    Reads create the default record the first time the service's own
    context (MATCHING_CONTEXT) is seen; other contexts exist only once an
    admin has saved them. A failed read falls back to the last snapshot served for that context.
    Saves invalidate the cached entry so the next read sees the new values.
    """

    def __init__(
        self,
        ttl_seconds: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize parameter store.

        Args:
            ttl_seconds: Cache lifetime (defaults to PARAMETERS_CACHE_TTL_SECONDS)
            clock: Monotonic time source, injectable for tests
        """
        settings = get_settings()
        if ttl_seconds is None:
            ttl_seconds = settings.PARAMETERS_CACHE_TTL_SECONDS
        self.default_contexts = frozenset({DEFAULT_CONTEXT, settings.MATCHING_CONTEXT})
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._cache: dict[str, tuple[float, MatchingParameters]] = {}

    def _repo(self, session: AsyncSession) -> MatchingParametersRepository:
        return MatchingParametersRepository(MatchingParameterRecord, session)

    def _fresh(self, context: str) -> MatchingParameters | None:
        entry = self._cache.get(context)
        if entry and self._clock() - entry[0] < self.ttl_seconds:
            return entry[1]
        return None

    async def get(
        self, session: AsyncSession, context: str = DEFAULT_CONTEXT
    ) -> MatchingParameters:
        """
        Get the active parameters for a context.

        Args:
            session: Database session
            context: Matching context

        Returns:
            Immutable parameter snapshot

        Raises:
            ParameterValidationError: If the context identifier is malformed
            CandidateNotFoundError: If the context has never been saved and is
                not one whose defaults are created on demand
            TransientFetchError: If the database is unreachable and nothing is cached
        """
        validate_context(context)

        cached = self._fresh(context)
        if cached is not None:
            return cached

        try:
            repo = self._repo(session)
            record = await repo.get_active(context)
            if record is None and context not in self.default_contexts:
                raise CandidateNotFoundError(f"No matching parameters for context {context}")
            if record is None:
                logger.info(f"[PARAMS] No parameters for {context}, creating defaults")
                defaults = MatchingParameters(context=context)
                record = await repo.upsert(context, defaults.to_record_values())
            params = MatchingParameters.from_record(record)
        except SQLAlchemyError as e:
            stale = self._cache.get(context)
            if stale is not None:
                logger.warning(
                    f"[PARAMS] Failed to load {context}, serving cached snapshot: {e}"
                )
                return stale[1]
            raise TransientFetchError(
                f"Could not load matching parameters for {context}"
            ) from e

        self._cache[context] = (self._clock(), params)
        return params

    async def get_all(self, session: AsyncSession) -> list[MatchingParameters]:
        """Get the active parameters of every stored context."""
        try:
            records = await self._repo(session).get_all_active()
        except SQLAlchemyError as e:
            raise TransientFetchError("Could not load matching parameters") from e

        if not records:
            return [await self.get(session, DEFAULT_CONTEXT)]
        return [MatchingParameters.from_record(r) for r in records]

    async def update(
        self,
        session: AsyncSession,
        context: str,
        updates: Mapping[str, Any],
        admin_user_id: int | None = None,
    ) -> MatchingParameters:
        """
        Apply partial updates to a context and persist them.

        Validation always runs here, whatever the caller checked already.

        Args:
            session: Database session
            context: Matching context
            updates: Nested or dotted-path edits
            admin_user_id: Admin performing the change

        Returns:
            The saved parameters

        Raises:
            ParameterValidationError: If the result would be invalid
        """
        try:
            current = await self.get(session, context)
        except CandidateNotFoundError:
            current = MatchingParameters(context=context)
        params = ParameterDraft(current).edit(updates).build()
        return await self.save(session, params, admin_user_id)

    async def save(
        self,
        session: AsyncSession,
        params: MatchingParameters,
        admin_user_id: int | None = None,
    ) -> MatchingParameters:
        """Validate, persist and invalidate the cached entry."""
        params.validate_config()
        try:
            record = await self._repo(session).upsert(
                params.context, params.to_record_values(), updated_by=admin_user_id
            )
        except SQLAlchemyError as e:
            raise TransientFetchError(
                f"Could not save matching parameters for {params.context}"
            ) from e

        self.invalidate(params.context)
        logger.info(
            f"[PARAMS] Saved {params.context} | by admin {admin_user_id} | "
            f"weights={params.weights.as_dict()}"
        )
        return MatchingParameters.from_record(record)

    def invalidate(self, context: str | None = None) -> None:
        """Expire one cached context, or all of them.

        Expired snapshots are kept as the fallback for failed reloads.
        """
        contexts = list(self._cache) if context is None else [context]
        for name in contexts:
            if name in self._cache:
                self._cache[name] = (float("-inf"), self._cache[name][1])


_store: ParameterStore | None = None


def get_parameter_store() -> ParameterStore:
    """Get the process-wide parameter store."""
    global _store
    if _store is None:
        _store = ParameterStore()
    return _store


def reset_parameter_store() -> None:
    global _store
    _store = None
