"""Persistence gateway.

Translates clusters and credentials to and from relational rows. Every
write runs in one transaction under the gateway's exclusive lock; reads
take the shared side of the same lock and may run concurrently.
Provider tables are keyed by a ``cluster_id`` column.
"""

from __future__ import annotations

import time
from collections.abc import Awaitable, Callable
from typing import Any

import structlog
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from shared.database import (
    Base,
    ClusterModel,
    CredentialModel,
    DomainModel,
    create_engine,
    create_session_factory,
)
from shared.models import Cluster, ClusterState, Domain
from shared.observability import get_logger, log_database_query

from ..errors import (
    ClusterNotFoundError,
    CredentialsAlreadyExistError,
    CredentialsNotFoundError,
    DomainAlreadyAttachedError,
    StateTransitionError,
    StorageError,
)
from ..locks import AsyncRWLock
from ..providers import ClusterProvider, registered_variants

Work = Callable[[AsyncSession], Awaitable[Any]]


class PersistenceGateway:
    """Transactional access to the installer tables."""

    def __init__(
        self,
        engine: AsyncEngine,
        session_factory: async_sessionmaker[AsyncSession],
        logger: structlog.stdlib.BoundLogger | None = None,
    ):
        self.engine = engine
        self.session_factory = session_factory
        self.logger = logger or get_logger(__name__)
        self._lock = AsyncRWLock()

    @classmethod
    async def open(
        cls,
        database_url: str,
        echo: bool = False,
        logger: structlog.stdlib.BoundLogger | None = None,
    ) -> PersistenceGateway:
        """Open the storage handle and create missing tables.

        Raises:
            StorageError: the database cannot be reached or initialised
        """
        engine = create_engine(database_url, echo=echo)
        try:
            async with engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
        except (SQLAlchemyError, OSError) as e:
            await engine.dispose()
            raise StorageError(f"cannot open database: {e}") from e
        gateway = cls(engine, create_session_factory(engine), logger)
        gateway.logger.info("Database tables initialized", dialect=engine.dialect.name)
        return gateway

    async def dispose(self) -> None:
        await self.engine.dispose()

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def save_cluster(self, provider: ClusterProvider) -> None:
        """Insert the generic and provider rows in one transaction.

        Either both rows are written or neither is.
        """
        cluster_row = ClusterModel(**provider.cluster.column_values())
        provider_row = provider.to_model()

        async def work(session: AsyncSession) -> None:
            session.add(cluster_row)
            await session.flush()
            session.add(provider_row)
            await session.flush()
            if provider.cluster.domain is not None:
                session.add(self._domain_row(provider.cluster_id, provider.cluster.domain))
                await session.flush()

        await self._transaction("insert", ClusterModel.__tablename__, work)

    async def set_state(
        self,
        cluster_id: str,
        state: ClusterState,
        expected: ClusterState | None = None,
    ) -> None:
        """Persist a lifecycle state change.

        With ``expected`` the row is only updated while it still holds that
        state; otherwise ``StateTransitionError`` is raised.
        """
        stmt = update(ClusterModel).where(ClusterModel.id == cluster_id)
        if expected is not None:
            stmt = stmt.where(ClusterModel.state == ClusterState(expected).value)
        stmt = stmt.values(state=ClusterState(state).value)

        async def work(session: AsyncSession) -> None:
            result = await session.execute(stmt)
            if result.rowcount == 0:
                if expected is not None:
                    raise StateTransitionError(
                        cluster_id, ClusterState(expected).value, ClusterState(state).value
                    )
                raise ClusterNotFoundError(cluster_id)

        await self._transaction("update", ClusterModel.__tablename__, work)

    async def update_cluster(self, provider: ClusterProvider, fields: dict[str, Any]) -> None:
        """Update generic and provider columns of one cluster atomically."""
        cluster_fields = {k: v for k, v in fields.items() if k in Cluster.model_fields}
        provider_fields = {k: v for k, v in fields.items() if k in provider.provider_fields()}
        rejected = (set(fields) - set(cluster_fields) - set(provider_fields)) | (
            {"id", "state", "domain", "created_at"} & set(cluster_fields)
        )
        if rejected:
            raise ValueError(f"fields cannot be updated: {sorted(rejected)}")

        table = provider.table

        async def work(session: AsyncSession) -> None:
            if cluster_fields:
                result = await session.execute(
                    update(ClusterModel)
                    .where(ClusterModel.id == provider.cluster_id)
                    .values(**cluster_fields)
                )
                if result.rowcount == 0:
                    raise ClusterNotFoundError(provider.cluster_id)
            if provider_fields:
                await session.execute(
                    update(table)
                    .where(table.cluster_id == provider.cluster_id)
                    .values(**provider_fields)
                )

        await self._transaction("update", ClusterModel.__tablename__, work)

    async def save_domain(self, cluster_id: str, domain: Domain) -> None:
        """Attach a domain row. A cluster has at most one."""
        try:
            await self._transaction(
                "insert",
                DomainModel.__tablename__,
                lambda session: self._add(session, self._domain_row(cluster_id, domain)),
            )
        except StorageError as e:
            if isinstance(e.__cause__, IntegrityError):
                raise DomainAlreadyAttachedError(
                    f"Cluster {cluster_id} already has a domain"
                ) from e.__cause__
            raise

    async def save_credentials(self, credential_id: str, secret: str) -> None:
        """Insert a credential. Existing ids are rejected, never overwritten."""
        try:
            await self._transaction(
                "insert",
                CredentialModel.__tablename__,
                lambda session: self._add(
                    session, CredentialModel(id=credential_id, secret=secret)
                ),
            )
        except StorageError as e:
            if isinstance(e.__cause__, IntegrityError):
                raise CredentialsAlreadyExistError(credential_id) from e.__cause__
            raise

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def find_secret(self, credential_id: str) -> str:
        """Return the stored secret for ``credential_id``."""
        stmt = select(CredentialModel.secret).where(CredentialModel.id == credential_id).limit(1)

        async def work(session: AsyncSession) -> str:
            secret = (await session.execute(stmt)).scalar_one_or_none()
            if secret is None:
                raise CredentialsNotFoundError(credential_id)
            return secret

        return await self._read("select", CredentialModel.__tablename__, work)

    async def find_cluster(self, cluster_id: str) -> Cluster:
        """Load a cluster row together with its optional domain."""
        stmt = (
            select(ClusterModel, DomainModel)
            .outerjoin(DomainModel, DomainModel.cluster_id == ClusterModel.id)
            .where(ClusterModel.id == cluster_id)
            .limit(1)
        )

        async def work(session: AsyncSession) -> Cluster:
            row = (await session.execute(stmt)).first()
            if row is None:
                raise ClusterNotFoundError(cluster_id)
            return self._to_cluster(row[0], row[1])

        return await self._read("select", ClusterModel.__tablename__, work)

    async def load_clusters(self) -> list[ClusterProvider]:
        """Load every stored cluster of every registered provider variant."""

        async def work(session: AsyncSession) -> list[ClusterProvider]:
            providers: list[ClusterProvider] = []
            for variant in registered_variants().values():
                table = variant.table
                stmt = (
                    select(ClusterModel, table, DomainModel)
                    .join(table, table.cluster_id == ClusterModel.id)
                    .outerjoin(DomainModel, DomainModel.cluster_id == ClusterModel.id)
                    .where(ClusterModel.type == variant.provider_type.value)
                    .order_by(ClusterModel.created_at, ClusterModel.id)
                )
                for cluster_row, provider_row, domain_row in (await session.execute(stmt)).all():
                    cluster = self._to_cluster(cluster_row, domain_row)
                    providers.append(variant.from_models(cluster, provider_row))
            return providers

        return await self._read("select", ClusterModel.__tablename__, work)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _transaction(self, operation: str, table: str, work: Work) -> Any:
        async with self._lock.write():
            started = time.perf_counter()
            async with self.session_factory() as session:
                try:
                    result = await work(session)
                    await session.commit()
                except SQLAlchemyError as e:
                    await self._rollback(session, operation, table)
                    raise StorageError(f"{operation} on {table} failed: {e}") from e
                except Exception:
                    await self._rollback(session, operation, table)
                    raise
            log_database_query(
                self.logger, operation, table, (time.perf_counter() - started) * 1000
            )
            return result

    async def _read(self, operation: str, table: str, work: Work) -> Any:
        async with self._lock.read():
            started = time.perf_counter()
            async with self.session_factory() as session:
                try:
                    result = await work(session)
                except SQLAlchemyError as e:
                    raise StorageError(f"{operation} on {table} failed: {e}") from e
            log_database_query(
                self.logger, operation, table, (time.perf_counter() - started) * 1000
            )
            return result

    async def _rollback(self, session: AsyncSession, operation: str, table: str) -> None:
        try:
            await session.rollback()
        except SQLAlchemyError as rollback_error:
            self.logger.error(
                "Rollback failed",
                db_operation=operation,
                db_table=table,
                error=str(rollback_error),
            )

    @staticmethod
    async def _add(session: AsyncSession, row: Base) -> None:
        session.add(row)
        await session.flush()

    @staticmethod
    def _domain_row(cluster_id: str, domain: Domain) -> DomainModel:
        return DomainModel(cluster_id=cluster_id, name=domain.name, token=domain.token)

    @staticmethod
    def _to_cluster(row: ClusterModel, domain_row: DomainModel | None) -> Cluster:
        cluster = Cluster.model_validate(row)
        if domain_row is not None:
            cluster.domain = Domain.model_validate(domain_row)
        return cluster
