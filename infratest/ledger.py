"""SQLite ledger of provisioning runs.

Every run is recorded before the tool touches the cloud and updated as it moves
through init, plan and teardown, so runs whose teardown never completed can be
found and destroyed later.
"""

from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Optional

from sqlalchemy import (
    DateTime,
    Enum,
    Integer,
    String,
    Text,
    create_engine,
)
from sqlalchemy.engine import make_url
from sqlalchemy.orm import (
    DeclarativeBase,
    Mapped,
    Session,
    mapped_column,
    sessionmaker,
)

from infratest.errors import RunNotFoundError
from infratest.models import Backend, ProvisionOptions, RunStatus


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Base(DeclarativeBase):
    """Base class for SQLAlchemy models."""

    pass


class ProvisionRunRecord(Base):
    """Database model for provisioning runs."""

    __tablename__ = "provision_runs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    run_id: Mapped[str] = mapped_column(String(100), nullable=False, unique=True, index=True)
    backend: Mapped[Backend] = mapped_column(Enum(Backend), nullable=False)
    working_dir: Mapped[str] = mapped_column(String(500), nullable=False)
    options: Mapped[str] = mapped_column(Text, nullable=False)  # JSON string
    status: Mapped[RunStatus] = mapped_column(
        Enum(RunStatus), nullable=False, default=RunStatus.PENDING, index=True
    )
    outputs: Mapped[Optional[str]] = mapped_column(Text, nullable=True)  # JSON string
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=_utcnow, onupdate=_utcnow
    )

    def provision_options(self) -> ProvisionOptions:
        """Rebuild the options the run was started with."""
        return ProvisionOptions.model_validate_json(self.options)


class RunLedger:
    """Database connection and run bookkeeping."""

    def __init__(self, database_url: str = "sqlite:///./.infratest/runs.db"):
        """Initialize database connection.

        Args:
            database_url: SQLAlchemy database URL. Defaults to a local SQLite file.
        """
        url = make_url(database_url)
        if url.get_backend_name() == "sqlite" and url.database and url.database != ":memory:":
            Path(url.database).parent.mkdir(parents=True, exist_ok=True)

        self.engine = create_engine(database_url, echo=False)
        self.SessionLocal = sessionmaker(bind=self.engine)
        Base.metadata.create_all(self.engine)

    def get_session(self) -> Session:
        """Get a new database session."""
        return self.SessionLocal()

    def create_run(
        self,
        run_id: str,
        backend: Backend,
        options: ProvisionOptions,
    ) -> ProvisionRunRecord:
        """Record a new run.

        Args:
            run_id: Unique run identifier
            backend: Tool driving the run
            options: Options the run was started with

        Returns:
            Created run record

        Raises:
            ValueError: A run with the same id is already recorded
        """
        with self.get_session() as session:
            existing = session.query(ProvisionRunRecord).filter_by(run_id=run_id).first()
            if existing:
                raise ValueError(f"Run {run_id} already exists")

            record = ProvisionRunRecord(
                run_id=run_id,
                backend=backend,
                working_dir=str(options.working_dir),
                options=options.model_dump_json(),
                status=RunStatus.PENDING,
            )
            session.add(record)
            session.commit()
            session.refresh(record)
            return record

    def get_run(self, run_id: str) -> Optional[ProvisionRunRecord]:
        """Get a run by id, or None if it was never recorded."""
        with self.get_session() as session:
            return session.query(ProvisionRunRecord).filter_by(run_id=run_id).first()

    def update_status(
        self,
        run_id: str,
        status: RunStatus,
        outputs: Optional[str] = None,
        error_message: Optional[str] = None,
    ) -> ProvisionRunRecord:
        """Update run status.

        Args:
            run_id: Run identifier
            status: New run status
            outputs: JSON string of module outputs
            error_message: Error message if a step failed

        Returns:
            Updated run record

        Raises:
            RunNotFoundError: The run is not recorded
        """
        with self.get_session() as session:
            record = session.query(ProvisionRunRecord).filter_by(run_id=run_id).first()
            if not record:
                raise RunNotFoundError(run_id)

            record.status = status
            record.updated_at = _utcnow()

            if outputs:
                record.outputs = outputs
            if error_message:
                record.error_message = error_message

            session.commit()
            session.refresh(record)
            return record

    def list_runs(self, status: Optional[RunStatus] = None) -> list[ProvisionRunRecord]:
        """List recorded runs, oldest first, optionally filtered by status."""
        with self.get_session() as session:
            query = session.query(ProvisionRunRecord)
            if status is not None:
                query = query.filter_by(status=status)
            return list(query.order_by(ProvisionRunRecord.created_at, ProvisionRunRecord.id).all())

    def leaked_runs(self, older_than: Optional[timedelta] = None) -> list[ProvisionRunRecord]:
        """Runs whose teardown has not completed.

        Args:
            older_than: Only return runs not updated within this window, which
                keeps runs still in progress out of the result

        Returns:
            Run records, oldest first
        """
        with self.get_session() as session:
            query = session.query(ProvisionRunRecord).filter(
                ProvisionRunRecord.status != RunStatus.DESTROYED
            )
            if older_than is not None:
                query = query.filter(ProvisionRunRecord.updated_at <= _utcnow() - older_than)
            return list(query.order_by(ProvisionRunRecord.created_at, ProvisionRunRecord.id).all())

    def delete_run(self, run_id: str) -> bool:
        """Delete a run record.

        Returns:
            True if deleted, False if not found
        """
        with self.get_session() as session:
            record = session.query(ProvisionRunRecord).filter_by(run_id=run_id).first()
            if not record:
                return False
            session.delete(record)
            session.commit()
            return True
