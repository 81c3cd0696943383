"""
Job Lifecycle Manager.

Owns the job status state machine:

    draft -> pending -> accepted -> picked_up -> in_transit -> delivered -> completed
      \\________\\__________\\___________\\____________\\-> cancelled

Publishing holds the client's funds in escrow; completing releases them to
the transporter; cancelling refunds them. Each of these status writes shares
one atomic scope with its escrow transition, so a job can never be
``completed`` with its escrow still held, or ``pending`` without funds.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from freightledger.core.exceptions import (
    IllegalTransitionError,
    InvalidStateError,
    NotAuthorizedError,
    NotFoundError,
    ValidationError,
)
from freightledger.core.types import (
    REACHABLE_STATUSES,
    TRACKABLE_STATUSES,
    Actor,
    EscrowStatus,
    Job,
    JobDetails,
    JobStatus,
    Location,
    TrackingRecord,
    UserRole,
    escrow_id_for,
    require_amount,
    utc_now,
)
from freightledger.notifications.events import EventType, LedgerEvent
from freightledger.store.ledger_store import ESCROWS, JOBS, TRACKING_RECORDS
from freightledger.store.lock import escrow_lock, job_lock, wallet_lock

if TYPE_CHECKING:
    from freightledger.ledger.escrow import EscrowManager
    from freightledger.notifications.dispatcher import EventDispatcher
    from freightledger.store.transaction import TransactionCoordinator, UnitOfWork

logger = logging.getLogger(__name__)

# Transitions only the assigned transporter may perform
TRANSPORTER_TRANSITIONS = frozenset({JobStatus.PICKED_UP, JobStatus.IN_TRANSIT, JobStatus.DELIVERED})


class JobLifecycleManager:
    """Service for creating jobs and moving them through their lifecycle."""

    def __init__(
        self,
        coordinator: TransactionCoordinator,
        escrows: EscrowManager,
        dispatcher: EventDispatcher,
    ) -> None:
        self._coordinator = coordinator
        self._escrows = escrows
        self._dispatcher = dispatcher

    async def _load(self, uow: UnitOfWork, job_id: str) -> Job:
        data = await uow.get(JOBS, job_id)
        if data is None:
            raise NotFoundError(f"Job not found: {job_id}", collection=JOBS, key=job_id)
        return Job.from_dict(data)

    def _save(self, uow: UnitOfWork, job: Job) -> None:
        job.updated_at = utc_now()
        uow.put(JOBS, job.id, job.to_dict())

    def _announce(self, uow: UnitOfWork, event_type: EventType, job: Job, **extra: object) -> None:
        users = tuple(u for u in (job.client_id, job.transporter_id) if u)
        data = {**job.to_dict(), **extra}
        uow.after_commit(
            lambda: self._dispatcher.emit(LedgerEvent(type=event_type, data=data, user_ids=users))
        )

    @staticmethod
    def _require_client(job: Job, actor: Actor, action: str) -> None:
        if actor.user_id != job.client_id and not actor.is_admin:
            raise NotAuthorizedError(
                f"Only the client of job {job.id} may {action}", actor_id=actor.user_id
            )

    @staticmethod
    def _check_transition_actor(job: Job, target: JobStatus, actor: Actor) -> None:
        """Raise NotAuthorizedError unless ``actor`` may move ``job`` to ``target``."""
        is_client = actor.user_id == job.client_id
        is_transporter = job.transporter_id is not None and actor.user_id == job.transporter_id

        if target == JobStatus.ACCEPTED:
            allowed = actor.role == UserRole.TRANSPORTER and (
                job.transporter_id is None or is_transporter
            )
        elif target in TRANSPORTER_TRANSITIONS:
            allowed = is_transporter
        elif target == JobStatus.COMPLETED:
            allowed = is_transporter or is_client
        elif target == JobStatus.CANCELLED:
            allowed = is_client or actor.is_admin
        else:
            allowed = is_client

        if not allowed:
            raise NotAuthorizedError(
                f"{actor.role.value} {actor.user_id} may not move job {job.id} to {target.value}",
                actor_id=actor.user_id,
            )

    async def create_job(self, client_id: str, details: JobDetails) -> Job:
        """
        Create a draft job. No funds move.

        Raises:
            ValidationError: If a location is missing
        """
        if not client_id:
            raise ValidationError("client_id is required")
        if details.pickup_location is None or details.dropoff_location is None:
            raise ValidationError("Pickup and dropoff locations are required")

        job = Job(
            client_id=client_id,
            pickup_location=details.pickup_location,
            dropoff_location=details.dropoff_location,
        )
        job.apply_details(details)

        async with self._coordinator.scope(job_lock(job.id)) as tx:
            tx.insert(JOBS, job.id, job.to_dict())
            self._announce(tx, EventType.JOB_CREATED, job)

        logger.info(f"Created draft job {job.id} for client {client_id}")
        return job

    async def publish(self, job_id: str, amount: int, actor: Actor | None = None) -> Job:
        """
        Fund a draft job and open it to transporters.

        Holds ``amount`` from the client's wallet and moves the job to
        ``pending`` with ``price = amount`` in one atomic scope. Resending the
        same request after success returns the published job unchanged.

        Raises:
            NotFoundError: If the job does not exist
            NotAuthorizedError: If ``actor`` is given and is not the client
            IllegalTransitionError: If the job is no longer a draft
            InsufficientFundsError: If the client cannot cover amount
        """
        require_amount(amount)

        async with self._coordinator.scope(job_lock(job_id), escrow_lock(job_id)) as tx:
            job = await self._load(tx, job_id)
            if actor is not None:
                self._require_client(job, actor, "publish it")

            if job.status == JobStatus.PENDING and job.price == amount:
                escrow = await tx.get(ESCROWS, escrow_id_for(job_id))
                if escrow and escrow["status"] == EscrowStatus.HELD.value:
                    logger.info(f"Job {job_id} already published with {amount}; replaying result")
                    return job

            if not job.status.can_transition_to(JobStatus.PENDING):
                raise IllegalTransitionError(
                    f"Job {job_id} cannot be published",
                    job_id=job_id,
                    current=job.status.value,
                    target=JobStatus.PENDING.value,
                )

            async with self._coordinator.scope(wallet_lock(job.client_id), uow=tx):
                await self._escrows.hold(job_id, job.client_id, amount, uow=tx)

            previous = job.status
            job.status = JobStatus.PENDING
            job.price = amount
            self._save(tx, job)
            self._announce(tx, EventType.JOB_STATUS_CHANGED, job, previous_status=previous.value)

        logger.info(f"Published job {job_id} with escrow of {amount}")
        return job

    async def advance_status(self, job_id: str, target: JobStatus | str, actor: Actor) -> Job:
        """
        Move a job to ``target``.

        ``completed`` releases the escrow to the transporter and ``cancelled``
        refunds a held escrow to the client, atomically with the status write.
        Resending a request whose transition already happened returns the
        current job without moving funds again.

        Raises:
            ValidationError: If target is not a known status
            NotFoundError: If the job does not exist
            IllegalTransitionError: If target is not reachable from the current status
            NotAuthorizedError: If actor may not perform this transition
            InvalidStateError: If target is ``pending`` (use publish)
        """
        target = JobStatus.parse(target)

        async with self._coordinator.scope(job_lock(job_id), escrow_lock(job_id)) as tx:
            job = await self._load(tx, job_id)

            if job.status == target and target in REACHABLE_STATUSES:
                self._check_transition_actor(job, target, actor)
                logger.info(f"Job {job_id} already {target.value}; replaying result")
                return job

            if not job.status.can_transition_to(target):
                raise IllegalTransitionError(
                    f"Job {job_id} cannot move to {target.value}",
                    job_id=job_id,
                    current=job.status.value,
                    target=target.value,
                )
            if target == JobStatus.PENDING:
                raise InvalidStateError(f"Job {job_id} must be published with funds to become pending")

            self._check_transition_actor(job, target, actor)

            previous = job.status
            if target == JobStatus.ACCEPTED:
                job.transporter_id = actor.user_id
            elif target == JobStatus.PICKED_UP:
                job.start_time = utc_now()
            elif target == JobStatus.DELIVERED:
                job.end_time = utc_now()

            job.status = target
            self._save(tx, job)

            if target == JobStatus.COMPLETED:
                await self._escrows.release(job_id, uow=tx)
            elif target == JobStatus.CANCELLED:
                escrow = await tx.get(ESCROWS, escrow_id_for(job_id))
                if escrow and escrow["status"] == EscrowStatus.HELD.value:
                    await self._escrows.refund(job_id, uow=tx)

            self._announce(tx, EventType.JOB_STATUS_CHANGED, job, previous_status=previous.value)

        logger.info(f"Job {job_id}: {previous.value} -> {target.value} by {actor.user_id}")
        return job

    async def record_location(self, job_id: str, location: Location, actor: Actor) -> TrackingRecord:
        """
        Append a tracking breadcrumb and update the job's current location.

        Raises:
            NotFoundError: If the job does not exist
            NotAuthorizedError: If actor is not the assigned transporter
            InvalidStateError: If the job is not accepted, picked up or in transit
        """
        async with self._coordinator.scope(job_lock(job_id)) as tx:
            job = await self._load(tx, job_id)
            if job.transporter_id is None or actor.user_id != job.transporter_id:
                raise NotAuthorizedError(
                    f"Only the assigned transporter may report the location of job {job_id}",
                    actor_id=actor.user_id,
                )
            if job.status not in TRACKABLE_STATUSES:
                raise InvalidStateError(
                    f"Job {job_id} is {job.status.value}; location updates are not accepted"
                )

            record = TrackingRecord(job_id=job_id, location=location)
            tx.insert(TRACKING_RECORDS, record.id, record.to_dict())
            job.current_location = location
            self._save(tx, job)
            self._announce(tx, EventType.JOB_LOCATION_UPDATED, job)

        logger.debug(f"Recorded location for job {job_id}: {location.latitude},{location.longitude}")
        return record

    async def update_job(self, job_id: str, actor: Actor, details: JobDetails) -> Job:
        """
        Edit a draft job.

        Raises:
            NotAuthorizedError: If actor is not the client
            InvalidStateError: If the job is no longer a draft
        """
        async with self._coordinator.scope(job_lock(job_id)) as tx:
            job = await self._load(tx, job_id)
            self._require_client(job, actor, "edit it")
            if job.status != JobStatus.DRAFT:
                raise InvalidStateError(f"Job {job_id} is {job.status.value}; only drafts can be edited")

            job.apply_details(details)
            self._save(tx, job)

        return job

    async def delete_job(self, job_id: str, actor: Actor) -> None:
        """
        Delete a draft job.

        Raises:
            NotAuthorizedError: If actor is not the client
            InvalidStateError: If the job is no longer a draft
        """
        async with self._coordinator.scope(job_lock(job_id)) as tx:
            job = await self._load(tx, job_id)
            self._require_client(job, actor, "delete it")
            if job.status != JobStatus.DRAFT:
                raise InvalidStateError(
                    f"Job {job_id} is {job.status.value}; only drafts can be deleted"
                )
            tx.delete(JOBS, job_id)

        logger.info(f"Deleted draft job {job_id}")

    async def rate_job(
        self,
        job_id: str,
        actor: Actor,
        rating: int,
        feedback: str | None = None,
    ) -> Job:
        """
        Rate the transporter of a completed job (1-5).

        Raises:
            ValidationError: If rating is out of range
            NotAuthorizedError: If actor is not the client
            InvalidStateError: If the job is not completed
        """
        if isinstance(rating, bool) or not isinstance(rating, int) or not 1 <= rating <= 5:
            raise ValidationError(f"Rating must be an integer from 1 to 5, got {rating!r}")

        async with self._coordinator.scope(job_lock(job_id)) as tx:
            job = await self._load(tx, job_id)
            if actor.user_id != job.client_id:
                raise NotAuthorizedError(
                    f"Only the client of job {job_id} may rate it", actor_id=actor.user_id
                )
            if job.status != JobStatus.COMPLETED:
                raise InvalidStateError(f"Job {job_id} is {job.status.value}; only completed jobs can be rated")

            job.rating = rating
            job.feedback = feedback
            self._save(tx, job)

        return job

    async def get_job(self, job_id: str) -> Job:
        """
        Read a job.

        Raises:
            NotFoundError: If the job does not exist
        """
        data = await self._coordinator.store.get(JOBS, job_id)
        if data is None:
            raise NotFoundError(f"Job not found: {job_id}", collection=JOBS, key=job_id)
        return Job.from_dict(data)

    async def list_jobs(
        self,
        user_id: str,
        role: UserRole | str,
        status_filter: JobStatus | str | None = None,
    ) -> list[Job]:
        """
        Jobs visible to a user, newest first.

        Clients see their own jobs. Transporters see jobs assigned to them
        plus every open (pending) job. Admin and finance see all jobs.
        """
        try:
            role = UserRole(role)
        except ValueError:
            raise ValidationError(f"Unknown role: {role}") from None
        status = JobStatus.parse(status_filter) if status_filter is not None else None
        store = self._coordinator.store

        base: dict[str, object] = {"status": status.value} if status else {}

        if role == UserRole.CLIENT:
            records = await store.query(JOBS, filters={**base, "client_id": user_id})
        elif role == UserRole.TRANSPORTER:
            records = await store.query(JOBS, filters={**base, "transporter_id": user_id})
            if status is None or status == JobStatus.PENDING:
                open_jobs = await store.query(
                    JOBS, filters={"status": JobStatus.PENDING.value, "transporter_id": None}
                )
                seen = {r["id"] for r in records}
                records.extend(r for r in open_jobs if r["id"] not in seen)
        else:
            records = await store.query(JOBS, filters=base or None)

        jobs = [Job.from_dict(r) for r in records]
        jobs.sort(key=lambda j: j.created_at, reverse=True)
        return jobs

    async def list_tracking(self, job_id: str) -> list[TrackingRecord]:
        """Breadcrumbs of a job, oldest first."""
        records = await self._coordinator.store.query(
            TRACKING_RECORDS, filters={"job_id": job_id}, order_by="timestamp"
        )
        return [TrackingRecord.from_dict(r) for r in records]
