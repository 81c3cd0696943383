import pytest

from freightledger import Actor, Config, FreightLedger, JobDetails, Location
from freightledger.notifications.dispatcher import Notifier
from freightledger.storage.memory import InMemoryStorage

CLIENT_ID = "client-1"
TRANSPORTER_ID = "transporter-1"


class RecordingNotifier(Notifier):
    """Collects every delivered event."""

    def __init__(self) -> None:
        self.events = []

    async def notify(self, event) -> None:
        self.events.append(event)

    def types(self) -> list[str]:
        return [e.type.value for e in self.events]


@pytest.fixture
def config():
    """Fast lock polling so contention tests finish quickly."""
    return Config(
        store_timeout=1.0,
        lock_retry_count=400,
        lock_retry_delay=0.005,
        log_level="WARNING",
    )


@pytest.fixture
def storage():
    return InMemoryStorage()


@pytest.fixture
def recorder():
    return RecordingNotifier()


@pytest.fixture
def ledger(config, storage, recorder):
    return FreightLedger(config=config, storage=storage, notifiers=[recorder])


@pytest.fixture
def details():
    return JobDetails(
        pickup_location=Location(-1.2921, 36.8219, "Nairobi"),
        dropoff_location=Location(-4.0435, 39.6682, "Mombasa"),
        description="20 bags of maize",
        vehicle_type_id=2,
        distance=480.0,
    )


@pytest.fixture
def client_actor():
    return Actor.client(CLIENT_ID)


@pytest.fixture
def transporter_actor():
    return Actor.transporter(TRANSPORTER_ID)


async def funded_job(ledger, details, amount=50_000, balance=None):
    """Deposit ``balance`` for the client and create a draft job."""
    await ledger.wallets.deposit(CLIENT_ID, balance if balance is not None else amount, "mobile money")
    return await ledger.jobs.create_job(CLIENT_ID, details)


async def delivered_job(ledger, details, amount=50_000):
    """A published job carried all the way to ``delivered`` by the transporter."""
    transporter = Actor.transporter(TRANSPORTER_ID)
    job = await funded_job(ledger, details, amount)
    await ledger.jobs.publish(job.id, amount)
    for status in ("accepted", "picked_up", "in_transit", "delivered"):
        await ledger.jobs.advance_status(job.id, status, transporter)
    return job
