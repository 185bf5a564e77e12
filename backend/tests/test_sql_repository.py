from datetime import timedelta

import pytest

from smartqueue.config import Settings
from smartqueue.database import create_engine
from smartqueue.domain import EtaStats, QueueRecord, Ticket, TicketStatus
from smartqueue.exceptions import UpstreamUnavailable, ValidationError
from smartqueue.repositories import InMemoryRepository, SqlRepository, build_repository
from smartqueue.services.queue_orchestrator import QueueOrchestrator

from conftest import TUESDAY_1030


@pytest.fixture
async def sql_repository(tmp_path):
    engine = create_engine(f"sqlite+aiosqlite:///{tmp_path / 'queues.db'}")
    repository = SqlRepository(engine)
    await repository.start()
    yield repository
    await repository.close()


def make_ticket(ticket_id, queue_id="Q1", status=TicketStatus.WAITING, offset=0):
    return Ticket(
        ticket_id=ticket_id,
        queue_id=queue_id,
        holder=f"{ticket_id}@example.com",
        joined_at=TUESDAY_1030 + timedelta(seconds=offset),
        status=status,
        position=offset + 1,
        status_changed_at=TUESDAY_1030,
    )


async def test_queue_round_trip(sql_repository):
    queue = QueueRecord(
        queue_id="Q1",
        name="Front Desk",
        max_capacity=10,
        open_slots=7,
        service_rate_ema=1.5,
        created_at=TUESDAY_1030,
        updated_at=TUESDAY_1030,
    )
    await sql_repository.save_queue(queue)

    loaded = await sql_repository.load_queue("Q1")

    assert loaded == queue
    assert loaded.created_at.tzinfo is not None


async def test_save_queue_overwrites(sql_repository):
    queue = QueueRecord(queue_id="Q1", name="Front Desk", max_capacity=10, open_slots=10)
    await sql_repository.save_queue(queue)
    queue.open_slots = 4
    await sql_repository.save_queue(queue)

    assert (await sql_repository.load_queue("Q1")).open_slots == 4
    assert [q.queue_id for q in await sql_repository.list_queues()] == ["Q1"]


async def test_delete_queue_keeps_tickets(sql_repository):
    await sql_repository.save_queue(QueueRecord(queue_id="Q1", name="x", max_capacity=1, open_slots=1))
    await sql_repository.save_ticket(make_ticket("t1", status=TicketStatus.SERVED))

    await sql_repository.delete_queue("Q1")

    assert await sql_repository.load_queue("Q1") is None
    assert (await sql_repository.load_ticket("t1")).status == TicketStatus.SERVED


async def test_missing_records(sql_repository):
    assert await sql_repository.load_queue("nope") is None
    assert await sql_repository.load_ticket("nope") is None
    assert await sql_repository.load_stats("nope", "2024-05-14T10") is None


async def test_ticket_round_trip(sql_repository):
    ticket = make_ticket("t1")
    ticket.last_notified_at = TUESDAY_1030
    ticket.notification_count = 1
    ticket.last_eta_minutes = 8
    await sql_repository.save_ticket(ticket)

    loaded = await sql_repository.load_ticket("t1")

    assert loaded == ticket
    assert loaded.joined_at.tzinfo is not None


async def test_list_waiting_filters_status_and_queue(sql_repository):
    await sql_repository.save_change(
        [
            make_ticket("waiting", offset=0),
            make_ticket("notified", status=TicketStatus.NOTIFIED, offset=1),
            make_ticket("served", status=TicketStatus.SERVED, offset=2),
            make_ticket("cancelled", status=TicketStatus.CANCELLED, offset=3),
            make_ticket("other", queue_id="Q2", offset=4),
        ],
        None,
    )

    waiting = await sql_repository.list_waiting_tickets("Q1")

    assert sorted(t.ticket_id for t in waiting) == ["notified", "waiting"]


async def test_stats_keyed_by_queue_and_window(sql_repository):
    ten = EtaStats(
        queue_id="Q1",
        window_key="2024-05-14T10",
        window_start=TUESDAY_1030.replace(minute=0),
        ema_service_rate=2.0,
        served_count=4,
        updated_at=TUESDAY_1030,
    )
    eleven = EtaStats(
        queue_id="Q1",
        window_key="2024-05-14T11",
        window_start=TUESDAY_1030.replace(hour=11, minute=0),
        ema_service_rate=3.0,
        served_count=1,
        updated_at=TUESDAY_1030,
    )
    await sql_repository.save_stats(ten)
    await sql_repository.save_stats(eleven)

    ten.served_count = 5
    await sql_repository.save_stats(ten)

    assert await sql_repository.load_stats("Q1", "2024-05-14T10") == ten
    assert (await sql_repository.load_stats("Q1", "2024-05-14T11")).ema_service_rate == 3.0
    assert await sql_repository.load_stats("Q2", "2024-05-14T10") is None


async def test_orchestrator_over_sql(sql_repository, settings, clock):
    orchestrator = QueueOrchestrator.from_settings(sql_repository, settings, clock=clock)
    await orchestrator.create_queue("Q1", "Front Desk", max_capacity=5)
    first = await orchestrator.join_queue("Q1", "alice")
    second = await orchestrator.join_queue("Q1", "bob")
    await orchestrator.process_next("Q1", 1)

    restarted = QueueOrchestrator.from_settings(sql_repository, settings, clock=clock)

    status = await restarted.get_status("Q1", second.ticket_id)
    assert status.position == 1
    assert (await restarted.get_status("Q1", first.ticket_id)).status == TicketStatus.SERVED
    assert (await restarted.get_queue("Q1")).open_slots == 4
    assert (await restarted.latest_stats("Q1")).ema_service_rate == pytest.approx(1.0)


def test_build_repository_from_settings(tmp_path):
    memory = build_repository(Settings(_env_file=None, storage_backend="memory"))
    assert isinstance(memory, InMemoryRepository)

    sql = build_repository(
        Settings(
            _env_file=None,
            storage_backend="sql",
            database_url=f"sqlite:///{tmp_path / 'queues.db'}",
        )
    )
    assert isinstance(sql, SqlRepository)
    assert sql.engine.url.drivername == "sqlite+aiosqlite"

    with pytest.raises(ValidationError):
        build_repository(Settings(_env_file=None, storage_backend="redis"))


def test_async_database_url():
    settings = Settings(_env_file=None, database_url="postgresql://db:5432/queues")
    assert settings.async_database_url == "postgresql+asyncpg://db:5432/queues"


async def test_save_change_is_all_or_nothing(sql_repository):
    queue = QueueRecord(queue_id="Q1", name="Front Desk", max_capacity=10, open_slots=10)
    await sql_repository.save_queue(queue)
    broken = make_ticket("t2", offset=1)
    broken.holder = None
    queue.open_slots = 8

    with pytest.raises(UpstreamUnavailable):
        await sql_repository.save_change([make_ticket("t1"), broken], queue)

    assert await sql_repository.load_ticket("t1") is None
    assert (await sql_repository.load_queue("Q1")).open_slots == 10


async def test_save_change_stores_tickets_and_queue(sql_repository):
    queue = QueueRecord(queue_id="Q1", name="Front Desk", max_capacity=10, open_slots=9)

    await sql_repository.save_change([make_ticket("t1")], queue)

    assert (await sql_repository.load_ticket("t1")).holder == "t1@example.com"
    assert (await sql_repository.load_queue("Q1")).open_slots == 9
