"""
Seed the configured store with demo queues.

Run with: python -m scripts.seed_data
"""

import asyncio

from smartqueue.config import get_settings
from smartqueue.exceptions import QueueExists
from smartqueue.repositories import build_repository
from smartqueue.services.queue_orchestrator import QueueOrchestrator

# Demo queues
DEMO_QUEUES = [
    {
        "queue_id": "pharmacy",
        "name": "Pharmacy Counter",
        "max_capacity": 50,
    },
    {
        "queue_id": "service-desk",
        "name": "Customer Service Desk",
        "max_capacity": 100,
    },
    {
        "queue_id": "returns",
        "name": "Returns",
        "max_capacity": 30,
        "is_active": False,  # opens later in the day
    },
]

# A few customers so ETAs have something to show
DEMO_HOLDERS = ["alice@example.com", "bob@example.com", "carol@example.com"]


async def seed_queues(orchestrator: QueueOrchestrator) -> None:
    print("\nQueues:")
    for queue_data in DEMO_QUEUES:
        try:
            await orchestrator.create_queue(**queue_data)
            print(f"  + Created: {queue_data['name']}")
        except QueueExists:
            print(f"  ✓ {queue_data['name']} exists")

    print("\nCustomers:")
    for holder in DEMO_HOLDERS:
        result = await orchestrator.join_queue("service-desk", holder)
        print(f"  + {holder} -> position {result.position}")

    # One report of 2 customers/minute to seed the service rate
    stats = await orchestrator.update_served_stats("service-desk", 2, 60)
    print(f"\nService rate for service-desk: {stats.ema_service_rate:.2f}/min")


async def main():
    """Main entry point."""
    settings = get_settings()
    print("=" * 50)
    print(f"Seeding {settings.app_name} ({settings.storage_backend} storage)")
    print("=" * 50)

    repository = build_repository(settings)
    print("\nInitializing store...")
    await repository.start()

    orchestrator = QueueOrchestrator.from_settings(repository, settings)
    try:
        await seed_queues(orchestrator)
    finally:
        await orchestrator.close()
        await repository.close()

    print("\n✓ Seed data complete!")


if __name__ == "__main__":
    asyncio.run(main())
