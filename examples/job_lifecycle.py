"""
Example: Job lifecycle with escrow

Demonstrates a client funding a job, a transporter delivering it, and the
escrow paying out on completion.
"""

import asyncio

from freightledger import (
    Actor,
    FreightLedger,
    JobDetails,
    Location,
)


async def main():
    """
    Lifecycle example showing:
    1. Wallet top-up
    2. Publishing a job (funds move into escrow)
    3. Transporter progress and location tracking
    4. Completion (escrow released) and the audit trail
    """
    print("=== FreightLedger Job Lifecycle Example ===\n")

    ledger = FreightLedger()
    client = Actor.client("client-42")
    transporter = Actor.transporter("truck-7")

    # ========================================
    # Fund the client's wallet
    # ========================================
    print("--- Top-up ---")
    result = await ledger.deposit(client.user_id, 50_000, "mobile money")
    print(f"  Deposit ok: {result.ok}")

    # ========================================
    # Create and publish a job
    # ========================================
    print("\n--- Publish ---")
    details = JobDetails(
        pickup_location=Location(-1.2921, 36.8219, "Nairobi"),
        dropoff_location=Location(-4.0435, 39.6682, "Mombasa"),
        description="20 bags of maize",
        distance=480.0,
    )
    job = (await ledger.create_job(client.user_id, details)).unwrap()
    published = await ledger.publish(job.id, 45_000)
    print(f"  Job {job.id}: {published.value.status.value}")

    wallet = (await ledger.get_wallet(client.user_id)).unwrap()
    print(f"  Client balance after escrow: {wallet.balance}")

    # A second publish of the same job is a safe replay
    replay = await ledger.publish(job.id, 45_000)
    print(f"  Replayed publish ok: {replay.ok}")

    # ========================================
    # Transporter moves the load
    # ========================================
    print("\n--- Delivery ---")
    await ledger.advance_status(job.id, "accepted", transporter)
    await ledger.advance_status(job.id, "picked_up", transporter)
    await ledger.record_location(job.id, Location(-2.2717, 37.8280, "Kibwezi"), transporter)
    await ledger.advance_status(job.id, "in_transit", transporter)
    await ledger.advance_status(job.id, "delivered", transporter)

    # The client cannot cancel once delivered
    blocked = await ledger.advance_status(job.id, "cancelled", client)
    print(f"  Cancel after delivery: {blocked.kind.value}")

    completed = await ledger.advance_status(job.id, "completed", client)
    print(f"  Job {job.id}: {completed.value.status.value}")

    # ========================================
    # Audit trail
    # ========================================
    print("\n--- Payments ---")
    for user in (client.user_id, transporter.user_id):
        payments = (await ledger.list_payments(user)).unwrap()
        for payment in payments:
            print(f"  {user}: {payment.amount:+d} {payment.type.value} - {payment.description}")

    escrow = (await ledger.get_escrow(job.id)).unwrap()
    print(f"\n  Escrow {escrow.id}: {escrow.status.value}")

    await ledger.close()


if __name__ == "__main__":
    asyncio.run(main())
