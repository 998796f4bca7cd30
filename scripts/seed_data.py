"""
Seed script to create sample workers, jobs, break types and settings.
Run with: python -m scripts.seed_data
"""
import asyncio
import sys
from pathlib import Path

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from fieldtracker.core.config import settings
from fieldtracker.core.database import get_async_url
from fieldtracker.core.security import get_pin_hash
from fieldtracker.models import BreakType, Job, SystemSetting, Worker


async def seed_data():
    """Seed the database with sample data."""
    engine = create_async_engine(get_async_url(settings.DATABASE_URL), echo=False)
    AsyncSessionLocal = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async with AsyncSessionLocal() as db:
        result = await db.execute(select(Worker).where(Worker.employee_id == "W001"))
        if result.scalar_one_or_none():
            print("Demo workers already exist. Skipping seed.")
            await engine.dispose()
            return

        workers_data = [
            {"employee_id": "W001", "name": "John Doe", "pin": "1234"},
            {"employee_id": "W002", "name": "Jane Smith", "pin": "5678"},
            {"employee_id": "W003", "name": "Bob Johnson", "pin": "9012"},
        ]
        for worker_data in workers_data:
            db.add(Worker(
                employee_id=worker_data["employee_id"],
                name=worker_data["name"],
                pin_hash=get_pin_hash(worker_data["pin"]),
                is_active=True,
            ))

        db.add_all([
            Job(job_code="J-100", name="Warehouse Renovation", description="Interior framing and drywall", tags=["interior"]),
            Job(job_code="J-200", name="Riverside Fence", description="Perimeter fencing", tags=["exterior", "fencing"]),
            Job(job_code="J-300", name="Roof Repair", tags=["exterior"]),
        ])

        db.add_all([
            BreakType(name="Lunch", is_paid=False, default_minutes=30),
            BreakType(name="Rest", is_paid=True, default_minutes=15),
        ])

        db.add_all([
            SystemSetting(key="overtime_threshold_hours", value=settings.OVERTIME_THRESHOLD_HOURS),
            SystemSetting(key="company_name", value="Demo Field Services"),
        ])

        await db.commit()
        print("Seed data created successfully!")
        print("\nWorkers:")
        for worker_data in workers_data:
            print(f"  {worker_data['employee_id']} (PIN: {worker_data['pin']})")

    await engine.dispose()


if __name__ == "__main__":
    asyncio.run(seed_data())
