__all__ = [
    "scheduler",
]

import apscheduler.schedulers.asyncio


scheduler = apscheduler.schedulers.asyncio.AsyncIOScheduler(
    job_defaults={"coalesce": True, "max_instances": 1},
)
