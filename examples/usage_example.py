"""
Messaging automation engine usage example
"""
import asyncio
import logging
from datetime import timedelta

from automation_engine import WorkflowCatalog, WorkflowEngine
from automation_engine.config import LOG_FORMAT
from automation_engine.integrations import RecordingMessageDispatcher
from automation_engine.models import utc_now
from automation_engine.storage import InMemoryRunStore


logging.basicConfig(level=logging.INFO, format=LOG_FORMAT)


class SimulatedClock:
    """Wall clock that can be pushed forward"""

    def __init__(self):
        self.offset = timedelta()

    def __call__(self):
        return utc_now() + self.offset

    def advance(self, **kwargs):
        self.offset += timedelta(**kwargs)


async def setup_engine(clock: SimulatedClock):
    """Engine with the bundled workflows, an in-memory store and a recording transport"""
    return WorkflowEngine(
        catalog=WorkflowCatalog.default(),
        store=InMemoryRunStore(),
        message_dispatcher=RecordingMessageDispatcher(),
        clock=clock,
    )


async def example_welcome_sequence(engine: WorkflowEngine, clock: SimulatedClock):
    """Greeting now, follow-up two hours later"""
    print("\n=== Welcome sequence ===")

    result = await engine.trigger_webhook("welcome", {
        "contact": {"phone": "910000000021", "name": "John"}
    })
    run = await engine.get_run(result.run_id)
    print(f"Run {run.run_id}: {run.status.value}, wakes at {run.wake_at.isoformat()}")

    clock.advance(hours=2)
    resumed = await engine.sweep()
    print(f"Resumed {len(resumed)} run(s)")

    run = await engine.get_run(result.run_id)
    print(f"Run {run.run_id}: {run.status.value}")
    for entry in run.history:
        print(f"  {entry['at']}  {entry['node']}")


async def example_lead_nurturing(engine: WorkflowEngine):
    """Branching on the lead score"""
    print("\n=== Lead nurturing ===")

    for score in (75, 10):
        result = await engine.trigger("lead_nurturing", {
            "lead": {"score": score},
            "contact": {"phone": "15550001"}
        })
        branch = result.run.outputs["Check Lead Score"]["port"]
        print(f"Score {score}: took the '{branch}' branch, run {result.status.value}")


async def main():
    clock = SimulatedClock()
    engine = await setup_engine(clock)

    try:
        await example_welcome_sequence(engine, clock)
        await example_lead_nurturing(engine)

        print("\n=== Sent messages ===")
        for message in engine.message_dispatcher.sent:
            print(f"[{message.channel}] {message.recipient}: {message.body}")
    finally:
        await engine.close()


if __name__ == "__main__":
    asyncio.run(main())
