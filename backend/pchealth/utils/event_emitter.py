from datetime import datetime, timezone
from pchealth.models.schemas import TaskEvent
from pchealth.utils.logger import get_logger

logger = get_logger(__name__)


class EventEmitter:
    """Emits progress events to an optional sink and stores them locally.

    The sink is fire-and-forget: a failing sink is logged and the event is
    still kept, so callers never see sink errors.
    """

    def __init__(self, session_id: str, sink=None):
        self.session_id = session_id
        self._sink = sink
        self._events: list[TaskEvent] = []

    async def emit(
        self,
        agent_name: str,
        event_type: str,
        message: str,
        details: dict | None = None,
    ) -> TaskEvent:
        """Emit a task event, forwarding it to the sink and storing it locally."""
        event = TaskEvent(
            timestamp=datetime.now(timezone.utc),
            agent_name=agent_name,
            event_type=event_type,
            message=message,
            details=details,
            session_id=self.session_id,
        )
        self._events.append(event)

        logger.debug("Event emitted", extra={"session_id": self.session_id, "agent_name": agent_name, "action": event_type, "extra": message})

        if self._sink:
            try:
                await self._sink(self.session_id, event.model_dump(mode="json"))
            except Exception as e:
                logger.warning("Progress sink failed (event stored locally)", extra={"session_id": self.session_id, "action": "sink_failed", "extra": str(e)})

        return event

    def get_all_events(self) -> list[TaskEvent]:
        """Return all stored events."""
        return list(self._events)

    def get_events_by_agent(self, agent_name: str) -> list[TaskEvent]:
        """Return events filtered by agent name."""
        return [e for e in self._events if e.agent_name == agent_name]
