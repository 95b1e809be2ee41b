"""Event store for tracking workflow run events"""
import asyncio
from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional


class EventType(Enum):
    RUN_STARTED = "run_started"
    NODE_STARTED = "node_started"
    NODE_COMPLETED = "node_completed"
    ROUTED = "routed"
    RUN_COMPLETED = "run_completed"
    RUN_ABORTED = "run_aborted"
    RUN_CANCELLED = "run_cancelled"


@dataclass
class Event:
    """Represents a run event"""
    event_type: EventType
    run_id: str
    workflow: str
    timestamp: datetime = field(default_factory=datetime.utcnow)
    node: Optional[str] = None
    target: Optional[str] = None
    step: Optional[int] = None
    latency_ms: Optional[float] = None
    metadata: Optional[Dict[str, Any]] = None

    def to_dict(self):
        """Convert event to dictionary"""
        data = asdict(self)
        data['event_type'] = self.event_type.value
        data['timestamp'] = self.timestamp.isoformat()
        return data


class EventStore:
    """Stores run events and fans them out to subscribers"""

    def __init__(self, max_events: int = 1000):
        self.max_events = max_events
        self.events: List[Event] = []
        self.lock = asyncio.Lock()
        self.subscribers: List[asyncio.Queue] = []

    async def add_event(self, event: Event):
        """Add an event to the store"""
        async with self.lock:
            self.events.append(event)

            # Keep only last max_events
            if len(self.events) > self.max_events:
                self.events = self.events[-self.max_events:]

            for queue in self.subscribers:
                queue.put_nowait(event)

    async def get_events(
        self,
        run_id: Optional[str] = None,
        event_type: Optional[EventType] = None,
        node: Optional[str] = None,
        limit: int = 100
    ) -> List[Event]:
        """Get events with optional filtering"""
        async with self.lock:
            filtered = self.events

            if run_id:
                filtered = [e for e in filtered if e.run_id == run_id]

            if event_type:
                filtered = [e for e in filtered if e.event_type == event_type]

            if node:
                filtered = [e for e in filtered if e.node == node]

            return filtered[-limit:]

    async def get_route_events(self, run_id: str) -> List[Event]:
        """Get the routing decisions of one run, in order"""
        return await self.get_events(run_id=run_id, event_type=EventType.ROUTED, limit=self.max_events)

    async def subscribe(self) -> asyncio.Queue:
        """Subscribe to new events"""
        queue = asyncio.Queue()
        self.subscribers.append(queue)
        return queue

    async def unsubscribe(self, queue: asyncio.Queue):
        async with self.lock:
            if queue in self.subscribers:
                self.subscribers.remove(queue)

    async def get_stats(self) -> Dict:
        """Get event statistics"""
        async with self.lock:
            stats = {
                'total_events': len(self.events),
                'runs': len({e.run_id for e in self.events}),
                'by_type': {}
            }

            for event_type in EventType:
                stats['by_type'][event_type.value] = len([
                    e for e in self.events if e.event_type == event_type
                ])

            return stats
