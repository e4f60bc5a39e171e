"""
Session Registry for live exam connections.

Every socket gets its own queue; a writer task on the socket side drains it.
Services only ever put messages on queues, so a slow or dead client never
blocks a broadcast.
"""
import asyncio
import logging
import uuid
from typing import Dict, List, Set

logger = logging.getLogger(__name__)


class Connection:
    """One live socket belonging to a student."""

    def __init__(self, student_id: str):
        self.id = uuid.uuid4().hex
        self.student_id = student_id
        self.queue: asyncio.Queue = asyncio.Queue()
        self.exam_ids: Set[str] = set()

    def __repr__(self):
        return f"<Connection {self.id[:8]} student={self.student_id}>"


def make_message(event: str, data) -> dict:
    return {"event": event, "data": data}


class SessionRegistry:
    """Maps student ids to their live connections."""

    def __init__(self):
        # Map student_id -> list of connections (several tabs are fine)
        self.active_connections: Dict[str, List[Connection]] = {}

    def register(self, student_id: str) -> Connection:
        """Create and track a new connection for a student."""
        connection = Connection(student_id)
        self.active_connections.setdefault(student_id, []).append(connection)
        logger.info("Student %s connected (%s)", student_id, connection.id[:8])
        return connection

    def deregister(self, connection: Connection) -> None:
        """Remove a connection; called when the socket goes away."""
        connections = self.active_connections.get(connection.student_id)
        if connections and connection in connections:
            connections.remove(connection)
            if not connections:
                del self.active_connections[connection.student_id]
            logger.info("Student %s disconnected (%s)", connection.student_id, connection.id[:8])

    def rebind(self, connection: Connection, student_id: str) -> None:
        """Move a connection to another student id, keeping its queue."""
        if connection.student_id == student_id:
            return
        self.deregister(connection)
        connection.student_id = student_id
        connection.exam_ids.clear()
        self.active_connections.setdefault(student_id, []).append(connection)
        logger.info("Connection %s now belongs to student %s", connection.id[:8], student_id)

    def join_exam(self, connection: Connection, exam_id: str) -> None:
        connection.exam_ids.add(exam_id)

    def connections_for(self, student_id: str) -> List[Connection]:
        return list(self.active_connections.get(student_id, []))

    def students_in_exam(self, exam_id: str) -> List[str]:
        return [
            student_id
            for student_id, connections in self.active_connections.items()
            if any(exam_id in c.exam_ids for c in connections)
        ]

    def interested_exam_ids(self) -> Set[str]:
        exam_ids: Set[str] = set()
        for connections in self.active_connections.values():
            for connection in connections:
                exam_ids.update(connection.exam_ids)
        return exam_ids

    async def send(self, connection: Connection, event: str, data) -> None:
        """Send to exactly one connection."""
        await connection.queue.put(make_message(event, data))

    async def send_to_student(self, student_id: str, event: str, data) -> int:
        """Send to every connection of a student; returns how many got it."""
        connections = self.connections_for(student_id)
        for connection in connections:
            await connection.queue.put(make_message(event, data))
        return len(connections)

    async def send_to_exam(self, exam_id: str, event: str, data) -> None:
        """Send to every connection that joined an exam."""
        for connections in list(self.active_connections.values()):
            for connection in connections:
                if exam_id in connection.exam_ids:
                    await connection.queue.put(make_message(event, data))

    async def broadcast(self, event: str, data) -> None:
        """Send to every live connection."""
        message = make_message(event, data)
        for connections in list(self.active_connections.values()):
            for connection in connections:
                await connection.queue.put(message)
