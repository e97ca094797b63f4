from typing import Any


class FakeNotifier:
    """In-memory test double for the NotifierProtocol protocol.

    Set ``error`` to make every delivery raise. After calls, inspect ``sent``
    for ``(appointment_id, kind, payload)`` tuples in delivery order.
    """

    def __init__(self) -> None:
        self.sent: list[tuple[str, str, dict[str, Any]]] = []
        self.error: Exception | None = None
        self.closed: bool = False

    async def notify_customer(
        self, appointment_id: str, kind: str, payload: dict[str, Any]
    ) -> None:
        if self.error:
            raise self.error
        self.sent.append((appointment_id, kind, payload))

    def kinds(self) -> list[str]:
        return [kind for _, kind, _ in self.sent]

    async def close(self) -> None:
        self.closed = True
