"""Result models returned by chain adapters."""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class TxEvent(BaseModel):
    """A single event emitted by a transaction."""

    model_config = ConfigDict(extra="ignore")

    type: str = Field(..., description="Event type, e.g. wasm or instantiate")
    attributes: dict[str, str] = Field(default_factory=dict)


class ExecuteResult(BaseModel):
    """Result of a confirmed transaction.

    Attributes:
        tx_hash: Transaction hash
        gas_used: Gas consumed by the transaction
        events: Events emitted by the transaction
    """

    model_config = ConfigDict(extra="forbid")

    tx_hash: str = Field(..., description="Transaction hash")
    gas_used: int = Field(default=0, ge=0, description="Gas used")
    events: list[TxEvent] = Field(default_factory=list)

    def find_attribute(self, event_type: str, key: str) -> str | None:
        """Return the first attribute value of an event type, if present."""
        for event in self.events:
            if event.type == event_type and key in event.attributes:
                return event.attributes[key]
        return None

    @classmethod
    def from_tx_response(cls, payload: dict[str, Any]) -> "ExecuteResult":
        """Build a result from a cosmos-sdk ``TxResponse`` JSON document."""
        raw_events = payload.get("events") or []
        if not raw_events:
            for log in payload.get("logs") or []:
                raw_events.extend(log.get("events") or [])

        events = [
            TxEvent(
                type=event.get("type", ""),
                attributes={
                    str(attr.get("key")): str(attr.get("value"))
                    for attr in event.get("attributes") or []
                },
            )
            for event in raw_events
        ]
        return cls(
            tx_hash=payload.get("txhash", ""),
            gas_used=int(payload.get("gas_used") or 0),
            events=events,
        )
