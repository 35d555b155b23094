# event_registration/infrastructure/repositories/slot_repository.py

from sqlalchemy.orm import Session
from sqlalchemy import select, update

from event_registration.domain.event_config import EVENT_CONFIG, EventConfig
from event_registration.domain.state_machine import SlotStatus
from event_registration.domain.time_slots import generate_slot_labels, label_to_minutes
from event_registration.infrastructure.db.models import SlotState, utc_now


class SlotRepository:

    def __init__(self, db: Session, config: EventConfig = EVENT_CONFIG):
        self.db = db
        self.config = config

    def initialize_slots_for_date(self, event_date: str) -> None:
        """Creates every configured slot for the date as available, once."""
        existing = set(
            self.db.execute(
                select(SlotState.label).where(SlotState.event_date == event_date)
            ).scalars().all()
        )
        if existing:
            return

        for label in generate_slot_labels(self.config):
            self.db.add(
                SlotState(
                    event_date=event_date,
                    label=label,
                    status=SlotStatus.AVAILABLE,
                )
            )
        self.db.flush()

    def get_slots_for_date(self, event_date: str) -> dict[str, str]:
        rows = self.db.execute(
            select(SlotState).where(SlotState.event_date == event_date)
        ).scalars().all()
        ordered = sorted(rows, key=lambda row: label_to_minutes(row.label))
        return {row.label: row.status.value for row in ordered}

    def lock_slots(self, event_date: str, labels: list[str]) -> list[SlotState]:
        """
        SELECT ... FOR UPDATE
        Serialises concurrent bookings of the same slots.
        """
        stmt = (
            select(SlotState)
            .where(SlotState.event_date == event_date)
            .where(SlotState.label.in_(labels))
            .with_for_update()
        )
        return list(self.db.execute(stmt).scalars().all())

    def set_status(
        self,
        event_date: str,
        labels: list[str],
        status: SlotStatus,
    ) -> int:
        """
        Flips only the named slots. Re-applying the same status is a no-op,
        so callers may retry freely.
        """
        if not labels:
            return 0

        stmt = (
            update(SlotState)
            .where(SlotState.event_date == event_date)
            .where(SlotState.label.in_(labels))
            .values(status=status, updated_at=utc_now())
        )
        result = self.db.execute(stmt)
        return result.rowcount or 0

    def release(self, event_date: str, labels: list[str]) -> int:
        return self.set_status(event_date, labels, SlotStatus.AVAILABLE)

    def reserve(self, event_date: str, labels: list[str]) -> int:
        return self.set_status(event_date, labels, SlotStatus.BOOKED)
