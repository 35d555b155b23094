import sys

from event_registration.domain.event_config import EVENT_CONFIG
from event_registration.infrastructure.db import models  # noqa: F401
from event_registration.infrastructure.db.session import Base, SessionLocal, engine
from event_registration.infrastructure.repositories.slot_repository import SlotRepository


def seed_slots(db, event_date: str) -> dict[str, str]:
    repo = SlotRepository(db)
    repo.initialize_slots_for_date(event_date)
    return repo.get_slots_for_date(event_date)


def main() -> None:
    event_date = sys.argv[1] if len(sys.argv) > 1 else EVENT_CONFIG.event_date
    Base.metadata.create_all(bind=engine)

    db = SessionLocal()
    try:
        slots = seed_slots(db, event_date)
        db.commit()
        booked = sum(1 for state in slots.values() if state == "booked")
        print(f"Seed complete: {len(slots)} slots for {event_date} ({booked} booked).")
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


if __name__ == "__main__":
    main()
