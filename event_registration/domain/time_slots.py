# event_registration/domain/time_slots.py

import re
from dataclasses import dataclass
from datetime import datetime, timedelta

from event_registration.domain.event_config import EVENT_CONFIG, EventConfig
from event_registration.domain.exceptions import UnknownPerformanceTypeError

_LABEL_FORMAT = "%I:%M %p"
_NAME_SPLIT = re.compile(r"[,\n]")
DEFAULT_GROUP_SIZE = 3


def _hhmm_to_minutes(value: str) -> int:
    hours, minutes = value.split(":")
    return int(hours) * 60 + int(minutes)


def generate_slot_labels(config: EventConfig = EVENT_CONFIG) -> list[str]:
    """Slot labels such as "09:00 AM" from start time up to, not including, end time."""
    current = datetime.strptime(config.start_time, "%H:%M")
    end = datetime.strptime(config.end_time, "%H:%M")
    step = timedelta(minutes=config.slot_duration)

    labels = []
    while current < end:
        labels.append(current.strftime(_LABEL_FORMAT))
        current += step
    return labels


def label_to_24h(label: str) -> str:
    return datetime.strptime(label.strip(), _LABEL_FORMAT).strftime("%H:%M")


def label_to_minutes(label: str) -> int:
    return _hhmm_to_minutes(label_to_24h(label))


def sort_labels(labels: list[str]) -> list[str]:
    return sorted(labels, key=label_to_minutes)


def are_contiguous(labels: list[str], config: EventConfig = EVENT_CONFIG) -> bool:
    if not labels:
        return False
    minutes = sorted(label_to_minutes(label) for label in labels)
    return all(
        later - earlier == config.slot_duration
        for earlier, later in zip(minutes, minutes[1:])
    )


def participant_count(performance_type: str, details: dict) -> int:
    if performance_type == "solo":
        return 1
    if performance_type == "duet":
        return 2
    if performance_type == "group":
        names = str(details.get("participantNames") or "")
        if names.strip():
            return max(len([n for n in _NAME_SPLIT.split(names) if n.strip()]), 1)
        return DEFAULT_GROUP_SIZE
    return 1


def participant_display_name(performance_type: str, details: dict) -> str:
    if performance_type == "solo":
        return details.get("fullName") or ""
    if performance_type == "duet":
        return f"{details.get('participant1Name') or ''} & {details.get('participant2Name') or ''}"
    if performance_type == "group":
        return details.get("participantNames") or ""
    return ""


def pricing_tier(label: str, config: EventConfig = EVENT_CONFIG) -> str | None:
    if not config.time_pricing_enabled:
        return None

    slot_minutes = label_to_minutes(label)
    for tier_name in ("offPeak", "midPeak", "onPeak"):
        tier = config.pricing_tiers.get(tier_name)
        if tier and _hhmm_to_minutes(tier.start) <= slot_minutes < _hhmm_to_minutes(tier.end):
            return tier_name
    return None


def price_for_slot(
    label: str,
    performance_type: str,
    config: EventConfig = EVENT_CONFIG,
) -> int:
    """Price per person for one slot, in rupees."""
    perf = config.performance_type(performance_type)
    if perf is None:
        raise UnknownPerformanceTypeError(f"Unknown performance type: {performance_type}")

    tier_name = pricing_tier(label, config)
    if tier_name is None:
        return perf.price_per_person
    return config.pricing_tiers[tier_name].prices.get(performance_type, perf.price_per_person)


@dataclass(frozen=True)
class SlotPrice:
    label: str
    price_per_person: int
    amount: int


@dataclass(frozen=True)
class Quote:
    performance_type: str
    participant_count: int
    slots: list[SlotPrice]
    total_amount: int

    @property
    def total_amount_paise(self) -> int:
        return self.total_amount * 100


def quote(
    labels: list[str],
    performance_type: str,
    details: dict,
    config: EventConfig = EVENT_CONFIG,
) -> Quote:
    count = participant_count(performance_type, details)
    slots = []
    for label in sort_labels(labels):
        price = price_for_slot(label, performance_type, config)
        slots.append(SlotPrice(label=label, price_per_person=price, amount=price * count))
    return Quote(
        performance_type=performance_type,
        participant_count=count,
        slots=slots,
        total_amount=sum(slot.amount for slot in slots),
    )
