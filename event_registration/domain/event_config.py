# event_registration/domain/event_config.py

from pydantic import BaseModel, Field


class PerformanceType(BaseModel):
    id: str
    name: str
    # Used when time-based pricing is disabled or a slot falls outside every tier.
    price_per_person: int = Field(ge=0)


class PricingTier(BaseModel):
    start: str
    end: str
    display_name: str
    prices: dict[str, int]


class EventConfig(BaseModel):
    event_name: str
    event_date: str
    start_time: str
    end_time: str
    slot_duration: int = Field(gt=0)
    performance_types: list[PerformanceType]
    time_pricing_enabled: bool = False
    pricing_tiers: dict[str, PricingTier] = Field(default_factory=dict)

    def performance_type(self, type_id: str) -> PerformanceType | None:
        for item in self.performance_types:
            if item.id == type_id:
                return item
        return None


EVENT_CONFIG = EventConfig(
    event_name="Shyamotsava",
    event_date="2025-08-16",
    start_time="09:00",
    end_time="20:00",
    slot_duration=10,
    performance_types=[
        PerformanceType(id="solo", name="Solo", price_per_person=1500),
        PerformanceType(id="duet", name="Duet", price_per_person=800),
        PerformanceType(id="group", name="Group", price_per_person=500),
    ],
    time_pricing_enabled=True,
    pricing_tiers={
        "offPeak": PricingTier(
            start="09:00",
            end="12:00",
            display_name="Early Bird",
            prices={"solo": 1200, "duet": 650, "group": 400},
        ),
        "midPeak": PricingTier(
            start="12:00",
            end="17:00",
            display_name="Regular",
            prices={"solo": 1500, "duet": 800, "group": 500},
        ),
        "onPeak": PricingTier(
            start="17:00",
            end="20:00",
            display_name="Prime Time",
            prices={"solo": 1800, "duet": 950, "group": 600},
        ),
    },
)
