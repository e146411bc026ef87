# caredispatch/infra/fictional_volunteers.py
"""
Demo volunteers for local development.

Generates ACTIVE volunteers of every category scattered around a center
point, so intake can be exercised end to end without the registration
flow. Only reachable through the dev-only seeding endpoints.
"""
from __future__ import annotations

import random
from typing import Optional

from caredispatch.config import settings
from caredispatch.core.dispatch.domain import (
    ActivationState,
    CATEGORY_ORDER,
    Coordinate,
    Volunteer,
)
from caredispatch.core.dispatch.geo import parse_location
from caredispatch.core.dispatch.ports import AsyncVolunteerDirectory
from caredispatch.infra.logging_config import get_logger

logger = get_logger(__name__)

FICTIONAL_ID_PREFIX = "fictional-"


def generate_fictional_volunteers(
    count_per_category: int,
    center: Coordinate,
    spread_deg: float,
    seed: Optional[int] = None,
) -> list[Volunteer]:
    """``count_per_category`` volunteers per category within ``spread_deg`` of ``center``."""
    rng = random.Random(seed)
    volunteers = []

    for category in CATEGORY_ORDER:
        label = category.value.lower()
        for n in range(1, count_per_category + 1):
            location = Coordinate(
                latitude=round(center.latitude + rng.uniform(-spread_deg, spread_deg), 6),
                longitude=round(center.longitude + rng.uniform(-spread_deg, spread_deg), 6),
            )
            volunteers.append(
                Volunteer(
                    id=f"{FICTIONAL_ID_PREFIX}{label}-{n:03d}",
                    name=f"Fictional {category.value.title()} Volunteer {n}",
                    email=f"{label}.{n:03d}@volunteers.invalid",
                    category=category,
                    activation_state=ActivationState.ACTIVE,
                    location=location,
                )
            )

    return volunteers


async def seed_fictional_volunteers(
    directory: AsyncVolunteerDirectory,
    count_per_category: Optional[int] = None,
    seed: Optional[int] = None,
) -> list[Volunteer]:
    """
    Replace any previous fictional volunteers with a fresh set.

    Real volunteers are never touched.
    """
    count = settings.fictional_volunteer_count if count_per_category is None else count_per_category
    volunteers = generate_fictional_volunteers(
        count,
        parse_location(settings.fictional_volunteer_center),
        settings.fictional_volunteer_spread_deg,
        seed=seed,
    )

    # ids depend only on category and ordinal, so a reseed replaces the same rows
    await directory.delete_volunteers([v.id for v in volunteers])
    inserted = await directory.add_volunteers(volunteers)

    logger.info(f"Seeded {inserted} fictional volunteers ({count} per category)")
    return volunteers
