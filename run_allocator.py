"""
Main Execution Script for the Multi-Phase Allocator.
Seeds an in-memory clinic (cached catalog or Gemini), then walks the booking
lifecycle: availability -> book -> reschedule -> cancel.
"""

import os
import sys
import logging
import json
from datetime import date, timedelta

sys.path.append(os.path.dirname(os.path.abspath(__file__)))

from generators.data_factory import ClinicDataGenerator
from allocator import BookingEngine, InMemoryStore, AllocationError, settings, setup_logging
from clinic import Installation, StaffMember, WeeklyScheduleEntry, Treatment, Phase

setup_logging()
logger = logging.getLogger("Main")

# --- CONFIGURATION ---
CACHE_FILENAME = "demo_clinic.json"
USE_CACHE = True  # Set to False to force new AI generation
# ---------------------

MODELS = {
    "staff": StaffMember,
    "schedules": WeeklyScheduleEntry,
    "installations": Installation,
    "treatments": Treatment,
    "phases": Phase,
}


def save_catalog(data: dict, filename: str):
    """Saves a generated catalog so we don't re-query the LLM every time."""
    serializable = {key: [item.model_dump(mode='json') for item in data.get(key, [])] for key in MODELS}
    with open(filename, 'w') as f:
        json.dump(serializable, f, indent=2)
    logger.info(f"💾 Saved catalog to {filename}")


def load_cached_catalog(filename: str):
    """Loads a cached catalog and re-hydrates the pydantic models."""
    try:
        with open(filename, 'r') as f:
            data = json.load(f)
    except (FileNotFoundError, json.JSONDecodeError):
        logger.warning(f"⚠️ Cache file {filename} not found or invalid. Falling back to Generator.")
        return None

    logger.info(f"📂 Loading cached catalog from {filename}...")
    catalog = {key: [model(**item) for item in data.get(key, [])] for key, model in MODELS.items()}
    logger.info(f"✅ Cache Loaded: {len(catalog['treatments'])} treatments, {len(catalog['staff'])} staff.")
    return catalog


def next_weekday(today: date) -> date:
    day = today + timedelta(days=1)
    while day.weekday() >= 5:
        day += timedelta(days=1)
    return day


def main():
    logger.info("🚀 Starting Multi-Phase Allocator demo...")

    catalog = load_cached_catalog(CACHE_FILENAME) if USE_CACHE else None

    if not catalog:
        if not (settings.GOOGLE_API_KEY or os.environ.get("GOOGLE_API_KEY")):
            logger.error("❌ GOOGLE_API_KEY not found and no cache available. Please set it via 'export GOOGLE_API_KEY=...'")
            return
        generator = ClinicDataGenerator()
        logger.info("--- Phase 1: Generative AI Catalog Fetch ---")
        catalog, cost = generator.generate_catalog()
        logger.info(f"💸 Total Estimated LLM Cost: ${cost:.4f}")
        save_catalog(catalog, CACHE_FILENAME)

    # --- PHASE 2: SEED ---
    store = InMemoryStore()
    store.seed(**catalog)
    engine = BookingEngine(store)

    # --- PHASE 3: BOOKING LIFECYCLE ---
    day = next_weekday(date.today())
    logger.info(f"\n--- Phase 3: Booking lifecycle on {day.isoformat()} ---")

    booked = []
    for treatment in catalog["treatments"]:
        availability = engine.get_smart_availability(treatment.id, day)
        print(f"\n🩺 {treatment.name}: {availability.hint}")
        if not availability.raw_slots:
            continue

        try:
            booking = engine.create_booking("pat-demo", treatment.id, availability.raw_slots[0], notes="demo")
        except AllocationError as e:
            print(f"   ❌ {e.code}: {e.message}")
            continue

        booked.append(booking)
        for alloc in booking.allocations:
            print(
                f"   ✅ {alloc.starts_at.astimezone(settings.tz):%H:%M}-{alloc.ends_at.astimezone(settings.tz):%H:%M} "
                f"staff={alloc.staff_id} installation={alloc.installation_id or '-'} load={alloc.staff_fraction}"
            )

    if booked:
        first = booked[0]
        try:
            moved = engine.reschedule_booking(first.id, starts_at=first.starts_at + timedelta(hours=1))
            print(f"\n🔁 Rescheduled {moved.id} to {moved.starts_at.astimezone(settings.tz):%H:%M}")
        except AllocationError as e:
            print(f"\n🔁 Reschedule refused ({e.code}); booking left unchanged: {e.message}")

        engine.cancel_booking(booked[-1].id)
        print(f"🗑️ Cancelled {booked[-1].id}")

    # --- PHASE 4: REPORTING ---
    print("\n" + "=" * 50)
    print("📊 FINAL CALENDAR")
    print("=" * 50)
    for booking in engine.list_bookings():
        print(
            f"{booking.starts_at.astimezone(settings.tz):%Y-%m-%d %H:%M} "
            f"{booking.treatment_id:<20} {booking.status.value:<10} {len(booking.allocations)} phase(s)"
        )

    print("\n✅ Demo Complete.")


if __name__ == "__main__":
    main()
