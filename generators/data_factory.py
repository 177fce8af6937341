"""
LLM-powered demo catalog generator for the Multi-Phase Allocator.
STRATEGY: one batched request per entity kind, each validated item by item.
Later prompts are given the ids produced by earlier ones so references line up.
"""

import os
import json
import logging
import re
import google.generativeai as genai
from typing import List, Tuple, Dict, Any, Type, Optional
from pydantic import ValidationError, BaseModel

from clinic import Installation, StaffMember, WeeklyScheduleEntry, Treatment, Phase
from allocator.config import settings as default_settings

logger = logging.getLogger(__name__)

LIST_KEYS = ['staff', 'schedules', 'installations', 'treatments', 'items', 'result']


class ClinicDataGenerator:
    def __init__(self, api_key: Optional[str] = None, settings=None):
        self.settings = settings or default_settings
        self.api_key = api_key or self.settings.GOOGLE_API_KEY or os.environ.get("GOOGLE_API_KEY")
        if not self.api_key:
            raise ValueError("GOOGLE_API_KEY not found. Please set it in environment.")

        genai.configure(api_key=self.api_key)
        self.model = genai.GenerativeModel(self.settings.GENERATOR_MODEL)
        self.total_cost = 0.0

    def _estimate_cost(self, prompt_tokens: int, response_tokens: int) -> float:
        return (prompt_tokens * 0.075 + response_tokens * 0.30) / 1_000_000

    def _robust_parse_json(self, raw_text: str) -> List[Any]:
        """
        Strips markdown fences and normalizes the payload to a list of dicts.
        """
        if not raw_text:
            return []

        clean_text = re.sub(r"```json\s*|\s*```", "", raw_text).strip()

        try:
            data = json.loads(clean_text)
        except json.JSONDecodeError:
            # Fallback: extract the outermost list
            match = re.search(r'(\[.*\])', clean_text, re.DOTALL)
            if not match:
                return []
            try:
                data = json.loads(match.group(1))
            except json.JSONDecodeError:
                return []

        if isinstance(data, list):
            return data
        if isinstance(data, dict):
            for key in LIST_KEYS:
                if key in data and isinstance(data[key], list):
                    return data[key]
            return [data]
        return []

    def _generate(self, prompt: str) -> Tuple[List[Any], float]:
        generation_config = genai.GenerationConfig(
            response_mime_type="application/json",
            max_output_tokens=16000,
            temperature=0.7
        )
        response = self.model.generate_content(prompt, generation_config=generation_config)

        cost = 0.0
        usage = getattr(response, 'usage_metadata', None)
        if usage is not None:
            cost = self._estimate_cost(usage.prompt_token_count, usage.candidates_token_count)
        self.total_cost += cost

        return self._robust_parse_json(response.text), cost

    def _fetch_big_batch(self, prompt: str, model_class: Type[BaseModel]) -> Tuple[List[Any], float]:
        """
        Executes one generation request and keeps the items that validate.
        """
        try:
            data_list, cost = self._generate(prompt)
        except Exception as e:
            logger.error(f"Batch generation for {model_class.__name__} failed: {e}")
            return [], 0.0

        valid_items = []
        for i, item in enumerate(data_list):
            try:
                valid_items.append(model_class(**item))
            except (ValidationError, TypeError) as e:
                logger.warning(f"Skipping invalid {model_class.__name__} item {i}: {e}")
        return valid_items, cost

    # --- Entity prompts ---

    def generate_staff(self, count: int = 4) -> Tuple[List[StaffMember], float]:
        prompt = f"""
        Generate {count} professionals working at a hyperbaric oxygen therapy clinic.
        OUTPUT: JSON Array.
        RULES:
        - "id": STRING of the form "staff-1", "staff-2", ...
        - "full_name": realistic full name.
        FIELDS: id, full_name.
        """
        return self._fetch_big_batch(prompt, StaffMember)

    def generate_schedules(self, staff_ids: List[str]) -> Tuple[List[WeeklyScheduleEntry], float]:
        prompt = f"""
        Generate the weekly working template for these professionals: {json.dumps(staff_ids)}.
        OUTPUT: JSON Array, one object per (professional, working day).
        RULES:
        - "day_of_week": INTEGER 0-6 where 0 is Monday. Most professionals work Monday to Friday.
        - "start_time" / "end_time": "HH:MM:SS" between 08:00:00 and 21:00:00, start before end.
        - At most ONE object per (staff_id, day_of_week).
        FIELDS: staff_id, day_of_week, start_time, end_time.
        """
        return self._fetch_big_batch(prompt, WeeklyScheduleEntry)

    def generate_installations(self, chambers: int = 2, boxes: int = 2) -> Tuple[List[Installation], float]:
        prompt = f"""
        Generate the physical installations of a hyperbaric clinic: {chambers} hyperbaric chambers and
        {boxes} treatment boxes.
        OUTPUT: JSON Array.
        RULES:
        - "category": exactly "chamber" or "box".
        - "id": STRING such as "chamber-1" or "box-1".
        - "is_active": true.
        FIELDS: id, name, category, is_active.
        """
        return self._fetch_big_batch(prompt, Installation)

    def generate_treatments(self, count: int = 5) -> Tuple[Tuple[List[Treatment], List[Phase]], float]:
        """
        Treatments come with their phases nested; each pair is validated as a unit.
        """
        prompt = f"""
        Generate {count} treatments offered by a hyperbaric clinic. Mix simple treatments with composite ones.
        OUTPUT: JSON Array.

        STRICT SCHEMA RULES:
        1. SIMPLE treatment: "is_composite": false, "duration_minutes" (multiple of 15, 15-120),
           "staff_fraction" (one of 0.25, 0.5, 1.0), "installation_category" ("chamber", "box" or null),
           "phases": [].
        2. COMPOSITE treatment: "is_composite": true, "phases" is a list of 2-3 objects with
           "ordinal" (1, 2, 3 in order), "label", "duration_minutes" (multiple of 15),
           "staff_fraction" (0, 0.25, 0.5 or 1.0), "installation_category" ("chamber", "box" or null).
           "duration_minutes" of the treatment equals the sum of its phases.
        3. "id": STRING slug such as "hyperbaric-60".
        FIELDS: id, name, description, is_active, is_composite, duration_minutes, staff_fraction,
        installation_category, phases.
        """

        try:
            raw_data, cost = self._generate(prompt)
        except Exception as e:
            logger.error(f"Treatment batch failed: {e}")
            return ([], []), 0.0

        treatments: List[Treatment] = []
        phases: List[Phase] = []
        for i, item in enumerate(raw_data):
            if not isinstance(item, dict):
                continue
            raw_phases = item.pop('phases', None) or []
            try:
                treatment = Treatment(**item)
                treatment_phases = [
                    Phase(**{**p, "id": f"{treatment.id}-{p.get('ordinal')}", "treatment_id": treatment.id})
                    for p in raw_phases
                ]
            except (ValidationError, TypeError) as e:
                logger.warning(f"Skipping invalid treatment {i}: {e}")
                continue
            if treatment.is_composite and not treatment_phases:
                logger.warning(f"Skipping composite treatment {treatment.id} without phases")
                continue
            treatments.append(treatment)
            phases.extend(treatment_phases)

        return (treatments, phases), cost

    def generate_catalog(self, staff_count: int = 4, treatment_count: int = 5) -> Tuple[Dict[str, List], float]:
        """Full demo catalog (4 API calls)."""
        step_cost = 0.0
        logger.info("Generating clinic catalog (4 API calls)...")

        staff, c1 = self.generate_staff(staff_count)
        step_cost += c1

        schedules, c2 = self.generate_schedules([s.id for s in staff])
        step_cost += c2

        installations, c3 = self.generate_installations()
        step_cost += c3

        (treatments, phases), c4 = self.generate_treatments(treatment_count)
        step_cost += c4

        logger.info(
            f"Catalog ready: {len(staff)} staff, {len(schedules)} shifts, "
            f"{len(installations)} installations, {len(treatments)} treatments"
        )
        return {
            "staff": staff,
            "schedules": schedules,
            "installations": installations,
            "treatments": treatments,
            "phases": phases,
        }, step_cost
