"""
Pytest configuration for the SRD engine.

Provides fixtures for:
- Settings tuned for fast tests (no page delay, no retry backoff)
- In-memory and JSON-file stores
- A scripted content provider with per-endpoint fetch counters
- PostgreSQL connectivity for integration tests
"""

from __future__ import annotations

import asyncio
import copy
import os
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

import pytest

from srd_engine.config import Settings
from srd_engine.storage.json_file import JsonFileEntryStore
from srd_engine.storage.memory import InMemoryEntryStore

# Open5e v1 shaped records, one list per endpoint path.
SAMPLE_RECORDS: Dict[str, List[Dict[str, Any]]] = {
    "monsters": [
        {
            "slug": "ancient-red-dragon",
            "name": "Ancient Red Dragon",
            "size": "Gargantuan",
            "type": "dragon",
            "alignment": "chaotic evil",
            "armor_class": 22,
            "hit_points": 546,
            "hit_dice": "28d20+252",
            "speed": {"walk": 40, "climb": 40, "fly": 80},
            "strength": 30,
            "dexterity": 10,
            "constitution": 29,
            "intelligence": 18,
            "wisdom": 15,
            "charisma": 23,
            "dexterity_save": 7,
            "constitution_save": 16,
            "damage_immunities": "fire",
            "senses": "blindsight 60 ft., darkvision 120 ft., passive Perception 26",
            "languages": "Common, Draconic",
            "cr": 24,
            "special_abilities": [{"name": "Legendary Resistance (3/Day)", "desc": "Choose to succeed."}],
            "actions": [{"name": "Fire Breath", "desc": "The dragon exhales fire in a 90-foot cone."}],
            "document__slug": "wotc-srd",
        },
        {
            "slug": "goblin",
            "name": "Goblin",
            "size": "Small",
            "type": "humanoid",
            "armor_class": 15,
            "hit_points": 7,
            "challenge_rating": "1/4",
            "actions": [{"name": "Scimitar", "desc": "Melee Weapon Attack."}],
        },
        {
            "slug": "young-blue-dragon",
            "name": "Young Blue Dragon",
            "size": "Large",
            "type": "dragon",
            "cr": "9",
            "damage_immunities": "lightning",
        },
    ],
    "races": [
        {
            "slug": "dwarf",
            "name": "Dwarf",
            "desc": "Bold and hardy.",
            "asi": [{"attributes": ["Constitution"], "value": 2}],
            "speed": {"walk": 25},
            "size_raw": "Medium",
            "languages": "Common, Dwarvish",
            "traits": "Darkvision. Dwarven Resilience.",
        }
    ],
    "classes": [
        {
            "slug": "wizard",
            "name": "Wizard",
            "hit_dice": "1d6",
            "prof_armor": "None",
            "prof_weapons": "Daggers, darts, slings, quarterstaffs, light crossbows",
            "prof_saving_throws": "Intelligence, Wisdom",
            "spellcasting_ability": "Intelligence",
        }
    ],
    "spells": [
        {
            "slug": "fireball",
            "name": "Fireball",
            "desc": "A bright streak flashes from your pointing finger.",
            "level_int": 3,
            "school": "Evocation",
            "casting_time": "1 action",
            "range": "150 feet",
            "components": "V, S, M",
            "material": "A tiny ball of bat guano and sulfur.",
            "duration": "Instantaneous",
            "spell_lists": ["sorcerer", "wizard"],
            "can_be_cast_as_ritual": False,
            "requires_concentration": False,
        },
        {
            "slug": "detect-magic",
            "name": "Detect Magic",
            "desc": "For the duration, you sense the presence of magic within 30 feet of you.",
            "level": "1st-level",
            "level_int": 1,
            "school": "Divination",
            "dnd_class": "Bard, Cleric, Druid, Paladin, Ranger, Sorcerer, Wizard",
            "ritual": "yes",
            "concentration": "yes",
        },
        {
            "slug": "fire-bolt",
            "name": "Fire Bolt",
            "desc": "You hurl a mote of fire at a creature or object within range.",
            "level": "Cantrip",
            "school": "Evocation",
            "dnd_class": "Sorcerer, Wizard",
        },
    ],
    "weapons": [
        {
            "slug": "longsword",
            "name": "Longsword",
            "category": "Martial Melee Weapons",
            "cost": "15 gp",
            "damage_dice": "1d8",
            "damage_type": "slashing",
            "weight": "3 lb.",
            "properties": ["versatile (1d10)"],
        }
    ],
    "armor": [
        {
            "slug": "chain-mail",
            "name": "Chain Mail",
            "category": "Heavy Armor",
            "cost": "75 gp",
            "ac_string": "16",
            "strength_requirement": 13,
            "stealth_disadvantage": True,
            "weight": "55 lb.",
        }
    ],
    "backgrounds": [
        {
            "slug": "acolyte",
            "name": "Acolyte",
            "desc": "You have spent your life in the service of a temple.",
            "skill_proficiencies": "Insight, Religion",
            "equipment": "A holy symbol, a prayer book",
            "feature": "Shelter of the Faithful",
            "feature_desc": "You command the respect of those who share your faith.",
        }
    ],
}


class FakeProvider:
    """
    Scripted ContentProvider.

    `calls` records every fetch_records path in order; `failures` maps a path
    to the exception it raises; when `gate` is set, fetches block until it is.
    """

    def __init__(self, records: Optional[Dict[str, Iterable[Dict[str, Any]]]] = None) -> None:
        source = SAMPLE_RECORDS if records is None else records
        self.records: Dict[str, List[Dict[str, Any]]] = {
            path: copy.deepcopy(list(items)) for path, items in source.items()
        }
        self.calls: List[str] = []
        self.failures: Dict[str, BaseException] = {}
        self.gate: Optional[asyncio.Event] = None
        self.closed = False

    def fetch_count(self, path: str) -> int:
        return self.calls.count(path)

    async def fetch_records(self, path: str) -> List[Dict[str, Any]]:
        self.calls.append(path)
        if self.gate is not None:
            await self.gate.wait()
        if path in self.failures:
            raise self.failures[path]
        return copy.deepcopy(self.records.get(path, []))

    async def aclose(self) -> None:
        self.closed = True


@pytest.fixture
def test_settings(tmp_path: Path) -> Settings:
    """
    Settings fixture with test-specific overrides.

    Explicit values win over the environment and any .env file.
    """
    return Settings(
        storage_backend="memory",
        data_dir=tmp_path / "srd",
        provider_base_url="https://open5e.test/v1",
        provider_page_size=2,
        provider_max_pages=10,
        provider_page_delay_seconds=0,
        provider_retry_attempts=3,
        provider_retry_backoff_seconds=0,
        sync_freshness_hours=24,
        sync_type_timeout_seconds=5,
        admin_token="s3cret",
        log_level="DEBUG",
    )


@pytest.fixture
def memory_store() -> InMemoryEntryStore:
    return InMemoryEntryStore()


@pytest.fixture
def json_store(tmp_path: Path) -> JsonFileEntryStore:
    return JsonFileEntryStore(tmp_path / "srd")


@pytest.fixture
def sample_records() -> Dict[str, List[Dict[str, Any]]]:
    return copy.deepcopy(SAMPLE_RECORDS)


@pytest.fixture
def provider_factory():
    """The FakeProvider class, for tests that script their own records."""
    return FakeProvider


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture(scope="session")
def test_dsn() -> str:
    """
    Database connection string for integration tests.
    """
    return (
        f"postgresql://{os.getenv('DB_USER', 'postgres')}:{os.getenv('DB_PASSWORD', 'postgres')}"
        f"@{os.getenv('DB_HOST', 'localhost')}:{os.getenv('DB_PORT', '5432')}"
        f"/{os.getenv('DB_NAME', 'srd')}"
    )
