"""
Provider-record normalization.

A finite dispatch table maps each data type to the Open5e endpoints that feed
it, each endpoint carrying a pure function from a provider-native record to
the internal payload shape (see srd_engine.domain.payloads). Provider fields
a function does not read are dropped: document metadata (document__slug,
document__title, document__license_url, document__url), page numbers,
provider-side HTML renderings and image hashes.

A record that cannot be mapped raises NormalizationError; `normalize_records`
skips and tallies such records instead of failing the whole type.
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass, field
from datetime import datetime
from fractions import Fraction
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from pydantic import ValidationError

from srd_engine.domain.errors import NormalizationError
from srd_engine.domain.models import DataType, Entry, Origin, utcnow
from srd_engine.domain.payloads import PAYLOAD_MODELS

Record = Mapping[str, Any]
NormalizeFn = Callable[[Record], Dict[str, Any]]

ID_PREFIX = "open5e_"

_ABILITIES = ("strength", "dexterity", "constitution", "intelligence", "wisdom", "charisma")
_LEADING_INT_RE = re.compile(r"-?\d+")


# =============================================================================
# Coercion helpers
# =============================================================================


def _text(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _split_csv(value: Any) -> Optional[List[str]]:
    """"fire, cold" -> ["fire", "cold"]; lists pass through cleaned."""
    if value is None:
        return None
    if isinstance(value, (list, tuple)):
        items = [str(v).strip() for v in value]
    else:
        items = [part.strip() for part in str(value).split(",")]
    items = [item for item in items if item]
    return items or None


def _is_number(value: Any) -> bool:
    """Real, finite number; bools and inf/nan (json accepts `1e999`, `Infinity`) are not."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return math.isfinite(value)


def _as_int(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return int(value) if _is_number(value) else None
    match = _LEADING_INT_RE.search(str(value))
    return int(match.group()) if match else None


def _as_float(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value) if _is_number(value) else None
    text = str(value).strip()
    if not text:
        return None
    try:
        return float(Fraction(text.split()[0]))
    except (ValueError, ZeroDivisionError):
        return None


def _as_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() in {"yes", "true", "1"}
    return bool(value)


def _int_map(value: Any) -> Optional[Dict[str, int]]:
    if not isinstance(value, Mapping):
        return None
    result = {str(k): int(v) for k, v in value.items() if _is_number(v)}
    return result or None


def _blocks(value: Any) -> Optional[List[Dict[str, str]]]:
    """Provider [{name, desc}] blocks -> [{name, description}]."""
    if not isinstance(value, list):
        return None
    blocks = [
        {"name": str(block.get("name", "")).strip(), "description": str(block.get("desc", "")).strip()}
        for block in value
        if isinstance(block, Mapping) and block.get("name")
    ]
    return blocks or None


def _require(record: Record, key: str) -> str:
    value = _text(record.get(key))
    if value is None:
        raise NormalizationError(f"record is missing {key!r}")
    return value


# =============================================================================
# Per-endpoint mapping functions
# =============================================================================


def _challenge_rating(record: Record) -> float:
    for key in ("cr", "challenge_rating"):
        rating = _as_float(record.get(key))
        if rating is not None:
            return rating
    return 0.0


def normalize_monster(record: Record) -> Dict[str, Any]:
    abilities = {}
    for ability in _ABILITIES:
        score = _as_int(record.get(ability))
        if score is not None:
            abilities[ability] = score
    speed = record.get("speed")
    if isinstance(speed, Mapping):
        speed = {str(k): int(v) for k, v in speed.items() if _is_number(v)}
    else:
        speed = _text(speed)
    saving_throws = _int_map(record.get("saving_throws")) or _int_map(
        {
            ability: record.get(f"{ability}_save")
            for ability in _ABILITIES
            if record.get(f"{ability}_save") is not None
        }
    )
    return {
        "armor_class": _as_int(record.get("armor_class")),
        "hit_points": _as_int(record.get("hit_points")),
        "hit_dice": _text(record.get("hit_dice")),
        "speed": speed,
        "abilities": abilities,
        "saving_throws": saving_throws,
        "skills": _int_map(record.get("skills")),
        "damage_immunities": _split_csv(record.get("damage_immunities")),
        "damage_resistances": _split_csv(record.get("damage_resistances")),
        "damage_vulnerabilities": _split_csv(record.get("damage_vulnerabilities")),
        "condition_immunities": _split_csv(record.get("condition_immunities")),
        "senses": _split_csv(record.get("senses")),
        "languages": _split_csv(record.get("languages")),
        "challenge_rating": _challenge_rating(record),
        "traits": _blocks(record.get("special_abilities") or record.get("traits")),
        "actions": _blocks(record.get("actions")),
        "reactions": _blocks(record.get("reactions")),
        "legendary_actions": _blocks(record.get("legendary_actions")),
        "image_url": _text(record.get("img_main") or record.get("image_url")),
        "alignment": _text(record.get("alignment")),
        "size": _text(record.get("size")),
        "creature_type": _text(record.get("type")),
    }


def _race_bonuses(record: Record) -> Optional[Dict[str, int]]:
    bonuses = _int_map(record.get("ability_bonuses"))
    if bonuses:
        return bonuses
    # Open5e v1 shape: [{"attributes": ["Constitution"], "value": 2}]
    asi = record.get("asi")
    if not isinstance(asi, list):
        return None
    result: Dict[str, int] = {}
    for grant in asi:
        if not isinstance(grant, Mapping) or not isinstance(grant.get("value"), int):
            continue
        for attribute in grant.get("attributes") or []:
            result[str(attribute).lower()] = grant["value"]
    return result or None


def normalize_race(record: Record) -> Dict[str, Any]:
    speed = record.get("speed")
    if isinstance(speed, Mapping):
        speed = speed.get("walk")
    traits = _text(record.get("traits"))
    return {
        "ability_score_bonuses": _race_bonuses(record),
        "ability_score_max": _as_int(record.get("ability_score_maximum")),
        "size": _text(record.get("size_raw") or record.get("size")),
        "speed": _as_int(speed),
        "languages": _split_csv(record.get("languages")),
        "proficiencies": _split_csv(record.get("proficiencies")),
        "traits": [traits] if traits else None,
        "description": _text(record.get("desc")),
    }


def normalize_class(record: Record) -> Dict[str, Any]:
    return {
        "hit_dice": _text(record.get("hit_dice")),
        "armor_proficiencies": _split_csv(record.get("prof_armor")),
        "weapon_proficiencies": _split_csv(record.get("prof_weapons")),
        "skill_choices": _split_csv(record.get("prof_skills")),
        "saving_throw_proficiencies": _split_csv(record.get("prof_saving_throws")),
        "spellcasting_ability": _text(record.get("spellcasting_ability")),
        "description": _text(record.get("desc")),
    }


def _spell_level(record: Record) -> int:
    for key in ("level_int", "spell_level", "level"):
        value = record.get(key)
        if isinstance(value, str) and value.strip().lower() == "cantrip":
            return 0
        level = _as_int(value)
        if level is not None:
            return level
    return 0


def normalize_spell(record: Record) -> Dict[str, Any]:
    classes = record.get("spell_lists") or record.get("classes") or record.get("dnd_class")
    concentration = record.get("requires_concentration", record.get("concentration"))
    ritual = record.get("can_be_cast_as_ritual", record.get("ritual"))
    return {
        "level": _spell_level(record),
        "school": _text(record.get("school")),
        "casting_time": _text(record.get("casting_time")),
        "range": _text(record.get("range")),
        "components": _split_csv(record.get("components")),
        "material": _text(record.get("material")),
        "duration": _text(record.get("duration")),
        "description": _text(record.get("desc")) or "",
        "higher_level": _text(record.get("higher_level")),
        "classes": [c.title() for c in _split_csv(classes) or []] or None,
        "ritual": _as_bool(ritual),
        "concentration": _as_bool(concentration),
    }


def _damage(record: Record) -> Optional[str]:
    parts = [p for p in (_text(record.get("damage_dice")), _text(record.get("damage_type"))) if p]
    return " ".join(parts) or None


def normalize_weapon(record: Record) -> Dict[str, Any]:
    return {
        "item_kind": "weapon",
        "category": _text(record.get("category")),
        "rarity": _text(record.get("rarity")),
        "weight": _as_float(record.get("weight")),
        "cost": _text(record.get("cost")),
        "description": _text(record.get("desc")) or "",
        "properties": _split_csv(record.get("properties")),
        "damage": _damage(record),
    }


def normalize_armor(record: Record) -> Dict[str, Any]:
    properties = []
    if _as_bool(record.get("stealth_disadvantage")):
        properties.append("stealth disadvantage")
    strength = _as_int(record.get("strength_requirement"))
    if strength:
        properties.append(f"strength {strength}")
    return {
        "item_kind": "armor",
        "category": _text(record.get("category")),
        "rarity": _text(record.get("rarity")),
        "weight": _as_float(record.get("weight")),
        "cost": _text(record.get("cost")),
        "description": _text(record.get("desc")) or "",
        "properties": properties or None,
        "armor_class": _text(record.get("ac_string") or record.get("armor_class") or record.get("base_ac")),
    }


def normalize_background(record: Record) -> Dict[str, Any]:
    feature_name = _text(record.get("feature"))
    feature = (
        {"name": feature_name, "description": _text(record.get("feature_desc")) or ""}
        if feature_name
        else None
    )
    return {
        "description": _text(record.get("desc")),
        "skill_proficiencies": _split_csv(record.get("skill_proficiencies")),
        "tool_proficiencies": _split_csv(record.get("tool_proficiencies")),
        "language_choices": _split_csv(record.get("languages")),
        "equipment": _split_csv(record.get("equipment")),
        "feature": feature,
    }


# =============================================================================
# Dispatch table
# =============================================================================


@dataclass(frozen=True)
class ProviderEndpoint:
    """One provider endpoint feeding a data type."""

    path: str
    normalize: NormalizeFn


ENDPOINTS: Dict[DataType, Tuple[ProviderEndpoint, ...]] = {
    DataType.MONSTERS: (ProviderEndpoint("monsters", normalize_monster),),
    DataType.RACES: (ProviderEndpoint("races", normalize_race),),
    DataType.CLASSES: (ProviderEndpoint("classes", normalize_class),),
    DataType.SPELLS: (ProviderEndpoint("spells", normalize_spell),),
    DataType.ITEMS: (
        ProviderEndpoint("weapons", normalize_weapon),
        ProviderEndpoint("armor", normalize_armor),
    ),
    DataType.BACKGROUNDS: (ProviderEndpoint("backgrounds", normalize_background),),
}


def to_entry(
    data_type: DataType, endpoint: ProviderEndpoint, record: Any, now: datetime
) -> Entry:
    """
    Map one provider record to an official entry.

    Raises
    ------
    NormalizationError
        If the record is not an object, lacks slug/name, or its payload fails
        validation.
    """
    if not isinstance(record, Mapping):
        raise NormalizationError(f"{endpoint.path}: record is a {type(record).__name__}, not an object")
    slug = _require(record, "slug")
    name = _require(record, "name")
    try:
        raw_payload = endpoint.normalize(record)
        payload = PAYLOAD_MODELS[data_type].model_validate(
            {k: v for k, v in raw_payload.items() if v is not None}
        )
    except ValidationError as exc:
        raise NormalizationError(f"{endpoint.path}/{slug}: {exc.errors()[0].get('msg', exc)}") from exc
    except (TypeError, ValueError, AttributeError, ArithmeticError) as exc:
        raise NormalizationError(f"{endpoint.path}/{slug}: {exc}") from exc
    return Entry(
        id=f"{ID_PREFIX}{slug}",
        data_type=data_type,
        name=name,
        origin=Origin.OFFICIAL,
        payload=payload.model_dump(exclude_none=True),
        updated_at=now,
    )


@dataclass
class NormalizationReport:
    """Entries produced for one type plus a tally of skipped records."""

    entries: List[Entry] = field(default_factory=list)
    skipped: int = 0
    reasons: List[str] = field(default_factory=list)


def normalize_records(
    data_type: DataType,
    batches: Iterable[Tuple[ProviderEndpoint, Sequence[Any]]],
    now: Optional[datetime] = None,
) -> NormalizationReport:
    """
    Normalize every record of every endpoint batch, skipping malformed ones.

    Duplicate ids (same slug twice) keep the first record and count the rest
    as skipped.
    """
    now = now or utcnow()
    report = NormalizationReport()
    seen: set = set()
    for endpoint, records in batches:
        for record in records:
            try:
                entry = to_entry(data_type, endpoint, record, now)
            except NormalizationError as exc:
                report.skipped += 1
                report.reasons.append(str(exc))
                continue
            if entry.id in seen:
                report.skipped += 1
                report.reasons.append(f"{endpoint.path}: duplicate id {entry.id}")
                continue
            seen.add(entry.id)
            report.entries.append(entry)
    return report


__all__ = [
    "ENDPOINTS",
    "ProviderEndpoint",
    "NormalizationReport",
    "normalize_records",
    "to_entry",
    "normalize_monster",
    "normalize_race",
    "normalize_class",
    "normalize_spell",
    "normalize_weapon",
    "normalize_armor",
    "normalize_background",
]
