"""
Internal payload shapes per data type.

Normalizers build these from provider records and custom entries are validated
against them before they are stored. Only the engine's own search filters read
individual fields (challenge rating, spell level, ...); everything else is
carried through for the rendering layer.
"""
from __future__ import annotations

from typing import Dict, List, Optional, Type, Union

from pydantic import BaseModel, ConfigDict, Field

from srd_engine.domain.models import DataType


class _Payload(BaseModel):
    model_config = ConfigDict(extra="forbid")


class NamedBlock(_Payload):
    """A named rules block (trait, action, reaction, feature)."""

    name: str
    description: str = ""


class AbilityScores(_Payload):
    strength: int = 10
    dexterity: int = 10
    constitution: int = 10
    intelligence: int = 10
    wisdom: int = 10
    charisma: int = 10


class MonsterPayload(_Payload):
    armor_class: Optional[int] = Field(None, ge=0)
    hit_points: Optional[int] = Field(None, ge=0)
    hit_dice: Optional[str] = None
    speed: Union[str, Dict[str, int], None] = None
    abilities: AbilityScores = Field(default_factory=AbilityScores)
    saving_throws: Optional[Dict[str, int]] = None
    skills: Optional[Dict[str, int]] = None
    damage_immunities: Optional[List[str]] = None
    damage_resistances: Optional[List[str]] = None
    damage_vulnerabilities: Optional[List[str]] = None
    condition_immunities: Optional[List[str]] = None
    senses: Optional[List[str]] = None
    languages: Optional[List[str]] = None
    challenge_rating: float = Field(0.0, ge=0)
    traits: Optional[List[NamedBlock]] = None
    actions: Optional[List[NamedBlock]] = None
    reactions: Optional[List[NamedBlock]] = None
    legendary_actions: Optional[List[NamedBlock]] = None
    image_url: Optional[str] = None
    alignment: Optional[str] = None
    size: Optional[str] = None
    creature_type: Optional[str] = None


class RacePayload(_Payload):
    ability_score_bonuses: Optional[Dict[str, int]] = None
    ability_score_max: Optional[int] = None
    size: Optional[str] = None
    speed: Optional[int] = Field(None, ge=0)
    languages: Optional[List[str]] = None
    proficiencies: Optional[List[str]] = None
    traits: Optional[List[str]] = None
    description: Optional[str] = None


class ClassPayload(_Payload):
    hit_dice: Optional[str] = None
    armor_proficiencies: Optional[List[str]] = None
    weapon_proficiencies: Optional[List[str]] = None
    skill_choices: Optional[List[str]] = None
    saving_throw_proficiencies: Optional[List[str]] = None
    spellcasting_ability: Optional[str] = None
    description: Optional[str] = None


class SpellPayload(_Payload):
    level: int = Field(0, ge=0, le=9)
    school: Optional[str] = None
    casting_time: Optional[str] = None
    range: Optional[str] = None
    components: Optional[List[str]] = None
    material: Optional[str] = None
    duration: Optional[str] = None
    description: str = ""
    higher_level: Optional[str] = None
    classes: Optional[List[str]] = None
    ritual: bool = False
    concentration: bool = False


class ItemPayload(_Payload):
    item_kind: Optional[str] = None
    category: Optional[str] = None
    rarity: Optional[str] = None
    weight: Optional[float] = Field(None, ge=0)
    cost: Optional[str] = None
    description: str = ""
    properties: Optional[List[str]] = None
    damage: Optional[str] = None
    armor_class: Optional[str] = None
    magical_properties: Optional[str] = None


class BackgroundPayload(_Payload):
    description: Optional[str] = None
    skill_proficiencies: Optional[List[str]] = None
    tool_proficiencies: Optional[List[str]] = None
    language_choices: Optional[List[str]] = None
    equipment: Optional[List[str]] = None
    feature: Optional[NamedBlock] = None


PAYLOAD_MODELS: Dict[DataType, Type[_Payload]] = {
    DataType.MONSTERS: MonsterPayload,
    DataType.RACES: RacePayload,
    DataType.CLASSES: ClassPayload,
    DataType.SPELLS: SpellPayload,
    DataType.ITEMS: ItemPayload,
    DataType.BACKGROUNDS: BackgroundPayload,
}


__all__ = [
    "NamedBlock",
    "AbilityScores",
    "MonsterPayload",
    "RacePayload",
    "ClassPayload",
    "SpellPayload",
    "ItemPayload",
    "BackgroundPayload",
    "PAYLOAD_MODELS",
]
