"""
Skill library.

A skill is <config dir>/skills/<dir>/skill.json:
  {"name": "...", "description": "...", "triggers": ["..."], "template": "..."}

A skill matches a message when any trigger is a case-insensitive substring of it.
"""

from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import List, Optional

from terminal_ai.settings.paths import config_dir

logger = logging.getLogger(__name__)


@dataclass
class Skill:
    name: str
    description: str = ""
    triggers: List[str] = field(default_factory=list)
    template: str = ""

    def matches(self, message: str) -> bool:
        text = message.lower()
        return any(t and t.lower() in text for t in self.triggers)


class SkillLibrary:
    def __init__(self, root: Optional[Path] = None) -> None:
        self.root = Path(root) if root is not None else config_dir() / "skills"

    def list(self) -> List[Skill]:
        if not self.root.is_dir():
            return []
        skills = []
        for entry in sorted(self.root.iterdir()):
            skill_file = entry / "skill.json"
            if not entry.is_dir() or not skill_file.is_file():
                continue
            try:
                with skill_file.open("r", encoding="utf-8") as f:
                    data = json.load(f)
            except (OSError, ValueError) as e:
                logger.warning(f"Skipping unreadable skill {skill_file}: {e}")
                continue
            if not isinstance(data, dict):
                continue
            skills.append(
                Skill(
                    name=str(data.get("name") or entry.name),
                    description=str(data.get("description") or ""),
                    triggers=[str(t).strip() for t in (data.get("triggers") or [])],
                    template=str(data.get("template") or ""),
                )
            )
        return skills

    def find_matching(self, message: str) -> List[Skill]:
        return [s for s in self.list() if s.matches(message)]

    def create(self, name: str, description: str, triggers: List[str], template: str) -> Path:
        name = name.strip()
        if not name or "/" in name or name in (".", ".."):
            raise ValueError(f"Invalid skill name: {name!r}")
        skill = Skill(name=name, description=description, triggers=[t.strip() for t in triggers if t.strip()], template=template)
        skill_dir = self.root / name
        skill_dir.mkdir(parents=True, exist_ok=True)
        path = skill_dir / "skill.json"
        with path.open("w", encoding="utf-8") as f:
            json.dump(asdict(skill), f, ensure_ascii=False, indent=2)
        return path


def apply_skills(message: str, skills: List[Skill]) -> str:
    """Prepend each matching skill's template; the last matching skill ends up first."""
    final = message
    for skill in skills:
        if skill.template:
            final = f"{skill.template}\n\n{final}"
    return final
