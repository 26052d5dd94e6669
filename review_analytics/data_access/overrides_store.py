"""
Local user overrides: agent department re-assignments, custom departments and
hidden agents, persisted as one JSON document.
"""

import json
import logging
import os
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

from review_analytics.config.settings import Settings
from review_analytics.models.schemas import Agent, Department


logger = logging.getLogger(__name__)

AGENT_DEPARTMENTS = "agent_departments"
CUSTOM_DEPARTMENTS = "custom_departments"
HIDDEN_AGENTS = "hidden_agents"
LAST_UPDATE = "last_update"


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


class OverridesStore:
    """Key/value store for user changes that must survive a resync."""

    def __init__(self, config: Settings, path: Optional[str] = None):
        self.config = config
        self.path = path or config.overrides_path

    def _load(self) -> Dict[str, Any]:
        if not os.path.exists(self.path):
            return {}
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            logger.error(f"Failed to read overrides from {self.path}: {e}")
            return {}
        if not isinstance(data, dict):
            logger.error(f"Ignoring malformed overrides file {self.path}")
            return {}
        return data

    def _save(self, data: Dict[str, Any]) -> None:
        os.makedirs(os.path.dirname(self.path) or ".", exist_ok=True)
        tmp_path = f"{self.path}.tmp"
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2)
        os.replace(tmp_path, self.path)

    # Department re-assignment

    def save_agent_department(self, agent_id: str, department_id: str) -> None:
        data = self._load()
        now = _now_iso()
        overrides = data.setdefault(AGENT_DEPARTMENTS, {})
        overrides[agent_id] = {
            "agentId": agent_id,
            "departmentId": department_id,
            "timestamp": now,
        }
        data[LAST_UPDATE] = now
        self._save(data)
        logger.info(f"Saved {agent_id} -> {department_id}")

    def get_agent_department_overrides(self) -> Dict[str, Dict[str, str]]:
        return dict(self._load().get(AGENT_DEPARTMENTS, {}))

    def apply_agent_overrides(self, agents: List[Agent]) -> List[Agent]:
        """Return agents with overridden department ids; others are unchanged."""
        overrides = self.get_agent_department_overrides()
        if not overrides:
            return agents

        logger.info(f"Applying {len(overrides)} agent department overrides")
        result = []
        for agent in agents:
            override = overrides.get(agent.id)
            if override:
                agent = agent.model_copy(update={"department_id": override["departmentId"]})
            result.append(agent)
        return result

    # Custom departments

    def save_custom_department(self, department: Department) -> None:
        data = self._load()
        data.setdefault(CUSTOM_DEPARTMENTS, []).append({
            "id": department.id,
            "name": department.name,
            "createdAt": _now_iso(),
        })
        self._save(data)
        logger.info(f"Saved custom department '{department.name}'")

    def get_custom_departments(self) -> List[Dict[str, str]]:
        return list(self._load().get(CUSTOM_DEPARTMENTS, []))

    def merge_departments(self, departments: List[Department]) -> List[Department]:
        """Append custom departments whose id is not already present."""
        custom = self.get_custom_departments()
        if not custom:
            return departments

        existing = {d.id for d in departments}
        merged = list(departments)
        for entry in custom:
            if entry["id"] in existing:
                continue
            existing.add(entry["id"])
            merged.append(Department(id=entry["id"], name=entry["name"]))
        return merged

    # Hidden agents

    def get_hidden_agents(self) -> List[str]:
        return list(self._load().get(HIDDEN_AGENTS, []))

    def hide_agent(self, agent_id: str) -> None:
        data = self._load()
        hidden = data.setdefault(HIDDEN_AGENTS, [])
        if agent_id in hidden:
            return
        hidden.append(agent_id)
        self._save(data)
        logger.info(f"Hid agent {agent_id}")

    def unhide_agent(self, agent_id: str) -> None:
        data = self._load()
        data[HIDDEN_AGENTS] = [a for a in data.get(HIDDEN_AGENTS, []) if a != agent_id]
        self._save(data)
        logger.info(f"Unhid agent {agent_id}")

    def is_agent_hidden(self, agent_id: str) -> bool:
        return agent_id in self.get_hidden_agents()

    def filter_hidden(self, items: Iterable[Any], hidden: Optional[Iterable[str]] = None) -> List[Any]:
        """Drop items whose agent_id is hidden. Items may be dicts or models."""
        hidden_ids = set(self.get_hidden_agents() if hidden is None else hidden)
        items = list(items)
        if not hidden_ids:
            return items
        return [
            item for item in items
            if (item.get("agent_id") if isinstance(item, dict) else getattr(item, "agent_id", None))
            not in hidden_ids
        ]

    # Housekeeping

    def get_last_update_time(self) -> Optional[str]:
        return self._load().get(LAST_UPDATE)

    def clear_all(self) -> None:
        if os.path.exists(self.path):
            os.remove(self.path)
        logger.info("Cleared all local overrides")

    def get_change_count(self) -> Dict[str, int]:
        data = self._load()
        return {
            "agent_changes": len(data.get(AGENT_DEPARTMENTS, {})),
            "custom_departments": len(data.get(CUSTOM_DEPARTMENTS, [])),
        }

    def export_changes(self) -> Dict[str, Any]:
        """Snapshot of all changes, for copying back into the source sheet."""
        data = self._load()
        return {
            "agentDepartments": list(data.get(AGENT_DEPARTMENTS, {}).values()),
            "customDepartments": data.get(CUSTOM_DEPARTMENTS, []),
            "exportedAt": _now_iso(),
        }
