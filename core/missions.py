"""Mission registry and per-player mission state machine.

Mission states: locked → unlocked → active → completed. Task flags only ever
go False → True during play; ``restart_mission`` is the one administrative
reset. Mission completion is evaluated once the outermost event emission has
settled (see ``EventBus.add_settle_hook``), so every handler triggered by the
same action has run before rewards are granted and the next mission starts.
"""

from __future__ import annotations

import logging
import math
import re
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any, Callable

import yaml

from core.events import (
    CATEGORY_COMPLETED, CURRENCY_CHANGED, HINT_USED, MISSION_COMPLETED,
    MISSION_STARTED, TASK_COMPLETED, EventBus,
)

if TYPE_CHECKING:
    from core.wallet import Wallet

log = logging.getLogger(__name__)

# ── Constants ────────────────────────────────────────────────────

CATEGORY_ORDER: dict[str, int] = {
    "training": 1,
    "script-kiddie": 2,
    "cyber-warrior": 3,
    "digital-ninja": 4,
}

DEFAULT_TASK_REWARD = 10
DEFAULT_EXPECTED_TIME = 900
DEFAULT_SPEED_THRESHOLD = 0.75

DEFAULT_BONUSES: dict[str, float] = {
    "perfect_completion": 1.5,
    "speed_bonus": 1.2,
    "no_hints": 1.3,
}

DEFAULT_EXPECTED_TIMES: dict[str, float] = {
    "welcome-00": 300,
    "tutorial-01": 600,
    "network-01": 600,
    "network-02": 720,
    "network-03": 900,
}

LOCKED = "locked"
UNLOCKED = "unlocked"
ACTIVE = "active"
COMPLETED = "completed"

_TRAILING_NUM_RE = re.compile(r"-(\d+)$")
_ANY_NUM_RE = re.compile(r"\d+")


class ContentError(ValueError):
    """Malformed mission content."""


# ── Definitions (immutable) ──────────────────────────────────────

@dataclass(frozen=True, slots=True)
class Task:
    id: str
    description: str
    match: Any
    type: str = "command"
    hints: tuple[str, ...] = ()
    reward: int | None = None
    objective: str = ""


@dataclass(frozen=True, slots=True)
class Mission:
    id: str
    title: str
    category: str
    tasks: tuple[Task, ...]
    prerequisites: tuple[str, ...] = ()
    reward: int = 0
    description: str = ""
    expected_time: float | None = None
    unlock_commands: tuple[str, ...] = ()
    difficulty: str = ""
    order: int = 0

    def get_task(self, task_id: str) -> Task | None:
        for t in self.tasks:
            if t.id == task_id:
                return t
        return None

    @property
    def task_ids(self) -> list[str]:
        return [t.id for t in self.tasks]


def sequence_number(mission_id: str) -> int:
    """In-category sequence number: trailing -NN, else first number, else 999."""
    m = _TRAILING_NUM_RE.search(mission_id)
    if m:
        return int(m.group(1))
    m = _ANY_NUM_RE.search(mission_id)
    return int(m.group(0)) if m else 999


def mission_sort_key(mission: Mission) -> tuple[int, int, int, str]:
    return (
        CATEGORY_ORDER.get(mission.category, 99),
        sequence_number(mission.id),
        mission.order,
        mission.id,
    )


def _task_from_dict(d: dict[str, Any], parse_match: Callable[[dict[str, Any]], Any],
                    mission_id: str) -> Task:
    if "id" not in d:
        raise ContentError(f"mission {mission_id}: task without id")
    spec = d.get("match")
    if not isinstance(spec, dict):
        raise ContentError(f"mission {mission_id} task {d['id']}: missing match spec")
    try:
        match = parse_match(spec)
    except (KeyError, TypeError, ValueError) as e:
        raise ContentError(f"mission {mission_id} task {d['id']}: {e}") from e
    return Task(
        id=d["id"],
        description=d.get("description", ""),
        match=match,
        type=d.get("type", "command"),
        hints=tuple(d.get("hints", ())),
        reward=d.get("reward"),
        objective=d.get("objective", ""),
    )


# ── Registry ─────────────────────────────────────────────────────

class MissionRegistry:
    """All mission definitions, keyed by id."""

    def __init__(self) -> None:
        self._missions: dict[str, Mission] = {}

    def add(self, mission: Mission) -> None:
        if mission.id in self._missions:
            log.warning("Duplicate mission id %s, replacing", mission.id)
        self._missions[mission.id] = mission

    def get(self, mission_id: str) -> Mission | None:
        return self._missions.get(mission_id)

    def __contains__(self, mission_id: str) -> bool:
        return mission_id in self._missions

    def __len__(self) -> int:
        return len(self._missions)

    def all(self) -> list[Mission]:
        return list(self._missions.values())

    def ordered(self) -> list[Mission]:
        return sorted(self._missions.values(), key=mission_sort_key)

    def by_category(self, category: str) -> list[Mission]:
        return [m for m in self.ordered() if m.category == category]

    def categories(self) -> list[str]:
        seen: list[str] = []
        for m in self.ordered():
            if m.category not in seen:
                seen.append(m.category)
        return seen

    def load_yaml(self, path: str | Path,
                  parse_match: Callable[[dict[str, Any]], Any]) -> None:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        base = len(self._missions)
        for idx, d in enumerate(data.get("missions", [])):
            if "id" not in d:
                raise ContentError(f"{path}: mission #{idx} has no id")
            mission_id = d["id"]
            tasks = tuple(_task_from_dict(t, parse_match, mission_id) for t in d.get("tasks", []))
            if not tasks:
                raise ContentError(f"mission {mission_id}: no tasks")
            self.add(Mission(
                id=mission_id,
                title=d.get("title", mission_id),
                category=d.get("category", "training"),
                tasks=tasks,
                prerequisites=tuple(d.get("prerequisites", ())),
                reward=int(d.get("reward", 0)),
                description=d.get("description", ""),
                expected_time=d.get("expected_time"),
                unlock_commands=tuple(d.get("unlock_commands", ())),
                difficulty=d.get("difficulty", ""),
                order=base + idx,
            ))
        for m in self._missions.values():
            for p in m.prerequisites:
                if p not in self._missions:
                    log.warning("Mission %s: unknown prerequisite %s", m.id, p)
        log.info("Missions loaded: %d", len(self._missions))


# ── State machine ────────────────────────────────────────────────

def round_half_up(value: float) -> int:
    # chained float multipliers can land a hair under .5
    return int(math.floor(value + 0.5 + 1e-9))


class MissionStateMachine:
    """One player's mission progress. All mutation goes through here."""

    def __init__(
        self,
        registry: MissionRegistry,
        bus: EventBus,
        wallet: Wallet,
        config: dict[str, Any] | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        cfg = config or {}
        rewards_cfg = cfg.get("rewards", {}) or {}
        missions_cfg = cfg.get("missions", {}) or {}

        self.registry = registry
        self.bus = bus
        self.wallet = wallet
        self._clock = clock

        self.task_reward: int = rewards_cfg.get("task", DEFAULT_TASK_REWARD)
        self.bonuses: dict[str, float] = {**DEFAULT_BONUSES, **(rewards_cfg.get("bonuses") or {})}
        self.expected_times: dict[str, float] = {
            **DEFAULT_EXPECTED_TIMES, **(missions_cfg.get("expected_times") or {}),
        }
        self.default_expected_time: float = missions_cfg.get(
            "default_expected_time", DEFAULT_EXPECTED_TIME)
        self.speed_threshold: float = missions_cfg.get("speed_threshold", DEFAULT_SPEED_THRESHOLD)
        self.auto_chain: bool = missions_cfg.get("auto_chain", True)

        self.current_mission_id: str | None = None
        self.completed_missions: list[str] = []
        self.task_progress: dict[str, dict[str, bool]] = {}
        self.mission_start_time: float | None = None
        self.hints_used: dict[str, dict[str, int]] = {}

        self._pending: list[str] = []
        self._settling = False
        self._remove_hook = bus.add_settle_hook(self.settle)

    def detach(self) -> None:
        self._remove_hook()

    # ── Queries ──────────────────────────────────────────────────

    @property
    def current_mission(self) -> Mission | None:
        if self.current_mission_id is None:
            return None
        return self.registry.get(self.current_mission_id)

    def is_completed(self, mission_id: str) -> bool:
        return mission_id in self.completed_missions

    def is_unlocked(self, mission_id: str) -> bool:
        mission = self.registry.get(mission_id)
        if mission is None:
            return False
        return all(p in self.completed_missions for p in mission.prerequisites)

    def status(self, mission_id: str) -> str:
        if mission_id in self.completed_missions:
            return COMPLETED
        if mission_id == self.current_mission_id:
            return ACTIVE
        return UNLOCKED if self.is_unlocked(mission_id) else LOCKED

    def is_task_completed(self, mission_id: str, task_id: str) -> bool:
        return self.task_progress.get(mission_id, {}).get(task_id, False)

    def incomplete_tasks(self, mission_id: str) -> list[Task]:
        mission = self.registry.get(mission_id)
        if mission is None:
            return []
        return [t for t in mission.tasks if not self.is_task_completed(mission_id, t.id)]

    def progress(self, mission_id: str) -> tuple[int, int]:
        """(done, total) task counts."""
        mission = self.registry.get(mission_id)
        if mission is None:
            return (0, 0)
        done = sum(1 for t in mission.tasks if self.is_task_completed(mission_id, t.id))
        return (done, len(mission.tasks))

    def all_tasks_done(self, mission_id: str) -> bool:
        mission = self.registry.get(mission_id)
        if mission is None:
            return False
        return all(self.is_task_completed(mission_id, t.id) for t in mission.tasks)

    def expected_time(self, mission: Mission) -> float:
        if mission.expected_time:
            return float(mission.expected_time)
        return float(self.expected_times.get(mission.id, self.default_expected_time))

    def elapsed(self) -> float | None:
        if self.mission_start_time is None:
            return None
        return max(0.0, self._clock() - self.mission_start_time)

    def next_mission(self) -> Mission | None:
        """First not-completed mission, in play order, whose prerequisites are met.

        Missions that declare prerequisites win; a mission without any is only
        picked when nothing else is eligible.
        """
        fallback = None
        for mission in self.registry.ordered():
            if mission.id in self.completed_missions:
                continue
            if not mission.prerequisites:
                if fallback is None:
                    fallback = mission
                continue
            if self.is_unlocked(mission.id):
                return mission
        return fallback

    # ── Transitions ──────────────────────────────────────────────

    async def start_mission(self, mission_id: str) -> bool:
        mission = self.registry.get(mission_id)
        if mission is None:
            log.warning("start_mission: unknown mission %s", mission_id)
            return False
        if mission_id in self.completed_missions:
            log.info("start_mission: %s already completed", mission_id)
            return False

        flags = self.task_progress.setdefault(mission_id, {})
        for task in mission.tasks:
            flags.setdefault(task.id, False)
        self.current_mission_id = mission_id
        self.mission_start_time = None
        log.info("Mission started: %s (%s)", mission_id, mission.title)
        await self.bus.publish(MISSION_STARTED, mission_id=mission_id, category=mission.category)
        return True

    def start_timer(self) -> bool:
        """Start the mission clock on the first command; no-op afterwards."""
        if self.current_mission_id is None or self.mission_start_time is not None:
            return False
        self.mission_start_time = self._clock()
        return True

    async def complete_task(self, mission_id: str, task_id: str) -> bool:
        """Mark a task done. False when unknown or already done."""
        mission = self.registry.get(mission_id)
        if mission is None:
            return False
        task = mission.get_task(task_id)
        if task is None:
            log.warning("complete_task: %s has no task %s", mission_id, task_id)
            return False
        flags = self.task_progress.setdefault(mission_id, {})
        if flags.get(task_id):
            return False

        flags[task_id] = True
        reward = self.task_reward if task.reward is None else task.reward
        if reward:
            await self._credit(reward, f"Completed a task: {task.description or task_id}")
        log.info("Task completed: %s/%s (+%d)", mission_id, task_id, reward)

        if self.all_tasks_done(mission_id) and mission_id not in self._pending:
            self._pending.append(mission_id)
        await self.bus.publish(
            TASK_COMPLETED, mission_id=mission_id, task_id=task_id, reward=reward,
        )
        return True

    async def settle(self) -> None:
        """Finalize every mission whose tasks are all done. Runs after emit joins."""
        if self._settling or not self._pending:
            return
        self._settling = True
        try:
            while self._pending:
                mission_id = self._pending.pop(0)
                if self.all_tasks_done(mission_id):
                    await self._finalize(mission_id)
        finally:
            self._settling = False

    def compute_reward(self, mission: Mission, elapsed: float | None,
                       used_hints: bool) -> tuple[int, list[str]]:
        multiplier = 1.0
        applied: list[str] = []
        if self.all_tasks_done(mission.id):
            multiplier *= self.bonuses["perfect_completion"]
            applied.append("perfect_completion")
        if elapsed is not None and elapsed < self.speed_threshold * self.expected_time(mission):
            multiplier *= self.bonuses["speed_bonus"]
            applied.append("speed_bonus")
        if not used_hints:
            multiplier *= self.bonuses["no_hints"]
            applied.append("no_hints")
        return round_half_up(mission.reward * multiplier), applied

    async def _finalize(self, mission_id: str) -> None:
        if mission_id in self.completed_missions:
            return
        mission = self.registry.get(mission_id)
        if mission is None:
            return

        self.completed_missions.append(mission_id)
        elapsed = self.elapsed() if mission_id == self.current_mission_id else None
        used_hints = any(self.hints_used.get(mission_id, {}).values())
        total, applied = self.compute_reward(mission, elapsed, used_hints)
        if total:
            await self._credit(total, f"Mission completed: {mission.title}")
        log.info("Mission completed: %s reward=%d bonuses=%s", mission_id, total, applied)

        if mission_id == self.current_mission_id:
            self.current_mission_id = None
            self.mission_start_time = None

        await self.bus.publish(
            MISSION_COMPLETED, mission_id=mission_id, category=mission.category,
            reward=total, bonuses=tuple(applied), elapsed=elapsed,
            unlock_commands=mission.unlock_commands,
        )

        category = mission.category
        if all(m.id in self.completed_missions for m in self.registry.by_category(category)):
            log.info("Category completed: %s", category)
            await self.bus.publish(CATEGORY_COMPLETED, category=category)

        if self.auto_chain and self.current_mission_id is None:
            nxt = self.next_mission()
            if nxt is not None:
                await self.start_mission(nxt.id)
            else:
                log.info("No further missions available")

    async def _credit(self, amount: int, reason: str) -> None:
        tx = self.wallet.credit(amount, reason)
        await self.bus.publish(CURRENCY_CHANGED, amount=amount, balance=tx.balance, reason=reason)

    # ── Hints ────────────────────────────────────────────────────

    async def use_hint(self, mission_id: str | None = None,
                       task_id: str | None = None) -> tuple[Task, str] | None:
        """Reveal the next hint for a task (default: first incomplete task)."""
        mission_id = mission_id or self.current_mission_id
        mission = self.registry.get(mission_id) if mission_id else None
        if mission is None:
            return None
        if task_id is None:
            pending = self.incomplete_tasks(mission.id)
            if not pending:
                return None
            task = pending[0]
        else:
            task = mission.get_task(task_id)
            if task is None:
                return None
        if not task.hints:
            return None

        seen = self.hints_used.setdefault(mission.id, {})
        idx = min(seen.get(task.id, 0), len(task.hints) - 1)
        seen[task.id] = idx + 1
        await self.bus.publish(HINT_USED, mission_id=mission.id, task_id=task.id, index=idx)
        return task, task.hints[idx]

    # ── Administration ───────────────────────────────────────────

    async def restart_mission(self, mission_id: str) -> bool:
        """Reset a mission's task flags, hints and timer.

        ``completed_missions`` is never shrunk; a completed mission's progress
        is reset for display only and it does not become current again.
        """
        mission = self.registry.get(mission_id)
        if mission is None:
            return False
        self.task_progress[mission_id] = {t.id: False for t in mission.tasks}
        self.hints_used.pop(mission_id, None)
        if mission_id in self._pending:
            self._pending.remove(mission_id)
        if mission_id in self.completed_missions:
            return True
        self.current_mission_id = mission_id
        self.mission_start_time = None
        await self.bus.publish(MISSION_STARTED, mission_id=mission_id,
                               category=mission.category, restarted=True)
        return True

    # ── Snapshot ─────────────────────────────────────────────────

    def export_state(self) -> dict[str, Any]:
        return {
            "current_mission_id": self.current_mission_id,
            "completed_missions": list(self.completed_missions),
            "task_progress": {m: dict(t) for m, t in self.task_progress.items()},
            "mission_start_time": self.mission_start_time,
            "hints_used": {m: dict(t) for m, t in self.hints_used.items()},
        }

    def import_state(self, data: dict[str, Any]) -> None:
        self.current_mission_id = data.get("current_mission_id")
        completed: list[str] = []
        for mid in data.get("completed_missions", []):
            if mid not in completed:
                completed.append(mid)
        self.completed_missions = completed
        self.task_progress = {
            m: {t: bool(v) for t, v in flags.items()}
            for m, flags in (data.get("task_progress") or {}).items()
        }
        self.mission_start_time = data.get("mission_start_time")
        self.hints_used = {
            m: {t: int(v) for t, v in tasks.items()}
            for m, tasks in (data.get("hints_used") or {}).items()
        }
        self._pending.clear()
