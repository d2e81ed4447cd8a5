"""
Online learning loop over synthesizer parameters.

Each recorded outcome updates the live model's running accuracy. Every
LEARNING_INTERVAL-th result triggers an iteration: the last LEARNING_WINDOW
results are grouped by bet type, each group nudges its parameters toward the
under-represented error class by a fixed step, and everything is clamped to
bounds. The live version is then compared with the best one seen:

- better than best         -> best = copy(current)
- worse than best by > 5   -> current = copy(best), version + 1 (rollback)
- otherwise                -> version + 1 (keep exploring)

State (current, best, trimmed history) is written to a KeyValueStore after
every record. Store failures are logged and swallowed; in-memory state stays
authoritative for the process lifetime.

record() and reset() are serialized by an asyncio.Lock: parameter updates and
rollback decisions are not commutative.
"""

import asyncio
import json
import logging
from collections import defaultdict
from dataclasses import asdict, dataclass, field, fields, replace
from datetime import datetime
from typing import Iterable, Optional

from app.errors import PersistenceFailure
from app.storage.kv import InMemoryKeyValueStore, KeyValueStore
from app.telemetry import record_learning_iteration

logger = logging.getLogger(__name__)

KEY_CURRENT = "ml_current_model"
KEY_BEST = "ml_best_model"
KEY_HISTORY = "ml_history"

RECENT_ACCURACY_WINDOW = 20
BY_BET_TYPE_WINDOW = 100

# Fixed learning steps
OU_THRESHOLD_STEP = 2.0
OU_CAUTION_STEP = 0.05
ONE_X_TWO_ERROR_RATE = 0.4
ONE_X_TWO_LEAD_STEP_UP = 0.2
ONE_X_TWO_TIME_STEP = 0.1
ONE_X_TWO_LEAD_STEP_DOWN = 0.1
ONE_X_TWO_AGGRESSIVE_ACCURACY = 75.0
BTTS_THRESHOLD_STEP = 2.0


@dataclass
class ModelParameters:
    """Knobs the synthesizer reads on every call. Always within PARAMETER_BOUNDS."""

    over_under_late_game_threshold: float = 70.0
    over_under_mid_game_multiplier: float = 1.2
    over_under_early_game_caution: float = 0.8
    one_x_two_lead_threshold: float = 2.0
    one_x_two_time_multiplier: float = 1.0
    btts_time_threshold: float = 75.0
    btts_confidence_boost: float = 1.5
    minimum_minute_for_prediction: float = 20.0
    confidence_decay_factor: float = 0.95

    def copy(self) -> "ModelParameters":
        return replace(self)

    def clamp(self) -> None:
        for name, (low, high) in PARAMETER_BOUNDS.items():
            setattr(self, name, max(low, min(high, getattr(self, name))))

    def within_bounds(self) -> bool:
        return all(
            low <= getattr(self, name) <= high
            for name, (low, high) in PARAMETER_BOUNDS.items()
        )

    @classmethod
    def from_dict(cls, data: dict) -> "ModelParameters":
        """Unknown keys are ignored; anything but a mapping yields the defaults."""
        if not isinstance(data, dict):
            data = {}
        known = {f.name for f in fields(cls)}
        params = cls(**{k: float(v) for k, v in data.items() if k in known})
        params.clamp()
        return params


PARAMETER_BOUNDS: dict[str, tuple[float, float]] = {
    "over_under_late_game_threshold": (60.0, 80.0),
    "over_under_mid_game_multiplier": (1.0, 1.5),
    "over_under_early_game_caution": (0.6, 1.0),
    "one_x_two_lead_threshold": (1.5, 3.0),
    "one_x_two_time_multiplier": (0.8, 1.5),
    "btts_time_threshold": (65.0, 85.0),
    "btts_confidence_boost": (1.0, 2.0),
    "minimum_minute_for_prediction": (10.0, 30.0),
    "confidence_decay_factor": (0.9, 1.0),
}


@dataclass
class ModelVersion:
    version: int = 1
    accuracy: float = 0.0
    total_predictions: int = 0
    correct_predictions: int = 0
    parameters: ModelParameters = field(default_factory=ModelParameters)
    timestamp: datetime = field(default_factory=datetime.utcnow)

    def copy(self) -> "ModelVersion":
        """Value copy; the parameters object is never shared between versions."""
        return replace(self, parameters=self.parameters.copy())

    def to_dict(self) -> dict:
        data = asdict(self)
        data["timestamp"] = self.timestamp.isoformat()
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "ModelVersion":
        total = int(data.get("total_predictions", 0))
        correct = min(int(data.get("correct_predictions", 0)), total)
        return cls(
            version=int(data.get("version", 1)),
            accuracy=float(data.get("accuracy", 0.0)),
            total_predictions=total,
            correct_predictions=correct,
            parameters=ModelParameters.from_dict(data.get("parameters") or {}),
            timestamp=datetime.fromisoformat(data["timestamp"]) if data.get("timestamp") else datetime.utcnow(),
        )


@dataclass(frozen=True)
class MatchResult:
    """One settled prediction. bet_type is the market, e.g. '1X2', 'Over/Under 2.5', 'BTTS'."""

    match_id: str
    predicted: str
    actual: str
    confidence: float
    correct: bool
    bet_type: str
    league: str = ""
    timestamp: datetime = field(default_factory=datetime.utcnow)

    def to_dict(self) -> dict:
        data = asdict(self)
        data["timestamp"] = self.timestamp.isoformat()
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "MatchResult":
        return cls(
            match_id=str(data["match_id"]),
            predicted=data["predicted"],
            actual=data["actual"],
            confidence=float(data["confidence"]),
            correct=bool(data["correct"]),
            bet_type=data["bet_type"],
            league=data.get("league", ""),
            timestamp=datetime.fromisoformat(data["timestamp"]) if data.get("timestamp") else datetime.utcnow(),
        )


def accuracy_of(results: Iterable[MatchResult]) -> float:
    results = list(results)
    if not results:
        return 0.0
    return sum(1 for r in results if r.correct) / len(results) * 100


def group_by_bet_type(results: Iterable[MatchResult]) -> dict[str, list[MatchResult]]:
    grouped: dict[str, list[MatchResult]] = defaultdict(list)
    for result in results:
        grouped[result.bet_type].append(result)
    return dict(grouped)


# =============================================================================
# PER-MARKET ADJUSTMENTS
# =============================================================================


def adjust_over_under(params: ModelParameters, results: list[MatchResult]) -> None:
    false_overs = sum(1 for r in results if not r.correct and "Over" in r.predicted)
    false_unders = sum(1 for r in results if not r.correct and "Under" in r.predicted)

    if false_overs > false_unders:
        params.over_under_late_game_threshold += OU_THRESHOLD_STEP
        params.over_under_early_game_caution -= OU_CAUTION_STEP
        logger.info("[LEARNING] Over/Under: reducing Over predictions")
    elif false_unders > false_overs:
        params.over_under_late_game_threshold -= OU_THRESHOLD_STEP
        params.over_under_early_game_caution += OU_CAUTION_STEP
        logger.info("[LEARNING] Over/Under: increasing Over predictions")


def adjust_one_x_two(params: ModelParameters, results: list[MatchResult]) -> None:
    incorrect = sum(1 for r in results if not r.correct)

    if incorrect > len(results) * ONE_X_TWO_ERROR_RATE:
        params.one_x_two_lead_threshold += ONE_X_TWO_LEAD_STEP_UP
        params.one_x_two_time_multiplier += ONE_X_TWO_TIME_STEP
        logger.info("[LEARNING] 1X2: more conservative")
    elif accuracy_of(results) > ONE_X_TWO_AGGRESSIVE_ACCURACY:
        params.one_x_two_lead_threshold -= ONE_X_TWO_LEAD_STEP_DOWN
        logger.info("[LEARNING] 1X2: more aggressive")


def adjust_btts(params: ModelParameters, results: list[MatchResult]) -> None:
    false_yes = sum(1 for r in results if not r.correct and "Yes" in r.predicted)
    false_no = sum(1 for r in results if not r.correct and "No" in r.predicted)

    if false_no > false_yes:
        params.btts_time_threshold += BTTS_THRESHOLD_STEP
        logger.info("[LEARNING] BTTS: reducing No predictions")
    elif false_yes > false_no:
        params.btts_time_threshold -= BTTS_THRESHOLD_STEP
        logger.info("[LEARNING] BTTS: increasing No predictions")


def adjust_parameters(params: ModelParameters, results: list[MatchResult]) -> None:
    """One learning pass over a results window, clamped in place."""
    for bet_type, group in group_by_bet_type(results).items():
        logger.info(
            f"[LEARNING]   {bet_type}: {accuracy_of(group):.1f}% ({len(group)} samples)"
        )
        if bet_type.startswith("Over/Under"):
            adjust_over_under(params, group)
        elif bet_type == "1X2":
            adjust_one_x_two(params, group)
        elif bet_type == "BTTS":
            adjust_btts(params, group)
    params.clamp()


# =============================================================================
# LOOP
# =============================================================================


class LearningLoop:
    """Owns current/best model versions and the outcome log."""

    def __init__(
        self,
        store: Optional[KeyValueStore] = None,
        *,
        interval: int = 10,
        window: int = 50,
        history_cap: int = 200,
        rollback_margin: float = 5.0,
    ):
        self.store = store or InMemoryKeyValueStore()
        self.interval = interval
        self.window = window
        self.history_cap = history_cap
        self.rollback_margin = rollback_margin

        self.current = ModelVersion()
        self.best = self.current.copy()
        self.history: list[MatchResult] = []
        self.iterations = 0
        self._recorded = 0
        self._lock = asyncio.Lock()

    def get_parameters(self) -> ModelParameters:
        """Snapshot of the live parameters; callers cannot mutate loop state."""
        return self.current.parameters.copy()

    async def record(self, result: MatchResult) -> None:
        async with self._lock:
            self.history.append(result)
            if len(self.history) > self.history_cap:
                self.history = self.history[-self.history_cap:]

            current = self.current
            current.total_predictions += 1
            if result.correct:
                current.correct_predictions += 1
            current.accuracy = current.correct_predictions / current.total_predictions * 100
            self._recorded += 1

            logger.debug(
                f"[LEARNING] Model v{current.version} accuracy: {current.accuracy:.2f}%"
            )

            if self._recorded % self.interval == 0:
                self._learn()

            await self._save()

    def _learn(self) -> None:
        """Caller must hold self._lock."""
        self.iterations += 1
        logger.info(f"[LEARNING] Iteration {self.iterations} started")

        adjust_parameters(self.current.parameters, self.history[-self.window:])

        if self.current.accuracy > self.best.accuracy:
            logger.info(
                f"[LEARNING] New best: {self.current.accuracy:.2f}% > {self.best.accuracy:.2f}%"
            )
            self.best = self.current.copy()
            transition = "new_best"
        elif self.current.accuracy < self.best.accuracy - self.rollback_margin:
            logger.warning(
                f"[LEARNING] Rollback to v{self.best.version} ({self.best.accuracy:.2f}%), "
                f"current at {self.current.accuracy:.2f}%"
            )
            self.current = self.best.copy()
            self.current.version = self.best.version + 1
            transition = "rollback"
        else:
            self.current.version += 1
            transition = "explore"

        self.current.timestamp = datetime.utcnow()
        record_learning_iteration(transition, self.current.accuracy, self.best.accuracy)

    async def reset(self) -> None:
        """Operator action: default parameters for both versions, empty log."""
        async with self._lock:
            self.current = ModelVersion()
            self.best = self.current.copy()
            self.history = []
            self._recorded = 0
            self.iterations = 0
            await self._save()
        logger.info("[LEARNING] Model reset")

    # -----------------------------------------------------------------
    # Persistence
    # -----------------------------------------------------------------

    async def _save(self) -> None:
        payloads = {
            KEY_CURRENT: self.current.to_dict(),
            KEY_BEST: self.best.to_dict(),
            KEY_HISTORY: [r.to_dict() for r in self.history[-self.history_cap:]],
        }
        for key, payload in payloads.items():
            try:
                await self.store.set(key, json.dumps(payload).encode("utf-8"))
            except PersistenceFailure as e:
                logger.warning(f"[LEARNING] Save failed for {key}: {e}")

    async def _load_json(self, key: str):
        try:
            raw = await self.store.get(key)
        except PersistenceFailure as e:
            logger.warning(f"[LEARNING] Load failed for {key}: {e}")
            return None
        if raw is None:
            return None
        try:
            return json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, ValueError) as e:
            logger.warning(f"[LEARNING] Ignoring corrupt payload for {key}: {e}")
            return None

    async def load(self) -> None:
        """Restore persisted state; missing or corrupt payloads leave defaults in place."""
        async with self._lock:
            current = await self._load_json(KEY_CURRENT)
            best = await self._load_json(KEY_BEST)
            history = await self._load_json(KEY_HISTORY)

            try:
                if isinstance(current, dict):
                    self.current = ModelVersion.from_dict(current)
                if isinstance(best, dict):
                    self.best = ModelVersion.from_dict(best)
                if isinstance(history, list):
                    self.history = [MatchResult.from_dict(r) for r in history][-self.history_cap:]
            except (AttributeError, KeyError, TypeError, ValueError) as e:
                logger.warning(f"[LEARNING] Ignoring malformed persisted state: {e}")

            self._recorded = self.current.total_predictions

        logger.info(
            f"[LEARNING] Loaded model v{self.current.version} ({self.current.accuracy:.2f}%)"
        )

    # -----------------------------------------------------------------
    # Reporting
    # -----------------------------------------------------------------

    def get_statistics(self) -> dict:
        recent = self.history[-BY_BET_TYPE_WINDOW:]
        return {
            "current_model": self.current.to_dict(),
            "best_model": self.best.to_dict(),
            "total_predictions": len(self.history),
            "recent_accuracy": accuracy_of(self.history[-RECENT_ACCURACY_WINDOW:]),
            "by_bet_type": [
                {"bet_type": bet_type, "accuracy": accuracy_of(group), "count": len(group)}
                for bet_type, group in group_by_bet_type(recent).items()
            ],
        }
