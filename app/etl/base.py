"""Abstract base class for match data providers and the shared match shapes."""

import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional, Union

import httpx

from app.errors import SourceUnavailable
from app.etl.name_normalization import match_identity_key

# Capability tags advertised by providers
CAP_LIVE_SCORES = "live_scores"
CAP_ODDS = "odds"
CAP_STATISTICS = "statistics"
CAP_LINEUPS = "lineups"

LIVE, SCHEDULED, FINISHED = "live", "scheduled", "finished"

# Synthetic data markers appended to data_sources
CALCULATED_ODDS = "calculated-odds"
ESTIMATED_STATS = "estimated-stats"

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MatchOdds:
    """Decimal odds ladder for the markets the synthesizer understands."""

    home: Optional[float] = None
    draw: Optional[float] = None
    away: Optional[float] = None
    over15: Optional[float] = None
    under15: Optional[float] = None
    over25: Optional[float] = None
    under25: Optional[float] = None
    over35: Optional[float] = None
    under35: Optional[float] = None
    btts_yes: Optional[float] = None
    btts_no: Optional[float] = None

    @property
    def has_1x2(self) -> bool:
        return bool(self.home and self.draw and self.away)

    def over_under(self, line: str) -> tuple[Optional[float], Optional[float]]:
        """(over, under) odds for a line such as '2.5'."""
        suffix = line.replace(".", "")
        return getattr(self, f"over{suffix}", None), getattr(self, f"under{suffix}", None)

    def to_dict(self) -> dict:
        return {k: v for k, v in self.__dict__.items() if v is not None}


@dataclass(frozen=True)
class MatchStatistics:
    """In-play statistics, home/away pairs."""

    possession_home: Optional[float] = None
    possession_away: Optional[float] = None
    shots_home: Optional[int] = None
    shots_away: Optional[int] = None
    shots_on_target_home: Optional[int] = None
    shots_on_target_away: Optional[int] = None
    corners_home: Optional[int] = None
    corners_away: Optional[int] = None
    cards_home: Optional[int] = None
    cards_away: Optional[int] = None
    fouls_home: Optional[int] = None
    fouls_away: Optional[int] = None

    def to_dict(self) -> dict:
        return {k: v for k, v in self.__dict__.items() if v is not None}


@dataclass
class MatchData:
    """Data transfer object for a match as normalized by one provider."""

    external_id: str                 # Provider-prefixed, e.g. "af-1035123"
    home: str
    away: str
    league: str
    status: str                      # "live", "scheduled" or "finished"
    source: str
    country: Optional[str] = None
    home_score: int = 0
    away_score: int = 0
    minute: int = 0
    kickoff: Optional[datetime] = None
    odds: Optional[MatchOdds] = None
    statistics: Optional[MatchStatistics] = None
    lineups: Optional[dict] = None
    data_sources: list[str] = field(default_factory=list)

    def __post_init__(self):
        if not self.data_sources:
            self.data_sources = [self.source]

    @property
    def identity_key(self) -> str:
        """Cross-provider identity: normalized (home, away, kickoff date)."""
        return match_identity_key(self.home, self.away, self.kickoff)


@dataclass(frozen=True)
class EnrichedMatch:
    """Match as returned to callers once an aggregation cycle completes."""

    id: str
    home: str
    away: str
    league: str
    status: str
    home_score: int
    away_score: int
    minute: int
    data_sources: tuple[str, ...]
    data_quality: int
    country: Optional[str] = None
    kickoff: Optional[datetime] = None
    odds: Optional[MatchOdds] = None
    statistics: Optional[MatchStatistics] = None
    lineups: Optional[dict] = None

    @property
    def score(self) -> str:
        return f"{self.home_score} - {self.away_score}"

    @property
    def is_live(self) -> bool:
        return self.status == LIVE

    @property
    def has_real_odds(self) -> bool:
        return self.odds is not None and CALCULATED_ODDS not in self.data_sources

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "home": self.home,
            "away": self.away,
            "league": self.league,
            "country": self.country,
            "status": self.status,
            "score": self.score,
            "minute": self.minute,
            "kickoff": self.kickoff.isoformat() if self.kickoff else None,
            "odds": self.odds.to_dict() if self.odds else None,
            "statistics": self.statistics.to_dict() if self.statistics else None,
            "data_sources": list(self.data_sources),
            "data_quality": self.data_quality,
        }


class SourceFailure:
    """
    Returned instead of None when the request itself failed.

    Falsy, so callers that only want data can keep testing truthiness, while
    admission control can tell "no data for this match" apart from "source
    down" and count the latter against the breaker.
    """

    __slots__ = ("source", "reason")

    def __init__(self, source: str, reason: str):
        self.source = source
        self.reason = reason

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return f"SourceFailure({self.source!r}, {self.reason!r})"


class SourceProvider(ABC):
    """
    Abstract base class for third-party match feeds.

    Implementations must never raise across this boundary: a failed match-list
    request surfaces as an empty list, a failed odds/statistics request as a
    SourceFailure, so the breaker accounting stays uniform.
    """

    name: str = "abstract"
    capabilities: tuple[str, ...] = (CAP_LIVE_SCORES,)
    # Feeds that return every event in one response set this and implement
    # fetch_odds_batch(), so a cycle is charged one request instead of one per match
    batch_odds: bool = False

    @property
    def enabled(self) -> bool:
        """Providers without credentials stay registered but are never admitted."""
        return True

    @abstractmethod
    async def fetch_matches(self) -> list[MatchData]:
        """
        Fetch the provider's current match list.

        Returns:
            List of MatchData objects (empty on any failure).
        """
        pass

    @abstractmethod
    async def fetch_odds(self, match_id: str) -> Optional[MatchOdds]:
        """
        Fetch odds for a match known to this provider.

        Args:
            match_id: Provider-prefixed match id.

        Returns:
            MatchOdds, None if the provider has no odds for the match, or a
            SourceFailure if the request failed.
        """
        pass

    @abstractmethod
    async def fetch_statistics(self, match_id: str) -> Optional[MatchStatistics]:
        """Fetch in-play statistics, None if unavailable, SourceFailure if the request failed."""
        pass

    async def fetch_odds_batch(self, match_ids: list[str]) -> Union[dict, SourceFailure]:
        """Odds for several matches from a single request, keyed by match id (batch_odds feeds only)."""
        raise NotImplementedError(f"{self.name} does not serve batched odds")

    async def close(self) -> None:
        """Close any open connections."""
        return None


class HTTPSourceProvider(SourceProvider):
    """
    SourceProvider backed by a JSON-over-HTTP API.

    Subclasses set BASE_URL and build headers from settings. _get_json()
    raises SourceUnavailable for any transport, status or payload problem;
    the public fetch_* methods catch it and return [] or a SourceFailure.
    """

    BASE_URL: str = ""

    def __init__(self, headers: dict = None, *, client: httpx.AsyncClient = None, timeout: float = 10.0):
        self.client = client or httpx.AsyncClient(headers=headers or {}, timeout=timeout)
        if client is not None and headers:
            self.client.headers.update(headers)

    async def _get_json(self, endpoint: str, params: dict = None):
        url = f"{self.BASE_URL}/{endpoint}" if self.BASE_URL else endpoint
        start_time = time.time()
        try:
            response = await self.client.get(url, params=params)
            response.raise_for_status()
            data = response.json()
        except httpx.TimeoutException as e:
            raise SourceUnavailable(self.name, f"timeout: {e}") from e
        except httpx.HTTPStatusError as e:
            raise SourceUnavailable(self.name, f"http_{e.response.status_code}") from e
        except httpx.RequestError as e:
            raise SourceUnavailable(self.name, f"request_error: {e}") from e
        except ValueError as e:
            raise SourceUnavailable(self.name, "invalid_json") from e

        logger.debug(
            f"[{self.name.upper()}] GET {endpoint} -> {response.status_code} "
            f"in {(time.time() - start_time) * 1000:.0f}ms"
        )
        return data

    async def close(self) -> None:
        """Close the HTTP client."""
        await self.client.aclose()


def parse_kickoff(value) -> Optional[datetime]:
    """ISO-8601 timestamp to naive UTC datetime, None when absent or malformed."""
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def parse_int(value, default: int = 0) -> int:
    """Lenient int parsing for provider payloads ("45'", "3", None, "")."""
    if value is None:
        return default
    if isinstance(value, (int, float)):
        return int(value)
    digits = "".join(ch for ch in str(value).split("+")[0] if ch.isdigit())
    return int(digits) if digits else default
