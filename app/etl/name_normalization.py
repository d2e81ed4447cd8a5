"""
Team name normalization for cross-provider de-duplication.

Providers spell the same club differently ("Manchester United FC" vs
"Manchester United", "Bodø/Glimt" vs "Bodo Glimt"); the aggregator keys
matches on the normalized (home, away, kickoff date) tuple.
"""

import re
import unicodedata
from datetime import datetime
from typing import Optional


_SAFE_ORG_TOKENS = [
    r"\bfc\b", r"\bcf\b", r"\bsc\b", r"\bafc\b", r"\bssc\b",
    r"\bac\b", r"\bas\b", r"\bcd\b", r"\bud\b", r"\brc\b",
    r"\bsv\b", r"\bvfb\b", r"\btsv\b", r"\bfk\b", r"\bsk\b",
    r"\bclub\b",
]


def normalize_team_name(name: str) -> str:
    """
    Normalize team name for matching across feeds.

    Lowercases, strips diacritics, turns punctuation into spaces and removes
    juridical tokens only ("fc", "sc", ...). Semantic tokens such as "real",
    "united" or "city" are kept so distinct clubs do not collide.

    Examples:
        "Manchester United FC" -> "manchester united"
        "FC Barcelona"         -> "barcelona"
        "Bodo/Glimt"           -> "bodo glimt"
    """
    if not name:
        return ""

    name = name.lower().strip()

    # Nordic letters are not decomposed by NFKD
    name = name.replace("ø", "o").replace("æ", "ae").replace("ð", "d")
    name = unicodedata.normalize("NFKD", name)
    name = "".join(c for c in name if not unicodedata.combining(c))

    name = re.sub(r"[^\w\s]", " ", name)

    for token in _SAFE_ORG_TOKENS:
        name = re.sub(token, "", name)

    return " ".join(name.split())


def match_identity_key(home: str, away: str, kickoff: Optional[datetime]) -> str:
    """
    Identity key used to de-duplicate one fixture reported by several sources.

    Kickoff is reduced to its calendar date; an unknown kickoff maps to the
    "undated" bucket so two undated reports of the same pairing still merge.
    """
    day = kickoff.date().isoformat() if kickoff else "undated"
    return f"{normalize_team_name(home)}|{normalize_team_name(away)}|{day}"
