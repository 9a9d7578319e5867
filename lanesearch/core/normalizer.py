"""Query normalization for lanesearch.

Turns free text typed by the user, or a curated entity picked from a list,
into a :class:`NormalizedQuery`: one cache key shared by every source plus
the request text each individual source should receive.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Dict, Mapping, Optional

from lanesearch.core.errors import NoContentForEntity

logger = logging.getLogger(__name__)

KOREAN_SURNAMES = frozenset(
    "김이박최정강조윤장임한오서신권황안송전홍유고문양손배백허노심하주구곽성차우민류나진지엄채원천"
    "방공현함변염여추도소석선설마길연위표명기반피왕금옥육인맹남탁국어경은편제빈봉사부"
)

# Korean stage names romanized for sources that only index latin names.
IDOL_NAME_MAP: Dict[str, str] = {
    "카리나": "karina", "윈터": "winter", "지젤": "giselle", "닝닝": "ningning",
    "유진": "yujin", "원영": "wonyoung", "가을": "gaeul", "리즈": "liz",
    "레이": "rei", "이서": "leeseo",
    "민지": "minji", "하니": "hanni", "다니엘": "danielle", "해린": "haerin",
    "혜인": "hyein",
    "지수": "jisoo", "제니": "jennie", "로제": "rose", "리사": "lisa",
    "미연": "miyeon", "민니": "minnie", "소연": "soyeon", "우기": "yuqi",
    "슈화": "shuhua",
    "나연": "nayeon", "정연": "jeongyeon", "모모": "momo", "사나": "sana",
    "지효": "jihyo", "미나": "mina", "다현": "dahyun", "채영": "chaeyoung",
    "쯔위": "tzuyu",
    "아이린": "irene", "슬기": "seulgi", "웬디": "wendy", "조이": "joy",
    "예리": "yeri",
}

_WHITESPACE_RE = re.compile(r"\s+")
_HANGUL_NAME_RE = re.compile(r"^[가-힣]{3}$")

# Marks a source the entity explicitly has no content on.
_NO_CONTENT = None


def collapse_whitespace(text: str) -> str:
    return _WHITESPACE_RE.sub(" ", (text or "").strip())


def remove_korean_surname(name: str) -> str:
    """Drop the surname from a three-syllable Korean name ("홍은채" -> "은채")."""
    if _HANGUL_NAME_RE.match(name) and name[0] in KOREAN_SURNAMES:
        return name[1:]
    return name


@dataclass
class CuratedEntity:
    """A member or group the user can pick instead of typing.

    Attributes
    ----------
    name: str
        Display name, used when no localized alias exists.
    aliases: Dict[str, str]
        Localized names keyed by language code (``"ko"``, ``"en"``).
    source_slugs: Dict[str, Optional[str]]
        Source specific request text.  A value of ``None`` means the entity
        has no content on that source at all.
    kind: str
        ``"member"`` or ``"group"``.
    """

    name: str
    aliases: Dict[str, str] = field(default_factory=dict)
    source_slugs: Dict[str, Optional[str]] = field(default_factory=dict)
    kind: str = "member"

    def __post_init__(self) -> None:
        if not collapse_whitespace(self.name):
            raise ValueError("CuratedEntity name cannot be empty")
        if self.kind not in ("member", "group"):
            raise ValueError(f"Invalid entity kind: {self.kind}")


@dataclass(frozen=True)
class NormalizedQuery:
    """A query ready to be fanned out to the sources."""

    text: str
    cache_key: str
    source_slugs: Mapping[str, Optional[str]] = field(default_factory=dict)
    romanized: Optional[str] = None

    def for_source(
        self,
        source_id: str,
        *,
        strips_hashtag: bool = False,
        romanized: bool = False,
    ) -> str:
        """Return the request text for one source.

        Raises:
            NoContentForEntity: If the selected entity declares it has nothing
                on ``source_id``.
        """
        if source_id in self.source_slugs:
            slug = self.source_slugs[source_id]
            if slug is _NO_CONTENT:
                raise NoContentForEntity(
                    f"No {source_id} content for '{self.text}'", source_id=source_id
                )
            return slug

        text = self.text
        if romanized and self.romanized:
            text = self.romanized
        if strips_hashtag and text.startswith("#"):
            text = text[1:]
        return text


class QueryNormalizer:
    """Builds :class:`NormalizedQuery` objects from text or curated entities."""

    def __init__(self, alias_map: Optional[Mapping[str, str]] = None) -> None:
        """Initialize the normalizer.

        Args:
            alias_map: Romanization table for free-text names; defaults to
                :data:`IDOL_NAME_MAP`.
        """
        source = IDOL_NAME_MAP if alias_map is None else alias_map
        self.alias_map: Dict[str, str] = {k.casefold(): v for k, v in source.items()}
        self.logger = logging.getLogger(self.__class__.__name__)

    @staticmethod
    def cache_key(text: str) -> str:
        return collapse_whitespace(text).casefold()

    def romanize(self, text: str) -> Optional[str]:
        key = self.cache_key(text)
        romanized = self.alias_map.get(key)
        if romanized is None:
            romanized = self.alias_map.get(remove_korean_surname(key))
        return romanized

    def normalize(self, raw_query: str) -> NormalizedQuery:
        """Normalize free text typed by the user.

        Raises:
            ValueError: If the query is blank.
        """
        text = collapse_whitespace(raw_query)
        if not text:
            raise ValueError("Query cannot be empty")
        return NormalizedQuery(
            text=text,
            cache_key=self.cache_key(text),
            romanized=self.romanize(text),
        )

    def resolve_selection(self, entity: CuratedEntity, language: str = "ko") -> NormalizedQuery:
        """Resolve a curated entity to a query.

        The localized alias wins over the display name.  Korean member names
        lose their surname since sources index members by given name.  The
        cache key only depends on the resolved text, so picking an entity and
        typing the same text share one cache entry.
        """
        text = collapse_whitespace(entity.aliases.get(language) or entity.name)
        if entity.kind == "member":
            text = remove_korean_surname(text)

        self.logger.debug(
            "Resolved %s '%s' to '%s' (slugs: %s)",
            entity.kind,
            entity.name,
            text,
            sorted(entity.source_slugs),
        )
        return NormalizedQuery(
            text=text,
            cache_key=self.cache_key(text),
            source_slugs=dict(entity.source_slugs),
            romanized=self.romanize(text),
        )
