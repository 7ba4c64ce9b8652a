import re
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Tuple

from rapidfuzz import fuzz, process

# =========================
# Hierarchies
# =========================
# Lower index = more permissive.
MOVIE_RATINGS: Tuple[str, ...] = ("G", "PG", "PG-13", "R", "NC-17")
TV_RATINGS: Tuple[str, ...] = ("TV-Y", "TV-Y7", "TV-G", "TV-PG", "TV-14", "TV-MA")

# Explicitly "no rating". NR is a sentinel only and never part of a hierarchy.
UNRATED_VALUES = frozenset({"NR", "UR", "Unrated", "Not Rated", ""})

MEDIA_TYPES = ("movie", "tv")


def hierarchy_for(media_type: str) -> Tuple[str, ...]:
    if media_type == "movie":
        return MOVIE_RATINGS
    if media_type == "tv":
        return TV_RATINGS
    raise ValueError(f"Unsupported media_type '{media_type}'")


@dataclass(frozen=True)
class ContentRatingLimits:
    max_movie_rating: Optional[str] = None
    max_tv_rating: Optional[str] = None
    block_unrated: bool = False
    block_adult: bool = False

    def has_active_limits(self) -> bool:
        return bool(
            self.max_movie_rating
            or self.max_tv_rating
            or self.block_unrated
            or self.block_adult
        )

    def movie_active(self) -> bool:
        return bool(self.max_movie_rating or self.block_unrated)

    def tv_active(self) -> bool:
        return bool(self.max_tv_rating or self.block_unrated)

    def ceiling_for(self, media_type: str) -> Optional[str]:
        return self.max_movie_rating if media_type == "movie" else self.max_tv_rating

    def as_dict(self) -> Dict[str, object]:
        return {
            "maxMovieRating": self.max_movie_rating,
            "maxTvRating": self.max_tv_rating,
            "blockUnrated": self.block_unrated,
            "blockAdult": self.block_adult,
        }


NO_LIMITS = ContentRatingLimits()

# =========================
# Single-item classifier
# =========================
def _index(hierarchy: Tuple[str, ...], value: str) -> int:
    try:
        return hierarchy.index(value)
    except ValueError:
        return -1


def should_filter(
    rating: Optional[str],
    max_rating: Optional[str],
    block_unrated: bool,
    hierarchy: Tuple[str, ...],
) -> bool:
    """
    Return True when an item with `rating` must be BLOCKED.

    Missing, sentinel and unrecognised ratings follow `block_unrated`.
    A ceiling that is not in the hierarchy never blocks rated content.
    Lookups are exact and case-sensitive.
    """
    if not max_rating and not block_unrated:
        return False

    if rating is None or rating in UNRATED_VALUES:
        return block_unrated

    if not max_rating:
        return False

    rating_index = _index(hierarchy, rating)
    max_index = _index(hierarchy, max_rating)

    if rating_index == -1:
        return block_unrated
    if max_index == -1:
        return False

    return rating_index > max_index


def should_filter_movie(
    rating: Optional[str], max_rating: Optional[str], block_unrated: bool = False
) -> bool:
    return should_filter(rating, max_rating, block_unrated, MOVIE_RATINGS)


def should_filter_tv(
    rating: Optional[str], max_rating: Optional[str], block_unrated: bool = False
) -> bool:
    return should_filter(rating, max_rating, block_unrated, TV_RATINGS)


def most_restrictive(ratings: Iterable[str], hierarchy: Tuple[str, ...]) -> Optional[str]:
    known = [r for r in ratings if r in hierarchy]
    if not known:
        return None
    return max(known, key=hierarchy.index)

# =========================
# Admin helpers
# =========================
MOVIE_RATING_LABELS = {
    "G": "General Audiences",
    "PG": "Parental Guidance Suggested",
    "PG-13": "Parents Strongly Cautioned",
    "R": "Restricted",
    "NC-17": "Adults Only",
}

TV_RATING_LABELS = {
    "TV-Y": "All Children",
    "TV-Y7": "Directed to Older Children",
    "TV-G": "General Audience",
    "TV-PG": "Parental Guidance Suggested",
    "TV-14": "Parents Strongly Cautioned",
    "TV-MA": "Mature Audience Only",
}


def _options(hierarchy: Tuple[str, ...], labels: Dict[str, str]) -> List[Dict[str, str]]:
    opts = [{"value": "", "label": "No Restriction"}]
    opts.extend({"value": r, "label": f"{r} - {labels[r]}"} for r in hierarchy)
    return opts


def movie_rating_options() -> List[Dict[str, str]]:
    return _options(MOVIE_RATINGS, MOVIE_RATING_LABELS)


def tv_rating_options() -> List[Dict[str, str]]:
    return _options(TV_RATINGS, TV_RATING_LABELS)


def _squash(value: str) -> str:
    return re.sub(r"[^A-Z0-9]", "", value.upper())


def suggest_rating(value: str, hierarchy: Tuple[str, ...], threshold: int = 70) -> Optional[str]:
    """Closest hierarchy label to a mistyped value, for config error messages only."""
    if not value:
        return None
    match = process.extractOne(
        str(value), hierarchy, scorer=fuzz.ratio, processor=_squash, score_cutoff=threshold
    )
    return match[0] if match else None
