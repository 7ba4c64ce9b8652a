import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from certifications import CertificationError, CertificationResolver, RatedItem
from content_ratings import ContentRatingLimits, hierarchy_for, should_filter

RESTRICTED_MESSAGE = "This content is restricted by your parental controls."

DEFAULT_MAX_WORKERS = 10


@dataclass(frozen=True)
class Decision:
    allowed: bool
    reason: str
    certification: Optional[str] = None

# =========================
# Credits (tagged union)
# =========================
@dataclass(frozen=True)
class MovieCredit:
    id: Any
    adult: bool
    raw: Dict[str, Any]
    media_type: str = "movie"


@dataclass(frozen=True)
class TvCredit:
    id: Any
    adult: bool
    raw: Dict[str, Any]
    media_type: str = "tv"


@dataclass(frozen=True)
class OtherCredit:
    raw: Dict[str, Any]
    adult: bool = False


Credit = Union[MovieCredit, TvCredit, OtherCredit]


def parse_credit(entry: Dict[str, Any]) -> Credit:
    media_type = entry.get("media_type")
    adult = bool(entry.get("adult", False))
    if media_type == "movie":
        return MovieCredit(entry.get("id"), adult, entry)
    if media_type == "tv":
        return TvCredit(entry.get("id"), adult, entry)
    return OtherCredit(entry, adult)


@dataclass(frozen=True)
class _CreditStep:
    """What the credits filter does with one entry: keep it, drop it, or await lookup `index`."""

    keep: bool = False
    index: Optional[int] = None


def _type_active(media_type: str, limits: ContentRatingLimits) -> bool:
    return limits.movie_active() if media_type == "movie" else limits.tv_active()


def _blocked(rated: RatedItem, limits: ContentRatingLimits) -> bool:
    return should_filter(
        rated.certification,
        limits.ceiling_for(rated.media_type),
        limits.block_unrated,
        hierarchy_for(rated.media_type),
    )

# =========================
# Filter
# =========================
class RatingFilter:
    """
    Apply a user's ContentRatingLimits to single items and result lists.

    Lookups run concurrently and every one of them is awaited before a
    result is produced. A failed lookup always blocks (detail) or drops
    (list) the item.
    """

    def __init__(self, resolver: CertificationResolver, max_workers: int = DEFAULT_MAX_WORKERS) -> None:
        self.resolver = resolver
        self.max_workers = max(1, int(max_workers))

    def _lookup(self, media_type: str, item_id: Any) -> RatedItem:
        if item_id is None:
            raise CertificationError(f"{media_type} item has no id")
        return self.resolver.resolve(media_type, item_id)

    def _settle(self, lookups: Sequence[Tuple[str, Any]]) -> List[Tuple[Optional[RatedItem], Optional[BaseException]]]:
        """Run every lookup and report each one's result or exception, in input order."""
        if not lookups:
            return []
        workers = min(self.max_workers, len(lookups))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="rating-lookup") as pool:
            futures = [pool.submit(self._lookup, mt, item_id) for mt, item_id in lookups]
        outcomes = []
        for fut in futures:
            exc = fut.exception()
            outcomes.append((None, exc) if exc is not None else (fut.result(), None))
        return outcomes

    # --- detail guard ---
    def check(self, media_type: str, item_id: Any, limits: ContentRatingLimits) -> Decision:
        if not (_type_active(media_type, limits) or limits.block_adult):
            return Decision(True, "unrestricted")

        ceiling = limits.ceiling_for(media_type)
        try:
            rated = self._lookup(media_type, item_id)
        except Exception as exc:
            logging.warning(
                "Failed to verify %s rating, blocking access: id=%s maxRating=%s error=%s",
                media_type, item_id, ceiling, exc,
            )
            return Decision(False, "lookup_failed")

        if limits.block_adult and rated.adult:
            logging.debug("Blocked %s detail access (adult): id=%s", media_type, item_id)
            return Decision(False, "adult", rated.certification)

        if _type_active(media_type, limits) and _blocked(rated, limits):
            logging.debug(
                "Blocked %s detail access by rating: id=%s certification=%s maxRating=%s",
                media_type, item_id, rated.certification or "unrated", ceiling,
            )
            return Decision(False, "rating", rated.certification)

        return Decision(True, "allowed", rated.certification)

    def check_movie(self, movie_id: Any, limits: ContentRatingLimits) -> Decision:
        return self.check("movie", movie_id, limits)

    def check_tv(self, tv_id: Any, limits: ContentRatingLimits) -> Decision:
        return self.check("tv", tv_id, limits)

    # --- list filter ---
    def filter_items(self, media_type: str, items: List[Dict[str, Any]], limits: ContentRatingLimits) -> List[Dict[str, Any]]:
        if not (_type_active(media_type, limits) or limits.block_adult):
            return items

        remaining = [i for i in items if not i.get("adult")] if limits.block_adult else list(items)

        if not _type_active(media_type, limits):
            return remaining

        outcomes = self._settle([(media_type, item.get("id")) for item in remaining])

        kept = []
        for item, (rated, exc) in zip(remaining, outcomes):
            if exc is not None:
                logging.warning(
                    "Dropping %s from results, rating lookup failed: id=%s maxRating=%s error=%s",
                    media_type, item.get("id"), limits.ceiling_for(media_type), exc,
                )
                continue
            if _blocked(rated, limits):
                logging.debug(
                    "Blocked %s by rating (list): id=%s certification=%s maxRating=%s",
                    media_type, rated.id, rated.certification or "unrated", limits.ceiling_for(media_type),
                )
                continue
            kept.append(item)

        logging.debug("Rating filter kept %d/%d %s results", len(kept), len(items), media_type)
        return kept

    def filter_movies(self, movies: List[Dict[str, Any]], limits: ContentRatingLimits) -> List[Dict[str, Any]]:
        return self.filter_items("movie", movies, limits)

    def filter_tv(self, shows: List[Dict[str, Any]], limits: ContentRatingLimits) -> List[Dict[str, Any]]:
        return self.filter_items("tv", shows, limits)

    # --- combined credits ---
    def filter_credits(self, credits: List[Dict[str, Any]], limits: ContentRatingLimits) -> List[Dict[str, Any]]:
        if not limits.has_active_limits():
            return credits

        parsed = [parse_credit(c) for c in credits]

        plan: List[_CreditStep] = []
        lookups: List[Tuple[str, Any]] = []
        for credit in parsed:
            if limits.block_adult and credit.adult:
                plan.append(_CreditStep())
            elif isinstance(credit, (MovieCredit, TvCredit)):
                if _type_active(credit.media_type, limits):
                    plan.append(_CreditStep(index=len(lookups)))
                    lookups.append((credit.media_type, credit.id))
                else:
                    plan.append(_CreditStep(keep=True))
            else:
                plan.append(_CreditStep(keep=True))

        outcomes = self._settle(lookups)

        kept = []
        for credit, step in zip(parsed, plan):
            if step.keep:
                kept.append(credit.raw)
                continue
            if step.index is None:
                continue
            rated, exc = outcomes[step.index]
            if exc is not None:
                logging.warning(
                    "Dropping %s credit, rating lookup failed: id=%s error=%s",
                    credit.media_type, credit.id, exc,
                )
                continue
            if not _blocked(rated, limits):
                kept.append(credit.raw)

        logging.debug("Credits filter kept %d/%d entries", len(kept), len(credits))
        return kept
