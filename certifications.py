import logging
from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence, Tuple

from content_ratings import MOVIE_RATINGS, TV_RATINGS, UNRATED_VALUES, most_restrictive
from tmdb_api import ContentRating, CountryReleases, TmdbClient


class CertificationError(RuntimeError):
    """A certification could not be resolved. Never means "unrated"."""


@dataclass(frozen=True)
class RatedItem:
    id: int
    media_type: str
    adult: bool
    certification: Optional[str]
    title: str = ""

# =========================
# Extraction
# =========================
def _pick(
    by_country: Sequence[Tuple[str, List[str]]],
    hierarchy: Tuple[str, ...],
    region: str,
) -> Tuple[Optional[str], str]:
    regional = [
        cert
        for country, certs in by_country if country == region
        for cert in certs if cert and cert not in UNRATED_VALUES
    ]
    if regional:
        # A lone unrecognised regional value is still returned so the
        # classifier treats it as unrecognised rather than absent.
        return most_restrictive(regional, hierarchy) or regional[0], region

    worldwide = [
        cert
        for _country, certs in by_country
        for cert in certs if cert and cert not in UNRATED_VALUES and cert in hierarchy
    ]
    return most_restrictive(worldwide, hierarchy), "worldwide"


def movie_certification_from_releases(
    countries: Iterable[CountryReleases], region: str = "US"
) -> Optional[str]:
    cert, _source = _movie_pick(countries, region)
    return cert


def tv_certification_from_ratings(
    ratings: Iterable[ContentRating], region: str = "US"
) -> Optional[str]:
    cert, _source = _tv_pick(ratings, region)
    return cert


def _movie_pick(countries: Iterable[CountryReleases], region: str) -> Tuple[Optional[str], str]:
    by_country = [(c.iso_3166_1, [rd.certification for rd in c.release_dates]) for c in countries]
    return _pick(by_country, MOVIE_RATINGS, region)


def _tv_pick(ratings: Iterable[ContentRating], region: str) -> Tuple[Optional[str], str]:
    by_country = [(r.iso_3166_1, [r.rating]) for r in ratings]
    return _pick(by_country, TV_RATINGS, region)

# =========================
# Resolver
# =========================
class CertificationResolver:
    """Fetch adult flag and certification for one catalogue id."""

    def __init__(self, client: TmdbClient, region: str = "US") -> None:
        self.client = client
        self.region = region

    def resolve_movie(self, movie_id: int) -> RatedItem:
        try:
            details = self.client.get_movie(movie_id)
            cert, source = _movie_pick(details.release_dates, self.region)
        except Exception as exc:
            raise CertificationError(f"movie {movie_id}: {exc}") from exc
        logging.debug(
            "Fetched movie certification: id=%s title=%s certification=%s source=%s",
            movie_id, details.title, cert or "None", source,
        )
        return RatedItem(movie_id, "movie", details.adult, cert, details.title)

    def resolve_tv(self, tv_id: int) -> RatedItem:
        try:
            details = self.client.get_tv(tv_id)
            cert, source = _tv_pick(details.content_ratings, self.region)
        except Exception as exc:
            raise CertificationError(f"tv {tv_id}: {exc}") from exc
        logging.debug(
            "Fetched TV certification: id=%s name=%s certification=%s source=%s",
            tv_id, details.name, cert or "None", source,
        )
        return RatedItem(tv_id, "tv", details.adult, cert, details.name)

    def resolve(self, media_type: str, item_id: int) -> RatedItem:
        if media_type == "movie":
            return self.resolve_movie(item_id)
        if media_type == "tv":
            return self.resolve_tv(item_id)
        raise ValueError(f"Unsupported media_type '{media_type}'")

    def movie_certification(self, movie_id: int) -> Optional[str]:
        return self.resolve_movie(movie_id).certification

    def tv_certification(self, tv_id: int) -> Optional[str]:
        return self.resolve_tv(tv_id).certification
