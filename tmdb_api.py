import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

TMDB_BASEURL = "https://api.themoviedb.org/3"
DEFAULT_CACHE_SIZE = 2048


class TmdbError(RuntimeError):
    """Raised for transport failures, non-2xx responses and unreadable bodies."""


def build_session() -> requests.Session:
    sess = requests.Session()
    retry = Retry(
        total=5,
        connect=3,
        read=3,
        backoff_factor=0.5,
        status_forcelist=[429, 502, 503, 504],
        allowed_methods=frozenset(["GET"])
    )
    adapter = HTTPAdapter(max_retries=retry, pool_connections=100, pool_maxsize=100)
    sess.mount('http://', adapter)
    sess.mount('https://', adapter)
    return sess


@dataclass
class ReleaseDate:
    certification: str = ""
    type: Optional[int] = None
    release_date: Optional[str] = None

    @staticmethod
    def from_dict(data: dict) -> "ReleaseDate":
        return ReleaseDate(
            certification=data.get("certification") or "",
            type=data.get("type"),
            release_date=data.get("release_date"),
        )


@dataclass
class CountryReleases:
    iso_3166_1: str
    release_dates: List[ReleaseDate] = field(default_factory=list)

    @staticmethod
    def from_dict(data: dict) -> "CountryReleases":
        return CountryReleases(
            iso_3166_1=data.get("iso_3166_1", ""),
            release_dates=[ReleaseDate.from_dict(rd) for rd in data.get("release_dates") or []],
        )


@dataclass
class ContentRating:
    iso_3166_1: str
    rating: str = ""

    @staticmethod
    def from_dict(data: dict) -> "ContentRating":
        return ContentRating(iso_3166_1=data.get("iso_3166_1", ""), rating=data.get("rating") or "")


@dataclass
class MovieDetails:
    id: int
    title: str = ""
    adult: bool = False
    release_dates: List[CountryReleases] = field(default_factory=list)
    original_language: str = ""
    overview: str = ""
    poster_path: Optional[str] = None

    @staticmethod
    def from_dict(data: dict) -> "MovieDetails":
        releases = (data.get("release_dates") or {}).get("results") or []
        return MovieDetails(
            id=data.get("id"),
            title=data.get("title", ""),
            adult=bool(data.get("adult", False)),
            release_dates=[CountryReleases.from_dict(r) for r in releases],
            original_language=data.get("original_language", ""),
            overview=data.get("overview", ""),
            poster_path=data.get("poster_path"),
        )


@dataclass
class TvDetails:
    id: int
    name: str = ""
    adult: bool = False
    content_ratings: List[ContentRating] = field(default_factory=list)
    original_language: str = ""
    overview: str = ""
    poster_path: Optional[str] = None

    @staticmethod
    def from_dict(data: dict) -> "TvDetails":
        ratings = (data.get("content_ratings") or {}).get("results") or []
        return TvDetails(
            id=data.get("id"),
            name=data.get("name", ""),
            adult=bool(data.get("adult", False)),
            content_ratings=[ContentRating.from_dict(r) for r in ratings],
            original_language=data.get("original_language", ""),
            overview=data.get("overview", ""),
            poster_path=data.get("poster_path"),
        )


class TmdbClient:
    """Client for the TMDB v3 endpoints used by RatingFiltrr."""

    def __init__(
        self,
        api_key: str,
        base_url: str = TMDB_BASEURL,
        session: Optional[requests.Session] = None,
        timeout: float = 6.0,
        cache_ttl: float = 12 * 60 * 60,
        cache_size: int = DEFAULT_CACHE_SIZE,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.session = session or build_session()
        self.timeout = timeout
        self.cache_ttl = cache_ttl
        self.cache_size = cache_size
        self._cache: Dict[Tuple, Tuple[float, dict]] = {}
        self._cache_lock = threading.Lock()

    def _request(self, endpoint: str, params: Optional[dict] = None) -> dict:
        url = f"{self.base_url}{endpoint}"
        query = {k: v for k, v in (params or {}).items() if v is not None}
        query["api_key"] = self.api_key
        try:
            response = self.session.get(
                url, params=query, headers={"accept": "application/json"}, timeout=self.timeout
            )
            response.raise_for_status()
        except requests.RequestException as exc:
            logging.error("TMDB API error during GET %s: %s", url, exc)
            raise TmdbError(f"TMDB GET {endpoint} failed: {exc}") from exc
        try:
            return response.json()
        except ValueError as exc:
            raise TmdbError(f"TMDB GET {endpoint} returned invalid JSON") from exc

    def _get(self, endpoint: str, params: Optional[dict] = None, cache: bool = False) -> dict:
        if not (cache and self.cache_ttl and self.cache_size):
            return self._request(endpoint, params)

        key = (endpoint, tuple(sorted((params or {}).items())))
        now = time.monotonic()
        with self._cache_lock:
            cached = self._cache.get(key)
            if cached and (now - cached[0]) < self.cache_ttl:
                return dict(cached[1])

        data = self._request(endpoint, params)
        with self._cache_lock:
            self._store(key, now, data)
        return dict(data)

    def _store(self, key: Tuple, now: float, data: dict) -> None:
        # caller holds _cache_lock
        self._cache.pop(key, None)
        expired = [k for k, (stamp, _) in self._cache.items() if now - stamp >= self.cache_ttl]
        for k in expired:
            del self._cache[k]
        while len(self._cache) >= self.cache_size:
            del self._cache[next(iter(self._cache))]
        self._cache[key] = (now, data)

    def clear_cache(self) -> None:
        with self._cache_lock:
            self._cache.clear()

    # --- details ---
    def get_movie_payload(self, movie_id: int) -> dict:
        return self._get(f"/movie/{movie_id}", {"append_to_response": "release_dates"}, cache=True)

    def get_tv_payload(self, tv_id: int) -> dict:
        return self._get(f"/tv/{tv_id}", {"append_to_response": "content_ratings"}, cache=True)

    def get_movie(self, movie_id: int) -> MovieDetails:
        return MovieDetails.from_dict(self.get_movie_payload(movie_id))

    def get_tv(self, tv_id: int) -> TvDetails:
        return TvDetails.from_dict(self.get_tv_payload(tv_id))

    # --- lists ---
    def get_recommendations(self, media_type: str, item_id: int, page: int = 1) -> dict:
        return self._get(f"/{media_type}/{item_id}/recommendations", {"page": page})

    def get_similar(self, media_type: str, item_id: int, page: int = 1) -> dict:
        return self._get(f"/{media_type}/{item_id}/similar", {"page": page})

    def get_collection(self, collection_id: int) -> dict:
        return self._get(f"/collection/{collection_id}")

    def discover(self, media_type: str, params: Optional[Dict[str, Any]] = None) -> dict:
        return self._get(f"/discover/{media_type}", params)

    def search(self, media_type: str, query: str, page: int = 1) -> dict:
        return self._get(f"/search/{media_type}", {"query": query, "page": page})

    def get_person_credits(self, person_id: int) -> dict:
        return self._get(f"/person/{person_id}/combined_credits")
