import logging
from typing import Any, Dict, Mapping, Optional

from content_ratings import (
    MOVIE_RATINGS,
    NO_LIMITS,
    TV_RATINGS,
    ContentRatingLimits,
    suggest_rating,
)

LIMIT_KEYS = ("max_movie_rating", "max_tv_rating", "block_unrated", "block_adult")

# The top of each hierarchy allows every rated title; treat it as no ceiling
# so no lookups are made for it.
UNRESTRICTED_CEILINGS = {"max_movie_rating": "NC-17", "max_tv_rating": "TV-MA"}


def _ceiling(value: Any, key: str) -> Optional[str]:
    if value is None:
        return None
    value = str(value)
    if not value or value == UNRESTRICTED_CEILINGS[key]:
        return None
    return value


def limits_from_mapping(data: Optional[Mapping[str, Any]]) -> ContentRatingLimits:
    data = data or {}
    return ContentRatingLimits(
        max_movie_rating=_ceiling(data.get("max_movie_rating"), "max_movie_rating"),
        max_tv_rating=_ceiling(data.get("max_tv_rating"), "max_tv_rating"),
        block_unrated=bool(data.get("block_unrated", False)),
        block_adult=bool(data.get("block_adult", False)),
    )


class UserLimitsResolver:
    """Map a username (or None for anonymous) to its ContentRatingLimits."""

    def __init__(self, defaults: Optional[Mapping[str, Any]] = None,
                 users: Optional[Mapping[str, Mapping[str, Any]]] = None) -> None:
        self.defaults: Dict[str, Any] = {k: v for k, v in (defaults or {}).items() if k in LIMIT_KEYS}
        self.users: Dict[str, Dict[str, Any]] = {
            str(name): dict(cfg) for name, cfg in (users or {}).items() if isinstance(cfg, dict)
        }

    def limits_for(self, username: Optional[str]) -> ContentRatingLimits:
        merged = dict(self.defaults)
        if username and username in self.users:
            merged.update({k: v for k, v in self.users[username].items() if k in LIMIT_KEYS})
        if not merged:
            return NO_LIMITS
        return limits_from_mapping(merged)

# =========================
# Validation
# =========================
def _validate_block(name: str, block: Any) -> bool:
    if not isinstance(block, dict):
        logging.error(f"Rating settings for '{name}' must be a mapping.")
        return False

    valid = True
    for key, hierarchy in (("max_movie_rating", MOVIE_RATINGS), ("max_tv_rating", TV_RATINGS)):
        value = block.get(key)
        if value in (None, ""):
            continue
        if str(value) not in hierarchy:
            hint = suggest_rating(str(value), hierarchy)
            msg = f"Rating settings for '{name}' have unrecognised {key} '{value}'."
            if hint:
                msg += f" Did you mean '{hint}'?"
            logging.error(msg)
            valid = False

    for key in ("block_unrated", "block_adult"):
        if key in block and not isinstance(block[key], bool):
            logging.error(f"Rating settings for '{name}' have non-boolean {key}.")
            valid = False

    unknown = sorted(set(block) - set(LIMIT_KEYS))
    if unknown:
        logging.warning(f"Rating settings for '{name}' ignore unknown keys: {', '.join(unknown)}")
    return valid


def validate_rating_settings(content_ratings: Any, users: Any) -> bool:
    valid = True
    if not isinstance(content_ratings, dict):
        logging.error("CONTENT_RATINGS must be a mapping.")
        return False

    defaults = content_ratings.get("DEFAULTS")
    if defaults is not None:
        valid = _validate_block("DEFAULTS", defaults) and valid

    if users is not None:
        if not isinstance(users, dict):
            logging.error("USERS must be a mapping of username to rating settings.")
            return False
        for name, block in users.items():
            valid = _validate_block(str(name), block) and valid
    return valid
