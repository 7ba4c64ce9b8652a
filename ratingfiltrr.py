import os
import sys
import json
import uuid
import yaml
import re
import logging
import logging.config
import argparse
from typing import Any, Dict, List, Optional

from flask import Flask, g, request
from waitress import serve

from certifications import CertificationResolver
from content_ratings import (
    MEDIA_TYPES,
    MOVIE_RATINGS,
    TV_RATINGS,
    UNRATED_VALUES,
    ContentRatingLimits,
    movie_rating_options,
    tv_rating_options,
)
from rating_filter import DEFAULT_MAX_WORKERS, RESTRICTED_MESSAGE, RatingFilter
from tmdb_api import TMDB_BASEURL as DEFAULT_TMDB_BASEURL
from tmdb_api import TmdbClient, TmdbError
from user_limits import UserLimitsResolver, validate_rating_settings

# =========================
# App and global constants
# =========================
app = Flask(__name__)

SCRIPT_DIR = os.path.dirname(os.path.abspath(__file__))
LOG_DIRECTORY = os.path.join(SCRIPT_DIR, 'logs')
os.makedirs(LOG_DIRECTORY, exist_ok=True)

LOG_FILE = os.path.join(LOG_DIRECTORY, 'ratingfiltrr.log')
CONFIG_PATH = os.path.join(SCRIPT_DIR, 'config.yaml')

USER_HEADER = 'X-Api-User'

REQUIRED_KEYS = [
    'TMDB_BASEURL',
    'API_KEYS',
    'CONTENT_RATINGS',
]

# Exit code for `check` when the title would be blocked
EXIT_BLOCKED = 3

# =========================
# Logging setup
# =========================
class Colors:
    OKBLUE = '\033[94m'
    OKCYAN = '\033[96m'
    ENDC = '\033[0m'

class ColoredFormatter(logging.Formatter):
    colon_pattern = re.compile(r'^(.*?):\s(.*)$')

    def format(self, record):
        base_message = super().format(record)
        if getattr(record, 'is_console', False):
            match = self.colon_pattern.match(base_message)
            if match:
                colored_label = f"{Colors.OKCYAN}{match.group(1)}{Colors.ENDC}"
                colored_value = f"{Colors.OKBLUE}{match.group(2)}{Colors.ENDC}"
                base_message = f"{colored_label}: {colored_value}"
        return base_message

class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "ts": self.formatTime(record, self.datefmt),
            "lvl": record.levelname,
            "msg": record.getMessage(),
            "cid": getattr(record, 'correlation_id', ''),
            "user": getattr(record, 'user', ''),
        }
        if record.exc_info:
            payload["exc"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False)

class ConsoleFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        record.is_console = True
        return True

class ContextDefaultsFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, 'correlation_id'):
            record.correlation_id = ''
        if not hasattr(record, 'user'):
            record.user = ''
        return True

LOGGING_CONFIG = {
    'version': 1,
    'disable_existing_loggers': False,

    'formatters': {
        'colored':  {'()': f'{__name__}.ColoredFormatter',
                     'format': '%(asctime)s - %(levelname)s - %(message)s'},
        'json':     {'()': f'{__name__}.JsonFormatter'}
    },

    'filters': {
        'console_filter': {'()': f'{__name__}.ConsoleFilter'},
        'context_defaults': {'()': f'{__name__}.ContextDefaultsFilter'},
    },

    'handlers': {
        'console': {
            'level': 'DEBUG', 'class': 'logging.StreamHandler',
            'formatter': 'colored',
            'filters': ['console_filter', 'context_defaults']
        },
        'file': {
            'level': 'DEBUG', 'class': 'logging.FileHandler',
            'filename': LOG_FILE, 'formatter': 'json', 'encoding': 'utf-8',
            'filters': ['context_defaults']
        }
    },

    'root': {
        'level': os.environ.get('LOG_LEVEL', 'INFO'),
        'handlers': ['console', 'file']
    }
}

def setup_logging():
    logging.config.dictConfig(LOGGING_CONFIG)

# =========================
# Config loading and checks
# =========================
def load_config(path: str) -> dict:
    try:
        with open(path, 'r', encoding='utf-8') as f:
            config = yaml.safe_load(f) or {}
    except FileNotFoundError:
        logging.critical(f"Configuration file not found at {path}.")
        sys.exit(1)
    except yaml.YAMLError as e:
        logging.critical(f"Error parsing '{path}': {e}")
        sys.exit(1)

    missing = [k for k in REQUIRED_KEYS if k not in config]
    if missing:
        logging.critical(f"Missing required configuration keys: {', '.join(missing)}")
        sys.exit(1)

    if not (config.get('API_KEYS') or {}).get('tmdb'):
        logging.critical("API_KEYS.tmdb is required.")
        sys.exit(1)

    return config

"""
Runtime configuration (initialised in init_runtime()).
These globals are populated when the server starts or when commands run.
"""
TMDB_BASEURL: str = DEFAULT_TMDB_BASEURL
API_KEYS: Dict[str, Any] = {}
CONTENT_RATINGS: Dict[str, Any] = {}
USERS: Dict[str, Any] = {}
CERTIFICATION_REGION: str = 'US'
LOOKUP_WORKERS: int = DEFAULT_MAX_WORKERS
CACHE_TTL: int = 12 * 60 * 60

SERVER_HOST: str = '0.0.0.0'
SERVER_PORT: int = 12211
SERVER_THREADS: int = 15
SERVER_CONNECTION_LIMIT: int = 500

tmdb_client: Optional[TmdbClient] = None
rating_filter: Optional[RatingFilter] = None
user_limits: UserLimitsResolver = UserLimitsResolver()


def validate_configuration():
    if not validate_rating_settings(CONTENT_RATINGS, USERS):
        logging.critical("Configuration validation failed. Please fix the errors and restart.")
        sys.exit(1)
    if LOOKUP_WORKERS < 1:
        logging.critical("LOOKUP_WORKERS must be at least 1.")
        sys.exit(1)
    logging.info("Configuration loaded and validated successfully.")


def init_runtime(cfg_path: str = CONFIG_PATH) -> dict:
    """Load configuration and initialise globals/clients."""
    global TMDB_BASEURL, API_KEYS, CONTENT_RATINGS, USERS
    global CERTIFICATION_REGION, LOOKUP_WORKERS, CACHE_TTL
    global SERVER_HOST, SERVER_PORT, SERVER_THREADS, SERVER_CONNECTION_LIMIT
    global tmdb_client, rating_filter, user_limits

    cfg = load_config(cfg_path)

    TMDB_BASEURL = str(cfg['TMDB_BASEURL']).rstrip('/')
    API_KEYS = cfg['API_KEYS'] or {}
    CONTENT_RATINGS = cfg['CONTENT_RATINGS'] or {}
    USERS = cfg.get('USERS') or {}

    CERTIFICATION_REGION = str(cfg.get('CERTIFICATION_REGION', 'US')).upper()
    LOOKUP_WORKERS = int(cfg.get('LOOKUP_WORKERS', DEFAULT_MAX_WORKERS))
    CACHE_TTL = int(cfg.get('CACHE_TTL', 12 * 60 * 60))

    # Server
    scfg = cfg.get('SERVER') or {}
    SERVER_HOST = scfg.get('HOST', '0.0.0.0')
    SERVER_PORT = int(scfg.get('PORT', 12211))
    SERVER_THREADS = int(scfg.get('THREADS', 15))
    SERVER_CONNECTION_LIMIT = int(scfg.get('CONNECTION_LIMIT', 500))

    # Clients
    tmdb_client = TmdbClient(API_KEYS['tmdb'], base_url=TMDB_BASEURL, cache_ttl=CACHE_TTL)
    resolver = CertificationResolver(tmdb_client, region=CERTIFICATION_REGION)
    rating_filter = RatingFilter(resolver, max_workers=max(1, LOOKUP_WORKERS))
    defaults = CONTENT_RATINGS.get('DEFAULTS') if isinstance(CONTENT_RATINGS, dict) else None
    if not isinstance(defaults, dict):
        defaults = None
    user_limits = UserLimitsResolver(defaults, USERS if isinstance(USERS, dict) else None)

    return cfg

# =========================
# Request helpers
# =========================
@app.before_request
def _bind_request_context():
    g.correlation_id = str(uuid.uuid4())
    g.user = (request.headers.get(USER_HEADER, '') or '').strip() or None


def _log_extra() -> dict:
    return {'correlation_id': g.get('correlation_id', ''), 'user': g.get('user') or ''}


def current_limits() -> ContentRatingLimits:
    return user_limits.limits_for(g.get('user'))


def _restricted():
    return {'message': RESTRICTED_MESSAGE}, 403


def _upstream_failed(exc: Exception):
    logging.error(f"Upstream catalogue request failed: {exc}", extra=_log_extra())
    return {'message': 'Unable to retrieve data from the catalogue provider.'}, 502


def _filter_page(payload: dict, key: str, media_type: str, limits: ContentRatingLimits) -> dict:
    # Pagination fields are passed through as-is; only the page contents shrink.
    results = payload.get(key) or []
    if media_type == 'credits':
        kept = rating_filter.filter_credits(results, limits)
    else:
        kept = rating_filter.filter_items(media_type, results, limits)
    payload[key] = kept
    payload['filtered_count'] = len(results) - len(kept)
    return payload


def _guard(media_type: str, item_id: int, limits: ContentRatingLimits) -> bool:
    decision = rating_filter.check(media_type, item_id, limits)
    if not decision.allowed:
        logging.info(f"Denied {media_type} {item_id}: {decision.reason}", extra=_log_extra())
    return decision.allowed

# =========================
# Flask routes
# =========================
@app.route('/health', methods=['GET'])
def health():
    return {'ok': True}, 200


@app.route('/api/v1/<media_type>/<int:item_id>', methods=['GET'])
def item_details(media_type: str, item_id: int):
    if media_type not in MEDIA_TYPES:
        return {'message': 'Not Found'}, 404
    limits = current_limits()
    if not _guard(media_type, item_id, limits):
        return _restricted()
    try:
        if media_type == 'movie':
            return tmdb_client.get_movie_payload(item_id), 200
        return tmdb_client.get_tv_payload(item_id), 200
    except TmdbError as e:
        return _upstream_failed(e)


@app.route('/api/v1/<media_type>/<int:item_id>/<kind>', methods=['GET'])
def item_related(media_type: str, item_id: int, kind: str):
    if media_type not in MEDIA_TYPES or kind not in ('recommendations', 'similar'):
        return {'message': 'Not Found'}, 404
    limits = current_limits()
    if not _guard(media_type, item_id, limits):
        return _restricted()
    page = request.args.get('page', 1, type=int)
    try:
        if kind == 'recommendations':
            payload = tmdb_client.get_recommendations(media_type, item_id, page)
        else:
            payload = tmdb_client.get_similar(media_type, item_id, page)
    except TmdbError as e:
        return _upstream_failed(e)
    return _filter_page(payload, 'results', media_type, limits), 200


@app.route('/api/v1/collection/<int:collection_id>', methods=['GET'])
def collection(collection_id: int):
    limits = current_limits()
    try:
        payload = tmdb_client.get_collection(collection_id)
    except TmdbError as e:
        return _upstream_failed(e)
    return _filter_page(payload, 'parts', 'movie', limits), 200


@app.route('/api/v1/discover/<kind>', methods=['GET'])
def discover(kind: str):
    media_type = {'movies': 'movie', 'tv': 'tv'}.get(kind)
    if media_type is None:
        return {'message': 'Not Found'}, 404
    limits = current_limits()
    params = {k: v for k, v in request.args.items() if k != 'api_key'}
    try:
        payload = tmdb_client.discover(media_type, params)
    except TmdbError as e:
        return _upstream_failed(e)
    return _filter_page(payload, 'results', media_type, limits), 200


@app.route('/api/v1/search/<media_type>', methods=['GET'])
def search(media_type: str):
    if media_type not in MEDIA_TYPES:
        return {'message': 'Not Found'}, 404
    query = (request.args.get('query') or '').strip()
    if not query:
        return {'message': 'query is required'}, 400
    limits = current_limits()
    page = request.args.get('page', 1, type=int)
    try:
        payload = tmdb_client.search(media_type, query, page)
    except TmdbError as e:
        return _upstream_failed(e)
    return _filter_page(payload, 'results', media_type, limits), 200


@app.route('/api/v1/person/<int:person_id>/combined_credits', methods=['GET'])
def person_credits(person_id: int):
    limits = current_limits()
    try:
        payload = tmdb_client.get_person_credits(person_id)
    except TmdbError as e:
        return _upstream_failed(e)
    _filter_page(payload, 'cast', 'credits', limits)
    cast_removed = payload['filtered_count']
    _filter_page(payload, 'crew', 'credits', limits)
    payload['filtered_count'] += cast_removed
    return payload, 200


@app.route('/api/v1/settings/ratings', methods=['GET'])
def rating_settings():
    return {
        'movieRatings': movie_rating_options(),
        'tvRatings': tv_rating_options(),
        'limits': current_limits().as_dict(),
    }, 200

# =========================
# Main
# =========================
def parse_cli_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog='ratingfiltrr', description='Parental-controls gateway for TMDB catalogue data')
    parser.add_argument('-c', '--config', default=CONFIG_PATH, help='Path to config.yaml')
    parser.add_argument('--log-level', default=None, help='Override LOG_LEVEL (DEBUG, INFO, ...)')
    parser.add_argument('--log-file', default=None, help='Override the JSON log file path')
    sub = parser.add_subparsers(dest='cmd')

    # check
    p_check = sub.add_parser('check', help='Resolve a title and show whether a user may see it')
    target = p_check.add_mutually_exclusive_group(required=True)
    target.add_argument('--movie', type=int, help='TMDB movie id')
    target.add_argument('--tv', type=int, help='TMDB tv id')
    p_check.add_argument('--user', default=None, help='Username from USERS (default: anonymous)')

    # ratings
    sub.add_parser('ratings', help='Print the rating hierarchies')

    # serve
    sub.add_parser('serve', help='Start the API server (default)')

    return parser.parse_args(argv)


def _print_ratings() -> None:
    print("Movie: " + " < ".join(MOVIE_RATINGS))
    print("TV:    " + " < ".join(TV_RATINGS))
    print("Unrated values: " + ", ".join(repr(v) for v in sorted(UNRATED_VALUES)))


def _run_check(args: argparse.Namespace) -> int:
    init_runtime(args.config)
    validate_configuration()
    media_type, item_id = ('movie', args.movie) if args.movie is not None else ('tv', args.tv)
    limits = user_limits.limits_for(args.user)
    decision = rating_filter.check(media_type, item_id, limits)
    print(f"{media_type} {item_id} user={args.user or '<anonymous>'}")
    print(f"  limits:        {json.dumps(limits.as_dict())}")
    print(f"  certification: {decision.certification or 'unrated/unknown'}")
    print(f"  decision:      {'allowed' if decision.allowed else 'blocked'} ({decision.reason})")
    return 0 if decision.allowed else EXIT_BLOCKED


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_cli_args(argv)
    if args.log_level:
        LOGGING_CONFIG['root']['level'] = args.log_level.upper()
    if args.log_file:
        LOGGING_CONFIG['handlers']['file']['filename'] = args.log_file
    setup_logging()  # Ensure logs work for early failures/CLI

    if args.cmd == 'ratings':
        _print_ratings()
        return 0

    if args.cmd == 'check':
        try:
            return _run_check(args)
        except SystemExit as e:
            return 1 if e.code is None else int(e.code)

    # default: serve
    try:
        init_runtime(args.config)
        validate_configuration()
        logging.info(f"Configuration valid. Starting server on {SERVER_HOST}:{SERVER_PORT}")
        serve(
            app,
            host=SERVER_HOST,
            port=SERVER_PORT,
            threads=SERVER_THREADS,
            connection_limit=SERVER_CONNECTION_LIMIT,
        )
    except KeyboardInterrupt:
        return 130
    except SystemExit as e:
        return 1 if e.code is None else int(e.code)
    except Exception:
        logging.exception("Fatal error starting server")
        return 1
    return 0


if __name__ == '__main__':
    sys.exit(main())
