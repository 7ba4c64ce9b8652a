import os
import sys
import unittest
from unittest.mock import mock_open, patch

import yaml

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))
import ratingfiltrr
from content_ratings import ContentRatingLimits


BASE_CONFIG = {
    "TMDB_BASEURL": "https://tmdb.test/3/",
    "API_KEYS": {"tmdb": "key"},
    "CONTENT_RATINGS": {
        "DEFAULTS": {"max_movie_rating": "PG-13", "max_tv_rating": "TV-14", "block_adult": True},
    },
    "USERS": {"kid": {"max_movie_rating": "G", "block_unrated": True}},
}


class TestLoadConfig(unittest.TestCase):

    @patch("logging.critical")
    def test_missing_file_exits(self, mock_log_critical):
        with patch("builtins.open", side_effect=FileNotFoundError):
            with self.assertRaises(SystemExit) as ctx:
                ratingfiltrr.load_config("/nope/config.yaml")
        self.assertEqual(ctx.exception.code, 1)
        mock_log_critical.assert_called_once()

    @patch("logging.critical")
    @patch("yaml.safe_load", side_effect=yaml.YAMLError("bad indent"))
    @patch("builtins.open", new_callable=mock_open)
    def test_invalid_yaml_exits(self, _mock_file_open, _mock_yaml_safe_load, mock_log_critical):
        with self.assertRaises(SystemExit):
            ratingfiltrr.load_config("config.yaml")
        self.assertIn("Error parsing", mock_log_critical.call_args[0][0])

    @patch("logging.critical")
    @patch("yaml.safe_load", return_value={"TMDB_BASEURL": "x"})
    @patch("builtins.open", new_callable=mock_open)
    def test_missing_keys_exit(self, _mock_file_open, _mock_yaml_safe_load, mock_log_critical):
        with self.assertRaises(SystemExit):
            ratingfiltrr.load_config("config.yaml")
        mock_log_critical.assert_called_with(
            "Missing required configuration keys: API_KEYS, CONTENT_RATINGS"
        )

    @patch("logging.critical")
    def test_missing_tmdb_key_exits(self, mock_log_critical):
        cfg = dict(BASE_CONFIG, API_KEYS={})
        with patch("builtins.open", mock_open()), patch("yaml.safe_load", return_value=cfg):
            with self.assertRaises(SystemExit):
                ratingfiltrr.load_config("config.yaml")
        mock_log_critical.assert_called_with("API_KEYS.tmdb is required.")

    def test_valid_config_loads(self):
        with patch("builtins.open", mock_open()), patch("yaml.safe_load", return_value=dict(BASE_CONFIG)):
            cfg = ratingfiltrr.load_config("config.yaml")
        self.assertEqual(cfg["API_KEYS"]["tmdb"], "key")


class TestInitRuntime(unittest.TestCase):

    @patch("yaml.safe_load")
    @patch("builtins.open", new_callable=mock_open)
    def test_init_runtime_sets_globals(self, _mock_file_open, mock_yaml_safe_load):
        mock_yaml_safe_load.return_value = dict(BASE_CONFIG, LOOKUP_WORKERS=4, CERTIFICATION_REGION="gb")

        ratingfiltrr.init_runtime("config.yaml")

        self.assertEqual(ratingfiltrr.TMDB_BASEURL, "https://tmdb.test/3")
        self.assertEqual(ratingfiltrr.CERTIFICATION_REGION, "GB")
        self.assertEqual(ratingfiltrr.SERVER_PORT, 12211)
        self.assertEqual(ratingfiltrr.rating_filter.max_workers, 4)
        self.assertEqual(ratingfiltrr.rating_filter.resolver.region, "GB")
        self.assertEqual(ratingfiltrr.tmdb_client.base_url, "https://tmdb.test/3")
        self.assertEqual(
            ratingfiltrr.user_limits.limits_for("kid"),
            ContentRatingLimits("G", "TV-14", True, True),
        )

    @patch("yaml.safe_load")
    @patch("builtins.open", new_callable=mock_open)
    def test_server_section(self, _mock_file_open, mock_yaml_safe_load):
        mock_yaml_safe_load.return_value = dict(
            BASE_CONFIG, SERVER={"HOST": "127.0.0.1", "PORT": 9000, "THREADS": 4}
        )
        ratingfiltrr.init_runtime("config.yaml")
        self.assertEqual(ratingfiltrr.SERVER_HOST, "127.0.0.1")
        self.assertEqual(ratingfiltrr.SERVER_PORT, 9000)
        self.assertEqual(ratingfiltrr.SERVER_THREADS, 4)
        self.assertEqual(ratingfiltrr.SERVER_CONNECTION_LIMIT, 500)


class TestValidateConfiguration(unittest.TestCase):

    @patch("sys.exit")
    @patch("logging.critical")
    @patch("logging.error")
    @patch("ratingfiltrr.USERS", new_callable=dict)
    @patch("ratingfiltrr.CONTENT_RATINGS", new_callable=dict)
    def test_exits_on_invalid_rating(
        self, mock_content_ratings, mock_users, _mock_log_error, mock_log_critical, mock_sys_exit
    ):
        mock_content_ratings.update({"DEFAULTS": {"max_movie_rating": "PG-14"}})
        mock_users.update({"kid": {"max_tv_rating": "TV-Y"}})

        ratingfiltrr.validate_configuration()

        mock_log_critical.assert_called_with(
            "Configuration validation failed. Please fix the errors and restart."
        )
        mock_sys_exit.assert_called_with(1)

    @patch("sys.exit")
    @patch("ratingfiltrr.USERS", new_callable=dict)
    @patch("ratingfiltrr.CONTENT_RATINGS", new_callable=dict)
    def test_valid_configuration_does_not_exit(self, mock_content_ratings, _mock_users, mock_sys_exit):
        mock_content_ratings.update(BASE_CONFIG["CONTENT_RATINGS"])
        ratingfiltrr.validate_configuration()
        mock_sys_exit.assert_not_called()


if __name__ == "__main__":
    unittest.main()
