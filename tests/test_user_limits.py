import os
import sys
import unittest
from unittest.mock import patch

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))
from content_ratings import ContentRatingLimits
from user_limits import UserLimitsResolver, limits_from_mapping, validate_rating_settings


class TestUserLimitsResolver(unittest.TestCase):
    def setUp(self):
        self.resolver = UserLimitsResolver(
            defaults={"max_movie_rating": "PG-13", "max_tv_rating": "TV-14", "block_adult": True},
            users={
                "kid": {"max_movie_rating": "PG", "block_unrated": True},
                "parent": {"max_movie_rating": "", "max_tv_rating": "", "block_adult": False},
            },
        )

    def test_anonymous_gets_defaults(self):
        self.assertEqual(
            self.resolver.limits_for(None),
            ContentRatingLimits("PG-13", "TV-14", False, True),
        )

    def test_unknown_user_gets_defaults(self):
        self.assertEqual(self.resolver.limits_for("stranger"), self.resolver.limits_for(None))

    def test_user_overrides_key_by_key(self):
        self.assertEqual(
            self.resolver.limits_for("kid"),
            ContentRatingLimits("PG", "TV-14", True, True),
        )

    def test_empty_override_clears_ceiling(self):
        limits = self.resolver.limits_for("parent")
        self.assertFalse(limits.has_active_limits())

    def test_no_configuration_means_no_limits(self):
        self.assertFalse(UserLimitsResolver().limits_for("anyone").has_active_limits())


class TestLimitsFromMapping(unittest.TestCase):
    def test_top_of_hierarchy_is_unrestricted(self):
        limits = limits_from_mapping({"max_movie_rating": "NC-17", "max_tv_rating": "TV-MA"})
        self.assertIsNone(limits.max_movie_rating)
        self.assertIsNone(limits.max_tv_rating)

    def test_defaults(self):
        self.assertEqual(limits_from_mapping(None), ContentRatingLimits())

    def test_flags(self):
        limits = limits_from_mapping({"block_unrated": True, "block_adult": True})
        self.assertTrue(limits.block_unrated)
        self.assertTrue(limits.block_adult)


class TestValidateRatingSettings(unittest.TestCase):
    def test_valid(self):
        self.assertTrue(validate_rating_settings(
            {"DEFAULTS": {"max_movie_rating": "R", "max_tv_rating": "", "block_adult": True}},
            {"kid": {"max_tv_rating": "TV-Y"}},
        ))

    @patch("logging.error")
    def test_unrecognised_ceiling_with_suggestion(self, mock_logging_error):
        self.assertFalse(validate_rating_settings({"DEFAULTS": {"max_movie_rating": "pg13"}}, None))
        mock_logging_error.assert_called_with(
            "Rating settings for 'DEFAULTS' have unrecognised max_movie_rating 'pg13'. Did you mean 'PG-13'?"
        )

    @patch("logging.error")
    def test_nr_ceiling_is_rejected(self, mock_logging_error):
        self.assertFalse(validate_rating_settings({}, {"kid": {"max_movie_rating": "NR"}}))
        mock_logging_error.assert_called_with(
            "Rating settings for 'kid' have unrecognised max_movie_rating 'NR'."
        )

    @patch("logging.error")
    def test_non_boolean_flag(self, mock_logging_error):
        self.assertFalse(validate_rating_settings({"DEFAULTS": {"block_adult": "yes"}}, None))
        mock_logging_error.assert_called_with("Rating settings for 'DEFAULTS' have non-boolean block_adult.")

    @patch("logging.error")
    def test_users_must_be_mapping(self, mock_logging_error):
        self.assertFalse(validate_rating_settings({}, ["kid"]))
        self.assertFalse(validate_rating_settings("nope", None))

    @patch("logging.warning")
    def test_unknown_keys_warn(self, mock_logging_warning):
        self.assertTrue(validate_rating_settings({"DEFAULTS": {"max_rating": "PG"}}, None))
        mock_logging_warning.assert_called_once()


if __name__ == "__main__":
    unittest.main()
