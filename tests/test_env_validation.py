import os
import unittest
from unittest.mock import patch

from env_validation import EnvironmentError, get_env_int, validate_environment


class EnvironmentValidationTests(unittest.TestCase):
    def test_defaults_are_applied(self):
        with patch.dict(os.environ, {}, clear=True):
            validate_environment()
            self.assertEqual(os.environ["COMPETENCY_MISTAKE_THRESHOLD"], "4")
            self.assertEqual(os.environ["ATTEMPTS_PAGE_SIZE"], "5")
            self.assertEqual(os.environ["DB_PATH"], "data.db")

    def test_non_integer_threshold_is_rejected(self):
        with patch.dict(os.environ, {"COMPETENCY_MISTAKE_THRESHOLD": "many"}, clear=True):
            with self.assertRaises(EnvironmentError):
                validate_environment()

    def test_page_size_must_be_positive(self):
        with patch.dict(os.environ, {"ATTEMPTS_PAGE_SIZE": "0"}, clear=True):
            with self.assertRaises(EnvironmentError):
                validate_environment()

    def test_lrs_url_must_be_http(self):
        with patch.dict(os.environ, {"LRS_URL": "ftp://lrs.example"}, clear=True):
            with self.assertRaises(EnvironmentError):
                validate_environment()

    def test_get_env_int(self):
        with patch.dict(os.environ, {"SOME_INT": " 7 ", "BLANK": " "}, clear=True):
            self.assertEqual(get_env_int("SOME_INT", 1), 7)
            self.assertEqual(get_env_int("BLANK", 3), 3)
            self.assertEqual(get_env_int("MISSING", 9), 9)


if __name__ == "__main__":
    unittest.main()
