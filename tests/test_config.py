import os
import unittest
from decimal import Decimal
from unittest.mock import patch

from compcore.config import Settings, _env_bool, settings


class ConfigTests(unittest.TestCase):
    def test_env_bool(self):
        with patch.dict(os.environ, {"SQL_ECHO": "Yes"}):
            self.assertTrue(_env_bool("SQL_ECHO", False))
        with patch.dict(os.environ, {"SQL_ECHO": "0"}):
            self.assertFalse(_env_bool("SQL_ECHO", True))
        with patch.dict(os.environ, {}, clear=True):
            self.assertTrue(_env_bool("SQL_ECHO", True))

    def test_defaults(self):
        self.assertIsInstance(settings, Settings)
        self.assertIn("://", settings.DB_URL)
        self.assertIsInstance(settings.MIN_WITHDRAWAL, Decimal)
        self.assertLess(settings.PAYOUT_RATIO_MIN, settings.PAYOUT_RATIO_MAX)
        self.assertLess(settings.INSTANT_SHARE_MIN, settings.INSTANT_SHARE_MAX)


if __name__ == "__main__":
    unittest.main()
