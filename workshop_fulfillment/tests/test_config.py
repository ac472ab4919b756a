"""
Tests for settings access.
"""
import os
import unittest
from unittest.mock import patch

from workshop_fulfillment.config import config


class TestConfig(unittest.TestCase):

    def test_business_rule_defaults(self):
        rules = config.business_rules

        self.assertEqual(rules['high_priority_days'], 2)
        self.assertEqual(rules['low_priority_days'], 14)
        self.assertIn('READY_TO_STAGE', rules['complete_summary_statuses'])

    def test_typed_accessors_fall_back_to_default(self):
        self.assertEqual(config.get_int('BUSINESS_RULES', 'no_such_key', 7), 7)
        self.assertEqual(config.get_list('BUSINESS_RULES', 'no_such_key', ['A']), ['A'])
        self.assertFalse(config.supplier_config['enabled'])
        self.assertIsNone(config.execution_rules_file)

    def test_database_url_from_environment(self):
        with patch.dict(os.environ, {'WORKSHOP_DATABASE_URL': 'postgresql://workshop@db/fulfillment'}):
            self.assertEqual(config.get_db_url(), 'postgresql://workshop@db/fulfillment')


if __name__ == '__main__':
    unittest.main()
