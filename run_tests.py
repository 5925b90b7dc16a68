#!/usr/bin/env python
"""
Test runner script for the production floor apps
Usage: python run_tests.py
"""
import os
import sys
import django
from django.conf import settings
from django.test.utils import get_runner

if __name__ == "__main__":
    os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'erp.config.settings')
    django.setup()
    TestRunner = get_runner(settings)
    test_runner = TestRunner()
    failures = test_runner.run_tests([
        'erp.core',
        'erp.manufacturing',
    ])
    sys.exit(bool(failures))
