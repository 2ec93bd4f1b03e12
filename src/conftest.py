"""
pytest configuration helpers for the seedmix project.

pytest-django normally reads DJANGO_SETTINGS_MODULE from pyproject.toml; this
module makes sure Django is configured even when pytest is started from a
directory that does not pick that up.
"""

import logging
import os
import sys
from pathlib import Path

import django
from django.conf import settings
from django.core.exceptions import AppRegistryNotReady, ImproperlyConfigured

LOGGER = logging.getLogger(__name__)
PROJECT_ROOT = Path(__file__).resolve().parent

if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

KNOWN_SETTING_MODULES = ("seedmix.settings",)


def setup_django():
    """Configure Django from the environment or the project's settings module."""
    configured = os.environ.get("DJANGO_SETTINGS_MODULE")
    settings_modules = []
    if configured:
        settings_modules.append(configured)
    settings_modules.extend(module for module in KNOWN_SETTING_MODULES if module != configured)

    for settings_module in settings_modules:
        try:
            os.environ["DJANGO_SETTINGS_MODULE"] = settings_module
            django.setup()
            LOGGER.info("Django configured with %s", settings_module)
            return True
        except ImportError as exc:
            LOGGER.debug("Unable to import %s: %s", settings_module, exc, exc_info=exc)
        except (ImproperlyConfigured, AppRegistryNotReady, RuntimeError) as exc:
            LOGGER.warning("Failed to setup Django with %s: %s", settings_module, exc, exc_info=exc)

    return False


def pytest_configure(config):  # pylint: disable=unused-argument
    """Called after command line options have been parsed."""
    if not settings.configured:
        if not setup_django():
            LOGGER.error("Could not configure Django for the seedmix project. Tests may fail.")
