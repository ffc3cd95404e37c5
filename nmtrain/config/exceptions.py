# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Exceptions raised while reading and validating run configuration.

The CLI catches ConfigError as a whole and maps it onto CONFIG_ERROR, so
callers never need to import pydantic or yaml just to handle a bad file.
"""


class ConfigError(Exception):
    """Base for all configuration errors."""


class ConfigLoadError(ConfigError):
    """The config file is missing, unreadable, or not a YAML mapping."""


class ConfigValidationError(ConfigError):
    """
    The YAML parsed but does not describe a valid run: a required field is
    missing, a value is out of range, or an unknown key is present.
    """
