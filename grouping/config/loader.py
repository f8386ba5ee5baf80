"""
ConfigLoader - grouping settings from environment and PocketBase.

Resolution order for a key:
    1. CONFIG_<KEY> environment variable
    2. PocketBase "config" collection (category/subcategory/config_key)
    3. Schema default
Values are converted to int and range-checked; invalid values fail fast.
"""

from __future__ import annotations

import logging
import os
import time
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any, cast

from pocketbase import PocketBase
from pocketbase.client import ClientResponseError  # type: ignore[attr-defined]

from grouping.errors import (
    ConfigError,
    ConfigUnavailableError,
    InvalidConfigValueError,
    MissingConfigKeyError,
    UnknownConfigKeyError,
)

from .schema import CONFIG_SCHEMA, get_all_required_keys

logger = logging.getLogger(__name__)

CONFIG_COLLECTION = "config"


def split_config_key(key: str) -> tuple[str, str | None, str]:
    """Split a dot-notation key into (category, subcategory, config_key)."""
    parts = key.split(".")
    if len(parts) == 1:
        return "general", None, parts[0]
    if len(parts) == 2:
        return parts[0], None, parts[1]
    return parts[0], "_".join(parts[1:-1]), parts[-1]


def config_filter(key: str) -> str:
    category, subcategory, config_key = split_config_key(key)
    filter_str = f'category = "{category}" && config_key = "{config_key}"'
    if subcategory:
        filter_str += f' && subcategory = "{subcategory}"'
    else:
        filter_str += ' && (subcategory = null || subcategory = "")'
    return filter_str


class ConfigLoader:
    """
    Singleton configuration loader.

    Usage:
        ConfigLoader.initialize(pocketbase_url="http://127.0.0.1:8090")
        loader = ConfigLoader.get_instance()
        max_size = loader.get_int("grouping.max_group_size")

        # Test substitution
        with ConfigLoader.use(mock_loader):
            ...
    """

    _instance: ConfigLoader | None = None
    _initialized: bool = False

    def __init__(
        self,
        pb_client: PocketBase | None = None,
        cache_ttl_seconds: int = 300,
    ):
        """
        Args:
            pb_client: PocketBase client. None means environment and defaults only.
            cache_ttl_seconds: Cache TTL for database values (default 5 minutes).
        """
        self._pb = pb_client
        self._cache_ttl = cache_ttl_seconds
        self._cache: dict[str, tuple[int, float]] = {}

    @classmethod
    def initialize(
        cls,
        pb_client: PocketBase | None = None,
        pocketbase_url: str | None = None,
        validate_on_init: bool = True,
    ) -> ConfigLoader:
        """
        Initialize the singleton ConfigLoader.

        Args:
            pb_client: Authenticated PocketBase client to read the config collection from
            pocketbase_url: Build an unauthenticated client for this URL when no client is given
            validate_on_init: If True, every registered key is read and validated now

        Raises:
            ConfigError: If any key resolves to an invalid value
            ConfigUnavailableError: If the config collection cannot be read
        """
        if cls._initialized:
            logger.debug("ConfigLoader already initialized, returning existing instance")
            return cls._instance  # type: ignore[return-value]

        if pb_client is None and pocketbase_url:
            pb_client = PocketBase(pocketbase_url)

        instance = cls(pb_client=pb_client)
        if validate_on_init:
            instance.validate_all()

        cls._instance = instance
        cls._initialized = True
        logger.info("ConfigLoader initialized successfully")
        return instance

    @classmethod
    def get_instance(cls) -> ConfigLoader:
        if not cls._initialized or cls._instance is None:
            logger.debug("ConfigLoader auto-initializing with environment and defaults only")
            return cls.initialize(validate_on_init=False)
        return cls._instance

    @classmethod
    def reset(cls) -> None:
        """Reset singleton state. For testing only."""
        cls._instance = None
        cls._initialized = False

    @classmethod
    @contextmanager
    def use(cls, loader: ConfigLoader) -> Iterator[None]:
        """Temporarily replace the singleton with another loader."""
        original = cls._instance
        original_initialized = cls._initialized
        cls._instance = loader
        cls._initialized = True
        try:
            yield
        finally:
            cls._instance = original
            cls._initialized = original_initialized

    def validate_all(self) -> None:
        """
        Resolve every registered key once.

        Raises:
            ConfigUnavailableError: If the database cannot be reached
            ConfigError: If required keys are missing or any value is invalid
        """
        missing_keys: list[str] = []
        invalid_values: list[str] = []

        for key in CONFIG_SCHEMA:
            try:
                self.get(key)
            except MissingConfigKeyError:
                missing_keys.append(key)
            except InvalidConfigValueError as e:
                invalid_values.append(str(e))

        if missing_keys or invalid_values:
            error_parts = []
            if missing_keys:
                error_parts.append(f"Missing required keys ({len(missing_keys)}): {missing_keys}")
            if invalid_values:
                error_parts.append(f"Invalid values ({len(invalid_values)}): {invalid_values}")
            raise ConfigError("Configuration validation failed.\n" + "\n".join(error_parts))

        logger.info(
            f"Validated {len(CONFIG_SCHEMA)} config keys ({len(get_all_required_keys())} without defaults)"
        )

    def get(self, key: str) -> int | None:
        """
        Get an integer configuration value.

        Raises:
            UnknownConfigKeyError: If key is not in schema
            MissingConfigKeyError: If key is required, unset and has no default
            InvalidConfigValueError: If value fails conversion or validation
            ConfigUnavailableError: If the config collection cannot be read
        """
        schema = CONFIG_SCHEMA.get(key)
        if schema is None:
            raise UnknownConfigKeyError(f"Unknown config key: '{key}'")

        env_value = os.environ.get(schema.env_var)
        if env_value is not None:
            return self._typed(key, env_value, source=f"environment variable {schema.env_var}")

        if key in self._cache:
            value, timestamp = self._cache[key]
            if time.time() - timestamp < self._cache_ttl:
                return value

        raw_value = self._query_database_raw(key)
        if raw_value is None:
            if schema.default is not None:
                return schema.default
            if schema.required:
                raise MissingConfigKeyError(f"Required config key '{key}' not found in database and has no default")
            return None

        typed_value = self._typed(key, raw_value, source="database")
        self._cache[key] = (typed_value, time.time())
        return typed_value

    def _typed(self, key: str, raw_value: Any, source: str) -> int:
        schema = CONFIG_SCHEMA[key]
        try:
            typed_value = schema.convert(raw_value)
        except (ValueError, TypeError) as e:
            raise InvalidConfigValueError(f"Config key '{key}' from {source} has invalid type: {e}") from e

        error = schema.validate(typed_value)
        if error:
            raise InvalidConfigValueError(f"Config key '{key}' from {source}: {error}")
        return typed_value

    def get_int(self, key: str, default: int | None = None) -> int:
        try:
            value = self.get(key)
        except (MissingConfigKeyError, UnknownConfigKeyError):
            if default is not None:
                return default
            raise
        if value is None and default is not None:
            return default
        return cast(int, value)

    def _query_database_raw(self, key: str) -> Any | None:
        """Read a raw value from the config collection; None when absent."""
        if self._pb is None:
            return None

        try:
            record = self._pb.collection(CONFIG_COLLECTION).get_first_list_item(config_filter(key))
        except ClientResponseError as e:
            if e.status == 404:
                return None
            raise ConfigUnavailableError(f"Database error fetching config key '{key}': {e}") from e
        return getattr(record, "value", None)

    def invalidate_cache(self, key: str | None = None) -> None:
        if key is None:
            self._cache.clear()
        else:
            self._cache.pop(key, None)

    def update_config(self, key: str, value: int) -> None:
        """
        Write a value to the config collection.

        Raises:
            UnknownConfigKeyError: If key is not in schema
            InvalidConfigValueError: If value fails validation
            ConfigError: If no database client is configured
        """
        schema = CONFIG_SCHEMA.get(key)
        if schema is None:
            raise UnknownConfigKeyError(f"Unknown config key: '{key}'")

        error = schema.validate(value)
        if error:
            raise InvalidConfigValueError(f"Cannot update '{key}': {error}")
        if self._pb is None:
            raise ConfigError(f"Cannot update '{key}': no PocketBase client configured")

        collection = self._pb.collection(CONFIG_COLLECTION)
        try:
            record = collection.get_first_list_item(config_filter(key))
            collection.update(record.id, {"value": value})
        except ClientResponseError as e:
            if e.status != 404:
                raise ConfigUnavailableError(f"Database error updating config key '{key}': {e}") from e
            category, subcategory, config_key = split_config_key(key)
            collection.create(
                {
                    "category": category,
                    "subcategory": subcategory or "",
                    "config_key": config_key,
                    "value": value,
                    "description": schema.description,
                }
            )

        self.invalidate_cache(key)
        logger.info(f"Updated config '{key}' to '{value}'")
