import json
import os
import tempfile
import tomllib
import unittest
from datetime import timedelta
from pathlib import Path
from unittest import mock

from tidbpool.config import (
    DEFAULT_PORT,
    AppConfig,
    DatabaseConfig,
    PoolOptions,
    load_config,
)
from tidbpool.errors import ConfigError


FULL_TOML = """
[database]
host = "prod.db.internal"
port = 5433
username = "prod_user"
password = "prod_password"
databaseName = "prod_db"
sslCa = "/etc/ssl/certs/ca-certificates.crt"

[database.poolOptions]
maxConnections = 50
minConnections = 10
acquireTimeout = "60s"
idleTimeout = "10m"
maxLifetime = "1h"
isLazy = false
statementCacheCapacity = 250
"""

MINIMAL_TOML = """
[database]
host = "test.db"
username = "test_user"
password = "test_password"
databaseName = "test_db"
"""


def _parse(document: str) -> AppConfig:
    return AppConfig.from_mapping(tomllib.loads(document))


class FromMappingTests(unittest.TestCase):
    def test_full_configuration(self) -> None:
        config = _parse(FULL_TOML)
        database = config.database

        self.assertEqual(database.host, "prod.db.internal")
        self.assertEqual(database.port, 5433)
        self.assertEqual(database.username, "prod_user")
        self.assertEqual(database.password, "prod_password")
        self.assertEqual(database.database_name, "prod_db")
        self.assertEqual(database.ssl_ca, "/etc/ssl/certs/ca-certificates.crt")
        self.assertEqual(
            database.pool_options,
            PoolOptions(
                max_connections=50,
                min_connections=10,
                acquire_timeout=timedelta(seconds=60),
                idle_timeout=timedelta(minutes=10),
                max_lifetime=timedelta(hours=1),
                is_lazy=False,
                statement_cache_capacity=250,
            ),
        )

    def test_minimal_configuration_uses_defaults(self) -> None:
        database = _parse(MINIMAL_TOML).database

        self.assertIsNone(database.port)
        self.assertIsNone(database.ssl_ca)
        self.assertEqual(database.resolved_port, DEFAULT_PORT)
        self.assertEqual(database.pool_options, PoolOptions())

    def test_partial_pool_options_keep_remaining_defaults(self) -> None:
        database = _parse(
            MINIMAL_TOML
            + '\n[database.poolOptions]\nmaxConnections = 5\nacquireTimeout = "5s"\n'
        ).database
        options = database.pool_options

        self.assertEqual(options.max_connections, 5)
        self.assertEqual(options.acquire_timeout, timedelta(seconds=5))
        self.assertEqual(options.min_connections, 1)
        self.assertEqual(options.idle_timeout, timedelta(minutes=5))
        self.assertEqual(options.max_lifetime, timedelta(minutes=30))

    def test_accepts_snake_case_keys(self) -> None:
        database = DatabaseConfig.from_mapping(
            {
                "host": "h",
                "username": "u",
                "password": "p",
                "database_name": "d",
                "pool_options": {"max_connections": 3},
            }
        )

        self.assertEqual(database.database_name, "d")
        self.assertEqual(database.pool_options.max_connections, 3)

    def test_missing_required_key_is_reported(self) -> None:
        with self.assertRaises(ConfigError) as ctx:
            DatabaseConfig.from_mapping({"host": "h", "username": "u", "password": "p"})

        self.assertIn("databaseName", str(ctx.exception))

    def test_missing_database_section(self) -> None:
        with self.assertRaises(ConfigError):
            AppConfig.from_mapping({})

    def test_bad_duration_is_a_config_error(self) -> None:
        with self.assertRaises(ConfigError) as ctx:
            PoolOptions.from_mapping({"idleTimeout": "10x"})

        self.assertEqual(ctx.exception.stage, "parse")

    def test_wrong_types_are_rejected(self) -> None:
        with self.assertRaises(ConfigError):
            PoolOptions.from_mapping({"maxConnections": "many"})
        with self.assertRaises(ConfigError):
            PoolOptions.from_mapping({"isLazy": 1})
        with self.assertRaises(ConfigError):
            DatabaseConfig.from_mapping(
                {"host": 1, "username": "u", "password": "p", "databaseName": "d"}
            )


    def test_unrecognised_boolean_strings_are_rejected(self) -> None:
        with self.assertRaises(ConfigError) as ctx:
            PoolOptions.from_mapping({"isLazy": "ture"})

        self.assertIn("isLazy", str(ctx.exception))
        self.assertFalse(PoolOptions.from_mapping({"isLazy": " Off "}).is_lazy)
        self.assertTrue(PoolOptions.from_mapping({"isLazy": "yes"}).is_lazy)

    def test_misspelled_boolean_in_environment_is_rejected(self) -> None:
        with mock.patch.dict(os.environ, {"DB_POOL_IS_LAZY": "ture"}, clear=True):
            with self.assertRaises(ConfigError):
                DatabaseConfig.from_env()


class ValidationTests(unittest.TestCase):
    def test_pool_option_ranges(self) -> None:
        with self.assertRaises(ConfigError):
            PoolOptions(max_connections=0)
        with self.assertRaises(ConfigError):
            PoolOptions(min_connections=-1)
        with self.assertRaises(ConfigError):
            PoolOptions(statement_cache_capacity=-1)
        with self.assertRaises(ConfigError):
            PoolOptions(idle_timeout=timedelta(0))

    def test_min_above_max_is_left_to_the_pool_builder(self) -> None:
        options = PoolOptions(max_connections=2, min_connections=5)
        self.assertEqual(options.min_connections, 5)

    def test_port_range(self) -> None:
        with self.assertRaises(ConfigError):
            DatabaseConfig(port=70000)
        with self.assertRaises(ConfigError):
            DatabaseConfig(port=0)


class DatabaseConfigTests(unittest.TestCase):
    def test_defaults(self) -> None:
        config = DatabaseConfig()

        self.assertEqual(config.host, "localhost")
        self.assertIsNone(config.port)
        self.assertEqual(config.username, "")
        self.assertEqual(config.password, "")
        self.assertEqual(config.database_name, "")
        self.assertIsNone(config.ssl_ca)
        self.assertEqual(config.pool_options, PoolOptions())

    def test_address_with_port(self) -> None:
        config = DatabaseConfig(host="127.0.0.1", port=5432)
        self.assertEqual(config.address, "127.0.0.1:5432")

    def test_address_falls_back_to_default_port(self) -> None:
        config = DatabaseConfig(host="database.service.local")
        self.assertEqual(config.address, "database.service.local:4000")

    def test_redacted_masks_password(self) -> None:
        config = DatabaseConfig(username="u", password="secret")

        self.assertEqual(config.redacted().password, "***")
        self.assertEqual(config.password, "secret")


class SerialisationTests(unittest.TestCase):
    def test_mapping_round_trip(self) -> None:
        original = AppConfig(
            database=DatabaseConfig(
                host="roundtrip.db",
                port=1234,
                username="rt_user",
                password="rt_password",
                database_name="rt_db",
                ssl_ca="/tmp/ca.pem",
                pool_options=PoolOptions(max_connections=99),
            )
        )

        payload = json.loads(json.dumps(original.to_mapping()))

        self.assertEqual(AppConfig.from_mapping(payload), original)

    def test_unset_optional_fields_are_omitted(self) -> None:
        payload = DatabaseConfig().to_mapping()

        self.assertNotIn("port", payload)
        self.assertNotIn("sslCa", payload)
        self.assertEqual(payload["poolOptions"]["idleTimeout"], "5m")
        self.assertEqual(payload["poolOptions"]["maxLifetime"], "30m")


class FromEnvTests(unittest.TestCase):
    def test_reads_prefixed_variables(self) -> None:
        env = {
            "DB_HOST": "tidb.local",
            "DB_PORT": "4001",
            "DB_USER": "app",
            "DB_PASSWORD": "pw",
            "DB_NAME": "appdb",
            "DB_SSL_CA": "/etc/ca.pem",
            "DB_POOL_MAX_CONNECTIONS": "20",
            "DB_POOL_IDLE_TIMEOUT": "2m",
            "DB_POOL_IS_LAZY": "false",
        }
        with mock.patch.dict(os.environ, env, clear=True):
            config = AppConfig.from_env()

        database = config.database
        self.assertEqual(database.host, "tidb.local")
        self.assertEqual(database.port, 4001)
        self.assertEqual(database.username, "app")
        self.assertEqual(database.database_name, "appdb")
        self.assertEqual(database.ssl_ca, "/etc/ca.pem")
        self.assertEqual(database.pool_options.max_connections, 20)
        self.assertEqual(database.pool_options.idle_timeout, timedelta(minutes=2))
        self.assertFalse(database.pool_options.is_lazy)
        self.assertEqual(database.pool_options.min_connections, 1)

    def test_empty_environment_gives_defaults(self) -> None:
        with mock.patch.dict(os.environ, {}, clear=True):
            config = DatabaseConfig.from_env()

        self.assertEqual(config, DatabaseConfig())


class LoadConfigTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self._tmp.cleanup)
        self.root = Path(self._tmp.name)

    def test_loads_toml(self) -> None:
        path = self.root / "settings.toml"
        path.write_text(FULL_TOML, encoding="utf-8")

        config = load_config(path)

        self.assertEqual(config.database.host, "prod.db.internal")
        self.assertEqual(config.database.pool_options.max_lifetime, timedelta(hours=1))

    def test_loads_json(self) -> None:
        path = self.root / "settings.json"
        path.write_text(json.dumps(_parse(MINIMAL_TOML).to_mapping()), encoding="utf-8")

        self.assertEqual(load_config(path), _parse(MINIMAL_TOML))

    def test_missing_file(self) -> None:
        with self.assertRaises(ConfigError):
            load_config(self.root / "absent.toml")

    def test_unsupported_suffix(self) -> None:
        path = self.root / "settings.yaml"
        path.write_text("database: {}\n", encoding="utf-8")

        with self.assertRaises(ConfigError):
            load_config(path)

    def test_invalid_toml(self) -> None:
        path = self.root / "settings.toml"
        path.write_text("[database\n", encoding="utf-8")

        with self.assertRaises(ConfigError):
            load_config(path)
