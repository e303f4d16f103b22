"""Configuration for mediagrab"""

from pathlib import Path

from dynaconf import Dynaconf, Validator

# Validators for mediagrab settings.
_validators = [
    Validator("logging.format", is_in=["mozlog", "pretty"]),
    Validator("logging.level", is_in=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]),
    Validator("logging.can_propagate", is_type_of=bool),
    Validator("http.connect_timeout_sec", is_type_of=float, gt=0),
    # Page fetches on slow mobile networks can take a while, but never wait forever.
    Validator("http.request_timeout_sec", is_type_of=float, gt=0, lte=60.0),
    Validator("http.max_connections", is_type_of=int, gte=1),
    Validator("http.retry_wait_initial_sec", is_type_of=float, gte=0),
    Validator("http.user_agents", is_type_of=list, must_exist=True),
    Validator("resolver.fetch_retries", is_type_of=int, gte=0, lte=10),
    Validator("resolver.waiting_message", is_type_of=str, must_exist=True),
    Validator("classifier.rich_metadata_domains", is_type_of=list, must_exist=True),
    Validator("favicons.storage_dir", is_type_of=str, must_exist=True),
    Validator("favicons.service_url", is_type_of=str, must_exist=True),
    Validator("favicons.size", is_type_of=int, gte=16, lte=256),
    Validator("blocklist.source_url", is_type_of=str, must_exist=True),
    # The built-in host list is the floor of the block list cache, it must never be empty.
    Validator("blocklist.default_hosts", is_type_of=list, must_exist=True, len_min=1),
    Validator("blocklist.refresh_interval_sec", is_type_of=int, gte=0),
    Validator("database.path", is_type_of=str, must_exist=True),
]

# `root_path` = The directory of this module, settings files are resolved against it.
# `envvar_prefix` = Export envvars with `export MEDIAGRAB_FOO=bar`.
# `settings_files` = Load these files in the order.
# `environments` = Enable layered environments such as `development`, `production`, `testing` etc.
# `env_switcher` = Switch environments by `export MEDIAGRAB_ENV=production`. Default: `development`.
# `merge_enabled` = Environment tables extend the `default` tables instead of replacing them.
# `validators` = Define validators for mediagrab settings.

settings = Dynaconf(
    root_path=str(Path(__file__).parent),
    envvar_prefix="MEDIAGRAB",
    settings_files=[
        "default.toml",
        "development.toml",
        "production.toml",
        "testing.toml",
    ],
    environments=True,
    env_switcher="MEDIAGRAB_ENV",
    merge_enabled=True,
    validators=_validators,
)
