"""Environment-driven configuration for the calendar sync."""
import os
from dataclasses import dataclass
from typing import Mapping, Optional


@dataclass(frozen=True)
class SyncConfig:
    events_table_name: str = 'chq-calendar-events'
    sync_status_table_name: Optional[str] = None
    api_base_url: str = 'https://www.chq.org/wp-json/tribe/events/v1'
    ics_base_url: str = 'https://www.chq.org/events/month/'
    log_level: str = 'INFO'
    timeout_seconds: int = 30
    cache_ttl_seconds: int = 300
    season_year: Optional[int] = None
    default_timezone: str = 'America/New_York'
    heuristics_path: Optional[str] = None
    aws_region: Optional[str] = None
    dynamodb_endpoint: Optional[str] = None

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> 'SyncConfig':
        """
        Read configuration from environment variables.

        Unset variables keep their defaults; empty optional values are
        treated as unset.

        Raises:
            ValueError: If a numeric variable is not an integer
        """
        env = os.environ if environ is None else environ
        season_year = env.get('SEASON_YEAR')

        return cls(
            events_table_name=env.get('EVENTS_TABLE_NAME', cls.events_table_name),
            sync_status_table_name=env.get('SYNC_STATUS_TABLE_NAME') or None,
            api_base_url=env.get('API_BASE_URL', cls.api_base_url),
            ics_base_url=env.get('ICS_BASE_URL', cls.ics_base_url),
            log_level=env.get('LOG_LEVEL', cls.log_level),
            timeout_seconds=int(env.get('TIMEOUT_SECONDS', cls.timeout_seconds)),
            cache_ttl_seconds=int(env.get('CACHE_TTL_SECONDS', cls.cache_ttl_seconds)),
            season_year=int(season_year) if season_year else None,
            default_timezone=env.get('DEFAULT_TIMEZONE', cls.default_timezone),
            heuristics_path=env.get('HEURISTICS_PATH') or None,
            aws_region=env.get('AWS_REGION') or None,
            dynamodb_endpoint=env.get('DYNAMODB_ENDPOINT') or None
        )
