"""Environment-driven configuration for the calendar import functions."""
import os
from dataclasses import dataclass
from typing import Mapping, Optional


DEFAULT_CORS_PROXY_URL = 'https://api.allorigins.win/get'


def _env_bool(value: str) -> bool:
    return value.strip().lower() in ('1', 'true', 'yes', 'on')


@dataclass
class Settings:
    """Runtime settings read from environment variables."""
    calendars_table: str = 'calendars'
    events_table: str = 'events'
    log_level: str = 'INFO'
    timeout_seconds: int = 30
    cors_proxy_url: str = DEFAULT_CORS_PROXY_URL
    google_relay_url: str = ''
    google_api_key: str = ''
    google_lookahead_months: int = 6
    google_max_results: int = 250
    min_ics_length: int = 50
    default_calendar_color: str = '#3B82F6'
    dedup_policy: str = 'snapshot'
    strict_dates: bool = False
    
    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> 'Settings':
        """
        Build settings from environment variables.
        
        Args:
            environ: Mapping to read from (defaults to os.environ)
            
        Returns:
            Settings instance
        """
        env = os.environ if environ is None else environ
        return cls(
            calendars_table=env.get('CALENDARS_TABLE', 'calendars'),
            events_table=env.get('EVENTS_TABLE', 'events'),
            log_level=env.get('LOG_LEVEL', 'INFO'),
            timeout_seconds=int(env.get('TIMEOUT_SECONDS', '30')),
            cors_proxy_url=env.get('CORS_PROXY_URL', DEFAULT_CORS_PROXY_URL),
            google_relay_url=env.get('GOOGLE_RELAY_URL', ''),
            google_api_key=env.get('GOOGLE_CALENDAR_API_KEY', ''),
            google_lookahead_months=int(env.get('GOOGLE_LOOKAHEAD_MONTHS', '6')),
            google_max_results=int(env.get('GOOGLE_MAX_RESULTS', '250')),
            min_ics_length=int(env.get('MIN_ICS_LENGTH', '50')),
            default_calendar_color=env.get('DEFAULT_CALENDAR_COLOR', '#3B82F6'),
            dedup_policy=env.get('IMPORT_DEDUP_POLICY', 'snapshot').lower(),
            strict_dates=_env_bool(env.get('STRICT_DATES', 'false'))
        )
