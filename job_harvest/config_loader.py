"""
Configuration loader for job-harvest

Reads config/settings.yaml, checks value bounds at load time and exposes
typed getters grouped by section. API keys never live in the YAML file;
only the name of the environment variable holding each key does.
"""

import yaml
import os
from pathlib import Path
from typing import Dict, Any, List, Optional
from datetime import datetime
import logging

logger = logging.getLogger(__name__)


class ConfigValidationError(ValueError):
    """A configured value is out of bounds."""
    pass


# (min key, max key) pairs under pacing.*
PACING_RANGES = (
    ('settle_min_ms', 'settle_max_ms'),
    ('reading_min_ms', 'reading_max_ms'),
    ('scroll_distance_min', 'scroll_distance_max'),
    ('scroll_pause_min_ms', 'scroll_pause_max_ms'),
)

NON_NEGATIVE_FIELDS = (
    'pacing.scroll_count',
    'pacing.top_pause_ms',
    'pacing.nudge_distance',
    'pacing.reload_wait_ms',
)

POSITIVE_FIELDS = (
    'browser.navigation_timeout',
    'browser.launch_timeout',
    'browser.script_timeout',
    'readiness.timeout_ms',
    'readiness.poll_interval_ms',
    'interception.wait_timeout_ms',
    'ai_text.timeout_seconds',
    'ai_vision.timeout_seconds',
    'ai_text.max_list_chars',
    'ai_text.max_status_chars',
    'dom.segment_max_chars',
)


def _number(value: Any, field: str) -> Optional[float]:
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        raise ConfigValidationError(f"Invalid config: '{field}' must be a number, got {value!r}") from None


def _check_bound(value: Any, field: str, allow_zero: bool) -> None:
    number = _number(value, field)
    if number is None:
        return
    if number < 0 or (number == 0 and not allow_zero):
        kind = "non-negative" if allow_zero else "positive (> 0)"
        raise ConfigValidationError(f"Invalid config: '{field}' must be {kind}, got {value}")


class ConfigLoader:
    """Typed, validated view over settings.yaml"""

    def __init__(self, config_path: str = "config/settings.yaml"):
        self.config_path = Path(config_path)
        self.config: Dict[str, Any] = {}
        self._load()

    def _load(self) -> None:
        if not self.config_path.exists():
            raise FileNotFoundError(f"Config file not found: {self.config_path}")

        try:
            with open(self.config_path, 'r', encoding='utf-8') as f:
                self.config = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            logger.error(f"Could not parse {self.config_path}: {e}")
            raise
        logger.info(f"✓ Config loaded from {self.config_path}")

        self._validate()

    def _validate(self) -> None:
        """Raise ConfigValidationError on the first out-of-bounds value."""
        for min_key, max_key in PACING_RANGES:
            low_field, high_field = f'pacing.{min_key}', f'pacing.{max_key}'
            low, high = self.get(low_field), self.get(high_field)
            _check_bound(low, low_field, allow_zero=True)
            _check_bound(high, high_field, allow_zero=True)
            if low is not None and high is not None and float(low) > float(high):
                raise ConfigValidationError(
                    f"Invalid config: '{low_field}' ({low}) must be <= '{high_field}' ({high})"
                )

        for field in NON_NEGATIVE_FIELDS:
            _check_bound(self.get(field), field, allow_zero=True)
        for field in POSITIVE_FIELDS:
            _check_bound(self.get(field), field, allow_zero=False)

        chance = _number(self.get('pacing.hesitation_chance'), 'pacing.hesitation_chance')
        if chance is not None and not 0 <= chance <= 1:
            raise ConfigValidationError(
                f"Invalid config: 'pacing.hesitation_chance' must be within [0, 1], got {chance}"
            )
        logger.debug("✓ Config values within bounds")

    def get(self, key: str, default: Any = None) -> Any:
        """Look up a dotted key such as 'pacing.scroll_count'"""
        node: Any = self.config
        for part in key.split('.'):
            if not isinstance(node, dict):
                return default
            node = node.get(part, default)
        return node

    # === Browser Config ===

    def is_headless(self) -> bool:
        """Check if browser should run in headless mode"""
        return bool(self.get('browser.headless', False))

    def get_navigation_timeout(self) -> int:
        """Get navigation timeout in milliseconds"""
        return int(self.get('browser.navigation_timeout', 45) * 1000)

    def get_launch_timeout(self) -> int:
        """Get browser launch timeout in milliseconds"""
        return int(self.get('browser.launch_timeout', 60) * 1000)

    def get_script_timeout(self) -> float:
        """Get the per-script evaluation timeout in seconds"""
        return float(self.get('browser.script_timeout', 10))

    def get_browser_channel(self) -> str:
        """Get Playwright browser channel override"""
        return self.get('browser.channel', '') or ''

    def get_browser_executable_path(self) -> str:
        """Get browser executable path override"""
        return self.get('browser.executable_path', '') or ''

    def get_profile_dir(self, account_id: str) -> Path:
        """Get the persistent browser profile directory for an account"""
        template = self.get('browser.profile_dir', 'browser-profiles/{account}')
        return Path(template.replace('{account}', account_id))

    def use_stealth(self) -> bool:
        """Check if Playwright stealth should be enabled"""
        return bool(self.get('browser.use_stealth', True))

    def get_platform(self) -> str:
        """Get the recruiting platform hint (boss, zhilian, job51, liepin)"""
        return (self.get('browser.platform', 'boss') or 'boss').strip().lower()

    def get_job_list_url(self) -> str:
        """Get the job list URL to open before extraction"""
        return self.get('browser.job_list_url', '') or ''

    # === Pacing Config ===

    def get_pacing_range_ms(self, name: str, default_min: float, default_max: float) -> tuple:
        """Get a (min, max) millisecond range, e.g. name='settle'"""
        low = float(self.get(f'pacing.{name}_min_ms', default_min))
        high = float(self.get(f'pacing.{name}_max_ms', default_max))
        return low, high

    def get_scroll_count(self) -> int:
        return int(self.get('pacing.scroll_count', 6))

    def get_scroll_distance_range(self) -> tuple:
        """Get (min, max) scroll distance in pixels"""
        return (
            int(self.get('pacing.scroll_distance_min', 300)),
            int(self.get('pacing.scroll_distance_max', 700)),
        )

    def get_top_pause_ms(self) -> float:
        return float(self.get('pacing.top_pause_ms', 800))

    def get_nudge_distance(self) -> int:
        return int(self.get('pacing.nudge_distance', 200))

    def get_reload_wait_ms(self) -> float:
        return float(self.get('pacing.reload_wait_ms', 3000))

    def is_reload_on_empty_enabled(self) -> bool:
        """Check if an empty probe should trigger one reload-and-repeat"""
        return bool(self.get('pacing.reload_on_empty', True))

    def get_hesitation_chance(self) -> float:
        """Probability of an extra pause after a scroll"""
        return float(self.get('pacing.hesitation_chance', 0.15))

    # === Readiness Config ===

    def get_readiness_timeout_ms(self) -> int:
        return int(self.get('readiness.timeout_ms', 20000))

    def get_readiness_poll_interval_ms(self) -> int:
        return int(self.get('readiness.poll_interval_ms', 500))

    def get_min_body_chars(self) -> int:
        """Body text length that counts as a weak list-ready signal"""
        return int(self.get('readiness.min_body_chars', 100))

    def is_readiness_ai_fallback_enabled(self) -> bool:
        return bool(self.get('readiness.ai_fallback', True))

    # === Interception Config ===

    def get_interception_timeout_ms(self) -> int:
        return int(self.get('interception.wait_timeout_ms', 15000))

    def get_extra_endpoints(self) -> List[str]:
        """Get additional URL fragments that mark job-list responses"""
        return list(self.get('interception.extra_endpoints', []) or [])

    def get_job_url_template(self) -> str:
        """Get the detail page URL template ({id} is replaced with the job id)"""
        return self.get(
            'interception.job_url_template',
            'https://www.zhipin.com/job_detail/{id}.html',
        ) or ''

    # === DOM Config ===

    def get_status_marker(self) -> str:
        """Get the text marker used to split page text into job segments"""
        return self.get('dom.status_marker', '开放中') or '开放中'

    def get_segment_max_chars(self) -> int:
        return int(self.get('dom.segment_max_chars', 500))

    # === AI Config ===
    # `section` is 'ai_text' or 'ai_vision'

    def is_ai_enabled(self, section: str) -> bool:
        """Check if an AI analyzer is enabled"""
        return bool(self.get(f'{section}.enabled', False))

    def get_ai_provider(self, section: str) -> str:
        return (self.get(f'{section}.provider', 'zhipu') or 'zhipu').strip().lower()

    def get_ai_base_url(self, section: str) -> str:
        """Get base URL override (empty means use the provider preset)"""
        return (self.get(f'{section}.base_url', '') or '').strip()

    def get_ai_model(self, section: str) -> str:
        """Get model override (empty means use the provider preset)"""
        return (self.get(f'{section}.model', '') or '').strip()

    def get_ai_api_key_env(self, section: str) -> str:
        """Get env var name that contains the API key."""
        return (self.get(f'{section}.api_key_env', '') or '').strip()

    def get_ai_timeout(self, section: str) -> float:
        """Get per-call timeout in seconds"""
        default = 60 if section == 'ai_vision' else 30
        return float(self.get(f'{section}.timeout_seconds', default))

    def get_ai_temperature(self, section: str) -> float:
        return float(self.get(f'{section}.temperature', 0.1))

    def get_ai_max_tokens(self, section: str) -> int:
        return int(self.get(f'{section}.max_tokens', 2000))

    def get_max_list_chars(self) -> int:
        """Get HTML truncation limit for list-page analysis"""
        return int(self.get('ai_text.max_list_chars', 8000))

    def get_max_status_chars(self) -> int:
        """Get HTML truncation limit for page-status analysis"""
        return int(self.get('ai_text.max_status_chars', 3000))

    def get_vision_debug_dir(self) -> Optional[Path]:
        """Get directory for debug screenshots (None disables saving)"""
        path = self.get('ai_vision.debug_dir', '')
        return Path(path) if path else None

    # === Output Config ===

    def get_output_path(self) -> Path:
        """Get output file path with timestamp if enabled"""
        use_timestamp = self.get('output.use_timestamp', True)
        timestamp = datetime.now().strftime('%Y%m%d_%H%M%S') if use_timestamp else ''
        template = self.get('output.json_file', 'output/jobs_{timestamp}.json')
        return Path(template.replace('{timestamp}', timestamp))

    def get_diagnostics_template(self) -> str:
        return self.get('output.diagnostics_file', '') or ''

    # === Logging Config ===

    def get_log_level(self) -> str:
        """Get logging level"""
        return self.get('logging.level', 'INFO')

    def get_log_file(self) -> Path:
        """Get log file path with timestamp"""
        template = self.get('logging.log_file', 'logs/job_harvest.log')
        timestamp = datetime.now().strftime('%Y%m%d_%H%M%S')
        return Path(template.replace('{timestamp}', timestamp))

    def __repr__(self) -> str:
        return f"<Config: platform={self.get_platform()}, path={self.config_path}>"


def read_api_key(env_name: str) -> str:
    """Read an API key from the environment (keys are never stored in config)."""
    if not env_name:
        return ""
    return (os.getenv(env_name) or "").strip()


# Convenience function
def load_config(config_path: str = "config/settings.yaml") -> ConfigLoader:
    """Load configuration from file"""
    return ConfigLoader(config_path)
