"""
Runner configuration loader

Reads settings from environment variables, falling back to defaults:

    COMPONENT_RUNNER_EXAMPLES_URL       where the example components are served
    COMPONENT_RUNNER_TRANSPILER         transpiler command line
    COMPONENT_RUNNER_TRANSPILE_TIMEOUT  seconds before the transpiler is killed
    COMPONENT_RUNNER_FETCH_TIMEOUT      seconds before an example fetch fails
    COMPONENT_RUNNER_ENTRY_POINT        generated file that holds the module
    COMPONENT_RUNNER_LOG_FILE           optional TSV mirror of the activity log
"""

import os
from pathlib import Path
from typing import Dict, Mapping, Optional

from .core.transpiler import DEFAULT_ENTRY_POINT


ENV_PREFIX = 'COMPONENT_RUNNER_'

DEFAULTS = {
    'EXAMPLES_URL': 'http://localhost:5173/',
    'TRANSPILE_TIMEOUT': '120',
    'FETCH_TIMEOUT': '30',
    'ENTRY_POINT': DEFAULT_ENTRY_POINT,
}


class RunnerConfig:
    """Load and hold runner configuration"""

    def __init__(self, environ: Optional[Mapping[str, str]] = None):
        self._environ = os.environ if environ is None else environ
        self._load()

    def _get(self, key: str) -> Optional[str]:
        value = self._environ.get(ENV_PREFIX + key, DEFAULTS.get(key))
        if value is not None:
            value = value.strip()
        return value or None

    def _load(self):
        """Load configuration from the environment"""
        self.examples_url = self._get('EXAMPLES_URL')
        self.transpiler_command = self._get('TRANSPILER')
        self.transpile_timeout = float(self._get('TRANSPILE_TIMEOUT') or DEFAULTS['TRANSPILE_TIMEOUT'])
        self.fetch_timeout = float(self._get('FETCH_TIMEOUT') or DEFAULTS['FETCH_TIMEOUT'])
        self.entry_point = self._get('ENTRY_POINT') or DEFAULT_ENTRY_POINT

        log_file = self._get('LOG_FILE')
        self.log_file = Path(log_file) if log_file else None

    def as_dict(self) -> Dict[str, object]:
        return {
            'examples_url': self.examples_url,
            'transpiler_command': self.transpiler_command,
            'transpile_timeout': self.transpile_timeout,
            'fetch_timeout': self.fetch_timeout,
            'entry_point': self.entry_point,
            'log_file': str(self.log_file) if self.log_file else None,
        }


# Global instance (lazy loaded)
_config = None


def get_config() -> RunnerConfig:
    """Get the global runner configuration"""
    global _config
    if _config is None:
        _config = RunnerConfig()
    return _config


def reload_config() -> RunnerConfig:
    """Reload configuration from the environment"""
    global _config
    _config = RunnerConfig()
    return _config
