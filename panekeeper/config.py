"""
Configuration management for Panekeeper - single YAML file, flat keys
"""

import os
import yaml
from pathlib import Path
from typing import Dict, Any, Optional

from .exceptions import ConfigError


DEFAULT_CONFIG_PATH = Path.home() / '.panekeeper' / 'config.yaml'


class Config:
    """Panekeeper configuration manager"""
    
    def __init__(self, config_dict: Optional[Dict[str, Any]] = None):
        self._config = self._default_config()
        if config_dict:
            self._config.update(config_dict)
    
    @classmethod
    def load(cls, config_path: Path) -> 'Config':
        """Load configuration from file"""
        if config_path.exists():
            with open(config_path, 'r') as f:
                config_dict = yaml.safe_load(f) or {}
            if not isinstance(config_dict, dict):
                raise ConfigError(f"Configuration in {config_path} must be a mapping")
            return cls(config_dict)
        else:
            # Create default config if not exists
            config = cls()
            config.save(config_path)
            return config
    
    def save(self, config_path: Path):
        """Save configuration to file"""
        config_path.parent.mkdir(parents=True, exist_ok=True)
        with open(config_path, 'w') as f:
            yaml.dump(self._config, f, default_flow_style=False)
    
    def _default_config(self) -> Dict[str, Any]:
        """Get default configuration"""
        return {
            # Core settings
            'log_level': 'INFO',
            'state_dir': str(Path.home() / '.panekeeper' / 'state'),
            
            # Multiplexer control channel
            'multiplexer_command': 'wezterm',
            'command_timeout': 10.0,  # Seconds per control-plane call
            'min_op_interval': 0.5,   # Seconds between mutating calls (spawn/kill)
            
            # Worker launch
            'shell': '/bin/sh',
            'title_prefix': 'panekeeper',
            'worker_command': 'claude',
            'worker_args': ['--dangerously-skip-permissions'],
            'pid_resolve_timeout': 5.0,
            'pid_poll_interval': 0.1,
            'pane_layout': 'grid',  # grid: 3x3 splits per tab; tab: one tab per worker
            
            # Shutdown timing
            'interrupt_grace': 0.3,  # Wait after Ctrl+C
            'exit_grace': 0.5,       # Wait after "exit"
            'batch_pause': 0.3,      # Pause between workers in a batch stop
        }
    
    def validate(self):
        """Raise ConfigError if timing values are unusable"""
        if self.command_timeout <= 0:
            raise ConfigError(f"command_timeout must be positive, got {self.command_timeout}")
        for key in ('min_op_interval', 'interrupt_grace', 'exit_grace',
                    'batch_pause', 'pid_resolve_timeout', 'pid_poll_interval'):
            value = self._float(key)
            if value < 0:
                raise ConfigError(f"{key} must not be negative, got {value}")
        if not self._config.get('multiplexer_command'):
            raise ConfigError("multiplexer_command is required")
        if self.pane_layout not in ('grid', 'tab'):
            raise ConfigError(f"pane_layout must be 'grid' or 'tab', got {self.pane_layout!r}")
    
    def _float(self, key: str) -> float:
        try:
            return float(self._config[key])
        except (TypeError, ValueError):
            raise ConfigError(f"{key} must be a number, got {self._config.get(key)!r}")
    
    def get(self, key: str, default: Any = None) -> Any:
        """Get configuration value"""
        return self._config.get(key, default)
    
    def set(self, key: str, value: Any):
        """Set configuration value"""
        self._config[key] = value
    
    @property
    def log_level(self) -> str:
        """Get log level"""
        return self._config.get('log_level', 'INFO')
    
    @property
    def state_dir(self) -> Path:
        """Directory holding launcher scripts, records and pane history"""
        return Path(os.path.expanduser(str(self._config['state_dir'])))
    
    @property
    def multiplexer_command(self) -> str:
        return self._config['multiplexer_command']
    
    @property
    def command_timeout(self) -> float:
        return self._float('command_timeout')
    
    @property
    def min_op_interval(self) -> float:
        return self._float('min_op_interval')
    
    @property
    def interrupt_grace(self) -> float:
        return self._float('interrupt_grace')
    
    @property
    def exit_grace(self) -> float:
        return self._float('exit_grace')
    
    @property
    def batch_pause(self) -> float:
        return self._float('batch_pause')
    
    @property
    def pid_resolve_timeout(self) -> float:
        return self._float('pid_resolve_timeout')
    
    @property
    def pid_poll_interval(self) -> float:
        return self._float('pid_poll_interval')
    
    @property
    def pane_layout(self) -> str:
        return self._config.get('pane_layout', 'grid')
    
    @property
    def shell(self) -> str:
        return self._config.get('shell', '/bin/sh')
    
    @property
    def title_prefix(self) -> str:
        return self._config.get('title_prefix', 'panekeeper')
    
    @property
    def worker_command(self) -> list:
        """Get full worker launch command"""
        cmd = [self._config['worker_command']]
        cmd.extend(self._config.get('worker_args', []))
        return cmd
    
    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary"""
        return self._config.copy()
