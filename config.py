"""
JSON-based configuration for the GT06 parser node
Single config.json file contains all configuration
"""
import json
import os
import logging
from typing import Dict, Any, Optional

logger = logging.getLogger(__name__)

SUPPORTED_MODES = ('LOGS', 'RABBITMQ', 'HTTP')

# Environment variable -> (section, key)
ENV_OVERRIDES = {
    'NODE_ID': ('parser_node', 'node_id'),
    'RABBITMQ_HOST': ('rabbitmq', 'host'),
    'RABBITMQ_PASSWORD': ('rabbitmq', 'password'),
    'HTTP_FORWARD_ENDPOINT': ('http_forwarder', 'endpoint'),
}


class Config:
    """Main configuration class - loads from single config.json"""

    _config: Optional[Dict[str, Any]] = None
    _config_file: Optional[str] = None

    @classmethod
    def load(cls, file_path: Optional[str] = None) -> Dict[str, Any]:
        """
        Load configuration (cached after the first call).

        Args:
            file_path: Explicit config file; a different path than the cached one forces a reload
        """
        if file_path and file_path != cls._config_file:
            cls._config_file = file_path
            cls._config = None

        if cls._config is None:
            cls._config = cls._load_config()

        return cls._config

    @classmethod
    def reload(cls) -> Dict[str, Any]:
        """
        Force reload configuration from file.

        Components that already copied values out of the configuration keep
        their old values.
        """
        cls._config = None
        return cls.load()

    @classmethod
    def _load_config(cls) -> Dict[str, Any]:
        """Load JSON config with defaults and validation"""
        config_file = cls._find_config_file()

        try:
            if os.path.exists(config_file):
                with open(config_file, 'r', encoding='utf-8') as f:
                    config = json.load(f)
                logger.info(f"Loaded configuration from {config_file}")
                merged_config = cls._merge_with_defaults(config)
            else:
                logger.warning(f"Config file not found: {config_file}, using defaults")
                merged_config = cls._get_defaults()
        except json.JSONDecodeError as e:
            logger.error(f"Invalid JSON in config file {config_file}: {e}")
            merged_config = cls._get_defaults()
        except OSError as e:
            logger.error(f"Error reading config file {config_file}: {e}")
            merged_config = cls._get_defaults()

        cls._apply_env_overrides(merged_config)
        cls._validate_config(merged_config)
        return merged_config

    @classmethod
    def _apply_env_overrides(cls, config: Dict[str, Any]) -> None:
        for env_name, (section, key) in ENV_OVERRIDES.items():
            value = os.environ.get(env_name)
            if value:
                config.setdefault(section, {})[key] = value
                logger.debug(f"Config {section}.{key} overridden from ${env_name}")

    @classmethod
    def _validate_config(cls, config: Dict[str, Any]) -> None:
        """
        Validate configuration values, replacing invalid ones with defaults.

        Args:
            config: Configuration dictionary to validate (modified in place)
        """
        server_config = config.setdefault('server', {})
        tcp_port = server_config.get('tcp_port', 5001)
        if not isinstance(tcp_port, int) or isinstance(tcp_port, bool) or not (0 <= tcp_port <= 65535):
            logger.warning(f"Invalid TCP port: {tcp_port}, using default 5001")
            server_config['tcp_port'] = 5001

        mode = config.get('data_transfer_mode', {}).get('mode', 'LOGS')
        mode = mode.upper() if isinstance(mode, str) else 'LOGS'
        if mode not in SUPPORTED_MODES:
            logger.warning(f"Invalid data_transfer_mode: {mode}, using default 'LOGS'")
            mode = 'LOGS'
        config.setdefault('data_transfer_mode', {})['mode'] = mode

        if mode == 'RABBITMQ':
            if not config.get('rabbitmq', {}).get('host'):
                logger.warning("RabbitMQ mode enabled but no RabbitMQ host configured")
            if not config.get('parser_node', {}).get('node_id'):
                logger.warning("RabbitMQ mode enabled but no parser_node.node_id configured")
        elif mode == 'HTTP':
            if not config.get('http_forwarder', {}).get('endpoint'):
                logger.warning("HTTP mode enabled but no http_forwarder.endpoint configured")

        read_size = config.get('tcp_server', {}).get('read_size', 4096)
        if not isinstance(read_size, int) or read_size < 1:
            logger.warning(f"Invalid tcp_server.read_size: {read_size}, using default 4096")
            config.setdefault('tcp_server', {})['read_size'] = 4096

        allow_list = config.get('device_allow_list', {})
        if allow_list.get('enabled') and not allow_list.get('imeis') and not allow_list.get('csv_file'):
            logger.warning("device_allow_list is enabled but empty - every LOGIN will be rejected")

        logger.debug("Configuration validation completed")

    @classmethod
    def _find_config_file(cls) -> str:
        """Explicit path if one was given, else config.json beside this module."""
        if cls._config_file:
            return cls._config_file

        config_py_path = getattr(cls, '_module_file', __file__)
        node_dir = os.path.dirname(os.path.abspath(config_py_path))
        return os.path.join(node_dir, "config.json")

    @classmethod
    def _merge_with_defaults(cls, config: Dict[str, Any]) -> Dict[str, Any]:
        """Merge loaded config with defaults, one level deep per section"""
        result = cls._get_defaults()
        for key, value in config.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = {**result[key], **value}
            else:
                result[key] = value
        return result

    @classmethod
    def _get_defaults(cls) -> Dict[str, Any]:
        """Default configuration values for GT06"""
        return {
            "data_transfer_mode": {"mode": "LOGS"},
            "server": {"ip": "0.0.0.0", "tcp_port": 5001},
            "parser_node": {"node_id": "gt06-parser-1", "vendor": "gt06"},
            "gt06_protocol": {
                "read_timeout": 30,
                "idle_timeout": 600
            },
            "tcp_server": {
                "read_size": 4096,
                "max_concurrent_connections": 50000,
                "backlog": 1000,
                "connection_reject_timeout": 1.0, "connection_cleanup_timeout": 5.0,
                "log_raw_packets": True, "raw_packet_max_bytes": 256,
                "keepalive_idle": 60, "keepalive_interval": 10, "keepalive_count": 3
            },
            "device_allow_list": {
                "enabled": False,
                "imeis": [],
                "csv_file": None
            },
            "rabbitmq": {
                "host": "localhost", "port": 5672, "virtual_host": "/",
                "username": "guest", "password": "guest",
                "exchange": "tracking_data_exchange",
                "publisher_confirms": True,
                "publish_reconnect_timeout": 10.0
            },
            "http_forwarder": {"endpoint": None, "timeout": 5.0},
            "csv_output": {"directory": "logs"},
            "load_monitoring": {
                "enabled": True,
                "report_interval_seconds": 60,
                "api_endpoint": None
            },
            "shutdown": {
                "tcp_server_stop_timeout": 1.0,
                "task_completion_timeout": 1.5
            },
            "logging": {
                "log_file": "logs/gt06_parser.log",
                "level": "INFO",
                "max_bytes": 10485760,
                "backup_count": 5,
                "json_format": False
            }
        }

    @classmethod
    def get_data_transfer_mode(cls) -> str:
        """Data transfer mode, uppercase: LOGS, RABBITMQ or HTTP"""
        mode = cls.load()["data_transfer_mode"]["mode"]
        return mode.upper() if isinstance(mode, str) else "LOGS"

    @classmethod
    def get_server_config(cls) -> Dict[str, Any]:
        return cls.load()["server"]


class ServerParams:
    """Server runtime parameters"""

    @classmethod
    def get(cls, key: str, default=None):
        """Get parameter using dot notation (e.g., 'tcp_server.read_size')"""
        value = Config.load()
        for k in key.split('.'):
            if not isinstance(value, dict):
                return default
            value = value.get(k)
            if value is None:
                return default
        return value

    @classmethod
    def get_int(cls, key: str, default: int = 0) -> int:
        value = cls.get(key, default)
        try:
            return int(value)
        except (ValueError, TypeError):
            return default

    @classmethod
    def get_float(cls, key: str, default: float = 0.0) -> float:
        value = cls.get(key, default)
        try:
            return float(value)
        except (ValueError, TypeError):
            return default

    @classmethod
    def get_bool(cls, key: str, default: bool = False) -> bool:
        value = cls.get(key, default)
        if isinstance(value, bool):
            return value
        if isinstance(value, str):
            return value.lower() in ('true', '1', 'yes', 'on')
        return bool(value) if value is not None else default


# Store module file path for config loading
Config._module_file = __file__

# Auto-load config on module import
Config.load()
