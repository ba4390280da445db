"""
配置模块

负责加载YAML配置文件，并构造不可变的连接配置
"""

from dataclasses import dataclass, asdict
from typing import Dict, Optional

import yaml

from .exceptions import ConfigurationError

BACKEND_NATIVE = "native"
BACKEND_ODBC = "odbc"
SUPPORTED_BACKENDS = (BACKEND_NATIVE, BACKEND_ODBC)

DEFAULT_ODBC_DRIVER = "InterSystems IRIS ODBC35"
DEFAULT_SCHEMA = "SQLUser"
PASSWORD_PLACEHOLDER = "***"


@dataclass(frozen=True)
class ConnectionConfig:
    """连接配置，创建客户端后不可修改"""
    host: str
    native_port: int
    odbc_port: int
    namespace: str
    user: str
    password: str = ""
    backend_kind: str = BACKEND_ODBC

    def __post_init__(self):
        if self.backend_kind not in SUPPORTED_BACKENDS:
            raise ConfigurationError(
                f"不支持的后端类型: {self.backend_kind}。支持的类型: {', '.join(SUPPORTED_BACKENDS)}"
            )

    @classmethod
    def from_dict(cls, data: Dict) -> 'ConnectionConfig':
        """
        从配置字典构造连接配置

        Args:
            data: 包含 host / native_port / odbc_port / namespace / user / password / backend_kind 的字典

        Returns:
            连接配置对象

        Raises:
            ConfigurationError: 缺少必需字段或端口非法
        """
        missing = [name for name in ('host', 'namespace', 'user') if not data.get(name)]
        if missing:
            raise ConfigurationError(f"连接配置缺少必需字段: {', '.join(missing)}")

        port = data.get('port')
        try:
            native_port = int(data.get('native_port', port or 1972))
            odbc_port = int(data.get('odbc_port', port or 1972))
        except (TypeError, ValueError):
            raise ConfigurationError("端口必须是整数")

        return cls(
            host=str(data['host']),
            native_port=native_port,
            odbc_port=odbc_port,
            namespace=str(data['namespace']),
            user=str(data['user']),
            password=str(data.get('password') or ''),
            backend_kind=str(data.get('backend_kind', BACKEND_ODBC)).lower(),
        )

    def port_for(self, backend_kind: Optional[str] = None) -> int:
        """获取指定后端使用的端口"""
        kind = backend_kind or self.backend_kind
        return self.native_port if kind == BACKEND_NATIVE else self.odbc_port

    def with_backend(self, backend_kind: str) -> 'ConnectionConfig':
        """返回仅后端类型不同的新配置"""
        values = asdict(self)
        values['backend_kind'] = backend_kind
        return ConnectionConfig(**values)

    def redacted(self) -> Dict:
        """用于日志输出的副本，密码被替换为占位符"""
        values = asdict(self)
        values['password'] = PASSWORD_PLACEHOLDER
        return values

    def __repr__(self):
        fields = ", ".join(f"{key}={value!r}" for key, value in self.redacted().items())
        return f"ConnectionConfig({fields})"


def get_default_config() -> Dict:
    """获取默认配置"""
    return {
        'connections': {
            'local': {
                'host': 'localhost',
                'native_port': 1972,
                'odbc_port': 1972,
                'namespace': 'USER',
                'user': '_SYSTEM',
                'password': 'SYS',
                'backend_kind': BACKEND_ODBC,
            }
        },
        'odbc': {
            'driver': DEFAULT_ODBC_DRIVER,
            'allow_native_fallback': False,
        },
        'import': {
            'sample_rows': 100,
            'batch_ratio': 0.3,
            'row_error_policy': 'skip',
            'default_schema': DEFAULT_SCHEMA,
        },
        'export': {
            'default_delimiter': ',',
            'default_limit': None,
        },
        'logging': {
            'level': 'INFO',
            'file': 'iris_io.log',
        },
    }


def load_config(config_path: str) -> Dict:
    """
    加载配置文件

    文件不存在或无法解析时使用默认配置

    Args:
        config_path: YAML配置文件路径

    Returns:
        配置字典
    """
    try:
        with open(config_path, 'r', encoding='utf-8') as f:
            config = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        print(f"警告：加载配置文件失败 ({e})，使用默认配置")
        return get_default_config()

    defaults = get_default_config()
    for section, values in defaults.items():
        if isinstance(values, dict) and section != 'connections':
            merged = dict(values)
            merged.update(config.get(section) or {})
            config[section] = merged
        else:
            config.setdefault(section, values)
    return config


def get_connection_config(config: Dict, connection_id: str) -> ConnectionConfig:
    """按连接ID从配置中取出连接配置"""
    connections = config.get('connections') or {}
    if connection_id not in connections:
        raise ConfigurationError(f"配置中不存在连接: {connection_id}")
    return ConnectionConfig.from_dict(connections[connection_id])
