"""
连接生命周期管理模块

按连接ID管理活动连接，保证每个ID同一时刻最多只有一个SQL客户端
"""

import logging
import threading
from typing import Callable, Dict, List, Optional

from .config import BACKEND_NATIVE, BACKEND_ODBC, DEFAULT_ODBC_DRIVER, ConnectionConfig
from .connector import IrisConnector
from .exceptions import BackendConnectionError
from .sql_client import SQLClient


class ConnectionManager:
    """连接生命周期管理器"""

    def __init__(self, odbc_driver: str = DEFAULT_ODBC_DRIVER,
                 allow_native_fallback: bool = False,
                 connector_factory: Optional[Callable[..., IrisConnector]] = None):
        """
        初始化连接管理器

        Args:
            odbc_driver: ODBC驱动名称
            allow_native_fallback: ODBC连接失败时是否改用原生SDK重试
            connector_factory: 连接对象构造函数，签名同 IrisConnector
        """
        self.odbc_driver = odbc_driver
        self.allow_native_fallback = allow_native_fallback
        self.connector_factory = connector_factory or IrisConnector
        self.logger = logging.getLogger(__name__)

        self._connections: Dict[str, IrisConnector] = {}
        self._lock = threading.Lock()
        # 每个ID一把连接锁，建立连接期间不占用映射表锁
        self._connect_locks: Dict[str, threading.Lock] = {}

    def connect(self, connection_id: str, config: ConnectionConfig) -> bool:
        """
        建立连接

        Args:
            connection_id: 逻辑连接ID
            config: 连接配置

        Returns:
            新建立连接返回 True，该ID已连接时返回 False

        Raises:
            BackendConnectionError: 所有后端均连接失败
        """
        with self._lock:
            connect_lock = self._connect_locks.setdefault(connection_id, threading.Lock())

        with connect_lock:
            with self._lock:
                if connection_id in self._connections:
                    self.logger.warning(f"连接 {connection_id} 已存在，忽略重复连接请求")
                    return False

            self.logger.info(f"建立连接 {connection_id}: {config.redacted()}")
            connector = self._open(config)
            with self._lock:
                self._connections[connection_id] = connector
            self.logger.info(f"连接 {connection_id} 已建立 ({connector.backend_kind})")
            return True

    def _open(self, config: ConnectionConfig) -> IrisConnector:
        connector = self.connector_factory(config, self.odbc_driver)
        try:
            connector.connect()
            return connector
        except BackendConnectionError as e:
            if not (self.allow_native_fallback and config.backend_kind == BACKEND_ODBC):
                raise
            self.logger.warning(f"ODBC连接失败，改用原生SDK重试: {str(e)}")

        fallback = self.connector_factory(config.with_backend(BACKEND_NATIVE), self.odbc_driver)
        fallback.connect()
        return fallback

    def disconnect(self, connection_id: str):
        """
        断开连接，ID不存在时不做任何操作

        Args:
            connection_id: 逻辑连接ID
        """
        with self._lock:
            connector = self._connections.get(connection_id)
            if connector is None:
                self.logger.debug(f"连接 {connection_id} 不存在，无需断开")
                return
            try:
                connector.close()
            finally:
                del self._connections[connection_id]
            self.logger.info(f"连接 {connection_id} 已断开")

    def disconnect_all(self):
        """断开所有连接"""
        for connection_id in self.list_connections():
            self.disconnect(connection_id)

    def is_connected(self, connection_id: str) -> bool:
        with self._lock:
            connector = self._connections.get(connection_id)
            return connector is not None and connector.is_connected()

    def test(self, connection_id: str) -> bool:
        """测试指定连接，未连接时返回 False"""
        connector = self.get_connector(connection_id)
        if connector is None:
            return False
        return connector.test()

    def get_connector(self, connection_id: str) -> Optional[IrisConnector]:
        with self._lock:
            return self._connections.get(connection_id)

    def get_client(self, connection_id: str) -> SQLClient:
        """
        获取指定连接的SQL客户端

        Raises:
            BackendConnectionError: 该ID未连接
        """
        connector = self.get_connector(connection_id)
        if connector is None or not connector.is_connected():
            raise BackendConnectionError(f"连接 {connection_id} 未建立")
        return connector.sql_client

    def list_connections(self) -> List[str]:
        with self._lock:
            return list(self._connections.keys())
