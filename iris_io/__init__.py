"""
核心模块
包含SQL客户端、类型推断、连接管理、文件导入导出等核心功能
"""

__version__ = "1.0.0"

from .config import ConnectionConfig, load_config
from .client_factory import SQLClientFactory
from .connection_manager import ConnectionManager
from .exporter import ExportPipeline, ExportResult
from .file_reader import FileFormat, FileSource
from .importer import (CancellationToken, ConflictPolicy, ImportJob, ImportMode,
                       ImportPipeline, ImportResult, IndexSpec)
from .table_manager import RowErrorPolicy, TableManager
from .type_inference import TypeInferenceEngine

__all__ = [
    'ConnectionConfig',
    'load_config',
    'SQLClientFactory',
    'ConnectionManager',
    'ExportPipeline',
    'ExportResult',
    'FileFormat',
    'FileSource',
    'CancellationToken',
    'ConflictPolicy',
    'ImportJob',
    'ImportMode',
    'ImportPipeline',
    'ImportResult',
    'IndexSpec',
    'RowErrorPolicy',
    'TableManager',
    'TypeInferenceEngine'
]
