"""
异常定义模块

数据传输引擎中所有可预期的错误类型
"""

from typing import List, Optional


class TransferError(Exception):
    """数据传输引擎异常基类"""


class ConfigurationError(TransferError):
    """配置缺失或非法"""


class BackendConnectionError(TransferError):
    """后端连接失败"""

    def __init__(self, message: str, backend: str = ""):
        super().__init__(message)
        self.backend = backend


class SQLClientError(TransferError):
    """
    SQL语句执行失败

    携带后端名称、原始SQL、状态码以及后端返回的子错误列表
    """

    def __init__(self, message: str, backend: str = "", sql: str = "",
                 status_code: Optional[int] = None, sub_errors: Optional[List] = None):
        super().__init__(f"[{backend}] {message}" if backend else message)
        self.backend = backend
        self.sql = sql
        self.status_code = status_code
        self.sub_errors = sub_errors or []


class ValidationError(TransferError):
    """参数校验失败，在调用后端之前抛出"""


class TableExistsError(ValidationError):
    """目标表已存在"""


class UnsupportedFormatError(ValidationError):
    """不支持的文件格式"""

    def __init__(self, file_format: str, path: str = ""):
        message = f"不支持的文件格式: {file_format}"
        if path:
            message += f" ({path})"
        super().__init__(message)
        self.file_format = file_format
        self.path = path


class FileFormatError(TransferError):
    """源文件无法解码或结构不正确"""

    def __init__(self, message: str, path: str = ""):
        super().__init__(f"{message}: {path}" if path else message)
        self.path = path


class ImportJobError(TransferError):
    """导入任务失败，result 中保存失败时的部分结果"""

    def __init__(self, message: str, result=None):
        super().__init__(message)
        self.result = result


class JobCancelledError(TransferError):
    """任务在检查点被取消"""
