"""
SQL结果模型模块

定义语句类型、后端列类型码、规范类型以及语句执行结果的数据结构
"""

from enum import Enum, IntEnum
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


class StatementKind(IntEnum):
    """语句类型，取值与后端 %StatementType 一致"""
    OTHER = 0
    SELECT = 1
    INSERT = 2
    UPDATE = 3
    DELETE = 4
    CALL = 45

    @classmethod
    def from_code(cls, code) -> 'StatementKind':
        try:
            return cls(int(code))
        except (TypeError, ValueError):
            return cls.OTHER


class ODBCType(IntEnum):
    """后端列类型码"""
    BIGINT = -5
    BINARY = -2
    BIT = -7
    CHAR = 1
    DECIMAL = 3
    DOUBLE = 8
    FLOAT = 6
    GUID = -11
    INTEGER = 4
    LONGVARBINARY = -4
    LONGVARCHAR = -1
    NUMERIC = 2
    REAL = 7
    SMALLINT = 5
    DATE = 9
    TIME = 10
    TIMESTAMP = 11
    TINYINT = -6
    TYPE_DATE = 91
    TYPE_TIME = 92
    TYPE_TIMESTAMP = 93
    VARBINARY = -3
    VARCHAR = 12
    WCHAR = -8
    WLONGVARCHAR = -10
    WVARCHAR = -9
    DATE_HOROLOG = 1091
    TIME_HOROLOG = 1092
    TIMESTAMP_POSIX = 1093


class CanonicalType(Enum):
    """对外暴露的规范列类型"""
    INTEGER = "INTEGER"
    BIGINT = "BIGINT"
    DECIMAL = "DECIMAL"
    DOUBLE = "DOUBLE"
    DATE = "DATE"
    TIME = "TIME"
    TIMESTAMP = "TIMESTAMP"
    BINARY = "BINARY"
    VARCHAR = "VARCHAR"
    BIT = "BIT"
    UNKNOWN = "UNKNOWN"


_ODBC_TO_CANONICAL = {
    ODBCType.INTEGER: CanonicalType.INTEGER,
    ODBCType.SMALLINT: CanonicalType.INTEGER,
    ODBCType.TINYINT: CanonicalType.INTEGER,
    ODBCType.BIGINT: CanonicalType.BIGINT,
    ODBCType.NUMERIC: CanonicalType.DECIMAL,
    ODBCType.DECIMAL: CanonicalType.DECIMAL,
    ODBCType.FLOAT: CanonicalType.DOUBLE,
    ODBCType.REAL: CanonicalType.DOUBLE,
    ODBCType.DOUBLE: CanonicalType.DOUBLE,
    ODBCType.DATE: CanonicalType.DATE,
    ODBCType.TYPE_DATE: CanonicalType.DATE,
    ODBCType.DATE_HOROLOG: CanonicalType.DATE,
    ODBCType.TIME: CanonicalType.TIME,
    ODBCType.TYPE_TIME: CanonicalType.TIME,
    ODBCType.TIME_HOROLOG: CanonicalType.TIME,
    ODBCType.TIMESTAMP: CanonicalType.TIMESTAMP,
    ODBCType.TYPE_TIMESTAMP: CanonicalType.TIMESTAMP,
    ODBCType.TIMESTAMP_POSIX: CanonicalType.TIMESTAMP,
    ODBCType.BINARY: CanonicalType.BINARY,
    ODBCType.VARBINARY: CanonicalType.BINARY,
    ODBCType.LONGVARBINARY: CanonicalType.BINARY,
    ODBCType.CHAR: CanonicalType.VARCHAR,
    ODBCType.VARCHAR: CanonicalType.VARCHAR,
    ODBCType.LONGVARCHAR: CanonicalType.VARCHAR,
    ODBCType.WCHAR: CanonicalType.VARCHAR,
    ODBCType.WVARCHAR: CanonicalType.VARCHAR,
    ODBCType.WLONGVARCHAR: CanonicalType.VARCHAR,
    ODBCType.GUID: CanonicalType.VARCHAR,
    ODBCType.BIT: CanonicalType.BIT,
}


def to_canonical_type(type_code) -> CanonicalType:
    """
    将后端列类型码映射为规范类型

    Args:
        type_code: 后端返回的整数类型码

    Returns:
        规范类型，无法识别时为 UNKNOWN
    """
    try:
        return _ODBC_TO_CANONICAL.get(ODBCType(int(type_code)), CanonicalType.UNKNOWN)
    except (TypeError, ValueError):
        return CanonicalType.UNKNOWN


@dataclass
class ColumnMeta:
    """结果集列元数据"""
    name: str
    data_type: CanonicalType = CanonicalType.UNKNOWN
    nullable: bool = True
    is_primary_key: bool = False
    is_unique: bool = False
    is_auto_increment: bool = False
    precision: Optional[int] = None
    scale: Optional[int] = None
    table_name: Optional[str] = None
    schema_name: Optional[str] = None


@dataclass
class SQLResult:
    """
    语句执行结果

    rows 仅在 SELECT 时非空，last_insert_id 仅在 INSERT 时设置
    """
    statement_kind: StatementKind
    rows: List[Dict[str, Any]] = field(default_factory=list)
    columns: List[ColumnMeta] = field(default_factory=list)
    status_code: int = 0
    message: Optional[str] = None
    last_insert_id: Optional[Any] = None
    affected_rows: int = 0

    def __post_init__(self):
        if self.rows and self.statement_kind != StatementKind.SELECT:
            raise ValueError(f"{self.statement_kind.name} 语句的结果不应包含数据行")
        if self.last_insert_id is not None and self.statement_kind != StatementKind.INSERT:
            raise ValueError(f"{self.statement_kind.name} 语句的结果不应包含 last_insert_id")

    @property
    def success(self) -> bool:
        return not self.message and self.status_code >= 0


def classify_statement(sql: str) -> StatementKind:
    """根据首个关键字判断语句类型"""
    stripped = sql.lstrip().lstrip('(').lstrip()
    keyword = stripped.split(None, 1)[0].upper() if stripped else ''
    if keyword in ('SELECT', 'WITH'):
        return StatementKind.SELECT
    if keyword == 'INSERT':
        return StatementKind.INSERT
    if keyword == 'UPDATE':
        return StatementKind.UPDATE
    if keyword == 'DELETE':
        return StatementKind.DELETE
    if keyword in ('CALL', '{CALL'):
        return StatementKind.CALL
    return StatementKind.OTHER
