"""
表管理模块

负责表结构查询、建表、建索引和逐行插入，所有语句都通过SQL客户端执行
"""

import re
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple, Union

from .config import DEFAULT_SCHEMA
from .exceptions import SQLClientError, ValidationError
from .sql_client import SQLClient

# 列名、索引名、模式名等一般标识符
_IDENTIFIER_PATTERN = re.compile(r'^[A-Za-z%_][A-Za-z0-9_]*$')
# 列类型，例如 INTEGER / VARCHAR(255) / NUMERIC(10,2)
_COLUMN_TYPE_PATTERN = re.compile(r'^[A-Za-z][A-Za-z ]*(\(\s*\d+\s*(,\s*\d+\s*)?\))?$')

MAX_RECORDED_ERRORS = 100


class IndexType(Enum):
    """索引类型"""
    INDEX = "INDEX"
    UNIQUE = "UNIQUE"
    BITMAP = "BITMAP"
    PRIMARY_KEY = "PRIMARY KEY"

    @classmethod
    def parse(cls, value) -> 'IndexType':
        if isinstance(value, cls):
            return value
        text = str(value or 'INDEX').strip().upper().replace('_', ' ')
        for member in cls:
            if member.value == text:
                return member
        raise ValidationError(f"不支持的索引类型: {value}")


class RowErrorPolicy(Enum):
    """单行插入失败时的处理策略"""
    SKIP = "skip"
    ABORT = "abort"


@dataclass
class TableColumn:
    """表列定义"""
    name: str
    data_type: str
    max_length: Optional[int] = None
    nullable: bool = True
    auto_increment: bool = False
    unique: bool = False
    primary_key: bool = False
    odbc_type: Optional[int] = None


@dataclass
class TableIndex:
    """索引定义"""
    name: str
    column: str
    primary_key: bool = False
    non_unique: bool = True


@dataclass
class TableDescription:
    """表结构快照，每次调用都重新查询"""
    schema: str
    table: str
    columns: List[TableColumn] = field(default_factory=list)
    indexes: List[TableIndex] = field(default_factory=list)

    @property
    def column_names(self) -> List[str]:
        return [column.name for column in self.columns]


@dataclass
class InsertResult:
    """插入结果数据类"""
    affected_rows: int = 0
    skipped_rows: int = 0
    errors: List[str] = field(default_factory=list)
    execution_time: float = 0.0

    @property
    def success(self) -> bool:
        return self.skipped_rows == 0


def _as_bool(value) -> bool:
    if isinstance(value, str):
        return value.strip().upper() in ('YES', 'Y', '1', 'TRUE')
    return bool(value)


def _as_int(value) -> Optional[int]:
    if value is None or value == '':
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def validate_identifier(name: str, kind: str = "标识符") -> str:
    """校验一般标识符，返回去除空白后的名称"""
    text = (name or '').strip()
    if not text or not _IDENTIFIER_PATTERN.match(text):
        raise ValidationError(f"非法的{kind}: {name!r}")
    return text


def validate_table_name(table: str, schema: str = DEFAULT_SCHEMA) -> Tuple[str, str]:
    """
    校验新建表的表名与模式名

    表名不能包含点号或下划线，模式名不能包含点号

    Returns:
        (表名, 模式名)

    Raises:
        ValidationError: 名称非法
    """
    table = (table or '').strip()
    schema = (schema or DEFAULT_SCHEMA).strip()
    if not table:
        raise ValidationError("表名不能为空")
    if '.' in table or '_' in table:
        raise ValidationError(f"表名不能包含 '.' 或 '_': {table}")
    if '.' in schema:
        raise ValidationError(f"模式名不能包含 '.': {schema}")
    validate_identifier(table, "表名")
    validate_identifier(schema, "模式名")
    return table, schema


def split_qualified_name(name: str, default_schema: str = DEFAULT_SCHEMA) -> Tuple[str, str]:
    """
    拆分 schema.table 形式的名称

    Returns:
        (表名, 模式名)
    """
    text = (name or '').strip()
    if '.' in text:
        schema, table = text.split('.', 1)
        return table.strip(), schema.strip() or default_schema
    return text, default_schema


def validate_column_type(column_type: str) -> str:
    text = (column_type or '').strip()
    if not _COLUMN_TYPE_PATTERN.match(text):
        raise ValidationError(f"非法的列类型: {column_type!r}")
    return text


class TableManager:
    """表管理器"""

    def __init__(self, sql_client: SQLClient):
        """
        Args:
            sql_client: 已连接的SQL客户端
        """
        self.sql_client = sql_client
        self.logger = logging.getLogger(__name__)

    @staticmethod
    def qualified_name(table: str, schema: str = DEFAULT_SCHEMA) -> str:
        return f"{validate_identifier(schema, '模式名')}.{validate_identifier(table, '表名')}"

    # ---------- 结构查询 ----------

    def get_schemas(self, name_filter: Optional[str] = None) -> List[str]:
        """列出包含基表的模式，name_filter 按前缀匹配"""
        sql = """
            SELECT DISTINCT TABLE_SCHEMA
            FROM INFORMATION_SCHEMA.TABLES
            WHERE TABLE_TYPE = 'BASE TABLE'
        """
        params = []
        if name_filter and name_filter.strip():
            sql += " AND TABLE_SCHEMA LIKE ?"
            params.append(f"{name_filter.strip()}%")
        sql += " ORDER BY TABLE_SCHEMA"
        return [row['TABLE_SCHEMA'] for row in self.sql_client.query(sql, params)]

    def get_tables(self, schema: str = DEFAULT_SCHEMA) -> List[str]:
        """列出模式下的基表"""
        sql = """
            SELECT TABLE_NAME
            FROM INFORMATION_SCHEMA.TABLES
            WHERE TABLE_SCHEMA = ?
            AND TABLE_TYPE = 'BASE TABLE'
            ORDER BY TABLE_NAME
        """
        tables = [row['TABLE_NAME'] for row in self.sql_client.query(sql, [schema])]
        self.logger.debug(f"模式 {schema} 下共 {len(tables)} 张表")
        return tables

    def get_all_tables(self, table_filter: Optional[str] = None,
                       schema_filter: Optional[str] = None) -> List[Dict[str, str]]:
        """列出所有基表，可按表名和模式名精确过滤"""
        sql = """
            SELECT TABLE_SCHEMA, TABLE_NAME
            FROM INFORMATION_SCHEMA.TABLES
            WHERE TABLE_TYPE = 'BASE TABLE'
        """
        params = []
        if table_filter:
            sql += " AND TABLE_NAME = ?"
            params.append(table_filter)
        if schema_filter:
            sql += " AND TABLE_SCHEMA = ?"
            params.append(schema_filter)
        sql += " ORDER BY TABLE_SCHEMA, TABLE_NAME"
        return self.sql_client.query(sql, params)

    def table_exists(self, table: str, schema: str = DEFAULT_SCHEMA) -> bool:
        sql = """
            SELECT COUNT(*) AS num_rows
            FROM INFORMATION_SCHEMA.TABLES
            WHERE TABLE_NAME = ?
            AND TABLE_SCHEMA = ?
        """
        rows = self.sql_client.query(sql, [table, schema])
        return bool(rows) and int(rows[0].get('num_rows') or 0) > 0

    def describe_table(self, table: str, schema: str = DEFAULT_SCHEMA) -> TableDescription:
        """
        读取表的列与索引定义

        Args:
            table: 表名
            schema: 模式名

        Returns:
            表结构快照，表不存在时列和索引均为空
        """
        columns_sql = """
            SELECT TABLE_SCHEMA, TABLE_NAME,
                COLUMN_NAME, DATA_TYPE, CHARACTER_MAXIMUM_LENGTH,
                IS_NULLABLE, AUTO_INCREMENT, UNIQUE_COLUMN, PRIMARY_KEY, ODBCTYPE
            FROM INFORMATION_SCHEMA.COLUMNS
            WHERE TABLE_NAME = ?
            AND TABLE_SCHEMA = ?
            ORDER BY ORDINAL_POSITION
        """
        indexes_sql = """
            SELECT INDEX_NAME, COLUMN_NAME, PRIMARY_KEY, NON_UNIQUE
            FROM INFORMATION_SCHEMA.INDEXES
            WHERE TABLE_NAME = ?
            AND TABLE_SCHEMA = ?
        """
        description = TableDescription(schema=schema, table=table)
        for row in self.sql_client.query(columns_sql, [table, schema]):
            description.columns.append(TableColumn(
                name=row['COLUMN_NAME'],
                data_type=str(row.get('DATA_TYPE') or '').upper(),
                max_length=_as_int(row.get('CHARACTER_MAXIMUM_LENGTH')),
                nullable=_as_bool(row.get('IS_NULLABLE')),
                auto_increment=_as_bool(row.get('AUTO_INCREMENT')),
                unique=_as_bool(row.get('UNIQUE_COLUMN')),
                primary_key=_as_bool(row.get('PRIMARY_KEY')),
                odbc_type=_as_int(row.get('ODBCTYPE')),
            ))
        for row in self.sql_client.query(indexes_sql, [table, schema]):
            description.indexes.append(TableIndex(
                name=row['INDEX_NAME'],
                column=row['COLUMN_NAME'],
                primary_key=_as_bool(row.get('PRIMARY_KEY')),
                non_unique=_as_bool(row.get('NON_UNIQUE')),
            ))
        return description

    def row_count(self, table: str, schema: str = DEFAULT_SCHEMA) -> int:
        rows = self.sql_client.query(f"SELECT COUNT(*) AS num_rows FROM {self.qualified_name(table, schema)}")
        return int(rows[0].get('num_rows') or 0) if rows else 0

    # ---------- 表结构变更 ----------

    def create_table(self, table: str, columns: Union[Dict[str, str], Sequence[Tuple[str, str]]],
                     schema: str = DEFAULT_SCHEMA, constraints: Optional[Sequence[str]] = None) -> str:
        """
        创建表

        Args:
            table: 表名
            columns: 列名到列类型的映射，或 (列名, 类型) 序列
            schema: 模式名
            constraints: 附加的表级约束子句

        Returns:
            执行的建表语句
        """
        table, schema = validate_table_name(table, schema)
        items = list(columns.items()) if isinstance(columns, dict) else list(columns)
        if not items:
            raise ValidationError(f"表 {schema}.{table} 至少需要一列")

        definitions = [
            f"{validate_identifier(name, '列名')} {validate_column_type(column_type)}"
            for name, column_type in items
        ]
        definitions.extend(constraints or [])

        ddl = f"CREATE TABLE {schema}.{table} (\n    " + ",\n    ".join(definitions) + "\n)"
        self.logger.info(f"创建表 {schema}.{table}: {len(items)} 列")
        self.sql_client.execute(ddl)
        return ddl

    def drop_table(self, table: str, schema: str = DEFAULT_SCHEMA, if_exists: bool = True):
        clause = "IF EXISTS " if if_exists else ""
        self.sql_client.execute(f"DROP TABLE {clause}{self.qualified_name(table, schema)}")
        self.logger.info(f"已删除表 {schema}.{table}")

    def truncate_table(self, table: str, schema: str = DEFAULT_SCHEMA):
        self.sql_client.execute(f"TRUNCATE TABLE {self.qualified_name(table, schema)}")
        self.logger.info(f"已清空表 {schema}.{table}")

    def create_index(self, table: str, column: str, schema: str = DEFAULT_SCHEMA,
                     index_name: Optional[str] = None, index_type=IndexType.INDEX) -> str:
        """
        为单列创建索引

        Args:
            table: 表名
            column: 列名
            schema: 模式名
            index_name: 索引名，默认为 <表名>_<列名>_idx
            index_type: 索引类型

        Returns:
            索引名
        """
        full_name = self.qualified_name(table, schema)
        column = validate_identifier(column, "列名")
        index_name = validate_identifier(index_name or f"{table}_{column}_idx", "索引名")
        index_type = IndexType.parse(index_type)

        if index_type == IndexType.PRIMARY_KEY:
            sql = f"ALTER TABLE {full_name} ADD CONSTRAINT {index_name} PRIMARY KEY ({column})"
        elif index_type == IndexType.INDEX:
            sql = f"CREATE INDEX {index_name} ON {full_name} ({column})"
        else:
            sql = f"CREATE {index_type.value} INDEX {index_name} ON {full_name} ({column})"

        self.sql_client.execute(sql)
        self.logger.info(f"已创建索引 {index_name} ({index_type.value}) ON {full_name}({column})")
        return index_name

    # ---------- 数据写入 ----------

    @staticmethod
    def build_insert_sql(full_name: str, columns: Sequence[str]) -> str:
        placeholders = ", ".join("?" for _ in columns)
        return f"INSERT INTO {full_name} ({', '.join(columns)}) VALUES ({placeholders})"

    def insert_row(self, table: str, row: Dict[str, Any], schema: str = DEFAULT_SCHEMA) -> int:
        """插入单行，失败时抛出异常"""
        columns = [validate_identifier(name, "列名") for name in row]
        sql = self.build_insert_sql(self.qualified_name(table, schema), columns)
        return self.sql_client.execute(sql, list(row.values()))

    def execute_best_effort(self, sql: str, params: Optional[Sequence[Any]] = None,
                            errors: Optional[List[str]] = None) -> int:
        """
        执行语句，语句失败时记录日志并返回 0，不中断调用方

        Args:
            sql: SQL语句
            params: 位置参数
            errors: 用于收集错误消息的列表

        Returns:
            影响行数，失败时为 0
        """
        try:
            return self.sql_client.execute(sql, params)
        except SQLClientError as e:
            self.logger.error(f"语句执行失败，已跳过: {str(e)} | SQL: {sql[:200]}")
            if errors is not None:
                errors.append(str(e))
            return 0

    def insert_many(self, table: str, rows: Iterable[Dict[str, Any]], schema: str = DEFAULT_SCHEMA,
                    policy: RowErrorPolicy = RowErrorPolicy.SKIP, start_index: int = 0) -> InsertResult:
        """
        逐行插入多行数据

        Args:
            table: 表名
            rows: 行字典序列，键为列名
            schema: 模式名
            policy: 单行失败时的处理策略
            start_index: 首行在源文件中的序号偏移，用于日志定位

        Returns:
            插入结果，包含成功行数与跳过行数

        Raises:
            SQLClientError: policy 为 ABORT 且某行插入失败
        """
        start_time = time.time()
        full_name = self.qualified_name(table, schema)
        result = InsertResult()
        statements: Dict[Tuple[str, ...], str] = {}

        for index, row in enumerate(rows, start=start_index):
            columns = tuple(row.keys())
            sql = statements.get(columns)
            if sql is None:
                sql = self.build_insert_sql(full_name, [validate_identifier(c, "列名") for c in columns])
                statements[columns] = sql
            params = list(row.values())

            if policy == RowErrorPolicy.ABORT:
                result.affected_rows += self.sql_client.execute(sql, params)
                continue

            row_errors: List[str] = []
            affected = self.execute_best_effort(sql, params, row_errors)
            if row_errors:
                result.skipped_rows += 1
                self.logger.error(f"表 {full_name} 第 {index + 1} 行插入失败，列: {', '.join(columns)}，原因: {row_errors[0]}")
                self.logger.debug(f"失败行内容: {row}")
                if len(result.errors) < MAX_RECORDED_ERRORS:
                    result.errors.append(f"第 {index + 1} 行: {row_errors[0]}")
            else:
                result.affected_rows += affected

        result.execution_time = time.time() - start_time
        self.logger.debug(f"批量插入 {full_name}: 成功 {result.affected_rows} 行, 跳过 {result.skipped_rows} 行, 耗时 {result.execution_time:.2f}秒")
        return result
