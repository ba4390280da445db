"""
数据导入模块

负责将 CSV / TXT / JSON / XLSX 文件分批导入到数据库表，
支持新建表（推断列类型、建索引）和导入已有表两种模式
"""

import os
import json
import math
import logging
import time
import threading
from enum import Enum
from itertools import islice
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

from .config import DEFAULT_SCHEMA
from .exceptions import ImportJobError, JobCancelledError, TableExistsError, TransferError, ValidationError
from .file_reader import FileFormat, FileSource
from .sql_client import SQLClient
from .table_manager import (IndexType, InsertResult, RowErrorPolicy, TableManager,
                            validate_column_type, validate_identifier, validate_table_name)
from .type_inference import ColumnAnalysis, TypeInferenceEngine, sanitize_column_name

DEFAULT_BATCH_RATIO = 0.3


class ImportMode(Enum):
    """导入模式"""
    CREATE_NEW = "createNew"
    LOAD_EXISTING = "loadExisting"


class ConflictPolicy(Enum):
    """导入已有表时的冲突策略"""
    APPEND = "append"
    REPLACE = "replace"


class ImportState(Enum):
    """导入任务状态"""
    ANALYZING = "analyzing"
    SCHEMA_CHECK = "schema_check"
    CREATING = "creating"
    INDEX_BUILDING = "index_building"
    BATCH_INSERTING = "batch_inserting"
    COMPLETE = "complete"
    FAILED = "failed"


def _coerce(enum_cls, value, label: str):
    try:
        return enum_cls(value)
    except ValueError:
        choices = ", ".join(member.value for member in enum_cls)
        raise ValidationError(f"不支持的{label}: {value}。可选值: {choices}")


def compute_batch_size(total_rows: int, ratio: float = DEFAULT_BATCH_RATIO) -> int:
    """批大小为总行数的固定比例（向下取整），最小为1"""
    return max(1, math.floor(total_rows * ratio))


def compute_batch_count(total_rows: int, batch_size: int) -> int:
    if total_rows <= 0:
        return 0
    return math.ceil(total_rows / batch_size)


class CancellationToken:
    """取消标记，可在其他线程中调用 cancel()"""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self):
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self, checkpoint: str = ""):
        if self._event.is_set():
            raise JobCancelledError(f"任务已取消 ({checkpoint})" if checkpoint else "任务已取消")


@dataclass
class IndexSpec:
    """索引定义，column 可以是原始列名或规范化后的列名"""
    column: str
    index_type: Any = IndexType.INDEX
    name: Optional[str] = None

    def __post_init__(self):
        self.index_type = IndexType.parse(self.index_type)


@dataclass
class ImportJob:
    """导入任务数据类"""
    file_path: str
    target_table: str
    target_schema: str = DEFAULT_SCHEMA
    file_format: Optional[Any] = None
    mode: Any = ImportMode.CREATE_NEW
    column_type_overrides: Dict[str, str] = field(default_factory=dict)
    index_specs: List[IndexSpec] = field(default_factory=list)
    conflict_policy: Any = ConflictPolicy.APPEND
    delimiter: str = ","
    row_error_policy: Any = RowErrorPolicy.SKIP

    def __post_init__(self):
        self.mode = _coerce(ImportMode, self.mode, "导入模式")
        self.conflict_policy = _coerce(ConflictPolicy, self.conflict_policy, "冲突策略")
        self.row_error_policy = _coerce(RowErrorPolicy, self.row_error_policy, "行错误策略")
        self.index_specs = [spec if isinstance(spec, IndexSpec) else IndexSpec(**spec)
                            for spec in self.index_specs]

    def validate(self) -> FileFormat:
        """
        校验任务参数，不访问数据库

        Returns:
            解析后的文件格式

        Raises:
            ValidationError: 参数非法
        """
        file_format = FileFormat.resolve(self.file_format, self.file_path)
        if not os.path.isfile(self.file_path):
            raise ValidationError(f"源文件不存在: {self.file_path}")
        if file_format in (FileFormat.CSV, FileFormat.TXT) and len(self.delimiter or '') != 1:
            raise ValidationError(f"分隔符必须是单个字符: {self.delimiter!r}")

        if self.mode == ImportMode.CREATE_NEW:
            validate_table_name(self.target_table, self.target_schema)
        else:
            validate_identifier(self.target_table, "表名")
            validate_identifier(self.target_schema, "模式名")

        for column_type in self.column_type_overrides.values():
            validate_column_type(column_type)

        primary_keys = [spec for spec in self.index_specs if spec.index_type == IndexType.PRIMARY_KEY]
        if len(primary_keys) > 1:
            raise ValidationError(f"最多只能指定一个主键列，当前为: {', '.join(s.column for s in primary_keys)}")
        for spec in self.index_specs:
            if spec.name:
                validate_identifier(spec.name, "索引名")
        return file_format


@dataclass
class ImportResult:
    """导入结果数据类"""
    table_name: str
    schema: str
    mode: ImportMode
    state: ImportState = ImportState.ANALYZING
    columns: List[ColumnAnalysis] = field(default_factory=list)
    ddl_statement: str = ""
    total_rows: int = 0
    inserted_rows: int = 0
    skipped_rows: int = 0
    batch_size: int = 0
    batch_count: int = 0
    completed_batches: int = 0
    errors: List[str] = field(default_factory=list)
    execution_time: float = 0.0
    cancelled: bool = False

    @property
    def success(self) -> bool:
        return self.state == ImportState.COMPLETE


class BatchProgressMonitor:
    """批次进度监控器"""

    def __init__(self, total_rows: int, total_batches: int, callback: Optional[Callable] = None):
        self.total_rows = total_rows
        self.total_batches = total_batches
        self.completed_batches = 0
        self.inserted_rows = 0
        self.skipped_rows = 0
        self.callback = callback
        self._lock = threading.Lock()

    def update_progress(self, batch_result: InsertResult):
        """更新进度"""
        with self._lock:
            self.completed_batches += 1
            self.inserted_rows += batch_result.affected_rows
            self.skipped_rows += batch_result.skipped_rows
            progress = self._snapshot()

        if self.callback:
            self.callback(progress)

    def get_progress(self) -> Dict:
        """获取当前进度"""
        with self._lock:
            return self._snapshot()

    def _snapshot(self) -> Dict:
        return {
            'stage': ImportState.BATCH_INSERTING.value,
            'total_rows': self.total_rows,
            'total_batches': self.total_batches,
            'completed_batches': self.completed_batches,
            'inserted_rows': self.inserted_rows,
            'skipped_rows': self.skipped_rows,
            'progress_percent': self.completed_batches / self.total_batches * 100 if self.total_batches else 100.0
        }


class ImportPipeline:
    """导入流水线"""

    def __init__(self, sql_client: SQLClient,
                 inference_engine: Optional[TypeInferenceEngine] = None,
                 progress_callback: Optional[Callable] = None,
                 batch_ratio: float = DEFAULT_BATCH_RATIO):
        """
        初始化导入流水线

        Args:
            sql_client: 已连接的SQL客户端
            inference_engine: 类型推断引擎
            progress_callback: 进度回调函数，参数为进度字典
            batch_ratio: 批大小占总行数的比例
        """
        self.table_manager = TableManager(sql_client)
        self.inference_engine = inference_engine or TypeInferenceEngine()
        self.progress_callback = progress_callback
        self.batch_ratio = batch_ratio
        self.logger = logging.getLogger(__name__)
        self.last_result: Optional[ImportResult] = None

    def run(self, job: ImportJob, cancel_token: Optional[CancellationToken] = None) -> ImportResult:
        """
        执行导入任务

        Args:
            job: 导入任务
            cancel_token: 取消标记，在各步骤之间和每个批次开始前检查

        Returns:
            导入结果

        Raises:
            ValidationError: 参数、表名或文件格式非法
            TableExistsError: 新建模式下目标表已存在
            SQLClientError: 建表、建索引或 ABORT 策略下插入失败
            JobCancelledError: 任务被取消
            ImportJobError: 其他意外错误，result 中为部分结果
        """
        start_time = time.time()
        cancel_token = cancel_token or CancellationToken()
        result = ImportResult(table_name=job.target_table, schema=job.target_schema, mode=job.mode)
        self.last_result = result

        try:
            file_format = job.validate()
            source = FileSource(job.file_path, file_format, job.delimiter)
            self.logger.info(f"开始导入: {job.file_path} -> {job.target_schema}.{job.target_table} ({job.mode.value})")

            self._transition(result, ImportState.ANALYZING)
            if job.mode == ImportMode.CREATE_NEW:
                mapping = self._analyze_new(job, source, result)
                cancel_token.raise_if_cancelled(ImportState.SCHEMA_CHECK.value)

                self._transition(result, ImportState.SCHEMA_CHECK)
                if self.table_manager.table_exists(job.target_table, job.target_schema):
                    raise TableExistsError(f"表 {job.target_schema}.{job.target_table} 已存在")
                cancel_token.raise_if_cancelled(ImportState.CREATING.value)

                self._transition(result, ImportState.CREATING)
                result.ddl_statement = self.table_manager.create_table(
                    job.target_table,
                    [(column.name, column.inferred_type) for column in result.columns],
                    job.target_schema
                )
                cancel_token.raise_if_cancelled(ImportState.INDEX_BUILDING.value)

                self._transition(result, ImportState.INDEX_BUILDING)
                self._build_indexes(job)
            else:
                mapping = self._analyze_existing(job, source, result)

            cancel_token.raise_if_cancelled(ImportState.BATCH_INSERTING.value)
            self._transition(result, ImportState.BATCH_INSERTING)
            if job.mode == ImportMode.LOAD_EXISTING and job.conflict_policy == ConflictPolicy.REPLACE:
                self.table_manager.truncate_table(job.target_table, job.target_schema)
            self._insert_batches(job, source, mapping, result, cancel_token)

            self._transition(result, ImportState.COMPLETE)
            result.execution_time = time.time() - start_time
            self.logger.info(
                f"导入完成: {job.target_schema}.{job.target_table}, 共 {result.total_rows} 行, "
                f"成功 {result.inserted_rows} 行, 跳过 {result.skipped_rows} 行, 耗时 {result.execution_time:.2f}秒"
            )
            return result

        except JobCancelledError as e:
            result.cancelled = True
            self._fail(result, e, start_time)
            raise
        except TransferError as e:
            self._fail(result, e, start_time)
            raise
        except Exception as e:
            self._fail(result, e, start_time)
            raise ImportJobError(f"导入 {job.file_path} 失败: {str(e)}", result) from e

    def _transition(self, result: ImportResult, state: ImportState):
        result.state = state
        self.logger.debug(f"{result.schema}.{result.table_name}: {state.value}")
        if self.progress_callback:
            self.progress_callback({'stage': state.value, 'table': f"{result.schema}.{result.table_name}"})

    def _fail(self, result: ImportResult, error: Exception, start_time: float):
        failed_stage = result.state.value
        result.state = ImportState.FAILED
        result.errors.append(str(error))
        result.execution_time = time.time() - start_time
        self.logger.error(f"导入 {result.schema}.{result.table_name} 在 {failed_stage} 阶段失败: {str(error)}")
        if self.progress_callback:
            self.progress_callback({'stage': ImportState.FAILED.value,
                                    'table': f"{result.schema}.{result.table_name}",
                                    'error': str(error)})

    def _analyze_new(self, job: ImportJob, source: FileSource, result: ImportResult) -> List[Tuple[str, str]]:
        """推断列类型并合并覆盖项，返回 (源列名, 目标列名) 映射"""
        columns = self.inference_engine.analyze_source(source)
        if not columns:
            raise ValidationError(f"文件中没有可导入的列: {job.file_path}")

        by_key = {}
        for column in columns:
            by_key[column.name] = column
            by_key.setdefault(column.original_name, column)

        for key, column_type in job.column_type_overrides.items():
            column = by_key.get(key)
            if column is None:
                raise ValidationError(f"类型覆盖引用了不存在的列: {key}")
            self.logger.info(f"列 {column.name} 类型覆盖: {column.inferred_type} -> {column_type}")
            column.inferred_type = validate_column_type(column_type)

        for spec in job.index_specs:
            column = by_key.get(spec.column)
            if column is None:
                raise ValidationError(f"索引引用了不存在的列: {spec.column}")
            spec.column = column.name

        result.columns = columns
        return [(column.original_name, column.name) for column in columns]

    def _analyze_existing(self, job: ImportJob, source: FileSource, result: ImportResult) -> List[Tuple[str, str]]:
        """以目标表的现有结构为准，将文件列与表列对应"""
        description = self.table_manager.describe_table(job.target_table, job.target_schema)
        if not description.columns:
            raise ValidationError(f"表 {job.target_schema}.{job.target_table} 不存在或没有列")

        headers = source.headers
        exact = {header: header for header in headers}
        lowered = {header.lower(): header for header in headers}
        sanitized = {sanitize_column_name(header).lower(): header for header in headers}

        mapping = []
        for column in description.columns:
            key = (exact.get(column.name)
                   or lowered.get(column.name.lower())
                   or sanitized.get(column.name.lower()))
            if key is None:
                self.logger.debug(f"表列 {column.name} 在文件中没有对应列，使用默认值")
                continue
            mapping.append((key, column.name))
            column_type = column.data_type
            if column.max_length and column_type in ('VARCHAR', 'CHAR'):
                column_type = f"{column_type}({column.max_length})"
            result.columns.append(ColumnAnalysis(name=column.name, original_name=key, inferred_type=column_type))

        if not mapping:
            raise ValidationError(
                f"文件 {job.file_path} 的列与表 {job.target_schema}.{job.target_table} 没有任何对应"
            )
        return mapping

    def _build_indexes(self, job: ImportJob):
        for spec in job.index_specs:
            self.table_manager.create_index(
                job.target_table,
                spec.column,
                job.target_schema,
                index_name=spec.name,
                index_type=spec.index_type
            )

    @staticmethod
    def _materialize(row: Dict[str, Any], mapping: List[Tuple[str, str]]) -> Dict[str, Any]:
        """按映射生成目标行，空字符串视为 NULL，嵌套对象序列化为JSON文本"""
        values = {}
        for source_key, column in mapping:
            value = row.get(source_key)
            if isinstance(value, str) and value == '':
                value = None
            elif isinstance(value, (dict, list)):
                value = json.dumps(value, ensure_ascii=False)
            values[column] = value
        return values

    def _insert_batches(self, job: ImportJob, source: FileSource, mapping: List[Tuple[str, str]],
                        result: ImportResult, cancel_token: CancellationToken):
        result.total_rows = source.count_rows()
        result.batch_size = compute_batch_size(result.total_rows, self.batch_ratio)
        result.batch_count = compute_batch_count(result.total_rows, result.batch_size)
        self.logger.info(f"共 {result.total_rows} 行, 批大小 {result.batch_size}, 批次数 {result.batch_count}")

        monitor = BatchProgressMonitor(result.total_rows, result.batch_count, self.progress_callback)
        rows = source.iter_rows()
        offset = 0
        try:
            while True:
                batch = list(islice(rows, result.batch_size))
                if not batch:
                    break
                cancel_token.raise_if_cancelled(f"批次 {result.completed_batches + 1}")

                batch_result = self.table_manager.insert_many(
                    job.target_table,
                    [self._materialize(row, mapping) for row in batch],
                    job.target_schema,
                    policy=job.row_error_policy,
                    start_index=offset
                )
                offset += len(batch)
                result.completed_batches += 1
                result.inserted_rows += batch_result.affected_rows
                result.skipped_rows += batch_result.skipped_rows
                result.errors.extend(batch_result.errors)
                monitor.update_progress(batch_result)
        finally:
            rows.close()

        if result.skipped_rows:
            self.logger.warning(f"{job.target_schema}.{job.target_table}: 共跳过 {result.skipped_rows} 行，详见日志")
