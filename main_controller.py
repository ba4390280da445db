"""
主控制器模块

整合连接管理、类型推断、导入和导出模块，提供统一的数据传输接口
"""

import logging
from typing import Callable, Dict, List, Optional

from iris_io.config import DEFAULT_ODBC_DRIVER, DEFAULT_SCHEMA, ConnectionConfig, get_connection_config, load_config
from iris_io.connection_manager import ConnectionManager
from iris_io.exceptions import TransferError
from iris_io.exporter import ExportPipeline, ExportResult
from iris_io.file_reader import FileFormat
from iris_io.importer import CancellationToken, ImportJob, ImportPipeline, ImportResult
from iris_io.table_manager import TableManager
from iris_io.type_inference import ColumnAnalysis, TypeInferenceEngine


class IrisTransferController:
    """IRIS数据传输主控制器"""

    def __init__(self, config_path: str = "config.yaml", import_config: Optional[Dict] = None):
        """
        初始化控制器

        Args:
            config_path: 配置文件路径
            import_config: 覆盖配置文件中 import 段的自定义配置
        """
        # 加载配置
        self.config = self._load_config(config_path)
        if import_config:
            self.config.setdefault('import', {}).update(import_config)

        # 设置日志
        self._setup_logging()
        self.logger = logging.getLogger(__name__)

        # 初始化核心组件
        odbc_config = self.config.get('odbc', {})
        self.connection_manager = ConnectionManager(
            odbc_driver=odbc_config.get('driver') or DEFAULT_ODBC_DRIVER,
            allow_native_fallback=bool(odbc_config.get('allow_native_fallback', False))
        )
        self.inference_engine = TypeInferenceEngine(self.config['import'].get('sample_rows', 100))

        # 回调函数
        self.progress_callback = None
        self.error_callback = None
        self.completion_callback = None

        self.logger.info("IRIS数据传输控制器初始化完成")

    def _load_config(self, config_path: str) -> Dict:
        """加载配置文件"""
        return load_config(config_path)

    def _setup_logging(self):
        """设置日志"""
        log_config = self.config.get('logging', {})
        level = getattr(logging, str(log_config.get('level', 'INFO')).upper(), logging.INFO)

        logging.basicConfig(
            level=level,
            format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
            handlers=[
                logging.StreamHandler(),
                logging.FileHandler(
                    log_config.get('file', 'iris_io.log'),
                    encoding='utf-8'
                )
            ]
        )

    def enable_monitoring(self,
                          progress_callback: Optional[Callable] = None,
                          error_callback: Optional[Callable] = None,
                          completion_callback: Optional[Callable] = None):
        """
        启用监控回调

        Args:
            progress_callback: 进度回调函数
            error_callback: 错误回调函数
            completion_callback: 完成回调函数
        """
        self.progress_callback = progress_callback
        self.error_callback = error_callback
        self.completion_callback = completion_callback

    # ---------- 连接 ----------

    def connect(self, connection_id: str, connection: Optional[Dict] = None) -> bool:
        """
        建立连接

        Args:
            connection_id: 逻辑连接ID
            connection: 连接参数字典，未提供时从配置文件的 connections 段读取

        Returns:
            新建立连接返回 True，该ID已连接时返回 False
        """
        if connection is None:
            config = get_connection_config(self.config, connection_id)
        else:
            config = ConnectionConfig.from_dict(connection)

        try:
            return self.connection_manager.connect(connection_id, config)
        except TransferError as e:
            self._report_error(f"连接 {connection_id} 失败: {str(e)}")
            raise

    def disconnect(self, connection_id: str):
        self.connection_manager.disconnect(connection_id)

    def test_connection(self, connection_id: str) -> bool:
        return self.connection_manager.test(connection_id)

    def list_tables(self, connection_id: str, schema: Optional[str] = None) -> List[str]:
        """列出模式下的所有表"""
        table_manager = TableManager(self.connection_manager.get_client(connection_id))
        return table_manager.get_tables(schema or self._default_schema())

    # ---------- 导入导出 ----------

    def analyze_file(self, file_path: str, file_format=None, delimiter: str = ",") -> List[ColumnAnalysis]:
        """
        分析源文件并推断列类型，不访问数据库

        Args:
            file_path: 文件路径
            file_format: 文件格式，未指定时按扩展名判断
            delimiter: CSV / TXT 分隔符

        Returns:
            列分析结果列表
        """
        self._update_progress(f"正在分析文件: {file_path}")
        return self.inference_engine.analyze_file(file_path, file_format, delimiter)

    def import_file(self, connection_id: str, file_path: str, table: str,
                    schema: Optional[str] = None,
                    cancel_token: Optional[CancellationToken] = None,
                    **job_options) -> ImportResult:
        """
        导入文件到数据库表

        Args:
            connection_id: 逻辑连接ID
            file_path: 源文件路径
            table: 目标表名
            schema: 目标模式名，默认取配置中的 default_schema
            cancel_token: 取消标记
            **job_options: ImportJob 的其他字段，例如 mode / conflict_policy / index_specs

        Returns:
            导入结果
        """
        import_config = self.config['import']
        job_options.setdefault('row_error_policy', import_config.get('row_error_policy', 'skip'))
        job = ImportJob(
            file_path=file_path,
            target_table=table,
            target_schema=schema or self._default_schema(),
            **job_options
        )

        pipeline = ImportPipeline(
            self.connection_manager.get_client(connection_id),
            inference_engine=self.inference_engine,
            progress_callback=self._progress_callback_wrapper,
            batch_ratio=import_config.get('batch_ratio', 0.3)
        )

        try:
            result = pipeline.run(job, cancel_token)
        except TransferError as e:
            self._report_error(f"导入失败: {str(e)}")
            raise

        if result.skipped_rows:
            self._report_error(f"导入 {job.target_schema}.{table} 时跳过了 {result.skipped_rows} 行")
        if self.completion_callback:
            self.completion_callback(result)
        return result

    def export_table(self, connection_id: str, table: str, schema: Optional[str] = None,
                     file_format=FileFormat.CSV, output_path: Optional[str] = None,
                     delimiter: Optional[str] = None, limit: Optional[int] = None) -> ExportResult:
        """
        导出表数据到文件

        Args:
            connection_id: 逻辑连接ID
            table: 表名
            schema: 模式名，默认取配置中的 default_schema
            file_format: 输出格式
            output_path: 输出文件路径
            delimiter: 分隔符，默认取配置中的 default_delimiter
            limit: 最多导出的行数，默认取配置中的 default_limit

        Returns:
            导出结果
        """
        export_config = self.config.get('export', {})
        pipeline = ExportPipeline(self.connection_manager.get_client(connection_id), self.inference_engine)

        self._update_progress(f"正在导出表: {table}")
        try:
            result = pipeline.export_table(
                table,
                schema or self._default_schema(),
                file_format,
                output_path,
                delimiter or export_config.get('default_delimiter') or ",",
                limit if limit is not None else export_config.get('default_limit')
            )
        except TransferError as e:
            self._report_error(f"导出失败: {str(e)}")
            raise

        if self.completion_callback:
            self.completion_callback(result)
        return result

    def _default_schema(self) -> str:
        return self.config['import'].get('default_schema') or DEFAULT_SCHEMA

    def _update_progress(self, message: str):
        """更新进度"""
        self.logger.info(message)
        if self.progress_callback:
            self.progress_callback(message)

    def _progress_callback_wrapper(self, progress_data: Dict):
        """进度回调包装器"""
        if self.progress_callback:
            self.progress_callback(progress_data)

    def _report_error(self, message: str):
        self.logger.error(message)
        if self.error_callback:
            self.error_callback(message)

    def cleanup(self):
        """清理资源"""
        self.connection_manager.disconnect_all()
        self.logger.info("控制器清理完成")
