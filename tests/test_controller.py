#!/usr/bin/env python3
"""
主控制器测试
"""

import os
import sys
import shutil
import tempfile
import unittest
from unittest.mock import MagicMock, patch

# 添加项目根目录到路径
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from iris_io.exceptions import BackendConnectionError, ConfigurationError, TableExistsError
from iris_io.importer import ImportState
from main_controller import IrisTransferController
from tests.fakes import FakeSQLClient

CONFIG_TEMPLATE = """
connections:
  demo:
    host: iris.test
    port: 1972
    namespace: USER
    user: loader
    password: pw
import:
  batch_ratio: 0.5
  default_schema: Demo
export:
  default_delimiter: ";"
logging:
  level: DEBUG
  file: {log_file}
"""


class TestIrisTransferController(unittest.TestCase):
    """控制器整合测试，连接管理器替换为 MagicMock，客户端为内存实现"""

    def setUp(self):
        self.temp_dir = tempfile.mkdtemp()
        config_path = os.path.join(self.temp_dir, "config.yaml")
        with open(config_path, 'w', encoding='utf-8') as f:
            f.write(CONFIG_TEMPLATE.format(log_file=os.path.join(self.temp_dir, "test.log")))

        with patch('logging.basicConfig'):
            self.controller = IrisTransferController(config_path)

        self.client = FakeSQLClient(failing_values=["bad"])
        self.controller.connection_manager = MagicMock()
        self.controller.connection_manager.get_client.return_value = self.client

        self.progress = []
        self.errors = []
        self.completed = []
        self.controller.enable_monitoring(self.progress.append, self.errors.append, self.completed.append)

        self.csv_path = os.path.join(self.temp_dir, "people.csv")
        with open(self.csv_path, 'w', encoding='utf-8') as f:
            f.write("id,name,age\n1,Ann,30\n2,Ben,41\n3,Cid,27\n")

    def tearDown(self):
        shutil.rmtree(self.temp_dir)

    def test_config_is_loaded(self):
        self.assertEqual(self.controller.config['import']['batch_ratio'], 0.5)
        self.assertEqual(self.controller.config['import']['sample_rows'], 100)
        self.assertEqual(self.controller.config['logging']['level'], 'DEBUG')

    def test_import_config_override(self):
        with patch('logging.basicConfig'):
            controller = IrisTransferController(os.path.join(self.temp_dir, "absent.yaml"),
                                                import_config={'sample_rows': 5})
        self.assertEqual(controller.inference_engine.sample_size, 5)
        self.assertIn('local', controller.config['connections'])

    def test_connect_from_config(self):
        self.controller.connection_manager.connect.return_value = True
        self.assertTrue(self.controller.connect("demo"))

        connection_id, config = self.controller.connection_manager.connect.call_args[0]
        self.assertEqual(connection_id, "demo")
        self.assertEqual(config.host, "iris.test")
        self.assertEqual(config.odbc_port, 1972)

        with self.assertRaises(ConfigurationError):
            self.controller.connect("unknown")

    def test_connect_with_explicit_parameters(self):
        self.controller.connect("adhoc", {'host': 'h', 'port': 51773, 'namespace': 'N', 'user': 'u',
                                          'backend_kind': 'native'})
        config = self.controller.connection_manager.connect.call_args[0][1]
        self.assertEqual(config.backend_kind, 'native')
        self.assertEqual(config.native_port, 51773)

    def test_connect_failure_is_reported(self):
        self.controller.connection_manager.connect.side_effect = BackendConnectionError("refused", backend="odbc")
        with self.assertRaises(BackendConnectionError):
            self.controller.connect("demo")
        self.assertEqual(len(self.errors), 1)
        self.assertIn("demo", self.errors[0])

    def test_analyze_file(self):
        analyses = self.controller.analyze_file(self.csv_path)
        self.assertEqual([(a.name, a.inferred_type) for a in analyses],
                         [("id", "INTEGER"), ("name", "VARCHAR(255)"), ("age", "INTEGER")])
        self.assertIn(f"正在分析文件: {self.csv_path}", self.progress)
        self.assertEqual(self.client.statements, [])

    def test_import_uses_configured_defaults(self):
        result = self.controller.import_file("demo", self.csv_path, "People")

        self.assertEqual(result.state, ImportState.COMPLETE)
        self.assertEqual(result.schema, "Demo")
        self.assertEqual(result.inserted_rows, 3)
        # 3 行按 0.5 比例分批，向下取整
        self.assertEqual(result.batch_size, 1)
        self.assertEqual(result.batch_count, 3)
        self.assertEqual(self.completed, [result])
        self.assertTrue(any(isinstance(item, dict) for item in self.progress))
        self.assertEqual(self.errors, [])
        self.controller.connection_manager.get_client.assert_called_with("demo")
        self.assertEqual(self.controller.list_tables("demo"), ["People"])

    def test_import_reports_skipped_rows(self):
        with open(self.csv_path, 'a', encoding='utf-8') as f:
            f.write("4,bad,50\n")
        result = self.controller.import_file("demo", self.csv_path, "People")
        self.assertEqual(result.inserted_rows, 3)
        self.assertEqual(result.skipped_rows, 1)
        self.assertTrue(any("跳过了 1 行" in message for message in self.errors))

    def test_import_failure_is_reported(self):
        self.controller.import_file("demo", self.csv_path, "People")
        with self.assertRaises(TableExistsError):
            self.controller.import_file("demo", self.csv_path, "People")
        self.assertTrue(self.errors[-1].startswith("导入失败"))
        self.assertEqual(len(self.completed), 1)

    def test_load_existing_replace(self):
        self.controller.import_file("demo", self.csv_path, "People")
        result = self.controller.import_file("demo", self.csv_path, "People",
                                             mode="loadExisting", conflict_policy="replace")
        self.assertEqual(result.inserted_rows, 3)
        self.assertEqual(len(self.client.tables[("Demo", "People")].rows), 3)

    def test_export_uses_configured_delimiter(self):
        self.controller.import_file("demo", self.csv_path, "People")
        output_path = os.path.join(self.temp_dir, "people_out.txt")

        result = self.controller.export_table("demo", "People", file_format="txt", output_path=output_path)

        with open(output_path, 'r', encoding='utf-8') as f:
            self.assertEqual(f.read(), "id;name;age\n1;Ann;30\n2;Ben;41\n3;Cid;27")
        self.assertEqual(result.schema, "Demo")
        self.assertEqual(result.row_count, 3)
        self.assertIs(self.completed[-1], result)
        self.assertIn("正在导出表: People", self.progress)

    def test_export_limit(self):
        self.controller.import_file("demo", self.csv_path, "People")
        output_path = os.path.join(self.temp_dir, "people.json")
        result = self.controller.export_table("demo", "People", file_format="json",
                                              output_path=output_path, limit=2)
        self.assertEqual(result.row_count, 2)

    def test_cleanup(self):
        self.controller.cleanup()
        self.controller.connection_manager.disconnect_all.assert_called_once()


if __name__ == '__main__':
    unittest.main()
