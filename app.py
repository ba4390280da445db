#!/usr/bin/env python3
"""
IRIS数据传输工具 - 命令行启动脚本

提供环境检查、连接测试、文件分析、导入和导出入口
"""

import os
import sys
import argparse
from pathlib import Path

# 添加项目根目录到路径
project_root = Path(__file__).parent
sys.path.insert(0, str(project_root))


def check_environment(config_path: str):
    """检查环境配置"""
    print("\n" + "="*60)
    print("🔍 环境检查")
    print("="*60)

    # 检查Python版本
    python_version = sys.version_info
    print(f"Python版本: {python_version.major}.{python_version.minor}.{python_version.micro}")

    if python_version < (3, 8):
        print("⚠️  建议使用Python 3.8+")
    else:
        print("✅ Python版本符合要求")

    # 检查配置文件
    if os.path.exists(config_path):
        print("✅ 配置文件存在")
    else:
        print(f"❌ 配置文件不存在: {config_path}")
        print("请参考 config.yaml.example 创建配置文件")

    # 检查依赖库，iris 为原生SDK，pyodbc 为ODBC后端
    required_packages = ['yaml', 'chardet', 'openpyxl', 'pyodbc', 'iris']

    missing_packages = []
    for package in required_packages:
        try:
            __import__(package)
            print(f"✅ {package}")
        except ImportError:
            print(f"❌ {package} (未安装)")
            missing_packages.append(package)

    if missing_packages:
        print(f"\n⚠️  请安装缺失的依赖:")
        print(f"pip install -e .")
    else:
        print(f"\n✅ 所有依赖库已安装")

    print("="*60)


def build_controller(args):
    from main_controller import IrisTransferController

    controller = IrisTransferController(args.config)

    def progress_callback(progress):
        if isinstance(progress, dict) and 'progress_percent' in progress:
            print(f"[进度] {progress['completed_batches']}/{progress['total_batches']} 批, "
                  f"{progress['inserted_rows']} 行 ({progress['progress_percent']:.1f}%)")
        elif isinstance(progress, dict):
            print(f"[阶段] {progress.get('stage')} {progress.get('table', '')}")
        else:
            print(f"[进度] {progress}")

    def error_callback(message):
        print(f"⚠️  {message}")

    controller.enable_monitoring(progress_callback, error_callback)
    return controller


def run_connection_test(args):
    """测试连接"""
    controller = build_controller(args)
    try:
        controller.connect(args.connection)
        if controller.test_connection(args.connection):
            print(f"✅ 连接 {args.connection} 可用")
        else:
            print(f"❌ 连接 {args.connection} 测试失败")
    finally:
        controller.cleanup()


def run_analyze(args):
    """分析文件，只推断列类型"""
    controller = build_controller(args)
    columns = controller.analyze_file(args.file, args.format, args.delimiter or ",")

    print("\n" + "="*60)
    print(f"📄 {args.file}: {len(columns)} 列")
    print("="*60)
    for column in columns:
        print(f"  {column.original_name} -> {column.name} {column.inferred_type}  (样本: {column.sample_value})")
    print("="*60)


def run_import(args):
    """导入文件"""
    controller = build_controller(args)
    try:
        controller.connect(args.connection)
        result = controller.import_file(
            args.connection,
            args.file,
            args.table,
            args.schema,
            file_format=args.format,
            mode=args.import_mode,
            conflict_policy=args.conflict_policy,
            delimiter=args.delimiter or ","
        )
        print("\n" + "="*60)
        print(f"✅ 导入完成: {result.schema}.{result.table_name}")
        print(f"   总行数: {result.total_rows}, 成功: {result.inserted_rows}, 跳过: {result.skipped_rows}")
        print(f"   耗时: {result.execution_time:.2f}秒")
        if result.ddl_statement:
            print("-" * 50)
            print(result.ddl_statement)
        print("="*60)
    finally:
        controller.cleanup()


def run_export(args):
    """导出表数据"""
    controller = build_controller(args)
    try:
        controller.connect(args.connection)
        result = controller.export_table(
            args.connection,
            args.table,
            args.schema,
            args.format or "csv",
            args.output,
            args.delimiter,
            args.limit
        )
        print(f"✅ 导出完成: {result.output_path} ({result.row_count} 行, {result.execution_time:.2f}秒)")
        for name, column_type in result.column_types.items():
            print(f"   {name}: {column_type}")
    finally:
        controller.cleanup()


def main():
    """主函数"""
    parser = argparse.ArgumentParser(description="IRIS数据传输工具")
    parser.add_argument("--mode", choices=["check", "test", "analyze", "import", "export"],
                        default="check", help="启动模式")
    parser.add_argument("--config", default="config.yaml", help="配置文件路径")
    parser.add_argument("--connection", default="local", help="配置文件中的连接ID")
    parser.add_argument("--file", help="源文件路径")
    parser.add_argument("--table", help="表名")
    parser.add_argument("--schema", help="模式名")
    parser.add_argument("--format", choices=["csv", "txt", "json", "xlsx"], help="文件格式")
    parser.add_argument("--delimiter", help="CSV / TXT 分隔符，导出时默认取配置")
    parser.add_argument("--output", help="导出文件路径")
    parser.add_argument("--limit", type=int, help="最多导出的行数")
    parser.add_argument("--import-mode", choices=["createNew", "loadExisting"], default="createNew",
                        help="导入模式")
    parser.add_argument("--conflict-policy", choices=["append", "replace"], default="append",
                        help="导入已有表时的冲突策略")

    args = parser.parse_args()

    print("🎯 IRIS数据传输工具")
    print("版本: 1.0.0")

    if args.mode == "check":
        check_environment(args.config)
        return

    if args.mode in ("analyze", "import") and not args.file:
        parser.error("该模式需要 --file 参数")
    if args.mode in ("import", "export") and not args.table:
        parser.error("该模式需要 --table 参数")

    try:
        if args.mode == "test":
            run_connection_test(args)
        elif args.mode == "analyze":
            run_analyze(args)
        elif args.mode == "import":
            run_import(args)
        elif args.mode == "export":
            run_export(args)
    except KeyboardInterrupt:
        print("\n✋ 已中断")
    except ImportError as e:
        print(f"❌ 导入错误: {e}")
        print("请先安装依赖: pip install -e .")
    except Exception as e:
        print(f"❌ 执行失败: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
