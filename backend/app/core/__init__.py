"""
核心模块包 (Core Module Package)

SMTPLog 的核心基础组件，包含配置管理、数据库连接和全局异常处理。

Core foundational components for SMTPLog, including configuration management,
database connections, and global exception handling.
"""
