"""
数据模型包 (Data Models Package)

集中导出所有 SQLAlchemy ORM 模型：原始邮件日志和聚合后的投递记录。

Centrally exports all SQLAlchemy ORM models: raw mail log lines and correlated delivery records.
"""
from app.models.mail_log import MailLog
from app.models.email_record import EmailRecord

# 导出所有模型类供外部模块使用 (Export all model classes for external modules)
__all__ = ["MailLog", "EmailRecord"]
