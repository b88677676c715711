"""
SMTPLog 路由模块包 (SMTPLog Router Module Package)

本包包含 SMTPLog 后端 API 的所有路由模块，按功能域进行组织。

路由模块组织结构 (Router Module Organization):
- logs.py: 原始邮件日志搜索（内容关键字、服务、队列 ID、时间范围、分页）
- emails.py: 投递记录搜索与详情（发件人、收件人、状态、全文关键字）
- stats.py: 总量统计与投递趋势图表数据
- log_import.py: 手动触发导入、导入状态查询、WebSocket 导入进度流
"""
