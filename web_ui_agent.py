"""
Dyna Agent Web 服务

    python web_ui_agent.py

REST：
    POST /api/tasks               提交任务
    GET  /api/tasks[/{id}]        查询任务
    POST /api/tasks/{id}/stop     停止任务
WebSocket：
    /ws/tasks/{id}                单个任务的事件流
    /ws                           startAutonomousTask / stopTask 聊天协议
"""

import logging

import uvicorn

from dyna_agent import AgentConfig
from dyna_agent.server import create_app

# 加载 .env 文件中的环境变量
config = AgentConfig.from_env()

logging.basicConfig(
    level=config.log_level,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)

app = create_app(config=config)


if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=config.port, log_level=config.log_level.lower())
