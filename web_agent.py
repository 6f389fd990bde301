"""
Dyna Agent - 命令行运行单个自治浏览任务

架构说明（Observe → Decide → Act → Evaluate）：
  1. 观察 (Page Observer)     - 截图 + 可交互元素 + 表单 + 页面文本
  2. 决策 (Decision Engine)   - 大模型根据任务、观察和最近历史选择下一步动作
  3. 执行 (Action Executor)   - navigate / click / type / search / scroll / wait / extract_data
  4. 评估 (Evaluator)         - 重新观察页面，给出进度、是否完成、是否重试

浏览器运行在 Browserbase 远程会话中，本地通过 Playwright CDP 连接。

依赖安装：
    pip install -e .

运行示例：
    python web_agent.py "Search for flights from NYC to London"
    python web_agent.py "Play some relaxing music on YouTube" --max-steps 10
"""

import argparse
import asyncio
import json
import logging
import sys

from dyna_agent import AgentConfig, AgentError, TaskManager
from dyna_agent.events import ACTIVITY, STEP_PROGRESS, TaskEvent


def print_event(event: TaskEvent) -> None:
    data = event.payload
    if event.type == STEP_PROGRESS:
        status = "✓" if data.get("success") else ("…" if data.get("success") is None else "❌")
        progress = data.get("progress")
        print(f"\n{'─' * 40}")
        print(f"[Step {data['step']}] {status} {data['action']} {json.dumps(data['parameters'], ensure_ascii=False)}")
        print(f"[思考] {data['reasoning']}")
        if data.get("message"):
            print(f"[执行] {data['message']}")
        if progress is not None:
            print(f"[评估] 进度 {progress}%")
        if data.get("low_confidence"):
            print(f"[警告] 决策置信度偏低：{data['decision_confidence']:.2f}")
    elif event.type == ACTIVITY:
        print(f"[Agent] {data.get('message')}")
        if data.get("replay_url"):
            print(f"[Agent] 会话回放：{data['replay_url']}")


async def run(config: AgentConfig, description: str, max_steps: int, confidence_threshold: float) -> int:
    manager = TaskManager.from_config(config)

    print(f"\n{'=' * 60}")
    print(f"[Agent] 任务：{description}")
    print(f"{'=' * 60}\n")

    options = {"max_steps": max_steps, "confidence_threshold": confidence_threshold}
    handle = await manager.start_task(description, options)
    queue = manager.events.subscribe(handle.task_id)

    async def pump() -> None:
        while True:
            print_event(await queue.get())

    printer = asyncio.create_task(pump())
    try:
        await manager.wait(handle.task_id)
    finally:
        # 把已排队的事件打印完
        while not queue.empty():
            print_event(queue.get_nowait())
        printer.cancel()

    if handle.error is not None:
        print(f"\n[Agent] ❌ 任务失败：{handle.error}")
        return 1

    result = handle.result
    print(f"\n{'=' * 60}")
    print(f"[Agent] {'✅ 任务完成' if result.success else '⚠ 部分完成'}（{result.state.value}）")
    print(f"[Agent] 步数：{result.steps_completed}，耗时：{result.duration_ms / 1000:.1f}s，置信度：{result.confidence:.2f}")
    print(f"[Agent] 最终页面：{result.final_title} {result.final_url}")
    print(f"{'=' * 60}")
    return 0 if result.success else 2


def main() -> None:
    parser = argparse.ArgumentParser(description="Dyna AI browser automation agent")
    parser.add_argument("task", help="自然语言任务描述")
    parser.add_argument("--max-steps", type=int, default=None, help="最大步数（默认读取 MAX_STEPS）")
    parser.add_argument("--confidence-threshold", type=float, default=None, help="决策置信度阈值")
    args = parser.parse_args()

    try:
        config = AgentConfig.from_env()
        logging.basicConfig(
            level=config.log_level,
            format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        )
        code = asyncio.run(run(
            config,
            args.task,
            args.max_steps if args.max_steps is not None else config.max_steps,
            args.confidence_threshold if args.confidence_threshold is not None else config.confidence_threshold,
        ))
    except AgentError as e:
        print(f"[错误] {e}")
        code = 1
    sys.exit(code)


if __name__ == "__main__":
    main()
