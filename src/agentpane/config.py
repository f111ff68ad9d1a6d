"""agentpane 配置

配置分为以下几类：
- 显示槽配置：分屏方向、宽度比例
- Provider 配置：后端选择、退出自动关闭
- 清理配置：进程清理策略、宽限时间
- Mention 队列配置：防抖、连接超时、过期
- Host 配置：tmux socket、轮询间隔
- Timer / 持久化 / Web / 日志配置

带 AGENTPANE_ 前缀的环境变量可以覆盖部分默认值。
"""

import os
from pathlib import Path

# === 显示槽配置 ===
SPLIT_SIDE = os.environ.get("AGENTPANE_SPLIT_SIDE", "right")  # "left" | "right"
SPLIT_WIDTH_PERCENTAGE = 0.30  # 分屏宽度占 tab 总宽度的比例 (0, 1)
VIEW_ENTER_SETTLE_SECONDS = 0.05  # 焦点切换后等待布局稳定再通知 resize
TAB_ENTER_SETTLE_SECONDS = 0.1  # tab 切换后等待布局稳定再恢复宽度

# === Provider 配置 ===
PROVIDER = os.environ.get("AGENTPANE_PROVIDER", "auto")  # auto/native/external/widget/none
AUTO_CLOSE = True  # 进程退出后自动关闭显示槽（或切换到下一个会话）
TERMINAL_CMD = os.environ.get("AGENTPANE_TERMINAL_CMD", "claude")  # 助手 CLI 命令
EXTERNAL_TERMINAL_CMD = os.environ.get("AGENTPANE_EXTERNAL_TERMINAL_CMD") or None
GIT_REPO_CWD = False  # 是否在 git 仓库根目录启动

# === 进程清理配置 ===
CLEANUP_STRATEGY = os.environ.get("AGENTPANE_CLEANUP_STRATEGY", "pkill_children")
CLEANUP_STRATEGIES = ("pkill_children", "aggressive", "jobstop_only", "none")
CLEANUP_GRACE_SECONDS = 0.1  # TERM 与 KILL 之间的宽限时间
PID_TRACK_ATTEMPTS = 5  # widget 后端 PID 解析重试次数
PID_TRACK_RETRY_SECONDS = 0.05  # 每次重试间隔

# === Mention 队列配置 ===
MENTION_DEBOUNCE_SECONDS = 0.05  # 已连接时的防抖时间
MENTION_CONNECTION_TIMEOUT_SECONDS = 10.0  # 等待连接的最长时间，超时丢弃整个队列
MENTION_EXPIRY_SECONDS = 5.0  # flush 时超过此时间的条目被跳过
MENTION_CONNECTION_SETTLE_SECONDS = 0.2  # 连接建立后等待稳定再 flush
MENTION_INTER_ITEM_DELAY = 0.025  # 逐条发送间隔，避免压垮 transport
MENTION_RETRY_MIN_SECONDS = 0.05  # 握手未完成时的最小重试间隔
MENTION_METHOD = "at_mentioned"  # 广播方法名
MENTION_URL = os.environ.get("AGENTPANE_MENTION_URL") or None  # HTTP transport 目标
MENTION_HTTP_TIMEOUT = 2.0

# === 智能 ESC 配置 ===
ESC_TIMEOUT_SECONDS = 0.2  # 双击 ESC 判定窗口，0 或 None 关闭

# === Host 配置 ===
HOST_TYPE = os.environ.get("AGENTPANE_HOST", "auto")  # auto/tmux
TMUX_SOCKET_PATH = os.environ.get("AGENTPANE_TMUX_SOCKET") or None
HOST_POLL_INTERVAL = 0.5  # tmux 状态轮询间隔（秒）
STASH_SESSION_NAME = "_agentpane"  # 隐藏 surface 存放的 tmux session
SURFACE_OPTION = "@agentpane_surface"  # 标记由本系统管理的 pane
SCRATCH_OPTION = "@agentpane_scratch"  # 标记分屏时产生的占位 pane
PLACEHOLDER_CMD = ["tail", "-f", "/dev/null"]  # 占位 pane 运行的命令

# === Timer 配置 ===
TIMER_TICK_INTERVAL = 0.1  # 周期任务 tick 间隔（秒）

# === 持久化配置 ===
PERSIST_DIR = Path(os.environ.get("AGENTPANE_STATE_DIR", str(Path.home() / ".agentpane")))
PERSIST_FILE = PERSIST_DIR / "jobs.json"
PERSIST_VERSION = 1

# === Web 配置 ===
WEB_HOST = "127.0.0.1"
WEB_PORT = int(os.environ.get("AGENTPANE_PORT", "8766"))
IDE_PORT = int(os.environ["AGENTPANE_IDE_PORT"]) if os.environ.get("AGENTPANE_IDE_PORT") else None

# === 日志配置 ===
LOG_LEVEL = os.environ.get("AGENTPANE_LOG_LEVEL", "INFO")

# === 指标配置 ===
METRICS_ENABLED = True
