"""异常类型

所有异常都在子系统边界被捕获并降级为日志 + 安全回退，
不会向宿主进程传播。
"""


class AgentPaneError(Exception):
    """基类"""


class ConfigError(AgentPaneError):
    """配置值非法（调用方记录警告并保留默认值）"""

    def __init__(self, key: str, value: object, reason: str):
        self.key = key
        self.value = value
        super().__init__(f"invalid value for {key!r}: {value!r} ({reason})")


class ProviderValidationError(AgentPaneError):
    """自定义 provider 缺少必需操作"""

    def __init__(self, missing: list[str]):
        self.missing = missing
        super().__init__(f"custom provider is missing required operations: {', '.join(missing)}")


class ProviderUnavailableError(AgentPaneError):
    """所选 provider 在当前环境不可用"""


class SpawnError(AgentPaneError):
    """进程启动失败，未保留任何部分状态"""
