"""Mention transport - 通过 HTTP 把通知转发给远端

远端（agent 的 IDE 集成端点）接收 {"method": ..., "params": ...} JSON。
连接状态由外部通过 /api/connection 上报，保存在 ConnectionFlag 中。
"""

import httpx

from .. import config
from ..telemetry import get_logger

logger = get_logger(__name__)


class ConnectionFlag:
    """可写的连接状态（握手完成时置位）"""

    def __init__(self, connected: bool = False):
        self._connected = connected

    def is_connected(self) -> bool:
        return self._connected

    def set(self, connected: bool) -> None:
        self._connected = connected


class HttpMentionTransport:
    """HTTP POST 发送通知

    Args:
        url: 远端端点，None 时 send 总是返回 False
        timeout: 请求超时（秒）
    """

    def __init__(self, url: str | None = config.MENTION_URL, timeout: float = config.MENTION_HTTP_TIMEOUT):
        self.url = url
        self._timeout = timeout
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """获取或创建 HTTP 客户端"""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=self._timeout)
        return self._client

    async def send(self, method: str, params: dict) -> bool:
        if not self.url:
            logger.warning("[Mentions] No mention endpoint configured")
            return False

        client = await self._get_client()
        try:
            response = await client.post(self.url, json={"method": method, "params": params})
            response.raise_for_status()
        except httpx.TimeoutException:
            logger.warning(f"[Mentions] Timeout sending {method} to {self.url}")
            return False
        except httpx.HTTPStatusError as e:
            logger.error(f"[Mentions] HTTP error from {self.url}: {e.response.status_code}")
            return False
        except httpx.HTTPError as e:
            logger.error(f"[Mentions] Request to {self.url} failed: {e}")
            return False
        return True

    async def close(self) -> None:
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
        self._client = None
