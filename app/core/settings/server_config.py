"""HTTP/websocket server configuration."""

from pydantic import BaseModel


class ServerConfig(BaseModel, frozen=True):
    """Server bind address."""

    host: str
    port: int

    @property
    def base_url(self) -> str:
        """Local base URL for tooling that talks to this server."""
        host = "127.0.0.1" if self.host in ("0.0.0.0", "::") else self.host
        return f"http://{host}:{self.port}"
