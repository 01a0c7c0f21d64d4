"""
Relay configuration. Uses pydantic-settings to load environment variables.
"""

from typing import Literal

from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

load_dotenv()  # Load variables from the .env file


class Settings(BaseSettings):
    """
    Application settings. Every value comes from ENV (RELAY_ prefix) or the .env file.
    """
    HOST: str = Field(default="0.0.0.0", description="Bind address for both servers")
    MODE: Literal["tcp", "ws"] = Field(default="tcp", description="Server mode started by app.py")
    TCP_PORT: int = Field(default=4000, description="TCP server port")
    WS_PORT: int = Field(default=4001, description="WebSocket server port")
    READ_BUFFER_SIZE: int = Field(default=4096, gt=0, description="Bytes per TCP read, one message per read")
    ENCODING: str = Field(default="utf-8", description="Text encoding of the TCP stream")
    START_TIMEOUT: float = Field(default=5.0, gt=0, description="Seconds to wait for bind/teardown")
    SEND_TIMEOUT: float = Field(default=5.0, gt=0, description="Seconds to wait for a send")
    CLOSE_TIMEOUT: float = Field(default=2.0, gt=0, description="Seconds a client gets to close before it is aborted")
    LOG_LEVEL: str = Field(default="INFO", description="Logging level")
    TRAFFIC_LOG: str = Field(default="relay_traffic.log", description="Rotating traffic log file")

    model_config = SettingsConfigDict(
        env_prefix="RELAY_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    def port_for(self, mode: str) -> int:
        return self.WS_PORT if mode == "ws" else self.TCP_PORT


settings = Settings()
