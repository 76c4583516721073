"""Application configuration"""
from pydantic import model_validator
from pydantic_settings import BaseSettings
from typing import Tuple


class Settings(BaseSettings):
    gateway: str = "10.2.0.1"
    lease_time: int = 60
    renewal_interval: int = 45

    firewall_zone: str = "public"
    firewall_cmd_binary: str = "firewall-cmd"
    firewall_use_sudo: bool = True
    safe_port_min: int = 40000
    safe_port_max: int = 65535

    poll_interval: int = 5
    retry_interval: int = 5
    max_consecutive_failures: int = 3
    failure_cooldown: int = 30

    natpmpc_binary: str = "natpmpc"
    command_timeout: int = 10

    activity_log_path: str = "/tmp/proton-portforward.log"
    log_level: str = "INFO"
    status_display: bool = True

    api_host: str = "127.0.0.1"
    api_port: int = 8899

    class Config:
        env_file = ".env"
        env_prefix = "PORTKEEPER_"
        case_sensitive = False

    @model_validator(mode="after")
    def check_timing(self) -> "Settings":
        intervals = {
            "lease_time": self.lease_time,
            "renewal_interval": self.renewal_interval,
            "poll_interval": self.poll_interval,
            "retry_interval": self.retry_interval,
            "failure_cooldown": self.failure_cooldown,
            "command_timeout": self.command_timeout,
        }
        for name, value in intervals.items():
            if value <= 0:
                raise ValueError(f"{name} must be positive, got {value}")

        if self.renewal_interval >= self.lease_time:
            raise ValueError(
                f"renewal_interval ({self.renewal_interval}s) must be shorter than "
                f"lease_time ({self.lease_time}s)"
            )
        # A failed renewal still needs one retry before the lease runs out
        if self.renewal_interval + self.retry_interval > self.lease_time:
            raise ValueError(
                f"renewal_interval + retry_interval ({self.renewal_interval + self.retry_interval}s) "
                f"exceeds lease_time ({self.lease_time}s)"
            )

        if self.max_consecutive_failures < 1:
            raise ValueError("max_consecutive_failures must be at least 1")

        if not 0 < self.safe_port_min <= self.safe_port_max <= 65535:
            raise ValueError(
                f"Invalid safe port range [{self.safe_port_min}, {self.safe_port_max}]"
            )
        return self

    @property
    def safe_port_range(self) -> Tuple[int, int]:
        return (self.safe_port_min, self.safe_port_max)


settings = Settings()
