"""
ServiceDescriptor — a rendered systemd unit for the application.

The search path is always written explicitly into the unit
(``Environment=PATH=...``). It is resolved at provisioning time from
the locations of the binaries the application needs; the interactive
shell's PATH is never inherited.
"""

from __future__ import annotations

from pydantic import BaseModel, Field


class ServiceDescriptor(BaseModel):
    """Everything needed to render a unit file."""

    name: str  # unit file name, e.g. start-snaily-cadv4.service
    description: str = ""
    user: str = "root"
    group: str | None = None
    working_directory: str
    exec_start: list[str]
    environment_file: str | None = None
    search_path: list[str] = Field(default_factory=list)
    restart: str = "always"
    restart_sec: int = 10
    syslog_identifier: str | None = None
    hardening: bool = True

    @property
    def path_value(self) -> str:
        return ":".join(self.search_path)

    def render(self) -> str:
        """Render the unit file text."""
        lines = [
            "[Unit]",
            f"Description={self.description or self.name}",
            "After=network-online.target",
            "Wants=network-online.target",
            "",
            "[Service]",
            "Type=simple",
            f"User={self.user}",
            f"Group={self.group or self.user}",
            f"WorkingDirectory={self.working_directory}",
            f"Environment=PATH={self.path_value}",
        ]
        if self.environment_file:
            lines.append(f"EnvironmentFile={self.environment_file}")
        lines += [
            f"ExecStart={' '.join(self.exec_start)}",
            f"Restart={self.restart}",
            f"RestartSec={self.restart_sec}",
            "StandardOutput=journal",
            "StandardError=journal",
        ]
        if self.syslog_identifier:
            lines.append(f"SyslogIdentifier={self.syslog_identifier}")
        if self.hardening:
            lines += [
                "",
                "NoNewPrivileges=true",
                "PrivateTmp=true",
                "LimitNOFILE=65536",
                "LimitNPROC=4096",
            ]
        lines += [
            "",
            "[Install]",
            "WantedBy=multi-user.target",
            "",
        ]
        return "\n".join(lines)
