from __future__ import annotations
import json
from datetime import datetime
from sqlalchemy import (
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    pass


class ScanSession(Base):
    __tablename__ = "scan_sessions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    company_name: Mapped[str] = mapped_column(String(255), index=True)
    main_domain: Mapped[str] = mapped_column(String(255), index=True)
    logo_path: Mapped[str] = mapped_column(String(512), default="")
    start_time: Mapped[datetime] = mapped_column(DateTime, default=datetime.now)
    end_time: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    status: Mapped[str] = mapped_column(
        String(32), default="active"
    )  # active/completed/cancelled
    notes: Mapped[str] = mapped_column(Text, default="")


class Result(Base):
    __tablename__ = "results"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    url: Mapped[str] = mapped_column(Text)
    ip_address: Mapped[str] = mapped_column(String(64), default="", index=True)
    scan_session_id: Mapped[int | None] = mapped_column(
        ForeignKey("scan_sessions.id"), nullable=True, index=True
    )
    probed_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.now)
    final_url: Mapped[str] = mapped_column(Text, default="")
    response_code: Mapped[int] = mapped_column(Integer, default=0)
    response_reason: Mapped[str] = mapped_column(String(255), default="")
    protocol: Mapped[str] = mapped_column(String(32), default="")
    title: Mapped[str] = mapped_column(Text, default="")
    screenshot: Mapped[str] = mapped_column(Text, default="")
    filename: Mapped[str] = mapped_column(String(512), default="")
    failed: Mapped[bool] = mapped_column(Boolean, default=False)
    failed_reason: Mapped[str] = mapped_column(Text, default="")

    headers: Mapped[list["Header"]] = relationship(
        back_populates="result", cascade="all, delete-orphan"
    )
    network: Mapped[list["NetworkLog"]] = relationship(
        back_populates="result", cascade="all, delete-orphan"
    )
    console: Mapped[list["ConsoleLog"]] = relationship(
        back_populates="result", cascade="all, delete-orphan"
    )


class Header(Base):
    __tablename__ = "headers"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    result_id: Mapped[int] = mapped_column(ForeignKey("results.id"), index=True)
    key: Mapped[str] = mapped_column(String(255))
    value: Mapped[str] = mapped_column(Text, default="")

    result: Mapped["Result"] = relationship(back_populates="headers")


class NetworkLog(Base):
    __tablename__ = "network_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    result_id: Mapped[int] = mapped_column(ForeignKey("results.id"), index=True)
    status_code: Mapped[int] = mapped_column(Integer, default=0)
    url: Mapped[str] = mapped_column(Text, default="")
    remote_ip: Mapped[str] = mapped_column(String(64), default="")
    mime_type: Mapped[str] = mapped_column(String(255), default="")
    error: Mapped[str] = mapped_column(Text, default="")

    result: Mapped["Result"] = relationship(back_populates="network")


class ConsoleLog(Base):
    __tablename__ = "console_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    result_id: Mapped[int] = mapped_column(ForeignKey("results.id"), index=True)
    type: Mapped[str] = mapped_column(String(32), default="")
    value: Mapped[str] = mapped_column(Text, default="")

    result: Mapped["Result"] = relationship(back_populates="console")


class IPPort(Base):
    __tablename__ = "ip_ports"
    __table_args__ = (
        UniqueConstraint("ip_address", "port", name="uq_ip_port"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    ip_address: Mapped[str] = mapped_column(String(64), index=True)
    port: Mapped[int] = mapped_column(Integer, index=True)
    protocol: Mapped[str] = mapped_column(String(16), default="tcp")
    service: Mapped[str] = mapped_column(String(128), default="")
    state: Mapped[str] = mapped_column(
        String(16), default="open"
    )  # open/closed/filtered
    banner: Mapped[str] = mapped_column(Text, default="")
    scan_session_id: Mapped[int | None] = mapped_column(
        ForeignKey("scan_sessions.id"), nullable=True, index=True
    )
    discovered_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.now)

    is_cdn: Mapped[bool] = mapped_column(Boolean, default=False)
    cdn_name: Mapped[str] = mapped_column(String(128), default="")
    cdn_detected: Mapped[bool] = mapped_column(Boolean, default=False)
    original_host: Mapped[str] = mapped_column(String(255), default="")


class IPInfo(Base):
    __tablename__ = "ip_info"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    ip_address: Mapped[str] = mapped_column(String(64), unique=True, index=True)
    organization: Mapped[str] = mapped_column(String(255), default="")
    isp: Mapped[str] = mapped_column(String(255), default="")
    asn: Mapped[str] = mapped_column(String(128), default="")
    country: Mapped[str] = mapped_column(String(128), default="")
    country_code: Mapped[str] = mapped_column(String(8), default="")
    city: Mapped[str] = mapped_column(String(128), default="")
    region: Mapped[str] = mapped_column(String(128), default="")
    postal: Mapped[str] = mapped_column(String(32), default="")
    latitude: Mapped[float] = mapped_column(Float, default=0.0)
    longitude: Mapped[float] = mapped_column(Float, default=0.0)
    os: Mapped[str] = mapped_column(String(128), default="")
    # JSON array text
    tags: Mapped[str] = mapped_column(Text, default="")
    ports: Mapped[str] = mapped_column(Text, default="")
    hostnames: Mapped[str] = mapped_column(Text, default="")
    domains: Mapped[str] = mapped_column(Text, default="")
    vulns: Mapped[str] = mapped_column(Text, default="")
    last_update: Mapped[datetime] = mapped_column(DateTime, default=datetime.now)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.now, onupdate=datetime.now
    )
    scan_session_id: Mapped[int | None] = mapped_column(
        ForeignKey("scan_sessions.id"), nullable=True, index=True
    )

    def has_org_data(self) -> bool:
        return bool(self.organization or self.isp or self.country)

    def set_list(self, field: str, values: list | None) -> None:
        setattr(self, field, json.dumps(values) if values is not None else "")

    def get_list(self, field: str) -> list:
        raw = getattr(self, field) or ""
        if not raw:
            return []
        value = json.loads(raw)
        return value if isinstance(value, list) else []
