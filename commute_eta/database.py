# commute_eta/database.py
from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    create_engine,
)
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, relationship, sessionmaker

Base = declarative_base()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def create_db_engine(database_url: str) -> Engine:
    connect_args = {}
    # 저장 작업은 asyncio.to_thread 워커 스레드에서 실행되므로 SQLite 스레드 검사를 끈다
    if database_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    return create_engine(database_url, connect_args=connect_args)


def create_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


class SavedRouteRow(Base):
    __tablename__ = "saved_routes"

    id = Column(String, primary_key=True, index=True)
    user_id = Column(String, index=True, nullable=False)
    alias = Column(String, nullable=False)
    is_default = Column(Boolean, nullable=False, default=False)
    total_time = Column(Integer, nullable=False)                # 분
    route_type = Column(String, nullable=False, default="other")  # commute / return / other
    route_source = Column(String, nullable=True)                # in_local / inter_local
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    legs = relationship(
        "RouteLegRow",
        back_populates="route",
        order_by="RouteLegRow.order",
        cascade="all, delete-orphan",
    )


class RouteLegRow(Base):
    __tablename__ = "route_legs"

    id = Column(String, primary_key=True, index=True)
    saved_route_id = Column(String, ForeignKey("saved_routes.id"), index=True, nullable=False)
    order = Column(Integer, nullable=False)
    type = Column(String, nullable=False)                       # bus / subway / walk / train
    line_names = Column(JSON, nullable=False, default=list)
    start_station = Column(String, nullable=True)
    end_station = Column(String, nullable=True)
    start_station_id = Column(String, nullable=True)            # arsId 또는 mobileNo
    section_time = Column(Integer, nullable=False, default=0)
    leg_sub_type = Column(String, nullable=True)                # intercity_bus / express_bus
    gyeonggi_station_id = Column(String, nullable=True)

    route = relationship("SavedRouteRow", back_populates="legs")


class BusTerminalRow(Base):
    __tablename__ = "bus_terminals"

    terminal_id = Column(String, primary_key=True, index=True)
    terminal_nm = Column(String, index=True, nullable=False)
    city_code = Column(String, index=True, nullable=False)
    city_name = Column(String, nullable=False)


class ETARecordRow(Base):
    __tablename__ = "eta_records"

    id = Column(Integer, primary_key=True, autoincrement=True)
    route_id = Column(String, ForeignKey("saved_routes.id"), index=True, nullable=False)
    total_eta = Column(Integer, nullable=False)                 # 분 (대기 + 이동)
    wait_time = Column(Integer, nullable=False)                 # 초
    travel_time = Column(Integer, nullable=False)               # 분
    is_estimate = Column(Boolean, nullable=False)
    recorded_at = Column(DateTime(timezone=True), index=True, nullable=False, default=_utcnow)


def init_db(engine: Engine) -> None:
    """테이블 생성 (이미 있으면 건너뛴다)"""
    Base.metadata.create_all(bind=engine)
