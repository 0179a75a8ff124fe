"""SQLAlchemy models for the finished-goods dispatch service."""

import datetime as dt

from sqlalchemy import JSON, Boolean, Column, Date, DateTime, Index, Integer, String, Text, func
from sqlalchemy.orm import declarative_base

Base = declarative_base()


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    username = Column(String(64), nullable=False, unique=True)
    name = Column(String(128), nullable=False, default="")
    password_hash = Column(String(255), nullable=False)
    role = Column(String(16), nullable=False, default="manager")
    active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, nullable=False, default=dt.datetime.utcnow, server_default=func.now())


class ProductMaterialMapping(Base):
    """Master data supplying the carton size of a product."""

    __tablename__ = "product_material_mapping"

    id = Column(Integer, primary_key=True, autoincrement=True)
    product_name = Column(String(255), nullable=False, unique=True)
    units_per_carton = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime, nullable=False, default=dt.datetime.utcnow, server_default=func.now())
    updated_at = Column(DateTime, nullable=False, default=dt.datetime.utcnow, server_default=func.now())


class ProductStock(Base):
    """Carton and piece counters of one finished product.

    ``version`` is the optimistic lock: every UPDATE is issued as
    ``... WHERE id = :id AND version = :read_version``.
    """

    __tablename__ = "product_stock"

    id = Column(Integer, primary_key=True, autoincrement=True)
    product_name = Column(String(255), nullable=False, unique=True)
    item_code = Column(String(64), unique=True)
    hsn_code = Column(String(32))
    available_cartons = Column(Integer, nullable=False, default=0)
    available_pieces = Column(Integer, nullable=False, default=0)
    broken_carton_pieces = Column(Integer, nullable=False, default=0)
    units_per_carton = Column(Integer, nullable=False, default=1)
    alert_threshold = Column(Integer, nullable=False, default=10)
    version = Column(Integer, nullable=False)
    last_updated = Column(DateTime, nullable=False, default=dt.datetime.utcnow, server_default=func.now())
    created_at = Column(DateTime, nullable=False, default=dt.datetime.utcnow, server_default=func.now())

    __mapper_args__ = {"version_id_col": version}

    @property
    def total_available(self) -> int:
        return (
            self.available_cartons * self.units_per_carton
            + self.available_pieces
            + self.broken_carton_pieces
        )


class FinishedGoodsDC(Base):
    """Delivery challan issuing finished goods out of stock."""

    __tablename__ = "fg_delivery_challans"

    id = Column(Integer, primary_key=True, autoincrement=True)
    dc_no = Column(String(32), nullable=False, unique=True)
    dispatch_type = Column(String(32), nullable=False)
    receiver_type = Column(String(32), nullable=False)
    receiver_name = Column(String(255))
    receiver_details = Column(Text)
    product_name = Column(String(255), nullable=False)
    issue_type = Column(String(16), nullable=False)
    quantity = Column(Integer, nullable=False)
    carton_quantity = Column(Integer, nullable=False, default=0)
    piece_quantity = Column(Integer, nullable=False, default=0)
    units_per_carton = Column(Integer, nullable=False, default=1)
    available_cartons = Column(Integer, nullable=False, default=0)
    available_pieces = Column(Integer, nullable=False, default=0)
    broken_carton_pieces = Column(Integer, nullable=False, default=0)
    date = Column(Date, nullable=False)
    remarks = Column(Text)
    created_by = Column(String(128), nullable=False)
    status = Column(String(16), nullable=False, default="Pending")
    created_at = Column(DateTime, nullable=False, default=dt.datetime.utcnow, server_default=func.now())
    updated_at = Column(DateTime, nullable=False, default=dt.datetime.utcnow, server_default=func.now())
    completed_date = Column(DateTime)

    __table_args__ = (
        Index("fg_dc_product_name_idx", product_name),
        Index("fg_dc_dispatch_type_idx", dispatch_type),
        Index("fg_dc_status_idx", status),
        Index("fg_dc_receiver_name_idx", receiver_name),
    )


class Audit(Base):
    __tablename__ = "audit"

    id = Column(Integer, primary_key=True, autoincrement=True)
    entity = Column(String(64), nullable=False)
    entity_id = Column(String(64), nullable=False)
    action = Column(String(64), nullable=False)
    payload_json = Column(JSON, nullable=False, default=dict)
    user_id = Column(Integer)
    ts = Column(DateTime, nullable=False, default=dt.datetime.utcnow, server_default=func.now())
