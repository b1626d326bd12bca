from sqlalchemy import Column, Integer, String, Float, Boolean, DateTime, ForeignKey, JSON
from sqlalchemy.orm import declarative_base
from sqlalchemy.sql import func

Base = declarative_base()

class UserProfile(Base):
    __tablename__ = "users"
    id = Column(Integer, primary_key=True)
    external_id = Column(String(128), unique=True, nullable=False)
    email = Column(String(255))
    first_name = Column(String(128))
    last_name = Column(String(128))
    phone = Column(String(64))
    license_number = Column(String(64))
    license_state = Column(String(32))
    created_at = Column(DateTime(timezone=True), server_default=func.now())

class Vehicle(Base):
    __tablename__ = "vehicles"
    id = Column(Integer, primary_key=True)
    external_id = Column(String(128), unique=True, nullable=False)
    user_id = Column(String(128), index=True, nullable=False)
    make = Column(String(64))
    model = Column(String(64))
    year = Column(String(8))
    vin = Column(String(64))
    license_plate = Column(String(32))
    color = Column(String(32))
    created_at = Column(DateTime(timezone=True), server_default=func.now())

class InsurancePolicy(Base):
    __tablename__ = "insurance_policies"
    id = Column(Integer, primary_key=True)
    user_id = Column(String(128), index=True, nullable=False)
    provider = Column(String(128))
    policy_number = Column(String(64))
    group_number = Column(String(64))
    effective_date = Column(String(32))
    expiration_date = Column(String(32))
    coverage_type = Column(String(64))
    deductible = Column(String(32))
    created_at = Column(DateTime(timezone=True), server_default=func.now())

class Trip(Base):
    __tablename__ = "trips"
    id = Column(Integer, primary_key=True)
    trip_id = Column(String(128), unique=True, nullable=False)
    user_id = Column(String(128), index=True, nullable=False)
    vehicle_id = Column(String(128))
    nav_provider = Column(String(64))
    state = Column(String(16), nullable=False)
    start_time = Column(DateTime(timezone=True))
    end_time = Column(DateTime(timezone=True))
    distance = Column(Float, default=0.0)
    duration = Column(Integer, default=0)
    average_speed = Column(Float, default=0.0)
    max_speed = Column(Float, default=0.0)
    speed_violations = Column(Integer, default=0)
    hard_braking = Column(Integer, default=0)
    rapid_acceleration = Column(Integer, default=0)
    safety_score = Column(Integer, default=100)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

class LocationSample(Base):
    __tablename__ = "location_samples"
    id = Column(Integer, primary_key=True)
    trip_id = Column(String(128), ForeignKey("trips.trip_id"), index=True, nullable=False)
    sequence = Column(Integer, nullable=False)
    latitude = Column(Float)
    longitude = Column(Float)
    speed = Column(Float)
    speed_limit = Column(Float)
    timestamp = Column(DateTime(timezone=True))

class Alert(Base):
    __tablename__ = "alerts"
    id = Column(Integer, primary_key=True)
    alert_id = Column(String(64), unique=True, nullable=False)
    user_id = Column(String(128), index=True)
    trip_id = Column(String(128), ForeignKey("trips.trip_id"), index=True)
    kind = Column(String(32))
    message = Column(String(255))
    created_at = Column(DateTime(timezone=True))
    is_read = Column(Boolean, default=False)
    sequence = Column(Integer)

class InsuranceExport(Base):
    __tablename__ = "insurance_exports"
    id = Column(Integer, primary_key=True)
    user_id = Column(String(128), index=True)
    trip_id = Column(String(128), ForeignKey("trips.trip_id"))
    insurance_provider = Column(String(128))
    export_data = Column(JSON)
    status = Column(String(32))
    created_at = Column(DateTime(timezone=True), server_default=func.now())
