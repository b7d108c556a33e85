from sqlalchemy import Column, Integer, Boolean, Float, Date, DateTime, Numeric, Text, String, Index, UniqueConstraint, Uuid, JSON
from sqlalchemy.sql import func
from core.database import Base
import uuid


class UserProfile(Base):
    __tablename__ = "user_profiles"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    email = Column(Text, unique=True, nullable=True)
    full_name = Column(Text, nullable=True)

    # "Analysis" lets the coach read history; "Private" (and anything else) does not.
    data_privacy = Column(Text, default="Private", nullable=True)
    is_admin = Column(Boolean, default=False, nullable=False)

    # Coach persona
    ai_name = Column(Text, nullable=True)
    ai_personality = Column(Text, nullable=True)  # 'Analytic' | 'Coach'

    # Program position
    current_phase = Column(Integer, default=1, nullable=True)
    current_week = Column(Integer, default=1, nullable=True)

    # Profile maxes (lbs), used for PR lookups and working-set math
    squat_max = Column(Float, nullable=True)
    bench_max = Column(Float, nullable=True)
    deadlift_max = Column(Float, nullable=True)
    front_squat_max = Column(Float, nullable=True)
    clean_max = Column(Float, nullable=True)
    overhead_press_max = Column(Float, nullable=True)
    weight_lbs = Column(Float, nullable=True)


class WorkoutLog(Base):
    """One logged segment of a training day."""
    __tablename__ = "workout_logs"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid(as_uuid=True), nullable=False, index=True)
    date = Column(Date, nullable=False)
    day_name = Column(Text, nullable=True)
    segment_name = Column(Text, nullable=False)
    segment_type = Column(Text, nullable=True)  # MAIN_LIFT, CARDIO, METCON...
    tracking_mode = Column(Text, nullable=True)  # STRENGTH_SETS, CARDIO_BASIC, CHECKBOX, METCON
    performance_data = Column(JSON, nullable=True)
    week_number = Column(Integer, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (
        Index("ix_workout_logs_user_date", "user_id", "date"),
    )


class Biometric(Base):
    __tablename__ = "biometrics"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid(as_uuid=True), nullable=False, index=True)
    date = Column(Date, nullable=False)
    # Sleep
    asleep_minutes = Column(Integer, nullable=True)
    in_bed_minutes = Column(Integer, nullable=True)
    deep_sleep_minutes = Column(Integer, nullable=True)
    rem_sleep_minutes = Column(Integer, nullable=True)
    sleep_efficiency_score = Column(Float, nullable=True)
    # Heart
    hrv_ms = Column(Float, nullable=True)
    resting_hr = Column(Integer, nullable=True)
    # Other
    weight_lbs = Column(Float, nullable=True)
    respiratory_rate = Column(Float, nullable=True)
    source = Column(Text, nullable=True)  # not exposed to the coach
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (
        Index("ix_biometrics_user_date", "user_id", "date"),
    )


class ReadinessLog(Base):
    __tablename__ = "readiness_logs"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid(as_uuid=True), nullable=False, index=True)
    date = Column(Date, nullable=False)
    readiness_score = Column(Integer, nullable=True)  # 0-100
    recovery_status = Column(Text, nullable=True)  # 'optimal' | 'caution' | ...
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)


class WorkoutLibrary(Base):
    """The training program: phases -> weeks -> days -> segments, stored as JSON."""
    __tablename__ = "workout_library"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(Text, nullable=True)
    program_data = Column(JSON, nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)


class AiLog(Base):
    """
    One row per chat request that reached the model.

    Append-only: written once by the recorder, never updated.
    """
    __tablename__ = "ai_logs"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid(as_uuid=True), nullable=False, index=True)
    message_id = Column(String(64), nullable=True, index=True)
    intent = Column(Text, nullable=False)
    intent_set_version = Column(Integer, nullable=True)
    tools_used = Column(JSON, nullable=False, default=list)
    input_tokens = Column(Integer, nullable=False, default=0)
    output_tokens = Column(Integer, nullable=False, default=0)
    estimated_cost_usd = Column(Numeric(12, 6), nullable=False, default=0)
    latency_ms = Column(Integer, nullable=True)
    model = Column(Text, nullable=True)
    status = Column(Text, nullable=False, default="completed")  # completed | failed | cancelled | timed_out
    error_code = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False, index=True)


class AiFeedback(Base):
    __tablename__ = "ai_feedback"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid(as_uuid=True), nullable=False, index=True)
    message_id = Column(String(128), nullable=False)
    rating = Column(Text, nullable=False)  # 'positive' | 'negative'
    user_message = Column(Text, nullable=True)  # truncated
    ai_response = Column(Text, nullable=True)  # truncated
    intent = Column(Text, nullable=True)
    tools_used = Column(JSON, nullable=False, default=list)
    latency_ms = Column(Integer, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False, index=True)

    __table_args__ = (
        UniqueConstraint("user_id", "message_id", name="uq_ai_feedback_user_message"),
    )
