# link_shortener/models.py
import uuid

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import relationship

from .database import Base
from .utils import utcnow


# Widest secret an api_keys row can hold
KEY_LENGTH = 64


def _new_id() -> str:
    return str(uuid.uuid4())


class ApiKey(Base):
    __tablename__ = "api_keys"

    id = Column(String(36), primary_key=True, default=_new_id)
    key = Column(String(KEY_LENGTH), unique=True, index=True, nullable=False)
    name = Column(String(100), unique=True, nullable=False)
    is_admin = Column(Boolean, nullable=False, default=False)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)
    last_used_at = Column(DateTime, nullable=True)

    links = relationship(
        "Link", back_populates="owner", cascade="all, delete-orphan"
    )


class Link(Base):
    __tablename__ = "links"

    id = Column(String(36), primary_key=True, default=_new_id)
    redirect_to = Column(String(2048), nullable=False)
    shortened = Column(String(100), unique=True, index=True, nullable=False)
    expires_at = Column(DateTime, nullable=True, index=True)
    created_by = Column(
        String(36), ForeignKey("api_keys.id", ondelete="CASCADE"), index=True, nullable=False
    )
    visits = Column(Integer, nullable=False, default=0)
    last_visited_at = Column(DateTime, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    owner = relationship("ApiKey", back_populates="links", lazy="joined")
    visit_records = relationship(
        "LinkVisit", back_populates="link", cascade="all, delete-orphan"
    )


class LinkVisit(Base):
    __tablename__ = "link_visits"

    id = Column(String(36), primary_key=True, default=_new_id)
    link_id = Column(
        String(36), ForeignKey("links.id", ondelete="CASCADE"), index=True, nullable=False
    )
    visited_at = Column(DateTime, nullable=False, default=utcnow)
    user_agent = Column(Text, nullable=True)
    ip_address = Column(String(45), nullable=True)
    referrer = Column(Text, nullable=True)

    link = relationship("Link", back_populates="visit_records")


class ErrorLog(Base):
    __tablename__ = "error_logs"

    id = Column(Integer, primary_key=True, index=True)
    path = Column(String, nullable=False)
    method = Column(String(10), nullable=False)
    status_code = Column(Integer, nullable=False)
    detail = Column(String, nullable=False)
    created_at = Column(DateTime, default=utcnow)
