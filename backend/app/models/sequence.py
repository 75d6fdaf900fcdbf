"""Named durable counters incremented inside writer transactions."""

from sqlalchemy import Column, Integer, String

from backend.app.db.base_class import Base


class Sequence(Base):
    __tablename__ = "sequences"

    name = Column(String(50), primary_key=True)
    value = Column(Integer, nullable=False, default=0)
