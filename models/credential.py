# models/credential.py
from __future__ import annotations
from sqlalchemy import Column, String

from core.database import Base


class Credential(Base):
    __tablename__ = "credentials"

    username = Column(String(150), primary_key=True)
    secret_hash = Column(String(255), nullable=False)
