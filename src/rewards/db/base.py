"""Declarative base for the engine tables."""

from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    pass
