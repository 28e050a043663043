from uuid import uuid4

from sqlalchemy.orm import DeclarativeBase


def new_uuid() -> str:
    return str(uuid4())


class Base(DeclarativeBase):
    pass
