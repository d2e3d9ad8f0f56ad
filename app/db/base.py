from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    pass


# Register every table on Base.metadata for create_all and Alembic autogenerate
from app.models import *  # noqa
