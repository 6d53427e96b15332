from .models import InsertDescription
from .tx import DbConnection, DbTransaction, build_url

__all__ = [
    "DbConnection",
    "DbTransaction",
    "InsertDescription",
    "build_url",
]
