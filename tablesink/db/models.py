from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class InsertDescription:
    """
    A single row to insert: columns and values are positionally aligned.
    """
    table: str
    columns: tuple[str, ...]
    values: tuple[Any, ...]

    def __post_init__(self) -> None:
        if len(self.columns) != len(self.values):
            raise ValueError(
                f"columns and values must have the same length "
                f"({len(self.columns)} != {len(self.values)})"
            )

    def as_dict(self) -> dict[str, Any]:
        return dict(zip(self.columns, self.values))
