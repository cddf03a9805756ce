import re
from typing import Tuple

from pydantic import BaseModel

_NUMBER = re.compile(r"\d+")


class Table(BaseModel):
    id: str
    name: str

    def sort_key(self) -> Tuple[int, str]:
        """Natural sort: "Table 2" before "Table 12", names without digits first."""
        match = _NUMBER.search(self.name)
        return (int(match.group()) if match else 0, self.name)
