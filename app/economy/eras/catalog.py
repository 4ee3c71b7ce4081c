from __future__ import annotations

import json
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

DEFAULT_CATALOG_PATH = Path(__file__).with_name("eras.json")


class EraNotFoundError(LookupError):
    pass


class EraConfig(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")

    identifier: str = Field(min_length=1, max_length=64, pattern=r"^[A-Za-z0-9_]+$")
    name: str | None = None
    passes_required: int = Field(default=0, ge=0)
    exclusive: bool = False
    exclusive_label: str | None = None

    @property
    def display_name(self) -> str:
        if self.name:
            return self.name
        return " ".join(word.capitalize() for word in self.identifier.split("_"))

    @property
    def badge_label(self) -> str:
        return self.exclusive_label or "EXCLUSIVE"


_ERA_LIST_ADAPTER = TypeAdapter(list[EraConfig])


class EraCatalog:
    def __init__(self, eras: list[EraConfig]) -> None:
        self._eras: dict[str, EraConfig] = {}
        for era in eras:
            if era.identifier in self._eras:
                raise ValueError(f"duplicate era identifier: {era.identifier}")
            self._eras[era.identifier] = era

    @classmethod
    def from_json(cls, raw: str | bytes) -> EraCatalog:
        return cls(_ERA_LIST_ADAPTER.validate_python(json.loads(raw)))

    @classmethod
    def load(cls, path: str | Path | None = None) -> EraCatalog:
        catalog_path = Path(path) if path else DEFAULT_CATALOG_PATH
        return cls.from_json(catalog_path.read_bytes())

    def get(self, identifier: str) -> EraConfig:
        era = self._eras.get(identifier)
        if era is None:
            raise EraNotFoundError(identifier)
        return era

    def __contains__(self, identifier: object) -> bool:
        return identifier in self._eras

    def all(self) -> list[EraConfig]:
        return list(self._eras.values())
