"""Shared test fixtures and helpers."""

from __future__ import annotations

from decimal import Decimal

import pytest

from imucalc.core.config import LLMConfig
from imucalc.finance.models import (
    Appurtenance,
    Available,
    ContractKind,
    PrimaryResidence,
    Property,
    RateTable,
    Rented,
)
from imucalc.finance.tables import DEFAULT_RATE_TABLE
from imucalc.llm.client import LLMClient
from imucalc.rates.resolver import RateTableNotFound


def make_property(
    id: str = "p1",
    *,
    rent: str | Decimal = "500",
    category: str = "A/2",
    municipality: str = "Roma",
    province: str = "RM",
    condition=None,
    address: str = "",
) -> Property:
    return Property(
        id=id,
        address=address,
        municipality=municipality,
        province=province,
        category=category,
        cadastral_rent=Decimal(str(rent)),
        condition=condition or Available(),
    )


def residence(id: str = "casa", **kwargs) -> Property:
    return make_property(id, condition=PrimaryResidence(), **kwargs)


def appurtenance(id: str, of: str, **kwargs) -> Property:
    kwargs.setdefault("category", "C/6")
    return make_property(id, condition=Appurtenance(of=of), **kwargs)


def rented(id: str, contract: ContractKind, **kwargs) -> Property:
    return make_property(id, condition=Rented(contract=contract), **kwargs)


class FakeResolver:
    """Rate resolver backed by a dict, recording every call."""

    def __init__(self, tables: dict[tuple[str, str], RateTable] | None = None, error: Exception | None = None):
        self.tables = {(p.upper(), m.lower()): t for (p, m), t in (tables or {}).items()}
        self.error = error
        self.calls: list[tuple[str, str, int | None]] = []

    async def resolve(self, province: str, municipality: str, year: int | None = None) -> RateTable:
        self.calls.append((province, municipality, year))
        if self.error is not None:
            raise self.error
        key = (province.upper(), municipality.lower())
        if key not in self.tables:
            raise RateTableNotFound(f"{municipality} ({province})")
        return self.tables[key]


class FakeLLMClient(LLMClient):
    """LLM client returning a canned answer."""

    def __init__(self, answer: str = "", error: Exception | None = None) -> None:
        super().__init__(LLMConfig(provider="openai", model="fake"))
        self.answer = answer
        self.error = error
        self.prompts: list[tuple[str, str | None]] = []
        self.json_requests: list[bool] = []

    async def chat(self, messages, *, temperature=0.0, json_output=False) -> str:
        system_prompt = next((m["content"] for m in messages if m["role"] == "system"), None)
        self.prompts.append((messages[-1]["content"], system_prompt))
        self.json_requests.append(json_output)
        if self.error is not None:
            raise self.error
        return self.answer

    async def is_available(self) -> bool:
        return True


@pytest.fixture
def roma_table() -> RateTable:
    return DEFAULT_RATE_TABLE.model_copy(update={
        "default_rate": Decimal("1.06"),
        "primary_residence_rate": Decimal("0.5"),
        "primary_residence_luxury_rate": Decimal("0.6"),
        "source": "test",
    })


@pytest.fixture
def fake_resolver(roma_table) -> FakeResolver:
    return FakeResolver({("RM", "Roma"): roma_table})
