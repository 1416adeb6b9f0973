"""Flat property records as sent by the web form and stored in input files.

The form describes usage with independent flags (``abitazione_principale``,
``pertinenza``, ``tipo_contratto``). They are converted here into a single
usage condition; contradictory flags are rejected.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any

from pydantic import BaseModel, Field, ValidationError

from imucalc.finance.models import (
    Appurtenance,
    Available,
    ContractKind,
    ImuValidationError,
    PrimaryResidence,
    Property,
    Rented,
)


_CONTRACT_ALIASES: dict[str, ContractKind | None] = {
    "": None,
    "none": None,
    "libero": ContractKind.MARKET,
    "concordato": ContractKind.AGREED,
    "transitorio": ContractKind.TRANSITIONAL,
    "studenti": ContractKind.STUDENT,
    "comodato": ContractKind.FAMILY_USE,
    "comodato_parenti": ContractKind.FAMILY_USE,
    **{kind.value: kind for kind in ContractKind},
}


class ImmobileRecord(BaseModel):
    """A property as sent by the web form, with flat usage flags."""

    id: str
    indirizzo: str = ""
    citta: str | None = None
    comune: str | None = None
    provincia: str
    categoria: str
    rendita: Decimal = Field(ge=0)
    abitazione_principale: bool = False
    pertinenza: bool = False
    pertinenza_di: str | None = None
    tipo_contratto: str | None = "none"

    def to_property(self) -> Property:
        """Convert the flat flags into a single usage condition.

        Raises ImuValidationError when the flags contradict each other.
        """
        contract_key = (self.tipo_contratto or "none").strip().lower()
        if contract_key not in _CONTRACT_ALIASES:
            raise ImuValidationError(
                f"Property {self.id!r}: unknown contract type {self.tipo_contratto!r}"
            )
        contract = _CONTRACT_ALIASES[contract_key]

        flags = [self.abitazione_principale, self.pertinenza, contract is not None]
        if sum(flags) > 1:
            raise ImuValidationError(
                f"Property {self.id!r}: primary residence, appurtenance and rented "
                "are mutually exclusive"
            )

        if self.abitazione_principale:
            condition: Any = PrimaryResidence()
        elif self.pertinenza:
            if not self.pertinenza_di:
                raise ImuValidationError(
                    f"Property {self.id!r}: appurtenance without 'pertinenza_di'"
                )
            condition = Appurtenance(of=self.pertinenza_di)
        elif contract is not None:
            condition = Rented(contract=contract)
        else:
            condition = Available()

        return Property(
            id=self.id,
            address=self.indirizzo,
            municipality=self.citta or self.comune or "",
            province=self.provincia,
            category=self.categoria,
            cadastral_rent=self.rendita,
            condition=condition,
        )


def parse_properties(records: list[dict[str, Any]]) -> list[Property]:
    """Parse raw records: structured ``Property`` payloads or flat form records."""
    properties: list[Property] = []
    for index, record in enumerate(records):
        if not isinstance(record, dict):
            raise ImuValidationError(
                f"Property #{index + 1} is not a mapping (got {type(record).__name__})"
            )
        try:
            if "condition" in record or "cadastral_rent" in record:
                properties.append(Property.model_validate(record))
            else:
                properties.append(ImmobileRecord.model_validate(record).to_property())
        except ValidationError as exc:
            fields = ", ".join(".".join(str(p) for p in e["loc"]) for e in exc.errors())
            raise ImuValidationError(
                f"Property #{index + 1} is invalid ({fields})"
            ) from exc
    return properties
