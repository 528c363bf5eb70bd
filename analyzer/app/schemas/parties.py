"""
Party identification schemas.

Parties are discovered before risk analysis so the caller can choose
whose perspective the classifier should take.
"""

from typing import List, Literal

from pydantic import BaseModel, ConfigDict, Field

from analyzer.app.schemas.tracks import CallStats, Party


PartyType = Literal["individual", "company", "organization", "other"]


class IdentifiedParty(BaseModel):
    """
    A contract party as named in the document.
    """

    id: str = Field("", description="Short unique identifier, e.g. party1")
    name: str = Field(..., description="Full name as written in the contract")
    description: str = Field("", description="Role of the party in the contract")
    type: PartyType = "other"
    aliases: List[str] = Field(
        default_factory=list,
        description="Alternative names used for the party in the document",
    )

    model_config = ConfigDict(frozen=True)

    def as_party(self) -> Party:
        return Party(name=self.name, description=self.description)


class PartyIdentification(BaseModel):
    """Structured response format for the party identification call."""

    parties: List[IdentifiedParty] = Field(default_factory=list)
    analysis: str = Field(
        "",
        description="Short explanation of the parties and their relationships",
    )


class PartyIdentificationResult(BaseModel):
    """
    Outcome returned to the caller, with the call statistics.
    """

    parties: List[IdentifiedParty]
    analysis: str
    fallback: bool = False
    stats: CallStats = Field(default_factory=CallStats)
