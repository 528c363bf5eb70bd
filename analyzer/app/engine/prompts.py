"""
Prompt assembly for the classification and elaboration calls.

Two layers per call, mirroring how the calls are cached upstream:
  1. System layer (role, rules, optional party perspective)
  2. Task layer (document or finding under analysis)
"""

from __future__ import annotations

from typing import Dict, List, Optional, Sequence

from analyzer.app.schemas.categories import Category
from analyzer.app.schemas.findings import ElaborationRequest
from analyzer.app.schemas.tracks import Party

# Upper bound on already-known texts echoed back to the classifier
MAX_KNOWN_TEXTS_IN_PROMPT = 50

Message = Dict[str, str]


def party_perspective(party: Optional[Party]) -> str:
    if party is None:
        return "Analyze this contract from a general risk perspective."
    return (
        f'You are analyzing this contract from the perspective of "{party.name}" '
        f"({party.description}). Focus on risks that could negatively impact "
        f"{party.name} specifically."
    )


def classification_messages(
    *,
    document_text: str,
    category: Category,
    already_known: Sequence[str],
    party: Optional[Party] = None,
) -> List[Message]:
    name = category.name

    rules = [
        "- Be AGGRESSIVE in finding risks - better to flag something "
        "questionable than miss a real risk",
        "- Find EVERY instance of problematic language, even if it seems minor",
        "- Look for both explicit problematic clauses AND missing protective language",
        "- Extract the EXACT text from the contract (word-for-word quotes)",
        "- Classify severity: high (immediate danger), medium (potentially "
        "problematic), low (minor but worth noting)",
        "- Identify specific location/section where each risk was found",
        f"- Focus specifically on {name} but don't ignore other obvious risks "
        "you encounter",
    ]
    if party is not None:
        rules.append(
            f'- Prioritize risks that specifically disadvantage or expose '
            f'"{party.name}" to liability or unfavorable terms'
        )

    system = (
        f"You are an expert legal contract analyst with a specialty in {name} "
        "risks. Your task is to exhaustively identify ALL potential risks in "
        "this category, even minor ones that could become problems later.\n\n"
        f"{party_perspective(party)}\n\n"
        "CRITICAL INSTRUCTIONS:\n"
        + "\n".join(rules)
        + "\n\nRemember: Clients rely on you to catch everything. "
        "Missing a risk could be costly."
    )

    target = f' that could negatively impact "{party.name}"' if party else ""
    focus = "\n".join(f"- {area}" for area in category.focus_areas)

    task = (
        f"Thoroughly analyze this contract for {name} risks{target}. "
        "Find EVERY potential issue in this category:\n\n"
        f"{document_text}\n\n"
        f"Specific {name} risks to find:\n{focus}\n\n"
        "Look for both:\n"
        "1. Explicit problematic clauses that create risks\n"
        "2. Missing protective language that should be present\n"
        "3. Vague or ambiguous terms that could be interpreted unfavorably\n"
        "4. Standard contract provisions that favor the other party\n"
    )

    known = list(already_known)[:MAX_KNOWN_TEXTS_IN_PROMPT]
    if known:
        task += (
            "\nThe following texts were already identified as risks. "
            "Do not report them again:\n"
            + "\n".join(f'- "{text}"' for text in known)
            + "\n"
        )

    task += "\nBe thorough - find every potential risk, no matter how small."

    return [
        {"role": "system", "content": system},
        {"role": "user", "content": task},
    ]


ELABORATION_SYSTEM_PROMPT = (
    "You are a contract advisor. Provide quick, practical suggestions to fix "
    "contract risks. Be concise and focus on actionable changes. IMPORTANT: "
    "Always write the suggested replacement text in the same language as the "
    "original text provided by the user."
)


def elaboration_messages(request: ElaborationRequest) -> List[Message]:
    task = (
        "Fix this contract risk:\n\n"
        f"**Risk:** {request.title}\n"
        f"**Context:** {request.description}\n"
        f'**Original Text:** "{request.source_span}"\n\n'
        "Provide:\n"
        "1. Brief business impact (1 sentence)\n"
        "2. 2-3 practical actions to fix it (with priority: high/medium/low "
        "and effort: low/medium/high)\n"
        "3. Suggested replacement text (MUST be in the same language as the "
        "original text)\n\n"
        "Be concise and practical."
    )

    return [
        {"role": "system", "content": ELABORATION_SYSTEM_PROMPT},
        {"role": "user", "content": task},
    ]


PARTY_IDENTIFICATION_SYSTEM_PROMPT = (
    "You are a legal expert specializing in contract analysis. Your task is "
    "to identify all parties in a contract and their roles."
)


def party_identification_messages(document_text: str) -> List[Message]:
    task = (
        "Analyze the following contract text and identify all parties "
        "involved. For each party, provide:\n"
        "1. A unique identifier (short name)\n"
        "2. Full name as mentioned in the contract\n"
        "3. Brief description of their role\n"
        "4. Type (individual, company, organization, or other)\n"
        "5. Any aliases or alternative names used in the document\n\n"
        "Also give a brief explanation of the parties and their "
        "relationships.\n\n"
        f"Contract text:\n{document_text}"
    )

    return [
        {"role": "system", "content": PARTY_IDENTIFICATION_SYSTEM_PROMPT},
        {"role": "user", "content": task},
    ]
