"""Decoder for observations recorded by the agent in plan and summary files.

Observations are a tagged variant (blocker | finding | completion) with a fixed
field set. Each raw entry is validated on its own: conforming entries are
kept, the rest are logged and reported back as rejected so one bad entry never
hides the others.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterable, Union

from pydantic import TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from ..ledger.schemas import FindingObservation, Observation
from ..ledger.validation import report_from_pydantic

logger = logging.getLogger(__name__)

_OBSERVATION_ADAPTER: TypeAdapter = TypeAdapter(Observation)

HUMAN_REVIEW_PHRASES = ("needs human", "verification needed", "human review")


@dataclass
class RejectedObservation:
    raw: Any
    reasons: list[str]


@dataclass
class DecodedObservations:
    accepted: list = field(default_factory=list)
    rejected: list[RejectedObservation] = field(default_factory=list)


def decode_observations(raw_items: Iterable[Any], source: str = "record") -> DecodedObservations:
    result = DecodedObservations()
    for index, raw in enumerate(raw_items or []):
        try:
            result.accepted.append(_OBSERVATION_ADAPTER.validate_python(raw))
        except PydanticValidationError as e:
            report = report_from_pydantic(f"observations[{index}]", e)
            reasons = [f"{err.field}: {err.message}" for err in report.errors]
            logger.warning(
                f"[Observations] Rejected non-conforming observation in {source}: {'; '.join(reasons)}"
            )
            result.rejected.append(RejectedObservation(raw=raw, reasons=reasons))
    return result


def read_observations(path: Union[str, Path]) -> DecodedObservations:
    """Decode the ``observations`` list of a plan or summary file without validating the rest."""
    path = Path(path)
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        logger.debug(f"[Observations] Cannot read {path}: {e}")
        return DecodedObservations()
    raw_items = data.get("observations") if isinstance(data, dict) else None
    if not isinstance(raw_items, list):
        return DecodedObservations()
    return decode_observations(raw_items, source=str(path))


def needs_human_review(observation) -> bool:
    """True for findings whose description asks for a person to check something."""
    if not isinstance(observation, FindingObservation):
        return False
    description = observation.description.lower()
    return any(phrase in description for phrase in HUMAN_REVIEW_PHRASES)


def split_review_lines(description: str) -> tuple[list[str], list[str]]:
    """Pull "Automated:" and "Needs human:" lines out of a finding's description."""
    automated: list[str] = []
    needs_human: list[str] = []
    for line in description.splitlines():
        line = line.strip()
        for prefix in ("Automated aspects:", "Automated:"):
            if line.startswith(prefix):
                automated.append(line[len(prefix):].strip())
                break
        else:
            for prefix in ("Still needs human review:", "Needs human:"):
                if line.startswith(prefix):
                    needs_human.append(line[len(prefix):].strip())
                    break
    return automated, needs_human


def describe(observation) -> str:
    location = f" ({observation.file})" if observation.file else ""
    return f"[{observation.type}] {observation.title}{location}: {observation.description}"
