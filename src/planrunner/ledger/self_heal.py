"""Self-healing validation loop for ledger records.

When a record fails schema validation the structured error report is turned
into a repair prompt and handed to the agent, restricted to read/edit tools on
the single offending file. The record is re-validated after every repair and
the loop repeats until it is valid or the optional cap is reached.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

from pydantic import BaseModel

from ..agent.client import AgentInvocation
from ..exceptions import RecordValidationError, SelfHealExhaustedError
from ..prompts import repair_prompt
from .schemas import RecordKind
from .store import PlanLedger
from .validation import describe_schema

logger = logging.getLogger(__name__)


class SelfHealer:
    """Repairs invalid ledger records with the agent.

    Args:
        ledger: Ledger used to load (and therefore validate) records
        agent: Anything with ``run(invocation, cancel_on_terminal=...)``
        model: Model identifier for repair sessions
        tools: Tool allow-list for repair sessions (read/edit only)
        workdir: Working directory for the agent
        max_retries: Repair attempts before giving up; 0 means unbounded
    """

    def __init__(
        self,
        ledger: PlanLedger,
        agent,
        model: str,
        tools: list[str],
        workdir: Path,
        max_retries: int = 0,
    ):
        self.ledger = ledger
        self.agent = agent
        self.model = model
        self.tools = tools
        self.workdir = workdir
        self.max_retries = max_retries

    def validate_and_heal(self, path: Path, kind: RecordKind) -> BaseModel:
        """Load ``path`` and repair it until it validates.

        Only ``RecordValidationError`` is repaired. Opaque I/O errors
        (``LedgerIOError``) propagate unchanged.

        Raises:
            SelfHealExhaustedError: The cap was reached and the record is still invalid
        """
        attempts = 0
        while True:
            try:
                record = self.ledger.load_record(path, kind)
            except RecordValidationError as e:
                if self.max_retries and attempts >= self.max_retries:
                    logger.error(
                        f"[SelfHeal] {path} still invalid after {attempts} repair attempt(s)"
                    )
                    raise SelfHealExhaustedError(path, attempts, e.report) from e
                attempts += 1
                logger.warning(
                    f"[SelfHeal] {path} failed validation ({len(e.report.errors)} error(s)); "
                    f"repair attempt {attempts}"
                    + (f"/{self.max_retries}" if self.max_retries else "")
                )
                for err in e.report.errors:
                    logger.debug(f"[SelfHeal]   {err.field}: {err.message}")
                self._repair(path, kind, e)
                continue

            if attempts:
                logger.info(f"[SelfHeal] {path} valid after {attempts} repair attempt(s)")
            return record

    def _repair(self, path: Path, kind: RecordKind, error: RecordValidationError) -> None:
        invocation = AgentInvocation(
            prompt=repair_prompt(path, error.report.to_prompt(), describe_schema(kind)),
            model=self.model,
            workdir=self.workdir,
            allowed_tools=list(self.tools),
            context_files=[path],
            label="repair",
        )
        self.agent.run(invocation, cancel_on_terminal=False)

    def heal_if_needed(self, error: RecordValidationError, kind: Optional[RecordKind] = None) -> BaseModel:
        """Repair the file named by a validation error raised elsewhere."""
        if error.path is None:
            raise error
        return self.validate_and_heal(error.path, kind or _kind_from_report(error))


def _kind_from_report(error: RecordValidationError) -> RecordKind:
    return RecordKind(error.report.kind)
