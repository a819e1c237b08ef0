"""Account resolution gate.

Decides the destination account of a statement before anything is
persisted. When the account cannot be determined with confidence the
caller receives the detected IBAN and a candidate list, and must retry
the import with an explicit account id.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from bank_recon.state_store import AccountRecord, StateStore

logger = logging.getLogger(__name__)

# Full IBAN, optionally printed in groups of four
_IBAN = re.compile(r"(?<![A-Z0-9])([A-Z]{2}\d{2}(?: ?[A-Z0-9]{4}){2,7}(?: ?\d{1,3})?)(?![A-Z0-9])")
# Masked IBAN such as "ES12 **** **** 1234"
_MASKED_IBAN = re.compile(r"(?<![A-Z0-9])[A-Z]{2}\d{2}[\s*X]*\*[\s*X]*(\d{4})(?!\d)")

# Header lines inspected for an IBAN
HEADER_LINES = 5

LAST4_CONFIDENCE = 0.8


@dataclass
class AccountCandidate:
    """An account the statement may belong to."""

    account_id: int
    display_name: str
    confidence: float


@dataclass
class AccountResolution:
    """Outcome of account resolution for one statement."""

    account_id: int | None = None
    ambiguous: bool = False
    detected_iban: str | None = None
    candidates: list[AccountCandidate] = field(default_factory=list)

    @property
    def resolved(self) -> bool:
        return self.account_id is not None and not self.ambiguous

    @classmethod
    def unresolved(
        cls,
        detected_iban: str | None = None,
        candidates: list[AccountCandidate] | None = None,
    ) -> "AccountResolution":
        return cls(
            account_id=None,
            ambiguous=True,
            detected_iban=detected_iban,
            candidates=candidates or [],
        )


class AccountResolver(Protocol):
    """Resolves the destination account of a statement file."""

    def resolve(self, file: Path) -> AccountResolution: ...


def resolve_destination_account(
    resolver: AccountResolver | None,
    file: Path,
    explicit_account_id: int | None = None,
) -> AccountResolution:
    """
    Gate an import on a known destination account.

    An explicit account id always wins and the resolver is not consulted.
    Without a resolver the result is unresolved with no candidates.
    """
    if explicit_account_id is not None:
        return AccountResolution(account_id=explicit_account_id)
    if resolver is None:
        return AccountResolution.unresolved()
    return resolver.resolve(file)


def extract_iban(text: str) -> tuple[str | None, str | None]:
    """Find an IBAN in free text.

    Returns:
        (full_iban, last4); full_iban is None for masked IBANs
    """
    compact = text.upper()
    masked = _MASKED_IBAN.search(compact)
    if masked:
        return None, masked.group(1)

    match = _IBAN.search(compact)
    if match:
        iban = match.group(1).replace(" ", "")
        return iban, iban[-4:]
    return None, None


class StoreIbanResolver:
    """Matches the statement IBAN against accounts in the state store.

    Looks at the first header lines, then the filename:
    - full IBAN equal to an account IBAN -> resolved
    - masked IBAN whose last four digits belong to exactly one account
      -> resolved
    - otherwise unresolved, with every suffix-matching (or every live)
      account as a candidate

    A full IBAN never resolves by suffix alone: another account ending in
    the same four digits is only offered as a candidate.
    """

    def __init__(self, state_store: StateStore) -> None:
        self.store = state_store

    def resolve(self, file: Path) -> AccountResolution:
        full_iban, last4 = self._detect(file)
        accounts = self.store.list_accounts()
        detected = full_iban or (f"****{last4}" if last4 else None)

        if full_iban:
            exact = [a for a in accounts if a.iban == full_iban]
            if len(exact) == 1:
                logger.info("Statement %s resolved to account %d by IBAN", file.name, exact[0].id)
                return AccountResolution(account_id=exact[0].id, detected_iban=full_iban)

        if last4:
            partial = [a for a in accounts if a.iban and a.iban.endswith(last4)]
            if partial and full_iban:
                logger.info(
                    "Statement %s: IBAN %s unknown, %d accounts share its suffix",
                    file.name,
                    full_iban,
                    len(partial),
                )
                return AccountResolution.unresolved(
                    detected, self._candidates(partial, LAST4_CONFIDENCE)
                )
            if len(partial) == 1:
                logger.info(
                    "Statement %s resolved to account %d by IBAN suffix", file.name, partial[0].id
                )
                return AccountResolution(account_id=partial[0].id, detected_iban=detected)
            if partial:
                logger.info(
                    "Statement %s matches %d accounts by IBAN suffix", file.name, len(partial)
                )
                return AccountResolution.unresolved(
                    detected, self._candidates(partial, LAST4_CONFIDENCE)
                )

        logger.info("Statement %s: no account matches IBAN %s", file.name, detected)
        return AccountResolution.unresolved(detected, self._candidates(accounts, 0.0))

    def _detect(self, file: Path) -> tuple[str | None, str | None]:
        try:
            with open(file, encoding="utf-8", errors="ignore") as f:
                header = [next(f, "") for _ in range(HEADER_LINES)]
        except OSError as e:
            logger.warning("Cannot read %s for IBAN detection: %s", file, e)
            header = []

        for line in header:
            full_iban, last4 = extract_iban(line)
            if last4:
                return full_iban, last4
        return extract_iban(file.name)

    @staticmethod
    def _candidates(accounts: list[AccountRecord], confidence: float) -> list[AccountCandidate]:
        return [
            AccountCandidate(account_id=a.id, display_name=a.display_name, confidence=confidence)
            for a in accounts
        ]
