from __future__ import annotations

from loguru import logger

from .models import BoardStatus, Mismatch, Verified, VerifyResult
from .tracker import IssueStore


class StatusVerifier:
    """Gate phase transitions on the status the board actually shows."""

    def __init__(self, store: IssueStore):
        self.store = store

    def verify(self, number: int, expected: str) -> VerifyResult:
        """Compare the board status of an issue with `expected`.

        One query per call; callers re-verify on demand instead of polling.
        """
        actual = self.store.get_board_status(number)
        parsed_expected = BoardStatus.parse(expected)
        parsed_actual = BoardStatus.parse(actual)
        if parsed_expected is not None and parsed_actual == parsed_expected:
            return Verified(status=str(actual))
        if parsed_expected is None and actual is not None and actual.strip().lower() == expected.strip().lower():
            return Verified(status=actual)

        mismatch = Mismatch(expected=expected, actual=actual)
        logger.warning("Status check on #{}: {}", number, mismatch.describe())
        return mismatch
