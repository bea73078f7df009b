"""
Verification session: the scan -> verify -> report workflow.

A session owns the ordered list of verification items for one delivery,
the current workflow phase, and every per-item mutation. Item status is
written by one of two rules, and the last write wins:

- count-driven derivation, run on every change to `actual_qty`
- manual override (`mark_as` / `finish_counting`), which forces `verified`

Each write records its rule in `VerificationItem.status_source`.
"""

from typing import Optional, Sequence

from .config import OVERRIDE_STATUSES, ExtractionFailure, ItemStatus, StatusSource, WorkflowPhase, logger
from .errors import ExtractionError, IndexOutOfRangeError, InvalidTransitionError, ItemStateError
from .extractor import LineItemExtractor, extract_pages
from .reconciliation import summarize
from .schemas import CatalogEntry, ExtractedLineItem, ExtractionResult, ReceivingSummary, VerificationItem


def derive_count_status(expected_qty: int, actual_qty: int) -> ItemStatus:
    """Compare a physical count against the invoiced quantity."""
    if actual_qty == expected_qty:
        return ItemStatus.MATCH
    if actual_qty < expected_qty:
        return ItemStatus.SHORTAGE
    return ItemStatus.OVERAGE


def to_verification_item(line: ExtractedLineItem) -> VerificationItem:
    """Convert an extracted invoice line into an uncounted verification item."""
    return VerificationItem(
        name=line.name,
        expected_qty=max(0, int(round(line.quantity))),
        unit_price=line.unit_price,
    )


class VerificationSession:
    """
    Mutable state for one receiving verification run.

    Extraction calls are tagged with the session generation they were
    issued against; `reset()` bumps the generation so that results which
    arrive afterwards are discarded.
    """

    def __init__(self) -> None:
        self._items: list[VerificationItem] = []
        self._phase = WorkflowPhase.SCAN
        self._generation = 0
        self._in_flight: Optional[int] = None
        self.vendor_name: Optional[str] = None
        self.invoice_number: Optional[str] = None
        self.last_error: Optional[str] = None

    # ========================================================================
    # State Access
    # ========================================================================

    @property
    def phase(self) -> WorkflowPhase:
        return self._phase

    @property
    def items(self) -> tuple[VerificationItem, ...]:
        """Copies of the items; change them through the session operations."""
        return tuple(item.model_copy() for item in self._items)

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def extraction_in_flight(self) -> bool:
        return self._in_flight is not None

    def summary(self) -> ReceivingSummary:
        """Recompute aggregate counts from the current items."""
        return summarize(self._items)

    def can_advance(self) -> bool:
        """True when the verify -> report transition guard is satisfied."""
        return self._phase == WorkflowPhase.VERIFY and self.summary().verified > 0

    # ========================================================================
    # Extraction (scan -> verify)
    # ========================================================================

    def begin_extraction(self) -> int:
        """
        Mark an extraction as in flight and return its ticket.

        Raises:
            InvalidTransitionError: if the session is not scanning or an
                extraction is already outstanding
        """
        if self._phase != WorkflowPhase.SCAN:
            raise InvalidTransitionError(
                f"Cannot extract while in {self._phase.value} phase",
                self._phase,
                WorkflowPhase.VERIFY,
            )
        if self._in_flight is not None:
            raise InvalidTransitionError(
                "An extraction is already in progress for this session",
                self._phase,
                WorkflowPhase.VERIFY,
            )
        self._in_flight = self._generation
        self.last_error = None
        return self._generation

    def _is_stale(self, ticket: int) -> bool:
        return ticket != self._generation or self._in_flight != ticket

    def complete_extraction(self, ticket: int, result: ExtractionResult) -> bool:
        """
        Populate the session from a finished extraction.

        Returns False when the ticket is stale and the result was discarded.

        Raises:
            ExtractionError: if the extraction returned no line items
        """
        if self._is_stale(ticket):
            logger.info(f"Discarding stale extraction result (ticket {ticket}, generation {self._generation})")
            return False

        self._in_flight = None
        if not result.items:
            self.last_error = "No line items were found on the invoice."
            raise ExtractionError(self.last_error, ExtractionFailure.EMPTY)

        self._items = [to_verification_item(line) for line in result.items]
        self.vendor_name = result.vendor_name
        self.invoice_number = result.invoice_number
        self._phase = WorkflowPhase.VERIFY
        logger.info(f"Session populated with {len(self._items)} item(s)")
        return True

    def fail_extraction(self, ticket: int, error: BaseException) -> bool:
        """
        Record a failed extraction. The phase stays at scan.

        Returns False when the ticket is stale and the failure was discarded.
        """
        if self._is_stale(ticket):
            logger.info(f"Discarding stale extraction failure (ticket {ticket}): {error}")
            return False
        self._in_flight = None
        self.last_error = str(error)
        logger.warning(f"Extraction failed: {error}")
        return True

    def load_extraction(self, result: ExtractionResult) -> None:
        """Populate the session from an extraction that already completed."""
        ticket = self.begin_extraction()
        self.complete_extraction(ticket, result)

    async def run_extraction(
        self,
        extractor: LineItemExtractor,
        pages: Sequence[bytes],
        catalog: Optional[Sequence[CatalogEntry]] = None,
    ) -> bool:
        """
        Extract every page in order and populate the session.

        Returns False if the session was reset while the extractor was
        running; the late result is dropped.

        Raises:
            ExtractionError: if extraction failed or found nothing
        """
        ticket = self.begin_extraction()
        try:
            result = await extract_pages(extractor, pages, catalog)
        except ExtractionError as e:
            if self.fail_extraction(ticket, e):
                raise
            return False
        except BaseException as e:
            self.fail_extraction(ticket, e)
            raise
        return self.complete_extraction(ticket, result)

    # ========================================================================
    # Phase Transitions
    # ========================================================================

    def advance_to_report(self) -> None:
        """
        Move from verify to report.

        Raises:
            InvalidTransitionError: if not verifying or no item is verified yet
        """
        if self._phase != WorkflowPhase.VERIFY:
            raise InvalidTransitionError(
                f"Cannot move to report from {self._phase.value} phase",
                self._phase,
                WorkflowPhase.REPORT,
            )
        if self.summary().verified == 0:
            raise InvalidTransitionError(
                "Verify at least one item before continuing to the report",
                self._phase,
                WorkflowPhase.REPORT,
            )
        self._phase = WorkflowPhase.REPORT

    def return_to_verify(self) -> None:
        """Go back from report to verify for corrections."""
        if self._phase != WorkflowPhase.REPORT:
            raise InvalidTransitionError(
                f"Cannot return to verify from {self._phase.value} phase",
                self._phase,
                WorkflowPhase.VERIFY,
            )
        self._phase = WorkflowPhase.VERIFY

    def reset(self) -> None:
        """Discard all state and start over at scan. Allowed from any phase."""
        self._items = []
        self._phase = WorkflowPhase.SCAN
        self._generation += 1
        self._in_flight = None
        self.vendor_name = None
        self.invoice_number = None
        self.last_error = None
        logger.debug(f"Session reset (generation {self._generation})")

    # ========================================================================
    # Item Operations
    # ========================================================================

    def _item(self, index: int) -> VerificationItem:
        if isinstance(index, bool) or not isinstance(index, int) or not 0 <= index < len(self._items):
            raise IndexOutOfRangeError(index, len(self._items))
        if self._phase != WorkflowPhase.VERIFY:
            raise ItemStateError(f"Items can only be changed in the verify phase, not {self._phase.value}")
        return self._items[index]

    def _apply_count(self, item: VerificationItem, actual_qty: int) -> VerificationItem:
        item.actual_qty = actual_qty
        item.status = derive_count_status(item.expected_qty, actual_qty)
        item.status_source = StatusSource.COUNT
        if item.status == ItemStatus.MATCH:
            item.verified = True
        return item

    def increment_count(self, index: int) -> VerificationItem:
        """Count one more unit of an item."""
        item = self._item(index)
        return self._apply_count(item, item.actual_qty + 1)

    def decrement_count(self, index: int) -> VerificationItem:
        """Remove one counted unit. At zero this does nothing."""
        item = self._item(index)
        if item.actual_qty == 0:
            return item
        return self._apply_count(item, item.actual_qty - 1)

    def reset_count(self, index: int) -> VerificationItem:
        """Roll an item back to uncounted, bypassing count derivation."""
        item = self._item(index)
        item.actual_qty = 0
        item.verified = False
        item.status = ItemStatus.PENDING
        item.status_source = StatusSource.RESET
        return item

    def mark_as(self, index: int, status: ItemStatus) -> VerificationItem:
        """
        Override an item's status as missing or damaged.

        A later count change re-derives the status and replaces the override.
        """
        status = ItemStatus(status)
        if status not in OVERRIDE_STATUSES:
            raise ItemStateError(f"Items can only be marked missing or damaged, not {status.value}")
        item = self._item(index)
        item.status = status
        item.verified = True
        item.status_source = StatusSource.MANUAL
        return item

    def finish_counting(self, index: int) -> VerificationItem:
        """Confirm the current count-driven status as final."""
        item = self._item(index)
        if item.actual_qty == 0:
            raise ItemStateError(f"Count at least one unit of {item.name!r} before finishing")
        item.verified = True
        return item

    def set_notes(self, index: int, text: str) -> VerificationItem:
        """Attach free-text notes to a verified item."""
        item = self._item(index)
        if not item.verified:
            raise ItemStateError(f"Notes can only be added to verified items ({item.name!r} is not verified)")
        item.notes = text
        return item
