"""Error taxonomy for the batch invoice pipeline."""


class DocumentProcessingError(Exception):
    """Base for failures confined to a single document.

    These are recorded on the BatchFile row and never abort the batch. The
    message always starts with the kind-specific summary so a reviewer can tell
    the failure kinds apart from the stored text alone.
    """

    summary = "Document processing failed"

    def __init__(self, detail: str) -> None:
        super().__init__(f"{self.summary}: {detail}")
        self.detail = detail


class DocumentReadError(DocumentProcessingError):
    summary = "Could not read document"


class EmptyDocumentError(DocumentReadError):
    """Raised when a document yields no text."""


class UnsupportedFileTypeError(DocumentReadError):
    """Raised for any file type other than PDF or HTML."""


class ExtractionError(DocumentProcessingError):
    """Transport, timeout or configuration failure calling the extraction provider."""

    summary = "AI extraction failed"


class MalformedExtractionError(DocumentProcessingError):
    """The provider answered, but not with an {invoice_header, line_items} object."""

    summary = "AI response malformed"


class PersistenceError(DocumentProcessingError):
    summary = "Database write failed"


class NotFoundError(Exception):
    """Raised when a requested record does not exist."""


class BatchNotFoundError(NotFoundError):
    pass


class VendorNotFoundError(NotFoundError):
    pass


class AlreadyProcessingError(Exception):
    """Raised when a run is requested for a batch that already has one in flight."""


class InvalidStateError(Exception):
    """Raised when a batch is not in a status that permits the requested operation."""


class FatalOrchestratorError(Exception):
    """Raised when a run cannot continue at all; the batch is marked failed."""
