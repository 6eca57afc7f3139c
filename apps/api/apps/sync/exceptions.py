"""
Sync engine exceptions.

SyncError
├── ChangeSourceError          transport failure talking to CouchDB (cycle aborts)
├── StoreUnavailable           relational store unreachable (cycle aborts)
├── ConstraintViolation        the database rejected a write (document skipped)
└── DocumentValidationError    the document cannot be mapped (document skipped)
    ├── UnknownDocumentType
    ├── MissingRequiredField
    ├── InvalidTimestamp
    └── ExternalIdCollision
"""


class SyncError(Exception):
    """Base class for sync engine errors."""


class ChangeSourceError(SyncError):
    """The change feed could not be read (connection, timeout, bad status, bad body)."""


class StoreUnavailable(SyncError):
    """The relational store could not be reached."""


class ConstraintViolation(SyncError):
    """A database constraint rejected the write of a document."""

    def __init__(self, doc_id, message):
        self.doc_id = doc_id
        super().__init__(f'{doc_id}: {message}')


class DocumentValidationError(SyncError):
    """A document could not be transformed into a relational record."""

    def __init__(self, doc_id, message):
        self.doc_id = doc_id
        super().__init__(f'{doc_id}: {message}')


class UnknownDocumentType(DocumentValidationError):

    def __init__(self, doc_id, doc_type):
        self.doc_type = doc_type
        if doc_type is None:
            message = 'document has no type field'
        else:
            message = f'unknown document type "{doc_type}"'
        super().__init__(doc_id, message)


class MissingRequiredField(DocumentValidationError):

    def __init__(self, doc_id, field):
        self.field = field
        super().__init__(doc_id, f'missing required field "{field}"')


class InvalidTimestamp(DocumentValidationError):

    def __init__(self, doc_id, field, value):
        self.field = field
        self.value = value
        super().__init__(doc_id, f'unparseable timestamp in "{field}": {value!r}')


class ExternalIdCollision(DocumentValidationError):
    """The document id already belongs to a row of another document type."""

    def __init__(self, doc_id, existing_table):
        self.existing_table = existing_table
        super().__init__(doc_id, f'id already mirrored in table "{existing_table}"')
