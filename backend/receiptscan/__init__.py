"""Top-level application package for the receipt ingestion service.

This package turns uploaded receipt images into structured expense
records.  An upload is hashed and deduplicated, checked by an image
classifier, sent to a document analysis service, and the fields pulled
from the analysis result are stored as a ``Receipt`` together with the
``Expense`` derived from it.

To run the API locally you can execute:

```bash
uvicorn receiptscan.api.main:app --reload
```

This will serve the FastAPI application on http://localhost:8000.  The
default configuration uses a local SQLite database stored in
``receiptscan.db``.  You can override configuration values using
environment variables or a ``.env`` file at the project root.
"""

__all__: list[str] = []
