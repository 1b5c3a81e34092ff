"""cds_server — FastAPI HTTP surface for the clinical decision support engine.

Start with ``cds-server`` or ``uvicorn cds_server.app:app``.
"""
