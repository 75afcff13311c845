"""
VendorGate — Vendor Compliance Review Backend (v1.0.0)

Architecture:
  vendorgate/
  ├── config/      — Environment settings, paths, review engine settings
  ├── db/          — JSON file store, audit log, document storage reader
  ├── auth/        — JWT request user
  ├── workflow/    — Workflow schema types, loader, demo samples
  ├── engine/      — Review engine capability resolver + HTTP client
  ├── results/     — Result payload normalization, display rows
  ├── compliance/  — Work item extraction, notification summaries
  ├── review/      — Review job orchestration (start, poll, fetch)
  ├── errors.py    — Error taxonomy
  └── server.py    — FastAPI routing layer

Each module is self-contained with clear imports and no circular dependencies.
"""
