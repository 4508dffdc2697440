"""
pytest suite for the ordering & payment backend.

Test categories:
- Unit tests: pure helpers (totals, transaction codes, VietQR, state graphs)
- Service tests: order/payment/sweeper services against in-memory SQLite
- Gateway tests: adapters against httpx.MockTransport
- API tests: the FastAPI app over ASGITransport
"""
