# Shop Ledger Live Test Suite
#
# This package contains:
# - API tests against a running Flask server (pytest + httpx)
# - Stress/load tests (Locust)
#
# Run with:
#   pytest tests/api                     # all live API tests
#   pytest tests/api -m smoke            # critical paths only
#   pytest tests/api -m concurrent       # parallel bill creation
#   locust -f tests/stress/locustfile.py --host http://127.0.0.1:5001
