"""
Scheduling Backend Tests

Unit tests for the booking core, the conversation engine and the HTTP
surface. Database tests run against SQLite in memory (aiosqlite); the
calendar, gateway and language model are mocked.

Running Tests:
    # Run all tests
    pytest tests -v

    # Run one module
    pytest tests/unit/test_booking.py -v
"""
