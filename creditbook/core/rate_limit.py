# creditbook/core/rate_limit.py
"""SlowAPI limiter shared by the app and the routers that throttle writes."""
from slowapi import Limiter
from slowapi.util import get_remote_address

limiter = Limiter(key_func=get_remote_address)
