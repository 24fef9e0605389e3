from .client import Client
from .payment import Payment
