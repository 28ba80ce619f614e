"""
Client for the self-employed tax service (lknpd.nalog.ru).

This package provides the session client: authentication, token renewal,
authenticated API calls and income registration.
"""

from nalog_client.api_client import NalogAPIClient
from nalog_client.auth.session_storage import SecureSessionStorage
from nalog_client.config import ClientConfiguration, configure_logging
from nalog_shared.models import IncomeLineItem, MultipleIncome, SingleIncome

__all__ = [
    'NalogAPIClient',
    'SecureSessionStorage',
    'ClientConfiguration',
    'configure_logging',
    'IncomeLineItem',
    'MultipleIncome',
    'SingleIncome',
]
