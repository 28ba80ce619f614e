"""
Core interfaces for the tax service client.

This module defines the abstract interfaces that client implementations
must provide.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

from .models import AuthInfo, Credential, IncomeParams, SmsChallenge, SubmissionResult


class ITaxServiceClient(ABC):
    """Interface for a single-account tax service session."""

    @abstractmethod
    def get_auth_info(self) -> AuthInfo:
        """Export the current session for later resumption."""
        pass

    @abstractmethod
    async def auth(self, login: str, password: str) -> Credential:
        """Log in with taxpayer credentials."""
        pass

    @abstractmethod
    async def request_sms_code(self, phone: str) -> SmsChallenge:
        """Start an SMS login challenge."""
        pass

    @abstractmethod
    async def auth_via_sms_code(self, code: str, challenge_token: str, phone: str) -> Credential:
        """Complete an SMS login challenge."""
        pass

    @abstractmethod
    async def add_income(self, params: IncomeParams) -> SubmissionResult:
        """Register an income and fetch its receipt."""
        pass

    @abstractmethod
    async def user_info(self) -> Dict[str, Any]:
        """Get the taxpayer profile."""
        pass

    @abstractmethod
    async def call(self, endpoint: str, payload: Optional[Any] = None, method: Optional[str] = None) -> Any:
        """Make an authenticated API call."""
        pass


class ISessionStorage(ABC):
    """Interface for persisting exported sessions."""

    @abstractmethod
    def store_session(self, auth_info: AuthInfo) -> None:
        """Persist a session snapshot."""
        pass

    @abstractmethod
    def load_session(self, inn: str) -> Optional[AuthInfo]:
        """Load a session snapshot by taxpayer identifier."""
        pass

    @abstractmethod
    def remove_session(self, inn: str) -> bool:
        """Delete a stored session."""
        pass
