"""
Income submission logic.

Normalizes single and multiple line-item input into one list of services,
computes the receipt total with decimal arithmetic, registers the income and
fetches the resulting receipt.
"""

import logging
from datetime import datetime, tzinfo
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional, Dict, Any, List

from nalog_shared.exceptions import IncompleteCredentialError, SubmissionFailure, ValidationError
from nalog_shared.logging_config import AuditLogger
from nalog_shared.models import (
    IncomeLineItem, IncomeParams, IncomeSubmission, IncomeType, MultipleIncome,
    PaymentType, SingleIncome, SubmissionResult
)
from nalog_client.auth.credential_store import CredentialStore
from nalog_client.config import ClientConfiguration
from nalog_client.gateway import AuthenticatedGateway

logger = logging.getLogger(__name__)

CENTS = Decimal('0.01')


def round_amount(value: Decimal) -> Decimal:
    """Round half-up to 2 decimal places."""
    return value.quantize(CENTS, rounding=ROUND_HALF_UP)


def compute_total(services: List[IncomeLineItem]) -> Decimal:
    """Sum of amount x quantity over all services, rounded to 2 decimals."""
    total = sum((item.amount * item.quantity for item in services), Decimal('0'))
    return round_amount(total)


def date_to_local_iso(date: Optional[datetime] = None, tz: Optional[tzinfo] = None) -> str:
    """
    Render a moment as ``YYYY-MM-DDTHH:MM:SS+HH:MM``.

    Args:
        date: Moment to render (defaults to now); naive values are local time
        tz: Timezone to render in (defaults to the system local timezone)

    Returns:
        Timestamp truncated to the second with the zone offset at that moment
    """
    moment = date or datetime.now()
    local = moment.astimezone(tz) if tz is not None else moment.astimezone()

    # Truncate toward zero so sub-minute offsets keep their sign
    offset_minutes = int(local.utcoffset().total_seconds() / 60)
    sign = '-' if offset_minutes < 0 else '+'
    hours, minutes = divmod(abs(offset_minutes), 60)

    return f"{local.strftime('%Y-%m-%dT%H:%M:%S')}{sign}{hours:02d}:{minutes:02d}"


def _line_item(name: Any, amount: Any, quantity: Any = 1) -> IncomeLineItem:
    item = IncomeLineItem(name=name, amount=amount, quantity=1 if quantity is None else quantity)
    item.amount = round_amount(item.amount)
    return item


def _coerce_service(service: Any) -> IncomeLineItem:
    if isinstance(service, IncomeLineItem):
        return _line_item(service.name, service.amount, service.quantity)
    if isinstance(service, dict):
        if 'name' not in service or 'amount' not in service:
            raise ValidationError("Service requires name and amount", field_name="services")
        return _line_item(service['name'], service['amount'], service.get('quantity', 1))
    raise ValidationError(f"Unsupported service entry: {service!r}", field_name="services")


def normalize_income(params: IncomeParams) -> IncomeSubmission:
    """
    Normalize income input into one ordered list of services.

    Args:
        params: SingleIncome, MultipleIncome, or a mapping with the same keys
            (a ``services`` key selects the multiple form)

    Returns:
        Validated submission with rounded amounts and the computed total

    Raises:
        ValidationError: On empty names, non-positive quantities, negative
            amounts or an empty service list
    """
    if isinstance(params, dict):
        if 'services' in params:
            params = MultipleIncome(services=params['services'], date=params.get('date'))
        else:
            if 'name' not in params or 'amount' not in params:
                raise ValidationError("Income requires name and amount, or services", field_name="params")
            params = SingleIncome(
                name=params['name'],
                amount=params['amount'],
                quantity=params.get('quantity', 1),
                date=params.get('date'),
            )

    if isinstance(params, SingleIncome):
        services = [_line_item(params.name, params.amount, params.quantity)]
    elif isinstance(params, MultipleIncome):
        services = [_coerce_service(service) for service in params.services or []]
    else:
        raise ValidationError(f"Unsupported income parameters: {type(params).__name__}", field_name="params")

    if not services:
        raise ValidationError("Income must contain at least one service", field_name="services")

    if params.date is not None and not isinstance(params.date, datetime):
        raise ValidationError(
            f"Income date must be a datetime, got {type(params.date).__name__}",
            field_name="date"
        )

    return IncomeSubmission(
        services=services,
        operation_time=params.date or datetime.now(),
        total_amount=compute_total(services),
    )


def _json_number(value: Any) -> Any:
    if isinstance(value, Decimal):
        return int(value) if value == value.to_integral_value() else float(value)
    return value


def build_income_payload(
    submission: IncomeSubmission,
    request_time: Optional[datetime] = None,
    tz: Optional[tzinfo] = None
) -> Dict[str, Any]:
    """Build the body of ``POST income`` for a cash receipt to an individual."""
    return {
        'paymentType': PaymentType.CASH.value,
        'ignoreMaxTotalIncomeRestriction': False,
        'client': {
            'contactPhone': None,
            'displayName': None,
            'incomeType': IncomeType.FROM_INDIVIDUAL.value,
            'inn': None,
        },
        'requestTime': date_to_local_iso(request_time, tz),
        'operationTime': date_to_local_iso(submission.operation_time, tz),
        'services': [
            {
                'name': item.name,
                'amount': float(item.amount),
                'quantity': _json_number(item.quantity),
            }
            for item in submission.services
        ],
        'totalAmount': submission.total_amount_text,
    }


class IncomeService:
    """
    Registers income records and retrieves their receipts.
    """

    def __init__(
        self,
        gateway: AuthenticatedGateway,
        store: CredentialStore,
        config: ClientConfiguration,
        audit_logger: Optional[AuditLogger] = None
    ):
        self.gateway = gateway
        self.store = store
        self.config = config
        self.audit = audit_logger or AuditLogger()

    async def _resolve_inn(self) -> str:
        """INN for receipt URLs, looked up from the profile if not yet known."""
        if self.store.inn:
            return self.store.inn

        profile = await self.gateway.call('user')
        inn = profile.get('inn') if isinstance(profile, dict) else None
        if not inn:
            raise IncompleteCredentialError(
                "Taxpayer INN is unknown and the profile does not provide it",
                missing_fields=['inn']
            )

        self.gateway.authenticator.adopt_identity(inn)
        return inn

    def receipt_urls(self, inn: str, receipt_id: str) -> Dict[str, str]:
        base = f"{self.config.get_api_url()}/receipt/{inn}/{receipt_id}"
        return {
            'json': f"{base}/json",
            'print': f"{base}/print",
        }

    async def add_income(self, params: IncomeParams) -> SubmissionResult:
        """
        Register income and fetch its receipt.

        Args:
            params: Single or multiple line-item income

        Returns:
            Submission result with receipt URLs and the receipt JSON as data

        Raises:
            ValidationError: If the input is invalid (nothing is sent)
            IncompleteCredentialError: If the INN is unknown and the profile lacks it
            SubmissionFailure: If the service returns no receipt identifier
            TransportFailure: On network or decoding errors
        """
        submission = normalize_income(params)
        payload = build_income_payload(submission, tz=self.config.get_timezone())
        inn = await self._resolve_inn()

        logger.info(f"Registering income of {submission.total_amount_text} ({len(submission.services)} services)")
        response = await self.gateway.call('income', payload)

        receipt_id = response.get('approvedReceiptUuid') if isinstance(response, dict) else None
        if not receipt_id:
            message = "Income registration returned no receipt"
            self.audit.log_income_submission(
                inn,
                submission.total_amount_text,
                len(submission.services),
                error_message=message
            )
            raise SubmissionFailure(message, response=response)

        urls = self.receipt_urls(inn, receipt_id)
        data = await self.gateway.fetch_json(urls['json'])

        self.audit.log_income_submission(
            inn,
            submission.total_amount_text,
            len(submission.services),
            receipt_id=receipt_id
        )
        return SubmissionResult(
            receipt_id=receipt_id,
            json_url=urls['json'],
            print_url=urls['print'],
            data=data,
        )
