from fee_settlement.schemas.payment.payment_request import (
    ApplyCreditRequest,
    ManualPaymentEvidence,
    ManualPaymentRequest,
    PaymentInitiateRequest,
    ResolveAlertRequest,
    VerifyPaymentRequest,
)
from fee_settlement.schemas.payment.payment_response import (
    FeeObligationResponse,
    InitiatePaymentResponse,
    OperatorAlertResponse,
    PaymentIntentResponse,
    PaymentNotificationResponse,
    PaymentStatusResponse,
    StudentPaymentSummary,
    SweepResult,
)
from fee_settlement.schemas.payment.settlement import (
    AllocationLine,
    CreditApplicationResult,
    ReconciliationResult,
    SettlementEvent,
)
