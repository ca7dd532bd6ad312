"""Tablas de transición de los documentos de tesorería"""
from erp_core.common.state_machine import StateMachine
from erp_core.modules.treasury.models import CheckStatus, CashSessionStatus, PaymentOrderStatus

CK = CheckStatus

CHECK_MACHINE = StateMachine(
    "Cheque",
    {
        CK.PORTFOLIO: {CK.DEPOSITED, CK.ENDORSED, CK.VOIDED},
        CK.DEPOSITED: {CK.CLEARED, CK.REJECTED},
        CK.DELIVERED: {CK.VOIDED},
    },
    deletable_from={CK.PORTFOLIO, CK.DELIVERED},
)

CASH_SESSION_MACHINE = StateMachine(
    "Sesión de caja",
    {
        CashSessionStatus.OPEN: {CashSessionStatus.CLOSED},
    },
)

PAYMENT_ORDER_MACHINE = StateMachine(
    "Orden de pago",
    {
        PaymentOrderStatus.DRAFT: {PaymentOrderStatus.CONFIRMED},
        PaymentOrderStatus.CONFIRMED: {PaymentOrderStatus.CANCELLED},
    },
    deletable_from={PaymentOrderStatus.DRAFT},
)
