# payments/api.py

from core.api import iso, money

from .models import Payment


def serialize_payment(payment: Payment) -> dict:
    return {
        "id": payment.pk,
        "paymentNumber": payment.number,
        "poId": payment.po_id,
        "supplierId": payment.supplier_id,
        "amount": money(payment.amount),
        "method": payment.method,
        "paidOn": iso(payment.paid_on),
        "reference": payment.reference,
        "chequeNumber": payment.cheque_number,
        "mobileProvider": payment.mobile_provider,
        "mobileNumber": payment.mobile_number,
        "bankReference": payment.bank_reference,
        "notes": payment.notes,
        "recordedBy": payment.recorded_by_id,
        "createdAt": iso(payment.created_at),
    }
